import cv2
import numpy as np
import pytest

from marker_coverage.config import Params
from marker_coverage.validators import (
    ColorClusterValidator,
    ColorGradientValidator,
    GridValidationCascade,
    GridValidator,
    LinePeaksValidator,
    MaxGapCutsValidator,
    TemplateCorrelationValidator,
    anchored_at_thirds,
    best_cut_pair,
    grid_template,
    hue_score,
    label_transitions,
    strip_glare_band,
    two_peaks,
)


class AcceptAll(GridValidator):
    name = "accept_all"

    def accept(self, square_bgr, p):
        return True


class RejectAll(GridValidator):
    name = "reject_all"

    def accept(self, square_bgr, p):
        return False


def _peaked(n, positions, width=3):
    prof = np.zeros(n, dtype=np.float32)
    for x in positions:
        prof[max(0, x - width):x + width + 1] = 1.0
    return prof


def test_hue_score_full_marker(make_marker):
    sq = make_marker(360)
    assert hue_score(sq, Params()) == pytest.approx(1.0)


def test_hue_score_single_color_and_gray():
    p = Params()
    red = np.zeros((360, 360, 3), dtype=np.uint8)
    red[:] = (0, 0, 255)
    assert hue_score(red, p) == pytest.approx(1.0 / 9.0)
    gray = np.full((360, 360, 3), 128, dtype=np.uint8)
    assert hue_score(gray, p) == 0.0


def test_two_peaks_on_thirds():
    n = 360
    assert two_peaks(_peaked(n, [120, 240]), 0.12, 0.12, 0.15)
    assert not two_peaks(_peaked(n, [20, 340]), 0.12, 0.12, 0.15)
    # one peak only
    assert not two_peaks(_peaked(n, [120]), 0.12, 0.12, 0.15)
    assert not two_peaks(np.ones(n), 0.12, 0.12, 0.15)


def test_anchored_at_thirds_is_order_free():
    assert anchored_at_thirds(300, 100, 200, 0.15)
    assert anchored_at_thirds(300, 200, 100, 0.15)
    assert not anchored_at_thirds(300, 100, 120, 0.15)


def test_best_cut_pair():
    prof = _peaked(90, [30, 60], width=0)
    assert best_cut_pair(prof, 10) == (30, 60)
    assert best_cut_pair(np.zeros(5), 2) is None


def test_label_transitions():
    assert label_transitions(np.array([0, 0, 1, 1, 1, 2])).tolist() == [2, 5]
    assert label_transitions(np.array([3, 3, 3])).size == 0


def test_grid_template_has_four_lines():
    t = grid_template((90, 90), 1)
    assert t[:, 30].sum() > 80 and t[30, :].sum() > 80
    assert t[:, 15].sum() < t[:, 30].sum() / 10


def test_glare_band_is_stripped(make_marker):
    p = Params()
    # darker cells so a white top band stands out
    sq = (make_marker(360) * 0.7).astype(np.uint8)
    assert strip_glare_band(sq, p).shape[0] == 360

    glared = sq.copy()
    glared[:40] = 255
    out = strip_glare_band(glared, p)
    assert out.shape[0] == 360 - int(round(p.glare_cut_frac * 360))


def test_cascade_accepts_marker(make_marker):
    p = Params()
    sq = make_marker(360)
    check = GridValidationCascade().evaluate(sq, p)
    assert check.line_ok
    assert check.accepted(p)
    assert check.validator in {
        "line_peaks", "color_gradient", "max_gap_cuts", "color_cluster", "template_correlation",
    }


def test_cascade_rejects_plain_square():
    p = Params()
    gray = np.full((360, 360, 3), 128, dtype=np.uint8)
    check = GridValidationCascade().evaluate(gray, p)
    assert not check.line_ok
    assert check.validator is None
    assert not check.accepted(p)


def test_cascade_low_hue_skips_structure(make_marker):
    p = Params()
    sq = make_marker(360)
    gray = cv2.cvtColor(cv2.cvtColor(sq, cv2.COLOR_BGR2GRAY), cv2.COLOR_GRAY2BGR)
    check = GridValidationCascade([AcceptAll()]).evaluate(gray, p)
    assert check.hue_score == 0.0
    assert not check.line_ok


def test_cascade_first_match_wins(make_marker):
    p = Params()
    sq = make_marker(360)
    check = GridValidationCascade([RejectAll(), AcceptAll(), RejectAll()]).evaluate(sq, p)
    assert check.validator == "accept_all"
    check = GridValidationCascade([RejectAll()]).evaluate(sq, p)
    assert not check.line_ok and check.hue_score == pytest.approx(1.0)


def test_template_correlation_on_grid_lines():
    img = np.full((360, 360, 3), 255, dtype=np.uint8)
    for x in (120, 240):
        cv2.line(img, (x, 0), (x, 359), (0, 0, 0), 2)
        cv2.line(img, (0, x), (359, x), (0, 0, 0), 2)
    assert TemplateCorrelationValidator().accept(img, Params())


def test_color_cluster_is_deterministic(make_marker):
    p = Params()
    sq = make_marker(360)
    v = ColorClusterValidator()
    first = v.accept(sq, p)
    assert all(v.accept(sq, p) == first for _ in range(3))


def _split_square(size=360):
    # two colors, one vertical boundary: no 3x3 structure
    sq = np.zeros((size, size, 3), dtype=np.uint8)
    sq[:, : size // 2] = (0, 0, 255)
    sq[:, size // 2:] = (255, 0, 0)
    return sq


@pytest.mark.parametrize(
    "validator",
    [LinePeaksValidator(), ColorGradientValidator(), MaxGapCutsValidator(), ColorClusterValidator()],
    ids=lambda v: v.name,
)
def test_validator_accepts_lined_marker(make_marker, validator):
    assert validator.accept(make_marker(360), Params())


def test_template_correlation_accepts_unlined_marker(make_marker):
    assert TemplateCorrelationValidator().accept(make_marker(360, line=0), Params())


@pytest.mark.parametrize(
    "validator",
    [
        LinePeaksValidator(),
        ColorGradientValidator(),
        MaxGapCutsValidator(),
        ColorClusterValidator(),
        TemplateCorrelationValidator(),
    ],
    ids=lambda v: v.name,
)
def test_validator_rejects_two_color_split(validator):
    assert not validator.accept(_split_square(), Params())
