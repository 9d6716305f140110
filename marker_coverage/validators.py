"""
Structural checks that decide whether a canonical square really shows a 3x3 grid.

Every validator shares one contract, ``accept(square_bgr, params) -> bool``, and
the cascade tries them in a fixed order, stopping at the first acceptance. The
validators do not share a confidence scale on purpose: first acceptance wins.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import logging
import numpy as np
import cv2

from .config import MARKER_COLORS, Params

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GridCheck:
    hue_score: float
    line_ok: bool
    validator: Optional[str] = None

    def accepted(self, p: Params) -> bool:
        return self.line_ok and self.hue_score >= p.min_hue_score


# ----------------------------------------------------------------------------- #
# shared helpers                                                                #
# ----------------------------------------------------------------------------- #

def hue_score(square_bgr: np.ndarray, p: Params) -> float:
    """Share of the nine marker colors visible as well-populated hue bins (0..1)."""
    hsv = cv2.cvtColor(square_bgr, cv2.COLOR_BGR2HSV)
    h = hsv[:, :, 0].astype(np.int32)
    s = hsv[:, :, 1]
    hues = h[s > p.hue_sat_floor]
    if hues.size == 0:
        return 0.0
    idx = np.clip(hues * p.hue_bins // 180, 0, p.hue_bins - 1)
    hist = np.bincount(idx, minlength=p.hue_bins)
    thr = max(10, int(round(p.hue_density * square_bgr.shape[0] * square_bgr.shape[1])))
    distinct = int(np.count_nonzero(hist >= thr))
    return min(1.0, distinct / float(MARKER_COLORS))


def strip_glare_band(square_bgr: np.ndarray, p: Params) -> np.ndarray:
    """Drop a bright, washed-out band (barcode label, glare) from the top rows."""
    rows = square_bgr.shape[0]
    hsv = cv2.cvtColor(square_bgr, cv2.COLOR_BGR2HSV)
    band = max(1, int(rows * p.glare_band_frac))
    top_v = float(hsv[:band, :, 2].mean())
    top_s = float(hsv[:band, :, 1].mean())
    mid_v = float(hsv[rows // 4: rows // 4 + max(1, rows // 2), :, 2].mean())
    if top_v > p.glare_brightness_ratio * mid_v and top_s < p.glare_max_sat:
        cut = max(1, int(round(p.glare_cut_frac * rows)))
        logger.debug("stripping %d glare rows", cut)
        return square_bgr[cut:].copy()
    return square_bgr


def is_small(img: np.ndarray, p: Params) -> bool:
    return min(img.shape[:2]) < p.small_mode_side


def smooth5(profile: np.ndarray) -> np.ndarray:
    out = np.asarray(profile, dtype=np.float32).ravel().copy()
    if out.size < 5:
        return out
    out[2:-2] = np.convolve(out, np.ones(5, dtype=np.float32) / 5.0, mode="valid")
    return out


def near(i: float, target: float, tol: float) -> bool:
    return abs(i - target) < tol


def anchored_at_thirds(n: int, i1: int, i2: int, tol_frac: float) -> bool:
    """One position near n/3 and the other near 2n/3."""
    a, b, tol = n / 3.0, 2.0 * n / 3.0, tol_frac * n
    return (near(i1, a, tol) and near(i2, b, tol)) or (near(i1, b, tol) and near(i2, a, tol))


def two_peaks(profile: np.ndarray, min_prom: float, min_sep_frac: float, tol_frac: float) -> bool:
    """
    Two prominent, well separated peaks sitting on the 1/3 and 2/3 marks.

    The profile is smoothed and scaled to 0..1; prominence is height above the
    median. The second peak is searched outside the separation window of the first.
    """
    n = int(np.asarray(profile).size)
    if n < 8:
        return False
    v = smooth5(profile)
    mn, mx = float(v.min()), float(v.max())
    if mx - mn < 1e-6:
        return False
    v = (v - mn) / (mx - mn)
    med = float(np.median(v))

    sep = min_sep_frac * n
    i1 = int(np.argmax(v))
    idx = np.arange(n)
    rest = np.where(np.abs(idx - i1) > sep, v, -np.inf)
    if not np.isfinite(rest).any():
        return False
    i2 = int(np.argmax(rest))

    strong = (v[i1] - med > min_prom) and (v[i2] - med > min_prom)
    return bool(strong and anchored_at_thirds(n, i1, i2, tol_frac))


def _hue_vectors(square_bgr: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    # OpenCV hue is degrees / 2
    hsv = cv2.cvtColor(square_bgr, cv2.COLOR_BGR2HSV)
    rad = hsv[:, :, 0].astype(np.float32) * (np.pi / 90.0)
    s = hsv[:, :, 1].astype(np.float32) / 255.0
    v = hsv[:, :, 2].astype(np.float32) / 255.0
    return np.cos(rad) * s, np.sin(rad) * s, s, v


def _gray_gradient_magnitude(square_bgr: np.ndarray) -> np.ndarray:
    gray = cv2.cvtColor(square_bgr, cv2.COLOR_BGR2GRAY)
    gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    return np.abs(gx) + np.abs(gy)


# ----------------------------------------------------------------------------- #
# validators                                                                    #
# ----------------------------------------------------------------------------- #

class GridValidator:
    name = "base"

    def accept(self, square_bgr: np.ndarray, p: Params) -> bool:
        raise NotImplementedError


class LinePeaksValidator(GridValidator):
    """Binarized dark separators projected on both axes."""
    name = "line_peaks"

    def accept(self, square_bgr, p):
        small = is_small(square_bgr, p)
        gray = cv2.cvtColor(square_bgr, cv2.COLOR_BGR2GRAY)
        if not small:
            clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
            gray = clahe.apply(gray)
        gray = cv2.GaussianBlur(gray, (3, 3), 0)
        bin_img = cv2.adaptiveThreshold(gray, 255, cv2.ADAPTIVE_THRESH_MEAN_C,
                                        cv2.THRESH_BINARY_INV, 21, 5)
        bin_img = cv2.dilate(bin_img, cv2.getStructuringElement(cv2.MORPH_RECT, (3, 1)))
        bin_img = cv2.dilate(bin_img, cv2.getStructuringElement(cv2.MORPH_RECT, (1, 3)))

        px = bin_img.sum(axis=0, dtype=np.float64)
        py = bin_img.sum(axis=1, dtype=np.float64)
        prom = min(p.small_mode_cap, p.min_line_peak) if small else p.min_line_peak
        sep = min(p.small_mode_cap, p.min_peak_sep) if small else p.min_peak_sep
        return (two_peaks(px, prom, sep, p.thirds_tol) and
                two_peaks(py, prom, sep, p.thirds_tol))


class ColorGradientValidator(GridValidator):
    """Hue-vector and brightness edges projected on both axes."""
    name = "color_gradient"
    value_weight = 0.35

    def accept(self, square_bgr, p):
        hcos, hsin, _, v = _hue_vectors(square_bgr)

        def sobel_abs(m, along_x):
            dx, dy = (1, 0) if along_x else (0, 1)
            return np.abs(cv2.Sobel(m, cv2.CV_32F, dx, dy, ksize=3))

        gx = sobel_abs(hcos, True) + sobel_abs(hsin, True) + self.value_weight * sobel_abs(v, True)
        gy = sobel_abs(hcos, False) + sobel_abs(hsin, False) + self.value_weight * sobel_abs(v, False)
        px = gx.sum(axis=0)
        py = gy.sum(axis=1)
        return (two_peaks(px, p.min_line_peak, p.min_peak_sep, p.thirds_tol) and
                two_peaks(py, p.min_line_peak, p.min_peak_sep, p.thirds_tol))


def best_cut_pair(profile: np.ndarray, min_sep: int) -> Optional[Tuple[int, int]]:
    """Positions i < j, j - i >= min_sep, maximizing profile[i] + profile[j]."""
    prof = np.asarray(profile, dtype=np.float32).ravel()
    n = prof.size
    min_sep = max(1, int(min_sep))
    if n < 8 or n <= min_sep:
        return None
    best, pair = -np.inf, None
    for i in range(n - min_sep):
        tail = prof[i + min_sep:]
        j = int(np.argmax(tail))
        s = float(prof[i] + tail[j])
        if s > best:
            best, pair = s, (i, i + min_sep + j)
    return pair


class MaxGapCutsValidator(GridValidator):
    """Two strongest cuts of the edge profile must fall on the thirds."""
    name = "max_gap_cuts"

    def accept(self, square_bgr, p):
        mag = _gray_gradient_magnitude(square_bgr)
        px = smooth5(mag.sum(axis=0))
        py = smooth5(mag.sum(axis=1))
        sep_frac = min(p.small_mode_cap, p.min_peak_sep) if is_small(square_bgr, p) else p.min_peak_sep

        for prof in (px, py):
            n = prof.size
            pair = best_cut_pair(prof, int(round(sep_frac * n)))
            if pair is None:
                return False
            i, j = pair
            a, b, tol = n / 3.0, 2.0 * n / 3.0, p.thirds_tol * n
            if not (near(i, a, tol) and near(j, b, tol)):
                return False
        return True


def label_transitions(line: np.ndarray) -> np.ndarray:
    line = np.asarray(line).ravel()
    return np.nonzero(line[1:] != line[:-1])[0] + 1


class ColorClusterValidator(GridValidator):
    """k-means on subsampled color features; label changes must hit both thirds."""
    name = "color_cluster"

    def accept(self, square_bgr, p):
        stride = p.cluster_stride_small if is_small(square_bgr, p) else p.cluster_stride
        rows, cols = square_bgr.shape[:2]
        gr, gc = rows // stride, cols // stride
        if gr * gc < 64:
            return False

        hcos, hsin, s, v = _hue_vectors(square_bgr)
        sl = (slice(0, gr * stride, stride), slice(0, gc * stride, stride))
        samples = np.stack([hcos[sl], hsin[sl], s[sl], v[sl]], axis=-1).reshape(-1, 4).astype(np.float32)

        criteria = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 10, 1e-3)
        # kmeans++ draws from OpenCV's per-thread RNG
        cv2.setRNGSeed(p.cluster_seed)
        _, labels, _ = cv2.kmeans(samples, p.cluster_k, None, criteria, 1, cv2.KMEANS_PP_CENTERS)
        grid = labels.reshape(gr, gc)

        return (self._hits_thirds(grid[gr // 2, :], p.thirds_tol) and
                self._hits_thirds(grid[:, gc // 2], p.thirds_tol))

    @staticmethod
    def _hits_thirds(line: np.ndarray, tol_frac: float) -> bool:
        n = line.size
        pos = label_transitions(line)
        a, b, tol = n / 3.0, 2.0 * n / 3.0, tol_frac * n
        hit_a = any(near(x, a, tol) for x in pos)
        hit_b = any(near(x, b, tol) for x in pos)
        return hit_a and hit_b


def grid_template(shape: Tuple[int, int], thickness: int) -> np.ndarray:
    H, W = shape
    templ = np.zeros((H, W), dtype=np.float32)
    for x in (W // 3, 2 * W // 3):
        cv2.line(templ, (x, 0), (x, H - 1), 1.0, thickness, cv2.LINE_AA)
    for y in (H // 3, 2 * H // 3):
        cv2.line(templ, (0, y), (W - 1, y), 1.0, thickness, cv2.LINE_AA)
    return templ


class TemplateCorrelationValidator(GridValidator):
    """Normalized correlation of the edge map against an ideal 3x3 line pattern."""
    name = "template_correlation"

    def accept(self, square_bgr, p):
        mag = _gray_gradient_magnitude(square_bgr)
        if float(mag.max() - mag.min()) < 1e-6:
            return False
        mag = cv2.normalize(mag, None, 0.0, 1.0, cv2.NORM_MINMAX)
        templ = grid_template(mag.shape[:2], p.template_thickness)
        res = cv2.matchTemplate(mag, templ, cv2.TM_CCOEFF_NORMED)
        _, maxv, _, _ = cv2.minMaxLoc(res)
        return bool(np.isfinite(maxv) and maxv > p.template_corr_min)


def default_validators() -> List[GridValidator]:
    return [
        LinePeaksValidator(),
        ColorGradientValidator(),
        MaxGapCutsValidator(),
        ColorClusterValidator(),
        TemplateCorrelationValidator(),
    ]


class GridValidationCascade:
    """Hue richness once, glare strip, then first-match over the validators."""

    def __init__(self, validators: Optional[Sequence[GridValidator]] = None):
        self.validators = list(validators) if validators is not None else default_validators()

    def evaluate(self, square_bgr: np.ndarray, p: Params) -> GridCheck:
        hs = hue_score(square_bgr, p)
        if hs < p.min_hue_score:
            # would be rejected regardless of structure
            return GridCheck(hue_score=hs, line_ok=False)

        img = strip_glare_band(square_bgr, p)
        for v in self.validators:
            if v.accept(img, p):
                return GridCheck(hue_score=hs, line_ok=True, validator=v.name)
        return GridCheck(hue_score=hs, line_ok=False)
