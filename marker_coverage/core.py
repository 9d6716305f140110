from typing import Dict, Optional
import logging
import numpy as np

from .config import Params
from .coverage import percent_of
from .geometry import base_orientation, rect_quad, scale_quad, select_component, warp_to_square
from .preprocess import build_color_mask, ensure_bgr, maybe_resize
from .sweep import AngleSweepOptimizer
from .types import DetectOutput, RotatedRect
from .validators import GridValidationCascade
from .visualize import build_artifacts

logger = logging.getLogger(__name__)


def _size(img: np.ndarray):
    h, w = img.shape[:2]
    return w, h


def try_fallback(
    image_bgr: np.ndarray,
    base: RotatedRect,
    p: Params,
    cascade: GridValidationCascade,
    scale: float = 1.0,
):
    """
    Validate the un-rotated base rectangle directly.

    Returns (quad, check, square) on acceptance, else None.
    """
    quad = scale_quad(rect_quad(base), scale)
    square = warp_to_square(image_bgr, quad, p.warp_size, p.roi_pad_frac)
    check = cascade.evaluate(square, p)
    if not check.accepted(p):
        logger.debug("fallback also failed (hue=%.2f, line=%s)", check.hue_score, check.line_ok)
        return None
    return quad, check, square


def detect(
    image_bgr: np.ndarray,
    params: Optional[Params] = None,
    collect_artifacts: bool = False,
    cascade: Optional[GridValidationCascade] = None,
) -> DetectOutput:
    """
    Locate a 3x3 colored grid marker and report how much of the image it covers.

    Never raises for image content: every negative outcome (empty input, empty
    mask, no component, nothing validated) is returned as ``found=False``.
    When ``collect_artifacts`` is set, intermediate images are attached to the
    result under ``artifacts`` for the caller to show or persist.
    """
    p = params or Params()
    cascade = cascade or GridValidationCascade()

    bgr = ensure_bgr(image_bgr)
    if bgr is None:
        logger.debug("empty or unsupported image")
        return DetectOutput()

    work, scale = maybe_resize(bgr, p.work_max_side)
    if scale != 1.0:
        logger.debug("working at %dx%d (scale=%.3f)", work.shape[1], work.shape[0], scale)

    # (1) adaptive color mask
    mask, th = build_color_mask(work, p)
    thresholds = dict(s_min=th.s_min, v_min=th.v_min, v_max=th.v_max)
    artifacts: Dict[str, np.ndarray] = {"mask": mask} if collect_artifacts else {}

    # (2) best connected component
    comp = select_component(mask, p)
    if comp is None:
        return DetectOutput(artifacts=artifacts, **thresholds)

    # (3) base orientation
    base = base_orientation(comp.mask, p)
    if base is None:
        return DetectOutput(artifacts=artifacts, **thresholds)

    # (4) angle sweep
    sweep = AngleSweepOptimizer(bgr, comp.mask, base, p, cascade=cascade, scale=scale).run()
    best = sweep.best
    work_size = _size(work)

    if best is not None:
        quad = scale_quad(rect_quad(best.rect), scale)
        pct = percent_of(best.area, work_size)
        out = dict(
            best_angle_deg=best.angle,
            occupancy=best.occupancy,
            hue_score=best.hue_score,
            line_ok=best.line_ok,
            validator=best.validator,
            used_fallback=False,
        )
        square = None
    else:
        # (5) fallback on the un-rotated base rectangle
        logger.debug("no angle passed validation; trying direct warp of base rect")
        fb = try_fallback(bgr, base, p, cascade, scale)
        if fb is None:
            return DetectOutput(artifacts=artifacts, **thresholds)
        quad, check, square = fb
        (_, _), (bw, bh), _ = base
        pct = percent_of(bw * bh, work_size)
        out = dict(
            best_angle_deg=float(base[2]),
            occupancy=1.0,
            hue_score=check.hue_score,
            line_ok=True,
            validator=check.validator,
            used_fallback=True,
        )

    if collect_artifacts:
        if square is None:
            square = warp_to_square(bgr, quad, p.warp_size, p.roi_pad_frac)
        artifacts.update(build_artifacts(bgr, quad, pct, square))

    logger.debug("found: %d%% angle=%.1f fallback=%s", pct, out["best_angle_deg"], out["used_fallback"])
    return DetectOutput(
        found=True,
        quad=quad,
        coverage_percent=pct,
        artifacts=artifacts,
        **out,
        **thresholds,
    )
