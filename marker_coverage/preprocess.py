from dataclasses import dataclass
from typing import List, Optional, Tuple
import logging
import cv2
import numpy as np

from .config import HUE_BANDS, Params

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HsvThresholds:
    s_min: int
    v_min: int
    v_max: int


def ensure_bgr(img: Optional[np.ndarray]) -> Optional[np.ndarray]:
    """Return a 3-channel uint8 BGR view of img, or None if it is unusable."""
    if img is None or not isinstance(img, np.ndarray) or img.size == 0:
        return None
    if img.dtype != np.uint8:
        return None
    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
    if img.ndim == 3 and img.shape[2] == 4:
        return cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)
    if img.ndim == 3 and img.shape[2] == 3:
        return img
    return None


def maybe_resize(img: np.ndarray, max_side: int) -> Tuple[np.ndarray, float]:
    h, w = img.shape[:2]
    scale = 1.0
    m = max(h, w)
    if max_side > 0 and m > max_side:
        scale = max_side / float(m)
        img = cv2.resize(img, (max(1, int(w * scale)), max(1, int(h * scale))), interpolation=cv2.INTER_AREA)
    return img, scale


def percentile_u8(ch: np.ndarray, pct: float) -> int:
    # first value whose cumulative count reaches pct% of the pixels
    hist = np.bincount(ch.ravel(), minlength=256)
    total = ch.size
    target = int(round(min(100.0, max(0.0, pct)) / 100.0 * total))
    cum = np.cumsum(hist)
    idx = int(np.searchsorted(cum, target, side="left"))
    return min(idx, 255)


def adaptive_thresholds(hsv: np.ndarray, p: Params) -> HsvThresholds:
    s = hsv[:, :, 1]
    v = hsv[:, :, 2]
    s_min = int(np.clip(percentile_u8(s, p.s_percentile) - p.s_offset, p.s_min_floor, p.s_min_ceil))
    v_min = int(np.clip(percentile_u8(v, p.v_min_percentile), p.v_min_floor, p.v_min_ceil))
    v_max = int(np.clip(percentile_u8(v, p.v_max_percentile), p.v_max_floor, p.v_max_ceil))
    return HsvThresholds(s_min=s_min, v_min=v_min, v_max=v_max)


def band_ranges(th: HsvThresholds) -> List[tuple]:
    ranges = []
    for bands in HUE_BANDS.values():
        for hmin, hmax in bands:
            ranges.append(((hmin, hmax), (th.s_min, 255), (th.v_min, th.v_max)))
    return ranges


def threshold_hsv(hsv: np.ndarray, ranges: List[tuple]) -> np.ndarray:
    mask_all = np.zeros(hsv.shape[:2], dtype=np.uint8)
    for (hmin, hmax), (smin, smax), (vmin, vmax) in ranges:
        lower = np.array([hmin, smin, vmin], dtype=np.uint8)
        upper = np.array([hmax, smax, vmax], dtype=np.uint8)
        mask = cv2.inRange(hsv, lower, upper)
        mask_all = cv2.bitwise_or(mask_all, mask)
    return mask_all


def kernel_size(min_side: int, div: int) -> int:
    return max(3, (min_side // div) | 1)


def morph_close_open(mask: np.ndarray, k_close: int, k_open: int) -> np.ndarray:
    kc = cv2.getStructuringElement(cv2.MORPH_RECT, (k_close, k_close))
    ko = cv2.getStructuringElement(cv2.MORPH_RECT, (k_open, k_open))
    mask = cv2.morphologyEx(mask, cv2.MORPH_CLOSE, kc, iterations=1)
    mask = cv2.morphologyEx(mask, cv2.MORPH_OPEN, ko, iterations=1)
    return mask


def build_color_mask(bgr: np.ndarray, p: Params) -> Tuple[np.ndarray, HsvThresholds]:
    """
    Binary "marker-colored" mask from the image's own S/V statistics.

    Saturation floor is the 85th percentile minus an offset, value bounds are
    the 60th / 99th percentiles, each clamped to the configured range. Seven
    hue bands share those bounds. The result is closed then opened with
    kernels that scale with the image's short side.
    """
    hsv = cv2.cvtColor(bgr, cv2.COLOR_BGR2HSV)
    th = adaptive_thresholds(hsv, p)
    mask = threshold_hsv(hsv, band_ranges(th))

    min_side = min(bgr.shape[:2])
    k_close = kernel_size(min_side, p.close_div)
    k_open = kernel_size(min_side, p.open_div)
    mask = morph_close_open(mask, k_close, k_open)
    logger.debug("HSV thresholds S>=%d V=[%d,%d], kernels close=%d open=%d",
                 th.s_min, th.v_min, th.v_max, k_close, k_open)
    return mask, th
