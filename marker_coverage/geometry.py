from dataclasses import dataclass
from typing import List, Optional, Tuple
import logging
import numpy as np
import cv2

from .config import Params
from .types import RotatedRect

logger = logging.getLogger(__name__)


@dataclass
class Component:
    mask: np.ndarray                      # 0/255, full mask size
    bbox: Tuple[int, int, int, int]       # x, y, w, h
    area: int
    frac: float                           # area / image area


def find_contours(mask: np.ndarray) -> List[np.ndarray]:
    contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    return list(contours)


def largest_contour(mask: np.ndarray) -> Optional[np.ndarray]:
    cnts = find_contours(mask)
    if not cnts:
        return None
    # first one wins on equal area
    best, best_a = cnts[0], abs(cv2.contourArea(cnts[0]))
    for c in cnts[1:]:
        a = abs(cv2.contourArea(c))
        if a > best_a:
            best, best_a = c, a
    return best


def select_component(mask: np.ndarray, p: Params) -> Optional[Component]:
    """
    Pick the 8-connected blob with the best area x compactness score.

    Elongated blobs are down-weighted by 1 / aspect ratio of their bounding box.
    Returns None when nothing passes the pixel floor or the selection's share of
    the image falls outside [min_comp_frac, max_comp_frac].
    """
    num, labels, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=8)
    if num <= 1:
        logger.debug("no components in mask")
        return None

    best, best_score = -1, -1.0
    for i in range(1, num):
        area = int(stats[i, cv2.CC_STAT_AREA])
        if area < p.min_component_area:
            continue
        w = int(stats[i, cv2.CC_STAT_WIDTH])
        h = int(stats[i, cv2.CC_STAT_HEIGHT])
        ar = max(w, h) / float(max(1, min(w, h)))
        score = area * (1.0 / ar)
        if score > best_score:
            best, best_score = i, score
    if best < 0:
        logger.debug("no component above %d px", p.min_component_area)
        return None

    area = int(stats[best, cv2.CC_STAT_AREA])
    frac = area / float(max(1, mask.size))
    logger.debug("component frac=%.5f (min=%g, max=%g)", frac, p.min_comp_frac, p.max_comp_frac)
    if frac < p.min_comp_frac or frac > p.max_comp_frac:
        logger.debug("component frac out of range: %.5f", frac)
        return None

    bbox = (
        int(stats[best, cv2.CC_STAT_LEFT]),
        int(stats[best, cv2.CC_STAT_TOP]),
        int(stats[best, cv2.CC_STAT_WIDTH]),
        int(stats[best, cv2.CC_STAT_HEIGHT]),
    )
    comp = np.where(labels == best, 255, 0).astype(np.uint8)
    return Component(mask=comp, bbox=bbox, area=area, frac=frac)


def base_orientation(comp_mask: np.ndarray, p: Params) -> Optional[RotatedRect]:
    cnt = largest_contour(comp_mask)
    if cnt is None:
        return None
    rr = cv2.minAreaRect(cnt)
    (_, _), (w, h), _ = rr
    frac = (w * h) / float(max(1, comp_mask.size))
    logger.debug("base rect angle=%.2f frac=%.4f (max_quad_area_frac=%g)", rr[2], frac, p.max_quad_area_frac)
    if frac > p.max_quad_area_frac:
        logger.debug("base rect very large; continuing with scan anyway")
    return rr


def order_quad(pts: np.ndarray) -> np.ndarray:
    """TL = min(x+y), BR = max(x+y), TR = max(x-y), BL = min(x-y)."""
    p = np.asarray(pts, dtype=np.float32).reshape(4, 2)
    s = p.sum(axis=1)
    d = p[:, 0] - p[:, 1]
    tl = p[np.argmin(s)]
    br = p[np.argmax(s)]
    tr = p[np.argmax(d)]
    bl = p[np.argmin(d)]
    return np.array([tl, tr, br, bl], dtype=np.float32)


def rect_quad(rect: RotatedRect) -> np.ndarray:
    return order_quad(cv2.boxPoints(rect))


def polygon_area(pts: np.ndarray) -> float:
    q = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
    x, y = q[:, 0], q[:, 1]
    return 0.5 * abs(float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))))


def rotate_and_tighten(
    comp_mask: np.ndarray,
    base: RotatedRect,
    angle_deg: float,
) -> Optional[Tuple[RotatedRect, float]]:
    """
    Rotate the blob by angle_deg about the base center, crop the base extent,
    and re-fit an axis-aligned box to the biggest contour inside the crop.

    Returns (rect, occupancy) with rect expressed back in the un-rotated frame
    at angle_deg, or None for an empty crop.
    """
    (cx, cy), (bw, bh), _ = base
    H, W = comp_mask.shape[:2]
    M = cv2.getRotationMatrix2D((float(cx), float(cy)), float(angle_deg), 1.0)
    rot = cv2.warpAffine(comp_mask, M, (W, H), flags=cv2.INTER_NEAREST,
                         borderMode=cv2.BORDER_CONSTANT, borderValue=0)

    rw = max(1, int(round(bw)))
    rh = max(1, int(round(bh)))
    x0 = int(np.clip(int(round(cx - rw / 2.0)), 0, W - 1))
    y0 = int(np.clip(int(round(cy - rh / 2.0)), 0, H - 1))
    x1 = int(np.clip(x0 + rw, 0, W))
    y1 = int(np.clip(y0 + rh, 0, H))
    roi = rot[y0:y1, x0:x1]
    if roi.size == 0:
        return None

    cnt = largest_contour(roi.copy())
    if cnt is None:
        return None
    tx, ty, tw, th = cv2.boundingRect(cnt)
    occupancy = float(np.count_nonzero(roi)) / float(max(1, roi.size))

    Minv = cv2.invertAffineTransform(M)
    center = np.array([x0 + tx + tw / 2.0, y0 + ty + th / 2.0, 1.0])
    bx, by = Minv @ center
    return ((float(bx), float(by)), (float(tw), float(th)), float(angle_deg)), occupancy


def padded_roi(quad: np.ndarray, shape: Tuple[int, ...], pad_frac: float) -> Tuple[int, int, int, int]:
    H, W = shape[:2]
    x, y, w, h = cv2.boundingRect(np.asarray(quad, dtype=np.float32).reshape(-1, 1, 2))
    pad = max(2, int(round(pad_frac * max(w, h))))
    x0 = max(0, x - pad)
    y0 = max(0, y - pad)
    x1 = min(W, x + w + pad)
    y1 = min(H, y + h + pad)
    return x0, y0, max(0, x1 - x0), max(0, y1 - y0)


def warp_to_square(image: np.ndarray, quad: np.ndarray, size: int, pad_frac: float = 0.10) -> np.ndarray:
    """
    Perspective-warp the TL, TR, BR, BL quad to a size x size square.

    Only a padded region around the quad is sampled. Degenerate quads (zero
    area, or entirely off-image) give an all-black square instead of failing.
    """
    out_shape = (size, size) + image.shape[2:]
    q = np.asarray(quad, dtype=np.float32).reshape(4, 2)
    if not np.isfinite(q).all() or polygon_area(q) < 1.0:
        return np.zeros(out_shape, dtype=image.dtype)

    x0, y0, rw, rh = padded_roi(q, image.shape, pad_frac)
    if rw <= 0 or rh <= 0:
        return np.zeros(out_shape, dtype=image.dtype)

    roi = image[y0:y0 + rh, x0:x0 + rw]
    src = (q - np.array([x0, y0], dtype=np.float32)).astype(np.float32)
    s = float(size - 1)
    dst = np.array([[0, 0], [s, 0], [s, s], [0, s]], dtype=np.float32)
    Hm = cv2.getPerspectiveTransform(src, dst)
    return cv2.warpPerspective(roi, Hm, (size, size))


def scale_quad(quad: np.ndarray, scale: float) -> np.ndarray:
    """Map a quad from a resized working image back to the original (scale = work / full)."""
    if scale == 1.0:
        return np.asarray(quad, dtype=np.float32).copy()
    return (np.asarray(quad, dtype=np.float32) / float(scale)).astype(np.float32)
