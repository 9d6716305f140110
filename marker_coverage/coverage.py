from typing import Tuple
import math
import numpy as np

from .geometry import polygon_area


def percent_of(area: float, image_size: Tuple[int, int]) -> int:
    """round(100 * area / (width * height)), half up, clamped to 0..100."""
    w, h = image_size
    total = float(w) * float(h)
    if total <= 0:
        return 0
    pct = 100.0 * float(area) / total
    return int(min(100, max(0, math.floor(pct + 0.5))))


def coverage_percent(quad: np.ndarray, image_size: Tuple[int, int]) -> int:
    """Share of the (width, height) image covered by the quad, in whole percent."""
    return percent_of(polygon_area(quad), image_size)
