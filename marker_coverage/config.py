from dataclasses import dataclass, fields
from typing import Any, Dict, List, Mapping, Tuple
import json

# OpenCV hue intervals (0..180) OR-combined into the marker mask.
# Saturation / value bounds are not fixed here: they come from the image itself.
HUE_BANDS: Dict[str, List[Tuple[int, int]]] = {
    "red": [(0, 10), (170, 180)],   # wraps around 0
    "yellow": [(20, 35)],
    "green": [(40, 85)],
    "cyan": [(86, 100)],
    "blue": [(101, 130)],
    "magenta": [(131, 169)],
}

# expected number of distinct colors on a 3x3 marker
MARKER_COLORS = 9


@dataclass(frozen=True)
class Params:
    # adaptive HSV clamps (derived from percentiles)
    s_min_floor: int = 35
    s_min_ceil: int = 80
    v_min_floor: int = 40
    v_min_ceil: int = 90
    v_max_floor: int = 180
    v_max_ceil: int = 255
    s_percentile: float = 85.0
    s_offset: int = 10
    v_min_percentile: float = 60.0
    v_max_percentile: float = 99.0

    # morphology kernel ~ min(H, W) / div
    close_div: int = 55
    open_div: int = 110

    # component gating
    min_component_area: int = 100
    min_comp_frac: float = 0.0002
    max_comp_frac: float = 0.95

    # angle scan
    coarse_step_deg: int = 2
    coarse_range_deg: int = 25
    fine_step_deg: int = 1
    fine_range_deg: int = 6
    early_stop_occupancy: float = 0.78
    early_stop_hue: float = 0.85
    max_workers: int = 0  # 0 -> os.cpu_count()

    # tightened box validity
    min_occupancy: float = 0.30
    max_aspect: float = 3.00

    # canonical warp
    warp_size: int = 360
    roi_pad_frac: float = 0.10

    # grid verification
    min_hue_score: float = 0.25
    min_line_peak: float = 0.12
    min_peak_sep: float = 0.12
    thirds_tol: float = 0.15

    hue_bins: int = 18
    hue_sat_floor: int = 40
    hue_density: float = 0.002

    glare_band_frac: float = 0.10
    glare_cut_frac: float = 0.12
    glare_brightness_ratio: float = 1.15
    glare_max_sat: float = 60.0

    small_mode_side: int = 60
    small_mode_cap: float = 0.12

    cluster_k: int = 6
    cluster_stride: int = 6
    cluster_stride_small: int = 8
    cluster_seed: int = 12345

    template_thickness: int = 2
    template_corr_min: float = 0.25

    # very large rectangles are only logged, never rejected
    max_quad_area_frac: float = 0.99

    # 0 = work at full resolution
    work_max_side: int = 0

    def __post_init__(self):
        if self.coarse_step_deg <= 0 or self.fine_step_deg <= 0:
            raise ValueError("angle steps must be positive")
        if self.coarse_range_deg < 0 or self.fine_range_deg < 0:
            raise ValueError("angle ranges must be non-negative")
        if self.warp_size < 16:
            raise ValueError(f"warp_size too small: {self.warp_size}")
        if self.close_div <= 0 or self.open_div <= 0:
            raise ValueError("morphology divisors must be positive")
        for lo, hi in (
            ("s_min_floor", "s_min_ceil"),
            ("v_min_floor", "v_min_ceil"),
            ("v_max_floor", "v_max_ceil"),
            ("min_comp_frac", "max_comp_frac"),
        ):
            if getattr(self, lo) > getattr(self, hi):
                raise ValueError(f"{lo} must not exceed {hi}")
        if self.cluster_k < 2:
            raise ValueError("cluster_k must be >= 2")
        if self.hue_bins <= 0:
            raise ValueError("hue_bins must be positive")

    @classmethod
    def from_dict(cls, overrides: Mapping[str, Any]) -> "Params":
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(overrides) - set(known))
        if unknown:
            raise ValueError(f"Unknown parameter(s): {', '.join(unknown)}")
        # keep int fields int when JSON hands us 2.0 etc.
        kwargs = {}
        for k, v in overrides.items():
            default = known[k].default
            kwargs[k] = int(v) if isinstance(default, int) else float(v)
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_params(path: str) -> Params:
    """Read a JSON object of overrides on top of the defaults."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {path}")
    return Params.from_dict(data)
