from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple
import numpy as np

# center (cx, cy), size (w, h), angle in degrees -- same layout as cv2.minAreaRect
RotatedRect = Tuple[Tuple[float, float], Tuple[float, float], float]

NOT_FOUND = -1


@dataclass
class Candidate:
    angle: float                  # degrees
    rect: RotatedRect             # tightened rectangle, working-image coords
    occupancy: float = 0.0        # 0..1
    hue_score: float = 0.0        # 0..1
    line_ok: bool = False
    validator: Optional[str] = None
    score: float = 0.0

    @property
    def area(self) -> float:
        (_, _), (w, h), _ = self.rect
        return float(w) * float(h)


@dataclass(frozen=True, eq=False)
class DetectOutput:
    found: bool = False
    # (4, 2) float32, TL, TR, BR, BL in image coordinates
    quad: Optional[np.ndarray] = None
    coverage_percent: int = NOT_FOUND

    best_angle_deg: float = 0.0
    occupancy: float = 0.0
    hue_score: float = 0.0
    line_ok: bool = False
    validator: Optional[str] = None
    used_fallback: bool = False

    # adaptive HSV thresholds
    s_min: int = 0
    v_min: int = 0
    v_max: int = 255

    # intermediate images, only filled when explicitly requested
    artifacts: Mapping[str, np.ndarray] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self):
        if self.quad is not None:
            q = np.asarray(self.quad, dtype=np.float32).reshape(4, 2).copy()
            q.setflags(write=False)
            object.__setattr__(self, "quad", q)
        if not isinstance(self.artifacts, MappingProxyType):
            object.__setattr__(self, "artifacts", MappingProxyType(dict(self.artifacts)))

    def quad_as_tuple(self) -> Optional[Tuple[Tuple[float, float], ...]]:
        if self.quad is None:
            return None
        return tuple((float(x), float(y)) for x, y in self.quad)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view (artifacts are left out)."""
        return {
            "found": bool(self.found),
            "quad": [list(p) for p in self.quad_as_tuple()] if self.quad is not None else None,
            "coverage_percent": int(self.coverage_percent),
            "best_angle_deg": float(self.best_angle_deg),
            "occupancy": float(self.occupancy),
            "hue_score": float(self.hue_score),
            "line_ok": bool(self.line_ok),
            "validator": self.validator,
            "used_fallback": bool(self.used_fallback),
            "s_min": int(self.s_min),
            "v_min": int(self.v_min),
            "v_max": int(self.v_max),
        }
