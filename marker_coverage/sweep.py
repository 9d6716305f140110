"""
Angle search for the tightest, best-occupied, most marker-like rectangle.

A coarse pass sweeps around the base angle; a fine pass around the coarse
winner runs only when the coarse pass did not already find a strong result.
The strength check runs on the merged pass result, never mid-pass.
Angles in one pass are split into contiguous chunks, one per worker thread.
Each worker keeps its own best and the locals are merged by score afterwards,
so nothing mutable is shared except the stop event.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
import logging
import os
import threading
import numpy as np
import cv2

from .config import Params
from .geometry import rect_quad, rotate_and_tighten, scale_quad, warp_to_square
from .types import Candidate, RotatedRect
from .validators import GridValidationCascade

logger = logging.getLogger(__name__)

Evaluated = Tuple[float, Optional[float]]  # (angle, score) - score None when rejected


@dataclass
class SweepResult:
    best: Optional[Candidate] = None
    evaluated: List[Evaluated] = field(default_factory=list)
    early_stopped: bool = False
    passes: int = 0


def composite_score(occupancy: float, hue: float) -> float:
    return occupancy * (0.5 + 0.5 * hue)


def is_strong(c: Optional[Candidate], p: Params) -> bool:
    return (c is not None and c.line_ok and
            c.occupancy > p.early_stop_occupancy and c.hue_score > p.early_stop_hue)


def pass_angles(center: float, step: int, span: int) -> List[float]:
    # grid anchored on center so the center angle itself is always tried
    n = span // step
    return [float(center + k * step) for k in range(-n, n + 1)]


def worker_count(p: Params, n_tasks: int) -> int:
    cap = p.max_workers if p.max_workers > 0 else (os.cpu_count() or 1)
    return max(1, min(cap, n_tasks))


def chunk(items: Sequence[float], n: int) -> List[List[float]]:
    # contiguous, order-preserving split (like a static schedule)
    k, r = divmod(len(items), n)
    out, start = [], 0
    for i in range(n):
        end = start + k + (1 if i < r else 0)
        out.append(list(items[start:end]))
        start = end
    return [c for c in out if c]


class AngleSweepOptimizer:
    def __init__(
        self,
        image_bgr: np.ndarray,
        comp_mask: np.ndarray,
        base: RotatedRect,
        params: Params,
        cascade: Optional[GridValidationCascade] = None,
        scale: float = 1.0,
    ):
        # image_bgr is full resolution; comp_mask / base live in working coords
        self.image = image_bgr
        self.mask = comp_mask
        self.base = base
        self.p = params
        self.cascade = cascade or GridValidationCascade()
        self.scale = scale
        # cooperative cancel: chunks skip their remaining angles once set
        self.stop = threading.Event()

    def cancel(self) -> None:
        self.stop.set()

    # ---- one angle
    def evaluate(self, angle: float) -> Optional[Candidate]:
        p = self.p
        tightened = rotate_and_tighten(self.mask, self.base, angle)
        if tightened is None:
            return None
        rect, occ = tightened
        (_, _), (w, h), _ = rect
        if w <= 0 or h <= 0:
            return None
        ar = max(w, h) / max(1.0, min(w, h))
        if occ < p.min_occupancy or ar > p.max_aspect:
            return None

        quad = scale_quad(rect_quad(rect), self.scale)
        square = warp_to_square(self.image, quad, p.warp_size, p.roi_pad_frac)
        check = self.cascade.evaluate(square, p)
        if not check.accepted(p):
            return None

        return Candidate(
            angle=float(angle),
            rect=rect,
            occupancy=occ,
            hue_score=check.hue_score,
            line_ok=check.line_ok,
            validator=check.validator,
            score=composite_score(occ, check.hue_score),
        )

    # ---- one pass
    def _run_chunk(self, angles: List[float], stop: threading.Event) -> Tuple[Optional[Candidate], List[Evaluated]]:
        local: Optional[Candidate] = None
        seen: List[Evaluated] = []
        for ang in angles:
            if stop.is_set():
                break
            try:
                cand = self.evaluate(ang)
            except cv2.error as e:
                logger.debug("angle %.1f failed: %s", ang, e)
                cand = None
            seen.append((ang, cand.score if cand is not None else None))
            if cand is not None and (local is None or cand.score > local.score):
                local = cand
        return local, seen

    def run_pass(self, center: float, step: int, span: int, stop: threading.Event,
                 current: Optional[Candidate] = None) -> Tuple[Optional[Candidate], List[Evaluated]]:
        angles = pass_angles(center, step, span)
        chunks = chunk(angles, worker_count(self.p, len(angles)))

        if len(chunks) == 1:
            results = [self._run_chunk(chunks[0], stop)]
        else:
            with ThreadPoolExecutor(max_workers=len(chunks), thread_name_prefix="angle_sweep") as ex:
                futures = [ex.submit(self._run_chunk, c, stop) for c in chunks]
                results = [f.result() for f in futures]

        best = current
        evaluated: List[Evaluated] = []
        for local, seen in results:
            evaluated.extend(seen)
            if local is not None and (best is None or local.score > best.score):
                best = local
        return best, evaluated

    def run(self) -> SweepResult:
        p = self.p
        base_angle = float(self.base[2])
        stop = self.stop
        result = SweepResult()

        best, seen = self.run_pass(base_angle, p.coarse_step_deg, p.coarse_range_deg, stop)
        result.evaluated.extend(seen)
        result.passes = 1
        logger.debug("coarse pass: %s", _describe(best))

        if is_strong(best, p):
            # checked between passes only: a tilted square still fills most of its crop
            result.early_stopped = True
            logger.debug("early stop after coarse pass")
        else:
            center = best.angle if best is not None else base_angle
            best, seen = self.run_pass(center, p.fine_step_deg, p.fine_range_deg, stop, current=best)
            result.evaluated.extend(seen)
            result.passes = 2
            logger.debug("fine pass around %.1f: %s", center, _describe(best))

        result.best = best
        return result


def _describe(c: Optional[Candidate]) -> str:
    if c is None:
        return "no candidate"
    return (f"angle={c.angle:.1f} occ={c.occupancy:.3f} hue={c.hue_score:.2f} "
            f"score={c.score:.3f} via {c.validator}")
