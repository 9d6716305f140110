from dataclasses import asdict, dataclass
from typing import Iterable, Iterator, List, Optional, Tuple
import csv
import logging
import os
import time
import cv2

from .config import Params
from .core import detect
from .types import NOT_FOUND, DetectOutput
from .visualize import save_artifacts

logger = logging.getLogger(__name__)

IMAGE_EXTS = (".png", ".jpg", ".jpeg")


@dataclass
class ReportRow:
    path: str
    found: int = 0
    coverage_percent: int = NOT_FOUND
    angle_deg: float = 0.0
    occupancy: float = 0.0
    hue_score: float = 0.0
    line_ok: int = 0
    validator: str = ""
    used_fallback: int = 0
    elapsed_ms: float = 0.0
    s_min: int = 0
    v_min: int = 0
    v_max: int = 0
    mask_path: str = ""
    quad_path: str = ""
    warp_path: str = ""
    crop_path: str = ""
    clip_path: str = ""
    error: str = ""

    def summary(self) -> str:
        if self.error:
            return f"{self.path} failed: {self.error}"
        if not self.found:
            return f"{self.path} no marker found"
        return f"{self.path} {self.coverage_percent}%"


REPORT_COLUMNS = list(ReportRow.__dataclass_fields__.keys())


def collect_images(path: str) -> List[str]:
    """A single file as-is, or every .png/.jpg/.jpeg under a directory (recursive, sorted)."""
    if os.path.isfile(path):
        return [path]
    if not os.path.isdir(path):
        raise FileNotFoundError(f"No such file or directory: {path}")
    out = []
    for root, _, files in os.walk(path):
        for name in files:
            if os.path.splitext(name)[1].lower() in IMAGE_EXTS:
                out.append(os.path.join(root, name))
    return sorted(out)


def row_from_output(path: str, out: DetectOutput, elapsed_ms: float) -> ReportRow:
    return ReportRow(
        path=path,
        found=int(out.found),
        coverage_percent=int(out.coverage_percent),
        angle_deg=round(float(out.best_angle_deg), 2),
        occupancy=round(float(out.occupancy), 4),
        hue_score=round(float(out.hue_score), 4),
        line_ok=int(out.line_ok),
        validator=out.validator or "",
        used_fallback=int(out.used_fallback),
        elapsed_ms=round(elapsed_ms, 1),
        s_min=int(out.s_min),
        v_min=int(out.v_min),
        v_max=int(out.v_max),
    )


def detect_file(
    path: str,
    params: Params,
    collect_artifacts: bool = False,
) -> Tuple[ReportRow, Optional[DetectOutput]]:
    """Read and detect one file; unreadable files become a found=0 row with an error."""
    img = cv2.imread(path, cv2.IMREAD_COLOR)
    if img is None:
        logger.warning("cannot read image: %s", path)
        return ReportRow(path=path, error="unreadable image"), None

    t0 = time.perf_counter()
    out = detect(img, params, collect_artifacts=collect_artifacts)
    return row_from_output(path, out, (time.perf_counter() - t0) * 1000.0), out


def attach_artifacts(row: ReportRow, out: DetectOutput, out_dir: Optional[str] = None) -> None:
    if not out.artifacts:
        return
    stem = os.path.splitext(os.path.basename(row.path))[0]
    base = os.path.join(out_dir, stem) if out_dir else os.path.splitext(row.path)[0]
    try:
        paths = save_artifacts(out.artifacts, base)
    except RuntimeError as e:
        logger.warning("%s", e)
        return
    for key, p in paths.items():
        setattr(row, f"{key}_path", p)


def process_image(
    path: str,
    params: Params,
    save_debug: bool = False,
    out_dir: Optional[str] = None,
    keep_artifacts: bool = False,
) -> Tuple[ReportRow, Optional[DetectOutput]]:
    """
    Detect one file and fill its report row.

    With save_debug the artifacts are written next to the input (or into
    out_dir) and their paths recorded on the row. keep_artifacts only keeps
    them on the returned output, for display.
    """
    row, out = detect_file(path, params, collect_artifacts=save_debug or keep_artifacts)
    if save_debug and out is not None:
        attach_artifacts(row, out, out_dir)
    return row, out


def process_images(
    paths: Iterable[str],
    params: Optional[Params] = None,
    save_debug: bool = False,
    out_dir: Optional[str] = None,
) -> Iterator[ReportRow]:
    params = params or Params()
    for path in paths:
        row, _ = process_image(path, params, save_debug=save_debug, out_dir=out_dir)
        yield row


def write_report(rows: Iterable[ReportRow], csv_path: str) -> str:
    out_dir = os.path.dirname(csv_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    with open(csv_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=REPORT_COLUMNS)
        writer.writeheader()
        for r in rows:
            writer.writerow(asdict(r))
    return csv_path
