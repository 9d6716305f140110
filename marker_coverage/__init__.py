"""Top-level package interface for marker_coverage.

Expose the main API: detect, the result/parameter types and the
validation cascade.
"""
from .config import Params, load_params
from .core import detect
from .coverage import coverage_percent
from .types import DetectOutput
from .validators import GridValidationCascade  # re-export

__all__ = [
    "detect",
    "DetectOutput",
    "Params",
    "load_params",
    "coverage_percent",
    "GridValidationCascade",
]
