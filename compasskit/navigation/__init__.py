"""Heading extraction and stabilization."""

from .angles import format_heading, heading_to_cardinal, normalize_heading, shortest_angle_difference
from .extractor import (
    DualVectorHeadingExtractor,
    MatrixHeadingExtractor,
    SensorSample,
    SensorUnavailable,
    make_extractor,
    select_variant,
)
from .stabilizer import DisplayUpdate, HeadingStabilizer, StabilizerState

__all__ = [
    "DisplayUpdate",
    "DualVectorHeadingExtractor",
    "HeadingStabilizer",
    "MatrixHeadingExtractor",
    "SensorSample",
    "SensorUnavailable",
    "StabilizerState",
    "format_heading",
    "heading_to_cardinal",
    "make_extractor",
    "normalize_heading",
    "select_variant",
    "shortest_angle_difference",
]
