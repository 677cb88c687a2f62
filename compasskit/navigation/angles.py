from __future__ import annotations

import math

CARDINALS = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")


def normalize_heading(deg: float) -> float:
    """Reduce any angle in degrees into [0, 360)."""
    out = (deg % 360.0 + 360.0) % 360.0
    # -1e-17 % 360 rounds up to 360.0
    return 0.0 if out >= 360.0 else out


def shortest_angle_difference(a: float, b: float) -> float:
    """Signed minimal rotation from b to a, in [-180, 180)."""
    diff = math.fmod(a - b + 180.0, 360.0) - 180.0
    if diff < -180.0:
        diff += 360.0
    return diff


def heading_to_cardinal(deg: float) -> str:
    idx = int((normalize_heading(deg) + 22.5) // 45) % 8
    return CARDINALS[idx]


def format_heading(deg: float) -> str:
    """Integer-degree readout, e.g. '45°'. 359.6 reads as '0°'."""
    return f"{int(math.floor(normalize_heading(deg) + 0.5)) % 360}°"
