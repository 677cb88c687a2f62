from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from compasskit.core.logging import get_logger
from compasskit.navigation.angles import normalize_heading, shortest_angle_difference

logger = get_logger("stabilizer")


@dataclass(frozen=True)
class DisplayUpdate:
    display_heading: float
    rotation_target: float


@dataclass
class StabilizerState:
    """Session-scoped filter state.

    smoothed_heading and last_emitted_heading stay in [0, 360);
    continuous_rotation is never range-reduced.
    """

    smoothed_heading: float = 0.0
    last_emitted_heading: Optional[float] = None
    continuous_rotation: float = 0.0
    delta_reference: Optional[float] = None
    initialized: bool = False
    self_heals: int = 0


class HeadingStabilizer:
    """Low-pass filter on circular headings with throttled display updates.

    The rotation target accumulates shortest-path steps between emitted
    headings, so a needle animated towards it never swings the long way round
    when the heading crosses north.
    """

    def __init__(self, alpha: float = 0.15, emit_threshold_deg: float = 0.5) -> None:
        if not 0.0 < alpha <= 1.0:
            raise ValueError("alpha must be in (0, 1]")
        if emit_threshold_deg < 0.0:
            raise ValueError("emit_threshold_deg must be >= 0")
        self.alpha = float(alpha)
        self.emit_threshold_deg = float(emit_threshold_deg)
        self.state = StabilizerState()

    def reset(self) -> None:
        self.state = StabilizerState()

    def update(self, raw: float) -> Optional[DisplayUpdate]:
        s = self.state
        heading = normalize_heading(raw)

        if not s.initialized:
            s.smoothed_heading = heading
            s.delta_reference = heading
            s.last_emitted_heading = heading
            s.continuous_rotation = -heading
            s.initialized = True
            return DisplayUpdate(display_heading=heading, rotation_target=s.continuous_rotation)

        diff = shortest_angle_difference(heading, s.smoothed_heading)
        s.smoothed_heading = normalize_heading(s.smoothed_heading + self.alpha * diff)

        if s.last_emitted_heading is not None:
            moved = abs(shortest_angle_difference(s.smoothed_heading, s.last_emitted_heading))
            if moved < self.emit_threshold_deg:
                return None

        if s.delta_reference is None:
            logger.warning("self_heal | delta reference missing, reseeding rotation at %.2f", s.smoothed_heading)
            s.continuous_rotation = -s.smoothed_heading
            s.self_heals += 1
        else:
            s.continuous_rotation -= shortest_angle_difference(s.smoothed_heading, s.delta_reference)

        s.delta_reference = s.smoothed_heading
        s.last_emitted_heading = s.smoothed_heading
        return DisplayUpdate(display_heading=s.smoothed_heading, rotation_target=s.continuous_rotation)
