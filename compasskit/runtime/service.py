from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional

from compasskit.core.config import CompassSettings, load_settings
from compasskit.core.logging import init_logging, set_log_session
from compasskit.core.timeline import Timeline
from compasskit.navigation import (
    DisplayUpdate,
    HeadingStabilizer,
    SensorSample,
    SensorUnavailable,
    format_heading,
    heading_to_cardinal,
    make_extractor,
    select_variant,
)
from compasskit.navigation.extractor import ACCELEROMETER, MAGNETIC_FIELD, MATRIX, ROTATION_VECTOR

# Host accuracy levels
ACCURACY_UNRELIABLE = 0
ACCURACY_LOW = 1
ACCURACY_MEDIUM = 2
ACCURACY_HIGH = 3


@dataclass
class CompassStatus:
    running: bool = False
    session: int = 0
    variant: Optional[str] = None
    display_heading: Optional[float] = None
    heading_text: Optional[str] = None
    cardinal: Optional[str] = None
    rotation_target: Optional[float] = None
    accuracy: Optional[int] = None
    started_at: Optional[float] = None
    last_update_at: Optional[float] = None
    total_samples: int = 0
    total_updates: int = 0
    rejected_samples: int = 0


UpdateListener = Callable[[DisplayUpdate], None]


class CompassRuntime:
    """Owns one sensing session at a time and feeds samples through the pipeline.

    Samples are processed one at a time under a lock, so a host that delivers
    from several threads still sees serialized extract/update/emit steps and
    listeners receive updates in stabilizer order.
    """

    def __init__(self, settings: Optional[CompassSettings] = None) -> None:
        self.logger = init_logging(level=os.environ.get("LOG_LEVEL", "INFO"))
        self.settings = settings or load_settings()
        self.status = CompassStatus()
        self.timeline = Timeline(maxlen=self.settings.timeline_size)
        self._lock = threading.Lock()
        self._delivery_lock = threading.RLock()
        self._extractor = None
        self._stabilizer: Optional[HeadingStabilizer] = None
        self._listeners: List[UpdateListener] = []

    # Session lifecycle ---------------------------------------------------
    def start(self, available_sensors: Iterable[str]) -> str:
        """Begin a new session with full state reset; returns the chosen variant."""
        sensors = sorted({str(s) for s in available_sensors})
        with self._lock:
            if self.status.running:
                self.logger.info("Runtime restarting session %d", self.status.session)
            try:
                variant = select_variant(sensors, self.settings.sensor_variant)
            except SensorUnavailable as exc:
                self.status.running = False
                self._extractor = None
                self._stabilizer = None
                self.timeline.add(self.status.session, "session_failed", "sensors", sensors=sensors, error=str(exc))
                self.logger.error("session_failed | sensors=%s error=%s", sensors, exc)
                raise
            self._extractor = make_extractor(variant)
            self._stabilizer = HeadingStabilizer(
                alpha=self.settings.alpha,
                emit_threshold_deg=self.settings.emit_threshold_deg,
            )
            self.status = CompassStatus(
                running=True,
                session=self.status.session + 1,
                variant=variant,
                started_at=time.time(),
            )
            set_log_session(self.status.session)
            self.timeline.add(self.status.session, "session_start", variant, sensors=sensors)
            self.logger.info(
                "session_start | session=%d variant=%s alpha=%.3f threshold=%.2f",
                self.status.session,
                variant,
                self.settings.alpha,
                self.settings.emit_threshold_deg,
            )
            return variant

    def stop(self) -> None:
        with self._lock:
            if not self.status.running:
                return
            self.status.running = False
            self._extractor = None
            self._stabilizer = None
            self.timeline.add(
                self.status.session,
                "session_stop",
                self.status.variant or "",
                updates=self.status.total_updates,
                rejected=self.status.rejected_samples,
            )
            self.logger.info(
                "session_stop | session=%d samples=%d updates=%d rejected=%d",
                self.status.session,
                self.status.total_samples,
                self.status.total_updates,
                self.status.rejected_samples,
            )
            set_log_session(None)

    # Sample handling -----------------------------------------------------
    def handle_sample(self, sensor: str, values: Iterable[float]) -> Optional[DisplayUpdate]:
        sample = SensorSample.of(sensor, values)
        # held from stabilizer update through listener delivery, so renderers
        # see updates in the order the stabilizer produced them
        with self._delivery_lock:
            with self._lock:
                if not self.status.running or self._extractor is None or self._stabilizer is None:
                    return None
                if not self._accepts(sample.sensor):
                    return None
                self.status.total_samples += 1
                raw, reason = self._extractor.inspect(sample)
                if raw is None:
                    if reason is not None:
                        self.status.rejected_samples += 1
                    return None
                heals_before = self._stabilizer.state.self_heals
                update = self._stabilizer.update(raw)
                if self._stabilizer.state.self_heals != heals_before:
                    self.timeline.add(self.status.session, "self_heal", "rotation", heading=self._stabilizer.state.smoothed_heading)
                if update is None:
                    return None
                self._publish(update)
                listeners = list(self._listeners)
            for listener in listeners:
                try:
                    listener(update)
                except Exception:
                    self.logger.exception("update listener failed")
        return update

    def _accepts(self, sensor: str) -> bool:
        if self.status.variant == MATRIX:
            return sensor == ROTATION_VECTOR
        return sensor in (ACCELEROMETER, MAGNETIC_FIELD)

    def _publish(self, update: DisplayUpdate) -> None:
        self.status.display_heading = update.display_heading
        self.status.heading_text = format_heading(update.display_heading)
        self.status.cardinal = heading_to_cardinal(update.display_heading)
        self.status.rotation_target = update.rotation_target
        self.status.last_update_at = time.time()
        self.status.total_updates += 1

    def on_accuracy_changed(self, sensor: str, accuracy: int) -> None:
        with self._lock:
            self.status.accuracy = int(accuracy)
            session = self.status.session
        if accuracy in (ACCURACY_LOW, ACCURACY_UNRELIABLE):
            self.logger.warning("accuracy_low | sensor=%s accuracy=%s", sensor, accuracy)
            self.timeline.add(
                session,
                "accuracy_low",
                sensor,
                accuracy=int(accuracy),
                notes="low compass accuracy, calibrate with a figure-eight motion",
            )
        else:
            self.logger.info("accuracy | sensor=%s accuracy=%s", sensor, accuracy)

    # Renderer side -------------------------------------------------------
    def subscribe(self, listener: UpdateListener) -> Callable[[], None]:
        """Register a renderer callback; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def snapshot(self) -> CompassStatus:
        with self._lock:
            return replace(self.status)

    def get_timeline(self, n: int = 50) -> List[Dict[str, Any]]:
        return self.timeline.last(n)
