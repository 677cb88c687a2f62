from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from compasskit.core.logging import get_logger
from compasskit.navigation.angles import normalize_heading

logger = get_logger("extractor")

# Host sensor type names
ROTATION_VECTOR = "rotation_vector"
ACCELEROMETER = "accelerometer"
MAGNETIC_FIELD = "magnetic_field"

MATRIX = "matrix"
DUAL_VECTOR = "dual_vector"

STANDARD_GRAVITY = 9.80665
# Below 10% of g the device is treated as in free fall
FREE_FALL_GRAVITY_SQUARED = 0.01 * STANDARD_GRAVITY * STANDARD_GRAVITY
MIN_HORIZONTAL_NORM = 0.1


class SensorUnavailable(RuntimeError):
    """No usable orientation source at session start."""


@dataclass(frozen=True)
class SensorSample:
    sensor: str
    values: tuple

    @classmethod
    def of(cls, sensor: str, values: Iterable[float]) -> "SensorSample":
        return cls(sensor=str(sensor), values=tuple(float(v) for v in values))


def select_variant(available: Iterable[str], preferred: str = "auto") -> str:
    """Pick the orientation source once per session.

    Rotation vector is primary; accelerometer + magnetometer is the fallback.
    Raises SensorUnavailable when the chosen (or any) source is missing.
    """
    names = {str(s) for s in available}
    has_matrix = ROTATION_VECTOR in names
    has_dual = ACCELEROMETER in names and MAGNETIC_FIELD in names
    if preferred == MATRIX:
        if not has_matrix:
            raise SensorUnavailable("rotation vector sensor not available")
        return MATRIX
    if preferred == DUAL_VECTOR:
        if not has_dual:
            raise SensorUnavailable("accelerometer and/or magnetometer not available")
        return DUAL_VECTOR
    if has_matrix:
        return MATRIX
    if has_dual:
        return DUAL_VECTOR
    raise SensorUnavailable("required compass sensors are not available")


def rotation_matrix_from_vector(rotation_vector: Sequence[float]) -> np.ndarray:
    """3x3 rotation matrix from a unit quaternion given as (x, y, z[, w])."""
    q1, q2, q3 = (float(v) for v in rotation_vector[:3])
    if len(rotation_vector) >= 4:
        q0 = float(rotation_vector[3])
    else:
        q0 = 1.0 - q1 * q1 - q2 * q2 - q3 * q3
        q0 = math.sqrt(q0) if q0 > 0 else 0.0

    sq_q1 = 2 * q1 * q1
    sq_q2 = 2 * q2 * q2
    sq_q3 = 2 * q3 * q3
    q1_q2 = 2 * q1 * q2
    q3_q0 = 2 * q3 * q0
    q1_q3 = 2 * q1 * q3
    q2_q0 = 2 * q2 * q0
    q2_q3 = 2 * q2 * q3
    q1_q0 = 2 * q1 * q0

    return np.array(
        [
            [1 - sq_q2 - sq_q3, q1_q2 - q3_q0, q1_q3 + q2_q0],
            [q1_q2 + q3_q0, 1 - sq_q1 - sq_q3, q2_q3 - q1_q0],
            [q1_q3 - q2_q0, q2_q3 + q1_q0, 1 - sq_q1 - sq_q2],
        ],
        dtype=np.float64,
    )


def rotation_matrix_from_vectors(gravity: Sequence[float], geomagnetic: Sequence[float]) -> Optional[np.ndarray]:
    """Rotation matrix from gravity and geomagnetic field estimates.

    Rows are east, north and up expressed in device coordinates. Returns None
    when the vectors are (near) parallel or the device is in free fall.
    """
    a = np.asarray(gravity, dtype=np.float64)
    e = np.asarray(geomagnetic, dtype=np.float64)
    if a.shape != (3,) or e.shape != (3,):
        return None
    if not (np.all(np.isfinite(a)) and np.all(np.isfinite(e))):
        return None
    if float(a @ a) < FREE_FALL_GRAVITY_SQUARED:
        return None
    h = np.cross(e, a)
    norm_h = float(np.linalg.norm(h))
    if norm_h < MIN_HORIZONTAL_NORM:
        return None
    h = h / norm_h
    a = a / float(np.linalg.norm(a))
    m = np.cross(a, h)
    return np.vstack([h, m, a])


def heading_from_rotation_matrix(matrix) -> Optional[float]:
    """Azimuth of a 3x3 rotation matrix in degrees, normalized to [0, 360)."""
    r = np.asarray(matrix, dtype=np.float64)
    if r.size == 9:
        r = r.reshape(3, 3)
    if r.shape != (3, 3) or not np.all(np.isfinite(r)):
        return None
    if r[0, 1] == 0.0 and r[1, 1] == 0.0:
        # device pointing straight up/down, yaw undefined
        return None
    azimuth_rad = math.atan2(r[0, 1], r[1, 1])
    return normalize_heading(math.degrees(azimuth_rad))


class MatrixHeadingExtractor:
    """Heading from fused rotation-vector samples (or ready rotation matrices)."""

    variant = MATRIX

    def extract(self, sample: SensorSample) -> Optional[float]:
        return self.inspect(sample)[0]

    def inspect(self, sample: SensorSample) -> Tuple[Optional[float], Optional[str]]:
        """(heading, rejection reason); both None for samples of other sensors."""
        if sample.sensor != ROTATION_VECTOR:
            return None, None
        values = sample.values
        if len(values) == 9:
            return _matrix_heading(sample, values)
        if len(values) < 4:
            return _reject(sample, "size")
        if not all(math.isfinite(v) for v in values[:4]):
            return _reject(sample, "non_finite")
        return _matrix_heading(sample, rotation_matrix_from_vector(values))


class DualVectorHeadingExtractor:
    """Heading from separately delivered gravity and magnetic field samples.

    The latest vector of each kind is buffered; a heading is produced only when
    both are present, after which both are cleared.
    """

    variant = DUAL_VECTOR

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._gravity: Optional[tuple] = None
        self._geomagnetic: Optional[tuple] = None

    def extract(self, sample: SensorSample) -> Optional[float]:
        return self.inspect(sample)[0]

    def inspect(self, sample: SensorSample) -> Tuple[Optional[float], Optional[str]]:
        """(heading, rejection reason); both None while half of the pair is missing."""
        if sample.sensor not in (ACCELEROMETER, MAGNETIC_FIELD):
            return None, None
        if len(sample.values) < 3:
            return _reject(sample, "size")
        vec = tuple(sample.values[:3])
        with self._lock:
            if sample.sensor == ACCELEROMETER:
                self._gravity = vec
            else:
                self._geomagnetic = vec
            if self._gravity is None or self._geomagnetic is None:
                return None, None
            matrix = rotation_matrix_from_vectors(self._gravity, self._geomagnetic)
            if matrix is None:
                # keep the pair; the next sample of either kind replaces its half
                return _reject(sample, "degenerate")
            self._gravity = None
            self._geomagnetic = None
        return _matrix_heading(sample, matrix)

    def pending(self) -> dict:
        with self._lock:
            return {"gravity": self._gravity is not None, "geomagnetic": self._geomagnetic is not None}

    def reset(self) -> None:
        with self._lock:
            self._gravity = None
            self._geomagnetic = None


def _reject(sample: SensorSample, reason: str) -> Tuple[None, str]:
    logger.debug("sample_rejected | sensor=%s reason=%s values=%d", sample.sensor, reason, len(sample.values))
    return None, reason


def _matrix_heading(sample: SensorSample, matrix) -> Tuple[Optional[float], Optional[str]]:
    heading = heading_from_rotation_matrix(matrix)
    if heading is None:
        return _reject(sample, "yaw_undefined")
    return heading, None


def make_extractor(variant: str):
    if variant == MATRIX:
        return MatrixHeadingExtractor()
    if variant == DUAL_VECTOR:
        return DualVectorHeadingExtractor()
    raise ValueError(f"unknown sensor variant: {variant!r}")
