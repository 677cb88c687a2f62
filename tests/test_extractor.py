import math
import threading
import unittest

import numpy as np

from compasskit.navigation.extractor import (
    ACCELEROMETER,
    DUAL_VECTOR,
    MAGNETIC_FIELD,
    MATRIX,
    ROTATION_VECTOR,
    DualVectorHeadingExtractor,
    MatrixHeadingExtractor,
    SensorSample,
    SensorUnavailable,
    heading_from_rotation_matrix,
    make_extractor,
    rotation_matrix_from_vector,
    rotation_matrix_from_vectors,
    select_variant,
)

GRAVITY_FLAT = (0.0, 0.0, 9.81)


def yaw_quaternion(heading_deg: float):
    """Rotation vector (x, y, z, w) for a flat device facing heading_deg."""
    half = math.radians(-heading_deg) / 2.0
    return (0.0, 0.0, math.sin(half), math.cos(half))


def field_for_heading(heading_deg: float, horizontal: float = 20.0, vertical: float = -40.0):
    """Geomagnetic vector seen by a flat device whose top points at heading_deg."""
    h = math.radians(heading_deg)
    return (-horizontal * math.sin(h), horizontal * math.cos(h), vertical)


class RotationMatrixTests(unittest.TestCase):
    def test_identity_quaternion(self) -> None:
        r = rotation_matrix_from_vector((0.0, 0.0, 0.0, 1.0))
        np.testing.assert_allclose(r, np.eye(3), atol=1e-12)
        self.assertAlmostEqual(heading_from_rotation_matrix(r), 0.0)

    def test_three_component_vector_derives_w(self) -> None:
        x, y, z, _ = yaw_quaternion(30.0)
        r3 = rotation_matrix_from_vector((x, y, z))
        r4 = rotation_matrix_from_vector(yaw_quaternion(30.0))
        np.testing.assert_allclose(r3, r4, atol=1e-12)

    def test_heading_from_yaw(self) -> None:
        for heading in (0.0, 45.0, 90.0, 180.0, 270.0, 359.0):
            r = rotation_matrix_from_vector(yaw_quaternion(heading))
            got = heading_from_rotation_matrix(r)
            self.assertAlmostEqual(got, heading % 360.0, places=6)
            self.assertGreaterEqual(got, 0.0)
            self.assertLess(got, 360.0)

    def test_flat_matrix_accepted(self) -> None:
        r = rotation_matrix_from_vector(yaw_quaternion(120.0))
        self.assertAlmostEqual(heading_from_rotation_matrix(r.flatten().tolist()), 120.0, places=6)

    def test_invalid_matrix(self) -> None:
        self.assertIsNone(heading_from_rotation_matrix([[1.0, 0.0], [0.0, 1.0]]))
        self.assertIsNone(heading_from_rotation_matrix(np.full((3, 3), np.nan)))
        self.assertIsNone(heading_from_rotation_matrix(np.zeros((3, 3))))


class DualVectorMatrixTests(unittest.TestCase):
    def test_north(self) -> None:
        r = rotation_matrix_from_vectors(GRAVITY_FLAT, (0.0, 20.0, -40.0))
        np.testing.assert_allclose(r, np.eye(3), atol=1e-12)

    def test_headings(self) -> None:
        for heading in (10.0, 90.0, 200.0, 270.0):
            r = rotation_matrix_from_vectors(GRAVITY_FLAT, field_for_heading(heading))
            self.assertAlmostEqual(heading_from_rotation_matrix(r), heading, places=6)

    def test_parallel_vectors_rejected(self) -> None:
        self.assertIsNone(rotation_matrix_from_vectors(GRAVITY_FLAT, (0.0, 0.0, -40.0)))

    def test_free_fall_rejected(self) -> None:
        self.assertIsNone(rotation_matrix_from_vectors((0.0, 0.0, 0.5), (0.0, 20.0, -40.0)))

    def test_non_finite_rejected(self) -> None:
        self.assertIsNone(rotation_matrix_from_vectors(GRAVITY_FLAT, (float("nan"), 20.0, -40.0)))


class MatrixExtractorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.extractor = MatrixHeadingExtractor()

    def test_extracts_heading(self) -> None:
        sample = SensorSample.of(ROTATION_VECTOR, yaw_quaternion(45.0))
        self.assertAlmostEqual(self.extractor.extract(sample), 45.0, places=6)

    def test_accepts_extra_components(self) -> None:
        values = list(yaw_quaternion(300.0)) + [0.1]
        self.assertAlmostEqual(self.extractor.extract(SensorSample.of(ROTATION_VECTOR, values)), 300.0, places=6)

    def test_short_vector_rejected(self) -> None:
        self.assertIsNone(self.extractor.extract(SensorSample.of(ROTATION_VECTOR, (0.0, 0.0, 0.3))))

    def test_non_finite_rejected(self) -> None:
        self.assertIsNone(self.extractor.extract(SensorSample.of(ROTATION_VECTOR, (0.0, 0.0, float("inf"), 1.0))))

    def test_other_sensors_ignored(self) -> None:
        self.assertIsNone(self.extractor.extract(SensorSample.of(ACCELEROMETER, GRAVITY_FLAT)))


class DualVectorExtractorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.extractor = DualVectorHeadingExtractor()

    def test_needs_both_vectors(self) -> None:
        self.assertIsNone(self.extractor.extract(SensorSample.of(ACCELEROMETER, GRAVITY_FLAT)))
        self.assertEqual(self.extractor.pending(), {"gravity": True, "geomagnetic": False})
        heading = self.extractor.extract(SensorSample.of(MAGNETIC_FIELD, field_for_heading(90.0)))
        self.assertAlmostEqual(heading, 90.0, places=6)

    def test_pair_cleared_after_heading(self) -> None:
        self.extractor.extract(SensorSample.of(ACCELEROMETER, GRAVITY_FLAT))
        self.extractor.extract(SensorSample.of(MAGNETIC_FIELD, field_for_heading(90.0)))
        self.assertEqual(self.extractor.pending(), {"gravity": False, "geomagnetic": False})
        # a fresh magnetometer sample alone cannot reuse the consumed gravity
        self.assertIsNone(self.extractor.extract(SensorSample.of(MAGNETIC_FIELD, field_for_heading(180.0))))
        heading = self.extractor.extract(SensorSample.of(ACCELEROMETER, GRAVITY_FLAT))
        self.assertAlmostEqual(heading, 180.0, places=6)

    def test_latest_vector_wins(self) -> None:
        self.extractor.extract(SensorSample.of(MAGNETIC_FIELD, field_for_heading(10.0)))
        self.extractor.extract(SensorSample.of(MAGNETIC_FIELD, field_for_heading(250.0)))
        heading = self.extractor.extract(SensorSample.of(ACCELEROMETER, GRAVITY_FLAT))
        self.assertAlmostEqual(heading, 250.0, places=6)

    def test_degenerate_pair_reports_nothing(self) -> None:
        self.extractor.extract(SensorSample.of(ACCELEROMETER, GRAVITY_FLAT))
        self.assertIsNone(self.extractor.extract(SensorSample.of(MAGNETIC_FIELD, (0.0, 0.0, -40.0))))
        # the good half is kept until replaced
        heading = self.extractor.extract(SensorSample.of(MAGNETIC_FIELD, field_for_heading(45.0)))
        self.assertAlmostEqual(heading, 45.0, places=6)

    def test_short_sample_rejected(self) -> None:
        self.assertIsNone(self.extractor.extract(SensorSample.of(ACCELEROMETER, (0.0, 9.8))))
        self.assertEqual(self.extractor.pending(), {"gravity": False, "geomagnetic": False})

    def test_reset(self) -> None:
        self.extractor.extract(SensorSample.of(ACCELEROMETER, GRAVITY_FLAT))
        self.extractor.reset()
        self.assertIsNone(self.extractor.extract(SensorSample.of(MAGNETIC_FIELD, field_for_heading(90.0))))

    def test_concurrent_delivery(self) -> None:
        headings = []
        lock = threading.Lock()

        def push(sensor, values):
            for _ in range(200):
                h = self.extractor.extract(SensorSample.of(sensor, values))
                if h is not None:
                    with lock:
                        headings.append(h)

        threads = [
            threading.Thread(target=push, args=(ACCELEROMETER, GRAVITY_FLAT)),
            threading.Thread(target=push, args=(MAGNETIC_FIELD, field_for_heading(135.0))),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertTrue(headings)
        for h in headings:
            self.assertAlmostEqual(h, 135.0, places=6)


class VariantSelectionTests(unittest.TestCase):
    def test_rotation_vector_is_primary(self) -> None:
        self.assertEqual(select_variant([ROTATION_VECTOR, ACCELEROMETER, MAGNETIC_FIELD]), MATRIX)

    def test_fallback_to_dual_vector(self) -> None:
        self.assertEqual(select_variant([ACCELEROMETER, MAGNETIC_FIELD]), DUAL_VECTOR)

    def test_forced_variant(self) -> None:
        self.assertEqual(select_variant([ROTATION_VECTOR, ACCELEROMETER, MAGNETIC_FIELD], DUAL_VECTOR), DUAL_VECTOR)
        with self.assertRaises(SensorUnavailable):
            select_variant([ACCELEROMETER, MAGNETIC_FIELD], MATRIX)

    def test_missing_sensors(self) -> None:
        with self.assertRaises(SensorUnavailable):
            select_variant([ACCELEROMETER])
        with self.assertRaises(SensorUnavailable):
            select_variant([])

    def test_make_extractor(self) -> None:
        self.assertIsInstance(make_extractor(MATRIX), MatrixHeadingExtractor)
        self.assertIsInstance(make_extractor(DUAL_VECTOR), DualVectorHeadingExtractor)
        with self.assertRaises(ValueError):
            make_extractor("gyro")


class RejectionReasonTests(unittest.TestCase):
    def test_matrix_reasons(self) -> None:
        extractor = MatrixHeadingExtractor()
        self.assertEqual(extractor.inspect(SensorSample.of(ROTATION_VECTOR, (0.0, 0.0, 0.3))), (None, "size"))
        self.assertEqual(
            extractor.inspect(SensorSample.of(ROTATION_VECTOR, (0.0, float("nan"), 0.0, 1.0))),
            (None, "non_finite"),
        )
        self.assertEqual(extractor.inspect(SensorSample.of(ROTATION_VECTOR, [0.0] * 9)), (None, "yaw_undefined"))
        self.assertEqual(extractor.inspect(SensorSample.of(ACCELEROMETER, GRAVITY_FLAT)), (None, None))
        heading, reason = extractor.inspect(SensorSample.of(ROTATION_VECTOR, yaw_quaternion(45.0)))
        self.assertAlmostEqual(heading, 45.0, places=6)
        self.assertIsNone(reason)

    def test_dual_vector_reasons(self) -> None:
        extractor = DualVectorHeadingExtractor()
        self.assertEqual(extractor.inspect(SensorSample.of(ACCELEROMETER, GRAVITY_FLAT)), (None, None))
        self.assertEqual(
            extractor.inspect(SensorSample.of(MAGNETIC_FIELD, (0.0, 0.0, -40.0))),
            (None, "degenerate"),
        )
        self.assertEqual(extractor.inspect(SensorSample.of(ACCELEROMETER, (1.0,))), (None, "size"))
        self.assertEqual(extractor.inspect(SensorSample.of(ROTATION_VECTOR, yaw_quaternion(10.0))), (None, None))

    def test_upright_device_has_no_yaw(self) -> None:
        extractor = DualVectorHeadingExtractor()
        extractor.inspect(SensorSample.of(ACCELEROMETER, (0.0, 9.81, 0.0)))
        result = extractor.inspect(SensorSample.of(MAGNETIC_FIELD, (0.0, -40.0, 20.0)))
        self.assertEqual(result, (None, "yaw_undefined"))
        # the pair was usable, so it is consumed
        self.assertEqual(extractor.pending(), {"gravity": False, "geomagnetic": False})


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
