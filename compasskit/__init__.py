"""Compass heading pipeline: extraction, smoothing and needle rotation targets."""

__version__ = "0.1.0"
