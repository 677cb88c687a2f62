"""Session runtime."""

from .service import CompassRuntime, CompassStatus

__all__ = ["CompassRuntime", "CompassStatus"]
