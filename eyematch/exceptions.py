"""Error types raised by the capture side of EyeMatch.

Matching never raises on malformed templates: decoding returns None and the
similarity engine falls back to the legacy comparator instead.
"""


class EyeMatchError(Exception):
    """Base class for EyeMatch errors."""


class CameraNotReady(EyeMatchError, RuntimeError):
    """The frame source has no frame yet (zero width/height or no data)."""

    def __init__(self, message: str = "Camera is not ready yet"):
        super().__init__(message)


class CameraBusy(EyeMatchError, RuntimeError):
    """The frame source is already owned by another capture session."""


class CaptureCancelled(EyeMatchError):
    """A capture session was cancelled before all samples were taken."""
