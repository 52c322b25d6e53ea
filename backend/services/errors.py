"""Error taxonomy for the engagement pipeline."""

from __future__ import annotations


class EngagementError(Exception):
    """Base class for pipeline errors."""


class ValidationError(EngagementError):
    """Malformed input such as an object key that cannot be parsed. Terminal."""


class NotFoundError(EngagementError):
    """Something expected was absent. Terminal: the event is skipped, not retried."""


class NoFaceDetected(NotFoundError):
    """The feature extractor found no face in the frame."""


class TransientIOError(EngagementError):
    """Download, upload or store failure that may succeed on retry."""


class ConfigurationError(EngagementError):
    """Missing or invalid deployment configuration (e.g. model files)."""


class CaptureError(EngagementError):
    """A capture session could not grab or encode a frame."""


class WriteConflict(TransientIOError):
    """An optimistic transaction lost a race and ran out of attempts."""
