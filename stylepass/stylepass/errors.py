"""
Studio exceptions.

Provides a clear hierarchy for the failure categories the studio surfaces:
- StudioError: Base exception for all studio errors
- CaptureError: Screen capture could not start (capability, permission, device)
- AnalysisError: The inference backend failed or returned unusable data

None of these are retried automatically. Every category is gated on a user
action (granting access, picking another file, pressing analyze again), so
recovery is always a fresh invocation.
"""

from __future__ import annotations

from typing import Optional


class StudioError(Exception):
    """Base exception for all studio errors."""

    recoverable = False

    def __init__(self, message: str, user_message: Optional[str] = None):
        self.user_message = user_message or message
        super().__init__(message)


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


class CaptureError(StudioError):
    """Screen capture could not be started."""

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message, user_message or "Could not start the screen capture.")


class CaptureUnsupportedError(CaptureError):
    """
    The runtime has no display-capture capability.

    Examples:
    - ffmpeg is not installed
    - No screen grabber exists for this platform
    """

    def __init__(self, message: str):
        super().__init__(message, "Screen capture is not supported in this environment.")


class CapturePermissionError(CaptureError):
    """The user or the OS declined access to the screen."""

    def __init__(self, message: str):
        super().__init__(
            message,
            "Access to the screen was denied. Please allow screen recording "
            "for this application and try again.",
        )


class CaptureDeviceNotFoundError(CaptureError):
    """The requested display or audio device does not exist."""

    def __init__(self, message: str):
        super().__init__(message, "No recording device was found.")


class CaptureBusyError(CaptureError):
    """Another capture still holds the single capture slot."""

    def __init__(self, message: str = "A capture is already in progress."):
        super().__init__(message, message)


class CaptureCancelledError(CaptureError):
    """stop() was called before the grabber produced any media."""

    def __init__(self, message: str = "Capture was stopped before recording began."):
        super().__init__(message, "The capture was cancelled before recording began.")


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


class AnalysisError(StudioError):
    """The inference backend rejected the request or failed."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)


class PassportSchemaError(AnalysisError):
    """The backend answered with data that does not match the expected schema."""

    def __init__(self, message: str, raw_text: str = "", cause: Optional[Exception] = None):
        self.raw_text = raw_text
        super().__init__(message, cause)
        self.user_message = "Analysis failed: the model returned an invalid result."


class EmptyMediaError(AnalysisError):
    """No media bytes were available to analyse."""

    def __init__(self, message: str = "No media data to analyse."):
        super().__init__(message)


__all__ = [
    "StudioError",
    "CaptureError",
    "CaptureUnsupportedError",
    "CapturePermissionError",
    "CaptureDeviceNotFoundError",
    "CaptureBusyError",
    "CaptureCancelledError",
    "AnalysisError",
    "PassportSchemaError",
    "EmptyMediaError",
]
