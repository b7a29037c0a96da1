"""
Failure taxonomy for the capture pipeline.

Each error carries the HTTP status it is surfaced with. Stages raise these;
only the HTTP layer turns them into the `{ok: false, error}` envelope.
"""


class CaptureError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(CaptureError):
    """Malformed or missing request fields."""
    status_code = 400


class NavigationTimeout(CaptureError):
    """The page never reached a usable state within the budget."""
    status_code = 504


class CaptureTimeout(CaptureError):
    """The overall request deadline expired after navigation."""
    status_code = 504


class HeightDetectionFailed(CaptureError):
    """Measured page height below 1px: blank or broken page."""
    status_code = 500


class CaptureFailed(CaptureError):
    """A scroll, script or raster step failed mid-pipeline."""
    status_code = 500


class EncodeFailed(CaptureError):
    status_code = 500
