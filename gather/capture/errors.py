"""Fatal capture errors.

Only the outermost capture sequence raises these; per-request failures are
recovered where they happen.
"""

from typing import Optional


class CaptureError(Exception):
    """Capture run failed and produced no usable output."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class NavigationError(CaptureError):
    """Navigation to the target URL failed."""

    def __init__(self, message: str, url: Optional[str] = None, timed_out: bool = False):
        super().__init__(message, url)
        self.timed_out = timed_out


class PageCrashedError(CaptureError):
    """The page crashed while the capture was running."""
