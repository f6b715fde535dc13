"""Page capture for chrome-gather.

Main Components:
- Event Recorder / Event Channel: protocol events into the session's event log
- Body Fetcher: out-of-band response body retrieval
- Completeness Reconciler: empty bodies for finished requests that lack one
- Browser Factory: Chromium launch with a remote debugging port
- Page Session: the capture sequence for one URL

Usage:
    from gather.capture import BrowserFactory, BrowserConfig, capture_url

    async with BrowserFactory(BrowserConfig()) as factory:
        result = await capture_url(factory, "https://example.com")
"""

from .errors import CaptureError, NavigationError, PageCrashedError
from .recorder import EventChannel, EventRecorder
from .body_fetcher import BodyFetcher
from .reconciler import CompletenessReconciler
from .browser_factory import BrowserConfig, BrowserFactory
from .page_session import PageSession, PageSessionConfig, WaitStrategy, capture_url

__all__ = [
    # Errors
    "CaptureError",
    "NavigationError",
    "PageCrashedError",

    # Event pipeline
    "EventRecorder",
    "EventChannel",
    "BodyFetcher",
    "CompletenessReconciler",

    # Browser and session
    "BrowserFactory",
    "BrowserConfig",
    "PageSession",
    "PageSessionConfig",
    "WaitStrategy",
    "capture_url",
]
