"""Page session orchestration for a single capture run.

This module provides the PageSession class that drives one page load end to
end: it subscribes the event channel to the protocol session, navigates,
evaluates the page script, takes the screenshot, fetches response bodies,
reconciles the event log and finally writes the event log and HAR outputs.
"""

import asyncio
import json
import logging
from contextlib import suppress
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Dict, Optional, Union

from playwright.async_api import (
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
)
from pydantic import ValidationError

from .body_fetcher import BodyFetcher
from .errors import CaptureError, NavigationError, PageCrashedError
from .reconciler import CompletenessReconciler
from .recorder import EventChannel, EventRecorder
from ..har.synthesizer import HarSynthesizer, synthesize_with_fallback
from ..models.capture import (
    CaptureResult,
    CaptureStatus,
    EventLog,
    OutputTarget,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 60000

OutputValue = Union[OutputTarget, str, Path, bool, None]


class WaitStrategy:
    """Load states navigation can wait for."""
    LOAD = "load"
    DOMCONTENTLOADED = "domcontentloaded"
    NETWORKIDLE = "networkidle"
    COMMIT = "commit"

    ALL = (LOAD, DOMCONTENTLOADED, NETWORKIDLE, COMMIT)


def _target(value: OutputValue) -> OutputTarget:
    if isinstance(value, OutputTarget):
        return value
    return OutputTarget.parse(value)


class PageSessionConfig:
    """Configuration for a page capture run."""

    def __init__(
        self,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        wait_until: str = WaitStrategy.LOAD,
        har: OutputValue = "capture.har",
        screenshot: OutputValue = "capture.png",
        events: OutputValue = None,
        js: Optional[str] = None,
        js_result: OutputValue = None,
    ):
        """Initialize page session configuration.

        Output values accept anything ``OutputTarget.parse`` does, so a string
        ``"false"`` disables that output.

        Args:
            timeout_ms: Navigation timeout in milliseconds
            wait_until: Load state navigation waits for
            har: HAR output file
            screenshot: Full page screenshot file
            events: Raw event log output file
            js: Script to evaluate in the page once it has loaded
            js_result: File the script result is written to as JSON
        """
        if wait_until not in WaitStrategy.ALL:
            raise ValueError(f"Unknown wait strategy: {wait_until}")

        self.timeout_ms = timeout_ms
        self.wait_until = wait_until
        self.har = _target(har)
        self.screenshot = _target(screenshot)
        self.events = _target(events)
        self.js = js or None
        self.js_result = _target(js_result)

    def __repr__(self) -> str:
        return (
            f"PageSessionConfig(timeout_ms={self.timeout_ms}, har={self.har}, "
            f"screenshot={self.screenshot}, events={self.events}, js_result={self.js_result})"
        )


class PageSession:
    """Runs one capture of one URL on one page."""

    def __init__(
        self,
        page: Page,
        config: Optional[PageSessionConfig] = None,
        synthesizer: Optional[HarSynthesizer] = None
    ):
        """Initialize page session.

        Args:
            page: Playwright page for capture
            config: Page session configuration
            synthesizer: HAR synthesizer (default one if None)
        """
        self.page = page
        self.config = config or PageSessionConfig()
        self.synthesizer = synthesizer or HarSynthesizer()

        # One event log per navigation
        self.log = EventLog()
        self.recorder = EventRecorder(self.log)
        self.channel: Optional[EventChannel] = None
        self.session: Any = None
        self.result: Optional[CaptureResult] = None

        self._crashed = asyncio.Event()
        self._crash_error: Optional[PageCrashedError] = None
        self._url: Optional[str] = None

    async def capture_page(self, url: str) -> CaptureResult:
        """Perform the capture and report failures through the result status.

        Args:
            url: URL to capture

        Returns:
            CaptureResult with status, counts and artifact paths
        """
        try:
            return await self.run(url)
        except CaptureError as e:
            logger.error(f"Page capture failed: {e}")
            if self.result is None:
                # The URL itself was rejected, so skip validation to report it
                self.result = CaptureResult.model_construct(url=url, capture_status=CaptureStatus.FAILED)
            self.result.capture_error = str(e)
            timed_out = isinstance(e, NavigationError) and e.timed_out
            self.result.capture_status = CaptureStatus.TIMEOUT if timed_out else CaptureStatus.FAILED
            return self.result

    async def run(self, url: str) -> CaptureResult:
        """Perform the capture.

        Args:
            url: URL to capture

        Returns:
            CaptureResult for a successful run

        Raises:
            NavigationError: Navigation failed or timed out
            PageCrashedError: The page crashed during the run
            CaptureError: Any other failure of the capture sequence
        """
        self._url = url
        self.result = None
        try:
            self.result = CaptureResult(
                url=url,
                capture_time=datetime.utcnow(),
                capture_status=CaptureStatus.FAILED
            )
        except ValidationError as e:
            raise NavigationError(f"Cannot navigate to {url}: not an absolute URL", url=url) from e

        try:
            await self._run(url)
        except CaptureError:
            raise
        except Exception as e:
            raise CaptureError(f"Capture of {url} failed: {e}", url=url) from e
        finally:
            if self.channel is not None:
                await self.channel.close()

        self.result.capture_status = CaptureStatus.SUCCESS
        logger.info(f"Page capture completed successfully: {url}")
        return self.result

    async def _run(self, url: str) -> None:
        config = self.config
        self.page.on("crash", self._on_crash)

        if config.har:
            self.session = await self.page.context.new_cdp_session(self.page)
            self.channel = EventChannel(self.recorder)
            await self.channel.subscribe(self.session)

        await self._navigate(url)

        if config.js:
            await self._evaluate_script(config.js)

        if config.screenshot:
            await self._guarded(self.page.screenshot(path=str(config.screenshot.path), full_page=True))
            self.result.artifacts.screenshot_file = config.screenshot.path
            logger.debug(f"Screenshot saved: {config.screenshot.path}")

        if config.har:
            await self._collect_bodies()

        if config.events:
            self._write(config.events.path, json.dumps(self.log.to_list()))
            self.result.artifacts.events_file = config.events.path
            logger.debug(f"Event log saved: {config.events.path} ({len(self.log)} events)")

        if config.har:
            document, mode = synthesize_with_fallback(url, self.log, self.synthesizer)
            self._write(config.har.path, document.to_json())
            self.result.har_mode = mode
            self.result.artifacts.har_file = config.har.path
            logger.info(f"HAR saved: {config.har.path} ({len(document.entries)} entries, {mode.value})")

        self.result.event_count = len(self.log)

    async def _navigate(self, url: str) -> None:
        try:
            await self._guarded(self.page.goto(
                url,
                timeout=self.config.timeout_ms,
                wait_until=self.config.wait_until
            ))
        except PlaywrightTimeoutError as e:
            raise NavigationError(
                f"Timed out after {self.config.timeout_ms}ms loading {url}",
                url=url,
                timed_out=True
            ) from e
        except PlaywrightError as e:
            raise NavigationError(f"Navigation to {url} failed: {e}", url=url) from e

        logger.debug(f"Navigation completed: {url}")

    async def _evaluate_script(self, script: str) -> None:
        result = await self._guarded(self.page.evaluate(script))
        self.result.js_result = result

        if self.config.js_result:
            self._write(self.config.js_result.path, json.dumps(result).strip())
            self.result.artifacts.js_result_file = self.config.js_result.path
            logger.debug(f"Script result saved: {self.config.js_result.path}")

    async def _collect_bodies(self) -> None:
        """Fetch every finished body, then backfill requests that finished meanwhile."""
        await self.channel.flush()

        fetcher = BodyFetcher(self.session, self.recorder)
        results = await fetcher.fetch_all(sorted(self.recorder.finished))

        # Requests still loading after navigation may finish during the fetches
        await self.channel.drain()

        self.result.loaded_count = len(self.recorder.finished)
        self.result.body_count = len(self.recorder.body_ids())
        self.result.failed_fetches = sum(1 for result in results if not result.ok)

        backfilled = CompletenessReconciler(self.recorder).tally()
        self.result.backfilled = sorted(backfilled)

    async def _guarded(self, awaitable: Awaitable[Any]) -> Any:
        """Await a page operation, aborting it if the page crashes meanwhile."""
        if self._crashed.is_set():
            raise self._crash_error

        task = asyncio.ensure_future(awaitable)
        watcher = asyncio.ensure_future(self._crashed.wait())
        try:
            await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            watcher.cancel()
            with suppress(asyncio.CancelledError):
                await watcher

        if task.done():
            return task.result()

        task.cancel()
        with suppress(asyncio.CancelledError, PlaywrightError):
            await task
        raise self._crash_error

    def _on_crash(self, page: Any = None) -> None:
        logger.error(f"Page crashed while capturing {self._url}")
        self._crash_error = PageCrashedError(f"Page crashed while loading {self._url}", url=self._url)
        self._crashed.set()

    @staticmethod
    def _write(path: Path, text: str) -> None:
        Path(path).write_text(text, encoding='utf-8')

    def get_stats(self) -> Dict[str, Any]:
        """Get session statistics.

        Returns:
            Dictionary with capture status and recorder statistics
        """
        return {
            'capture_status': self.result.capture_status.value if self.result else 'not_started',
            'has_artifacts': bool(self.result and self.result.artifacts.has_artifacts),
            'events': self.recorder.get_stats(),
        }

    def __repr__(self) -> str:
        status = self.result.capture_status.value if self.result else 'not_started'
        return f"PageSession(url={self._url or 'none'}, status={status}, events={len(self.log)})"


async def capture_url(factory: Any, url: str, config: Optional[PageSessionConfig] = None) -> CaptureResult:
    """Capture one URL on a fresh page of a started browser factory.

    Args:
        factory: Started BrowserFactory
        url: URL to capture
        config: Page session configuration

    Returns:
        CaptureResult of the run
    """
    async with factory.page() as page:
        return await PageSession(page, config).capture_page(url)
