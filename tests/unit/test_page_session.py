"""Unit tests for page session orchestration."""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from gather.capture.errors import CaptureError, NavigationError, PageCrashedError
from gather.capture.page_session import PageSession, PageSessionConfig, capture_url
from gather.models.capture import CaptureStatus, HarMode
from tests.helpers import (
    FakeCDPSession,
    data_received,
    loading_finished,
    request_will_be_sent,
    response_received,
)

URL = "https://example.com/"


class LateFinishSession(FakeCDPSession):
    """Session where another request finishes while the body of A is fetched."""

    async def send(self, method, params=None):
        if method == "Network.getResponseBody" and params["requestId"] == "A":
            event = loading_finished("late")
            self.emit(event["method"], event["params"])
        return await super().send(method, params)


def emit_page_load(session):
    """Deliver a two-request page load through the session's handlers."""
    for event in [
        request_will_be_sent("A"),
        response_received("A"),
        data_received("A", 5, 5),
        loading_finished("A"),
        request_will_be_sent("B", url="https://example.com/empty"),
        response_received("B", url="https://example.com/empty", status=204),
        loading_finished("B"),
        {"method": "Page.loadEventFired", "params": {"timestamp": 1000.4}},
    ]:
        session.emit(event["method"], event["params"])


@pytest.fixture
def session():
    """Protocol session with a body for A only."""
    return FakeCDPSession({"A": {"body": "hello", "base64Encoded": False}})


@pytest.fixture
def page(mock_page, session):
    """Page whose navigation produces a small page load."""
    mock_page.context.new_cdp_session = AsyncMock(return_value=session)

    async def goto(url, timeout=None, wait_until=None):
        emit_page_load(session)

    mock_page.goto.side_effect = goto
    mock_page.evaluate.return_value = {"title": "Example"}
    return mock_page


def session_config(tmp_path, **overrides):
    options = dict(
        har=str(tmp_path / "capture.har"),
        screenshot=str(tmp_path / "capture.png"),
        events=None,
        js=None,
        js_result=None,
    )
    options.update(overrides)
    return PageSessionConfig(**options)


class TestPageSessionConfig:
    """Tests for PageSessionConfig class."""

    def test_defaults(self):
        """Test default outputs and navigation settings."""
        config = PageSessionConfig()

        assert config.timeout_ms == 60000
        assert config.wait_until == "load"
        assert str(config.har) == "capture.har"
        assert str(config.screenshot) == "capture.png"
        assert not config.events
        assert not config.js_result
        assert config.js is None

    def test_false_disables_outputs(self):
        """Test the string false disables an output."""
        config = PageSessionConfig(har="false", screenshot="False")

        assert not config.har
        assert not config.screenshot

    def test_unknown_wait_strategy(self):
        """Test wait strategies are validated."""
        with pytest.raises(ValueError):
            PageSessionConfig(wait_until="whenever")


class TestPageSession:
    """Tests for PageSession class."""

    @pytest.mark.asyncio
    async def test_full_capture(self, page, session, tmp_path):
        """Test the capture sequence writes HAR and screenshot."""
        config = session_config(tmp_path)

        result = await PageSession(page, config).run(URL)

        assert result.capture_status == CaptureStatus.SUCCESS
        assert result.har_mode == HarMode.FULL
        assert result.loaded_count == 2
        assert result.body_count == 2
        assert result.failed_fetches == 1
        assert result.backfilled == []

        page.goto.assert_called_once_with(URL, timeout=60000, wait_until="load")
        page.screenshot.assert_called_once_with(path=str(tmp_path / "capture.png"), full_page=True)
        assert result.artifacts.screenshot_file == tmp_path / "capture.png"

        har = json.loads((tmp_path / "capture.har").read_text(encoding='utf-8'))
        entries = har["log"]["entries"]
        assert [e["response"]["status"] for e in entries] == [200, 204]
        assert entries[0]["response"]["content"]["text"] == "hello"
        assert entries[1]["response"]["content"]["text"] == ""
        assert har["log"]["pages"][0]["title"] == URL

    @pytest.mark.asyncio
    async def test_subscribes_before_navigation(self, page, session, tmp_path):
        """Test domains are enabled and handlers registered before goto."""
        await PageSession(page, session_config(tmp_path)).run(URL)

        assert session.sent[0] == ("Page.enable", None)
        assert session.sent[1] == ("Network.enable", None)
        assert "Network.loadingFinished" in session.handlers

    @pytest.mark.asyncio
    async def test_body_requests_for_finished_ids(self, page, session, tmp_path):
        """Test one body request per finished request."""
        await PageSession(page, session_config(tmp_path)).run(URL)

        fetched = sorted(p["requestId"] for m, p in session.sent if m == "Network.getResponseBody")
        assert fetched == ["A", "B"]

    @pytest.mark.asyncio
    async def test_events_file_written_after_reconciliation(self, page, tmp_path):
        """Test the event log output contains every body record."""
        events_path = tmp_path / "events.json"
        config = session_config(tmp_path, events=str(events_path))

        result = await PageSession(page, config).run(URL)

        records = json.loads(events_path.read_text(encoding='utf-8'))
        bodies = [r for r in records if r["method"] == "Network.getResponseBody"]
        assert {r["params"]["requestId"] for r in bodies} == {"A", "B"}
        assert records[-1]["method"] == "Network.getResponseBody"
        assert result.artifacts.events_file == events_path
        assert result.event_count == len(records)

    @pytest.mark.asyncio
    async def test_script_result(self, page, tmp_path):
        """Test the page script result is written as JSON."""
        result_path = tmp_path / "result.json"
        config = session_config(tmp_path, js="({title: document.title})", js_result=str(result_path))

        result = await PageSession(page, config).run(URL)

        page.evaluate.assert_called_once_with("({title: document.title})")
        assert result_path.read_text(encoding='utf-8') == '{"title": "Example"}'
        assert result.js_result == {"title": "Example"}

    @pytest.mark.asyncio
    async def test_script_without_result_file(self, page, tmp_path):
        """Test a script runs even when its result is not written."""
        config = session_config(tmp_path, js="1 + 1")

        result = await PageSession(page, config).run(URL)

        page.evaluate.assert_called_once()
        assert result.artifacts.js_result_file is None

    @pytest.mark.asyncio
    async def test_har_disabled(self, page, tmp_path):
        """Test no protocol session is opened when HAR is disabled."""
        config = session_config(tmp_path, har="false", screenshot="false")

        result = await PageSession(page, config).run(URL)

        page.context.new_cdp_session.assert_not_called()
        page.screenshot.assert_not_called()
        assert result.har_mode is None
        assert not (tmp_path / "capture.har").exists()
        assert result.is_successful

    @pytest.mark.asyncio
    async def test_navigation_timeout(self, page, tmp_path):
        """Test a navigation timeout is a fatal timed-out navigation error."""
        page.goto.side_effect = PlaywrightTimeoutError("Timeout 60000ms exceeded.")
        session = PageSession(page, session_config(tmp_path))

        with pytest.raises(NavigationError) as exc_info:
            await session.run(URL)

        assert exc_info.value.timed_out
        assert exc_info.value.url == URL
        assert not (tmp_path / "capture.har").exists()

    @pytest.mark.asyncio
    async def test_navigation_failure(self, page, tmp_path):
        """Test navigation errors are fatal."""
        page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")

        with pytest.raises(NavigationError) as exc_info:
            await PageSession(page, session_config(tmp_path)).run(URL)

        assert not exc_info.value.timed_out

    @pytest.mark.asyncio
    async def test_page_crash_aborts_navigation(self, page, tmp_path):
        """Test a crash during navigation aborts the capture."""
        async def crashing_goto(url, timeout=None, wait_until=None):
            crash_handler = next(c.args[1] for c in page.on.call_args_list if c.args[0] == "crash")
            crash_handler(page)
            await asyncio.Event().wait()

        page.goto.side_effect = crashing_goto

        with pytest.raises(PageCrashedError):
            await PageSession(page, session_config(tmp_path)).run(URL)

        page.screenshot.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_capture_error(self, page, tmp_path):
        """Test other failures are wrapped as capture errors."""
        page.screenshot.side_effect = OSError("disk full")

        with pytest.raises(CaptureError, match="disk full"):
            await PageSession(page, session_config(tmp_path)).run(URL)

    @pytest.mark.asyncio
    async def test_channel_closed_after_failure(self, page, tmp_path):
        """Test the event channel is stopped when the capture fails."""
        page.goto.side_effect = PlaywrightError("boom")
        session = PageSession(page, session_config(tmp_path))

        with pytest.raises(NavigationError):
            await session.run(URL)

        assert session.channel.closed

    @pytest.mark.asyncio
    async def test_capture_page_reports_status(self, page, tmp_path):
        """Test capture_page turns fatal errors into a result status."""
        page.goto.side_effect = PlaywrightTimeoutError("Timeout 1ms exceeded.")

        result = await PageSession(page, session_config(tmp_path)).capture_page(URL)

        assert result.capture_status == CaptureStatus.TIMEOUT
        assert "Timed out" in result.capture_error

    @pytest.mark.asyncio
    async def test_capture_url_uses_factory_page(self, page, tmp_path):
        """Test capture_url runs on a page from the factory."""
        factory = MagicMock()
        page_cm = MagicMock()
        page_cm.__aenter__ = AsyncMock(return_value=page)
        page_cm.__aexit__ = AsyncMock(return_value=False)
        factory.page.return_value = page_cm

        result = await capture_url(factory, URL, session_config(tmp_path))

        assert result.is_successful
        page_cm.__aexit__.assert_called_once()

    @pytest.mark.asyncio
    async def test_get_stats(self, page, tmp_path):
        """Test session statistics after a run."""
        session = PageSession(page, session_config(tmp_path))
        assert session.get_stats()['capture_status'] == 'not_started'

        await session.run(URL)

        stats = session.get_stats()
        assert stats['capture_status'] == 'success'
        assert stats['events']['finished_requests'] == 2

    @pytest.mark.asyncio
    async def test_request_finishing_during_body_fetches_is_backfilled(self, page, tmp_path):
        """Test events delivered while bodies are fetched are kept and reconciled."""
        late_session = LateFinishSession({"A": {"body": "hello", "base64Encoded": False}})
        page.context.new_cdp_session = AsyncMock(return_value=late_session)

        async def goto(url, timeout=None, wait_until=None):
            emit_page_load(late_session)

        page.goto.side_effect = goto
        events_path = tmp_path / "events.json"

        result = await PageSession(page, session_config(tmp_path, events=str(events_path))).run(URL)

        assert result.backfilled == ["late"]
        assert result.loaded_count == 3
        assert result.body_count == 2

        records = json.loads(events_path.read_text(encoding='utf-8'))
        finished = [r["params"]["requestId"] for r in records if r["method"] == "Network.loadingFinished"]
        bodies = [r["params"]["requestId"] for r in records if r["method"] == "Network.getResponseBody"]
        assert "late" in finished
        assert sorted(bodies) == ["A", "B", "late"]

    @pytest.mark.asyncio
    async def test_url_without_scheme(self, page, tmp_path):
        """Test a relative URL is a navigation error, not a validation crash."""
        with pytest.raises(NavigationError, match="example.com"):
            await PageSession(page, session_config(tmp_path)).run("example.com")

        page.goto.assert_not_called()

    @pytest.mark.asyncio
    async def test_capture_page_reports_bad_url(self, page, tmp_path):
        """Test capture_page returns a failed result for a URL without scheme."""
        result = await PageSession(page, session_config(tmp_path)).capture_page("example.com")

        assert result.capture_status == CaptureStatus.FAILED
        assert result.url == "example.com"
        assert "not an absolute URL" in result.capture_error
        assert not result.is_successful
