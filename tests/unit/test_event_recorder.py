"""Unit tests for event recording and the event channel."""

import asyncio

import pytest

from gather.capture.recorder import EventChannel, EventRecorder
from gather.models.capture import OBSERVED_EVENTS, Event, EventLog
from tests.helpers import FakeCDPSession, loading_finished, request_will_be_sent


class TestEventRecorder:
    """Tests for EventRecorder class."""

    def test_recorder_initialization(self, recorder):
        """Test a new recorder starts empty."""
        assert len(recorder.log) == 0
        assert recorder.finished == frozenset()

    def test_uses_given_log(self):
        """Test recorder appends to the log it was given."""
        log = EventLog()
        recorder = EventRecorder(log)
        recorder.record("Page.frameAttached", {"frameId": "F1"})

        assert len(log) == 1
        assert log[0].method == "Page.frameAttached"

    def test_record_appends_in_order(self, recorder):
        """Test every event is appended in call order."""
        recorder.record("Network.requestWillBeSent", {"requestId": "1"})
        recorder.record("Network.dataReceived", {"requestId": "1", "dataLength": 10})
        recorder.record("Page.loadEventFired", {"timestamp": 1.0})

        assert [e.method for e in recorder.log] == [
            "Network.requestWillBeSent",
            "Network.dataReceived",
            "Page.loadEventFired",
        ]

    def test_loading_finished_tracks_request(self, recorder):
        """Test loadingFinished adds its request id to the finished set."""
        recorder.record("Network.requestWillBeSent", {"requestId": "1"})
        assert recorder.finished == frozenset()

        recorder.record("Network.loadingFinished", {"requestId": "1"})
        assert recorder.finished == {"1"}

    def test_other_events_do_not_finish_requests(self, recorder):
        """Test only loadingFinished populates the finished set."""
        recorder.record("Network.loadingFailed", {"requestId": "1"})
        recorder.record("Network.responseReceived", {"requestId": "2"})

        assert recorder.finished == frozenset()

    def test_duplicates_are_kept(self, recorder):
        """Test duplicate events are recorded twice but finish once."""
        recorder.record("Network.loadingFinished", {"requestId": "1"})
        recorder.record("Network.loadingFinished", {"requestId": "1"})

        assert len(recorder.log) == 2
        assert recorder.finished == {"1"}

    def test_payload_stored_as_is(self, recorder):
        """Test payloads are not validated or copied."""
        payload = {"requestId": "1", "unexpected": [1, 2, 3]}
        event = recorder.record("Network.dataReceived", payload)

        assert event.params is payload
        recorder.record("Custom.event", "not a dict")
        assert recorder.log[1].params == "not a dict"
        assert recorder.log[1].request_id is None

    def test_loading_finished_without_request_id(self, recorder):
        """Test a malformed loadingFinished is recorded but tracks nothing."""
        recorder.record("Network.loadingFinished", {})

        assert len(recorder.log) == 1
        assert recorder.finished == frozenset()

    def test_body_ids(self, recorder):
        """Test body ids are derived by scanning the log."""
        recorder.record("Network.getResponseBody", {"requestId": "A", "body": "", "base64Encoded": False})
        recorder.record("Network.loadingFinished", {"requestId": "B"})

        assert recorder.body_ids() == {"A"}

    def test_get_stats(self, recorder):
        """Test recorder statistics."""
        recorder.record("Network.requestWillBeSent", {"requestId": "1"})
        recorder.record("Network.loadingFinished", {"requestId": "1"})

        stats = recorder.get_stats()
        assert stats['total_events'] == 2
        assert stats['finished_requests'] == 1
        assert stats['Network.loadingFinished'] == 1

    def test_repr(self, recorder):
        """Test string representation."""
        recorder.record("Network.loadingFinished", {"requestId": "1"})
        assert repr(recorder) == "EventRecorder(events=1, finished=1)"


class TestEventChannel:
    """Tests for EventChannel class."""

    @pytest.mark.asyncio
    async def test_subscribe_enables_domains_first(self, recorder, fake_session):
        """Test Page and Network domains are enabled before handlers are registered."""
        channel = EventChannel(recorder)
        await channel.subscribe(fake_session)

        assert fake_session.sent[:2] == [("Page.enable", None), ("Network.enable", None)]
        assert list(fake_session.handlers) == list(OBSERVED_EVENTS)

        await channel.drain()

    def test_observed_events_are_fixed(self):
        """Test the subscription set and its order."""
        assert OBSERVED_EVENTS == (
            "Page.loadEventFired",
            "Page.domContentEventFired",
            "Page.frameStartedLoading",
            "Page.frameAttached",
            "Network.requestWillBeSent",
            "Network.requestServedFromCache",
            "Network.dataReceived",
            "Network.responseReceived",
            "Network.resourceChangedPriority",
            "Network.loadingFinished",
            "Network.loadingFailed",
        )

    @pytest.mark.asyncio
    async def test_events_recorded_in_arrival_order(self, recorder, fake_session):
        """Test delivered events reach the log in arrival order after drain."""
        channel = EventChannel(recorder)
        await channel.subscribe(fake_session)

        first = request_will_be_sent("1")
        fake_session.emit(first["method"], first["params"])
        fake_session.emit("Network.dataReceived", {"requestId": "1", "dataLength": 5})
        done = loading_finished("1")
        fake_session.emit(done["method"], done["params"])

        await channel.drain()

        assert [e.method for e in recorder.log] == [
            "Network.requestWillBeSent",
            "Network.dataReceived",
            "Network.loadingFinished",
        ]
        assert recorder.finished == {"1"}
        assert channel.pending == 0

    @pytest.mark.asyncio
    async def test_drain_without_start(self, recorder):
        """Test draining a channel that never started still records queued events."""
        channel = EventChannel(recorder)
        channel.deliver("Page.loadEventFired", {"timestamp": 2.0})

        assert channel.pending == 1
        await channel.drain()

        assert len(recorder.log) == 1
        assert recorder.log[0] == Event(method="Page.loadEventFired", params={"timestamp": 2.0})

    @pytest.mark.asyncio
    async def test_flush_keeps_consuming(self, recorder, fake_session):
        """Test events delivered after a flush are still recorded."""
        channel = EventChannel(recorder)
        await channel.subscribe(fake_session)
        fake_session.emit("Network.loadingFinished", {"requestId": "1"})

        await channel.flush()
        assert recorder.finished == frozenset({"1"})
        assert not channel.closed

        fake_session.emit("Network.loadingFinished", {"requestId": "2"})
        await channel.drain()

        assert recorder.finished == frozenset({"1", "2"})
        assert channel.closed

    @pytest.mark.asyncio
    async def test_events_after_drain_are_dropped(self, recorder, fake_session):
        """Test late events do not reach the log once the channel is drained."""
        channel = EventChannel(recorder)
        await channel.subscribe(fake_session)
        await channel.drain()

        fake_session.emit("Network.loadingFinished", {"requestId": "late"})
        await asyncio.sleep(0)

        assert channel.closed
        assert len(recorder.log) == 0
        assert recorder.finished == frozenset()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, recorder):
        """Test close can be called on a stopped channel."""
        channel = EventChannel(recorder)
        channel.start()

        await channel.close()
        await channel.close()

        assert channel.closed

    @pytest.mark.asyncio
    async def test_custom_subscription_list(self, recorder):
        """Test the subscription list is explicit."""
        session = FakeCDPSession()
        channel = EventChannel(recorder, methods=["Network.loadingFinished"])
        await channel.subscribe(session)

        assert list(session.handlers) == ["Network.loadingFinished"]
        await channel.drain()
