"""Pydantic models for protocol event capture and its artifacts.

This module defines the data models shared by the capture pipeline: the
recorded protocol events, the append-only event log that owns them, response
body records, fetch results and the overall capture result.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Union
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


# Protocol method names
PAGE_LOAD_EVENT_FIRED = "Page.loadEventFired"
PAGE_DOM_CONTENT_EVENT_FIRED = "Page.domContentEventFired"
PAGE_FRAME_STARTED_LOADING = "Page.frameStartedLoading"
PAGE_FRAME_ATTACHED = "Page.frameAttached"

NETWORK_REQUEST_WILL_BE_SENT = "Network.requestWillBeSent"
NETWORK_REQUEST_SERVED_FROM_CACHE = "Network.requestServedFromCache"
NETWORK_DATA_RECEIVED = "Network.dataReceived"
NETWORK_RESPONSE_RECEIVED = "Network.responseReceived"
NETWORK_RESOURCE_CHANGED_PRIORITY = "Network.resourceChangedPriority"
NETWORK_LOADING_FINISHED = "Network.loadingFinished"
NETWORK_LOADING_FAILED = "Network.loadingFailed"
NETWORK_GET_RESPONSE_BODY = "Network.getResponseBody"

# Fixed subscription set, page lifecycle first
OBSERVED_EVENTS = (
    PAGE_LOAD_EVENT_FIRED,
    PAGE_DOM_CONTENT_EVENT_FIRED,
    PAGE_FRAME_STARTED_LOADING,
    PAGE_FRAME_ATTACHED,
    NETWORK_REQUEST_WILL_BE_SENT,
    NETWORK_REQUEST_SERVED_FROM_CACHE,
    NETWORK_DATA_RECEIVED,
    NETWORK_RESPONSE_RECEIVED,
    NETWORK_RESOURCE_CHANGED_PRIORITY,
    NETWORK_LOADING_FINISHED,
    NETWORK_LOADING_FAILED,
)


class CaptureStatus(str, Enum):
    """Overall status of a capture run."""
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"


class HarMode(str, Enum):
    """Mode the HAR document was synthesized in."""
    FULL = "full"
    REDUCED = "reduced"


class Event(BaseModel):
    """A single protocol event as delivered by the debugging session.

    The payload shape is owned by the protocol, so ``params`` is kept as-is.
    """

    method: str = Field(description="Protocol method name, e.g. Network.dataReceived")
    params: Any = Field(default_factory=dict, description="Raw event payload")

    @property
    def request_id(self) -> Optional[str]:
        """Request id carried by the payload, if any."""
        if isinstance(self.params, dict):
            return self.params.get("requestId")
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"method": self.method, "params": self.params}


class BodyRecord(BaseModel):
    """Response body for one request, real or synthetic."""

    request_id: str = Field(alias="requestId", description="Request the body belongs to")
    body: str = Field(default="", description="Response body, possibly base64 encoded")
    base64_encoded: bool = Field(
        default=False,
        alias="base64Encoded",
        description="Whether body is base64 encoded"
    )

    model_config = {"populate_by_name": True}

    @classmethod
    def empty(cls, request_id: str) -> "BodyRecord":
        """Degenerate record used when no body could be retrieved."""
        return cls(request_id=request_id, body="", base64_encoded=False)

    def to_event(self) -> Event:
        """Wrap the record as a synthetic ``Network.getResponseBody`` event."""
        return Event(
            method=NETWORK_GET_RESPONSE_BODY,
            params=self.model_dump(by_alias=True)
        )


class FetchResult(BaseModel):
    """Outcome of one response body fetch: either a record or an error."""

    request_id: str
    record: Optional[BodyRecord] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, record: BodyRecord) -> "FetchResult":
        return cls(request_id=record.request_id, record=record)

    @classmethod
    def failure(cls, request_id: str, error: Union[str, Exception]) -> "FetchResult":
        return cls(request_id=request_id, error=str(error) or error.__class__.__name__)

    @property
    def ok(self) -> bool:
        return self.record is not None

    def unwrap_or_empty(self) -> BodyRecord:
        """Return the fetched record, or an empty one if the fetch failed."""
        if self.record is not None:
            return self.record
        return BodyRecord.empty(self.request_id)


class EventLog:
    """Ordered, append-only log of protocol events for one capture session.

    Entries are never mutated or removed. Insertion order is the arrival
    order of recorded events, followed by synthetic body events.
    """

    def __init__(self, events: Optional[List[Event]] = None):
        self._events: List[Event] = list(events or [])

    def append(self, event: Event) -> None:
        self._events.append(event)

    def request_ids(self, method: str) -> Set[str]:
        """Collect the request ids of every event with the given method."""
        ids = set()
        for event in self._events:
            if event.method == method and event.request_id is not None:
                ids.add(event.request_id)
        return ids

    def count(self, method: str) -> int:
        return sum(1 for event in self._events if event.method == method)

    def to_list(self) -> List[Dict[str, Any]]:
        """Serialize as a list of ``{method, params}`` records."""
        return [event.to_dict() for event in self._events]

    @classmethod
    def from_list(cls, records: List[Dict[str, Any]]) -> "EventLog":
        return cls([Event(method=r["method"], params=r.get("params", {})) for r in records])

    def __iter__(self) -> Iterator[Event]:
        return iter(list(self._events))

    def __len__(self) -> int:
        return len(self._events)

    def __getitem__(self, index: int) -> Event:
        return self._events[index]

    def __repr__(self) -> str:
        return f"EventLog(events={len(self._events)})"


class OutputTarget(BaseModel):
    """Optional output file: either disabled or a path."""

    path: Optional[Path] = Field(default=None, description="Destination file, None when disabled")

    @classmethod
    def parse(cls, value: Union[str, Path, bool, None]) -> "OutputTarget":
        """Resolve a boolean-or-filename option value.

        ``None``, ``False``, an empty string or the string ``"false"`` (any case,
        surrounding whitespace ignored) disable the output.
        """
        if value is None or value is False:
            return cls()
        if isinstance(value, Path):
            return cls(path=value)
        if value is True:
            raise ValueError("An enabled output target needs a file name")
        text = str(value).strip()
        if not text or text.lower() == "false":
            return cls()
        return cls(path=Path(text))

    @classmethod
    def disabled(cls) -> "OutputTarget":
        return cls()

    @property
    def enabled(self) -> bool:
        return self.path is not None

    def __bool__(self) -> bool:
        return self.enabled

    def __str__(self) -> str:
        return str(self.path) if self.path else "disabled"


class ArtifactPaths(BaseModel):
    """Paths to the files written by a capture run."""

    har_file: Optional[Path] = Field(default=None, description="Path to HAR file")
    screenshot_file: Optional[Path] = Field(default=None, description="Path to screenshot file")
    events_file: Optional[Path] = Field(default=None, description="Path to raw event log")
    js_result_file: Optional[Path] = Field(default=None, description="Path to script result")

    @property
    def has_artifacts(self) -> bool:
        """Check if any artifacts were generated."""
        return any([
            self.har_file,
            self.screenshot_file,
            self.events_file,
            self.js_result_file
        ])


class CaptureResult(BaseModel):
    """Outcome of one capture run."""

    url: str = Field(description="URL that was captured")
    capture_status: CaptureStatus = Field(description="Overall capture status")
    capture_time: datetime = Field(
        default_factory=datetime.utcnow,
        description="When capture was started"
    )
    capture_error: Optional[str] = Field(default=None, description="Error message if capture failed")

    # Event log statistics
    event_count: int = Field(default=0, description="Events in the final log")
    loaded_count: int = Field(default=0, description="Requests that finished loading")
    body_count: int = Field(default=0, description="Body records before backfilling")
    failed_fetches: int = Field(default=0, description="Body fetches that failed")
    backfilled: List[str] = Field(default_factory=list, description="Request ids given an empty body")

    har_mode: Optional[HarMode] = Field(default=None, description="HAR synthesis mode used")
    js_result: Any = Field(default=None, description="Value returned by the page script")
    artifacts: ArtifactPaths = Field(default_factory=ArtifactPaths)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        """Validate URL format."""
        result = urlparse(v)
        if not result.scheme:
            raise ValueError(f"Invalid URL: {v}")
        return v

    @property
    def is_successful(self) -> bool:
        return self.capture_status == CaptureStatus.SUCCESS

    def export_summary(self) -> Dict[str, Any]:
        """Export a summary of the capture for reporting."""
        return {
            "url": self.url,
            "status": self.capture_status.value,
            "capture_time": self.capture_time.isoformat(),
            "events": self.event_count,
            "loaded": self.loaded_count,
            "bodies": self.body_count,
            "failed_fetches": self.failed_fetches,
            "backfilled": len(self.backfilled),
            "har_mode": self.har_mode.value if self.har_mode else None,
            "error": self.capture_error,
        }
