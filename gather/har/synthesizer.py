"""HAR synthesis from a recorded protocol event log.

This module converts the ordered event log of one page load into a HAR 1.2
document. Events are correlated purely by request id and method name, so the
position of synthetic body events relative to the network timeline does not
matter. Optional events that never arrived degrade the output (missing
timings, sizes or content) rather than failing it.

Full mode embeds response content in each entry; reduced mode omits it.
``synthesize_with_fallback`` tries full mode first and falls back to reduced
mode when the log carries content that cannot be interpreted.
"""

import base64
import binascii
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl, urlsplit

from .models import (
    HarContent,
    HarCookie,
    HarCreator,
    HarDocument,
    HarEntry,
    HarHeader,
    HarLog,
    HarPage,
    HarPageTimings,
    HarPostData,
    HarQueryParam,
    HarRequest,
    HarResponse,
    HarTimings,
)
from .. import __version__
from ..models.capture import (
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
    NETWORK_GET_RESPONSE_BODY,
    Event,
    EventLog,
    HarMode,
)

logger = logging.getLogger(__name__)

PAGE_ID = "page_1"
CREATOR_NAME = "chrome-gather"

EventSource = Union[EventLog, Iterable[Union[Event, Mapping[str, Any]]]]


class SynthesisError(Exception):
    """The event log cannot be interpreted in the requested mode."""


def _iso_timestamp(seconds: float) -> str:
    moment = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _first_non_negative(values: Iterable[Optional[float]]) -> Optional[float]:
    for value in values:
        if value is not None and value >= 0:
            return value
    return None


def _byte_count(value: Optional[float]) -> int:
    # The protocol reports byte counts as floating point numbers
    return int(round(value)) if value else 0


def _http_version(protocol: Optional[str]) -> str:
    if not protocol:
        return "HTTP/1.1"
    lowered = protocol.lower()
    if lowered == "h2":
        return "HTTP/2.0"
    if lowered.startswith("h3") or lowered == "quic":
        return "HTTP/3"
    return protocol.upper()


def _header_list(headers: Optional[Mapping[str, Any]]) -> List[HarHeader]:
    if not headers:
        return []
    return [HarHeader(name=str(name), value=str(value)) for name, value in headers.items()]


def _header_value(headers: Optional[Mapping[str, Any]], name: str) -> Optional[str]:
    if not headers:
        return None
    wanted = name.lower()
    for key, value in headers.items():
        if str(key).lower() == wanted:
            return str(value)
    return None


def _parse_request_cookies(header: Optional[str]) -> List[HarCookie]:
    cookies = []
    if not header:
        return cookies
    for pair in header.split(";"):
        name, sep, value = pair.strip().partition("=")
        if sep and name:
            cookies.append(HarCookie(name=name, value=value))
    return cookies


def _parse_response_cookies(header: Optional[str]) -> List[HarCookie]:
    # Chrome joins repeated Set-Cookie headers with newlines
    cookies = []
    if not header:
        return cookies
    for line in header.split("\n"):
        parts = [part.strip() for part in line.split(";")]
        name, sep, value = parts[0].partition("=")
        if not sep or not name:
            continue
        cookie = HarCookie(name=name, value=value)
        for attribute in parts[1:]:
            key, _, attr_value = attribute.partition("=")
            key = key.lower()
            if key == "path":
                cookie.path = attr_value
            elif key == "domain":
                cookie.domain = attr_value
            elif key == "expires":
                cookie.expires = attr_value
            elif key == "httponly":
                cookie.http_only = True
            elif key == "secure":
                cookie.secure = True
        cookies.append(cookie)
    return cookies


class _EntryState:
    """Everything observed for one request/response pair."""

    def __init__(self, request_id: str, params: Dict[str, Any]):
        self.request_id = request_id
        self.request_params = params
        self.response: Optional[Dict[str, Any]] = None
        self.data_length = 0
        self.encoded_data_length = 0
        self.encoded_response_length: Optional[int] = None
        self.finished_timestamp: Optional[float] = None
        self.served_from_cache = False
        self.error_text: Optional[str] = None
        self.new_priority: Optional[str] = None
        self.redirected = False
        self.has_body = False
        self.body: Any = None
        self.body_base64: Any = False

    @property
    def request(self) -> Dict[str, Any]:
        return self.request_params.get("request") or {}


class _PageState:
    """Accumulates the event log of one page load."""

    def __init__(self, url: Optional[str]):
        self.url = url
        self.entries: List[_EntryState] = []
        self.current: Dict[str, _EntryState] = {}
        self.first_timestamp: Optional[float] = None
        self.first_wall_time: Optional[float] = None
        self.dom_content_timestamp: Optional[float] = None
        self.load_timestamp: Optional[float] = None
        self.ignored = 0

    def process(self, method: str, params: Dict[str, Any]) -> None:
        if method == PAGE_DOM_CONTENT_EVENT_FIRED:
            self.dom_content_timestamp = params.get("timestamp")
        elif method == PAGE_LOAD_EVENT_FIRED:
            self.load_timestamp = params.get("timestamp")
        elif method in (PAGE_FRAME_STARTED_LOADING, PAGE_FRAME_ATTACHED):
            # Kept in the event log only; HAR has no frame fields
            pass
        elif method == NETWORK_REQUEST_WILL_BE_SENT:
            self._request_will_be_sent(params)
        else:
            self._update_entry(method, params)

    def _request_will_be_sent(self, params: Dict[str, Any]) -> None:
        request_id = params.get("requestId")
        if request_id is None:
            self.ignored += 1
            return

        if self.first_timestamp is None:
            self.first_timestamp = params.get("timestamp")
            self.first_wall_time = params.get("wallTime")
            if self.url is None:
                self.url = (params.get("request") or {}).get("url")

        # A redirect reuses the request id: close the previous hop
        redirect_response = params.get("redirectResponse")
        previous = self.current.get(request_id)
        if redirect_response is not None and previous is not None:
            previous.response = redirect_response
            previous.redirected = True
            previous.finished_timestamp = params.get("timestamp")

        entry = _EntryState(request_id, params)
        self.entries.append(entry)
        self.current[request_id] = entry

    def _update_entry(self, method: str, params: Dict[str, Any]) -> None:
        entry = self.current.get(params.get("requestId"))
        if entry is None:
            self.ignored += 1
            return

        if method == NETWORK_DATA_RECEIVED:
            entry.data_length += _byte_count(params.get("dataLength"))
            entry.encoded_data_length += _byte_count(params.get("encodedDataLength"))
        elif method == NETWORK_RESPONSE_RECEIVED:
            entry.response = params.get("response")
        elif method == NETWORK_RESOURCE_CHANGED_PRIORITY:
            entry.new_priority = params.get("newPriority")
        elif method == NETWORK_REQUEST_SERVED_FROM_CACHE:
            entry.served_from_cache = True
        elif method == NETWORK_LOADING_FINISHED:
            encoded = params.get("encodedDataLength")
            entry.encoded_response_length = _byte_count(encoded) if encoded is not None else None
            entry.finished_timestamp = params.get("timestamp")
        elif method == NETWORK_LOADING_FAILED:
            entry.error_text = params.get("errorText") or "failed"
            entry.finished_timestamp = params.get("timestamp")
        elif method == NETWORK_GET_RESPONSE_BODY:
            entry.has_body = True
            entry.body = params.get("body")
            entry.body_base64 = params.get("base64Encoded", False)
        else:
            self.ignored += 1

    def started_at(self, timestamp: Optional[float], wall_time: Optional[float]) -> str:
        """Wall clock start of an event, derived from the first request when needed."""
        if wall_time is not None:
            return _iso_timestamp(wall_time)
        if self.first_wall_time is not None and self.first_timestamp is not None and timestamp is not None:
            return _iso_timestamp(self.first_wall_time + (timestamp - self.first_timestamp))
        if self.first_wall_time is not None:
            return _iso_timestamp(self.first_wall_time)
        return _iso_timestamp(0)

    def relative_ms(self, timestamp: Optional[float]) -> float:
        if timestamp is None or self.first_timestamp is None:
            return -1
        return (timestamp - self.first_timestamp) * 1000


class HarSynthesizer:
    """Builds HAR documents from protocol event logs."""

    def __init__(self, creator_name: str = CREATOR_NAME, creator_version: str = __version__):
        self.creator = HarCreator(name=creator_name, version=creator_version)

    def synthesize(self, url: Optional[str], events: EventSource, content: bool = True) -> HarDocument:
        """Build a HAR document.

        Args:
            url: Target URL, used as the page title (first request URL if None)
            events: Ordered event log
            content: Embed response bodies (full mode) or omit them (reduced mode)

        Returns:
            HAR document

        Raises:
            SynthesisError: If the log cannot be interpreted in this mode
        """
        mode = HarMode.FULL if content else HarMode.REDUCED
        try:
            page = _PageState(url)
            for method, params in self._iter_events(events):
                page.process(method, params)

            entries = []
            for state in page.entries:
                entry = self._build_entry(page, state, content)
                if entry is not None:
                    entries.append(entry)

            if page.ignored:
                logger.debug(f"Ignored {page.ignored} events without a matching request")

            document = HarDocument(log=HarLog(
                creator=self.creator,
                pages=[self._build_page(page)],
                entries=entries
            ))
        except SynthesisError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise SynthesisError(f"Cannot build {mode.value} HAR: {e}") from e

        logger.debug(f"Synthesized {mode.value} HAR with {len(entries)} entries")
        return document

    def _iter_events(self, events: EventSource):
        for index, event in enumerate(events):
            if isinstance(event, Event):
                method, params = event.method, event.params
            elif isinstance(event, Mapping):
                method, params = event.get("method"), event.get("params", {})
            else:
                raise SynthesisError(f"Event #{index} is not a {{method, params}} record")

            if not isinstance(method, str):
                raise SynthesisError(f"Event #{index} has no method name")
            if params is None:
                params = {}
            if not isinstance(params, Mapping):
                raise SynthesisError(f"Event #{index} ({method}) has a non-object payload")

            yield method, params

    def _build_page(self, page: _PageState) -> HarPage:
        return HarPage(
            id=PAGE_ID,
            title=page.url or "",
            started_date_time=page.started_at(page.first_timestamp, page.first_wall_time),
            page_timings=HarPageTimings(
                on_content_load=page.relative_ms(page.dom_content_timestamp),
                on_load=page.relative_ms(page.load_timestamp),
            )
        )

    def _build_entry(self, page: _PageState, state: _EntryState, content: bool) -> Optional[HarEntry]:
        response = state.response
        if response is None:
            logger.debug(f"Dropping request {state.request_id} without a response")
            return None

        request = state.request
        timings = self._build_timings(page, state)

        return HarEntry(
            pageref=PAGE_ID,
            started_date_time=page.started_at(
                state.request_params.get("timestamp"),
                state.request_params.get("wallTime")
            ),
            time=timings.total,
            request=self._build_request(request, response),
            response=self._build_response(state, response, content),
            cache={},
            timings=timings,
            server_ip_address=response.get("remoteIPAddress"),
            connection=str(response["connectionId"]) if response.get("connectionId") is not None else None,
            initiator=state.request_params.get("initiator"),
            priority=state.new_priority or request.get("initialPriority"),
            resource_type=state.request_params.get("type"),
            from_cache=True if self._from_cache(state, response) else None,
            error=state.error_text,
        )

    def _build_timings(self, page: _PageState, state: _EntryState) -> HarTimings:
        timing = state.response.get("timing")
        if not timing:
            receive = 0.0
            start = state.request_params.get("timestamp")
            if state.finished_timestamp is not None and start is not None:
                receive = max((state.finished_timestamp - start) * 1000, 0)
            return HarTimings(blocked=0, send=0, wait=0, receive=receive)

        dns_start = timing.get("dnsStart", -1)
        connect_start = timing.get("connectStart", -1)
        ssl_start = timing.get("sslStart", -1)
        send_start = timing.get("sendStart", 0)
        send_end = timing.get("sendEnd", send_start)
        headers_end = timing.get("receiveHeadersEnd", send_end)

        blocked = _first_non_negative([dns_start, connect_start, send_start])
        dns = timing.get("dnsEnd", dns_start) - dns_start if dns_start >= 0 else -1
        connect = timing.get("connectEnd", connect_start) - connect_start if connect_start >= 0 else -1
        ssl = timing.get("sslEnd", ssl_start) - ssl_start if ssl_start >= 0 else -1

        receive = 0.0
        request_time = timing.get("requestTime")
        if state.finished_timestamp is not None and request_time is not None:
            receive = max((state.finished_timestamp - request_time) * 1000 - headers_end, 0)

        return HarTimings(
            blocked=blocked if blocked is not None else -1,
            dns=dns,
            connect=connect,
            ssl=ssl,
            send=max(send_end - send_start, 0),
            wait=max(headers_end - send_end, 0),
            receive=receive,
        )

    def _build_request(self, request: Dict[str, Any], response: Dict[str, Any]) -> HarRequest:
        url = request.get("url", "")
        if request.get("urlFragment"):
            url += request["urlFragment"]

        # responseReceived carries the headers actually sent, when available
        headers = response.get("requestHeaders") or request.get("headers") or {}
        headers_text = response.get("requestHeadersText")

        post_data = None
        body_size = 0
        text = request.get("postData")
        if text is not None:
            mime_type = _header_value(headers, "content-type") or ""
            params = []
            if mime_type.startswith("application/x-www-form-urlencoded"):
                params = [HarQueryParam(name=k, value=v) for k, v in parse_qsl(text, keep_blank_values=True)]
            post_data = HarPostData(mime_type=mime_type, text=text, params=params)
            body_size = len(text.encode("utf-8"))

        return HarRequest(
            method=request.get("method", "GET"),
            url=url,
            http_version=_http_version(response.get("protocol")),
            cookies=_parse_request_cookies(_header_value(headers, "cookie")),
            headers=_header_list(headers),
            query_string=[
                HarQueryParam(name=k, value=v)
                for k, v in parse_qsl(urlsplit(url).query, keep_blank_values=True)
            ],
            post_data=post_data,
            headers_size=len(headers_text) if headers_text else -1,
            body_size=body_size,
        )

    def _build_response(self, state: _EntryState, response: Dict[str, Any], content: bool) -> HarResponse:
        headers = response.get("headers") or {}
        headers_text = response.get("headersText")
        headers_size = len(headers_text) if headers_text else -1

        if state.redirected or self._from_cache(state, response):
            body_size = 0
        else:
            encoded = state.encoded_response_length
            if encoded is None:
                encoded = state.encoded_data_length
            body_size = max(encoded - headers_size, 0) if headers_size >= 0 else encoded

        har_content = HarContent(
            size=state.data_length,
            mime_type=response.get("mimeType", ""),
        )
        if content and state.has_body:
            self._embed_body(state, har_content)
        if body_size > 0 and har_content.size >= body_size:
            har_content.compression = har_content.size - body_size

        return HarResponse(
            status=response.get("status", 0),
            status_text=response.get("statusText", ""),
            http_version=_http_version(response.get("protocol")),
            cookies=_parse_response_cookies(_header_value(headers, "set-cookie")),
            headers=_header_list(headers),
            content=har_content,
            redirect_url=_header_value(headers, "location") or "",
            headers_size=headers_size,
            body_size=body_size,
        )

    def _embed_body(self, state: _EntryState, har_content: HarContent) -> None:
        body, is_base64 = state.body, state.body_base64

        if not isinstance(body, str):
            raise SynthesisError(f"Body of request {state.request_id} is not a string")
        if not isinstance(is_base64, bool):
            raise SynthesisError(f"Body of request {state.request_id} has a non-boolean base64Encoded flag")

        if is_base64:
            try:
                decoded_size = len(base64.b64decode(body, validate=True))
            except (binascii.Error, ValueError) as e:
                raise SynthesisError(f"Body of request {state.request_id} is not valid base64: {e}") from e
            har_content.encoding = "base64"
        else:
            decoded_size = len(body.encode("utf-8"))

        har_content.text = body
        if not har_content.size:
            har_content.size = decoded_size

    @staticmethod
    def _from_cache(state: _EntryState, response: Dict[str, Any]) -> bool:
        return bool(
            state.served_from_cache
            or response.get("fromDiskCache")
            or response.get("fromPrefetchCache")
        )


def synthesize(url: Optional[str], events: EventSource, content: bool = True) -> HarDocument:
    """Build a HAR document with the default synthesizer."""
    return HarSynthesizer().synthesize(url, events, content=content)


def synthesize_with_fallback(
    url: Optional[str],
    events: EventSource,
    synthesizer: Optional[HarSynthesizer] = None
) -> Tuple[HarDocument, HarMode]:
    """Build a full HAR document, falling back to reduced mode on failure.

    Args:
        url: Target URL
        events: Ordered event log
        synthesizer: Synthesizer to use (default one if None)

    Returns:
        Tuple of (document, mode used)

    Raises:
        SynthesisError: If even reduced mode cannot interpret the log
    """
    synthesizer = synthesizer or HarSynthesizer()
    events = list(events)

    try:
        return synthesizer.synthesize(url, events, content=True), HarMode.FULL
    except SynthesisError as e:
        logger.warning(f"{e}; retrying without response content")

    return synthesizer.synthesize(url, events, content=False), HarMode.REDUCED
