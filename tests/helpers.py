"""Protocol event builders and a session double shared by the unit tests."""

from typing import Any, Dict, List, Optional


class FakeCDPSession:
    """Protocol session double: records handlers and answers body requests.

    ``bodies`` maps request ids to ``Network.getResponseBody`` replies; ids not
    in the map fail the way Chrome does for empty and 204 responses.
    """

    def __init__(self, bodies: Optional[Dict[str, Dict[str, Any]]] = None):
        self.bodies = bodies or {}
        self.handlers: Dict[str, Any] = {}
        self.sent: List[tuple] = []

    def on(self, method, handler):
        self.handlers[method] = handler

    async def send(self, method, params=None):
        self.sent.append((method, params))
        if method == "Network.getResponseBody":
            request_id = params["requestId"]
            if request_id not in self.bodies:
                raise Exception("No data found for resource with given identifier")
            reply = self.bodies[request_id]
            if isinstance(reply, Exception):
                raise reply
            return dict(reply)
        return {}

    def emit(self, method, params):
        handler = self.handlers.get(method)
        if handler is not None:
            handler(params)


def request_will_be_sent(request_id, url="https://example.com/", timestamp=1000.0,
                         wall_time=1700000000.0, method="GET", **extra):
    params = {
        "requestId": request_id,
        "loaderId": "loader-1",
        "documentURL": url,
        "request": {
            "url": url,
            "method": method,
            "headers": {"User-Agent": "Test"},
            "initialPriority": "High",
        },
        "timestamp": timestamp,
        "wallTime": wall_time,
        "initiator": {"type": "other"},
        "type": "Document",
    }
    params.update(extra)
    return {"method": "Network.requestWillBeSent", "params": params}


def response_received(request_id, url="https://example.com/", status=200,
                      mime_type="text/html", headers=None, **extra):
    response = {
        "url": url,
        "status": status,
        "statusText": "OK",
        "headers": headers if headers is not None else {"Content-Type": mime_type},
        "mimeType": mime_type,
        "protocol": "http/1.1",
        "remoteIPAddress": "93.184.216.34",
        "connectionId": 42,
        "timing": {
            "requestTime": 1000.0,
            "dnsStart": 1.0,
            "dnsEnd": 3.0,
            "connectStart": 3.0,
            "connectEnd": 10.0,
            "sslStart": 5.0,
            "sslEnd": 10.0,
            "sendStart": 11.0,
            "sendEnd": 12.0,
            "receiveHeadersEnd": 50.0,
        },
    }
    response.update(extra)
    return {
        "method": "Network.responseReceived",
        "params": {"requestId": request_id, "timestamp": 1000.05, "type": "Document", "response": response},
    }


def data_received(request_id, data_length, encoded_data_length=0):
    return {
        "method": "Network.dataReceived",
        "params": {
            "requestId": request_id,
            "timestamp": 1000.06,
            "dataLength": data_length,
            "encodedDataLength": encoded_data_length,
        },
    }


def loading_finished(request_id, timestamp=1000.1, encoded_data_length=0):
    return {
        "method": "Network.loadingFinished",
        "params": {"requestId": request_id, "timestamp": timestamp, "encodedDataLength": encoded_data_length},
    }


def loading_failed(request_id, error_text="net::ERR_FAILED", timestamp=1000.1):
    return {
        "method": "Network.loadingFailed",
        "params": {"requestId": request_id, "timestamp": timestamp, "errorText": error_text, "type": "Script"},
    }


def response_body(request_id, body="", base64_encoded=False):
    return {
        "method": "Network.getResponseBody",
        "params": {"requestId": request_id, "body": body, "base64Encoded": base64_encoded},
    }

