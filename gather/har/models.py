"""HAR 1.2 document models.

Field names follow the HAR 1.2 format through aliases; serialize with
``to_dict()`` / ``to_json()`` so that aliases are used and unset optional
fields are left out.
"""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class HarModel(BaseModel):
    """Base for HAR objects: aliased names, construction by field name."""

    model_config = {"populate_by_name": True}


class HarHeader(HarModel):
    name: str
    value: str


class HarQueryParam(HarModel):
    name: str
    value: str


class HarCookie(HarModel):
    name: str
    value: str
    path: Optional[str] = None
    domain: Optional[str] = None
    expires: Optional[str] = None
    http_only: Optional[bool] = Field(default=None, alias="httpOnly")
    secure: Optional[bool] = None


class HarPostData(HarModel):
    mime_type: str = Field(default="", alias="mimeType")
    text: str = ""
    params: List[HarQueryParam] = Field(default_factory=list)


class HarRequest(HarModel):
    method: str
    url: str
    http_version: str = Field(default="HTTP/1.1", alias="httpVersion")
    cookies: List[HarCookie] = Field(default_factory=list)
    headers: List[HarHeader] = Field(default_factory=list)
    query_string: List[HarQueryParam] = Field(default_factory=list, alias="queryString")
    post_data: Optional[HarPostData] = Field(default=None, alias="postData")
    headers_size: int = Field(default=-1, alias="headersSize")
    body_size: int = Field(default=-1, alias="bodySize")


class HarContent(HarModel):
    size: int = 0
    compression: Optional[int] = None
    mime_type: str = Field(default="", alias="mimeType")
    text: Optional[str] = None
    encoding: Optional[str] = None


class HarResponse(HarModel):
    status: int
    status_text: str = Field(default="", alias="statusText")
    http_version: str = Field(default="HTTP/1.1", alias="httpVersion")
    cookies: List[HarCookie] = Field(default_factory=list)
    headers: List[HarHeader] = Field(default_factory=list)
    content: HarContent = Field(default_factory=HarContent)
    redirect_url: str = Field(default="", alias="redirectURL")
    headers_size: int = Field(default=-1, alias="headersSize")
    body_size: int = Field(default=-1, alias="bodySize")


class HarTimings(HarModel):
    """Request phases in milliseconds; -1 marks a phase that does not apply."""

    blocked: float = -1
    dns: float = -1
    connect: float = -1
    send: float = 0
    wait: float = 0
    receive: float = 0
    ssl: float = -1

    @property
    def total(self) -> float:
        """Sum of the phases that apply; ssl is already part of connect."""
        return sum(max(value, 0) for value in (
            self.blocked, self.dns, self.connect, self.send, self.wait, self.receive
        ))


class HarPageTimings(HarModel):
    on_content_load: float = Field(default=-1, alias="onContentLoad")
    on_load: float = Field(default=-1, alias="onLoad")


class HarPage(HarModel):
    started_date_time: str = Field(alias="startedDateTime")
    id: str
    title: str = ""
    page_timings: HarPageTimings = Field(default_factory=HarPageTimings, alias="pageTimings")


class HarEntry(HarModel):
    pageref: Optional[str] = None
    started_date_time: str = Field(alias="startedDateTime")
    time: float = 0
    request: HarRequest
    response: HarResponse
    cache: Dict[str, Any] = Field(default_factory=dict)
    timings: HarTimings = Field(default_factory=HarTimings)
    server_ip_address: Optional[str] = Field(default=None, alias="serverIPAddress")
    connection: Optional[str] = None

    # Custom fields carried over from the protocol
    initiator: Optional[Dict[str, Any]] = Field(default=None, alias="_initiator")
    priority: Optional[str] = Field(default=None, alias="_priority")
    resource_type: Optional[str] = Field(default=None, alias="_resourceType")
    from_cache: Optional[bool] = Field(default=None, alias="_fromCache")
    error: Optional[str] = Field(default=None, alias="_error")


class HarCreator(HarModel):
    name: str
    version: str


class HarLog(HarModel):
    version: str = "1.2"
    creator: HarCreator
    pages: List[HarPage] = Field(default_factory=list)
    entries: List[HarEntry] = Field(default_factory=list)


class HarDocument(HarModel):
    """Top-level HAR document."""

    log: HarLog

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @property
    def entries(self) -> List[HarEntry]:
        return self.log.entries
