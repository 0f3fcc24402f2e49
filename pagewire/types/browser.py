"""Browser-specific type definitions."""

import base64
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .models import LifecycleState


class TargetInfo(BaseModel):
    """Remote target description as sent by Target.* events."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    target_id: str = Field(alias="targetId")
    type: str = "other"
    title: str = ""
    url: str = ""
    attached: bool = False
    opener_id: Optional[str] = Field(default=None, alias="openerId")
    browser_context_id: Optional[str] = Field(default=None, alias="browserContextId")


class FrameInfo(BaseModel):
    """Point-in-time snapshot of a frame."""
    frame_id: str
    parent_frame_id: Optional[str] = None
    url: str
    name: Optional[str] = None
    loader_id: Optional[str] = None
    lifecycle: LifecycleState = LifecycleState.PENDING
    session_id: Optional[str] = None
    is_oopif: bool = False
    child_frame_ids: List[str] = Field(default_factory=list)


class ResponseInfo(BaseModel):
    """Response headers received for a network request."""
    url: str
    status: int
    status_text: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    mime_type: Optional[str] = None
    from_disk_cache: bool = False
    from_service_worker: bool = False
    remote_ip_address: Optional[str] = None
    remote_port: Optional[int] = None

    @classmethod
    def from_protocol(cls, payload: Dict) -> "ResponseInfo":
        return cls(
            url=payload.get("url", ""),
            status=payload.get("status", 0),
            status_text=payload.get("statusText", ""),
            headers={k.lower(): str(v) for k, v in (payload.get("headers") or {}).items()},
            mime_type=payload.get("mimeType"),
            from_disk_cache=bool(payload.get("fromDiskCache")),
            from_service_worker=bool(payload.get("fromServiceWorker")),
            remote_ip_address=payload.get("remoteIPAddress"),
            remote_port=payload.get("remotePort"),
        )


class ContinueOverrides(BaseModel):
    """Mutations applied when continuing an intercepted request."""
    url: Optional[str] = None
    method: Optional[str] = None
    post_data: Optional[Union[str, bytes]] = None
    headers: Optional[Dict[str, str]] = None

    def to_protocol(self) -> Dict:
        params: Dict = {}
        if self.url is not None:
            params["url"] = self.url
        if self.method is not None:
            params["method"] = self.method
        if self.post_data is not None:
            params["postData"] = _to_base64(self.post_data)
        if self.headers is not None:
            params["headers"] = headers_to_array(self.headers)
        return params


class FulfillResponse(BaseModel):
    """Synthetic response used to fulfill an intercepted request."""
    status: int = 200
    headers: Dict[str, str] = Field(default_factory=dict)
    content_type: Optional[str] = None
    body: Union[str, bytes] = b""

    def to_protocol(self) -> Dict:
        body = self.body.encode("utf-8") if isinstance(self.body, str) else self.body
        headers = {k.lower(): v for k, v in self.headers.items()}
        if self.content_type and "content-type" not in headers:
            headers["content-type"] = self.content_type
        if body and "content-length" not in headers:
            headers["content-length"] = str(len(body))
        params = {
            "responseCode": self.status,
            "responseHeaders": headers_to_array(headers),
            "body": base64.b64encode(body).decode("ascii"),
        }
        phrase = STATUS_TEXTS.get(self.status)
        if phrase:
            params["responsePhrase"] = phrase
        return params


class Credentials(BaseModel):
    """HTTP authentication credentials."""
    username: str
    password: str


def headers_to_array(headers: Dict[str, str]) -> List[Dict[str, str]]:
    return [{"name": name, "value": str(value)} for name, value in headers.items()]


def _to_base64(data: Union[str, bytes]) -> str:
    raw = data.encode("utf-8") if isinstance(data, str) else data
    return base64.b64encode(raw).decode("ascii")


STATUS_TEXTS = {
    200: "OK",
    201: "Created",
    204: "No Content",
    301: "Moved Permanently",
    302: "Found",
    304: "Not Modified",
    307: "Temporary Redirect",
    308: "Permanent Redirect",
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    409: "Conflict",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
}
