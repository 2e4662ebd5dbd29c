"""
Response Envelope
=================
The JSON envelope every pipeline response uses, and the transport-neutral
response object handlers return.

Wire format::

    {"success": false, "error": "Invalid origin",
     "message": "Request origin not allowed",
     "timestamp": "2024-05-01T12:00:00.000000+00:00",
     "requestId": "req_1714564800000_k3j9x0a1b"}
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from starlette.responses import JSONResponse


@dataclass
class APIResponse:
    """Standard API response; absent fields are omitted from the wire form."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    message: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            body["data"] = self.data
        if self.error is not None:
            body["error"] = self.error
        if self.message is not None:
            body["message"] = self.message
        body["timestamp"] = self.timestamp.isoformat()
        if self.request_id is not None:
            body["requestId"] = self.request_id
        return body


def is_envelope(body: Any) -> bool:
    """True if body already has the envelope shape."""
    return isinstance(body, dict) and "success" in body and "timestamp" in body


def create_api_response(
    success: bool,
    data: Any = None,
    error: Optional[str] = None,
    message: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the envelope dict for a response."""
    return APIResponse(
        success=success,
        data=data,
        error=error,
        message=message,
        request_id=request_id,
    ).to_dict()


@dataclass
class PipelineResponse:
    """Status, JSON body and headers produced by the pipeline or a handler."""
    status_code: int = 200
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None, status_code: int = 200) -> "PipelineResponse":
        """Successful envelope; the request id is filled in by the pipeline."""
        return cls(status_code=status_code, body=create_api_response(True, data=data, message=message))

    def to_starlette(self) -> JSONResponse:
        return JSONResponse(content=self.body, status_code=self.status_code, headers=self.headers)
