"""
Request Model
=============
Transport-neutral view of an inbound request plus the identity interface.

The pipeline never touches a framework request directly; adapters build a
SecurityRequest (see ``SecurityRequest.from_starlette``).
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol


SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


@dataclass
class SessionIdentity:
    """Authenticated principal resolved by the identity provider."""
    user_id: str
    role: Optional[str] = None
    session_id: Optional[str] = None


class SessionProvider(Protocol):
    """Resolves the caller's identity; None means anonymous."""

    async def lookup(self, request: "SecurityRequest") -> Optional[SessionIdentity]:
        ...


@dataclass
class SecurityRequest:
    """An inbound request as seen by the security pipeline."""
    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    client_host: Optional[str] = None
    query: Dict[str, str] = field(default_factory=dict)
    session_id: Optional[str] = None
    request_id: Optional[str] = None
    identity: Optional[SessionIdentity] = None
    json_body: Any = None

    def __post_init__(self):
        self.method = self.method.upper()
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    @property
    def is_safe_method(self) -> bool:
        return self.method in SAFE_METHODS

    @property
    def has_body_method(self) -> bool:
        return self.method in BODY_METHODS

    @property
    def client_ip(self) -> str:
        """Client address, preferring proxy headers."""
        forwarded = self.header("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = self.header("x-real-ip")
        if real_ip:
            return real_ip.strip()
        return self.client_host or "unknown"

    @property
    def user_agent(self) -> Optional[str]:
        return self.header("user-agent")

    @property
    def user_id(self) -> Optional[str]:
        return self.identity.user_id if self.identity else None

    @property
    def content_length(self) -> int:
        """Declared Content-Length, falling back to the actual body size."""
        declared = self.header("content-length")
        if declared:
            try:
                return int(declared)
            except ValueError:
                pass
        return len(self.body)

    def json(self) -> Any:
        """Decode the body as JSON; an empty body decodes to None."""
        if not self.body:
            return None
        return json.loads(self.body)

    @classmethod
    async def from_starlette(
        cls,
        request,
        session_cookie: str = "session_id",
        max_body: Optional[int] = None,
    ) -> "SecurityRequest":
        """
        Build a SecurityRequest from a Starlette request.

        Args:
            request: starlette.requests.Request
            session_cookie: Cookie carrying the session id
            max_body: Stop reading the body once it exceeds this many bytes

        Returns:
            SecurityRequest; with max_body set, an oversized body is either
            left unread (declared Content-Length) or truncated just past the
            limit, so the pipeline size check still rejects it
        """
        body = await _read_body(request, max_body)
        cookies: Mapping[str, str] = request.cookies
        return cls(
            method=request.method,
            path=request.url.path,
            headers=dict(request.headers.items()),
            cookies=dict(cookies),
            body=body,
            client_host=request.client.host if request.client else None,
            query=dict(request.query_params.items()),
            session_id=cookies.get(session_cookie),
        )


async def _read_body(request, max_body: Optional[int]) -> bytes:
    if max_body is None:
        return await request.body()

    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_body:
        # Left unread; the declared length is enough to reject
        return b""

    chunks = []
    size = 0
    async for chunk in request.stream():
        chunks.append(chunk)
        size += len(chunk)
        if size > max_body:
            break
    return b"".join(chunks)
