"""
Security Headers
================

Response headers set by the pipeline on every response, the rate limit
header set, and a Starlette middleware with the extended header set for
apps that serve routes outside the pipeline.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from typing import Awaitable, Callable, Dict, MutableMapping, Optional

from reqguard.rate_limit.models import RateLimitInfo

SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
}


def apply_security_headers(
    headers: MutableMapping[str, str],
    request_id: Optional[str] = None,
) -> MutableMapping[str, str]:
    """Add the standard headers (and X-Request-ID) to a header mapping."""
    for name, value in SECURITY_HEADERS.items():
        headers[name] = value
    if request_id:
        headers["X-Request-ID"] = request_id
    return headers


def get_rate_limit_headers(info: RateLimitInfo) -> Dict[str, str]:
    """
    Generate standard rate limit headers.

    Args:
        info: Result of a rate limit check

    Returns:
        Dict of headers; Retry-After only for rejected requests
    """
    headers = {
        "X-RateLimit-Limit": str(info.limit),
        "X-RateLimit-Remaining": str(max(0, info.remaining)),
        "X-RateLimit-Reset": str(info.reset_at),
    }
    if info.window is not None:
        headers["X-RateLimit-Window"] = str(info.window)
    if not info.allowed and info.retry_after is not None:
        headers["Retry-After"] = str(info.retry_after)
    return headers


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds security headers to all responses.

    Headers added:
    - X-Content-Type-Options, X-Frame-Options, X-XSS-Protection
    - Referrer-Policy: Controls referrer information
    - Content-Security-Policy: Only on HTML responses
    - Strict-Transport-Security: Forces HTTPS
    - Permissions-Policy: Restricts browser features
    """

    def __init__(
        self,
        app,
        enable_hsts: bool = True,
        hsts_max_age: int = 31536000,  # 1 year
        frame_options: str = "DENY",
        referrer_policy: str = "strict-origin-when-cross-origin",
        csp_policy: Optional[str] = None,
    ):
        super().__init__(app)
        self.enable_hsts = enable_hsts
        self.hsts_max_age = hsts_max_age
        self.frame_options = frame_options
        self.referrer_policy = referrer_policy
        self.csp_policy = csp_policy or "; ".join([
            "default-src 'self'",
            "script-src 'self'",
            "img-src 'self' data: https:",
            "frame-ancestors 'none'",
            "form-action 'self'",
            "base-uri 'self'",
        ])

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        response = await call_next(request)

        apply_security_headers(response.headers)
        response.headers["X-Frame-Options"] = self.frame_options
        response.headers["Referrer-Policy"] = self.referrer_policy

        if "text/html" in response.headers.get("content-type", ""):
            response.headers["Content-Security-Policy"] = self.csp_policy

        if self.enable_hsts:
            response.headers["Strict-Transport-Security"] = (
                f"max-age={self.hsts_max_age}; includeSubDomains"
            )

        response.headers["Permissions-Policy"] = (
            "camera=(), geolocation=(), microphone=(), payment=(), usb=()"
        )
        return response
