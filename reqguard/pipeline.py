"""
Security Pipeline
=================
Runs every protected request through the checks configured for its route,
then the handler, then audits the outcome.

Order (terminal on the first failing check):

1. Rate limit                    -> 429
2. Origin (unsafe methods)       -> 403
3. CSRF (unsafe methods)         -> 403
4. Payload size (body methods)   -> 413
5. Content type (body methods)   -> 400
6. Session and role              -> 401 / 403
7. Request audit, body sanitization, handler, response audit

Usage (Starlette):
    pipeline = SecurityPipeline(rate_limiter, audit_logger, csrf, settings)

    async def create_booking(request: SecurityRequest):
        return {"id": "bk_1"}

    app = Starlette(routes=[
        Route(
            "/bookings",
            pipeline.as_starlette_endpoint(create_booking, RouteSecurityConfig.booking()),
            methods=["POST"],
        ),
    ])
"""

import secrets
import string
import time
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlparse

import structlog
from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import Response

from reqguard.audit import AuditEventType, AuditLogLevel, AuditLogger
from reqguard.audit.fingerprint import categorize_error, format_stack
from reqguard.audit.models import (
    ErrorMetadata,
    RateLimitMetadata,
    RequestMetadata,
    ResponseMetadata,
    SecurityViolationMetadata,
)
from reqguard.config import RouteSecurityConfig, Settings
from reqguard.csrf import CSRFProtection
from reqguard.envelope import PipelineResponse, create_api_response, is_envelope
from reqguard.exceptions import (
    CSRFValidationFailed,
    FieldError,
    Forbidden,
    InternalError,
    InvalidOrigin,
    PayloadTooLarge,
    RateLimitExceeded,
    SecurityPipelineError,
    Unauthorized,
    UnsupportedContentType,
    ValidationFailed,
)
from reqguard.rate_limit import CategoryRateLimiter, RateLimitInfo, client_identity
from reqguard.request import SecurityRequest, SessionProvider
from reqguard.sanitizer import sanitize_object_recursively
from reqguard.sanitizer.schemas import field_errors
from reqguard.security_headers import apply_security_headers, get_rate_limit_headers

logger = structlog.get_logger(__name__)

Handler = Callable[[SecurityRequest], Awaitable[Any]]

_REQUEST_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_request_id() -> str:
    """Request id of the form req_<epoch ms>_<9 base36 chars>."""
    suffix = "".join(secrets.choice(_REQUEST_ID_ALPHABET) for _ in range(9))
    return f"req_{int(time.time() * 1000)}_{suffix}"


def request_origin(request: SecurityRequest) -> Optional[str]:
    """Origin header, or the scheme://host of the Referer."""
    origin = request.header("origin")
    if origin:
        return origin.rstrip("/")
    referer = request.header("referer")
    if referer:
        parsed = urlparse(referer)
        if parsed.scheme and parsed.netloc:
            return f"{parsed.scheme}://{parsed.netloc}"
    return None


class SecurityPipeline:
    """
    Request security pipeline.

    Args:
        rate_limiter: Category limiter over a counter backend
        audit: Audit logger (its store and alert dispatcher)
        csrf: CSRF token validator
        settings: Allowed origins, content types and default body size limit
        session_provider: Resolves the caller's identity; required by routes
            with require_auth or allowed_roles
    """

    def __init__(
        self,
        rate_limiter: CategoryRateLimiter,
        audit: AuditLogger,
        csrf: CSRFProtection,
        settings: Optional[Settings] = None,
        session_provider: Optional[SessionProvider] = None,
    ):
        self.rate_limiter = rate_limiter
        self.audit = audit
        self.csrf = csrf
        self.settings = settings or Settings()
        self.session_provider = session_provider

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle(
        self,
        request: SecurityRequest,
        handler: Handler,
        config: Optional[RouteSecurityConfig] = None,
    ) -> PipelineResponse:
        """
        Run a request through the pipeline.

        Args:
            request: Inbound request
            handler: Route handler; returns a PipelineResponse or envelope data
            config: Route policy (only the settings-wide size and content type
                checks apply when omitted)

        Returns:
            PipelineResponse with envelope body and security headers
        """
        config = config or RouteSecurityConfig()
        request.request_id = new_request_id()
        structlog.contextvars.bind_contextvars(request_id=request.request_id)
        try:
            response = await self._process(request, handler, config)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
        apply_security_headers(response.headers, request.request_id)
        return response

    def wrap(self, handler: Handler, config: Optional[RouteSecurityConfig] = None):
        """Wrap a handler so every call goes through the pipeline."""
        async def secured(request: SecurityRequest) -> PipelineResponse:
            return await self.handle(request, handler, config)
        secured.__name__ = getattr(handler, "__name__", "secured")
        return secured

    def as_starlette_endpoint(
        self,
        handler: Handler,
        config: Optional[RouteSecurityConfig] = None,
        session_cookie: str = "session_id",
    ) -> Callable[[Request], Awaitable[Response]]:
        """Starlette endpoint running the handler behind the pipeline."""
        max_body = self._size_limit(config or RouteSecurityConfig()) or None

        async def endpoint(request: Request) -> Response:
            security_request = await SecurityRequest.from_starlette(
                request, session_cookie, max_body=max_body
            )
            response = await self.handle(security_request, handler, config)
            return response.to_starlette()
        endpoint.__name__ = getattr(handler, "__name__", "endpoint")
        return endpoint

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def _process(
        self,
        request: SecurityRequest,
        handler: Handler,
        config: RouteSecurityConfig,
    ) -> PipelineResponse:
        started = time.monotonic()
        try:
            await self._resolve_identity(request)

            rate_info: Optional[RateLimitInfo] = None
            if config.rate_limit_category is not None:
                rate_info = await self.rate_limiter.check_request(request, config.rate_limit_category)
                if not rate_info.allowed:
                    return await self._reject_rate_limited(request, config, rate_info)

            rejection = await self._run_checks(request, config)
            if rejection is not None:
                return rejection

            if config.log_requests:
                await self.audit.log_from_request(
                    request,
                    AuditEventType.API_REQUEST,
                    "api_request",
                    f"API request to {request.path}",
                    metadata=RequestMetadata(
                        method=request.method,
                        path=request.path,
                        content_type=request.header("content-type"),
                        content_length=request.content_length,
                    ),
                )

            if config.sanitize_input:
                self._sanitize_body(request)

            result = await handler(request)
            response = self._to_response(result, request.request_id)
            if rate_info is not None:
                for name, value in get_rate_limit_headers(rate_info).items():
                    response.headers.setdefault(name, value)

            if config.log_requests:
                await self._audit_response(request, response.status_code, started)
            return response

        except ValidationError as e:
            return await self._expected_error(request, ValidationFailed(field_errors(e)))
        except SecurityPipelineError as e:
            if e.status_code >= 500:
                return await self._internal_error(request, e)
            return await self._expected_error(request, e)
        except Exception as e:
            return await self._internal_error(request, e)

    async def _resolve_identity(self, request: SecurityRequest) -> None:
        if self.session_provider is None or request.identity is not None:
            return
        request.identity = await self.session_provider.lookup(request)
        if request.identity is not None and request.identity.session_id and not request.session_id:
            request.session_id = request.identity.session_id

    async def _run_checks(
        self,
        request: SecurityRequest,
        config: RouteSecurityConfig,
    ) -> Optional[PipelineResponse]:
        if config.validate_origin and not request.is_safe_method:
            origin = request_origin(request)
            if origin is None or origin not in self.settings.allowed_origins:
                return await self._reject(
                    request,
                    InvalidOrigin(),
                    AuditEventType.SECURITY_VIOLATION,
                    "invalid_origin",
                    f"Invalid origin for {request.path}",
                    SecurityViolationMetadata(
                        violation="invalid_origin",
                        method=request.method,
                        path=request.path,
                        origin=origin,
                        detail=request.header("referer"),
                    ),
                )

        if config.enable_csrf and not request.is_safe_method:
            if not await self.csrf.validate_request(request):
                return await self._reject(
                    request,
                    CSRFValidationFailed(),
                    AuditEventType.SECURITY_VIOLATION,
                    "csrf_validation_failed",
                    f"CSRF validation failed for {request.path}",
                    SecurityViolationMetadata(
                        violation="csrf_validation_failed",
                        method=request.method,
                        path=request.path,
                        origin=request_origin(request),
                    ),
                )

        max_size = self._size_limit(config)
        if max_size and request.has_body_method:
            size = max(request.content_length, len(request.body))
            if size > max_size:
                return await self._reject(
                    request,
                    PayloadTooLarge(),
                    AuditEventType.SECURITY_VIOLATION,
                    "request_too_large",
                    f"Request too large for {request.path}",
                    SecurityViolationMetadata(
                        violation="request_too_large",
                        method=request.method,
                        path=request.path,
                        detail=f"{size} > {max_size}",
                    ),
                )

        if request.has_body_method:
            content_type = request.header("content-type") or ""
            media_type = content_type.split(";")[0].strip().lower()
            if media_type not in self.settings.allowed_content_types:
                return await self._reject(
                    request,
                    UnsupportedContentType(),
                    AuditEventType.SECURITY_VIOLATION,
                    "invalid_content_type",
                    f"Invalid content type for {request.path}",
                    SecurityViolationMetadata(
                        violation="invalid_content_type",
                        method=request.method,
                        path=request.path,
                        detail=content_type or None,
                    ),
                )

        if config.require_auth or config.allowed_roles:
            identity = request.identity
            if identity is None:
                return await self._reject(
                    request,
                    Unauthorized(),
                    AuditEventType.UNAUTHORIZED_ACCESS,
                    "authentication_required",
                    f"Unauthenticated access to {request.path}",
                    SecurityViolationMetadata(
                        violation="unauthenticated",
                        method=request.method,
                        path=request.path,
                    ),
                )
            if config.allowed_roles and identity.role not in config.allowed_roles:
                return await self._reject(
                    request,
                    Forbidden(),
                    AuditEventType.UNAUTHORIZED_ACCESS,
                    "insufficient_role",
                    f"Role {identity.role} not allowed on {request.path}",
                    SecurityViolationMetadata(
                        violation="insufficient_role",
                        method=request.method,
                        path=request.path,
                        detail=f"allowed: {', '.join(config.allowed_roles)}",
                    ),
                )

        return None

    def _sanitize_body(self, request: SecurityRequest) -> None:
        content_type = request.header("content-type") or ""
        if not request.body or "application/json" not in content_type:
            return
        try:
            body = request.json()
        except (ValueError, UnicodeDecodeError):
            raise ValidationFailed(
                [FieldError(field="body", message="Malformed JSON body", code="json_invalid")]
            )
        request.json_body = sanitize_object_recursively(body)

    def _size_limit(self, config: RouteSecurityConfig) -> int:
        """Route body limit, falling back to the process-wide limit."""
        return config.max_request_size or self.settings.max_request_size

    def _to_response(self, result: Any, request_id: Optional[str]) -> PipelineResponse:
        if isinstance(result, PipelineResponse):
            response = result
            if not is_envelope(response.body):
                response.body = create_api_response(response.status_code < 400, data=response.body)
        else:
            response = PipelineResponse.ok(result)
        response.body.setdefault("requestId", request_id)
        return response

    # ------------------------------------------------------------------
    # Rejections and errors
    # ------------------------------------------------------------------

    def _error_response(
        self,
        error: SecurityPipelineError,
        request_id: Optional[str],
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> PipelineResponse:
        return PipelineResponse(
            status_code=error.status_code,
            body=create_api_response(
                False,
                data=data,
                error=error.error,
                message=error.message,
                request_id=request_id,
            ),
            headers=dict(headers or {}),
        )

    async def _reject(
        self,
        request: SecurityRequest,
        error: SecurityPipelineError,
        event_type: AuditEventType,
        action: str,
        description: str,
        metadata,
    ) -> PipelineResponse:
        logger.warning(
            "request_rejected",
            reason=action,
            path=request.path,
            method=request.method,
            status_code=error.status_code,
        )
        await self.audit.log_from_request(
            request,
            event_type,
            action,
            description,
            level=AuditLogLevel.WARNING,
            success=False,
            error_message=error.message,
            metadata=metadata,
            component="pipeline",
        )
        return self._error_response(error, request.request_id)

    async def _reject_rate_limited(
        self,
        request: SecurityRequest,
        config: RouteSecurityConfig,
        info: RateLimitInfo,
    ) -> PipelineResponse:
        category = config.rate_limit_category
        await self.audit.log_from_request(
            request,
            AuditEventType.RATE_LIMIT_EXCEEDED,
            "rate_limit_exceeded",
            f"Rate limit exceeded for {request.path}",
            level=AuditLogLevel.WARNING,
            success=False,
            metadata=RateLimitMetadata(
                category=category.value,
                limit=info.limit,
                remaining=info.remaining,
                reset_at=info.reset_at,
                client_id=client_identity(request),
            ),
            component="rate_limit",
        )
        return self._error_response(
            RateLimitExceeded(remaining=info.remaining, reset_at=info.reset_at, limit=info.limit),
            request.request_id,
            data={"remaining": info.remaining, "resetTime": info.reset_at},
            headers=get_rate_limit_headers(info),
        )

    async def _expected_error(
        self,
        request: SecurityRequest,
        error: SecurityPipelineError,
    ) -> PipelineResponse:
        """Handler raised a user-facing error: WARNING audit, no alert."""
        data = None
        headers: Dict[str, str] = {}
        if isinstance(error, ValidationFailed):
            data = {"errors": [e.to_dict() for e in error.errors]}
        if isinstance(error, RateLimitExceeded):
            data = {"remaining": error.remaining, "resetTime": error.reset_at}
            if error.reset_at is not None:
                headers["X-RateLimit-Reset"] = str(error.reset_at)
                headers["Retry-After"] = str(max(1, error.reset_at - int(time.time())))

        logger.warning(
            "request_failed",
            error=error.error,
            status_code=error.status_code,
            path=request.path,
        )
        await self.audit.log_from_request(
            request,
            AuditEventType.API_ERROR,
            "api_error",
            f"API error for {request.path}",
            level=AuditLogLevel.WARNING,
            success=False,
            error_message=error.message,
            metadata=ErrorMetadata(
                method=request.method,
                path=request.path,
                error_type=type(error).__name__,
                category=categorize_error(error.message, "", type(error).__name__),
            ),
            component="pipeline",
        )
        return self._error_response(error, request.request_id, data=data, headers=headers)

    async def _internal_error(
        self,
        request: SecurityRequest,
        exc: BaseException,
    ) -> PipelineResponse:
        """Unexpected failure: generic 500, ERROR audit, error record and alert."""
        cause = getattr(exc, "cause", None) or exc
        error_type = type(cause).__name__
        stack = format_stack(cause)
        category = getattr(exc, "category", None)
        if not category or category == "general":
            category = categorize_error(str(cause), stack, error_type)

        logger.error(
            "API security middleware error",
            error=str(cause),
            error_type=error_type,
            category=category,
            path=request.path,
            method=request.method,
        )

        record = await self.audit.record_exception(
            cause, component="pipeline", request=request, category=category
        )
        await self.audit.log_from_request(
            request,
            AuditEventType.API_ERROR,
            "api_error",
            f"API error for {request.path}",
            level=AuditLogLevel.ERROR,
            success=False,
            error_message=str(cause) or error_type,
            metadata=ErrorMetadata(
                method=request.method,
                path=request.path,
                error_type=error_type,
                category=category,
                fingerprint=record.fingerprint if record else None,
            ),
            dedup=False,
        )
        return self._error_response(InternalError(cause, category), request.request_id)

    async def _audit_response(self, request: SecurityRequest, status_code: int, started: float) -> None:
        duration_ms = round((time.monotonic() - started) * 1000, 2)
        await self.audit.log_from_request(
            request,
            AuditEventType.API_RESPONSE,
            "api_response",
            f"API response for {request.path}",
            level=AuditLogLevel.ERROR if status_code >= 500 else AuditLogLevel.INFO,
            success=status_code < 400,
            error_message=f"Handler returned {status_code}" if status_code >= 500 else None,
            metadata=ResponseMetadata(
                method=request.method,
                path=request.path,
                status_code=status_code,
                duration_ms=duration_ms,
            ),
            component="pipeline",
        )
