"""
CSRF Protection
===============
Double-submit token validation bound to a server-held hash.

A request passes only if the header token equals the cookie token and the
header token/secret pair verifies against the hash stored for the
request's session. A forged cookie alone is therefore never enough.
"""

import hmac
from typing import Optional
import structlog

from reqguard.request import SecurityRequest
from .store import CSRFHashStore
from .tokens import CSRFPair, generate_token, generate_token_hash, validate_token

logger = structlog.get_logger(__name__)

CSRF_HEADER = "x-csrf-token"
CSRF_SECRET_HEADER = "x-csrf-secret"
CSRF_COOKIE = "csrf-token"


class CSRFProtection:
    """Issues and validates CSRF tokens for sessions."""

    def __init__(
        self,
        hash_store: CSRFHashStore,
        header_name: str = CSRF_HEADER,
        secret_header_name: str = CSRF_SECRET_HEADER,
        cookie_name: str = CSRF_COOKIE,
    ):
        self.hash_store = hash_store
        self.header_name = header_name
        self.secret_header_name = secret_header_name
        self.cookie_name = cookie_name

    async def issue(self, session_id: str) -> CSRFPair:
        """
        Issue a new token pair for a session, replacing any previous one.

        Args:
            session_id: Session the token is bound to

        Returns:
            CSRFPair to hand to the client (token as cookie and header,
            secret as header)
        """
        pair = generate_token()
        token_hash = await generate_token_hash(pair.token, pair.secret)
        await self.hash_store.set(session_id, token_hash)
        logger.info("csrf_token_issued", session_id=session_id[:8])
        return pair

    async def revoke(self, session_id: str) -> None:
        await self.hash_store.delete(session_id)

    async def validate_request(self, request: SecurityRequest) -> bool:
        """
        Validate the CSRF credentials of a request.

        Safe methods (GET, HEAD, OPTIONS) always pass.

        Args:
            request: Inbound request

        Returns:
            True if the request may proceed
        """
        if request.is_safe_method:
            return True

        token = request.header(self.header_name)
        secret = request.header(self.secret_header_name)
        cookie_token = request.cookies.get(self.cookie_name)

        if not token or not secret or not cookie_token:
            logger.warning("csrf_credentials_missing", path=request.path)
            return False

        if not hmac.compare_digest(token.encode(), cookie_token.encode()):
            logger.warning("csrf_token_cookie_mismatch", path=request.path)
            return False

        stored_hash: Optional[str] = None
        if request.session_id:
            stored_hash = await self.hash_store.get(request.session_id)
        if not stored_hash:
            logger.warning("csrf_no_stored_hash", path=request.path)
            return False

        valid = await validate_token(token, secret, stored_hash)
        if not valid:
            logger.warning("csrf_binding_mismatch", path=request.path)
        return valid
