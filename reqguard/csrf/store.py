"""
CSRF Hash Store
===============
Server-side storage of the per-session CSRF binding hash.
"""

import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple
import structlog

logger = structlog.get_logger(__name__)


class CSRFHashStore(ABC):
    """Keeps one binding hash per session id."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, session_id: str, token_hash: str) -> None:
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        ...


class InMemoryCSRFHashStore(CSRFHashStore):
    """
    In-memory hash store with expiry.

    For development and testing only.
    Use RedisCSRFHashStore when running more than one process.
    """

    def __init__(self, ttl_seconds: int = 3600):
        self.ttl_seconds = ttl_seconds
        self._hashes: Dict[str, Tuple[str, float]] = {}

    async def get(self, session_id: str) -> Optional[str]:
        self._cleanup()
        entry = self._hashes.get(session_id)
        return entry[0] if entry else None

    async def set(self, session_id: str, token_hash: str) -> None:
        self._hashes[session_id] = (token_hash, time.time() + self.ttl_seconds)

    async def delete(self, session_id: str) -> None:
        self._hashes.pop(session_id, None)

    def _cleanup(self) -> None:
        """Remove expired hashes."""
        now = time.time()
        expired = [sid for sid, (_, expires) in self._hashes.items() if expires <= now]
        for sid in expired:
            del self._hashes[sid]


class RedisCSRFHashStore(CSRFHashStore):
    """Redis-backed hash store; entries expire with SETEX."""

    def __init__(self, redis_client, ttl_seconds: int = 3600, prefix: str = "csrf"):
        """
        Args:
            redis_client: Async Redis client
            ttl_seconds: Lifetime of an issued token
            prefix: Key namespace
        """
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def get_key(self, session_id: str) -> str:
        return f"{self.prefix}:{session_id}"

    async def get(self, session_id: str) -> Optional[str]:
        value = await self.redis.get(self.get_key(session_id))
        if isinstance(value, bytes):
            value = value.decode()
        return value

    async def set(self, session_id: str, token_hash: str) -> None:
        await self.redis.setex(self.get_key(session_id), self.ttl_seconds, token_hash)

    async def delete(self, session_id: str) -> None:
        await self.redis.delete(self.get_key(session_id))
