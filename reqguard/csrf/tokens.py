"""
CSRF Tokens
===========
Token/secret generation and Argon2id binding hashes.

The token travels in the ``X-CSRF-Token`` header and the ``csrf-token``
cookie, the secret in ``X-CSRF-Secret``. The server keeps only
``argon2id("token:secret")`` per session.
"""

import asyncio
import secrets
from dataclasses import dataclass
from functools import lru_cache

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

TOKEN_BYTES = 32


@dataclass(frozen=True)
class CSRFPair:
    """A freshly issued token and its companion secret (hex encoded)."""
    token: str
    secret: str


@lru_cache(maxsize=1)
def get_cached_hasher() -> PasswordHasher:
    """Argon2id hasher tuned for per-request verification."""
    return PasswordHasher(
        time_cost=2,
        memory_cost=19456,  # 19MB
        parallelism=1,
        hash_len=32,
        salt_len=16,
        type=Type.ID,
    )


def generate_token() -> CSRFPair:
    """Generate a token and secret, each 32 random bytes as 64 hex chars."""
    return CSRFPair(
        token=secrets.token_hex(TOKEN_BYTES),
        secret=secrets.token_hex(TOKEN_BYTES),
    )


def _binding(token: str, secret: str) -> str:
    return f"{token}:{secret}"


async def generate_token_hash(token: str, secret: str) -> str:
    """
    Hash the token/secret binding with Argon2id.

    Args:
        token: CSRF token
        secret: Companion secret

    Returns:
        Argon2id encoded hash
    """
    if not token or not secret:
        raise ValueError("Token and secret are required")

    hasher = get_cached_hasher()
    loop = asyncio.get_running_loop()
    # Run in executor to avoid blocking the event loop
    return await loop.run_in_executor(None, hasher.hash, _binding(token, secret))


async def validate_token(token: str, secret: str, stored_hash: str) -> bool:
    """
    Verify a token/secret pair against a stored hash.

    Args:
        token: Token presented by the client
        secret: Secret presented by the client
        stored_hash: Hash kept server-side for the session

    Returns:
        True only if the binding verifies; missing input or a malformed hash
        gives False
    """
    if not token or not secret or not stored_hash:
        return False

    hasher = get_cached_hasher()

    def _verify() -> bool:
        try:
            return hasher.verify(stored_hash, _binding(token, secret))
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, _verify)
