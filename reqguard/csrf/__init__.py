"""
CSRF Module
===========
Double-submit CSRF tokens bound to a per-session Argon2id hash.
"""

from .tokens import CSRFPair, generate_token, generate_token_hash, validate_token
from .store import CSRFHashStore, InMemoryCSRFHashStore, RedisCSRFHashStore
from .protection import CSRFProtection, CSRF_HEADER, CSRF_SECRET_HEADER, CSRF_COOKIE

__all__ = [
    # Tokens
    "CSRFPair",
    "generate_token",
    "generate_token_hash",
    "validate_token",
    # Stores
    "CSRFHashStore",
    "InMemoryCSRFHashStore",
    "RedisCSRFHashStore",
    # Protection
    "CSRFProtection",
    "CSRF_HEADER",
    "CSRF_SECRET_HEADER",
    "CSRF_COOKIE",
]
