"""Session tokens for REST and websocket callers.

A raw token reads ``<lookup id>.<secret>``. Only the lookup id and a salted
hash of the whole token are stored, so a leaked documents table cannot be
replayed as credentials.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets


LOOKUP_ID_BYTES = 8
SECRET_BYTES = 24


def generate_token() -> str:
    """Generate a URL-safe session token carrying its own lookup id."""
    return f"{secrets.token_hex(LOOKUP_ID_BYTES)}.{secrets.token_urlsafe(SECRET_BYTES)}"


def token_lookup_id(raw_token: str) -> str | None:
    """Return the stored-record id of a raw token, or None when it is malformed."""
    lookup_id, separator, secret = raw_token.partition(".")
    if not separator or not lookup_id or not secret:
        return None
    return lookup_id


def hash_token(token: str, server_salt: str) -> str:
    payload = f"{token}{server_salt}".encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def verify_token(raw_token: str, expected_hash: str, server_salt: str) -> bool:
    return hmac.compare_digest(hash_token(raw_token, server_salt), expected_hash)
