"""
API key generation and hashing utilities.

Security notes:
  • Keys are stored as bcrypt hashes (settings.API_KEY_BCRYPT_ROUNDS).
    Lookup happens by the non-secret 12-character prefix, then the hash
    is verified — so the slow hash runs once per uncached validation.
  • Raw keys use the wa_ prefix (convention, not security).
  • generate_api_key() returns the raw key exactly once — the caller
    must display it to the user immediately. It is never stored.
  • key_fingerprint() is a SHA-256 digest kept in the validation cache
    so a cache hit still proves the caller holds the full secret.
"""

import hashlib
import hmac
import secrets

import bcrypt

from workout_api.core.config import settings
from workout_api.core.constants import API_KEY_LOOKUP_LENGTH, API_KEY_PREFIX

_RANDOM_BYTES = 24  # 48 hex chars = 192 bits
MIN_KEY_LENGTH = len(API_KEY_PREFIX) + 16


def key_prefix(raw_key: str) -> str:
    """The lookup prefix: first 12 characters of the raw key."""
    return raw_key[:API_KEY_LOOKUP_LENGTH]


def is_well_formed(raw_key: str | None) -> bool:
    return bool(raw_key) and raw_key.startswith(API_KEY_PREFIX) and len(raw_key) >= MIN_KEY_LENGTH


def hash_api_key(raw_key: str, rounds: int | None = None) -> str:
    """bcrypt hash of a raw key, as a str for storage."""
    salt = bcrypt.gensalt(rounds=rounds or settings.API_KEY_BCRYPT_ROUNDS)
    return bcrypt.hashpw(raw_key.encode("utf-8"), salt).decode("utf-8")


def verify_api_key(raw_key: str, key_hash: str) -> bool:
    try:
        return bcrypt.checkpw(raw_key.encode("utf-8"), key_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash counts as a mismatch.
        return False


def key_fingerprint(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def fingerprint_matches(raw_key: str, fingerprint: str | None) -> bool:
    if not fingerprint:
        return False
    return hmac.compare_digest(key_fingerprint(raw_key), fingerprint)


def generate_api_key() -> tuple[str, str]:
    """
    Generate a new API key.

    Returns:
        (raw_key, key_hash) — raw_key is shown once, key_hash is stored.
    """
    raw_key = f"{API_KEY_PREFIX}{secrets.token_hex(_RANDOM_BYTES)}"
    return raw_key, hash_api_key(raw_key)


def mask_api_key(prefix: str) -> str:
    """Display form for listings: "wa_3f9a1c07b…"."""
    return f"{prefix}…"
