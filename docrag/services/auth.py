# =============================================================================
# Auth Service — API Key Generation & Hashing
# =============================================================================
# Pure functions shared by the auth dependency, the key creation script and
# tests. Keys are 256-bit random tokens, so a plain SHA-256 digest is enough
# for storage and per-request lookup.
# =============================================================================

from __future__ import annotations

import hashlib
import secrets

API_KEY_PREFIX = "drk-"


def generate_api_key() -> tuple[str, str, str]:
    """
    Create a new tenant API key.

    Returns:
        (raw_key, key_prefix, key_hash). The raw key is shown once; only
        the first 8 characters and the hash are stored.
    """
    raw_key = f"{API_KEY_PREFIX}{secrets.token_hex(32)}"
    return raw_key, raw_key[:8], hash_api_key(raw_key)


def hash_api_key(raw_key: str) -> str:
    """SHA-256 hex digest (64 chars) of a raw key."""
    return hashlib.sha256(raw_key.encode()).hexdigest()
