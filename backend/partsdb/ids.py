"""
Identifier helpers used as SQLAlchemy column defaults.

Column defaults are called with zero positional arguments, so every
generator here must work as `fn()`.
"""

from __future__ import annotations

import os
import random
import string
import time
import uuid

_ALPHABET = string.ascii_uppercase + string.digits


def short_id(prefix: str = "ID", length: int = 8) -> str:
    """Return an id like 'BRD-1F2A9C3D'."""
    block = "".join(random.choices(_ALPHABET, k=length))
    return f"{prefix}-{block}" if prefix else block


def generate_tenant_id() -> str:
    return short_id("BRD")


def generate_user_id() -> str:
    return short_id("USR")


def generate_uuid7() -> str:
    """
    Time-ordered UUIDv7: 48-bit unix milliseconds, version nibble 7,
    RFC 4122 variant, remaining bits random.
    """
    raw = bytearray(int(time.time() * 1000).to_bytes(6, "big") + os.urandom(10))
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))
