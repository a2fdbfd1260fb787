from __future__ import annotations

import secrets
import time
import uuid


def generate_uuid7() -> str:
    """
    Return a time-ordered UUIDv7 string.

    Ledger rows, transfers and audit events sort by id in roughly the same
    order they were created, which keeps the insert-only tables index friendly.
    """
    unix_ms = time.time_ns() // 1_000_000
    value = (unix_ms & ((1 << 48) - 1)) << 80
    value |= secrets.randbits(80)
    # version nibble (bits 76..79) and RFC 4122 variant (bits 62..63)
    value = (value & ~(0xF << 76)) | (0x7 << 76)
    value = (value & ~(0x3 << 62)) | (0x2 << 62)
    return str(uuid.UUID(int=value))
