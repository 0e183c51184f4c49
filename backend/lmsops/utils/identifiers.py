from __future__ import annotations

import os
import time
import uuid
from typing import Optional


def generate_uuid7() -> str:
    """
    Time-ordered UUIDv7 string, used as the primary key default.

    48-bit millisecond timestamp, version nibble 0b0111, variant bits 0b10,
    remaining bits random.
    """
    ts_ms = int(time.time() * 1000)
    raw = bytearray(ts_ms.to_bytes(6, "big", signed=False) + os.urandom(10))
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))


def correlation_id(*parts: Optional[object]) -> str:
    """
    Join identifying parts into a log correlation key, e.g.
    ``kpi:<score id>:audit_call:hod@example.com``. Empty parts are dropped;
    the result is capped to fit the 64 character correlation columns.
    """
    key = ":".join(str(part) for part in parts if part not in (None, ""))
    return key[:64]
