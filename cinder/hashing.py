"""Content checksums used to detect changed command files."""

from __future__ import annotations

import zlib


def content_hash(data: bytes) -> int:
    """Return the unsigned CRC-32 of ``data``."""
    return zlib.crc32(data) & 0xFFFFFFFF


__all__ = ["content_hash"]
