from __future__ import annotations

import hashlib


def sha256_32(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash_hex(digest: bytes) -> str:
    return bytes(digest).hex()
