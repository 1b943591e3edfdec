from __future__ import annotations

import struct
from typing import Tuple

from .errors import BadMagicError, TruncatedError


_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")


def read_exact(data: bytes, pos: int, n: int, what: str) -> Tuple[bytes, int]:
    """Slice ``n`` bytes at ``pos`` or raise TruncatedError naming ``what``."""
    if n < 0 or pos + n > len(data):
        raise TruncatedError(f"truncated {what}: need {n} bytes at offset {pos}, have {max(len(data) - pos, 0)}")
    return bytes(data[pos : pos + n]), pos + n


def read_u32(data: bytes, pos: int, what: str) -> Tuple[int, int]:
    raw, pos = read_exact(data, pos, _U32.size, what)
    return _U32.unpack(raw)[0], pos


def read_u64(data: bytes, pos: int, what: str) -> Tuple[int, int]:
    raw, pos = read_exact(data, pos, _U64.size, what)
    return _U64.unpack(raw)[0], pos


def pack_u32(n: int) -> bytes:
    return _U32.pack(n)


def pack_u64(n: int) -> bytes:
    return _U64.pack(n)


def check_magic(data: bytes, magic: bytes, kind: str) -> int:
    if len(data) < len(magic):
        raise TruncatedError(f"{kind}: buffer too short for magic")
    if bytes(data[: len(magic)]) != magic:
        raise BadMagicError(f"not a {kind} (bad magic)")
    return len(magic)
