from __future__ import annotations

"""Password-sealed envelopes for exported artifacts.

Layout::

    "M8S1" | u32 time_cost | u32 memory_kib | u8 parallelism | salt[16] | nonce[24]
           | ciphertext | tag[16]

The key is derived with Argon2id; the body is XChaCha20-Poly1305 with the
whole envelope header as associated data.
"""

import os
import struct
from dataclasses import dataclass
from typing import Optional

try:  # pragma: no cover - availability depends on environment
    from argon2.low_level import Type as _ArgonType, hash_secret_raw as _argon_hash  # type: ignore
    _HAS_ARGON2 = True
except ImportError:  # pragma: no cover
    _ArgonType = None  # type: ignore
    _argon_hash = None  # type: ignore
    _HAS_ARGON2 = False

try:  # pragma: no cover - availability depends on environment
    from Cryptodome.Cipher import ChaCha20_Poly1305  # type: ignore
    _HAS_CRYPTODOME = True
except ImportError:  # pragma: no cover
    ChaCha20_Poly1305 = None  # type: ignore
    _HAS_CRYPTODOME = False

from .constants import SEAL_MAGIC
from .errors import FormatError, SealError
from .framing import check_magic, read_exact


NONCE_SIZE = 24
TAG_SIZE = 16
KEY_SIZE = 32
SALT_SIZE = 16

ARGON_TIME_COST = 3
ARGON_MEMORY_COST_KIB = 64 * 1024  # 64 MiB
ARGON_PARALLELISM = 4

# Bounds accepted from an envelope header
_MAX_TIME_COST = 16
_MAX_MEMORY_COST_KIB = 1024 * 1024
_MAX_PARALLELISM = 16

_PARAMS_STRUCT = struct.Struct("<IIB16s24s")

_HAS_CRYPTO = bool(_HAS_ARGON2 and _HAS_CRYPTODOME)


@dataclass(frozen=True)
class SealParams:
    time_cost: int = ARGON_TIME_COST
    memory_cost_kib: int = ARGON_MEMORY_COST_KIB
    parallelism: int = ARGON_PARALLELISM

    def check(self) -> None:
        if not (1 <= self.time_cost <= _MAX_TIME_COST):
            raise ValueError("Unsupported Argon2 time cost")
        if not (1 <= self.parallelism <= _MAX_PARALLELISM):
            raise ValueError("Unsupported Argon2 parallelism")
        if not (8 * self.parallelism <= self.memory_cost_kib <= _MAX_MEMORY_COST_KIB):
            raise ValueError("Unsupported Argon2 memory cost")


def _require_backend() -> None:
    if not _HAS_CRYPTO:
        raise RuntimeError("argon2-cffi and PyCryptodomex are required for sealing support")


def _derive_key(password: str, salt: bytes, params: SealParams) -> bytes:
    return _argon_hash(
        password.encode("utf-8"),
        salt,
        time_cost=params.time_cost,
        memory_cost=params.memory_cost_kib,
        parallelism=params.parallelism,
        hash_len=KEY_SIZE,
        type=_ArgonType.ID,
    )


def is_sealed(data: bytes) -> bool:
    return bytes(data[: len(SEAL_MAGIC)]) == SEAL_MAGIC


def seal_bytes(data: bytes, password: str, params: Optional[SealParams] = None) -> bytes:
    _require_backend()
    params = params or SealParams()
    params.check()
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    header = SEAL_MAGIC + _PARAMS_STRUCT.pack(params.time_cost, params.memory_cost_kib, params.parallelism, salt, nonce)
    key = _derive_key(password, salt, params)
    cipher = ChaCha20_Poly1305.new(key=key, nonce=nonce)
    cipher.update(header)
    ciphertext, tag = cipher.encrypt_and_digest(bytes(data))
    return header + ciphertext + tag


def unseal_bytes(blob: bytes, password: str) -> bytes:
    _require_backend()
    pos = check_magic(blob, SEAL_MAGIC, "sealed envelope")
    raw_params, pos = read_exact(blob, pos, _PARAMS_STRUCT.size, "seal parameters")
    time_cost, memory_kib, parallelism, salt, nonce = _PARAMS_STRUCT.unpack(raw_params)
    params = SealParams(time_cost=time_cost, memory_cost_kib=memory_kib, parallelism=parallelism)
    try:
        params.check()
    except ValueError as exc:
        raise FormatError(f"sealed envelope: {exc}") from None
    if len(blob) - pos < TAG_SIZE:
        raise FormatError("sealed envelope too short for authentication tag")
    header = bytes(blob[:pos])
    ciphertext = bytes(blob[pos:-TAG_SIZE])
    tag = bytes(blob[-TAG_SIZE:])
    key = _derive_key(password, salt, params)
    cipher = ChaCha20_Poly1305.new(key=key, nonce=nonce)
    cipher.update(header)
    try:
        return cipher.decrypt_and_verify(ciphertext, tag)
    except ValueError:
        raise SealError("wrong password or tampered envelope") from None
