from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .codec import KNOWN_CODECS
from .constants import (
    CODEC_ZSTD,
    DEFAULT_CODEC_ID,
    DEFAULT_COMPRESSION_LEVEL,
    DEFAULT_MAX_HEADER_LEN,
    DEFAULT_MAX_PAYLOAD_LEN,
    DOCUMENT_IMPORTANCE,
    MAX_IMPORTANCE,
    MIN_IMPORTANCE,
    TEXT_IMPORTANCE,
)


@dataclass(frozen=True)
class NexusConfig:
    """Immutable settings shared by the codecs, the registry and ingestion.

    Args:
        max_entries: Registry capacity. None keeps every entry until it is
            overwritten; otherwise the oldest-inserted entry is evicted.
        engine_timeout: Seconds to wait for a memory-engine call. None waits
            indefinitely.
        text_importance: Importance passed to the engine for plain text.
        document_importance: Importance passed to the engine for markdown
            documents.
        compression_level: Level handed to the document compressor.
        codec_id: Compressor used for new documents.
        max_header_len: Largest header accepted when decoding.
        max_payload_len: Largest container payload accepted when decoding.
    """

    max_entries: Optional[int] = None
    engine_timeout: Optional[float] = None
    text_importance: int = TEXT_IMPORTANCE
    document_importance: int = DOCUMENT_IMPORTANCE
    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    codec_id: int = DEFAULT_CODEC_ID
    max_header_len: int = DEFAULT_MAX_HEADER_LEN
    max_payload_len: int = DEFAULT_MAX_PAYLOAD_LEN

    def __post_init__(self) -> None:
        if self.max_entries is not None and self.max_entries < 1:
            raise ValueError("max_entries must be at least 1 (or None for unbounded)")
        if self.engine_timeout is not None and self.engine_timeout <= 0:
            raise ValueError("engine_timeout must be positive (or None for no timeout)")
        for name in ("text_importance", "document_importance"):
            value = getattr(self, name)
            if not (MIN_IMPORTANCE <= value <= MAX_IMPORTANCE):
                raise ValueError(f"{name} must be within {MIN_IMPORTANCE}..{MAX_IMPORTANCE}")
        if self.codec_id not in KNOWN_CODECS:
            raise ValueError(f"unsupported codec id: {self.codec_id}")
        max_level = 22 if self.codec_id == CODEC_ZSTD else 9
        if not (0 <= self.compression_level <= max_level):
            raise ValueError(f"compression_level must be within 0..{max_level}")
        if self.max_header_len < 1 or self.max_payload_len < 1:
            raise ValueError("decode limits must be positive")


DEFAULT_CONFIG = NexusConfig()
