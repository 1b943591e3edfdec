from __future__ import annotations

"""M8 containers (.m8): a typed payload plus header metadata and a content hash.

Layout (little-endian)::

    "M8C1" | u32 header_len | header TLV | hash[32] | u64 payload_len | payload

The content hash is the SHA-256 of the payload bytes alone. It is computed
once when a container is built and copied verbatim when one is parsed, so
identical payloads always share an address regardless of how they were
produced.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

from . import tlv
from .config import DEFAULT_CONFIG, NexusConfig
from .constants import (
    AFFECT_SIZE,
    CONTENT_TYPE_NAMES,
    CTYPE_COMPOUND,
    CTYPE_LANGUAGE,
    CTYPE_STRUCTURED_TEXT,
    HASH_SIZE,
    M8_MAGIC,
    M8_VERSION,
    NEUTRAL_AFFECT,
    OPAQUE_CONTENT_TYPES,
    content_type_name,
)
from .engine import PATTERN_SIZE, MemoryEngine, WavePattern, call_engine, check_importance, pack_pattern
from .errors import FormatError, UnknownContentTypeError, UnsupportedVersionError
from .framing import check_magic, pack_u32, pack_u64, read_exact, read_u32, read_u64
from .hashutil import sha256_32
from .markqant import CompressedDocument, decode as decode_document


class Affect(NamedTuple):
    """Valence, arousal and dominance, each in [-1, 1].

    Bytes are ``int((x + 1) * 127.5)``, so ``Affect()`` packs to
    ``127,127,127``. That is not ``NEUTRAL_AFFECT`` (``128,128,128``), which
    is what constructors store when ``affect`` is None.
    """

    valence: float = 0.0
    arousal: float = 0.0
    dominance: float = 0.0

    def to_bytes(self) -> bytes:
        return bytes(max(0, min(255, int((v + 1.0) * 127.5))) for v in self)


AffectLike = Union[Affect, bytes, Sequence[float]]


def affect_bytes(affect: Optional[AffectLike]) -> bytes:
    if affect is None:
        return NEUTRAL_AFFECT
    if isinstance(affect, (bytes, bytearray)):
        if len(affect) != AFFECT_SIZE:
            raise ValueError(f"affect must be {AFFECT_SIZE} bytes")
        return bytes(affect)
    if not isinstance(affect, Affect):
        affect = Affect(*affect)
    return affect.to_bytes()


@dataclass(frozen=True)
class ContainerHeader:
    version: int
    content_type: int
    timestamp_ns: int
    memory_handles: Tuple[int, ...] = ()
    affect: bytes = NEUTRAL_AFFECT
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def content_type_name(self) -> str:
        return content_type_name(self.content_type)

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp_ns / 1_000_000_000, tz=timezone.utc)

    def to_dict(self) -> Dict:
        sec, nsec = divmod(self.timestamp_ns, 1_000_000_000)
        return {
            "version": self.version,
            "content_type": self.content_type,
            "timestamp": {"sec": sec, "nsec": nsec},
            "memory_handles": list(self.memory_handles),
            "affect": self.affect,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class Container:
    header: ContainerHeader
    payload: bytes
    content_hash: bytes

    @property
    def content_type(self) -> int:
        return self.header.content_type

    def verify(self) -> bool:
        """True when the stored hash matches the payload."""
        return sha256_32(self.payload) == self.content_hash

    def to_bytes(self) -> bytes:
        header_bytes = tlv.dumps_container_header(self.header.to_dict())
        return b"".join(
            (
                M8_MAGIC,
                pack_u32(len(header_bytes)),
                header_bytes,
                self.content_hash,
                pack_u64(len(self.payload)),
                self.payload,
            )
        )

    @classmethod
    def from_bytes(cls, data: bytes, *, config: Optional[NexusConfig] = None) -> "Container":
        cfg = config or DEFAULT_CONFIG
        pos = check_magic(data, M8_MAGIC, "M8 container")

        header_len, pos = read_u32(data, pos, "container header length")
        if header_len > cfg.max_header_len:
            raise FormatError(f"container header too large: {header_len} bytes")
        header_raw, pos = read_exact(data, pos, header_len, "container header")
        hdr = tlv.loads_container_header(header_raw)
        if hdr["version"] != M8_VERSION:
            raise UnsupportedVersionError(f"unsupported container version: {hdr['version']}")
        if hdr["content_type"] not in CONTENT_TYPE_NAMES:
            raise UnknownContentTypeError(f"unknown content type tag: {hdr['content_type']}")
        if len(hdr["affect"]) != AFFECT_SIZE:
            raise FormatError(f"affect must be {AFFECT_SIZE} bytes")

        content_hash, pos = read_exact(data, pos, HASH_SIZE, "content hash")
        payload_len, pos = read_u64(data, pos, "payload length")
        if payload_len > cfg.max_payload_len:
            raise FormatError(f"container payload too large: {payload_len} bytes")
        payload, pos = read_exact(data, pos, payload_len, "payload")
        if pos != len(data):
            raise FormatError(f"{len(data) - pos} trailing bytes after container payload")

        ts = hdr["timestamp"]
        header = ContainerHeader(
            version=hdr["version"],
            content_type=hdr["content_type"],
            timestamp_ns=ts["sec"] * 1_000_000_000 + ts["nsec"],
            memory_handles=tuple(hdr["memory_handles"]),
            affect=bytes(hdr["affect"]),
            metadata=hdr["metadata"],
        )
        return cls(header=header, payload=payload, content_hash=content_hash)

    def extract_content(self) -> str:
        ctype = self.header.content_type
        if ctype == CTYPE_STRUCTURED_TEXT:
            return decode_document(CompressedDocument.from_bytes(self.payload))
        if ctype == CTYPE_LANGUAGE:
            return self.payload.decode("utf-8", errors="replace")
        return f"M8 container: {self.header.content_type_name} with {len(self.payload)} bytes of data"

    def wave_patterns(self) -> List[WavePattern]:
        """Decode a compound payload into its patterns, in binding order."""
        if self.header.content_type != CTYPE_COMPOUND:
            raise ValueError(f"wave patterns are only defined for compound containers, not {self.header.content_type_name}")
        if len(self.payload) % PATTERN_SIZE:
            raise FormatError(f"compound payload length {len(self.payload)} is not a multiple of {PATTERN_SIZE}")
        return [
            WavePattern.from_bytes(self.payload[i : i + PATTERN_SIZE]) for i in range(0, len(self.payload), PATTERN_SIZE)
        ]


def _new_container(
    content_type: int,
    payload: bytes,
    *,
    handles: Iterable[int] = (),
    affect: Optional[AffectLike] = None,
    metadata: Optional[Mapping[str, str]] = None,
) -> Container:
    payload = bytes(payload)
    header = ContainerHeader(
        version=M8_VERSION,
        content_type=content_type,
        timestamp_ns=time.time_ns(),
        memory_handles=tuple(int(h) for h in handles),
        affect=affect_bytes(affect),
        metadata=dict(metadata or {}),
    )
    return Container(header=header, payload=payload, content_hash=sha256_32(payload))


def from_compressed_document(doc: CompressedDocument, handle: int, *, affect: Optional[AffectLike] = None) -> Container:
    return _new_container(
        CTYPE_STRUCTURED_TEXT,
        doc.to_bytes(),
        handles=(handle,),
        affect=affect,
        metadata={"source": "marqant", "compression_ratio": f"{doc.compression_ratio():.2f}"},
    )


def from_raw_text(text: str, importance: int, engine: MemoryEngine) -> Container:
    check_importance(importance)
    payload = text.encode("utf-8")
    handle = call_engine(engine.store_text, text, importance)
    return _new_container(
        CTYPE_LANGUAGE,
        payload,
        handles=(handle,),
        metadata={"source": "text", "length": str(len(payload))},
    )


def from_compound_bindings(handles: Sequence[int], affect: Optional[AffectLike], engine: MemoryEngine) -> Container:
    """Bind existing memories into one compound container.

    Patterns are fetched and appended in the order given; reordering the
    handles yields a different payload and therefore a different address.
    Any fetch failure aborts the whole construction with EngineError.
    """
    handles = tuple(int(h) for h in handles)
    parts = []
    for handle in handles:
        parts.append(pack_pattern(call_engine(engine.fetch_pattern, handle), handle))
    return _new_container(
        CTYPE_COMPOUND,
        b"".join(parts),
        handles=handles,
        affect=affect,
        metadata={"source": "compound", "memory_count": str(len(handles))},
    )


def from_opaque(
    content_type: int,
    payload: bytes,
    *,
    handles: Iterable[int] = (),
    affect: Optional[AffectLike] = None,
    metadata: Optional[Mapping[str, str]] = None,
) -> Container:
    """Wrap wave-pattern, visual or audio bytes that have no textual form."""
    if content_type not in OPAQUE_CONTENT_TYPES:
        raise ValueError(f"content type {content_type} is not an opaque type")
    return _new_container(content_type, payload, handles=handles, affect=affect, metadata=metadata)
