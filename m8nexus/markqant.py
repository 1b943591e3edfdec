from __future__ import annotations

"""Marqant (.mq): compressed markdown documents with a semantic index.

Layout (little-endian)::

    "MQ03" | u32 header_len | header TLV | u32 index_len | index TLV | payload

The header records sizes, the compressor, and the SHA-256 of the
pre-compression representation. The semantic index maps a structural
category ("headers", "code_blocks", "links") to byte offsets into the
original UTF-8 text. ``decode(encode(x)) == x`` holds for every string.
"""

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from . import tlv
from .codec import Codec
from .config import DEFAULT_CONFIG, NexusConfig
from .constants import CODEC_DEFLATE, HASH_SIZE, MQ_MAGIC, MQ_VERSION
from .errors import FormatError, HashMismatchError, UnsupportedVersionError
from .framing import check_magic, pack_u32, read_exact, read_u32
from .hashutil import sha256_32

logger = logging.getLogger(__name__)

CATEGORY_HEADERS = "headers"
CATEGORY_CODE_BLOCKS = "code_blocks"
CATEGORY_LINKS = "links"

_HEADER_RE = re.compile(rb"^#{1,6}[ \t]+[^\r\n]+", re.MULTILINE)
_LINK_RE = re.compile(rb"\[([^\]]+)\]\(([^\)]+)\)")
_FENCE = b"```"


@dataclass(frozen=True)
class DocumentHeader:
    version: int
    compression_level: int
    original_size: int
    compressed_size: int
    content_hash: bytes
    metadata: Mapping[str, str] = field(default_factory=dict)
    codec: int = CODEC_DEFLATE

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_dict(self) -> Dict:
        return {
            "version": self.version,
            "compression_level": self.compression_level,
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "content_hash": self.content_hash,
            "metadata": dict(self.metadata),
            "codec": self.codec,
        }


@dataclass(frozen=True)
class CompressedDocument:
    header: DocumentHeader
    payload: bytes
    semantic_index: Mapping[str, Tuple[int, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        frozen = {name: tuple(offsets) for name, offsets in self.semantic_index.items()}
        object.__setattr__(self, "semantic_index", MappingProxyType(frozen))

    @property
    def content_hash(self) -> bytes:
        return self.header.content_hash

    def compression_ratio(self) -> float:
        if self.header.compressed_size == 0:
            return 0.0
        return self.header.original_size / self.header.compressed_size

    def to_markdown(self) -> str:
        return decode(self)

    def to_bytes(self) -> bytes:
        header_bytes = tlv.dumps_document_header(self.header.to_dict())
        index_bytes = tlv.dumps_semantic_index(self.semantic_index)
        return b"".join(
            (
                MQ_MAGIC,
                pack_u32(len(header_bytes)),
                header_bytes,
                pack_u32(len(index_bytes)),
                index_bytes,
                self.payload,
            )
        )

    @classmethod
    def from_bytes(cls, data: bytes, *, config: Optional[NexusConfig] = None) -> "CompressedDocument":
        cfg = config or DEFAULT_CONFIG
        pos = check_magic(data, MQ_MAGIC, "marqant document")

        header_len, pos = read_u32(data, pos, "document header length")
        if header_len > cfg.max_header_len:
            raise FormatError(f"document header too large: {header_len} bytes")
        header_raw, pos = read_exact(data, pos, header_len, "document header")
        hdr = tlv.loads_document_header(header_raw)
        if hdr["version"] != MQ_VERSION:
            raise UnsupportedVersionError(f"unsupported marqant version: {hdr['version']}")
        if len(hdr["content_hash"]) != HASH_SIZE:
            raise FormatError(f"content hash must be {HASH_SIZE} bytes")

        index_len, pos = read_u32(data, pos, "semantic index length")
        if index_len > cfg.max_header_len:
            raise FormatError(f"semantic index too large: {index_len} bytes")
        index_raw, pos = read_exact(data, pos, index_len, "semantic index")
        index = tlv.loads_semantic_index(index_raw)

        payload = bytes(data[pos:])
        if len(payload) != hdr["compressed_size"]:
            raise FormatError(
                f"payload length {len(payload)} does not match declared compressed size {hdr['compressed_size']}"
            )
        original_size = hdr["original_size"]
        if original_size > cfg.max_payload_len:
            raise FormatError(f"declared original size too large: {original_size} bytes")
        for name, offsets in index.items():
            for off in offsets:
                if off >= original_size:
                    raise FormatError(f"semantic index offset {off} for {name!r} outside document of {original_size} bytes")

        header = DocumentHeader(
            version=hdr["version"],
            compression_level=hdr["compression_level"],
            original_size=original_size,
            compressed_size=hdr["compressed_size"],
            content_hash=bytes(hdr["content_hash"]),
            metadata=hdr["metadata"],
            codec=hdr.get("codec", CODEC_DEFLATE),
        )
        return cls(header=header, payload=payload, semantic_index={k: tuple(v) for k, v in index.items()})


def extract_semantic_index(raw: bytes) -> Dict[str, Tuple[int, ...]]:
    """Scan UTF-8 markdown bytes for structural landmarks.

    Returns byte offsets of ATX header lines, fenced-code markers (only
    when at least two are present) and inline ``[text](url)`` links.
    Categories with no hits are omitted.
    """
    index: Dict[str, Tuple[int, ...]] = {}

    headers = tuple(m.start() for m in _HEADER_RE.finditer(raw))
    if headers:
        index[CATEGORY_HEADERS] = headers

    fences = []
    pos = raw.find(_FENCE)
    while pos != -1:
        fences.append(pos)
        pos = raw.find(_FENCE, pos + len(_FENCE))
    if len(fences) >= 2:
        index[CATEGORY_CODE_BLOCKS] = tuple(fences)

    links = tuple(m.start() for m in _LINK_RE.finditer(raw))
    if links:
        index[CATEGORY_LINKS] = links

    return index


# The intermediate representation is the identity transform over the UTF-8
# bytes; the hash and sizes are defined over it.
def _to_representation(raw: bytes) -> bytes:
    return raw


def _from_representation(rep: bytes) -> bytes:
    return rep


def encode(markdown: str, *, config: Optional[NexusConfig] = None) -> CompressedDocument:
    cfg = config or DEFAULT_CONFIG
    raw = markdown.encode("utf-8")
    index = extract_semantic_index(raw)
    representation = _to_representation(raw)
    payload = Codec(cfg.codec_id, cfg.compression_level).compress(representation)
    header = DocumentHeader(
        version=MQ_VERSION,
        compression_level=cfg.compression_level,
        original_size=len(raw),
        compressed_size=len(payload),
        content_hash=sha256_32(representation),
        metadata={"format": "marqant", "encoding": "identity"},
        codec=cfg.codec_id,
    )
    logger.debug("encoded markdown: %d -> %d bytes, index=%s", len(raw), len(payload), sorted(index))
    return CompressedDocument(header=header, payload=payload, semantic_index=index)


def decode(doc: CompressedDocument) -> str:
    representation = Codec(doc.header.codec).decompress(doc.payload, max_output=doc.header.original_size)
    if len(representation) != doc.header.original_size:
        raise FormatError(
            f"decompressed size {len(representation)} does not match original size {doc.header.original_size}"
        )
    if sha256_32(representation) != doc.header.content_hash:
        raise HashMismatchError("document content hash mismatch")
    return _from_representation(representation).decode("utf-8", errors="replace")
