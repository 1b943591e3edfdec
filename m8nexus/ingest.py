from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from . import markqant
from .config import DEFAULT_CONFIG, NexusConfig
from .container import Container, from_compressed_document, from_raw_text
from .engine import MemoryEngine, call_engine
from .errors import HashMismatchError
from .hashutil import hash_hex
from .store import ContentAddressedStore

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = ("md", "markdown")


@dataclass(frozen=True)
class IngestResult:
    content_hash: bytes
    content_type: str
    memory_handles: Tuple[int, ...]
    compression_ratio: Optional[float]
    message: str

    @property
    def content_hash_hex(self) -> str:
        return hash_hex(self.content_hash)


def _extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lstrip(".").lower()


def _document_container(doc: markqant.CompressedDocument, engine: MemoryEngine, cfg: NexusConfig) -> Container:
    markdown = markqant.decode(doc)
    handle = call_engine(engine.store_text, markdown, cfg.document_importance)
    return from_compressed_document(doc, handle)


def build_container(
    data: bytes,
    filename: str,
    engine: MemoryEngine,
    *,
    config: Optional[NexusConfig] = None,
) -> Tuple[Container, Optional[float]]:
    """Turn uploaded bytes into a container, choosing the path by extension.

    ``.mq`` must be a serialized document, ``.md``/``.markdown`` is encoded
    as a new document, ``.m8`` must be a serialized container whose hash
    matches its payload, and anything else is stored as language text.
    Returns the container and, for documents, the compression ratio.
    """
    cfg = config or DEFAULT_CONFIG
    ext = _extension(filename)
    if ext == "mq":
        doc = markqant.CompressedDocument.from_bytes(data, config=cfg)
        return _document_container(doc, engine, cfg), doc.compression_ratio()
    if ext in MARKDOWN_EXTENSIONS:
        doc = markqant.encode(data.decode("utf-8", errors="replace"), config=cfg)
        return _document_container(doc, engine, cfg), doc.compression_ratio()
    if ext == "m8":
        container = Container.from_bytes(data, config=cfg)
        if not container.verify():
            raise HashMismatchError("container content hash does not match its payload")
        return container, None
    text = data.decode("utf-8", errors="replace")
    return from_raw_text(text, cfg.text_importance, engine), None


def ingest(
    data: bytes,
    filename: str,
    engine: MemoryEngine,
    store: ContentAddressedStore,
    *,
    config: Optional[NexusConfig] = None,
) -> IngestResult:
    cfg = config or store.config
    container, ratio = build_container(data, filename, engine, config=cfg)
    key = store.put(container)
    name = container.header.content_type_name
    logger.debug("ingested %r as %s -> %s", filename, name, hash_hex(key))
    if ratio is not None:
        message = f"{filename} stored as {name} (compression {ratio:.2f}x)"
    else:
        message = f"{filename} stored as {name} ({len(container.payload)} bytes)"
    return IngestResult(
        content_hash=key,
        content_type=name,
        memory_handles=container.header.memory_handles,
        compression_ratio=ratio,
        message=message,
    )


def ingest_text(
    text: str,
    engine: MemoryEngine,
    store: ContentAddressedStore,
    *,
    importance: Optional[int] = None,
) -> IngestResult:
    container = from_raw_text(text, store.config.text_importance if importance is None else importance, engine)
    key = store.put(container)
    return IngestResult(
        content_hash=key,
        content_type=container.header.content_type_name,
        memory_handles=container.header.memory_handles,
        compression_ratio=None,
        message=f"text stored ({len(container.payload)} bytes)",
    )
