from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Dict, List, NamedTuple, Optional

from .config import DEFAULT_CONFIG, NexusConfig
from .constants import HASH_SIZE, content_type_name
from .container import Container
from .hashutil import hash_hex

logger = logging.getLogger(__name__)


class ListingEntry(NamedTuple):
    content_hash: bytes
    content_type: int
    timestamp_ns: int

    @property
    def content_type_name(self) -> str:
        return content_type_name(self.content_type)


class ContentAddressedStore:
    """In-memory registry of containers keyed by their content hash.

    One lock per instance serialises every operation, so readers observe the
    registry either entirely before or entirely after any ``put``. Containers
    are immutable and never modified once inserted; build them (including any
    memory-engine calls) before handing them to ``put``.

    A later ``put`` with the same hash replaces the earlier container. With
    ``config.max_entries`` set, inserting a new hash into a full registry
    evicts the oldest-inserted entry.
    """

    def __init__(self, config: Optional[NexusConfig] = None):
        self.config = config or DEFAULT_CONFIG
        self._lock = threading.Lock()
        self._containers: "OrderedDict[bytes, Container]" = OrderedDict()

    def put(self, container: Container) -> bytes:
        key = bytes(container.content_hash)
        if len(key) != HASH_SIZE:
            raise ValueError(f"content hash must be {HASH_SIZE} bytes")
        evicted: List[bytes] = []
        with self._lock:
            replaced = key in self._containers
            self._containers[key] = container
            self._containers.move_to_end(key)
            limit = self.config.max_entries
            if limit is not None:
                while len(self._containers) > limit:
                    old_key, _ = self._containers.popitem(last=False)
                    evicted.append(old_key)
        if replaced:
            logger.debug("overwrote container %s", hash_hex(key))
        else:
            logger.debug("stored container %s (%s)", hash_hex(key), container.header.content_type_name)
        for old_key in evicted:
            logger.debug("evicted container %s (capacity %d)", hash_hex(old_key), self.config.max_entries)
        return key

    def get(self, content_hash: bytes) -> Optional[Container]:
        with self._lock:
            return self._containers.get(bytes(content_hash))

    def list(self) -> List[ListingEntry]:
        with self._lock:
            items = list(self._containers.items())
        return [ListingEntry(key, c.header.content_type, c.header.timestamp_ns) for key, c in items]

    def stats(self) -> Dict[str, int]:
        """Counts per content-type name plus ``total``."""
        counts: Dict[str, int] = {}
        with self._lock:
            for container in self._containers.values():
                name = container.header.content_type_name
                counts[name] = counts.get(name, 0) + 1
            counts["total"] = len(self._containers)
        return counts

    def __len__(self) -> int:
        with self._lock:
            return len(self._containers)

    def __contains__(self, content_hash: object) -> bool:
        if not isinstance(content_hash, (bytes, bytearray)):
            return False
        with self._lock:
            return bytes(content_hash) in self._containers
