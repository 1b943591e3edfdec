"""
m8nexus — content-addressed containers for markdown, text and memory bindings.

Features:

- Marqant (.mq) documents: lossless compressed markdown with a semantic index
  of header, code-fence and link offsets.
- M8 (.m8) containers: a typed payload, header metadata and a SHA-256 content
  hash in one versioned, bounds-checked binary blob.
- ContentAddressedStore: a lock-guarded in-memory registry keyed by content hash.
- An injected memory-engine capability (store text, fetch wave patterns) with
  an optional per-call timeout.
- Password-sealed envelopes (Argon2id + XChaCha20-Poly1305) for exported files.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "markqant",
    "container",
    "store",
    "engine",
    "ingest",
    "encryption",
]

# Programmatic API lives in m8nexus.markqant/m8nexus.container/m8nexus.store;
# the CLI functions in m8nexus.cli (cmd_pack, cmd_wrap, ...) take normal parameters.
