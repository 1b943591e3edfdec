from __future__ import annotations

import struct
import threading
import unittest

from m8nexus import markqant, tlv
from m8nexus.constants import (
    CTYPE_AUDIO,
    CTYPE_COMPOUND,
    CTYPE_LANGUAGE,
    CTYPE_STRUCTURED_TEXT,
    CTYPE_VISUAL,
    M8_MAGIC,
    NEUTRAL_AFFECT,
    content_type_name,
)
from m8nexus.container import (
    Affect,
    Container,
    from_compound_bindings,
    from_compressed_document,
    from_opaque,
    from_raw_text,
)
from m8nexus.engine import GuardedEngine, InMemoryEngine, WavePattern
from m8nexus.errors import (
    BadMagicError,
    EngineError,
    FormatError,
    TruncatedError,
    UnknownContentTypeError,
    UnsupportedVersionError,
)
from m8nexus.hashutil import sha256_32


class FixedPatternEngine:
    """Engine double returning preset patterns and recording calls."""

    def __init__(self, patterns):
        self.patterns = dict(patterns)
        self.stored = []
        self.fetched = []

    def store_text(self, text, importance):
        self.stored.append((text, importance))
        return 100 + len(self.stored)

    def fetch_pattern(self, handle):
        self.fetched.append(handle)
        return self.patterns[handle]


class BrokenEngine:
    def store_text(self, text, importance):
        raise RuntimeError("engine offline")

    def fetch_pattern(self, handle):
        raise RuntimeError("engine offline")


class BlockingEngine:
    def __init__(self):
        self.release = threading.Event()

    def store_text(self, text, importance):
        self.release.wait(5)
        return 1

    def fetch_pattern(self, handle):
        self.release.wait(5)
        return (1.0, 2.0, 3.0)


class OutOfRangeEngine:
    def __init__(self, pattern):
        self.pattern = pattern

    def store_text(self, text, importance):
        return 1

    def fetch_pattern(self, handle):
        return self.pattern


def _split(data: bytes):
    """Return (header_dict, header_len) for a serialized container."""
    (hlen,) = struct.unpack_from("<I", data, 4)
    header = tlv.loads_container_header(data[8 : 8 + hlen])
    return header, hlen


def _with_header(data: bytes, **changes) -> bytes:
    header, hlen = _split(data)
    header.update(changes)
    hb = tlv.dumps_container_header(header)
    return M8_MAGIC + struct.pack("<I", len(hb)) + hb + data[8 + hlen :]


class ConstructionTests(unittest.TestCase):
    def test_raw_text(self):
        engine = InMemoryEngine()
        c = from_raw_text("Hello, quantum world!", 5, engine)
        self.assertEqual(c.content_type, CTYPE_LANGUAGE)
        self.assertEqual(c.payload, b"Hello, quantum world!")
        self.assertEqual(c.content_hash, sha256_32(b"Hello, quantum world!"))
        self.assertEqual(c.header.memory_handles, (1,))
        self.assertEqual(c.header.affect, NEUTRAL_AFFECT)
        self.assertEqual(c.header.metadata, {"source": "text", "length": "21"})
        self.assertEqual(engine.text(1), "Hello, quantum world!")
        self.assertEqual(c.extract_content(), "Hello, quantum world!")

    def test_raw_text_rejects_bad_importance(self):
        engine = FixedPatternEngine({})
        with self.assertRaises(ValueError):
            from_raw_text("x", 10, engine)
        self.assertEqual(engine.stored, [])

    def test_same_text_same_hash(self):
        engine = InMemoryEngine()
        a = from_raw_text("hello", 5, engine)
        b = from_raw_text("hello", 3, engine)
        self.assertEqual(a.content_hash, b.content_hash)
        self.assertNotEqual(a.header.memory_handles, b.header.memory_handles)

    def test_compressed_document(self):
        doc = markqant.encode("# Title\n\nBody")
        c = from_compressed_document(doc, 42)
        self.assertEqual(c.content_type, CTYPE_STRUCTURED_TEXT)
        self.assertEqual(c.payload, doc.to_bytes())
        self.assertEqual(c.header.memory_handles, (42,))
        self.assertEqual(c.header.metadata["source"], "marqant")
        self.assertEqual(c.header.metadata["compression_ratio"], f"{doc.compression_ratio():.2f}")
        self.assertEqual(c.extract_content(), "# Title\n\nBody")

    def test_compound_preserves_order(self):
        patterns = {1: (0.5, 440.0, 0.25), 2: (1.0, 220.0, 1.5), 3: (0.25, 110.0, 3.0)}
        engine = FixedPatternEngine(patterns)
        c = from_compound_bindings([3, 1, 2], Affect(0.0, 1.0, -1.0), engine)
        self.assertEqual(engine.fetched, [3, 1, 2])
        self.assertEqual(c.content_type, CTYPE_COMPOUND)
        self.assertEqual(c.header.memory_handles, (3, 1, 2))
        self.assertEqual(c.header.affect, bytes([127, 255, 0]))
        self.assertEqual(c.header.metadata, {"source": "compound", "memory_count": "3"})
        expected = b"".join(struct.pack("<fff", *patterns[h]) for h in (3, 1, 2))
        self.assertEqual(c.payload, expected)
        self.assertEqual(c.wave_patterns(), [WavePattern(*patterns[h]) for h in (3, 1, 2)])

        reordered = from_compound_bindings([1, 2, 3], None, engine)
        self.assertNotEqual(reordered.content_hash, c.content_hash)

    def test_compound_with_in_memory_engine(self):
        engine = InMemoryEngine()
        h1 = engine.store_text("alpha", 2)
        h2 = engine.store_text("beta", 9)
        c = from_compound_bindings([h1, h2], (0.0, 0.0, 0.0), engine)
        self.assertEqual(len(c.payload), 24)
        got = c.wave_patterns()
        for fetched, expected in zip(got, (engine.fetch_pattern(h1), engine.fetch_pattern(h2))):
            for a, b in zip(fetched, expected):
                self.assertAlmostEqual(a, b, places=3)

    def test_opaque_variants(self):
        c = from_opaque(CTYPE_VISUAL, b"\x89PNG....", handles=(7,))
        self.assertEqual(c.extract_content(), "M8 container: visual with 8 bytes of data")
        with self.assertRaises(ValueError):
            from_opaque(CTYPE_LANGUAGE, b"text")

    def test_content_type_names(self):
        c = from_opaque(CTYPE_VISUAL, b"")
        self.assertEqual(c.header.content_type_name, "visual")
        with self.assertRaises(ValueError):
            content_type_name(42)

    def test_metadata_is_read_only(self):
        source = {"codec": "pcm"}
        c = from_opaque(CTYPE_AUDIO, b"\x00\x01", metadata=source)
        source["codec"] = "changed"
        self.assertEqual(c.header.metadata, {"codec": "pcm"})
        with self.assertRaises(TypeError):
            c.header.metadata["codec"] = "flac"
        parsed = Container.from_bytes(c.to_bytes())
        with self.assertRaises(TypeError):
            parsed.header.metadata["extra"] = "x"

    def test_affect_conversion(self):
        self.assertEqual(Affect().to_bytes(), bytes([127, 127, 127]))
        self.assertNotEqual(Affect().to_bytes(), NEUTRAL_AFFECT)
        self.assertEqual(Affect(-1.0, 1.0, 2.0).to_bytes(), bytes([0, 255, 255]))


class EngineFailureTests(unittest.TestCase):
    def test_store_failure_is_engine_error(self):
        with self.assertRaises(EngineError) as ctx:
            from_raw_text("hi", 5, BrokenEngine())
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)

    def test_fetch_failure_aborts_compound(self):
        with self.assertRaises(EngineError):
            from_compound_bindings([1], None, BrokenEngine())

    def test_unknown_handle(self):
        with self.assertRaises(EngineError):
            from_compound_bindings([99], None, InMemoryEngine())

    def test_unpackable_pattern_is_engine_error(self):
        for pattern in ((1e39, 1.0, 0.0), (1.0, 2.0), ("loud", 1.0, 0.0), None):
            with self.subTest(pattern=pattern):
                with self.assertRaises(EngineError) as ctx:
                    from_compound_bindings([1], None, OutOfRangeEngine(pattern))
                self.assertIn("malformed pattern", str(ctx.exception))

    def test_guarded_engine_rejects_unpackable_pattern(self):
        with GuardedEngine(OutOfRangeEngine((1e39, 1.0, 0.0)), timeout=5.0) as engine:
            with self.assertRaises(EngineError):
                engine.fetch_pattern(1)
        with GuardedEngine(OutOfRangeEngine((1.0, 2.0, 3.0))) as engine:
            self.assertEqual(engine.fetch_pattern(1), WavePattern(1.0, 2.0, 3.0))

    def test_guarded_engine_timeout(self):
        slow = BlockingEngine()
        with GuardedEngine(slow, timeout=0.05) as engine:
            try:
                with self.assertRaises(EngineError):
                    from_raw_text("hi", 5, engine)
            finally:
                slow.release.set()

    def test_guarded_engine_passthrough(self):
        with GuardedEngine(InMemoryEngine(), timeout=5.0) as engine:
            c = from_raw_text("hi", 5, engine)
            self.assertEqual(c.header.memory_handles, (1,))
            self.assertIsInstance(engine.fetch_pattern(1), WavePattern)


class SerializationTests(unittest.TestCase):
    def _containers(self):
        engine = InMemoryEngine()
        h = engine.store_text("bound", 4)
        return [
            from_raw_text("Hello, quantum world!", 5, engine),
            from_raw_text("", 0, engine),
            from_compressed_document(markqant.encode("# Doc\n[x](y)\n"), 9),
            from_compound_bindings([h, h], Affect(0.5, -0.5, 0.0), engine),
            from_opaque(CTYPE_AUDIO, bytes(range(256)), metadata={"codec": "pcm"}),
        ]

    def test_roundtrip(self):
        for c in self._containers():
            with self.subTest(content_type=c.header.content_type_name):
                parsed = Container.from_bytes(c.to_bytes())
                self.assertEqual(parsed.header, c.header)
                self.assertEqual(parsed.content_hash, c.content_hash)
                self.assertEqual(parsed.payload, c.payload)
                self.assertTrue(parsed.verify())
                self.assertEqual(parsed.extract_content(), c.extract_content())

    def test_layout(self):
        c = from_raw_text("abc", 5, InMemoryEngine())
        data = c.to_bytes()
        self.assertEqual(data[:4], b"M8C1")
        (hlen,) = struct.unpack_from("<I", data, 4)
        off = 8 + hlen
        self.assertEqual(data[off : off + 32], c.content_hash)
        (plen,) = struct.unpack_from("<Q", data, off + 32)
        self.assertEqual(plen, 3)
        self.assertEqual(data[off + 40 :], b"abc")

    def test_hash_copied_verbatim(self):
        c = from_raw_text("abc", 5, InMemoryEngine())
        data = bytearray(c.to_bytes())
        (hlen,) = struct.unpack_from("<I", data, 4)
        data[8 + hlen] ^= 0xFF
        parsed = Container.from_bytes(bytes(data))
        self.assertNotEqual(parsed.content_hash, c.content_hash)
        self.assertFalse(parsed.verify())

    def test_bad_magic(self):
        data = from_raw_text("abc", 5, InMemoryEngine()).to_bytes()
        with self.assertRaises(BadMagicError):
            Container.from_bytes(b"M8C2" + data[4:])

    def test_every_truncation_is_format_error(self):
        data = from_raw_text("some payload", 5, InMemoryEngine()).to_bytes()
        for cut in range(len(data)):
            with self.subTest(cut=cut), self.assertRaises(FormatError):
                Container.from_bytes(data[:cut])

    def test_oversized_payload_length(self):
        data = bytearray(from_raw_text("abc", 5, InMemoryEngine()).to_bytes())
        (hlen,) = struct.unpack_from("<I", data, 4)
        struct.pack_into("<Q", data, 8 + hlen + 32, 1000)
        with self.assertRaises(TruncatedError):
            Container.from_bytes(bytes(data))

    def test_trailing_bytes(self):
        data = from_raw_text("abc", 5, InMemoryEngine()).to_bytes()
        with self.assertRaises(FormatError):
            Container.from_bytes(data + b"\x00")

    def test_unknown_content_type(self):
        data = from_raw_text("abc", 5, InMemoryEngine()).to_bytes()
        with self.assertRaises(UnknownContentTypeError):
            Container.from_bytes(_with_header(data, content_type=42))

    def test_unknown_version(self):
        data = from_raw_text("abc", 5, InMemoryEngine()).to_bytes()
        with self.assertRaises(UnsupportedVersionError):
            Container.from_bytes(_with_header(data, version=2))

    def test_wave_patterns_rejects_ragged_payload(self):
        data = from_raw_text("abc", 5, InMemoryEngine()).to_bytes()
        parsed = Container.from_bytes(_with_header(data, content_type=CTYPE_COMPOUND))
        with self.assertRaises(FormatError):
            parsed.wave_patterns()


if __name__ == "__main__":
    unittest.main()
