from __future__ import annotations

from typing import Optional

from .constants import CODEC_NONE, CODEC_ZSTD, CODEC_DEFLATE, DEFAULT_COMPRESSION_LEVEL
from .errors import FormatError

import zlib

try:  # optional extra: pip install m8nexus[zstd]
    import zstandard as _zstd_mod  # type: ignore
    from zstandard import ZstdError as _ZstdError  # type: ignore
    _HAS_ZSTD = True
except ImportError:
    _zstd_mod = None
    _ZstdError = RuntimeError
    _HAS_ZSTD = False


KNOWN_CODECS = (CODEC_NONE, CODEC_DEFLATE, CODEC_ZSTD)


class Codec:
    """Lossless byte compressor selected by codec id.

    Compression and decompression failures surface as FormatError; an
    unavailable or unknown codec is a RuntimeError/FormatError respectively.
    """

    def __init__(self, codec_id: int, level: Optional[int] = None):
        self.codec_id = codec_id
        self.level = level

    def compress(self, data: bytes) -> bytes:
        if self.codec_id == CODEC_NONE:
            return data
        if self.codec_id == CODEC_DEFLATE:
            try:
                return zlib.compress(data, self.level if self.level is not None else DEFAULT_COMPRESSION_LEVEL)
            except zlib.error as e:
                raise FormatError(f"deflate compression failed: {e}") from e
        if self.codec_id == CODEC_ZSTD:
            if not (_HAS_ZSTD and _zstd_mod is not None):
                raise RuntimeError("zstd codec selected but zstandard is not installed")
            try:
                c = _zstd_mod.ZstdCompressor(level=self.level if self.level is not None else 19)
                return c.compress(data)
            except _ZstdError as e:
                raise FormatError(f"zstd compression failed: {e}") from e
        raise FormatError(f"unsupported codec id: {self.codec_id}")

    def decompress(self, data: bytes, max_output: Optional[int] = None) -> bytes:
        """Decompress ``data``; with ``max_output`` set, larger output is a FormatError.

        The bound is enforced while inflating, so a hostile stream never
        allocates more than ``max_output + 1`` bytes of output.
        """
        if self.codec_id == CODEC_NONE:
            if max_output is not None and len(data) > max_output:
                raise FormatError(f"stored payload exceeds {max_output} bytes")
            return data
        if self.codec_id == CODEC_DEFLATE:
            try:
                if max_output is None:
                    return zlib.decompress(data)
                d = zlib.decompressobj()
                out = d.decompress(data, max_output + 1)
            except zlib.error as e:
                raise FormatError(f"deflate decompression failed: {e}") from e
            if len(out) > max_output or d.unconsumed_tail:
                raise FormatError(f"deflate stream inflates past {max_output} bytes")
            if not d.eof:
                raise FormatError("deflate stream is truncated")
            return out
        if self.codec_id == CODEC_ZSTD:
            if not (_HAS_ZSTD and _zstd_mod is not None):
                raise RuntimeError("zstd codec not available to decompress")
            try:
                d = _zstd_mod.ZstdDecompressor()
                if max_output is None:
                    return d.decompress(data)
                declared = _zstd_mod.frame_content_size(data)
                if declared > max_output:
                    raise FormatError(f"zstd frame declares {declared} bytes, limit is {max_output}")
                out = d.decompress(data, max_output_size=max_output + 1)
            except _ZstdError as e:
                raise FormatError(f"zstd decompression failed: {e}") from e
            if len(out) > max_output:
                raise FormatError(f"zstd stream inflates past {max_output} bytes")
            return out
        raise FormatError(f"unsupported codec id: {self.codec_id}")
