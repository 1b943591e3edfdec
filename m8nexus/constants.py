# Magic and version
MQ_MAGIC = b"MQ03"      # compressed markdown document ("marqant")
M8_MAGIC = b"M8C1"      # container
SEAL_MAGIC = b"M8S1"    # password-sealed envelope

MQ_VERSION = 3
M8_VERSION = 1

HASH_SIZE = 32
AFFECT_SIZE = 3
NEUTRAL_AFFECT = bytes([128, 128, 128])


# Content type tags (closed set)
CTYPE_STRUCTURED_TEXT = 0
CTYPE_WAVE_PATTERN = 1
CTYPE_LANGUAGE = 2
CTYPE_VISUAL = 3
CTYPE_AUDIO = 4
CTYPE_COMPOUND = 5

CONTENT_TYPE_NAMES = {
    CTYPE_STRUCTURED_TEXT: "structured-text",
    CTYPE_WAVE_PATTERN: "wave-pattern",
    CTYPE_LANGUAGE: "language",
    CTYPE_VISUAL: "visual",
    CTYPE_AUDIO: "audio",
    CTYPE_COMPOUND: "compound",
}

# Variants with no canonical textual form and no dedicated constructor
OPAQUE_CONTENT_TYPES = (CTYPE_WAVE_PATTERN, CTYPE_VISUAL, CTYPE_AUDIO)


# Codec IDs (0=none, 1=deflate/zlib, 2=zstd)
CODEC_NONE = 0
CODEC_DEFLATE = 1
CODEC_ZSTD = 2

DEFAULT_CODEC_ID = CODEC_DEFLATE
DEFAULT_COMPRESSION_LEVEL = 9


# Memory engine importance range
MIN_IMPORTANCE = 0
MAX_IMPORTANCE = 9
TEXT_IMPORTANCE = 5
DOCUMENT_IMPORTANCE = 7


# Decode limits
DEFAULT_MAX_HEADER_LEN = 16 * 1024 * 1024
DEFAULT_MAX_PAYLOAD_LEN = 1 << 30


def content_type_name(ctype: int) -> str:
    try:
        return CONTENT_TYPE_NAMES[ctype]
    except KeyError:
        raise ValueError(f"unknown content type id: {ctype}") from None
