from __future__ import annotations

"""
Minimal TLV encoder/decoder for m8nexus headers and semantic indexes.

Encoding
- TLV: varint(tag) || varint(length) || payload
- Integers: unsigned LEB128 varint
- Bytes: raw payload (length provided by TLV len)
- Strings: UTF-8 bytes (length provided by TLV len)
- Packed integers: concatenated varints (count implied by TLV len)

Unknown tags are skipped on decode so newer writers may add fields.

Document header (.mq)
- 1: version (varint)
- 2: compression_level (varint)
- 3: original_size (varint)
- 4: compressed_size (varint)
- 5: content_hash (bytes[32])
- 6: metadata (container; contains pair TLVs, tag=1 per pair)
- 7: codec (varint)

Metadata pair (within metadata container; tag=1)
- 1: key (utf8)
- 2: value (utf8)

Semantic index (.mq, separate TLV message)
- 1: category (container, repeated)

Category (tag=1)
- 1: name (utf8)
- 2: offsets (packed varints, ascending)

Container header (.m8)
- 1: version (varint)
- 2: content_type (varint)
- 3: timestamp (payload: varint sec || varint nsec)
- 4: memory_handles (packed varints, order preserved)
- 5: affect (bytes[3])
- 6: metadata (container; as above)
"""

from typing import Dict, List, Mapping, Sequence, Tuple

from .errors import FormatError, TruncatedError


def _varint_encode(n: int) -> bytes:
    if n < 0:
        raise ValueError("varint: negative not supported")
    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if n:
            out.append(b | 0x80)
        else:
            out.append(b)
            break
    return bytes(out)


def _varint_decode(data: bytes, pos: int) -> Tuple[int, int]:
    shift = 0
    result = 0
    while True:
        if pos >= len(data):
            raise TruncatedError("varint: truncated")
        b = data[pos]
        pos += 1
        result |= (b & 0x7F) << shift
        if not (b & 0x80):
            return result, pos
        shift += 7
        if shift > 63:
            raise FormatError("varint: too large")


def _tlv(tag: int, payload: bytes) -> bytes:
    return _varint_encode(tag) + _varint_encode(len(payload)) + payload


def _encode_str(s: str) -> bytes:
    return s.encode("utf-8")


def _decode_str(b: bytes) -> str:
    try:
        return b.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FormatError(f"invalid UTF-8 in header string: {exc}") from None


def _iter_tlvs(data: bytes) -> List[Tuple[int, bytes]]:
    items: List[Tuple[int, bytes]] = []
    pos = 0
    n = len(data)
    while pos < n:
        tag, pos = _varint_decode(data, pos)
        ln, pos = _varint_decode(data, pos)
        if pos + ln > n:
            raise TruncatedError("TLV length out of range")
        items.append((tag, data[pos : pos + ln]))
        pos += ln
    return items


def _pack_varints(values: Sequence[int]) -> bytes:
    return b"".join(_varint_encode(int(v)) for v in values)


def _unpack_varints(data: bytes) -> List[int]:
    values: List[int] = []
    pos = 0
    while pos < len(data):
        v, pos = _varint_decode(data, pos)
        values.append(v)
    return values


def _decode_uint(payload: bytes) -> int:
    v, _ = _varint_decode(payload, 0)
    return v


def _dumps_metadata(meta: Mapping[str, str]) -> bytes:
    out = bytearray()
    for key, value in meta.items():
        out += _tlv(1, _tlv(1, _encode_str(str(key))) + _tlv(2, _encode_str(str(value))))
    return bytes(out)


def _loads_metadata(data: bytes) -> Dict[str, str]:
    meta: Dict[str, str] = {}
    for tag, pair in _iter_tlvs(data):
        if tag != 1:
            continue
        key = None
        value = ""
        for ft, fv in _iter_tlvs(pair):
            if ft == 1:
                key = _decode_str(fv)
            elif ft == 2:
                value = _decode_str(fv)
        if key is None:
            raise FormatError("metadata pair without key")
        meta[key] = value
    return meta


def dumps_document_header(hdr: Dict) -> bytes:
    out = bytearray()
    out += _tlv(1, _varint_encode(int(hdr["version"])))
    out += _tlv(2, _varint_encode(int(hdr["compression_level"])))
    out += _tlv(3, _varint_encode(int(hdr["original_size"])))
    out += _tlv(4, _varint_encode(int(hdr["compressed_size"])))
    out += _tlv(5, bytes(hdr["content_hash"]))
    meta = hdr.get("metadata") or {}
    if meta:
        out += _tlv(6, _dumps_metadata(meta))
    codec = hdr.get("codec")
    if codec is not None:
        out += _tlv(7, _varint_encode(int(codec)))
    return bytes(out)


def loads_document_header(data: bytes) -> Dict:
    hdr: Dict = {"metadata": {}}
    for tag, payload in _iter_tlvs(data):
        if tag == 1:
            hdr["version"] = _decode_uint(payload)
        elif tag == 2:
            hdr["compression_level"] = _decode_uint(payload)
        elif tag == 3:
            hdr["original_size"] = _decode_uint(payload)
        elif tag == 4:
            hdr["compressed_size"] = _decode_uint(payload)
        elif tag == 5:
            hdr["content_hash"] = payload
        elif tag == 6:
            hdr["metadata"] = _loads_metadata(payload)
        elif tag == 7:
            hdr["codec"] = _decode_uint(payload)
    for required in ("version", "compression_level", "original_size", "compressed_size", "content_hash"):
        if required not in hdr:
            raise FormatError(f"document header missing field: {required}")
    return hdr


def dumps_semantic_index(index: Mapping[str, Sequence[int]]) -> bytes:
    out = bytearray()
    for name, offsets in index.items():
        out += _tlv(1, _tlv(1, _encode_str(name)) + _tlv(2, _pack_varints(offsets)))
    return bytes(out)


def loads_semantic_index(data: bytes) -> Dict[str, List[int]]:
    index: Dict[str, List[int]] = {}
    for tag, payload in _iter_tlvs(data):
        if tag != 1:
            continue
        name = None
        offsets: List[int] = []
        for ft, fv in _iter_tlvs(payload):
            if ft == 1:
                name = _decode_str(fv)
            elif ft == 2:
                offsets = _unpack_varints(fv)
        if name is None:
            raise FormatError("semantic index category without name")
        index[name] = offsets
    return index


def dumps_container_header(hdr: Dict) -> bytes:
    out = bytearray()
    out += _tlv(1, _varint_encode(int(hdr["version"])))
    out += _tlv(2, _varint_encode(int(hdr["content_type"])))
    ts = hdr.get("timestamp", {})
    out += _tlv(3, _varint_encode(int(ts.get("sec", 0))) + _varint_encode(int(ts.get("nsec", 0))))
    out += _tlv(4, _pack_varints(hdr.get("memory_handles", ())))
    out += _tlv(5, bytes(hdr["affect"]))
    meta = hdr.get("metadata") or {}
    if meta:
        out += _tlv(6, _dumps_metadata(meta))
    return bytes(out)


def loads_container_header(data: bytes) -> Dict:
    hdr: Dict = {"memory_handles": [], "metadata": {}}
    for tag, payload in _iter_tlvs(data):
        if tag == 1:
            hdr["version"] = _decode_uint(payload)
        elif tag == 2:
            hdr["content_type"] = _decode_uint(payload)
        elif tag == 3:
            s, pos = _varint_decode(payload, 0)
            ns, pos = _varint_decode(payload, pos)
            hdr["timestamp"] = {"sec": s, "nsec": ns}
        elif tag == 4:
            hdr["memory_handles"] = _unpack_varints(payload)
        elif tag == 5:
            hdr["affect"] = payload
        elif tag == 6:
            hdr["metadata"] = _loads_metadata(payload)
    for required in ("version", "content_type", "timestamp", "affect"):
        if required not in hdr:
            raise FormatError(f"container header missing field: {required}")
    return hdr
