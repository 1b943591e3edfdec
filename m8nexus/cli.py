from __future__ import annotations

import argparse
import getpass as _getpass
import json as _json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from m8nexus import markqant
from m8nexus.config import NexusConfig
from m8nexus.constants import M8_MAGIC, MQ_MAGIC, TEXT_IMPORTANCE
from m8nexus.container import Container
from m8nexus.encryption import SealParams, is_sealed, seal_bytes, unseal_bytes
from m8nexus.engine import GuardedEngine, InMemoryEngine
from m8nexus.errors import BadMagicError, NexusError
from m8nexus.hashutil import hash_hex
from m8nexus.ingest import ingest
from m8nexus.store import ContentAddressedStore


def _read_artifact(path: str, password: Optional[str]) -> bytes:
    """Read a file, unsealing it first when it is a sealed envelope."""
    data = Path(path).read_bytes()
    if is_sealed(data):
        if password is None:
            raise ValueError("Password required for sealed file")
        data = unseal_bytes(data, password)
    return data


def _write_output(output: Optional[str], data: bytes) -> None:
    if output is None or output == "-":
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
    else:
        Path(output).write_bytes(data)


def _prompt_password(confirm: bool) -> str:
    pw = _getpass.getpass("Password: ")
    if confirm and _getpass.getpass("Confirm password: ") != pw:
        raise ValueError("Passwords do not match")
    return pw


# -------- Document commands --------

def cmd_pack(src: str, output: str, *, config: Optional[NexusConfig] = None) -> None:
    text = Path(src).read_bytes().decode("utf-8", errors="replace")
    doc = markqant.encode(text, config=config)
    Path(output).write_bytes(doc.to_bytes())
    print(f"{src} -> {output}: {doc.header.original_size} -> {doc.header.compressed_size} bytes ({doc.compression_ratio():.2f}x)")


def cmd_unpack(src: str, output: Optional[str] = None, *, password: Optional[str] = None) -> None:
    doc = markqant.CompressedDocument.from_bytes(_read_artifact(src, password))
    _write_output(output, markqant.decode(doc).encode("utf-8"))


# -------- Container commands --------

def cmd_wrap(
    src: str,
    output: str,
    *,
    importance: int = TEXT_IMPORTANCE,
    engine_timeout: Optional[float] = None,
) -> str:
    config = NexusConfig(text_importance=importance, engine_timeout=engine_timeout)
    store = ContentAddressedStore(config)
    with GuardedEngine(InMemoryEngine(), timeout=config.engine_timeout) as engine:
        result = ingest(Path(src).read_bytes(), Path(src).name, engine, store, config=config)
    container = store.get(result.content_hash)
    Path(output).write_bytes(container.to_bytes())
    print(f"{result.message}")
    print(f"hash: {result.content_hash_hex}")
    return result.content_hash_hex


def _document_info(doc: markqant.CompressedDocument) -> Dict[str, Any]:
    h = doc.header
    return {
        "kind": "marqant",
        "version": h.version,
        "codec": h.codec,
        "compression_level": h.compression_level,
        "original_size": h.original_size,
        "compressed_size": h.compressed_size,
        "compression_ratio": round(doc.compression_ratio(), 4),
        "content_hash": hash_hex(h.content_hash),
        "metadata": dict(h.metadata),
        "semantic_index": {k: list(v) for k, v in doc.semantic_index.items()},
    }


def _container_info(container: Container) -> Dict[str, Any]:
    h = container.header
    return {
        "kind": "container",
        "version": h.version,
        "content_type": h.content_type_name,
        "timestamp": h.timestamp.isoformat(),
        "memory_handles": list(h.memory_handles),
        "affect": list(h.affect),
        "metadata": dict(h.metadata),
        "content_hash": hash_hex(container.content_hash),
        "payload_len": len(container.payload),
        "verified": container.verify(),
    }


def cmd_info(path: str, *, password: Optional[str] = None, as_json: bool = False) -> Dict[str, Any]:
    data = _read_artifact(path, password)
    magic = data[:4]
    if magic == MQ_MAGIC:
        info = _document_info(markqant.CompressedDocument.from_bytes(data))
    elif magic == M8_MAGIC:
        info = _container_info(Container.from_bytes(data))
    else:
        raise BadMagicError(f"{path}: neither a marqant document nor an M8 container")
    if as_json:
        print(_json.dumps(info, sort_keys=True))
    else:
        for key, value in info.items():
            if isinstance(value, dict):
                print(f"{key}:")
                for k, v in value.items():
                    print(f"  {k}: {v}")
            else:
                print(f"{key}: {value}")
    return info


def cmd_extract(path: str, output: Optional[str] = None, *, password: Optional[str] = None) -> None:
    container = Container.from_bytes(_read_artifact(path, password))
    if not container.verify():
        print("Warning: content hash does not match payload", file=sys.stderr)
    _write_output(output, container.extract_content().encode("utf-8"))


# -------- Sealing --------

def cmd_seal(src: str, output: str, *, password: Optional[str] = None, params: Optional[SealParams] = None) -> None:
    if password is None:
        password = _prompt_password(confirm=True)
    Path(output).write_bytes(seal_bytes(Path(src).read_bytes(), password, params))
    print(f"Sealed {src} -> {output}")


def cmd_unseal(src: str, output: str, *, password: Optional[str] = None) -> None:
    if password is None:
        password = _prompt_password(confirm=False)
    Path(output).write_bytes(unseal_bytes(Path(src).read_bytes(), password))
    print(f"Unsealed {src} -> {output}")


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(prog="m8nexus", description="Marqant documents and M8 containers")
    ap.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_pack = sub.add_parser("pack", help="Compress markdown into a .mq document")
    ap_pack.add_argument("input", help="Markdown file")
    ap_pack.add_argument("-o", "--output", required=True, help="Output .mq path")
    ap_pack.add_argument("--level", type=int, default=9, help="Compression level (default 9)")

    ap_unpack = sub.add_parser("unpack", help="Restore markdown from a .mq document")
    ap_unpack.add_argument("input", help=".mq path")
    ap_unpack.add_argument("-o", "--output", help="Output path (default stdout)")
    ap_unpack.add_argument("--password", help="Password for a sealed file")

    ap_wrap = sub.add_parser("wrap", help="Wrap a file in an .m8 container (type chosen by extension)")
    ap_wrap.add_argument("input", help="Input file (.md, .mq, .m8 or anything else as text)")
    ap_wrap.add_argument("-o", "--output", required=True, help="Output .m8 path")
    ap_wrap.add_argument("--importance", type=int, default=TEXT_IMPORTANCE, help="Importance 0-9 for text (default 5)")
    ap_wrap.add_argument("--engine-timeout", type=float, help="Seconds to wait for each memory engine call")

    ap_info = sub.add_parser("info", help="Show header information for a .mq or .m8 file")
    ap_info.add_argument("input", help="Artifact path")
    ap_info.add_argument("--password", help="Password for a sealed file")
    ap_info.add_argument("--json", action="store_true", help="Emit JSON")

    ap_extract = sub.add_parser("extract", help="Print the textual content of an .m8 container")
    ap_extract.add_argument("input", help=".m8 path")
    ap_extract.add_argument("-o", "--output", help="Output path (default stdout)")
    ap_extract.add_argument("--password", help="Password for a sealed file")

    ap_seal = sub.add_parser("seal", help="Password-seal any file")
    ap_seal.add_argument("input", help="Input path")
    ap_seal.add_argument("output", help="Sealed output path")
    ap_seal.add_argument("--password", help="Password (prompted when omitted)")
    ap_seal.add_argument("--argon-time", type=int, default=SealParams.time_cost, help="Argon2id time cost")
    ap_seal.add_argument("--argon-memory", type=int, default=SealParams.memory_cost_kib, help="Argon2id memory in KiB")
    ap_seal.add_argument("--argon-lanes", type=int, default=SealParams.parallelism, help="Argon2id parallelism")

    ap_unseal = sub.add_parser("unseal", help="Open a sealed file")
    ap_unseal.add_argument("input", help="Sealed path")
    ap_unseal.add_argument("output", help="Output path")
    ap_unseal.add_argument("--password", help="Password (prompted when omitted)")

    args = ap.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    try:
        if args.cmd == "pack":
            cmd_pack(args.input, args.output, config=NexusConfig(compression_level=args.level))
        elif args.cmd == "unpack":
            cmd_unpack(args.input, args.output, password=args.password)
        elif args.cmd == "wrap":
            cmd_wrap(args.input, args.output, importance=args.importance, engine_timeout=args.engine_timeout)
        elif args.cmd == "info":
            cmd_info(args.input, password=args.password, as_json=args.json)
        elif args.cmd == "extract":
            cmd_extract(args.input, args.output, password=args.password)
        elif args.cmd == "seal":
            params = SealParams(time_cost=args.argon_time, memory_cost_kib=args.argon_memory, parallelism=args.argon_lanes)
            cmd_seal(args.input, args.output, password=args.password, params=params)
        elif args.cmd == "unseal":
            cmd_unseal(args.input, args.output, password=args.password)
        else:
            raise RuntimeError("Unknown command")
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except ValueError as e:
        msg = str(e)
        if "password required" in msg.lower():
            print("Error: File is sealed. Provide --password.", file=sys.stderr)
        else:
            print(f"Error: {msg}", file=sys.stderr)
        sys.exit(2)
    except RuntimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (NexusError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
