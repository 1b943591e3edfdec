from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from m8nexus.container import Container
from m8nexus.encryption import _HAS_CRYPTO


MARKDOWN = """# Notes

Some *content* with a [link](https://example.com).

```python
print("hi")
```
"""


class CLIIntegrationTests(unittest.TestCase):
    def run_cli(self, args, *, expect: int | None = 0, cwd: Path | None = None):
        cmd = [sys.executable, "-m", "m8nexus.cli"] + list(args)
        env = os.environ.copy()
        repo_root = Path(__file__).resolve().parent
        existing = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = str(repo_root) if not existing else f"{repo_root}{os.pathsep}{existing}"
        proc = subprocess.run(
            cmd,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
        if expect is not None and proc.returncode != expect:
            raise AssertionError(
                f"CLI exited {proc.returncode}, expected {expect}\nCommand: {' '.join(cmd)}\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}"
            )
        return proc

    def workspace(self) -> Path:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        return Path(tmp.name)

    def test_pack_unpack_roundtrip(self):
        root = self.workspace()
        src = root / "notes.md"
        src.write_text(MARKDOWN, encoding="utf-8")
        packed = root / "notes.mq"
        pack_proc = self.run_cli(["pack", str(src), "-o", str(packed)])
        self.assertIn("->", pack_proc.stdout)
        self.assertEqual(packed.read_bytes()[:4], b"MQ03")

        out = root / "restored.md"
        self.run_cli(["unpack", str(packed), "-o", str(out)])
        self.assertEqual(out.read_bytes(), src.read_bytes())

        info = json.loads(self.run_cli(["info", str(packed), "--json"]).stdout)
        self.assertEqual(info["kind"], "marqant")
        self.assertEqual(info["original_size"], len(MARKDOWN.encode("utf-8")))
        self.assertEqual(info["semantic_index"]["headers"], [0])

    def test_wrap_info_extract(self):
        root = self.workspace()
        src = root / "notes.md"
        src.write_text(MARKDOWN, encoding="utf-8")
        m8 = root / "notes.m8"
        wrap_proc = self.run_cli(["wrap", str(src), "-o", str(m8)])
        self.assertIn("structured-text", wrap_proc.stdout)

        container = Container.from_bytes(m8.read_bytes())
        self.assertTrue(container.verify())
        self.assertIn(container.content_hash.hex(), wrap_proc.stdout)

        info = json.loads(self.run_cli(["info", str(m8), "--json"]).stdout)
        self.assertEqual(info["content_type"], "structured-text")
        self.assertTrue(info["verified"])
        self.assertEqual(info["memory_handles"], [1])

        extract_proc = self.run_cli(["extract", str(m8)])
        self.assertEqual(extract_proc.stdout, MARKDOWN)

    def test_wrap_plain_text(self):
        root = self.workspace()
        src = root / "note.txt"
        src.write_text("just text", encoding="utf-8")
        m8 = root / "note.m8"
        self.run_cli(["wrap", str(src), "-o", str(m8), "--importance", "3"])
        info = json.loads(self.run_cli(["info", str(m8), "--json"]).stdout)
        self.assertEqual(info["content_type"], "language")
        self.assertEqual(info["metadata"], {"source": "text", "length": "9"})

    def test_errors_exit_2(self):
        root = self.workspace()
        junk = root / "junk.m8"
        junk.write_bytes(b"NOPE" + b"\x00" * 16)
        proc = self.run_cli(["info", str(junk)], expect=2)
        self.assertIn("Error:", proc.stderr)

        short = root / "short.m8"
        short.write_bytes(b"M8C1\xff\xff")
        proc = self.run_cli(["extract", str(short)], expect=2)
        self.assertIn("truncated", proc.stderr)

        proc = self.run_cli(["unpack", str(root / "missing.mq")], expect=2)
        self.assertIn("Error:", proc.stderr)

        bad_importance = root / "x.txt"
        bad_importance.write_text("x")
        self.run_cli(["wrap", str(bad_importance), "-o", str(root / "x.m8"), "--importance", "12"], expect=2)

    @unittest.skipUnless(_HAS_CRYPTO, "argon2-cffi and PyCryptodomex required")
    def test_seal_and_unseal(self):
        root = self.workspace()
        src = root / "notes.md"
        src.write_text(MARKDOWN, encoding="utf-8")
        m8 = root / "notes.m8"
        self.run_cli(["wrap", str(src), "-o", str(m8)])
        sealed = root / "notes.m8.sealed"
        fast = ["--argon-time", "1", "--argon-memory", "1024", "--argon-lanes", "1"]
        self.run_cli(["seal", str(m8), str(sealed), "--password", "pw"] + fast)

        proc = self.run_cli(["info", str(sealed)], expect=2)
        self.assertIn("Provide --password", proc.stderr)

        extract_proc = self.run_cli(["extract", str(sealed), "--password", "pw"])
        self.assertEqual(extract_proc.stdout, MARKDOWN)

        self.run_cli(["unseal", str(sealed), str(root / "wrong.m8"), "--password", "nope"], expect=2)

        opened = root / "opened.m8"
        self.run_cli(["unseal", str(sealed), str(opened), "--password", "pw"])
        self.assertEqual(opened.read_bytes(), m8.read_bytes())


if __name__ == "__main__":
    unittest.main()
