"""Builders for test artifacts."""

import hashlib
import io
import json
import zipfile
from pathlib import Path
from typing import Any, Optional


def sha1(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()  # noqa: S324


def zip_bytes(entries: dict[str, Any]) -> bytes:
    """A zip archive in memory; dicts and lists are stored as JSON, str as UTF-8."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in entries.items():
            if isinstance(content, (dict, list)):
                content = json.dumps(content)
            if isinstance(content, str):
                content = content.encode("utf-8")
            zf.writestr(name, content)
    return buffer.getvalue()


def make_zip(path: Path, entries: dict[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(zip_bytes(entries))
    return path


def make_jar(path: Path, main_class: Optional[str] = None) -> Path:
    manifest = "Manifest-Version: 1.0\n"
    if main_class:
        manifest += f"Main-Class: {main_class}\n"
    return make_zip(path, {"META-INF/MANIFEST.MF": manifest})
