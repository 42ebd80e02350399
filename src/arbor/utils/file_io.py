"""File IO helpers for document and settings persistence."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

__all__ = ["read_json", "write_text", "write_json"]


def read_json(path: Path | str) -> Any:
    """Read and decode a UTF-8 JSON file (a leading BOM is tolerated)."""

    text = Path(path).read_text(encoding="utf-8-sig")
    return json.loads(text)


def write_text(
    path: Path | str,
    content: str,
    *,
    encoding: str = "utf-8",
    atomic: bool = True,
) -> Path:
    """Write text to disk, by default through a temp file swapped into place."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    if not atomic:
        with target.open("w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        return target

    descriptor, tmp_name = tempfile.mkstemp(
        dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(descriptor, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    finally:
        if os.path.exists(tmp_name):  # pragma: no cover - cleanup path
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
    return target


def write_json(path: Path | str, payload: Any, *, indent: int = 2) -> Path:
    body = json.dumps(payload, indent=indent, ensure_ascii=False, sort_keys=True)
    return write_text(path, body + "\n")
