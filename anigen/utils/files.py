"""File system helpers shared across the generator."""

from __future__ import annotations

import hashlib
import json
import os
import re
from pathlib import Path
from typing import Any

_SLUG_PATTERN = re.compile(r"[^a-z0-9]", re.IGNORECASE)
SLUG_MAX_LENGTH = 30
DEFAULT_SLUG = "animation"


def ensure_dir(path: str | Path) -> Path:
    """Create the directory if it does not exist."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def read_binary(path: str | Path) -> bytes:
    with open(path, "rb") as handle:
        return handle.read()


def write_text(path: str | Path, content: str) -> Path:
    """Write UTF-8 text to disk."""
    target = Path(path)
    ensure_dir(target.parent)
    target.write_text(content, encoding="utf-8")
    return target


def write_json(path: str | Path, data: Any) -> Path:
    """Serialize a Python object as JSON to disk."""
    payload = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    return write_text(path, payload)


def append_jsonl(path: str | Path, record: Any) -> Path:
    """Append one JSON document as a line to ``path``."""
    target = Path(path)
    ensure_dir(target.parent)
    with open(target, "a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, ensure_ascii=False, default=str))
        handle.write("\n")
    return target


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def atomic_write(path: str | Path, content: bytes) -> Path:
    """Write binary content to disk atomically."""
    target = Path(path)
    ensure_dir(target.parent)
    temp_path = target.with_suffix(target.suffix + ".tmp")
    with open(temp_path, "wb") as handle:
        handle.write(content)
    os.replace(temp_path, target)
    return target


def slugify_prompt(prompt: str, max_length: int = SLUG_MAX_LENGTH) -> str:
    """Turn free text into a short file-name stem.

    Every character outside ``[a-z0-9]`` becomes an underscore, the result is
    lower-cased and cut to ``max_length``. An empty slug falls back to
    ``"animation"``.
    """
    slug = _SLUG_PATTERN.sub("_", prompt).lower()[:max_length]
    return slug or DEFAULT_SLUG
