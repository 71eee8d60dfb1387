from __future__ import annotations

import gzip
import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable, TextIO, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def is_readable(path: str | Path) -> bool:
    p = Path(path)
    return p.is_file() and os.access(p, os.R_OK)


def require_readable(path: str | Path, what: str) -> Path:
    """Return ``path`` as a Path, or raise naming the file that cannot be read."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"{what} not found: {p}")
    if not is_readable(p):
        raise PermissionError(f"Cannot read {what.lower()}: {p}")
    return p


def open_textmaybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    p = str(path)
    if p.endswith(".gz"):
        return gzip.open(p, mode)  # type: ignore[return-value]
    return open(p, mode)


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)


def chunked(iterable: Iterable[T], n: int) -> Iterable[list[T]]:
    chunk: list[T] = []
    for item in iterable:
        chunk.append(item)
        if len(chunk) >= n:
            yield chunk
            chunk = []
    if chunk:
        yield chunk
