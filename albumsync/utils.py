"""Utility functions for AlbumSync."""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional

from .logging_config import get_logger

logger = get_logger(__name__)

# (message, percent) -> None
ProgressCallback = Callable[[str, int], None]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def short_path(path: Path) -> str:
    """Return abbreviated path showing only parent folder + filename.

    Example: /very/long/path/to/Trip/a.jpg -> Trip/a.jpg
    """
    return f"{path.parent.name}/{path.name}"


def report(progress: Optional[ProgressCallback], message: str, percent: int) -> None:
    if progress is not None:
        progress(message, percent)


def write_atomic(path: Path, data: bytes) -> None:
    """Write bytes to a sibling temp file and rename it over path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_json_atomic(path: Path, payload) -> None:
    write_atomic(path, json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8"))


def walk_files(
    root: Path,
    skip_dir: Optional[Callable[[Path], bool]] = None,
) -> Iterator[tuple[Path, os.stat_result]]:
    """Yield (path, stat) for every regular file under root, depth-first.

    Entries are visited in name order so repeated runs enumerate files
    identically. Unreadable directories and files are logged and skipped.
    """
    try:
        entries = sorted(os.scandir(root), key=lambda e: e.name)
    except OSError as exc:
        logger.warning(f"Unable to list {root}: {exc}")
        return

    for entry in entries:
        path = Path(entry.path)
        try:
            if entry.is_dir():
                if skip_dir is not None and skip_dir(path):
                    continue
                yield from walk_files(path, skip_dir)
            elif entry.is_file():
                yield path, entry.stat()
        except OSError as exc:
            logger.warning(f"Unable to stat {short_path(path)}: {exc}")
