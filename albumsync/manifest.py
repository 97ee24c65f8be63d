"""Manifest builder for AlbumSync.

Writes `manifest.json`: one entry per file under the photo root with its
size, mtime and SHA-1. The thumbnail cache subtree is never listed.

Every run rehashes every file unless `reuse_unchanged` is set, in which case
an entry whose size and mtime match the previous manifest keeps its old sha1
without reading the file. That trades the always-rehash guarantee for speed.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from pathlib import Path
from typing import Optional

from .errors import NotFoundError
from .logging_config import get_logger
from .path_utils import is_inside, to_relative
from .thumbnails import THUMBS_DIRNAME
from .utils import ProgressCallback, now_iso, report, short_path, walk_files, write_json_atomic

logger = get_logger(__name__)

MANIFEST_FILENAME = "manifest.json"
_CHUNK_SIZE = 1024 * 1024


@dataclasses.dataclass
class ManifestFile:
    path: str
    size: int
    mtime: int
    sha1: str

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


def sha1_file(path: Path) -> str:
    digest = hashlib.sha1()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def excluded_prefixes(photos_root: Path, out_folder: Path) -> tuple[str, ...]:
    """Relative prefixes (with trailing slash) that never enter the manifest."""
    prefixes = [f"{THUMBS_DIRNAME}/"]
    cache_dir = out_folder / THUMBS_DIRNAME
    if is_inside(photos_root, cache_dir):
        rel = to_relative(cache_dir.resolve(), photos_root.resolve())
        if rel != ".":
            prefixes.append(f"{rel}/")
    return tuple(dict.fromkeys(prefixes))


def _is_excluded(rel: str, prefixes: tuple[str, ...]) -> bool:
    return any(rel.startswith(prefix) for prefix in prefixes)


def load_previous(manifest_path: Path) -> dict[str, ManifestFile]:
    """Read an existing manifest keyed by path; empty if absent or unreadable."""
    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
        return {
            entry["path"]: ManifestFile(
                path=entry["path"],
                size=int(entry["size"]),
                mtime=int(entry["mtime"]),
                sha1=entry["sha1"],
            )
            for entry in data.get("files", [])
        }
    except FileNotFoundError:
        return {}
    except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
        logger.warning(f"Ignoring unreadable previous manifest {manifest_path}: {exc}")
        return {}


def generate_manifest(
    photos_root: Path,
    out_folder: Path,
    progress: Optional[ProgressCallback] = None,
    reuse_unchanged: bool = False,
) -> dict:
    """Build `<out_folder>/manifest.json` for every file under photos_root.

    :param reuse_unchanged: Reuse the previous sha1 when size and mtime match.
    :return: The written document: {"generated_at", "files"}.
    """
    photos_root = Path(photos_root)
    out_folder = Path(out_folder)
    if not photos_root.is_dir():
        raise NotFoundError(f"Photos root not found: {photos_root}")

    root = photos_root.resolve()
    prefixes = excluded_prefixes(photos_root, out_folder)
    manifest_path = out_folder / MANIFEST_FILENAME

    def skip_dir(path: Path) -> bool:
        return _is_excluded(to_relative(path, root) + "/", prefixes)

    report(progress, "Starting manifest generation...", 0)

    report(progress, "Counting files...", 10)
    total_files = sum(1 for _ in walk_files(root, skip_dir))

    previous = load_previous(manifest_path) if reuse_unchanged else {}
    reused = 0

    report(progress, "Processing files...", 20)
    files: list[ManifestFile] = []
    count = 0
    for path, stat in walk_files(root, skip_dir):
        rel = to_relative(path, root)
        if _is_excluded(rel, prefixes):
            continue

        count += 1
        report(
            progress,
            f"Processing file {count} of {total_files}...",
            20 + (count * 70) // max(total_files, count),
        )

        size = stat.st_size
        mtime = int(stat.st_mtime)
        prior = previous.get(rel)
        if prior is not None and prior.size == size and prior.mtime == mtime:
            files.append(prior)
            reused += 1
            continue

        try:
            digest = sha1_file(path)
        except OSError as exc:
            logger.error(f"Unable to hash {short_path(path)}: {exc}")
            continue
        files.append(ManifestFile(path=rel, size=size, mtime=mtime, sha1=digest))

    report(progress, "Saving manifest...", 95)
    manifest = {
        "generated_at": now_iso(),
        "files": [entry.to_dict() for entry in files],
    }
    out_folder.mkdir(parents=True, exist_ok=True)
    write_json_atomic(manifest_path, manifest)
    if reuse_unchanged:
        logger.info(f"Manifest: {len(files)} files ({reused} unchanged, reused)")
    else:
        logger.info(f"Manifest: {len(files)} files")

    report(progress, "Manifest generation complete", 100)
    return manifest
