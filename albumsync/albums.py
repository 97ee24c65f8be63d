"""Album exporter for AlbumSync.

Turns the catalog's album rows into `albums.json`, listing every file under
each album directory as a path relative to the photo root.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path, PurePosixPath
from typing import Optional

from .catalog import CatalogAlbum, CatalogReader
from .errors import NotFoundError
from .logging_config import get_logger
from .path_utils import to_relative
from .utils import ProgressCallback, now_iso, report, walk_files, write_json_atomic

logger = get_logger(__name__)

ALBUMS_FILENAME = "albums.json"


@dataclasses.dataclass
class Album:
    id: str
    title: str
    parent_id: Optional[str]
    cover: Optional[str]
    images: list[str]
    updated_at: str

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


def album_title(caption: Optional[str], relative_path: str) -> str:
    """Caption if set, else the last segment of the album path."""
    if caption:
        return caption
    if not relative_path:
        return "Untitled"
    return PurePosixPath(relative_path).name or relative_path


def album_directory(prefix: Path, relative_path: str) -> Path:
    # Catalog paths are rooted ("/Trip"); join them under the prefix.
    return prefix / relative_path.lstrip("/\\")


def collect_images(album_dir: Path, photos_root: Path) -> list[str]:
    """Return every regular file under album_dir, relative to photos_root."""
    if not album_dir.is_dir():
        return []
    return [to_relative(path, photos_root) for path, _ in walk_files(album_dir)]


def build_album(record: CatalogAlbum, prefix: Path, photos_root: Path) -> Album:
    """Build one album; a missing or unreadable directory yields no images."""
    album_dir = album_directory(prefix, record.relative_path)
    if not album_dir.is_dir():
        logger.warning(f"Album {record.id} directory missing: {album_dir}")
    try:
        images = collect_images(album_dir, photos_root)
    except (OSError, ValueError) as exc:
        logger.error(f"Album {record.id} could not be walked: {exc}")
        images = []
    return Album(
        id=str(record.id),
        title=album_title(record.caption, record.relative_path),
        parent_id=None,
        cover=images[0] if images else None,
        images=images,
        updated_at=record.modified_at or now_iso(),
    )


def export_albums(
    db_path: Path,
    photos_root: Path,
    out_folder: Path,
    progress: Optional[ProgressCallback] = None,
) -> dict:
    """Export the catalog's albums to `<out_folder>/albums.json`.

    :param db_path: Catalog database, opened read-only.
    :param photos_root: Default album root and base for relative image paths.
    :param out_folder: Created if missing; albums.json is replaced wholesale.
    :param progress: Optional (message, percent) callback.
    :return: The written document: {"generated_at", "albums"}.
    """
    db_path = Path(db_path)
    photos_root = Path(photos_root)
    out_folder = Path(out_folder)
    if not db_path.exists():
        raise NotFoundError(f"Database not found: {db_path}")

    report(progress, "Opening database...", 10)
    with CatalogReader(db_path) as catalog:
        report(progress, "Reading database structure...", 20)
        catalog.tables()

        report(progress, "Processing album roots...", 30)
        roots = catalog.album_roots(photos_root)

        report(progress, "Fetching albums...", 40)
        records = catalog.albums()

    report(progress, "Processing album contents...", 50)
    albums: list[Album] = []
    total = len(records)
    for idx, record in enumerate(records):
        report(progress, f"Processing album {idx + 1} of {total}...", 50 + (idx * 40) // total)
        albums.append(build_album(record, roots.prefix_for(record.album_root), photos_root))

    report(progress, "Saving album data...", 95)
    output = {
        "generated_at": now_iso(),
        "albums": [album.to_dict() for album in albums],
    }
    out_folder.mkdir(parents=True, exist_ok=True)
    write_json_atomic(out_folder / ALBUMS_FILENAME, output)
    logger.info(f"Exported {len(albums)} albums to {out_folder / ALBUMS_FILENAME}")

    report(progress, "Album export complete", 100)
    return output
