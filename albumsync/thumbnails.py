"""Thumbnail cache for AlbumSync.

Thumbnails live under `<out_folder>/.thumbs/` named
`sha1(relative_path)-{width}x{height}.jpg`. The name depends only on the
relative path exactly as requested and the box size, so an existing file is
a finished thumbnail and is never regenerated. Files are written to a temp
name and renamed into place.
"""

from __future__ import annotations

import dataclasses
import hashlib
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Iterable, Optional

import pillow_heif
from PIL import Image, ImageOps

from .errors import NotFoundError, UnsupportedFormatError
from .logging_config import get_logger
from .path_utils import strip_parent_escapes
from .utils import ProgressCallback

logger = get_logger(__name__)

THUMBS_DIRNAME = ".thumbs"
DEFAULT_SIZE = 512
DEFAULT_QUALITY = 82

SUPPORTED_EXTENSIONS = {
    ".jpg", ".jpeg", ".png", ".webp", ".bmp", ".gif", ".tif", ".tiff", ".heic", ".heif",
}
HEIF_EXTENSIONS = {".heic", ".heif"}


def thumbnails_dir(out_folder: Path) -> Path:
    return Path(out_folder) / THUMBS_DIRNAME


def thumbnail_name(relative_path: str, width: int, height: int) -> str:
    name_hash = hashlib.sha1(relative_path.encode("utf-8")).hexdigest()
    return f"{name_hash}-{width}x{height}.jpg"


def is_supported(path: str) -> bool:
    return Path(path).suffix.lower() in SUPPORTED_EXTENSIONS


def _decode_heif(src: Path) -> Image.Image:
    """Convert a HEIC/HEIF file into a plain Pillow image."""
    heif_file = pillow_heif.open_heif(str(src), convert_hdr_to_8bit=True)
    return heif_file.to_pillow()


def _open_source(src: Path) -> Image.Image:
    if src.suffix.lower() in HEIF_EXTENSIONS:
        return _decode_heif(src)
    return Image.open(src)


def _render_thumbnail(src: Path, thumb_path: Path, width: int, height: int, quality: int) -> None:
    thumb_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=thumb_path.parent, prefix=".", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle, _open_source(src) as im:
            im = ImageOps.exif_transpose(im)
            im = im.convert("RGB")
            im.thumbnail((width, height))
            im.save(handle, format="JPEG", quality=quality, optimize=True)
        os.replace(tmp_name, thumb_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def ensure_thumbnail(
    photos_root: Path,
    out_folder: Path,
    relative_path: str,
    width: int = DEFAULT_SIZE,
    height: int = DEFAULT_SIZE,
    quality: int = DEFAULT_QUALITY,
) -> Path:
    """Return the cached thumbnail for relative_path, generating it on a miss.

    Raises UnsupportedFormatError for unknown extensions (before touching the
    filesystem) and NotFoundError if the source image is missing.
    """
    if not is_supported(relative_path):
        raise UnsupportedFormatError(f"Unsupported file type: {relative_path}")

    safe = strip_parent_escapes(relative_path)
    src = Path(photos_root) / safe
    if not safe or not src.is_file():
        raise NotFoundError(f"File not found: {src}")

    thumb_path = thumbnails_dir(out_folder) / thumbnail_name(relative_path, width, height)
    if thumb_path.exists():
        return thumb_path

    try:
        _render_thumbnail(src, thumb_path, width, height, quality)
    except Exception as exc:
        logger.warning(f"Thumbnail failed for {relative_path}: {exc}")
        raise
    return thumb_path


@dataclasses.dataclass
class ThumbnailResult:
    path: str
    ok: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"path": self.path, "ok": self.ok}
        if self.error is not None:
            data["error"] = self.error
        return data


def pre_generate_thumbnails(
    photos_root: Path,
    out_folder: Path,
    paths: Iterable[str],
    concurrency: int = 4,
    width: int = DEFAULT_SIZE,
    height: int = DEFAULT_SIZE,
    quality: int = DEFAULT_QUALITY,
    progress: Optional[ProgressCallback] = None,
) -> list[ThumbnailResult]:
    """Generate thumbnails for many paths on a bounded worker pool.

    One failing image never stops the rest; its error is recorded in the
    result. Results are returned in input order once every path is done.
    """
    paths = list(paths)
    total = len(paths)
    results: list[Optional[ThumbnailResult]] = [None] * total
    if not total:
        return []

    done = 0
    with ThreadPoolExecutor(max_workers=max(1, concurrency), thread_name_prefix="thumbs") as pool:
        futures = {
            pool.submit(ensure_thumbnail, photos_root, out_folder, rel, width, height, quality): idx
            for idx, rel in enumerate(paths)
        }
        for future in as_completed(futures):
            idx = futures[future]
            rel = paths[idx]
            done += 1
            try:
                future.result()
                results[idx] = ThumbnailResult(path=rel, ok=True)
                logger.debug(f"[{done}/{total}] {rel}")
            except Exception as exc:
                results[idx] = ThumbnailResult(path=rel, ok=False, error=str(exc))
                logger.warning(f"[{done}/{total}] {rel} failed: {exc}")
            if progress is not None:
                progress(f"Processing image {done}/{total}", (done * 100) // total)

    return [r for r in results if r is not None]
