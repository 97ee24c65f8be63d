"""Full export run: albums.json, then manifest.json, then thumbnails.

Progress is reported as a stream of notifications so a caller (the CLI, or
the sync server's event stream) can render live status:

    {"type": "init" | "albums" | "manifest" | "thumbnails", "progress": int, "message": str}
    {"type": "complete", "progress": 100, "albums": int, "files": int, "thumbnails": {...}}
    {"type": "error", "message": str}
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from .albums import export_albums
from .config import SyncConfig
from .errors import NotFoundError
from .logging_config import get_logger
from .manifest import generate_manifest
from .thumbnails import DEFAULT_QUALITY, DEFAULT_SIZE, is_supported, pre_generate_thumbnails

logger = get_logger(__name__)

Notify = Callable[[dict], None]


def run_export(
    db_path: Path,
    photos_root: Path,
    out_folder: Path,
    notify: Optional[Notify] = None,
    *,
    width: int = DEFAULT_SIZE,
    height: int = DEFAULT_SIZE,
    quality: int = DEFAULT_QUALITY,
    concurrency: int = 4,
    reuse_unchanged: bool = False,
) -> dict:
    """Run every export stage and return a summary.

    Setup failures (missing database or photo root) are reported as an
    ``error`` notification and re-raised. Individual thumbnail failures are
    counted in the summary and do not stop the run.
    """

    def emit(kind: str, progress: int, message: str) -> None:
        if notify is not None:
            notify({"type": kind, "progress": progress, "message": message})

    try:
        if not Path(photos_root).is_dir():
            raise NotFoundError(f"Photos root not found: {photos_root}")

        emit("init", 0, "Exporting albums...")
        result = export_albums(
            db_path,
            photos_root,
            out_folder,
            progress=lambda message, pct: emit("albums", pct, message),
        )

        manifest = generate_manifest(
            photos_root,
            out_folder,
            progress=lambda message, pct: emit("manifest", pct, message),
            reuse_unchanged=reuse_unchanged,
        )

        images = list(
            dict.fromkeys(
                image
                for album in result["albums"]
                for image in album["images"]
                if is_supported(image)
            )
        )
        emit("thumbnails", 0, f"Generating {len(images)} thumbnails...")
        results = pre_generate_thumbnails(
            photos_root,
            out_folder,
            images,
            concurrency=concurrency,
            width=width,
            height=height,
            quality=quality,
            progress=lambda message, pct: emit("thumbnails", pct, message),
        )
    except Exception as exc:
        logger.error(f"Export failed: {exc}")
        if notify is not None:
            notify({"type": "error", "message": str(exc)})
        raise

    failed = [r.to_dict() for r in results if not r.ok]
    summary = {
        "albums": len(result["albums"]),
        "files": len(manifest["files"]),
        "thumbnails": {
            "total": len(results),
            "ok": len(results) - len(failed),
            "failed": failed,
        },
    }
    logger.info(
        f"Export complete: {summary['albums']} albums, {summary['files']} files, "
        f"{summary['thumbnails']['ok']}/{summary['thumbnails']['total']} thumbnails"
    )
    if notify is not None:
        notify({"type": "complete", "progress": 100, **summary})
    return summary


def run_export_from_config(config: SyncConfig, notify: Optional[Notify] = None) -> dict:
    if config.library.catalog is None:
        raise NotFoundError("No catalog configured ([library] catalog)")
    return run_export(
        config.library.catalog,
        config.photos_root,
        config.out_folder,
        notify,
        width=config.thumbnails.width,
        height=config.thumbnails.height,
        quality=config.thumbnails.quality,
        concurrency=config.thumbnails.concurrency,
        reuse_unchanged=config.manifest.reuse_unchanged,
    )
