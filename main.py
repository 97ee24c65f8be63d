"""AlbumSync CLI entry point."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Optional

import typer

from albumsync import __version__
from albumsync.albums import ALBUMS_FILENAME, export_albums
from albumsync.config import DEFAULT_CONFIG_PATH, SyncConfig, get_config, reset_config_cache, write_default_config
from albumsync.errors import SyncError
from albumsync.logging_config import setup_logging
from albumsync.manifest import generate_manifest
from albumsync.pipeline import run_export_from_config
from albumsync.server import SyncServer
from albumsync.thumbnails import is_supported, pre_generate_thumbnails


app = typer.Typer(add_completion=False, help="AlbumSync photo library export and LAN sync")
logger = logging.getLogger("albumsync")


def _ensure_config() -> SyncConfig:
    try:
        return get_config()
    except FileNotFoundError:
        typer.echo("[ERROR] config.ini not found. Run: albumsync init --photos /path/to/photos")
        raise typer.Exit(code=1)


def _print_progress(message: str, percent: int) -> None:
    logger.info(f"[{percent:3d}%] {message}")


def _print_notification(note: dict) -> None:
    if note["type"] in ("complete", "error"):
        return
    _print_progress(f"{note['type']}: {note['message']}", note["progress"])


@app.command()
def init(
    photos: Path = typer.Option(..., "--photos", help="Photo library root"),
    out: Optional[Path] = typer.Option(None, "--out", help="Output folder (defaults to the photo root)"),
    catalog: Optional[Path] = typer.Option(None, "--catalog", help="Catalog database path"),
) -> None:
    """Initialize config.ini with default settings."""
    path = write_default_config(DEFAULT_CONFIG_PATH, photos, out or photos, catalog)
    reset_config_cache()
    typer.echo(f"[OK] Config created at {path}")


@app.command()
def export() -> None:
    """Run the full export: albums, manifest and thumbnails."""
    setup_logging()
    config = _ensure_config()
    try:
        summary = run_export_from_config(config, notify=_print_notification)
    except SyncError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)

    thumbs = summary["thumbnails"]
    typer.echo(
        "✓ Export completed: "
        f"{summary['albums']} albums, "
        f"{summary['files']} files, "
        f"{thumbs['ok']}/{thumbs['total']} thumbnails."
    )


@app.command()
def albums() -> None:
    """Export albums.json only."""
    setup_logging()
    config = _ensure_config()
    if config.library.catalog is None:
        typer.echo("[ERROR] No catalog configured ([library] catalog)")
        raise typer.Exit(code=1)
    try:
        result = export_albums(config.library.catalog, config.photos_root, config.out_folder, _print_progress)
    except SyncError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)
    typer.echo(f"✓ {len(result['albums'])} albums exported.")


@app.command()
def manifest() -> None:
    """Build manifest.json only."""
    setup_logging()
    config = _ensure_config()
    try:
        result = generate_manifest(
            config.photos_root,
            config.out_folder,
            _print_progress,
            reuse_unchanged=config.manifest.reuse_unchanged,
        )
    except SyncError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)
    typer.echo(f"✓ {len(result['files'])} files in manifest.")


@app.command()
def thumbnails() -> None:
    """Generate missing thumbnails for every image listed in albums.json."""
    setup_logging()
    config = _ensure_config()
    albums_path = config.out_folder / ALBUMS_FILENAME
    if not albums_path.exists():
        typer.echo(f"[ERROR] {albums_path} not found. Run: albumsync albums")
        raise typer.Exit(code=1)

    data = json.loads(albums_path.read_text(encoding="utf-8"))
    images = list(
        dict.fromkeys(
            image for album in data.get("albums", []) for image in album.get("images", []) if is_supported(image)
        )
    )
    results = pre_generate_thumbnails(
        config.photos_root,
        config.out_folder,
        images,
        concurrency=config.thumbnails.concurrency,
        width=config.thumbnails.width,
        height=config.thumbnails.height,
        quality=config.thumbnails.quality,
        progress=_print_progress,
    )
    failed = [r for r in results if not r.ok]
    typer.echo(f"✓ {len(results) - len(failed)} thumbnails ready, {len(failed)} failed.")


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, "--port", help="Server port (0 = any free port)"),
    run_export: bool = typer.Option(False, "--export", help="Run a full export once the server is up"),
) -> None:
    """Start the sync server and keep it running until Ctrl+C."""
    setup_logging()
    config = _ensure_config()

    server = SyncServer.from_config(config)
    try:
        info = server.start(
            config.photos_root,
            config.out_folder,
            config.server.port if port is None else port,
        )
    except (SyncError, OSError) as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)

    logger.info(f"AlbumSync {__version__} serving at {info.url}")
    logger.info(f"Albums: {info.albums}")

    try:
        if run_export:
            try:
                run_export_from_config(config, notify=lambda note: server.broadcast("export", note))
            except SyncError as exc:
                logger.error(f"Export failed: {exc}")
        while server.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        server.stop()


if __name__ == "__main__":
    app()
