"""Config management for AlbumSync.

Reads `config.ini` from DATA_DIR (the project root unless the DATA_DIR
environment variable points elsewhere). The shared sync token may also come
from the SYNC_TOKEN environment variable, which wins over the file.
"""

from __future__ import annotations

import configparser
import dataclasses
import os
import pathlib
import sys
from typing import Optional

from .logging_config import get_logger

logger = get_logger(__name__)


def _get_project_root() -> pathlib.Path:
    if getattr(sys, "frozen", False):
        return pathlib.Path(sys.executable).resolve().parent
    return pathlib.Path(__file__).resolve().parents[1]


PROJECT_ROOT = _get_project_root()

DATA_DIR = pathlib.Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"

TOKEN_ENV_VAR = "SYNC_TOKEN"
COLLISION_POLICIES = ("overwrite", "rename", "reject")


@dataclasses.dataclass
class LibraryConfig:
    photos_root: pathlib.Path
    out_folder: pathlib.Path
    catalog: Optional[pathlib.Path] = None


@dataclasses.dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 0


@dataclasses.dataclass
class ThumbnailConfig:
    width: int = 512
    height: int = 512
    quality: int = 82
    concurrency: int = 4


@dataclasses.dataclass
class ManifestConfig:
    # Reuse the previous sha1 when size and mtime are unchanged.
    reuse_unchanged: bool = False


@dataclasses.dataclass
class UploadConfig:
    on_collision: str = "overwrite"
    max_files: int = 50
    max_file_size: int = 200 * 1024 * 1024


@dataclasses.dataclass
class AuthConfig:
    """Shared secret for the sync server. Empty disables the check."""

    token: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.token)


@dataclasses.dataclass
class SyncConfig:
    library: LibraryConfig
    server: ServerConfig = dataclasses.field(default_factory=ServerConfig)
    thumbnails: ThumbnailConfig = dataclasses.field(default_factory=ThumbnailConfig)
    manifest: ManifestConfig = dataclasses.field(default_factory=ManifestConfig)
    uploads: UploadConfig = dataclasses.field(default_factory=UploadConfig)
    auth: AuthConfig = dataclasses.field(default_factory=AuthConfig)

    @property
    def photos_root(self) -> pathlib.Path:
        return self.library.photos_root

    @property
    def out_folder(self) -> pathlib.Path:
        return self.library.out_folder


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_config(config_path: Optional[pathlib.Path] = None) -> SyncConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in DATA_DIR.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path)

    photos_root = pathlib.Path(
        parser.get("library", "photos_root", fallback="~/Pictures")
    ).expanduser()
    out_folder = pathlib.Path(
        parser.get("library", "out_folder", fallback=str(photos_root))
    ).expanduser()
    catalog_value = parser.get("library", "catalog", fallback="").strip()
    catalog = pathlib.Path(catalog_value).expanduser() if catalog_value else None

    server = ServerConfig(
        host=parser.get("server", "host", fallback="0.0.0.0"),
        port=parser.getint("server", "port", fallback=0),
    )

    thumbs = ThumbnailConfig(
        width=parser.getint("thumbnails", "width", fallback=512),
        height=parser.getint("thumbnails", "height", fallback=512),
        quality=parser.getint("thumbnails", "quality", fallback=82),
        concurrency=max(1, parser.getint("thumbnails", "concurrency", fallback=4)),
    )

    manifest = ManifestConfig(
        reuse_unchanged=_parse_bool(
            parser.get("manifest", "reuse_unchanged", fallback="false"), False
        ),
    )

    on_collision = parser.get("uploads", "on_collision", fallback="overwrite").strip().lower()
    if on_collision not in COLLISION_POLICIES:
        logger.warning(f"Unknown uploads.on_collision '{on_collision}', using 'overwrite'")
        on_collision = "overwrite"
    uploads = UploadConfig(on_collision=on_collision)

    token = os.environ.get(TOKEN_ENV_VAR) or parser.get("auth", "token", fallback="").strip()

    return SyncConfig(
        library=LibraryConfig(photos_root=photos_root, out_folder=out_folder, catalog=catalog),
        server=server,
        thumbnails=thumbs,
        manifest=manifest,
        uploads=uploads,
        auth=AuthConfig(token=token),
    )


_cached_config: Optional[SyncConfig] = None


def get_config() -> SyncConfig:
    """Return the cached config singleton. Loads from disk on first call."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reset_config_cache() -> None:
    """Clear the cached config (useful for tests)."""
    global _cached_config
    _cached_config = None


def write_default_config(
    config_path: pathlib.Path,
    photos_root: pathlib.Path,
    out_folder: pathlib.Path,
    catalog: Optional[pathlib.Path] = None,
) -> pathlib.Path:
    """Write a config.ini with default settings for the given folders."""
    parser = configparser.ConfigParser()
    parser["library"] = {
        "photos_root": str(photos_root.expanduser()),
        "out_folder": str(out_folder.expanduser()),
        "catalog": str(catalog.expanduser()) if catalog else "",
    }
    parser["server"] = {"host": "0.0.0.0", "port": "0"}
    parser["thumbnails"] = {
        "width": "512",
        "height": "512",
        "quality": "82",
        "concurrency": "4",
    }
    parser["manifest"] = {"reuse_unchanged": "false"}
    parser["uploads"] = {"on_collision": "overwrite"}
    parser["auth"] = {"token": ""}

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w") as handle:
        parser.write(handle)
    return config_path
