"""Read-only access to the foreign photo catalog (digiKam-style SQLite).

The catalog is probed rather than trusted: tables and columns are looked up
before use, a missing AlbumRoots table means every album lives under the
default photo root, and missing Albums columns read as NULL.
"""

from __future__ import annotations

import dataclasses
import sqlite3
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlmodel import create_engine

from .errors import NotFoundError
from .logging_config import get_logger

logger = get_logger(__name__)

ALBUM_ROOTS_TABLE = "AlbumRoots"
ALBUMS_TABLE = "Albums"
ALBUM_COLUMNS = ("id", "albumRoot", "relativePath", "caption", "modificationDate")


@dataclasses.dataclass(frozen=True)
class CatalogAlbum:
    id: Any
    album_root: Any
    relative_path: str
    caption: Optional[str]
    modified_at: Optional[str]


class AlbumRootMap:
    """Album root id -> absolute directory, with a default for unknown ids."""

    def __init__(self, roots: dict[Any, Path], default: Path):
        self._roots = roots
        self.default = default

    def lookup(self, root_id: Any) -> Optional[Path]:
        return self._roots.get(root_id)

    def prefix_for(self, root_id: Any) -> Path:
        found = self.lookup(root_id)
        return found if found is not None else self.default

    def __len__(self) -> int:
        return len(self._roots)


def _connect_read_only(db_path: Path) -> Engine:
    uri = db_path.resolve().as_uri() + "?mode=ro"
    return create_engine(
        "sqlite://",
        creator=lambda: sqlite3.connect(uri, uri=True, check_same_thread=False),
    )


class CatalogReader:
    """Open a catalog database read-only and expose its albums.

    Usage::

        with CatalogReader(db_path) as catalog:
            roots = catalog.album_roots(photos_root)
            for album in catalog.albums():
                ...
    """

    def __init__(self, db_path: Path):
        db_path = Path(db_path)
        if not db_path.is_file():
            raise NotFoundError(f"Database not found: {db_path}")
        self.db_path = db_path
        self.engine = _connect_read_only(db_path)
        self._columns: Optional[dict[str, frozenset[str]]] = None

    def close(self) -> None:
        self.engine.dispose()

    def __enter__(self) -> "CatalogReader":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def tables(self) -> dict[str, frozenset[str]]:
        """Return {table name: column names} for every table in the catalog."""
        if self._columns is None:
            inspector = inspect(self.engine)
            self._columns = {
                table: frozenset(col["name"] for col in inspector.get_columns(table))
                for table in inspector.get_table_names()
            }
        return self._columns

    def columns_of(self, table: str) -> Optional[frozenset[str]]:
        return self.tables().get(table)

    def _select(self, table: str, wanted: tuple[str, ...]) -> list[dict]:
        available = self.columns_of(table)
        if available is None:
            return []
        missing = [c for c in wanted if c not in available]
        if missing:
            logger.warning(f"Catalog table {table} lacks columns: {', '.join(missing)}")
        select_list = ", ".join(
            f'"{c}"' if c in available else f'NULL AS "{c}"' for c in wanted
        )
        with self.engine.connect() as conn:
            result = conn.exec_driver_sql(f'SELECT {select_list} FROM "{table}"')
            return [dict(row) for row in result.mappings().all()]

    def album_roots(self, default_root: Path) -> AlbumRootMap:
        """Map album root ids to absolute prefixes, falling back to default_root."""
        roots: dict[Any, Path] = {}
        if self.columns_of(ALBUM_ROOTS_TABLE) is None:
            logger.info(f"No {ALBUM_ROOTS_TABLE} table, albums resolve under {default_root}")
        for row in self._select(ALBUM_ROOTS_TABLE, ("id", "specificPath")):
            specific = row.get("specificPath")
            if specific:
                roots[row["id"]] = Path(specific)
        return AlbumRootMap(roots, Path(default_root))

    def albums(self) -> list[CatalogAlbum]:
        if self.columns_of(ALBUMS_TABLE) is None:
            logger.warning(f"Catalog has no {ALBUMS_TABLE} table")
            return []
        rows = self._select(ALBUMS_TABLE, ALBUM_COLUMNS)
        return [
            CatalogAlbum(
                id=row["id"],
                album_root=row["albumRoot"],
                relative_path=row["relativePath"] or "",
                caption=row["caption"],
                modified_at=str(row["modificationDate"]) if row["modificationDate"] is not None else None,
            )
            for row in rows
        ]
