"""Tests for read-only catalog access."""

import sqlite3
from pathlib import Path

import pytest

from albumsync.catalog import CatalogReader
from albumsync.errors import NotFoundError


def _create_catalog(path: Path, with_roots: bool = True, caption_column: bool = True) -> None:
    conn = sqlite3.connect(path)
    try:
        caption = ", caption TEXT" if caption_column else ""
        conn.execute(
            "CREATE TABLE Albums (id INTEGER PRIMARY KEY, albumRoot INTEGER, "
            f"relativePath TEXT{caption}, modificationDate TEXT)"
        )
        if with_roots:
            conn.execute("CREATE TABLE AlbumRoots (id INTEGER PRIMARY KEY, label TEXT, specificPath TEXT)")
            conn.execute("INSERT INTO AlbumRoots VALUES (1, 'Main', '/mnt/photos')")
            conn.execute("INSERT INTO AlbumRoots VALUES (2, 'Empty', '')")
        if caption_column:
            conn.execute("INSERT INTO Albums VALUES (10, 1, '/Trip', 'Summer Trip', '2024-07-01T10:00:00')")
        else:
            conn.execute("INSERT INTO Albums VALUES (10, 1, '/Trip', '2024-07-01T10:00:00')")
        conn.commit()
    finally:
        conn.close()


def test_missing_database_raises(tmp_path):
    with pytest.raises(NotFoundError):
        CatalogReader(tmp_path / "missing.db")


def test_reads_albums_and_roots(tmp_path):
    """Album rows and root aliases are read; unknown or empty roots use the default."""
    db = tmp_path / "digikam4.db"
    _create_catalog(db)

    with CatalogReader(db) as catalog:
        assert "Albums" in catalog.tables()
        roots = catalog.album_roots(tmp_path / "default")
        albums = catalog.albums()

    assert roots.lookup(1) == Path("/mnt/photos")
    assert roots.lookup(2) is None
    assert roots.prefix_for(2) == tmp_path / "default"
    assert roots.prefix_for(99) == tmp_path / "default"

    assert len(albums) == 1
    album = albums[0]
    assert album.id == 10
    assert album.relative_path == "/Trip"
    assert album.caption == "Summer Trip"
    assert album.modified_at == "2024-07-01T10:00:00"


def test_missing_roots_table_falls_back_to_default(tmp_path):
    db = tmp_path / "catalog.db"
    _create_catalog(db, with_roots=False)

    with CatalogReader(db) as catalog:
        roots = catalog.album_roots(tmp_path)

    assert len(roots) == 0
    assert roots.prefix_for(1) == tmp_path


def test_missing_column_reads_as_none(tmp_path):
    db = tmp_path / "catalog.db"
    _create_catalog(db, caption_column=False)

    with CatalogReader(db) as catalog:
        albums = catalog.albums()

    assert albums[0].caption is None
    assert albums[0].relative_path == "/Trip"


def test_missing_albums_table_yields_no_albums(tmp_path):
    db = tmp_path / "empty.db"
    sqlite3.connect(db).close()

    with CatalogReader(db) as catalog:
        assert catalog.albums() == []


def test_catalog_is_not_modified(tmp_path):
    """Reading never writes to the catalog file."""
    db = tmp_path / "catalog.db"
    _create_catalog(db)
    before = db.read_bytes()

    with CatalogReader(db) as catalog:
        catalog.album_roots(tmp_path)
        catalog.albums()

    assert db.read_bytes() == before
