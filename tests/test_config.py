"""Tests for config.ini loading."""

from pathlib import Path

import pytest

from albumsync import config as config_module
from albumsync.config import get_config, load_config, reset_config_cache, write_default_config


def test_default_config_round_trip(tmp_path, monkeypatch):
    monkeypatch.delenv("SYNC_TOKEN", raising=False)
    path = write_default_config(tmp_path / "config.ini", tmp_path / "photos", tmp_path / "out", tmp_path / "db.sqlite")

    config = load_config(path)

    assert config.photos_root == tmp_path / "photos"
    assert config.out_folder == tmp_path / "out"
    assert config.library.catalog == tmp_path / "db.sqlite"
    assert config.server.host == "0.0.0.0"
    assert config.server.port == 0
    assert (config.thumbnails.width, config.thumbnails.height, config.thumbnails.quality) == (512, 512, 82)
    assert config.manifest.reuse_unchanged is False
    assert config.uploads.on_collision == "overwrite"
    assert not config.auth.enabled


def test_token_from_environment_wins(tmp_path, monkeypatch):
    path = tmp_path / "config.ini"
    path.write_text(
        "[library]\nphotos_root = /photos\n[auth]\ntoken = from-file\n",
        encoding="utf-8",
    )

    monkeypatch.delenv("SYNC_TOKEN", raising=False)
    assert load_config(path).auth.token == "from-file"

    monkeypatch.setenv("SYNC_TOKEN", "from-env")
    config = load_config(path)
    assert config.auth.token == "from-env"
    assert config.auth.enabled
    assert config.out_folder == Path("/photos")
    assert config.library.catalog is None


def test_unknown_collision_policy_falls_back(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text("[library]\nphotos_root = /p\n[uploads]\non_collision = explode\n", encoding="utf-8")
    assert load_config(path).uploads.on_collision == "overwrite"


def test_missing_config(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.ini")


def test_get_config_caches_until_reset(tmp_path, monkeypatch):
    monkeypatch.delenv("SYNC_TOKEN", raising=False)
    path = write_default_config(tmp_path / "config.ini", tmp_path / "photos", tmp_path / "out")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", path)
    reset_config_cache()

    first = get_config()
    write_default_config(path, tmp_path / "elsewhere", tmp_path / "out")

    assert get_config() is first
    reset_config_cache()
    assert get_config().photos_root == tmp_path / "elsewhere"
    reset_config_cache()
