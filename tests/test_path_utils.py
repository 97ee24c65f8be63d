"""Tests for path canonicalization and sandbox checks."""

from pathlib import Path

import pytest

from albumsync.errors import ValidationError
from albumsync.path_utils import (
    is_inside,
    resolve_inside,
    strip_parent_escapes,
    to_relative,
    validate_name,
)


def test_to_relative_uses_forward_slashes(tmp_path):
    """Relative paths are POSIX style whatever the host separator."""
    nested = tmp_path / "Trip" / "Day 1" / "a.jpg"
    assert to_relative(nested, tmp_path) == "Trip/Day 1/a.jpg"


def test_strip_parent_escapes_drops_leading_parents():
    assert strip_parent_escapes("../../Trip/a.jpg") == "Trip/a.jpg"
    assert strip_parent_escapes("Trip/../../etc/passwd") == "etc/passwd"
    assert strip_parent_escapes("./Trip//a.jpg") == "Trip/a.jpg"
    assert strip_parent_escapes("/abs/a.jpg") == "abs/a.jpg"
    assert strip_parent_escapes("..") == ""


def test_is_inside(tmp_path):
    root = tmp_path / "photos"
    root.mkdir()
    assert is_inside(root, root)
    assert is_inside(root, root / "Trip" / "a.jpg")
    assert not is_inside(root, tmp_path / "other")
    assert not is_inside(root, tmp_path / "photos-evil")


def test_resolve_inside_rejects_escapes(tmp_path):
    """Parent escapes and absolute paths outside the root are rejected."""
    root = tmp_path / "photos"
    root.mkdir()
    assert resolve_inside(root, "Trip/a.jpg") == root / "Trip/a.jpg"
    for bad in ("../secret", "Trip/../../secret", "", "/etc/passwd"):
        with pytest.raises(ValidationError):
            resolve_inside(root, bad)


def test_validate_name():
    assert validate_name("abc-64x64.jpg") == "abc-64x64.jpg"
    for bad in ("", "..", "..secret", "a/b", "a\\b", "a\x00b"):
        with pytest.raises(ValidationError):
            validate_name(bad)
