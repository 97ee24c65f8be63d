"""Path utilities for converting and sandboxing library paths.

All paths written to albums.json and manifest.json are relative to the photo
root and use forward slashes regardless of host platform. The sync server
re-resolves them against the photo root, so the same file must always map
to the same string.
"""

from __future__ import annotations

import os
import posixpath
import re
from pathlib import Path

from .errors import ValidationError

_LEADING_PARENT = re.compile(r"^(\.\.(/|$))+")


def to_relative(absolute_path: Path, root: Path) -> str:
    """Convert an absolute path to a POSIX-style path relative to root.

    Example:
        >>> to_relative(Path("/photos/Trip/a.jpg"), Path("/photos"))
        "Trip/a.jpg"
    """
    rel = os.path.relpath(absolute_path, root)
    return rel.replace(os.sep, "/")


def strip_parent_escapes(relative_path: str) -> str:
    """Normalize a relative path and drop any leading ``../`` segments.

    Example:
        >>> strip_parent_escapes("../../Trip/./a.jpg")
        "Trip/a.jpg"
    """
    normalized = posixpath.normpath(relative_path.replace("\\", "/"))
    normalized = _LEADING_PARENT.sub("", normalized)
    if normalized in ("", "."):
        return ""
    return normalized.lstrip("/")


def has_parent_escape(value: str) -> bool:
    return ".." in value


def is_inside(parent: Path, child: Path) -> bool:
    """Return True if child resolves to parent or somewhere beneath it."""
    p = parent.resolve()
    c = child.resolve()
    return c == p or p in c.parents


def resolve_inside(root: Path, relative_path: str) -> Path:
    """Resolve a client-supplied relative path against root.

    Raises ValidationError for parent escapes or anything landing outside
    root. Does not touch the filesystem beyond path resolution.
    """
    if not relative_path or has_parent_escape(relative_path):
        raise ValidationError("invalid path")
    candidate = root / relative_path
    if not is_inside(root, candidate):
        raise ValidationError("invalid path")
    return candidate


def validate_name(name: str, what: str = "name") -> str:
    """Validate a single path segment (cache file name, metadata id)."""
    if not name or has_parent_escape(name) or "/" in name or "\\" in name or "\x00" in name:
        raise ValidationError(f"invalid {what}")
    return name
