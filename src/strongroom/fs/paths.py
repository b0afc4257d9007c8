"""Path utilities and the PathResolver that confines paths to a storage root."""

from __future__ import annotations

import os
import posixpath
from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import NotFoundError, PathInvalidError

if TYPE_CHECKING:
    from collections.abc import Iterable

MAX_PATH_LENGTH = 4096
MAX_NAME_LENGTH = 255


# =============================================================================
# Relative Path Utilities
# =============================================================================


def _check_characters(path: str) -> None:
    if "\x00" in path:
        raise PathInvalidError("Path contains null bytes")

    for ch in path:
        code = ord(ch)
        if 0x01 <= code <= 0x1F:
            raise PathInvalidError(f"Path contains control character: 0x{code:02x}")

    if "\\" in path:
        raise PathInvalidError(f"Path contains a backslash: {path!r}")


def normalize_relative(path: str | None) -> str:
    """Normalize a caller-supplied path into a canonical relative path.

    - Strips leading and trailing slashes
    - Drops ``.`` and empty segments
    - Rejects ``..`` segments, backslashes and control characters

    Examples:
        normalize_relative("/docs//a.txt") -> "docs/a.txt"
        normalize_relative("./docs/") -> "docs"
        normalize_relative("") -> ""
        normalize_relative("docs/../x") -> PathInvalidError
    """
    if not path:
        return ""

    _check_characters(path)

    if len(path) > MAX_PATH_LENGTH:
        raise PathInvalidError(f"Path too long (max {MAX_PATH_LENGTH} characters)")

    parts = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            raise PathInvalidError(f"Parent references are not allowed: {path!r}")
        if len(segment) > MAX_NAME_LENGTH:
            raise PathInvalidError(f"Filename too long (max {MAX_NAME_LENGTH} characters)")
        parts.append(segment)

    return "/".join(parts)


def validate_name(name: str) -> str:
    """Validate a flat filename used as a rename or creation target."""
    if not name or not name.strip():
        raise PathInvalidError("Name must not be empty")
    if "/" in name or "\\" in name:
        raise PathInvalidError(f"Name must not contain path separators: {name!r}")
    if name in (".", ".."):
        raise PathInvalidError(f"Invalid name: {name!r}")
    _check_characters(name)
    if len(name) > MAX_NAME_LENGTH:
        raise PathInvalidError(f"Filename too long (max {MAX_NAME_LENGTH} characters)")
    return name


def split_path(path: str) -> tuple[str, str]:
    """Split a relative path into (parent, name).

    Examples:
        split_path("docs/a.txt") -> ("docs", "a.txt")
        split_path("a.txt") -> ("", "a.txt")
        split_path("") -> ("", "")
    """
    path = normalize_relative(path)
    return posixpath.split(path)


def join_relative(*parts: str) -> str:
    """Join relative path fragments into a normalized relative path."""
    return normalize_relative("/".join(p for p in parts if p))


def is_within(key: str, prefix: str) -> bool:
    """Return whether *key* equals *prefix* or lies under it at a segment boundary."""
    if not prefix:
        return True
    return key == prefix or key.startswith(prefix + "/")


def rebase(key: str, old_prefix: str, new_prefix: str) -> str:
    """Move *key* from under *old_prefix* to under *new_prefix*."""
    if key == old_prefix:
        return new_prefix
    return new_prefix + key[len(old_prefix):]


def directory_size(path: Path, exclude: Iterable[Path] = ()) -> int:
    """Total size in bytes of every file below *path* (entries that vanish are skipped)."""
    excluded = {os.fspath(p) for p in exclude}
    total = 0
    for dirpath, dirnames, filenames in os.walk(path):
        if excluded:
            dirnames[:] = [d for d in dirnames if os.path.join(dirpath, d) not in excluded]
        for filename in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, filename)).st_size
            except OSError:
                continue
    return total


def item_size(path: Path) -> int:
    """Size of a file, or the recursive size of a directory."""
    if path.is_dir():
        return directory_size(path)
    return path.stat().st_size


def disambiguate(parent: Path, name: str, label: str = "restored") -> Path:
    """Return a free path in *parent* for *name*, suffixing ``" (label N)"`` as needed.

    Examples (when the plain name is taken):
        "report.pdf" -> "report (restored 1).pdf"
        "photos" -> "photos (restored 1)"
    """
    candidate = parent / name
    stem, ext = posixpath.splitext(name)
    counter = 1
    while candidate.exists() or candidate.is_symlink():
        candidate = parent / f"{stem} ({label} {counter}){ext}"
        counter += 1
    return candidate


# =============================================================================
# PathResolver
# =============================================================================


class PathResolver:
    """The sole gateway from caller-supplied relative paths to absolute paths.

    Every resolved path is checked, after symlink resolution, to lie
    inside ``root`` and outside any ``reserved`` directory (the data
    directory, when it sits under the root). The resolver holds no
    mutable state and may be shared by any number of concurrent callers.
    """

    def __init__(self, root: Path | str, *, reserved: Iterable[Path | str] = ()) -> None:
        self.root = Path(root).resolve()
        self.reserved = tuple(Path(r).resolve() for r in reserved)

        if not self.root.exists():
            raise FileNotFoundError(f"Storage root does not exist: {self.root}")
        if not self.root.is_dir():
            raise NotADirectoryError(f"Storage root is not a directory: {self.root}")

    def __repr__(self) -> str:
        return f"PathResolver({str(self.root)!r})"

    def normalize(self, relative: str | None) -> str:
        """Canonical relative path used as the metadata key."""
        return normalize_relative(relative)

    def resolve(self, relative: str | None) -> Path:
        """Resolve *relative* to an absolute path confined to the root."""
        rel = normalize_relative(relative)
        if not rel:
            return self.root

        resolved = (self.root / rel).resolve()

        try:
            resolved.relative_to(self.root)
        except ValueError:
            raise PathInvalidError(
                f"Path traversal detected: {relative!r} resolves outside the storage root"
            ) from None

        for reserved in self.reserved:
            if resolved == reserved or reserved in resolved.parents:
                raise PathInvalidError(f"Path is reserved for internal data: {relative!r}")

        return resolved

    def resolve_existing(self, relative: str | None) -> Path:
        """Like :meth:`resolve`, but raise ``NotFoundError`` if nothing is there."""
        resolved = self.resolve(relative)
        if not resolved.exists():
            raise NotFoundError(f"Not found: {normalize_relative(relative) or '/'}")
        return resolved

    def to_relative(self, absolute: Path | str) -> str:
        """Convert an absolute path under the root back to a relative path."""
        try:
            rel = Path(absolute).resolve().relative_to(self.root)
        except ValueError:
            raise PathInvalidError(f"Path is outside the storage root: {absolute}") from None
        rel_str = rel.as_posix()
        return "" if rel_str == "." else rel_str

    def scoped(self, relative: str) -> PathResolver:
        """A resolver confined to the subtree at *relative* (which must be a directory)."""
        subtree = self.resolve_existing(relative)
        if not subtree.is_dir():
            raise PathInvalidError(f"Not a directory: {normalize_relative(relative)}")
        return PathResolver(subtree, reserved=self.reserved)
