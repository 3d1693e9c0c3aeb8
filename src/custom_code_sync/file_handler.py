"""File handler module: encoding-aware read/write and tree copying.

Provides the file I/O used by the tracker, the manifest writer and the
pull workflow.  All functions are synchronous; the session runs them off
the event loop via ``run_sync()``.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from charset_normalizer import from_bytes

logger = logging.getLogger(__name__)

# =============================================================================
# File Read/Write
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Reads raw bytes first, then uses charset-normalizer to detect encoding.
    Defaults to UTF-8 for empty files or when detection fails.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    try:
        return (raw.decode("utf-8"), "utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        # Detection failed, fall back to utf-8
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        content = str(result)
    return (content, encoding)


def read_text(path: Path) -> str | None:
    """Read a source file, returning ``None`` if it cannot be read.

    Directories, missing files and files removed between a change event
    and the read all yield ``None``.
    """
    try:
        if not path.is_file():
            return None
        content, _ = read_file_with_encoding(path)
        return content
    except OSError as exc:
        logger.debug("Cannot read %s: %s", path, exc)
        return None


def write_file(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Write content to a file, creating parent directories as needed.

    Args:
        path: Path to the output file.
        content: String content to write.
        encoding: Encoding to use (default: utf-8).

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    encoded = content.encode(encoding)
    path.write_bytes(encoded)
    return len(encoded)


# =============================================================================
# Tree operations
# =============================================================================


def copy_tree(src: Path, dest: Path, skip: set[str] | None = None) -> int:
    """Copy the contents of *src* over *dest*, overwriting files.

    Args:
        src: Source directory.
        dest: Destination directory (created if needed).
        skip: Top-level entry names under *src* to leave out.

    Returns:
        Number of files copied.
    """
    skip = skip or set()
    dest.mkdir(parents=True, exist_ok=True)
    copied = 0
    for entry in sorted(src.iterdir()):
        if entry.name in skip:
            continue
        target = dest / entry.name
        if entry.is_symlink():
            if target.exists() or target.is_symlink():
                target.unlink()
            target.symlink_to(entry.readlink())
            copied += 1
        elif entry.is_dir():
            copied += copy_tree(entry, target)
        elif entry.is_file():
            shutil.copy2(entry, target)
            copied += 1
    return copied


def remove_tree(path: Path) -> None:
    """Remove a directory tree.  No-op if it does not exist."""
    shutil.rmtree(path, ignore_errors=True)
