"""Content checksums used for change detection.

Checksums are the SHA-256 hex digest of the raw file bytes.  They are
compared against the values persisted in ``file_map.json``, so the byte
stream is hashed as-is with no newline or encoding normalisation.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def content_checksum(content: str | bytes) -> str:
    """Return the SHA-256 hex digest of *content*.

    Text is encoded as UTF-8 before hashing.
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def file_checksum(path: Path) -> str | None:
    """Return the checksum of the file at *path*.

    Returns ``None`` if the file cannot be read (missing, a directory, or
    removed between the change event and the read).
    """
    try:
        return content_checksum(path.read_bytes())
    except OSError as exc:
        logger.debug("Cannot checksum %s: %s", path, exc)
        return None
