"""Generated export listings (``index.dart``) for actions and widgets.

Every custom action and widget file must be re-exported from its
directory's ``index.dart`` for the generated project to compile.  A
``ManifestIndex`` holds the listing as ``filename -> [identifier, ...]``
and renders it as::

    export 'my_action.dart' show myAction;

The tracker patches the index incrementally on each add/update/delete and
calls ``regenerate()`` after loading or refreshing, which rebuilds it from
the records.  Both paths derive identifiers with ``identifiers_for()`` so
they always agree.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from custom_code_sync.file_handler import write_file

from .classifier import CATEGORY_DIRS, INDEX_FILENAME
from .models import ArtifactRecord, CodeType

logger = logging.getLogger(__name__)

_EXPORT_RE = re.compile(
    r"""^\s*export\s+['"](?P<file>[^'"]+)['"]\s+show\s+(?P<names>[^;]+);""",
    re.MULTILINE,
)


def identifiers_for(record: ArtifactRecord) -> list[str]:
    """Identifiers a live record contributes to its index."""
    if record.is_deleted or not record.new_identifier_name:
        return []
    return [record.new_identifier_name]


class ManifestIndex:
    """Export listing for one artifact category.

    Args:
        code_type: ``CodeType.ACTION`` or ``CodeType.WIDGET``.
        entries: Initial ``filename -> identifiers`` mapping.
    """

    def __init__(
        self,
        code_type: CodeType,
        entries: dict[str, list[str]] | None = None,
    ) -> None:
        if code_type not in CATEGORY_DIRS:
            raise ValueError(f"No index for file type {code_type.value}")
        self.code_type = code_type
        self._entries: dict[str, list[str]] = {
            k: list(v) for k, v in (entries or {}).items()
        }

    @property
    def entries(self) -> dict[str, list[str]]:
        """Copy of the listing, ordered by filename."""
        return {k: list(self._entries[k]) for k in sorted(self._entries)}

    def __contains__(self, filename: str) -> bool:
        return filename in self._entries

    def get(self, filename: str) -> list[str] | None:
        names = self._entries.get(filename)
        return list(names) if names is not None else None

    # ------------------------------------------------------------------
    # Incremental updates
    # ------------------------------------------------------------------

    def patch(self, filename: str, identifiers: list[str]) -> None:
        """Insert or replace the entry for *filename*."""
        self._entries[filename] = list(identifiers)

    def remove(self, filename: str) -> None:
        """Drop the entry for *filename*.  No-op if absent."""
        self._entries.pop(filename, None)

    # ------------------------------------------------------------------
    # Full rebuild
    # ------------------------------------------------------------------

    def regenerate(
        self, file_map: dict[str, ArtifactRecord]
    ) -> dict[str, list[str]]:
        """Rebuild the listing from the live records of this category."""
        self._entries = {
            key: identifiers_for(record)
            for key, record in sorted(file_map.items())
            if record.type == self.code_type and not record.is_deleted
        }
        return self.entries

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self) -> str:
        """Render the listing as ``index.dart`` source."""
        lines = [
            f"export '{filename}' show {', '.join(names)};"
            for filename, names in self.entries.items()
            if names
        ]
        return "\n".join(lines) + "\n" if lines else ""

    def index_path(self, root: Path) -> Path:
        return root / CATEGORY_DIRS[self.code_type] / INDEX_FILENAME

    def write(self, root: Path) -> bool:
        """Write the rendered listing under *root* if it changed.

        Returns:
            ``True`` if the file was written.
        """
        path = self.index_path(root)
        rendered = self.render()
        try:
            if path.read_text(encoding="utf-8") == rendered:
                return False
        except OSError:
            pass
        try:
            write_file(path, rendered)
        except OSError as exc:
            logger.warning("Could not write %s: %s", path, exc)
            return False
        logger.debug("Wrote %s (%d entries)", path, len(self._entries))
        return True


def parse_index_file(text: str) -> dict[str, list[str]]:
    """Parse ``index.dart`` source into ``filename -> identifiers``."""
    result: dict[str, list[str]] = {}
    for match in _EXPORT_RE.finditer(text):
        names = [n.strip() for n in match.group("names").split(",")]
        result[match.group("file")] = [n for n in names if n]
    return result
