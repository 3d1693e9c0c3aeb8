"""Snapshot persistence for the change tracker.

Manages the JSON files that let a session survive restarts:

* ``<state_dir>/file_map.json`` -- ``filename -> ArtifactRecord`` in the
  wire format shared with other tools (undefined checksums omitted).
* ``<state_dir>/sync_state.json`` -- manifest indexes and the baseline and
  current text of the shared functions file.
* ``lib/flutter_flow/function_changes.json`` -- the pending
  ``FunctionChange``, read back so explicit renames survive restarts.

Key design choices:

* **Atomic writes** -- every file is written to a temp file in the same
  directory, then moved into place with ``os.replace()``.
* **Bounded retries** -- reads retry with exponential backoff.  A snapshot
  that still fails to *parse* is reported as missing so the caller can
  rebuild from the filesystem; a snapshot that still cannot be *read*
  raises ``SnapshotReadError``.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, Field, ValidationError

from custom_code_sync.errors import SnapshotReadError

from .classifier import FUNCTION_CHANGES_FILE
from .models import ArtifactRecord, FunctionChange

logger = logging.getLogger(__name__)

FILE_MAP_NAME = "file_map.json"
SYNC_STATE_NAME = "sync_state.json"
SYNC_STATE_VERSION = 1


class PersistedSnapshot(BaseModel):
    """Everything needed to restore a tracker."""

    file_map: dict[str, ArtifactRecord] = Field(default_factory=dict)
    action_index: dict[str, list[str]] | None = None
    widget_index: dict[str, list[str]] | None = None
    functions_code_before: str | None = None
    functions_code: str | None = None


class _CorruptSnapshot(Exception):
    """Raised internally when a snapshot file exists but cannot be parsed."""


class SnapshotStore:
    """Load and save tracker snapshots for one project.

    Args:
        root: Project root directory.
        state_dir: Directory (relative to *root*) holding state files.
        max_attempts: Read attempts before giving up.
        base_delay: Delay in seconds before the first retry; doubles on
            each subsequent retry.
        sleep: Sleep function, replaceable in tests.
    """

    def __init__(
        self,
        root: Path,
        state_dir: str = ".vscode",
        max_attempts: int = 3,
        base_delay: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.root = root
        self.state_dir = root / state_dir
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self._sleep = sleep

    @property
    def file_map_path(self) -> Path:
        return self.state_dir / FILE_MAP_NAME

    @property
    def sync_state_path(self) -> Path:
        return self.state_dir / SYNC_STATE_NAME

    @property
    def function_changes_path(self) -> Path:
        return self.root / FUNCTION_CHANGES_FILE

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def read_snapshot(self) -> PersistedSnapshot | None:
        """Read the persisted snapshot.

        Returns:
            The snapshot, or ``None`` if no file map exists or it is
            corrupt after all retries.

        Raises:
            SnapshotReadError: If the file map exists but could not be
                read after ``max_attempts`` attempts.
        """
        if not self.file_map_path.exists():
            logger.info("No snapshot at %s", self.file_map_path)
            return None

        last_error: Exception | None = None
        for attempt in range(self.max_attempts):
            try:
                return self._read_snapshot_once()
            except FileNotFoundError:
                logger.info("Snapshot %s disappeared", self.file_map_path)
                return None
            except (_CorruptSnapshot, OSError) as exc:
                last_error = exc
                if attempt == self.max_attempts - 1:
                    break
                delay = self.base_delay * (2**attempt)
                logger.warning(
                    "Error reading snapshot (attempt %d/%d). "
                    "Retrying in %.2fs: %s",
                    attempt + 1,
                    self.max_attempts,
                    delay,
                    exc,
                )
                self._sleep(delay)

        if isinstance(last_error, _CorruptSnapshot):
            logger.warning(
                "Snapshot %s is corrupt, ignoring it: %s",
                self.file_map_path,
                last_error,
            )
            return None

        logger.error(
            "Failed to read snapshot after %d attempts: %s",
            self.max_attempts,
            last_error,
        )
        raise SnapshotReadError(
            str(self.file_map_path), self.max_attempts, last_error
        )

    def _read_snapshot_once(self) -> PersistedSnapshot:
        raw_map = self._read_json(self.file_map_path)
        if not isinstance(raw_map, dict):
            raise _CorruptSnapshot("file map root is not an object")
        try:
            file_map = {
                key: ArtifactRecord.model_validate(value)
                for key, value in raw_map.items()
            }
        except ValidationError as exc:
            raise _CorruptSnapshot(str(exc)) from exc

        extra: dict[str, Any] = {}
        if self.sync_state_path.exists():
            try:
                data = self._read_json(self.sync_state_path)
            except _CorruptSnapshot as exc:
                # The file map alone is enough to restore records.
                logger.warning(
                    "Ignoring corrupt %s: %s", self.sync_state_path, exc
                )
                data = {}
            if isinstance(data, dict):
                extra = {
                    k: data.get(k)
                    for k in (
                        "action_index",
                        "widget_index",
                        "functions_code_before",
                        "functions_code",
                    )
                }

        try:
            return PersistedSnapshot(file_map=file_map, **extra)
        except ValidationError as exc:
            logger.warning("Ignoring malformed sync state: %s", exc)
            return PersistedSnapshot(file_map=file_map)

    @staticmethod
    def _read_json(path: Path) -> Any:
        with open(path, "rb") as fh:
            raw = fh.read()
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise _CorruptSnapshot(f"{path.name}: {exc}") from exc

    def save(self, snapshot: PersistedSnapshot) -> None:
        """Persist *snapshot* atomically."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._write_json_atomic(
            self.sync_state_path,
            {
                "version": SYNC_STATE_VERSION,
                "saved_at": datetime.now(timezone.utc).isoformat(),
                "action_index": snapshot.action_index or {},
                "widget_index": snapshot.widget_index or {},
                "functions_code_before": snapshot.functions_code_before or "",
                "functions_code": snapshot.functions_code or "",
            },
        )
        self._write_json_atomic(
            self.file_map_path,
            {
                key: record.to_json_dict()
                for key, record in snapshot.file_map.items()
            },
        )

    # ------------------------------------------------------------------
    # Function changes
    # ------------------------------------------------------------------

    def read_function_changes(self) -> FunctionChange:
        """Read the pending function changes.

        Returns an empty ``FunctionChange`` when the file is missing or
        unreadable.
        """
        path = self.function_changes_path
        if not path.exists():
            return FunctionChange()
        try:
            with open(path, encoding="utf-8") as fh:
                return FunctionChange.from_json_dict(json.load(fh))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.error("Error reading %s: %s", path, exc)
            return FunctionChange()

    def write_function_changes(self, change: FunctionChange) -> None:
        path = self.function_changes_path
        path.parent.mkdir(parents=True, exist_ok=True)
        self._write_json_atomic(path, change.to_json_dict())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _write_json_atomic(target: Path, data: Any) -> None:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(target.parent), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp_path, target)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
