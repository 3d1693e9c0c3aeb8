"""Change tracker for the custom code of one project checkout.

The ``ChangeTracker`` owns the file map (``filename -> ArtifactRecord``),
the two manifest indexes and the baseline/current text of the shared
functions file.  It turns filesystem edits into record updates, builds
the payload for a push, and advances the baseline once a push has been
accepted.

Key design choices:

* **Baseline vs. current** -- every record carries the checksum and
  identifier at the last sync next to the live ones.  ``commit_sync()``
  is the only operation that moves the baseline.
* **Incremental indexes** -- adds, updates and deletes patch the affected
  ``ManifestIndex`` entry and rewrite ``index.dart`` if it changed.
  ``regenerate_indexes()`` rebuilds both from the records and always
  agrees with the patched result.
* **Disk is the source of truth** -- ``apply()`` re-reads the file named
  by an event, so an out-of-order or stale event settles on what is
  actually on disk.  ``load()`` reconciles a persisted snapshot with the
  filesystem before handing the tracker out.
* **Payloads are side-effect free** -- ``build_sync_payload()`` reads the
  tracked files but never mutates tracker state.

All methods are synchronous.  ``SyncSession`` serialises calls and runs
them off the event loop.
"""

from __future__ import annotations

import base64
import io
import logging
import uuid
import zipfile
from pathlib import Path

import yaml

from custom_code_sync.errors import DeclarationParseError
from custom_code_sync.file_handler import read_text

from .checksum import file_checksum
from .classifier import (
    CATEGORY_DIRS,
    DEPENDENCIES_FILE,
    FUNCTIONS_FILE,
    INDEX_FILENAME,
    path_to_code_type,
    record_key,
    relative_path,
    to_project_relative,
)
from .declarations import DartDeclarationExtractor, DeclarationExtractor
from .functions import (
    SIMILARITY_THRESHOLD,
    analyze_function_changes,
    merge_explicit_renames,
    record_explicit_rename,
    safe_extract,
)
from .manifest import ManifestIndex, identifiers_for
from .models import (
    ArtifactRecord,
    CodeType,
    EditEvent,
    EditType,
    FunctionChange,
    SyncPayload,
)
from .state import PersistedSnapshot, SnapshotStore

logger = logging.getLogger(__name__)


class ChangeTracker:
    """Track local custom code changes against the last sync baseline.

    Args:
        root: Project root directory.
        extractor: Declaration extractor; defaults to
            ``DartDeclarationExtractor``.
        store: Snapshot store used by ``save()``; defaults to one under
            ``<root>/.vscode``.
        file_map: Initial records.
        action_index: Initial action listing.
        widget_index: Initial widget listing.
        functions_code_before: Functions file text at the baseline.
        functions_code: Current functions file text.
        function_change: Pending function changes, carrying explicit
            renames from earlier sessions.
        similarity_threshold: Minimum body similarity for an inferred
            function rename.
    """

    def __init__(
        self,
        root: Path,
        *,
        extractor: DeclarationExtractor | None = None,
        store: SnapshotStore | None = None,
        file_map: dict[str, ArtifactRecord] | None = None,
        action_index: dict[str, list[str]] | None = None,
        widget_index: dict[str, list[str]] | None = None,
        functions_code_before: str = "",
        functions_code: str = "",
        function_change: FunctionChange | None = None,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
    ) -> None:
        self.root = Path(root)
        self.extractor = extractor or DartDeclarationExtractor()
        self.store = store or SnapshotStore(self.root)
        self.similarity_threshold = similarity_threshold

        self._file_map: dict[str, ArtifactRecord] = dict(file_map or {})
        self._indexes: dict[CodeType, ManifestIndex] = {
            CodeType.ACTION: ManifestIndex(CodeType.ACTION, action_index),
            CodeType.WIDGET: ManifestIndex(CodeType.WIDGET, widget_index),
        }
        self._functions_code_before = functions_code_before
        self._functions_code = functions_code
        self._function_change = function_change or FunctionChange()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_filesystem(
        cls,
        root: Path,
        *,
        extractor: DeclarationExtractor | None = None,
        store: SnapshotStore | None = None,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
    ) -> ChangeTracker:
        """Build a tracker whose baseline is the current filesystem."""
        tracker = cls(
            root,
            extractor=extractor,
            store=store,
            similarity_threshold=similarity_threshold,
        )
        tracker.refresh()
        return tracker

    @classmethod
    def load(
        cls,
        root: Path,
        *,
        extractor: DeclarationExtractor | None = None,
        store: SnapshotStore | None = None,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
    ) -> ChangeTracker:
        """Restore a tracker from its persisted snapshot.

        Without a usable snapshot the filesystem becomes the baseline and
        is saved immediately.  Otherwise the snapshot is reconciled with
        what is on disk so edits made while no session was running show
        up as changes.

        Raises:
            SnapshotReadError: If the snapshot exists but cannot be read.
        """
        root = Path(root)
        store = store or SnapshotStore(root)
        snapshot = store.read_snapshot()

        if snapshot is None:
            logger.info("Building baseline from filesystem at %s", root)
            tracker = cls.from_filesystem(
                root,
                extractor=extractor,
                store=store,
                similarity_threshold=similarity_threshold,
            )
            tracker.save()
            return tracker

        functions_code_before = snapshot.functions_code_before
        functions_code = snapshot.functions_code
        if functions_code_before is None or functions_code is None:
            # Snapshot written without sync state; treat disk as unchanged.
            disk_text = read_text(root / FUNCTIONS_FILE) or ""
            functions_code_before = (
                disk_text
                if functions_code_before is None
                else functions_code_before
            )
            functions_code = (
                disk_text if functions_code is None else functions_code
            )

        tracker = cls(
            root,
            extractor=extractor,
            store=store,
            file_map=snapshot.file_map,
            action_index=snapshot.action_index,
            widget_index=snapshot.widget_index,
            functions_code_before=functions_code_before,
            functions_code=functions_code,
            function_change=store.read_function_changes(),
            similarity_threshold=similarity_threshold,
        )
        changed = tracker.reconcile_with_disk()
        tracker.regenerate_indexes()
        if changed:
            logger.info(
                "Reconciled %d file(s) changed outside a session",
                len(changed),
            )
            tracker.save()
        return tracker

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def file_map(self) -> dict[str, ArtifactRecord]:
        return dict(self._file_map)

    @property
    def action_index(self) -> dict[str, list[str]]:
        return self._indexes[CodeType.ACTION].entries

    @property
    def widget_index(self) -> dict[str, list[str]]:
        return self._indexes[CodeType.WIDGET].entries

    @property
    def functions_code(self) -> str:
        return self._functions_code

    @property
    def functions_code_before(self) -> str:
        return self._functions_code_before

    def get(self, key: str) -> ArtifactRecord | None:
        return self._file_map.get(key)

    def key_for(self, path: str | Path) -> str | None:
        """Return the file map key for *path*, or ``None`` if untracked."""
        located = self._locate(path)
        return located[1] if located else None

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def add_file(self, path: str | Path) -> ArtifactRecord | None:
        """Start tracking a newly created file.

        Adding a file that already has a record behaves like an update.

        Returns:
            The new record, or ``None`` if the path is untracked or the
            file cannot be read.
        """
        located = self._locate(path)
        if located is None:
            return None
        abs_path, key, code_type = located
        if key in self._file_map:
            return self.update_file(abs_path)

        content = self._read(abs_path)
        if content is None:
            return None
        text, checksum = content

        identifier = self._identifier(text, code_type, fallback="")
        record = ArtifactRecord(
            old_identifier_name=identifier,
            new_identifier_name=identifier,
            type=code_type,
            current_checksum=checksum,
        )
        self._file_map[key] = record
        self._after_change(key, record, text)
        logger.debug("Added %s (%s)", key, code_type.value)
        return record

    def update_file(self, path: str | Path) -> ArtifactRecord | None:
        """Record new content for a tracked file.

        An update to an unknown file is treated as an add.  An update to a
        deleted record revives it and keeps its baseline checksum.  If the
        new content cannot be parsed, the previous identifier is kept.

        When the file now lives in another category than its record, the
        old record and its index entry are dropped and the file is tracked
        as new in its current category.
        """
        located = self._locate(path)
        if located is None:
            return None
        abs_path, key, code_type = located
        existing = self._file_map.get(key)
        if existing is None:
            return self.add_file(abs_path)
        if existing.type != code_type:
            logger.warning(
                "%s moved from %s to %s, tracking it as a new file",
                key,
                existing.type.value,
                code_type.value,
            )
            del self._file_map[key]
            old_index = self._indexes.get(existing.type)
            if old_index is not None:
                old_index.remove(key)
                old_index.write(self.root)
            return self.add_file(abs_path)

        content = self._read(abs_path)
        if content is None:
            return None
        text, checksum = content

        identifier = self._identifier(
            text, code_type, fallback=existing.new_identifier_name
        )
        record = existing.model_copy(
            update={
                "new_identifier_name": identifier,
                "current_checksum": checksum,
                "is_deleted": False,
            }
        )
        self._file_map[key] = record
        self._after_change(key, record, text)
        logger.debug("Updated %s", key)
        return record

    def delete_file(self, path: str | Path) -> ArtifactRecord | None:
        """Mark a tracked file as deleted.

        Returns:
            The updated record, or ``None`` if the file was not tracked.
        """
        located = self._locate(path)
        if located is None:
            return None
        _, key, _ = located
        existing = self._file_map.get(key)
        if existing is None:
            return None

        record = existing.model_copy(update={"is_deleted": True})
        self._file_map[key] = record
        self._after_change(key, record, "")
        logger.debug("Deleted %s", key)
        return record

    def rename_file(
        self, old_path: str | Path, new_path: str | Path
    ) -> ArtifactRecord | None:
        """Move a record to a new filename, keeping its history.

        A rename from an untracked location is an add, a rename to an
        untracked location is a delete, and a rename across categories is
        a delete of the old file plus an add of the new one.  Renaming onto
        a filename that already has a record marks the old file deleted and
        updates the existing record with the moved content.
        """
        old = self._locate(old_path)
        new = self._locate(new_path)
        if new is None:
            return self.delete_file(old_path) if old else None
        if old is None or old[1] not in self._file_map:
            return self.add_file(new_path)

        _, old_key, old_type = old
        _, new_key, new_type = new
        if old_type != new_type or new_type not in CATEGORY_DIRS:
            self.delete_file(old_path)
            return self.add_file(new_path)
        if new_key != old_key and new_key in self._file_map:
            self.delete_file(old_path)
            return self.update_file(new_path)

        record = self._file_map.pop(old_key)
        self._file_map[new_key] = record
        index = self._indexes[new_type]
        index.remove(old_key)
        if not record.is_deleted:
            index.patch(new_key, identifiers_for(record))
        index.write(self.root)
        logger.debug("Renamed %s -> %s", old_key, new_key)
        return record

    def apply(self, event: EditEvent) -> tuple[str, ArtifactRecord] | None:
        """Apply an edit event, using the disk state as the source of truth.

        A delete event for a file that still exists is handled as an
        update; an add or update for a file that is gone is handled as a
        delete.  Directory events are ignored.

        Returns:
            ``(filename, record)`` for the affected record, or ``None`` if
            nothing tracked changed.
        """
        if event.edit_type == EditType.RENAME and event.old_path:
            record = self.rename_file(event.old_path, event.file_path)
            # A move out of the tracked tree reports the deleted old record.
            key = self.key_for(event.file_path) or self.key_for(event.old_path)
            if record is None or key is None:
                return None
            return key, record

        abs_path = self._absolute(event.file_path)
        if abs_path.is_dir():
            return None
        exists = abs_path.is_file()

        match event.edit_type:
            case EditType.DELETE if exists:
                logger.debug("Delete event for existing %s", abs_path)
                record = self.update_file(abs_path)
            case EditType.ADD | EditType.UPDATE | EditType.RENAME if not exists:
                record = self.delete_file(abs_path)
            case EditType.ADD:
                record = self.add_file(abs_path)
            case EditType.DELETE:
                record = self.delete_file(abs_path)
            case _:
                record = self.update_file(abs_path)

        key = self.key_for(abs_path)
        if record is None or key is None:
            return None
        return key, record

    # ------------------------------------------------------------------
    # Functions
    # ------------------------------------------------------------------

    def function_changes(self) -> FunctionChange:
        """Diff the functions file against its baseline.

        Explicit renames recorded earlier are merged in.  Does not modify
        tracker state.
        """
        computed = analyze_function_changes(
            self._functions_code_before,
            self._functions_code,
            self.extractor,
            self.similarity_threshold,
        )
        return merge_explicit_renames(computed, self._function_change)

    def record_explicit_rename(
        self, old_name: str, new_name: str
    ) -> FunctionChange:
        """Record a rename-symbol of a custom function.

        The merged function changes are written to the store right away, so
        the rename survives a restart even if no file event follows.
        """
        self._function_change = record_explicit_rename(
            self._function_change, old_name, new_name
        )
        self._function_change = self.function_changes()
        self.store.write_function_changes(self._function_change)
        return self._function_change

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def build_sync_payload(
        self,
        project_id: str,
        branch_name: str,
        request_id: str | None = None,
    ) -> SyncPayload:
        """Assemble the push payload from the current local state."""
        indexes = self._regenerated_indexes()
        return SyncPayload(
            project_id=project_id,
            branch_name=branch_name,
            request_id=request_id or str(uuid.uuid4()),
            zipped_custom_code=self._zip_custom_code(indexes),
            serialized_yaml=self._serialized_yaml(),
            file_map={
                key: record.to_json_dict()
                for key, record in sorted(self._file_map.items())
            },
            function_change=self.function_changes(),
            action_index=indexes[CodeType.ACTION].entries,
            widget_index=indexes[CodeType.WIDGET].entries,
        )

    def commit_sync(self) -> None:
        """Advance the baseline to the current state.

        Deleted records are dropped, every remaining record's baseline
        checksum and identifier take their current values, and the
        functions baseline becomes the current text.  Explicit renames
        whose target already exists in the new baseline are cleared.
        """
        self._file_map = {
            key: record.model_copy(
                update={
                    "original_checksum": record.current_checksum,
                    "old_identifier_name": record.new_identifier_name,
                }
            )
            for key, record in self._file_map.items()
            if not record.is_deleted
        }
        self._functions_code_before = self._functions_code

        baseline = {
            d.name
            for d in safe_extract(
                self.extractor, self._functions_code_before, "baseline"
            )
        }
        pending = [
            r
            for r in self._function_change.functions_to_rename
            if r.renamed_by_symbol and r.new_function_name not in baseline
        ]
        self._function_change = FunctionChange(functions_to_rename=pending)
        self.regenerate_indexes()
        logger.info("Sync baseline advanced (%d files)", len(self._file_map))

    def refresh(self) -> None:
        """Discard tracked state and take the filesystem as the baseline."""
        self._file_map = {}
        self._functions_code_before = ""
        self._functions_code = ""
        self._function_change = FunctionChange()

        for abs_path in self.discover_files():
            located = self._locate(abs_path)
            content = self._read(abs_path)
            if located is None or content is None:
                continue
            _, key, code_type = located
            text, checksum = content
            identifier = self._identifier(text, code_type, fallback="")
            self._file_map[key] = ArtifactRecord(
                old_identifier_name=identifier,
                new_identifier_name=identifier,
                type=code_type,
                original_checksum=checksum,
                current_checksum=checksum,
            )
            if code_type == CodeType.FUNCTION:
                self._functions_code_before = text
                self._functions_code = text

        self.regenerate_indexes()
        logger.info("Tracking %d files under %s", len(self._file_map), self.root)

    def reconcile_with_disk(self) -> list[str]:
        """Bring records in line with the files currently on disk.

        Returns:
            Keys of the records that changed.
        """
        changed: list[str] = []
        on_disk: set[str] = set()
        for abs_path in self.discover_files():
            key = self.key_for(abs_path)
            if key is None:
                continue
            on_disk.add(key)
            record = self._file_map.get(key)
            if (
                record is None
                or record.is_deleted
                or record.current_checksum != file_checksum(abs_path)
            ):
                if self.update_file(abs_path) is not None:
                    changed.append(key)

        for key, record in list(self._file_map.items()):
            if key in on_disk or record.is_deleted:
                continue
            try:
                rel = relative_path(key, record)
            except ValueError:
                continue
            if self.delete_file(self.root / rel) is not None:
                changed.append(key)
        return changed

    def regenerate_indexes(self) -> None:
        """Rebuild both manifest indexes from the records and write them."""
        for index in self._indexes.values():
            index.regenerate(self._file_map)
            index.write(self.root)

    def discover_files(self) -> list[Path]:
        """Absolute paths of every tracked file currently on disk."""
        found: list[Path] = []
        for directory in CATEGORY_DIRS.values():
            base = self.root / directory
            if base.is_dir():
                found.extend(
                    p
                    for p in sorted(base.rglob("*.dart"))
                    if p.is_file() and p.name != INDEX_FILENAME
                )
        for single in (FUNCTIONS_FILE, DEPENDENCIES_FILE):
            candidate = self.root / single
            if candidate.is_file():
                found.append(candidate)
        return found

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> PersistedSnapshot:
        return PersistedSnapshot(
            file_map=dict(self._file_map),
            action_index=self.action_index,
            widget_index=self.widget_index,
            functions_code_before=self._functions_code_before,
            functions_code=self._functions_code,
        )

    def save(self) -> None:
        """Persist the snapshot and the pending function changes."""
        self.store.save(self.snapshot())
        self.store.write_function_changes(self._function_change)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _absolute(self, path: str | Path) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.root / p

    def _locate(self, path: str | Path) -> tuple[Path, str, CodeType] | None:
        rel = to_project_relative(self.root, path)
        if rel is None:
            return None
        code_type = path_to_code_type(rel)
        if code_type == CodeType.OTHER:
            return None
        return self.root / rel, record_key(rel, code_type), code_type

    @staticmethod
    def _read(abs_path: Path) -> tuple[str, str] | None:
        checksum = file_checksum(abs_path)
        if checksum is None:
            return None
        text = read_text(abs_path)
        if text is None:
            return None
        return text, checksum

    def _identifier(self, text: str, code_type: CodeType, fallback: str) -> str:
        """First public top-level name, else the first name, else ``""``."""
        if code_type not in CATEGORY_DIRS:
            return ""
        try:
            declarations = self.extractor.extract_declarations(text)
        except DeclarationParseError as exc:
            logger.debug("Keeping identifier %r: %s", fallback, exc)
            return fallback
        public = [d for d in declarations if d.is_public]
        chosen = public or declarations
        return chosen[0].name if chosen else ""

    def _after_change(self, key: str, record: ArtifactRecord, text: str) -> None:
        match record.type:
            case CodeType.ACTION | CodeType.WIDGET:
                index = self._indexes[record.type]
                if record.is_deleted:
                    index.remove(key)
                else:
                    index.patch(key, identifiers_for(record))
                index.write(self.root)
            case CodeType.FUNCTION:
                self._functions_code = "" if record.is_deleted else text
                self._function_change = self.function_changes()
            case _:
                pass

    def _regenerated_indexes(self) -> dict[CodeType, ManifestIndex]:
        indexes = {
            code_type: ManifestIndex(code_type) for code_type in CATEGORY_DIRS
        }
        for index in indexes.values():
            index.regenerate(self._file_map)
        return indexes

    def _zip_custom_code(self, indexes: dict[CodeType, ManifestIndex]) -> str:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for key, record in sorted(self._file_map.items()):
                if record.is_deleted or record.type not in CATEGORY_DIRS:
                    continue
                rel = relative_path(key, record)
                try:
                    archive.write(self.root / rel, rel)
                except OSError as exc:
                    logger.warning("Leaving %s out of bundle: %s", rel, exc)
            for code_type, index in indexes.items():
                archive.writestr(
                    str(CATEGORY_DIRS[code_type] / INDEX_FILENAME),
                    index.render(),
                )
            functions = self._file_map.get(FUNCTIONS_FILE.name)
            if functions is not None and not functions.is_deleted:
                archive.writestr(str(FUNCTIONS_FILE), self._functions_code)
        return base64.b64encode(buffer.getvalue()).decode("ascii")

    def _serialized_yaml(self) -> str:
        """Return the raw ``pubspec.yaml`` text for the payload.

        The text is parsed only to warn about invalid YAML; it is sent
        exactly as read, never re-serialised from the parsed data.
        """
        text = read_text(self.root / DEPENDENCIES_FILE)
        if text is None:
            return ""
        try:
            yaml.safe_load(text)
        except yaml.YAMLError as exc:
            logger.warning("%s is not valid YAML: %s", DEPENDENCIES_FILE, exc)
        return text
