"""Editing session: event stream, state machine and remote operations.

A ``SyncSession`` owns one project's ``ChangeTracker`` for the lifetime of
an editor session.  Filesystem events are queued with ``submit()`` and
applied strictly one at a time: each event's mutate, persist and notify
steps finish before the next event starts.  Tracker calls run on a worker
thread through ``run_sync()`` but are always awaited in sequence, so no
two mutations overlap.

State machine::

    UNINITIALIZED -> EDITING <-> {PUSHING, PULLING}
    any state     -> ERROR   -> (reinitialize) -> EDITING

Events are only applied in ``EDITING``.  Events that arrive while a push
or pull is running are dropped; a pull refreshes the tracker from disk
when it finishes instead.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from custom_code_sync.config import Config, load_project_metadata
from custom_code_sync.core.async_utils import run_sync
from custom_code_sync.errors import (
    CustomCodeSyncError,
    RemoteError,
    SnapshotReadError,
    SyncInProgressError,
)
from custom_code_sync.file_handler import copy_tree, remove_tree

from .classifier import CATEGORY_DIRS, FUNCTIONS_FILE
from .declarations import DeclarationExtractor
from .models import (
    ArtifactRecord,
    EditEvent,
    FunctionChange,
    ProjectMetadata,
    PushResult,
    SessionState,
)
from .state import SnapshotStore
from .tracker import ChangeTracker

if TYPE_CHECKING:
    from custom_code_sync.core.client import RemoteClient

logger = logging.getLogger(__name__)

Observer = Callable[[str, ArtifactRecord], None]

_EXPECTED_TRANSITIONS = {
    (SessionState.UNINITIALIZED, SessionState.EDITING),
    (SessionState.EDITING, SessionState.PUSHING),
    (SessionState.EDITING, SessionState.PULLING),
    (SessionState.PUSHING, SessionState.EDITING),
    (SessionState.PULLING, SessionState.EDITING),
    (SessionState.ERROR, SessionState.EDITING),
}


class SyncSession:
    """Serialize tracker access for one open project.

    Args:
        root: Project root directory.
        config: Session configuration; defaults to built-in defaults.
        extractor: Declaration extractor passed to the tracker.
        tracker: An already loaded tracker.  When given the session
            starts in ``EDITING``; otherwise call ``initialize()``.
    """

    def __init__(
        self,
        root: Path,
        config: Config | None = None,
        *,
        extractor: DeclarationExtractor | None = None,
        tracker: ChangeTracker | None = None,
    ) -> None:
        self.root = Path(root)
        self.config = config or Config()
        self.extractor = extractor
        self.tracker = tracker
        self.metadata = ProjectMetadata()
        self.last_error: Exception | None = None

        self._state = (
            SessionState.EDITING if tracker is not None else SessionState.UNINITIALIZED
        )
        self._queue: asyncio.Queue[EditEvent | None] = asyncio.Queue()
        self._observers: list[Observer] = []
        self._remote_busy = False
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    def set_state(self, new_state: SessionState) -> None:
        """Move to *new_state*.

        Never raises.  Repeating the current state is a no-op; transitions
        outside the normal cycle are applied but logged.
        """
        old_state = self._state
        if new_state == old_state:
            return
        if (
            new_state != SessionState.ERROR
            and (old_state, new_state) not in _EXPECTED_TRANSITIONS
        ):
            logger.warning(
                "Unexpected session transition %s -> %s",
                old_state.value,
                new_state.value,
            )
        logger.debug("Session state %s -> %s", old_state.value, new_state.value)
        self._state = new_state

    def store(self) -> SnapshotStore:
        return SnapshotStore(
            self.root,
            state_dir=self.config.state_dir,
            max_attempts=self.config.snapshot_read_retries,
            base_delay=self.config.snapshot_retry_base_delay,
        )

    async def initialize(self) -> bool:
        """Load the tracker from the persisted snapshot.

        Returns:
            ``True`` if the session is now ``EDITING``; ``False`` if the
            snapshot could not be read and the session is in ``ERROR``.
        """
        self.metadata = await run_sync(
            load_project_metadata, self.root, self.config.state_dir
        )
        try:
            self.tracker = await run_sync(
                ChangeTracker.load,
                self.root,
                extractor=self.extractor,
                store=self.store(),
                similarity_threshold=self.config.similarity_threshold,
            )
        except SnapshotReadError as exc:
            logger.error("Cannot open session for %s: %s", self.root, exc)
            self.last_error = exc
            self.set_state(SessionState.ERROR)
            return False

        self.last_error = None
        self.set_state(SessionState.EDITING)
        logger.info(
            "Session open for %s (project %r)",
            self.root,
            self.metadata.project_id,
        )
        return True

    async def reinitialize(self) -> bool:
        """Reload tracker state from disk and return to ``EDITING``.

        Pending events are discarded.  This is the only way out of
        ``ERROR``.
        """
        dropped = self._drain()
        if dropped:
            logger.info("Discarded %d pending event(s) on reinitialize", dropped)
        return await self.initialize()

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def add_observer(self, observer: Observer) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _notify(self, filename: str, record: ArtifactRecord) -> None:
        for observer in list(self._observers):
            try:
                observer(filename, record)
            except Exception:
                logger.exception("Observer failed for %s", filename)

    # ------------------------------------------------------------------
    # Event stream
    # ------------------------------------------------------------------

    def submit(self, event: EditEvent) -> bool:
        """Queue a filesystem event.

        Returns:
            ``False`` if the event was dropped because a push or pull is
            running.
        """
        if self._state in (SessionState.PUSHING, SessionState.PULLING):
            logger.debug(
                "Dropping %s event for %s during %s",
                event.edit_type.value,
                event.file_path,
                self._state.value,
            )
            return False
        self._queue.put_nowait(event)
        return True

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def process_pending(self) -> int:
        """Apply every queued event in arrival order.

        Returns:
            Number of events that changed a record.
        """
        applied = 0
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                if event is not None and await self._handle(event):
                    applied += 1
            finally:
                self._queue.task_done()
        return applied

    async def run(self) -> None:
        """Apply events as they arrive until ``close()`` is called."""
        while True:
            event = await self._queue.get()
            try:
                if event is None:
                    break
                await self._handle(event)
            finally:
                self._queue.task_done()
        logger.debug("Event loop for %s stopped", self.root)

    def close(self) -> None:
        """Stop ``run()`` after the events already queued."""
        self._queue.put_nowait(None)

    async def _handle(self, event: EditEvent) -> bool:
        async with self._lock:
            if self._state != SessionState.EDITING or self.tracker is None:
                logger.debug(
                    "Ignoring %s event for %s in state %s",
                    event.edit_type.value,
                    event.file_path,
                    self._state.value,
                )
                return False

            result = await run_sync(self.tracker.apply, event)
            if result is None:
                return False
            filename, record = result

            try:
                await run_sync(self.tracker.save)
            except OSError as exc:
                logger.error(
                    "Failed to persist snapshot after %s: %s", filename, exc
                )
                return False

        self._notify(filename, record)
        return True

    def _drain(self) -> int:
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            dropped += 1
        return dropped

    # ------------------------------------------------------------------
    # Functions
    # ------------------------------------------------------------------

    async def record_explicit_rename(
        self, old_name: str, new_name: str
    ) -> FunctionChange:
        """Record a rename-symbol of a custom function and persist it.

        Observers are notified with the functions file record, if the
        project has one.

        Raises:
            CustomCodeSyncError: If the session is not in ``EDITING``.
        """
        async with self._lock:
            if self._state != SessionState.EDITING or self.tracker is None:
                raise CustomCodeSyncError(
                    f"Cannot record a rename in state {self._state.value}"
                )
            change = await run_sync(
                self.tracker.record_explicit_rename, old_name, new_name
            )
            await run_sync(self.tracker.save)
            record = self.tracker.get(FUNCTIONS_FILE.name)

        logger.info("Recorded rename %s -> %s", old_name, new_name)
        if record is not None:
            self._notify(FUNCTIONS_FILE.name, record)
        return change

    # ------------------------------------------------------------------
    # Remote operations
    # ------------------------------------------------------------------

    def _ensure_idle(self, state: SessionState) -> None:
        if self._remote_busy or self._state in (
            SessionState.PUSHING,
            SessionState.PULLING,
        ):
            raise SyncInProgressError(
                f"Cannot start {state.value.lower()}: "
                "a push or pull is already in progress"
            )

    def _begin_remote(self, state: SessionState) -> ChangeTracker:
        if self.tracker is None or self._state != SessionState.EDITING:
            raise CustomCodeSyncError(
                f"Session is not ready (state {self._state.value}); "
                "call reinitialize()"
            )
        self.set_state(state)
        return self.tracker

    async def push(
        self, client: RemoteClient, request_id: str | None = None
    ) -> PushResult:
        """Send local changes and advance the baseline if accepted.

        Queued events are applied first so the payload reflects every
        edit reported so far.

        Raises:
            SyncInProgressError: If a push or pull is already running.
        """
        self._ensure_idle(SessionState.PUSHING)
        self._remote_busy = True
        try:
            await self.process_pending()
            async with self._lock:
                tracker = self._begin_remote(SessionState.PUSHING)
                try:
                    result = await self._push(client, tracker, request_id)
                except Exception as exc:
                    logger.exception("Push failed unexpectedly")
                    self.last_error = exc
                    self.set_state(SessionState.ERROR)
                    raise
                self.set_state(SessionState.EDITING)
        finally:
            self._remote_busy = False
        return result

    async def _push(
        self, client: RemoteClient, tracker: ChangeTracker, request_id: str | None
    ) -> PushResult:
        payload = await run_sync(
            tracker.build_sync_payload,
            client.project_id,
            client.branch_name,
            request_id,
        )
        result = await run_sync(client.push_code, payload)
        if result.has_critical_errors:
            logger.warning(
                "Push not accepted (HTTP %s): %s",
                result.response_code,
                result.error_message or "critical file warnings",
            )
        else:
            await run_sync(tracker.commit_sync)
            await run_sync(tracker.save)
            logger.info("Push completed for project %s", client.project_id)
        return result

    async def pull(self, client: RemoteClient) -> int:
        """Replace local code with the remote project.

        Local state is untouched if the download fails.

        Returns:
            Number of files copied into the project.

        Raises:
            SyncInProgressError: If a push or pull is already running.
            RemoteError: If the download failed.
        """
        self._ensure_idle(SessionState.PULLING)
        self._remote_busy = True
        try:
            async with self._lock:
                tracker = self._begin_remote(SessionState.PULLING)
                try:
                    copied = await run_sync(
                        self._pull_into_project, client, tracker
                    )
                except RemoteError as exc:
                    logger.error("Pull failed: %s", exc)
                    self.set_state(SessionState.EDITING)
                    raise
                except Exception as exc:
                    logger.exception("Pull failed unexpectedly")
                    self.last_error = exc
                    self.set_state(SessionState.ERROR)
                    raise
                self.set_state(SessionState.EDITING)
        finally:
            self._remote_busy = False
        return copied

    def _pull_into_project(self, client: RemoteClient, tracker: ChangeTracker) -> int:
        with tempfile.TemporaryDirectory(prefix="custom_code_sync_") as tmp:
            download = Path(tmp)
            client.pull_code(download)
            for directory in CATEGORY_DIRS.values():
                remove_tree(self.root / directory)
            copied = copy_tree(
                download,
                self.root,
                skip={Path(self.config.state_dir).parts[0]},
            )
        tracker.refresh()
        tracker.save()
        logger.info("Pulled %d file(s) into %s", copied, self.root)
        return copied


async def open_session(
    root: Path,
    config: Config | None = None,
    *,
    extractor: DeclarationExtractor | None = None,
) -> SyncSession:
    """Create a session for *root* and load its tracker.

    The returned session is in ``EDITING``, or in ``ERROR`` with
    ``last_error`` set if the snapshot could not be read.
    """
    session = SyncSession(root, config, extractor=extractor)
    await session.initialize()
    return session
