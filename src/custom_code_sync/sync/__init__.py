"""Local change tracking for synced custom code.

Public API for tracking edits to the custom code of a generated project
and preparing them for the remote project server.

Architecture
------------
Every tracked file has an ``ArtifactRecord`` holding its checksum and
declared identifier both at the last sync (the *baseline*) and now.  A
push sends the records together with a zipped bundle of the code; once
the server accepts it the baseline advances.  All custom functions share
one file, so changes there are classified by declaration name and body
similarity instead of by file.

Modules:

- ``tracker``      -- ``ChangeTracker``: records, indexes, payloads,
  baseline commits.
- ``session``      -- ``SyncSession``: ordered event processing, state
  machine, push and pull.
- ``state``        -- ``SnapshotStore``: load/save of the persisted snapshot.
- ``functions``    -- rename/add/delete detection for the functions file.
- ``manifest``     -- ``ManifestIndex``: ``index.dart`` export listings.
- ``declarations`` -- ``DartDeclarationExtractor`` and the extractor protocol.
- ``classifier``   -- path to category mapping.
- ``models``       -- pydantic data contracts.
- ``reporter``     -- human-readable and JSON status output.

Usage example
-------------
::

    from pathlib import Path
    from custom_code_sync.config import load_config
    from custom_code_sync.core.client import RemoteClient
    from custom_code_sync.sync import EditEvent, EditType
    from custom_code_sync.sync.session import open_session

    config = load_config()
    session = await open_session(Path("my_project"), config)

    session.submit(EditEvent(file_path=path, edit_type=EditType.UPDATE))
    await session.process_pending()

    client = RemoteClient(config, session.metadata.project_id,
                          session.metadata.branch_name)
    result = await session.push(client)
"""

from .classifier import path_to_code_type
from .declarations import (
    DartDeclarationExtractor,
    Declaration,
    DeclarationExtractor,
)
from .functions import analyze_function_changes, merge_explicit_renames
from .manifest import ManifestIndex
from .models import (
    ArtifactRecord,
    CodeType,
    EditEvent,
    EditType,
    FileWarning,
    FunctionChange,
    FunctionRename,
    PushResult,
    RenameKind,
    SessionState,
    SyncPayload,
)
from .reporter import (
    format_functions_diff,
    format_push_result,
    format_status_report,
    status_to_json,
)
from .state import PersistedSnapshot, SnapshotStore
from .tracker import ChangeTracker

__all__ = [
    "ArtifactRecord",
    "ChangeTracker",
    "CodeType",
    "DartDeclarationExtractor",
    "Declaration",
    "DeclarationExtractor",
    "EditEvent",
    "EditType",
    "FileWarning",
    "FunctionChange",
    "FunctionRename",
    "ManifestIndex",
    "PersistedSnapshot",
    "PushResult",
    "RenameKind",
    "SessionState",
    "SnapshotStore",
    "SyncPayload",
    "analyze_function_changes",
    "format_functions_diff",
    "format_push_result",
    "format_status_report",
    "merge_explicit_renames",
    "path_to_code_type",
    "status_to_json",
]
