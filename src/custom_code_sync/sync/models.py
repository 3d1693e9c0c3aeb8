"""Pydantic models for the custom code change tracker.

Defines the core data contracts used across all sync modules:

- ``CodeType``: One-letter artifact category codes.
- ``ArtifactRecord``: Tracked state of one custom code file.
- ``RenameKind`` / ``FunctionRename`` / ``FunctionChange``: Result of
  diffing the shared custom functions file.
- ``SessionState``: Phase of an editing session.
- ``EditEvent``: A filesystem change reported by the watch source.
- ``FileWarning`` / ``PushResult``: Remote validation feedback.
- ``SyncPayload``: The request body sent to the remote project server.
- ``ProjectMetadata``: Project and branch identity of a checkout.

Records are frozen; the tracker replaces them with ``model_copy`` so every
value handed out to observers is a read-only snapshot.
"""

from __future__ import annotations

import json
from enum import Enum

from pydantic import BaseModel, Field


class CodeType(str, Enum):
    """Artifact category of a file in the generated project."""

    ACTION = "A"
    WIDGET = "W"
    FUNCTION = "F"
    DEPENDENCIES = "D"
    OTHER = "O"


class ArtifactRecord(BaseModel):
    """Tracked state of a single artifact.

    Field names match the ``file_map.json`` wire format.

    Attributes:
        old_identifier_name: Declaration name at the last sync baseline.
        new_identifier_name: Declaration name in the current content.
        type: Artifact category.
        is_deleted: True once the file has been removed locally.
        original_checksum: Content hash at the last sync.  ``None`` for
            artifacts created since the baseline.
        current_checksum: Content hash of the current content.
    """

    old_identifier_name: str = ""
    new_identifier_name: str = ""
    type: CodeType
    is_deleted: bool = False
    original_checksum: str | None = None
    current_checksum: str | None = None

    model_config = {"frozen": True}

    @property
    def is_new(self) -> bool:
        """True when the artifact did not exist at the sync baseline."""
        return self.original_checksum is None

    @property
    def is_modified(self) -> bool:
        """True when current content differs from the baseline."""
        return (
            not self.is_deleted
            and self.current_checksum != self.original_checksum
        )

    def to_json_dict(self) -> dict:
        """Serialise to the ``file_map.json`` entry shape.

        Undefined checksums are omitted rather than written as ``null``.
        """
        return self.model_dump(mode="json", exclude_none=True)


class RenameKind(str, Enum):
    """How a function rename was detected."""

    INFERRED = "inferred"
    EXPLICIT = "explicit"


class FunctionRename(BaseModel):
    """A rename of one declaration in the shared functions file.

    ``EXPLICIT`` renames come from the editor's rename-symbol feature and
    survive recomputation of the diff; ``INFERRED`` renames are recomputed
    from content similarity every time.
    """

    old_function_name: str
    new_function_name: str
    kind: RenameKind = RenameKind.INFERRED

    model_config = {"frozen": True}

    @property
    def renamed_by_symbol(self) -> bool:
        return self.kind == RenameKind.EXPLICIT

    def to_json_dict(self) -> dict:
        return {
            "old_function_name": self.old_function_name,
            "new_function_name": self.new_function_name,
            "renamed_by_symbol": self.renamed_by_symbol,
        }

    @classmethod
    def from_json_dict(cls, data: dict) -> FunctionRename:
        kind = (
            RenameKind.EXPLICIT
            if data.get("renamed_by_symbol")
            else RenameKind.INFERRED
        )
        return cls(
            old_function_name=data["old_function_name"],
            new_function_name=data["new_function_name"],
            kind=kind,
        )


class FunctionChange(BaseModel):
    """Renamed, deleted and added declarations of the shared file."""

    functions_to_rename: list[FunctionRename] = Field(default_factory=list)
    functions_to_delete: list[str] = Field(default_factory=list)
    functions_to_add: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        return not (
            self.functions_to_rename
            or self.functions_to_delete
            or self.functions_to_add
        )

    def to_json_dict(self) -> dict:
        """Serialise to the ``function_changes.json`` shape."""
        return {
            "functions_to_rename": [
                r.to_json_dict() for r in self.functions_to_rename
            ],
            "functions_to_delete": list(self.functions_to_delete),
            "functions_to_add": list(self.functions_to_add),
        }

    @classmethod
    def from_json_dict(cls, data: dict) -> FunctionChange:
        return cls(
            functions_to_rename=[
                FunctionRename.from_json_dict(r)
                for r in data.get("functions_to_rename", [])
            ],
            functions_to_delete=list(data.get("functions_to_delete", [])),
            functions_to_add=list(data.get("functions_to_add", [])),
        )


class SessionState(str, Enum):
    """Phase of an editing session."""

    UNINITIALIZED = "UNINITIALIZED"
    EDITING = "EDITING"
    PULLING = "PULLING"
    PUSHING = "PUSHING"
    ERROR = "ERROR"


class EditType(str, Enum):
    """Kind of filesystem change."""

    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"
    RENAME = "rename"


class EditEvent(BaseModel):
    """A filesystem change reported by the watch source.

    Attributes:
        file_path: Absolute path of the affected file (the new path for
            renames).
        edit_type: Kind of change.
        old_path: Previous absolute path, only set for renames.
    """

    file_path: str
    edit_type: EditType
    old_path: str | None = None

    model_config = {"frozen": True}


class FileWarning(BaseModel):
    """A validation message returned by the remote server for one file.

    Critical warnings block the sync baseline from advancing.
    """

    file_type: CodeType | None = None
    error_message: str
    is_critical: bool = False

    model_config = {"frozen": True}


class PushResult(BaseModel):
    """Outcome of sending a sync payload to the remote server.

    Attributes:
        response_code: HTTP status code, or ``None`` if no response.
        error_message: Human-readable failure reason, if any.
        file_warnings: Per-file warnings keyed by filename.
    """

    response_code: int | None = None
    error_message: str | None = None
    file_warnings: dict[str, list[FileWarning]] = Field(
        default_factory=dict
    )

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return self.error_message is None

    @property
    def has_critical_errors(self) -> bool:
        """True if the push failed or any file warning is critical."""
        if not self.success:
            return True
        return any(
            w.is_critical
            for warnings in self.file_warnings.values()
            for w in warnings
        )


class SyncPayload(BaseModel):
    """Everything sent to the remote server for one sync.

    The wire request (``to_request()``) carries the zipped bundle, the
    serialised dependency file and JSON-encoded file and function maps.
    The manifest indexes travel inside the bundle as rendered
    ``index.dart`` files and are kept here for inspection.
    """

    project_id: str
    branch_name: str
    request_id: str
    zipped_custom_code: str
    serialized_yaml: str
    file_map: dict[str, dict]
    function_change: FunctionChange
    action_index: dict[str, list[str]] = Field(default_factory=dict)
    widget_index: dict[str, list[str]] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def to_request(self) -> dict:
        """Build the JSON body expected by ``syncCustomCodeChanges``."""
        return {
            "project_id": self.project_id,
            "zipped_custom_code": self.zipped_custom_code,
            "uid": self.request_id,
            "branch_name": self.branch_name,
            "serialized_yaml": self.serialized_yaml,
            "file_map": json.dumps(self.file_map),
            "functions_map": json.dumps(self.function_change.to_json_dict()),
        }


class ProjectMetadata(BaseModel):
    """Identity of the remote project a checkout belongs to."""

    project_id: str = ""
    branch_name: str = ""
    initial_file: str | None = None
