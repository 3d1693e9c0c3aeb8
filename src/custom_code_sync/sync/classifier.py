"""Map project paths to artifact categories.

The generated project keeps user-editable code in three places:

- ``lib/custom_code/actions/*.dart`` -- one custom action per file (``A``).
- ``lib/custom_code/widgets/*.dart`` -- one custom widget per file (``W``).
- ``lib/flutter_flow/custom_functions.dart`` -- all custom functions in
  one shared file (``F``).

``pubspec.yaml`` is tracked as the dependency file (``D``).  Everything
else, including the generated ``index.dart`` listings, is ``O`` and is
ignored by the tracker.

Record keys are the path relative to the category directory (for example
``my_action.dart``) so a key stays stable if the project root moves.
"""

from __future__ import annotations

import os
from pathlib import Path, PurePosixPath

from .models import ArtifactRecord, CodeType

ACTIONS_DIR = PurePosixPath("lib/custom_code/actions")
WIDGETS_DIR = PurePosixPath("lib/custom_code/widgets")
FUNCTIONS_FILE = PurePosixPath("lib/flutter_flow/custom_functions.dart")
FUNCTION_CHANGES_FILE = PurePosixPath(
    "lib/flutter_flow/function_changes.json"
)
DEPENDENCIES_FILE = PurePosixPath("pubspec.yaml")
INDEX_FILENAME = "index.dart"

# Directory holding each per-file category.
CATEGORY_DIRS: dict[CodeType, PurePosixPath] = {
    CodeType.ACTION: ACTIONS_DIR,
    CodeType.WIDGET: WIDGETS_DIR,
}


def to_project_relative(root: Path, path: str | Path) -> PurePosixPath | None:
    """Return *path* relative to *root* as a POSIX path.

    Relative inputs are taken as already relative to *root*.  Returns
    ``None`` when *path* lies outside the project.
    """
    p = Path(path)
    if not p.is_absolute():
        return PurePosixPath(p.as_posix())
    try:
        rel = os.path.relpath(p, root)
    except ValueError:
        # Different drive on Windows.
        return None
    rel_posix = PurePosixPath(Path(rel).as_posix())
    if rel_posix.parts and rel_posix.parts[0] == "..":
        return None
    return rel_posix


def path_to_code_type(rel_path: PurePosixPath | str) -> CodeType:
    """Classify a project-relative path."""
    p = PurePosixPath(rel_path)
    if p == DEPENDENCIES_FILE:
        return CodeType.DEPENDENCIES
    if p.suffix != ".dart" or p.name == INDEX_FILENAME:
        return CodeType.OTHER
    if p == FUNCTIONS_FILE:
        return CodeType.FUNCTION
    for code_type, directory in CATEGORY_DIRS.items():
        if p.is_relative_to(directory) and p != directory:
            return code_type
    return CodeType.OTHER


def record_key(rel_path: PurePosixPath | str, code_type: CodeType) -> str:
    """Return the file map key for a classified project-relative path."""
    p = PurePosixPath(rel_path)
    directory = CATEGORY_DIRS.get(code_type)
    if directory is not None:
        return str(p.relative_to(directory))
    return p.name


def relative_path(key: str, record: ArtifactRecord) -> str:
    """Map a file map key back to its project-relative path.

    Raises:
        ValueError: If the record's category has no location.
    """
    directory = CATEGORY_DIRS.get(record.type)
    if directory is not None:
        return str(directory / key)
    if record.type == CodeType.FUNCTION:
        return str(FUNCTIONS_FILE.parent / key)
    if record.type == CodeType.DEPENDENCIES:
        return str(DEPENDENCIES_FILE)
    raise ValueError(f"Unknown file type: {record.type.value}")


def modified_files(file_map: dict[str, ArtifactRecord]) -> list[str]:
    """Project-relative paths of live records whose content changed."""
    return [
        relative_path(key, record)
        for key, record in file_map.items()
        if record.is_modified
    ]


def deleted_files(file_map: dict[str, ArtifactRecord]) -> list[str]:
    """Project-relative paths of records marked deleted."""
    return [
        relative_path(key, record)
        for key, record in file_map.items()
        if record.is_deleted
    ]
