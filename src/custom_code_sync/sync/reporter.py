"""Status and push result formatting.

Provides human-readable and machine-readable output for a tracker:

- ``format_status_report`` -- local changes pending the next push.
- ``format_push_result`` -- per-file warnings returned by the server.
- ``format_functions_diff`` -- unified diff of the shared functions file.
- ``status_to_json`` -- structured dict for machine consumers.
"""

from __future__ import annotations

import difflib
from typing import TYPE_CHECKING

from .classifier import FUNCTIONS_FILE, relative_path
from .models import ArtifactRecord, FunctionChange

if TYPE_CHECKING:
    from .models import PushResult
    from .tracker import ChangeTracker


def _group_changes(
    file_map: dict[str, ArtifactRecord],
) -> dict[str, list[str]]:
    groups: dict[str, list[str]] = {"added": [], "modified": [], "deleted": []}
    for key, record in sorted(file_map.items()):
        path = relative_path(key, record)
        if record.is_deleted:
            groups["deleted"].append(path)
        elif record.is_new:
            groups["added"].append(path)
        elif record.is_modified:
            groups["modified"].append(path)
    return groups


def _function_lines(change: FunctionChange) -> list[str]:
    lines: list[str] = []
    for rename in change.functions_to_rename:
        marker = " (rename symbol)" if rename.renamed_by_symbol else ""
        lines.append(
            f"  {rename.old_function_name} -> {rename.new_function_name}{marker}"
        )
    lines.extend(f"  + {name}" for name in change.functions_to_add)
    lines.extend(f"  - {name}" for name in change.functions_to_delete)
    return lines


# ------------------------------------------------------------------
# Human-readable status
# ------------------------------------------------------------------


def format_status_report(tracker: ChangeTracker) -> str:
    """Summarise what the next push would send.

    Sections are only included when they contain at least one entry.

    Args:
        tracker: The tracker to report on.

    Returns:
        Multi-line formatted string.
    """
    groups = _group_changes(tracker.file_map)
    change = tracker.function_changes()

    lines: list[str] = [f"Custom code status for {tracker.root}", ""]
    lines.append(
        f"{len(groups['added'])} added, {len(groups['modified'])} modified, "
        f"{len(groups['deleted'])} deleted"
    )
    lines.append("")

    for title, key in (
        ("Added:", "added"),
        ("Modified:", "modified"),
        ("Deleted:", "deleted"),
    ):
        if groups[key]:
            lines.append(title)
            lines.extend(f"  {path}" for path in groups[key])
            lines.append("")

    if not change.is_empty:
        lines.append("Custom functions:")
        lines.extend(_function_lines(change))
        lines.append("")

    if not any(groups.values()) and change.is_empty:
        lines.append("No local changes.")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Push result
# ------------------------------------------------------------------


def format_push_result(result: PushResult) -> str:
    """Format a push outcome, listing critical warnings first."""
    lines: list[str] = []
    if not result.success:
        status = f" (HTTP {result.response_code})" if result.response_code else ""
        lines.append(f"Push failed{status}: {result.error_message}")
    elif result.has_critical_errors:
        lines.append("Push blocked by critical errors")
    else:
        lines.append("Push completed")

    entries = [
        (not warning.is_critical, filename, warning)
        for filename, warnings in result.file_warnings.items()
        for warning in warnings
    ]
    if entries:
        lines.append("")
    for _, filename, warning in sorted(entries, key=lambda e: (e[0], e[1])):
        level = "ERROR" if warning.is_critical else "WARNING"
        lines.append(f"  [{level}] {filename}: {warning.error_message}")

    return "\n".join(lines)


# ------------------------------------------------------------------
# Functions diff
# ------------------------------------------------------------------


def format_functions_diff(before: str, current: str) -> str:
    """Unified diff of the shared functions file since the last sync."""
    diff = difflib.unified_diff(
        before.splitlines(keepends=True),
        current.splitlines(keepends=True),
        fromfile=f"synced: {FUNCTIONS_FILE}",
        tofile=f"local: {FUNCTIONS_FILE}",
    )
    text = "".join(diff)
    return text.rstrip() if text else "(no textual differences)"


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def status_to_json(tracker: ChangeTracker) -> dict:
    """Convert tracker status to a structured dict for JSON serialisation."""
    groups = _group_changes(tracker.file_map)
    return {
        "root": str(tracker.root),
        "counts": {name: len(paths) for name, paths in groups.items()},
        **groups,
        "function_changes": tracker.function_changes().to_json_dict(),
        "action_index": tracker.action_index,
        "widget_index": tracker.widget_index,
    }
