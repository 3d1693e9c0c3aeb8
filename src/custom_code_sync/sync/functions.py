"""Rename, add and delete detection for the shared custom functions file.

All custom functions live in one file, so there is no per-function file
identity to track.  Instead, two snapshots of the file (the baseline and
the live text) are compared by declaration name:

1. Names present in both snapshots are unchanged, whatever their bodies.
2. A name that disappeared is matched against the *new* names of the
   current snapshot by body similarity.  The best match at or above
   ``SIMILARITY_THRESHOLD`` is reported as a rename; otherwise the name
   is deleted.
3. New names not claimed by a rename are added.

Similarity is ``1 - levenshtein(a, b) / max(len(a), len(b))`` over the
normalised body text.

Explicit renames (from the editor's rename-symbol command) are carried
over between recomputations by ``merge_explicit_renames``.
"""

from __future__ import annotations

import logging

from rapidfuzz.distance import Levenshtein

from custom_code_sync.errors import DeclarationParseError

from .declarations import Declaration, DeclarationExtractor
from .models import FunctionChange, FunctionRename, RenameKind

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.7


def levenshtein_distance(s1: str, s2: str) -> int:
    """Return the edit distance between *s1* and *s2*."""
    return Levenshtein.distance(s1, s2)


def body_similarity(a: str, b: str) -> float:
    """Normalised similarity of two body texts in ``[0, 1]``.

    Two empty bodies are identical.
    """
    # Uniform weights: the distance is normalised by the longer length.
    return Levenshtein.normalized_similarity(a, b)


def safe_extract(
    extractor: DeclarationExtractor, source: str, label: str
) -> list[Declaration]:
    try:
        return extractor.extract_declarations(source)
    except DeclarationParseError as exc:
        logger.warning(
            "Could not parse %s functions snapshot, treating as empty: %s",
            label,
            exc,
        )
        return []


def analyze_function_changes(
    before: str,
    current: str,
    extractor: DeclarationExtractor,
    similarity_threshold: float = SIMILARITY_THRESHOLD,
) -> FunctionChange:
    """Classify declaration changes between two snapshots.

    A snapshot that fails to parse contributes no declarations; the
    failure is logged and never raised.

    Args:
        before: Text at the last sync baseline.
        current: Live text.
        extractor: Declaration extractor for the source language.
        similarity_threshold: Minimum body similarity for a rename.

    Returns:
        A ``FunctionChange`` with inferred renames only.
    """
    old_decls = safe_extract(extractor, before, "baseline")
    new_decls = safe_extract(extractor, current, "current")

    old_names = {d.name for d in old_decls}
    new_names = {d.name for d in new_decls}

    # Only names that did not exist before can be rename targets.
    candidates = [d for d in new_decls if d.name not in old_names]
    claimed: set[str] = set()

    renames: list[FunctionRename] = []
    deleted: list[str] = []
    for old in old_decls:
        if old.name in new_names:
            continue
        best: Declaration | None = None
        best_score = 0.0
        for new in candidates:
            if new.name in claimed:
                continue
            score = body_similarity(old.body, new.body)
            if score >= similarity_threshold and score > best_score:
                best, best_score = new, score
        if best is None:
            deleted.append(old.name)
        else:
            claimed.add(best.name)
            renames.append(
                FunctionRename(
                    old_function_name=old.name,
                    new_function_name=best.name,
                )
            )

    added = [
        d.name
        for d in new_decls
        if d.name not in old_names and d.name not in claimed
    ]

    return FunctionChange(
        functions_to_rename=renames,
        functions_to_delete=_dedupe(deleted),
        functions_to_add=_dedupe(added),
    )


def merge_explicit_renames(
    computed: FunctionChange, previous: FunctionChange
) -> FunctionChange:
    """Combine a fresh diff with the explicit renames of *previous*.

    Explicit renames are kept unless their target name now shows up as
    added or deleted, which means the rename-symbol assumption is stale.
    An inferred rename is dropped when a kept explicit rename shares its
    old or new name.
    """
    stale = set(computed.functions_to_add) | set(computed.functions_to_delete)

    explicit: list[FunctionRename] = []
    for rename in previous.functions_to_rename:
        match rename.kind:
            case RenameKind.EXPLICIT if rename.new_function_name not in stale:
                explicit.append(rename)
            case _:
                pass

    explicit_old = {r.old_function_name for r in explicit}
    explicit_new = {r.new_function_name for r in explicit}

    renames: list[FunctionRename] = [
        r
        for r in computed.functions_to_rename
        if r.old_function_name not in explicit_old
        and r.new_function_name not in explicit_new
    ]
    renames.extend(explicit)

    return FunctionChange(
        functions_to_rename=renames,
        functions_to_delete=list(computed.functions_to_delete),
        functions_to_add=list(computed.functions_to_add),
    )


def record_explicit_rename(
    change: FunctionChange, old_name: str, new_name: str
) -> FunctionChange:
    """Record a rename performed with the editor's rename-symbol command.

    If a rename already points at *old_name*, it is re-pointed to
    *new_name* so chains of renames collapse into one entry.
    """
    renames = list(change.functions_to_rename)
    for index, rename in enumerate(renames):
        if rename.new_function_name == old_name:
            renames[index] = rename.model_copy(
                update={"new_function_name": new_name, "kind": RenameKind.EXPLICIT}
            )
            break
    else:
        renames.append(
            FunctionRename(
                old_function_name=old_name,
                new_function_name=new_name,
                kind=RenameKind.EXPLICIT,
            )
        )
    return change.model_copy(update={"functions_to_rename": renames})


def _dedupe(names: list[str]) -> list[str]:
    return list(dict.fromkeys(names))
