"""Top-level declaration extraction for Dart source.

The tracker only needs to know which names a file declares at the top
level and, for the shared functions file, the body text of each function.
``DeclarationExtractor`` is the seam: the tracker and diff engine accept
any object with an ``extract_declarations`` method, and tests substitute a
deterministic fake.

``DartDeclarationExtractor`` is the default implementation.  It is not a
parser; it walks the text once, skipping comments and string literals,
splits it into top-level segments at ``;`` and at the closing brace of
each block, and recognises class-like and function headers with regexes.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol

from custom_code_sync.errors import DeclarationParseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Declaration:
    """A top-level declaration found in source text.

    Attributes:
        name: Declared identifier.
        body: Normalised body text (block contents, or the expression of
            an ``=>`` body), used for similarity comparison.
        start: Offset of the first character of the declaration.
        end: Offset just past the last character of the declaration.
    """

    name: str
    body: str
    start: int
    end: int

    @property
    def is_public(self) -> bool:
        return not self.name.startswith("_")


class DeclarationExtractor(Protocol):
    """Anything that can list the top-level declarations of source text."""

    def extract_declarations(self, source: str) -> list[Declaration]:
        """Return declarations in source order.

        Raises:
            DeclarationParseError: If the text cannot be segmented.
        """
        ...  # pragma: no cover


_DIRECTIVE_RE = re.compile(r"^\s*(?:import|export|part|library)\b")
_CLASS_RE = re.compile(
    r"(?:^|\s)(?:(?:abstract|sealed|base|final|interface)\s+)*"
    r"(?:class|mixin|enum|extension(?:\s+type)?)\s+([A-Za-z_$][\w$]*)"
)
_FUNCTION_RE = re.compile(r"([A-Za-z_$][\w$]*)\s*(?:<[^()]*>\s*)?\(")
# Metadata such as @override or @pragma('vm:entry-point'), one level of
# nested parentheses in the arguments.
_ANNOTATION_RE = re.compile(
    r"@[A-Za-z_$][\w$.]*(?:\s*\((?:[^()]|\([^()]*\))*\))?"
)
_KEYWORDS = frozenset(
    {"if", "for", "while", "switch", "return", "new", "const", "Function"}
)


class DartDeclarationExtractor:
    """Regex and brace-matching extractor for Dart top-level declarations."""

    def extract_declarations(self, source: str) -> list[Declaration]:
        declarations: list[Declaration] = []
        for start, body_open, end in _top_level_segments(source):
            if body_open is None:
                decl = _expression_declaration(source, start, end)
            else:
                decl = _block_declaration(source, start, body_open, end)
            if decl is not None:
                declarations.append(decl)
        return declarations

    def top_level_names(self, source: str) -> list[str]:
        return [d.name for d in self.extract_declarations(source)]


def _block_declaration(
    source: str, start: int, body_open: int, end: int
) -> Declaration | None:
    header = _strip_annotations(_strip_comments(source[start:body_open]))
    if _DIRECTIVE_RE.match(header):
        return None
    body = source[body_open + 1 : end - 1].strip()
    offset = start + _leading_blank(source[start:body_open])

    match = _CLASS_RE.search(header)
    if match:
        return Declaration(match.group(1), body, offset, end)

    match = _FUNCTION_RE.search(header)
    if match and match.group(1) not in _KEYWORDS:
        if "=" in header[: match.start()]:
            # Top-level variable initialised with a closure or call.
            return None
        return Declaration(match.group(1), body, offset, end)
    return None


def _expression_declaration(
    source: str, start: int, end: int
) -> Declaration | None:
    text = _strip_annotations(_strip_comments(source[start:end]))
    if _DIRECTIVE_RE.match(text) or "=>" not in text:
        return None
    header, _, expression = text.partition("=>")
    match = _FUNCTION_RE.search(header)
    if not match or match.group(1) in _KEYWORDS:
        return None
    if "=" in header[: match.start()]:
        return None
    body = expression.strip().rstrip(";").strip()
    offset = start + _leading_blank(source[start:end])
    return Declaration(match.group(1), body, offset, end)


def _leading_blank(text: str) -> int:
    return len(text) - len(text.lstrip())


_COMMENT_RE = re.compile(r"//[^\n]*|/\*.*?\*/", re.DOTALL)


def _strip_comments(text: str) -> str:
    return _COMMENT_RE.sub(" ", text).strip()


def _strip_annotations(text: str) -> str:
    return _ANNOTATION_RE.sub(" ", text).strip()


def _top_level_segments(source: str):
    """Yield ``(start, body_open, end)`` for each top-level segment.

    *body_open* is the offset of the opening brace of the segment's block,
    or ``None`` for segments terminated by ``;``.
    """
    i = 0
    n = len(source)
    seg_start = 0
    parens = 0
    while i < n:
        ch = source[i]
        skipped = _skip_trivia(source, i)
        if skipped != i:
            i = skipped
            continue
        # Braces inside a parameter list delimit named parameters.
        if ch in "([" or (ch == "{" and parens):
            parens += 1
        elif ch in ")]" or (ch == "}" and parens):
            parens = max(parens - 1, 0)
        elif ch == "{" and parens == 0:
            close = _matching_brace(source, i)
            yield seg_start, i, close + 1
            i = close + 1
            # A trailing ';' after a block belongs to the block.
            seg_start = i
            continue
        elif ch == "}":
            raise DeclarationParseError(
                f"Unbalanced '}}' at offset {i}"
            )
        elif ch == ";" and parens == 0:
            yield seg_start, None, i + 1
            seg_start = i + 1
        i += 1
    if parens:
        raise DeclarationParseError("Unbalanced parentheses at end of input")


def _matching_brace(source: str, open_at: int) -> int:
    depth = 0
    i = open_at
    n = len(source)
    while i < n:
        skipped = _skip_trivia(source, i)
        if skipped != i:
            i = skipped
            continue
        ch = source[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    raise DeclarationParseError(
        f"Unclosed '{{' opened at offset {open_at}"
    )


def _skip_trivia(source: str, i: int) -> int:
    """Return the offset after a comment or string starting at *i*.

    Returns *i* unchanged if no comment or string starts there.
    """
    if source.startswith("//", i):
        end = source.find("\n", i)
        return len(source) if end == -1 else end + 1
    if source.startswith("/*", i):
        end = source.find("*/", i + 2)
        if end == -1:
            raise DeclarationParseError(
                f"Unterminated block comment at offset {i}"
            )
        return end + 2

    raw = False
    j = i
    if source.startswith("r", i) and source[i + 1 : i + 2] in ("'", '"'):
        if i == 0 or not (source[i - 1].isalnum() or source[i - 1] == "_"):
            raw = True
            j = i + 1
    if j >= len(source) or source[j] not in ("'", '"'):
        return i

    quote = source[j]
    triple = source.startswith(quote * 3, j)
    delimiter = quote * 3 if triple else quote
    k = j + len(delimiter)
    while k < len(source):
        if not raw and source[k] == "\\":
            k += 2
            continue
        if source.startswith(delimiter, k):
            return k + len(delimiter)
        if not triple and source[k] == "\n":
            break
        k += 1
    raise DeclarationParseError(f"Unterminated string at offset {i}")
