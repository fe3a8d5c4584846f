"""
Writes patch proposals: serialises hunks to the wire format, and computes a
proposal that turns one text into another.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import structlog
from diff_match_patch import diff_match_patch

from patchmark.locator import locate_span
from patchmark.models import Hunk, Operation, OperationType
from patchmark.parser import ADD_PREFIX, CONTEXT_PREFIX, DELETE_PREFIX, TERMINATOR

logger = structlog.get_logger(__name__)

# (start, end, replacement) over the original text
Region = Tuple[int, int, str]


def render_patch(hunks: List[Hunk]) -> str:
    """
    Serialises hunks to the line-oriented format, one prefixed line per
    physical line of each payload, followed by the terminator.
    """
    lines = []
    for hunk in hunks:
        if "\n" in hunk.context:
            raise ValueError(f"Context must be a single line: {hunk.context[:50]!r}")
        lines.append(CONTEXT_PREFIX + hunk.context)
        for op in hunk.changes:
            prefix = DELETE_PREFIX if op.kind == OperationType.DELETE else ADD_PREFIX
            lines.extend(prefix + line for line in op.content.split("\n"))
    lines.append(TERMINATOR)
    return "\n".join(lines) + "\n"


@dataclass
class _Anchored:
    core: Region
    start: int
    replacement: str
    context: str
    cursor: int

    @property
    def end(self) -> int:
        return self.core[1]


def generate_patch(original_text: str, modified_text: str) -> str:
    """Returns a proposal that rewrites `original_text` into `modified_text`."""
    return render_patch(generate_hunks(original_text, modified_text))


def generate_hunks(original_text: str, modified_text: str) -> List[Hunk]:
    """
    Computes hunks from a word-level diff of the two texts.

    Each changed region is anchored by the part of its line that precedes
    it. When that prefix is empty, or would be found somewhere else first
    by a sequential search, the region is widened back over the previous
    line until its context is found exactly where it belongs.
    """
    anchored: List[_Anchored] = []
    cursor = 0

    for core in _diff_regions(original_text, modified_text):
        while True:
            start, replacement, context = _anchor(original_text, core, cursor)
            if anchored and start <= anchored[-1].end:
                # Widened into the previous region: fold both into one.
                prev = anchored.pop()
                core = (prev.core[0], core[1], prev.core[2] + original_text[prev.core[1] : core[0]] + core[2])
                cursor = prev.cursor
                continue
            break

        anchored.append(_Anchored(core=core, start=start, replacement=replacement, context=context, cursor=cursor))
        cursor = start

    hunks = [_to_hunk(original_text, item) for item in anchored]
    logger.debug("Generated hunks", count=len(hunks))
    return hunks


def _to_hunk(original_text: str, item: _Anchored) -> Hunk:
    deleted = original_text[item.start : item.end]
    added = item.replacement

    if item.start == item.end == 0 and original_text:
        # Insertions above the first line get a newline appended on apply.
        if added.endswith("\n"):
            added = added[:-1]
        else:
            deleted = original_text[:1]
            added = added + deleted

    operations = [Operation(kind=OperationType.CONTEXT, content=item.context)]
    if deleted:
        operations.append(Operation(kind=OperationType.DELETE, content=deleted))
    if added or not deleted:
        operations.append(Operation(kind=OperationType.ADD, content=added))
    return Hunk(context=item.context, operations=operations)


def _locate_like_applicator(text: str, context: str, cursor: int) -> Optional[Tuple[int, int]]:
    span = locate_span(text, context, cursor)
    if span is None and cursor > 0:
        span = locate_span(text, context, 0)
    return span


def _anchor(text: str, core: Region, cursor: int) -> Tuple[int, str, str]:
    """Returns (start, replacement, context) for a region, widening it leftwards as needed."""
    start, _, replacement = core
    while start > 0:
        line_start = text.rfind("\n", 0, start) + 1
        context = text[line_start:start]
        if context and _locate_like_applicator(text, context, cursor) == (line_start, start):
            return start, replacement, context

        widened = max(line_start - 1, 0)
        replacement = text[widened:start] + replacement
        start = widened

    return 0, replacement, ""


def _diff_regions(original_text: str, modified_text: str) -> List[Region]:
    dmp = diff_match_patch()

    # 1. Word-level tokenization & encoding
    chars1, chars2, token_array = _words_to_chars(original_text, modified_text)

    # 2. Diff the encoded strings, then decode back to text
    diffs = dmp.diff_main(chars1, chars2, False)
    dmp.diff_cleanupSemantic(diffs)
    dmp.diff_charsToLines(diffs, token_array)

    # 3. Coalesce each run of deletions/insertions between equal segments
    regions: List[Region] = []
    position = 0
    current: Optional[list] = None

    for op, text in diffs:
        if op == 0:
            if current:
                regions.append(tuple(current))
                current = None
            position += len(text)
            continue

        if current is None:
            current = [position, position, ""]
        if op == -1:
            position += len(text)
            current[1] = position
        else:
            current[2] += text

    if current:
        regions.append(tuple(current))

    return regions


def _words_to_chars(text1: str, text2: str) -> Tuple[str, str, List[str]]:
    """
    Splits text into words/tokens and encodes them as unique Unicode characters.
    """
    token_array: List[str] = []
    token_hash: Dict[str, int] = {}
    split_pattern = r"(\s+|\w+|[^\w\s])"

    def encode_text(text: str) -> str:
        tokens = [t for t in re.split(split_pattern, text) if t]
        encoded_chars = []
        for token in tokens:
            if token not in token_hash:
                token_hash[token] = len(token_array)
                token_array.append(token)
            encoded_chars.append(chr(token_hash[token]))
        return "".join(encoded_chars)

    chars1 = encode_text(text1)
    chars2 = encode_text(text2)
    return chars1, chars2, token_array
