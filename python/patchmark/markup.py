"""
Inline review markers (CriticMarkup) for pending changes.

- Additions:    {++added++}
- Deletions:    {--deleted--}
- Replacements: {~~deleted~>added~~}

The deleted text stays inside the marker verbatim until the change is
resolved, so the original document is always recoverable from the buffer.
"""

from typing import List, Optional, Tuple

from patchmark.models import Hunk, MarkerKind, MarkerSpan, OperationType

ADD_OPEN = "{++"
ADD_CLOSE = "++}"
DEL_OPEN = "{--"
DEL_CLOSE = "--}"
SUB_OPEN = "{~~"
SUB_SEP = "~>"
SUB_CLOSE = "~~}"

_DELIMITERS = (ADD_OPEN, ADD_CLOSE, DEL_OPEN, DEL_CLOSE, SUB_OPEN, SUB_CLOSE)

# (deleted, added); None marks the absent side of a pure addition/deletion.
Token = Tuple[Optional[str], Optional[str]]


def addition_marker(added: str) -> str:
    return f"{ADD_OPEN}{added}{ADD_CLOSE}"


def deletion_marker(deleted: str) -> str:
    return f"{DEL_OPEN}{deleted}{DEL_CLOSE}"


def replacement_marker(deleted: str, added: str) -> str:
    return f"{SUB_OPEN}{deleted}{SUB_SEP}{added}{SUB_CLOSE}"


def _encode_token(deleted: Optional[str], added: Optional[str]) -> str:
    if deleted is not None and added is not None:
        return replacement_marker(deleted, added)
    if deleted is not None:
        return deletion_marker(deleted)
    return addition_marker(added or "")


def hunk_tokens(hunk: Hunk) -> List[Token]:
    """
    Pairs each deletion with an immediately following addition.
    A deletion with no addition after it, or an addition with no deletion
    before it, stands alone.
    """
    tokens: List[Token] = []
    pending_delete: Optional[str] = None

    for op in hunk.changes:
        if op.kind == OperationType.DELETE:
            if pending_delete is not None:
                tokens.append((pending_delete, None))
            pending_delete = op.content
        else:
            tokens.append((pending_delete, op.content))
            pending_delete = None

    if pending_delete is not None:
        tokens.append((pending_delete, None))

    return tokens


def build_marker(hunk: Hunk) -> str:
    """Renders a hunk as the marker text that is spliced in at its anchor."""
    return "".join(_encode_token(deleted, added) for deleted, added in hunk_tokens(hunk))


def is_encodable(hunk: Hunk) -> bool:
    """
    False when a payload would make the marker ambiguous to scan back:
    a payload holding a marker delimiter, or a replaced text holding `~>`.
    """
    for deleted, added in hunk_tokens(hunk):
        for payload in (deleted, added):
            if payload and any(d in payload for d in _DELIMITERS):
                return False
        if deleted is not None and added is not None and SUB_SEP in deleted:
            return False
    return True


def render_span(span: MarkerSpan) -> str:
    """Re-encodes a scanned marker; render_span(s) == text[s.start:s.end]."""
    if span.kind == MarkerKind.REPLACEMENT:
        return replacement_marker(span.deleted, span.added)
    if span.kind == MarkerKind.DELETION:
        return deletion_marker(span.deleted)
    return addition_marker(span.added)


def scan_markers(text: str) -> List[MarkerSpan]:
    """
    Tokenizes `text` in a single left-to-right pass and returns every marker
    with its [start, end) offsets. An opener without a closer is plain text.
    """
    spans: List[MarkerSpan] = []
    pos = 0

    while True:
        idx = text.find("{", pos)
        if idx == -1:
            break

        opener = text[idx : idx + 3]
        body = idx + 3
        span = None

        if opener == ADD_OPEN:
            close = text.find(ADD_CLOSE, body)
            if close != -1:
                span = MarkerSpan(start=idx, end=close + 3, kind=MarkerKind.ADDITION, added=text[body:close])
        elif opener == DEL_OPEN:
            close = text.find(DEL_CLOSE, body)
            if close != -1:
                span = MarkerSpan(start=idx, end=close + 3, kind=MarkerKind.DELETION, deleted=text[body:close])
        elif opener == SUB_OPEN:
            close = text.find(SUB_CLOSE, body)
            if close != -1:
                inner = text[body:close]
                sep = inner.find(SUB_SEP)
                if sep != -1:
                    span = MarkerSpan(
                        start=idx,
                        end=close + 3,
                        kind=MarkerKind.REPLACEMENT,
                        deleted=inner[:sep],
                        added=inner[sep + len(SUB_SEP) :],
                    )

        if span is None:
            pos = idx + 1
            continue

        spans.append(span)
        pos = span.end

    return spans


def has_markers(text: str) -> bool:
    return bool(scan_markers(text))
