"""
Applies parsed hunks to a live document.

All hunks are located against one snapshot of the document, then written
back to front so earlier writes never move the offsets of writes still
pending. A hunk that cannot be located, or whose deleted text does not
match the document, is dropped on its own; the rest of the batch still
applies.
"""

import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import structlog

from patchmark.document import Document, TextBuffer
from patchmark.locator import locate_span
from patchmark.markup import build_marker, has_markers, is_encodable, scan_markers
from patchmark.models import (
    ApplyOptions,
    ApplyResult,
    Diagnostic,
    DiagnosticLevel,
    Hunk,
    Operation,
    OperationType,
    PendingChange,
    ReviewDecision,
)
from patchmark.parser import parse_patch
from patchmark.review import resolve_spans

logger = structlog.get_logger(__name__)


@dataclass
class _LocatedHunk:
    index: int
    hunk: Hunk
    start: int
    end: int


def _as_block_insertion(hunk: Hunk) -> Hunk:
    """Terminates the last added line so the insertion sits on its own lines."""
    operations = list(hunk.operations)
    for i in range(len(operations) - 1, -1, -1):
        if operations[i].kind == OperationType.ADD:
            operations[i] = Operation(kind=OperationType.ADD, content=operations[i].content + "\n")
            break
    return Hunk(context=hunk.context, operations=operations)


def _effective_hunk(hunk: Hunk, text: str) -> Hunk:
    # Lines added above the first line of a non-empty document keep it on its own line.
    if not hunk.context and hunk.is_pure_insertion and text:
        return _as_block_insertion(hunk)
    return hunk


def _search_nearby(text: str, needle: str, anchor: int, after: int, options: ApplyOptions) -> Optional[int]:
    """Finds the occurrence of `needle` closest to `after` inside the search window; ties go to the earlier one."""
    window_start = max(0, anchor - options.search_before)
    window_end = min(len(text), after + options.search_after)

    best = None
    idx = text.find(needle, window_start, window_end)
    while idx != -1:
        if best is None or abs(idx - after) < abs(best - after):
            best = idx
        idx = text.find(needle, idx + 1, window_end)
    return best


def _locate_hunks(text: str, hunks: List[Hunk], options: ApplyOptions) -> Tuple[List[_LocatedHunk], List[Diagnostic]]:
    located: List[_LocatedHunk] = []
    diagnostics: List[Diagnostic] = []
    cursor = 0

    for index, hunk in enumerate(hunks):
        if not hunk.has_changes:
            logger.debug(f"Skipping hunk {index}: no changes")
            continue

        span = locate_span(text, hunk.context, cursor)
        if span is None and cursor > 0:
            # Hunks may be listed out of document order.
            logger.debug(f"Hunk {index}: context not found after {cursor}, retrying from the top")
            span = locate_span(text, hunk.context, 0)

        if span is None:
            logger.warning(f"Skipping hunk {index}: context not found: '{hunk.context[:50]}'")
            diagnostics.append(
                Diagnostic(
                    code="context_not_found",
                    message=f"Context not found: {hunk.context[:50]!r}",
                    hunk_index=index,
                )
            )
            continue

        anchor, after = span
        cursor = after

        deleted = hunk.deleted_text
        start = after
        if deleted and text[after : after + len(deleted)] != deleted:
            found = _search_nearby(text, deleted, anchor, after, options)
            if found is None:
                logger.warning(
                    f"Skipping hunk {index}: deleted text does not match the document",
                    expected=deleted[:50],
                    actual=text[after : after + len(deleted)][:50],
                    offset=after,
                )
                diagnostics.append(
                    Diagnostic(
                        code="delete_mismatch",
                        message=f"Text to delete not found near offset {after}: {deleted[:50]!r}",
                        hunk_index=index,
                    )
                )
                continue

            logger.info(f"Hunk {index}: deleted text found nearby", offset=found, expected_offset=after)
            diagnostics.append(
                Diagnostic(
                    level=DiagnosticLevel.INFO,
                    code="delete_relocated",
                    message=f"Text to delete found at offset {found} instead of {after}.",
                    hunk_index=index,
                )
            )
            start = found

        located.append(_LocatedHunk(index=index, hunk=_effective_hunk(hunk, text), start=start, end=start + len(deleted)))

    return located, diagnostics


def _drop_overlaps(located: List[_LocatedHunk]) -> Tuple[List[_LocatedHunk], List[Diagnostic]]:
    """First hunk in proposal order wins when replaced regions overlap."""
    kept: List[_LocatedHunk] = []
    diagnostics: List[Diagnostic] = []

    for item in located:
        clash = next((k for k in kept if item.start < k.end and item.end > k.start), None)
        if clash is not None:
            logger.warning(f"Skipping hunk {item.index}: overlaps hunk {clash.index}")
            diagnostics.append(
                Diagnostic(
                    code="overlap",
                    message=f"Overlaps the change made by hunk {clash.index}.",
                    hunk_index=item.index,
                )
            )
            continue
        kept.append(item)

    return kept, diagnostics


def _write(document: Document, item: _LocatedHunk, rendered: str):
    if item.start == item.end:
        document.insert_text(item.start, rendered)
    elif not rendered:
        document.delete_text(item.start, item.end - item.start)
    else:
        document.replace_range(rendered, item.start, item.end)


def _existing_markers(text: str) -> List[Diagnostic]:
    """Review markers already in the buffer cannot be told apart from new ones."""
    spans = scan_markers(text)
    if not spans:
        return []
    logger.warning("Document already contains review markers", markers=len(spans), first_offset=spans[0].start)
    return [
        Diagnostic(
            code="document_has_markers",
            message=f"Document already contains {len(spans)} review marker(s); resolve them before highlighting.",
        )
    ]


def _preview(text: str, items: List[_LocatedHunk], rendered: Dict[int, str]) -> Tuple[str, List[Tuple[int, int]]]:
    """Builds the highlighted text in memory, with the offsets each marker token should scan at."""
    parts = []
    expected: List[Tuple[int, int]] = []
    pos = 0
    shift = 0
    for item in sorted(items, key=lambda x: (x.start, x.end, x.index)):
        marker = rendered[item.index]
        base = item.start + shift
        parts.append(text[pos : item.start])
        parts.append(marker)
        expected.extend((base + span.start, base + span.end) for span in scan_markers(marker))
        pos = item.end
        shift += len(marker) - (item.end - item.start)
    parts.append(text[pos:])
    return "".join(parts), expected


def _scans_cleanly(text: str, items: List[_LocatedHunk], rendered: Dict[int, str]) -> bool:
    preview, expected = _preview(text, items, rendered)
    spans = scan_markers(preview)
    if [(span.start, span.end) for span in spans] != expected:
        return False
    # Accepting must leave plain text behind, or a later resolve would rewrite it.
    return not has_markers(resolve_spans(preview, spans, ReviewDecision.ACCEPT))


def _drop_marker_collisions(
    text: str, located: List[_LocatedHunk], rendered: Dict[int, str]
) -> Tuple[List[_LocatedHunk], List[Diagnostic]]:
    """Keeps hunks in proposal order while the combined markers still scan back exactly."""
    kept: List[_LocatedHunk] = []
    diagnostics: List[Diagnostic] = []

    for item in located:
        if _scans_cleanly(text, kept + [item], rendered):
            kept.append(item)
            continue
        logger.warning(f"Skipping hunk {item.index}: marker would merge with surrounding text")
        diagnostics.append(
            Diagnostic(
                code="marker_collision",
                message="Marker would combine with the surrounding text into different markers.",
                hunk_index=item.index,
            )
        )

    return kept, diagnostics


def can_apply(text: str, hunks: List[Hunk], options: Optional[ApplyOptions] = None) -> Tuple[bool, List[Diagnostic]]:
    """Checks that every hunk locates and matches `text` without writing anything."""
    options = options or ApplyOptions()
    if options.highlight:
        existing = _existing_markers(text)
        if existing:
            return False, existing

    located, diagnostics = _locate_hunks(text, hunks, options)
    kept, overlap_diagnostics = _drop_overlaps(located)
    diagnostics.extend(overlap_diagnostics)

    expected = sum(1 for hunk in hunks if hunk.has_changes)
    return len(kept) == expected, diagnostics


def apply_hunks(
    document: Document,
    hunks: List[Hunk],
    options: Optional[ApplyOptions] = None,
    highlight: Optional[bool] = None,
) -> ApplyResult:
    """
    Applies hunks to `document`.

    In highlight mode each hunk is written as a review marker (the deleted
    text stays recoverable inside it) and reported as a PendingChange.
    A document that already holds markers is left untouched, and a hunk
    whose marker would not scan back on its own is skipped.
    Otherwise deletions and additions are applied directly.

    Returns:
        ApplyResult with the number of hunks written, the final buffer text
        and diagnostics for every hunk that was skipped.
    """
    options = options or ApplyOptions()
    if highlight is not None:
        options = options.model_copy(update={"highlight": highlight})

    text = document.get_value()

    if options.highlight:
        existing = _existing_markers(text)
        if existing:
            return ApplyResult(success=True, applied_count=0, final_text=text, diagnostics=existing)

    located, diagnostics = _locate_hunks(text, hunks, options)

    if options.highlight:
        encodable = []
        for item in located:
            if is_encodable(item.hunk):
                encodable.append(item)
                continue
            logger.warning(f"Skipping hunk {item.index}: payload contains marker syntax")
            diagnostics.append(
                Diagnostic(
                    code="unencodable_payload",
                    message="Payload contains review marker syntax and cannot be highlighted.",
                    hunk_index=item.index,
                )
            )
        located = encodable

    kept, overlap_diagnostics = _drop_overlaps(located)
    diagnostics.extend(overlap_diagnostics)

    if options.highlight:
        rendered = {item.index: build_marker(item.hunk) for item in kept}
        kept, collision_diagnostics = _drop_marker_collisions(text, kept, rendered)
        diagnostics.extend(collision_diagnostics)
    else:
        rendered = {item.index: item.hunk.added_text for item in kept}

    for item in sorted(kept, key=lambda x: (x.start, x.end, x.index), reverse=True):
        _write(document, item, rendered[item.index])

    changes: List[PendingChange] = []
    if options.highlight:
        batch = uuid.uuid4().hex[:8]
        shift = 0
        for item in sorted(kept, key=lambda x: (x.start, x.end, x.index)):
            marker = rendered[item.index]
            changes.append(
                PendingChange(
                    id=f"chg-{batch}-{item.index}",
                    hunk=item.hunk,
                    anchor_offset=item.start + shift,
                    marker_text=marker,
                )
            )
            shift += len(marker) - (item.end - item.start)

    logger.info(
        "Applied proposal",
        applied=len(kept),
        hunks=len(hunks),
        highlight=options.highlight,
        skipped=len(hunks) - len(kept),
    )

    return ApplyResult(
        success=True,
        applied_count=len(kept),
        final_text=document.get_value(),
        changes=changes,
        diagnostics=diagnostics,
    )


def apply_patch_text(
    text: str,
    patch_text: str,
    options: Optional[ApplyOptions] = None,
    highlight: Optional[bool] = None,
) -> ApplyResult:
    """Parses `patch_text` and applies it to a copy of `text`."""
    parsed = parse_patch(patch_text)
    if not parsed.success:
        return ApplyResult(success=False, final_text=text, error=parsed.error, diagnostics=parsed.diagnostics)

    result = apply_hunks(TextBuffer(text), parsed.hunks, options=options, highlight=highlight)
    result.diagnostics = parsed.diagnostics + result.diagnostics
    return result
