"""
Review of pending changes: turns markers back into plain text.

Accept keeps the proposed text (additions stay, deletions go); reject keeps
the original text (additions go, deletions stay). Text without markers
passes through unchanged, and resolved text never holds markers, so
resolving twice is the same as resolving once.
"""

from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from patchmark.document import Document
from patchmark.markup import render_span, scan_markers
from patchmark.models import (
    InvalidTransitionError,
    MarkerMismatchError,
    MarkerSpan,
    PendingChange,
    ResolutionState,
    ReviewDecision,
)

logger = structlog.get_logger(__name__)

_TARGET_STATE = {
    ReviewDecision.ACCEPT: ResolutionState.ACCEPTED,
    ReviewDecision.REJECT: ResolutionState.REJECTED,
}


def resolved_text(span: MarkerSpan, decision: ReviewDecision) -> str:
    if decision == ReviewDecision.ACCEPT:
        return span.added
    return span.deleted


def resolve_spans(text: str, spans: Iterable[MarkerSpan], decision: ReviewDecision) -> str:
    """Substitutes the given (ordered, non-overlapping) markers and nothing else."""
    parts = []
    pos = 0
    for span in spans:
        parts.append(text[pos : span.start])
        parts.append(resolved_text(span, decision))
        pos = span.end
    parts.append(text[pos:])
    return "".join(parts)


def resolve_all(text: str, decision: ReviewDecision) -> str:
    """
    Resolves every marker in `text` the same way.
    Substitution can join leftover delimiters into a new marker, so passes
    repeat until none is left; each pass shortens the text.
    """
    decision = ReviewDecision(decision)
    spans = scan_markers(text)
    while spans:
        text = resolve_spans(text, spans, decision)
        spans = scan_markers(text)
    return text


def resolve_document(document: Document, decision: ReviewDecision) -> str:
    current = document.get_value()
    updated = resolve_all(current, decision)
    if updated != current:
        document.set_value(updated)
    return updated


class ReviewSession:
    """
    Tracks the pending changes written by one highlighted apply and resolves
    them against the live document, one at a time or all together.

    Each change is Pending until it is accepted or rejected; both are final.
    """

    def __init__(self, document: Document, changes: List[PendingChange]):
        self.document = document
        self.changes = sorted(changes, key=lambda c: c.anchor_offset)
        self._by_id: Dict[str, PendingChange] = {c.id: c for c in self.changes}

    def get(self, change_id: str) -> PendingChange:
        try:
            return self._by_id[change_id]
        except KeyError:
            raise KeyError(f"Unknown change id: {change_id}") from None

    def pending(self) -> List[PendingChange]:
        return [c for c in self.changes if c.is_pending]

    @property
    def is_complete(self) -> bool:
        return not self.pending()

    def summary(self) -> Dict[str, int]:
        counts = {state.value: 0 for state in ResolutionState}
        for change in self.changes:
            counts[change.resolved.value] += 1
        counts["total"] = len(self.changes)
        return counts

    def accept(self, change_id: str) -> str:
        return self.resolve(change_id, ReviewDecision.ACCEPT)

    def reject(self, change_id: str) -> str:
        return self.resolve(change_id, ReviewDecision.REJECT)

    def accept_all(self) -> str:
        return self.resolve_all(ReviewDecision.ACCEPT)

    def reject_all(self) -> str:
        return self.resolve_all(ReviewDecision.REJECT)

    def resolve(self, change_id: str, decision: ReviewDecision) -> str:
        """Resolves a single change by rewriting only its own marker span."""
        decision = ReviewDecision(decision)
        change = self.get(change_id)
        self._check_pending(change)

        text = self.document.get_value()
        start, end, spans = self._find_marker(text, change)

        replacement = "".join(resolved_text(span, decision) for span in spans)
        self.document.replace_range(replacement, start, end)
        change.resolved = _TARGET_STATE[decision]

        delta = len(replacement) - (end - start)
        for other in self.pending():
            if other.anchor_offset > change.anchor_offset:
                other.anchor_offset += delta

        logger.info("Resolved change", change_id=change_id, decision=decision.value)
        return self.document.get_value()

    def resolve_all(self, decision: ReviewDecision) -> str:
        decision = ReviewDecision(decision)
        updated = resolve_document(self.document, decision)
        resolved = 0
        for change in self.pending():
            change.resolved = _TARGET_STATE[decision]
            resolved += 1
        logger.info("Resolved all changes", decision=decision.value, resolved=resolved)
        return updated

    def _check_pending(self, change: PendingChange):
        if not change.is_pending:
            raise InvalidTransitionError(f"Change {change.id} is already {change.resolved.value}")

    def _find_marker(self, text: str, change: PendingChange) -> Tuple[int, int, List[MarkerSpan]]:
        """
        Finds the run of adjacent markers that renders exactly to the change's
        marker text, preferring the run closest to its recorded anchor.
        """
        spans = scan_markers(text)
        size = len(scan_markers(change.marker_text))

        best: Optional[Tuple[int, int, List[MarkerSpan]]] = None
        for i in range(len(spans) - size + 1):
            group = spans[i : i + size]
            if any(group[k].end != group[k + 1].start for k in range(size - 1)):
                continue
            if "".join(render_span(s) for s in group) != change.marker_text:
                continue
            candidate = (group[0].start, group[-1].end, group)
            if best is None or abs(candidate[0] - change.anchor_offset) < abs(best[0] - change.anchor_offset):
                best = candidate

        if best is None:
            logger.warning("Marker for change not found in document", change_id=change.id)
            raise MarkerMismatchError(f"Markers for change {change.id} are no longer in the document")
        return best
