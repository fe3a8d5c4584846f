from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PatchmarkError(Exception):
    """Base class for errors raised by the patch engine."""


class InvalidTransitionError(PatchmarkError, ValueError):
    """A resolved change was asked to change state again."""


class MarkerMismatchError(PatchmarkError, ValueError):
    """The markers in the live buffer no longer match a pending change."""


class SessionBusyError(PatchmarkError, RuntimeError):
    """A generation request is already outstanding."""


class OperationType(str, Enum):
    CONTEXT = "context"
    DELETE = "delete"
    ADD = "add"


class Operation(BaseModel):
    """
    One directive of a hunk.
    `content` is kept verbatim: deletions must match the document byte for byte.
    """

    model_config = ConfigDict(frozen=True)

    kind: OperationType
    content: str = ""


class Hunk(BaseModel):
    """
    One unit of change, anchored by the text that immediately precedes it.
    An empty context anchors the hunk at the start of the document.
    """

    model_config = ConfigDict(frozen=True)

    context: str = ""
    operations: List[Operation] = Field(default_factory=list)

    @property
    def changes(self) -> List[Operation]:
        return [op for op in self.operations if op.kind != OperationType.CONTEXT]

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    @property
    def deleted_text(self) -> str:
        return "".join(op.content for op in self.operations if op.kind == OperationType.DELETE)

    @property
    def added_text(self) -> str:
        return "".join(op.content for op in self.operations if op.kind == OperationType.ADD)

    @property
    def is_pure_insertion(self) -> bool:
        changes = self.changes
        return bool(changes) and all(op.kind == OperationType.ADD for op in changes)


class DiagnosticLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Diagnostic(BaseModel):
    """A recoverable problem recorded while parsing or applying a proposal."""

    level: DiagnosticLevel = DiagnosticLevel.WARNING
    code: str
    message: str
    line: Optional[int] = Field(None, description="1-based line in the proposal text.")
    hunk_index: Optional[int] = Field(None, description="0-based index into the parsed hunk list.")


class ParseResult(BaseModel):
    success: bool
    hunks: List[Hunk] = Field(default_factory=list)
    error: Optional[str] = None
    diagnostics: List[Diagnostic] = Field(default_factory=list)


class ResolutionState(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ReviewDecision(str, Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"


class PendingChange(BaseModel):
    """
    A hunk that was written into the buffer as a marker and awaits review.
    Only `resolved` (and `anchor_offset`, as neighbours resolve) ever changes.
    """

    id: str
    hunk: Hunk
    anchor_offset: int = Field(..., description="Offset of the marker in the buffer.")
    marker_text: str
    resolved: ResolutionState = ResolutionState.PENDING

    @property
    def is_pending(self) -> bool:
        return self.resolved == ResolutionState.PENDING


class MarkerKind(str, Enum):
    ADDITION = "addition"
    DELETION = "deletion"
    REPLACEMENT = "replacement"


class MarkerSpan(BaseModel):
    """A marker found in a buffer, with its [start, end) offsets."""

    model_config = ConfigDict(frozen=True)

    start: int
    end: int
    kind: MarkerKind
    deleted: str = ""
    added: str = ""


class ApplyOptions(BaseModel):
    highlight: bool = Field(True, description="Write review markers instead of editing directly.")
    search_before: int = Field(50, ge=0, description="Characters searched before the anchor on a delete mismatch.")
    search_after: int = Field(200, ge=0, description="Characters searched after the context on a delete mismatch.")


class ApplyResult(BaseModel):
    success: bool = True
    applied_count: int = 0
    final_text: str = ""
    changes: List[PendingChange] = Field(default_factory=list)
    diagnostics: List[Diagnostic] = Field(default_factory=list)
    error: Optional[str] = None
