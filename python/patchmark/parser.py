"""
Parser for the line-oriented patch proposal format.

    @<context>
    -<text to delete>
    +<text to add>
    [EOF]

Each physical line of a multi-line payload carries its own prefix; runs of
the same directive inside a hunk are joined back together with newlines.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import structlog

from patchmark.models import Diagnostic, DiagnosticLevel, Hunk, Operation, OperationType, ParseResult

logger = structlog.get_logger(__name__)

TERMINATOR = "[EOF]"
CONTEXT_PREFIX = "@"
DELETE_PREFIX = "-"
ADD_PREFIX = "+"
DIRECTIVE_PREFIXES = (CONTEXT_PREFIX, DELETE_PREFIX, ADD_PREFIX)


@dataclass
class _HunkBuilder:
    context: str
    implicit: bool = False
    runs: List[tuple] = field(default_factory=list)  # (OperationType, [payload lines])

    def push(self, kind: OperationType, payload: str):
        if self.runs and self.runs[-1][0] == kind:
            self.runs[-1][1].append(payload)
        else:
            self.runs.append((kind, [payload]))

    def build(self) -> Optional[Hunk]:
        if not self.runs:
            return None
        operations = []
        if not self.implicit:
            operations.append(Operation(kind=OperationType.CONTEXT, content=self.context))
        for kind, parts in self.runs:
            operations.append(Operation(kind=kind, content="\n".join(parts)))
        return Hunk(context=self.context, operations=operations)


def _is_terminator(line: str) -> bool:
    return line.strip() == TERMINATOR


def _looks_like_directive(line: str) -> bool:
    return line.lstrip()[:1] in DIRECTIVE_PREFIXES


def _find_body(lines: List[str]) -> tuple:
    """
    Returns (start, end, has_terminator): the slice of lines holding the patch body.
    Prose before the first context line and after the last terminator is cut off.
    """
    end = None
    for i in range(len(lines) - 1, -1, -1):
        if _is_terminator(lines[i]):
            end = i
            break

    has_terminator = end is not None
    if end is None:
        end = len(lines)

    start = 0
    for i in range(end):
        if lines[i].startswith(CONTEXT_PREFIX):
            start = i
            break

    # A top-of-document insertion may precede the first context line.
    while start > 0 and (lines[start - 1].startswith(ADD_PREFIX) or not lines[start - 1].strip()):
        start -= 1

    return start, end, has_terminator


def parse_patch(raw_text: str) -> ParseResult:
    """
    Parses a patch proposal into an ordered list of hunks.

    Only two conditions are fatal: input with no directive and no terminator
    ("not a patch"), and a deletion before any context line. Anything else
    that cannot be understood is skipped and reported in `diagnostics`.
    """
    text = (raw_text or "").replace("\r\n", "\n")
    lines = text.split("\n")
    diagnostics: List[Diagnostic] = []

    start, end, has_terminator = _find_body(lines)

    if not has_terminator:
        if not any(_looks_like_directive(line) for line in lines):
            logger.error("Proposal contains no patch directives", length=len(text))
            return ParseResult(
                success=False,
                error="Not a patch: expected lines starting with '@', '-' or '+'.",
            )
        logger.warning("Proposal has no terminator; assuming end of input")
        diagnostics.append(
            Diagnostic(code="missing_terminator", message=f"No {TERMINATOR} line found; parsed to end of input.")
        )

    hunks: List[Hunk] = []
    current: Optional[_HunkBuilder] = None
    directives = 0
    skipped = 0

    def close(builder: Optional[_HunkBuilder]):
        if builder is None:
            return
        hunk = builder.build()
        if hunk is None:
            logger.debug("Dropping hunk without changes", context=builder.context)
            return
        hunks.append(hunk)

    for number, line in enumerate(lines[start:end], start=start + 1):
        if not line.strip():
            continue

        if _is_terminator(line):
            diagnostics.append(
                Diagnostic(
                    level=DiagnosticLevel.INFO,
                    code="extra_terminator",
                    message=f"Ignored an earlier {TERMINATOR} line.",
                    line=number,
                )
            )
            continue

        prefix = line[:1]
        if prefix not in DIRECTIVE_PREFIXES:
            stripped = line.lstrip()
            if stripped[:1] in DIRECTIVE_PREFIXES:
                logger.warning(f"Line {number}: recovered indented directive", line=line[:50])
                diagnostics.append(
                    Diagnostic(code="recovered_line", message="Leading whitespace before directive ignored.", line=number)
                )
                line = stripped
                prefix = line[:1]
            else:
                skipped += 1
                logger.warning(f"Line {number}: skipping unrecognised line", line=line[:50])
                diagnostics.append(
                    Diagnostic(code="skipped_line", message=f"Unrecognised line skipped: {line[:50]!r}", line=number)
                )
                continue

        directives += 1
        payload = line[1:]

        if prefix == CONTEXT_PREFIX:
            close(current)
            current = _HunkBuilder(context=payload)
        elif prefix == DELETE_PREFIX:
            if current is None:
                logger.error(f"Line {number}: delete before context")
                return ParseResult(
                    success=False,
                    error=f"Line {number}: delete before context (a '-' line needs a preceding '@' line).",
                    diagnostics=diagnostics,
                )
            current.push(OperationType.DELETE, payload)
        else:
            if current is None:
                current = _HunkBuilder(context="", implicit=True)
            current.push(OperationType.ADD, payload)

    close(current)

    if not directives and skipped:
        logger.error("Proposal contains only prose", skipped=skipped)
        return ParseResult(
            success=False,
            error="Not a patch: expected lines starting with '@', '-' or '+'.",
            diagnostics=diagnostics,
        )

    logger.debug("Parsed proposal", hunks=len(hunks), diagnostics=len(diagnostics))
    return ParseResult(success=True, hunks=hunks, diagnostics=diagnostics)
