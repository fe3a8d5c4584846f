import json
import logging
import sys
from pathlib import Path
from typing import Optional

import structlog
from mcp.server.fastmcp import FastMCP

from patchmark.applicator import apply_hunks
from patchmark.diff import generate_patch
from patchmark.document import TextBuffer
from patchmark.markup import scan_markers
from patchmark.models import ApplyOptions, ReviewDecision
from patchmark.parser import parse_patch
from patchmark.review import resolve_all

# --- LOGGING CONFIGURATION ---
# MCP communicates over stdio.
# CRITICAL: All logs must go to stderr. Any print to stdout will break the JSON-RPC protocol.
logging.basicConfig(stream=sys.stderr, level=logging.INFO, force=True)

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
)

mcp = FastMCP("Patchmark Review Service")


def _read_text(path: str) -> str:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"File not found: {path}")
    with open(p, "r", encoding="utf-8", newline="") as f:
        return f.read()


def _save_text(path: str, text: str):
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(text)


@mcp.tool()
def parse_patch_text(patch_text: str) -> str:
    """
    Parses a patch proposal and returns its hunks as JSON.

    Format:
        @<context>        text immediately before the change (empty = top of document)
        -<text to delete> one line per deleted line
        +<text to add>    one line per added line
        [EOF]
    """
    try:
        result = parse_patch(patch_text)
        return json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False)
    except Exception as e:
        return f"Error parsing patch: {str(e)}"


@mcp.tool()
def apply_patch_to_file(
    document_path: str,
    patch_text: str,
    highlight: bool = True,
    output_path: Optional[str] = None,
) -> str:
    """
    Applies a patch proposal to a text file.

    Args:
        document_path: Absolute path to the text or Markdown file.
        patch_text: The proposal in @/-/+/[EOF] format.
        highlight: If True (default), writes review markers instead of editing:
                   {++added++}, {--deleted--}, {~~old~>new~~}.
                   If False, applies the edits directly.
        output_path: Optional. Defaults to <name>_review (highlight) or <name>_patched.
    """
    try:
        text = _read_text(document_path)
        parsed = parse_patch(patch_text)
        if not parsed.success:
            return f"Error: {parsed.error}"

        result = apply_hunks(TextBuffer(text), parsed.hunks, options=ApplyOptions(highlight=highlight))

        if not output_path:
            p = Path(document_path)
            tag = "review" if highlight else "patched"
            output_path = str(p.parent / f"{p.stem}_{tag}{p.suffix}")
        _save_text(output_path, result.final_text)

        skipped = len(parsed.hunks) - result.applied_count
        notes = "; ".join(f"{d.code}: {d.message}" for d in parsed.diagnostics + result.diagnostics)
        summary = f"Applied {result.applied_count} hunks. Skipped {skipped} hunks. Saved to: {output_path}"
        return f"{summary}\n{notes}" if notes else summary

    except Exception as e:
        return f"Error applying patch: {str(e)}"


@mcp.tool()
def resolve_review_markers(document_path: str, decision: ReviewDecision, output_path: Optional[str] = None) -> str:
    """
    Accepts or rejects every pending change in a file.

    ACCEPT keeps the proposed text; REJECT restores the original text.
    Updates the file in place unless output_path is given.
    """
    try:
        text = _read_text(document_path)
        pending = len(scan_markers(text))
        _save_text(output_path or document_path, resolve_all(text, decision))
        return f"Resolved {pending} changes ({ReviewDecision(decision).value}). Saved to: {output_path or document_path}"
    except Exception as e:
        return f"Error resolving changes: {str(e)}"


@mcp.tool()
def list_review_markers(document_path: str) -> str:
    """Lists the pending changes (review markers) in a file as JSON."""
    try:
        spans = scan_markers(_read_text(document_path))
        return json.dumps([s.model_dump(mode="json") for s in spans], indent=2, ensure_ascii=False)
    except Exception as e:
        return f"Error reading markers: {str(e)}"


@mcp.tool()
def diff_files_as_patch(original_path: str, modified_path: str) -> str:
    """
    Compares two text files and returns a patch proposal that turns the
    original into the modified file.
    """
    try:
        return generate_patch(_read_text(original_path), _read_text(modified_path))
    except Exception as e:
        return f"Error computing diff: {str(e)}"


def main():
    mcp.run()


if __name__ == "__main__":
    main()
