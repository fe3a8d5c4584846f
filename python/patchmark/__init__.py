from importlib.metadata import PackageNotFoundError, version

from patchmark.applicator import apply_hunks, apply_patch_text, can_apply
from patchmark.diff import generate_patch, render_patch
from patchmark.document import Document, TextBuffer
from patchmark.locator import locate
from patchmark.markup import build_marker, scan_markers
from patchmark.models import ApplyOptions, ApplyResult, Hunk, Operation, OperationType, ParseResult, ReviewDecision
from patchmark.parser import parse_patch
from patchmark.review import ReviewSession, resolve_all

try:
    __version__ = version("patchmark")
except PackageNotFoundError:
    # Running from a source checkout without an installed distribution.
    __version__ = "0.0.0-dev"

__all__ = [
    "parse_patch",
    "locate",
    "build_marker",
    "scan_markers",
    "apply_hunks",
    "apply_patch_text",
    "can_apply",
    "resolve_all",
    "ReviewSession",
    "generate_patch",
    "render_patch",
    "Document",
    "TextBuffer",
    "ApplyOptions",
    "ApplyResult",
    "Hunk",
    "Operation",
    "OperationType",
    "ParseResult",
    "ReviewDecision",
    "__version__",
]
