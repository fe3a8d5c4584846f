import argparse
import json
import logging
import sys
from pathlib import Path

import structlog

from patchmark import __version__
from patchmark.applicator import apply_hunks
from patchmark.diff import generate_patch
from patchmark.document import TextBuffer
from patchmark.markup import scan_markers
from patchmark.models import ApplyOptions, ReviewDecision
from patchmark.parser import parse_patch
from patchmark.review import resolve_all


def _configure_logging(verbose: bool):
    # Logs go to stderr; stdout carries command output.
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if verbose else logging.WARNING),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _read_text(path: Path) -> str:
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def _write_text(path: Path, text: str):
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(text)


def _with_suffix(path: Path, tag: str) -> Path:
    return path.with_name(f"{path.stem}_{tag}{path.suffix}")


def handle_parse(args):
    result = parse_patch(_read_text(args.patch))

    for diag in result.diagnostics:
        where = f" (line {diag.line})" if diag.line else ""
        print(f"[{diag.level.value}] {diag.code}{where}: {diag.message}", file=sys.stderr)

    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps([h.model_dump(mode="json") for h in result.hunks], indent=2, ensure_ascii=False))
        return

    print(f"Found {len(result.hunks)} hunks:", file=sys.stderr)
    for i, hunk in enumerate(result.hunks):
        print(f"[{i}] @ {hunk.context!r}")
        for op in hunk.changes:
            sign = "-" if op.kind.value == "delete" else "+"
            print(f"    {sign} {op.content!r}")


def handle_apply(args):
    text = _read_text(args.document)
    parsed = parse_patch(_read_text(args.patch))
    if not parsed.success:
        print(f"Error: {parsed.error}", file=sys.stderr)
        sys.exit(1)

    options = ApplyOptions(
        highlight=not args.direct,
        search_before=args.window_before,
        search_after=args.window_after,
    )
    buffer = TextBuffer(text)
    result = apply_hunks(buffer, parsed.hunks, options=options)

    output_path = args.output
    if not output_path:
        output_path = _with_suffix(args.document, "patched" if args.direct else "review")
    _write_text(output_path, result.final_text)

    for diag in parsed.diagnostics + result.diagnostics:
        hunk = f" hunk {diag.hunk_index}" if diag.hunk_index is not None else ""
        print(f"[{diag.level.value}]{hunk} {diag.code}: {diag.message}", file=sys.stderr)

    skipped = len(parsed.hunks) - result.applied_count
    print(f"✅ Saved to {output_path}", file=sys.stderr)
    print(f"Stats: {result.applied_count} applied, {skipped} skipped.", file=sys.stderr)
    if skipped > 0:
        sys.exit(1)


def _handle_resolve(args, decision: ReviewDecision, tag: str):
    text = _read_text(args.document)
    pending = len(scan_markers(text))
    resolved = resolve_all(text, decision)

    output_path = args.output
    if not output_path:
        output_path = args.document if args.in_place else _with_suffix(args.document, tag)
    _write_text(output_path, resolved)

    print(f"✅ Saved to {output_path}", file=sys.stderr)
    print(f"Stats: {pending} changes {tag}.", file=sys.stderr)


def handle_accept(args):
    _handle_resolve(args, ReviewDecision.ACCEPT, "accepted")


def handle_reject(args):
    _handle_resolve(args, ReviewDecision.REJECT, "rejected")


def handle_markers(args):
    spans = scan_markers(_read_text(args.document))
    if args.json:
        print(json.dumps([s.model_dump(mode="json") for s in spans], indent=2, ensure_ascii=False))
        return

    print(f"Found {len(spans)} pending changes:", file=sys.stderr)
    for span in spans:
        if span.kind.value == "addition":
            print(f"[+] @{span.start} {span.added!r}")
        elif span.kind.value == "deletion":
            print(f"[-] @{span.start} {span.deleted!r}")
        else:
            print(f"[~] @{span.start} {span.deleted!r} -> {span.added!r}")


def handle_diff(args):
    patch = generate_patch(_read_text(args.original), _read_text(args.modified))
    if args.output:
        _write_text(args.output, patch)
        print(f"Wrote patch to {args.output}", file=sys.stderr)
    else:
        sys.stdout.write(patch)


def main():
    parser = argparse.ArgumentParser(prog="patchmark", description="Patchmark: reviewable patch proposals for text")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", action="store_true", help="Log debug output to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Subcommands")

    p_parse = subparsers.add_parser("parse", help="Parse a patch proposal and list its hunks")
    p_parse.add_argument("patch", type=Path, help="Patch proposal file")
    p_parse.add_argument("--json", action="store_true", help="Output hunks as JSON")
    p_parse.set_defaults(func=handle_parse)

    p_apply = subparsers.add_parser("apply", help="Apply a patch proposal to a document")
    p_apply.add_argument("document", type=Path, help="Document to patch")
    p_apply.add_argument("patch", type=Path, help="Patch proposal file")
    p_apply.add_argument("-o", "--output", type=Path, help="Output path (default: <document>_review)")
    p_apply.add_argument("--direct", action="store_true", help="Apply edits directly instead of writing review markers")
    p_apply.add_argument(
        "--window-before",
        type=int,
        default=ApplyOptions().search_before,
        help="Characters searched before a context when deleted text does not match",
    )
    p_apply.add_argument(
        "--window-after",
        type=int,
        default=ApplyOptions().search_after,
        help="Characters searched after a context when deleted text does not match",
    )
    p_apply.set_defaults(func=handle_apply)

    for name, handler, verb in (("accept", handle_accept, "Accept"), ("reject", handle_reject, "Reject")):
        p_resolve = subparsers.add_parser(name, help=f"{verb} every pending change in a document")
        p_resolve.add_argument("document", type=Path, help="Document containing review markers")
        p_resolve.add_argument("-o", "--output", type=Path, help=f"Output path (default: <document>_{name}ed)")
        p_resolve.add_argument("-i", "--in-place", action="store_true", help="Overwrite the document")
        p_resolve.set_defaults(func=handler)

    p_markers = subparsers.add_parser("markers", help="List pending changes in a document")
    p_markers.add_argument("document", type=Path, help="Document containing review markers")
    p_markers.add_argument("--json", action="store_true", help="Output markers as JSON")
    p_markers.set_defaults(func=handle_markers)

    p_diff = subparsers.add_parser("diff", help="Write a patch proposal that turns one file into another")
    p_diff.add_argument("original", type=Path, help="Original text file")
    p_diff.add_argument("modified", type=Path, help="Modified text file")
    p_diff.add_argument("-o", "--output", type=Path, help="Output patch path (default: stdout)")
    p_diff.set_defaults(func=handle_diff)

    args = parser.parse_args()
    _configure_logging(args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
