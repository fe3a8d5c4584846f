"""
Tests for patchmark.applicator: writing hunks into a document.

Run: python3 test_applicator.py
From: python/
"""

import sys

sys.path.insert(0, '.')

from patchmark.applicator import apply_hunks, apply_patch_text, can_apply
from patchmark.document import TextBuffer
from patchmark.markup import has_markers
from patchmark.models import ApplyOptions, ReviewDecision
from patchmark.parser import parse_patch
from patchmark.review import resolve_all


def _apply(text, patch, highlight=True, options=None):
    buffer = TextBuffer(text)
    parsed = parse_patch(patch)
    assert parsed.success, parsed.error
    result = apply_hunks(buffer, parsed.hunks, options=options, highlight=highlight)
    return buffer, result


def _codes(result):
    return [d.code for d in result.diagnostics]


# ---------------------------------------------------------------------------
# Basic application
# ---------------------------------------------------------------------------

def test_replace_word_highlighted():
    buffer, result = _apply("# Title\nHello world", "@# \n-Title\n+Heading\n[EOF]")
    assert result.success
    assert result.applied_count == 1
    assert result.final_text == "# {~~Title~>Heading~~}\nHello world"
    assert buffer.get_value() == result.final_text
    assert len(result.changes) == 1
    change = result.changes[0]
    assert change.anchor_offset == 2
    assert change.marker_text == "{~~Title~>Heading~~}"
    assert change.is_pending
    print("PASS: test_replace_word_highlighted")


def test_replace_word_direct():
    buffer, result = _apply("# Title\nHello world", "@# \n-Title\n+Heading\n[EOF]", highlight=False)
    assert result.final_text == "# Heading\nHello world"
    assert result.changes == []
    assert buffer.mutations == [("replace_range", 2, 7, "Heading")]
    print("PASS: test_replace_word_direct")


def test_insert_at_top_of_document():
    _, result = _apply("Body text", "+# New Title\n+\n[EOF]")
    assert result.applied_count == 1
    assert result.final_text == "{++# New Title\n\n++}Body text"
    assert resolve_all(result.final_text, ReviewDecision.ACCEPT) == "# New Title\n\nBody text"
    assert resolve_all(result.final_text, ReviewDecision.REJECT) == "Body text"

    _, direct = _apply("Body text", "+# New Title\n+\n[EOF]", highlight=False)
    assert direct.final_text == "# New Title\n\nBody text"
    print("PASS: test_insert_at_top_of_document")


def test_insert_into_empty_document():
    _, result = _apply("", "@\n+hello\n[EOF]", highlight=False)
    assert result.final_text == "hello"
    print("PASS: test_insert_into_empty_document")


def test_missing_terminator_still_applies():
    _, result = _apply("Body", "@Body\n+ Content", highlight=False)
    assert result.final_text == "Body Content"
    print("PASS: test_missing_terminator_still_applies")


def test_context_not_found_leaves_document_untouched():
    buffer, result = _apply("Hello world", "@Missing context\n-x\n+y\n[EOF]")
    assert result.success
    assert result.applied_count == 0
    assert result.final_text == "Hello world"
    assert buffer.mutations == []
    assert "context_not_found" in _codes(result)
    assert result.diagnostics[0].hunk_index == 0
    print("PASS: test_context_not_found_leaves_document_untouched")


def test_delete_only_uses_delete_text():
    buffer, result = _apply("keep remove keep", "@keep \n-remove \n[EOF]", highlight=False)
    assert result.final_text == "keep keep"
    assert buffer.mutations == [("delete_text", 5, 7)]

    _, highlighted = _apply("keep remove keep", "@keep \n-remove \n[EOF]")
    assert highlighted.final_text == "keep {--remove --}keep"
    print("PASS: test_delete_only_uses_delete_text")


def test_multiline_replacement():
    patch = "@Intro\n-\n-Line one\n-Line two\n+\n+Replaced\n[EOF]"
    _, result = _apply("Intro\nLine one\nLine two\nEnd", patch, highlight=False)
    assert result.final_text == "Intro\nReplaced\nEnd"
    print("PASS: test_multiline_replacement")


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------

def test_writes_back_to_front():
    patch = "@alpha \n-beta\n+BETA\n@gamma\n+!\n[EOF]"
    buffer, result = _apply("alpha beta gamma", patch, highlight=False)
    assert result.applied_count == 2
    assert result.final_text == "alpha BETA gamma!"
    assert buffer.mutations == [("insert_text", 16, "!"), ("replace_range", 6, 10, "BETA")]
    print("PASS: test_writes_back_to_front")


def test_hunks_out_of_document_order():
    patch = "@gamma\n+!\n@alpha \n-beta\n+BETA\n[EOF]"
    _, result = _apply("alpha beta gamma", patch, highlight=False)
    assert result.applied_count == 2
    assert result.final_text == "alpha BETA gamma!"
    print("PASS: test_hunks_out_of_document_order")


def test_partial_batch():
    patch = "@alpha \n-beta\n+BETA\n@nowhere\n+x\n[EOF]"
    _, result = _apply("alpha beta gamma", patch, highlight=False)
    assert result.applied_count == 1
    assert result.final_text == "alpha BETA gamma"
    assert _codes(result) == ["context_not_found"]
    assert result.diagnostics[0].hunk_index == 1
    print("PASS: test_partial_batch")


def test_anchor_offsets_account_for_earlier_markers():
    patch = "@a \n-b\n+BB\n@b \n-c\n+CC\n[EOF]"
    _, result = _apply("a b c", patch)
    assert result.final_text == "a {~~b~>BB~~} {~~c~>CC~~}"
    assert [c.anchor_offset for c in result.changes] == [2, 14]
    for change in result.changes:
        assert result.final_text[change.anchor_offset:].startswith(change.marker_text)
    assert len({c.id for c in result.changes}) == 2
    print("PASS: test_anchor_offsets_account_for_earlier_markers")


def test_overlapping_hunk_is_dropped():
    patch = "@one \n-two\n+2\n@one \n-two three\n+x\n[EOF]"
    _, result = _apply("one two three", patch, highlight=False)
    assert result.applied_count == 1
    assert result.final_text == "one 2 three"
    overlap = [d for d in result.diagnostics if d.code == "overlap"]
    assert len(overlap) == 1
    assert overlap[0].hunk_index == 1
    print("PASS: test_overlapping_hunk_is_dropped")


# ---------------------------------------------------------------------------
# Deleted-text verification
# ---------------------------------------------------------------------------

def test_deleted_text_found_nearby():
    _, result = _apply("Title: Old name here", "@Title:\n-Old\n+New\n[EOF]", highlight=False)
    assert result.applied_count == 1
    assert result.final_text == "Title: New name here"
    assert "delete_relocated" in _codes(result)
    print("PASS: test_deleted_text_found_nearby")


def test_nearby_search_window_is_configurable():
    options = ApplyOptions(search_before=0, search_after=0)
    _, result = _apply("Title: Old name here", "@Title:\n-Old\n+New\n[EOF]", highlight=False, options=options)
    assert result.applied_count == 0
    assert "delete_mismatch" in _codes(result)
    print("PASS: test_nearby_search_window_is_configurable")


def test_deleted_text_mismatch_skips_hunk():
    buffer, result = _apply("Hello world", "@Hello \n-planet\n+there\n[EOF]")
    assert result.applied_count == 0
    assert result.final_text == "Hello world"
    assert buffer.mutations == []
    assert "delete_mismatch" in _codes(result)
    print("PASS: test_deleted_text_mismatch_skips_hunk")


def test_equally_distant_occurrences_prefer_earlier():
    _, result = _apply(".XK..X", "@K\n-X\n+Y\n[EOF]", highlight=False)
    assert result.final_text == ".YK..X"
    print("PASS: test_equally_distant_occurrences_prefer_earlier")


def test_whitespace_tolerant_context():
    _, result = _apply("Intro\n  Heading\nbody", "@Heading \n-\n-body\n+\n+text\n[EOF]", highlight=False)
    assert result.final_text == "Intro\n  Heading\ntext"
    print("PASS: test_whitespace_tolerant_context")


def test_unencodable_payload_is_skipped_in_highlight_mode():
    _, result = _apply("a b", "@a \n-b\n+x++}y\n[EOF]")
    assert result.applied_count == 0
    assert result.final_text == "a b"
    assert "unencodable_payload" in _codes(result)

    _, direct = _apply("a b", "@a \n-b\n+x++}y\n[EOF]", highlight=False)
    assert direct.final_text == "a x++}y"
    print("PASS: test_unencodable_payload_is_skipped_in_highlight_mode")


def test_document_with_markers_is_not_highlighted():
    text = "Use {++x++} to mark insertions.\nHello"
    buffer, result = _apply(text, "@Hello\n+!\n[EOF]")
    assert result.applied_count == 0
    assert result.final_text == text
    assert buffer.mutations == []
    assert _codes(result) == ["document_has_markers"]

    _, direct = _apply(text, "@Hello\n+!\n[EOF]", highlight=False)
    assert direct.final_text == "Use {++x++} to mark insertions.\nHello!"
    print("PASS: test_document_with_markers_is_not_highlighted")


def test_second_highlight_before_review_is_refused():
    buffer, first = _apply("# Title\nHello world", "@# \n-Title\n+Heading\n[EOF]")
    assert first.applied_count == 1

    second = apply_hunks(buffer, parse_patch("@Hello \n-world\n+there\n[EOF]").hunks)
    assert second.applied_count == 0
    assert _codes(second) == ["document_has_markers"]
    assert resolve_all(buffer.get_value(), ReviewDecision.REJECT) == "# Title\nHello world"
    print("PASS: test_second_highlight_before_review_is_refused")


def test_marker_merging_with_surrounding_text_is_skipped():
    # "{+" + "{+++x+++}" + "+}" accepts to "{++x++}", itself a marker.
    buffer, result = _apply("{++}", "@{+\n++x+\n[EOF]")
    assert result.applied_count == 0
    assert result.final_text == "{++}"
    assert buffer.mutations == []
    assert _codes(result) == ["marker_collision"]

    _, direct = _apply("{++}", "@{+\n++x+\n[EOF]", highlight=False)
    assert direct.final_text == "{++x++}"
    print("PASS: test_marker_merging_with_surrounding_text_is_skipped")


# ---------------------------------------------------------------------------
# Review round trips
# ---------------------------------------------------------------------------

CASES = [
    ("# Title\nHello world", "@# \n-Title\n+Heading\n[EOF]"),
    ("Body text", "+# New Title\n+\n[EOF]"),
    ("alpha beta gamma", "@gamma\n+!\n@alpha \n-beta\n+BETA\n[EOF]"),
    ("keep remove keep", "@keep \n-remove \n[EOF]"),
    ("Intro\nLine one\nLine two\nEnd", "@Intro\n-\n-Line one\n-Line two\n+\n+Replaced\n[EOF]"),
    ("a b c", "@a \n-b\n+BB\n@b \n-c\n+CC\n[EOF]"),
]


def test_accept_matches_direct_apply():
    for text, patch in CASES:
        _, highlighted = _apply(text, patch)
        _, direct = _apply(text, patch, highlight=False)
        assert resolve_all(highlighted.final_text, ReviewDecision.ACCEPT) == direct.final_text, text
    print("PASS: test_accept_matches_direct_apply")


def test_reject_restores_original():
    for text, patch in CASES:
        _, highlighted = _apply(text, patch)
        assert resolve_all(highlighted.final_text, ReviewDecision.REJECT) == text, text
    print("PASS: test_reject_restores_original")


def test_direct_apply_writes_no_markers():
    for text, patch in CASES:
        _, direct = _apply(text, patch, highlight=False)
        assert not has_markers(direct.final_text)
    print("PASS: test_direct_apply_writes_no_markers")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def test_can_apply():
    ok, diagnostics = can_apply("# Title\nHello world", parse_patch("@# \n-Title\n+Heading\n[EOF]").hunks)
    assert ok
    assert diagnostics == []

    ok, diagnostics = can_apply("Hello world", parse_patch("@Missing\n-x\n[EOF]").hunks)
    assert not ok
    assert [d.code for d in diagnostics] == ["context_not_found"]

    marked = "a {++b++} c"
    hunks = parse_patch("@a \n+x\n[EOF]").hunks
    ok, diagnostics = can_apply(marked, hunks)
    assert not ok
    assert [d.code for d in diagnostics] == ["document_has_markers"]
    assert can_apply(marked, hunks, ApplyOptions(highlight=False))[0]
    print("PASS: test_can_apply")


def test_apply_patch_text():
    result = apply_patch_text("# Title\nHello world", "@# \n-Title\n+Heading\n[EOF]", highlight=False)
    assert result.final_text == "# Heading\nHello world"

    failed = apply_patch_text("Hello", "Sure, here you go.")
    assert not failed.success
    assert failed.final_text == "Hello"
    assert "Not a patch" in failed.error
    print("PASS: test_apply_patch_text")


if __name__ == '__main__':
    tests = [
        test_replace_word_highlighted,
        test_replace_word_direct,
        test_insert_at_top_of_document,
        test_insert_into_empty_document,
        test_missing_terminator_still_applies,
        test_context_not_found_leaves_document_untouched,
        test_delete_only_uses_delete_text,
        test_multiline_replacement,
        test_writes_back_to_front,
        test_hunks_out_of_document_order,
        test_partial_batch,
        test_anchor_offsets_account_for_earlier_markers,
        test_overlapping_hunk_is_dropped,
        test_deleted_text_found_nearby,
        test_nearby_search_window_is_configurable,
        test_deleted_text_mismatch_skips_hunk,
        test_equally_distant_occurrences_prefer_earlier,
        test_whitespace_tolerant_context,
        test_unencodable_payload_is_skipped_in_highlight_mode,
        test_document_with_markers_is_not_highlighted,
        test_second_highlight_before_review_is_refused,
        test_marker_merging_with_surrounding_text_is_skipped,
        test_accept_matches_direct_apply,
        test_reject_restores_original,
        test_direct_apply_writes_no_markers,
        test_can_apply,
        test_apply_patch_text,
    ]

    passed = 0
    failed = 0
    for t in tests:
        try:
            t()
            passed += 1
        except Exception as e:
            print(f"FAIL: {t.__name__} — {e}")
            failed += 1

    print(f"\n{'=' * 50}")
    print(f"Results: {passed} passed, {failed} failed out of {len(tests)} tests")
    if failed > 0:
        sys.exit(1)
    else:
        print("All tests passed!")
