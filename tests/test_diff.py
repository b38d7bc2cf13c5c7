from sitesmith.diff import (
    NO_CHANGES_MARKER,
    TRUNCATION_MARKER,
    deleted_file_diff,
    split_lines,
    trim_diff_lines,
    unified_diff,
)


def apply_hunk(before: str, diff: str) -> str:
    """Rebuild the new text from a single-hunk diff produced by unified_diff."""
    lines = diff.split("\n")
    header = lines[2]
    old_start = int(header.split()[1][1:].split(",")[0])
    old_count = int(header.split()[1].split(",")[1])
    body = lines[3:]
    replacement = [line[1:] for line in body if line[:1] in (" ", "+")]
    before_lines = split_lines(before)
    start = old_start - 1
    return "\n".join(before_lines[:start] + replacement + before_lines[start + old_count :])


def test_identical_text_has_no_changes():
    result = unified_diff("a.txt", "x\ny", "x\ny")
    assert not result.changed
    assert result.additions == result.deletions == 0
    assert result.diff.endswith(NO_CHANGES_MARKER)


def test_line_endings_are_ignored():
    assert not unified_diff("a.txt", "x\r\ny", "x\ny").changed


def test_footer_scenario():
    result = unified_diff(
        "app/page.tsx", "<div>Home</div>", "<div>Home</div><footer>Hi</footer>"
    )
    assert result.changed
    assert (result.additions, result.deletions) == (1, 1)
    lines = result.diff.split("\n")
    assert lines[:3] == ["--- a/app/page.tsx", "+++ b/app/page.tsx", "@@ -1,1 +1,1 @@"]
    assert "-<div>Home</div>" in lines
    assert "+<div>Home</div><footer>Hi</footer>" in lines


def test_context_lines_surround_change():
    before = "\n".join(f"line {i}" for i in range(1, 11))
    after = before.replace("line 5", "line five")
    result = unified_diff("f.txt", before, after, context_lines=2)
    lines = result.diff.split("\n")
    assert lines[2] == "@@ -3,5 +3,5 @@"
    assert lines[3:] == [" line 3", " line 4", "-line 5", "+line five", " line 6", " line 7"]


def test_pure_insertion_and_empty_file():
    result = unified_diff("new.txt", "", "a\nb")
    assert (result.additions, result.deletions) == (2, 0)
    result = unified_diff("f.txt", "a\nc", "a\nb\nc")
    assert (result.additions, result.deletions) == (1, 0)


def test_hunk_reconstructs_new_text():
    cases = [
        ("a\nb\nc\nd", "a\nX\nc\nd"),
        ("a\nb\nc", "a\nb\nc\nd\ne"),
        ("a\nb\nc", "c"),
        ("same\nsame\nsame", "same\nsame"),
        ("one", "two\nthree"),
    ]
    for before, after in cases:
        result = unified_diff("f", before, after, context_lines=1, max_lines=1000)
        assert apply_hunk(before, result.diff) == after


def test_long_diff_is_truncated():
    before = "\n".join(f"old {i}" for i in range(400))
    after = "\n".join(f"new {i}" for i in range(400))
    result = unified_diff("big.txt", before, after, max_lines=50)
    lines = result.diff.split("\n")
    assert len(lines) == 50
    assert lines[30] == TRUNCATION_MARKER
    assert lines[-1] == "+new 399"
    assert (result.additions, result.deletions) == (400, 400)


def test_trim_keeps_short_input():
    lines = ["a", "b"]
    assert trim_diff_lines(lines, 5) == lines


def test_deleted_file_diff():
    result = deleted_file_diff("old.ts", "a\nb\r\nc")
    assert result.changed
    assert (result.additions, result.deletions) == (0, 3)
    assert result.diff.split("\n") == [
        "--- a/old.ts",
        "+++ /dev/null",
        "@@ -1,3 +0,0 @@",
        "-a",
        "-b",
        "-c",
    ]
