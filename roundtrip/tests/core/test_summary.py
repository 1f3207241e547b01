"""Tests for the conclusion report."""

from roundtrip.core.summary import FAILURE_COLOR, SUCCESS_COLOR, build_summary


def test_all_passed() -> None:
    summary = build_summary("ci", ("a", "b"), (), ())

    assert summary.plain_text == "ci: Testing complete, 2 tests succeeded"
    assert SUCCESS_COLOR in summary.html_text
    assert FAILURE_COLOR not in summary.html_text
    assert summary.all_passed
    assert summary.exit_code == 0


def test_failures_and_unfinished_listed() -> None:
    summary = build_summary("ci", ("a",), ("b", "c"), ("d",))

    assert summary.plain_text == (
        "ci: Testing complete, 1 tests succeeded of 4 total\n"
        "FAILED: b c\n"
        "DID NOT FINISH: d"
    )
    assert f"#{FAILURE_COLOR}" in summary.html_text
    assert "<br><strong>Failed:</strong> b c" in summary.html_text
    assert "<br><strong>Did not finish:</strong> d" in summary.html_text
    assert summary.total == 4
    assert summary.exit_code == 3


def test_only_unfinished() -> None:
    summary = build_summary("", (), (), ("slow",))

    assert "FAILED:" not in summary.plain_text
    assert summary.plain_text.endswith("DID NOT FINISH: slow")
    assert summary.exit_code == 1
    assert not summary.all_passed
