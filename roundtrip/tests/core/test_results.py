"""Tests for the ResultSet partition and TestCase state machine."""

import pytest

from roundtrip.core.errors import InvariantViolation
from roundtrip.core.models import TestCase, TestStatus, TestToken
from roundtrip.core.results import ResultSet


async def _noop(token: TestToken) -> bool:
    return False


def _case(name: str) -> TestCase:
    return TestCase(name, _noop)


@pytest.fixture
def results() -> ResultSet:
    rs = ResultSet()
    for name in ("a", "b", "c"):
        rs.start(_case(name))
    return rs


def test_start_marks_running(results: ResultSet) -> None:
    assert results.running == ("a", "b", "c")
    assert results.case("a").status is TestStatus.RUNNING
    assert results.is_partition()


def test_record_moves_name(results: ResultSet) -> None:
    assert results.record("b", True) is True
    assert results.record("a", False) is True

    assert results.running == ("c",)
    assert results.succeeded == ("b",)
    assert results.failed == ("a",)
    assert results.case("b").status is TestStatus.SUCCEEDED
    assert results.case("a").status is TestStatus.FAILED
    assert results.is_partition()


def test_record_unknown_name_is_invariant_violation(results: ResultSet) -> None:
    with pytest.raises(InvariantViolation, match="not in running state"):
        results.record("zzz", True)


def test_record_twice_is_invariant_violation(results: ResultSet) -> None:
    results.record("a", True)
    with pytest.raises(InvariantViolation):
        results.record("a", True)


def test_duplicate_start_is_invariant_violation(results: ResultSet) -> None:
    with pytest.raises(InvariantViolation, match="dispatched twice"):
        results.start(_case("a"))


def test_seal_leaves_residue_unfinished(results: ResultSet) -> None:
    results.record("a", True)
    residue = results.seal()

    assert residue == ("b", "c")
    assert results.unfinished == ("b", "c")
    assert results.case("b").status is TestStatus.UNFINISHED
    assert results.seal() == residue
    assert results.is_partition()
    assert results.counts() == {
        "running": 2,
        "succeeded": 1,
        "failed": 0,
        "unfinished": 2,
    }


def test_late_outcome_after_seal_is_ignored(results: ResultSet) -> None:
    results.seal()

    assert results.record("a", True) is False
    assert results.succeeded == ()
    assert results.case("a").status is TestStatus.UNFINISHED


def test_start_after_seal_is_invariant_violation(results: ResultSet) -> None:
    results.seal()
    with pytest.raises(InvariantViolation):
        results.start(_case("d"))


class TestTestCaseTransitions:
    def test_cannot_finish_pending(self) -> None:
        case = _case("x")
        with pytest.raises(InvariantViolation):
            case.mark_finished(True)

    def test_cannot_restart(self) -> None:
        case = _case("x")
        case.mark_running()
        with pytest.raises(InvariantViolation):
            case.mark_running()

    def test_terminal_states(self) -> None:
        case = _case("x")
        assert not case.is_terminal
        case.mark_running()
        case.mark_finished(False)
        assert case.is_terminal
        assert case.status is TestStatus.FAILED

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValueError):
            _case(" ")
