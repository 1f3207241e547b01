"""Running/succeeded/failed partition over dispatched tests."""

import logging

from .errors import InvariantViolation
from .models import TestCase, TestStatus

logger = logging.getLogger(__name__)


class ResultSet:
    """Disjoint Running, Succeeded and Failed sets of test names.

    Invariant: running | succeeded | failed == dispatched at every
    observable instant. Names keep dispatch order within each set so that
    reports are stable. Once sealed (watchdog expiry or conclusion), the
    names left in Running are the Unfinished residue and no further
    outcome is recorded.
    """

    def __init__(self) -> None:
        self._cases: dict[str, TestCase] = {}
        self._running: dict[str, None] = {}
        self._succeeded: dict[str, None] = {}
        self._failed: dict[str, None] = {}
        self._unfinished: tuple[str, ...] = ()
        self.sealed = False

    @property
    def running(self) -> tuple[str, ...]:
        return tuple(self._running)

    @property
    def succeeded(self) -> tuple[str, ...]:
        return tuple(self._succeeded)

    @property
    def failed(self) -> tuple[str, ...]:
        return tuple(self._failed)

    @property
    def unfinished(self) -> tuple[str, ...]:
        return self._unfinished

    @property
    def dispatched(self) -> tuple[str, ...]:
        return tuple(self._cases)

    def case(self, name: str) -> TestCase:
        return self._cases[name]

    def start(self, case: TestCase) -> None:
        """Record a test as dispatched and running.

        Raises:
            InvariantViolation: If the name was already dispatched or the
                set is sealed.
        """
        if self.sealed:
            raise InvariantViolation(f"Cannot start {case.name}: results sealed")
        if case.name in self._cases:
            raise InvariantViolation(f"Test {case.name} dispatched twice")
        case.mark_running()
        self._cases[case.name] = case
        self._running[case.name] = None

    def record(self, name: str, outcome: bool) -> bool:
        """Move a name from Running to Succeeded or Failed.

        Returns:
            True if recorded, False if the set is sealed and the name is
            part of the Unfinished residue (a late finish).

        Raises:
            InvariantViolation: If the name is not in Running.
        """
        if self.sealed and name in self._unfinished:
            logger.warning(f"Ignoring late outcome for unfinished test {name}")
            return False
        if name not in self._running:
            raise InvariantViolation(f"Test item {name} is not in running state")
        self._cases[name].mark_finished(outcome)
        del self._running[name]
        (self._succeeded if outcome else self._failed)[name] = None
        return True

    def seal(self) -> tuple[str, ...]:
        """Freeze the set; whatever is still running becomes Unfinished.

        Idempotent: a second call returns the same residue.
        """
        if self.sealed:
            return self._unfinished
        self.sealed = True
        self._unfinished = tuple(self._running)
        for name in self._unfinished:
            self._cases[name].mark_unfinished()
        return self._unfinished

    def is_partition(self) -> bool:
        """Check the partition invariant."""
        running, succeeded, failed = (
            set(self._running),
            set(self._succeeded),
            set(self._failed),
        )
        disjoint = not (running & succeeded or running & failed or succeeded & failed)
        return disjoint and (running | succeeded | failed) == set(self._cases)

    def counts(self) -> dict[str, int]:
        return {
            TestStatus.RUNNING.value: len(self._running),
            TestStatus.SUCCEEDED.value: len(self._succeeded),
            TestStatus.FAILED.value: len(self._failed),
            TestStatus.UNFINISHED.value: len(self._unfinished),
        }

    def __len__(self) -> int:
        return len(self._cases)
