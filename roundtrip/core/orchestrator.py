"""Test dispatch and the exactly-once finish protocol.

The orchestrator owns the ResultSet and the Watchdog for the lifetime of
a suite. It dispatches every registered test with a fresh correlation
token as a deferred task, accepts exactly one finish call per token, and
concludes the suite once: either when Running becomes empty or when the
watchdog fires, whichever comes first.
"""

import asyncio
import inspect
import logging
import traceback
from collections import Counter
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, TypeVar

from .errors import InvariantViolation, SetupFailure
from .models import FinishNotice, SuiteSummary, TestCase, TestToken
from .results import ResultSet
from .subscriptions import (
    DisposalGroup,
    EventStream,
    Subscription,
    SubscriptionScope,
    subscribe_once,
    subscribe_until,
)
from .summary import build_summary
from .watchdog import Watchdog

logger = logging.getLogger(__name__)

E = TypeVar("E")

_FINISH_HELPERS = frozenset({"finish", "fail", "_fail_on_error"})


def _caller_location() -> str:
    """Return "file:line" of the first frame outside the finish helpers."""
    frame = inspect.currentframe()
    try:
        while frame is not None:
            code = frame.f_code
            if code.co_filename != __file__ and code.co_name not in _FINISH_HELPERS:
                return f"{Path(code.co_filename).name}:{frame.f_lineno}"
            frame = frame.f_back
        return ""
    finally:
        del frame


def _raise_location(error: BaseException) -> str:
    """Return "file:line" where error was raised, or "" without a traceback."""
    frames = traceback.extract_tb(error.__traceback__)
    if not frames:
        return ""
    return f"{Path(frames[-1].filename).name}:{frames[-1].lineno}"


class Orchestrator:
    """Dispatches tests, tracks their outcomes and concludes the suite."""

    def __init__(self, watchdog_timeout_seconds: float = 180.0, origin: str = ""):
        """Initialize orchestrator.

        Args:
            watchdog_timeout_seconds: Global deadline for the whole run.
            origin: Tag prefixed to the final report.
        """
        self.origin = origin
        self.results = ResultSet()
        self.watchdog = Watchdog(watchdog_timeout_seconds, self._on_watchdog)
        self.finished: EventStream[FinishNotice] = EventStream("finished")
        self.dispatched = False
        self.concluded = False
        self.summary: SuiteSummary | None = None
        self.violation: InvariantViolation | None = None
        self._finish_counts: Counter[TestToken] = Counter()
        self._tokens: dict[str, TestToken] = {}
        self._scopes: dict[TestToken, SubscriptionScope] = {}
        self._tasks: dict[TestToken, asyncio.Task[None]] = {}
        self._conclusion: asyncio.Future[SuiteSummary] | None = None

        # Registered first so ResultSet moves before any other listener runs
        self.finished.listen(self._on_finished)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def arm(self) -> None:
        """Start the watchdog. Must be called from a running loop."""
        self._future()
        self.watchdog.arm()

    async def wait_concluded(self) -> SuiteSummary:
        """Wait until the suite concludes.

        Raises:
            InvariantViolation: If the run was aborted by a broken invariant,
                including one detected after the conclusion itself.
        """
        summary = await asyncio.shield(self._future())
        self.check_invariants()
        return summary

    def check_invariants(self) -> None:
        """Re-raise the first invariant violation seen during the run."""
        if self.violation is not None:
            raise self.violation

    @property
    def conclusion(self) -> asyncio.Future[SuiteSummary]:
        """Future resolved with the summary when the suite concludes."""
        return self._future()

    def dispatch(self, cases: Sequence[TestCase]) -> None:
        """Mark every case Running and schedule its procedure.

        Procedures never run in-line: each becomes a task, in registry
        order, so dispatching one test cannot block the next and all
        names are Running before any test body executes.

        Raises:
            InvariantViolation: On a second dispatch or duplicate names.
            SetupFailure: If the watchdog already concluded the suite.
        """
        if self.dispatched:
            raise InvariantViolation("Suite dispatched twice")
        self.dispatched = True
        if self.concluded:
            logger.error("Watchdog expired before the tests were dispatched")
            raise SetupFailure("Watchdog expired before the tests were dispatched")

        loop = asyncio.get_running_loop()
        self._future()
        for serial, case in enumerate(cases):
            token = TestToken(name=case.name, serial=serial)
            self.results.start(case)
            self._tokens[case.name] = token
            self._scopes[token] = SubscriptionScope(case.name)

        logger.info(f"Tests to do: {' '.join(self.results.running)}")
        for case in cases:
            token = self._tokens[case.name]
            self._tasks[token] = loop.create_task(
                self._run_procedure(case, token), name=f"test:{case.name}"
            )

        if not cases:
            logger.info("Empty test registry")
            self.conclude()

    def conclude(self) -> None:
        """Conclude the suite exactly once; later calls are no-ops."""
        if self.concluded:
            logger.debug("Suite already concluded")
            return
        self.concluded = True
        self.watchdog.disarm()

        unfinished = self.results.seal()
        for scope in self._scopes.values():
            scope.dispose()
        current = asyncio.current_task()
        for task in self._tasks.values():
            if task is not current and not task.done():
                task.cancel()

        self.summary = build_summary(
            self.origin,
            self.results.succeeded,
            self.results.failed,
            unfinished,
        )
        logger.info(
            self.summary.plain_text,
            extra={
                "succeeded": self.summary.succeeded_count,
                "failed": self.summary.failed_count,
                "unfinished": self.summary.unfinished_count,
            },
        )
        future = self._future()
        if not future.done():
            future.set_result(self.summary)

    # ------------------------------------------------------------------
    # Finish contract
    # ------------------------------------------------------------------

    def finish(self, token: TestToken, outcome: bool, location: str = "") -> bool:
        """Complete a test. Accepted at most once per token.

        Emits a FinishNotice on the finished stream; that notice is the only
        way a name leaves Running. Returns True so that a subscription
        predicate can consume its event with ``return finish(...)``.

        Raises:
            InvariantViolation: On a second call for the same token, or for a
                token this orchestrator never dispatched.
        """
        if token not in self._scopes:
            self._abort(InvariantViolation(f"Unknown test token {token.name}"))
        self._finish_counts[token] += 1
        if self._finish_counts[token] > 1:
            self._abort(
                InvariantViolation(f"Test {token.name} finished more than once")
            )

        notice = FinishNotice(
            name=token.name,
            outcome=outcome,
            location=location or _caller_location(),
        )
        if token.name in self.results.unfinished:
            logger.info(
                f"{token.name} finished after the deadline; late outcome ignored",
                extra={"test": token.name, "outcome": outcome},
            )
        elif outcome:
            logger.info(
                f"{token.name} successful",
                extra={"test": token.name, "outcome": outcome},
            )
        else:
            logger.warning(
                f"{token.name} FAILED at {notice.location}",
                extra={"test": token.name, "outcome": outcome},
            )

        self._scopes[token].dispose()
        self.finished.emit(notice)
        return True

    def fail(self, token: TestToken) -> bool:
        return self.finish(token, False)

    def is_finished(self, token: TestToken) -> bool:
        return self._finish_counts[token] > 0

    def finish_count(self, token: TestToken) -> int:
        return self._finish_counts[token]

    def token(self, name: str) -> TestToken:
        return self._tokens[name]

    def progress(self) -> tuple[str, ...]:
        """Names of tests still in the air."""
        if self.concluded:
            return ()
        return self.results.running

    # ------------------------------------------------------------------
    # Subscriptions owned by a test
    # ------------------------------------------------------------------

    def scope(self, token: TestToken) -> SubscriptionScope:
        return self._scopes[token]

    def group(self, token: TestToken, name: str = "") -> DisposalGroup:
        """Create a DisposalGroup owned by the token's scope."""
        group = DisposalGroup(name or f"{token.name}-group")
        self._scopes[token].track(group)
        return group

    def subscribe_until(
        self,
        token: TestToken,
        stream: EventStream[E],
        predicate: Callable[[E], Any],
        on_match: Callable[[E], Any] | None = None,
        group: DisposalGroup | None = None,
    ) -> Subscription[E]:
        """Install an until-match subscription owned by the token."""
        return subscribe_until(
            stream,
            predicate,
            on_match,
            scope=self._scopes[token],
            group=group,
            on_error=lambda e: self._fail_on_error(token, e),
        )

    def subscribe_once(
        self,
        token: TestToken,
        stream: EventStream[E],
        continuation: Callable[[E], Any],
        group: DisposalGroup | None = None,
    ) -> Subscription[E]:
        """Install a single-shot subscription owned by the token."""
        return subscribe_once(
            stream,
            continuation,
            scope=self._scopes[token],
            group=group,
            on_error=lambda e: self._fail_on_error(token, e),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _future(self) -> asyncio.Future[SuiteSummary]:
        if self._conclusion is None:
            self._conclusion = asyncio.get_running_loop().create_future()
        return self._conclusion

    def _abort(self, error: InvariantViolation) -> None:
        """Fail the run with a broken invariant and raise it."""
        logger.critical(f"Invariant violation: {error}")
        self._record_violation(error)
        raise error

    def _record_violation(self, error: InvariantViolation) -> None:
        # Kept apart from the conclusion future, which may already hold a
        # summary when the last running test finishes twice
        if self.violation is None:
            self.violation = error
        future = self._future()
        if not future.done():
            future.set_exception(error)

    def _on_finished(self, notice: FinishNotice) -> None:
        if not self.results.record(notice.name, notice.outcome):
            return
        if not self.results.running and not self.concluded:
            logger.info("All tests finished")
            self.conclude()

    def _on_watchdog(self) -> None:
        if self.concluded:
            logger.debug("Watchdog fired after conclusion; ignoring")
            return
        unfinished = self.results.seal()
        if unfinished:
            logger.warning(
                f"{len(unfinished)} test(s) did not finish: {' '.join(unfinished)}"
            )
        self.conclude()

    def _fail_on_error(self, token: TestToken, error: Exception) -> None:
        if self.is_finished(token) or self.concluded:
            return
        logger.error(f"{token.name} failed with {type(error).__name__}: {error}")
        self.finish(token, False, location=_raise_location(error))

    async def _run_procedure(self, case: TestCase, token: TestToken) -> None:
        logger.info(f"Starting: {case.name}")
        try:
            done = await case.procedure(token)
            if done and not self.is_finished(token):
                self._abort(
                    InvariantViolation(
                        f"{case.name} reported completion without finishing"
                    )
                )
        except asyncio.CancelledError:
            logger.debug(f"{case.name} cancelled at conclusion")
            raise
        except InvariantViolation as e:
            self._record_violation(e)
        except Exception as e:
            logger.error(f"{case.name} raised: {e}", exc_info=True)
            try:
                self._fail_on_error(token, e)
            except InvariantViolation:
                pass  # already recorded by _abort
        finally:
            self._tasks.pop(token, None)
