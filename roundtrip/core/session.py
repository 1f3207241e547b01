"""Session driver: setup, suite run, report, teardown.

This module ties the orchestration core to the protocol client:

1. Arm the watchdog (it covers setup as well)
2. Connect, start syncing, join the test room
3. Wait for a sync, backfilling history if the room looks empty
4. Dispatch the suite and wait for its conclusion
5. Publish the summary (room + notification adapters)
6. Leave the room and log out

Setup failures short-circuit the run with SetupFailure before any
test is dispatched.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol, TypeVar

from .errors import (
    ClientError,
    JoinError,
    LoginError,
    ResolveError,
    SetupFailure,
)
from .models import Credentials, SuiteSummary, SyncDone, TestCase
from .orchestrator import Orchestrator
from .ports import NotificationPort, ProtocolClientPort, RoomPort
from .subscriptions import EventStream, SubscriptionScope, subscribe_once, subscribe_until
from .suite import DEFAULT_MEMBERS_ROOM_ALIAS, DEFAULT_TEST_TAG, TestSuite

logger = logging.getLogger(__name__)

E = TypeVar("E")
T = TypeVar("T")


class SuiteLike(Protocol):
    def registry(self) -> Sequence[TestCase]: ...

    def close(self) -> None: ...


SuiteFactory = Callable[[RoomPort, ProtocolClientPort, Orchestrator], SuiteLike]


class TestSession:
    """Runs one suite against one room, from login to logout."""

    __test__ = False

    def __init__(
        self,
        client: ProtocolClientPort,
        credentials: Credentials,
        watchdog_timeout_seconds: float = 180.0,
        teardown_timeout_seconds: float = 30.0,
        notifications: Sequence[NotificationPort] = (),
        suite_factory: SuiteFactory | None = None,
        lazy_loading: bool = True,
        members_room_alias: str = DEFAULT_MEMBERS_ROOM_ALIAS,
        test_tag: str = DEFAULT_TEST_TAG,
    ):
        """Initialize the session.

        Args:
            client: Protocol client adapter (not yet connected).
            credentials: Login data, target room and origin tag.
            watchdog_timeout_seconds: Global deadline for setup and tests.
            teardown_timeout_seconds: Bound on each teardown step.
            notifications: Extra channels receiving the final summary.
            suite_factory: Builds the suite once the room is joined
                (defaults to TestSuite).
            lazy_loading: Whether to enable lazy member loading.
            members_room_alias: Passed to the default TestSuite.
            test_tag: Passed to the default TestSuite.
        """
        self.client = client
        self.credentials = credentials
        self.teardown_timeout_seconds = teardown_timeout_seconds
        self.notifications = list(notifications)
        self.lazy_loading = lazy_loading
        self.members_room_alias = members_room_alias
        self.test_tag = test_tag
        self.suite_factory = suite_factory or self._default_suite
        self.orchestrator = Orchestrator(
            watchdog_timeout_seconds=watchdog_timeout_seconds,
            origin=credentials.origin,
        )
        self.room: RoomPort | None = None
        self.suite: SuiteLike | None = None
        self._scope = SubscriptionScope("session")

    def _default_suite(
        self, room: RoomPort, client: ProtocolClientPort, orchestrator: Orchestrator
    ) -> TestSuite:
        return TestSuite(
            room,
            client,
            orchestrator,
            origin=self.credentials.origin,
            members_room_alias=self.members_room_alias,
            test_tag=self.test_tag,
        )

    async def run(self) -> int:
        """Run the whole session.

        Returns:
            Exit status: failed + unfinished test count.

        Raises:
            SetupFailure: If connecting, joining or the initial sync fails,
                or the watchdog expires before dispatch.
            InvariantViolation: On a broken harness invariant.
        """
        self.orchestrator.arm()
        try:
            room = await self._setup()
            self.suite = self.suite_factory(room, self.client, self.orchestrator)
            self._scope.track(self.client.sync_done.listen(self._on_sync))
            self.orchestrator.dispatch(self.suite.registry())

            summary = await self.orchestrator.wait_concluded()
            await self._publish(room, summary)
            await self._teardown(room)
            self.orchestrator.check_invariants()
            return summary.exit_code
        finally:
            self.orchestrator.watchdog.disarm()
            self._scope.dispose()
            if self.suite is not None:
                self.suite.close()
            for notification in self.notifications:
                await notification.close()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def _setup(self) -> RoomPort:
        creds = self.credentials
        client = self.client
        self._scope.track(client.room_loaded.listen(self._on_new_room))

        logger.info(f"Connecting as {creds.user_id}")
        try:
            await self._guarded(
                client.connect(creds.user_id, creds.password, creds.device_name),
                "connecting",
            )
        except ResolveError as e:
            logger.error(f"Failed to resolve the server: {e}")
            raise SetupFailure(f"Failed to resolve the server: {e}") from e
        except LoginError as e:
            logger.error(
                f"Failed to login to {client.homeserver}: {e}\nDetails:\n{e.details}"
            )
            raise SetupFailure(f"Failed to login: {e}") from e
        logger.info(f"Connected, server: {client.homeserver}")

        client.set_lazy_loading(self.lazy_loading)
        client.start_sync()

        logger.info(f"Joining {creds.room_ref}")
        try:
            room = await self._guarded(client.join_room(creds.room_ref), "joining")
        except JoinError as e:
            logger.error(f"Failed to join the test room: {e}")
            await self._logout()
            raise SetupFailure(f"Failed to join {creds.room_ref}: {e}") from e
        self.room = room

        # Make sure the room has been filled with some events so that
        # tests could use them
        await self._guarded(self._next_event(client.sync_done), "syncing")
        if room.timeline_size == 0:
            added = self._next_event(room.messages_added)
            room.get_previous_content()
            await self._guarded(added, "loading history")
        return room

    async def _guarded(self, awaitable: Awaitable[T], stage: str) -> T:
        """Await a setup step unless the watchdog concludes first."""
        step = asyncio.ensure_future(awaitable)
        conclusion = self.orchestrator.conclusion
        await asyncio.wait({step, conclusion}, return_when=asyncio.FIRST_COMPLETED)
        # An expired watchdog wins even when the step completed in the same pass
        if not conclusion.done():
            return step.result()
        step.cancel()
        logger.error(f"Watchdog expired while {stage}")
        raise SetupFailure(f"Watchdog expired while {stage}")

    def _next_event(self, stream: EventStream[E]) -> asyncio.Future[E]:
        """Future for the next event on stream; subscribed immediately."""
        future: asyncio.Future[E] = asyncio.get_running_loop().create_future()

        def resolve(event: E) -> None:
            if not future.done():
                future.set_result(event)

        subscribe_once(stream, resolve, scope=self._scope)
        return future

    def _matching_event(
        self, stream: EventStream[E], predicate: Callable[[E], bool]
    ) -> asyncio.Future[E]:
        """Future for the first event on stream satisfying predicate."""
        future: asyncio.Future[E] = asyncio.get_running_loop().create_future()

        def resolve(event: E) -> None:
            if not future.done():
                future.set_result(event)

        subscribe_until(stream, predicate, resolve, scope=self._scope)
        return future

    # ------------------------------------------------------------------
    # Conclusion
    # ------------------------------------------------------------------

    async def _publish(self, room: RoomPort, summary: SuiteSummary) -> None:
        for notification in self.notifications:
            try:
                await notification.report_summary(summary)
            except Exception as e:
                logger.error(
                    f"Failed to deliver summary via {type(notification).__name__}: {e}",
                    exc_info=True,
                )

        txn_id = room.post_html_text(summary.plain_text, summary.html_text)
        sent = self._matching_event(
            room.message_sent, lambda e: e.transaction_id == txn_id
        )
        try:
            await asyncio.wait_for(sent, self.teardown_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                f"Report {txn_id} not acknowledged within "
                f"{self.teardown_timeout_seconds}s"
            )

    async def _teardown(self, room: RoomPort) -> None:
        logger.info("Leaving the room")
        try:
            await asyncio.wait_for(room.leave(), self.teardown_timeout_seconds)
        except (ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to leave the room: {e!r}")
        await self._logout()

    async def _logout(self) -> None:
        logger.info("Logging out")
        try:
            await asyncio.wait_for(self.client.logout(), self.teardown_timeout_seconds)
        except (ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to log out: {e!r}")

    # ------------------------------------------------------------------
    # Ambient logging
    # ------------------------------------------------------------------

    def _on_new_room(self, room: RoomPort) -> None:
        logger.info(
            f"New room: {room.id} (canonical alias: {room.canonical_alias or '-'})"
        )

    def _on_sync(self, event: SyncDone) -> None:
        logger.info(f"Sync {event.sync_number} complete")
        if self.room is not None:
            logger.debug(
                f"Test room timeline size = {self.room.timeline_size}, "
                f"pending size = {len(self.room.pending_events)}"
            )
        in_the_air = self.orchestrator.progress()
        if in_the_air:
            logger.info(
                f"{len(in_the_air)} test(s) in the air: {' '.join(in_the_air)}"
            )
