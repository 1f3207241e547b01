"""End-to-end runs of the full test suite against the loopback client."""

import pytest

from roundtrip.adapters.client.loopback import LoopbackClient
from roundtrip.core.errors import SetupFailure
from roundtrip.core.models import Credentials, MessageEvent
from roundtrip.core.session import TestSession
from roundtrip.tests.fakes import FakeNotificationPort

SUITE = (
    "load_members",
    "send_message",
    "send_reaction",
    "send_file",
    "set_topic",
    "send_and_redact",
    "add_and_remove_tag",
    "mark_direct_chat",
)


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(
        user_id="@tester:example.org",
        password="secret",
        device_name="ci",
        room_ref="#test:example.org",
        origin="loopback-ci",
    )


def make_client(**kwargs) -> LoopbackClient:
    kwargs.setdefault("latency_seconds", 0.005)
    kwargs.setdefault("sync_interval_seconds", 0.02)
    return LoopbackClient(password="secret", **kwargs)


@pytest.mark.asyncio
async def test_full_suite_passes(credentials: Credentials) -> None:
    client = make_client()
    notification = FakeNotificationPort()
    session = TestSession(
        client,
        credentials,
        watchdog_timeout_seconds=10.0,
        notifications=[notification],
    )

    code = await session.run()

    summary = notification.get_last_summary_report()
    assert summary.failed == ()
    assert summary.unfinished == ()
    assert summary.succeeded == SUITE
    assert code == 0
    assert client.logged_out
    assert session.room.left
    # Every completion was announced in the room (merged or still pending)
    room = session.room
    events = list(room.message_events()) + [p.event for p in room.pending_events]
    bodies = [e.body for e in events if isinstance(e, MessageEvent)]
    for name in SUITE:
        assert f"loopback-ci: {name} successful" in bodies


@pytest.mark.asyncio
async def test_upload_failure_fails_only_send_file(credentials: Credentials) -> None:
    client = make_client(fail_uploads=True)
    notification = FakeNotificationPort()
    session = TestSession(
        client,
        credentials,
        watchdog_timeout_seconds=10.0,
        notifications=[notification],
    )

    code = await session.run()

    summary = notification.get_last_summary_report()
    assert summary.failed == ("send_file",)
    assert code == 1
    assert "FAILED: send_file" in summary.plain_text


@pytest.mark.asyncio
async def test_without_lazy_loading_members_test_fails(credentials: Credentials) -> None:
    notification = FakeNotificationPort()
    session = TestSession(
        make_client(),
        credentials,
        watchdog_timeout_seconds=10.0,
        notifications=[notification],
        lazy_loading=False,
    )

    code = await session.run()

    assert notification.get_last_summary_report().failed == ("load_members",)
    assert code == 1


@pytest.mark.asyncio
async def test_stalled_server_leaves_tests_unfinished(credentials: Credentials) -> None:
    # Syncs never arrive within the deadline once the suite is dispatched
    client = make_client(sync_interval_seconds=0.05)
    notification = FakeNotificationPort()
    session = TestSession(
        client,
        credentials,
        watchdog_timeout_seconds=0.3,
        teardown_timeout_seconds=0.1,
        notifications=[notification],
    )
    real_sync_once = client.sync_once

    def stall_after_setup() -> None:
        if session.orchestrator.dispatched:
            return
        real_sync_once()

    client.sync_once = stall_after_setup

    code = await session.run()

    summary = notification.get_last_summary_report()
    assert "send_message" in summary.unfinished
    assert "add_and_remove_tag" in summary.succeeded
    assert code == summary.failed_count + summary.unfinished_count
    assert code > 0


@pytest.mark.asyncio
async def test_wrong_password_is_setup_failure(credentials: Credentials) -> None:
    client = LoopbackClient(latency_seconds=0.005, password="other")
    session = TestSession(client, credentials, watchdog_timeout_seconds=5.0)

    with pytest.raises(SetupFailure):
        await session.run()
