"""Test procedures run against a live room.

Tests are asynchronous: a procedure issues its request, installs the
subscription that will recognise the correlated confirmation, and
returns False ("went async") without yielding in between. It concludes
later, from a continuation, with exactly one finish call for its token.
Procedures that can decide at once return the result of finish/fail,
which is True.

The registry is explicit and ordered; dispatch order is registry order,
completion order is whatever the server produces.
"""

import logging
import tempfile
from collections.abc import Mapping
from pathlib import Path

from .models import (
    DeliveryStatus,
    DirectChatsChanged,
    EventReplaced,
    EventUpdated,
    FileTransferCompleted,
    FileTransferFailed,
    FinishNotice,
    MembersLoaded,
    MessageEvent,
    MessageSent,
    MessagesAdded,
    PendingEventMerged,
    ReactionEvent,
    TagsChanged,
    TestCase,
    TestToken,
    TopicChanged,
)
from .orchestrator import Orchestrator
from .ports import ProtocolClientPort, RoomPort
from .subscriptions import SubscriptionScope

logger = logging.getLogger(__name__)

DEFAULT_MEMBERS_ROOM_ALIAS = "#quotient:matrix.org"
DEFAULT_TEST_TAG = "im.quotient.test"


def _pair_count(delta: Mapping[str, frozenset[str]]) -> int:
    return sum(len(room_ids) for room_ids in delta.values())


class TestSuite:
    """The holder for the actual tests.

    Each test receives its correlation token and must end, synchronously
    or from a continuation, with exactly one call to finish() or fail()
    for that token. A second call is an invariant violation; a test that
    never finishes is classified Unfinished by the watchdog.
    """

    __test__ = False

    def __init__(
        self,
        room: RoomPort,
        client: ProtocolClientPort,
        orchestrator: Orchestrator,
        origin: str = "",
        members_room_alias: str = DEFAULT_MEMBERS_ROOM_ALIAS,
        test_tag: str = DEFAULT_TEST_TAG,
    ):
        """Initialize the suite.

        Args:
            room: The joined test room.
            client: Connection the room belongs to.
            orchestrator: Orchestrator accepting finish calls.
            origin: Tag identifying this run in room messages.
            members_room_alias: A larger room used to test member loading.
            test_tag: Room tag added and removed by add_and_remove_tag.
        """
        self.room = room
        self.client = client
        self.orchestrator = orchestrator
        self.origin = origin
        self.members_room_alias = members_room_alias
        self.test_tag = test_tag
        self._scope = SubscriptionScope("suite")
        self._temp_files: list[Path] = []
        self._scope.track(orchestrator.finished.listen(self._announce))

    def registry(self) -> tuple[TestCase, ...]:
        """Ordered (name, procedure) registry of all tests."""
        return (
            TestCase("load_members", self.load_members),
            TestCase("send_message", self.send_message),
            TestCase("send_reaction", self.send_reaction),
            TestCase("send_file", self.send_file),
            TestCase("set_topic", self.set_topic),
            TestCase("send_and_redact", self.send_and_redact),
            TestCase("add_and_remove_tag", self.add_and_remove_tag),
            TestCase("mark_direct_chat", self.mark_direct_chat),
            # Add more tests above here
        )

    def close(self) -> None:
        """Drop suite-level listeners and leftover temporary files."""
        self._scope.dispose()
        for path in self._temp_files:
            path.unlink(missing_ok=True)
        self._temp_files.clear()

    # ------------------------------------------------------------------
    # Finish helpers
    # ------------------------------------------------------------------

    def finish(self, token: TestToken, condition: bool) -> bool:
        return self.orchestrator.finish(token, condition)

    def fail(self, token: TestToken) -> bool:
        return self.orchestrator.finish(token, False)

    def _announce(self, notice: FinishNotice) -> None:
        if notice.name in self.orchestrator.results.unfinished:
            return
        if notice.outcome:
            self.room.post_notice(f"{self.origin}: {notice.name} successful")
        else:
            file_name, _, line = notice.location.rpartition(":")
            self.room.post_plain_text(
                f"{self.origin}: {notice.name} FAILED at {file_name}, line {line}"
            )

    def validate_pending_event(self, transaction_id: str) -> bool:
        pending = self.room.find_pending_event(transaction_id)
        return (
            pending is not None
            and pending.status is DeliveryStatus.SUBMITTED
            and pending.transaction_id == transaction_id
        )

    def _merged_at(self, merged: PendingEventMerged, transaction_id: str) -> bool:
        """Check the pending slot the merge refers to holds our event."""
        pending = self.room.pending_events
        index = merged.pending_index
        return 0 <= index < len(pending) and (
            pending[index].transaction_id == transaction_id
        )

    # ------------------------------------------------------------------
    # Tests
    # ------------------------------------------------------------------

    async def load_members(self, token: TestToken) -> bool:
        # Trying to load members from another (larger) room
        room = self.client.room_by_alias(self.members_room_alias)
        if room is None:
            logger.warning(
                f"{self.members_room_alias} is not found in the test user's rooms"
            )
            return self.fail(token)
        # An arbitrary server might not support lazy loading; without a
        # capabilities check we assume it does.
        if len(room.member_names) >= room.joined_count:
            logger.warning("Lazy loading doesn't seem to be enabled")
            return self.fail(token)

        def on_loaded(_: MembersLoaded) -> bool:
            return self.finish(token, len(room.member_names) >= room.joined_count)

        self.orchestrator.subscribe_once(token, room.members_loaded, on_loaded)
        room.set_displayed()
        return False

    async def send_message(self, token: TestToken) -> bool:
        txn_id = self.room.post_plain_text(f"Hello, {self.origin} is here")
        if not self.validate_pending_event(txn_id):
            logger.warning("Invalid pending event right after submitting")
            return self.fail(token)

        def on_merge(merged: PendingEventMerged) -> bool:
            if merged.event.transaction_id != txn_id:
                return False
            event = merged.event
            return self.finish(
                token,
                isinstance(event, MessageEvent)
                and bool(event.event_id)
                and self._merged_at(merged, txn_id),
            )

        self.orchestrator.subscribe_until(
            token, self.room.pending_event_merged, on_merge
        )
        return False

    async def send_reaction(self, token: TestToken) -> bool:
        logger.info("Reacting to the newest message in the room")
        messages = [
            e
            for e in self.room.message_events()
            if isinstance(e, MessageEvent) and e.event_id
        ]
        if not messages:
            logger.warning("No messages in the room to react to")
            return self.fail(token)
        target_id = messages[-1].event_id
        key = "+1"
        txn_id = self.room.post_reaction(target_id, key)
        if not self.validate_pending_event(txn_id):
            logger.warning("Invalid pending event right after submitting")
            return self.fail(token)

        def on_updated(update: EventUpdated) -> bool:
            if update.event_id != target_id:
                return False
            reactions = self.room.related_events(target_id, "m.annotation")
            # It's a test room; assuming no interference there should be
            # exactly one reaction
            if len(reactions) != 1:
                return self.fail(token)
            event = reactions[-1]
            return self.finish(
                token,
                isinstance(event, ReactionEvent)
                and bool(event.event_id)
                and event.key == key
                and event.transaction_id == txn_id,
            )

        self.orchestrator.subscribe_until(token, self.room.event_updated, on_updated)
        return False

    async def send_file(self, token: TestToken) -> bool:
        try:
            with tempfile.NamedTemporaryFile(
                "w", prefix="roundtrip-", suffix=".txt", delete=False
            ) as tf:
                tf.write("Test")
        except OSError as e:
            logger.warning(f"Failed to create a temporary file: {e}")
            return self.fail(token)
        path = Path(tf.name)
        self._temp_files.append(path)
        file_name = path.name
        logger.info(f"Sending file {file_name}")

        txn_id = self.room.post_file("Test file", path)
        if not self.validate_pending_event(txn_id):
            logger.warning("Invalid pending event right after submitting")
            path.unlink(missing_ok=True)
            return self.fail(token)

        def on_completed(_: FileTransferCompleted) -> bool:
            path.unlink(missing_ok=True)
            return self._check_file_sending_outcome(token, txn_id, file_name)

        def on_failed(event: FileTransferFailed) -> bool:
            self.room.post_plain_text(
                f"{self.origin}: File upload failed: {event.error}"
            )
            path.unlink(missing_ok=True)
            return self.fail(token)

        # Whichever transfer outcome arrives first disposes the other
        group = self.orchestrator.group(token, "file-transfer")
        self.orchestrator.subscribe_until(
            token,
            self.room.file_transfer_completed,
            lambda e: e.transfer_id == txn_id,
            on_completed,
            group=group,
        )
        self.orchestrator.subscribe_until(
            token,
            self.room.file_transfer_failed,
            lambda e: e.transfer_id == txn_id,
            on_failed,
            group=group,
        )
        return False

    def _check_file_sending_outcome(
        self, token: TestToken, txn_id: str, file_name: str
    ) -> bool:
        pending = self.room.find_pending_event(txn_id)
        if pending is None:
            logger.warning("Pending file event dropped before upload completion")
            return self.fail(token)
        if pending.status is not DeliveryStatus.FILE_UPLOADED:
            logger.warning(
                f"Pending file event status upon upload completion is "
                f"{pending.status.value} != {DeliveryStatus.FILE_UPLOADED.value}"
            )
            return self.fail(token)

        def on_merge(merged: PendingEventMerged) -> bool:
            if merged.event.transaction_id != txn_id:
                return False
            logger.info(f"File event {txn_id} arrived in the timeline")
            event = merged.event
            if not isinstance(event, MessageEvent):
                return self.fail(token)
            return self.finish(
                token,
                bool(event.event_id)
                and self._merged_at(merged, txn_id)
                and event.has_file_content
                and event.file_name == file_name,
            )

        self.orchestrator.subscribe_until(
            token, self.room.pending_event_merged, on_merge
        )
        return True

    async def set_topic(self, token: TestToken) -> bool:
        new_topic = self.client.generate_txn_id()  # just a unique string

        def on_topic(_: TopicChanged) -> bool:
            if self.room.topic == new_topic:
                return self.finish(token, True)
            logger.info(
                f"Requested topic was {new_topic}, {self.room.topic} arrived instead"
            )
            return False

        self.orchestrator.subscribe_until(token, self.room.topic_changed, on_topic)
        self.room.set_topic(new_topic)
        return False

    async def send_and_redact(self, token: TestToken) -> bool:
        logger.info("Sending a message to redact")
        txn_id = self.room.post_plain_text(f"{self.origin}: message to redact")
        if not txn_id:
            return self.fail(token)

        def on_sent(sent: MessageSent) -> bool:
            if sent.transaction_id != txn_id:
                return False
            event_id = sent.event_id
            logger.info("Redacting the message")

            def on_added(_: MessagesAdded) -> bool:
                return self._check_redaction_outcome(token, event_id)

            self.orchestrator.subscribe_until(
                token, self.room.messages_added, on_added
            )
            self.room.redact_event(event_id, self.origin)
            return True

        self.orchestrator.subscribe_until(token, self.room.message_sent, on_sent)
        return False

    def _check_redaction_outcome(self, token: TestToken, event_id: str) -> bool:
        # Either the event comes already redacted at the next sync, or the
        # nearest sync brings it unredacted and a later one the redaction.
        event = self.room.find_in_timeline(event_id)
        if event is None:
            return False  # Waiting for the next sync

        if event.redacted:
            logger.info("The sync brought already redacted message")
            return self.finish(token, True)

        logger.info("Message came non-redacted with the sync, waiting for redaction")

        def on_replaced(replaced: EventReplaced) -> bool:
            if replaced.old_event.event_id != event_id:
                return False
            return self.finish(
                token,
                replaced.new_event.redacted
                and replaced.new_event.redaction_reason == self.origin,
            )

        self.orchestrator.subscribe_until(
            token, self.room.event_replaced, on_replaced
        )
        return True

    async def add_and_remove_tag(self, token: TestToken) -> bool:
        tag = self.test_tag
        # Pre-requisite
        if tag in self.room.tags:
            self.room.remove_tag(tag)

        # Tags are applied and tags_changed is emitted synchronously, with
        # the server notified later; there is no way to check the server
        # side here.
        changes: list[TagsChanged] = []
        scope = self.orchestrator.scope(token)
        scope.track(self.room.tags_changed.listen(changes.append))
        self.room.add_tag(tag)
        if len(changes) != 1 or tag not in self.room.tags:
            logger.warning("Tag adding failed")
            return self.fail(token)

        logger.info("Test tag set, removing it now")
        self.room.remove_tag(tag)
        return self.finish(token, len(changes) == 2 and tag not in self.room.tags)

    def _check_direct_chat(self) -> bool:
        return self.client.user_id in self.room.direct_chat_users

    async def mark_direct_chat(self, token: TestToken) -> bool:
        user_id = self.client.user_id
        if self._check_direct_chat():
            self.client.remove_from_direct_chats(self.room.id, user_id)

        # Direct chat operations are synchronous, like tags
        changes: list[DirectChatsChanged] = []
        scope = self.orchestrator.scope(token)
        scope.track(self.client.direct_chats_changed.listen(changes.append))
        logger.info("Marking the room as a direct chat")
        self.client.add_to_direct_chats(self.room, user_id)
        if len(changes) != 1 or not self._check_direct_chat():
            return self.fail(token)

        added = changes[-1].added
        if _pair_count(added) != 1 or self.room.id not in added.get(user_id, ()):
            logger.warning("The room is not in added direct chats")
            return self.fail(token)

        logger.info("Unmarking the direct chat")
        self.client.remove_from_direct_chats(self.room.id, user_id)
        if len(changes) != 2 or self._check_direct_chat():
            return self.fail(token)

        removed = changes[-1].removed
        return self.finish(
            token,
            _pair_count(removed) == 1 and self.room.id in removed.get(user_id, ()),
        )
