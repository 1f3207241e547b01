"""Fake ProtocolClientPort and RoomPort implementations for testing."""

import asyncio
from dataclasses import replace
from pathlib import Path

from roundtrip.core.models import (
    DeliveryStatus,
    DirectChatsChanged,
    EventReplaced,
    EventUpdated,
    MessageEvent,
    MessageSent,
    MessagesAdded,
    PendingEvent,
    PendingEventMerged,
    ReactionEvent,
    RoomEvent,
    SyncDone,
    TagsChanged,
    TopicChanged,
)
from roundtrip.core.ports import ProtocolClientPort, RoomPort


class FakeRoom(RoomPort):
    """In-memory room for testing.

    Requests are captured and get SUBMITTED pending events. Nothing is
    confirmed unless the test calls acknowledge()/merge(), except that
    auto_acknowledge emits MessageSent on the next loop iteration.
    """

    def __init__(
        self,
        room_id: str = "!test:example.org",
        alias: str = "#test:example.org",
        timeline: list[RoomEvent] | None = None,
        auto_acknowledge: bool = True,
    ):
        super().__init__()
        self._id = room_id
        self._alias = alias
        self._timeline: list[RoomEvent] = (
            [MessageEvent(event_id="$seed", body="seed")] if timeline is None else timeline
        )
        self._pending: list[PendingEvent] = []
        self._tags: set[str] = set()
        self._topic = ""
        self.auto_acknowledge = auto_acknowledge
        self.history: list[RoomEvent] = [MessageEvent(event_id="$old", body="old")]
        self.posted: list[tuple[str, str]] = []
        self.submitted: list[tuple[str, str]] = []
        self.calls: list[str] = []
        self.leave_error: Exception | None = None
        self.leave_delay = 0.0
        self.members: tuple[str, ...] = ("@tester:example.org",)
        self.joined = 1
        self.direct_users: set[str] = set()
        self.relations: dict[str, list[RoomEvent]] = {}
        self.requested_topic = ""
        self._counter = 0

    @property
    def id(self) -> str:
        return self._id

    @property
    def canonical_alias(self) -> str:
        return self._alias

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def tags(self) -> frozenset[str]:
        return frozenset(self._tags)

    @property
    def timeline_size(self) -> int:
        return len(self._timeline)

    @property
    def pending_events(self) -> tuple[PendingEvent, ...]:
        return tuple(self._pending)

    @property
    def member_names(self) -> tuple[str, ...]:
        return self.members

    @property
    def joined_count(self) -> int:
        return self.joined

    @property
    def direct_chat_users(self) -> frozenset[str]:
        return frozenset(self.direct_users)

    def post_plain_text(self, text: str) -> str:
        return self._submit("text", MessageEvent(body=text))

    def post_notice(self, text: str) -> str:
        return self._submit("notice", MessageEvent(body=text, msgtype="m.notice"))

    def post_html_text(self, plain_text: str, html: str) -> str:
        return self._submit(
            "html", MessageEvent(body=plain_text, formatted_body=html)
        )

    def post_reaction(self, event_id: str, key: str) -> str:
        return self._submit("reaction", ReactionEvent(relates_to=event_id, key=key))

    def post_file(self, caption: str, path: Path) -> str:
        return self._submit(
            "file", MessageEvent(body=caption, msgtype="m.file", file_name=path.name)
        )

    def set_topic(self, topic: str) -> None:
        self.calls.append("set_topic")
        self.requested_topic = topic

    def redact_event(self, event_id: str, reason: str = "") -> str:
        self.calls.append("redact_event")
        return self._next_txn()

    def add_tag(self, tag: str) -> None:
        self._tags.add(tag)
        self.tags_changed.emit(TagsChanged(self.tags))

    def remove_tag(self, tag: str) -> None:
        self._tags.discard(tag)
        self.tags_changed.emit(TagsChanged(self.tags))

    def find_pending_event(self, transaction_id: str) -> PendingEvent | None:
        for pending in self._pending:
            if pending.transaction_id == transaction_id:
                return pending
        return None

    def find_in_timeline(self, event_id: str) -> RoomEvent | None:
        for event in self._timeline:
            if event.event_id == event_id:
                return event
        return None

    def message_events(self) -> tuple[RoomEvent, ...]:
        return tuple(self._timeline)

    def related_events(
        self, event_id: str, relation_type: str = "m.annotation"
    ) -> tuple[RoomEvent, ...]:
        return tuple(self.relations.get(event_id, ()))

    def get_previous_content(self) -> None:
        self.calls.append("get_previous_content")
        history, self.history = tuple(self.history), []
        self._timeline[:0] = history
        asyncio.get_running_loop().call_soon(
            self.messages_added.emit, MessagesAdded(history)
        )

    def set_displayed(self) -> None:
        self.calls.append("set_displayed")

    async def leave(self) -> None:
        self.calls.append("leave")
        if self.leave_delay:
            await asyncio.sleep(self.leave_delay)
        if self.leave_error is not None:
            raise self.leave_error

    # ------------------------------------------------------------------
    # Test drivers
    # ------------------------------------------------------------------

    def acknowledge(self, txn_id: str, event_id: str | None = None) -> str:
        """Play the server acknowledging a pending event."""
        event_id = event_id or f"$ev-{txn_id}"
        pending = self.find_pending_event(txn_id)
        if pending is not None:
            pending.status = DeliveryStatus.SENT
        self.message_sent.emit(MessageSent(txn_id, event_id))
        return event_id

    def merge(self, txn_id: str, event_id: str | None = None) -> None:
        """Play a sync merging a pending event into the timeline."""
        index = next(
            i for i, p in enumerate(self._pending) if p.transaction_id == txn_id
        )
        event = replace(self._pending[index].event, event_id=event_id or f"$ev-{txn_id}")
        self.pending_event_merged.emit(PendingEventMerged(event, index))
        del self._pending[index]
        self._timeline.append(event)
        self.messages_added.emit(MessagesAdded((event,)))

    def react(self, txn_id: str, event_id: str | None = None) -> None:
        """Play a sync attaching a pending reaction to its target."""
        pending = self.find_pending_event(txn_id)
        self._pending.remove(pending)
        event = replace(pending.event, event_id=event_id or f"$ev-{txn_id}")
        self.relations.setdefault(event.relates_to, []).append(event)
        self.event_updated.emit(EventUpdated(event.relates_to))

    def change_topic(self, topic: str) -> None:
        """Play a sync bringing a topic change."""
        self._topic = topic
        self.topic_changed.emit(TopicChanged(topic))

    def replace_event(self, event_id: str, reason: str) -> None:
        """Play a sync bringing the redaction of a timeline event."""
        index = next(i for i, e in enumerate(self._timeline) if e.event_id == event_id)
        old_event = self._timeline[index]
        new_event = replace(old_event, redacted=True, redaction_reason=reason)
        self._timeline[index] = new_event
        self.event_replaced.emit(EventReplaced(new_event, old_event))

    def pending_id(self, kind: str) -> str:
        """Transaction id of the latest pending request of the given kind."""
        return next(txn_id for k, txn_id in reversed(self.submitted) if k == kind)

    def texts(self, kind: str) -> list[str]:
        return [text for k, text in self.posted if k == kind]

    def _next_txn(self) -> str:
        self._counter += 1
        return f"txn-{self._counter}"

    def _submit(self, kind: str, event: RoomEvent) -> str:
        txn_id = self._next_txn()
        self._pending.append(PendingEvent(replace(event, transaction_id=txn_id)))
        self.submitted.append((kind, txn_id))
        self.posted.append((kind, event.body if isinstance(event, MessageEvent) else ""))
        if self.auto_acknowledge:
            asyncio.get_running_loop().call_soon(self.acknowledge, txn_id)
        return txn_id


class FakeProtocolClient(ProtocolClientPort):
    """Scripted protocol client for testing.

    connect/join outcomes are configured through the *_error attributes;
    while syncing, SyncDone is emitted every sync_interval seconds.
    """

    def __init__(self, room: FakeRoom | None = None, sync_interval: float = 0.01):
        super().__init__()
        self.room = room or FakeRoom()
        self.sync_interval = sync_interval
        self.connect_error: Exception | None = None
        self.join_error: Exception | None = None
        self.connect_delay = 0.0
        self.logout_error: Exception | None = None
        self.lazy_loading: bool | None = None
        # Unrelated pairs slipped into direct chat deltas
        self.extra_added: dict[str, frozenset[str]] = {}
        self.extra_removed: dict[str, frozenset[str]] = {}
        self.calls: list[str] = []
        self.sync_count = 0
        self._user_id = ""
        self._counter = 0
        self._sync_task: asyncio.Task[None] | None = None

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def homeserver(self) -> str:
        return "https://example.org"

    async def connect(self, user_id: str, password: str, device_name: str) -> None:
        self.calls.append("connect")
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        self._user_id = user_id

    def set_lazy_loading(self, enabled: bool) -> None:
        self.lazy_loading = enabled

    def start_sync(self) -> None:
        self.calls.append("start_sync")
        self._sync_task = asyncio.get_running_loop().create_task(self._sync_loop())

    async def join_room(self, room_ref: str) -> RoomPort:
        self.calls.append("join_room")
        if self.join_error is not None:
            raise self.join_error
        self.room_loaded.emit(self.room)
        return self.room

    def room_by_alias(self, alias: str) -> RoomPort | None:
        return self.room if alias == self.room.canonical_alias else None

    def generate_txn_id(self) -> str:
        self._counter += 1
        return f"client-txn-{self._counter}"

    def add_to_direct_chats(self, room: RoomPort, user_id: str) -> None:
        if room is self.room:
            self.room.direct_users.add(user_id)
        added = {user_id: frozenset({room.id}), **self.extra_added}
        self.direct_chats_changed.emit(DirectChatsChanged(added=added, removed={}))

    def remove_from_direct_chats(self, room_id: str, user_id: str) -> None:
        if room_id == self.room.id:
            self.room.direct_users.discard(user_id)
        removed = {user_id: frozenset({room_id}), **self.extra_removed}
        self.direct_chats_changed.emit(DirectChatsChanged(added={}, removed=removed))

    async def logout(self) -> None:
        self.calls.append("logout")
        if self._sync_task is not None:
            self._sync_task.cancel()
            self._sync_task = None
        if self.logout_error is not None:
            raise self.logout_error

    def sync(self) -> None:
        self.sync_count += 1
        self.sync_done.emit(SyncDone(self.sync_count))

    async def _sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sync_interval)
            self.sync()
