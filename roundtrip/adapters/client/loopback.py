"""Loopback protocol client adapter.

Implements ProtocolClientPort and RoomPort against an in-process
simulated homeserver. Requests return transaction ids at once; the
server side answers after a configurable latency and timeline changes
are delivered in sync batches, so the suite sees the same asynchronous
shape it would see against a live server:

- post_*: pending event SUBMITTED -> MessageSent after latency ->
  merged into the timeline at the next sync
- post_file: upload -> FileTransferCompleted (or FileTransferFailed)
  -> acknowledged -> merged
- set_topic / redact_event: applied at the next sync after latency
- tags and direct chats: applied synchronously, like the real client
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import replace
from pathlib import Path

from roundtrip.core.errors import JoinError, LoginError, ResolveError
from roundtrip.core.models import (
    DeliveryStatus,
    DirectChatsChanged,
    EventReplaced,
    EventUpdated,
    FileTransferCompleted,
    FileTransferFailed,
    MembersLoaded,
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
    TopicEvent,
)
from roundtrip.core.ports import ProtocolClientPort, RoomPort

logger = logging.getLogger(__name__)

DEFAULT_SEED_HISTORY = ("Welcome to the loopback test room",)


class LoopbackRoom(RoomPort):
    """A room on the simulated homeserver."""

    def __init__(
        self,
        client: "LoopbackClient",
        room_id: str,
        alias: str = "",
        joined_count: int = 1,
        history: Sequence[RoomEvent] = (),
    ):
        super().__init__()
        self.client = client
        self._id = room_id
        self._alias = alias
        self._topic = ""
        self._tags: set[str] = set()
        self._timeline: list[RoomEvent] = []
        self._history: list[RoomEvent] = list(history)
        self._pending: list[PendingEvent] = []
        self._relations: dict[str, list[RoomEvent]] = defaultdict(list)
        self._assigned_ids: dict[str, str] = {}  # txn id -> server event id
        self._pending_redactions: dict[str, str] = {}  # event id -> reason
        self._sync_queue: list[Callable[[], list[RoomEvent]]] = []
        self._all_members = [client.user_id] + [
            f"@member{i}:{client.domain}" for i in range(1, joined_count)
        ]
        self._members_complete = False
        self.left = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

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
        if self._members_complete or not self.client.lazy_loading:
            return tuple(self._all_members)
        return (self.client.user_id,)

    @property
    def joined_count(self) -> int:
        return len(self._all_members)

    @property
    def direct_chat_users(self) -> frozenset[str]:
        return self.client.direct_chat_users(self._id)

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
        if relation_type != "m.annotation":
            return ()
        return tuple(self._relations.get(event_id, ()))

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def post_plain_text(self, text: str) -> str:
        return self._submit(MessageEvent(body=text))

    def post_notice(self, text: str) -> str:
        return self._submit(MessageEvent(body=text, msgtype="m.notice"))

    def post_html_text(self, plain_text: str, html: str) -> str:
        return self._submit(MessageEvent(body=plain_text, formatted_body=html))

    def post_reaction(self, event_id: str, key: str) -> str:
        return self._submit(ReactionEvent(relates_to=event_id, key=key))

    def post_file(self, caption: str, path: Path) -> str:
        event = MessageEvent(body=caption, msgtype="m.file", file_name=path.name)
        txn_id = self._submit(event, acknowledge=False)
        self.client.call_later(lambda: self._finish_upload(txn_id, path))
        return txn_id

    def set_topic(self, topic: str) -> None:
        self.client.call_later(
            lambda: self._sync_queue.append(lambda: self._apply_topic(topic))
        )

    def redact_event(self, event_id: str, reason: str = "") -> str:
        txn_id = self.client.generate_txn_id()
        self.client.call_later(
            lambda: self._sync_queue.append(lambda: self._apply_redaction(event_id, reason))
        )
        return txn_id

    def add_tag(self, tag: str) -> None:
        if tag in self._tags:
            return
        self._tags.add(tag)
        self.tags_changed.emit(TagsChanged(self.tags))

    def remove_tag(self, tag: str) -> None:
        if tag not in self._tags:
            return
        self._tags.discard(tag)
        self.tags_changed.emit(TagsChanged(self.tags))

    def get_previous_content(self) -> None:
        self.client.call_later(self._backfill)

    def set_displayed(self) -> None:
        if not self._members_complete:
            self.client.call_later(self._load_members)

    async def leave(self) -> None:
        await asyncio.sleep(self.client.latency_seconds)
        self.left = True
        self.client._forget(self)
        logger.debug(f"Left {self._id}")

    # ------------------------------------------------------------------
    # Simulated server side
    # ------------------------------------------------------------------

    def _submit(self, event: RoomEvent, acknowledge: bool = True) -> str:
        txn_id = self.client.generate_txn_id()
        event = replace(event, transaction_id=txn_id, sender=self.client.user_id)
        self._pending.append(PendingEvent(event))
        if acknowledge:
            self.client.call_later(lambda: self._acknowledge(txn_id))
        return txn_id

    def _finish_upload(self, txn_id: str, path: Path) -> None:
        pending = self.find_pending_event(txn_id)
        if pending is None:
            return
        if self.client.fail_uploads or not path.exists():
            pending.status = DeliveryStatus.SEND_FAILED
            error = "simulated upload failure" if path.exists() else f"{path} not found"
            self.file_transfer_failed.emit(FileTransferFailed(txn_id, error))
            return
        pending.status = DeliveryStatus.FILE_UPLOADED
        self.file_transfer_completed.emit(FileTransferCompleted(txn_id))
        self.client.call_later(lambda: self._acknowledge(txn_id))

    def _acknowledge(self, txn_id: str) -> None:
        pending = self.find_pending_event(txn_id)
        if pending is None:
            return
        event_id = self.client.generate_event_id()
        self._assigned_ids[txn_id] = event_id
        pending.status = DeliveryStatus.SENT
        self.message_sent.emit(MessageSent(txn_id, event_id))
        self._sync_queue.append(lambda: self._merge(txn_id))

    def _merge(self, txn_id: str) -> list[RoomEvent]:
        index = next(
            (i for i, p in enumerate(self._pending) if p.transaction_id == txn_id),
            None,
        )
        if index is None:
            return []
        event = replace(self._pending[index].event, event_id=self._assigned_ids[txn_id])
        if event.event_id in self._pending_redactions:
            event = self._redacted(event, self._pending_redactions.pop(event.event_id))

        self.pending_event_merged.emit(PendingEventMerged(event, index))
        del self._pending[index]
        self._timeline.append(event)
        if isinstance(event, ReactionEvent):
            self._relations[event.relates_to].append(event)
            self.event_updated.emit(EventUpdated(event.relates_to))
        return [event]

    def _apply_topic(self, topic: str) -> list[RoomEvent]:
        event = TopicEvent(
            event_id=self.client.generate_event_id(),
            sender=self.client.user_id,
            topic=topic,
        )
        self._timeline.append(event)
        self._topic = topic
        self.topic_changed.emit(TopicChanged(topic))
        return [event]

    def _apply_redaction(self, event_id: str, reason: str) -> list[RoomEvent]:
        for i, old in enumerate(self._timeline):
            if old.event_id == event_id:
                new = self._redacted(old, reason)
                self._timeline[i] = new
                self.event_replaced.emit(EventReplaced(new, old))
                return []
        # Not merged yet; it will arrive already redacted
        self._pending_redactions[event_id] = reason
        return []

    @staticmethod
    def _redacted(event: RoomEvent, reason: str) -> RoomEvent:
        if isinstance(event, MessageEvent):
            event = replace(event, body="", formatted_body=None, file_name=None)
        return replace(event, redacted=True, redaction_reason=reason)

    def _backfill(self) -> None:
        history, self._history = tuple(self._history), []
        self._timeline[:0] = history
        self.messages_added.emit(MessagesAdded(history))

    def _load_members(self) -> None:
        self._members_complete = True
        self.members_loaded.emit(MembersLoaded())

    def _apply_sync(self) -> None:
        """Apply queued server-side changes and announce new events."""
        queue, self._sync_queue = self._sync_queue, []
        added: list[RoomEvent] = []
        for operation in queue:
            added.extend(operation())
        if added:
            self.messages_added.emit(MessagesAdded(tuple(added)))


class LoopbackClient(ProtocolClientPort):
    """Connection to the simulated homeserver."""

    def __init__(
        self,
        latency_seconds: float = 0.05,
        sync_interval_seconds: float = 0.2,
        fail_uploads: bool = False,
        password: str | None = None,
        members_room_alias: str = "#quotient:matrix.org",
        members_room_size: int = 25,
        seed_history: Sequence[str] = DEFAULT_SEED_HISTORY,
        unjoinable_rooms: Sequence[str] = (),
    ):
        """Initialize loopback client.

        Args:
            latency_seconds: Delay before the server answers a request.
            sync_interval_seconds: Interval between sync batches.
            fail_uploads: Make every file upload fail.
            password: Required password (None accepts any).
            members_room_alias: Alias of a pre-joined, larger room.
            members_room_size: Joined member count of that room.
            seed_history: Bodies of messages already in joined rooms.
            unjoinable_rooms: Room references whose join is rejected.
        """
        super().__init__()
        self.latency_seconds = latency_seconds
        self.sync_interval_seconds = sync_interval_seconds
        self.fail_uploads = fail_uploads
        self.password = password
        self.members_room_alias = members_room_alias
        self.members_room_size = members_room_size
        self.seed_history = tuple(seed_history)
        self.unjoinable_rooms = set(unjoinable_rooms)
        self.lazy_loading = True
        self.domain = ""
        self.connected = False
        self.logged_out = False
        self.sync_count = 0
        self._user_id = ""
        self._rooms: dict[str, LoopbackRoom] = {}
        self._direct_chats: dict[str, set[str]] = defaultdict(set)
        self._counter = 0
        self._sync_task: asyncio.Task[None] | None = None

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def homeserver(self) -> str:
        return f"https://{self.domain}" if self.domain else ""

    @property
    def rooms(self) -> tuple[LoopbackRoom, ...]:
        return tuple(self._rooms.values())

    async def connect(self, user_id: str, password: str, device_name: str) -> None:
        _, _, domain = user_id.partition(":")
        if not user_id.startswith("@") or not domain:
            raise ResolveError(f"Cannot resolve a homeserver for {user_id!r}")
        await asyncio.sleep(self.latency_seconds)
        if self.password is not None and password != self.password:
            raise LoginError("Invalid username or password", details="M_FORBIDDEN")

        self.domain = domain
        self._user_id = user_id
        self.connected = True
        logger.info(f"Loopback login as {user_id} ({device_name})")

        members_room = LoopbackRoom(
            self,
            f"!members:{domain}",
            alias=self.members_room_alias,
            joined_count=self.members_room_size,
        )
        self._rooms[members_room.id] = members_room
        self.room_loaded.emit(members_room)

    def set_lazy_loading(self, enabled: bool) -> None:
        self.lazy_loading = enabled

    def start_sync(self) -> None:
        if self._sync_task is None:
            self._sync_task = asyncio.get_running_loop().create_task(
                self._sync_loop(), name="loopback-sync"
            )

    async def join_room(self, room_ref: str) -> RoomPort:
        await asyncio.sleep(self.latency_seconds)
        if room_ref in self.unjoinable_rooms or room_ref[:1] not in {"#", "!"}:
            raise JoinError(f"Cannot join {room_ref}")

        existing = self.room_by_alias(room_ref) or self._rooms.get(room_ref)
        if existing is not None:
            return existing

        if room_ref.startswith("!"):
            room_id = room_ref
        else:
            room_id = f"!{uuid.uuid4().hex[:12]}:{self.domain}"
        history = [
            MessageEvent(
                event_id=self.generate_event_id(),
                sender=f"@bot:{self.domain}",
                body=body,
            )
            for body in self.seed_history
        ]
        room = LoopbackRoom(
            self,
            room_id,
            alias=room_ref if room_ref.startswith("#") else "",
            history=history,
        )
        self._rooms[room.id] = room
        self.room_loaded.emit(room)
        return room

    def room_by_alias(self, alias: str) -> RoomPort | None:
        for room in self._rooms.values():
            if room.canonical_alias == alias:
                return room
        return None

    def generate_txn_id(self) -> str:
        self._counter += 1
        return f"lb{self._counter}-{uuid.uuid4().hex[:8]}"

    def generate_event_id(self) -> str:
        self._counter += 1
        return f"${self._counter}{uuid.uuid4().hex[:8]}:{self.domain}"

    def direct_chat_users(self, room_id: str) -> frozenset[str]:
        return frozenset(
            user for user, rooms in self._direct_chats.items() if room_id in rooms
        )

    def add_to_direct_chats(self, room: RoomPort, user_id: str) -> None:
        if room.id in self._direct_chats[user_id]:
            return
        self._direct_chats[user_id].add(room.id)
        self.direct_chats_changed.emit(
            DirectChatsChanged(added={user_id: frozenset({room.id})}, removed={})
        )

    def remove_from_direct_chats(self, room_id: str, user_id: str) -> None:
        if room_id not in self._direct_chats.get(user_id, set()):
            return
        self._direct_chats[user_id].discard(room_id)
        self.direct_chats_changed.emit(
            DirectChatsChanged(added={}, removed={user_id: frozenset({room_id})})
        )

    async def logout(self) -> None:
        await asyncio.sleep(self.latency_seconds)
        if self._sync_task is not None:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None
        self.connected = False
        self.logged_out = True
        logger.info("Loopback logout complete")

    def call_later(self, callback: Callable[[], None]) -> None:
        """Run a server-side callback after the configured latency."""
        asyncio.get_running_loop().call_later(self.latency_seconds, callback)

    def sync_once(self) -> None:
        """Deliver one sync batch immediately."""
        self.sync_count += 1
        for room in list(self._rooms.values()):
            room._apply_sync()
        self.sync_done.emit(SyncDone(self.sync_count))

    def _forget(self, room: LoopbackRoom) -> None:
        self._rooms.pop(room.id, None)

    async def _sync_loop(self) -> None:
        while not self.logged_out:
            await asyncio.sleep(self.sync_interval_seconds)
            self.sync_once()
