"""Port interfaces for the Roundtrip test harness.

These abstract base classes define the boundaries between the core
orchestration logic and external adapters. Implementations live in the
adapters/ package.

Port Interface Categories:

1. **Protocol client** (core drives the remote service through it)
   - ProtocolClientPort: connect, sync, join, direct chats, logout
   - RoomPort: requests returning local transaction ids, room state,
     and the event streams confirmations arrive on

2. **Notification** (core reports the final summary)
   - NotificationPort: publish the suite summary to developers

Requests are synchronous and return a client-local transaction id; the
server's acknowledgment arrives later as an event on one of the
streams. Streams are plain EventStream instances created by the port
base classes, so adapters only emit into them.
"""

from abc import ABC, abstractmethod
from pathlib import Path

from .models import (
    DirectChatsChanged,
    EventReplaced,
    EventUpdated,
    FileTransferCompleted,
    FileTransferFailed,
    MembersLoaded,
    MessageSent,
    MessagesAdded,
    PendingEvent,
    PendingEventMerged,
    RoomEvent,
    SuiteSummary,
    SyncDone,
    TagsChanged,
    TopicChanged,
)
from .subscriptions import EventStream


# ============================================================================
# PROTOCOL CLIENT PORTS
# ============================================================================


class RoomPort(ABC):
    """Port for a joined room on the remote service.

    Adapters must call ``super().__init__()`` so the event streams exist,
    and must emit into them on the event loop thread.
    """

    def __init__(self) -> None:
        self.pending_event_merged: EventStream[PendingEventMerged] = EventStream(
            "pending_event_merged"
        )
        self.event_updated: EventStream[EventUpdated] = EventStream("event_updated")
        self.file_transfer_completed: EventStream[FileTransferCompleted] = (
            EventStream("file_transfer_completed")
        )
        self.file_transfer_failed: EventStream[FileTransferFailed] = EventStream(
            "file_transfer_failed"
        )
        self.topic_changed: EventStream[TopicChanged] = EventStream("topic_changed")
        self.tags_changed: EventStream[TagsChanged] = EventStream("tags_changed")
        self.message_sent: EventStream[MessageSent] = EventStream("message_sent")
        self.messages_added: EventStream[MessagesAdded] = EventStream(
            "messages_added"
        )
        self.event_replaced: EventStream[EventReplaced] = EventStream(
            "event_replaced"
        )
        self.members_loaded: EventStream[MembersLoaded] = EventStream(
            "members_loaded"
        )

    @property
    @abstractmethod
    def id(self) -> str:
        """Server-side room id."""

    @property
    @abstractmethod
    def canonical_alias(self) -> str:
        """Canonical alias, or an empty string."""

    @property
    @abstractmethod
    def topic(self) -> str:
        """Current room topic as last seen by the client."""

    @property
    @abstractmethod
    def tags(self) -> frozenset[str]:
        """Tags the current user has set on this room."""

    @property
    @abstractmethod
    def timeline_size(self) -> int:
        """Number of events loaded in the timeline."""

    @property
    @abstractmethod
    def pending_events(self) -> tuple[PendingEvent, ...]:
        """Locally submitted events not yet merged into the timeline."""

    @property
    @abstractmethod
    def member_names(self) -> tuple[str, ...]:
        """Display names of members loaded so far."""

    @property
    @abstractmethod
    def joined_count(self) -> int:
        """Number of joined members reported by the server."""

    @property
    @abstractmethod
    def direct_chat_users(self) -> frozenset[str]:
        """Users this room is marked as a direct chat with."""

    @abstractmethod
    def post_plain_text(self, text: str) -> str:
        """Send a plain text message.

        Returns:
            Client-local transaction id of the pending event.
        """

    @abstractmethod
    def post_notice(self, text: str) -> str:
        """Send a notice message. Returns the transaction id."""

    @abstractmethod
    def post_html_text(self, plain_text: str, html: str) -> str:
        """Send a message with an HTML rendering. Returns the transaction id."""

    @abstractmethod
    def post_reaction(self, event_id: str, key: str) -> str:
        """Annotate event_id with key. Returns the transaction id."""

    @abstractmethod
    def post_file(self, caption: str, path: Path) -> str:
        """Upload a local file and send it as a message.

        Upload progress is reported on file_transfer_completed /
        file_transfer_failed keyed by the returned transaction id.
        """

    @abstractmethod
    def set_topic(self, topic: str) -> None:
        """Request a topic change; confirmed through topic_changed."""

    @abstractmethod
    def redact_event(self, event_id: str, reason: str = "") -> str:
        """Request redaction of an event. Returns the transaction id."""

    @abstractmethod
    def add_tag(self, tag: str) -> None:
        """Tag the room. Applied locally at once; tags_changed is emitted
        synchronously and the server is notified asynchronously."""

    @abstractmethod
    def remove_tag(self, tag: str) -> None:
        """Remove a room tag (synchronous, like add_tag)."""

    @abstractmethod
    def find_pending_event(self, transaction_id: str) -> PendingEvent | None:
        """Find a pending event by transaction id."""

    @abstractmethod
    def find_in_timeline(self, event_id: str) -> RoomEvent | None:
        """Find a loaded timeline event by its server id."""

    @abstractmethod
    def message_events(self) -> tuple[RoomEvent, ...]:
        """Loaded timeline events, oldest first."""

    @abstractmethod
    def related_events(
        self, event_id: str, relation_type: str = "m.annotation"
    ) -> tuple[RoomEvent, ...]:
        """Events related to event_id with the given relation type."""

    @abstractmethod
    def get_previous_content(self) -> None:
        """Request older history; arrives through messages_added."""

    @abstractmethod
    def set_displayed(self) -> None:
        """Mark the room displayed; triggers loading of all members."""

    @abstractmethod
    async def leave(self) -> None:
        """Leave the room.

        Raises:
            ClientError: If the server rejects the request.
        """


class ProtocolClientPort(ABC):
    """Port for a connection to the remote service."""

    def __init__(self) -> None:
        self.sync_done: EventStream[SyncDone] = EventStream("sync_done")
        self.direct_chats_changed: EventStream[DirectChatsChanged] = EventStream(
            "direct_chats_changed"
        )
        self.room_loaded: EventStream[RoomPort] = EventStream("room_loaded")

    @property
    @abstractmethod
    def user_id(self) -> str:
        """Fully qualified id of the logged in user."""

    @property
    @abstractmethod
    def homeserver(self) -> str:
        """Base URL of the resolved homeserver."""

    @abstractmethod
    async def connect(self, user_id: str, password: str, device_name: str) -> None:
        """Resolve the homeserver and log in.

        Raises:
            ResolveError: If the homeserver cannot be resolved.
            LoginError: If authentication fails.
        """

    @abstractmethod
    def set_lazy_loading(self, enabled: bool) -> None:
        """Toggle lazy loading of room members."""

    @abstractmethod
    def start_sync(self) -> None:
        """Start the background sync loop; each batch ends with sync_done."""

    @abstractmethod
    async def join_room(self, room_ref: str) -> RoomPort:
        """Join a room by alias or id.

        Raises:
            JoinError: If the room cannot be joined.
        """

    @abstractmethod
    def room_by_alias(self, alias: str) -> RoomPort | None:
        """Return an already joined room by alias, if any."""

    @abstractmethod
    def generate_txn_id(self) -> str:
        """Generate a fresh, unique transaction id."""

    @abstractmethod
    def add_to_direct_chats(self, room: RoomPort, user_id: str) -> None:
        """Mark room as a direct chat with user_id.

        Applied synchronously; direct_chats_changed is emitted at once.
        """

    @abstractmethod
    def remove_from_direct_chats(self, room_id: str, user_id: str) -> None:
        """Unmark a direct chat (synchronous, like add_to_direct_chats)."""

    @abstractmethod
    async def logout(self) -> None:
        """Log out and stop syncing."""


# ============================================================================
# NOTIFICATION PORT
# ============================================================================


class NotificationPort(ABC):
    """Port for reporting the final suite summary.

    Implementations may deliver to terminal, HTTP endpoints, etc. The
    summary is also posted to the test room by the session; a
    notification failure never changes the run's exit status.
    """

    @abstractmethod
    async def report_summary(self, summary: SuiteSummary) -> None:
        """Publish the suite summary.

        Raises:
            Exception: If delivery fails. The caller logs and continues.
        """

    async def close(self) -> None:
        """Release any resources held by the adapter."""
