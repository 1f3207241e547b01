"""Domain models for the Roundtrip test harness.

All models in this module use only Python standard library types,
ensuring zero external dependencies in the core domain.
"""

import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TypeAlias

from .errors import InvariantViolation


@dataclass(frozen=True)
class Credentials:
    """Who runs the suite and where."""

    user_id: str
    password: str = field(repr=False)
    device_name: str
    room_ref: str  # alias or id of the test room
    origin: str = ""  # tag prefixed to messages posted by the suite

    def __post_init__(self) -> None:
        """Validate credential invariants on creation."""
        if not self.user_id or not self.user_id.strip():
            raise ValueError("user_id must be a non-empty string")
        if not self.room_ref or not self.room_ref.strip():
            raise ValueError("room_ref must be a non-empty string")


@dataclass(frozen=True)
class TestToken:
    """Correlation token identifying one test's lifetime.

    Threaded through every continuation of a test's asynchronous chain.
    Two dispatches of the same test name never produce equal tokens.
    """

    __test__ = False  # not a pytest test class

    name: str
    serial: int
    nonce: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __str__(self) -> str:
        return self.name


Procedure: TypeAlias = Callable[[TestToken], Awaitable[bool]]


class TestStatus(Enum):
    """Lifecycle states for a single test.

    Transitions are monotone:
    - PENDING: registered, not yet dispatched
    - RUNNING: dispatched, waiting for its finish call
    - SUCCEEDED / FAILED: finished with the given outcome
    - UNFINISHED: still running when the watchdog fired
    """

    __test__ = False

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNFINISHED = "unfinished"


@dataclass
class TestCase:
    """A named test procedure from the suite registry."""

    __test__ = False

    name: str
    procedure: Procedure
    status: TestStatus = TestStatus.PENDING

    def __post_init__(self) -> None:
        """Validate test case invariants on creation."""
        if not self.name or not self.name.strip():
            raise ValueError("name must be a non-empty string")

    def mark_running(self) -> None:
        """Transition from PENDING to RUNNING."""
        if self.status != TestStatus.PENDING:
            raise InvariantViolation(
                f"Cannot start test {self.name} in {self.status} status"
            )
        self.status = TestStatus.RUNNING

    def mark_finished(self, outcome: bool) -> None:
        """Transition from RUNNING to SUCCEEDED or FAILED."""
        if self.status != TestStatus.RUNNING:
            raise InvariantViolation(
                f"Cannot finish test {self.name} in {self.status} status"
            )
        self.status = TestStatus.SUCCEEDED if outcome else TestStatus.FAILED

    def mark_unfinished(self) -> None:
        """Transition from RUNNING to UNFINISHED (watchdog expiry)."""
        if self.status != TestStatus.RUNNING:
            raise InvariantViolation(
                f"Cannot expire test {self.name} in {self.status} status"
            )
        self.status = TestStatus.UNFINISHED

    @property
    def is_terminal(self) -> bool:
        return self.status in {
            TestStatus.SUCCEEDED,
            TestStatus.FAILED,
            TestStatus.UNFINISHED,
        }


@dataclass(frozen=True)
class FinishNotice:
    """Structured completion notification emitted by a finish call."""

    name: str
    outcome: bool
    location: str = ""  # "file:line" of the finish call site


@dataclass(frozen=True)
class SuiteSummary:
    """Aggregate result produced once when the suite concludes."""

    origin: str
    succeeded: tuple[str, ...]
    failed: tuple[str, ...]
    unfinished: tuple[str, ...]
    plain_text: str
    html_text: str

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def unfinished_count(self) -> int:
        return len(self.unfinished)

    @property
    def total(self) -> int:
        return self.succeeded_count + self.failed_count + self.unfinished_count

    @property
    def all_passed(self) -> bool:
        return not self.failed and not self.unfinished

    @property
    def exit_code(self) -> int:
        """Process exit status: zero only on full success."""
        return self.failed_count + self.unfinished_count


# ============================================================================
# Room events
# ============================================================================


class DeliveryStatus(Enum):
    """Delivery state of a locally submitted (pending) event."""

    SUBMITTED = "submitted"
    FILE_UPLOADED = "file_uploaded"
    SENT = "sent"
    SEND_FAILED = "send_failed"


@dataclass(frozen=True, kw_only=True)
class RoomEvent:
    """Base class for events in a room timeline.

    Pending events have an empty event_id until the server assigns one.
    """

    event_id: str = ""
    transaction_id: str = ""
    sender: str = ""
    redacted: bool = False
    redaction_reason: str = ""


@dataclass(frozen=True, kw_only=True)
class MessageEvent(RoomEvent):
    """A room message (text, notice, or file)."""

    body: str = ""
    msgtype: str = "m.text"
    formatted_body: str | None = None
    file_name: str | None = None

    @property
    def has_file_content(self) -> bool:
        return self.msgtype == "m.file" and self.file_name is not None


@dataclass(frozen=True, kw_only=True)
class ReactionEvent(RoomEvent):
    """An annotation (reaction) attached to another event."""

    relates_to: str
    key: str


@dataclass(frozen=True, kw_only=True)
class RedactionEvent(RoomEvent):
    """A request to redact another event."""

    redacts: str
    reason: str = ""


@dataclass(frozen=True, kw_only=True)
class TopicEvent(RoomEvent):
    """A room topic state change."""

    topic: str


@dataclass
class PendingEvent:
    """A locally submitted event awaiting server acknowledgment."""

    event: RoomEvent
    status: DeliveryStatus = DeliveryStatus.SUBMITTED

    @property
    def transaction_id(self) -> str:
        return self.event.transaction_id


# ============================================================================
# Stream notifications
# ============================================================================


@dataclass(frozen=True)
class PendingEventMerged:
    """A pending event is about to merge into the timeline."""

    event: RoomEvent
    pending_index: int


@dataclass(frozen=True)
class EventUpdated:
    """Relations (e.g. reactions) of an event have changed."""

    event_id: str


@dataclass(frozen=True)
class FileTransferCompleted:
    """An upload or download finished; transfer_id is the transaction id."""

    transfer_id: str


@dataclass(frozen=True)
class FileTransferFailed:
    """An upload or download failed."""

    transfer_id: str
    error: str


@dataclass(frozen=True)
class TopicChanged:
    topic: str


@dataclass(frozen=True)
class TagsChanged:
    tags: frozenset[str]


@dataclass(frozen=True)
class DirectChatsChanged:
    """Direct chat map delta: user id -> room ids added/removed."""

    added: Mapping[str, frozenset[str]]
    removed: Mapping[str, frozenset[str]]

    def __post_init__(self) -> None:
        """Convert the delta dicts to read-only proxies."""
        if isinstance(self.added, dict):
            object.__setattr__(self, "added", MappingProxyType(self.added))
        if isinstance(self.removed, dict):
            object.__setattr__(self, "removed", MappingProxyType(self.removed))


@dataclass(frozen=True)
class SyncDone:
    sync_number: int


@dataclass(frozen=True)
class MessageSent:
    """The server acknowledged a pending event."""

    transaction_id: str
    event_id: str


@dataclass(frozen=True)
class MessagesAdded:
    """New events were appended to (or backfilled into) the timeline."""

    events: tuple[RoomEvent, ...]


@dataclass(frozen=True)
class EventReplaced:
    """A timeline event was replaced, e.g. by its redacted form."""

    new_event: RoomEvent
    old_event: RoomEvent


@dataclass(frozen=True)
class MembersLoaded:
    """The full member list of a room has been loaded."""
