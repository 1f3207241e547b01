"""Exception hierarchy for the Roundtrip test harness.

Two kinds of failure abort a run outright and carry the process exit
status they map to:

- SetupFailure: the suite could not be started (resolve, login, join,
  or the watchdog expiring before any test was dispatched).
- InvariantViolation: a programming defect in the harness or in a test
  procedure (double finish, finish for a name that is not running).

Ordinary test failures and timeouts are outcomes, not exceptions; they
are recorded in the ResultSet.
"""


class RoundtripError(Exception):
    """Base class for all harness errors."""

    exit_code: int = 1


class SetupFailure(RoundtripError):
    """Raised when the suite cannot be set up; no tests are attempted."""

    exit_code = -2


class InvariantViolation(RoundtripError):
    """Raised on a broken harness invariant.

    Never reported as a test outcome; it terminates the run.
    """

    exit_code = -3


class ClientError(RoundtripError):
    """Base class for errors raised by protocol client adapters."""


class ResolveError(ClientError):
    """The homeserver could not be resolved."""


class LoginError(ClientError):
    """Authentication against the homeserver failed.

    Attributes:
        details: Server-provided details, if any.
    """

    def __init__(self, message: str, details: str = ""):
        super().__init__(message)
        self.details = details


class JoinError(ClientError):
    """The target room could not be joined."""


__all__ = [
    "ClientError",
    "InvariantViolation",
    "JoinError",
    "LoginError",
    "ResolveError",
    "RoundtripError",
    "SetupFailure",
]
