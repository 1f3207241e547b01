"""Core domain logic for the Roundtrip test harness.

This package contains zero external dependencies and represents
the pure orchestration logic of the application. All adapters and
external integrations are handled by the adapters package.
"""

from .errors import (
    ClientError,
    InvariantViolation,
    JoinError,
    LoginError,
    ResolveError,
    RoundtripError,
    SetupFailure,
)
from .models import (
    Credentials,
    DeliveryStatus,
    FinishNotice,
    SuiteSummary,
    TestCase,
    TestStatus,
    TestToken,
)

__all__ = [
    "ClientError",
    "Credentials",
    "DeliveryStatus",
    "FinishNotice",
    "InvariantViolation",
    "JoinError",
    "LoginError",
    "ResolveError",
    "RoundtripError",
    "SetupFailure",
    "SuiteSummary",
    "TestCase",
    "TestStatus",
    "TestToken",
]
