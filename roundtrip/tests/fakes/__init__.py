"""Fake/mock implementations of core ports for testing.

These in-memory implementations allow core orchestration logic to be
tested without a server:

- FakeProtocolClient: Scripted connect/join outcomes and manual syncs
- FakeRoom: Captured requests; acknowledgments driven by the test
- FakeNotificationPort: Captured summaries for assertion
"""

from .client import FakeProtocolClient, FakeRoom
from .notification import FakeNotificationPort

__all__ = [
    "FakeNotificationPort",
    "FakeProtocolClient",
    "FakeRoom",
]
