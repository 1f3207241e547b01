"""Fake NotificationPort implementation for testing."""

from roundtrip.core.models import SuiteSummary
from roundtrip.core.ports import NotificationPort


class FakeNotificationPort(NotificationPort):
    """In-memory notification adapter for testing.

    Captures all summaries sent through this port for test assertions.
    """

    def __init__(self):
        """Initialize with empty notification history."""
        self.reported_summaries: list[SuiteSummary] = []
        self.report_summary_call_count = 0
        self.close_call_count = 0
        self.should_fail: bool = False
        self.fail_message: str = "Notification failed"

    async def report_summary(self, summary: SuiteSummary) -> None:
        """Capture the summary for test assertions."""
        self.report_summary_call_count += 1

        if self.should_fail:
            raise RuntimeError(self.fail_message)

        self.reported_summaries.append(summary)

    async def close(self) -> None:
        self.close_call_count += 1

    def get_last_summary_report(self) -> SuiteSummary | None:
        """Get the most recent summary report, if any."""
        if self.reported_summaries:
            return self.reported_summaries[-1]
        return None

    def set_should_fail(self, should_fail: bool, message: str = "Notification failed") -> None:
        """Configure the adapter to fail on the next operation."""
        self.should_fail = should_fail
        self.fail_message = message
