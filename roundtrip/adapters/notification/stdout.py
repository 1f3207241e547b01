"""Stdout notification adapter.

Implements NotificationPort by printing the suite summary to the
terminal with human-readable formatting.
"""

import asyncio
import logging

from roundtrip.core.models import SuiteSummary
from roundtrip.core.ports import NotificationPort

logger = logging.getLogger(__name__)


class StdoutNotificationAdapter(NotificationPort):
    """Prints the suite summary to stdout."""

    def __init__(self, verbose: bool = False):
        """Initialize stdout notification adapter.

        Args:
            verbose: If True, list every test name, not only the failures.
        """
        self.verbose = verbose

    async def report_summary(self, summary: SuiteSummary) -> None:
        """Print the suite summary."""
        await asyncio.to_thread(print, self._format_summary(summary, self.verbose))

    @staticmethod
    def _format_summary(summary: SuiteSummary, verbose: bool = False) -> str:
        """Format the summary report."""
        status = "PASSED" if summary.all_passed else "FAILED"
        lines = [
            "=" * 80,
            f"TEST SUITE {status}" + (f" ({summary.origin})" if summary.origin else ""),
            "=" * 80,
            "",
            f"Succeeded: {summary.succeeded_count}",
            f"Failed: {summary.failed_count}",
            f"Did not finish: {summary.unfinished_count}",
        ]

        sections = [("FAILED", summary.failed), ("DID NOT FINISH", summary.unfinished)]
        if verbose:
            sections.insert(0, ("SUCCEEDED", summary.succeeded))
        for title, names in sections:
            if names:
                lines.append("")
                lines.append(f"{title}:")
                for name in names:
                    lines.append(f"  {name}")

        lines.append("")
        lines.append("=" * 80)

        return "\n".join(lines)
