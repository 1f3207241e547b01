"""Webhook notification adapter.

Implements NotificationPort by POSTing the suite summary as JSON to an
HTTP endpoint, e.g. a CI status collector or a chat webhook.
"""

import logging
from typing import Any

import httpx

from roundtrip.core.models import SuiteSummary
from roundtrip.core.ports import NotificationPort

logger = logging.getLogger(__name__)


class WebhookNotificationAdapter(NotificationPort):
    """Delivers the suite summary to an HTTP webhook."""

    def __init__(
        self,
        url: str,
        token: str | None = None,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize webhook notification adapter.

        Args:
            url: Endpoint receiving the summary.
            token: Optional bearer token sent in the Authorization header.
            timeout_seconds: Request timeout.
            transport: Optional httpx transport (used by tests).
        """
        self.url = url
        self.token = token
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=self.timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def report_summary(self, summary: SuiteSummary) -> None:
        """POST the summary to the webhook.

        Raises:
            httpx.RequestError: If the endpoint cannot be reached.
            httpx.HTTPStatusError: If the endpoint answers with an error.
        """
        payload = self._format_payload(summary)
        try:
            client = await self._get_client()
            response = await client.post(self.url, json=payload)
        except httpx.RequestError as e:
            logger.error(
                f"Failed to deliver summary webhook: {e}",
                extra={"url": self.url},
            )
            raise

        if response.is_success:
            logger.info(
                f"Delivered summary webhook ({response.status_code})",
                extra={"url": self.url, "exit_code": summary.exit_code},
            )
            return

        logger.error(
            f"Summary webhook rejected: {response.status_code}",
            extra={"url": self.url, "response": response.text},
        )
        response.raise_for_status()

    @staticmethod
    def _format_payload(summary: SuiteSummary) -> dict[str, Any]:
        """Build the JSON body for a summary."""
        return {
            "origin": summary.origin,
            "passed": summary.all_passed,
            "exit_code": summary.exit_code,
            "succeeded": list(summary.succeeded),
            "failed": list(summary.failed),
            "unfinished": list(summary.unfinished),
            "text": summary.plain_text,
            "html": summary.html_text,
        }
