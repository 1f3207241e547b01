"""Tests for the stdout and webhook notification adapters."""

import json

import httpx
import pytest

from roundtrip.adapters.notification.stdout import StdoutNotificationAdapter
from roundtrip.adapters.notification.webhook import WebhookNotificationAdapter
from roundtrip.core.models import SuiteSummary
from roundtrip.core.summary import build_summary


@pytest.fixture
def passing_summary() -> SuiteSummary:
    return build_summary("ci", ("a", "b"), (), ())


@pytest.fixture
def failing_summary() -> SuiteSummary:
    return build_summary("ci", ("a",), ("b",), ("c",))


class TestStdoutNotificationAdapter:
    @pytest.mark.asyncio
    async def test_prints_failures(
        self, failing_summary: SuiteSummary, capsys: pytest.CaptureFixture[str]
    ) -> None:
        adapter = StdoutNotificationAdapter()

        await adapter.report_summary(failing_summary)

        out = capsys.readouterr().out
        assert "TEST SUITE FAILED (ci)" in out
        assert "FAILED:\n  b" in out
        assert "DID NOT FINISH:\n  c" in out
        assert "SUCCEEDED:" not in out

    @pytest.mark.asyncio
    async def test_verbose_lists_successes(
        self, passing_summary: SuiteSummary, capsys: pytest.CaptureFixture[str]
    ) -> None:
        adapter = StdoutNotificationAdapter(verbose=True)

        await adapter.report_summary(passing_summary)

        out = capsys.readouterr().out
        assert "TEST SUITE PASSED" in out
        assert "SUCCEEDED:\n  a\n  b" in out


class TestWebhookNotificationAdapter:
    @pytest.mark.asyncio
    async def test_posts_summary_json(self, failing_summary: SuiteSummary) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        adapter = WebhookNotificationAdapter(
            "https://hooks.example.org/roundtrip",
            token="s3cret",
            transport=httpx.MockTransport(handler),
        )
        try:
            await adapter.report_summary(failing_summary)
        finally:
            await adapter.close()

        assert len(requests) == 1
        request = requests[0]
        assert request.method == "POST"
        assert request.headers["Authorization"] == "Bearer s3cret"
        body = json.loads(request.content)
        assert body["exit_code"] == 2
        assert body["failed"] == ["b"]
        assert body["unfinished"] == ["c"]
        assert body["passed"] is False

    @pytest.mark.asyncio
    async def test_error_status_raises(self, passing_summary: SuiteSummary) -> None:
        adapter = WebhookNotificationAdapter(
            "https://hooks.example.org/roundtrip",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )

        with pytest.raises(httpx.HTTPStatusError):
            await adapter.report_summary(passing_summary)
        await adapter.close()

    @pytest.mark.asyncio
    async def test_connection_error_is_reraised(self, passing_summary: SuiteSummary) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        adapter = WebhookNotificationAdapter(
            "https://hooks.example.org/roundtrip",
            transport=httpx.MockTransport(handler),
        )

        with pytest.raises(httpx.RequestError):
            await adapter.report_summary(passing_summary)
        await adapter.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        adapter = WebhookNotificationAdapter("https://hooks.example.org/roundtrip")
        await adapter.close()
        await adapter._get_client()
        await adapter.close()
        await adapter.close()

        assert adapter._client is None
