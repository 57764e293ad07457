"""
Tests for the business views HTTP client.

All HTTP calls are mocked with respx; backoff is zeroed so retries are
instant.
"""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest
import respx

from trust_radar.sources.http import BusinessViewsClient, SourceUnavailableError
from trust_radar.sources.views import KpiSnapshot

BASE_URL = "https://views.test/internal"
SINCE = datetime(2026, 2, 1, tzinfo=timezone.utc)


def _client(**kwargs) -> BusinessViewsClient:
    return BusinessViewsClient(base_url=BASE_URL, api_key="secret", max_retries=2, base_backoff=0, **kwargs)


# ---------------------------------------------------------------------------
# Successful reads
# ---------------------------------------------------------------------------


class TestReads:
    @pytest.mark.asyncio
    async def test_paid_sessions_parsed(self):
        payload = {
            "items": [
                {"session_id": "s-1", "started_at": "2026-02-28T10:00:00Z", "duration_seconds": 12, "tokens_cost": 40, "session_type": "VOICE"},
                {"session_id": "s-2", "started_at": "2026-02-28T11:00:00", "duration_seconds": None, "tokens_cost": 0},
            ]
        }
        with respx.mock(base_url=BASE_URL) as mock:
            route = mock.get("/subjects/c-1/sessions").mock(return_value=httpx.Response(200, json=payload))

            async with _client() as client:
                sessions = await client.paid_sessions("c-1", SINCE)

        assert [s.session_id for s in sessions] == ["s-1", "s-2"]
        assert sessions[1].started_at.tzinfo is not None
        request = route.calls.last.request
        assert request.url.params["paid"] == "true"
        assert request.url.params["since"] == SINCE.isoformat()
        assert request.headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_counts(self):
        with respx.mock(base_url=BASE_URL) as mock:
            mock.get("/subjects/c-1/payouts/attempts").mock(return_value=httpx.Response(200, json={"count": 4}))
            mock.get("/subjects/c-1/panic-triggers").mock(return_value=httpx.Response(200, json={}))

            async with _client() as client:
                assert await client.payout_attempts("c-1", SINCE) == 4
                assert await client.panic_triggers("c-1", SINCE) == 0

    @pytest.mark.asyncio
    async def test_refund_stats(self):
        with respx.mock(base_url=BASE_URL) as mock:
            mock.get("/subjects/org-1/events/evt-1/refunds").mock(
                return_value=httpx.Response(200, json={"total_tickets": 20, "refunded_tickets": 13})
            )

            async with _client() as client:
                stats = await client.event_refund_stats("org-1", "evt-1", SINCE)

        assert stats.refunded_tickets == 13

    @pytest.mark.asyncio
    async def test_kpi_snapshot_tagged_with_subject(self):
        with respx.mock(base_url=BASE_URL) as mock:
            mock.get("/subjects/c-1/kpis").mock(
                return_value=httpx.Response(200, json={"population": "coaches", "sessions_total": 10, "sessions_completed": 9})
            )

            async with _client() as client:
                kpi = await client.kpi_snapshot("c-1", SINCE)

        assert isinstance(kpi, KpiSnapshot)
        assert kpi.subject_id == "c-1"
        assert kpi.population == "coaches"

    @pytest.mark.asyncio
    async def test_unknown_subject_kpis_are_none(self):
        with respx.mock(base_url=BASE_URL) as mock:
            mock.get("/subjects/ghost/kpis").mock(return_value=httpx.Response(404, json={"error": "not found"}))

            async with _client() as client:
                assert await client.kpi_snapshot("ghost", SINCE) is None

    @pytest.mark.asyncio
    async def test_active_subjects(self):
        with respx.mock(base_url=BASE_URL) as mock:
            mock.get("/subjects/active").mock(
                return_value=httpx.Response(200, json={"subject_ids": ["c-2", "c-1"]})
            )

            async with _client() as client:
                assert await client.active_subjects(SINCE) == ["c-2", "c-1"]


# ---------------------------------------------------------------------------
# Retries and failures
# ---------------------------------------------------------------------------


class TestRetries:
    @pytest.mark.asyncio
    async def test_server_error_retried_then_succeeds(self):
        with respx.mock(base_url=BASE_URL) as mock:
            route = mock.get("/subjects/c-1/bookings/cancellations").mock(
                side_effect=[
                    httpx.Response(503),
                    httpx.Response(429),
                    httpx.Response(200, json={"count": 6}),
                ]
            )

            async with _client() as client:
                assert await client.creator_cancellations("c-1", SINCE) == 6

        assert route.call_count == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_source_unavailable(self):
        with respx.mock(base_url=BASE_URL) as mock:
            route = mock.get("/subjects/c-1/identity-reports").mock(return_value=httpx.Response(500))

            with pytest.raises(SourceUnavailableError):
                async with _client() as client:
                    await client.identity_reports("c-1", SINCE)

        assert route.call_count == 3

    @pytest.mark.asyncio
    async def test_transport_errors_retried(self):
        with respx.mock(base_url=BASE_URL) as mock:
            mock.get("/subjects/c-1/payouts/attempts").mock(
                side_effect=[httpx.ConnectError("refused"), httpx.Response(200, json={"count": 1})]
            )

            async with _client() as client:
                assert await client.payout_attempts("c-1", SINCE) == 1

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        with respx.mock(base_url=BASE_URL) as mock:
            route = mock.get("/subjects/c-1/sessions").mock(return_value=httpx.Response(403))

            with pytest.raises(SourceUnavailableError, match="403"):
                async with _client() as client:
                    await client.opened_sessions("c-1", SINCE)

        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_not_found_without_opt_in_is_an_error(self):
        with respx.mock(base_url=BASE_URL) as mock:
            mock.get("/subjects/c-1/panic-triggers").mock(return_value=httpx.Response(404))

            with pytest.raises(SourceUnavailableError):
                async with _client() as client:
                    await client.panic_triggers("c-1", SINCE)
