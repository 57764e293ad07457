"""
Trust Radar — Business Views HTTP Client

Read-only access to the business subsystems (sessions, events, calendar,
wallet, safety, KPI rollups) through their internal views API. Implements
both ActivityReader (detectors) and KpiReader (Trust Aggregator).

Transient failures (429, 5xx, transport errors) are retried with
exponential backoff; when retries are exhausted SourceUnavailableError is
raised and the caller decides what to do (detectors drop, aggregators leave
the previous record in place).
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field

from trust_radar.config import settings
from trust_radar.sources.views import IdentityReportView, KpiSnapshot, RefundStats, SessionView

logger = structlog.get_logger(__name__)


class SourceUnavailableError(Exception):
    """A business view could not be read after retries."""


# ---------------------------------------------------------------------------
# Response envelopes
# ---------------------------------------------------------------------------


class _SessionList(BaseModel):
    items: list[SessionView] = Field(default_factory=list)


class _ReportList(BaseModel):
    items: list[IdentityReportView] = Field(default_factory=list)


class _Count(BaseModel):
    count: int = Field(default=0, ge=0)


class _SubjectList(BaseModel):
    subject_ids: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# API Client
# ---------------------------------------------------------------------------


class BusinessViewsClient:
    """
    Async client for the internal business views API.

    Usage:
        async with BusinessViewsClient() as client:
            sessions = await client.paid_sessions("user-1", since)
            kpis = await client.kpi_snapshot("user-1", since)
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        max_retries: int | None = None,
        base_backoff: float = 0.5,
        timeout: float | None = None,
    ):
        self._base_url = base_url or settings.BUSINESS_VIEWS_BASE_URL
        self._api_key = api_key if api_key is not None else settings.BUSINESS_VIEWS_API_KEY
        self._max_retries = max_retries if max_retries is not None else settings.BUSINESS_VIEWS_MAX_RETRIES
        self._base_backoff = base_backoff
        self._timeout = timeout or settings.BUSINESS_VIEWS_TIMEOUT_SECONDS
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> BusinessViewsClient:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> dict[str, Any] | None:
        """
        Make an API request with retry logic and exponential backoff.

        Returns None for a 404 when allow_not_found is set. Other 4xx
        responses are not retried.
        """
        assert self._client is not None, "Client not initialized. Use 'async with'."

        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            wait_time = self._base_backoff * (2 ** attempt)
            try:
                response = await self._client.request(method, path, params=params)

                if response.status_code == 429:
                    logger.warning(
                        "business_views_rate_limited",
                        attempt=attempt + 1,
                        wait_seconds=wait_time,
                        path=path,
                    )
                    last_error = httpx.HTTPStatusError(
                        "rate limited", request=response.request, response=response
                    )
                    await asyncio.sleep(wait_time)
                    continue

                if response.status_code == 404 and allow_not_found:
                    return None

                response.raise_for_status()
                return response.json()

            except httpx.HTTPStatusError as e:
                last_error = e
                logger.error(
                    "business_views_http_error",
                    status_code=e.response.status_code,
                    attempt=attempt + 1,
                    path=path,
                )
                if e.response.status_code >= 500:
                    await asyncio.sleep(wait_time)
                    continue
                raise SourceUnavailableError(
                    f"{method} {path} rejected with {e.response.status_code}"
                ) from e

            except httpx.RequestError as e:
                last_error = e
                logger.error(
                    "business_views_request_error",
                    error=str(e),
                    attempt=attempt + 1,
                    path=path,
                )
                await asyncio.sleep(wait_time)
                continue

        raise SourceUnavailableError(
            f"{method} {path} failed after {self._max_retries + 1} attempts"
        ) from last_error

    @staticmethod
    def _since(since: datetime) -> dict[str, str]:
        return {"since": since.isoformat()}

    async def _count(self, path: str, since: datetime) -> int:
        data = await self._request("GET", path, params=self._since(since))
        return _Count.model_validate(data or {}).count

    # -----------------------------------------------------------------------
    # ActivityReader
    # -----------------------------------------------------------------------

    async def paid_sessions(self, subject_id: str, since: datetime) -> list[SessionView]:
        data = await self._request(
            "GET", f"/subjects/{subject_id}/sessions", params={**self._since(since), "paid": "true"}
        )
        return _SessionList.model_validate(data or {}).items

    async def opened_sessions(self, subject_id: str, since: datetime) -> list[SessionView]:
        data = await self._request(
            "GET", f"/subjects/{subject_id}/sessions", params={**self._since(since), "opened": "true"}
        )
        return _SessionList.model_validate(data or {}).items

    async def event_refund_stats(self, subject_id: str, event_id: str, since: datetime) -> RefundStats:
        data = await self._request(
            "GET", f"/subjects/{subject_id}/events/{event_id}/refunds", params=self._since(since)
        )
        return RefundStats.model_validate(data or {})

    async def creator_cancellations(self, subject_id: str, since: datetime) -> int:
        return await self._count(f"/subjects/{subject_id}/bookings/cancellations", since)

    async def payout_attempts(self, subject_id: str, since: datetime) -> int:
        return await self._count(f"/subjects/{subject_id}/payouts/attempts", since)

    async def identity_reports(self, subject_id: str, since: datetime) -> list[IdentityReportView]:
        data = await self._request(
            "GET", f"/subjects/{subject_id}/identity-reports", params=self._since(since)
        )
        return _ReportList.model_validate(data or {}).items

    async def panic_triggers(self, subject_id: str, since: datetime) -> int:
        return await self._count(f"/subjects/{subject_id}/panic-triggers", since)

    # -----------------------------------------------------------------------
    # KpiReader
    # -----------------------------------------------------------------------

    async def kpi_snapshot(self, subject_id: str, since: datetime) -> KpiSnapshot | None:
        """KPI rollup since `since`, or None when the subject is unknown upstream."""
        data = await self._request(
            "GET", f"/subjects/{subject_id}/kpis", params=self._since(since), allow_not_found=True
        )
        if data is None:
            return None
        return KpiSnapshot.model_validate({"subject_id": subject_id, **data})

    async def active_subjects(self, since: datetime) -> list[str]:
        data = await self._request("GET", "/subjects/active", params=self._since(since))
        subjects = _SubjectList.model_validate(data or {}).subject_ids
        logger.info("business_views_active_subjects", count=len(subjects))
        return subjects
