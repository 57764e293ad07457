"""
Trust Radar — HTTP Query API

Thin FastAPI layer over QueryService. Authentication happens upstream: the
gateway forwards the caller as headers

    X-Subject-Id: <caller subject id>
    X-Roles:      admin,subject

and get_principal() turns them into a Principal. Typed query errors map to
404 / 403 / 400; an unreachable business view maps to 503.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

import structlog
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from trust_radar.aggregation.records import ConcurrentUpdateError
from trust_radar.api.access import Principal
from trust_radar.api.errors import ErrorCode, QueryError
from trust_radar.api.service import (
    Page,
    QueryService,
    RankingView,
    RiskScoreView,
    SignalFilter,
    SignalRecord,
    TrustScoreView,
)
from trust_radar.config import RiskLevel, Role, SignalSource, SignalType, settings
from trust_radar.sources.http import SourceUnavailableError

logger = structlog.get_logger(__name__)

_STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.INVALID_ARGUMENT: 400,
}


def get_principal(
    x_subject_id: str | None = Header(default=None),
    x_roles: str | None = Header(default=None),
) -> Principal:
    """Resolve the caller from gateway headers. Unknown roles are ignored."""
    roles = set()
    for raw in (x_roles or "").split(","):
        name = raw.strip().lower()
        if not name:
            continue
        try:
            roles.add(Role(name))
        except ValueError:
            logger.debug("api_unknown_role_ignored", role=name)
    if not roles:
        roles.add(Role.PUBLIC)
    return Principal(subject_id=x_subject_id or None, roles=frozenset(roles))


def get_service(request: Request) -> QueryService:
    return request.app.state.query_service


def create_app(service: QueryService, lifespan: Any = None) -> FastAPI:
    """Build the API around an already wired QueryService."""
    app = FastAPI(
        lifespan=lifespan,
        title="Trust Radar",
        description="Behavioral signals, risk and trust scores, rankings.",
        version="0.1.0",
    )
    app.state.query_service = service

    # -----------------------------------------------------------------------
    # Error mapping
    # -----------------------------------------------------------------------

    @app.exception_handler(QueryError)
    async def query_error_handler(_request: Request, exc: QueryError) -> JSONResponse:
        return JSONResponse(status_code=_STATUS_BY_CODE[exc.code], content=exc.to_dict())

    @app.exception_handler(ValidationError)
    async def validation_error_handler(_request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"code": ErrorCode.INVALID_ARGUMENT.value, "message": str(exc)},
        )

    @app.exception_handler(SourceUnavailableError)
    async def source_error_handler(_request: Request, exc: SourceUnavailableError) -> JSONResponse:
        logger.error("api_source_unavailable", error=str(exc))
        return JSONResponse(status_code=503, content={"code": "UNAVAILABLE", "message": str(exc)})

    @app.exception_handler(ConcurrentUpdateError)
    async def conflict_handler(_request: Request, exc: ConcurrentUpdateError) -> JSONResponse:
        logger.error("api_concurrent_update", subject_id=exc.subject_id, attempts=exc.attempts)
        return JSONResponse(status_code=409, content={"code": "CONFLICT", "message": str(exc)})

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/signals", response_model=Page[SignalRecord])
    async def list_signals(
        subject_id: str | None = None,
        source: SignalSource | None = None,
        signal_type: SignalType | None = None,
        min_severity: int | None = None,
        max_severity: int | None = None,
        detected_from: datetime | None = None,
        detected_to: datetime | None = None,
        limit: int = settings.QUERY_DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
        principal: Principal = Depends(get_principal),
        service: QueryService = Depends(get_service),
    ) -> Page[SignalRecord]:
        query = SignalFilter.parse(
            subject_id=subject_id,
            source=source,
            signal_type=signal_type,
            min_severity=min_severity,
            max_severity=max_severity,
            detected_from=detected_from,
            detected_to=detected_to,
            limit=limit,
            cursor=cursor,
        )
        return await service.list_signals(principal, query)

    @app.get("/v1/risk-scores", response_model=Page[RiskScoreView])
    async def list_high_risk(
        min_level: RiskLevel | None = None,
        min_score: int | None = None,
        limit: int = settings.QUERY_DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
        principal: Principal = Depends(get_principal),
        service: QueryService = Depends(get_service),
    ) -> Page[RiskScoreView]:
        return await service.list_high_risk(
            principal, min_level=min_level, min_score=min_score, limit=limit, cursor=cursor
        )

    @app.get("/v1/risk-scores/{subject_id}", response_model=RiskScoreView)
    async def get_risk_score(
        subject_id: str,
        principal: Principal = Depends(get_principal),
        service: QueryService = Depends(get_service),
    ) -> RiskScoreView:
        return await service.get_risk_score(principal, subject_id)

    @app.get("/v1/trust-scores/{subject_id}", response_model=TrustScoreView)
    async def get_trust_score(
        subject_id: str,
        principal: Principal = Depends(get_principal),
        service: QueryService = Depends(get_service),
    ) -> TrustScoreView:
        return await service.get_trust_score(principal, subject_id)

    @app.get("/v1/rankings/{population}/{snapshot_date}", response_model=RankingView)
    async def get_ranking(
        population: str,
        snapshot_date: date,
        service: QueryService = Depends(get_service),
    ) -> RankingView:
        return await service.get_ranking(snapshot_date, population)

    @app.post("/v1/subjects/{subject_id}/recompute")
    async def recompute_now(
        subject_id: str,
        kind: str = Query(..., description="risk or trust"),
        principal: Principal = Depends(get_principal),
        service: QueryService = Depends(get_service),
    ) -> RiskScoreView | TrustScoreView:
        return await service.recompute_now(principal, subject_id, kind)

    return app
