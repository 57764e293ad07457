"""
Trust Radar — Component wiring

Builds the object graph shared by the scheduler process, the HTTP API and
the operator scripts:

    SignalStore → SignalEmitter → DetectorRunner
    RiskAggregator ← (on_signal_written)
    TrustAggregator → RankingGenerator
    Sweeps → JobRegistry
    QueryService
"""

from __future__ import annotations

from typing import NamedTuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trust_radar.aggregation.ranking_generator import RankingGenerator
from trust_radar.aggregation.risk_aggregator import RiskAggregator
from trust_radar.aggregation.trust_aggregator import TrustAggregator
from trust_radar.api.service import QueryService
from trust_radar.config import settings
from trust_radar.detectors.runner import DetectorRunner
from trust_radar.engine.policy import ScoringPolicy, load_detector_rules, load_policy
from trust_radar.pipeline.jobs import JobRegistry
from trust_radar.pipeline.sweeps import Sweeps
from trust_radar.signals.emitter import SignalEmitter
from trust_radar.signals.store import SignalStore
from trust_radar.sources.views import ActivityReader, KpiReader


class Components(NamedTuple):
    store: SignalStore
    emitter: SignalEmitter
    detectors: DetectorRunner
    risk: RiskAggregator
    trust: TrustAggregator
    ranking: RankingGenerator
    registry: JobRegistry
    query: QueryService


def build_components(
    session_factory: async_sessionmaker[AsyncSession],
    activity: ActivityReader,
    kpi_reader: KpiReader,
    policy: ScoringPolicy | None = None,
) -> Components:
    policy = policy or load_policy()
    rules = load_detector_rules()

    store = SignalStore(session_factory)
    risk = RiskAggregator(store, session_factory, policy=policy)
    emitter = SignalEmitter(
        store,
        rules=rules,
        on_signal_written=risk.recompute if settings.RISK_RECOMPUTE_ON_EMIT else None,
    )
    detectors = DetectorRunner(activity, emitter, session_factory, rules=rules)
    trust = TrustAggregator(kpi_reader, session_factory, risk, policy=policy)
    ranking = RankingGenerator(session_factory)

    registry = JobRegistry(session_factory)
    Sweeps(session_factory, store, risk, trust, ranking).register_all(registry)

    query = QueryService(store, risk, trust, ranking)
    return Components(
        store=store,
        emitter=emitter,
        detectors=detectors,
        risk=risk,
        trust=trust,
        ranking=ranking,
        registry=registry,
        query=query,
    )
