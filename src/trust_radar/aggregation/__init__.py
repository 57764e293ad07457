"""
Aggregation package — risk, trust and ranking writers.
"""

from trust_radar.aggregation.ranking_generator import RankingGenerator
from trust_radar.aggregation.records import ConcurrentUpdateError, SubjectLocks
from trust_radar.aggregation.risk_aggregator import RiskAggregator
from trust_radar.aggregation.trust_aggregator import TrustAggregator

__all__ = [
    "ConcurrentUpdateError",
    "RankingGenerator",
    "RiskAggregator",
    "SubjectLocks",
    "TrustAggregator",
]
