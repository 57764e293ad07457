"""
Models package — export all SQLAlchemy models.
"""

from trust_radar.models.base import Base
from trust_radar.models.job_checkpoint import JobCheckpoint
from trust_radar.models.message_fingerprint import MessageFingerprint
from trust_radar.models.ranking_snapshot import RankingSnapshot
from trust_radar.models.scores import RiskScore, TrustScore
from trust_radar.models.signal import Signal

__all__ = [
    "Base",
    "JobCheckpoint",
    "MessageFingerprint",
    "RankingSnapshot",
    "RiskScore",
    "Signal",
    "TrustScore",
]
