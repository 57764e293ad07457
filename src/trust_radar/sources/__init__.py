from trust_radar.sources.http import BusinessViewsClient, SourceUnavailableError
from trust_radar.sources.views import (
    ActivityReader,
    IdentityReportView,
    KpiReader,
    KpiSnapshot,
    RefundStats,
    SessionView,
)

__all__ = [
    "ActivityReader",
    "BusinessViewsClient",
    "IdentityReportView",
    "KpiReader",
    "KpiSnapshot",
    "RefundStats",
    "SessionView",
    "SourceUnavailableError",
]
