"""
Services module - Dashboard load cycle, explain drill-down and CSV export
"""

from dbpulse.services.explain_service import ExplainOrchestrator
from dbpulse.services.export_service import ExportService
from dbpulse.services.query_metrics_service import QueryMetricsService

__all__ = [
    "ExplainOrchestrator",
    "ExportService",
    "QueryMetricsService",
]
