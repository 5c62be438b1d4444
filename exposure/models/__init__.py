"""Data models for claims, snapshots, reviews and reports."""

from .claim import AgeBucket, ClaimRecord, Evaluation, NormalizationWarning
from .snapshot import Aggregate, Delta, MetricChange, Snapshot
from .review import EventType, ReviewEvent, ReviewItem, ReviewStatus, ReviewSummary
from .report import (
    AppendixSection,
    ChartSpec,
    ChartType,
    DeliveryResult,
    ExecutiveMetric,
    ExecutiveSummary,
    ExportResult,
    GenerationResult,
    Insight,
    InsightPriority,
    QualityScore,
    RenderResult,
    ReportModel,
    ReportTable,
    RowHighlight,
    TableRow,
)

__all__ = [
    'AgeBucket',
    'ClaimRecord',
    'Evaluation',
    'NormalizationWarning',
    'Aggregate',
    'Delta',
    'MetricChange',
    'Snapshot',
    'EventType',
    'ReviewEvent',
    'ReviewItem',
    'ReviewStatus',
    'ReviewSummary',
    'AppendixSection',
    'ChartSpec',
    'ChartType',
    'DeliveryResult',
    'ExecutiveMetric',
    'ExecutiveSummary',
    'ExportResult',
    'GenerationResult',
    'Insight',
    'InsightPriority',
    'QualityScore',
    'RenderResult',
    'ReportModel',
    'ReportTable',
    'RowHighlight',
    'TableRow',
]
