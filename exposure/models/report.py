"""Executive report data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class InsightPriority(str, Enum):
    """Insight priority, most urgent first."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    InsightPriority.CRITICAL: 0,
    InsightPriority.HIGH: 1,
    InsightPriority.MEDIUM: 2,
    InsightPriority.INFO: 3,
}


class RowHighlight(str, Enum):
    """Optional emphasis tag for a table row."""

    RISK = "risk"
    SUCCESS = "success"
    WARNING = "warning"
    HEADER = "header"
    TOTAL = "total"


class ChartType(str, Enum):
    BAR = "bar"
    HORIZONTAL_BAR = "horizontalBar"
    DONUT = "donut"


@dataclass
class ExecutiveMetric:
    """
    Headline KPI shown in the executive summary.

    Attributes:
        label: Metric name
        value: Formatted current value
        delta: Formatted change (e.g. "-10.0%"), if a comparison exists
        direction: "positive", "negative" or "neutral" (favourability)
        context: Short comparison context (e.g. "vs. prior snapshot")
    """
    label: str
    value: str
    delta: Optional[str] = None
    direction: Optional[str] = None
    context: Optional[str] = None


@dataclass
class Insight:
    """
    A ranked finding with a recommended action.

    Attributes:
        priority: InsightPriority
        headline: One-line finding
        detail: Supporting detail
        action: Recommended action, if any
    """
    priority: InsightPriority
    headline: str
    detail: str = ""
    action: Optional[str] = None


@dataclass
class TableRow:
    """A table row with an optional highlight tag."""
    cells: List[str]
    highlight: Optional[RowHighlight] = None


@dataclass
class ReportTable:
    """
    A titled table in the report body or appendix.

    Attributes:
        title: Table title (quality issues name tables by title)
        headers: Column headers
        rows: Body rows
        footnote: Optional footnote
    """
    title: str
    headers: List[str]
    rows: List[TableRow] = field(default_factory=list)
    footnote: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.rows


@dataclass
class ChartSpec:
    """Chart description handed to renderers; data maps label to value."""
    type: ChartType
    title: str
    data: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class AppendixSection:
    """Appendix text with an optional nested table and chart."""
    title: str
    content: str
    table: Optional[ReportTable] = None
    chart: Optional[ChartSpec] = None


@dataclass
class ExecutiveSummary:
    """
    Summary block leading the report.

    Attributes:
        key_takeaway: One-line takeaway
        metrics: Headline KPIs
        insights: Findings ordered critical > high > medium > info
        bottom_line: One-sentence conclusion
    """
    key_takeaway: str = ""
    metrics: List[ExecutiveMetric] = field(default_factory=list)
    insights: List[Insight] = field(default_factory=list)
    bottom_line: str = ""


@dataclass
class ReportModel:
    """
    Structured executive report, built fresh per export and never persisted.

    Attributes:
        title: Report title
        subtitle: Subtitle (snapshot date, comparison window)
        classification: Distribution marking
        report_type: Report kind (e.g. "executive")
        executive_summary: Summary block
        tables: Body tables
        appendix: Appendix sections
        generated_at: ISO timestamp the model was built
    """
    title: str
    subtitle: str = ""
    classification: str = ""
    report_type: str = ""
    executive_summary: ExecutiveSummary = field(default_factory=ExecutiveSummary)
    tables: List[ReportTable] = field(default_factory=list)
    appendix: List[AppendixSection] = field(default_factory=list)
    generated_at: Optional[str] = None

    def all_tables(self) -> List[ReportTable]:
        """Body tables followed by tables nested in the appendix."""
        nested = [section.table for section in self.appendix if section.table is not None]
        return list(self.tables) + nested

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict form for JSON responses."""
        summary = self.executive_summary
        return {
            "title": self.title,
            "subtitle": self.subtitle,
            "classification": self.classification,
            "report_type": self.report_type,
            "generated_at": self.generated_at,
            "executive_summary": {
                "key_takeaway": summary.key_takeaway,
                "metrics": [vars(metric).copy() for metric in summary.metrics],
                "insights": [
                    {
                        "priority": insight.priority.value,
                        "headline": insight.headline,
                        "detail": insight.detail,
                        "action": insight.action,
                    }
                    for insight in summary.insights
                ],
                "bottom_line": summary.bottom_line,
            },
            "tables": [_table_to_dict(table) for table in self.tables],
            "appendix": [
                {
                    "title": section.title,
                    "content": section.content,
                    "table": _table_to_dict(section.table) if section.table else None,
                    "chart": {
                        "type": section.chart.type.value,
                        "title": section.chart.title,
                        "data": list(section.chart.data),
                    } if section.chart else None,
                }
                for section in self.appendix
            ],
        }


def _table_to_dict(table: ReportTable) -> Dict[str, Any]:
    return {
        "title": table.title,
        "headers": list(table.headers),
        "rows": [
            {"cells": list(row.cells), "highlight": row.highlight.value if row.highlight else None}
            for row in table.rows
        ],
        "footnote": table.footnote,
    }


@dataclass
class QualityScore:
    """
    Outcome of the report quality audit.

    Attributes:
        passed: Whether the report clears the gate
        overall: Mean of the dimension scores (0-10)
        dimensions: Score per dimension (executive_clarity, financial_credibility,
            visual_professionalism, decision_usefulness)
        issues: Human-readable problems found
        recommendations: Suggested fixes
    """
    passed: bool
    overall: float
    dimensions: Dict[str, float] = field(default_factory=dict)
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "overall": self.overall,
            "dimensions": dict(self.dimensions),
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
        }


@dataclass
class GenerationResult:
    """A built report model with its quality audit."""
    model: ReportModel
    quality: QualityScore


@dataclass
class RenderResult:
    """
    Outcome of rendering a report model.

    Attributes:
        success: Whether rendering produced an artifact
        artifact_ref: Path or reference of the artifact
        page_count: Pages produced, when known
        error: Failure message
    """
    success: bool
    artifact_ref: Optional[str] = None
    page_count: Optional[int] = None
    error: Optional[str] = None


@dataclass
class DeliveryResult:
    """Outcome of sending a rendered document to a destination."""
    success: bool
    destination: str
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ExportResult:
    """Per-export outcome: the render and any deliveries."""
    render: RenderResult
    deliveries: List[DeliveryResult] = field(default_factory=list)
