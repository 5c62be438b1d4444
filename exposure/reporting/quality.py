"""Quality gate for executive report models."""

import logging
from typing import List

from ..models.report import InsightPriority, QualityScore, ReportModel

logger = logging.getLogger(__name__)

MAX_TAKEAWAY_LENGTH = 200
MAX_METRICS = 6

EXECUTIVE_CLARITY = "executive_clarity"
FINANCIAL_CREDIBILITY = "financial_credibility"
VISUAL_PROFESSIONALISM = "visual_professionalism"
DECISION_USEFULNESS = "decision_usefulness"


def audit_report(model: ReportModel, min_metrics: int = 4, pass_score: float = 9.0) -> QualityScore:
    """
    Score a report model and check its hard requirements.

    Four dimensions start at 10 and lose points per problem; overall is
    their mean. A missing bottom line, any empty table, or fewer than
    ``min_metrics`` metrics fail the gate regardless of score.

    The audit never raises: problems are returned as issues and logged.

    Args:
        model: Report model to audit
        min_metrics: Minimum number of headline metrics
        pass_score: Overall score needed to pass

    Returns:
        QualityScore with dimension scores, issues and recommendations
    """
    summary = model.executive_summary
    issues: List[str] = []
    recommendations: List[str] = []
    hard_failures = 0

    clarity = 10.0
    credibility = 10.0
    visual = 10.0
    usefulness = 10.0

    # Executive clarity
    if not summary.key_takeaway:
        clarity -= 5
        issues.append("Missing key takeaway")
        recommendations.append("Lead with a one-line takeaway a reader can assess in seconds")
    elif len(summary.key_takeaway) > MAX_TAKEAWAY_LENGTH:
        clarity -= 2
        issues.append("Key takeaway too long to scan")

    metrics = summary.metrics
    if not metrics:
        clarity -= 3
        issues.append("No metrics provided")
    elif len(metrics) > MAX_METRICS:
        clarity -= 1
        issues.append(f"Too many metrics ({len(metrics)}); focus on 4-{MAX_METRICS} key figures")

    if len(metrics) < min_metrics:
        hard_failures += 1
        issues.append(f"Only {len(metrics)} metrics; at least {min_metrics} required")

    # Financial credibility
    if not any(metric.delta is not None for metric in metrics):
        credibility -= 2
        issues.append("No comparative data; add period-over-period deltas")
        recommendations.append("Supply a previous snapshot or configured baselines")

    with_context = [metric for metric in metrics if metric.context or metric.delta]
    if metrics and len(with_context) < len(metrics) / 2:
        credibility -= 1
        issues.append("Metrics lack context")

    # Visual professionalism
    if not model.title:
        visual -= 3
        issues.append("Missing report title")
    if not model.report_type:
        visual -= 2
        issues.append("Report type not specified")

    for table in model.all_tables():
        if table.is_empty:
            visual -= 1
            hard_failures += 1
            issues.append(f"Table '{table.title}' has no rows")

    # Decision usefulness
    insights = summary.insights
    if not insights:
        usefulness -= 4
        issues.append("No insights provided")
    else:
        urgent = [i for i in insights if i.priority in (InsightPriority.CRITICAL, InsightPriority.HIGH)]
        if not urgent:
            usefulness -= 1
            issues.append("No high-priority insights")
        if not any(insight.action for insight in insights):
            usefulness -= 2
            issues.append("Insights lack recommended actions")
            recommendations.append("Attach an action to each critical or high insight")

    if not summary.bottom_line:
        usefulness -= 1
        hard_failures += 1
        issues.append("Missing bottom line")
        recommendations.append("Close the summary with a one-sentence conclusion")

    dimensions = {
        EXECUTIVE_CLARITY: max(clarity, 0.0),
        FINANCIAL_CREDIBILITY: max(credibility, 0.0),
        VISUAL_PROFESSIONALISM: max(visual, 0.0),
        DECISION_USEFULNESS: max(usefulness, 0.0),
    }
    overall = round(sum(dimensions.values()) / len(dimensions), 2)
    passed = overall >= pass_score and hard_failures == 0

    score = QualityScore(
        passed=passed,
        overall=overall,
        dimensions=dimensions,
        issues=issues,
        recommendations=recommendations,
    )

    if passed:
        logger.info(f"Report '{model.title}' passed quality gate (score {overall})")
    else:
        logger.warning(
            f"Report '{model.title}' failed quality gate (score {overall}): {'; '.join(issues)}"
        )
    return score
