"""
Report compiler.

Builds a structured executive report model from a snapshot, an optional
delta and the at-risk screen, then runs the quality gate over it.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from ..analytics.delta import NEGATIVE, NEUTRAL, POSITIVE, compare_to_baseline, direction_of
from ..analytics.risk import CRITICAL, HIGH, AtRiskClaim
from ..models.claim import AgeBucket
from ..models.report import (
    AppendixSection,
    ChartSpec,
    ChartType,
    ExecutiveMetric,
    ExecutiveSummary,
    GenerationResult,
    Insight,
    InsightPriority,
    QualityScore,
    ReportModel,
    ReportTable,
    RowHighlight,
    TableRow,
)
from ..models.snapshot import AGE_BUCKET, COVERAGE, QUEUE, Aggregate, Delta, MetricChange, Snapshot
from ..utils.config import Config
from .quality import audit_report

logger = logging.getLogger(__name__)

REPORT_TYPE = "executive"

# Metric name -> True when a rising value is favourable
METRIC_POLARITY = {
    "open_claims": False,
    "total_reserves": False,
    "cp1_rate": False,
    "no_eval_count": False,
    "aged_365_share": False,
}

# Share of inventory aged 365+ days that makes aging a high-priority finding
AGED_SHARE_ALERT = Decimal("25")

MAX_AT_RISK_ROWS = 15

AGGREGATE_HEADERS = ["Claims", "Open Reserves", "Low Eval", "High Eval", "No Eval"]


def format_money(amount: Decimal) -> str:
    """Whole-dollar currency with thousands separators; negatives in parentheses."""
    if amount < 0:
        return f"(${-amount:,.0f})"
    return f"${amount:,.0f}"


def format_money_short(amount: Decimal) -> str:
    """Compact currency for headline figures ($12.3M, $450K)."""
    magnitude = abs(amount)
    sign = "-" if amount < 0 else ""
    if magnitude >= 1_000_000:
        return f"{sign}${magnitude / 1_000_000:,.1f}M"
    if magnitude >= 1_000:
        return f"{sign}${magnitude / 1_000:,.0f}K"
    return f"{sign}${magnitude:,.0f}"


def favourability(change: MetricChange, higher_is_better: bool) -> str:
    """
    Read a signed change as favourable (positive) or unfavourable (negative).

    Args:
        change: Metric change with a sign-based direction
        higher_is_better: Metric polarity

    Returns:
        "positive", "negative" or "neutral"
    """
    if change.direction == NEUTRAL:
        return NEUTRAL
    rising = change.direction == POSITIVE
    return POSITIVE if rising == higher_is_better else NEGATIVE


def variance_highlight(
    change: Optional[MetricChange],
    higher_is_better: bool,
    threshold: float
) -> Optional[RowHighlight]:
    """Tag a row whose variance vs. its prior value exceeds the threshold."""
    if change is None or change.change_percent is None:
        return None
    if abs(change.change_percent) <= threshold:
        return None
    return RowHighlight.SUCCESS if favourability(change, higher_is_better) == POSITIVE else RowHighlight.RISK


def _aggregate_cells(aggregate: Aggregate) -> List[str]:
    return [
        f"{aggregate.count:,}",
        format_money(aggregate.reserves),
        format_money(aggregate.low_eval),
        format_money(aggregate.high_eval),
        f"{aggregate.no_eval_count:,}",
    ]


def _share(part: int, whole: int) -> Decimal:
    if whole <= 0:
        return Decimal("0.0")
    return (Decimal(part) * 100 / Decimal(whole)).quantize(Decimal("0.1"))


class ReportCompiler:
    """
    Compiles snapshots into executive report models.

    Attributes:
        config: Pipeline configuration (report section drives thresholds)
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config.default()
        self.report_config = self.config.report

    def compile(
        self,
        snapshot: Snapshot,
        delta: Optional[Delta] = None,
        extra_tables: Sequence[ReportTable] = (),
        appendix: Sequence[AppendixSection] = (),
        at_risk: Sequence[AtRiskClaim] = ()
    ) -> GenerationResult:
        """Build the model and audit it, in that order."""
        model = self.build(snapshot, delta, extra_tables, appendix, at_risk)
        return GenerationResult(model=model, quality=self.audit(model))

    def audit(self, model: ReportModel) -> QualityScore:
        return audit_report(
            model,
            min_metrics=self.report_config.min_metrics,
            pass_score=self.report_config.pass_score,
        )

    def build(
        self,
        snapshot: Snapshot,
        delta: Optional[Delta] = None,
        extra_tables: Sequence[ReportTable] = (),
        appendix: Sequence[AppendixSection] = (),
        at_risk: Sequence[AtRiskClaim] = ()
    ) -> ReportModel:
        """
        Build a report model.

        Args:
            snapshot: Current snapshot
            delta: Comparison with the previous snapshot, if any
            extra_tables: Additional body tables, appended as given
            appendix: Additional appendix sections
            at_risk: Output of the at-risk screen

        Returns:
            ReportModel ready for auditing and rendering
        """
        metrics = self._metrics(snapshot, delta)
        insights = self._insights(snapshot, delta, at_risk)

        summary = ExecutiveSummary(
            key_takeaway=self._key_takeaway(snapshot, delta),
            metrics=metrics,
            insights=insights,
            bottom_line=self._bottom_line(snapshot, insights),
        )

        tables = [
            self._age_table(snapshot, delta),
            self._partition_table("Open Inventory by Coverage", "Coverage", snapshot, COVERAGE),
            self._partition_table("Open Inventory by Queue", "Queue", snapshot, QUEUE),
            self._cp1_table(snapshot),
        ]
        if at_risk:
            tables.append(self._at_risk_table(at_risk))
        tables.extend(extra_tables)

        sections = list(appendix) + [self._methodology(snapshot)]

        subtitle = f"Snapshot as of {snapshot.created_at:%B %d, %Y}"
        if delta is not None:
            subtitle += f" vs. {delta.previous_at:%B %d, %Y}"

        model = ReportModel(
            title=self.report_config.title,
            subtitle=subtitle,
            classification=self.report_config.classification,
            report_type=REPORT_TYPE,
            executive_summary=summary,
            tables=tables,
            appendix=sections,
            generated_at=datetime.now(timezone.utc).isoformat(),
        )
        logger.info(
            f"Built report for snapshot {snapshot.snapshot_id}: "
            f"{len(metrics)} metrics, {len(insights)} insights, {len(tables)} tables"
        )
        return model

    # Summary

    def _metric(self, name: str, label: str, value: str, raw: Decimal,
                change: Optional[MetricChange], delta_text: Optional[str] = None,
                context: Optional[str] = None) -> ExecutiveMetric:
        if change is None and name in self.report_config.baselines:
            return self._baseline_metric(name, label, value, raw)
        if change is None:
            return ExecutiveMetric(label=label, value=value, context=context)
        return ExecutiveMetric(
            label=label,
            value=value,
            delta=delta_text or change.percent_label,
            direction=favourability(change, METRIC_POLARITY[name]),
            context=context or "vs. prior snapshot",
        )

    def _baseline_metric(self, name: str, label: str, value: str, raw: Decimal) -> ExecutiveMetric:
        baseline = self.report_config.baselines[name]
        change = compare_to_baseline(raw, baseline, name)
        return ExecutiveMetric(
            label=label,
            value=value,
            delta=change.percent_label,
            direction=favourability(change, METRIC_POLARITY[name]),
            context=f"vs. baseline {baseline}",
        )

    def _metrics(self, snapshot: Snapshot, delta: Optional[Delta]) -> List[ExecutiveMetric]:
        total = snapshot.total
        aged = snapshot.get(AGE_BUCKET, AgeBucket.OVER_365.value)
        aged_count = aged.count if aged else 0
        aged_share = _share(aged_count, total.count)

        cp1_change = None
        cp1_text = None
        if delta is not None:
            cp1_change = MetricChange(
                current=Decimal(snapshot.cp1_rate),
                previous=Decimal(snapshot.cp1_rate) - Decimal(str(delta.cp1_rate_points)),
                change=Decimal(str(delta.cp1_rate_points)),
                change_percent=None,
                direction=direction_of(Decimal(str(delta.cp1_rate_points)), None),
            )
            cp1_text = f"{delta.cp1_rate_points:+.1f} pts"

        return [
            self._metric(
                "open_claims", "Open Claims", f"{total.count:,}", Decimal(total.count),
                delta.count if delta else None,
            ),
            self._metric(
                "total_reserves", "Open Reserves", format_money(total.reserves), total.reserves,
                delta.reserves if delta else None,
            ),
            self._metric(
                "cp1_rate", "CP1 Rate", f"{snapshot.cp1_rate}%", Decimal(snapshot.cp1_rate),
                cp1_change, cp1_text, context="policy-limit tenders",
            ),
            self._metric(
                "no_eval_count", "No Evaluation", f"{snapshot.no_eval_count:,}", Decimal(snapshot.no_eval_count),
                delta.no_eval_count if delta else None,
                context=f"{format_money_short(total.no_eval_reserves)} reserves unevaluated",
            ),
            self._metric(
                "aged_365_share", "Aged 365+ Days", f"{aged_share}%", aged_share,
                delta.age_buckets.get(AgeBucket.OVER_365.value) if delta else None,
                context=f"{aged_count:,} claims",
            ),
        ]

    def _key_takeaway(self, snapshot: Snapshot, delta: Optional[Delta]) -> str:
        total = snapshot.total
        takeaway = (
            f"{total.count:,} open claims carry {format_money_short(total.reserves)} in reserves"
        )
        if delta is not None and delta.count.change_percent is not None:
            takeaway += f", {delta.count.percent_label} claims vs. prior snapshot"
        return takeaway + "."

    def _insights(self, snapshot: Snapshot, delta: Optional[Delta],
                  at_risk: Sequence[AtRiskClaim]) -> List[Insight]:
        total = snapshot.total
        insights: List[Insight] = []
        threshold = self.report_config.variance_threshold

        critical = [claim for claim in at_risk if claim.level == CRITICAL]
        high = [claim for claim in at_risk if claim.level == HIGH]
        if critical:
            exposure = sum((claim.reserves for claim in critical), Decimal("0"))
            insights.append(Insight(
                priority=InsightPriority.CRITICAL,
                headline=f"{len(critical)} BI claims at critical risk of exceeding policy limits",
                detail=(
                    f"{format_money_short(exposure)} in reserves; top claims: "
                    + ", ".join(claim.claim_id for claim in critical[:3])
                ),
                action="Escalate for senior reserve review this week",
            ))
        if high:
            insights.append(Insight(
                priority=InsightPriority.HIGH,
                headline=f"{len(high)} BI claims trending toward policy limits",
                detail="Multiple over-limit patterns matched",
                action="Deploy a review directive on high-risk claims",
            ))

        aged = snapshot.get(AGE_BUCKET, AgeBucket.OVER_365.value)
        if aged and aged.count:
            share = _share(aged.count, total.count)
            insights.append(Insight(
                priority=InsightPriority.HIGH if share >= AGED_SHARE_ALERT else InsightPriority.MEDIUM,
                headline=f"{share}% of inventory is aged 365+ days",
                detail=f"{aged.count:,} claims holding {format_money_short(aged.reserves)} in reserves",
                action="Deploy a review directive on 365+ day claims",
            ))

        if snapshot.no_eval_count:
            insights.append(Insight(
                priority=InsightPriority.MEDIUM,
                headline=f"{snapshot.no_eval_count:,} claims have no evaluation",
                detail=f"{format_money_short(total.no_eval_reserves)} in reserves without a low/high range",
                action="Set evaluations on unevaluated claims",
            ))

        if delta is not None and delta.reserves.change_percent is not None:
            change = delta.reserves
            if abs(change.change_percent) > threshold:
                favourable = favourability(change, METRIC_POLARITY["total_reserves"]) == POSITIVE
                insights.append(Insight(
                    priority=InsightPriority.INFO if favourable else InsightPriority.HIGH,
                    headline=f"Open reserves moved {change.percent_label} vs. prior snapshot",
                    detail=f"{format_money(change.previous)} to {format_money(change.current)}",
                    action=None if favourable else "Review reserve additions driving the increase",
                ))

        insights.append(Insight(
            priority=InsightPriority.INFO,
            headline=f"CP1 rate is {snapshot.cp1_rate}%",
            detail=f"{total.cp1_count:,} of {total.count:,} claims tendered at policy limits",
        ))

        # Stable sort keeps insertion order within a priority
        return sorted(insights, key=lambda insight: insight.priority.rank)

    def _bottom_line(self, snapshot: Snapshot, insights: Sequence[Insight]) -> str:
        actionable = [insight for insight in insights if insight.action]
        if actionable:
            top = actionable[0]
            return f"{top.headline}: {top.action[0].lower()}{top.action[1:]}."
        return (
            f"Inventory of {snapshot.total.count:,} open claims needs no immediate action."
        )

    # Tables

    def _total_row(self, label: str, aggregate: Aggregate, trailing: Iterable[str] = ()) -> TableRow:
        return TableRow(cells=[label] + _aggregate_cells(aggregate) + list(trailing),
                        highlight=RowHighlight.TOTAL)

    def _age_table(self, snapshot: Snapshot, delta: Optional[Delta]) -> ReportTable:
        threshold = self.report_config.variance_threshold
        headers = ["Age Bucket"] + AGGREGATE_HEADERS + ["Change"]
        rows = []
        for aggregate in snapshot.partition(AGE_BUCKET):
            change = delta.age_buckets.get(aggregate.key) if delta else None
            rows.append(TableRow(
                cells=[aggregate.key] + _aggregate_cells(aggregate)
                + [change.percent_label if change else "n/a"],
                highlight=variance_highlight(change, METRIC_POLARITY["open_claims"], threshold),
            ))
        rows.append(self._total_row(
            "Total", snapshot.total, [delta.count.percent_label if delta else "n/a"]
        ))
        return ReportTable(
            title="Open Inventory by Age",
            headers=headers,
            rows=rows,
            footnote="Low/high sums exclude claims without an evaluation.",
        )

    def _partition_table(self, title: str, key_header: str, snapshot: Snapshot, dimension: str) -> ReportTable:
        rows = [
            TableRow(cells=[aggregate.key] + _aggregate_cells(aggregate))
            for aggregate in snapshot.partition(dimension)
        ]
        if rows:
            rows.append(self._total_row("Total", snapshot.total))
        return ReportTable(title=title, headers=[key_header] + AGGREGATE_HEADERS, rows=rows)

    def _cp1_table(self, snapshot: Snapshot) -> ReportTable:
        overall = Decimal(snapshot.cp1_rate)
        rows = []
        for entry in snapshot.cp1_by_coverage:
            above = entry["total"] and Decimal(entry["cp1_rate"]) > overall
            rows.append(TableRow(
                cells=[
                    entry["coverage"],
                    f"{entry['yes']:,}",
                    f"{entry['no']:,}",
                    f"{entry['total']:,}",
                    f"{entry['cp1_rate']}%",
                ],
                highlight=RowHighlight.WARNING if above else None,
            ))
        if rows:
            total = snapshot.total
            rows.append(TableRow(
                cells=[
                    "Total",
                    f"{total.cp1_count:,}",
                    f"{total.count - total.cp1_count:,}",
                    f"{total.count:,}",
                    f"{total.cp1_rate}%",
                ],
                highlight=RowHighlight.TOTAL,
            ))
        return ReportTable(
            title="CP1 by Coverage",
            headers=["Coverage", "CP1 Yes", "CP1 No", "Total", "CP1 Rate"],
            rows=rows,
        )

    def _at_risk_table(self, at_risk: Sequence[AtRiskClaim]) -> ReportTable:
        rows = []
        for claim in at_risk[:MAX_AT_RISK_ROWS]:
            highlight = None
            if claim.level == CRITICAL:
                highlight = RowHighlight.RISK
            elif claim.level == HIGH:
                highlight = RowHighlight.WARNING
            rows.append(TableRow(
                cells=[
                    claim.claim_id,
                    claim.state,
                    format_money(claim.reserves),
                    format_money(Decimal(claim.policy_limit)),
                    str(claim.score),
                    claim.level,
                ],
                highlight=highlight,
            ))
        footnote = None
        if len(at_risk) > MAX_AT_RISK_ROWS:
            footnote = f"Top {MAX_AT_RISK_ROWS} of {len(at_risk)} flagged claims shown."
        return ReportTable(
            title="Claims at Risk of Exceeding Policy Limits",
            headers=["Claim", "State", "Reserves", "Limit", "Score", "Level"],
            rows=rows,
            footnote=footnote,
        )

    def _methodology(self, snapshot: Snapshot) -> AppendixSection:
        chart = ChartSpec(
            type=ChartType.BAR,
            title="Open Reserves by Age",
            data=[
                {"label": aggregate.key, "value": float(aggregate.reserves)}
                for aggregate in snapshot.partition(AGE_BUCKET)
            ],
        )
        return AppendixSection(
            title="Methodology",
            content=(
                "Figures aggregate every open claim in the inventory export. Claims without an "
                "evaluation count toward claim and reserve totals but not toward low/high "
                "evaluation sums. CP1 rate is the share of claims tendered at policy limits. "
                f"Rows are highlighted when their change exceeds {self.report_config.variance_threshold:g}%."
            ),
            chart=chart,
        )
