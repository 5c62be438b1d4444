"""
Pipeline entry point for open exposure analytics.

Wires the normalizer, aggregation engine, delta engine, at-risk screen,
review workflow and report compiler/exporter around one row store.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from dotenv import load_dotenv

from .analytics import AtRiskClaim, aggregate_records, compute_delta, screen_at_risk
from .ingest import NormalizationResult, RejectedRow, normalize_rows
from .models import (
    AppendixSection,
    ClaimRecord,
    Delta,
    ExportResult,
    GenerationResult,
    NormalizationWarning,
    ReportTable,
    ReviewItem,
    Snapshot,
)
from .reporting import PdfRenderer, Renderer, ReportCompiler, ReportExporter, XlsxRenderer
from .storage import DeliveryChannel, InMemoryTableStore, SnapshotStore, TableStore
from .utils.config import Config
from .utils.logging import log_context, setup_logging
from .utils.retry import RetryPolicy
from .workflow import ReviewWorkflowManager, SelectionCriterion

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    """
    Everything one ingestion run produced.

    Attributes:
        snapshot: Aggregated snapshot (already persisted)
        delta: Comparison with the previous stored snapshot, if any
        records: Normalized claim records
        warnings: Normalization warnings
        rejected: Rows rejected for a missing identifier
        at_risk: At-risk screen output, highest score first
    """
    snapshot: Snapshot
    delta: Optional[Delta]
    records: List[ClaimRecord] = field(default_factory=list)
    warnings: List[NormalizationWarning] = field(default_factory=list)
    rejected: List[RejectedRow] = field(default_factory=list)
    at_risk: List[AtRiskClaim] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        snapshot = self.snapshot.to_dict()
        snapshot["cp1_by_coverage"] = [
            dict(entry, reserves=str(entry["reserves"])) for entry in self.snapshot.cp1_by_coverage
        ]
        return {
            "snapshot": snapshot,
            "delta": self.delta.to_dict() if self.delta else None,
            "warnings": [vars(warning).copy() for warning in self.warnings],
            "rejected": [
                {"row_index": rejected.row_index, "reason": rejected.reason} for rejected in self.rejected
            ],
            "at_risk": [
                {
                    "claim_id": claim.claim_id,
                    "state": claim.state,
                    "reserves": str(claim.reserves),
                    "score": claim.score,
                    "level": claim.level,
                    "patterns": list(claim.patterns),
                }
                for claim in self.at_risk
            ],
        }


class ExposurePipeline:
    """
    Runs ingestion, review directives and executive reporting.

    Only the review workflow holds long-lived state; the pipeline keeps the
    records of the latest ingestion so directives can select from them.

    Attributes:
        config: Pipeline configuration
        store: Row store (and change feed, for the in-memory store)
        snapshots: Snapshot persistence
        workflow: Review workflow manager
        compiler: Report compiler
        exporter: Report exporter
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        store: Optional[TableStore] = None,
        renderer: Optional[Renderer] = None,
        channel: Optional[DeliveryChannel] = None
    ):
        self.config = config or Config.default()
        self.store = store or InMemoryTableStore()

        backend = self.config.backend
        policy = RetryPolicy(
            timeout=backend.timeout,
            max_retries=backend.max_retries,
            backoff_base=backend.backoff_base,
        )
        self.snapshots = SnapshotStore(self.store, table=backend.snapshots_table, policy=policy)
        self.workflow = ReviewWorkflowManager(self.store, config=self.config, channel=channel)
        self.compiler = ReportCompiler(self.config)
        self.exporter = ReportExporter(
            renderer or self._default_renderer(),
            channel=channel,
            policy=policy,
            render_policy=RetryPolicy(
                timeout=self.config.report.render_timeout,
                max_retries=backend.max_retries,
                backoff_base=backend.backoff_base,
            ),
        )
        self._latest: Optional[IngestResult] = None

    def _default_renderer(self) -> Renderer:
        report = self.config.report
        if report.format == "xlsx":
            return XlsxRenderer(output_dir=report.output_dir)
        return PdfRenderer(output_dir=report.output_dir)

    @classmethod
    def from_config_file(cls, config_path: str = "config.yaml", **kwargs) -> "ExposurePipeline":
        """Load configuration from YAML, set up logging and build a pipeline."""
        config = Config.load(config_path)
        setup_logging(config.logging.level, config.logging.format, config.logging.file)
        logger.info(f"Configuration loaded from {config_path}")
        return cls(config=config, **kwargs)

    async def start(self) -> None:
        await self.workflow.start()

    async def stop(self) -> None:
        await self.workflow.stop()

    @property
    def latest(self) -> Optional[IngestResult]:
        return self._latest

    @property
    def records(self) -> List[ClaimRecord]:
        return list(self._latest.records) if self._latest else []

    async def ingest(
        self,
        rows: Iterable[Mapping[str, Any]],
        column_map: Optional[Mapping[str, Any]] = None,
        snapshot_id: Optional[str] = None,
        created_at: Optional[datetime] = None
    ) -> IngestResult:
        """
        Normalize, aggregate and persist one export, then compare it with history.

        Args:
            rows: Raw export rows (already parsed mappings)
            column_map: Optional column alias overrides
            snapshot_id: Snapshot identifier (generated when omitted)
            created_at: Snapshot timestamp (now when omitted)

        Returns:
            IngestResult for the run

        Raises:
            ReconciliationError: If the aggregates do not reconcile
            DependencyError: If the snapshot store is unavailable
        """
        normalized: NormalizationResult = normalize_rows(rows, column_map)
        snapshot = aggregate_records(
            normalized.records,
            snapshot_id=snapshot_id,
            created_at=created_at,
            config=self.config.aggregation,
        )

        with log_context(snapshot_id=snapshot.snapshot_id):
            await self.snapshots.save(snapshot)
            previous = await self.snapshots.previous_to(snapshot)
            delta = compute_delta(snapshot, previous)
            at_risk = screen_at_risk(normalized.records, self.config.risk)

        self._latest = IngestResult(
            snapshot=snapshot,
            delta=delta,
            records=normalized.records,
            warnings=normalized.warnings,
            rejected=normalized.rejected,
            at_risk=at_risk,
        )
        logger.info(
            f"Ingested snapshot {snapshot.snapshot_id}: {snapshot.record_count} records, "
            f"{len(normalized.rejected)} rejected, {len(at_risk)} at risk"
        )
        return self._latest

    async def deploy_directive(
        self,
        criterion: SelectionCriterion,
        assignee: Optional[str] = None,
        notes: Optional[str] = None,
        deadline: Optional[date] = None,
        notify: Optional[Sequence[str]] = None
    ) -> List[ReviewItem]:
        """Deploy a review directive over the latest ingested records."""
        return await self.workflow.deploy_directive(
            self.records, criterion, assignee=assignee, notes=notes, deadline=deadline, notify=notify
        )

    def compile_report(
        self,
        extra_tables: Sequence[ReportTable] = (),
        appendix: Sequence[AppendixSection] = ()
    ) -> GenerationResult:
        """
        Build and audit the executive report for the latest ingestion.

        Raises:
            LookupError: If nothing has been ingested yet
        """
        if self._latest is None:
            raise LookupError("No snapshot has been ingested yet")
        latest = self._latest
        return self.compiler.compile(
            latest.snapshot,
            latest.delta,
            extra_tables=extra_tables,
            appendix=appendix,
            at_risk=latest.at_risk,
        )

    async def export_report(
        self,
        generation: GenerationResult,
        destinations: Sequence[str] = ()
    ) -> ExportResult:
        """Render (and optionally deliver) a compiled report."""
        if not generation.quality.passed:
            logger.warning(
                f"Exporting '{generation.model.title}' although it failed the quality gate "
                f"(score {generation.quality.overall})"
            )
        return await self.exporter.export(generation.model, destinations)


def run_pipeline(
    rows: Iterable[Mapping[str, Any]],
    config: Optional[Config] = None,
    render: bool = True
) -> Dict[str, Any]:
    """
    One-shot run: ingest rows, compile the executive report and render it.

    Args:
        rows: Raw export rows
        config: Configuration (defaults when omitted)
        render: Whether to render the report to PDF

    Returns:
        Dictionary with keys:
            - ingest: Snapshot, delta, warnings, rejected rows and at-risk claims
            - report: Report model
            - quality: Quality audit
            - artifact: Rendered file path (None when not rendered)
    """
    async def run() -> Dict[str, Any]:
        pipeline = ExposurePipeline(config=config)
        ingested = await pipeline.ingest(rows)
        generation = pipeline.compile_report()
        artifact = None
        if render:
            exported = await pipeline.export_report(generation)
            artifact = exported.render.artifact_ref
        return {
            "ingest": ingested.to_dict(),
            "report": generation.model.to_dict(),
            "quality": generation.quality.to_dict(),
            "artifact": artifact,
        }

    return asyncio.run(run())
