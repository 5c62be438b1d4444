"""Configuration management for the open exposure pipeline."""

import os
import yaml
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .errors import ConfigError, ErrorContext, ErrorType
from .logging import DEFAULT_FORMAT


DEFAULT_COVERAGES = ["BI", "PD", "UM"]
DEFAULT_QUEUES = ["Litigation", "ATR", "BI3", "Early BI"]
REPORT_FORMATS = ("pdf", "xlsx")

# State bodily-injury policy limits used by the at-risk screen
DEFAULT_STATE_LIMITS = {
    "TEXAS": 30000,
    "CALIFORNIA": 15000,
    "NEVADA": 25000,
    "GEORGIA": 25000,
    "NEW MEXICO": 25000,
    "COLORADO": 25000,
    "ALABAMA": 25000,
    "OKLAHOMA": 25000,
    "ARIZONA": 25000,
    "NEW JERSEY": 15000,
    "FLORIDA": 10000,
}

# Historical over-limit frequency weight per state
DEFAULT_STATE_WEIGHTS = {
    "TEXAS": 3,
    "NEVADA": 3,
    "CALIFORNIA": 3,
    "GEORGIA": 2,
    "NEW MEXICO": 2,
    "OKLAHOMA": 2,
    "ARIZONA": 2,
    "COLORADO": 1,
    "ALABAMA": 1,
}


@dataclass
class WorkflowConfig:
    """Review workflow configuration."""
    default_assignee: str = "Claims Review Desk"
    batch_cap: int = 25
    named_filters: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    # Destinations told about each deployed directive
    notify: List[str] = field(default_factory=list)


@dataclass
class BackendConfig:
    """Row-store, change-feed and delivery call settings."""
    timeout: float = 10.0
    max_retries: int = 3
    backoff_base: float = 1.0
    reviews_table: str = "claim_reviews"
    snapshots_table: str = "inventory_snapshots"


@dataclass
class ReportConfig:
    """Executive report compiler configuration."""
    title: str = "Open Inventory Executive Summary"
    classification: str = "CONFIDENTIAL"
    variance_threshold: float = 10.0
    min_metrics: int = 4
    pass_score: float = 9.0
    output_dir: str = "reports"
    # pdf or xlsx
    format: str = "pdf"
    # Rendering runs in a worker thread and gets its own per-attempt budget
    render_timeout: float = 120.0
    # Hand-maintained comparison figures (e.g. prior-year budget); never derived
    baselines: Dict[str, Decimal] = field(default_factory=dict)


@dataclass
class AggregationConfig:
    """Declared partition keys that must always appear in a snapshot."""
    coverages: List[str] = field(default_factory=lambda: list(DEFAULT_COVERAGES))
    queues: List[str] = field(default_factory=lambda: list(DEFAULT_QUEUES))


@dataclass
class RiskConfig:
    """At-risk screen thresholds."""
    state_limits: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_STATE_LIMITS))
    state_weights: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_STATE_WEIGHTS))
    default_limit: int = 25000
    min_score: int = 40
    min_patterns: int = 2


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = DEFAULT_FORMAT
    file: Optional[str] = None


@dataclass
class Config:
    """Main configuration class."""
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "Config":
        """Configuration built entirely from documented defaults plus environment overrides."""
        return cls.from_dict({})

    @classmethod
    def load(cls, config_path: str = "config.yaml") -> "Config":
        """
        Load configuration from file and environment variables.

        Environment variables override config file values:
        - EXPOSURE_LOG_LEVEL
        - EXPOSURE_BATCH_CAP
        - EXPOSURE_DEFAULT_ASSIGNEE
        - EXPOSURE_BACKEND_TIMEOUT

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Config instance with loaded settings

        Raises:
            ConfigError: If the file is missing or a value is invalid
        """
        if not os.path.exists(config_path):
            raise ConfigError(
                ErrorContext(
                    error_type=ErrorType.CONFIG_MISSING,
                    message=f"Configuration file not found: {config_path}",
                    recoverable=False,
                    fallback_action="Use Config.default()",
                )
            )

        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

        return cls.from_dict(config_data)

    @classmethod
    def from_dict(cls, config_data: Dict[str, Any]) -> "Config":
        """
        Build configuration from an already-parsed mapping.

        Args:
            config_data: Mapping shaped like config.yaml

        Returns:
            Config instance
        """
        wf = config_data.get("workflow", {}) or {}
        be = config_data.get("backend", {}) or {}
        rp = config_data.get("report", {}) or {}
        ag = config_data.get("aggregation", {}) or {}
        rk = config_data.get("risk", {}) or {}
        lg = config_data.get("logging", {}) or {}

        batch_cap = _as_int("workflow.batch_cap", os.getenv("EXPOSURE_BATCH_CAP", wf.get("batch_cap", 25)))
        if batch_cap < 1:
            raise ConfigError.invalid("workflow.batch_cap", batch_cap, "must be at least 1")

        workflow_config = WorkflowConfig(
            default_assignee=os.getenv(
                "EXPOSURE_DEFAULT_ASSIGNEE", wf.get("default_assignee", "Claims Review Desk")
            ),
            batch_cap=batch_cap,
            named_filters=dict(wf.get("named_filters", {}) or {}),
            notify=[str(destination) for destination in (wf.get("notify") or [])],
        )

        backend_config = BackendConfig(
            timeout=float(os.getenv("EXPOSURE_BACKEND_TIMEOUT", be.get("timeout", 10.0))),
            max_retries=_as_int("backend.max_retries", be.get("max_retries", 3)),
            backoff_base=float(be.get("backoff_base", 1.0)),
            reviews_table=be.get("reviews_table", "claim_reviews"),
            snapshots_table=be.get("snapshots_table", "inventory_snapshots"),
        )

        report_format = str(rp.get("format", "pdf")).lower()
        if report_format not in REPORT_FORMATS:
            raise ConfigError.invalid("report.format", report_format, f"expected one of {REPORT_FORMATS}")

        report_config = ReportConfig(
            title=rp.get("title", "Open Inventory Executive Summary"),
            classification=rp.get("classification", "CONFIDENTIAL"),
            variance_threshold=float(rp.get("variance_threshold", 10.0)),
            min_metrics=_as_int("report.min_metrics", rp.get("min_metrics", 4)),
            pass_score=float(rp.get("pass_score", 9.0)),
            output_dir=rp.get("output_dir", "reports"),
            format=report_format,
            render_timeout=float(rp.get("render_timeout", 120.0)),
            baselines={
                name: Decimal(str(value))
                for name, value in (rp.get("baselines", {}) or {}).items()
            },
        )

        aggregation_config = AggregationConfig(
            coverages=list(ag.get("coverages", DEFAULT_COVERAGES)),
            queues=list(ag.get("queues", DEFAULT_QUEUES)),
        )

        risk_config = RiskConfig(
            state_limits={k.upper(): int(v) for k, v in (rk.get("state_limits") or DEFAULT_STATE_LIMITS).items()},
            state_weights={k.upper(): int(v) for k, v in (rk.get("state_weights") or DEFAULT_STATE_WEIGHTS).items()},
            default_limit=_as_int("risk.default_limit", rk.get("default_limit", 25000)),
            min_score=_as_int("risk.min_score", rk.get("min_score", 40)),
            min_patterns=_as_int("risk.min_patterns", rk.get("min_patterns", 2)),
        )

        logging_config = LoggingConfig(
            level=os.getenv("EXPOSURE_LOG_LEVEL", lg.get("level", "INFO")),
            format=lg.get("format", DEFAULT_FORMAT),
            file=lg.get("file"),
        )

        return cls(
            workflow=workflow_config,
            backend=backend_config,
            report=report_config,
            aggregation=aggregation_config,
            risk=risk_config,
            logging=logging_config,
        )


def _as_int(key: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError.invalid(key, value, "expected an integer") from e
