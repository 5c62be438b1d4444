"""Aggregation, delta and risk analytics over normalized claim records."""

from .aggregation import aggregate_records, reconcile
from .delta import compare_to_baseline, compute_delta, metric_change
from .risk import AtRiskClaim, screen_at_risk

__all__ = [
    'aggregate_records',
    'reconcile',
    'compare_to_baseline',
    'compute_delta',
    'metric_change',
    'AtRiskClaim',
    'screen_at_risk',
]
