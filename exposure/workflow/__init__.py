"""Claim review workflow: selection, live view and status transitions."""

from .manager import ReviewWorkflowManager, TRANSITIONS
from .reducer import ReviewView, apply_event, rebuild
from .selection import SelectionCriterion, select_records

__all__ = [
    'ReviewWorkflowManager',
    'TRANSITIONS',
    'ReviewView',
    'apply_event',
    'rebuild',
    'SelectionCriterion',
    'select_records',
]
