"""Ingestion of raw inventory export rows."""

from .normalizer import NormalizationResult, RejectedRow, normalize_rows, parse_currency, yesish

__all__ = [
    'NormalizationResult',
    'RejectedRow',
    'normalize_rows',
    'parse_currency',
    'yesish',
]
