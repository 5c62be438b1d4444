"""Shared fixtures for the open exposure tests."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest

from exposure.models import ClaimRecord, Evaluation
from exposure.utils.config import Config


def make_record(
    claim_id: str,
    age_days: int = 30,
    reserves: str = "1000",
    coverage: str = "BI",
    queue: str = "Litigation",
    evaluation: Optional[tuple] = None,
    **fields
) -> ClaimRecord:
    """Build a ClaimRecord with sensible defaults for tests."""
    if evaluation is not None:
        fields["evaluation"] = Evaluation(low=Decimal(evaluation[0]), high=Decimal(evaluation[1]))
    return ClaimRecord(
        claim_id=claim_id,
        age_days=age_days,
        reserves=Decimal(reserves),
        coverage=coverage,
        queue=queue,
        **fields
    )


@pytest.fixture
def config():
    """Default configuration with instant retries."""
    return Config.from_dict({"backend": {"timeout": 5, "max_retries": 3, "backoff_base": 0}})


@pytest.fixture
def export_rows():
    """A small inventory export as it arrives from the spreadsheet."""
    return [
        {
            "Claim#": "65-100001",
            "Claimant": "J. Alvarez",
            "Open/Closed Days": "412",
            "Coverage": "BI",
            "Type Group": "LIT",
            "Open Reserves": "$42,500.00",
            "Low": "30,000",
            "High": "55,000",
            "Overall CP1 Flag": "Yes",
            "In Litigation Indicator": "In Litigation",
            "Accident Location State": "texas",
            "Area#": "A12",
            "Description of Accident": "Rear-end collision",
            "FATALITY": "No",
            "SURGERY": "Yes",
        },
        {
            "Claim#": "65-100002",
            "Open/Closed Days": "45",
            "Coverage": "PD",
            "Type Group": "ATR",
            "Open Reserves": "$3,200",
            "Low": "(blank)",
            "High": "",
            "Overall CP1 Flag": "No",
            "Accident Location State": "FLORIDA",
        },
        {
            "Claim#": "65-100003",
            "Open/Closed Days": "200",
            "Coverage": "BI",
            "Type Group": "BI3",
            "Open Reserves": "18,750",
            "Low": "12000",
            "High": "",
            "Overall CP1 Flag": "",
            "Accident Location State": "NEVADA",
        },
        {
            "Claim#": "",
            "Open/Closed Days": "10",
            "Coverage": "UM",
            "Open Reserves": "500",
        },
    ]


@pytest.fixture
def as_of():
    return datetime(2026, 1, 8, 12, 0, tzinfo=timezone.utc)
