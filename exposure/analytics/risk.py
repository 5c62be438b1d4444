"""At-risk screen for bodily-injury claims trending toward policy limits."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional

from ..models.claim import ClaimRecord
from ..utils.config import RiskConfig

logger = logging.getLogger(__name__)

SCREENED_COVERAGE = "BI"

CRITICAL = "CRITICAL"
HIGH = "HIGH"
MODERATE = "MODERATE"


@dataclass
class AtRiskClaim:
    """
    A claim matching enough over-limit patterns to warrant attention.

    Attributes:
        claim_id: Claim number
        claimant: Claimant name
        state: Accident location state
        reserves: Open reserves
        policy_limit: State BI limit applied
        reserve_to_limit_ratio: reserves / policy_limit
        age_days: Open days
        score: Summed pattern weights
        level: CRITICAL, HIGH or MODERATE
        patterns: Pattern codes that matched
        factors: Human-readable factor descriptions
    """
    claim_id: str
    claimant: str
    state: str
    reserves: Decimal
    policy_limit: int
    reserve_to_limit_ratio: float
    age_days: int
    score: int
    level: str
    patterns: List[str] = field(default_factory=list)
    factors: List[str] = field(default_factory=list)


def risk_level(score: int) -> str:
    if score >= 80:
        return CRITICAL
    if score >= 50:
        return HIGH
    return MODERATE


def score_claim(record: ClaimRecord, config: RiskConfig) -> Optional[AtRiskClaim]:
    """
    Score one claim against the over-limit patterns.

    Args:
        record: Claim to score
        config: State limits, weights and inclusion thresholds

    Returns:
        AtRiskClaim if the claim clears the inclusion threshold, else None
    """
    state = record.state.upper()
    limit = config.state_limits.get(state, config.default_limit)
    reserves = record.reserves
    ratio = float(reserves / limit) if limit > 0 else 0.0

    score = 0
    patterns: List[str] = []
    factors: List[str] = []

    def match(code: str, weight: int, factor: str):
        nonlocal score
        score += weight
        patterns.append(code)
        factors.append(factor)

    if state in config.state_weights:
        match("HIGH_RISK_STATE", config.state_weights[state] * 10, f"High-risk state: {state}")

    if reserves > 0 and ratio >= 0.8:
        match("RESERVES_EXCEED_80_PCT", 25, f"Reserves at {ratio * 100:.0f}% of limit")

    if reserves > 0 and reserves > limit:
        match("RESERVES_EXCEED_LIMIT", 35, "Reserves exceed policy limit")

    if record.in_litigation:
        match("IN_LITIGATION", 20, "Active litigation")

    if record.cp1:
        match("CP1_FLAG", 15, "CP1 flagged")

    if record.age_days >= 365:
        match("AGE_365_PLUS", 15, f"{record.age_days} days old")

    flags = record.trigger_flags
    if "SURGERY" in flags:
        match("SURGERY_INDICATOR", 20, "Surgery indicated")
    if "FATALITY" in flags:
        match("FATALITY", 40, "FATALITY")
    if "HOSPITALIZATION" in flags:
        match("HOSPITALIZATION", 15, "Hospitalization")

    if len(flags) >= 3:
        match("HIGH_TRIGGER_COUNT", 15, f"{len(flags)} aggravating factors")

    if record.evaluation is not None and record.evaluation.high > Decimal(limit) * Decimal("1.5"):
        match("HIGH_EVAL_EXCEEDS_LIMIT", 20, f"High eval ${record.evaluation.high:,.0f} exceeds limit")

    if len(patterns) < config.min_patterns and score < config.min_score:
        return None

    return AtRiskClaim(
        claim_id=record.claim_id,
        claimant=record.claimant,
        state=state,
        reserves=reserves,
        policy_limit=limit,
        reserve_to_limit_ratio=ratio,
        age_days=record.age_days,
        score=score,
        level=risk_level(score),
        patterns=patterns,
        factors=factors,
    )


def screen_at_risk(records: Iterable[ClaimRecord], config: Optional[RiskConfig] = None) -> List[AtRiskClaim]:
    """
    Screen BI claims for over-limit risk.

    Claims are kept when at least ``min_patterns`` patterns match or the
    score reaches ``min_score``, and returned highest score first.

    Args:
        records: Normalized claim records
        config: Risk thresholds (defaults when omitted)

    Returns:
        At-risk claims sorted by score, descending
    """
    config = config or RiskConfig()
    flagged = []
    for record in records:
        if record.coverage.upper() != SCREENED_COVERAGE:
            continue
        claim = score_claim(record, config)
        if claim is not None:
            flagged.append(claim)

    flagged.sort(key=lambda claim: claim.score, reverse=True)

    critical = sum(1 for claim in flagged if claim.level == CRITICAL)
    logger.info(f"At-risk screen flagged {len(flagged)} claims ({critical} critical)")
    return flagged
