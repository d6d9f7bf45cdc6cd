"""Performance scoring & risk classification for dimension aggregates"""

import math
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional

from pos_analytics.domain.models import DimensionAggregate, RiskLevel


@dataclass(frozen=True)
class ScoringConfig:
    """Tunable weights and thresholds; defaults mirror the Settings defaults"""

    target_revenue: float = 100_000.0
    revenue_weight: float = 0.4
    margin_weight: float = 0.35
    collection_weight: float = 0.25
    high_risk_ratio: float = 0.5
    medium_risk_ratio: float = 0.2


DEFAULT_CONFIG = ScoringConfig()


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def revenue_component(aggregate: DimensionAggregate, target_revenue: float) -> float:
    """Progress towards the revenue target, capped at 100"""
    if target_revenue <= 0:
        return 0.0
    return _clamp(aggregate.total_revenue / target_revenue * 100)


def collection_component(aggregate: DimensionAggregate) -> float:
    # Nothing extended on credit means nothing left to collect
    if aggregate.total_credit_given <= 0:
        return 100.0
    return _clamp(aggregate.credit_collection_rate)


def performance_score(aggregate: DimensionAggregate, config: Optional[ScoringConfig] = None) -> int:
    """
    Weighted 0-100 composite of revenue, margin and collection.

    Scoring weights (defaults):
    - 40%: Revenue against target (more sales is better, capped at target)
    - 35%: Profit margin (negative margins score 0)
    - 25%: Credit collection rate (no credit extended scores full marks)

    Thresholds rationale:
    - target_revenue = 100,000: a shop or cashier hitting target for the
      window earns the full revenue component
    - Each component is clamped to [0, 100] before weighting, so one bad
      input cannot drag the composite out of range
    """
    config = config or DEFAULT_CONFIG

    revenue_score = revenue_component(aggregate, config.target_revenue)
    margin_score = _clamp(aggregate.profit_margin)
    collection_score = collection_component(aggregate)

    score = (
        config.revenue_weight * revenue_score
        + config.margin_weight * margin_score
        + config.collection_weight * collection_score
    )

    # Half-up rounding; round() would send 62.5 to 62
    return int(_clamp(math.floor(score + 0.5)))


def risk_level(aggregate: DimensionAggregate, config: Optional[ScoringConfig] = None) -> RiskLevel:
    """
    Classify credit exposure from the outstanding-to-extended ratio.

    Bands (defaults):
    - no credit extended:            low
    - ratio > 0.5 or anything overdue: high
    - ratio > 0.2:                   medium
    - otherwise:                     low
    """
    config = config or DEFAULT_CONFIG

    if aggregate.total_credit_given <= 0:
        return RiskLevel.LOW

    ratio = aggregate.outstanding_credit / aggregate.total_credit_given
    if ratio > config.high_risk_ratio or aggregate.overdue_count > 0:
        return RiskLevel.HIGH
    elif ratio > config.medium_risk_ratio:
        return RiskLevel.MEDIUM
    else:
        return RiskLevel.LOW


def score_aggregate(aggregate: DimensionAggregate, config: Optional[ScoringConfig] = None) -> DimensionAggregate:
    """Return a copy with performance_score and risk_level filled in"""
    return replace(
        aggregate,
        performance_score=performance_score(aggregate, config),
        risk_level=risk_level(aggregate, config),
    )


def score_aggregates(
    aggregates: Iterable[DimensionAggregate],
    config: Optional[ScoringConfig] = None,
) -> List[DimensionAggregate]:
    return [score_aggregate(aggregate, config) for aggregate in aggregates]
