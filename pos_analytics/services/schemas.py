"""Pydantic schemas for per-call report options"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pos_analytics.config import Settings
from pos_analytics.domain.scoring import ScoringConfig


def _check_bands(medium: float, high: float) -> None:
    if medium > high:
        raise ValueError(f"medium_risk_ratio ({medium}) must not exceed high_risk_ratio ({high})")


class ReportOptions(BaseModel):
    """
    Per-call overrides for scoring and report shape.

    Any field left as None falls back to Settings. Instances are frozen so
    they can be part of a report cache key.
    """

    model_config = ConfigDict(frozen=True)

    target_revenue: Optional[float] = Field(None, gt=0, description="Revenue that earns the full revenue component")
    revenue_weight: Optional[float] = Field(None, ge=0)
    margin_weight: Optional[float] = Field(None, ge=0)
    collection_weight: Optional[float] = Field(None, ge=0)
    high_risk_ratio: Optional[float] = Field(None, ge=0, le=1)
    medium_risk_ratio: Optional[float] = Field(None, ge=0, le=1)
    top_n: Optional[int] = Field(None, ge=1, description="Truncate ranked reports to this many rows")
    window_days: Optional[int] = Field(None, ge=1, description="Trailing window used when no window is given")

    @model_validator(mode="after")
    def check_risk_bands(self) -> "ReportOptions":
        # One-sided overrides are checked against the service config in scoring_config
        if self.high_risk_ratio is not None and self.medium_risk_ratio is not None:
            _check_bands(self.medium_risk_ratio, self.high_risk_ratio)
        return self

    def scoring_config(self, config: Settings) -> ScoringConfig:
        """
        Merge these overrides over the configured defaults.

        Raises:
            ValueError: the merged medium band lies above the merged high band
        """

        def pick(override: Optional[float], default: float) -> float:
            return default if override is None else override

        high = pick(self.high_risk_ratio, config.high_risk_ratio)
        medium = pick(self.medium_risk_ratio, config.medium_risk_ratio)
        _check_bands(medium, high)

        return ScoringConfig(
            target_revenue=pick(self.target_revenue, config.target_revenue),
            revenue_weight=pick(self.revenue_weight, config.revenue_weight),
            margin_weight=pick(self.margin_weight, config.margin_weight),
            collection_weight=pick(self.collection_weight, config.collection_weight),
            high_risk_ratio=high,
            medium_risk_ratio=medium,
        )
