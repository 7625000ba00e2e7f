"""Settings for risk governance."""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RiskSettings(BaseModel):
    """Hard limits enforced by the risk governor.

    Instances are frozen so that a single pre-check always evaluates against
    one consistent snapshot; hot reloads replace the whole object.

    Attributes:
        max_position_size_usd: Largest notional value allowed for one operation.
        max_daily_loss_usd: Realized loss budget per calendar day.
        max_open_positions: Maximum concurrent open positions.
        require_confirmation: Whether high-risk operations need approval.
        blacklisted_symbols: Symbols that may never be traded (upper-cased).
        consecutive_loss_threshold: Losing outcomes in a row that trip the breaker.
        cooldown_minutes: How long a tripped breaker stays tripped.
        approval_ttl_seconds: Lifetime of a pending approval request.
        approval_retention_seconds: How long resolved requests are remembered.
        position_warning_ratio: Fraction of a limit at which warnings start.
    """

    model_config = ConfigDict(frozen=True)

    max_position_size_usd: float = Field(default=10_000.0, gt=0)
    max_daily_loss_usd: float = Field(default=1_000.0, gt=0)
    max_open_positions: int = Field(default=5, ge=1)
    require_confirmation: bool = True
    blacklisted_symbols: frozenset[str] = Field(default_factory=frozenset)
    consecutive_loss_threshold: int = Field(default=3, ge=1)
    cooldown_minutes: int = Field(default=60, ge=0)
    approval_ttl_seconds: int = Field(default=300, gt=0)
    approval_retention_seconds: int = Field(default=3600, ge=0)
    position_warning_ratio: float = Field(default=0.8, gt=0, le=1.0)

    @field_validator("blacklisted_symbols", mode="before")
    @classmethod
    def normalize_symbols(cls, v):
        """Accept a comma-separated string or any iterable, upper-cased."""
        if v is None:
            return frozenset()
        if isinstance(v, str):
            v = v.split(",")
        return frozenset(s.strip().upper() for s in v if s and s.strip())
