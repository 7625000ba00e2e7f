"""Risk governance: hard limits, approvals and the circuit breaker."""

from risk.approvals import ApprovalRegistry
from risk.circuit_breaker import CircuitBreaker
from risk.governor import RiskGovernor
from risk.models import (
    ApprovalOutcome,
    ApprovalRequest,
    ApprovalResult,
    ApprovalStatus,
    CircuitBreakerState,
    DailyLossAccumulator,
    OperationContext,
    RiskCheckResult,
    RiskMetrics,
    RiskReason,
    TradeOutcome,
    is_high_risk_tool,
)
from risk.settings import RiskSettings

__all__ = [
    "ApprovalOutcome",
    "ApprovalRegistry",
    "ApprovalRequest",
    "ApprovalResult",
    "ApprovalStatus",
    "CircuitBreaker",
    "CircuitBreakerState",
    "DailyLossAccumulator",
    "OperationContext",
    "RiskCheckResult",
    "RiskGovernor",
    "RiskMetrics",
    "RiskReason",
    "RiskSettings",
    "TradeOutcome",
    "is_high_risk_tool",
]
