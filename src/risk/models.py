"""Data models for risk governance."""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any

from risk.settings import RiskSettings


# Tools that mutate real positions or orders on the execution backend.
HIGH_RISK_TOOLS = frozenset(
    {
        "execute_trade",
        "modify_position",
        "close_position",
        "close_all_positions",
        "place_order",
        "cancel_order",
    }
)
OPENING_TOOLS = frozenset({"execute_trade", "place_order"})
FLATTENING_TOOLS = frozenset({"close_all_positions"})


def is_high_risk_tool(tool_name: str) -> bool:
    """Return True if the tool mutates real positions or orders."""
    return tool_name in HIGH_RISK_TOOLS


class RiskReason(Enum):
    """Machine-readable reason codes for a denied pre-check."""

    BLACKLISTED_SYMBOL = "blacklisted_symbol"
    POSITION_SIZE_EXCEEDED = "position_size_exceeded"
    DAILY_LOSS_LIMIT = "daily_loss_limit"
    POSITION_CAP_EXCEEDED = "position_cap_exceeded"
    CIRCUIT_BREAKER_TRIPPED = "circuit_breaker_tripped"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVAL_INVALID = "approval_invalid"


class ApprovalStatus(Enum):
    """Lifecycle state of an approval request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not ApprovalStatus.PENDING


class ApprovalOutcome(Enum):
    """Result code of an approve/reject attempt."""

    APPROVED = "approved"
    REJECTED = "rejected"
    NOT_FOUND = "not_found"
    ALREADY_RESOLVED = "already_resolved"


@dataclass
class OperationContext:
    """A mutating operation a caller wants to run against the backend.

    Attributes:
        tool_name: Name of the backend operation (e.g. "execute_trade").
        params: Operation parameters as passed to the backend.
    """

    tool_name: str
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def symbol(self) -> str:
        """Upper-cased symbol from params, empty if absent."""
        return str(self.params.get("symbol") or "").strip().upper()

    @property
    def notional_usd(self) -> float:
        """Size times price, 0.0 when either is missing or not numeric."""
        size = _first_number(self.params, ("size", "quantity", "amount"))
        price = _first_number(self.params, ("price", "limit_price", "limitPrice"))
        if size <= 0 or price <= 0:
            return 0.0
        return size * price

    @property
    def is_high_risk(self) -> bool:
        return is_high_risk_tool(self.tool_name)


def _first_number(params: dict[str, Any], keys: tuple[str, ...]) -> float:
    for key in keys:
        value = params.get(key)
        if value is None:
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0
    return 0.0


@dataclass
class TradeOutcome:
    """Outcome reported after an operation executed against the backend.

    Attributes:
        realized_pnl: Realized profit/loss, None when nothing was realized.
        symbol: Symbol the operation touched.
        success: Whether the backend reported success.
        data: Any extra backend payload.
    """

    realized_pnl: float | None = None
    symbol: str | None = None
    success: bool = True
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class RiskCheckResult:
    """Result of a pre-check for a proposed operation.

    Attributes:
        allowed: Whether the operation may proceed now.
        reason: Reason code when denied (None if allowed).
        message: Human-readable explanation of the denial.
        request_id: Approval request id when awaiting approval.
        warnings: Non-blocking warnings about the operation.
        approval_request: Copy of the pending request when awaiting approval.
    """

    allowed: bool
    reason: RiskReason | None = None
    message: str | None = None
    request_id: str | None = None
    warnings: list[str] = field(default_factory=list)
    approval_request: "ApprovalRequest | None" = None

    @classmethod
    def deny(cls, reason: RiskReason, message: str) -> "RiskCheckResult":
        return cls(allowed=False, reason=reason, message=message)


@dataclass
class DailyLossAccumulator:
    """Realized losses for one calendar day."""

    date: date
    loss_usd: float = 0.0

    def roll(self, today: date) -> bool:
        """Reset to zero if the stored date is not today.

        Returns:
            True if a reset happened.
        """
        if self.date == today:
            return False
        self.date = today
        self.loss_usd = 0.0
        return True


@dataclass
class CircuitBreakerState:
    """Snapshot of the circuit breaker.

    Attributes:
        tripped: Whether high-risk operations are blocked.
        consecutive_losses: Losing outcomes since the last win or reset.
        tripped_at: When the breaker tripped.
        cooldown_minutes: Cooldown applied to the current trip.
        trip_reason: Why the breaker tripped.
    """

    tripped: bool = False
    consecutive_losses: int = 0
    tripped_at: datetime | None = None
    cooldown_minutes: int = 0
    trip_reason: str | None = None

    @property
    def cooldown_ends_at(self) -> datetime | None:
        if self.tripped_at is None:
            return None
        return self.tripped_at + timedelta(minutes=self.cooldown_minutes)


@dataclass
class ApprovalRequest:
    """A pending authorization for a high-risk operation."""

    id: str
    context: OperationContext
    created_at: datetime
    expires_at: datetime
    status: ApprovalStatus = ApprovalStatus.PENDING
    resolved_at: datetime | None = None
    consumed: bool = False

    @property
    def tool_name(self) -> str:
        return self.context.tool_name

    @property
    def params(self) -> dict[str, Any]:
        return self.context.params

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class ApprovalResult:
    """Result of an approve/reject attempt.

    Attributes:
        success: Whether this call resolved the request.
        outcome: What happened.
        request: The request, when it exists.
    """

    success: bool
    outcome: ApprovalOutcome
    request: ApprovalRequest | None = None

    @property
    def context(self) -> OperationContext | None:
        return self.request.context if self.request else None

    @property
    def error(self) -> str | None:
        if self.success:
            return None
        if self.outcome is ApprovalOutcome.ALREADY_RESOLVED and self.request:
            return f"Request already {self.request.status.value}"
        return "Request not found"


@dataclass
class RiskMetrics:
    """Read-only snapshot of governor state for status displays."""

    config: RiskSettings
    daily_loss_usd: float
    daily_loss_remaining_usd: float
    open_positions: int
    positions_remaining: int
    circuit_breaker: CircuitBreakerState
    cooldown_remaining_minutes: float
    pending_approvals_count: int
    as_of: datetime
