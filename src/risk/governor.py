"""Risk governor: pre/post checks for high-risk backend operations."""

import logging
import threading
from collections.abc import Callable
from datetime import datetime

from risk.approvals import ApprovalRegistry
from risk.circuit_breaker import CircuitBreaker
from risk.models import (
    FLATTENING_TOOLS,
    OPENING_TOOLS,
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
)
from risk.settings import RiskSettings


logger = logging.getLogger(__name__)

TripListener = Callable[[str, CircuitBreakerState], None]
ApprovalListener = Callable[[ApprovalRequest], None]


class RiskGovernor:
    """Gatekeeper for operations that mutate real positions or orders.

    Composes the hard limits in RiskSettings, a CircuitBreaker and an
    ApprovalRegistry. Callers run ``pre_check`` before a mutating backend
    call and report the result through ``post_check`` afterwards.

    Every method takes the same re-entrant lock, so concurrent callers (CLI,
    automation loop, tool gates, the position monitor) see counter updates,
    breaker trips and approval transitions atomically. No method blocks on
    I/O.
    """

    def __init__(
        self,
        settings: RiskSettings | None = None,
        clock: Callable[[], datetime] | None = None,
        on_trip: TripListener | None = None,
        on_approval_requested: ApprovalListener | None = None,
    ):
        """Initialize the governor.

        Args:
            settings: Risk limits. Defaults to RiskSettings().
            clock: Returns the current time. Defaults to datetime.now.
            on_trip: Called (outside the lock) each time the breaker trips.
            on_approval_requested: Called (outside the lock) with a copy of
                each new pending approval request.
        """
        self._config = settings or RiskSettings()
        self._clock = clock or datetime.now
        self._on_trip = on_trip
        self._on_approval_requested = on_approval_requested
        self._lock = threading.RLock()

        self._daily_loss = DailyLossAccumulator(date=self._clock().date())
        self._open_positions = 0
        self._breaker = CircuitBreaker(
            loss_threshold=self._config.consecutive_loss_threshold,
            cooldown_minutes=self._config.cooldown_minutes,
        )
        self._approvals = ApprovalRegistry(
            ttl_seconds=self._config.approval_ttl_seconds,
            retention_seconds=self._config.approval_retention_seconds,
        )

    @property
    def config(self) -> RiskSettings:
        return self._config

    @property
    def open_positions(self) -> int:
        return self._open_positions

    def pre_check(
        self,
        context: OperationContext,
        approval_id: str | None = None,
    ) -> RiskCheckResult:
        """Decide whether an operation may proceed.

        Read-only operations are always allowed. High-risk operations are
        checked in order, stopping at the first hard failure: blacklist,
        position size, daily loss, open position cap, circuit breaker, and
        finally the approval requirement.

        Args:
            context: The operation to check.
            approval_id: Id of an APPROVED request for this exact operation.
                It is consumed, and replaces the approval step.

        Returns:
            RiskCheckResult. When approval is required, ``allowed`` is False,
            ``reason`` is AWAITING_APPROVAL, ``request_id`` identifies the new
            pending request and ``approval_request`` is a copy of it.
        """
        if not context.is_high_risk:
            return RiskCheckResult(allowed=True)

        with self._lock:
            result = self._evaluate(context, approval_id)

        if result.approval_request is not None:
            self._notify_listener(self._on_approval_requested, result.approval_request)
        return result

    def _evaluate(
        self, context: OperationContext, approval_id: str | None
    ) -> RiskCheckResult:
        """Run the ordered checks. Caller holds the lock."""
        now = self._clock()
        config = self._config
        self._roll_daily_loss(now)
        warnings: list[str] = []

        # Check 1: Blacklisted symbols
        symbol = context.symbol
        if symbol and self._is_blacklisted(symbol, config):
            return RiskCheckResult.deny(
                RiskReason.BLACKLISTED_SYMBOL,
                f"Symbol {symbol} is blacklisted",
            )

        # Check 2: Position size
        notional = context.notional_usd
        if notional > config.max_position_size_usd:
            return RiskCheckResult.deny(
                RiskReason.POSITION_SIZE_EXCEEDED,
                f"Position value ${notional:.2f} exceeds limit of "
                f"${config.max_position_size_usd:.2f}",
            )
        if notional > config.max_position_size_usd * config.position_warning_ratio:
            warnings.append(
                f"Position value ${notional:.2f} is approaching limit of "
                f"${config.max_position_size_usd:.2f}"
            )

        # Check 3: Daily loss budget
        daily_loss = self._daily_loss.loss_usd
        if daily_loss >= config.max_daily_loss_usd:
            return RiskCheckResult.deny(
                RiskReason.DAILY_LOSS_LIMIT,
                f"Daily loss limit of ${config.max_daily_loss_usd:.2f} reached "
                f"(current: ${daily_loss:.2f})",
            )
        if daily_loss > config.max_daily_loss_usd * config.position_warning_ratio:
            warnings.append(
                f"Daily loss ${daily_loss:.2f} is approaching limit of "
                f"${config.max_daily_loss_usd:.2f}"
            )

        # Check 4: Open position cap (only operations that open exposure)
        if context.tool_name in OPENING_TOOLS:
            if self._open_positions >= config.max_open_positions:
                return RiskCheckResult.deny(
                    RiskReason.POSITION_CAP_EXCEEDED,
                    f"Maximum {config.max_open_positions} positions already open "
                    f"(current: {self._open_positions})",
                )
            if self._open_positions >= config.max_open_positions - 1:
                warnings.append(
                    f"{self._open_positions} of {config.max_open_positions} "
                    "maximum positions open"
                )

        # Check 5: Circuit breaker
        if self._breaker.is_tripped(now):
            remaining = self._breaker.cooldown_remaining(now).total_seconds() / 60
            return RiskCheckResult.deny(
                RiskReason.CIRCUIT_BREAKER_TRIPPED,
                f"Circuit breaker tripped ({self._breaker.state.trip_reason}), "
                f"{remaining:.0f} min cooldown remaining",
            )

        # Check 6: Approval requirement
        if config.require_confirmation:
            if approval_id is not None:
                if self._approvals.consume(approval_id, context, now) is None:
                    return RiskCheckResult.deny(
                        RiskReason.APPROVAL_INVALID,
                        f"Approval {approval_id} is not an unused approval "
                        "for this operation",
                    )
                logger.info(f"Approval {approval_id} consumed for {context.tool_name}")
                return RiskCheckResult(allowed=True, warnings=warnings)

            request = self._approvals.create(context, now)
            return RiskCheckResult(
                allowed=False,
                reason=RiskReason.AWAITING_APPROVAL,
                message=f"Operation requires approval (request {request.id})",
                request_id=request.id,
                warnings=warnings,
                approval_request=request,
            )

        return RiskCheckResult(allowed=True, warnings=warnings)

    def post_check(self, context: OperationContext, outcome: TradeOutcome) -> None:
        """Update counters from an operation that actually executed.

        A negative realized P&L adds to the daily loss and extends the losing
        streak; zero or positive ends the streak; None leaves both alone. The
        breaker trips when the streak reaches the threshold or the daily loss
        exceeds its limit.
        """
        tripped: tuple[str, CircuitBreakerState] | None = None

        with self._lock:
            now = self._clock()

            if outcome.success and context.tool_name in OPENING_TOOLS:
                self._open_positions += 1
            elif outcome.success and context.tool_name in FLATTENING_TOOLS:
                self._open_positions = 0

            pnl = _as_float(outcome.realized_pnl)
            if pnl is None:
                if outcome.realized_pnl is not None:
                    logger.warning(
                        f"Ignoring non-numeric realized P&L {outcome.realized_pnl!r} "
                        f"for {context.tool_name}"
                    )
                return

            self._roll_daily_loss(now)
            if pnl < 0:
                self._daily_loss.loss_usd += abs(pnl)
                self._breaker.record_loss()
            else:
                self._breaker.record_win()

            reason = self._breach_reason()
            if reason and self._breaker.trip(reason, now):
                tripped = (reason, self._breaker.state)

        if tripped is not None:
            self._notify_listener(self._on_trip, *tripped)

    def reset_circuit_breaker(self, actor: str = "operator") -> None:
        """Manual override: clear the breaker and the losing streak.

        Args:
            actor: Who requested the reset, recorded in the log.
        """
        with self._lock:
            was_tripped = self._breaker.state.tripped
            self._breaker.reset()
        logger.warning(
            f"Circuit breaker reset by {actor} (was {'TRIPPED' if was_tripped else 'OK'})"
        )

    def get_pending_approvals(self) -> list[ApprovalRequest]:
        """Return copies of requests still pending after expiring overdue ones."""
        with self._lock:
            return self._approvals.pending(self._clock())

    def approve_request(self, request_id: str) -> ApprovalResult:
        """Approve a pending request exactly once."""
        with self._lock:
            return self._approvals.resolve(request_id, ApprovalStatus.APPROVED, self._clock())

    def reject_request(self, request_id: str) -> ApprovalResult:
        """Reject a pending request exactly once."""
        with self._lock:
            return self._approvals.resolve(request_id, ApprovalStatus.REJECTED, self._clock())

    def get_risk_metrics(self) -> RiskMetrics:
        """Snapshot configuration, accumulators and breaker state.

        Has no side effects: a stale daily loss reads as zero and an elapsed
        cooldown reads as zero remaining, but neither is written back.
        """
        with self._lock:
            now = self._clock()
            config = self._config
            daily_loss = (
                self._daily_loss.loss_usd if self._daily_loss.date == now.date() else 0.0
            )
            pending = sum(
                1 for r in self._approvals.pending_snapshot() if not r.is_expired(now)
            )
            return RiskMetrics(
                config=config,
                daily_loss_usd=daily_loss,
                daily_loss_remaining_usd=max(0.0, config.max_daily_loss_usd - daily_loss),
                open_positions=self._open_positions,
                positions_remaining=max(0, config.max_open_positions - self._open_positions),
                circuit_breaker=self._breaker.state,
                cooldown_remaining_minutes=(
                    self._breaker.cooldown_remaining(now).total_seconds() / 60
                ),
                pending_approvals_count=pending,
                as_of=now,
            )

    def update_config(self, **changes) -> RiskSettings:
        """Hot-reload risk limits between evaluations.

        Raises:
            pydantic.ValidationError: If the merged settings are invalid; the
                current settings stay in effect.
        """
        with self._lock:
            merged = {**self._config.model_dump(), **changes}
            config = RiskSettings.model_validate(merged)
            self._config = config
            self._breaker.configure(config.consecutive_loss_threshold, config.cooldown_minutes)
            self._approvals.ttl_seconds = config.approval_ttl_seconds
            self._approvals.retention_seconds = config.approval_retention_seconds
        logger.info(f"Risk config updated: {sorted(changes)}")
        return config

    def set_open_positions(self, count: int) -> None:
        """Sync the open position count from an external source."""
        with self._lock:
            self._open_positions = max(0, int(count))

    def record_loss(self, amount: float) -> None:
        """Record a realized loss reported outside post_check."""
        if amount <= 0:
            return

        tripped: tuple[str, CircuitBreakerState] | None = None
        with self._lock:
            now = self._clock()
            self._roll_daily_loss(now)
            self._daily_loss.loss_usd += amount
            reason = self._breach_reason()
            if reason and self._breaker.trip(reason, now):
                tripped = (reason, self._breaker.state)

        if tripped is not None:
            self._notify_listener(self._on_trip, *tripped)

    def _breach_reason(self) -> str | None:
        if self._breaker.loss_streak_breached:
            return f"{self._breaker.consecutive_losses} consecutive losses"
        if self._daily_loss.loss_usd > self._config.max_daily_loss_usd:
            return (
                f"Daily loss ${self._daily_loss.loss_usd:.2f} exceeds limit of "
                f"${self._config.max_daily_loss_usd:.2f}"
            )
        return None

    def _roll_daily_loss(self, now: datetime) -> None:
        if self._daily_loss.roll(now.date()):
            logger.info("Daily loss counter reset for new trading day")

    @staticmethod
    def _is_blacklisted(symbol: str, config: RiskSettings) -> bool:
        # Exact match, or a blocked base asset inside a pair name ("DOGE" in "DOGE-PERP").
        return any(
            symbol == blocked or blocked in symbol for blocked in config.blacklisted_symbols
        )

    @staticmethod
    def _notify_listener(listener, *args) -> None:
        if listener is None:
            return
        try:
            listener(*args)
        except Exception as e:
            logger.error(f"Risk event listener failed: {e}")


def _as_float(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
