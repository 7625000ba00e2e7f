"""Circuit breaker that halts high-risk trading after adverse outcomes."""

import logging
from dataclasses import replace
from datetime import datetime, timedelta

from risk.models import CircuitBreakerState


logger = logging.getLogger(__name__)


class CircuitBreaker:
    """Tracks consecutive losses and a tripped/cooldown state.

    States cycle OK -> TRIPPED -> OK indefinitely. A trip ends either when
    the cooldown has elapsed (evaluated lazily by ``is_tripped``) or on an
    explicit ``reset``.

    Not thread-safe on its own; the owning RiskGovernor serialises access.

    Attributes:
        loss_threshold: Consecutive losses that trip the breaker.
        cooldown_minutes: Cooldown applied to new trips.
    """

    def __init__(self, loss_threshold: int, cooldown_minutes: int):
        self.loss_threshold = loss_threshold
        self.cooldown_minutes = cooldown_minutes
        self._state = CircuitBreakerState(cooldown_minutes=cooldown_minutes)

    @property
    def state(self) -> CircuitBreakerState:
        """Return a copy of the current state."""
        return replace(self._state)

    @property
    def consecutive_losses(self) -> int:
        return self._state.consecutive_losses

    def configure(self, loss_threshold: int, cooldown_minutes: int) -> None:
        """Apply new limits. A trip already in progress keeps its cooldown."""
        self.loss_threshold = loss_threshold
        self.cooldown_minutes = cooldown_minutes
        if not self._state.tripped:
            self._state.cooldown_minutes = cooldown_minutes

    def record_loss(self) -> int:
        """Count a losing outcome.

        Returns:
            The new consecutive loss count.
        """
        self._state.consecutive_losses += 1
        return self._state.consecutive_losses

    def record_win(self) -> None:
        """A winning or flat outcome ends the losing streak."""
        self._state.consecutive_losses = 0

    @property
    def loss_streak_breached(self) -> bool:
        return self._state.consecutive_losses >= self.loss_threshold

    def trip(self, reason: str, now: datetime) -> bool:
        """Trip the breaker.

        Args:
            reason: Why the breaker trips.
            now: Trip timestamp; the cooldown runs from here.

        Returns:
            True if this call tripped it, False if it was already tripped.
        """
        if self._state.tripped:
            return False

        self._state.tripped = True
        self._state.tripped_at = now
        self._state.cooldown_minutes = self.cooldown_minutes
        self._state.trip_reason = reason
        logger.warning(
            f"Circuit breaker TRIPPED: {reason} (cooldown {self.cooldown_minutes} min)"
        )
        return True

    def is_tripped(self, now: datetime) -> bool:
        """Return whether the breaker blocks trading at ``now``.

        An elapsed cooldown closes the breaker and clears the loss streak.
        """
        if not self._state.tripped:
            return False

        ends_at = self._state.cooldown_ends_at
        if ends_at is not None and now >= ends_at:
            logger.info("Circuit breaker cooldown elapsed, trading resumed")
            self._clear()
            return False

        return True

    def cooldown_remaining(self, now: datetime) -> timedelta:
        """Time left until the cooldown ends (zero when not tripped)."""
        ends_at = self._state.cooldown_ends_at
        if not self._state.tripped or ends_at is None or now >= ends_at:
            return timedelta(0)
        return ends_at - now

    def reset(self) -> None:
        """Clear tripped, tripped_at and the loss streak unconditionally."""
        self._clear()

    def _clear(self) -> None:
        self._state = CircuitBreakerState(cooldown_minutes=self.cooldown_minutes)
