"""Telegram notification sender."""

import logging

from telegram import Bot

from risk.models import ApprovalRequest, CircuitBreakerState

from .alert_formatter import AlertFormatter
from .models import AlertSeverity, AlertType, RiskAlert
from .settings import NotificationSettings

logger = logging.getLogger(__name__)

_SEVERITY_RANK = {
    AlertSeverity.INFO: 0,
    AlertSeverity.WARNING: 1,
    AlertSeverity.CRITICAL: 2,
}


class TelegramNotifier:
    """Sends risk alerts via Telegram.

    Implements the AlertSink protocol used by the position monitor.

    Attributes:
        _settings: Notification settings.
        _formatter: Alert formatter.
        _bot: Telegram bot instance.
    """

    def __init__(
        self,
        settings: NotificationSettings,
        formatter: AlertFormatter | None = None,
    ):
        """Initialize the notifier.

        Args:
            settings: Notification settings.
            formatter: Alert formatter for message formatting.
        """
        self._settings = settings
        self._formatter = formatter or AlertFormatter()
        self._bot: Bot | None = None

    async def start(self) -> None:
        """Initialize the Telegram bot."""
        if not self.is_enabled:
            logger.info("Telegram notifications disabled")
            return

        self._bot = Bot(token=self._settings.telegram_token)
        logger.info("Telegram notifier started")

    async def stop(self) -> None:
        """Shutdown the bot gracefully."""
        self._bot = None
        logger.info("Telegram notifier stopped")

    @property
    def is_enabled(self) -> bool:
        """Check if notifications are enabled and configured."""
        return self._settings.enabled and self._settings.is_configured

    def should_send(self, alert: RiskAlert) -> bool:
        """Apply the alert type and minimum severity filters."""
        if alert.alert_type.value not in self._settings.alert_types:
            logger.debug(f"Alert type {alert.alert_type.value} not enabled")
            return False
        minimum = AlertSeverity(self._settings.min_severity)
        return _SEVERITY_RANK[alert.severity] >= _SEVERITY_RANK[minimum]

    async def send_alert(self, alert: RiskAlert) -> bool:
        """Send an alert.

        Args:
            alert: The alert to send.

        Returns:
            True if sent successfully, False otherwise.
        """
        if not self.is_enabled:
            return False

        if self._bot is None:
            logger.warning("Bot not initialized, cannot send alert")
            return False

        if not self.should_send(alert):
            return False

        text = alert.data.get("formatted") or self._formatter.format_alert(alert)
        try:
            await self._bot.send_message(
                chat_id=self._settings.chat_id,
                text=text,
                parse_mode="HTML",
            )
            logger.info(f"Sent {alert.alert_type.value} alert")
            return True
        except Exception as e:
            logger.error(f"Failed to send alert: {e}")
            return False

    async def send_circuit_breaker(self, reason: str, state: CircuitBreakerState) -> bool:
        """Send a circuit breaker alert.

        Args:
            reason: Why the circuit breaker tripped.
            state: Breaker state at trip time.

        Returns:
            True if sent successfully.
        """
        alert = RiskAlert(
            alert_type=AlertType.CIRCUIT_BREAKER,
            severity=AlertSeverity.CRITICAL,
            message=reason,
            metric="consecutive_losses",
            value=float(state.consecutive_losses),
            data={"formatted": self._formatter.format_circuit_breaker(reason, state)},
        )
        return await self.send_alert(alert)

    async def send_approval_request(self, request: ApprovalRequest) -> bool:
        """Send a pending approval notice.

        Args:
            request: The pending approval request.

        Returns:
            True if sent successfully.
        """
        alert = RiskAlert(
            alert_type=AlertType.APPROVAL_REQUESTED,
            severity=AlertSeverity.WARNING,
            message=f"Approval required for {request.tool_name}",
            symbol=request.context.symbol or None,
            data={"formatted": self._formatter.format_approval_request(request)},
        )
        return await self.send_alert(alert)
