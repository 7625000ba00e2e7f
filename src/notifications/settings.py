# src/notifications/settings.py
"""Settings for notifications module."""

from typing import Literal

from pydantic import BaseModel, computed_field


class NotificationSettings(BaseModel):
    """Configuration for Telegram notifications.

    Attributes:
        enabled: Whether notifications are enabled.
        telegram_token: Bot token from BotFather.
        chat_id: Telegram chat ID to send messages to.
        alert_types: Which alert types to send.
        min_severity: Alerts below this severity are not sent.
    """

    enabled: bool = True
    telegram_token: str = ""
    chat_id: str = ""

    alert_types: list[str] = [
        "liquidation_warning",
        "pnl_change",
        "position_opened",
        "position_closed",
        "circuit_breaker",
        "approval_requested",
    ]
    min_severity: Literal["info", "warning", "critical"] = "info"

    @computed_field
    @property
    def is_configured(self) -> bool:
        """Check if Telegram credentials are configured."""
        return bool(self.telegram_token and self.chat_id)
