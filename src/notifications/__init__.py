"""Notifications module for risk alerts via Telegram."""

from .alert_formatter import AlertFormatter
from .models import AlertSeverity, AlertSink, AlertType, RiskAlert
from .settings import NotificationSettings
from .telegram_notifier import TelegramNotifier

__all__ = [
    "AlertFormatter",
    "AlertSeverity",
    "AlertSink",
    "AlertType",
    "NotificationSettings",
    "RiskAlert",
    "TelegramNotifier",
]
