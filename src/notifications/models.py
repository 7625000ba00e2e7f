"""Data models for notifications."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol


class AlertType(Enum):
    """Type of alert to send."""

    LIQUIDATION_WARNING = "liquidation_warning"
    PNL_CHANGE = "pnl_change"
    POSITION_OPENED = "position_opened"
    POSITION_CLOSED = "position_closed"
    CIRCUIT_BREAKER = "circuit_breaker"
    APPROVAL_REQUESTED = "approval_requested"


class AlertSeverity(Enum):
    """Severity levels for alerts."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class RiskAlert:
    """An alert pushed to the external notification sink.

    Attributes:
        alert_type: Type of alert.
        severity: How urgent the alert is.
        message: Human-readable summary.
        symbol: Symbol concerned (if applicable).
        metric: Name of the metric that crossed a threshold.
        value: Observed metric value.
        threshold: Threshold the value was compared against.
        data: Additional data for formatting.
        timestamp: When the alert was created.
    """

    alert_type: AlertType
    severity: AlertSeverity
    message: str
    symbol: str | None = None
    metric: str | None = None
    value: float | None = None
    threshold: float | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)


class AlertSink(Protocol):
    """Anything that can deliver a RiskAlert."""

    async def send_alert(self, alert: RiskAlert) -> bool: ...
