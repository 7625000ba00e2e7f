"""Position telemetry: polling, risk metrics and threshold alerts."""

from .http_source import HttpPositionSource
from .models import (
    MonitorStatus,
    PositionFetchError,
    PositionSnapshot,
    PositionSource,
    Side,
    StartResult,
)
from .position_monitor import PositionTelemetryMonitor
from .settings import MonitorSettings

__all__ = [
    "HttpPositionSource",
    "MonitorSettings",
    "MonitorStatus",
    "PositionFetchError",
    "PositionSnapshot",
    "PositionSource",
    "PositionTelemetryMonitor",
    "Side",
    "StartResult",
]
