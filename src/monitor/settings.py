"""Settings for the position telemetry monitor."""

from pydantic import BaseModel, Field


class MonitorSettings(BaseModel):
    """Poll cadence and alert thresholds for position monitoring.

    Attributes:
        poll_interval_ms: Delay between the end of one tick and the next fetch.
        liquidation_warning_pct: Warn when price is within this percent of
            the liquidation price.
        pnl_change_alert_pct: Alert when unrealized P&L moves by this percent
            of entry value since the last alert.
        enable_alerts: Master switch for alert emission.
    """

    poll_interval_ms: int = Field(default=30_000, gt=0)
    liquidation_warning_pct: float = Field(default=10.0, ge=0, le=100)
    pnl_change_alert_pct: float = Field(default=5.0, gt=0)
    enable_alerts: bool = True

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000
