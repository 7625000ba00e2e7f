"""Formats risk alerts for Telegram messages."""

from html import escape

from notifications.models import AlertSeverity, AlertType, RiskAlert
from risk.models import ApprovalRequest, CircuitBreakerState


class AlertFormatter:
    """Formats risk and position data into readable Telegram messages."""

    TYPE_EMOJI = {
        AlertType.LIQUIDATION_WARNING: "⚠️",
        AlertType.PNL_CHANGE: "📊",
        AlertType.POSITION_OPENED: "📈",
        AlertType.POSITION_CLOSED: "📉",
        AlertType.CIRCUIT_BREAKER: "🚫",
        AlertType.APPROVAL_REQUESTED: "⏳",
    }

    def format_alert(self, alert: RiskAlert) -> str:
        """Format any alert: emoji, title line, then metric details."""
        emoji = self.TYPE_EMOJI.get(alert.alert_type, "ℹ️")
        title = alert.alert_type.value.replace("_", " ").upper()
        if alert.severity is AlertSeverity.CRITICAL:
            title = f"{title} (CRITICAL)"

        lines = [f"{emoji} {title}", "", escape(alert.message)]

        if alert.symbol:
            lines.append(f"🏷 Symbol: {escape(alert.symbol)}")
        if alert.metric and alert.value is not None:
            detail = f"📏 {alert.metric}: {alert.value:,.2f}"
            if alert.threshold is not None:
                detail += f" (threshold {alert.threshold:,.2f})"
            lines.append(detail)

        return "\n".join(lines)

    def format_circuit_breaker(self, reason: str, state: CircuitBreakerState) -> str:
        """Format a circuit breaker trip alert."""
        until = (
            f"{state.cooldown_ends_at:%Y-%m-%d %H:%M}"
            if state.cooldown_ends_at
            else "manual reset"
        )
        return f"""🚫 CIRCUIT BREAKER TRIPPED

⚠️ Reason: {escape(reason)}
📉 Consecutive losses: {state.consecutive_losses}
⏱ Cooldown: {state.cooldown_minutes} min
🔒 High-risk trading blocked until {until}"""

    def format_approval_request(self, request: ApprovalRequest) -> str:
        """Format a pending approval request."""
        params = request.params
        lines = [
            "⏳ APPROVAL REQUIRED",
            "",
            f"🆔 {request.id}",
            f"🔧 Tool: {escape(request.tool_name)}",
        ]
        for key in ("symbol", "side", "quantity", "size", "price", "leverage"):
            if params.get(key) is not None:
                lines.append(f"   {key.capitalize()}: {escape(str(params[key]))}")
        lines.append(f"⌛ Expires: {request.expires_at:%H:%M:%S}")
        return "\n".join(lines)
