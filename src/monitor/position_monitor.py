"""Background position tracking with threshold alerts."""

import asyncio
import inspect
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime

from monitor.models import (
    MonitorStatus,
    PositionSnapshot,
    PositionSource,
    StartResult,
)
from monitor.settings import MonitorSettings
from notifications.models import AlertSeverity, AlertSink, AlertType, RiskAlert
from risk.governor import RiskGovernor


logger = logging.getLogger(__name__)

AlertHandler = Callable[[RiskAlert], "Awaitable[None] | None"]


class PositionTelemetryMonitor:
    """Polls open positions, computes risk metrics and emits alerts.

    One asyncio task runs the poll chain. The next tick is scheduled only
    after the current one (fetch, metrics and alert emission) completes, so
    ticks never overlap. ``stop`` only clears the run flag; a fetch already
    in flight finishes, but its result is discarded. Each ``start`` bumps a
    generation counter, so a chain left over from before a stop/start pair
    exits at its next boundary instead of running alongside the new one.

    Alerting is edge-triggered: a liquidation warning fires once when the
    threshold is first crossed and re-arms after the distance recovers or
    the position closes; P&L change alerts measure movement since the last
    alert for that symbol.
    """

    def __init__(
        self,
        source: PositionSource | None,
        settings: MonitorSettings | None = None,
        sinks: list[AlertSink] | None = None,
        risk_governor: RiskGovernor | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the monitor.

        Args:
            source: Execution backend read contract.
            settings: Poll interval and thresholds.
            sinks: External alert sinks (e.g. TelegramNotifier).
            risk_governor: Receives the open position count after each poll.
            clock: Returns the current time. Defaults to datetime.now.
        """
        self._source = source
        self._settings = settings or MonitorSettings()
        self._sinks: list[AlertSink] = list(sinks or [])
        self._governor = risk_governor
        self._clock = clock or datetime.now

        self._running = False
        self._generation = 0
        self._task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

        self._positions: dict[str, PositionSnapshot] = {}
        self._handlers: dict[str, AlertHandler] = {}
        self._alert_count = 0
        self._last_poll_at: datetime | None = None
        self._last_error: str | None = None

        # Edge-trigger state
        self._seeded = False
        self._liquidation_alerted: set[str] = set()
        self._pnl_baseline: dict[str, float] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def settings(self) -> MonitorSettings:
        return self._settings

    async def start(self, settings: MonitorSettings | None = None) -> StartResult:
        """Start polling. A no-op success if already running.

        Args:
            settings: Replaces the current settings before starting.
        """
        if self._running:
            return StartResult(success=True)

        if self._source is None:
            return StartResult(success=False, error="No position source configured")

        if settings is not None:
            self._settings = settings

        self._running = True
        self._generation += 1
        self._alert_count = 0
        self._last_error = None
        self._seeded = False
        self._liquidation_alerted.clear()
        self._pnl_baseline.clear()

        task = asyncio.create_task(
            self._run(self._generation), name=f"position-monitor-{self._generation}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._task = task

        logger.info(f"Position monitor started with {self._settings.poll_interval_ms}ms interval")
        return StartResult(success=True)

    def stop(self) -> None:
        """Stop scheduling ticks. Never waits for an in-flight fetch."""
        if not self._running:
            return

        self._running = False
        logger.info(f"Position monitor stopped ({self._alert_count} alerts)")

    async def close(self) -> None:
        """Stop and wait for every poll chain to finish (for shutdown)."""
        self.stop()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None

    def update_config(self, **changes) -> MonitorSettings:
        """Hot-replace poll interval and/or thresholds.

        The new interval applies from the next sleep; no restart is needed.

        Raises:
            pydantic.ValidationError: If the merged settings are invalid.
        """
        merged = {**self._settings.model_dump(), **changes}
        self._settings = MonitorSettings.model_validate(merged)
        logger.info(f"Monitor config updated: {sorted(changes)}")
        return self._settings

    # =========================================================================
    # Poll loop
    # =========================================================================

    def _is_current(self, generation: int) -> bool:
        return self._running and generation == self._generation

    async def _run(self, generation: int) -> None:
        """Poll chain for one start generation."""
        try:
            while self._is_current(generation):
                await self._poll(generation)
                if not self._is_current(generation):
                    break
                await asyncio.sleep(self._settings.poll_interval_seconds)
        except asyncio.CancelledError:
            pass

    async def _poll(self, generation: int) -> None:
        """One tick: fetch, then process unless stopped meanwhile."""
        try:
            records = await self._source.fetch_open_positions()
            snapshots = [PositionSnapshot.from_record(r) for r in records]
        except Exception as e:
            if self._is_current(generation):
                self._last_error = str(e) or type(e).__name__
                logger.error(f"Poll error: {self._last_error}")
            return

        if not self._is_current(generation):
            logger.debug("Discarding poll result that arrived after stop")
            return

        await self._process_positions(snapshots)

    async def _process_positions(self, snapshots: list[PositionSnapshot]) -> None:
        """Replace the cache wholesale, then emit alerts for new breaches."""
        previous = self._positions
        current = {s.symbol: s for s in snapshots}
        alerts: list[RiskAlert] = []

        if self._seeded:
            for symbol in current.keys() - previous.keys():
                alerts.append(self._position_opened_alert(current[symbol]))
            for symbol in previous.keys() - current.keys():
                alerts.append(self._position_closed_alert(previous[symbol]))

        for symbol in previous.keys() - current.keys():
            self._liquidation_alerted.discard(symbol)
            self._pnl_baseline.pop(symbol, None)

        for snapshot in current.values():
            liquidation = self._check_liquidation(snapshot)
            if liquidation is not None:
                alerts.append(liquidation)
            pnl_change = self._check_pnl_change(snapshot)
            if pnl_change is not None:
                alerts.append(pnl_change)

        self._positions = current
        self._last_poll_at = self._clock()
        self._last_error = None
        self._seeded = True

        for alert in alerts:
            await self._emit(alert)

        if self._governor is not None:
            self._governor.set_open_positions(len(current))

    # =========================================================================
    # Threshold checks
    # =========================================================================

    def _check_liquidation(self, position: PositionSnapshot) -> RiskAlert | None:
        """Alert once when price comes within the warning distance."""
        threshold = self._settings.liquidation_warning_pct
        distance = position.liquidation_distance_pct

        if distance is None or distance > threshold:
            self._liquidation_alerted.discard(position.symbol)
            return None

        if position.symbol in self._liquidation_alerted:
            return None

        self._liquidation_alerted.add(position.symbol)
        severity = AlertSeverity.CRITICAL if distance <= threshold / 2 else AlertSeverity.WARNING
        return RiskAlert(
            alert_type=AlertType.LIQUIDATION_WARNING,
            severity=severity,
            message=f"LIQUIDATION WARNING: {position.symbol} is {distance:.1f}% from liquidation!",
            symbol=position.symbol,
            metric="liquidation_distance_pct",
            value=distance,
            threshold=threshold,
            data={
                "current_price": position.current_price,
                "liquidation_price": position.liquidation_price,
                "side": position.side.value,
                "unrealized_pnl": position.unrealized_pnl,
            },
        )

    def _check_pnl_change(self, position: PositionSnapshot) -> RiskAlert | None:
        """Alert when P&L moved enough since the last alert (or first sight)."""
        symbol = position.symbol
        current_pnl = position.unrealized_pnl
        baseline = self._pnl_baseline.get(symbol)

        if baseline is None or position.entry_value <= 0:
            self._pnl_baseline[symbol] = current_pnl
            return None

        change_pct = abs(current_pnl - baseline) / position.entry_value * 100
        threshold = self._settings.pnl_change_alert_pct
        if change_pct < threshold:
            return None

        self._pnl_baseline[symbol] = current_pnl
        direction = "increased" if current_pnl > baseline else "decreased"
        return RiskAlert(
            alert_type=AlertType.PNL_CHANGE,
            severity=AlertSeverity.INFO if direction == "increased" else AlertSeverity.WARNING,
            message=f"P&L {direction} by {change_pct:.1f}% for {symbol}",
            symbol=symbol,
            metric="pnl_change_pct",
            value=change_pct,
            threshold=threshold,
            data={
                "previous_pnl": baseline,
                "current_pnl": current_pnl,
                "direction": direction,
            },
        )

    def _position_opened_alert(self, position: PositionSnapshot) -> RiskAlert:
        return RiskAlert(
            alert_type=AlertType.POSITION_OPENED,
            severity=AlertSeverity.INFO,
            message=f"Position opened: {position.side.value.upper()} {position.symbol}",
            symbol=position.symbol,
            data={
                "side": position.side.value,
                "quantity": position.quantity,
                "entry_price": position.entry_price,
                "leverage": position.leverage,
            },
        )

    def _position_closed_alert(self, position: PositionSnapshot) -> RiskAlert:
        return RiskAlert(
            alert_type=AlertType.POSITION_CLOSED,
            severity=AlertSeverity.INFO,
            message=f"Position closed: {position.symbol}",
            symbol=position.symbol,
            metric="last_unrealized_pnl",
            value=position.unrealized_pnl,
        )

    # =========================================================================
    # Alert emission
    # =========================================================================

    async def _emit(self, alert: RiskAlert) -> None:
        """Deliver an alert to handlers and sinks; failures are logged only."""
        if not self._settings.enable_alerts:
            return

        self._alert_count += 1
        if alert.severity is AlertSeverity.INFO:
            logger.info(alert.message)
        else:
            logger.warning(alert.message)

        for handler in list(self._handlers.values()):
            try:
                result = handler(alert)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Alert handler error: {e}")

        for sink in self._sinks:
            try:
                await sink.send_alert(alert)
            except Exception as e:
                logger.error(f"Alert sink error: {e}")

    def on_alert(self, handler: AlertHandler) -> str:
        """Register a handler for every alert.

        Returns:
            Handler id for ``remove_handler``.
        """
        handler_id = f"handler_{uuid.uuid4().hex[:8]}"
        self._handlers[handler_id] = handler
        return handler_id

    def on(self, alert_type: AlertType, handler: AlertHandler) -> str:
        """Register a handler for one alert type."""

        def filtered(alert: RiskAlert):
            if alert.alert_type is alert_type:
                return handler(alert)
            return None

        return self.on_alert(filtered)

    def remove_handler(self, handler_id: str) -> bool:
        return self._handlers.pop(handler_id, None) is not None

    # =========================================================================
    # Getters (cache only, never I/O)
    # =========================================================================

    def get_position(self, symbol: str) -> PositionSnapshot | None:
        return self._positions.get(symbol.upper())

    def get_all_positions(self) -> list[PositionSnapshot]:
        return list(self._positions.values())

    def get_total_pnl(self) -> float:
        """Total unrealized P&L across cached positions."""
        return sum(p.unrealized_pnl for p in self._positions.values())

    def get_status(self) -> MonitorStatus:
        return MonitorStatus(
            running=self._running,
            position_count=len(self._positions),
            total_unrealized_pnl=self.get_total_pnl(),
            last_poll_at=self._last_poll_at,
            alert_count=self._alert_count,
            last_error=self._last_error,
        )
