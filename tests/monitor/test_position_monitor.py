"""Tests for PositionTelemetryMonitor."""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from monitor.models import PositionFetchError
from monitor.position_monitor import PositionTelemetryMonitor
from monitor.settings import MonitorSettings
from notifications.models import AlertSeverity, AlertType
from risk.governor import RiskGovernor


NOW = datetime(2026, 3, 2, 10, 0, 0)


class FakeSource:
    """In-memory position source that counts overlapping fetches."""

    def __init__(self, positions=None, delay: float = 0.0):
        self.positions = list(positions or [])
        self.error: Exception | None = None
        self.delay = delay
        self.gate: asyncio.Event | None = None
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_open_positions(self):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return list(self.positions)
        finally:
            self.in_flight -= 1


def position(symbol="BTC", current=100.0, entry=100.0, liquidation=0.0, side="long", qty=1.0):
    return {
        "symbol": symbol,
        "side": side,
        "quantity": qty,
        "entry_price": entry,
        "current_price": current,
        "liquidation_price": liquidation,
    }


def make_monitor(source, sinks=None, risk_governor=None, **settings):
    config = {"poll_interval_ms": 60_000, **settings}
    return PositionTelemetryMonitor(
        source=source,
        settings=MonitorSettings(**config),
        sinks=sinks,
        risk_governor=risk_governor,
        clock=lambda: NOW,
    )


async def settle():
    for _ in range(10):
        await asyncio.sleep(0)


async def tick(monitor):
    """Run one poll tick for the current generation."""
    await monitor._poll(monitor._generation)


def collect(monitor):
    alerts = []
    monitor.on_alert(alerts.append)
    return alerts


class TestMonitorLifecycle:
    """Tests for start/stop/close."""

    @pytest.mark.asyncio
    async def test_start_without_source(self):
        monitor = PositionTelemetryMonitor(source=None)

        result = await monitor.start()

        assert result.success is False
        assert "source" in result.error
        assert monitor.is_running is False

    @pytest.mark.asyncio
    async def test_start_polls_immediately(self):
        source = FakeSource([position()])
        monitor = make_monitor(source)

        result = await monitor.start()
        await settle()

        assert result.success is True
        assert monitor.is_running is True
        assert source.calls == 1
        assert monitor.get_position("btc") is not None
        await monitor.close()

    @pytest.mark.asyncio
    async def test_start_when_running_is_noop(self):
        source = FakeSource()
        monitor = make_monitor(source)
        await monitor.start()
        await settle()

        result = await monitor.start()
        await settle()

        assert result.success is True
        assert source.calls == 1
        assert len(monitor._tasks) == 1
        await monitor.close()

    @pytest.mark.asyncio
    async def test_start_replaces_settings(self):
        monitor = make_monitor(FakeSource())

        await monitor.start(MonitorSettings(poll_interval_ms=90_000))

        assert monitor.settings.poll_interval_ms == 90_000
        await monitor.close()

    @pytest.mark.asyncio
    async def test_stop_then_start_single_chain(self):
        """stop() followed by start() never leaves two poll chains running."""
        source = FakeSource([position()])
        monitor = make_monitor(source, poll_interval_ms=10)

        await monitor.start()
        await asyncio.sleep(0.05)
        monitor.stop()
        await monitor.start()
        source.calls = 0
        await asyncio.sleep(0.2)
        calls = source.calls

        assert len(monitor._tasks) == 1
        assert source.max_in_flight == 1
        # One chain at 10ms intervals fetches at most ~21 times in 0.2s.
        assert calls <= 23
        await monitor.close()

    @pytest.mark.asyncio
    async def test_result_after_stop_is_discarded(self):
        source = FakeSource([position()])
        source.gate = asyncio.Event()
        monitor = make_monitor(source)
        await monitor.start()
        await settle()
        assert source.in_flight == 1

        monitor.stop()
        source.gate.set()
        await settle()

        assert monitor.get_all_positions() == []
        assert monitor.get_status().last_poll_at is None
        await monitor.close()

    @pytest.mark.asyncio
    async def test_close_cancels_tasks(self):
        source = FakeSource()
        monitor = make_monitor(source)
        await monitor.start()
        await settle()

        await monitor.close()

        assert monitor.is_running is False
        assert monitor._tasks == set()

    def test_stop_when_not_running(self):
        monitor = make_monitor(FakeSource())

        monitor.stop()

        assert monitor.is_running is False


class TestMonitorPolling:
    """Tests for snapshot caching and error handling."""

    @pytest.mark.asyncio
    async def test_fetch_error_keeps_cache(self):
        source = FakeSource([position()])
        monitor = make_monitor(source)
        await monitor.start()
        await settle()

        source.error = PositionFetchError("backend down")
        await tick(monitor)

        status = monitor.get_status()
        assert status.running is True
        assert status.last_error == "backend down"
        assert status.position_count == 1

        source.error = None
        await tick(monitor)

        assert monitor.get_status().last_error is None
        await monitor.close()

    @pytest.mark.asyncio
    async def test_malformed_record_is_poll_error(self):
        source = FakeSource([{"symbol": "BTC"}])
        monitor = make_monitor(source)
        await monitor.start()
        await settle()

        status = monitor.get_status()
        assert status.last_error is not None
        assert status.position_count == 0
        await monitor.close()

    @pytest.mark.asyncio
    async def test_cache_replaced_wholesale(self):
        source = FakeSource([position("BTC"), position("ETH")])
        monitor = make_monitor(source)
        await monitor.start()
        await settle()

        source.positions = [position("ETH", current=110.0)]
        await tick(monitor)

        assert [p.symbol for p in monitor.get_all_positions()] == ["ETH"]
        assert monitor.get_total_pnl() == pytest.approx(10.0)
        await monitor.close()

    @pytest.mark.asyncio
    async def test_status(self):
        source = FakeSource(
            [position("BTC", current=110.0), position("ETH", current=95.0)]
        )
        monitor = make_monitor(source)
        await monitor.start()
        await settle()

        status = monitor.get_status()

        assert status.running is True
        assert status.position_count == 2
        assert status.total_unrealized_pnl == pytest.approx(5.0)
        assert status.last_poll_at == NOW
        assert status.alert_count == 0
        await monitor.close()

    @pytest.mark.asyncio
    async def test_syncs_governor_position_count(self):
        governor = RiskGovernor()
        source = FakeSource([position("BTC"), position("ETH")])
        monitor = make_monitor(source, risk_governor=governor)

        await monitor.start()
        await settle()

        assert governor.open_positions == 2
        await monitor.close()

    def test_update_config(self):
        monitor = make_monitor(FakeSource())

        settings = monitor.update_config(poll_interval_ms=5_000, liquidation_warning_pct=3)

        assert monitor.settings is settings
        assert settings.poll_interval_ms == 5_000
        assert settings.liquidation_warning_pct == 3.0

    def test_update_config_invalid(self):
        monitor = make_monitor(FakeSource())
        previous = monitor.settings

        with pytest.raises(ValidationError):
            monitor.update_config(poll_interval_ms=0)

        assert monitor.settings is previous


class TestMonitorAlerts:
    """Tests for edge-triggered alerting."""

    @pytest.mark.asyncio
    async def test_liquidation_alert_once_on_crossing(self):
        """Crossing within 5% of liquidation warns once (P&L alerts out of range)."""
        source = FakeSource([position(current=100.0, liquidation=90.0)])
        monitor = make_monitor(source, liquidation_warning_pct=5, pnl_change_alert_pct=1_000)
        alerts = collect(monitor)
        await monitor.start()
        await settle()

        source.positions = [position(current=96.0, liquidation=90.0)]
        await tick(monitor)
        assert alerts == []

        source.positions = [position(current=94.0, liquidation=90.0)]
        await tick(monitor)
        source.positions = [position(current=93.0, liquidation=90.0)]
        await tick(monitor)

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.alert_type is AlertType.LIQUIDATION_WARNING
        assert alert.severity is AlertSeverity.WARNING
        assert alert.symbol == "BTC"
        assert alert.metric == "liquidation_distance_pct"
        assert alert.value == pytest.approx(4.2553, rel=1e-3)
        assert alert.threshold == 5.0
        await monitor.close()

    @pytest.mark.asyncio
    async def test_liquidation_alert_once_with_default_pnl_threshold(self):
        """P&L alerts may fire alongside, but the crossing warns only once."""
        source = FakeSource([position(current=100.0, liquidation=90.0)])
        monitor = make_monitor(source, liquidation_warning_pct=5)
        alerts = collect(monitor)
        await monitor.start()
        await settle()

        for price in (96.0, 94.0, 93.0):
            source.positions = [position(current=price, liquidation=90.0)]
            await tick(monitor)

        warnings = [a for a in alerts if a.alert_type is AlertType.LIQUIDATION_WARNING]
        assert len(warnings) == 1
        assert warnings[0].value == pytest.approx(4.2553, rel=1e-3)
        await monitor.close()

    @pytest.mark.asyncio
    async def test_liquidation_alert_rearms_after_recovery(self):
        source = FakeSource([position(current=94.0, liquidation=90.0)])
        monitor = make_monitor(source, liquidation_warning_pct=5, pnl_change_alert_pct=1_000)
        alerts = collect(monitor)
        await monitor.start()
        await settle()

        source.positions = [position(current=100.0, liquidation=90.0)]
        await tick(monitor)
        source.positions = [position(current=94.0, liquidation=90.0)]
        await tick(monitor)

        assert len(alerts) == 2
        await monitor.close()

    @pytest.mark.asyncio
    async def test_liquidation_critical_within_half_threshold(self):
        source = FakeSource([position(current=91.0, liquidation=90.0)])
        monitor = make_monitor(source, liquidation_warning_pct=5, pnl_change_alert_pct=1_000)
        alerts = collect(monitor)

        await monitor.start()
        await settle()

        assert alerts[0].severity is AlertSeverity.CRITICAL
        await monitor.close()

    @pytest.mark.asyncio
    async def test_pnl_change_since_last_alert(self):
        source = FakeSource([position(current=100.0)])
        monitor = make_monitor(source, pnl_change_alert_pct=5)
        alerts = collect(monitor)
        await monitor.start()
        await settle()

        for price in (103.0, 106.0, 104.0, 100.0):
            source.positions = [position(current=price)]
            await tick(monitor)

        assert [a.alert_type for a in alerts] == [AlertType.PNL_CHANGE, AlertType.PNL_CHANGE]
        assert alerts[0].data["direction"] == "increased"
        assert alerts[0].severity is AlertSeverity.INFO
        assert alerts[1].data["direction"] == "decreased"
        assert alerts[1].severity is AlertSeverity.WARNING
        assert alerts[1].data["previous_pnl"] == pytest.approx(6.0)
        await monitor.close()

    @pytest.mark.asyncio
    async def test_open_and_close_alerts_after_seed(self):
        source = FakeSource([position("BTC")])
        monitor = make_monitor(source)
        alerts = collect(monitor)
        await monitor.start()
        await settle()
        assert alerts == []

        source.positions = [position("BTC"), position("ETH", side="short")]
        await tick(monitor)
        source.positions = [position("ETH", side="short")]
        await tick(monitor)

        assert [(a.alert_type, a.symbol) for a in alerts] == [
            (AlertType.POSITION_OPENED, "ETH"),
            (AlertType.POSITION_CLOSED, "BTC"),
        ]
        assert "SHORT ETH" in alerts[0].message
        assert monitor.get_status().alert_count == 2
        await monitor.close()

    @pytest.mark.asyncio
    async def test_alerts_disabled(self):
        source = FakeSource([position(current=91.0, liquidation=90.0)])
        sink = MagicMock()
        sink.send_alert = AsyncMock(return_value=True)
        monitor = make_monitor(source, sinks=[sink], enable_alerts=False)
        alerts = collect(monitor)

        await monitor.start()
        await settle()

        assert alerts == []
        sink.send_alert.assert_not_called()
        assert monitor.get_status().alert_count == 0
        await monitor.close()


class TestMonitorHandlers:
    """Tests for alert handlers and sinks."""

    @pytest.mark.asyncio
    async def test_sinks_receive_alerts(self):
        source = FakeSource([position(current=91.0, liquidation=90.0)])
        sink = MagicMock()
        sink.send_alert = AsyncMock(return_value=True)
        monitor = make_monitor(source, sinks=[sink])

        await monitor.start()
        await settle()

        sink.send_alert.assert_awaited_once()
        alert = sink.send_alert.call_args.args[0]
        assert alert.alert_type is AlertType.LIQUIDATION_WARNING
        await monitor.close()

    @pytest.mark.asyncio
    async def test_async_and_typed_handlers(self):
        source = FakeSource([position("BTC")])
        monitor = make_monitor(source)
        received = []
        opened = []

        async def async_handler(alert):
            received.append(alert)

        monitor.on_alert(async_handler)
        monitor.on(AlertType.POSITION_OPENED, opened.append)
        await monitor.start()
        await settle()

        source.positions = [position("ETH")]
        await tick(monitor)

        assert len(received) == 2
        assert [a.symbol for a in opened] == ["ETH"]
        await monitor.close()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_sinks(self):
        source = FakeSource([position(current=91.0, liquidation=90.0)])
        sink = MagicMock()
        sink.send_alert = AsyncMock(side_effect=RuntimeError("sink down"))
        monitor = make_monitor(source, sinks=[sink])
        monitor.on_alert(MagicMock(side_effect=ValueError("bad handler")))
        later = []
        monitor.on_alert(later.append)

        await monitor.start()
        await settle()

        assert len(later) == 1
        sink.send_alert.assert_awaited_once()
        assert monitor.is_running is True
        await monitor.close()

    def test_remove_handler(self):
        monitor = make_monitor(FakeSource())
        handler_id = monitor.on_alert(lambda alert: None)

        assert monitor.remove_handler(handler_id) is True
        assert monitor.remove_handler(handler_id) is False
