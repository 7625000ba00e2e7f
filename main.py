# main.py
"""Main entry point for the trade guard service."""
import asyncio
import logging
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from config.settings import DEFAULT_CONFIG_PATH, Settings
from monitor import HttpPositionSource, PositionSource, PositionTelemetryMonitor
from notifications import AlertFormatter, TelegramNotifier
from risk import RiskGovernor


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='[%(asctime)s] %(levelname)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def validate_backend(settings: Settings) -> None:
    """Validate that an execution backend is configured.

    Raises:
        SystemExit: If the backend URL is missing.
    """
    if not settings.backend.is_configured:
        logger.error("Missing backend URL (TRADEGUARD_BACKEND__BASE_URL)")
        logger.error("Please check your .env file or config/settings.yaml")
        sys.exit(1)


def print_startup_banner(settings: Settings) -> None:
    """Print service startup banner."""
    logger.info("=" * 60)
    logger.info(f"Starting {settings.system.name}")
    logger.info(f"Mode: {settings.system.mode}")
    logger.info(f"Version: {settings.system.version}")
    logger.info("=" * 60)


def load_and_validate_config(config_path: Path = DEFAULT_CONFIG_PATH) -> Settings:
    """Load and validate configuration.

    Layers: defaults, then the YAML file, then environment (including .env).

    Returns:
        Validated Settings object.

    Raises:
        SystemExit: If the settings are invalid or no backend is configured.
    """
    load_dotenv()
    logger.info("✓ Loaded environment variables")

    if not config_path.exists():
        logger.warning(f"{config_path} not found, using defaults and environment")

    try:
        settings = Settings.from_yaml(config_path)
        logger.info(f"✓ Settings loaded from {config_path}")
    except Exception as e:
        logger.error(f"Failed to load settings: {e}")
        sys.exit(1)

    validate_backend(settings)
    return settings


def _loop_bridge(send, loop: asyncio.AbstractEventLoop):
    """Wrap an async send method as a synchronous, thread-safe listener.

    The governor may be called from any thread, so delivery is handed to the
    event loop thread-safely.
    """
    pending: set[asyncio.Task] = set()

    def schedule(*args) -> None:
        task = loop.create_task(send(*args))
        pending.add(task)
        task.add_done_callback(pending.discard)

    def listener(*args) -> None:
        loop.call_soon_threadsafe(schedule, *args)

    return listener


def make_trip_listener(notifier: TelegramNotifier, loop: asyncio.AbstractEventLoop):
    """Bridge synchronous breaker trips to async Telegram delivery."""
    return _loop_bridge(notifier.send_circuit_breaker, loop)


def make_approval_listener(notifier: TelegramNotifier, loop: asyncio.AbstractEventLoop):
    """Bridge new pending approval requests to async Telegram delivery."""
    return _loop_bridge(notifier.send_approval_request, loop)


def build_services(
    settings: Settings,
    source: PositionSource,
    loop: asyncio.AbstractEventLoop,
) -> tuple[RiskGovernor, TelegramNotifier, PositionTelemetryMonitor]:
    """Wire governor, notifier and monitor together.

    Returns:
        Tuple of (RiskGovernor, TelegramNotifier, PositionTelemetryMonitor).
    """
    notifier = TelegramNotifier(settings=settings.notifications, formatter=AlertFormatter())

    governor = RiskGovernor(
        settings=settings.risk,
        on_trip=make_trip_listener(notifier, loop),
        on_approval_requested=make_approval_listener(notifier, loop),
    )
    logger.info("✓ RiskGovernor initialized")

    monitor = PositionTelemetryMonitor(
        source=source,
        settings=settings.monitor,
        sinks=[notifier],
        risk_governor=governor,
    )
    logger.info("✓ PositionTelemetryMonitor initialized")

    return governor, notifier, monitor


async def run(settings: Settings, source: PositionSource | None = None) -> None:
    """Run the monitor until SIGINT/SIGTERM, then shut down cleanly."""
    loop = asyncio.get_running_loop()
    http_source = None
    if source is None:
        http_source = HttpPositionSource(
            base_url=settings.backend.base_url,
            positions_path=settings.backend.positions_path,
            timeout_seconds=settings.backend.timeout_seconds,
            api_key=settings.backend.api_key or None,
        )
        source = http_source

    governor, notifier, monitor = build_services(settings, source, loop)

    await notifier.start()
    result = await monitor.start()
    if not result.success:
        logger.error(f"Failed to start position monitor: {result.error}")
        await notifier.stop()
        if http_source is not None:
            await http_source.close()
        return

    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        await monitor.close()
        await notifier.stop()
        if http_source is not None:
            await http_source.close()
        metrics = governor.get_risk_metrics()
        logger.info(
            f"Final state: daily loss ${metrics.daily_loss_usd:.2f}, "
            f"breaker {'TRIPPED' if metrics.circuit_breaker.tripped else 'OK'}"
        )


def main() -> None:
    settings = load_and_validate_config()
    print_startup_banner(settings)
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
