"""Data models for position telemetry."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol


class PositionFetchError(Exception):
    """The execution backend could not be read (transport or protocol error).

    Distinct from an empty position list, which is a successful read.
    """


class Side(Enum):
    """Position direction."""

    LONG = "long"
    SHORT = "short"

    @classmethod
    def parse(cls, value: "str | Side") -> "Side":
        if isinstance(value, Side):
            return value
        normalized = str(value).strip().lower()
        if normalized in ("long", "buy"):
            return cls.LONG
        if normalized in ("short", "sell"):
            return cls.SHORT
        raise ValueError(f"Unknown position side: {value!r}")


# Backend field name -> snapshot field name, for camelCase payloads.
_FIELD_ALIASES = {
    "entryPrice": "entry_price",
    "currentPrice": "current_price",
    "markPrice": "current_price",
    "liquidationPrice": "liquidation_price",
    "size": "quantity",
    "qty": "quantity",
}


@dataclass(frozen=True)
class PositionSnapshot:
    """Risk view of one open position, rebuilt on every successful poll.

    Attributes:
        symbol: Instrument symbol.
        side: LONG or SHORT.
        quantity: Position size in units (always positive).
        entry_price: Average entry price.
        current_price: Latest mark price.
        leverage: Leverage multiplier (1.0 when unleveraged).
        margin: Collateral backing the position (0.0 if unknown).
        liquidation_price: Forced-close price (0.0 if none).
        unrealized_pnl: Profit/loss at current_price.
        unrealized_pnl_pct: unrealized_pnl as a percent of margin, or of entry
            value when margin is unknown.
    """

    symbol: str
    side: Side
    quantity: float
    entry_price: float
    current_price: float
    leverage: float
    margin: float
    liquidation_price: float
    unrealized_pnl: float
    unrealized_pnl_pct: float

    @classmethod
    def from_record(cls, record: "dict[str, Any] | PositionSnapshot") -> "PositionSnapshot":
        """Build a snapshot from a backend record, recomputing P&L.

        Any P&L the backend reported is ignored in favour of values derived
        from entry price, current price and quantity.

        Raises:
            ValueError: If a required field is missing or not numeric.
        """
        if isinstance(record, PositionSnapshot):
            record = {
                "symbol": record.symbol,
                "side": record.side,
                "quantity": record.quantity,
                "entry_price": record.entry_price,
                "current_price": record.current_price,
                "leverage": record.leverage,
                "margin": record.margin,
                "liquidation_price": record.liquidation_price,
            }

        data = {_FIELD_ALIASES.get(k, k): v for k, v in record.items()}
        try:
            symbol = str(data["symbol"]).upper()
            side = Side.parse(data["side"])
            quantity = abs(float(data["quantity"]))
            entry_price = float(data["entry_price"])
            current_price = float(data["current_price"])
            leverage = float(data.get("leverage") or 1.0)
            margin = float(data.get("margin") or 0.0)
            liquidation_price = float(data.get("liquidation_price") or 0.0)
        except KeyError as e:
            raise ValueError(f"Position record missing field {e.args[0]!r}") from e
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid position record: {e}") from e

        if side is Side.LONG:
            pnl = (current_price - entry_price) * quantity
        else:
            pnl = (entry_price - current_price) * quantity

        basis = margin if margin > 0 else entry_price * quantity
        pnl_pct = pnl / basis * 100 if basis > 0 else 0.0

        return cls(
            symbol=symbol,
            side=side,
            quantity=quantity,
            entry_price=entry_price,
            current_price=current_price,
            leverage=leverage,
            margin=margin,
            liquidation_price=liquidation_price,
            unrealized_pnl=pnl,
            unrealized_pnl_pct=pnl_pct,
        )

    @property
    def entry_value(self) -> float:
        return self.entry_price * self.quantity

    @property
    def liquidation_distance_pct(self) -> float | None:
        """Distance from current price to liquidation, in percent of price.

        None when the position has no liquidation price.
        """
        if self.liquidation_price <= 0 or self.current_price <= 0:
            return None
        return abs(self.current_price - self.liquidation_price) / self.current_price * 100


class PositionSource(Protocol):
    """Execution backend read contract used by the monitor."""

    async def fetch_open_positions(self) -> list[dict[str, Any] | PositionSnapshot]:
        """Return open positions; raise PositionFetchError on transport failure."""
        ...


@dataclass
class StartResult:
    """Result of starting the monitor."""

    success: bool
    error: str | None = None


@dataclass
class MonitorStatus:
    """Synchronous view of the monitor's last cached state.

    Attributes:
        running: Whether the poll loop is active.
        position_count: Positions in the cached snapshot.
        total_unrealized_pnl: Sum of unrealized P&L in the snapshot.
        last_poll_at: When the last successful poll finished.
        alert_count: Alerts emitted since start.
        last_error: Error of the last failed poll, cleared on success.
    """

    running: bool
    position_count: int
    total_unrealized_pnl: float
    last_poll_at: datetime | None
    alert_count: int
    last_error: str | None
