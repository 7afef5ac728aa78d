"""Domain models — positions, trades, portfolio state, and market price snapshots."""

import json
import math
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_price(raw: Any) -> float | None:
    """Parse an externally sourced price, returning ``None`` unless it is a finite 0-1 value."""
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value < 0.0 or value > 1.0:
        return None
    return value


def _decode_json_list(raw: Any) -> Any:
    # Gamma encodes arrays as JSON strings, e.g. '["0.25", "0.75"]'
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except ValueError:
            return []
    return raw


# ── Enums ──────────────────────────────────────────────────────


class Side(str, Enum):
    YES = "YES"
    NO = "NO"

    @property
    def index(self) -> int:
        """Position of this outcome in Polymarket's ``[yes, no]`` arrays."""
        return 0 if self is Side.YES else 1


class TradeAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class PriceSource(str, Enum):
    ORDER_BOOK = "order_book"
    BEST_BID_ASK = "best_bid_ask"
    SETTLEMENT = "settlement"
    FALLBACK = "fallback"


# ── Market data ────────────────────────────────────────────────


class OrderBookLevel(BaseModel):
    price: float
    size: float = 0.0


class OrderBook(BaseModel):
    """Top-of-book data for a single outcome token."""

    bids: list[OrderBookLevel] = Field(default_factory=list)
    asks: list[OrderBookLevel] = Field(default_factory=list)

    @property
    def best_bid(self) -> float | None:
        prices = [p for p in (parse_price(lvl.price) for lvl in self.bids) if p is not None]
        return max(prices) if prices else None

    @property
    def best_ask(self) -> float | None:
        prices = [p for p in (parse_price(lvl.price) for lvl in self.asks) if p is not None]
        return min(prices) if prices else None


class MarketPriceSnapshot(BaseModel):
    """Everything the core knows about one market's prices at a point in time.

    ``best_bid``/``best_ask`` are always quoted for the YES token.  Missing or
    malformed prices are ``None``; they never propagate as NaN.
    """

    market_id: str
    market_slug: str | None = None
    question: str = ""
    outcome_prices: tuple[float | None, float | None] = (None, None)
    best_bid: float | None = None
    best_ask: float | None = None
    closed: bool = False
    resolved: bool = False
    token_ids: tuple[str | None, str | None] = (None, None)
    order_books: dict[str, OrderBook] = Field(default_factory=dict)

    @field_validator("outcome_prices", mode="before")
    @classmethod
    def _parse_outcome_prices(cls, raw: Any) -> tuple[float | None, float | None]:
        items = _decode_json_list(raw)
        if not isinstance(items, (list, tuple)):
            return (None, None)
        parsed = [parse_price(item) for item in items[:2]]
        parsed += [None] * (2 - len(parsed))
        return (parsed[0], parsed[1])

    @field_validator("token_ids", mode="before")
    @classmethod
    def _parse_token_ids(cls, raw: Any) -> tuple[str | None, str | None]:
        items = _decode_json_list(raw)
        if not isinstance(items, (list, tuple)):
            return (None, None)
        ids = [str(item) if item else None for item in items[:2]]
        ids += [None] * (2 - len(ids))
        return (ids[0], ids[1])

    @field_validator("best_bid", "best_ask", mode="before")
    @classmethod
    def _parse_quote(cls, raw: Any) -> float | None:
        return parse_price(raw)

    @classmethod
    def from_gamma(
        cls, market: dict[str, Any], order_books: dict[str, OrderBook] | None = None
    ) -> "MarketPriceSnapshot":
        """Build a snapshot from a raw Gamma ``/markets`` item."""
        resolution = str(market.get("umaResolutionStatus") or "").lower()
        return cls(
            market_id=str(market.get("id", "")),
            market_slug=market.get("slug"),
            question=market.get("question") or "",
            outcome_prices=market.get("outcomePrices"),
            best_bid=market.get("bestBid"),
            best_ask=market.get("bestAsk"),
            closed=bool(market.get("closed", False)),
            resolved=bool(market.get("resolved", False)) or resolution == "resolved",
            token_ids=market.get("clobTokenIds"),
            order_books=order_books or {},
        )

    @property
    def settled(self) -> bool:
        return self.closed or self.resolved

    def outcome_price(self, side: Side) -> float | None:
        return self.outcome_prices[side.index]

    def token_id(self, side: Side) -> str | None:
        return self.token_ids[side.index]

    def order_book(self, side: Side) -> OrderBook | None:
        token = self.token_id(side)
        if token is None:
            return None
        return self.order_books.get(token)


class PriceQuote(BaseModel):
    """A resolved price together with where it came from."""

    model_config = ConfigDict(frozen=True)

    price: float
    source: PriceSource
    warnings: tuple[str, ...] = ()

    @property
    def is_fallback(self) -> bool:
        return self.source == PriceSource.FALLBACK


# ── Ledger ─────────────────────────────────────────────────────


class Position(BaseModel):
    """An open or closed stake in one (market, side) pair."""

    id: str = Field(default_factory=new_id)
    market_id: str
    market_question: str = ""
    market_slug: str | None = None
    side: Side
    shares: float
    avg_price: float
    cost: float
    current_price: float
    value: float = 0.0
    pnl: float = 0.0
    pnl_percent: float = 0.0
    thesis: str | None = None
    exit_notes: str | None = None
    opened_at: datetime = Field(default_factory=utcnow)
    closed: bool = False
    closed_at: datetime | None = None
    exit_price: float | None = None
    close_trade_id: str | None = None

    @property
    def is_open(self) -> bool:
        return not self.closed


class Trade(BaseModel):
    """Immutable record of one executed action."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    position_id: str | None = None
    market_id: str
    market_question: str = ""
    side: Side
    action: TradeAction
    shares: float
    price: float
    total: float
    timestamp: datetime = Field(default_factory=utcnow)
    thesis: str | None = None


class PortfolioState(BaseModel):
    """Aggregate root: cash, positions, and the append-only trade log."""

    user_id: str
    balance: float
    initial_balance: float
    positions: list[Position] = Field(default_factory=list)
    trades: list[Trade] = Field(default_factory=list)
    total_value: float = 0.0
    total_pnl: float = 0.0
    total_pnl_percent: float = 0.0
    realized_pnl: float = 0.0
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def open_positions(self) -> list[Position]:
        return [p for p in self.positions if p.is_open]

    @property
    def closed_positions(self) -> list[Position]:
        return [p for p in self.positions if p.closed]

    def find_position(self, position_id: str) -> Position | None:
        return next((p for p in self.positions if p.id == position_id), None)

    def find_open_position(self, market_id: str, side: Side) -> Position | None:
        return next(
            (p for p in self.open_positions if p.market_id == market_id and p.side == side),
            None,
        )


class PortfolioStats(BaseModel):
    """Trade-log statistics for display."""

    total_trades: int = 0
    total_buys: int = 0
    total_sells: int = 0
    winning_positions: int = 0
    losing_positions: int = 0
    win_rate: float = 0.0
    avg_trade_size: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    total_volume: float = 0.0
