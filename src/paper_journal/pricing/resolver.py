"""Single source of truth for turning raw market data into one price per position.

Every code path (trade execution, close, display, background refresh) resolves
prices through :class:`PriceResolver`, so a position can never be valued by
two disagreeing rules.

Priority, highest first:

1. Settlement ``outcome_prices`` when the market is closed/resolved, or when the
   price for the side is already definitive (<= 0.01 or >= 0.99).  Markets
   routinely resolve before they are flagged closed.
2. The side's own order book: lowest ask for BUY, highest bid for SELL.
3. Aggregate ``best_bid``/``best_ask`` (YES-quoted, inverted for NO).
4. The caller's fallback price, logged as a warning.

SELL-side resolutions (valuation, close, sell) are then cross-checked against
``outcome_prices``; a disagreement of 0.05 absolute or 10% relative means the
quote is stale and the settlement price wins.
"""

import logging

from paper_journal.domain.errors import PriceUnavailableError
from paper_journal.domain.models import (
    MarketPriceSnapshot,
    PriceQuote,
    PriceSource,
    Side,
    TradeAction,
    parse_price,
)

logger = logging.getLogger(__name__)

DEFINITIVE_LOW = 0.01
DEFINITIVE_HIGH = 0.99

_SUSPICIOUS_CHANGE = 0.95
_SUSPICIOUS_FLOOR = 0.05

_CROSS_CHECK_ABS = 0.05
_CROSS_CHECK_REL = 0.10


def is_definitive(price: float) -> bool:
    return price <= DEFINITIVE_LOW or price >= DEFINITIVE_HIGH


class PriceResolver:
    """Resolves one authoritative price for a (market, side, action)."""

    def resolve(
        self,
        snapshot: MarketPriceSnapshot | None,
        side: Side,
        action: TradeAction,
        *,
        fallback: float | None = None,
        last_price: float | None = None,
    ) -> PriceQuote:
        """Resolve a price, falling back to ``fallback`` when the snapshot has nothing usable.

        Args:
            snapshot: Latest market data, or ``None`` if the market could not be fetched.
            side: Outcome token being priced.
            action: BUY prices at the ask, SELL at the bid.
            fallback: Reference price (usually the entry price) used when no source works.
            last_price: Last known price, only used for the suspicious-jump check.

        Raises:
            PriceUnavailableError: If no source yields a price and ``fallback`` is unusable.
        """
        label = self._label(snapshot, side)
        quote = self._from_snapshot(snapshot, side, action) if snapshot is not None else None

        if quote is None:
            fallback_price = parse_price(fallback)
            if fallback_price is None:
                raise PriceUnavailableError(f"No price available for {label}")
            warning = f"No market price available for {label}, using ${fallback_price:.3f}"
            logger.warning(warning)
            quote = PriceQuote(
                price=fallback_price, source=PriceSource.FALLBACK, warnings=(warning,)
            )

        if action == TradeAction.SELL and snapshot is not None:
            quote = self._cross_check(quote, snapshot, side, label)

        return self._flag_suspicious(quote, last_price, label)

    def resolve_price(
        self,
        snapshot: MarketPriceSnapshot | None,
        side: Side,
        action: TradeAction,
        *,
        fallback: float | None = None,
        last_price: float | None = None,
    ) -> float:
        """Shorthand for ``resolve(...).price``."""
        return self.resolve(
            snapshot, side, action, fallback=fallback, last_price=last_price
        ).price

    # ── Sources ────────────────────────────────────────────────

    def _from_snapshot(
        self, snapshot: MarketPriceSnapshot, side: Side, action: TradeAction
    ) -> PriceQuote | None:
        settlement = snapshot.outcome_price(side)
        if settlement is not None and (snapshot.settled or is_definitive(settlement)):
            logger.debug(
                "%s: settlement price %.4f (closed=%s, resolved=%s)",
                self._label(snapshot, side),
                settlement,
                snapshot.closed,
                snapshot.resolved,
            )
            return PriceQuote(price=settlement, source=PriceSource.SETTLEMENT)

        book = snapshot.order_book(side)
        if book is not None:
            price = book.best_ask if action == TradeAction.BUY else book.best_bid
            if price is not None:
                return PriceQuote(price=price, source=PriceSource.ORDER_BOOK)

        price = self._from_best_bid_ask(snapshot, side, action)
        if price is not None:
            return PriceQuote(price=price, source=PriceSource.BEST_BID_ASK)

        return None

    @staticmethod
    def _from_best_bid_ask(
        snapshot: MarketPriceSnapshot, side: Side, action: TradeAction
    ) -> float | None:
        yes_bid, yes_ask = snapshot.best_bid, snapshot.best_ask
        if side == Side.YES:
            return yes_ask if action == TradeAction.BUY else yes_bid
        # NO ask = 1 - YES bid, NO bid = 1 - YES ask
        if action == TradeAction.BUY:
            return parse_price(1 - yes_bid) if yes_bid is not None else None
        return parse_price(1 - yes_ask) if yes_ask is not None else None

    # ── Sanity checks ──────────────────────────────────────────

    @staticmethod
    def _cross_check(
        quote: PriceQuote, snapshot: MarketPriceSnapshot, side: Side, label: str
    ) -> PriceQuote:
        settlement = snapshot.outcome_price(side)
        if settlement is None or quote.source == PriceSource.SETTLEMENT:
            return quote

        diff = abs(quote.price - settlement)
        relative = diff / quote.price if quote.price > 0 else 0.0
        if diff < _CROSS_CHECK_ABS and relative < _CROSS_CHECK_REL:
            return quote

        logger.info(
            "Price mismatch for %s: %s=%.3f vs outcome=%.3f, using outcome price",
            label,
            quote.source.value,
            quote.price,
            settlement,
        )
        return PriceQuote(price=settlement, source=PriceSource.SETTLEMENT)

    @staticmethod
    def _flag_suspicious(quote: PriceQuote, last_price: float | None, label: str) -> PriceQuote:
        if not last_price or last_price <= 0:
            return quote
        change = abs(quote.price - last_price) / last_price
        if change > _SUSPICIOUS_CHANGE and quote.price < _SUSPICIOUS_FLOOR:
            warning = (
                f"Suspicious price drop for {label}: {last_price:.3f} -> {quote.price:.3f} "
                f"({change:.1%} change)"
            )
            logger.warning(warning)
            return quote.model_copy(update={"warnings": (*quote.warnings, warning)})
        return quote

    @staticmethod
    def _label(snapshot: MarketPriceSnapshot | None, side: Side) -> str:
        if snapshot is None:
            return f"unknown market ({side.value})"
        return f"{snapshot.question or snapshot.market_id} ({side.value})"
