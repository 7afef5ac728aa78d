"""Portfolio account — the aggregate root wrapping cash, positions, and trades."""

from __future__ import annotations

import logging

from paper_journal.domain.errors import ConsistencyError, ValidationError
from paper_journal.domain.models import (
    MarketPriceSnapshot,
    PortfolioState,
    PortfolioStats,
    Position,
    Side,
    Trade,
    TradeAction,
    utcnow,
)
from paper_journal.portfolio.ledger import PositionLedger, check_position, mark
from paper_journal.pricing.resolver import PriceResolver

logger = logging.getLogger(__name__)


class PortfolioAccount:
    """Validates trade intents, resolves execution prices, and keeps aggregates current.

    Mutations go through :class:`PositionLedger`; price refreshes only touch
    ``current_price``/``value``/``pnl`` and never cost, shares, or the trade log.
    """

    def __init__(
        self,
        state: PortfolioState,
        resolver: PriceResolver | None = None,
        ledger: PositionLedger | None = None,
    ) -> None:
        self._state = state
        self._resolver = resolver or PriceResolver()
        self._ledger = ledger or PositionLedger()
        self.recompute()

    @classmethod
    def create(
        cls, user_id: str, initial_balance: float, resolver: PriceResolver | None = None
    ) -> PortfolioAccount:
        """Create a brand-new account funded with ``initial_balance``."""
        state = PortfolioState(
            user_id=user_id, balance=initial_balance, initial_balance=initial_balance
        )
        return cls(state, resolver)

    @property
    def state(self) -> PortfolioState:
        return self._state

    @property
    def resolver(self) -> PriceResolver:
        return self._resolver

    @property
    def balance(self) -> float:
        return self._state.balance

    def snapshot(self) -> PortfolioState:
        """Return a detached copy of the current state."""
        return self._state.model_copy(deep=True)

    # ── Trading ────────────────────────────────────────────────

    def buy(
        self,
        market: MarketPriceSnapshot,
        side: Side,
        dollar_amount: float,
        thesis: str | None = None,
        *,
        price: float | None = None,
    ) -> Trade:
        """Buy ``dollar_amount`` worth of ``side`` at the resolved ask (or ``price``)."""
        if price is None:
            existing = self._state.find_open_position(market.market_id, side)
            price = self._resolver.resolve_price(
                market,
                side,
                TradeAction.BUY,
                fallback=existing.avg_price if existing else None,
                last_price=existing.current_price if existing else None,
            )
        trade = self._ledger.apply_buy(self._state, market, side, dollar_amount, price, thesis)
        self._touch()
        logger.info(
            "BUY %s %.4f shares of %r @ %.3f ($%.2f)",
            side.value,
            trade.shares,
            market.question or market.market_id,
            trade.price,
            trade.total,
        )
        return trade

    def sell(
        self,
        market: MarketPriceSnapshot,
        side: Side,
        dollar_amount: float,
        thesis: str | None = None,
        *,
        price: float | None = None,
    ) -> Trade:
        """Sell ``dollar_amount`` worth of an open position at the resolved bid (or ``price``)."""
        existing = self._state.find_open_position(market.market_id, side)
        if existing is None:
            raise ValidationError(
                f"No open {side.value} position in {market.question or market.market_id!r}"
            )
        if price is None:
            price = self._resolver.resolve_price(
                market,
                side,
                TradeAction.SELL,
                fallback=existing.avg_price,
                last_price=existing.current_price,
            )
        trade = self._ledger.apply_sell(self._state, market, side, dollar_amount, price, thesis)
        self._touch()
        logger.info(
            "SELL %s %.4f shares of %r @ %.3f ($%.2f)",
            side.value,
            trade.shares,
            market.question or market.market_id,
            trade.price,
            trade.total,
        )
        return trade

    def close_position(
        self,
        position_id: str,
        market: MarketPriceSnapshot | None = None,
        *,
        price: float | None = None,
    ) -> Trade:
        """Close a whole position at the resolved bid (or ``price``), keeping it for history."""
        position = self._get_position(position_id)
        if position.closed:
            raise ValidationError(f"Position {position_id} is already closed")
        if price is None:
            price = self._resolver.resolve_price(
                market,
                position.side,
                TradeAction.SELL,
                fallback=position.avg_price,
                last_price=position.current_price,
            )
        trade = self._ledger.close(self._state, position_id, price)
        self._touch()
        logger.info(
            "Closed %s position in %r for $%.2f (P&L $%+.2f)",
            position.side.value,
            position.market_question or position.market_id,
            trade.total,
            position.pnl,
        )
        return trade

    def reopen_position(self, position_id: str) -> float:
        """Reverse a close exactly. Returns the amount debited from the balance."""
        refund = self._ledger.reopen(self._state, position_id)
        self._touch()
        logger.info("Reopened position %s, debited $%.2f", position_id, refund)
        return refund

    def reset_balance(self, new_balance: float) -> PortfolioAccount:
        """Wipe all positions and trades and start over with ``new_balance``."""
        from paper_journal.portfolio.reset import ResetController

        return ResetController(self).reset(new_balance)

    def replace_state(self, state: PortfolioState) -> None:
        self._state = state
        self.recompute()

    # ── Notes ──────────────────────────────────────────────────

    def update_thesis(self, position_id: str, thesis: str | None) -> Position:
        position = self._get_position(position_id)
        position.thesis = thesis or None
        self._state.updated_at = utcnow()
        return position

    def update_exit_notes(self, position_id: str, notes: str | None) -> Position:
        position = self._get_position(position_id)
        position.exit_notes = notes or None
        self._state.updated_at = utcnow()
        return position

    # ── Valuation ──────────────────────────────────────────────

    def apply_prices(self, prices: dict[str, float]) -> int:
        """Mark open positions to the given prices (keyed by position id).

        Only current price, value, and P&L change. Returns the number of
        positions updated.
        """
        updated = 0
        for position in self._state.open_positions:
            price = prices.get(position.id)
            if price is None:
                continue
            mark(position, price)
            updated += 1
        self.recompute()
        return updated

    def recompute(self) -> None:
        """Re-derive every position's value/P&L and the portfolio totals."""
        state = self._state
        for position in state.positions:
            check_position(position)
            if position.closed:
                if position.exit_price is None:
                    raise ConsistencyError(f"Closed position {position.id} has no exit price")
                mark(position, position.exit_price)
            else:
                mark(position, position.current_price)

        open_value = sum(p.value for p in state.open_positions)
        total_cost = sum(p.cost for p in state.positions)
        state.total_value = state.balance + open_value
        state.total_pnl = sum(p.pnl for p in state.positions)
        state.total_pnl_percent = state.total_pnl / total_cost * 100 if total_cost > 0 else 0.0
        state.realized_pnl = sum(p.pnl for p in state.closed_positions)

    def stats(self) -> PortfolioStats:
        trades = self._state.trades
        buys = [t for t in trades if t.action == TradeAction.BUY]
        sells = [t for t in trades if t.action == TradeAction.SELL]
        closed_pnls = [p.pnl for p in self._state.closed_positions]
        wins = [pnl for pnl in closed_pnls if pnl > 0]
        losses = [pnl for pnl in closed_pnls if pnl < 0]
        volume = sum(t.total for t in trades)

        return PortfolioStats(
            total_trades=len(trades),
            total_buys=len(buys),
            total_sells=len(sells),
            winning_positions=len(wins),
            losing_positions=len(losses),
            win_rate=len(wins) / len(closed_pnls) * 100 if closed_pnls else 0.0,
            avg_trade_size=volume / len(trades) if trades else 0.0,
            largest_win=max(wins, default=0.0),
            largest_loss=min(losses, default=0.0),
            total_volume=volume,
        )

    # ── Helpers ────────────────────────────────────────────────

    def _get_position(self, position_id: str) -> Position:
        position = self._state.find_position(position_id)
        if position is None:
            raise ValidationError(f"Position {position_id} not found")
        return position

    def _touch(self) -> None:
        self._state.updated_at = utcnow()
        self.recompute()
