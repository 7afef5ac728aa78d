"""Position ledger — weighted-average cost accounting for BUY/SELL/CLOSE/REOPEN."""

import logging
import math

from paper_journal.domain.errors import ConsistencyError, ValidationError
from paper_journal.domain.models import (
    MarketPriceSnapshot,
    PortfolioState,
    Position,
    Side,
    Trade,
    TradeAction,
)

logger = logging.getLogger(__name__)

# Share counts below this are treated as zero (float residue from amount / price).
SHARE_EPSILON = 1e-9


def mark(position: Position, price: float) -> None:
    """Re-derive current price, value, and P&L for ``position`` at ``price``."""
    position.current_price = price
    position.value = position.shares * price
    position.pnl = position.value - position.cost
    position.pnl_percent = position.pnl / position.cost * 100 if position.cost > 0 else 0.0


def check_position(position: Position) -> None:
    """Raise ConsistencyError if ``position`` breaks a ledger invariant."""
    if position.is_open and position.shares <= 0:
        raise ConsistencyError(f"Open position {position.id} has {position.shares} shares")
    if position.avg_price < 0 or position.cost < 0:
        raise ConsistencyError(
            f"Position {position.id} has negative cost basis "
            f"(cost={position.cost}, avg_price={position.avg_price})"
        )


def _require_amount(dollar_amount: float) -> None:
    if not math.isfinite(dollar_amount) or dollar_amount <= 0:
        raise ValidationError(f"Amount must be positive, got {dollar_amount}")


def _require_execution_price(price: float) -> None:
    if not math.isfinite(price) or price <= 0 or price > 1:
        raise ValidationError(f"Execution price must be in (0, 1], got {price}")


class PositionLedger:
    """Applies trades to a portfolio's positions and trade log.

    Every precondition is checked before the first write, so a rejected
    operation leaves the portfolio untouched.
    """

    def apply_buy(
        self,
        portfolio: PortfolioState,
        market: MarketPriceSnapshot,
        side: Side,
        dollar_amount: float,
        price: float,
        thesis: str | None = None,
    ) -> Trade:
        _require_amount(dollar_amount)
        _require_execution_price(price)
        if dollar_amount > portfolio.balance:
            raise ValidationError(
                f"Insufficient balance: need ${dollar_amount:,.2f}, "
                f"have ${portfolio.balance:,.2f}"
            )

        shares = dollar_amount / price
        position = portfolio.find_open_position(market.market_id, side)

        if position is not None:
            check_position(position)
            position.shares += shares
            position.cost += dollar_amount
            position.avg_price = position.cost / position.shares
            if position.thesis is None:
                position.thesis = thesis
        else:
            position = Position(
                market_id=market.market_id,
                market_question=market.question,
                market_slug=market.market_slug,
                side=side,
                shares=shares,
                avg_price=price,
                cost=dollar_amount,
                current_price=price,
                thesis=thesis,
            )
            portfolio.positions.append(position)
        mark(position, price)

        trade = Trade(
            position_id=position.id,
            market_id=market.market_id,
            market_question=market.question,
            side=side,
            action=TradeAction.BUY,
            shares=shares,
            price=price,
            total=dollar_amount,
            thesis=thesis,
        )
        portfolio.balance -= dollar_amount
        portfolio.trades.append(trade)
        return trade

    def apply_sell(
        self,
        portfolio: PortfolioState,
        market: MarketPriceSnapshot,
        side: Side,
        dollar_amount: float,
        price: float,
        thesis: str | None = None,
    ) -> Trade:
        _require_amount(dollar_amount)
        _require_execution_price(price)

        position = portfolio.find_open_position(market.market_id, side)
        if position is None:
            raise ValidationError(f"No open {side.value} position in {market.question!r}")
        check_position(position)

        requested = dollar_amount / price
        if requested > position.shares + SHARE_EPSILON:
            raise ValidationError(
                f"Insufficient shares: need {requested:,.4f}, have {position.shares:,.4f}"
            )
        requested = min(requested, position.shares)

        sold_cost = position.cost / position.shares * requested
        remaining = position.shares - requested
        total = requested * price

        if remaining <= SHARE_EPSILON:
            portfolio.positions.remove(position)
        else:
            position.shares = remaining
            position.cost -= sold_cost
            position.avg_price = position.cost / position.shares
            mark(position, price)

        trade = Trade(
            position_id=position.id,
            market_id=market.market_id,
            market_question=market.question,
            side=side,
            action=TradeAction.SELL,
            shares=requested,
            price=price,
            total=total,
            thesis=thesis,
        )
        portfolio.balance += total
        portfolio.trades.append(trade)
        return trade

    def close(self, portfolio: PortfolioState, position_id: str, price: float) -> Trade:
        """Sell 100% of a position at ``price`` but keep the row for history."""
        position = self._get_position(portfolio, position_id)
        if position.closed:
            raise ValidationError(f"Position {position_id} is already closed")
        if not math.isfinite(price) or price < 0 or price > 1:
            raise ValidationError(f"Exit price must be in [0, 1], got {price}")
        check_position(position)

        total = position.shares * price
        trade = Trade(
            position_id=position.id,
            market_id=position.market_id,
            market_question=position.market_question,
            side=position.side,
            action=TradeAction.SELL,
            shares=position.shares,
            price=price,
            total=total,
        )

        position.closed = True
        position.closed_at = trade.timestamp
        position.exit_price = price
        position.close_trade_id = trade.id
        mark(position, price)

        portfolio.balance += total
        portfolio.trades.append(trade)
        return trade

    def reopen(self, portfolio: PortfolioState, position_id: str) -> float:
        """Undo a close: refund the exit value and drop the closing trade.

        The debit is the close trade's recorded total, the same float that was
        credited, so the balance returns to its pre-close value up to the rounding
        of one float add and subtract (exact for binary-representable amounts).

        Returns:
            The amount debited from the balance.
        """
        position = self._get_position(portfolio, position_id)
        if not position.closed:
            raise ValidationError(f"Position {position_id} is already open")
        if portfolio.find_open_position(position.market_id, position.side) is not None:
            raise ValidationError(
                f"Cannot reopen {position_id}: another open {position.side.value} position "
                f"exists for market {position.market_id}"
            )

        close_trade = next(
            (t for t in portfolio.trades if t.id == position.close_trade_id), None
        )
        if close_trade is not None:
            refund = close_trade.total
        else:
            refund = (position.exit_price or 0.0) * position.shares
        if refund > portfolio.balance:
            raise ValidationError(
                f"Insufficient balance to reopen: need ${refund:,.2f}, "
                f"have ${portfolio.balance:,.2f}"
            )

        portfolio.balance -= refund
        if close_trade is not None:
            portfolio.trades.remove(close_trade)

        position.closed = False
        position.closed_at = None
        position.exit_price = None
        position.close_trade_id = None
        mark(position, position.avg_price)
        return refund

    @staticmethod
    def _get_position(portfolio: PortfolioState, position_id: str) -> Position:
        position = portfolio.find_position(position_id)
        if position is None:
            raise ValidationError(f"Position {position_id} not found")
        return position
