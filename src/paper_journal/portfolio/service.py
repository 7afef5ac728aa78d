"""Portfolio service — composes repository, market data, and the accounting core."""

import asyncio
import logging
from collections import defaultdict

from paper_journal.config import Settings, get_settings
from paper_journal.domain.errors import ExternalSourceError, ValidationError
from paper_journal.domain.models import (
    MarketPriceSnapshot,
    PortfolioState,
    PortfolioStats,
    Position,
    Side,
    Trade,
)
from paper_journal.domain.ports import MarketDataSource, PortfolioRepository
from paper_journal.logging import bind_user
from paper_journal.portfolio.account import PortfolioAccount
from paper_journal.portfolio.refresh import PriceRefresher
from paper_journal.pricing.resolver import PriceResolver

logger = logging.getLogger(__name__)


def _as_side(side: Side | str) -> Side:
    return side if isinstance(side, Side) else Side(side.upper())


class PortfolioService:
    """Runs each portfolio operation as one serialized load → apply → save transaction.

    Mutations hold a per-user lock and save with an optimistic version check.
    Price refreshes skip the lock and only write marks, so they never block or
    get blocked by a pending trade.
    """

    def __init__(
        self,
        repo: PortfolioRepository,
        market_data: MarketDataSource,
        *,
        resolver: PriceResolver | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._repo = repo
        self._market_data = market_data
        self._resolver = resolver or PriceResolver()
        self._initial_balance = settings.initial_balance
        self._refresher = PriceRefresher(
            market_data, self._resolver, timeout=settings.http_timeout_seconds
        )
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ── Queries ────────────────────────────────────────────────

    async def get_snapshot(self, user_id: str) -> PortfolioState:
        account = await self._load(user_id)
        return account.snapshot()

    async def stats(self, user_id: str) -> PortfolioStats:
        account = await self._load(user_id)
        return account.stats()

    # ── Trading ────────────────────────────────────────────────

    async def buy(
        self,
        user_id: str,
        market_id: str | None,
        side: Side | str,
        amount: float,
        thesis: str | None = None,
        *,
        slug: str | None = None,
    ) -> Trade:
        side = _as_side(side)
        async with self._locks[user_id]:
            account = await self._load(user_id)
            market = await self._fetch_market(account, market_id, slug)
            trade = account.buy(market, side, amount, thesis)
            await self._commit(user_id, account)
            return trade

    async def sell(
        self,
        user_id: str,
        market_id: str | None,
        side: Side | str,
        amount: float,
        thesis: str | None = None,
        *,
        slug: str | None = None,
    ) -> Trade:
        side = _as_side(side)
        async with self._locks[user_id]:
            account = await self._load(user_id)
            market = await self._fetch_market(account, market_id, slug)
            trade = account.sell(market, side, amount, thesis)
            await self._commit(user_id, account)
            return trade

    async def close(self, user_id: str, position_id: str) -> Trade:
        async with self._locks[user_id]:
            account = await self._load(user_id)
            position = self._require_position(account, position_id)
            if position.closed:
                raise ValidationError(f"Position {position_id} is already closed")
            market = await self._try_snapshot(position.market_id, position.market_slug)
            trade = account.close_position(position_id, market)
            await self._commit(user_id, account)
            return trade

    async def reopen(self, user_id: str, position_id: str) -> float:
        async with self._locks[user_id]:
            account = await self._load(user_id)
            refund = account.reopen_position(position_id)
            await self._commit(user_id, account)
            return refund

    async def reset(self, user_id: str, new_balance: float) -> PortfolioState:
        async with self._locks[user_id]:
            account = await self._load(user_id)
            account.reset_balance(new_balance)
            return await self._commit(user_id, account)

    async def update_thesis(self, user_id: str, position_id: str, thesis: str | None) -> Position:
        async with self._locks[user_id]:
            account = await self._load(user_id)
            account.update_thesis(position_id, thesis)
            await self._commit(user_id, account)
            return self._require_position(account, position_id)

    async def update_exit_notes(
        self, user_id: str, position_id: str, notes: str | None
    ) -> Position:
        async with self._locks[user_id]:
            account = await self._load(user_id)
            account.update_exit_notes(position_id, notes)
            await self._commit(user_id, account)
            return self._require_position(account, position_id)

    # ── Price refresh ──────────────────────────────────────────

    async def refresh_prices(self, user_id: str) -> PortfolioState:
        """Re-mark open positions from live data. Writes prices only."""
        account = await self._load(user_id)
        quotes = await self._refresher.refresh(account.state)
        prices = {position_id: quote.price for position_id, quote in quotes.items()}
        stored = await self._repo.update_marks(user_id, prices)
        account.apply_prices(prices)

        fallbacks = sum(1 for q in quotes.values() if q.is_fallback)
        logger.info(
            "Prices refreshed for %s: %d positions (%d on fallback), total value $%.2f",
            user_id,
            stored,
            fallbacks,
            account.state.total_value,
        )
        return account.snapshot()

    # ── Helpers ────────────────────────────────────────────────

    async def _load(self, user_id: str) -> PortfolioAccount:
        bind_user(user_id)
        state = await self._repo.get_or_create(user_id, self._initial_balance)
        return PortfolioAccount(state, self._resolver)

    async def _commit(self, user_id: str, account: PortfolioAccount) -> PortfolioState:
        saved = await self._repo.save(user_id, account.state)
        account.replace_state(saved)
        return account.snapshot()

    async def _try_snapshot(
        self, market_id: str | None, slug: str | None
    ) -> MarketPriceSnapshot | None:
        try:
            return await self._market_data.get_snapshot(market_id=market_id, slug=slug)
        except ExternalSourceError as e:
            logger.warning("Market data unavailable for %s: %s", slug or market_id, e)
            return None

    async def _fetch_market(
        self, account: PortfolioAccount, market_id: str | None, slug: str | None
    ) -> MarketPriceSnapshot:
        """Fetch the market; on failure fall back to a price-less snapshot of a known position."""
        if not market_id and not slug:
            raise ValidationError("A market id or slug is required")
        snapshot = await self._try_snapshot(market_id, slug)
        if snapshot is not None:
            return snapshot

        known = next(
            (
                p
                for p in account.state.positions
                if (market_id and p.market_id == market_id) or (slug and p.market_slug == slug)
            ),
            None,
        )
        if known is not None:
            return MarketPriceSnapshot(
                market_id=known.market_id,
                market_slug=known.market_slug,
                question=known.market_question,
            )
        if market_id:
            return MarketPriceSnapshot(market_id=market_id, market_slug=slug)
        raise ExternalSourceError(f"Market {slug!r} could not be fetched")

    @staticmethod
    def _require_position(account: PortfolioAccount, position_id: str) -> Position:
        position = account.state.find_position(position_id)
        if position is None:
            raise ValidationError(f"Position {position_id} not found")
        return position
