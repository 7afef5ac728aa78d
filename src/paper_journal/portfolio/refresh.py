"""Background price refresh — read-only re-marking of open positions."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from paper_journal.domain.errors import ExternalSourceError, PriceUnavailableError
from paper_journal.domain.models import (
    MarketPriceSnapshot,
    PortfolioState,
    Position,
    PriceQuote,
    TradeAction,
)
from paper_journal.domain.ports import MarketDataSource
from paper_journal.pricing.resolver import PriceResolver

logger = logging.getLogger(__name__)


class PriceRefresher:
    """Resolves fresh SELL-side prices for every open position.

    One market failing (error or timeout) only degrades that market's
    positions to their last known price; the rest still refresh.
    """

    def __init__(
        self,
        market_data: MarketDataSource,
        resolver: PriceResolver | None = None,
        *,
        timeout: float = 10.0,
    ) -> None:
        self._market_data = market_data
        self._resolver = resolver or PriceResolver()
        self._timeout = timeout

    async def refresh(self, state: PortfolioState) -> dict[str, PriceQuote]:
        """Return a quote per open position id. Never raises for market-data failures."""
        by_market: dict[str, list[Position]] = {}
        for position in state.open_positions:
            by_market.setdefault(position.market_id, []).append(position)
        if not by_market:
            return {}

        snapshots = await asyncio.gather(
            *(self._fetch(positions[0]) for positions in by_market.values())
        )

        quotes: dict[str, PriceQuote] = {}
        for positions, snapshot in zip(by_market.values(), snapshots):
            for position in positions:
                try:
                    quotes[position.id] = self._resolver.resolve(
                        snapshot,
                        position.side,
                        TradeAction.SELL,
                        fallback=position.current_price,
                        last_price=position.current_price,
                    )
                except PriceUnavailableError as e:
                    logger.warning("Skipping refresh for position %s: %s", position.id, e)

        logger.debug("Refreshed %d prices across %d markets", len(quotes), len(by_market))
        return quotes

    async def _fetch(self, position: Position) -> MarketPriceSnapshot | None:
        try:
            return await asyncio.wait_for(
                self._market_data.get_snapshot(
                    market_id=position.market_id, slug=position.market_slug
                ),
                timeout=self._timeout,
            )
        except TimeoutError:
            logger.warning(
                "Price fetch for %r timed out after %.1fs, keeping last price",
                position.market_question or position.market_id,
                self._timeout,
            )
        except ExternalSourceError as e:
            logger.warning(
                "Price fetch for %r failed, keeping last price: %s",
                position.market_question or position.market_id,
                e,
            )
        except Exception as e:
            logger.error(
                "Unexpected error fetching %r: %s",
                position.market_question or position.market_id,
                e,
                exc_info=True,
            )
        return None


class RefreshScheduler:
    """Runs a refresh coroutine on an APScheduler interval until stopped."""

    def __init__(
        self,
        refresh: Callable[[], Awaitable[Any]],
        *,
        interval_seconds: int = 30,
        job_id: str = "price_refresh",
    ) -> None:
        self._refresh = refresh
        self._interval = interval_seconds
        self._job_id = job_id
        self.scheduler = AsyncIOScheduler()
        self.runs = 0
        self._stopped = False

    @property
    def running(self) -> bool:
        return self.scheduler.running and not self._stopped

    async def tick(self) -> None:
        """One refresh; errors are logged so the schedule keeps going."""
        try:
            await self._refresh()
        except Exception as e:
            logger.error("Price refresh failed: %s", e, exc_info=True)
        finally:
            self.runs += 1

    def start(self) -> None:
        """Schedule the refresh, running the first tick immediately. Needs a running loop."""
        self.scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=self._interval),
            id=self._job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(UTC),
        )
        self._stopped = False
        self.scheduler.start()
        logger.info("Price refresh started — every %ds", self._interval)

    async def stop(self) -> None:
        """Shut the scheduler down; safe to call more than once or before ``start``."""
        was_running = self.running
        self._stopped = True
        if not was_running:
            return
        # AsyncIOScheduler finishes shutting down on the next loop iteration
        self.scheduler.shutdown(wait=False)
        await asyncio.sleep(0)
        logger.info("Price refresh stopped")
