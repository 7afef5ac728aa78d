"""Polymarket Gamma + CLOB client — builds typed price snapshots for the portfolio core."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
import pydantic

from paper_journal.domain.errors import ExternalSourceError, MarketNotFoundError
from paper_journal.domain.models import MarketPriceSnapshot, OrderBook

logger = logging.getLogger(__name__)

_GAMMA_URL = "https://gamma-api.polymarket.com"
_CLOB_URL = "https://clob.polymarket.com"


class PolymarketClient:
    """Read-only client for Polymarket market metadata and order books.

    Implements the MarketDataSource protocol.  Every transport or payload
    problem surfaces as :class:`ExternalSourceError`; httpx exceptions never
    leak to callers.
    """

    def __init__(
        self,
        gamma_url: str = _GAMMA_URL,
        clob_url: str = _CLOB_URL,
        *,
        timeout: float = 10.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._gamma_url = gamma_url.rstrip("/")
        self._clob_url = clob_url.rstrip("/")
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def _get_json(self, url: str, params: dict[str, str]) -> Any:
        try:
            response = await self._http.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise ExternalSourceError(f"Timed out fetching {url} {params}") from e
        except httpx.HTTPStatusError as e:
            raise ExternalSourceError(
                f"HTTP {e.response.status_code} from {url} {params}"
            ) from e
        except httpx.HTTPError as e:
            raise ExternalSourceError(f"Request to {url} failed: {e}") from e
        except ValueError as e:
            raise ExternalSourceError(f"Invalid JSON from {url}: {e}") from e

    async def get_market(
        self, market_id: str | None = None, slug: str | None = None
    ) -> dict[str, Any]:
        """Look up a market by slug, falling back to its id when the slug finds nothing."""
        if not market_id and not slug:
            raise ValueError("market_id or slug is required")

        url = f"{self._gamma_url}/markets"
        data: Any = []
        if slug:
            data = await self._get_json(url, {"slug": slug})
        if (not isinstance(data, list) or not data) and market_id:
            if slug:
                logger.info("Slug lookup failed for %s, trying market id %s", slug, market_id)
            data = await self._get_json(url, {"id": market_id})

        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            raise MarketNotFoundError(f"No market found for slug={slug!r} id={market_id!r}")
        return data[0]

    async def get_order_book(self, token_id: str) -> OrderBook | None:
        """Fetch the CLOB book for one outcome token; ``None`` if unavailable."""
        try:
            raw = await self._get_json(f"{self._clob_url}/book", {"token_id": token_id})
        except ExternalSourceError as e:
            logger.debug("Order book not available for token %s: %s", token_id, e)
            return None
        try:
            return OrderBook.model_validate(raw)
        except pydantic.ValidationError as e:
            logger.warning("Malformed order book for token %s: %s", token_id, e)
            return None

    async def get_snapshot(
        self,
        market_id: str | None = None,
        slug: str | None = None,
        with_order_books: bool = True,
    ) -> MarketPriceSnapshot:
        """Fetch a market and (optionally) both outcome order books as one snapshot."""
        market = await self.get_market(market_id=market_id, slug=slug)
        try:
            snapshot = MarketPriceSnapshot.from_gamma(market)
        except pydantic.ValidationError as e:
            raise ExternalSourceError(f"Malformed market payload for {slug or market_id}") from e

        if with_order_books:
            tokens = [t for t in snapshot.token_ids if t]
            books = await asyncio.gather(*(self.get_order_book(t) for t in tokens))
            snapshot.order_books = {
                token: book for token, book in zip(tokens, books) if book is not None
            }

        logger.debug(
            "Snapshot %s: outcome=%s bid=%s ask=%s closed=%s books=%d",
            snapshot.market_slug or snapshot.market_id,
            snapshot.outcome_prices,
            snapshot.best_bid,
            snapshot.best_ask,
            snapshot.closed,
            len(snapshot.order_books),
        )
        return snapshot

    async def close(self) -> None:
        await self._http.aclose()
