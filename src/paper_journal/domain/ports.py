"""Port interfaces (Protocols) that the portfolio core depends on.

Infrastructure adapters implement these protocols so that application-layer
code never couples to a specific market-data API or database.
"""

from typing import Protocol

from paper_journal.domain.models import MarketPriceSnapshot, PortfolioState

# ── Market Data ─────────────────────────────────────────────────


class MarketDataSource(Protocol):
    """Abstraction over a prediction-market price feed (e.g. Polymarket Gamma + CLOB)."""

    async def get_snapshot(
        self,
        market_id: str | None = None,
        slug: str | None = None,
        with_order_books: bool = True,
    ) -> MarketPriceSnapshot: ...


# ── Portfolio Repository ────────────────────────────────────────


class PortfolioRepository(Protocol):
    """Persistence port for whole portfolio aggregates, with optimistic versioning."""

    async def load(self, user_id: str) -> PortfolioState | None: ...
    async def get_or_create(self, user_id: str, initial_balance: float) -> PortfolioState: ...
    async def save(self, user_id: str, state: PortfolioState) -> PortfolioState: ...
    async def update_marks(self, user_id: str, prices: dict[str, float]) -> int: ...
