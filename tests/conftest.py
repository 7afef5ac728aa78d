"""Shared fixtures: market snapshot builder and an in-memory market data source."""

import asyncio

import pytest

from paper_journal.config import Settings
from paper_journal.db.models import init_db
from paper_journal.db.repository import Repository
from paper_journal.domain.errors import ExternalSourceError
from paper_journal.domain.models import MarketPriceSnapshot, OrderBook, OrderBookLevel


def _snapshot(
    market_id: str = "m1",
    *,
    yes: float | None = None,
    no: float | None = None,
    bid: float | None = None,
    ask: float | None = None,
    closed: bool = False,
    resolved: bool = False,
    yes_book: tuple[list[float], list[float]] | None = None,
    no_book: tuple[list[float], list[float]] | None = None,
    question: str | None = None,
) -> MarketPriceSnapshot:
    books = {}
    for token, book in ((f"{market_id}-yes", yes_book), (f"{market_id}-no", no_book)):
        if book is not None:
            bids, asks = book
            books[token] = OrderBook(
                bids=[OrderBookLevel(price=p, size=100) for p in bids],
                asks=[OrderBookLevel(price=p, size=100) for p in asks],
            )
    return MarketPriceSnapshot(
        market_id=market_id,
        market_slug=f"{market_id}-slug",
        question=question or f"Question {market_id}?",
        outcome_prices=(yes, no),
        best_bid=bid,
        best_ask=ask,
        closed=closed,
        resolved=resolved,
        token_ids=(f"{market_id}-yes", f"{market_id}-no"),
        order_books=books,
    )


@pytest.fixture
def make_snapshot():
    """Factory for MarketPriceSnapshot with YES/NO token ids ``<id>-yes`` / ``<id>-no``."""
    return _snapshot


class FakeMarketData:
    """MarketDataSource double keyed by market id (slug ``<id>-slug`` also resolves)."""

    def __init__(self) -> None:
        self.snapshots: dict[str, MarketPriceSnapshot] = {}
        self.failing: set[str] = set()
        self.slow: set[str] = set()
        self.calls: list[tuple[str | None, str | None]] = []

    def put(self, snapshot: MarketPriceSnapshot) -> None:
        self.snapshots[snapshot.market_id] = snapshot

    async def get_snapshot(
        self,
        market_id: str | None = None,
        slug: str | None = None,
        with_order_books: bool = True,
    ) -> MarketPriceSnapshot:
        self.calls.append((market_id, slug))
        key = market_id or (slug.removesuffix("-slug") if slug else None)
        if key in self.slow:
            await asyncio.sleep(10)
        if key in self.failing:
            raise ExternalSourceError(f"{key} is down")
        if key not in self.snapshots:
            raise ExternalSourceError(f"No market {key}")
        return self.snapshots[key]


@pytest.fixture
def market_data():
    return FakeMarketData()


@pytest.fixture
async def repo(tmp_path):
    """Repository over a fresh SQLite file."""
    db = await init_db(str(tmp_path / "test.db"))
    repository = Repository(db)
    yield repository
    await repository.close()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        db_path=tmp_path / "test.db",
        initial_balance=500.0,
        http_timeout_seconds=0.2,
    )
