"""End-to-end tests for the portfolio service over SQLite and a fake market feed."""

import asyncio

import pytest

from paper_journal.domain.errors import ExternalSourceError, PriceUnavailableError, ValidationError
from paper_journal.domain.models import Side, TradeAction
from paper_journal.portfolio.service import PortfolioService


@pytest.fixture
def service(repo, market_data, settings):
    return PortfolioService(repo, market_data, settings=settings)


@pytest.fixture
def live(market_data, make_snapshot):
    market_data.put(make_snapshot("m1", bid=0.38, ask=0.40))
    market_data.put(make_snapshot("m2", bid=0.58, ask=0.60))
    return market_data


class TestTrading:
    async def test_buy_by_slug_persists(self, service, repo, live):
        trade = await service.buy("alice", None, "yes", 100.0, "undervalued", slug="m1-slug")

        assert trade.price == 0.40
        assert trade.market_id == "m1"
        stored = await repo.load("alice")
        assert stored.balance == pytest.approx(400.0)
        assert stored.positions[0].market_slug == "m1-slug"
        assert stored.positions[0].thesis == "undervalued"
        assert stored.trades[0].id == trade.id

    async def test_new_portfolio_uses_configured_balance(self, service):
        state = await service.get_snapshot("bob")
        assert state.balance == 500.0
        assert state.initial_balance == 500.0

    async def test_sell(self, service, live):
        await service.buy("alice", "m1", Side.YES, 100.0)
        trade = await service.sell("alice", "m1", Side.YES, 38.0)

        state = await service.get_snapshot("alice")
        assert trade.action == TradeAction.SELL
        assert trade.price == 0.38
        assert state.positions[0].shares == pytest.approx(150.0)
        assert state.balance == pytest.approx(438.0)

    async def test_rejected_trade_leaves_storage_untouched(self, service, repo, live):
        await service.buy("alice", "m1", Side.YES, 100.0)
        before = await repo.load("alice")

        with pytest.raises(ValidationError, match="Insufficient balance"):
            await service.buy("alice", "m2", Side.NO, 1000.0)

        after = await repo.load("alice")
        assert after == before

    async def test_unknown_market_without_id(self, service, live):
        with pytest.raises(ExternalSourceError):
            await service.buy("alice", None, Side.YES, 10.0, slug="nope")

    async def test_unreachable_market_cannot_open_position(self, service, live):
        live.failing.add("m1")
        with pytest.raises(PriceUnavailableError):
            await service.buy("alice", "m1", Side.YES, 10.0)

    async def test_unreachable_market_adds_at_entry_price(self, service, live):
        await service.buy("alice", "m1", Side.YES, 40.0)
        live.failing.add("m1")
        trade = await service.buy("alice", "m1", Side.YES, 20.0)
        assert trade.price == 0.40

    async def test_identifier_required(self, service):
        with pytest.raises(ValidationError):
            await service.buy("alice", None, Side.YES, 10.0)


class TestCloseReopen:
    async def test_close_and_reopen_round_trip(self, service, live, make_snapshot):
        trade = await service.buy("alice", "m1", Side.YES, 100.0)
        before = await service.get_snapshot("alice")

        live.put(make_snapshot("m1", bid=0.70, ask=0.72))
        close = await service.close("alice", trade.position_id)
        closed = await service.get_snapshot("alice")

        assert close.total == pytest.approx(175.0)
        assert closed.positions[0].closed
        assert closed.realized_pnl == pytest.approx(75.0)

        refund = await service.reopen("alice", trade.position_id)
        after = await service.get_snapshot("alice")

        assert refund == pytest.approx(175.0)
        assert after.balance == pytest.approx(before.balance)
        assert after.trades == before.trades
        assert after.positions[0].model_dump() == before.positions[0].model_dump()

    async def test_close_survives_market_outage(self, service, live):
        trade = await service.buy("alice", "m1", Side.YES, 100.0)
        live.failing.add("m1")

        close = await service.close("alice", trade.position_id)
        assert close.price == pytest.approx(0.40)

    async def test_close_twice(self, service, live):
        trade = await service.buy("alice", "m1", Side.YES, 100.0)
        await service.close("alice", trade.position_id)
        with pytest.raises(ValidationError, match="already closed"):
            await service.close("alice", trade.position_id)

    async def test_close_unknown(self, service):
        with pytest.raises(ValidationError, match="not found"):
            await service.close("alice", "missing")

    async def test_notes_after_close(self, service, live):
        trade = await service.buy("alice", "m1", Side.YES, 100.0)
        await service.close("alice", trade.position_id)

        await service.update_thesis("alice", trade.position_id, "was right")
        position = await service.update_exit_notes("alice", trade.position_id, "sold early")

        assert position.exit_notes == "sold early"
        state = await service.get_snapshot("alice")
        assert state.positions[0].thesis == "was right"


class TestReset:
    async def test_reset(self, service, live):
        await service.buy("alice", "m1", Side.YES, 100.0)
        state = await service.reset("alice", 1000.0)

        assert state.balance == 1000.0
        assert state.positions == []
        assert (await service.get_snapshot("alice")).trades == []

    async def test_reset_rejects_zero(self, service):
        with pytest.raises(ValidationError):
            await service.reset("alice", 0)


class TestRefresh:
    async def test_refresh_marks_and_persists(self, service, repo, live, make_snapshot):
        await service.buy("alice", "m1", Side.YES, 100.0)
        await service.buy("alice", "m2", Side.NO, 40.0)
        version = (await repo.load("alice")).version
        live.put(make_snapshot("m1", bid=0.50, ask=0.52))
        live.failing.add("m2")

        state = await service.refresh_prices("alice")

        m1 = next(p for p in state.positions if p.market_id == "m1")
        m2 = next(p for p in state.positions if p.market_id == "m2")
        assert m1.current_price == 0.50
        assert m1.pnl == pytest.approx(25.0)
        assert m2.current_price == pytest.approx(0.42)
        stored = await repo.load("alice")
        assert stored.version == version
        assert stored.find_position(m1.id).current_price == 0.50

    async def test_refresh_does_not_lose_concurrent_trade(self, service, repo, live):
        await service.buy("alice", "m1", Side.YES, 100.0)

        await asyncio.gather(
            service.refresh_prices("alice"),
            service.buy("alice", "m2", Side.YES, 60.0),
        )

        stored = await repo.load("alice")
        assert len(stored.trades) == 2
        assert stored.balance == pytest.approx(340.0)

    async def test_concurrent_mutations_are_serialized(self, service, repo, live):
        await asyncio.gather(
            *(service.buy("alice", "m1", Side.YES, 10.0) for _ in range(5))
        )
        stored = await repo.load("alice")
        assert len(stored.trades) == 5
        assert stored.balance == pytest.approx(450.0)


class TestStats:
    async def test_stats(self, service, live):
        trade = await service.buy("alice", "m1", Side.YES, 100.0)
        await service.close("alice", trade.position_id)

        stats = await service.stats("alice")
        assert stats.total_trades == 2
        assert stats.losing_positions == 1
        assert stats.largest_loss == pytest.approx(-5.0)
