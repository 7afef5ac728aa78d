"""Tests for the destructive portfolio reset."""

import pytest

from paper_journal.domain.errors import ValidationError
from paper_journal.domain.models import Side
from paper_journal.portfolio.account import PortfolioAccount
from paper_journal.portfolio.reset import ResetController


@pytest.fixture
def account(make_snapshot):
    acct = PortfolioAccount.create("alice", 500.0)
    buy = acct.buy(make_snapshot("m1", ask=0.40), Side.YES, 100.0)
    acct.buy(make_snapshot("m2", ask=0.20), Side.YES, 50.0)
    acct.close_position(buy.position_id, price=0.70)
    acct.state.version = 3
    return acct


class TestReset:
    def test_discards_everything(self, account):
        result = ResetController(account).reset(1000.0)

        state = result.state
        assert result is account
        assert state.positions == []
        assert state.trades == []
        assert state.balance == 1000.0
        assert state.initial_balance == 1000.0
        assert state.total_value == 1000.0
        assert state.total_pnl == 0.0
        assert state.realized_pnl == 0.0

    def test_keeps_owner_and_version(self, account):
        state = ResetController(account).reset(250.0).state
        assert state.user_id == "alice"
        assert state.version == 3

    @pytest.mark.parametrize("balance", [0.0, -10.0, float("nan")])
    def test_rejects_non_positive_balance(self, account, balance):
        before = account.snapshot()
        with pytest.raises(ValidationError):
            ResetController(account).reset(balance)
        assert account.state == before

    def test_account_shortcut(self, account):
        account.reset_balance(42.0)
        assert account.balance == 42.0
        assert account.stats().total_trades == 0
