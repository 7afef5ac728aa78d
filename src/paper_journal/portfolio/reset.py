"""Destructive portfolio reset."""

import logging
import math

from paper_journal.domain.errors import ValidationError
from paper_journal.domain.models import PortfolioState
from paper_journal.portfolio.account import PortfolioAccount

logger = logging.getLogger(__name__)


class ResetController:
    """Reinitializes an account to a fresh balance, discarding positions and trades.

    Irreversible. Confirmation is the caller's job; the stored version is kept so
    the reset still goes through the repository's optimistic version check.
    """

    def __init__(self, account: PortfolioAccount) -> None:
        self._account = account

    def reset(self, new_initial_balance: float) -> PortfolioAccount:
        if not math.isfinite(new_initial_balance) or new_initial_balance <= 0:
            raise ValidationError(f"Balance must be positive, got {new_initial_balance}")

        old = self._account.state
        fresh = PortfolioState(
            user_id=old.user_id,
            balance=new_initial_balance,
            initial_balance=new_initial_balance,
            version=old.version,
        )
        self._account.replace_state(fresh)
        logger.warning(
            "Portfolio %s reset to $%.2f (discarded %d positions, %d trades)",
            old.user_id,
            new_initial_balance,
            len(old.positions),
            len(old.trades),
        )
        return self._account
