"""Error taxonomy for the portfolio core.

Validation errors mean the caller asked for something the ledger cannot do
and nothing was mutated.  Consistency errors mean the ledger itself is broken
and must never be masked as bad user input.
"""


class PortfolioError(Exception):
    """Base class for all paper-journal errors."""


class ValidationError(PortfolioError):
    """A trade request was rejected before any mutation took place."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class PriceUnavailableError(PortfolioError):
    """No price source yielded a value and no fallback was supplied."""


class ExternalSourceError(PortfolioError):
    """The market-data collaborator failed (network, timeout, bad payload)."""


class MarketNotFoundError(ExternalSourceError):
    """The market-data collaborator has no market for the given slug or id."""


class ConsistencyError(PortfolioError):
    """A ledger invariant was found broken (e.g. an open position with no shares)."""


class StaleStateError(PortfolioError):
    """The stored portfolio changed since it was loaded (optimistic version conflict)."""
