"""SQLModel table definitions and database initialization."""

from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import Field, SQLModel


class PortfolioRecord(SQLModel, table=True):
    """One paper-trading account per user. ``version`` guards concurrent writers."""

    __tablename__ = "portfolios"

    user_id: str = Field(primary_key=True)
    balance: float
    initial_balance: float
    version: int = Field(default=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class PositionRecord(SQLModel, table=True):
    """An open or closed position. Value and P&L are derived, not stored."""

    __tablename__ = "positions"

    id: str = Field(primary_key=True)
    user_id: str = Field(index=True)
    seq: int
    market_id: str
    market_question: str = ""
    market_slug: str | None = None
    side: str  # 'YES' or 'NO'
    shares: float
    avg_price: float
    cost: float
    current_price: float
    thesis: str | None = None
    exit_notes: str | None = None
    opened_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    closed: bool = Field(default=False)
    closed_at: datetime | None = None
    exit_price: float | None = None
    close_trade_id: str | None = None


class TradeRecord(SQLModel, table=True):
    """Append-only trade log entry."""

    __tablename__ = "trades"

    id: str = Field(primary_key=True)
    user_id: str = Field(index=True)
    seq: int
    position_id: str | None = None
    market_id: str
    market_question: str = ""
    side: str  # 'YES' or 'NO'
    action: str  # 'BUY' or 'SELL'
    shares: float
    price: float
    total: float
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    thesis: str | None = None


async def init_db(db_path: str) -> AsyncEngine:
    """Create the async engine and ensure all tables exist.

    Uses SQLModel.metadata.create_all, which only creates missing tables;
    Alembic migrations in ``alembic/`` describe the same schema.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    return engine
