"""Data access layer using SQLModel — whole-aggregate load/save with optimistic versioning."""

import logging
from datetime import UTC, datetime

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from paper_journal.db.models import PortfolioRecord, PositionRecord, TradeRecord
from paper_journal.domain.errors import StaleStateError
from paper_journal.domain.models import PortfolioState, Position, Side, Trade, TradeAction

logger = logging.getLogger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo; everything is stored in UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _position_to_record(user_id: str, seq: int, p: Position) -> PositionRecord:
    return PositionRecord(
        id=p.id,
        user_id=user_id,
        seq=seq,
        market_id=p.market_id,
        market_question=p.market_question,
        market_slug=p.market_slug,
        side=p.side.value,
        shares=p.shares,
        avg_price=p.avg_price,
        cost=p.cost,
        current_price=p.current_price,
        thesis=p.thesis,
        exit_notes=p.exit_notes,
        opened_at=p.opened_at,
        closed=p.closed,
        closed_at=p.closed_at,
        exit_price=p.exit_price,
        close_trade_id=p.close_trade_id,
    )


def _record_to_position(row: PositionRecord) -> Position:
    return Position(
        id=row.id,
        market_id=row.market_id,
        market_question=row.market_question,
        market_slug=row.market_slug,
        side=Side(row.side),
        shares=row.shares,
        avg_price=row.avg_price,
        cost=row.cost,
        current_price=row.current_price,
        thesis=row.thesis,
        exit_notes=row.exit_notes,
        opened_at=_as_utc(row.opened_at),
        closed=row.closed,
        closed_at=_as_utc(row.closed_at),
        exit_price=row.exit_price,
        close_trade_id=row.close_trade_id,
    )


def _trade_to_record(user_id: str, seq: int, t: Trade) -> TradeRecord:
    return TradeRecord(
        id=t.id,
        user_id=user_id,
        seq=seq,
        position_id=t.position_id,
        market_id=t.market_id,
        market_question=t.market_question,
        side=t.side.value,
        action=t.action.value,
        shares=t.shares,
        price=t.price,
        total=t.total,
        timestamp=t.timestamp,
        thesis=t.thesis,
    )


def _record_to_trade(row: TradeRecord) -> Trade:
    return Trade(
        id=row.id,
        position_id=row.position_id,
        market_id=row.market_id,
        market_question=row.market_question,
        side=Side(row.side),
        action=TradeAction(row.action),
        shares=row.shares,
        price=row.price,
        total=row.total,
        timestamp=_as_utc(row.timestamp),
        thesis=row.thesis,
    )


class Repository:
    """SQLModel-based repository implementing the PortfolioRepository protocol."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def load(self, user_id: str) -> PortfolioState | None:
        async with AsyncSession(self._engine) as session:
            record = await session.get(PortfolioRecord, user_id)
            if record is None:
                return None

            positions = await session.exec(
                select(PositionRecord)
                .where(PositionRecord.user_id == user_id)
                .order_by(PositionRecord.seq)  # type: ignore[arg-type]
            )
            trades = await session.exec(
                select(TradeRecord)
                .where(TradeRecord.user_id == user_id)
                .order_by(TradeRecord.seq)  # type: ignore[arg-type]
            )
            return PortfolioState(
                user_id=record.user_id,
                balance=record.balance,
                initial_balance=record.initial_balance,
                positions=[_record_to_position(row) for row in positions.all()],
                trades=[_record_to_trade(row) for row in trades.all()],
                version=record.version,
                created_at=_as_utc(record.created_at),
                updated_at=_as_utc(record.updated_at),
            )

    async def get_or_create(self, user_id: str, initial_balance: float) -> PortfolioState:
        state = await self.load(user_id)
        if state is not None:
            return state
        logger.info("Creating portfolio for %s with $%.2f", user_id, initial_balance)
        fresh = PortfolioState(
            user_id=user_id, balance=initial_balance, initial_balance=initial_balance
        )
        return await self.save(user_id, fresh)

    async def save(self, user_id: str, state: PortfolioState) -> PortfolioState:
        """Write the whole aggregate if nobody else saved since it was loaded.

        The version check and bump happen in one conditional ``UPDATE`` (or the
        first ``INSERT``), so two writers holding the same version can't both win.

        Returns:
            A copy of ``state`` carrying the new version.

        Raises:
            StaleStateError: If the stored version differs from ``state.version``.
        """
        now = datetime.now(UTC)
        new_version = state.version + 1
        async with AsyncSession(self._engine) as session:
            if state.version == 0:
                session.add(
                    PortfolioRecord(
                        user_id=user_id,
                        balance=state.balance,
                        initial_balance=state.initial_balance,
                        version=new_version,
                        created_at=state.created_at,
                        updated_at=now,
                    )
                )
                try:
                    await session.flush()
                except IntegrityError as e:
                    raise self._conflict(user_id, state.version) from e
            else:
                result = await session.exec(
                    update(PortfolioRecord)  # type: ignore[call-overload]
                    .where(PortfolioRecord.user_id == user_id)
                    .where(PortfolioRecord.version == state.version)
                    .values(
                        balance=state.balance,
                        initial_balance=state.initial_balance,
                        version=new_version,
                        updated_at=now,
                    )
                )
                if result.rowcount == 0:
                    raise self._conflict(user_id, state.version)

            await session.exec(
                delete(PositionRecord).where(PositionRecord.user_id == user_id)  # type: ignore[call-overload]
            )
            await session.exec(
                delete(TradeRecord).where(TradeRecord.user_id == user_id)  # type: ignore[call-overload]
            )

            for seq, position in enumerate(state.positions):
                session.add(_position_to_record(user_id, seq, position))
            for seq, trade in enumerate(state.trades):
                session.add(_trade_to_record(user_id, seq, trade))
            await session.commit()

        return state.model_copy(update={"version": new_version, "updated_at": now})

    @staticmethod
    def _conflict(user_id: str, expected: int) -> StaleStateError:
        logger.warning("Version conflict saving portfolio %s: loaded=%d", user_id, expected)
        return StaleStateError(
            f"Portfolio {user_id} was modified concurrently (expected version {expected})"
        )

    async def update_marks(self, user_id: str, prices: dict[str, float]) -> int:
        """Store refreshed prices for open positions without bumping the version.

        Only ``current_price`` is written, row by row, so a concurrent trade can
        never be overwritten by a price refresh; rows a trade just removed are skipped.
        """
        if not prices:
            return 0
        updated = 0
        async with self._engine.begin() as conn:
            for position_id, price in prices.items():
                result = await conn.execute(
                    update(PositionRecord)
                    .where(PositionRecord.user_id == user_id)
                    .where(PositionRecord.id == position_id)
                    .where(PositionRecord.closed == False)  # noqa: E712
                    .values(current_price=price)
                )
                updated += result.rowcount
        return updated

    async def close(self) -> None:
        await self._engine.dispose()
