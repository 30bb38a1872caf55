"""
SQL Card Store: Infrastructure adapter backed by SQLAlchemy's asyncio engine.

SQLite through aiosqlite is the default backend. Datetimes are stored as
naive UTC and returned timezone-aware. Scheduling saves use a conditional
UPDATE on the row version, so two concurrent reviews of one card cannot
both commit.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    func,
    select,
    text,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from mnemo.domain.errors import (
    CardNotFound,
    PersistenceFailure,
    StaleCardState,
    ValidationFailed,
)
from mnemo.domain.models import Card, CardKind, CardSchedulingState, Deck
from mnemo.domain.ports import CardStore

logger = logging.getLogger(__name__)

Base = declarative_base()


class UtcDateTime(TypeDecorator):
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to the card store")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class CardRow(Base):
    __tablename__ = "cards"
    __table_args__ = (
        Index("ix_cards_owner_due", "owner_id", "next_review_date"),
        Index("ix_cards_deck_due", "deck_id", "next_review_date"),
    )

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, nullable=False, unique=True)
    owner_id = Column(String, nullable=False)
    deck_id = Column(String, nullable=True)
    front = Column(Text, nullable=False)
    back = Column(Text, nullable=False)
    kind = Column(String, nullable=False, default=CardKind.WORD.value)
    tags = Column(JSON, nullable=False, default=list)
    ease_factor = Column(Float, nullable=False)
    interval = Column(Integer, nullable=False)
    repetitions = Column(Integer, nullable=False)
    next_review_date = Column(UtcDateTime, nullable=False)
    created_at = Column(UtcDateTime, nullable=False)
    version = Column(Integer, nullable=False, default=0)


class DeckRow(Base):
    __tablename__ = "decks"
    __table_args__ = (
        Index("ix_decks_owner_name", "owner_id", "name"),
        # At most one default deck per learner
        Index(
            "uq_decks_owner_default",
            "owner_id",
            unique=True,
            sqlite_where=text("is_default = 1"),
            postgresql_where=text("is_default"),
        ),
    )

    id = Column(String, primary_key=True)
    owner_id = Column(String, nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=False, default="")
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(UtcDateTime, nullable=False)


def build_async_url(db_url: str) -> str:
    """Point plain sqlite URLs at the aiosqlite driver."""
    if db_url.startswith("sqlite://"):
        return db_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return db_url


def _ensure_sqlite_dirs(url: str) -> None:
    if not url.startswith("sqlite+aiosqlite:///") or url.endswith(":memory:"):
        return
    path = url.replace("sqlite+aiosqlite:///", "", 1)
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def create_async_engine_and_session(
    db_url: str,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    db_url = build_async_url(db_url)
    _ensure_sqlite_dirs(db_url)
    kwargs: dict = {}
    if db_url in ("sqlite+aiosqlite://", "sqlite+aiosqlite:///:memory:"):
        # One shared connection, or every session would see its own empty database
        kwargs["poolclass"] = StaticPool
    engine = create_async_engine(db_url, echo=False, **kwargs)
    session_local = async_sessionmaker(
        bind=engine, autoflush=False, autocommit=False, expire_on_commit=False
    )
    return engine, session_local


class SqlCardStore(CardStore):
    def __init__(self, db_url: str):
        self.db_url = db_url
        self._engine, self._session_local = create_async_engine_and_session(db_url)
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()

    async def init_models(self) -> None:
        async with self._schema_lock:
            if self._schema_ready:
                return
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._schema_ready = True

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        session = self._session_local()
        try:
            await self.init_models()
            yield session
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Card store failure on {self._engine.url}: {e}")
            raise PersistenceFailure() from e
        finally:
            await session.close()

    async def get_card(self, card_id: str, owner_id: str) -> Card | None:
        async with self._session() as session:
            row = (
                await session.execute(
                    select(CardRow).where(CardRow.id == card_id, CardRow.owner_id == owner_id)
                )
            ).scalar_one_or_none()
            return _row_to_card(row) if row else None

    async def find_due(
        self,
        owner_id: str,
        now: datetime,
        deck_id: str | None = None,
        limit: int | None = None,
    ) -> list[Card]:
        stmt = (
            select(CardRow)
            .where(*_due_filter(owner_id, now, deck_id))
            .order_by(CardRow.next_review_date.asc(), CardRow.seq.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session() as session:
            return [_row_to_card(r) for r in (await session.execute(stmt)).scalars()]

    async def count_due(self, owner_id: str, now: datetime, deck_id: str | None = None) -> int:
        stmt = select(func.count()).select_from(CardRow).where(*_due_filter(owner_id, now, deck_id))
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def save_scheduling(self, card: Card, expected_version: int) -> Card:
        state = card.scheduling
        stmt = (
            update(CardRow)
            .where(
                CardRow.id == card.id,
                CardRow.owner_id == card.owner_id,
                CardRow.version == expected_version,
            )
            .values(
                ease_factor=state.ease_factor,
                interval=state.interval,
                repetitions=state.repetitions,
                next_review_date=state.next_review_date,
                version=CardRow.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            if result.rowcount != 1:
                await session.rollback()
                exists = (
                    await session.execute(
                        select(CardRow.seq).where(
                            CardRow.id == card.id, CardRow.owner_id == card.owner_id
                        )
                    )
                ).scalar_one_or_none()
                if exists is None:
                    raise CardNotFound()
                raise StaleCardState()
            await session.commit()
            row = (
                await session.execute(select(CardRow).where(CardRow.id == card.id))
            ).scalar_one()
            return _row_to_card(row)

    async def add_card(self, card: Card) -> Card:
        [stored] = await self.add_cards([card])
        return stored

    async def add_cards(self, cards: list[Card]) -> list[Card]:
        rows = [_card_to_row(c) for c in cards]
        async with self._session() as session:
            session.add_all(rows)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ValidationFailed("Card id already exists") from e
            return [_row_to_card(r) for r in rows]

    async def list_cards(self, owner_id: str, deck_id: str | None = None) -> list[Card]:
        stmt = select(CardRow).where(*_owner_filter(owner_id, deck_id)).order_by(CardRow.seq)
        async with self._session() as session:
            return [_row_to_card(r) for r in (await session.execute(stmt)).scalars()]

    async def count_cards(self, owner_id: str, deck_id: str | None = None) -> int:
        stmt = select(func.count()).select_from(CardRow).where(*_owner_filter(owner_id, deck_id))
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def get_deck(self, deck_id: str, owner_id: str) -> Deck | None:
        async with self._session() as session:
            row = (
                await session.execute(
                    select(DeckRow).where(DeckRow.id == deck_id, DeckRow.owner_id == owner_id)
                )
            ).scalar_one_or_none()
            return _row_to_deck(row) if row else None

    async def add_deck(self, deck: Deck) -> Deck:
        row = DeckRow(
            id=deck.id,
            owner_id=deck.owner_id,
            name=deck.name,
            description=deck.description,
            is_default=deck.is_default,
            created_at=deck.created_at,
        )
        async with self._session() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                if deck.is_default:
                    raise ValidationFailed(
                        f"Learner {deck.owner_id} already has a default deck"
                    ) from e
                raise ValidationFailed(f"Deck {deck.id} already exists") from e
            return _row_to_deck(row)

    async def list_decks(self, owner_id: str) -> list[Deck]:
        stmt = select(DeckRow).where(DeckRow.owner_id == owner_id).order_by(DeckRow.name)
        async with self._session() as session:
            return [_row_to_deck(r) for r in (await session.execute(stmt)).scalars()]

    async def get_default_deck(self, owner_id: str) -> Deck | None:
        async with self._session() as session:
            row = (
                await session.execute(
                    select(DeckRow).where(
                        DeckRow.owner_id == owner_id, DeckRow.is_default.is_(True)
                    )
                )
            ).scalar_one_or_none()
            return _row_to_deck(row) if row else None

    async def close(self) -> None:
        await self._engine.dispose()


def _owner_filter(owner_id: str, deck_id: str | None) -> list:
    clauses = [CardRow.owner_id == owner_id]
    if deck_id is not None:
        clauses.append(CardRow.deck_id == deck_id)
    return clauses


def _due_filter(owner_id: str, now: datetime, deck_id: str | None) -> list:
    return [*_owner_filter(owner_id, deck_id), CardRow.next_review_date <= now]


def _card_to_row(card: Card) -> CardRow:
    state = card.scheduling
    return CardRow(
        id=card.id,
        owner_id=card.owner_id,
        deck_id=card.deck_id,
        front=card.front,
        back=card.back,
        kind=card.kind.value,
        tags=list(card.tags),
        ease_factor=state.ease_factor,
        interval=state.interval,
        repetitions=state.repetitions,
        next_review_date=state.next_review_date,
        created_at=card.created_at,
        version=0,
    )


def _row_to_card(row: CardRow) -> Card:
    return Card(
        id=row.id,
        owner_id=row.owner_id,
        deck_id=row.deck_id,
        front=row.front,
        back=row.back,
        kind=CardKind(row.kind),
        tags=list(row.tags or []),
        scheduling=CardSchedulingState(
            ease_factor=row.ease_factor,
            interval=row.interval,
            repetitions=row.repetitions,
            next_review_date=row.next_review_date,
        ),
        created_at=row.created_at,
        seq=row.seq,
        version=row.version,
    )


def _row_to_deck(row: DeckRow) -> Deck:
    return Deck(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        description=row.description,
        is_default=row.is_default,
        created_at=row.created_at,
    )
