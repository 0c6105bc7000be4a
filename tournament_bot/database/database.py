from typing import Optional, List
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import select, delete, func
from contextlib import asynccontextmanager

from tournament_bot.config import Config
from tournament_bot.database.models import (
    Base, Tournament, TournamentMatch, PlayerStats, TournamentStatus
)
from tournament_bot.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url or Config.get_async_database_url()
        self.engine = None
        self.async_session = None

    @property
    def session_factory(self):
        return self.async_session

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        self.engine = create_async_engine(
            self.database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All writes made through the yielded session commit together on
        success, or roll back together when any exception escapes the block.

        Usage:
            async with db.transaction() as session:
                tournament = await self._load_tournament(session, tournament_id)
                await self.users.apply_aura(user, new_value, session=session)
                # Everything commits together here
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    # Tournament data access. These take the caller's session so they can be
    # composed inside one transaction.

    async def get_tournament(self, session: AsyncSession, tournament_id: str,
                             for_update: bool = False) -> Optional[Tournament]:
        # NOTE: SQLite ignores FOR UPDATE and relies on its database-level write
        # lock; the in-process tournament lock covers the read-modify-write there.
        query = select(Tournament).where(Tournament.tournament_id == tournament_id.upper())
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def tournament_id_exists(self, session: AsyncSession, tournament_id: str) -> bool:
        result = await session.execute(
            select(func.count(Tournament.id)).where(Tournament.tournament_id == tournament_id)
        )
        return result.scalar() > 0

    async def list_tournaments(self, session: AsyncSession, server_id: Optional[int] = None,
                               statuses: Optional[List[TournamentStatus]] = None) -> List[Tournament]:
        query = select(Tournament).order_by(Tournament.created_at.desc(), Tournament.id.desc())
        if server_id is not None:
            query = query.where(Tournament.server_id == server_id)
        if statuses:
            query = query.where(Tournament.status.in_(statuses))
        result = await session.execute(query)
        return list(result.scalars().all())

    async def get_all_player_stats(self, session: AsyncSession, tournament: Tournament) -> List[PlayerStats]:
        result = await session.execute(
            select(PlayerStats)
            .where(PlayerStats.tournament_pk == tournament.id)
            .order_by(PlayerStats.id)
        )
        return list(result.scalars().all())

    async def get_player_stats(self, session: AsyncSession, tournament: Tournament,
                               user_id: int) -> Optional[PlayerStats]:
        result = await session.execute(
            select(PlayerStats).where(
                PlayerStats.tournament_pk == tournament.id,
                PlayerStats.user_id == user_id
            )
        )
        return result.scalar_one_or_none()

    async def get_matches(self, session: AsyncSession, tournament: Tournament,
                          round_number: Optional[int] = None) -> List[TournamentMatch]:
        query = select(TournamentMatch).where(TournamentMatch.tournament_pk == tournament.id)
        if round_number is not None:
            query = query.where(TournamentMatch.round_number == round_number)
        result = await session.execute(query.order_by(TournamentMatch.round_number, TournamentMatch.id))
        return list(result.scalars().all())

    async def get_match(self, session: AsyncSession, tournament: Tournament,
                        match_id: str, for_update: bool = False) -> Optional[TournamentMatch]:
        query = select(TournamentMatch).where(
            TournamentMatch.tournament_pk == tournament.id,
            TournamentMatch.match_id == match_id
        )
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def count_matches(self, session: AsyncSession, tournament: Tournament) -> int:
        result = await session.execute(
            select(func.count(TournamentMatch.id)).where(TournamentMatch.tournament_pk == tournament.id)
        )
        return result.scalar() or 0

    async def delete_matches_after_round(self, session: AsyncSession, tournament: Tournament,
                                         round_number: int) -> int:
        result = await session.execute(
            delete(TournamentMatch).where(
                TournamentMatch.tournament_pk == tournament.id,
                TournamentMatch.round_number > round_number
            )
        )
        return result.rowcount

    async def delete_tournament_records(self, session: AsyncSession, tournament: Tournament) -> None:
        """Remove every Match and PlayerStats row owned by a tournament."""
        await session.execute(delete(TournamentMatch).where(TournamentMatch.tournament_pk == tournament.id))
        await session.execute(delete(PlayerStats).where(PlayerStats.tournament_pk == tournament.id))

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
