"""
User Operations Module

Lifetime Aura records for Discord users. Users are created lazily the first
time they touch a tournament and are never deleted. Every change to a user's
Aura balance goes through ``update_rank_peak_low`` so the peak, lowest and
rank tier always agree with the balance.
"""

from typing import Optional
from contextlib import asynccontextmanager
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tournament_bot.config import Config
from tournament_bot.database.models import User
from tournament_bot.utils.logger import setup_logger
from tournament_bot.utils.rank_tiers import RankTiers
from tournament_bot.utils.tournament_exceptions import InsufficientBalance, NotFound

logger = setup_logger(__name__)


def username_from_tag(discord_tag: str) -> str:
    """Strip a legacy ``#1234`` discriminator from a Discord tag."""
    if discord_tag and '#' in discord_tag:
        return discord_tag[:discord_tag.rindex('#')]
    return discord_tag


class UserOperations:
    """Business logic for lifetime user records and Aura balance changes."""

    def __init__(self, database):
        """Initialize with database instance"""
        self.db = database
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        """
        Provides a session context. Uses the provided session if available,
        otherwise creates and manages a new session.
        """
        if session:
            yield session
        else:
            async with self.db.transaction() as new_session:
                yield new_session

    async def get_or_create_user(self, discord_id: int, discord_tag: str,
                                 session: Optional[AsyncSession] = None) -> User:
        """
        Get the user for ``discord_id``, creating it with starting Aura if needed.

        A changed username is refreshed on the existing record.
        """
        async with self._get_session_context(session) as s:
            result = await s.execute(select(User).where(User.discord_id == discord_id))
            user = result.scalar_one_or_none()
            username = username_from_tag(discord_tag) or str(discord_id)

            if user:
                if discord_tag and user.username != username:
                    self.logger.debug(f"Updating username for {discord_id}: '{user.username}' -> '{username}'")
                    user.username = username
                return user

            user = User(
                discord_id=discord_id,
                username=username,
                elo=Config.STARTING_AURA,
                rank=RankTiers.find_rank(Config.STARTING_AURA),
                peak_elo=Config.STARTING_AURA,
                lowest_elo=Config.STARTING_AURA,
                aura_gained_tournaments=0,
                aura_spent_tournaments=0,
                tournament_wins=0,
                tournament_participations=0,
                total_wins=0,
                total_losses=0,
                played_on_servers=[],
            )
            s.add(user)
            await s.flush()
            self.logger.info(f"Created user {discord_id} ({username}) with {Config.STARTING_AURA} Aura")
            return user

    async def get_user(self, discord_id: int, session: Optional[AsyncSession] = None) -> User:
        async with self._get_session_context(session) as s:
            result = await s.execute(select(User).where(User.discord_id == discord_id))
            user = result.scalar_one_or_none()
            if not user:
                raise NotFound("User", discord_id)
            return user

    @staticmethod
    def update_rank_peak_low(user: User, new_value: int) -> None:
        """Set the Aura balance and recompute peak, lowest and rank tier."""
        user.elo = new_value
        user.peak_elo = max(user.peak_elo if user.peak_elo is not None else new_value, new_value)
        user.lowest_elo = min(user.lowest_elo if user.lowest_elo is not None else new_value, new_value)
        user.rank = RankTiers.find_rank(new_value)

    def charge_stake(self, user: User, amount: int) -> None:
        """Deduct a tournament entry stake."""
        if amount <= 0:
            return
        if user.elo < amount:
            raise InsufficientBalance(amount, user.elo)
        self.update_rank_peak_low(user, user.elo - amount)
        user.aura_spent_tournaments = (user.aura_spent_tournaments or 0) + amount

    def refund_stake(self, user: User, amount: int) -> None:
        """Return a tournament entry stake."""
        if amount <= 0:
            return
        self.update_rank_peak_low(user, user.elo + amount)
        user.aura_spent_tournaments = max(0, (user.aura_spent_tournaments or 0) - amount)

    def credit_prize(self, user: User, amount: int) -> None:
        """Pay out tournament winnings."""
        if amount <= 0:
            return
        self.update_rank_peak_low(user, user.elo + amount)
        user.aura_gained_tournaments = (user.aura_gained_tournaments or 0) + amount
