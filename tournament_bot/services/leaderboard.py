"""
Lifetime leaderboard service.

Ranks users by their cross-tournament record. Only users who have taken part
in at least one tournament are listed.
"""

from typing import Callable, Dict, Iterable, List, Optional
import logging

from sqlalchemy import select, or_

from tournament_bot.config import Config
from tournament_bot.constants import LeaderboardConstants
from tournament_bot.data_models.tournament import LeaderboardEntry
from tournament_bot.database.models import User
from tournament_bot.services.base import BaseService

logger = logging.getLogger(__name__)


# Primary sort value per key; ties fall back to tournament wins, then Aura delta
SORT_FIELDS: Dict[str, Callable[[User], float]] = {
    "wins": lambda u: u.tournament_wins,
    "gained": lambda u: u.aura_gained_tournaments,
    "delta": lambda u: u.aura_delta,
    "totalWins": lambda u: u.total_wins,
    "winLossRatio": lambda u: u.win_loss_ratio,
}


class LeaderboardService(BaseService):
    """Service for lifetime tournament leaderboards."""

    def __init__(self, session_factory, limit: Optional[int] = None):
        super().__init__(session_factory)
        self.limit = limit or Config.LEADERBOARD_LIMIT

    @staticmethod
    def validate_sort_by(sort_by: str) -> bool:
        return sort_by in LeaderboardConstants.SORT_KEYS

    async def get_leaderboard(
        self,
        sort_by: str = LeaderboardConstants.DEFAULT_SORT,
        server_id: Optional[int] = None,
        specific_user_ids: Optional[Iterable[int]] = None
    ) -> List[LeaderboardEntry]:
        """
        Get the top users for ``sort_by``.

        Args:
            sort_by: One of wins, gained, delta, totalWins, winLossRatio
            server_id: Only users who finished a tournament on this server
            specific_user_ids: Only these Discord users

        Returns:
            Up to ``limit`` entries, rank 1 first
        """
        if not self.validate_sort_by(sort_by):
            raise ValueError(f"Invalid sort_by value: {sort_by}")

        query = select(User).where(or_(
            User.tournament_participations > 0,
            User.aura_spent_tournaments > 0,
            User.aura_gained_tournaments > 0,
        ))
        if specific_user_ids is not None:
            ids = list(specific_user_ids)
            if not ids:
                return []
            query = query.where(User.discord_id.in_(ids))

        async with self.get_session() as session:
            result = await session.execute(query)
            users = list(result.scalars().all())

        if server_id is not None:
            users = [u for u in users if server_id in (u.played_on_servers or [])]

        primary = SORT_FIELDS[sort_by]
        users.sort(key=lambda u: (-primary(u), -u.tournament_wins, -u.aura_delta, u.discord_id))

        entries = [
            LeaderboardEntry(
                rank=rank,
                discord_id=user.discord_id,
                username=user.username,
                rank_tier=user.rank,
                elo=user.elo,
                tournament_wins=user.tournament_wins,
                aura_gained=user.aura_gained_tournaments,
                aura_spent=user.aura_spent_tournaments,
                aura_delta=user.aura_delta,
                total_wins=user.total_wins,
                total_losses=user.total_losses,
                win_loss_ratio=user.win_loss_ratio,
            )
            for rank, user in enumerate(users[:self.limit], start=1)
        ]
        logger.debug(f"Leaderboard by {sort_by}: {len(entries)} of {len(users)} users (server {server_id})")
        return entries
