"""
Finalization Operations Module

Runs exactly once per tournament at the active -> finished transition:

- splits the prize pool by final rank and credits it to the players' Aura
- adds lifetime participation, win/loss totals and the hosting server
- writes the final standings snapshot onto the tournament
- deletes the tournament's Match and PlayerStats rows

Everything happens inside the caller's transaction, so a failure part way
through leaves no prize paid and no row deleted.
"""

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Dict, List, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from tournament_bot.database.models import PlayerStats, PrizeMode, Tournament, TournamentPhase, TournamentStatus
from tournament_bot.operations.stats_ledger import StatsLedger
from tournament_bot.operations.user_operations import UserOperations
from tournament_bot.utils.logger import setup_logger
from tournament_bot.utils.prizes import PrizeCalculator
from tournament_bot.utils.tournament_exceptions import InvalidState

logger = setup_logger(__name__)


class FinalizationOperations:
    """Prize distribution and lifetime stat aggregation for finished tournaments."""

    def __init__(self, database, user_operations: UserOperations, prize_calculator: PrizeCalculator = None):
        self.db = database
        self.users = user_operations
        self.prizes = prize_calculator or PrizeCalculator()
        self.logger = logger

    async def finalize(self, session: AsyncSession, tournament: Tournament,
                       ranked_stats: Sequence[PlayerStats]) -> Dict[int, int]:
        """
        Finish ``tournament`` with players in final-rank order.

        Args:
            session: Transaction session shared with the caller
            tournament: Active tournament being finished
            ranked_stats: Every PlayerStats row, rank 1 first

        Returns:
            Mapping of user id to Aura prize paid
        """
        if tournament.status != TournamentStatus.ACTIVE:
            raise InvalidState(
                f"Tournament {tournament.tournament_id} is {tournament.status.value} and cannot be finalized"
            )

        ranked: List[PlayerStats] = list(ranked_stats)
        pool = tournament.aura_cost * len(ranked)
        prize_mode = tournament.prize_mode.value if isinstance(tournament.prize_mode, PrizeMode) else tournament.prize_mode
        payouts = self.prizes.distribute(pool, [s.user_id for s in ranked], prize_mode, tournament.bracket_size)

        standings = []
        for rank, stats in enumerate(ranked, start=1):
            stats.final_rank = rank
            if rank == 1 and tournament.bracket_size:
                stats.elimination_stage = "Winner"

            user = await self.users.get_or_create_user(stats.user_id, stats.discord_tag, session=session)
            self.users.credit_prize(user, payouts.get(stats.user_id, 0))
            user.tournament_participations += 1
            user.total_wins += stats.wins
            user.total_losses += stats.losses
            servers = list(user.played_on_servers or [])
            if tournament.server_id not in servers:
                user.played_on_servers = servers + [tournament.server_id]
            if rank == 1:
                user.tournament_wins += 1

            standings.append(asdict(StatsLedger.to_standing_row(stats, rank, payouts.get(stats.user_id, 0))))

        tournament.standings = standings
        tournament.status = TournamentStatus.FINISHED
        tournament.phase = TournamentPhase.FINISHED
        tournament.finished_at = datetime.now(timezone.utc)

        await self.db.delete_tournament_records(session, tournament)

        winner = ranked[0].user_id if ranked else None
        self.logger.info(
            f"Tournament {tournament.tournament_id} finished: winner {winner}, pool {pool}, "
            f"{len(payouts)} prize(s) paid"
        )
        return payouts
