"""
Match Operations Module

Validates and records a single reported result. A report either fully applies
(snapshot, score deltas, record counters, opponent sets, reported flag) or
raises before anything is written.
"""

from typing import Optional
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import AsyncSession

from tournament_bot.database.models import Tournament, TournamentMatch, TournamentStatus
from tournament_bot.operations.stats_ledger import StatsLedger
from tournament_bot.utils.logger import setup_logger
from tournament_bot.utils.tournament_exceptions import (
    AlreadyReported, InvalidState, MalformedDraw, NotFound, Unauthorized
)

logger = setup_logger(__name__)


def normalize_match_id(match_id) -> str:
    """Accept ``7``, ``"7"`` or ``"007"`` for the third match."""
    text = str(match_id).strip()
    return text.zfill(3) if text.isdigit() else text


class MatchOperations:
    """Record match results for active tournaments."""

    def __init__(self, database):
        self.db = database
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        if session:
            yield session
        else:
            async with self.db.transaction() as new_session:
                yield new_session

    async def report_match(
        self,
        tournament_id: str,
        match_id,
        winner_id: int,
        reporter_id: int,
        draw_with: Optional[int] = None,
        session: Optional[AsyncSession] = None
    ) -> TournamentMatch:
        """
        Record the result of one match.

        Args:
            tournament_id: Tournament identifier
            match_id: Human-readable match id ("001")
            winner_id: Declared winner, or one side of a draw
            reporter_id: User submitting the result
            draw_with: Other side of a draw; None for a decisive result

        Returns:
            TournamentMatch: The updated match

        Raises:
            NotFound: Tournament or match does not exist
            InvalidState: Tournament not active, bye match, top-cut draw or winner not in match
            AlreadyReported: Match already has a result
            Unauthorized: Reporter is neither a player in the match nor the organizer
            MalformedDraw: Draw does not name exactly the two players
        """
        match_id = normalize_match_id(match_id)

        async with self._get_session_context(session) as s:
            tournament = await self.db.get_tournament(s, tournament_id)
            if not tournament:
                raise NotFound("Tournament", tournament_id)
            if tournament.status != TournamentStatus.ACTIVE:
                raise InvalidState(
                    f"Tournament {tournament.tournament_id} is {tournament.status.value}, results can only be reported while active"
                )

            match = await self.db.get_match(s, tournament, match_id, for_update=True)
            if not match:
                raise NotFound("Match", match_id)
            if match.is_bye:
                raise InvalidState(f"Match {match_id} is a bye and needs no report")
            if match.reported:
                raise AlreadyReported(match_id)
            if not match.involves(reporter_id) and reporter_id != tournament.organizer_id:
                raise Unauthorized(f"report match {match_id}")

            if draw_with is not None:
                if {winner_id, draw_with} != {match.player1_id, match.player2_id}:
                    raise MalformedDraw(match_id)
                if match.is_top_cut:
                    raise InvalidState(f"Match {match_id} is a top cut match and cannot end in a draw")
            elif not match.involves(winner_id):
                raise InvalidState(f"User {winner_id} is not a player in match {match_id}")

            await self.apply_result(s, tournament, match, winner_id, is_draw=draw_with is not None)

            if draw_with is not None:
                self.logger.info(f"Match {tournament.tournament_id}/{match_id} reported as a draw by {reporter_id}")
            else:
                self.logger.info(f"Match {tournament.tournament_id}/{match_id} won by {winner_id} (reported by {reporter_id})")
            return match

    async def apply_result(self, session: AsyncSession, tournament: Tournament, match: TournamentMatch,
                            winner_id: Optional[int], is_draw: bool) -> None:
        """Snapshot both players, then apply the result. Shared with drop handling."""
        player1 = await self.db.get_player_stats(session, tournament, match.player1_id)
        player2 = await self.db.get_player_stats(session, tournament, match.player2_id)
        if not player1 or not player2:
            raise NotFound("Player stats", f"{match.player1_id}/{match.player2_id}")

        match.player1_snapshot = StatsLedger.snapshot(player1)
        match.player2_snapshot = StatsLedger.snapshot(player2)

        if is_draw:
            StatsLedger.record_draw(player1, match.match_id)
            StatsLedger.record_draw(player2, match.match_id)
            match.winner_id = None
        else:
            winner, loser = (player1, player2) if winner_id == match.player1_id else (player2, player1)
            StatsLedger.record_win(winner, match.match_id)
            StatsLedger.record_loss(loser, match.match_id)
            match.winner_id = winner.user_id

        if not match.is_top_cut:
            scope = tournament.scope_for_round(match.round_number)
            StatsLedger.add_opponent(player1, player2.user_id, scope)
            StatsLedger.add_opponent(player2, player1.user_id, scope)

        match.is_draw = is_draw
        match.reported = True
