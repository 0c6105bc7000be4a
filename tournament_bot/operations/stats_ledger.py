"""
Stats ledger for per-tournament PlayerStats rows.

All score and record changes go through these helpers so that the
``wins + losses + draws == len(matches_played)`` invariant holds and every
change can be captured in a snapshot and put back exactly by a round reset.
List-valued columns are always replaced with new lists, never mutated in place.
"""

from typing import Any, Dict, Optional

from tournament_bot.constants import ScoringConstants
from tournament_bot.data_models.tournament import PairingCandidate, PlayerRecord, StandingRow
from tournament_bot.database.models import PlayerStats


SNAPSHOT_FIELDS = (
    'score', 'wins', 'losses', 'draws', 'byes', 'received_bye_in_round',
    'matches_played', 'opponents', 'opponents_phase1', 'opponents_phase2',
)


class StatsLedger:
    """Applies match results to PlayerStats rows."""

    @staticmethod
    def new_stats(tournament_pk: int, user_id: int, discord_tag: str) -> PlayerStats:
        return PlayerStats(
            tournament_pk=tournament_pk,
            user_id=user_id,
            discord_tag=discord_tag,
            score=0, wins=0, losses=0, draws=0, byes=0,
            matches_played=[],
            opponents=[], opponents_phase1=[], opponents_phase2=[],
            owp=0.0, oowp=0.0,
            tiebreakers_frozen=False,
            received_bye_in_round=0,
            active=True,
            dropped=False,
        )

    @staticmethod
    def snapshot(stats: PlayerStats) -> Dict[str, Any]:
        data = {}
        for name in SNAPSHOT_FIELDS:
            value = getattr(stats, name)
            data[name] = list(value) if isinstance(value, list) else value
        return data

    @staticmethod
    def restore(stats: PlayerStats, snapshot: Dict[str, Any]) -> None:
        for name in SNAPSHOT_FIELDS:
            value = snapshot[name]
            setattr(stats, name, list(value) if isinstance(value, list) else value)

    @staticmethod
    def _add_match(stats: PlayerStats, match_id: str) -> None:
        stats.matches_played = list(stats.matches_played or []) + [match_id]

    @staticmethod
    def add_opponent(stats: PlayerStats, opponent_id: int, scope: int) -> None:
        """Record a faced opponent overall and in the Swiss phase ``scope``."""
        stats.opponents = sorted(set(stats.opponents or []) | {opponent_id})
        if scope == 2:
            stats.opponents_phase2 = sorted(set(stats.opponents_phase2 or []) | {opponent_id})
        else:
            stats.opponents_phase1 = sorted(set(stats.opponents_phase1 or []) | {opponent_id})

    @staticmethod
    def record_win(stats: PlayerStats, match_id: str) -> None:
        stats.score += ScoringConstants.WIN_POINTS
        stats.wins += 1
        StatsLedger._add_match(stats, match_id)

    @staticmethod
    def record_loss(stats: PlayerStats, match_id: str) -> None:
        stats.score += ScoringConstants.LOSS_POINTS
        stats.losses += 1
        StatsLedger._add_match(stats, match_id)

    @staticmethod
    def record_draw(stats: PlayerStats, match_id: str) -> None:
        stats.score += ScoringConstants.DRAW_POINTS
        stats.draws += 1
        StatsLedger._add_match(stats, match_id)

    @staticmethod
    def record_bye(stats: PlayerStats, match_id: str, round_number: int) -> None:
        StatsLedger.record_win(stats, match_id)
        stats.byes += 1
        stats.received_bye_in_round = round_number

    @staticmethod
    def to_record(stats: PlayerStats) -> PlayerRecord:
        return PlayerRecord(
            user_id=stats.user_id,
            discord_tag=stats.discord_tag,
            score=stats.score,
            wins=stats.wins,
            losses=stats.losses,
            draws=stats.draws,
            byes=stats.byes,
            matches_played=len(stats.matches_played or []),
            opponents=frozenset(stats.opponents or []),
            owp=stats.owp or 0.0,
            oowp=stats.oowp or 0.0,
            active=stats.active,
            dropped=stats.dropped,
            tiebreakers_frozen=stats.tiebreakers_frozen,
        )

    @staticmethod
    def to_candidate(stats: PlayerStats, scope: int, phase1_rounds: int) -> PairingCandidate:
        """
        Pairing view of a player for a round in Swiss phase ``scope``.

        In phase 2 only phase-2 opponents block a pairing and a phase-1 bye
        no longer makes the player ineligible for another.
        """
        if scope == 2:
            opponents = stats.opponents_phase2 or []
            bye_eligible = stats.received_bye_in_round <= phase1_rounds
        else:
            opponents = stats.opponents_phase1 or []
            bye_eligible = stats.received_bye_in_round == 0
        return PairingCandidate(
            user_id=stats.user_id,
            discord_tag=stats.discord_tag,
            score=stats.score,
            owp=stats.owp or 0.0,
            oowp=stats.oowp or 0.0,
            opponents=frozenset(opponents),
            bye_eligible=bye_eligible,
        )

    @staticmethod
    def to_standing_row(stats: PlayerStats, rank: int, prize: Optional[int] = 0) -> StandingRow:
        return StandingRow(
            rank=rank,
            user_id=stats.user_id,
            username=stats.discord_tag,
            wins=stats.wins,
            ties=stats.draws,
            losses=stats.losses,
            score=stats.score,
            owp=round(stats.owp or 0.0, 4),
            oowp=round(stats.oowp or 0.0, 4),
            active=stats.active,
            elimination_stage=stats.elimination_stage,
            prize=prize or 0,
        )
