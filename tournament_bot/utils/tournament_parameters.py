from typing import Optional

from tournament_bot.config import Config
from tournament_bot.constants import TournamentStructureConstants
from tournament_bot.data_models.tournament import TournamentParameters


class TournamentParameterTable:
    """Derives Swiss/top-cut structure from the participant count"""

    @staticmethod
    def points_threshold(rounds: int) -> int:
        """Points needed to survive a cut after ``rounds`` Swiss rounds (X-2 or better)."""
        return (rounds - 3) * 3 + 1

    @staticmethod
    def for_player_count(player_count: int, points_override: Optional[int] = None) -> Optional[TournamentParameters]:
        """
        Look up the structure for a field of ``player_count`` players.

        Returns None when the field is too small to run a tournament at all.
        For two-phase fields the Swiss round count covers both phases.
        """
        if player_count < Config.MIN_PLAYERS_TO_START:
            return None

        for max_players, rounds, top_cut, phase2_rounds in TournamentStructureConstants.PARAMETER_TABLE:
            if player_count <= max_players:
                break
        else:
            rounds, top_cut, phase2_rounds = TournamentStructureConstants.OVERFLOW_PARAMETERS

        total_rounds = rounds + phase2_rounds
        points_required = points_override if points_override is not None else \
            TournamentParameterTable.points_threshold(total_rounds)

        return TournamentParameters(
            num_swiss_rounds=total_rounds,
            top_cut_size=top_cut,
            points_required=points_required,
            is_two_phase=phase2_rounds > 0,
            phase1_rounds=rounds if phase2_rounds else total_rounds,
            phase2_rounds=phase2_rounds,
        )

    @staticmethod
    def next_power_of_two(count: int) -> int:
        """Smallest power of two >= count, never below 2."""
        size = 2
        while size < count:
            size *= 2
        return size

    @staticmethod
    def is_power_of_two(value: int) -> bool:
        return value >= 2 and (value & (value - 1)) == 0
