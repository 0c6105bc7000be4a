from typing import Dict, List, Sequence, Tuple

from tournament_bot.constants import PrizeConstants


class PrizeCalculator:
    """Splits a tournament's prize pool by finishing rank"""

    @staticmethod
    def proportion_table(bracket_size: int) -> List[Tuple[int, int, int]]:
        """Band table for a top cut of ``bracket_size`` (no cut and top 2 use the top-4 table)."""
        for size in sorted(PrizeConstants.PRIZE_PROPORTIONS):
            if bracket_size <= size:
                return PrizeConstants.PRIZE_PROPORTIONS[size]
        return PrizeConstants.PRIZE_PROPORTIONS[max(PrizeConstants.PRIZE_PROPORTIONS)]

    @staticmethod
    def distribute(pool: int, ranked_user_ids: Sequence[int], prize_mode: str, bracket_size: int) -> Dict[int, int]:
        """
        Compute Aura prizes for a finished tournament.

        Args:
            pool: Total stake collected
            ranked_user_ids: User ids ordered by final rank (rank 1 first)
            prize_mode: 'all' (winner takes the pool) or 'spread'
            bracket_size: Top cut size used to select the proportion table

        Returns:
            Mapping of user id to prize for everyone receiving a non-zero amount.
            The amounts always sum to ``pool``.
        """
        if pool <= 0 or not ranked_user_ids:
            return {}

        winner = ranked_user_ids[0]
        if prize_mode == 'all':
            return {winner: pool}

        prizes: Dict[int, int] = {}
        for first_rank, last_rank, share in PrizeCalculator.proportion_table(bracket_size):
            occupants = ranked_user_ids[first_rank - 1:last_rank]
            if not occupants:
                continue
            band_amount = pool * share // PrizeConstants.BASIS
            each = band_amount // len(occupants)
            for user_id in occupants:
                prizes[user_id] = prizes.get(user_id, 0) + each

        # Rounding leftovers and unclaimed bands go to the winner
        prizes[winner] = prizes.get(winner, 0) + pool - sum(prizes.values())
        return {user_id: amount for user_id, amount in prizes.items() if amount > 0}
