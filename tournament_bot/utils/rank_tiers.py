from bisect import bisect_right
from typing import List, Tuple

from tournament_bot.constants import RankConstants


class RankTiers:
    """Maps an Aura balance to its cosmetic rank tier"""

    @staticmethod
    def thresholds() -> List[Tuple[str, int]]:
        return list(RankConstants.RANK_THRESHOLDS)

    @staticmethod
    def find_rank(aura: int) -> str:
        """Highest tier whose threshold is at or below ``aura``; negative balances sit in the lowest tier."""
        floors = [threshold for _, threshold in RankConstants.RANK_THRESHOLDS]
        index = bisect_right(floors, aura) - 1
        return RankConstants.RANK_THRESHOLDS[max(index, 0)][0]
