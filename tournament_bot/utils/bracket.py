"""
Single-elimination bracket engine for the top cut.

Seeds are placed with the recursive mirror ordering (1 v N, then each half
mirrored again) so that for any power-of-two bracket the top two seeds can only
meet in the final. Every match carries its own position label and the label of
the slot its winner advances to.
"""

from typing import Dict, List, Optional, Sequence

from tournament_bot.data_models.tournament import BracketMatch, BracketResult, BracketSlot, SeededPlayer
from tournament_bot.utils.tournament_exceptions import BracketInconsistent
from tournament_bot.utils.tournament_parameters import TournamentParameterTable


class BracketEngine:
    """Builds bracket topology and top-cut pairings"""

    @staticmethod
    def seed_order(size: int) -> List[int]:
        """Seeds in bracket-line order; consecutive entries meet in the first round."""
        if not TournamentParameterTable.is_power_of_two(size):
            raise BracketInconsistent(f"Bracket size {size} is not a power of two")
        order = [1]
        while len(order) < size:
            mirror = len(order) * 2 + 1
            order = [seed for top in order for seed in (top, mirror - top)]
        return order

    @staticmethod
    def position_label(round_size: int, index: int) -> str:
        """Label of the ``index``-th (1-based) match in a round of ``round_size`` players."""
        if round_size == 2:
            return "Final"
        if round_size == 4:
            return f"SF{index}"
        if round_size == 8:
            return f"QF{index}"
        return f"R{round_size}-{index}"

    @staticmethod
    def next_position(round_size: int, index: int) -> Optional[str]:
        if round_size == 2:
            return None
        return BracketEngine.position_label(round_size // 2, (index + 1) // 2)

    @staticmethod
    def round_name(round_size: int) -> str:
        if round_size == 2:
            return "Finals"
        if round_size == 4:
            return "Semifinals"
        if round_size == 8:
            return "Quarterfinals"
        return f"Top-{round_size}"

    @staticmethod
    def elimination_stage(round_size: int) -> str:
        """Stage label recorded for the loser of a match in a round of this size."""
        if round_size == 2:
            return "Runner-up"
        if round_size == 4:
            return "SF"
        if round_size == 8:
            return "QF"
        return f"Top{round_size}"

    def topology(self, size: int) -> List[BracketSlot]:
        """Every match slot of a ``size`` bracket, first round first."""
        self.seed_order(size)
        slots = []
        round_size = size
        while round_size >= 2:
            for index in range(1, round_size // 2 + 1):
                slots.append(BracketSlot(
                    position=self.position_label(round_size, index),
                    round_size=round_size,
                    index=index,
                    next_position=self.next_position(round_size, index),
                ))
            round_size //= 2
        return slots

    def first_round(self, size: int, qualifiers: Sequence[SeededPlayer]) -> List[BracketMatch]:
        """
        First top-cut round for seeded qualifiers.

        Seeds without an opponent receive a bye match. Raises
        BracketInconsistent when seeds are not exactly 1..N or do not fit.
        """
        order = self.seed_order(size)

        by_seed: Dict[int, SeededPlayer] = {}
        for player in qualifiers:
            if player.seed in by_seed:
                raise BracketInconsistent(f"Seed {player.seed} assigned twice")
            by_seed[player.seed] = player

        if sorted(by_seed) != list(range(1, len(qualifiers) + 1)):
            raise BracketInconsistent(
                f"Seeds must run from 1 to {len(qualifiers)}, got {sorted(by_seed)}"
            )
        if len(qualifiers) > size:
            raise BracketInconsistent(f"{len(qualifiers)} qualifiers do not fit a bracket of {size}")

        matches = []
        for index in range(1, size // 2 + 1):
            top_seed, bottom_seed = order[2 * index - 2], order[2 * index - 1]
            top = by_seed.get(top_seed)
            if top is None:
                raise BracketInconsistent(f"Seed {top_seed} is missing for {self.position_label(size, index)}")
            matches.append(BracketMatch(
                position=self.position_label(size, index),
                next_position=self.next_position(size, index),
                player1=top,
                player2=by_seed.get(bottom_seed),
            ))
        return matches

    def next_round(self, results: Sequence[BracketResult]) -> List[BracketMatch]:
        """Pair the winners of a completed round for the following round."""
        round_size = len(results) * 2
        if round_size < 4 or not TournamentParameterTable.is_power_of_two(round_size):
            raise BracketInconsistent(f"Cannot advance from a round of {round_size} players")

        expected = {self.position_label(round_size, i): i for i in range(1, round_size // 2 + 1)}
        feeders: Dict[str, List[BracketResult]] = {}
        seen = set()
        for result in results:
            if result.position not in expected or result.position in seen:
                raise BracketInconsistent(f"Unexpected bracket position {result.position}")
            seen.add(result.position)
            if not result.reported or result.winner is None:
                raise BracketInconsistent(f"Bracket match {result.position} has no winner yet")
            feeders.setdefault(result.next_position, []).append(result)

        next_size = round_size // 2
        matches = []
        for index in range(1, next_size // 2 + 1):
            label = self.position_label(next_size, index)
            feeding = sorted(feeders.get(label, []), key=lambda r: expected[r.position])
            if len(feeding) != 2:
                raise BracketInconsistent(f"{label} expects two feeding matches, found {len(feeding)}")
            matches.append(BracketMatch(
                position=label,
                next_position=self.next_position(next_size, index),
                player1=feeding[0].winner,
                player2=feeding[1].winner,
            ))
        return matches
