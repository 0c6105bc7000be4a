"""
Swiss tiebreakers: opponent win percentage (OWP) and opponents' opponent win
percentage (OOWP), plus the standings order built on top of them.

Ordering is by matches played, score, OWP and OOWP (all descending). Players
still level after that are split by head-to-head wins inside the tied group and
finally by a draw from the injected random source, so fixing the seed makes the
whole ordering reproducible.
"""

import random
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from tournament_bot.constants import ScoringConstants
from tournament_bot.data_models.tournament import PlayerRecord, StandingsResult, Tiebreakers


class TiebreakerCalculator:
    """Computes OWP/OOWP and resolves standings order"""

    def __init__(self, rng: random.Random):
        self.rng = rng

    @staticmethod
    def win_rate(record: PlayerRecord) -> float:
        """
        Non-bye win rate of a player as seen by their opponents.

        Byes are removed from both sides of the fraction and a draw counts as
        half a win. Players who dropped are capped at 0.75 unless their
        tiebreakers were frozen by the Day-2 cut.
        """
        non_bye_matches = record.matches_played - record.byes
        if non_bye_matches <= 0:
            return 0.0

        rate = (record.wins - record.byes + ScoringConstants.DRAW_WIN_WEIGHT * record.draws) / non_bye_matches
        cap = 1.0
        if record.dropped and not record.tiebreakers_frozen:
            cap = ScoringConstants.DROPPED_WIN_RATE_CAP
        return max(0.0, min(rate, cap))

    def compute_tiebreakers(self, records: Sequence[PlayerRecord]) -> Dict[int, Tiebreakers]:
        """OWP for everyone first, then OOWP from the fresh OWP values."""
        by_id = {record.user_id: record for record in records}
        rates = {record.user_id: self.win_rate(record) for record in records}

        owp: Dict[int, float] = {}
        for record in records:
            if record.tiebreakers_frozen:
                owp[record.user_id] = record.owp
                continue
            opponents = [o for o in record.opponents if o in by_id]
            if opponents:
                owp[record.user_id] = sum(
                    max(ScoringConstants.OWP_FLOOR, rates[o]) for o in opponents
                ) / len(opponents)
            else:
                owp[record.user_id] = 0.0

        result: Dict[int, Tiebreakers] = {}
        for record in records:
            if record.tiebreakers_frozen:
                result[record.user_id] = Tiebreakers(owp=record.owp, oowp=record.oowp)
                continue
            opponents = [o for o in record.opponents if o in by_id]
            oowp = sum(owp[o] for o in opponents) / len(opponents) if opponents else 0.0
            result[record.user_id] = Tiebreakers(owp=owp[record.user_id], oowp=oowp)

        return result

    def order(
        self,
        records: Sequence[PlayerRecord],
        tiebreakers: Mapping[int, Tiebreakers],
        head_to_head: Mapping[Tuple[int, int], int],
    ) -> List[int]:
        """Standings order (best first) as a list of user ids."""
        def sort_key(record: PlayerRecord):
            tb = tiebreakers[record.user_id]
            return (record.matches_played, record.score, tb.owp, tb.oowp)

        ranked = sorted(records, key=lambda r: (sort_key(r), -r.user_id), reverse=True)

        ordered: List[int] = []
        index = 0
        while index < len(ranked):
            end = index + 1
            while end < len(ranked) and sort_key(ranked[end]) == sort_key(ranked[index]):
                end += 1
            group = [record.user_id for record in ranked[index:end]]
            ordered.extend(self._resolve_tie(group, head_to_head) if len(group) > 1 else group)
            index = end

        return ordered

    def _resolve_tie(self, group: List[int], head_to_head: Mapping[Tuple[int, int], int]) -> List[int]:
        members = sorted(group)
        h2h_wins = {
            player: sum(head_to_head.get((player, other), 0) for other in members if other != player)
            for player in members
        }
        # One draw per player in id order so a fixed seed gives a fixed result
        draws = {player: self.rng.random() for player in members}
        return sorted(members, key=lambda p: (-h2h_wins[p], draws[p]))

    def standings(
        self,
        records: Sequence[PlayerRecord],
        head_to_head: Mapping[Tuple[int, int], int],
    ) -> StandingsResult:
        """Compute tiebreakers for the whole field and order it."""
        tiebreakers = self.compute_tiebreakers(records)
        order = self.order(records, tiebreakers, head_to_head)
        return StandingsResult(order=tuple(order), tiebreakers=tiebreakers)

    @staticmethod
    def head_to_head_from_results(results: Iterable[Tuple[int, int]]) -> Dict[Tuple[int, int], int]:
        """Build a (winner, loser) -> wins mapping from decided non-bye matches."""
        table: Dict[Tuple[int, int], int] = defaultdict(int)
        for winner_id, loser_id in results:
            table[(winner_id, loser_id)] += 1
        return dict(table)
