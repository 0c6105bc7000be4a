"""
Swiss pairing engine.

Pairs one Swiss round from the active field:
1. Odd field: the bye goes to the lowest standing player who has not had a bye
   in the current phase scope.
2. The rest are grouped by score (best first) and shuffled inside each group.
3. A depth-first search pairs the first unpaired player with the first later
   player they have not met, backing up whenever the remainder cannot be
   completed. The first complete pairing wins.

The engine is pure: it works on frozen ``PairingCandidate`` values and an
integer bitmask of unpaired indices, and never touches storage.
"""

import random
from collections import defaultdict
from typing import List, Optional, Sequence, Set, Tuple

from tournament_bot.data_models.tournament import PairingCandidate, SwissRound
from tournament_bot.utils.tournament_exceptions import PairingImpossible


class SwissPairingEngine:
    """Score-group Swiss pairing with backtracking and no rematches"""

    def __init__(self, rng: random.Random):
        self.rng = rng

    @staticmethod
    def select_bye(players: Sequence[PairingCandidate]) -> PairingCandidate:
        """Worst-standing player among those still eligible for a bye."""
        candidates = [p for p in players if p.bye_eligible] or list(players)
        return min(candidates, key=lambda p: (p.score, p.owp, p.oowp, p.user_id))

    def order_by_score_groups(self, players: Sequence[PairingCandidate]) -> List[PairingCandidate]:
        groups = defaultdict(list)
        for player in sorted(players, key=lambda p: p.user_id):
            groups[player.score].append(player)

        ordered: List[PairingCandidate] = []
        for score in sorted(groups, reverse=True):
            group = groups[score]
            self.rng.shuffle(group)
            ordered.extend(group)
        return ordered

    @staticmethod
    def find_pairings(players: Sequence[PairingCandidate]) -> Optional[Tuple[Tuple[int, int], ...]]:
        """
        Backtracking search for a complete pairing without rematches.

        Args:
            players: Ordered players; earlier players are paired first and
                prefer earlier opponents.

        Returns:
            Tuple of (index, index) pairs into ``players``, or None when no
            complete pairing exists.
        """
        frozen = tuple(players)
        count = len(frozen)
        if count % 2:
            return None
        if count == 0:
            return ()

        forbidden = [
            [a.user_id == b.user_id or b.user_id in a.opponents or a.user_id in b.opponents for b in frozen]
            for a in frozen
        ]

        def open_frame(remaining: int) -> List[int]:
            first = (remaining & -remaining).bit_length() - 1
            return [remaining, first, remaining & ~(1 << first)]

        # Explicit stack: large fields pair hundreds of levels deep, past the
        # interpreter's recursion limit.
        failed: Set[int] = set()
        path: List[Tuple[int, int]] = []
        frames = [open_frame((1 << count) - 1)]

        while frames:
            frame = frames[-1]
            remaining, first, candidates = frame
            advanced = False

            while candidates:
                lowest = candidates & -candidates
                candidates ^= lowest
                second = lowest.bit_length() - 1
                if forbidden[first][second]:
                    continue
                next_remaining = remaining & ~(1 << first) & ~lowest
                if next_remaining in failed:
                    continue

                frame[2] = candidates
                path.append((first, second))
                if next_remaining == 0:
                    return tuple(path)
                frames.append(open_frame(next_remaining))
                advanced = True
                break

            if not advanced:
                failed.add(remaining)
                frames.pop()
                if path:
                    path.pop()

        return None

    def pair_round(self, players: Sequence[PairingCandidate], round_number: int) -> SwissRound:
        """
        Pair a full Swiss round.

        Raises:
            PairingImpossible: No complete pairing avoids a rematch.
        """
        pool = list(players)
        bye = None
        if len(pool) % 2:
            bye = self.select_bye(pool)
            pool = [p for p in pool if p.user_id != bye.user_id]

        ordered = self.order_by_score_groups(pool)
        solution = self.find_pairings(ordered)
        if solution is None:
            raise PairingImpossible(round_number, len(players))

        pairings = tuple((ordered[i], ordered[j]) for i, j in solution)
        return SwissRound(pairings=pairings, bye=bye)
