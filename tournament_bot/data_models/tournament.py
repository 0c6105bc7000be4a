"""
Tournament data models

Immutable value objects passed between the database-backed operations and the
pure pairing, tiebreaker and bracket engines. Operations build these from a
consistent read of the tournament, the engines return new values, and the
operations write the results back in one batch.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple, Union


@dataclass(frozen=True)
class SwissPhase:
    """Swiss round in progress."""
    round_number: int


@dataclass(frozen=True)
class TopCutPhase:
    """Single-elimination round in progress."""
    round_number: int
    bracket_size: int


@dataclass(frozen=True)
class FinishedPhase:
    """Terminal phase, no rounds remain."""
    pass


Phase = Union[SwissPhase, TopCutPhase, FinishedPhase]


@dataclass(frozen=True)
class TournamentParameters:
    """Structure derived from the participant count at start."""
    num_swiss_rounds: int
    top_cut_size: int
    points_required: int
    is_two_phase: bool = False
    phase1_rounds: int = 0
    phase2_rounds: int = 0


@dataclass(frozen=True)
class PlayerRecord:
    """Snapshot of one player's per-tournament stats."""
    user_id: int
    discord_tag: str
    score: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    byes: int = 0
    matches_played: int = 0
    opponents: FrozenSet[int] = frozenset()
    owp: float = 0.0
    oowp: float = 0.0
    active: bool = True
    dropped: bool = False
    tiebreakers_frozen: bool = False


@dataclass(frozen=True)
class PairingCandidate:
    """A player eligible for the next Swiss round."""
    user_id: int
    discord_tag: str
    score: int
    owp: float = 0.0
    oowp: float = 0.0
    # Opponents already faced within the current phase scope
    opponents: FrozenSet[int] = frozenset()
    bye_eligible: bool = True


@dataclass(frozen=True)
class SwissRound:
    """Output of the pairing engine for one round."""
    pairings: Tuple[Tuple[PairingCandidate, PairingCandidate], ...]
    bye: Optional[PairingCandidate] = None


@dataclass(frozen=True)
class Tiebreakers:
    owp: float
    oowp: float


@dataclass(frozen=True)
class StandingsResult:
    """Ordered standings plus the tiebreaker values to persist."""
    order: Tuple[int, ...]
    tiebreakers: Dict[int, Tiebreakers] = field(default_factory=dict)


@dataclass(frozen=True)
class SeededPlayer:
    """A top-cut qualifier with its seed (1 = best)."""
    user_id: int
    discord_tag: str
    seed: int


@dataclass(frozen=True)
class BracketSlot:
    """A position in the bracket topology."""
    position: str
    round_size: int
    index: int
    next_position: Optional[str]


@dataclass(frozen=True)
class BracketMatch:
    """A bracket pairing ready to be persisted. ``player2`` None means a bye."""
    position: str
    next_position: Optional[str]
    player1: SeededPlayer
    player2: Optional[SeededPlayer] = None

    @property
    def is_bye(self) -> bool:
        return self.player2 is None


@dataclass(frozen=True)
class BracketResult:
    """A reported bracket match as seen by the next-round generator."""
    position: str
    next_position: Optional[str]
    winner: Optional[SeededPlayer]
    reported: bool


@dataclass(frozen=True)
class StandingRow:
    """One line of the standings table."""
    rank: int
    user_id: int
    username: str
    wins: int
    ties: int
    losses: int
    score: int
    owp: float
    oowp: float
    active: bool = True
    elimination_stage: Optional[str] = None
    prize: int = 0


@dataclass(frozen=True)
class LeaderboardEntry:
    """Single lifetime leaderboard row."""
    rank: int
    discord_id: int
    username: str
    rank_tier: str
    elo: int
    tournament_wins: int
    aura_gained: int
    aura_spent: int
    aura_delta: int
    total_wins: int
    total_losses: int
    win_loss_ratio: float


@dataclass(frozen=True)
class ValidationOutcome:
    """What a round validation produced, for the command layer to render."""
    tournament_id: str
    validated_round: int
    phase: Phase
    new_match_ids: List[str] = field(default_factory=list)
    eliminated_by_cut: List[int] = field(default_factory=list)
    finished: bool = False
    standings: List[StandingRow] = field(default_factory=list)
    prizes: Dict[int, int] = field(default_factory=dict)


@dataclass(frozen=True)
class DropResult:
    """Effect of dropping a player on their current-round match."""
    tournament_id: str
    player_id: int
    awarded_match_id: Optional[str] = None
    awarded_to: Optional[int] = None
    voided_bye_match_id: Optional[str] = None
