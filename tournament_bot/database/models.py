from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, JSON,
    ForeignKey, Float, BigInteger, Enum as SQLEnum, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from enum import Enum

from tournament_bot.data_models.tournament import FinishedPhase, Phase, SwissPhase, TopCutPhase

Base = declarative_base()

class TournamentStatus(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    FINISHED = "finished"
    CANCELLED = "cancelled"

class TournamentPhase(Enum):
    SWISS = "swiss"
    TOP_CUT = "top_cut"
    FINISHED = "finished"

class PrizeMode(Enum):
    ALL = "all"
    SPREAD = "spread"

class CutType(Enum):
    RANK = "rank"
    POINTS = "points"

class User(Base):
    """Lifetime, cross-tournament record of a Discord user"""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    discord_id = Column(BigInteger, unique=True, nullable=False, index=True)
    username = Column(String(100), nullable=False)

    # Aura balance and tier
    elo = Column(Integer, default=1000, nullable=False)
    rank = Column(String(50), default='Iron I', nullable=False)
    peak_elo = Column(Integer, default=1000, nullable=False)
    lowest_elo = Column(Integer, default=1000, nullable=False)

    # Tournament lifetime stats
    aura_gained_tournaments = Column(Integer, default=0, nullable=False)
    aura_spent_tournaments = Column(Integer, default=0, nullable=False)
    tournament_wins = Column(Integer, default=0, nullable=False)
    tournament_participations = Column(Integer, default=0, nullable=False)
    total_wins = Column(Integer, default=0, nullable=False)
    total_losses = Column(Integer, default=0, nullable=False)
    played_on_servers = Column(JSON, default=list, nullable=False)

    # Metadata
    created_at = Column(DateTime, default=func.now())

    @property
    def aura_delta(self) -> int:
        return self.aura_gained_tournaments - self.aura_spent_tournaments

    @property
    def win_loss_ratio(self) -> float:
        if self.total_losses == 0:
            return float('inf') if self.total_wins > 0 else 0.0
        return self.total_wins / self.total_losses

    def __repr__(self):
        return f"<User(discord_id={self.discord_id}, username='{self.username}', elo={self.elo})>"

class Tournament(Base):
    __tablename__ = 'tournaments'

    id = Column(Integer, primary_key=True)
    tournament_id = Column(String(6), unique=True, nullable=False, index=True)
    server_id = Column(BigInteger, nullable=False, index=True)
    organizer_id = Column(BigInteger, nullable=False)

    title = Column(String(200), nullable=False, default='Tournament')
    description = Column(Text)

    # Entry and prizes
    aura_cost = Column(Integer, default=0, nullable=False)
    prize_mode = Column(SQLEnum(PrizeMode), default=PrizeMode.ALL, nullable=False)
    cut_type = Column(SQLEnum(CutType), default=CutType.RANK, nullable=False)
    max_players = Column(Integer, default=0, nullable=False)  # 0 = unlimited

    # Lifecycle
    status = Column(SQLEnum(TournamentStatus), default=TournamentStatus.PENDING, nullable=False, index=True)
    phase = Column(SQLEnum(TournamentPhase), nullable=True)  # None while pending
    current_round = Column(Integer, default=0, nullable=False)
    bracket_size = Column(Integer, default=0, nullable=False)

    # Structure, fixed at start
    num_swiss_rounds = Column(Integer, default=0, nullable=False)
    top_cut_size = Column(Integer, default=0, nullable=False)
    points_required = Column(Integer, nullable=True)
    is_two_phase = Column(Boolean, default=False, nullable=False)
    phase1_rounds = Column(Integer, default=0, nullable=False)
    phase2_rounds = Column(Integer, default=0, nullable=False)
    day_two_cut_applied = Column(Boolean, default=False, nullable=False)

    # [{"user_id": ..., "discord_tag": ...}] in join order
    participants = Column(JSON, default=list, nullable=False)
    # Final snapshot written at finish
    standings = Column(JSON, default=list, nullable=False)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    started_at = Column(DateTime)
    finished_at = Column(DateTime)

    # Relationships
    matches = relationship("TournamentMatch", back_populates="tournament", cascade="all, delete-orphan", passive_deletes=True)
    player_stats = relationship("PlayerStats", back_populates="tournament", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        CheckConstraint('aura_cost >= 0', name='ck_tournament_aura_cost'),
        CheckConstraint('max_players >= 0', name='ck_tournament_max_players'),
    )

    @property
    def participant_ids(self):
        return [entry['user_id'] for entry in (self.participants or [])]

    @property
    def tagged_phase(self) -> Phase:
        """Phase as a tagged value; pending tournaments report Swiss round 0."""
        if self.phase == TournamentPhase.TOP_CUT:
            return TopCutPhase(round_number=self.current_round, bracket_size=self.bracket_size)
        if self.phase == TournamentPhase.FINISHED or self.status in (TournamentStatus.FINISHED, TournamentStatus.CANCELLED):
            return FinishedPhase()
        return SwissPhase(round_number=self.current_round)

    def scope_for_round(self, round_number: int) -> int:
        """Swiss phase (1 or 2) a round belongs to; single-phase events are always 1."""
        if self.is_two_phase and round_number > self.phase1_rounds:
            return 2
        return 1

    def __repr__(self):
        return f"<Tournament(tournament_id='{self.tournament_id}', status={self.status}, round={self.current_round})>"

class PlayerStats(Base):
    """Per-tournament record for one participant"""
    __tablename__ = 'player_stats'

    id = Column(Integer, primary_key=True)
    tournament_pk = Column(Integer, ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = Column(BigInteger, nullable=False, index=True)
    discord_tag = Column(String(100), nullable=False)

    # Record
    score = Column(Integer, default=0, nullable=False)
    wins = Column(Integer, default=0, nullable=False)
    losses = Column(Integer, default=0, nullable=False)
    draws = Column(Integer, default=0, nullable=False)
    byes = Column(Integer, default=0, nullable=False)
    matches_played = Column(JSON, default=list, nullable=False)  # match ids in play order

    # Opponent sets, stored as sorted lists
    opponents = Column(JSON, default=list, nullable=False)
    opponents_phase1 = Column(JSON, default=list, nullable=False)
    opponents_phase2 = Column(JSON, default=list, nullable=False)

    # Tiebreakers
    owp = Column(Float, default=0.0, nullable=False)
    oowp = Column(Float, default=0.0, nullable=False)
    tiebreakers_frozen = Column(Boolean, default=False, nullable=False)

    received_bye_in_round = Column(Integer, default=0, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    dropped = Column(Boolean, default=False, nullable=False)

    # Top cut and final placement
    swiss_rank = Column(Integer)
    initial_seed = Column(Integer)
    final_rank = Column(Integer)
    elimination_stage = Column(String(20))
    eliminated_in_round = Column(Integer)

    # Relationships
    tournament = relationship("Tournament", back_populates="player_stats")

    __table_args__ = (UniqueConstraint('tournament_pk', 'user_id', name='uq_player_stats_tournament_user'),)

    def __repr__(self):
        return f"<PlayerStats(user_id={self.user_id}, score={self.score}, {self.wins}-{self.losses}-{self.draws})>"

class TournamentMatch(Base):
    """
    One pairing within a round.

    A null player2 is a bye: it is created reported with player1 as the winner.
    The snapshots hold each player's stats from just before the result was
    applied so a round can be reset exactly.
    """
    __tablename__ = 'tournament_matches'

    id = Column(Integer, primary_key=True)
    tournament_pk = Column(Integer, ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False, index=True)
    match_id = Column(String(10), nullable=False)
    round_number = Column(Integer, nullable=False, index=True)
    is_top_cut = Column(Boolean, default=False, nullable=False)

    # Bracket slots (top cut only)
    bracket_position = Column(String(20))
    next_bracket_position = Column(String(20))

    player1_id = Column(BigInteger, nullable=False)
    player1_tag = Column(String(100), nullable=False)
    player2_id = Column(BigInteger)
    player2_tag = Column(String(100))

    winner_id = Column(BigInteger)
    is_draw = Column(Boolean, default=False, nullable=False)
    reported = Column(Boolean, default=False, nullable=False)

    player1_snapshot = Column(JSON)
    player2_snapshot = Column(JSON)

    created_at = Column(DateTime, default=func.now())

    # Relationships
    tournament = relationship("Tournament", back_populates="matches")

    __table_args__ = (UniqueConstraint('tournament_pk', 'match_id', name='uq_match_tournament_match_id'),)

    @property
    def is_bye(self) -> bool:
        return self.player2_id is None

    def involves(self, user_id: int) -> bool:
        return user_id in (self.player1_id, self.player2_id)

    def opponent_of(self, user_id: int):
        if user_id == self.player1_id:
            return self.player2_id
        if user_id == self.player2_id:
            return self.player1_id
        return None

    def __repr__(self):
        return f"<TournamentMatch(match_id='{self.match_id}', round={self.round_number}, reported={self.reported})>"
