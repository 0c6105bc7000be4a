"""
Tournament Operations Module

The tournament state machine. Moves a tournament through
pending -> active (Swiss) -> active (top cut) -> finished, with cancelled as an
escape from pending or active.

Every public operation runs in a single ``Database.transaction()`` so a late
failure rolls back everything it touched. Operations that read and rewrite
aggregate standings (start, validate, drop, reset, finalize, cancel) also hold
a per-tournament ``asyncio.Lock``; a second caller waits until the first has
committed and then sees the new round.

The pairing engine, tiebreaker calculator, bracket engine and finalizer are
passed in, so tests can run the whole flow with a fixed random seed.
"""

import asyncio
import random
import secrets
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from tournament_bot.config import Config
from tournament_bot.constants import TournamentStructureConstants
from tournament_bot.data_models.tournament import (
    BracketMatch, BracketResult, DropResult, SeededPlayer, StandingRow, SwissPhase, TopCutPhase,
    ValidationOutcome
)
from tournament_bot.database.models import (
    CutType, PlayerStats, PrizeMode, Tournament, TournamentMatch, TournamentPhase, TournamentStatus
)
from tournament_bot.operations.finalization import FinalizationOperations
from tournament_bot.operations.match_operations import MatchOperations
from tournament_bot.operations.stats_ledger import StatsLedger
from tournament_bot.operations.user_operations import UserOperations
from tournament_bot.utils.bracket import BracketEngine
from tournament_bot.utils.logger import setup_logger
from tournament_bot.utils.swiss_pairing import SwissPairingEngine
from tournament_bot.utils.tiebreakers import TiebreakerCalculator
from tournament_bot.utils.tournament_exceptions import (
    BracketInconsistent, CapacityExceeded, InvalidState, NotFound, Unauthorized
)
from tournament_bot.utils.tournament_parameters import TournamentParameterTable

logger = setup_logger(__name__)


def format_match_id(sequence: int) -> str:
    return str(sequence).zfill(TournamentStructureConstants.MATCH_ID_WIDTH)


class TournamentOperations:
    """
    Business logic for the tournament lifecycle.

    Components are injected; anything not supplied is built here around a
    ``random.Random`` seeded from ``Config.PAIRING_SEED``.
    """

    def __init__(
        self,
        database,
        user_operations: Optional[UserOperations] = None,
        match_operations: Optional[MatchOperations] = None,
        finalizer: Optional[FinalizationOperations] = None,
        pairing_engine: Optional[SwissPairingEngine] = None,
        tiebreaker_calculator: Optional[TiebreakerCalculator] = None,
        bracket_engine: Optional[BracketEngine] = None,
        rng: Optional[random.Random] = None,
    ):
        self.db = database
        rng = rng or random.Random(Config.PAIRING_SEED)
        self.users = user_operations or UserOperations(database)
        self.matches = match_operations or MatchOperations(database)
        self.finalizer = finalizer or FinalizationOperations(database, self.users)
        self.pairing = pairing_engine or SwissPairingEngine(rng)
        self.tiebreakers = tiebreaker_calculator or TiebreakerCalculator(rng)
        self.bracket = bracket_engine or BracketEngine()
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.logger = logger

    # ------------------------------------------------------------------
    # Guards and loading
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _tournament_lock(self, tournament_id: str):
        async with self._locks[tournament_id.upper()]:
            yield

    def _forget_lock(self, tournament_id: str) -> None:
        """Drop the lock of a tournament that accepts no further writes."""
        self._locks.pop(tournament_id.upper(), None)

    async def _load(self, session: AsyncSession, tournament_id: str, for_update: bool = False) -> Tournament:
        tournament = await self.db.get_tournament(session, tournament_id, for_update=for_update)
        if not tournament:
            raise NotFound("Tournament", tournament_id)
        return tournament

    @staticmethod
    def _require_organizer(tournament: Tournament, actor_id: int, action: str) -> None:
        if actor_id != tournament.organizer_id:
            raise Unauthorized(action)

    @staticmethod
    def _require_status(tournament: Tournament, status: TournamentStatus, action: str) -> None:
        if tournament.status != status:
            raise InvalidState(
                f"Cannot {action}: tournament {tournament.tournament_id} is {tournament.status.value}, "
                f"expected {status.value}"
            )

    async def _generate_tournament_id(self, session: AsyncSession) -> str:
        while True:
            candidate = secrets.token_hex(TournamentStructureConstants.TOURNAMENT_ID_LENGTH // 2).upper()
            if not await self.db.tournament_id_exists(session, candidate):
                return candidate

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_tournament(self, tournament_id: str) -> Tournament:
        async with self.db.get_session() as session:
            return await self._load(session, tournament_id)

    async def list_tournaments(self, server_id: Optional[int] = None,
                               statuses: Optional[List[TournamentStatus]] = None) -> List[Tournament]:
        async with self.db.get_session() as session:
            return await self.db.list_tournaments(session, server_id, statuses)

    async def get_round_matches(self, tournament_id: str, round_number: Optional[int] = None) -> List[TournamentMatch]:
        """Matches of ``round_number`` (default: the current round)."""
        async with self.db.get_session() as session:
            tournament = await self._load(session, tournament_id)
            return await self.db.get_matches(session, tournament, round_number or tournament.current_round)

    async def get_standings(self, tournament_id: str) -> List[StandingRow]:
        """
        Current standings without side effects.

        Finished tournaments return the stored snapshot. Live Swiss standings
        use the tiebreakers stored by the last validation; top-cut standings
        follow bracket progress.
        """
        async with self.db.get_session() as session:
            tournament = await self._load(session, tournament_id)
            if tournament.status == TournamentStatus.FINISHED:
                return [StandingRow(**row) for row in (tournament.standings or [])]

            stats = await self.db.get_all_player_stats(session, tournament)
            if tournament.phase == TournamentPhase.TOP_CUT:
                ordered = self._final_order(stats)
            else:
                ordered = sorted(
                    stats,
                    key=lambda s: (-len(s.matches_played or []), -s.score, -(s.owp or 0.0),
                                   -(s.oowp or 0.0), s.swiss_rank or 0, s.id)
                )
            return [StatsLedger.to_standing_row(s, rank) for rank, s in enumerate(ordered, start=1)]

    # ------------------------------------------------------------------
    # Pending phase
    # ------------------------------------------------------------------

    async def create_tournament(
        self,
        server_id: int,
        organizer_id: int,
        aura_cost: int,
        prize_mode: str = 'all',
        title: Optional[str] = None,
        description: Optional[str] = None,
        cut_type: str = 'rank',
        points_required: Optional[int] = None,
        max_players: int = 0,
        organizer_tag: Optional[str] = None,
    ) -> Tournament:
        """
        Create a pending tournament.

        Raises:
            ValueError: Negative stake or cap, unknown prize mode or cut type
        """
        if aura_cost is None or aura_cost < 0:
            raise ValueError("Aura cost must be a non-negative integer")
        if max_players is None or max_players < 0:
            raise ValueError("Maximum players must be 0 (unlimited) or positive")
        if points_required is not None and points_required < 0:
            raise ValueError("Points required must be non-negative")
        try:
            mode = PrizeMode(prize_mode)
            cut = CutType(cut_type)
        except ValueError:
            raise ValueError(f"Unknown prize mode '{prize_mode}' or cut type '{cut_type}'")

        async with self.db.transaction() as session:
            await self.users.get_or_create_user(organizer_id, organizer_tag or str(organizer_id), session=session)
            tournament = Tournament(
                tournament_id=await self._generate_tournament_id(session),
                server_id=server_id,
                organizer_id=organizer_id,
                title=title or 'Tournament',
                description=description,
                aura_cost=aura_cost,
                prize_mode=mode,
                cut_type=cut,
                points_required=points_required,
                max_players=max_players,
                status=TournamentStatus.PENDING,
                phase=None,
                current_round=0,
                bracket_size=0,
                num_swiss_rounds=0,
                top_cut_size=0,
                is_two_phase=False,
                phase1_rounds=0,
                phase2_rounds=0,
                day_two_cut_applied=False,
                participants=[],
                standings=[],
            )
            session.add(tournament)
            await session.flush()

            self.logger.info(
                f"Tournament {tournament.tournament_id} created on server {server_id} by {organizer_id} "
                f"(cost {aura_cost}, prize {mode.value}, cut {cut.value}, cap {max_players or 'none'})"
            )
            return tournament

    async def join_tournament(self, tournament_id: str, user_id: int, discord_tag: str,
                              executing_user_id: Optional[int] = None) -> Tournament:
        """Add a player and take their stake. The organizer may add someone else."""
        executing_user_id = executing_user_id or user_id

        async with self._tournament_lock(tournament_id):
            async with self.db.transaction() as session:
                tournament = await self._load(session, tournament_id, for_update=True)
                self._require_status(tournament, TournamentStatus.PENDING, "join")
                if executing_user_id != user_id:
                    self._require_organizer(tournament, executing_user_id, "add other players to this tournament")
                if user_id in tournament.participant_ids:
                    raise InvalidState(f"User {user_id} has already joined tournament {tournament.tournament_id}")
                if tournament.max_players and len(tournament.participants) >= tournament.max_players:
                    raise CapacityExceeded(tournament.max_players)

                user = await self.users.get_or_create_user(user_id, discord_tag, session=session)
                self.users.charge_stake(user, tournament.aura_cost)

                tournament.participants = list(tournament.participants) + [
                    {"user_id": user_id, "discord_tag": discord_tag}
                ]
                session.add(StatsLedger.new_stats(tournament.id, user_id, discord_tag))
                await session.flush()

                self.logger.info(
                    f"{discord_tag} ({user_id}) joined {tournament.tournament_id} "
                    f"[{len(tournament.participants)} players, paid {tournament.aura_cost}]"
                )
                return tournament

    async def leave_tournament(self, tournament_id: str, user_id: int, discord_tag: str,
                               executing_user_id: Optional[int] = None) -> Tournament:
        """Remove a player and refund their stake."""
        executing_user_id = executing_user_id or user_id

        async with self._tournament_lock(tournament_id):
            async with self.db.transaction() as session:
                tournament = await self._load(session, tournament_id, for_update=True)
                self._require_status(tournament, TournamentStatus.PENDING, "leave")
                if executing_user_id != user_id:
                    self._require_organizer(tournament, executing_user_id, "remove other players from this tournament")
                if user_id not in tournament.participant_ids:
                    raise NotFound("Participant", user_id)

                user = await self.users.get_or_create_user(user_id, discord_tag, session=session)
                self.users.refund_stake(user, tournament.aura_cost)

                tournament.participants = [p for p in tournament.participants if p["user_id"] != user_id]
                stats = await self.db.get_player_stats(session, tournament, user_id)
                if stats:
                    await session.delete(stats)
                await session.flush()

                self.logger.info(f"{discord_tag} ({user_id}) left {tournament.tournament_id}, refunded {tournament.aura_cost}")
                return tournament

    # ------------------------------------------------------------------
    # Start and Swiss rounds
    # ------------------------------------------------------------------

    async def start_tournament(self, tournament_id: str, organizer_id: int) -> Tournament:
        """
        Fix the structure from the participant count and pair round 1.

        Raises:
            InvalidState: Not pending, or fewer than the minimum players
            PairingImpossible: Round 1 could not be paired
        """
        async with self._tournament_lock(tournament_id):
            async with self.db.transaction() as session:
                tournament = await self._load(session, tournament_id, for_update=True)
                self._require_organizer(tournament, organizer_id, "start this tournament")
                self._require_status(tournament, TournamentStatus.PENDING, "start")

                player_count = len(tournament.participants)
                override = tournament.points_required if tournament.cut_type == CutType.POINTS else None
                params = TournamentParameterTable.for_player_count(player_count, override)
                if params is None:
                    raise InvalidState(
                        f"At least {Config.MIN_PLAYERS_TO_START} players are needed to start, {player_count} joined"
                    )

                tournament.num_swiss_rounds = params.num_swiss_rounds
                tournament.top_cut_size = params.top_cut_size if tournament.cut_type == CutType.RANK else 0
                tournament.points_required = params.points_required
                tournament.is_two_phase = params.is_two_phase
                tournament.phase1_rounds = params.phase1_rounds
                tournament.phase2_rounds = params.phase2_rounds
                tournament.status = TournamentStatus.ACTIVE
                tournament.phase = TournamentPhase.SWISS
                tournament.current_round = 1
                tournament.started_at = datetime.now(timezone.utc)

                stats = await self.db.get_all_player_stats(session, tournament)
                known = {s.user_id for s in stats}
                for entry in tournament.participants:
                    if entry["user_id"] not in known:
                        missing = StatsLedger.new_stats(tournament.id, entry["user_id"], entry["discord_tag"])
                        session.add(missing)
                        stats.append(missing)
                await session.flush()

                created = await self._pair_swiss_round(session, tournament, stats, 1)

                self.logger.info(
                    f"Tournament {tournament.tournament_id} started: {player_count} players, "
                    f"{params.num_swiss_rounds} Swiss rounds"
                    f"{' (two-phase %d+%d)' % (params.phase1_rounds, params.phase2_rounds) if params.is_two_phase else ''}, "
                    f"top cut {tournament.top_cut_size or tournament.cut_type.value}, {len(created)} round-1 matches"
                )
                return tournament

    async def _pair_swiss_round(self, session: AsyncSession, tournament: Tournament,
                                stats: Sequence[PlayerStats], round_number: int) -> List[TournamentMatch]:
        scope = tournament.scope_for_round(round_number)
        active = [s for s in stats if s.active]
        by_id = {s.user_id: s for s in active}
        candidates = [StatsLedger.to_candidate(s, scope, tournament.phase1_rounds) for s in active]

        swiss_round = self.pairing.pair_round(candidates, round_number)

        sequence = await self.db.count_matches(session, tournament)
        created = []
        for first, second in swiss_round.pairings:
            sequence += 1
            match = TournamentMatch(
                tournament_pk=tournament.id,
                match_id=format_match_id(sequence),
                round_number=round_number,
                is_top_cut=False,
                player1_id=first.user_id,
                player1_tag=first.discord_tag,
                player2_id=second.user_id,
                player2_tag=second.discord_tag,
                is_draw=False,
                reported=False,
            )
            session.add(match)
            created.append(match)

        if swiss_round.bye:
            sequence += 1
            created.append(self._create_bye(session, tournament, by_id[swiss_round.bye.user_id],
                                            format_match_id(sequence), round_number))

        await session.flush()
        self.logger.debug(
            f"Paired round {round_number} of {tournament.tournament_id}: {len(swiss_round.pairings)} matches"
            f"{', bye ' + str(swiss_round.bye.user_id) if swiss_round.bye else ''}"
        )
        return created

    def _create_bye(self, session: AsyncSession, tournament: Tournament, stats: PlayerStats, match_id: str,
                    round_number: int, is_top_cut: bool = False, position: Optional[str] = None,
                    next_position: Optional[str] = None) -> TournamentMatch:
        match = TournamentMatch(
            tournament_pk=tournament.id,
            match_id=match_id,
            round_number=round_number,
            is_top_cut=is_top_cut,
            bracket_position=position,
            next_bracket_position=next_position,
            player1_id=stats.user_id,
            player1_tag=stats.discord_tag,
            player2_id=None,
            player2_tag=None,
            winner_id=stats.user_id,
            is_draw=False,
            reported=True,
            player1_snapshot=StatsLedger.snapshot(stats),
        )
        StatsLedger.record_bye(stats, match_id, round_number)
        session.add(match)
        return match

    async def _compute_standings(self, session: AsyncSession, tournament: Tournament,
                                 stats: Sequence[PlayerStats]) -> List[PlayerStats]:
        """Run the tiebreaker calculator and write OWP, OOWP and Swiss rank back."""
        matches = await self.db.get_matches(session, tournament)
        decided = [
            (m.winner_id, m.opponent_of(m.winner_id))
            for m in matches
            if m.reported and not m.is_bye and not m.is_top_cut and m.winner_id is not None
        ]
        head_to_head = self.tiebreakers.head_to_head_from_results(decided)

        result = self.tiebreakers.standings([StatsLedger.to_record(s) for s in stats], head_to_head)

        by_id = {s.user_id: s for s in stats}
        for user_id, values in result.tiebreakers.items():
            by_id[user_id].owp = values.owp
            by_id[user_id].oowp = values.oowp

        ordered = [by_id[user_id] for user_id in result.order]
        for rank, player in enumerate(ordered, start=1):
            player.swiss_rank = rank
        return ordered

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def report_match(self, tournament_id: str, match_id, winner_id: int, reporter_id: int,
                           draw_with: Optional[int] = None) -> TournamentMatch:
        """Record a result under the tournament lock so it cannot interleave with drops or other reports."""
        async with self._tournament_lock(tournament_id):
            return await self.matches.report_match(tournament_id, match_id, winner_id, reporter_id, draw_with)

    # ------------------------------------------------------------------
    # Round validation
    # ------------------------------------------------------------------

    async def validate_round(self, tournament_id: str, organizer_id: int) -> ValidationOutcome:
        """
        Close the current round and move the tournament forward.

        Raises:
            InvalidState: Not active, or matches still unreported
            Unauthorized: Caller is not the organizer
            PairingImpossible: Next Swiss round cannot be paired
            BracketInconsistent: Bracket data does not line up
        """
        async with self._tournament_lock(tournament_id):
            async with self.db.transaction() as session:
                tournament = await self._load(session, tournament_id, for_update=True)
                self._require_organizer(tournament, organizer_id, "validate rounds")
                self._require_status(tournament, TournamentStatus.ACTIVE, "validate a round")

                round_matches = await self._require_round_complete(session, tournament)
                stats = await self.db.get_all_player_stats(session, tournament)

                phase = tournament.tagged_phase
                if isinstance(phase, TopCutPhase):
                    outcome = await self._validate_top_cut(session, tournament, stats, round_matches)
                else:
                    outcome = await self._validate_swiss(session, tournament, stats)

            if outcome.finished:
                self._forget_lock(tournament_id)
            return outcome

    async def _require_round_complete(self, session: AsyncSession, tournament: Tournament) -> List[TournamentMatch]:
        round_matches = await self.db.get_matches(session, tournament, tournament.current_round)
        if not round_matches:
            raise InvalidState(
                f"No matches found for round {tournament.current_round} of {tournament.tournament_id}"
            )
        unreported = [m.match_id for m in round_matches if not m.reported]
        if unreported:
            raise InvalidState(
                f"Cannot validate round {tournament.current_round}: matches {', '.join(unreported)} are unreported"
            )
        return round_matches

    async def _validate_swiss(self, session: AsyncSession, tournament: Tournament,
                              stats: List[PlayerStats]) -> ValidationOutcome:
        validated = tournament.current_round
        ordered = await self._compute_standings(session, tournament, stats)

        eliminated = []
        if tournament.is_two_phase and validated == tournament.phase1_rounds and not tournament.day_two_cut_applied:
            threshold = TournamentParameterTable.points_threshold(tournament.phase1_rounds)
            for player in ordered:
                if player.active and player.score < threshold:
                    player.active = False
                    player.tiebreakers_frozen = True
                    eliminated.append(player.user_id)
            tournament.day_two_cut_applied = True
            self.logger.info(
                f"Day-2 cut for {tournament.tournament_id} at {threshold} points: {len(eliminated)} player(s) out"
            )

        if validated < tournament.num_swiss_rounds:
            if sum(1 for s in ordered if s.active) >= 2:
                tournament.current_round = validated + 1
                created = await self._pair_swiss_round(session, tournament, stats, tournament.current_round)
                self.logger.info(f"Round {validated} of {tournament.tournament_id} validated, round {tournament.current_round} paired")
                return ValidationOutcome(
                    tournament_id=tournament.tournament_id,
                    validated_round=validated,
                    phase=tournament.tagged_phase,
                    new_match_ids=[m.match_id for m in created],
                    eliminated_by_cut=eliminated,
                    standings=self._rows(ordered),
                )
            self.logger.warning(
                f"Fewer than two active players left in {tournament.tournament_id}, ending Swiss after round {validated}"
            )

        return await self._end_swiss(session, tournament, stats, ordered, validated, eliminated)

    async def _end_swiss(self, session: AsyncSession, tournament: Tournament, stats: List[PlayerStats],
                         ordered: List[PlayerStats], validated: int, eliminated: List[int]) -> ValidationOutcome:
        active = [s for s in ordered if s.active]
        qualifiers: List[PlayerStats] = []
        if len(ordered) >= TournamentStructureConstants.MIN_PLAYERS_FOR_TOP_CUT:
            if tournament.cut_type == CutType.POINTS:
                qualifiers = [s for s in active if s.score >= (tournament.points_required or 0)]
                if qualifiers:
                    tournament.top_cut_size = TournamentParameterTable.next_power_of_two(len(qualifiers))
            elif tournament.top_cut_size:
                qualifiers = active[:tournament.top_cut_size]

        if not qualifiers:
            return await self._finish(session, tournament, ordered, validated, eliminated)

        bracket_size = min(tournament.top_cut_size, TournamentParameterTable.next_power_of_two(len(qualifiers)))
        qualifier_ids = {s.user_id for s in qualifiers}
        for seed, player in enumerate(qualifiers, start=1):
            player.initial_seed = seed
        for player in ordered:
            if player.active and player.user_id not in qualifier_ids:
                player.active = False

        tournament.bracket_size = bracket_size
        tournament.phase = TournamentPhase.TOP_CUT
        tournament.current_round = validated + 1

        seeded = [SeededPlayer(s.user_id, s.discord_tag, s.initial_seed) for s in qualifiers]
        created = await self._create_bracket_round(
            session, tournament, stats, self.bracket.first_round(bracket_size, seeded)
        )
        self.logger.info(
            f"Swiss complete for {tournament.tournament_id}: top {bracket_size} cut with {len(qualifiers)} qualifier(s)"
        )
        return ValidationOutcome(
            tournament_id=tournament.tournament_id,
            validated_round=validated,
            phase=tournament.tagged_phase,
            new_match_ids=[m.match_id for m in created],
            eliminated_by_cut=eliminated,
            standings=self._rows(ordered),
        )

    async def _create_bracket_round(self, session: AsyncSession, tournament: Tournament,
                                    stats: Sequence[PlayerStats], bracket_matches: Sequence[BracketMatch]) -> List[TournamentMatch]:
        """Persist bracket pairings; byes auto-advance and dropped players forfeit."""
        by_id = {s.user_id: s for s in stats}
        round_number = tournament.current_round
        sequence = await self.db.count_matches(session, tournament)
        created = []

        for pairing in bracket_matches:
            sequence += 1
            match_id = format_match_id(sequence)
            player1 = by_id.get(pairing.player1.user_id)
            if player1 is None:
                raise BracketInconsistent(f"No stats for seed {pairing.player1.seed} in {pairing.position}")

            if pairing.is_bye:
                created.append(self._create_bye(session, tournament, player1, match_id, round_number,
                                                is_top_cut=True, position=pairing.position,
                                                next_position=pairing.next_position))
                continue

            player2 = by_id.get(pairing.player2.user_id)
            if player2 is None:
                raise BracketInconsistent(f"No stats for seed {pairing.player2.seed} in {pairing.position}")

            match = TournamentMatch(
                tournament_pk=tournament.id,
                match_id=match_id,
                round_number=round_number,
                is_top_cut=True,
                bracket_position=pairing.position,
                next_bracket_position=pairing.next_position,
                player1_id=player1.user_id,
                player1_tag=player1.discord_tag,
                player2_id=player2.user_id,
                player2_tag=player2.discord_tag,
                is_draw=False,
                reported=False,
            )
            session.add(match)
            created.append(match)

            if player1.dropped or player2.dropped:
                await session.flush()
                walkover_winner = player2 if player1.dropped and not player2.dropped else player1
                await self.matches.apply_result(session, tournament, match, walkover_winner.user_id, is_draw=False)
                self.logger.info(f"{match_id} ({pairing.position}) awarded to {walkover_winner.user_id} by forfeit")

        await session.flush()
        return created

    async def _validate_top_cut(self, session: AsyncSession, tournament: Tournament, stats: List[PlayerStats],
                                round_matches: List[TournamentMatch]) -> ValidationOutcome:
        validated = tournament.current_round
        self._eliminate_round_losers(tournament, stats, round_matches)

        if len(round_matches) == 1:
            return await self._finish(session, tournament, self._final_order(stats), validated, [])

        by_id = {s.user_id: s for s in stats}
        results = []
        for match in round_matches:
            winner = by_id.get(match.winner_id)
            results.append(BracketResult(
                position=match.bracket_position,
                next_position=match.next_bracket_position,
                winner=SeededPlayer(winner.user_id, winner.discord_tag, winner.initial_seed) if winner else None,
                reported=match.reported,
            ))

        next_round = self.bracket.next_round(results)
        tournament.current_round = validated + 1
        created = await self._create_bracket_round(session, tournament, stats, next_round)

        self.logger.info(
            f"Top cut round {validated} of {tournament.tournament_id} validated; "
            f"{self.bracket.round_name(len(next_round) * 2)} paired"
        )
        return ValidationOutcome(
            tournament_id=tournament.tournament_id,
            validated_round=validated,
            phase=tournament.tagged_phase,
            new_match_ids=[m.match_id for m in created],
            standings=self._rows(self._final_order(stats)),
        )

    def _eliminate_round_losers(self, tournament: Tournament, stats: Sequence[PlayerStats],
                                round_matches: Sequence[TournamentMatch]) -> None:
        by_id = {s.user_id: s for s in stats}
        stage = self.bracket.elimination_stage(len(round_matches) * 2)
        for match in round_matches:
            if match.winner_id is None:
                raise BracketInconsistent(f"Top cut match {match.match_id} has no winner")
            if match.is_bye:
                continue
            loser = by_id[match.opponent_of(match.winner_id)]
            loser.active = False
            loser.elimination_stage = stage
            loser.eliminated_in_round = tournament.current_round

    @staticmethod
    def _final_order(stats: Sequence[PlayerStats]) -> List[PlayerStats]:
        """
        Rank reconstruction: players still alive in the bracket by seed, then
        bracket losers from the latest round back (better seed first within a
        round), then everyone who missed the cut in Swiss order.
        """
        alive = sorted(
            (s for s in stats if s.initial_seed and s.eliminated_in_round is None),
            key=lambda s: s.initial_seed
        )
        knocked_out = sorted(
            (s for s in stats if s.initial_seed and s.eliminated_in_round is not None),
            key=lambda s: (-s.eliminated_in_round, s.initial_seed)
        )
        missed_cut = sorted(
            (s for s in stats if not s.initial_seed),
            key=lambda s: (s.swiss_rank or float('inf'), s.id)
        )
        return alive + knocked_out + missed_cut

    async def _finish(self, session: AsyncSession, tournament: Tournament, ranked: List[PlayerStats],
                      validated: int, eliminated: List[int]) -> ValidationOutcome:
        prizes = await self.finalizer.finalize(session, tournament, ranked)
        return ValidationOutcome(
            tournament_id=tournament.tournament_id,
            validated_round=validated,
            phase=tournament.tagged_phase,
            eliminated_by_cut=eliminated,
            finished=True,
            standings=[StandingRow(**row) for row in tournament.standings],
            prizes=prizes,
        )

    @staticmethod
    def _rows(ordered: Sequence[PlayerStats]) -> List[StandingRow]:
        return [StatsLedger.to_standing_row(s, rank) for rank, s in enumerate(ordered, start=1)]

    async def finalize_tournament(self, tournament_id: str, organizer_id: int) -> ValidationOutcome:
        """
        End an active tournament early on its current state.

        The current round must be fully reported. In Swiss the standings are
        recomputed; in the top cut the round's losers are eliminated and the
        remaining players are ranked by seed.
        """
        async with self._tournament_lock(tournament_id):
            async with self.db.transaction() as session:
                tournament = await self._load(session, tournament_id, for_update=True)
                self._require_organizer(tournament, organizer_id, "finalize this tournament")
                self._require_status(tournament, TournamentStatus.ACTIVE, "finalize")

                round_matches = await self._require_round_complete(session, tournament)
                stats = await self.db.get_all_player_stats(session, tournament)
                validated = tournament.current_round

                if isinstance(tournament.tagged_phase, TopCutPhase):
                    self._eliminate_round_losers(tournament, stats, round_matches)
                    ranked = self._final_order(stats)
                else:
                    ranked = await self._compute_standings(session, tournament, stats)

                self.logger.info(f"Tournament {tournament.tournament_id} finalized early by {organizer_id} after round {validated}")
                outcome = await self._finish(session, tournament, ranked, validated, [])

            self._forget_lock(tournament_id)
            return outcome

    # ------------------------------------------------------------------
    # Drops and resets
    # ------------------------------------------------------------------

    async def drop_player(self, tournament_id: str, player_id: int, organizer_id: int) -> DropResult:
        """
        Drop an active player.

        Their unreported current-round match is awarded to the opponent; an
        unplayed Swiss bye in the current round is voided.
        """
        async with self._tournament_lock(tournament_id):
            async with self.db.transaction() as session:
                tournament = await self._load(session, tournament_id, for_update=True)
                self._require_organizer(tournament, organizer_id, "drop players")
                self._require_status(tournament, TournamentStatus.ACTIVE, "drop a player")

                stats = await self.db.get_player_stats(session, tournament, player_id)
                if not stats:
                    raise NotFound("Player", player_id)
                if not stats.active:
                    raise InvalidState(f"Player {player_id} is already inactive in {tournament.tournament_id}")

                stats.active = False
                stats.dropped = True
                tournament.participants = [p for p in tournament.participants if p["user_id"] != player_id]

                result = DropResult(tournament_id=tournament.tournament_id, player_id=player_id)
                round_matches = await self.db.get_matches(session, tournament, tournament.current_round)
                current = next((m for m in round_matches if m.involves(player_id)), None)

                if current is not None and current.is_bye and not current.is_top_cut:
                    StatsLedger.restore(stats, current.player1_snapshot)
                    await session.delete(current)
                    result = DropResult(tournament.tournament_id, player_id, voided_bye_match_id=current.match_id)
                elif current is not None and not current.reported:
                    opponent_id = current.opponent_of(player_id)
                    await self.matches.apply_result(session, tournament, current, opponent_id, is_draw=False)
                    result = DropResult(tournament.tournament_id, player_id,
                                        awarded_match_id=current.match_id, awarded_to=opponent_id)

                await session.flush()
                self.logger.info(
                    f"Player {player_id} dropped from {tournament.tournament_id} in round {tournament.current_round}"
                    f"{'; ' + result.awarded_match_id + ' awarded to ' + str(result.awarded_to) if result.awarded_match_id else ''}"
                )
                return result

    async def reset_round(self, tournament_id: str, round_number: int, organizer_id: int) -> Tournament:
        """
        Return round ``round_number`` to unreported.

        Reported matches in the round are rolled back from their snapshots.
        For a past round every later match is deleted, players are restored
        to their state before the round's results, and any cut or bracket
        elimination made from that round on is undone.
        """
        async with self._tournament_lock(tournament_id):
            async with self.db.transaction() as session:
                tournament = await self._load(session, tournament_id, for_update=True)
                self._require_organizer(tournament, organizer_id, "reset rounds")
                self._require_status(tournament, TournamentStatus.ACTIVE, "reset a round")
                if round_number < 1 or round_number > tournament.current_round:
                    raise InvalidState(
                        f"Round {round_number} cannot be reset; current round is {tournament.current_round}"
                    )

                stats = await self.db.get_all_player_stats(session, tournament)
                by_id = {s.user_id: s for s in stats}
                all_matches = await self.db.get_matches(session, tournament)
                round_matches = [m for m in all_matches if m.round_number == round_number]
                later_matches = [m for m in all_matches if m.round_number > round_number]

                restore_points = {}
                for match in round_matches:
                    if match.reported and not match.is_bye:
                        restore_points[match.player1_id] = match.player1_snapshot
                        restore_points[match.player2_id] = match.player2_snapshot
                # Players without a result this round roll back to their first later snapshot
                for match in later_matches:
                    for user_id, snapshot in ((match.player1_id, match.player1_snapshot),
                                              (match.player2_id, match.player2_snapshot)):
                        if user_id is not None and snapshot is not None:
                            restore_points.setdefault(user_id, snapshot)

                for user_id, snapshot in restore_points.items():
                    if user_id in by_id:
                        StatsLedger.restore(by_id[user_id], snapshot)

                reset_count = 0
                for match in round_matches:
                    if match.reported and not match.is_bye:
                        match.reported = False
                        match.winner_id = None
                        match.is_draw = False
                        match.player1_snapshot = None
                        match.player2_snapshot = None
                        reset_count += 1

                deleted = await self.db.delete_matches_after_round(session, tournament, round_number)
                tournament.current_round = round_number
                self._undo_structure_after(tournament, stats, round_number)

                if isinstance(tournament.tagged_phase, SwissPhase):
                    await self._compute_standings(session, tournament, stats)

                await session.flush()
                self.logger.info(
                    f"Round {round_number} of {tournament.tournament_id} reset by {organizer_id}: "
                    f"{reset_count} result(s) reverted, {deleted} later match(es) deleted"
                )
                return tournament

    @staticmethod
    def _undo_structure_after(tournament: Tournament, stats: Sequence[PlayerStats], round_number: int) -> None:
        """Reverse cuts and eliminations decided when validating ``round_number`` or later."""
        if round_number <= tournament.num_swiss_rounds:
            if tournament.phase == TournamentPhase.TOP_CUT:
                for player in stats:
                    player.initial_seed = None
                    player.elimination_stage = None
                    player.eliminated_in_round = None
                    player.active = not player.dropped and not player.tiebreakers_frozen
                tournament.phase = TournamentPhase.SWISS
                tournament.bracket_size = 0
                if tournament.cut_type == CutType.POINTS:
                    tournament.top_cut_size = 0

            if tournament.day_two_cut_applied and round_number <= tournament.phase1_rounds:
                for player in stats:
                    if player.tiebreakers_frozen:
                        player.tiebreakers_frozen = False
                        player.active = not player.dropped
                tournament.day_two_cut_applied = False
            return

        for player in stats:
            if player.eliminated_in_round is not None and player.eliminated_in_round >= round_number:
                player.eliminated_in_round = None
                player.elimination_stage = None
                player.active = not player.dropped

    # ------------------------------------------------------------------
    # Cancel and delete
    # ------------------------------------------------------------------

    async def _refund_everyone(self, session: AsyncSession, tournament: Tournament) -> int:
        stats = await self.db.get_all_player_stats(session, tournament)
        for player in stats:
            user = await self.users.get_or_create_user(player.user_id, player.discord_tag, session=session)
            self.users.refund_stake(user, tournament.aura_cost)
        return len(stats)

    @staticmethod
    def _require_manager(tournament: Tournament, actor_id: int, is_admin: bool, action: str) -> None:
        if actor_id != tournament.organizer_id and not is_admin:
            raise Unauthorized(action)

    async def cancel_tournament(self, tournament_id: str, actor_id: int, is_admin: bool = False) -> Tournament:
        """Cancel a pending or active tournament, refunding every stake."""
        async with self._tournament_lock(tournament_id):
            async with self.db.transaction() as session:
                tournament = await self._load(session, tournament_id, for_update=True)
                self._require_manager(tournament, actor_id, is_admin, "cancel this tournament")
                if tournament.status not in (TournamentStatus.PENDING, TournamentStatus.ACTIVE):
                    raise InvalidState(
                        f"Tournament {tournament.tournament_id} is already {tournament.status.value}"
                    )

                refunded = await self._refund_everyone(session, tournament)
                await self.db.delete_tournament_records(session, tournament)
                tournament.status = TournamentStatus.CANCELLED
                tournament.phase = TournamentPhase.FINISHED
                tournament.finished_at = datetime.now(timezone.utc)

                self.logger.info(f"Tournament {tournament.tournament_id} cancelled by {actor_id}, {refunded} stake(s) refunded")

            self._forget_lock(tournament_id)
            return tournament

    async def delete_tournament(self, tournament_id: str, actor_id: int, is_admin: bool = False) -> None:
        """Delete a tournament record; stakes are refunded unless it already ended."""
        async with self._tournament_lock(tournament_id):
            async with self.db.transaction() as session:
                tournament = await self._load(session, tournament_id, for_update=True)
                self._require_manager(tournament, actor_id, is_admin, "delete this tournament")

                if tournament.status in (TournamentStatus.PENDING, TournamentStatus.ACTIVE):
                    await self._refund_everyone(session, tournament)
                await self.db.delete_tournament_records(session, tournament)
                await session.delete(tournament)

                self.logger.info(f"Tournament {tournament.tournament_id} deleted by {actor_id}")

            self._forget_lock(tournament_id)
