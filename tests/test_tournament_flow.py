"""End-to-end tournament lifecycle against a real database."""

import asyncio

import pytest

from conftest import ORGANIZER_ID, SERVER_ID, player_ids, tag
from tournament_bot.data_models.tournament import FinishedPhase, SwissPhase, TopCutPhase, ValidationOutcome
from tournament_bot.database.models import TournamentPhase, TournamentStatus
from tournament_bot.utils.tournament_exceptions import (
    CapacityExceeded, InsufficientBalance, InvalidState, NotFound, Unauthorized
)


async def balances(ops, user_ids):
    return {uid: (await ops.users.get_user(uid)).elo for uid in user_ids}


def assert_record_invariant(stats):
    for s in stats.values():
        assert s.wins + s.losses + s.draws == len(s.matches_played)
        assert s.score == 3 * s.wins + s.draws


# ============================================================================
# Registration
# ============================================================================

async def test_create_rejects_bad_input(ops):
    with pytest.raises(ValueError):
        await ops.create_tournament(SERVER_ID, ORGANIZER_ID, aura_cost=-1)
    with pytest.raises(ValueError):
        await ops.create_tournament(SERVER_ID, ORGANIZER_ID, aura_cost=10, prize_mode="jackpot")


async def test_join_charges_and_leave_refunds(ops, make_tournament):
    tournament_id = await make_tournament(2, start=False)
    user = await ops.users.get_user(101)
    assert user.elo == 900
    assert user.aura_spent_tournaments == 100

    tournament = await ops.leave_tournament(tournament_id, 101, tag(101))
    user = await ops.users.get_user(101)
    assert user.elo == 1000
    assert user.aura_spent_tournaments == 0
    assert tournament.participant_ids == [102]


async def test_concurrent_joins_are_all_recorded(ops, load_stats):
    tournament = await ops.create_tournament(server_id=SERVER_ID, organizer_id=ORGANIZER_ID, aura_cost=100)
    ids = player_ids(6)

    await asyncio.gather(*(ops.join_tournament(tournament.tournament_id, uid, tag(uid)) for uid in ids))

    tournament = await ops.get_tournament(tournament.tournament_id)
    assert sorted(tournament.participant_ids) == ids
    assert set(await load_stats(tournament.tournament_id)) == set(ids)
    assert await balances(ops, ids) == {uid: 900 for uid in ids}


async def test_concurrent_joins_respect_cap(ops, load_stats):
    tournament = await ops.create_tournament(
        server_id=SERVER_ID, organizer_id=ORGANIZER_ID, aura_cost=100, max_players=4
    )
    ids = player_ids(6)

    results = await asyncio.gather(
        *(ops.join_tournament(tournament.tournament_id, uid, tag(uid)) for uid in ids),
        return_exceptions=True
    )

    assert sum(isinstance(r, CapacityExceeded) for r in results) == 2
    tournament = await ops.get_tournament(tournament.tournament_id)
    joined = sorted(tournament.participant_ids)
    assert len(joined) == 4
    assert sorted(await load_stats(tournament.tournament_id)) == joined
    assert await balances(ops, joined) == {uid: 900 for uid in joined}


async def test_join_guards(ops, make_tournament):
    tournament_id = await make_tournament(2, start=False, max_players=3)

    with pytest.raises(InvalidState):
        await ops.join_tournament(tournament_id, 101, tag(101))
    with pytest.raises(Unauthorized):
        await ops.join_tournament(tournament_id, 500, tag(500), executing_user_id=102)

    await ops.join_tournament(tournament_id, 103, tag(103), executing_user_id=ORGANIZER_ID)
    with pytest.raises(CapacityExceeded):
        await ops.join_tournament(tournament_id, 104, tag(104))


async def test_insufficient_balance(ops, make_tournament):
    tournament_id = await make_tournament(0, aura_cost=5000, start=False)
    with pytest.raises(InsufficientBalance):
        await ops.join_tournament(tournament_id, 101, tag(101))

    tournament = await ops.get_tournament(tournament_id)
    assert tournament.participants == []


async def test_start_guards(ops, make_tournament):
    tournament_id = await make_tournament(3, start=False)
    with pytest.raises(Unauthorized):
        await ops.start_tournament(tournament_id, 101)
    with pytest.raises(InvalidState):
        await ops.start_tournament(tournament_id, ORGANIZER_ID)

    await ops.join_tournament(tournament_id, 104, tag(104))
    tournament = await ops.start_tournament(tournament_id, ORGANIZER_ID)
    assert tournament.status == TournamentStatus.ACTIVE
    assert tournament.tagged_phase == SwissPhase(round_number=1)

    with pytest.raises(InvalidState):
        await ops.join_tournament(tournament_id, 105, tag(105))


# ============================================================================
# Swiss only
# ============================================================================

async def test_small_field_winner_takes_all(ops, db, make_tournament, report_round, load_stats):
    tournament_id = await make_tournament(4)

    for round_number in (1, 2):
        await report_round(tournament_id)
        outcome = await ops.validate_round(tournament_id, ORGANIZER_ID)
        assert outcome.validated_round == round_number
        assert outcome.phase == SwissPhase(round_number=round_number + 1)
        assert_record_invariant(await load_stats(tournament_id))

    await report_round(tournament_id)
    outcome = await ops.validate_round(tournament_id, ORGANIZER_ID)

    assert outcome.finished
    assert outcome.phase == FinishedPhase()
    assert outcome.prizes == {101: 400}
    assert [row.user_id for row in outcome.standings][0] == 101

    champion = await ops.users.get_user(101)
    assert champion.elo == 1300
    assert champion.rank == "Bronze I"
    assert champion.tournament_wins == 1
    assert (champion.total_wins, champion.total_losses) == (3, 0)

    tournament = await ops.get_tournament(tournament_id)
    assert tournament.status == TournamentStatus.FINISHED
    assert await load_stats(tournament_id) == {}
    async with db.get_session() as session:
        assert await db.count_matches(session, tournament) == 0

    standings = await ops.get_standings(tournament_id)
    assert standings[0].prize == 400
    assert len(standings) == 4


async def test_five_players_each_bye_once(ops, make_tournament, report_round, load_stats):
    tournament_id = await make_tournament(5)
    bye_holders = []

    for round_number in (1, 2, 3):
        matches = await report_round(tournament_id)
        bye_holders += [m.player1_id for m in matches if m.is_bye]
        if round_number < 3:
            stats = await load_stats(tournament_id)
            assert_record_invariant(stats)
            assert all(s.byes <= 1 for s in stats.values())
        outcome = await ops.validate_round(tournament_id, ORGANIZER_ID)

    assert len(bye_holders) == 3
    assert len(set(bye_holders)) == 3
    assert bye_holders[0] == 101
    assert outcome.finished
    assert sum(outcome.prizes.values()) == 500


async def test_validate_needs_all_results(ops, make_tournament):
    tournament_id = await make_tournament(4)
    with pytest.raises(InvalidState):
        await ops.validate_round(tournament_id, ORGANIZER_ID)
    with pytest.raises(Unauthorized):
        await ops.validate_round(tournament_id, 101)


async def test_standings_are_read_only(ops, make_tournament, report_round):
    tournament_id = await make_tournament(6)
    await report_round(tournament_id)
    await ops.validate_round(tournament_id, ORGANIZER_ID)

    first = await ops.get_standings(tournament_id)
    second = await ops.get_standings(tournament_id)
    assert first == second
    assert [row.rank for row in first] == list(range(1, 7))
    assert all(0.0 <= row.owp <= 1.0 and 0.0 <= row.oowp <= 1.0 for row in first)


# ============================================================================
# Top cut
# ============================================================================

async def test_eight_players_final(ops, make_tournament, report_round):
    tournament_id = await make_tournament(8)
    ids = player_ids(8)

    for _ in range(3):
        await report_round(tournament_id)
        outcome = await ops.validate_round(tournament_id, ORGANIZER_ID)

    assert outcome.phase == TopCutPhase(round_number=4, bracket_size=2)
    final = (await ops.get_round_matches(tournament_id))[0]
    assert final.bracket_position == "Final"
    assert final.is_top_cut

    with pytest.raises(InvalidState):
        await ops.report_match(tournament_id, final.match_id, final.player1_id, final.player1_id,
                               draw_with=final.player2_id)

    await report_round(tournament_id)
    outcome = await ops.validate_round(tournament_id, ORGANIZER_ID)

    champion_id = outcome.standings[0].user_id
    assert outcome.finished
    assert champion_id == min(final.player1_id, final.player2_id)
    assert outcome.standings[0].elimination_stage == "Winner"
    assert outcome.standings[1].elimination_stage == "Runner-up"
    assert outcome.prizes == {champion_id: 800}

    after = await balances(ops, ids)
    assert after[champion_id] == 1700
    assert all(after[uid] == 900 for uid in ids if uid != champion_id)
    assert sum(after.values()) == 8 * 1000
    assert (await ops.users.get_user(champion_id)).tournament_wins == 1


async def test_nine_players_semifinals_spread(ops, make_tournament, report_round):
    tournament_id = await make_tournament(9, prize_mode="spread")

    for _ in range(4):
        await report_round(tournament_id)
        outcome = await ops.validate_round(tournament_id, ORGANIZER_ID)

    assert outcome.phase == TopCutPhase(round_number=5, bracket_size=4)
    semis = await ops.get_round_matches(tournament_id)
    assert sorted(m.bracket_position for m in semis) == ["SF1", "SF2"]
    assert all(m.next_bracket_position == "Final" for m in semis)

    await report_round(tournament_id)
    outcome = await ops.validate_round(tournament_id, ORGANIZER_ID)
    assert [m.bracket_position for m in await ops.get_round_matches(tournament_id)] == ["Final"]
    live = await ops.get_standings(tournament_id)
    assert [row.elimination_stage for row in live[2:4]] == ["SF", "SF"]

    await report_round(tournament_id)
    outcome = await ops.validate_round(tournament_id, ORGANIZER_ID)

    assert outcome.finished
    assert [row.elimination_stage for row in outcome.standings[:4]] == ["Winner", "Runner-up", "SF", "SF"]
    assert all(row.elimination_stage is None for row in outcome.standings[4:])
    assert sum(outcome.prizes.values()) == 900
    assert outcome.prizes[outcome.standings[0].user_id] == 451
    assert outcome.prizes[outcome.standings[1].user_id] == 225


# ============================================================================
# Drops
# ============================================================================

async def test_drop_awards_open_match(ops, make_tournament, report_round, load_stats):
    tournament_id = await make_tournament(8)
    match = next(m for m in await ops.get_round_matches(tournament_id))
    dropped, opponent = match.player1_id, match.player2_id

    result = await ops.drop_player(tournament_id, dropped, ORGANIZER_ID)

    assert result.awarded_match_id == match.match_id
    assert result.awarded_to == opponent
    stats = await load_stats(tournament_id)
    assert (stats[dropped].losses, stats[dropped].active, stats[dropped].dropped) == (1, False, True)
    assert stats[opponent].wins == 1
    assert dropped not in (await ops.get_tournament(tournament_id)).participant_ids

    with pytest.raises(InvalidState):
        await ops.drop_player(tournament_id, dropped, ORGANIZER_ID)

    await report_round(tournament_id)
    await ops.validate_round(tournament_id, ORGANIZER_ID)
    round_two = await ops.get_round_matches(tournament_id)
    assert not any(m.involves(dropped) for m in round_two)
    assert sum(1 for m in round_two if m.is_bye) == 1


async def test_drop_voids_swiss_bye(ops, make_tournament, report_round, load_stats):
    tournament_id = await make_tournament(5)
    bye = next(m for m in await ops.get_round_matches(tournament_id) if m.is_bye)

    result = await ops.drop_player(tournament_id, bye.player1_id, ORGANIZER_ID)

    assert result.voided_bye_match_id == bye.match_id
    stats = await load_stats(tournament_id)
    assert (stats[bye.player1_id].score, stats[bye.player1_id].byes) == (0, 0)
    assert all(not m.is_bye for m in await ops.get_round_matches(tournament_id))

    await report_round(tournament_id)
    outcome = await ops.validate_round(tournament_id, ORGANIZER_ID)
    assert outcome.validated_round == 1


async def test_drop_requires_organizer(ops, make_tournament):
    tournament_id = await make_tournament(4)
    with pytest.raises(Unauthorized):
        await ops.drop_player(tournament_id, 101, 102)
    with pytest.raises(NotFound):
        await ops.drop_player(tournament_id, 999, ORGANIZER_ID)


# ============================================================================
# Resets
# ============================================================================

def record_view(stats):
    return {
        uid: (s.score, s.wins, s.losses, s.draws, s.byes, list(s.matches_played), list(s.opponents))
        for uid, s in stats.items()
    }


async def test_reset_current_round_restores_stats(ops, make_tournament, report_round, load_stats):
    tournament_id = await make_tournament(8)
    await report_round(tournament_id)
    await ops.validate_round(tournament_id, ORGANIZER_ID)
    before = record_view(await load_stats(tournament_id))

    await report_round(tournament_id)
    reported = record_view(await load_stats(tournament_id))
    tournament = await ops.reset_round(tournament_id, 2, ORGANIZER_ID)

    assert tournament.current_round == 2
    assert record_view(await load_stats(tournament_id)) == before
    assert not any(m.reported for m in await ops.get_round_matches(tournament_id))

    # Reporting the same results again lands on the same stats
    await report_round(tournament_id)
    assert record_view(await load_stats(tournament_id)) == reported


async def test_reset_past_round_deletes_later_rounds(ops, make_tournament, report_round, load_stats):
    tournament_id = await make_tournament(8)
    await report_round(tournament_id)
    await ops.validate_round(tournament_id, ORGANIZER_ID)
    await report_round(tournament_id)

    await ops.reset_round(tournament_id, 1, ORGANIZER_ID)

    stats = await load_stats(tournament_id)
    assert all(s.score == 0 and s.matches_played == [] and s.opponents == [] for s in stats.values())
    assert await ops.get_round_matches(tournament_id, 2) == []
    assert not any(m.reported for m in await ops.get_round_matches(tournament_id, 1))

    # The round replays normally
    await report_round(tournament_id)
    outcome = await ops.validate_round(tournament_id, ORGANIZER_ID)
    assert outcome.phase == SwissPhase(round_number=2)


async def test_reset_undoes_top_cut(ops, make_tournament, report_round, load_stats):
    tournament_id = await make_tournament(8)
    for _ in range(3):
        await report_round(tournament_id)
        await ops.validate_round(tournament_id, ORGANIZER_ID)

    tournament = await ops.reset_round(tournament_id, 3, ORGANIZER_ID)

    assert tournament.phase == TournamentPhase.SWISS
    assert tournament.bracket_size == 0
    stats = await load_stats(tournament_id)
    assert all(s.active and s.initial_seed is None for s in stats.values())
    assert not any(m.reported for m in await ops.get_round_matches(tournament_id, 3))


async def test_reset_rejects_future_round(ops, make_tournament):
    tournament_id = await make_tournament(4)
    with pytest.raises(InvalidState):
        await ops.reset_round(tournament_id, 2, ORGANIZER_ID)


# ============================================================================
# Two-phase Swiss
# ============================================================================

async def test_day_two_cut_and_reset(ops, make_tournament, report_round, load_stats):
    tournament_id = await make_tournament(65, aura_cost=0)
    tournament = await ops.get_tournament(tournament_id)
    assert tournament.is_two_phase
    assert (tournament.phase1_rounds, tournament.phase2_rounds) == (6, 2)

    for _ in range(6):
        await report_round(tournament_id)
        outcome = await ops.validate_round(tournament_id, ORGANIZER_ID)

    assert outcome.eliminated_by_cut
    stats = await load_stats(tournament_id)
    for uid in outcome.eliminated_by_cut:
        assert stats[uid].score < 10
        assert not stats[uid].active and stats[uid].tiebreakers_frozen
    survivors = {uid for uid, s in stats.items() if s.active}
    assert survivors and all(stats[uid].score >= 10 for uid in survivors)

    round_seven = await ops.get_round_matches(tournament_id)
    assert all(m.round_number == 7 for m in round_seven)
    assert {uid for m in round_seven for uid in (m.player1_id, m.player2_id) if uid} == survivors

    tournament = await ops.reset_round(tournament_id, 6, ORGANIZER_ID)
    assert not tournament.day_two_cut_applied
    assert tournament.current_round == 6
    stats = await load_stats(tournament_id)
    assert all(s.active and not s.tiebreakers_frozen for s in stats.values())
    assert await ops.get_round_matches(tournament_id, 7) == []


# ============================================================================
# Points cut
# ============================================================================

async def test_points_cut_sizes_bracket_to_qualifiers(ops, make_tournament, report_round, load_stats):
    tournament_id = await make_tournament(8, cut_type="points", points_required=3)
    for _ in range(2):
        await report_round(tournament_id)
        await ops.validate_round(tournament_id, ORGANIZER_ID)
    await report_round(tournament_id)
    swiss_scores = {uid: s.score for uid, s in (await load_stats(tournament_id)).items()}
    qualifiers = {uid for uid, score in swiss_scores.items() if score >= 3}
    bracket_size = 1
    while bracket_size < len(qualifiers):
        bracket_size *= 2

    outcome = await ops.validate_round(tournament_id, ORGANIZER_ID)

    assert 4 <= len(qualifiers) < 8
    assert outcome.phase == TopCutPhase(round_number=4, bracket_size=bracket_size)
    stats = await load_stats(tournament_id)
    assert {uid for uid, s in stats.items() if s.active} == qualifiers
    assert all(stats[uid].initial_seed for uid in qualifiers)

    first_round = await ops.get_round_matches(tournament_id)
    assert len(first_round) == bracket_size // 2
    byes = [m for m in first_round if m.is_bye]
    assert len(byes) == bracket_size - len(qualifiers)
    assert all(stats[m.player1_id].initial_seed <= len(byes) for m in byes)


async def test_points_cut_without_qualifiers_finishes(ops, make_tournament, report_round):
    tournament_id = await make_tournament(8, cut_type="points", points_required=99)
    for _ in range(3):
        await report_round(tournament_id)
        outcome = await ops.validate_round(tournament_id, ORGANIZER_ID)

    assert outcome.finished
    assert outcome.validated_round == 3
    assert sum(outcome.prizes.values()) == 800
    tournament = await ops.get_tournament(tournament_id)
    assert tournament.status == TournamentStatus.FINISHED


# ============================================================================
# Early finish, cancel and delete
# ============================================================================

async def test_finalize_early(ops, make_tournament, report_round):
    tournament_id = await make_tournament(4, aura_cost=50)
    await report_round(tournament_id)

    outcome = await ops.finalize_tournament(tournament_id, ORGANIZER_ID)

    assert isinstance(outcome, ValidationOutcome)
    assert outcome.finished
    assert sum(outcome.prizes.values()) == 200
    with pytest.raises(InvalidState):
        await ops.finalize_tournament(tournament_id, ORGANIZER_ID)


async def test_cancel_refunds_everyone(ops, make_tournament, load_stats):
    tournament_id = await make_tournament(6)

    with pytest.raises(Unauthorized):
        await ops.cancel_tournament(tournament_id, 101)
    tournament = await ops.cancel_tournament(tournament_id, 101, is_admin=True)

    assert tournament.status == TournamentStatus.CANCELLED
    assert await load_stats(tournament_id) == {}
    assert set((await balances(ops, player_ids(6))).values()) == {1000}
    with pytest.raises(InvalidState):
        await ops.cancel_tournament(tournament_id, ORGANIZER_ID)


async def test_delete_tournament(ops, make_tournament):
    tournament_id = await make_tournament(4, start=False)
    await ops.delete_tournament(tournament_id, ORGANIZER_ID)

    with pytest.raises(NotFound):
        await ops.get_tournament(tournament_id)
    assert set((await balances(ops, player_ids(4))).values()) == {1000}


async def test_list_tournaments_by_status(ops, make_tournament):
    pending = await make_tournament(2, start=False)
    active = await make_tournament(4)

    listed = await ops.list_tournaments(SERVER_ID, [TournamentStatus.PENDING])
    assert [t.tournament_id for t in listed] == [pending]
    assert {t.tournament_id for t in await ops.list_tournaments(SERVER_ID)} == {pending, active}
    assert await ops.list_tournaments(SERVER_ID + 1) == []


# ============================================================================
# Concurrency
# ============================================================================

async def test_concurrent_validations_run_once(ops, make_tournament, report_round):
    tournament_id = await make_tournament(8)
    await report_round(tournament_id)

    results = await asyncio.gather(
        ops.validate_round(tournament_id, ORGANIZER_ID),
        ops.validate_round(tournament_id, ORGANIZER_ID),
        return_exceptions=True
    )

    assert sum(isinstance(r, ValidationOutcome) for r in results) == 1
    assert sum(isinstance(r, InvalidState) for r in results) == 1
    assert (await ops.get_tournament(tournament_id)).current_round == 2


async def test_locks_released_once_tournament_closes(ops, make_tournament, report_round):
    finished_id = await make_tournament(4)
    cancelled_id = await make_tournament(4, start=False)
    live_id = await make_tournament(4)
    await report_round(finished_id)

    await ops.finalize_tournament(finished_id, ORGANIZER_ID)
    await ops.cancel_tournament(cancelled_id, ORGANIZER_ID)

    assert finished_id not in ops._locks
    assert cancelled_id not in ops._locks
    assert live_id in ops._locks

    await ops.delete_tournament(live_id, ORGANIZER_ID)
    assert live_id not in ops._locks
