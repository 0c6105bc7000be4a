"""Lifetime leaderboard queries."""

import pytest

from conftest import ORGANIZER_ID, SERVER_ID
from tournament_bot.services.leaderboard import LeaderboardService


@pytest.fixture
async def finished_tournament(ops, make_tournament, report_round):
    tournament_id = await make_tournament(4)
    for _ in range(3):
        await report_round(tournament_id)
        await ops.validate_round(tournament_id, ORGANIZER_ID)
    return tournament_id


@pytest.fixture
def service(db):
    return LeaderboardService(db.session_factory)


async def test_sorted_by_tournament_wins(service, finished_tournament):
    entries = await service.get_leaderboard("wins")

    assert [e.rank for e in entries] == [1, 2, 3, 4]
    assert entries[0].discord_id == 101
    assert entries[0].tournament_wins == 1
    assert entries[0].aura_delta == 300
    assert entries[0].rank_tier == "Bronze I"


async def test_users_without_tournaments_are_hidden(service, finished_tournament):
    entries = await service.get_leaderboard("gained")
    assert ORGANIZER_ID not in {e.discord_id for e in entries}


async def test_win_loss_ratio_with_no_losses_is_infinite(service, finished_tournament):
    entries = await service.get_leaderboard("winLossRatio")
    assert entries[0].discord_id == 101
    assert entries[0].win_loss_ratio == float("inf")
    assert entries[-1].win_loss_ratio == 0.0


async def test_delta_and_total_wins(service, finished_tournament):
    by_delta = await service.get_leaderboard("delta")
    assert [e.aura_delta for e in by_delta] == sorted((e.aura_delta for e in by_delta), reverse=True)

    by_total = await service.get_leaderboard("totalWins")
    assert [e.total_wins for e in by_total] == [3, 2, 1, 0]


async def test_filters(service, finished_tournament):
    assert [e.discord_id for e in await service.get_leaderboard("wins", specific_user_ids=[103, 102])] == [102, 103]
    assert await service.get_leaderboard("wins", specific_user_ids=[]) == []
    assert len(await service.get_leaderboard("wins", server_id=SERVER_ID)) == 4
    assert await service.get_leaderboard("wins", server_id=SERVER_ID + 1) == []


async def test_limit(db, finished_tournament):
    entries = await LeaderboardService(db.session_factory, limit=2).get_leaderboard("wins")
    assert len(entries) == 2


async def test_invalid_sort_key(service):
    with pytest.raises(ValueError):
        await service.get_leaderboard("elo")
