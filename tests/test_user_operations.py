"""Lifetime user records."""

import pytest

from tournament_bot.config import Config
from tournament_bot.operations.user_operations import UserOperations, username_from_tag
from tournament_bot.utils.rank_tiers import RankTiers
from tournament_bot.utils.tournament_exceptions import InsufficientBalance, NotFound


@pytest.fixture
def users(db):
    return UserOperations(db)


def test_username_from_tag():
    assert username_from_tag("Player#1234") == "Player"
    assert username_from_tag("player") == "player"


async def test_new_user_starts_from_configured_aura(users):
    user = await users.get_or_create_user(101, "Player101")

    assert user.elo == Config.STARTING_AURA
    assert user.rank == RankTiers.find_rank(Config.STARTING_AURA) == "Iron I"
    assert (user.peak_elo, user.lowest_elo) == (Config.STARTING_AURA, Config.STARTING_AURA)


async def test_existing_user_username_refreshed(users):
    await users.get_or_create_user(101, "Player101")
    user = await users.get_or_create_user(101, "Renamed#0001")

    assert user.username == "Renamed"
    assert (await users.get_user(101)).username == "Renamed"


async def test_unknown_user_not_found(users):
    with pytest.raises(NotFound):
        await users.get_user(404)


async def test_stake_moves_peak_and_lowest(users, db):
    async with db.transaction() as session:
        user = await users.get_or_create_user(101, "Player101", session=session)
        users.charge_stake(user, 300)
        users.refund_stake(user, 300)
        users.credit_prize(user, 500)
        with pytest.raises(InsufficientBalance):
            users.charge_stake(user, 10000)

    user = await users.get_user(101)
    assert user.elo == 1500
    assert user.lowest_elo == 700
    assert user.peak_elo == 1500
    assert user.aura_spent_tournaments == 0
    assert user.rank == RankTiers.find_rank(1500)
