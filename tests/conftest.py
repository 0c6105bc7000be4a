"""
Shared fixtures: a throwaway SQLite database per test and tournament
operations driven by a fixed random seed.
"""

import random

import pytest

from tournament_bot.database.database import Database
from tournament_bot.operations.tournament_operations import TournamentOperations

SERVER_ID = 424242
ORGANIZER_ID = 1
FIRST_PLAYER_ID = 101


def player_ids(count):
    return list(range(FIRST_PLAYER_ID, FIRST_PLAYER_ID + count))


def tag(user_id):
    return f"Player{user_id}"


@pytest.fixture
async def db(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'tournament.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def ops(db):
    return TournamentOperations(db, rng=random.Random(20240607))


@pytest.fixture
def make_tournament(ops):
    """Create a tournament, join ``count`` players and optionally start it."""
    async def _make(count, aura_cost=100, start=True, **kwargs):
        tournament = await ops.create_tournament(
            server_id=SERVER_ID, organizer_id=ORGANIZER_ID, aura_cost=aura_cost,
            organizer_tag="Organizer", **kwargs
        )
        for user_id in player_ids(count):
            await ops.join_tournament(tournament.tournament_id, user_id, tag(user_id))
        if start:
            await ops.start_tournament(tournament.tournament_id, ORGANIZER_ID)
        return tournament.tournament_id
    return _make


@pytest.fixture
def report_round(ops):
    """Report every open match of the current round; the lower user id wins."""
    async def _report(tournament_id):
        matches = await ops.get_round_matches(tournament_id)
        for match in matches:
            if match.reported:
                continue
            winner = min(match.player1_id, match.player2_id)
            await ops.report_match(tournament_id, match.match_id, winner, winner)
        return matches
    return _report


@pytest.fixture
def load_stats(db):
    """Current PlayerStats rows keyed by user id."""
    async def _load(tournament_id):
        async with db.get_session() as session:
            tournament = await db.get_tournament(session, tournament_id)
            stats = await db.get_all_player_stats(session, tournament)
            return {s.user_id: s for s in stats}
    return _load
