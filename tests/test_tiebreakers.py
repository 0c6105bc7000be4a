"""OWP/OOWP calculation and standings order."""

import random

import pytest

from tournament_bot.data_models.tournament import PlayerRecord, Tiebreakers
from tournament_bot.utils.tiebreakers import TiebreakerCalculator


def record(user_id, wins=0, losses=0, draws=0, byes=0, opponents=(), **kwargs):
    return PlayerRecord(
        user_id=user_id, discord_tag=f"P{user_id}",
        score=3 * wins + draws, wins=wins, losses=losses, draws=draws, byes=byes,
        matches_played=wins + losses + draws, opponents=frozenset(opponents), **kwargs
    )


def four_player_field():
    # Round 1: A beat B, C beat D. Round 2: A beat C, B beat D.
    return [
        record(1, wins=2, opponents={2, 3}),
        record(2, wins=1, losses=1, opponents={1, 4}),
        record(3, wins=1, losses=1, opponents={4, 1}),
        record(4, losses=2, opponents={3, 2}),
    ]


def test_win_rate_excludes_byes():
    assert TiebreakerCalculator.win_rate(record(1, wins=2, losses=1, byes=1)) == pytest.approx(0.5)


def test_win_rate_without_real_matches_is_zero():
    assert TiebreakerCalculator.win_rate(record(1, wins=1, byes=1)) == 0.0
    assert TiebreakerCalculator.win_rate(record(1)) == 0.0


def test_draw_counts_as_half_a_win():
    assert TiebreakerCalculator.win_rate(record(1, wins=1, draws=1)) == pytest.approx(0.75)


def test_dropped_player_capped_unless_frozen():
    assert TiebreakerCalculator.win_rate(record(1, wins=3, dropped=True)) == pytest.approx(0.75)
    frozen = record(1, wins=3, dropped=True, tiebreakers_frozen=True)
    assert TiebreakerCalculator.win_rate(frozen) == pytest.approx(1.0)


def test_owp_and_oowp_values():
    calc = TiebreakerCalculator(random.Random(0))
    tb = calc.compute_tiebreakers(four_player_field())

    assert tb[1].owp == pytest.approx(0.5)
    assert tb[2].owp == pytest.approx(0.625)  # 0-2 opponent floored at 0.25
    assert tb[3].owp == pytest.approx(0.625)
    assert tb[4].owp == pytest.approx(0.5)
    assert tb[1].oowp == pytest.approx(0.625)
    assert tb[4].oowp == pytest.approx(0.625)


def test_tiebreakers_stay_in_unit_interval():
    rng = random.Random(3)
    records = []
    for user_id in range(1, 21):
        wins = rng.randint(0, 4)
        opponents = set(rng.sample([i for i in range(1, 21) if i != user_id], 4))
        records.append(record(user_id, wins=wins, losses=4 - wins, opponents=opponents))
    for values in TiebreakerCalculator(rng).compute_tiebreakers(records).values():
        assert 0.0 <= values.owp <= 1.0
        assert 0.0 <= values.oowp <= 1.0


def test_no_opponents_gives_zero():
    tb = TiebreakerCalculator(random.Random(0)).compute_tiebreakers([record(1, wins=1, byes=1)])
    assert tb[1] == Tiebreakers(owp=0.0, oowp=0.0)


def test_frozen_players_keep_their_values():
    field = four_player_field()
    field[3] = record(4, losses=2, opponents={3, 2}, owp=0.9, oowp=0.8, tiebreakers_frozen=True)
    tb = TiebreakerCalculator(random.Random(0)).compute_tiebreakers(field)

    assert tb[4] == Tiebreakers(owp=0.9, oowp=0.8)


def test_order_by_score_then_tiebreakers():
    result = TiebreakerCalculator(random.Random(0)).standings(four_player_field(), {})

    assert result.order[0] == 1
    assert result.order[-1] == 4
    assert set(result.order[1:3]) == {2, 3}


def test_head_to_head_breaks_an_exact_tie():
    h2h = TiebreakerCalculator.head_to_head_from_results([(3, 2)])
    for seed in range(5):
        result = TiebreakerCalculator(random.Random(seed)).standings(four_player_field(), h2h)
        assert result.order == (1, 3, 2, 4)


def test_fewer_matches_ranks_below():
    records = [record(1, wins=1), record(2, wins=1, losses=1)]
    tb = {1: Tiebreakers(0.0, 0.0), 2: Tiebreakers(0.0, 0.0)}
    assert TiebreakerCalculator(random.Random(0)).order(records, tb, {}) == [2, 1]


def test_random_tie_break_is_reproducible():
    records = [record(i) for i in range(1, 9)]
    first = TiebreakerCalculator(random.Random(17)).standings(records, {})
    second = TiebreakerCalculator(random.Random(17)).standings(records, {})

    assert first.order == second.order
    assert sorted(first.order) == list(range(1, 9))
