"""Swiss pairing engine: coverage, rematch avoidance and bye selection."""

import random

import pytest

from tournament_bot.data_models.tournament import PairingCandidate
from tournament_bot.utils.swiss_pairing import SwissPairingEngine
from tournament_bot.utils.tournament_exceptions import PairingImpossible


def candidate(user_id, score=0, opponents=(), bye_eligible=True, owp=0.0):
    return PairingCandidate(
        user_id=user_id, discord_tag=f"P{user_id}", score=score, owp=owp,
        opponents=frozenset(opponents), bye_eligible=bye_eligible
    )


def paired_ids(swiss_round):
    return [(a.user_id, b.user_id) for a, b in swiss_round.pairings]


def test_even_field_everyone_paired_once():
    engine = SwissPairingEngine(random.Random(1))
    result = engine.pair_round([candidate(i) for i in range(1, 7)], 1)

    seen = [uid for pair in paired_ids(result) for uid in pair]
    assert sorted(seen) == [1, 2, 3, 4, 5, 6]
    assert result.bye is None


def test_odd_field_bye_goes_to_lowest_score():
    engine = SwissPairingEngine(random.Random(1))
    players = [candidate(1, 6), candidate(2, 3), candidate(3, 0), candidate(4, 3), candidate(5, 6)]
    result = engine.pair_round(players, 3)

    assert result.bye.user_id == 3
    seen = sorted(uid for pair in paired_ids(result) for uid in pair)
    assert seen == [1, 2, 4, 5]


def test_bye_skips_players_who_already_had_one():
    players = [candidate(1, 3), candidate(2, 0, bye_eligible=False), candidate(3, 3)]
    assert SwissPairingEngine.select_bye(players).user_id == 1


def test_bye_falls_back_when_nobody_is_eligible():
    players = [candidate(7, 3, bye_eligible=False), candidate(8, 0, bye_eligible=False)]
    assert SwissPairingEngine.select_bye(players).user_id == 8


def test_backtracking_avoids_rematches():
    # 1 has met 2 and 3, so the only valid round is 1-4 and 2-3
    players = [
        candidate(1, opponents={2, 3}),
        candidate(2, opponents={1}),
        candidate(3, opponents={1}),
        candidate(4),
    ]
    result = SwissPairingEngine(random.Random(5)).pair_round(players, 3)

    pairs = {frozenset(p) for p in paired_ids(result)}
    assert pairs == {frozenset({1, 4}), frozenset({2, 3})}


def test_no_valid_pairing_raises():
    players = [
        candidate(1, opponents={2, 3, 4}),
        candidate(2, opponents={1}),
        candidate(3, opponents={1}),
        candidate(4, opponents={1}),
    ]
    with pytest.raises(PairingImpossible):
        SwissPairingEngine(random.Random(5)).pair_round(players, 4)


def test_find_pairings_edge_sizes():
    assert SwissPairingEngine.find_pairings([]) == ()
    assert SwissPairingEngine.find_pairings([candidate(1), candidate(2), candidate(3)]) is None


def test_score_groups_are_ordered_best_first():
    engine = SwissPairingEngine(random.Random(3))
    players = [candidate(i, score) for i, score in enumerate([0, 3, 6, 3, 0, 6], start=1)]
    ordered = engine.order_by_score_groups(players)

    assert [p.score for p in ordered] == [6, 6, 3, 3, 0, 0]


def test_players_pair_within_their_score_group_when_possible():
    engine = SwissPairingEngine(random.Random(11))
    players = [candidate(1, 6), candidate(2, 6), candidate(3, 0), candidate(4, 0)]
    pairs = {frozenset(p) for p in paired_ids(engine.pair_round(players, 3))}

    assert pairs == {frozenset({1, 2}), frozenset({3, 4})}


def test_same_seed_gives_same_pairings():
    players = [candidate(i) for i in range(1, 17)]
    first = SwissPairingEngine(random.Random(99)).pair_round(players, 1)
    second = SwissPairingEngine(random.Random(99)).pair_round(players, 1)

    assert paired_ids(first) == paired_ids(second)


def test_large_field_pairs_without_recursion_limit():
    rng = random.Random(7)
    engine = SwissPairingEngine(rng)
    players = [candidate(i) for i in range(1, 2001)]
    result = engine.pair_round(players, 1)

    assert len(result.pairings) == 1000


def test_several_rounds_never_repeat_an_opponent():
    engine = SwissPairingEngine(random.Random(42))
    history = {i: set() for i in range(1, 11)}
    scores = {i: 0 for i in range(1, 11)}

    for round_number in range(1, 6):
        players = [candidate(i, scores[i], history[i]) for i in history]
        result = engine.pair_round(players, round_number)
        for a, b in paired_ids(result):
            assert b not in history[a]
            history[a].add(b)
            history[b].add(a)
            scores[min(a, b)] += 3
