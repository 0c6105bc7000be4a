"""
Bot-wide constants for the Aura tournament bot.

Lookup tables for tournament structure, prize distribution and rank tiers
live here so the engines in ``tournament_bot.utils`` stay free of magic numbers.
"""

class ScoringConstants:
    """Match point values."""

    WIN_POINTS = 3
    DRAW_POINTS = 1
    LOSS_POINTS = 0

    # Opponent win-rate bounds used for OWP
    OWP_FLOOR = 0.25
    DROPPED_WIN_RATE_CAP = 0.75
    DRAW_WIN_WEIGHT = 0.5


class TournamentStructureConstants:
    """Swiss round count and top cut size keyed by participant count."""

    # (max participants, swiss rounds, top cut, phase-2 rounds or 0 for single phase)
    PARAMETER_TABLE = [
        (7, 3, 0, 0),
        (8, 3, 2, 0),
        (16, 4, 4, 0),
        (32, 5, 8, 0),
        (64, 6, 8, 0),
        (128, 6, 16, 2),
        (256, 7, 16, 2),
        (512, 8, 32, 2),
        (1024, 8, 32, 3),
        (2048, 8, 32, 4),
    ]
    # Anything above the table
    OVERFLOW_PARAMETERS = (9, 32, 4)

    # Below this many participants the tournament ends after Swiss even with a configured cut
    MIN_PLAYERS_FOR_TOP_CUT = 8

    TOURNAMENT_ID_LENGTH = 6
    MATCH_ID_WIDTH = 3


class PrizeConstants:
    """Prize proportions in basis points (1/10000 of the pool) per finishing band."""

    BASIS = 10000

    # (first rank, last rank, share of pool for the whole band)
    PRIZE_PROPORTIONS = {
        4: [
            (1, 1, 5000),
            (2, 2, 2500),
            (3, 3, 1250),
            (4, 4, 1250),
        ],
        8: [
            (1, 1, 4000),
            (2, 2, 2000),
            (3, 4, 1000),
            (5, 8, 500),
        ],
        16: [
            (1, 1, 3500),
            (2, 2, 1800),
            (3, 4, 850),
            (5, 8, 400),
            (9, 16, 200),
        ],
        32: [
            (1, 1, 3000),
            (2, 2, 1500),
            (3, 4, 750),
            (5, 8, 300),
            (9, 16, 150),
            (17, 32, 75),
        ],
    }


class RankConstants:
    """Aura thresholds for rank tiers, ascending."""

    RANK_THRESHOLDS = [
        ("Iron I", 0),
        ("Iron II", 1100),
        ("Iron III", 1200),
        ("Bronze I", 1300),
        ("Bronze II", 1400),
        ("Bronze III", 1500),
        ("Silver I", 1600),
        ("Silver II", 1700),
        ("Silver III", 1800),
        ("Gold I", 1900),
        ("Gold II", 2000),
        ("Gold III", 2100),
        ("Platinum I", 2250),
        ("Platinum II", 2400),
        ("Platinum III", 2550),
        ("Diamond I", 2700),
        ("Diamond II", 2900),
        ("Diamond III", 3100),
        ("Master", 3400),
        ("Grandmaster", 3800),
        ("Champion", 4500),
    ]


class LeaderboardConstants:
    """Accepted leaderboard sort keys."""

    SORT_KEYS = ("wins", "gained", "delta", "totalWins", "winLossRatio")
    DEFAULT_SORT = "wins"


class UIConstants:
    """Constants for Discord UI elements."""

    DEFAULT_EMBED_COLOR = 0x3498db  # Blue
    GOLD_RANK_COLOR = 0xffd700     # Gold for the winner
    ERROR_COLOR = 0xe74c3c         # Red for errors
    SUCCESS_COLOR = 0x2ecc71       # Green for success

    TROPHY_EMOJI = "🏆"
    AURA_EMOJI = "✨"

    STANDINGS_PAGE_SIZE = 20
