"""
Services package for the Aura tournament bot.

Read-side queries that span tournaments, such as the lifetime leaderboard,
and command-level infrastructure.
"""

from .base import BaseService
from .leaderboard import LeaderboardService
from .rate_limiter import SimpleRateLimiter

__all__ = ['BaseService', 'LeaderboardService', 'SimpleRateLimiter']
