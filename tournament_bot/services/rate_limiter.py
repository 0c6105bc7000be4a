"""
Per-user command rate limiting.

Sliding-window counters kept in memory; the bot owner is never limited.
"""

import time
import asyncio
from functools import wraps
from collections import defaultdict, deque
import logging

from tournament_bot.config import Config

logger = logging.getLogger(__name__)

class SimpleRateLimiter:
    """In-memory sliding-window rate limiter keyed by user and command."""

    def __init__(self, clock=time.monotonic):
        self._requests = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._clock = clock

    async def is_allowed(self, user_id: int, command: str, limit: int, window: int) -> bool:
        """Record a call and report whether it fits within ``limit`` calls per ``window`` seconds."""
        if limit <= 0 or window <= 0:
            return False

        key = f"{user_id}:{command}"
        now = self._clock()

        async with self._lock:
            history = self._requests[key]
            while history and history[0] <= now - window:
                history.popleft()

            if len(history) < limit:
                history.append(now)
                return True

            logger.warning(f"Rate limit hit for {command} by {user_id}")
            return False

def rate_limit(command: str, limit: int = 1, window: int = 60):
    """Decorator for rate limiting app commands on a cog with ``bot.rate_limiter``."""
    def decorator(func):
        @wraps(func)
        async def wrapper(self, interaction, *args, **kwargs):
            if interaction.user.id == Config.OWNER_DISCORD_ID:
                return await func(self, interaction, *args, **kwargs)

            if not await self.bot.rate_limiter.is_allowed(interaction.user.id, command, limit, window):
                await interaction.response.send_message(
                    f"⏰ Rate limit exceeded. Please wait before using `/{command}` again.",
                    ephemeral=True
                )
                return

            return await func(self, interaction, *args, **kwargs)
        return wrapper
    return decorator
