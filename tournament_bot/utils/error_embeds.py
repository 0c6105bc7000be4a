"""
Centralized error embeds for consistent error handling across the tournament bot.

Domain errors already carry a ``user_message``; ``from_error`` picks a title
for each error type so every command renders failures the same way.
"""

import discord

from tournament_bot.utils.tournament_exceptions import (
    AlreadyReported, BracketInconsistent, CapacityExceeded, InsufficientBalance, InvalidState,
    MalformedDraw, NotFound, PairingImpossible, TournamentError, Unauthorized
)


ERROR_TITLES = {
    NotFound: "Not Found",
    InvalidState: "Not Allowed Right Now",
    Unauthorized: "Permission Denied",
    AlreadyReported: "Already Reported",
    InsufficientBalance: "Not Enough Aura",
    CapacityExceeded: "Tournament Full",
    PairingImpossible: "Pairing Failed",
    BracketInconsistent: "Bracket Error",
    MalformedDraw: "Invalid Draw",
}


class ErrorEmbeds:
    """Centralized error embed factory for consistent error handling."""

    @staticmethod
    def from_error(error: TournamentError) -> discord.Embed:
        """Create embed for a domain error using its user-facing message."""
        title = next(
            (title for error_type, title in ERROR_TITLES.items() if isinstance(error, error_type)),
            "Tournament Error"
        )
        return discord.Embed(
            title=title,
            description=error.user_message,
            color=discord.Color.red()
        )

    @staticmethod
    def command_error(error: str) -> discord.Embed:
        """Create embed for general command errors."""
        return discord.Embed(
            title="Command Error",
            description=f"An error occurred: {error}\n\nPlease try again or contact an administrator.",
            color=discord.Color.red()
        )

    @staticmethod
    def invalid_input(message: str) -> discord.Embed:
        """Create embed for invalid user input."""
        return discord.Embed(
            title="Invalid Input",
            description=message,
            color=discord.Color.red()
        )

    @staticmethod
    def permission_denied() -> discord.Embed:
        """Create embed for permission errors."""
        return discord.Embed(
            title="Permission Denied",
            description="You don't have permission to perform this action.",
            color=discord.Color.red()
        )

    @staticmethod
    def guild_only() -> discord.Embed:
        return discord.Embed(
            title="Server Only",
            description="Tournaments belong to a server. Use this command inside one.",
            color=discord.Color.orange()
        )
