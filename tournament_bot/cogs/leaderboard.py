import discord
from discord import app_commands
from discord.ext import commands
from typing import List, Optional
import logging

from tournament_bot.constants import UIConstants
from tournament_bot.data_models.tournament import LeaderboardEntry
from tournament_bot.services.leaderboard import LeaderboardService
from tournament_bot.services.rate_limiter import rate_limit
from tournament_bot.utils.error_embeds import ErrorEmbeds
from tournament_bot.utils.rank_tiers import RankTiers
from tournament_bot.utils.tournament_exceptions import NotFound

logger = logging.getLogger(__name__)

SORT_LABELS = {
    "wins": "Tournament Wins",
    "gained": "Aura Gained",
    "delta": "Aura Net",
    "totalWins": "Match Wins",
    "winLossRatio": "Win/Loss Ratio",
}


class LeaderboardCog(commands.Cog):
    """Lifetime leaderboard and rank commands"""

    def __init__(self, bot):
        self.bot = bot
        self.leaderboard_service = LeaderboardService(bot.db.session_factory)

    @app_commands.command(name="leaderboard", description="View the lifetime tournament leaderboard")
    @app_commands.describe(sort_by="Ranking criterion", this_server="Only players from this server's tournaments")
    @app_commands.choices(sort_by=[
        app_commands.Choice(name=label, value=key) for key, label in SORT_LABELS.items()
    ])
    @rate_limit("leaderboard", limit=5, window=60)
    async def leaderboard(self, interaction: discord.Interaction, sort_by: str = "wins", this_server: bool = False):
        """Display the lifetime leaderboard."""
        await interaction.response.defer()

        try:
            entries = await self.leaderboard_service.get_leaderboard(
                sort_by=sort_by,
                server_id=interaction.guild.id if this_server and interaction.guild else None
            )
        except ValueError as e:
            await interaction.followup.send(embed=ErrorEmbeds.invalid_input(str(e)))
            return
        except Exception as e:
            logger.error(f"Error in leaderboard command: {e}", exc_info=e)
            await interaction.followup.send(embed=ErrorEmbeds.command_error("An error occurred while fetching leaderboard data. Please try again later."))
            return

        await interaction.followup.send(embed=self._build_leaderboard_embed(entries, sort_by))

    @staticmethod
    def _format_value(entry: LeaderboardEntry, sort_by: str) -> str:
        if sort_by == "gained":
            return str(entry.aura_gained)
        if sort_by == "delta":
            return f"{entry.aura_delta:+d}"
        if sort_by == "totalWins":
            return str(entry.total_wins)
        if sort_by == "winLossRatio":
            return "∞" if entry.win_loss_ratio == float('inf') else f"{entry.win_loss_ratio:.2f}"
        return str(entry.tournament_wins)

    def _build_leaderboard_embed(self, entries: List[LeaderboardEntry], sort_by: str) -> discord.Embed:
        """Build the leaderboard table embed."""
        embed = discord.Embed(
            title=f"{UIConstants.TROPHY_EMOJI} Tournament Leaderboard",
            description=f"Sorted by: **{SORT_LABELS[sort_by]}**",
            color=discord.Color.gold()
        )

        if not entries:
            embed.description += "\nNo tournament results yet."
            return embed

        # Compact table formatting for Discord constraints
        lines = ["```", f"{'#':<4} {'Player':<18} {'Value':<8} {'Tier':<12}", "-" * 44]
        for entry in entries[:UIConstants.STANDINGS_PAGE_SIZE]:
            lines.append(
                f"{entry.rank:<4} {entry.username[:17]:<18} {self._format_value(entry, sort_by):<8} {entry.rank_tier:<12}"
            )
        lines.append("```")
        embed.description += "\n" + "\n".join(lines)
        embed.set_footer(text=f"Showing {min(len(entries), UIConstants.STANDINGS_PAGE_SIZE)} of {len(entries)} players")
        return embed

    @app_commands.command(name="rank", description="Show a player's Aura and tournament record")
    @app_commands.describe(player="Player to look up (defaults to you)")
    async def rank(self, interaction: discord.Interaction, player: Optional[discord.Member] = None):
        target = player or interaction.user
        await interaction.response.defer()

        try:
            user = await self.bot.user_ops.get_user(target.id)
        except NotFound as e:
            await interaction.followup.send(embed=ErrorEmbeds.from_error(e), ephemeral=True)
            return
        except Exception as e:
            logger.error(f"Error in rank command: {e}", exc_info=e)
            await interaction.followup.send(embed=ErrorEmbeds.command_error("Could not load that profile."))
            return

        embed = discord.Embed(
            title=f"{user.username}",
            description=f"**{user.rank}** • {user.elo} {UIConstants.AURA_EMOJI}",
            color=UIConstants.DEFAULT_EMBED_COLOR
        )
        embed.add_field(name="Peak / Lowest", value=f"{user.peak_elo} / {user.lowest_elo}", inline=True)
        embed.add_field(name="Tournaments", value=f"{user.tournament_wins} won of {user.tournament_participations}", inline=True)
        embed.add_field(name="Matches", value=f"{user.total_wins}W - {user.total_losses}L", inline=True)
        embed.add_field(
            name="Aura from tournaments",
            value=f"+{user.aura_gained_tournaments} / -{user.aura_spent_tournaments} ({user.aura_delta:+d})",
            inline=False
        )
        await interaction.followup.send(embed=embed)

    @app_commands.command(name="rankinfo", description="Show the Aura needed for each rank tier")
    async def rankinfo(self, interaction: discord.Interaction):
        lines = [f"**{name}**: {threshold}+" for name, threshold in RankTiers.thresholds()]
        embed = discord.Embed(
            title="📈 Rank Tiers",
            description="\n".join(lines),
            color=discord.Color.green()
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(bot):
    await bot.add_cog(LeaderboardCog(bot))
