"""
Help Commands Cog

/helptour opens an ephemeral guide with one page per topic: organizing,
playing, the top cut and prizes, and lifetime ranks. Buttons switch pages.
"""

import discord
from discord import app_commands
from discord.ext import commands
from typing import Optional

from tournament_bot.constants import UIConstants
from tournament_bot.utils.error_embeds import ErrorEmbeds
from tournament_bot.utils.logger import setup_logger

logger = setup_logger(__name__)

HELP_CONTENT = {
    "organizing": {
        "title": "🗂️ Organizing a Tournament",
        "description": (
            "**1. Create it**\n"
            "```\n/tournament-create aura_cost:100 prize_mode:all\n```\n"
            "You get a six-character tournament id. Optional: `title`, `description`, "
            "`cut_type` (top ranks or points threshold), `points_required`, `max_players`.\n\n"
            "**2. Fill it**\n"
            "Players run `/join`. You can add or remove someone with "
            "`/join player:@someone` and `/leave player:@someone`.\n\n"
            "**3. Run it**\n"
            "• `/start` fixes the number of Swiss rounds and the top cut, then pairs round 1 (4 players minimum)\n"
            "• `/validate` closes a round once every match is reported and pairs the next one\n"
            "• `/drop` removes a player; their open match goes to the opponent\n"
            "• `/resetround` undoes the results of a round and everything after it\n"
            "• `/finalize` ends the tournament early on the current standings\n"
            "• `/canceltour` refunds every stake, `/deletetour` removes the record"
        )
    },
    "playing": {
        "title": "🎮 Playing",
        "description": (
            "**Joining**\n"
            "`/join tournament_id:ABC123` takes the stake from your Aura. "
            "`/leave` refunds it as long as the tournament has not started.\n\n"
            "**Reporting**\n"
            "```\n/report tournament_id:ABC123 match_id:001 winner:@winner\n```\n"
            "Either player or the organizer can report. In Swiss rounds a draw is "
            "reported with `draw_with:@opponent`; top cut matches cannot be drawn.\n\n"
            "**Scoring**\n"
            "A win is worth 3 points, a draw 1, a loss 0. A bye counts as a win.\n\n"
            "`/standings` shows the table at any time."
        )
    },
    "top_cut": {
        "title": "🏆 Top Cut and Prizes",
        "description": (
            "**Tiebreakers**\n"
            "Players on equal points are split by opponents' win rate (OWP), then "
            "by their opponents' opponents' win rate (OOWP).\n\n"
            "**The cut**\n"
            "After the Swiss rounds the best players enter a single-elimination "
            "bracket seeded from the standings. With a points cut everyone at or "
            "above the threshold qualifies; top seeds get byes when the field is short.\n\n"
            "**Prizes**\n"
            "The pool is every stake combined. *Winner takes all* pays it to the "
            "champion; *spread* pays the top cut by finishing position."
        )
    },
    "ranks": {
        "title": "✨ Aura and Ranks",
        "description": (
            "Every player starts with 1000 Aura. Stakes and prizes move it up and "
            "down, and your rank tier follows your balance.\n\n"
            "• `/rank` shows a player's Aura, tier and tournament record\n"
            "• `/rankinfo` lists the tier thresholds\n"
            "• `/leaderboard` ranks everyone by tournament wins, Aura gained, net Aura, "
            "match wins or win/loss ratio"
        )
    },
}

DEFAULT_SECTION = "organizing"


def build_help_embed(section_key: str, requester_name: Optional[str] = None) -> discord.Embed:
    """Embed for one help section."""
    section = HELP_CONTENT[section_key]
    embed = discord.Embed(
        title=section["title"],
        description=section["description"],
        color=UIConstants.DEFAULT_EMBED_COLOR
    )
    footer = "Use the buttons to switch topics"
    if requester_name:
        footer = f"Requested by {requester_name} • {footer}"
    embed.set_footer(text=footer)
    return embed


class HelpView(discord.ui.View):
    """Help pages with one button per section"""

    def __init__(self, author):
        super().__init__(timeout=180.0)
        self.author = author
        self.current_section = DEFAULT_SECTION
        self._sync_buttons()

    def _sync_buttons(self):
        for child in self.children:
            if isinstance(child, discord.ui.Button) and child.custom_id:
                child.disabled = child.custom_id.split(":")[-1] == self.current_section

    def current_embed(self) -> discord.Embed:
        return build_help_embed(self.current_section, getattr(self.author, "display_name", None))

    async def _show(self, interaction: discord.Interaction, section_key: str):
        self.current_section = section_key
        self._sync_buttons()
        try:
            await interaction.response.edit_message(embed=self.current_embed(), view=self)
        except discord.NotFound:
            # Message was dismissed
            pass

    @discord.ui.button(label="🗂️ Organizing", style=discord.ButtonStyle.secondary, custom_id="helptour:organizing")
    async def organizing_button(self, interaction: discord.Interaction, button: discord.ui.Button):
        await self._show(interaction, "organizing")

    @discord.ui.button(label="🎮 Playing", style=discord.ButtonStyle.secondary, custom_id="helptour:playing")
    async def playing_button(self, interaction: discord.Interaction, button: discord.ui.Button):
        await self._show(interaction, "playing")

    @discord.ui.button(label="🏆 Top Cut", style=discord.ButtonStyle.secondary, custom_id="helptour:top_cut")
    async def top_cut_button(self, interaction: discord.Interaction, button: discord.ui.Button):
        await self._show(interaction, "top_cut")

    @discord.ui.button(label="✨ Ranks", style=discord.ButtonStyle.secondary, custom_id="helptour:ranks")
    async def ranks_button(self, interaction: discord.Interaction, button: discord.ui.Button):
        await self._show(interaction, "ranks")

    async def on_timeout(self):
        for child in self.children:
            if isinstance(child, discord.ui.Button):
                child.disabled = True


class HelpCommandsCog(commands.Cog):
    """Tournament guide"""

    def __init__(self, bot):
        self.bot = bot

    @app_commands.command(name="helptour", description="How to organize and play Aura tournaments")
    async def helptour(self, interaction: discord.Interaction):
        try:
            view = HelpView(interaction.user)
            await interaction.response.send_message(embed=view.current_embed(), view=view, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in /helptour: {e}", exc_info=e)
            await interaction.response.send_message(
                embed=ErrorEmbeds.command_error("Unable to load the tournament guide. Please try again later."),
                ephemeral=True
            )


async def setup(bot):
    await bot.add_cog(HelpCommandsCog(bot))
