import discord
from discord import app_commands
from discord.ext import commands
from typing import List, Optional
import logging

from tournament_bot.config import Config
from tournament_bot.constants import UIConstants
from tournament_bot.data_models.tournament import FinishedPhase, StandingRow, TopCutPhase, ValidationOutcome
from tournament_bot.database.models import TournamentStatus
from tournament_bot.services.rate_limiter import rate_limit
from tournament_bot.utils.bracket import BracketEngine
from tournament_bot.utils.error_embeds import ErrorEmbeds
from tournament_bot.utils.tournament_exceptions import TournamentError

logger = logging.getLogger(__name__)


class TournamentCog(commands.Cog):
    """Tournament lifecycle commands"""

    def __init__(self, bot):
        self.bot = bot
        self.ops = bot.tournament_ops

    # Helpers

    @staticmethod
    def _is_admin(interaction: discord.Interaction) -> bool:
        if interaction.user.id == Config.OWNER_DISCORD_ID:
            return True
        permissions = getattr(interaction.user, "guild_permissions", None)
        return bool(permissions and permissions.administrator)

    async def _fail(self, interaction: discord.Interaction, error: Exception, command: str):
        """Send the right error embed for ``error``; unexpected errors are logged with traceback."""
        if isinstance(error, TournamentError):
            logger.warning(f"/{command} by {interaction.user.id} rejected: {error}")
            embed = ErrorEmbeds.from_error(error)
        elif isinstance(error, ValueError):
            embed = ErrorEmbeds.invalid_input(str(error))
        else:
            logger.error(f"Error in /{command}: {error}", exc_info=error)
            embed = ErrorEmbeds.command_error("Something went wrong while processing the command.")
        await interaction.followup.send(embed=embed, ephemeral=True)

    @staticmethod
    def _standings_table(rows: List[StandingRow], limit: int = UIConstants.STANDINGS_PAGE_SIZE) -> str:
        lines = ["```", f"{'#':<4} {'Player':<16} {'W-L-T':<8} {'Pts':<4} {'OWP':<6} {'OOWP':<6}"]
        lines.append("-" * 48)
        for row in rows[:limit]:
            record = f"{row.wins}-{row.losses}-{row.ties}"
            name = row.username[:15] + ("" if row.active else "*")
            lines.append(
                f"{row.rank:<4} {name:<16} {record:<8} {row.score:<4} {row.owp:<6.3f} {row.oowp:<6.3f}"
            )
        if len(rows) > limit:
            lines.append(f"... {len(rows) - limit} more")
        lines.append("```")
        return "\n".join(lines)

    async def _matches_text(self, tournament_id: str) -> str:
        matches = await self.ops.get_round_matches(tournament_id)
        lines = []
        for match in matches:
            label = f"`{match.match_id}`"
            if match.bracket_position:
                label += f" {match.bracket_position}"
            if match.is_bye:
                lines.append(f"{label} <@{match.player1_id}> has a bye")
            else:
                status = " ✅" if match.reported else ""
                lines.append(f"{label} <@{match.player1_id}> vs <@{match.player2_id}>{status}")
        return "\n".join(lines) or "No matches"

    # Pending phase

    @app_commands.command(name="tournament-create", description="Create a new Aura tournament")
    @app_commands.describe(
        aura_cost="Aura each player stakes to join",
        prize_mode="How the pool is paid out",
        title="Tournament name",
        description="Optional description",
        cut_type="How players qualify for the top cut",
        points_required="Points needed for a points cut (defaults to X-2 or better)",
        max_players="Player cap, 0 for unlimited"
    )
    @app_commands.choices(
        prize_mode=[
            app_commands.Choice(name="Winner takes all", value="all"),
            app_commands.Choice(name="Spread across the top cut", value="spread"),
        ],
        cut_type=[
            app_commands.Choice(name="Top ranks", value="rank"),
            app_commands.Choice(name="Points threshold", value="points"),
        ]
    )
    async def create(
        self,
        interaction: discord.Interaction,
        aura_cost: app_commands.Range[int, 0],
        prize_mode: str = "all",
        title: Optional[str] = None,
        description: Optional[str] = None,
        cut_type: str = "rank",
        points_required: Optional[app_commands.Range[int, 0]] = None,
        max_players: app_commands.Range[int, 0] = 0
    ):
        """Create a pending tournament on this server."""
        if interaction.guild is None:
            await interaction.response.send_message(embed=ErrorEmbeds.guild_only(), ephemeral=True)
            return
        await interaction.response.defer()

        try:
            tournament = await self.ops.create_tournament(
                server_id=interaction.guild.id,
                organizer_id=interaction.user.id,
                aura_cost=aura_cost,
                prize_mode=prize_mode,
                title=title,
                description=description,
                cut_type=cut_type,
                points_required=points_required,
                max_players=max_players,
                organizer_tag=str(interaction.user),
            )
        except Exception as e:
            await self._fail(interaction, e, "tournament-create")
            return

        embed = discord.Embed(
            title=f"{UIConstants.TROPHY_EMOJI} {tournament.title}",
            description=tournament.description or "Join with `/join`.",
            color=UIConstants.DEFAULT_EMBED_COLOR
        )
        embed.add_field(name="ID", value=f"`{tournament.tournament_id}`", inline=True)
        embed.add_field(name="Stake", value=f"{tournament.aura_cost} {UIConstants.AURA_EMOJI}", inline=True)
        embed.add_field(name="Prizes", value=tournament.prize_mode.value, inline=True)
        embed.add_field(name="Cut", value=tournament.cut_type.value, inline=True)
        embed.add_field(name="Cap", value=str(tournament.max_players or "None"), inline=True)
        embed.set_footer(text=f"Organizer: {interaction.user}")
        await interaction.followup.send(embed=embed)

    @app_commands.command(name="join", description="Join a pending tournament")
    @app_commands.describe(tournament_id="Tournament ID", player="Player to add (organizer only)")
    async def join(self, interaction: discord.Interaction, tournament_id: str,
                   player: Optional[discord.Member] = None):
        await interaction.response.defer()
        target = player or interaction.user
        try:
            tournament = await self.ops.join_tournament(
                tournament_id, target.id, str(target), executing_user_id=interaction.user.id
            )
        except Exception as e:
            await self._fail(interaction, e, "join")
            return

        await interaction.followup.send(
            f"✅ {target.mention} joined **{tournament.title}** (`{tournament.tournament_id}`), "
            f"staking {tournament.aura_cost} {UIConstants.AURA_EMOJI}. "
            f"{len(tournament.participants)} player(s) registered."
        )

    @app_commands.command(name="leave", description="Leave a pending tournament and get your stake back")
    @app_commands.describe(tournament_id="Tournament ID", player="Player to remove (organizer only)")
    async def leave(self, interaction: discord.Interaction, tournament_id: str,
                    player: Optional[discord.Member] = None):
        await interaction.response.defer()
        target = player or interaction.user
        try:
            tournament = await self.ops.leave_tournament(
                tournament_id, target.id, str(target), executing_user_id=interaction.user.id
            )
        except Exception as e:
            await self._fail(interaction, e, "leave")
            return

        await interaction.followup.send(
            f"👋 {target.mention} left `{tournament.tournament_id}`; "
            f"{tournament.aura_cost} {UIConstants.AURA_EMOJI} refunded."
        )

    # Running the event

    @app_commands.command(name="start", description="Start a tournament and pair round 1")
    @app_commands.describe(tournament_id="Tournament ID")
    async def start(self, interaction: discord.Interaction, tournament_id: str):
        await interaction.response.defer()
        try:
            tournament = await self.ops.start_tournament(tournament_id, interaction.user.id)
            pairings = await self._matches_text(tournament.tournament_id)
        except Exception as e:
            await self._fail(interaction, e, "start")
            return

        embed = discord.Embed(
            title=f"{tournament.title} has started",
            description=pairings,
            color=UIConstants.SUCCESS_COLOR
        )
        structure = f"{tournament.num_swiss_rounds} Swiss rounds"
        if tournament.is_two_phase:
            structure += f" ({tournament.phase1_rounds} + {tournament.phase2_rounds} after the Day-2 cut)"
        embed.add_field(name="Structure", value=structure, inline=False)
        embed.set_footer(text=f"Round 1 • Report with /report {tournament.tournament_id} <match> <winner>")
        await interaction.followup.send(embed=embed)

    @app_commands.command(name="report", description="Report a match result")
    @app_commands.describe(
        tournament_id="Tournament ID",
        match_id="Match number, e.g. 001",
        winner="Winner of the match (one side of a draw)",
        draw_with="For a draw: the other player"
    )
    @rate_limit("report", limit=5, window=60)
    async def report(self, interaction: discord.Interaction, tournament_id: str, match_id: str,
                     winner: discord.Member, draw_with: Optional[discord.Member] = None):
        await interaction.response.defer()
        try:
            match = await self.ops.report_match(
                tournament_id, match_id, winner.id, interaction.user.id,
                draw_with=draw_with.id if draw_with else None
            )
        except Exception as e:
            await self._fail(interaction, e, "report")
            return

        if match.is_draw:
            await interaction.followup.send(f"🤝 Match `{match.match_id}` recorded as a draw.")
        else:
            await interaction.followup.send(f"✅ Match `{match.match_id}` won by {winner.mention}.")

    @app_commands.command(name="validate", description="Close the current round and advance the tournament")
    @app_commands.describe(tournament_id="Tournament ID")
    async def validate(self, interaction: discord.Interaction, tournament_id: str):
        await interaction.response.defer()
        try:
            outcome = await self.ops.validate_round(tournament_id, interaction.user.id)
            pairings = None if outcome.finished else await self._matches_text(outcome.tournament_id)
        except Exception as e:
            await self._fail(interaction, e, "validate")
            return

        if outcome.finished:
            await interaction.followup.send(embed=self._final_embed(outcome))
            return

        embed = discord.Embed(
            title=f"Round {outcome.validated_round} validated",
            description=pairings,
            color=UIConstants.DEFAULT_EMBED_COLOR
        )
        if isinstance(outcome.phase, TopCutPhase):
            remaining = len(outcome.new_match_ids) * 2
            embed.add_field(name="Next", value=BracketEngine.round_name(remaining), inline=True)
        else:
            embed.add_field(name="Next", value=f"Swiss round {outcome.phase.round_number}", inline=True)
        if outcome.eliminated_by_cut:
            embed.add_field(name="Cut", value=f"{len(outcome.eliminated_by_cut)} player(s) eliminated", inline=True)
        await interaction.followup.send(embed=embed)

    def _final_embed(self, outcome: ValidationOutcome) -> discord.Embed:
        winner = outcome.standings[0] if outcome.standings else None
        embed = discord.Embed(
            title=f"{UIConstants.TROPHY_EMOJI} Tournament {outcome.tournament_id} complete",
            description=f"Champion: <@{winner.user_id}>" if winner else "No players remained.",
            color=UIConstants.GOLD_RANK_COLOR
        )
        if outcome.prizes:
            payouts = sorted(outcome.prizes.items(), key=lambda item: -item[1])
            embed.add_field(
                name="Prizes",
                value="\n".join(f"<@{user_id}>: {amount} {UIConstants.AURA_EMOJI}" for user_id, amount in payouts[:10]),
                inline=False
            )
        embed.add_field(name="Final standings", value=self._standings_table(outcome.standings, 10), inline=False)
        return embed

    @app_commands.command(name="drop", description="Drop a player from a running tournament")
    @app_commands.describe(tournament_id="Tournament ID", player="Player to drop")
    async def drop(self, interaction: discord.Interaction, tournament_id: str, player: discord.Member):
        await interaction.response.defer()
        try:
            result = await self.ops.drop_player(tournament_id, player.id, interaction.user.id)
        except Exception as e:
            await self._fail(interaction, e, "drop")
            return

        message = f"🚪 {player.mention} was dropped from `{result.tournament_id}`."
        if result.awarded_match_id:
            message += f" Match `{result.awarded_match_id}` goes to <@{result.awarded_to}>."
        if result.voided_bye_match_id:
            message += f" Their bye (`{result.voided_bye_match_id}`) was voided."
        await interaction.followup.send(message)

    @app_commands.command(name="resetround", description="Undo the results of a round")
    @app_commands.describe(tournament_id="Tournament ID", round_number="Round to reset")
    async def resetround(self, interaction: discord.Interaction, tournament_id: str,
                         round_number: app_commands.Range[int, 1]):
        await interaction.response.defer()
        try:
            tournament = await self.ops.reset_round(tournament_id, round_number, interaction.user.id)
        except Exception as e:
            await self._fail(interaction, e, "resetround")
            return

        await interaction.followup.send(
            f"↩️ Round {round_number} of `{tournament.tournament_id}` reset. Report its matches again."
        )

    @app_commands.command(name="standings", description="Show tournament standings")
    @app_commands.describe(tournament_id="Tournament ID")
    async def standings(self, interaction: discord.Interaction, tournament_id: str):
        await interaction.response.defer()
        try:
            tournament = await self.ops.get_tournament(tournament_id)
            rows = await self.ops.get_standings(tournament_id)
        except Exception as e:
            await self._fail(interaction, e, "standings")
            return

        phase = tournament.tagged_phase
        if isinstance(phase, TopCutPhase):
            subtitle = f"Top cut round {phase.round_number} of a {phase.bracket_size}-player bracket"
        elif isinstance(phase, FinishedPhase):
            subtitle = tournament.status.value.title()
        else:
            subtitle = f"Swiss round {phase.round_number} of {tournament.num_swiss_rounds}"

        embed = discord.Embed(
            title=f"{tournament.title} standings",
            description=f"{subtitle}\n{self._standings_table(rows)}",
            color=UIConstants.DEFAULT_EMBED_COLOR
        )
        embed.set_footer(text="* inactive (dropped or eliminated)")
        await interaction.followup.send(embed=embed)

    @app_commands.command(name="finalize", description="End a tournament now and pay out prizes")
    @app_commands.describe(tournament_id="Tournament ID")
    async def finalize(self, interaction: discord.Interaction, tournament_id: str):
        await interaction.response.defer()
        try:
            outcome = await self.ops.finalize_tournament(tournament_id, interaction.user.id)
        except Exception as e:
            await self._fail(interaction, e, "finalize")
            return
        await interaction.followup.send(embed=self._final_embed(outcome))

    @app_commands.command(name="canceltour", description="Cancel a tournament and refund every stake")
    @app_commands.describe(tournament_id="Tournament ID")
    async def canceltour(self, interaction: discord.Interaction, tournament_id: str):
        await interaction.response.defer()
        try:
            tournament = await self.ops.cancel_tournament(
                tournament_id, interaction.user.id, is_admin=self._is_admin(interaction)
            )
        except Exception as e:
            await self._fail(interaction, e, "canceltour")
            return
        await interaction.followup.send(f"🛑 Tournament `{tournament.tournament_id}` cancelled; stakes refunded.")

    @app_commands.command(name="deletetour", description="Delete a tournament record")
    @app_commands.describe(tournament_id="Tournament ID")
    async def deletetour(self, interaction: discord.Interaction, tournament_id: str):
        await interaction.response.defer(ephemeral=True)
        try:
            await self.ops.delete_tournament(tournament_id, interaction.user.id, is_admin=self._is_admin(interaction))
        except Exception as e:
            await self._fail(interaction, e, "deletetour")
            return
        await interaction.followup.send(f"🗑️ Tournament `{tournament_id.upper()}` deleted.", ephemeral=True)

    @app_commands.command(name="tournaments", description="List this server's tournaments")
    @app_commands.describe(include_finished="Also list finished and cancelled tournaments")
    async def tournaments(self, interaction: discord.Interaction, include_finished: bool = False):
        await interaction.response.defer()
        statuses = None if include_finished else [TournamentStatus.PENDING, TournamentStatus.ACTIVE]
        try:
            tournaments = await self.ops.list_tournaments(
                server_id=interaction.guild.id if interaction.guild else None, statuses=statuses
            )
        except Exception as e:
            await self._fail(interaction, e, "tournaments")
            return

        embed = discord.Embed(title=f"{UIConstants.TROPHY_EMOJI} Tournaments", color=UIConstants.DEFAULT_EMBED_COLOR)
        if not tournaments:
            embed.description = "No tournaments found. Create one with `/tournament-create`."
        else:
            lines = [
                f"`{t.tournament_id}` **{t.title}** - {t.status.value}, "
                f"{len(t.participants or [])} player(s), stake {t.aura_cost}"
                for t in tournaments[:20]
            ]
            embed.description = "\n".join(lines)
            if len(tournaments) > 20:
                embed.set_footer(text=f"Showing 20 of {len(tournaments)}")
        await interaction.followup.send(embed=embed)


async def setup(bot):
    await bot.add_cog(TournamentCog(bot))
