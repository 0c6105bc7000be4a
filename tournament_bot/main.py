import asyncio
import logging
import traceback
from typing import Optional

import discord
from discord.ext import commands
from discord import app_commands

from tournament_bot.config import Config
from tournament_bot.database.database import Database
from tournament_bot.operations.tournament_operations import TournamentOperations
from tournament_bot.operations.user_operations import UserOperations
from tournament_bot.services.rate_limiter import SimpleRateLimiter
from tournament_bot.utils.error_embeds import ErrorEmbeds
from tournament_bot.utils.logger import setup_logger
from tournament_bot.utils.tournament_exceptions import TournamentError

class TournamentBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True

        super().__init__(
            command_prefix=Config.COMMAND_PREFIX,
            intents=intents,
            help_command=None
        )

        # Attach app command error handler
        self.tree.on_error = self.on_app_command_error

        self.db: Optional[Database] = None
        self.user_ops: Optional[UserOperations] = None
        self.tournament_ops: Optional[TournamentOperations] = None
        self.rate_limiter = SimpleRateLimiter()
        self.logger = setup_logger(__name__)

    async def setup_hook(self):
        """Called when the bot is starting up"""
        self.logger.info("Setting up Aura Tournament Bot...")

        self.db = Database()
        await self.db.initialize()

        self.user_ops = UserOperations(self.db)
        self.tournament_ops = TournamentOperations(self.db, user_operations=self.user_ops)
        if Config.PAIRING_SEED is not None:
            self.logger.info(f"Pairing and tie-break draws seeded with {Config.PAIRING_SEED}")

        await self.load_cogs()
        await self._sync_commands()

        self.logger.info("Aura Tournament Bot setup complete!")

    async def load_cogs(self):
        """Load all cogs"""
        cogs_to_load = [
            'tournament_bot.cogs.tournament',
            'tournament_bot.cogs.leaderboard',
            'tournament_bot.cogs.help_commands',
        ]

        for cog in cogs_to_load:
            try:
                await self.load_extension(cog)
                self.logger.info(f"Loaded cog: {cog}")
            except Exception as e:
                self.logger.error(f"Failed to load cog {cog}: {e}", exc_info=True)

    async def _sync_commands(self):
        """Sync slash commands with Discord"""
        if not self.tree.get_commands():
            self.logger.warning("No application commands found to sync. Check for cog loading errors.")
            return

        try:
            guild_ids = Config.get_guild_ids()

            if guild_ids:
                # Guild-specific sync is immediate
                self.logger.info(f"Attempting to sync commands to {len(guild_ids)} guild(s): {guild_ids}...")

                total_synced = 0
                for guild_id in guild_ids:
                    try:
                        guild = discord.Object(id=guild_id)
                        self.tree.copy_global_to(guild=guild)
                        synced = await self.tree.sync(guild=guild)
                        self.logger.info(f"Successfully synced {len(synced)} command(s) to guild {guild_id}")
                        total_synced += len(synced)
                    except discord.errors.Forbidden:
                        self.logger.error(f"Permission error syncing to guild {guild_id}. Ensure the bot has the 'application.commands' scope and is in the guild.", exc_info=True)
                    except discord.errors.HTTPException as e:
                        self.logger.error(f"HTTP error syncing to guild {guild_id}. Status: {e.status}, Response: {e.text}", exc_info=True)

                self.logger.info(f"Multi-guild sync complete: {total_synced} total command instances deployed")
            else:
                # Global sync can take up to an hour to propagate
                self.logger.info("Attempting to sync commands globally...")
                synced = await self.tree.sync()
                self.logger.info(f"Successfully synced {len(synced)} command(s) globally")
                for cmd in synced:
                    self.logger.info(f"  - {cmd.name}: {cmd.description}")
        except Exception as e:
            self.logger.error(f"Failed to sync commands: {e}", exc_info=True)

    async def on_ready(self):
        """Called when the bot is ready"""
        self.logger.info(f'{self.user} has connected to Discord!')
        self.logger.info(f'Bot is in {len(self.guilds)} guilds')

        await self.change_presence(
            activity=discord.Game(name="Aura Tournaments | /tournaments")
        )

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Global error handler for slash commands"""
        command_name = interaction.command.name if interaction.command else 'Unknown'
        original = getattr(error, 'original', error)

        if isinstance(original, TournamentError):
            self.logger.warning(f"Command '{command_name}' by {interaction.user} rejected: {original}")
            error_embed = ErrorEmbeds.from_error(original)
        elif isinstance(error, app_commands.CheckFailure):
            self.logger.info(f"Permission denied for command '{command_name}' by user {interaction.user}")
            error_embed = ErrorEmbeds.permission_denied()
        elif isinstance(error, app_commands.CommandOnCooldown):
            error_embed = ErrorEmbeds.command_error(f"Command is on cooldown. Try again in {error.retry_after:.2f} seconds.")
        else:
            self.logger.error(f"Error in app command '{command_name}': {error}", exc_info=error)
            error_embed = discord.Embed(
                title="❌ An unexpected error occurred",
                description="The developers have been notified.",
                color=discord.Color.red()
            )

        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=error_embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=error_embed, ephemeral=True)
        except discord.HTTPException as e:
            self.logger.error(f"Failed to send error response: {e}")

    async def close(self):
        """Cleanup when bot is shutting down"""
        self.logger.info("Shutting down Aura Tournament Bot...")

        if self.db:
            await self.db.close()

        await super().close()

async def main():
    """Main entry point"""
    Config.validate()

    bot = TournamentBot()

    try:
        await bot.start(Config.DISCORD_TOKEN)
    except KeyboardInterrupt:
        await bot.close()
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        traceback.print_exc()
    finally:
        await bot.close()

def run():
    asyncio.run(main())

if __name__ == "__main__":
    run()
