"""Main entry point for the Mafia Discord bot."""

import os
import sys
import asyncio
import logging
from pathlib import Path

import discord
from discord.ext import commands
from dotenv import load_dotenv

from error_handler import ErrorHandler
from mafiabot.config import Settings, load_settings
from mafiabot.logic import PhaseController
from mafiabot.notifications import NotificationManager
from mafiabot.storage import GameStorage

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('mafiabot.log')
    ]
)
logger = logging.getLogger(__name__)


def load_or_prompt_env():
    """Load environment variables or prompt for token if missing."""
    load_dotenv()

    token = os.getenv('DISCORD_TOKEN')
    if not token:
        logger.warning("DISCORD_TOKEN not found in .env file")
        token = input("Please enter your Discord bot token: ").strip()

        if not token:
            logger.error("No token provided. Exiting.")
            sys.exit(1)

        # Save token to .env file
        env_path = Path('.env')
        with env_path.open('a') as f:
            f.write(f"\nDISCORD_TOKEN={token}\n")
        logger.info("Token saved to .env file")

    return token


class MafiaBot(commands.Bot):
    """The main Mafia bot class."""

    def __init__(self, settings: Settings):
        intents = discord.Intents.default()
        intents.message_content = True  # Commands are read from posts

        super().__init__(
            command_prefix=settings.command_prefix,
            intents=intents,
            description="A Discord bot for running forum-style Mafia games"
        )

        self.settings = settings
        self.storage = GameStorage(settings.db_path)
        self.notifications = NotificationManager(self)
        self.controller = PhaseController(self.storage, self.notifications)
        self.error_handler = ErrorHandler(self, settings.owner_id)

    async def setup_hook(self):
        """Setup hook called before the bot connects."""
        logger.info("Setting up Mafia bot...")

        await self.storage.initialize()
        logger.info(f"Database ready at {self.settings.db_path}")

        if self.settings.thread:
            added = await self.controller.register_players(
                self.settings.thread, self.settings.players, self.settings.game_name
            )
            logger.info(f"Registered {len(added)} configured player(s) in game {self.settings.thread}")

        for extension in ('mafiabot.commands', 'mafiabot.admin_commands'):
            try:
                await self.load_extension(extension)
                logger.info(f"Loaded {extension}")
            except commands.ExtensionError as e:
                await self.error_handler.notify_owner(f"Failed to load {extension}", str(e), e)
                logger.error(f"Failed to load {extension}: {e}")
                raise

    async def on_ready(self):
        """Called when the bot is ready."""
        logger.info(f"Mafia bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guild(s)")

        try:
            activity = discord.Game(name=f"Mafia | {self.settings.command_prefix}list-votes")
            await self.change_presence(activity=activity)

            await self.error_handler.send_startup_notification()
        except discord.DiscordException as e:
            logger.error(f"Error in on_ready: {e}")

    async def on_command_error(self, ctx, error):
        """Handle command errors."""
        await self.error_handler.handle_command_error(ctx, error)

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors."""
        exc_type, exc_value, exc_traceback = sys.exc_info()
        logger.error(f"Bot error in event {event}", exc_info=True)
        if exc_value:
            context = {"event": event, "args": str(args)[:500]}
            await self.error_handler.notify_owner(f"Bot Error in {event}", str(context), exc_value)

    async def close(self):
        """Clean shutdown."""
        logger.info("Shutting down Mafia bot...")
        await self.error_handler.notify_owner("Bot Shutdown", "Mafia bot is shutting down normally")
        await super().close()


async def main():
    """Main function to run the bot."""
    token = load_or_prompt_env()
    bot = MafiaBot(load_settings())

    try:
        await bot.start(token)
    except Exception as e:
        logger.error(f"Bot crashed: {e}", exc_info=True)
        await bot.error_handler.notify_owner("Bot Crashed", "Fatal error while running", e)
        raise
    finally:
        if not bot.is_closed():
            await bot.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
