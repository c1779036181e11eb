"""Owner notifications for errors the game engine does not handle itself."""

import logging
import traceback
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import discord
from discord.ext import commands


logger = logging.getLogger(__name__)

NOTIFICATION_COOLDOWN = timedelta(minutes=5)  # per error type


def _clip(text: str, limit: int = 1000) -> str:
    """Keep the tail of `text`, where the interesting frames are."""
    return text if len(text) <= limit else text[-limit:]


class ErrorHandler:
    """Reports unexpected bot errors to the owner by DM.

    Rejected game commands never reach this class; the engine turns them
    into replies in the game channel.
    """

    def __init__(self, bot: commands.Bot, owner_id: int):
        self.bot = bot
        self.owner_id = owner_id
        self.error_counts: Counter = Counter()
        self.last_notified: Dict[str, datetime] = {}

    async def _owner(self) -> Optional[discord.User]:
        if not self.owner_id:
            return None
        return self.bot.get_user(self.owner_id) or await self.bot.fetch_user(self.owner_id)

    async def notify_owner(self, title: str, description: str, error: Optional[BaseException] = None):
        """DM the owner an embed, with the error and its traceback if given."""
        if not self.owner_id:
            logger.warning(f"No BOT_OWNER_ID configured, not sending: {title}")
            return

        embed = discord.Embed(
            title=f"🚨 {title}",
            description=description,
            color=0xff0000,
            timestamp=datetime.now(timezone.utc)
        )
        if error is not None:
            tb = "".join(traceback.format_exception(type(error), error, error.__traceback__))
            embed.add_field(name="Error", value=f"```{_clip(repr(error))}```", inline=False)
            embed.add_field(name="Traceback", value=f"```{_clip(tb)}```", inline=False)
        embed.set_footer(text="Mafia Bot")

        try:
            owner = await self._owner()
            await owner.send(embed=embed)
            logger.info(f"Notified owner: {title}")
        except discord.DiscordException as e:
            logger.error(f"Failed to notify owner about {title!r}: {e}")

    def _should_notify(self, error_type: str) -> bool:
        now = datetime.now(timezone.utc)
        last = self.last_notified.get(error_type)
        if last is not None and now - last < NOTIFICATION_COOLDOWN:
            return False
        self.last_notified[error_type] = now
        return True

    async def handle_command_error(self, ctx: commands.Context, error: Exception):
        """Reply to argument mistakes; report anything else to the owner."""
        if isinstance(error, commands.CommandNotFound):
            return

        if isinstance(error, (commands.MissingRequiredArgument, commands.BadArgument)):
            usage = f"{ctx.prefix}{ctx.command.qualified_name} {ctx.command.signature}".strip()
            await ctx.reply(f"Usage: `{usage}`", mention_author=False)
            return

        if isinstance(error, commands.CommandInvokeError):
            error = error.original

        command_name = ctx.command.qualified_name if ctx.command else "unknown"
        error_type = type(error).__name__
        self.error_counts[error_type] += 1
        logger.error(f"Unhandled error in {command_name} (game {ctx.channel.id}): {error}", exc_info=error)

        if self._should_notify(error_type):
            await self.notify_owner(
                f"Command Error: {error_type}",
                f"**Command:** {ctx.prefix}{command_name}\n"
                f"**Player:** {ctx.author.name} ({ctx.author.id})\n"
                f"**Game channel:** {ctx.channel.id}\n"
                f"**Post:** {ctx.message.id}\n"
                f"**Count since restart:** {self.error_counts[error_type]}",
                error,
            )

        try:
            await ctx.reply(
                "Something went wrong with that command and nothing was recorded. The bot owner has been told.",
                mention_author=False,
            )
        except discord.HTTPException as e:
            logger.error(f"Failed to reply to post {ctx.message.id}: {e}")

    async def send_startup_notification(self):
        """Tell the owner the bot is online."""
        if not self.owner_id:
            return

        embed = discord.Embed(
            title="✅ Mafia Bot Started",
            description=f"Watching {len(self.bot.guilds)} guild(s) for games",
            color=0x00ff00,
            timestamp=datetime.now(timezone.utc)
        )
        try:
            owner = await self._owner()
            await owner.send(embed=embed)
        except discord.DiscordException as e:
            logger.error(f"Failed to send startup notification: {e}")
