"""Notification system for the Mafia bot."""

import logging
from typing import Optional

import discord

from .models import CommandResult
from .view import GameView


logger = logging.getLogger(__name__)


class NotificationManager:
    """Posts command outcomes to the game channel, replying to the command's post."""

    def __init__(self, bot):
        self.bot = bot

    async def emit(self, game_id: int, post: Optional[int], message: CommandResult):
        """Send an outcome to the channel of `game_id`."""
        channel = self.bot.get_channel(game_id)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(game_id)
            except discord.DiscordException as e:
                logger.error(f"Game channel {game_id} not accessible: {e}")
                return

        guild = getattr(channel, "guild", None)
        view = GameView(game_id, guild.id if guild else None)
        content, embed = view.format_result(message)
        reference = channel.get_partial_message(post) if post else None

        try:
            await channel.send(content=content, embed=embed, reference=reference, mention_author=False)
        except discord.HTTPException as e:
            # Replying fails if the post was deleted
            logger.warning(f"Failed to reply to post {post} in channel {game_id}: {e}")
            try:
                await channel.send(content=content, embed=embed)
            except discord.HTTPException as e:
                logger.error(f"Failed to send message to channel {game_id}: {e}")
