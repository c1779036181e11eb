"""Player commands for the Mafia bot."""

import re

from discord.ext import commands

from .logic import PhaseController
from .models import CommandResult, InboundCommand


MENTION = re.compile(r"^<@!?(\d+)>$")


def target_name(ctx: commands.Context, target: str) -> str:
    """Resolve a `<@id>` mention argument to that user's name; plain names pass through.

    `message.mentions` also holds the author of a replied-to post, who is
    never the target unless the argument mentions them.
    """
    match = MENTION.match(target)
    if not match:
        return target
    user_id = int(match.group(1))
    for user in ctx.message.mentions:
        if user.id == user_id:
            return user.name
    return target


async def relay(ctx: commands.Context, command: str, *args: str) -> CommandResult:
    """Hand a post's command to the game engine. The channel is the game, the message is the post."""
    controller: PhaseController = ctx.bot.controller
    return await controller.dispatch(InboundCommand(
        game_id=ctx.channel.id,
        post=ctx.message.id,
        actor=ctx.author.name,
        command=command,
        args=list(args),
    ))


class MafiaCommands(commands.Cog):
    """Cog containing the commands any player can use."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @commands.command(name="join", help="Join the mafia game in this channel")
    async def join(self, ctx: commands.Context):
        await relay(ctx, "join")

    @commands.command(name="vote", aliases=["for"], help="Vote for a player to be lynched")
    async def vote(self, ctx: commands.Context, target: str):
        await relay(ctx, "vote", target_name(ctx, target))

    @commands.command(name="unvote", help="Rescind your current vote")
    async def unvote(self, ctx: commands.Context):
        await relay(ctx, "unvote")

    @commands.command(name="no-lynch", aliases=["nolynch"], help="Vote to lynch nobody today")
    async def no_lynch(self, ctx: commands.Context):
        await relay(ctx, "no-lynch")

    @commands.command(name="list-players", aliases=["list-all-players"], help="List the players in this game")
    async def list_players(self, ctx: commands.Context):
        await relay(ctx, "list-players")

    @commands.command(name="list-votes", help="List today's votes")
    async def list_votes(self, ctx: commands.Context):
        await relay(ctx, "list-votes")


async def setup(bot: commands.Bot):
    """Setup function to add the player cog to the bot."""
    await bot.add_cog(MafiaCommands(bot))
