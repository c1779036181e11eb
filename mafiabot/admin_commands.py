"""Mod commands for running a game. Mod status is checked by the game engine."""

from typing import Optional

from discord.ext import commands

from .commands import relay, target_name


class ModCommands(commands.Cog):
    """Commands reserved for the mods of a game."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @commands.command(name="prepare", help="Create a new game in this channel, with you as the mod")
    async def prepare(self, ctx: commands.Context, *, name: Optional[str] = None):
        await relay(ctx, "prepare", *([name] if name else []))

    @commands.command(name="start", help="Move the game from the prep phase into day 1 (mod only)")
    async def start(self, ctx: commands.Context):
        await relay(ctx, "start")

    @commands.command(name="new-day", help="Move on to a new day (mod only)")
    async def new_day(self, ctx: commands.Context):
        await relay(ctx, "new-day")

    @commands.command(name="kill", help="Kill a player (mod only)")
    async def kill(self, ctx: commands.Context, target: str):
        await relay(ctx, "kill", target_name(ctx, target))

    @commands.command(name="end", help="End the game (mod only)")
    async def end(self, ctx: commands.Context):
        await relay(ctx, "end")

    @commands.command(name="set", help="Set a player property: loved, hated, doubleVoter or vanilla (mod only)")
    async def set_property(self, ctx: commands.Context, target: str, prop: str):
        await relay(ctx, "set", target_name(ctx, target), prop)


async def setup(bot: commands.Bot):
    """Setup function to add the mod cog to the bot."""
    await bot.add_cog(ModCommands(bot))
