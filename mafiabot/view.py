"""View formatting for Mafia bot replies."""

import random
from typing import List, Optional, Tuple

import discord

from .config import NO_LYNCH_TARGET
from .errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from .models import CommandResult, PlayerList, TargetVotes, VoteRecord, VoteSummary


def _shuffled(names: List[str]) -> List[str]:
    # Join order would leak who was set up first
    names = list(names)
    random.shuffle(names)
    return names


class GameView:
    """Handles formatting of command outcomes for a game channel."""

    def __init__(self, channel_id: int, guild_id: Optional[int] = None):
        self.channel_id = channel_id
        self.guild_id = guild_id

    def post_link(self, post: int) -> str:
        if self.guild_id is None:
            return f"#{post}"
        return f"[#{post}](https://discord.com/channels/{self.guild_id}/{self.channel_id}/{post})"

    def format_result(self, result: CommandResult) -> Tuple[Optional[str], Optional[discord.Embed]]:
        """Turn a command outcome into message content and/or an embed."""
        if not result.success:
            return None, self.format_error(result)

        if result.lynched and result.data is None:
            embed = discord.Embed(
                title="⚖️ Lynch!",
                description=result.message,
                color=0x8b0000
            )
            return None, embed

        if isinstance(result.data, VoteSummary):
            return None, self.format_vote_summary(result.data)
        if isinstance(result.data, PlayerList):
            return result.message, self.format_player_list(result.data)
        return result.message, None

    def format_error(self, result: CommandResult) -> discord.Embed:
        """Format a rejected command."""
        error = result.error
        if isinstance(error, ValidationError):
            title = "❌ Command Rejected"
        elif isinstance(error, NotFoundError):
            title = "❓ Not Found"
        elif isinstance(error, ConflictError):
            title = "⚠️ Already Recorded"
        elif isinstance(error, PersistenceError):
            title = "💥 Command Failed"
        else:
            title = "❌ Error"

        description = result.message
        if isinstance(error, PersistenceError):
            description = "Something went wrong saving that command, so nothing was changed. Please try again."
        elif isinstance(error, NotFoundError) and result.command in ("join", "vote", "for"):
            description += "\nAsk a mod to `prepare` a game in this channel first."

        embed = discord.Embed(title=title, description=description, color=0xff0000)
        if result.command:
            embed.set_footer(text=f"Command: {result.command}")
        return embed

    def format_vote_record(self, record: VoteRecord) -> str:
        if record.retracted:
            return f"~~{record.voter}~~ ({self.post_link(record.post)}, retracted in {self.post_link(record.retracted_in_post)})"
        return f"**{record.voter}** ({self.post_link(record.post)})"

    def format_target(self, target: TargetVotes) -> str:
        if target.threshold is None:
            count = f"{target.count}"
        else:
            count = f"{target.count}/{target.threshold}"
            if target.threshold - target.count == 1:
                count += " 🔨"  # one vote from a lynch
        voters = ", ".join(self.format_vote_record(r) for r in target.records)
        return f"{count}: {voters}"

    def format_vote_summary(self, summary: VoteSummary) -> discord.Embed:
        """Format the vote count for a day."""
        embed = discord.Embed(
            title=f"🗳️ Vote Count - Day {summary.day}",
            color=0x4169E1
        )

        targets = sorted(summary.targets, key=lambda t: (t.target == NO_LYNCH_TARGET, -t.count))
        if not targets:
            embed.description = "No votes yet."
        for target in targets:
            embed.add_field(name=target.target, value=self.format_target(target)[:1024], inline=False)

        not_voting = ", ".join(_shuffled(summary.not_voting)) or "Nobody"
        embed.add_field(name=f"Not voting ({len(summary.not_voting)})", value=not_voting[:1024], inline=False)
        embed.set_footer(text=f"{summary.num_players} players alive, {summary.to_lynch} votes to lynch")
        return embed

    def format_player_list(self, players: PlayerList) -> discord.Embed:
        """Format the living, dead and mod lists."""
        embed = discord.Embed(title="👥 Player List", color=0x800080)

        def lines(names: List[str]) -> str:
            if not names:
                return "Nobody! Aren't you special?"
            return "\n".join(f"- {name}" for name in _shuffled(names))[:1024]

        embed.add_field(name=f"Living ({len(players.living)})", value=lines(players.living), inline=False)
        if players.dead:
            embed.add_field(name=f"Dead ({len(players.dead)})", value=lines(players.dead), inline=False)
        embed.add_field(name="Mod(s)", value="\n".join(f"- {m}" for m in players.mods) or "None. Weird.", inline=False)
        return embed
