"""Announcement rendering for giveaways."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

import discord

from .config import LastChanceConfig
from .requirements import render_requirements

if TYPE_CHECKING:
    from .giveaway import Giveaway

FINAL_COUNTDOWN_COLOR = 0xFF0000


def format_mentions(members: Sequence[discord.abc.Snowflake]) -> str:
    return ", ".join(f"<@{member.id}>" for member in members)


def _title(giveaway: "Giveaway", *, ended: bool) -> str:
    messages = giveaway.messages
    if giveaway.data.is_drop:
        return messages.drop_ended if ended else messages.drop
    return messages.giveaway_ended if ended else messages.giveaway


def _hosted_by_line(giveaway: "Giveaway") -> Optional[str]:
    if not giveaway.data.hosted_by:
        return None
    return giveaway.messages.hosted_by.replace("{user}", giveaway.data.hosted_by)


def _active_description(giveaway: "Giveaway", *, chance: str, remaining_line: str) -> str:
    lines: List[str] = [
        f"🎁 • {giveaway.data.prize}",
        f"🏅 • {giveaway.messages.winners}: {giveaway.data.winner_count}",
        f"🎲 • Winning Chances: **{chance}**",
        remaining_line,
    ]
    hosted_by = _hosted_by_line(giveaway)
    if hosted_by:
        lines.append(hosted_by)
    lines.append(giveaway.messages.invite_to_participate)
    requirements = render_requirements(giveaway.data)
    if requirements:
        lines.extend(["", requirements])
    return "\n".join(lines)


def build_active_embed(
    giveaway: "Giveaway",
    *,
    chance: str,
    last_chance: Optional[LastChanceConfig] = None,
) -> Tuple[str, discord.Embed]:
    in_last_chance = bool(
        last_chance
        and last_chance.enabled
        and giveaway.remaining_time.total_seconds() < last_chance.threshold_seconds
    )
    content = last_chance.title if in_last_chance else _title(giveaway, ended=False)
    color = last_chance.embed_color if in_last_chance else giveaway.embed_color
    embed = discord.Embed(
        description=_active_description(
            giveaway, chance=chance, remaining_line=giveaway.content
        ),
        color=color,
        timestamp=giveaway.data.end_at,
    )
    embed.set_footer(text=giveaway.messages.ended_at)
    return content, embed


def build_final_countdown_embed(
    giveaway: "Giveaway", *, chance: str, seconds_left: int
) -> Tuple[str, discord.Embed]:
    unit = "seconds" if seconds_left > 1 else "second"
    embed = discord.Embed(
        description=_active_description(
            giveaway,
            chance=chance,
            remaining_line=f"**Time remaining: {seconds_left} {unit}**!",
        ),
        color=FINAL_COUNTDOWN_COLOR,
        timestamp=giveaway.data.end_at,
    )
    embed.set_footer(text=giveaway.messages.ended_at)
    return _title(giveaway, ended=False), embed


def build_ended_embed(
    giveaway: "Giveaway", winners: Sequence[discord.Member], entries: int
) -> Tuple[str, discord.Embed]:
    messages = giveaway.messages
    label = messages.winners[:1].upper() + messages.winners[1:]
    winners_text = format_mentions(winners) if winners else messages.no_winner
    lines = [
        f"🎁 • **{giveaway.data.prize}**",
        f"🏅 • {label}: {winners_text}",
    ]
    hosted_by = _hosted_by_line(giveaway)
    if hosted_by:
        lines.append(f"🏆 • {hosted_by}")
    lines.append(f"🎊 • Total Participants: **{entries}**")
    embed = discord.Embed(
        description="\n".join(lines),
        color=giveaway.embed_color_end,
        timestamp=giveaway.data.end_at,
    )
    embed.set_footer(text=messages.ended_at)
    return _title(giveaway, ended=True), embed


def build_winner_link_embed(giveaway: "Giveaway", message: discord.Message) -> discord.Embed:
    embed = discord.Embed(
        description=f"[GIVEAWAY LINK]({message.jump_url})",
        color=giveaway.embed_color_end,
    )
    embed.set_footer(text=f"Giveaway ID: {giveaway.message_id}")
    return embed
