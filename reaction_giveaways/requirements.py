"""Informational requirement text shown on giveaway announcements.

Nothing here affects who can win: requirements are displayed for members and
moderators, selection only applies the filters in :mod:`.selection`.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import List, Optional, Sequence

import discord

from .models import GiveawayData

log = logging.getLogger(__name__)

SERVER_LINE = "⚠️ Should be in [{name}](https://discord.gg/{code})."
SERVER_WARNING = (
    "⚠️ Some of the server requirements don't work properly. "
    "Please make sure that the invite links are permanent."
)

_UNITS = (
    ("day", 86400),
    ("hour", 3600),
    ("minute", 60),
    ("second", 1),
)


def humanize_duration(value: timedelta) -> str:
    """Render a duration verbosely, e.g. ``1 day 2 hours``."""
    remaining = int(abs(value.total_seconds()))
    parts: List[str] = []
    for name, size in _UNITS:
        amount, remaining = divmod(remaining, size)
        if amount:
            parts.append(f"{amount} {name}{'' if amount == 1 else 's'}")
    return " ".join(parts) or "0 seconds"


def render_requirements(data: GiveawayData) -> str:
    lines: List[str] = [
        f"📣 Users with <@&{role_id}> role can bypass." for role_id in data.bypass_roles
    ]
    if data.server_requirement and data.servers_list:
        lines.append(data.servers_list)
    for role_id in data.role_requirement or ():
        lines.append(f"📣 Must have the <@&{role_id}> role.")
    if data.joined_requirement is not None:
        lines.append(
            "📣 Must have been in this server for at least "
            f"**{humanize_duration(data.joined_requirement)}**."
        )
    if data.age_requirement is not None:
        lines.append(
            "📣 Your account age must be older than "
            f"**{humanize_duration(data.age_requirement)}**."
        )
    if data.message_requirement is not None:
        noun = "messages" if data.message_requirement > 1 else "message"
        lines.append(f"📣 You need to send **{data.message_requirement}** {noun} to this server.")
    return "\n".join(lines)


class RequirementResolver:
    """Resolves invite links into the server requirement text."""

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    async def resolve_servers(self, links: Sequence[str]) -> str:
        results = await asyncio.gather(*(self._resolve_line(link) for link in links))
        lines = [line for line in results if line is not None]
        if len(lines) != len(results):
            lines.append(SERVER_WARNING)
        return "\n".join(lines)

    async def _resolve_line(self, link: str) -> Optional[str]:
        try:
            invite = await self.client.fetch_invite(link)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException) as exc:
            log.warning("Unable to resolve invite %s: %s", link, exc)
            return None
        guild_name = getattr(invite.guild, "name", None)
        if not guild_name:
            log.warning("Invite %s does not point to a guild.", link)
            return None
        return SERVER_LINE.format(name=guild_name, code=invite.code)
