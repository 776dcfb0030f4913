"""Eligibility filtering and winner selection for reaction giveaways.

The eligible set is computed once by :func:`filter_eligible` and is shared by
winner selection and by the displayed winning chance, so the odds shown on the
announcement always describe the same population the draw uses.
"""

from __future__ import annotations

import inspect
import logging
import secrets
from random import Random
from typing import Awaitable, Callable, Iterable, List, Optional, Protocol, Sequence, TypeVar, Union

import discord

log = logging.getLogger(__name__)

T = TypeVar("T")


class ExemptMembersPredicate(Protocol):
    """Capability deciding whether a member is excluded from winning.

    Returning ``True`` excludes the member. The predicate may be a plain
    function or a coroutine function. Any exception it raises is logged and
    the member is treated as *not* exempt (fail-open).
    """

    def __call__(self, member: discord.Member) -> Union[bool, Awaitable[bool]]:
        ...


async def run_exempt_predicate(
    predicate: Optional[ExemptMembersPredicate], member: discord.Member
) -> bool:
    if predicate is None:
        return False
    try:
        result = predicate(member)
        if inspect.isawaitable(result):
            result = await result
    except Exception:
        log.exception(
            "Exempt members predicate failed for member %s; treating as not exempt.",
            getattr(member, "id", "unknown"),
        )
        return False
    return bool(result)


async def resolve_member(guild: discord.Guild, user_id: int) -> Optional[discord.Member]:
    member = guild.get_member(user_id)
    if member is not None:
        return member
    try:
        return await guild.fetch_member(user_id)
    except (discord.NotFound, discord.Forbidden, discord.HTTPException):
        return None


def has_any_permission(member: discord.Member, permissions: Iterable[str]) -> bool:
    granted = member.guild_permissions
    return any(getattr(granted, name, False) for name in permissions)


async def filter_eligible(
    users: Iterable[discord.abc.User],
    *,
    guild: discord.Guild,
    bots_can_win: bool,
    exempt_permissions: Sequence[str],
    is_exempt: Callable[[discord.Member], Awaitable[bool]],
) -> List[discord.Member]:
    """Return the members among ``users`` who are allowed to win.

    Filters are applied in order: bot policy, guild membership, exemption
    predicate, exempt permissions.
    """
    candidates = [user for user in users if bool(user.bot) == bots_can_win]
    eligible: List[discord.Member] = []
    for user in candidates:
        member = await resolve_member(guild, user.id)
        if member is None:
            log.debug("User %s is no longer a member of guild %s.", user.id, guild.id)
            continue
        if await is_exempt(member):
            continue
        if has_any_permission(member, exempt_permissions):
            continue
        eligible.append(member)
    return eligible


def draw_winners(
    candidates: Sequence[T], count: int, rng: Optional[Random] = None
) -> List[T]:
    """Pick up to ``count`` distinct candidates uniformly at random."""
    population = list(candidates)
    sample_size = min(max(count, 0), len(population))
    if sample_size == 0:
        return []
    rng = rng or secrets.SystemRandom()
    return rng.sample(population, sample_size)


def chance_ratio(winner_count: int, eligible_count: int) -> float:
    return min(1.0, winner_count / max(1, eligible_count))


def format_chance(winner_count: int, eligible_count: int) -> str:
    return f"{chance_ratio(winner_count, eligible_count) * 100:.2f}%"
