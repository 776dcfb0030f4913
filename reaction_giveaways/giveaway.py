"""Runtime wrapper around one persisted giveaway."""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, List, Optional

import discord

from .embeds import build_ended_embed, build_winner_link_embed, format_mentions
from .errors import (
    AlreadyEndedError,
    ChannelUnavailableError,
    MessageNotFoundError,
    NotYetEndedError,
    ValidationError,
)
from .models import (
    GiveawayData,
    GiveawayEditOptions,
    GiveawayMessages,
    GiveawayRerollOptions,
    to_timedelta,
)
from .selection import (
    ExemptMembersPredicate,
    draw_winners,
    filter_eligible,
    format_chance,
    run_exempt_predicate,
)

if TYPE_CHECKING:
    from .manager import GiveawayManager

log = logging.getLogger(__name__)

FINAL_COUNTDOWN_THRESHOLD = timedelta(seconds=4)

_MS_PER_WEEK = 604_800_000
_MS_PER_DAY = 86_400_000
_MS_PER_HOUR = 3_600_000
_MS_PER_MINUTE = 60_000
_MS_PER_SECOND = 1_000


class Giveaway:
    """A live giveaway: the persisted record plus transient announcement state.

    The ``Active -> Ended`` transition and edits run under a per-giveaway lock,
    so two scheduler ticks observing the deadline at the same time end the
    giveaway exactly once.
    """

    def __init__(
        self,
        manager: "GiveawayManager",
        data: GiveawayData,
        *,
        exempt_members: Optional[ExemptMembersPredicate] = None,
    ) -> None:
        self.manager = manager
        self.data = data
        self.exempt_members = exempt_members
        self.message: Optional[discord.Message] = None
        self.nearing_end = False
        self.final_countdown_started = False
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return (
            f"<Giveaway message_id={self.message_id} prize={self.data.prize!r} "
            f"ended={self.ended}>"
        )

    # --- Record accessors -------------------------------------------------

    @property
    def message_id(self) -> Optional[int]:
        return self.data.message_id

    @property
    def channel_id(self) -> int:
        return self.data.channel_id

    @property
    def guild_id(self) -> int:
        return self.data.guild_id

    @property
    def ended(self) -> bool:
        return self.data.ended

    @property
    def messages(self) -> GiveawayMessages:
        return self.data.messages

    @property
    def remaining_time(self) -> timedelta:
        return self.data.end_at - datetime.now(tz=UTC)

    @property
    def duration(self) -> timedelta:
        return self.data.end_at - self.data.start_at

    @property
    def reaction(self) -> str:
        return self.data.reaction or self.manager.settings.defaults.reaction

    @property
    def bots_can_win(self) -> bool:
        if self.data.bots_can_win is None:
            return self.manager.settings.defaults.bots_can_win
        return self.data.bots_can_win

    @property
    def exempt_permissions(self) -> List[str]:
        if self.data.exempt_permissions is None:
            return list(self.manager.settings.defaults.exempt_permissions)
        return list(self.data.exempt_permissions)

    @property
    def embed_color(self) -> int:
        if self.data.embed_color is None:
            return self.manager.settings.defaults.embed_color
        return self.data.embed_color

    @property
    def embed_color_end(self) -> int:
        if self.data.embed_color_end is None:
            return self.manager.settings.defaults.embed_color_end
        return self.data.embed_color_end

    @property
    def content(self) -> str:
        """Time remaining text rendered with the giveaway's unit names."""
        remaining_ms = self.remaining_time / timedelta(milliseconds=1)

        def part(size: int, modulo: Optional[int] = None) -> int:
            # int() truncates toward zero for both signs
            value = int(remaining_ms / size)
            return int(math.fmod(value, modulo)) if modulo else value

        weeks = part(_MS_PER_WEEK)
        days = part(_MS_PER_DAY, 7)
        hours = part(_MS_PER_HOUR, 24)
        minutes = part(_MS_PER_MINUTE, 60)
        seconds = part(_MS_PER_SECOND, 60)
        if seconds == 0:
            seconds += 1

        units = self.messages.units

        def unit(name: str, value: int) -> str:
            if value < 2 and (units.plural_s or name.endswith("s")):
                return name[:-1]
            return name

        pattern = "".join(
            f"{value} {unit(name, value)}, "
            for value, name in (
                (weeks, units.weeks),
                (days, units.days),
                (hours, units.hours),
                (minutes, units.minutes),
            )
            if value > 0
        )
        pattern += f"{seconds} {unit(units.seconds, seconds)}"
        return (
            self.messages.time_remaining.replace("{duration}", pattern)
            .replace("{weeks}", str(weeks))
            .replace("{days}", str(days))
            .replace("{hours}", str(hours))
            .replace("{minutes}", str(minutes))
            .replace("{seconds}", str(seconds))
        )

    # --- Discord lookups --------------------------------------------------

    def matches_emoji(self, emoji: discord.PartialEmoji | discord.Emoji | str) -> bool:
        if str(emoji) == self.reaction:
            return True
        return getattr(emoji, "name", None) == self.reaction

    async def fetch_channel(self) -> discord.abc.Messageable:
        channel = await self.manager.get_text_channel(self.channel_id)
        if channel is None:
            raise ChannelUnavailableError(self.channel_id, self.message_id)
        return channel

    async def fetch_message(
        self, channel: Optional[discord.abc.Messageable] = None
    ) -> discord.Message:
        """Fetch the announcement and cache it on the giveaway."""
        if channel is None:
            channel = await self.fetch_channel()
        if self.message_id is None:
            raise MessageNotFoundError(None)
        try:
            self.message = await channel.fetch_message(self.message_id)
        except (discord.NotFound, discord.Forbidden) as exc:
            self.message = None
            raise MessageNotFoundError(self.message_id) from exc
        return self.message

    def _find_reaction(self, message: discord.Message) -> Optional[discord.Reaction]:
        for reaction in message.reactions:
            if self.matches_emoji(reaction.emoji):
                return reaction
        return None

    # --- Entries and selection --------------------------------------------

    async def entrants(self) -> List[discord.abc.User]:
        """Users who reacted with the entry reaction, excluding this bot."""
        message = self.message or await self.fetch_message()
        reaction = self._find_reaction(message)
        if reaction is None:
            return []
        own_id = getattr(self.manager.bot.user, "id", None)
        return [user async for user in reaction.users() if user.id != own_id]

    async def valid_entry_count(self) -> int:
        # Counts every entrant before eligibility filtering; display only.
        return len(await self.entrants())

    async def is_exempt(self, member: discord.Member) -> bool:
        predicate = self.exempt_members or self.manager.settings.defaults.exempt_members
        return await run_exempt_predicate(predicate, member)

    async def eligible_members(self) -> List[discord.Member]:
        message = self.message or await self.fetch_message()
        entrants = await self.entrants()
        guild = message.guild or self.manager.bot.get_guild(self.guild_id)
        if guild is None:
            return []
        return await filter_eligible(
            entrants,
            guild=guild,
            bots_can_win=self.bots_can_win,
            exempt_permissions=self.exempt_permissions,
            is_exempt=self.is_exempt,
        )

    async def winning_chance(self) -> str:
        eligible = await self.eligible_members()
        return format_chance(self.data.winner_count, len(eligible))

    async def roll(self, winner_count: Optional[int] = None) -> List[discord.Member]:
        eligible = await self.eligible_members()
        return draw_winners(eligible, winner_count or self.data.winner_count, self.manager.rng)

    # --- Transitions ------------------------------------------------------

    async def end(self) -> List[discord.Member]:
        """End the giveaway, announce the winners and return them."""
        async with self._lock:
            if self.ended:
                raise AlreadyEndedError(self.message_id)
            channel = await self.fetch_channel()
            message = await self.fetch_message(channel)

            winners = await self.roll()
            entries = await self.valid_entry_count()
            # Only an ended giveaway that reached storage counts as ended.
            self.data.ended = True
            try:
                await self.manager.save_state()
            except Exception:
                self.data.ended = False
                raise
            log.info(
                "Giveaway %s (%s) ended with %d winner(s) out of %d entries.",
                self.message_id,
                self.data.prize,
                len(winners),
                entries,
            )
            self.manager.dispatch("giveaway_ended", self, winners)

            content, embed = build_ended_embed(self, winners, entries)
            await message.edit(content=content, embed=embed)
            if winners:
                await channel.send(
                    self.messages.win_message.replace("{winners}", format_mentions(winners))
                    .replace("{prize}", self.data.prize),
                    embed=build_winner_link_embed(self, message),
                )
            return winners

    async def edit(self, options: GiveawayEditOptions) -> "Giveaway":
        async with self._lock:
            if self.ended:
                raise AlreadyEndedError(self.message_id)
            channel = await self.fetch_channel()
            await self.fetch_message(channel)

            winner_count = self.data.winner_count
            if options.new_winner_count is not None:
                if (
                    isinstance(options.new_winner_count, bool)
                    or not isinstance(options.new_winner_count, int)
                    or options.new_winner_count < 1
                ):
                    raise ValidationError(
                        f"new_winner_count must be a positive integer. (val={options.new_winner_count})"
                    )
                winner_count = options.new_winner_count

            prize = self.data.prize
            if options.new_prize is not None:
                prize = str(options.new_prize).strip()
                if not prize:
                    raise ValidationError("new_prize must not be empty.")

            end_at = self.data.end_at
            if options.add_time is not None:
                try:
                    end_at = end_at + to_timedelta(options.add_time)
                except (TypeError, ValueError, OverflowError) as exc:
                    raise ValidationError(
                        f"add_time is not a duration. (val={options.add_time})"
                    ) from exc
            if options.set_end_timestamp is not None:
                end_at = options.set_end_timestamp
                if end_at.tzinfo is None:
                    end_at = end_at.replace(tzinfo=UTC)
            if end_at < self.data.start_at:
                raise ValidationError("The giveaway cannot end before it started.")

            self.data.winner_count = winner_count
            self.data.prize = prize
            self.data.end_at = end_at
            if not self.final_countdown_started and self.remaining_time >= FINAL_COUNTDOWN_THRESHOLD:
                self.nearing_end = False
            await self.manager.save_state()
            log.info("Giveaway %s edited.", self.message_id)
            return self

    async def reroll(self, options: GiveawayRerollOptions) -> List[discord.Member]:
        if not self.ended:
            raise NotYetEndedError(self.message_id)
        if options.winner_count is not None and (
            isinstance(options.winner_count, bool)
            or not isinstance(options.winner_count, int)
            or options.winner_count < 1
        ):
            raise ValidationError(
                f"winner_count must be a positive integer. (val={options.winner_count})"
            )
        channel = await self.fetch_channel()
        await self.fetch_message(channel)

        winners = await self.roll(options.winner_count)
        if winners:
            await channel.send(
                options.messages.congrat.replace("{winners}", format_mentions(winners))
            )
        else:
            await channel.send(options.messages.error)
        log.info("Giveaway %s rerolled with %d winner(s).", self.message_id, len(winners))
        return winners
