from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from random import Random
from typing import Any, Awaitable, Dict, List, Optional, Union

import discord
from discord.ext import tasks

from .config import ManagerSettings
from .embeds import build_active_embed, build_final_countdown_embed
from .errors import (
    AlreadyEndedError,
    GiveawayError,
    MessageNotFoundError,
    NotFoundError,
    NotReadyError,
    ValidationError,
)
from .giveaway import FINAL_COUNTDOWN_THRESHOLD, Giveaway
from .models import (
    GiveawayData,
    GiveawayEditOptions,
    GiveawayRerollOptions,
    GiveawayStartOptions,
    to_timedelta,
)
from .requirements import RequirementResolver
from .selection import format_chance, resolve_member
from .storage import GiveawayStorage

log = logging.getLogger(__name__)

FINAL_COUNTDOWN_SECONDS = 3

MessageId = Union[int, str]


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{name} must be a positive integer. (val={value})")
    return value


def _optional_duration(value: Any, name: str) -> Optional[timedelta]:
    if value is None:
        return None
    try:
        return to_timedelta(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValidationError(f"{name} is not a duration. (val={value})") from exc


def _as_id_list(value: Any) -> Optional[List[int]]:
    if value is None:
        return None
    if isinstance(value, (list, tuple, set)):
        return [int(item) for item in value]
    return [int(value)]


def _as_str_list(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


class GiveawayManager:
    """Coordinates giveaway lifecycle, persistence, and Discord interactions."""

    fast_tick_interval: float = 1.0
    final_countdown_step: float = 1.0

    def __init__(
        self,
        bot: discord.Client,
        settings: ManagerSettings,
        storage: GiveawayStorage,
        *,
        rng: Optional[Random] = None,
    ) -> None:
        self.bot = bot
        self.settings = settings
        self.storage = storage
        self.rng = rng
        self.resolver = RequirementResolver(bot)
        self.giveaways: Dict[int, Giveaway] = {}
        self.ready = False
        self._state_lock = asyncio.Lock()
        self._finish_tasks: Dict[int, asyncio.Task] = {}
        self._countdown_tasks: Dict[int, asyncio.Task] = {}
        self._loops: List[tasks.Loop] = []

    # --- Persistence ------------------------------------------------------

    async def load(self) -> None:
        records = await self.storage.load_all()
        async with self._state_lock:
            self.giveaways = {}
            for record in records:
                if record.message_id is None:
                    log.warning("Skipping stored giveaway without a message id: %r", record.prize)
                    continue
                self.giveaways[record.message_id] = Giveaway(self, record)
        self.ready = True
        log.info(
            "Loaded %d giveaway(s) (%d active).",
            len(self.giveaways),
            len(self._active_giveaways()),
        )

    async def save_state(self) -> None:
        await self.storage.save_all([giveaway.data for giveaway in self.giveaways.values()])

    def dispatch(self, event: str, *args: Any) -> None:
        self.bot.dispatch(event, *args)

    # --- Lookups ----------------------------------------------------------

    def get(self, message_id: MessageId) -> Optional[Giveaway]:
        try:
            return self.giveaways.get(int(message_id))
        except (TypeError, ValueError):
            return None

    def list_giveaways(self, guild_id: Optional[int] = None) -> List[Giveaway]:
        return [
            giveaway
            for giveaway in self.giveaways.values()
            if guild_id is None or giveaway.guild_id == guild_id
        ]

    def _get_or_raise(self, message_id: MessageId) -> Giveaway:
        giveaway = self.get(message_id)
        if giveaway is None:
            raise NotFoundError(message_id)
        return giveaway

    async def valid_entry_count(self, message_id: MessageId) -> int:
        giveaway = self._get_or_raise(message_id)
        await giveaway.fetch_message()
        return await giveaway.valid_entry_count()

    async def winning_chance(self, message_id: MessageId) -> str:
        giveaway = self._get_or_raise(message_id)
        await giveaway.fetch_message()
        return await giveaway.winning_chance()

    def time_remaining_text(self, message_id: MessageId) -> str:
        return self._get_or_raise(message_id).content

    async def get_text_channel(self, channel_id: int) -> Optional[discord.abc.Messageable]:
        channel = self.bot.get_channel(channel_id)
        if isinstance(channel, discord.abc.Messageable):
            return channel
        try:
            fetched = await self.bot.fetch_channel(channel_id)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException):
            return None
        return fetched if isinstance(fetched, discord.abc.Messageable) else None

    # --- Lifecycle --------------------------------------------------------

    async def start(
        self, channel: discord.abc.Messageable, options: GiveawayStartOptions
    ) -> Giveaway:
        """Post a new giveaway announcement in ``channel`` and track it."""
        if not self.ready:
            raise NotReadyError("The giveaway manager is not ready yet.")
        guild = getattr(channel, "guild", None)
        if channel is None or guild is None:
            raise ValidationError(f"channel is not a valid guild channel. (val={channel})")
        if not isinstance(options.prize, str) or not options.prize.strip():
            raise ValidationError(f"prize is not a string. (val={options.prize})")
        duration = _optional_duration(options.time, "time")
        if duration is None or duration <= timedelta(0):
            raise ValidationError(f"time is not a positive duration. (val={options.time})")
        winner_count = _positive_int(options.winner_count, "winner_count")
        if options.exempt_members is not None and not callable(options.exempt_members):
            raise ValidationError("exempt_members must be callable.")
        if options.message_requirement is not None:
            _positive_int(options.message_requirement, "message_requirement")

        now = datetime.now(tz=UTC)
        try:
            end_at = now + duration
        except OverflowError as exc:
            raise ValidationError(f"time is too far in the future. (val={options.time})") from exc
        data = GiveawayData(
            channel_id=channel.id,
            guild_id=guild.id,
            start_at=now,
            end_at=end_at,
            winner_count=winner_count,
            prize=options.prize.strip(),
            hosted_by=str(options.hosted_by) if options.hosted_by else None,
            messages=options.messages or self.settings.messages,
            reaction=options.reaction,
            bots_can_win=options.bots_can_win,
            exempt_permissions=(
                list(options.exempt_permissions)
                if options.exempt_permissions is not None
                else None
            ),
            embed_color=options.embed_color,
            embed_color_end=options.embed_color_end,
            role_requirement=_as_id_list(options.role_requirement),
            joined_requirement=_optional_duration(options.joined_requirement, "joined_requirement"),
            age_requirement=_optional_duration(options.age_requirement, "age_requirement"),
            message_requirement=options.message_requirement,
            server_requirement=_as_str_list(options.server_requirement),
            bypass_roles=_as_id_list(options.bypass_roles) or [],
            is_drop=options.is_drop,
            winner_role=options.winner_role,
        )
        giveaway = Giveaway(self, data, exempt_members=options.exempt_members)
        if data.server_requirement:
            data.servers_list = await self.resolver.resolve_servers(data.server_requirement)

        content, embed = build_active_embed(
            giveaway,
            chance=format_chance(winner_count, 0),
            last_chance=self.settings.last_chance,
        )
        message = await channel.send(content, embed=embed)
        giveaway.message = message
        data.message_id = message.id
        try:
            await message.add_reaction(giveaway.reaction)
        except discord.HTTPException as exc:
            log.warning("Could not add the entry reaction to giveaway %s: %s", message.id, exc)

        async with self._state_lock:
            self.giveaways[message.id] = giveaway
            await self.save_state()
        log.info(
            "Giveaway %s started in channel %s for %r (%d winner(s), ends %s).",
            message.id,
            data.channel_id,
            data.prize,
            winner_count,
            data.end_at.isoformat(),
        )
        return giveaway

    async def end(self, message_id: MessageId) -> List[discord.Member]:
        giveaway = self._get_or_raise(message_id)
        try:
            return await giveaway.end()
        except MessageNotFoundError:
            await self._prune(giveaway)
            raise
        finally:
            self._cancel_timers(giveaway.message_id)

    async def reroll(
        self, message_id: MessageId, options: Optional[GiveawayRerollOptions] = None
    ) -> List[discord.Member]:
        giveaway = self._get_or_raise(message_id)
        try:
            winners = await giveaway.reroll(options or GiveawayRerollOptions())
        except MessageNotFoundError:
            await self._prune(giveaway)
            raise
        if giveaway.data.server_requirement:
            await self._refresh_server_requirement(giveaway)
            await self.save_state()
        self.dispatch("giveaway_rerolled", giveaway, winners)
        return winners

    async def edit(self, message_id: MessageId, options: GiveawayEditOptions) -> Giveaway:
        giveaway = self._get_or_raise(message_id)
        try:
            await giveaway.edit(options)
        except MessageNotFoundError:
            await self._prune(giveaway)
            raise
        if options.add_time is not None or options.set_end_timestamp is not None:
            self._cancel_finish(giveaway.message_id)
            if giveaway.final_countdown_started and giveaway.remaining_time >= FINAL_COUNTDOWN_THRESHOLD:
                # Pushed back out of the final seconds, the fast tick re-arms it.
                self._cancel_timers(giveaway.message_id)
                giveaway.final_countdown_started = False
                giveaway.nearing_end = False
        return giveaway

    async def delete(self, message_id: MessageId, *, keep_message: bool = False) -> None:
        giveaway = self._get_or_raise(message_id)
        if not keep_message:
            try:
                message = await giveaway.fetch_message()
                await message.delete()
            except (GiveawayError, discord.HTTPException) as exc:
                log.debug("Could not delete the announcement of giveaway %s: %s", giveaway.message_id, exc)
        await self._remove(giveaway)
        log.info("Giveaway %s deleted.", giveaway.message_id)

    async def _remove(self, giveaway: Giveaway) -> None:
        self._cancel_timers(giveaway.message_id)
        async with self._state_lock:
            self.giveaways.pop(giveaway.message_id, None)
            await self.save_state()

    async def _prune(self, giveaway: Giveaway) -> None:
        if giveaway.message_id not in self.giveaways:
            return
        log.warning(
            "Announcement of giveaway %s is gone; removing it from storage.",
            giveaway.message_id,
        )
        await self._remove(giveaway)

    # --- Reactions --------------------------------------------------------

    async def handle_reaction(
        self, payload: discord.RawReactionActionEvent, *, added: bool
    ) -> None:
        giveaway = self.giveaways.get(payload.message_id)
        if giveaway is None or giveaway.ended or payload.guild_id is None:
            return
        if self.bot.user is not None and payload.user_id == self.bot.user.id:
            return
        if not giveaway.matches_emoji(payload.emoji):
            return
        member = getattr(payload, "member", None)
        if member is None:
            guild = self.bot.get_guild(payload.guild_id)
            if guild is None:
                return
            member = await resolve_member(guild, payload.user_id)
            if member is None:
                return
        event = "giveaway_reaction_added" if added else "giveaway_reaction_removed"
        self.dispatch(event, giveaway, member, payload.emoji)

    # --- Scheduler --------------------------------------------------------

    def start_scheduler(self) -> None:
        if not self.ready:
            raise NotReadyError("Load the giveaways before starting the scheduler.")
        if self._loops:
            return
        fast = tasks.loop(seconds=self.fast_tick_interval)(self._fast_tick)
        countdown = tasks.loop(seconds=self.settings.update_countdown_every)(self._countdown_tick)
        requirements = tasks.loop(seconds=self.settings.requirement_refresh_every)(
            self._requirement_tick
        )
        fast.before_loop(self._wait_until_ready)
        countdown.before_loop(self._wait_until_ready)
        requirements.before_loop(self._wait_for_requirement_refresh)
        self._loops = [fast, countdown, requirements]
        for loop in self._loops:
            loop.start()
        log.info("Giveaway scheduler started.")

    def stop_scheduler(self) -> None:
        for loop in self._loops:
            loop.cancel()
        self._loops = []
        for task in [*self._finish_tasks.values(), *self._countdown_tasks.values()]:
            task.cancel()
        self._finish_tasks.clear()
        self._countdown_tasks.clear()

    async def _wait_until_ready(self) -> None:
        await self.bot.wait_until_ready()

    async def _wait_for_requirement_refresh(self) -> None:
        await self.bot.wait_until_ready()
        await asyncio.sleep(self.settings.requirement_refresh_delay)

    def _active_giveaways(self) -> List[Giveaway]:
        return [giveaway for giveaway in self.giveaways.values() if not giveaway.ended]

    async def _guarded(self, giveaway: Giveaway, action: str, work: Awaitable[Any]) -> bool:
        """Run scheduler work for one giveaway, logging instead of raising."""
        try:
            await work
        except MessageNotFoundError:
            await self._prune(giveaway)
            return False
        except AlreadyEndedError:
            log.debug("Giveaway %s already ended; skipping %s.", giveaway.message_id, action)
            return False
        except (GiveawayError, discord.HTTPException) as exc:
            log.warning("Failed to %s giveaway %s: %s", action, giveaway.message_id, exc)
            return False
        return True

    async def _fast_tick(self) -> None:
        await asyncio.gather(
            *(self._check_final_countdown(giveaway) for giveaway in self._active_giveaways())
        )

    async def _check_final_countdown(self, giveaway: Giveaway) -> None:
        if giveaway.ended or giveaway.final_countdown_started:
            return
        remaining = giveaway.remaining_time
        if remaining <= timedelta(0):
            await self._guarded(giveaway, "end", giveaway.end())
            return
        if remaining < FINAL_COUNTDOWN_THRESHOLD:
            giveaway.nearing_end = True
        if not giveaway.nearing_end:
            return
        giveaway.final_countdown_started = True
        message_id = giveaway.message_id
        task = asyncio.create_task(self._run_final_countdown(giveaway))
        self._countdown_tasks[message_id] = task
        task.add_done_callback(lambda done: self._forget_task(self._countdown_tasks, message_id, done))

    async def _run_final_countdown(self, giveaway: Giveaway) -> None:
        for seconds_left in range(FINAL_COUNTDOWN_SECONDS, 0, -1):
            if giveaway.ended or giveaway.message_id not in self.giveaways:
                return
            await self._guarded(
                giveaway, "animate", self._show_final_countdown(giveaway, seconds_left)
            )
            if giveaway.message_id not in self.giveaways:
                return
            await asyncio.sleep(self.final_countdown_step)
        if not giveaway.ended:
            await self._guarded(giveaway, "end", giveaway.end())

    async def _show_final_countdown(self, giveaway: Giveaway, seconds_left: int) -> None:
        message = await giveaway.fetch_message()
        chance = await giveaway.winning_chance()
        content, embed = build_final_countdown_embed(
            giveaway, chance=chance, seconds_left=seconds_left
        )
        await message.edit(content=content, embed=embed)

    async def _countdown_tick(self) -> None:
        await asyncio.gather(
            *(self._update_giveaway(giveaway) for giveaway in self._active_giveaways())
        )

    async def _update_giveaway(self, giveaway: Giveaway) -> None:
        if giveaway.ended or giveaway.nearing_end:
            return
        if giveaway.remaining_time <= timedelta(0):
            await self._guarded(giveaway, "end", giveaway.end())
            return
        if not await self._guarded(giveaway, "refresh", self._refresh_announcement(giveaway)):
            return
        if giveaway.remaining_time.total_seconds() < self.settings.update_countdown_every:
            self._schedule_finish(giveaway)

    async def _refresh_announcement(self, giveaway: Giveaway) -> None:
        message = await giveaway.fetch_message()
        chance = await giveaway.winning_chance()
        content, embed = build_active_embed(
            giveaway, chance=chance, last_chance=self.settings.last_chance
        )
        await message.edit(content=content, embed=embed)

    def _schedule_finish(self, giveaway: Giveaway) -> None:
        message_id = giveaway.message_id
        if message_id in self._finish_tasks:
            return
        delay = max(giveaway.remaining_time.total_seconds(), 0.0)

        async def waiter() -> None:
            try:
                await asyncio.sleep(delay)
                if not giveaway.ended:
                    await self._guarded(giveaway, "end", giveaway.end())
            except asyncio.CancelledError:
                log.debug("Finish task for giveaway %s cancelled", message_id)
                raise
            finally:
                if self._finish_tasks.get(message_id) is asyncio.current_task():
                    self._finish_tasks.pop(message_id, None)

        self._finish_tasks[message_id] = asyncio.create_task(waiter())

    @staticmethod
    def _forget_task(registry: Dict[int, asyncio.Task], message_id: Optional[int], task: asyncio.Task) -> None:
        if registry.get(message_id) is task:
            registry.pop(message_id, None)

    def _cancel_finish(self, message_id: Optional[int]) -> None:
        task = self._finish_tasks.pop(message_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _cancel_timers(self, message_id: Optional[int]) -> None:
        self._cancel_finish(message_id)
        task = self._countdown_tasks.pop(message_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _requirement_tick(self) -> None:
        targets = [giveaway for giveaway in self._active_giveaways() if giveaway.data.server_requirement]
        if not targets:
            return
        await asyncio.gather(*(self._refresh_server_requirement(giveaway) for giveaway in targets))
        await self.save_state()
        log.debug("Refreshed server requirements for %d giveaway(s).", len(targets))

    async def _refresh_server_requirement(self, giveaway: Giveaway) -> None:
        giveaway.data.servers_list = await self.resolver.resolve_servers(
            giveaway.data.server_requirement or []
        )
