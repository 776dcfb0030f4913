from __future__ import annotations

import itertools
import random
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Dict, List, Optional

import discord
import pytest

from reaction_giveaways.config import ManagerSettings
from reaction_giveaways.manager import GiveawayManager
from reaction_giveaways.models import GiveawayData
from reaction_giveaways.storage import GiveawayStorage

_ids = itertools.count(1000)


def not_found(text: str = "Unknown Message") -> discord.NotFound:
    return discord.NotFound(SimpleNamespace(status=404, reason="Not Found"), text)


def unavailable(text: str = "Service Unavailable") -> discord.HTTPException:
    return discord.HTTPException(SimpleNamespace(status=503, reason="Service Unavailable"), text)


class FakeUser:
    def __init__(self, user_id: int, *, bot: bool = False) -> None:
        self.id = user_id
        self.bot = bot

    @property
    def mention(self) -> str:
        return f"<@{self.id}>"


class FakeMember(FakeUser):
    def __init__(self, user_id: int, *, bot: bool = False, **permissions: bool) -> None:
        super().__init__(user_id, bot=bot)
        self.guild_permissions = discord.Permissions(**permissions)


class FakeGuild:
    def __init__(self, guild_id: int, members: Optional[List[FakeMember]] = None) -> None:
        self.id = guild_id
        self.members: Dict[int, FakeMember] = {m.id: m for m in members or []}
        self.fetch_calls = 0

    def add_member(self, member: FakeMember) -> FakeMember:
        self.members[member.id] = member
        return member

    def get_member(self, user_id: int) -> Optional[FakeMember]:
        return self.members.get(user_id)

    async def fetch_member(self, user_id: int) -> FakeMember:
        self.fetch_calls += 1
        raise not_found("Unknown Member")


class FakeReaction:
    def __init__(self, emoji: str, users: Optional[List[FakeUser]] = None) -> None:
        self.emoji = emoji
        self._users = list(users or [])
        self.error: Optional[Exception] = None

    async def users(self):
        if self.error is not None:
            raise self.error
        for user in list(self._users):
            yield user


class FakeMessage:
    def __init__(self, message_id: int, channel: "FakeChannel", content, embed) -> None:
        self.id = message_id
        self.channel = channel
        self.guild = channel.guild
        self.content = content
        self.embed = embed
        self.reactions: List[FakeReaction] = []
        self.edits: List[dict] = []
        self.deleted = False

    @property
    def jump_url(self) -> str:
        return f"https://discord.com/channels/{self.guild.id}/{self.channel.id}/{self.id}"

    def react(self, emoji: str, user: FakeUser) -> None:
        for reaction in self.reactions:
            if reaction.emoji == emoji:
                reaction._users.append(user)
                return
        self.reactions.append(FakeReaction(emoji, [user]))

    async def add_reaction(self, emoji: str) -> None:
        self.react(emoji, self.channel.me)

    async def edit(self, *, content=None, embed=None) -> "FakeMessage":
        self.content = content
        self.embed = embed
        self.edits.append({"content": content, "embed": embed})
        return self

    async def delete(self) -> None:
        self.deleted = True
        self.channel.messages.pop(self.id, None)


class FakeChannel(discord.abc.Messageable):
    def __init__(self, channel_id: int, guild: FakeGuild, me: FakeUser) -> None:
        self.id = channel_id
        self.guild = guild
        self.me = me
        self.messages: Dict[int, FakeMessage] = {}
        self.sent: List[FakeMessage] = []

    @property
    def mention(self) -> str:
        return f"<#{self.id}>"

    async def send(self, content=None, *, embed=None) -> FakeMessage:
        message = FakeMessage(next(_ids), self, content, embed)
        self.messages[message.id] = message
        self.sent.append(message)
        return message

    async def fetch_message(self, message_id: int) -> FakeMessage:
        try:
            return self.messages[message_id]
        except KeyError:
            raise not_found() from None


class FakeBot:
    def __init__(self) -> None:
        self.user = FakeUser(1, bot=True)
        self.channels: Dict[int, FakeChannel] = {}
        self.guilds: Dict[int, FakeGuild] = {}
        self.invites: Dict[str, SimpleNamespace] = {}
        self.events: List[tuple] = []

    def add_channel(self, channel_id: int, guild: FakeGuild) -> FakeChannel:
        self.guilds[guild.id] = guild
        channel = FakeChannel(channel_id, guild, self.user)
        self.channels[channel_id] = channel
        return channel

    def get_channel(self, channel_id: int) -> Optional[FakeChannel]:
        return self.channels.get(channel_id)

    async def fetch_channel(self, channel_id: int) -> FakeChannel:
        raise not_found("Unknown Channel")

    def get_guild(self, guild_id: int) -> Optional[FakeGuild]:
        return self.guilds.get(guild_id)

    async def fetch_invite(self, link: str) -> SimpleNamespace:
        try:
            return self.invites[link]
        except KeyError:
            raise not_found("Unknown Invite") from None

    async def wait_until_ready(self) -> None:
        return None

    def dispatch(self, event: str, *args) -> None:
        self.events.append((event, *args))

    def events_named(self, name: str) -> List[tuple]:
        return [event for event in self.events if event[0] == name]


def make_data(channel: FakeChannel, **overrides) -> GiveawayData:
    now = datetime.now(tz=UTC)
    values = dict(
        channel_id=channel.id,
        guild_id=channel.guild.id,
        start_at=now - timedelta(minutes=1),
        end_at=now + timedelta(hours=1),
        winner_count=1,
        prize="Nitro",
    )
    values.update(overrides)
    return GiveawayData(**values)


@pytest.fixture
def bot() -> FakeBot:
    return FakeBot()


@pytest.fixture
def guild(bot: FakeBot) -> FakeGuild:
    guild = FakeGuild(10)
    bot.guilds[guild.id] = guild
    return guild


@pytest.fixture
def channel(bot: FakeBot, guild: FakeGuild) -> FakeChannel:
    return bot.add_channel(20, guild)


@pytest.fixture
def storage(tmp_path) -> GiveawayStorage:
    return GiveawayStorage(tmp_path / "giveaways.json")


@pytest.fixture
def settings() -> ManagerSettings:
    return ManagerSettings()


@pytest.fixture
async def manager(bot: FakeBot, settings: ManagerSettings, storage: GiveawayStorage) -> GiveawayManager:
    manager = GiveawayManager(bot, settings, storage, rng=random.Random(7))
    manager.final_countdown_step = 0
    await manager.load()
    yield manager
    manager.stop_scheduler()
