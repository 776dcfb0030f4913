"""Data models used for giveaway persistence and runtime options."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import UTC, datetime, timedelta
from typing import Any, List, Optional, Union

DurationLike = Union[int, float, timedelta]


def to_timedelta(value: DurationLike) -> timedelta:
    """Convert a duration given in milliseconds (or a timedelta) to a timedelta."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"Expected a duration in milliseconds, got {value!r}")
    return timedelta(milliseconds=value)


def _parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _optional_seconds(value: Optional[timedelta]) -> Optional[float]:
    return value.total_seconds() if value is not None else None


def _optional_timedelta(value: Any) -> Optional[timedelta]:
    if value is None:
        return None
    return timedelta(seconds=float(value))


def _optional_int_list(value: Any) -> Optional[List[int]]:
    if value is None:
        return None
    if isinstance(value, (int, str)):
        value = [value]
    return [int(item) for item in value]


@dataclass(slots=True)
class TimeUnits:
    seconds: str = "seconds"
    minutes: str = "minutes"
    hours: str = "hours"
    days: str = "days"
    weeks: str = "weeks"
    plural_s: bool = False

    def to_payload(self) -> dict:
        return {
            "seconds": self.seconds,
            "minutes": self.minutes,
            "hours": self.hours,
            "days": self.days,
            "weeks": self.weeks,
            "plural_s": self.plural_s,
        }

    @classmethod
    def from_payload(cls, payload: Optional[dict]) -> "TimeUnits":
        defaults = cls()
        payload = payload or {}
        if not isinstance(payload, dict):
            raise TypeError(f"units must be a mapping, not {type(payload).__name__}.")
        return cls(
            seconds=str(payload.get("seconds", defaults.seconds)),
            minutes=str(payload.get("minutes", defaults.minutes)),
            hours=str(payload.get("hours", defaults.hours)),
            days=str(payload.get("days", defaults.days)),
            weeks=str(payload.get("weeks", defaults.weeks)),
            plural_s=bool(payload.get("plural_s", defaults.plural_s)),
        )


@dataclass(slots=True)
class GiveawayMessages:
    """Text templates used when rendering a giveaway announcement."""
    giveaway: str = "🎉🎉 **GIVEAWAY** 🎉🎉"
    giveaway_ended: str = "🎉🎉 **GIVEAWAY ENDED** 🎉🎉"
    drop: str = "🎉🎉 **DROP** 🎉🎉"
    drop_ended: str = "🎉🎉 **DROP ENDED** 🎉🎉"
    time_remaining: str = "Time remaining: **{duration}**!"
    invite_to_participate: str = "React with 🎉 to participate!"
    win_message: str = "Congratulations, {winners}! You won **{prize}**!"
    embed_footer: str = "Giveaways"
    no_winner: str = "Giveaway cancelled, no valid participations."
    hosted_by: str = "Hosted by: {user}"
    winners: str = "winner(s)"
    ended_at: str = "Ended at"
    units: TimeUnits = field(default_factory=TimeUnits)

    def to_payload(self) -> dict:
        payload = {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if item.name != "units"
        }
        payload["units"] = self.units.to_payload()
        return payload

    @classmethod
    def from_payload(cls, payload: Optional[dict]) -> "GiveawayMessages":
        """Build a template bundle, falling back to defaults for missing keys."""
        payload = payload or {}
        if not isinstance(payload, dict):
            raise TypeError(f"messages must be a mapping, not {type(payload).__name__}.")
        defaults = cls()
        values = {
            item.name: str(payload.get(item.name, getattr(defaults, item.name)))
            for item in fields(cls)
            if item.name != "units"
        }
        return cls(units=TimeUnits.from_payload(payload.get("units")), **values)


@dataclass(slots=True)
class RerollMessages:
    congrat: str = ":tada: New winner(s): {winners}! Congratulations!"
    error: str = "No valid participations, no new winner(s) can be chosen!"


@dataclass(slots=True)
class GiveawayData:
    """Persisted view of one giveaway. Transient runtime state lives on the entity."""
    channel_id: int
    guild_id: int
    start_at: datetime
    end_at: datetime
    winner_count: int
    prize: str
    message_id: Optional[int] = None
    ended: bool = False
    hosted_by: Optional[str] = None
    messages: GiveawayMessages = field(default_factory=GiveawayMessages)
    reaction: Optional[str] = None
    bots_can_win: Optional[bool] = None
    exempt_permissions: Optional[List[str]] = None
    embed_color: Optional[int] = None
    embed_color_end: Optional[int] = None
    role_requirement: Optional[List[int]] = None
    joined_requirement: Optional[timedelta] = None
    age_requirement: Optional[timedelta] = None
    message_requirement: Optional[int] = None
    server_requirement: Optional[List[str]] = None
    servers_list: str = ""
    bypass_roles: List[int] = field(default_factory=list)
    is_drop: bool = False
    winner_role: Optional[int] = None

    def to_payload(self) -> dict:
        """Serialize the giveaway to a JSON-serialisable structure."""
        return {
            "message_id": self.message_id,
            "channel_id": self.channel_id,
            "guild_id": self.guild_id,
            "start_at": self.start_at.isoformat(),
            "end_at": self.end_at.isoformat(),
            "ended": self.ended,
            "winner_count": self.winner_count,
            "prize": self.prize,
            "hosted_by": self.hosted_by,
            "messages": self.messages.to_payload(),
            "reaction": self.reaction,
            "bots_can_win": self.bots_can_win,
            "exempt_permissions": self.exempt_permissions,
            "embed_color": self.embed_color,
            "embed_color_end": self.embed_color_end,
            "role_requirement": self.role_requirement,
            "joined_requirement": _optional_seconds(self.joined_requirement),
            "age_requirement": _optional_seconds(self.age_requirement),
            "message_requirement": self.message_requirement,
            "server_requirement": self.server_requirement,
            "servers_list": self.servers_list,
            "bypass_roles": self.bypass_roles,
            "is_drop": self.is_drop,
            "winner_role": self.winner_role,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "GiveawayData":
        """Reconstruct a giveaway record from serialized payload data."""
        message_id = payload.get("message_id")
        exempt_permissions = payload.get("exempt_permissions")
        server_requirement = payload.get("server_requirement")
        message_requirement = payload.get("message_requirement")
        embed_color = payload.get("embed_color")
        embed_color_end = payload.get("embed_color_end")
        bots_can_win = payload.get("bots_can_win")
        winner_role = payload.get("winner_role")
        record = cls(
            message_id=int(message_id) if message_id is not None else None,
            channel_id=int(payload["channel_id"]),
            guild_id=int(payload["guild_id"]),
            start_at=_parse_datetime(payload["start_at"]),
            end_at=_parse_datetime(payload["end_at"]),
            ended=bool(payload.get("ended", False)),
            winner_count=int(payload["winner_count"]),
            prize=str(payload["prize"]),
            hosted_by=payload.get("hosted_by"),
            messages=GiveawayMessages.from_payload(payload.get("messages")),
            reaction=payload.get("reaction"),
            bots_can_win=bool(bots_can_win) if bots_can_win is not None else None,
            exempt_permissions=(
                [str(p) for p in exempt_permissions]
                if exempt_permissions is not None
                else None
            ),
            embed_color=int(embed_color) if embed_color is not None else None,
            embed_color_end=int(embed_color_end) if embed_color_end is not None else None,
            role_requirement=_optional_int_list(payload.get("role_requirement")),
            joined_requirement=_optional_timedelta(payload.get("joined_requirement")),
            age_requirement=_optional_timedelta(payload.get("age_requirement")),
            message_requirement=(
                int(message_requirement) if message_requirement is not None else None
            ),
            server_requirement=(
                [server_requirement]
                if isinstance(server_requirement, str)
                else list(server_requirement)
                if server_requirement is not None
                else None
            ),
            servers_list=str(payload.get("servers_list", "") or ""),
            bypass_roles=_optional_int_list(payload.get("bypass_roles")) or [],
            is_drop=bool(payload.get("is_drop", False)),
            winner_role=int(winner_role) if winner_role is not None else None,
        )
        if record.winner_count < 1:
            raise ValueError(f"winner_count must be at least 1, not {record.winner_count}.")
        if record.end_at < record.start_at:
            raise ValueError("end_at is earlier than start_at.")
        return record


@dataclass(slots=True)
class GiveawayStartOptions:
    """Caller supplied options for a new giveaway.

    ``time`` is the duration in milliseconds (or a timedelta). Fields left as
    ``None`` fall back to the manager defaults.
    """
    prize: Optional[str] = None
    time: Optional[DurationLike] = None
    winner_count: Optional[int] = None
    hosted_by: Optional[str] = None
    messages: Optional[GiveawayMessages] = None
    reaction: Optional[str] = None
    bots_can_win: Optional[bool] = None
    exempt_permissions: Optional[List[str]] = None
    exempt_members: Optional[Any] = None
    embed_color: Optional[int] = None
    embed_color_end: Optional[int] = None
    role_requirement: Optional[Union[int, List[int]]] = None
    joined_requirement: Optional[DurationLike] = None
    age_requirement: Optional[DurationLike] = None
    message_requirement: Optional[int] = None
    server_requirement: Optional[Union[str, List[str]]] = None
    bypass_roles: List[int] = field(default_factory=list)
    is_drop: bool = False
    winner_role: Optional[int] = None


@dataclass(slots=True)
class GiveawayEditOptions:
    new_winner_count: Optional[int] = None
    new_prize: Optional[str] = None
    add_time: Optional[DurationLike] = None
    set_end_timestamp: Optional[datetime] = None


@dataclass(slots=True)
class GiveawayRerollOptions:
    winner_count: Optional[int] = None
    messages: RerollMessages = field(default_factory=RerollMessages)
