from datetime import UTC, datetime, timedelta

import pytest

from reaction_giveaways.models import GiveawayData, GiveawayMessages, TimeUnits, to_timedelta


def test_to_timedelta_treats_numbers_as_milliseconds():
    assert to_timedelta(1500) == timedelta(seconds=1.5)
    assert to_timedelta(timedelta(minutes=2)) == timedelta(minutes=2)


@pytest.mark.parametrize("value", [True, "10m", None])
def test_to_timedelta_rejects_non_durations(value):
    with pytest.raises(TypeError):
        to_timedelta(value)


def test_giveaway_payload_keeps_every_field():
    start = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
    data = GiveawayData(
        channel_id=20,
        guild_id=10,
        start_at=start,
        end_at=start + timedelta(hours=1),
        winner_count=3,
        prize="Nitro",
        message_id=555,
        hosted_by="<@42>",
        messages=GiveawayMessages(giveaway="GO", units=TimeUnits(seconds="secondes", plural_s=True)),
        reaction="🎁",
        bots_can_win=True,
        exempt_permissions=["manage_guild"],
        embed_color=0x00FF00,
        role_requirement=[1, 2],
        joined_requirement=timedelta(days=1),
        age_requirement=timedelta(days=30),
        message_requirement=10,
        server_requirement=["abc"],
        servers_list="line",
        bypass_roles=[3],
        is_drop=True,
        winner_role=4,
    )

    restored = GiveawayData.from_payload(data.to_payload())

    assert restored == data


def test_from_payload_fills_defaults_and_assumes_utc():
    payload = {
        "channel_id": "20",
        "guild_id": "10",
        "start_at": "2024-01-01T12:00:00",
        "end_at": "2024-01-01T13:00:00",
        "winner_count": 1,
        "prize": "Nitro",
        "messages": {"giveaway": "Custom"},
        "server_requirement": "abc",
    }

    data = GiveawayData.from_payload(payload)

    assert data.start_at.tzinfo is UTC
    assert data.message_id is None
    assert data.ended is False
    assert data.messages.giveaway == "Custom"
    assert data.messages.giveaway_ended == GiveawayMessages().giveaway_ended
    assert data.server_requirement == ["abc"]
    assert data.bots_can_win is None
    assert data.bypass_roles == []


def test_from_payload_requires_core_fields():
    with pytest.raises(KeyError):
        GiveawayData.from_payload({"channel_id": 1})
