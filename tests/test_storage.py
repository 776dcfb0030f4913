import asyncio
import json

import pytest

from reaction_giveaways.errors import PersistenceError
from reaction_giveaways.storage import GiveawayStorage

from .conftest import make_data


async def test_missing_document_is_created_empty(tmp_path):
    storage = GiveawayStorage(tmp_path / "nested" / "giveaways.json")

    assert await storage.load_all() == []
    assert json.loads(storage.path.read_text(encoding="utf-8")) == []


async def test_save_then_load_returns_the_same_records(storage, channel):
    records = [make_data(channel, message_id=1), make_data(channel, message_id=2, ended=True)]

    await storage.save_all(records)

    assert await storage.load_all() == records
    assert not storage.path.with_suffix(".json.tmp").exists()


@pytest.mark.parametrize(
    "content",
    ["{not json", '{"giveaways": []}', "[1, 2]", '[{"channel_id": 1}]'],
)
async def test_malformed_documents_raise(storage, content):
    storage.path.write_text(content, encoding="utf-8")

    with pytest.raises(PersistenceError):
        await storage.load_all()


async def test_concurrent_saves_leave_a_complete_document(storage, channel):
    batches = [[make_data(channel, message_id=i) for i in range(n)] for n in range(1, 6)]
    await asyncio.gather(*(storage.save_all(batch) for batch in batches))

    loaded = await storage.load_all()
    assert loaded == batches[-1]


def record_document(**overrides) -> str:
    record = {
        "channel_id": 20,
        "guild_id": 10,
        "start_at": "2024-01-01T00:00:00+00:00",
        "end_at": "2024-01-01T01:00:00+00:00",
        "winner_count": 1,
        "prize": "Nitro",
    }
    record.update(overrides)
    return json.dumps([record])


@pytest.mark.parametrize(
    "content",
    [
        record_document(winner_count=0),
        record_document(winner_count=-3),
        record_document(end_at="2023-12-31T23:00:00+00:00"),
        record_document(messages=["bad"]),
        record_document(messages={"units": "weeks"}),
        record_document(start_at=1704067200),
    ],
)
async def test_records_breaking_invariants_raise(storage, content):
    storage.path.write_text(content, encoding="utf-8")

    with pytest.raises(PersistenceError):
        await storage.load_all()


async def test_valid_record_document_loads(storage):
    storage.path.write_text(record_document(), encoding="utf-8")

    [record] = await storage.load_all()

    assert record.winner_count == 1
    assert record.end_at > record.start_at


async def test_undecodable_document_raises(storage):
    storage.path.write_bytes(b'[{"prize": "\xff\xfe"}]')

    with pytest.raises(PersistenceError, match="UTF-8"):
        await storage.load_all()
