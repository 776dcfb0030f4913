import os
from datetime import timedelta

import pytest

from reaction_giveaways.bot import _load_env_file, parse_duration


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("10m", timedelta(minutes=10)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("2d", timedelta(days=2)),
        ("1w 2d", timedelta(weeks=1, days=2)),
        ("45S", timedelta(seconds=45)),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "soon", "10", "10m later", "0s"])
def test_parse_duration_rejects_garbage(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_env_file_does_not_override_existing_variables(tmp_path, monkeypatch):
    env = tmp_path / ".env"
    env.write_text(
        "# comment\nGIVEAWAY_A='quoted'\nGIVEAWAY_B=from-file\nnot a pair\n",
        encoding="utf-8",
    )
    monkeypatch.delenv("GIVEAWAY_A", raising=False)
    monkeypatch.setenv("GIVEAWAY_B", "from-env")

    _load_env_file(env)

    assert os.environ["GIVEAWAY_A"] == "quoted"
    assert os.environ["GIVEAWAY_B"] == "from-env"
    monkeypatch.delenv("GIVEAWAY_A")
