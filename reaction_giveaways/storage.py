"""JSON file persistence helpers for giveaway records."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Iterable, List

from .errors import PersistenceError
from .models import GiveawayData

LOGGER = logging.getLogger(__name__)


class GiveawayStorage:
    """Async wrapper around a single JSON document holding every giveaway record."""

    def __init__(self, path: Path) -> None:
        """Initialise the storage helper with the path of the JSON document."""
        self.path = path
        self._lock = asyncio.Lock()

    async def load_all(self) -> List[GiveawayData]:
        """Load every stored giveaway, creating an empty document when none exists."""
        async with self._lock:
            if not self.path.exists():
                LOGGER.info("Giveaway storage %s not found; creating an empty one.", self.path)
                await asyncio.to_thread(self._write_text, "[]")
                return []
            raw = await asyncio.to_thread(self.path.read_bytes)
            return self._parse(raw)

    async def save_all(self, records: Iterable[GiveawayData]) -> None:
        """Rewrite the whole document with the provided records."""
        payload = json.dumps([record.to_payload() for record in records], ensure_ascii=False)
        async with self._lock:
            await asyncio.to_thread(self._write_text, payload)

    # --- Internal helpers -------------------------------------------------

    def _parse(self, raw: bytes) -> List[GiveawayData]:
        try:
            payload = json.loads(raw.decode("utf-8"))
        except UnicodeDecodeError as exc:
            raise PersistenceError(f"The storage file {self.path} is not valid UTF-8.") from exc
        except json.JSONDecodeError as exc:
            raise PersistenceError(
                f"The storage file {self.path} is not properly formatted ({exc.msg})."
            ) from exc
        if not isinstance(payload, list):
            raise PersistenceError(
                f"The storage file {self.path} is not properly formatted (giveaways is not an array)."
            )
        records: List[GiveawayData] = []
        for index, entry in enumerate(payload):
            if not isinstance(entry, dict):
                raise PersistenceError(f"Giveaway entry #{index} in {self.path} is not an object.")
            try:
                records.append(GiveawayData.from_payload(entry))
            except (KeyError, TypeError, ValueError, OverflowError) as exc:
                raise PersistenceError(
                    f"Giveaway entry #{index} in {self.path} is invalid: {exc!r}"
                ) from exc
        return records

    def _write_text(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(text, encoding="utf-8")
        tmp_path.replace(self.path)
