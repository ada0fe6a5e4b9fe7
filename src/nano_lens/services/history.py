"""Bounded, write-through history of analyzed captures."""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from nano_lens.domain.media import HistoryRecord

logger = logging.getLogger(__name__)

HISTORY_KEY = "nanoLensHistory"
DEFAULT_HISTORY_LIMIT = 50

_RECORDS_ADAPTER = TypeAdapter(list[HistoryRecord])


class KeyValueStorage(Protocol):
    """Durable key-value storage for serialized state."""

    def get_item(self, key: str) -> str | None:
        """Return the stored value for a key, if present."""

    def set_item(self, key: str, value: str) -> None:
        """Durably store a value under a key."""


@dataclass
class HistoryStore:
    """Most-recent-first history persisted under a single storage key."""

    storage: KeyValueStorage
    key: str = HISTORY_KEY
    limit: int = DEFAULT_HISTORY_LIMIT
    _records: list[HistoryRecord] = field(default_factory=list, init=False)

    def load(self) -> list[HistoryRecord]:
        """Load persisted history, degrading to empty when unreadable."""
        try:
            raw = self.storage.get_item(self.key)
        except Exception:
            logger.exception("Failed to read history from storage")
            raw = None

        records: list[HistoryRecord] = []
        if raw:
            try:
                records = _RECORDS_ADAPTER.validate_json(raw)
            except ValidationError:
                logger.warning("Stored history is corrupted; starting empty")
                records = []

        kept = records[: self.limit]
        self._records = kept
        if len(records) > len(kept):
            try:
                self._write(kept)
            except Exception:
                logger.exception("Failed to persist trimmed history")
            else:
                logger.info(
                    "Trimmed %s history records over the limit",
                    len(records) - len(kept),
                )
        logger.info("Loaded %s history records", len(self._records))
        return list(self._records)

    def list_records(self) -> list[HistoryRecord]:
        """Return the in-memory history, most recent first."""
        return list(self._records)

    def get(self, record_id: str) -> HistoryRecord | None:
        """Return a record by id, if present."""
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def append(self, record: HistoryRecord) -> None:
        """Insert a record at the front and evict entries beyond the limit."""
        others = [item for item in self._records if item.id != record.id]
        updated = [record, *others][: self.limit]
        self._write(updated)
        evicted = len(others) + 1 - len(updated)
        if evicted > 0:
            logger.info("Evicted %s oldest history records", evicted)

    def remove(self, record_id: str) -> None:
        """Delete a record by id; unknown ids are ignored."""
        updated = [item for item in self._records if item.id != record_id]
        if len(updated) == len(self._records):
            return
        self._write(updated)

    def _write(self, records: list[HistoryRecord]) -> None:
        payload = _RECORDS_ADAPTER.dump_json(records).decode("utf-8")
        self.storage.set_item(self.key, payload)
        self._records = records
