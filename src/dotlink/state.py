"""Persistence of per-entry digests used to flag modified and outdated links."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path

from tomli_w import dump as toml_dump

UNKNOWN_HASH = "unknown"


@dataclass(frozen=True, slots=True)
class StateRecord:
    """Digests recorded when an entry was last linked."""

    entry_id: str
    content_hash: str = UNKNOWN_HASH
    template_hash: str = UNKNOWN_HASH


class StateStore:
    """Tracks the content and template digests of linked entries."""

    def __init__(self, path: Path, records: dict[str, StateRecord] | None = None) -> None:
        self.path = path
        self._records: dict[str, StateRecord] = records or {}

    @classmethod
    def load(cls, path: Path) -> "StateStore":
        if not path.exists():
            return cls(path, {})

        with path.open("rb") as handle:
            data = tomllib.load(handle)

        records: dict[str, StateRecord] = {}
        for item in data.get("entries", []):
            record = StateRecord(
                entry_id=item["id"],
                content_hash=item.get("content_hash", UNKNOWN_HASH),
                template_hash=item.get("template_hash", UNKNOWN_HASH),
            )
            records[record.entry_id] = record

        return cls(path, records)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "entries": [self._record_to_dict(record) for record in sorted(self._records.values(), key=lambda r: r.entry_id)]
        }
        with self.path.open("wb") as handle:
            toml_dump(payload, handle)

    def lookup_template_hash(self, entry_id: str) -> str:
        record = self._records.get(entry_id)
        return record.template_hash if record else UNKNOWN_HASH

    def lookup_content_hash(self, entry_id: str) -> str:
        record = self._records.get(entry_id)
        return record.content_hash if record else UNKNOWN_HASH

    def record(self, entry_id: str, *, content_hash: str | None = None, template_hash: str | None = None) -> None:
        self._records[entry_id] = StateRecord(
            entry_id=entry_id,
            content_hash=content_hash or UNKNOWN_HASH,
            template_hash=template_hash or UNKNOWN_HASH,
        )

    def forget(self, entry_id: str) -> None:
        self._records.pop(entry_id, None)

    @staticmethod
    def _record_to_dict(record: StateRecord) -> dict[str, object]:
        return {
            "id": record.entry_id,
            "content_hash": record.content_hash,
            "template_hash": record.template_hash,
        }
