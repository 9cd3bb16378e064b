"""Durable transcript, knowledge base and active-profile records keyed by serial number."""
from __future__ import annotations

import logging
from typing import List, Literal, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from screentech.agent.errors import CorruptRecordError
from screentech.app.models import KnowledgeEntry, MachineProfile, Message
from screentech.database.storage import KeyValueStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")

CorruptRecordPolicy = Literal["reset", "raise"]

_messages_adapter = TypeAdapter(List[Message])
_knowledge_adapter = TypeAdapter(List[KnowledgeEntry])
_profile_adapter = TypeAdapter(MachineProfile)


class _RecordStore:
    def __init__(
        self,
        storage: KeyValueStorage,
        prefix: str = "screen_",
        on_corrupt: CorruptRecordPolicy = "reset",
    ) -> None:
        self.storage = storage
        self.prefix = prefix
        self.on_corrupt = on_corrupt

    def _load(self, key: str, adapter: TypeAdapter[T]) -> Optional[T]:
        raw = self.storage.get(key)
        if raw is None:
            return None
        try:
            return adapter.validate_json(raw)
        except ValidationError as exc:
            if self.on_corrupt == "raise":
                raise CorruptRecordError(key, str(exc)) from exc
            logger.warning("Discarding malformed record %s (%d validation errors)", key, exc.error_count())
            return None


class TranscriptStore(_RecordStore):
    def key(self, serial_number: str) -> str:
        return f"{self.prefix}history_{serial_number}"

    def load(self, serial_number: str) -> Optional[List[Message]]:
        """Return the stored transcript, or ``None`` when the machine has none."""
        return self._load(self.key(serial_number), _messages_adapter)

    def save(self, serial_number: str, messages: List[Message]) -> None:
        self.storage.set(self.key(serial_number), _messages_adapter.dump_json(messages).decode("utf-8"))

    def clear(self, serial_number: str) -> None:
        self.storage.remove(self.key(serial_number))


class KnowledgeStore(_RecordStore):
    def key(self, serial_number: str) -> str:
        return f"{self.prefix}kb_{serial_number}"

    def load(self, serial_number: str) -> List[KnowledgeEntry]:
        return self._load(self.key(serial_number), _knowledge_adapter) or []

    def append(self, entry: KnowledgeEntry) -> List[KnowledgeEntry]:
        # Read-modify-write of the whole list; not atomic across writers.
        entries = self.load(entry.serial_number)
        entries.append(entry)
        self.storage.set(
            self.key(entry.serial_number), _knowledge_adapter.dump_json(entries).decode("utf-8")
        )
        return entries


class ProfileStore(_RecordStore):
    @property
    def key(self) -> str:
        return f"{self.prefix}active_profile"

    def load(self) -> Optional[MachineProfile]:
        return self._load(self.key, _profile_adapter)

    def save(self, profile: MachineProfile) -> None:
        self.storage.set(self.key, _profile_adapter.dump_json(profile).decode("utf-8"))

    def clear(self) -> None:
        self.storage.remove(self.key)
