"""Per-conversation sliding-window chat memory over pluggable stores."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import weakref
from contextlib import closing
from pathlib import Path
from typing import Protocol

from knowledge_agent.config import MemoryConfig
from knowledge_agent.errors import MemoryStoreFailure
from knowledge_agent.types import Message

logger = logging.getLogger(__name__)


class ChatMemoryStore(Protocol):
    """Persistence boundary for conversation message lists."""

    def get_messages(self, conversation_id: str) -> list[Message]:
        """Return stored messages, oldest first; empty when unknown."""

    def update_messages(self, conversation_id: str, messages: list[Message]) -> None:
        """Replace the stored messages for `conversation_id`."""

    def delete_messages(self, conversation_id: str) -> None:
        """Remove the stored messages; no-op when unknown."""


class InMemoryChatMemoryStore:
    """Process-local store, used for tests and single-instance deployments."""

    def __init__(self) -> None:
        self._data: dict[str, list[Message]] = {}

    def get_messages(self, conversation_id: str) -> list[Message]:
        return list(self._data.get(conversation_id, []))

    def update_messages(self, conversation_id: str, messages: list[Message]) -> None:
        self._data[conversation_id] = list(messages)

    def delete_messages(self, conversation_id: str) -> None:
        self._data.pop(conversation_id, None)


class SQLiteChatMemoryStore:
    """Durable key-value store addressed by `key_prefix + conversation_id`.

    Values are JSON lists of `{"role", "text"}` objects. Every SQLite error is
    surfaced as `MemoryStoreFailure`; chat history failures are user-visible.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        key_prefix: str = "knowledge_agent:chat:memory:",
        timeout_seconds: float = 5.0,
    ) -> None:
        self.path = Path(path)
        self.key_prefix = key_prefix
        self.timeout_seconds = timeout_seconds
        self._run(
            "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )

    def get_messages(self, conversation_id: str) -> list[Message]:
        row = self._run(
            "SELECT value FROM kv WHERE key = ?", (self._key(conversation_id),), fetch=True
        )
        if row is None:
            return []
        try:
            payload = json.loads(row[0])
            return [Message.from_dict(item) for item in payload]
        except (ValueError, KeyError, TypeError) as exc:
            raise MemoryStoreFailure(
                f"Stored chat history for conversation '{conversation_id}' is corrupt: {exc}"
            ) from exc

    def update_messages(self, conversation_id: str, messages: list[Message]) -> None:
        value = json.dumps([message.to_dict() for message in messages], ensure_ascii=False)
        self._run(
            "INSERT INTO kv(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (self._key(conversation_id), value),
        )

    def delete_messages(self, conversation_id: str) -> None:
        self._run("DELETE FROM kv WHERE key = ?", (self._key(conversation_id),))

    def _key(self, conversation_id: str) -> str:
        return f"{self.key_prefix}{conversation_id}"

    def _run(
        self, sql: str, params: tuple[str, ...] = (), *, fetch: bool = False
    ) -> tuple[str, ...] | None:
        try:
            with closing(sqlite3.connect(self.path, timeout=self.timeout_seconds)) as conn:
                cur = conn.execute(sql, params)
                row = cur.fetchone() if fetch else None
                conn.commit()
        except sqlite3.Error as exc:
            raise MemoryStoreFailure(f"Chat memory store is unavailable: {exc}") from exc
        return row


def create_chat_memory_store(
    config: MemoryConfig | None = None,
) -> InMemoryChatMemoryStore | SQLiteChatMemoryStore:
    """Select a chat memory store implementation from configuration."""

    config = config or MemoryConfig()
    if config.backend == "sqlite":
        return SQLiteChatMemoryStore(
            config.sqlite_path,
            key_prefix=config.key_prefix,
            timeout_seconds=config.timeout_seconds,
        )
    return InMemoryChatMemoryStore()


class ConversationMemory:
    """Bounded, ordered message history per conversation id.

    Appends evict from the front once `max_messages` is exceeded. Operations on
    one id are serialized with a per-id lock; different ids do not contend.
    A lock lives only while some caller holds it. The component keeps no
    cache: every read goes to the store.
    """

    def __init__(self, store: ChatMemoryStore, config: MemoryConfig | None = None) -> None:
        self.store = store
        self.config = config or MemoryConfig()
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    @property
    def max_messages(self) -> int:
        return self.config.max_messages

    def append(self, conversation_id: str, message: Message) -> None:
        self.extend(conversation_id, [message])

    def extend(self, conversation_id: str, new_messages: list[Message]) -> None:
        """Append several messages as one step; no other write interleaves."""
        _require_id(conversation_id)
        with self._lock_for(conversation_id):
            messages = self.store.get_messages(conversation_id)
            messages.extend(new_messages)
            overflow = len(messages) - self.config.max_messages
            if overflow > 0:
                del messages[:overflow]
                logger.debug(
                    "Evicted %d messages from conversation %s", overflow, conversation_id
                )
            self.store.update_messages(conversation_id, messages)

    def get(self, conversation_id: str) -> list[Message]:
        _require_id(conversation_id)
        with self._lock_for(conversation_id):
            return self.store.get_messages(conversation_id)

    def clear(self, conversation_id: str) -> None:
        _require_id(conversation_id)
        with self._lock_for(conversation_id):
            self.store.delete_messages(conversation_id)

    def _lock_for(self, conversation_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(conversation_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[conversation_id] = lock
            return lock


def _require_id(conversation_id: str) -> None:
    if not conversation_id or not conversation_id.strip():
        raise ValueError("conversation_id must be a non-empty string")
