"""
Session memory: windowed memory persisted in a session store.

A session store maps keys to the messages of a conversation. Every
change of a session memory is written through to the store with an
atomic read-modify-write (the update method of the store), so that two
session memories with the same key on the same store see the same
conversation, also when used from different threads.

Two stores are provided:

    - InMemorySessionStore: a dictionary in the process
    - FileSessionStore: one JSON file per key in a directory

Example:

    ```python
    store = FileSessionStore("sessions")
    memory = SessionMemory(store, key="user-42", max_messages=50)
    memory.add("Hello")

    # later, or in another part of the application
    same = SessionMemory(store, key="user-42")
    same.get_all()  # [Message(role='user', content='Hello')]
    ```
"""

import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

from pydantic import TypeAdapter

from lmorch.language_models.messages import Message
from lmorch.utils import logger as default_logger
from lmorch.utils.logging import LoggerBase

from .base import MemoryKind
from .window import WindowMemory

_messages_adapter = TypeAdapter(list[Message])


class SessionStore(ABC):
    """Abstract interface of session stores."""

    @abstractmethod
    def get(self, key: str) -> list[Message]:
        """The messages stored under key; empty if none."""
        pass

    @abstractmethod
    def set(self, key: str, messages: list[Message]) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove key. Returns False if key was not stored."""
        pass

    @abstractmethod
    def update(
        self, key: str, fn: Callable[[list[Message]], list[Message]]
    ) -> list[Message]:
        """Atomically replace the messages under key with fn(messages).
        Returns the new messages."""
        pass

    @abstractmethod
    def keys(self) -> list[str]:
        pass


class InMemorySessionStore(SessionStore):
    """A session store in a dictionary guarded by a lock."""

    def __init__(self) -> None:
        self._data: dict[str, list[Message]] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> list[Message]:
        with self._lock:
            return list(self._data.get(key, []))

    def set(self, key: str, messages: list[Message]) -> None:
        with self._lock:
            self._data[key] = list(messages)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def update(
        self, key: str, fn: Callable[[list[Message]], list[Message]]
    ) -> list[Message]:
        with self._lock:
            messages = list(fn(list(self._data.get(key, []))))
            self._data[key] = messages
            return list(messages)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


class FileSessionStore(SessionStore):
    """A session store writing one JSON file per key in a directory.

    Updates are atomic among the users of the same store object. The
    files are replaced, not rewritten, so that a reader never sees a
    partially written file.
    """

    def __init__(self, directory: str | Path = "sessions") -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def _path(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.directory / f"{safe}.json"

    def _read(self, key: str) -> list[Message]:
        path = self._path(key)
        if not path.exists():
            return []
        return _messages_adapter.validate_json(path.read_bytes())

    def _write(self, key: str, messages: list[Message]) -> None:
        path = self._path(key)
        data = _messages_adapter.dump_json(
            messages, exclude_none=True, indent=2
        )
        fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> list[Message]:
        with self._lock:
            return self._read(key)

    def set(self, key: str, messages: list[Message]) -> None:
        with self._lock:
            self._write(key, list(messages))

    def delete(self, key: str) -> bool:
        with self._lock:
            path = self._path(key)
            if not path.exists():
                return False
            path.unlink()
            return True

    def update(
        self, key: str, fn: Callable[[list[Message]], list[Message]]
    ) -> list[Message]:
        with self._lock:
            messages = list(fn(self._read(key)))
            self._write(key, messages)
            return messages

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(p.stem for p in self.directory.glob("*.json"))


# the store used by session memories created without one
_default_store: SessionStore = InMemorySessionStore()


def get_default_store() -> SessionStore:
    return _default_store


def set_default_store(store: SessionStore) -> None:
    global _default_store
    _default_store = store


class SessionMemory(WindowMemory):
    """A windowed memory persisted in a session store under a key.
    The system message is stored with the conversation."""

    kind: MemoryKind = 'session'

    def __init__(
        self,
        store: SessionStore | None = None,
        key: str = "default",
        max_messages: int = 100,
        logger: LoggerBase = default_logger,
    ):
        super().__init__(key, max_messages, logger)
        self.store = store or get_default_store()

    @staticmethod
    def _split(
        stored: list[Message],
    ) -> tuple[list[Message], list[Message]]:
        system = [m for m in stored if m.role == 'system'][:1]
        return system, [m for m in stored if m.role != 'system']

    def _get_system(self) -> Message | None:
        system, _ = self._split(self.store.get(self.key))
        return system[0] if system else None

    def _set_system(self, message: Message | None) -> None:
        def replace(stored: list[Message]) -> list[Message]:
            _, messages = self._split(stored)
            return ([message] if message else []) + messages

        self.store.update(self.key, replace)

    def _get_messages(self) -> list[Message]:
        _, messages = self._split(self.store.get(self.key))
        return messages

    def _update_messages(
        self, fn: Callable[[list[Message]], list[Message]]
    ) -> None:
        def modify(stored: list[Message]) -> list[Message]:
            system, messages = self._split(stored)
            return system + fn(messages)

        self.store.update(self.key, modify)

    def delete_session(self) -> bool:
        """Remove the conversation, system message included, from the
        store."""
        return self.store.delete(self.key)
