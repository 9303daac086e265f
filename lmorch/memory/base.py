"""
Abstract base class of conversation memories.

A memory keeps the messages of a conversation within a bound. The
system message, if any, is held apart from the other messages: it is
always returned first by get_all, and it is never trimmed or
summarized away.

Messages may be added as Message objects, as strings (user messages),
or as mappings with the message fields. Adding a system message sets
the system message of the memory.

The state of a memory may be exported to a dictionary that can be
serialized to JSON, and restored with import_state.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Literal, Self

from lmorch.language_models.errors import ConfigurationError
from lmorch.language_models.messages import Message, to_message
from lmorch.utils import logger as default_logger
from lmorch.utils.logging import LoggerBase

MemoryKind = Literal['windowed', 'summary', 'session']

# Values accepted by add()
MessageLike = Message | str | Mapping[str, Any]


class BaseMemory(ABC):
    """Abstract base class of all memories.

    Subclasses define the retention policy in _append. The storage
    primitives (_get_system, _set_system, _get_messages,
    _update_messages) keep the messages in the object; memories backed
    by an external store override them.
    """

    kind: MemoryKind

    def __init__(
        self,
        key: str = "default",
        max_messages: int = 100,
        logger: LoggerBase = default_logger,
    ):
        self._validate_max_messages(max_messages)
        self.key = key
        self.max_messages = max_messages
        self.logger = logger
        self._system: Message | None = None
        self._messages: list[Message] = []

    @staticmethod
    def _validate_max_messages(max_messages: int) -> None:
        if not isinstance(max_messages, int) or max_messages < 1:
            raise ConfigurationError(
                f"max_messages must be a positive integer, got {max_messages}"
            )

    # storage primitives -------------------------------------------

    def _get_system(self) -> Message | None:
        return self._system

    def _set_system(self, message: Message | None) -> None:
        self._system = message

    def _get_messages(self) -> list[Message]:
        return list(self._messages)

    def _update_messages(
        self, fn: Callable[[list[Message]], list[Message]]
    ) -> None:
        self._messages = fn(list(self._messages))

    # retention policy ---------------------------------------------

    @abstractmethod
    def _append(self, messages: list[Message]) -> None:
        """Append non-system messages, applying the retention policy."""
        pass

    def _trim(self, messages: list[Message]) -> list[Message]:
        """Keep the most recent max_messages messages."""
        excess = len(messages) - self.max_messages
        if excess > 0:
            self.logger.debug(
                f"Memory '{self.key}': dropped {excess} old messages"
            )
            return messages[excess:]
        return messages

    # public interface ---------------------------------------------

    def add(self, message: MessageLike) -> Self:
        msg = to_message(message)
        if msg.role == 'system':
            return self.set_system_message(msg)
        self._append([msg])
        return self

    def add_all(self, messages: Iterable[MessageLike]) -> Self:
        for message in messages:
            self.add(message)
        return self

    def get_messages(self) -> list[Message]:
        """The retained messages, without the system message."""
        return self._get_messages()

    def get_all(self) -> list[Message]:
        """The system message, if any, followed by the retained
        messages."""
        system = self._get_system()
        return ([system] if system else []) + self.get_messages()

    def count(self) -> int:
        """The number of messages returned by get_all."""
        return len(self.get_all())

    def compact(self) -> Self:
        """Apply the retention policy now."""
        self._update_messages(self._trim)
        return self

    def clear(self) -> Self:
        """Remove all messages but the system message."""
        self._update_messages(lambda _: [])
        return self

    def set_system_message(self, message: Message | str) -> Self:
        if isinstance(message, str):
            message = Message.system(message)
        if message.role != 'system':
            raise ValueError("Not a system message")
        self._set_system(message)
        return self

    def get_system_message(self) -> str | None:
        system = self._get_system()
        return system.text() if system else None

    def has_system_message(self) -> bool:
        return self._get_system() is not None

    def remove_system_message(self) -> Self:
        self._set_system(None)
        return self

    def set_max_messages(self, max_messages: int) -> Self:
        """Change the bound, trimming the retained messages to it."""
        self._validate_max_messages(max_messages)
        self.max_messages = max_messages
        return self.compact()

    def get_max_messages(self) -> int:
        return self.max_messages

    def get_key(self) -> str:
        return self.key

    def get_summary(self) -> dict[str, Any]:
        """Statistics on the memory."""
        return {
            'type': type(self).__name__,
            'kind': self.kind,
            'key': self.key,
            'max_messages': self.max_messages,
            'message_count': self.count(),
            'has_system_message': self.has_system_message(),
        }

    def export(self) -> dict[str, Any]:
        """The state of the memory as a JSON-serializable dictionary."""
        return {
            'type': type(self).__name__,
            'kind': self.kind,
            'key': self.key,
            'max_messages': self.max_messages,
            'system_message': self.get_system_message(),
            'messages': [
                m.model_dump(mode='json', exclude_none=True)
                for m in self.get_messages()
            ],
        }

    def import_state(self, data: Mapping[str, Any]) -> Self:
        """Restore a state produced by export. The messages replace the
        current ones, and are trimmed to the bound."""
        if 'max_messages' in data:
            self._validate_max_messages(data['max_messages'])
            self.max_messages = data['max_messages']
        if data.get('key'):
            self.key = data['key']
        system = data.get('system_message')
        self._set_system(Message.system(system) if system else None)
        messages = [to_message(m) for m in data.get('messages', [])]
        self.clear()
        self.add_all(messages)
        return self
