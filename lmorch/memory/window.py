"""
Windowed memory: keeps the most recent messages of the conversation.
"""

from lmorch.language_models.messages import Message

from .base import BaseMemory, MemoryKind


class WindowMemory(BaseMemory):
    """A memory retaining at most max_messages messages (the system
    message excluded). When a message is added beyond the bound, the
    oldest messages are dropped.

    ```python
    memory = WindowMemory(max_messages=2)
    memory.set_system_message("You are a helpful assistant")
    memory.add("Message 1").add("Message 2").add("Message 3")
    memory.get_all()  # system, 'Message 2', 'Message 3'
    ```
    """

    kind: MemoryKind = 'windowed'

    def _append(self, messages: list[Message]) -> None:
        self._update_messages(lambda current: self._trim(current + messages))
