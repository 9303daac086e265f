"""Conversation memories

Memories keep the context of a conversation bounded:

- WindowMemory ('windowed'): keeps the most recent messages
- SummaryMemory ('summary'): folds older messages into a summary
- SessionMemory ('session'): windowed, persisted in a session store

Memories are created directly or with create_memory, which takes its
defaults from the memory section of the configuration:

    ```python
    from lmorch.memory import create_memory

    memory = create_memory('windowed', max_messages=10)
    memory.add("Hello").add({'role': 'assistant', 'content': "Hi!"})
    ```
"""

# pyright: reportUnusedImport=false
# flake8: noqa

from typing import Any

from lmorch.config.config import MemorySettings
from lmorch.language_models.errors import ConfigurationError

from .base import BaseMemory, MemoryKind
from .window import WindowMemory
from .summary import SummaryMemory, SUMMARY_PREFIX
from .session import (
    SessionMemory,
    SessionStore,
    InMemorySessionStore,
    FileSessionStore,
    get_default_store,
    set_default_store,
)

_ALLOWED_CONFIG: dict[str, set[str]] = {
    'windowed': {'max_messages', 'logger'},
    'summary': {'max_messages', 'summary_threshold', 'model', 'logger'},
    'session': {'max_messages', 'store', 'logger'},
}


def create_memory(
    kind: MemoryKind,
    key: str | None = None,
    *,
    settings: MemorySettings | None = None,
    **config: Any,
) -> BaseMemory:
    """
    Create a memory of the given kind.

    Args:
        kind: 'windowed', 'summary' or 'session'
        key: the key of the memory. Session memories use the key to
            find their conversation in the store; the default is the
            session_key of the settings.
        settings: the memory settings providing the defaults. If None,
            the defaults of MemorySettings are used.
        config: max_messages, logger, and:
            summary_threshold and model (summary memory),
            store (session memory).

    Raises:
        ConfigurationError: for unknown kinds, unknown or invalid
            configuration parameters.
    """
    if kind not in _ALLOWED_CONFIG:
        raise ConfigurationError(
            f"Invalid memory kind '{kind}'. Must be one of "
            + f"{list(_ALLOWED_CONFIG)}."
        )
    invalid = set(config) - _ALLOWED_CONFIG[kind]
    if invalid:
        raise ConfigurationError(
            f"Invalid configuration for {kind} memory: {sorted(invalid)}"
        )

    settings = settings or MemorySettings()
    match kind:
        case 'windowed':
            return WindowMemory(
                key=key or "default",
                max_messages=config.pop('max_messages', settings.max_messages),
                **config,
            )
        case 'summary':
            return SummaryMemory(
                key=key or "default",
                max_messages=config.pop(
                    'max_messages', settings.summary_max_messages
                ),
                summary_threshold=config.pop(
                    'summary_threshold', settings.summary_threshold
                ),
                **config,
            )
        case 'session':
            return SessionMemory(
                key=key or settings.session_key,
                max_messages=config.pop('max_messages', settings.max_messages),
                **config,
            )
        case _:
            raise ValueError(
                f"Unreachable code reached: invalid memory kind {kind}"
            )
