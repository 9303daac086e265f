"""
The utility class `LazyLoadingDict` stores memoized objects produced
by a factory function: language model objects, prompt definitions,
MCP servers, or indeed objects of any class.

The `LazyLoadingDict` class has three main uses that may be combined.

- the first is to create objects based on a definition using a
dictionary interface. The key of the dictionary is the definition that
provides the object instance; different instances may be created
based on the definition

- the second is to memoize the objects created by the definition, so
that every caller asking for the same key obtains the same object

- the third is to enable runtime errors when an invalid definition is
given.

Lookups are serialized by a re-entrant lock, so that two threads
asking at the same time for a key that is not yet in the dictionary
obtain the same object: the factory function is called only once per
key.
"""

import threading
from collections.abc import Callable
from typing import TypeVar

# ValueT is the parameter for the stored valued, KeyT for the keys.
ValueT = TypeVar('ValueT')
KeyT = TypeVar('KeyT')


class LazyLoadingDict(dict[KeyT, ValueT]):
    """A lazy dictionary class with memoized object of type ValueT.
    Any hashable object type may be used as key; to restrict the keys
    used, use a Literal or StrEnum key value and raise in the factory.

    Example:
    ```python
    from typing import Literal

    ServerName = Literal['docs', 'search']

    def _create_server(name: ServerName) -> MCPServer:
        match name:
            case 'docs' | 'search':
                return MCPServer(name)
            case _:
                raise ValueError(f"Invalid server: {name}")

    servers = LazyLoadingDict(_create_server)
    docs = servers['docs']           # created
    assert servers['docs'] is docs   # memoized
    servers['other']                 # raises ValueError
    ```

    A pydantic model class may also be used as key, provided it is
    frozen (hence hashable). This is how language model objects are
    memoized by their settings:

    ```python
    langchain_models = LazyLoadingDict(_create_model_instance)
    model = langchain_models[LanguageModelSettings(model="OpenAI/gpt-4o")]
    ```

    It is also possible to assign to the dictionary directly, thus
    bypassing the factory function. Assigning to a key that already
    exists raises a ValueError: to replace an entry, use `replace`.

    When an entry is deleted, the stored object is destroyed by the
    destructor function given in the constructor, or by calling its
    `close` or `dispose` method if it has one.

    Expected behaviour: may raise ValidationError and ValueErrors.
    """

    def __init__(
        self,
        key_creator_func: Callable[[KeyT], ValueT],
        destructor_func: Callable[[ValueT], None] | None = None,
    ):
        super().__init__()
        self._key_creator_func = key_creator_func
        self._destructor_func = destructor_func
        self._lock = threading.RLock()

    def _destroy_value(self, value: ValueT) -> None:
        """Helper to destroy a value using the configured strategy."""
        if self._destructor_func:
            self._destructor_func(value)
        elif hasattr(value, "close") and callable(value.close):  # type: ignore (self-reflection)
            value.close()  # type: ignore (checked)
        elif hasattr(value, "dispose") and callable(value.dispose):  # type: ignore (self-reflection)
            value.dispose()  # type: ignore (checked)

    def __getitem__(self, key: KeyT) -> ValueT:
        with self._lock:
            # Check if the value is already cached
            if key in self:
                return super().__getitem__(key)

            # Lazy-load the data, cache it, and return
            value: ValueT = self._key_creator_func(key)
            super().__setitem__(key, value)
            return value

    def __setitem__(self, key: KeyT, value: ValueT) -> None:
        """Allow direct setting of key/value pairs.

        This bypasses the factory function for the given key.
        Once set directly, the factory function will not be called
        for this key unless the key is deleted first.

        Raises:
            ValueError: If the key already exists in the dictionary.
        """
        with self._lock:
            if key in self:
                raise ValueError(
                    f"Key '{key}' already exists. Delete it first to overwrite."
                )
            super().__setitem__(key, value)

    def replace(self, key: KeyT) -> ValueT:
        """Create a new object for key with the factory function and
        store it in place of the existing one, if any. The replaced
        object is not destroyed: references held elsewhere remain
        usable.

        Returns:
            the newly created object.
        """
        with self._lock:
            value: ValueT = self._key_creator_func(key)
            super().__setitem__(key, value)
            return value

    def __delitem__(self, key: KeyT) -> None:
        with self._lock:
            if key in self:
                value: ValueT = super().__getitem__(key)
                self._destroy_value(value)
            super().__delitem__(key)

    def clear(self) -> None:
        with self._lock:
            for value in list(self.values()):
                self._destroy_value(value)
            super().clear()

    def __del__(self) -> None:
        # We need to be careful here during interpreter shutdown
        try:
            self.clear()
        except Exception:
            pass
