"""
Tools that a language model may ask to execute.

A Tool wraps a Python callable together with the information the model
needs to call it: a name, a description, and an ordered description of
each argument. The JSON schema of the arguments, sent to the provider
with the request, is derived from the signature and the type hints of
the callable.

Tools are created directly, or with the `tool` decorator:

    ```python
    from lmorch.language_models.tools import Tool, tool, ToolSet

    def get_weather(city: str, unit: str = "C") -> str:
        return f"22 degrees {unit} in {city}"

    weather = Tool("get_weather", get_weather, "Current weather").describe_args(
        city="Name of the city",
        unit="Temperature unit, C or F",
    )

    @tool(description="Adds two numbers")
    def add(a: int, b: int) -> int:
        return a + b

    tools = ToolSet([weather, add])
    tools.execute(ToolCall(id="1", name="add", arguments={'a': 1, 'b': 2}))
    ```

Tool names are unique within a tool set: adding a tool with the name
of an existing one raises ConfigurationError. Failures of a tool are
raised as ToolExecutionError, which the agent loop reports back to the
model as the result of the call.
"""

import inspect
import json
import types
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any, Union, get_args, get_origin, get_type_hints

from pydantic import BaseModel

from .errors import ConfigurationError, ToolExecutionError, UnknownToolError
from .messages import ToolCall, ToolSpec

_JSON_TYPES: dict[type, str] = {
    str: 'string',
    int: 'integer',
    float: 'number',
    bool: 'boolean',
    list: 'array',
    tuple: 'array',
    dict: 'object',
}


def _json_schema_type(annotation: Any) -> dict[str, Any]:
    """The JSON schema of a parameter annotation. Unknown types give
    an unconstrained schema."""
    origin = get_origin(annotation)
    if origin in (Union, types.UnionType):
        # optional arguments: X | None is described as X
        args = [a for a in get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return _json_schema_type(args[0])
        return {}
    if origin is not None:
        annotation = origin
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return annotation.model_json_schema()
    for pytype, name in _JSON_TYPES.items():
        if annotation is pytype:
            return {'type': name}
    return {}


def to_text(value: Any) -> str:
    """Coerce the value returned by a tool into text."""
    match value:
        case None:
            return ""
        case str():
            return value
        case BaseModel():
            return value.model_dump_json()
        case dict() | list() | tuple():
            return json.dumps(value, default=str)
        case _:
            return str(value)


class Tool:
    """A callable that a language model may request to execute.

    Attributes:
        name: the name the model uses to request the tool
        description: what the tool does
        argument_descriptions: ordered mapping of argument names to
            their descriptions
        func: the callable, invoked with the arguments as keywords
    """

    def __init__(
        self,
        name: str,
        func: Callable[..., Any],
        description: str = "",
        argument_descriptions: Mapping[str, str] | None = None,
    ):
        if not name or not name.strip():
            raise ConfigurationError("Tool name cannot be empty")
        if not callable(func):
            raise ConfigurationError(f"Tool '{name}': func is not callable")
        self.name = name.strip()
        self.func = func
        self.description = description or inspect.getdoc(func) or ""
        self.argument_descriptions: dict[str, str] = dict(
            argument_descriptions or {}
        )

    def __repr__(self) -> str:
        return f"Tool(name={self.name!r})"

    def __call__(self, **kwargs: Any) -> Any:
        return self.func(**kwargs)

    def describe_arg(self, name: str, description: str) -> 'Tool':
        """Set the description of one argument. Returns the tool."""
        self.argument_descriptions[name] = description
        return self

    def describe_args(
        self,
        descriptions: Mapping[str, str] | Iterable[tuple[str, str]] = (),
        **kwargs: str,
    ) -> 'Tool':
        """Set the descriptions of several arguments, given as a
        mapping, as (name, description) pairs, or as keywords. The
        order of the descriptions is preserved. Returns the tool."""
        items = (
            descriptions.items()
            if isinstance(descriptions, Mapping)
            else descriptions
        )
        for name, description in items:
            self.argument_descriptions[name] = description
        for name, description in kwargs.items():
            self.argument_descriptions[name] = description
        return self

    def input_schema(self) -> dict[str, Any]:
        """The JSON schema of the tool arguments."""
        properties: dict[str, Any] = {}
        required: list[str] = []
        try:
            sig = inspect.signature(self.func)
        except (TypeError, ValueError):
            sig = None
        try:
            type_hints = get_type_hints(self.func)
        except Exception:
            type_hints = {}

        if sig is not None:
            for param_name, param in sig.parameters.items():
                if param.kind in (
                    inspect.Parameter.VAR_POSITIONAL,
                    inspect.Parameter.VAR_KEYWORD,
                ):
                    continue
                prop = _json_schema_type(
                    type_hints.get(param_name, param.annotation)
                )
                if param_name in self.argument_descriptions:
                    prop['description'] = self.argument_descriptions[
                        param_name
                    ]
                properties[param_name] = prop
                if param.default is inspect.Parameter.empty:
                    required.append(param_name)

        # described arguments not in the signature (e.g. **kwargs)
        for param_name, description in self.argument_descriptions.items():
            if param_name not in properties:
                properties[param_name] = {'description': description}

        schema: dict[str, Any] = {'type': 'object', 'properties': properties}
        if required:
            schema['required'] = required
        return schema

    def spec(self) -> ToolSpec:
        """The description of the tool sent to the model."""
        return ToolSpec(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema(),
        )

    def invoke(self, arguments: Mapping[str, Any] | None = None) -> Any:
        """Invoke the tool with the given arguments.

        Raises:
            ToolExecutionError: if the arguments do not match the tool
                signature, or the tool raises.
        """
        arguments = dict(arguments or {})
        try:
            signature = inspect.signature(self.func)
        except ValueError:
            # builtins without an introspectable signature
            signature = None
        try:
            if signature is not None:
                signature.bind(**arguments)
        except TypeError as exc:
            raise ToolExecutionError(
                self.name, f"Invalid arguments for tool '{self.name}': {exc}"
            ) from exc
        try:
            return self.func(**arguments)
        except Exception as exc:
            raise ToolExecutionError(
                self.name, f"Tool '{self.name}' raised an error: {exc}"
            ) from exc

    def invoke_as_text(self, arguments: Mapping[str, Any] | None = None) -> str:
        """Invoke the tool and coerce its result into text."""
        return to_text(self.invoke(arguments))


def tool(
    func: Callable[..., Any] | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    args: Mapping[str, str] | None = None,
) -> Any:
    """Decorator creating a Tool from a function. The name defaults to
    the function name, the description to its docstring.

    ```python
    @tool
    def now() -> str:
        '''The current time'''
        return datetime.now().isoformat()

    @tool(name="sum", args={'a': "first term", 'b': "second term"})
    def add(a: int, b: int) -> int:
        return a + b
    ```
    """

    def wrapper(fn: Callable[..., Any]) -> Tool:
        return Tool(
            name or fn.__name__,
            fn,
            description or "",
            argument_descriptions=args,
        )

    if func is not None:
        return wrapper(func)
    return wrapper


class ToolSet:
    """An ordered collection of tools with unique names."""

    def __init__(self, tools: Iterable[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for t in tools or []:
            self.add(t)

    def add(self, tool: Tool) -> 'ToolSet':
        if tool.name in self._tools:
            raise ConfigurationError(
                f"Duplicate tool name: '{tool.name}'"
            )
        self._tools[tool.name] = tool
        return self

    def remove(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def specs(self) -> list[ToolSpec]:
        return [t.spec() for t in self._tools.values()]

    def execute(self, call: ToolCall) -> str:
        """Execute a tool call and return its result as text.

        Raises:
            UnknownToolError: if no tool has the requested name
            ToolExecutionError: if the tool fails
        """
        found = self._tools.get(call.name)
        if found is None:
            raise UnknownToolError(call.name)
        return found.invoke_as_text(call.arguments)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
