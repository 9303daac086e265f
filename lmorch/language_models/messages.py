"""
Generic data structures for language model interactions.

These value types are the contract between the caller, the runnables,
the agent loop and the provider adapters. They are frozen pydantic
models: a request handed to a provider adapter cannot be modified by
it, and changes are made by creating copies (see
`ChatRequest.with_messages`).
"""

import json
from collections.abc import Mapping, Sequence
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

Role = Literal['system', 'user', 'assistant', 'tool']
ReturnFormat = Literal['single', 'response', 'raw', 'json']

# message content: text, or a structured value
MessageContent = str | dict[str, Any] | list[Any] | None


class ToolCall(BaseModel):
    """Represents a tool call requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class ToolSpec(BaseModel):
    """The description of a tool as shown to a language model, or as
    listed by a MCP server."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {'type': 'object', 'properties': {}}
    )

    model_config = ConfigDict(frozen=True)

    def to_mcp(self) -> dict[str, Any]:
        """The tool description in MCP wire format."""
        return {
            'name': self.name,
            'description': self.description,
            'inputSchema': self.input_schema,
        }

    def to_function(self) -> dict[str, Any]:
        """The tool description in the function-calling format
        accepted by most providers."""
        return {
            'type': 'function',
            'function': {
                'name': self.name,
                'description': self.description,
                'parameters': self.input_schema,
            },
        }

    @classmethod
    def from_mcp(cls, data: Mapping[str, Any]) -> 'ToolSpec':
        return cls(
            name=data['name'],
            description=data.get('description', ""),
            input_schema=data.get('inputSchema')
            or {'type': 'object', 'properties': {}},
        )


class Message(BaseModel):
    """Represents a message in a chat conversation.

    Content may be empty only in assistant messages that carry tool
    calls instead of text. Tool messages must refer to the tool call
    they answer.
    """

    role: Role
    content: MessageContent = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = Field(
        default=None,
        description="ID of the tool call this message responds to",
    )

    model_config = ConfigDict(frozen=True)

    @model_validator(mode='after')
    def validate_content(self) -> Self:
        empty = self.content is None or self.content == ""
        if empty and not (self.role == 'assistant' and self.tool_calls):
            raise ValueError(
                f"Empty content in a '{self.role}' message. Only "
                + "assistant messages with tool calls may be empty."
            )
        if self.tool_calls and self.role != 'assistant':
            raise ValueError("Only assistant messages carry tool calls")
        if self.role == 'tool' and not self.tool_call_id:
            raise ValueError("Tool messages require a tool_call_id")
        return self

    def text(self) -> str:
        """The content of the message as text. Structured content is
        rendered as JSON."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content, default=str)

    @classmethod
    def system(cls, content: MessageContent) -> 'Message':
        return cls(role='system', content=content)

    @classmethod
    def user(cls, content: MessageContent) -> 'Message':
        return cls(role='user', content=content)

    @classmethod
    def assistant(
        cls,
        content: MessageContent = None,
        tool_calls: list[ToolCall] | None = None,
    ) -> 'Message':
        return cls(
            role='assistant', content=content, tool_calls=tool_calls
        )

    @classmethod
    def tool(cls, content: MessageContent, tool_call_id: str) -> 'Message':
        return cls(role='tool', content=content, tool_call_id=tool_call_id)


def to_message(value: 'Message | str | Mapping[str, Any]') -> Message:
    """Coerce a value into a Message. Strings become user messages,
    mappings are validated as message fields."""
    match value:
        case Message():
            return value
        case str():
            return Message(role='user', content=value)
        case Mapping():
            return Message.model_validate(dict(value))
        case _:
            raise TypeError(
                f"Cannot convert {type(value).__name__} to a message"
            )


def to_messages(
    values: 'Sequence[Message | str | Mapping[str, Any]]',
) -> list[Message]:
    return [to_message(v) for v in values]


class ChatOptions(BaseModel):
    """Options of a chat request that concern the exchange rather
    than the model: provider and key overrides, timeout of the
    provider call, format of the returned value, logging flags."""

    provider: str | None = None
    api_key: str | None = None
    timeout: float | None = Field(default=None, gt=0)
    return_format: ReturnFormat = 'single'
    log_request: bool = False
    log_response: bool = False

    model_config = ConfigDict(frozen=True, extra='forbid')


class ChatRequest(BaseModel):
    """A complete chat request: the messages, the model parameters
    (model name, temperature, max tokens, ...), the exchange options,
    and the description of the tools the model may call."""

    messages: tuple[Message, ...]
    params: dict[str, Any] = Field(default_factory=dict)
    options: ChatOptions = Field(default_factory=ChatOptions)
    tools: tuple[ToolSpec, ...] = ()

    model_config = ConfigDict(frozen=True)

    def with_messages(self, messages: Sequence[Message]) -> 'ChatRequest':
        return self.model_copy(update={'messages': tuple(messages)})

    def with_params(self, params: Mapping[str, Any]) -> 'ChatRequest':
        return self.model_copy(
            update={'params': {**self.params, **params}}
        )


class Usage(BaseModel):
    """Token counters reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    model_config = ConfigDict(frozen=True)


class ChatResponse(BaseModel):
    """The normalized response of a provider adapter. Either the text
    or a non-empty list of tool calls is meaningful in a turn; a
    response with neither is treated as a final answer with empty
    text."""

    text: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    raw: Any = None
    usage: Usage | None = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_message(self) -> Message:
        """The response as an assistant message."""
        return Message(
            role='assistant',
            content=self.text,
            tool_calls=list(self.tool_calls) or None,
        )
