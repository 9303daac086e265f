"""
Agent: a runnable that combines a model, instructions, tools and a
memory, and runs the tool-calling loop.

The loop submits the conversation and the description of the
available tools to the model. If the model answers without tool calls,
its text is the final answer. Otherwise, the requested tools are
executed in order, their results are appended to the conversation as
tool messages, and the conversation is submitted again. The number of
round-trips to the model is bounded by max_iterations: when the bound
is reached without a final answer, MaxIterationsExceededError is
raised.

Tools are looked up first among the tools of the agent, then among
the tools of the MCP servers given to the agent. Failures of tools
(unknown tools, tools that raise) are reported to the model as the
result of the call, so that the model may recover. Errors of the
model and the loop bound abort the loop.

Example:

    ```python
    from lmorch.language_models.agent import Agent
    from lmorch.language_models.tools import tool
    from lmorch.memory import create_memory

    @tool(description="The current weather in a city")
    def get_weather(city: str) -> str:
        return f"Sunny in {city}"

    agent = Agent(
        model,
        name="WeatherBot",
        instructions="You answer questions about the weather.",
        tools=[get_weather],
        memory=create_memory('windowed'),
        max_iterations=5,
    )
    answer = agent.run("What's the weather in Rome?")
    ```
"""

import threading
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from lmorch.config.config import AgentSettings
from lmorch.memory.base import BaseMemory
from lmorch.mcp.client import MCPClient, ServerRef, create_client
from lmorch.utils import logger as default_logger
from lmorch.utils.logging import LoggerBase

from .base import BaseChatModel
from .errors import (
    AgentCancelledError,
    ConfigurationError,
    MaxIterationsExceededError,
    MCPError,
    ToolExecutionError,
    UnknownToolError,
)
from .messages import Message, ToolCall, ToolSpec, to_message
from .runnables import Runnable, RunnableKind, make_request
from .tools import Tool, ToolSet


class AgentResult(BaseModel):
    """The outcome of a run of the agent loop.

    Attributes:
        answer: the final answer of the model
        messages: the conversation, tool exchanges included
        turns: the number of round-trips to the model
        tool_calls: the tool calls requested by the model, in order
    """

    answer: str
    messages: list[Message]
    turns: int
    tool_calls: list[ToolCall] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class Agent(Runnable):
    """A runnable running the tool-calling loop.

    Args:
        model: the provider adapter
        name: the name of the agent
        description: a description of the agent
        instructions: the system message of the conversation
        tools: the tools of the agent
        memory: a memory the conversation is loaded from and saved to.
            After each run, the input and the final answer are added.
        mcp_servers: MCP servers (objects, registered names, or URLs)
            providing further tools
        params: default model parameters
        max_iterations: the bound on round-trips to the model. The
            default is taken from the agent settings.
        cancel_event: a threading.Event; when set, the loop stops
            before the next round-trip with AgentCancelledError
        logger: the logger of the agent
    """

    kind: RunnableKind = 'Agent'

    def __init__(
        self,
        model: BaseChatModel,
        *,
        name: str | None = None,
        description: str = "",
        instructions: str | None = None,
        tools: Iterable[Tool] | ToolSet | None = None,
        memory: BaseMemory | None = None,
        mcp_servers: Iterable[ServerRef] | None = None,
        params: Mapping[str, Any] | None = None,
        max_iterations: int | None = None,
        settings: AgentSettings | None = None,
        cancel_event: threading.Event | None = None,
        logger: LoggerBase = default_logger,
    ):
        super().__init__(name, params)
        settings = settings or AgentSettings()
        if max_iterations is None:
            max_iterations = settings.max_iterations
        if not isinstance(max_iterations, int) or max_iterations < 1:
            raise ConfigurationError(
                f"max_iterations must be at least 1, got {max_iterations}"
            )
        self.model = model
        self.description = description
        self.instructions = instructions
        self.tools = tools if isinstance(tools, ToolSet) else ToolSet(tools)
        self.memory = memory
        self.mcp_clients: list[MCPClient] = [
            create_client(s) for s in mcp_servers or []
        ]
        self.max_iterations = max_iterations
        self.cancel_event = cancel_event
        self.logger = logger

    def add_tool(self, tool: Tool) -> 'Agent':
        self.tools.add(tool)
        return self

    def clear_memory(self) -> 'Agent':
        if self.memory is not None:
            self.memory.clear()
        return self

    def get_config(self) -> dict[str, Any]:
        return {
            'name': self.get_name(),
            'description': self.description,
            'instructions': self.instructions,
            'model': self.model.get_name(),
            'tools': self.tools.names(),
            'memory': type(self.memory).__name__ if self.memory else None,
            'mcp_servers': [c.describe() for c in self.mcp_clients],
            'params': self.get_params(),
            'max_iterations': self.max_iterations,
        }

    # conversation -------------------------------------------------

    @staticmethod
    def _input_messages(input: Any) -> list[Message]:
        match input:
            case None:
                return []
            case str() | Message() | Mapping():
                return [to_message(input)]
            case list() | tuple():
                return [to_message(m) for m in input]
            case _:
                return [Message.user(str(input))]

    def _initial_messages(self, new: list[Message]) -> list[Message]:
        history = self.memory.get_all() if self.memory else []
        if self.instructions:
            history = [m for m in history if m.role != 'system']
            history.insert(0, Message.system(self.instructions))
        return history + new

    def _discover_remote_tools(
        self,
    ) -> tuple[list[ToolSpec], dict[str, MCPClient]]:
        specs: list[ToolSpec] = []
        owners: dict[str, MCPClient] = {}
        for client in self.mcp_clients:
            for spec in client.list_tools():
                # local tools take precedence
                if spec.name in self.tools or spec.name in owners:
                    continue
                specs.append(spec)
                owners[spec.name] = client
        return specs, owners

    def _execute(self, call: ToolCall, remote: Mapping[str, MCPClient]) -> str:
        """Execute a tool call. Failures are returned as text."""
        try:
            if call.name in self.tools:
                result = self.tools.execute(call)
            elif call.name in remote:
                result = remote[call.name].call_tool(call.name, call.arguments)
            else:
                raise UnknownToolError(call.name)
        except (ToolExecutionError, MCPError) as e:
            self.logger.warning(f"Agent {self.get_name()}: {e}")
            return f"Error: {e}"
        self.logger.debug(
            f"Agent {self.get_name()}: tool '{call.name}' returned {result!r}"
        )
        # tool messages may not be empty
        return result if result else "(no output)"

    # the loop -----------------------------------------------------

    def run_loop(
        self,
        input: Any = None,
        params: Mapping[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> AgentResult:
        """Run the tool-calling loop.

        Raises:
            MaxIterationsExceededError: if no final answer is given
                within max_iterations round-trips
            AgentCancelledError: if the cancel event is set
            ProviderError: if the model fails
        """
        cancel_event = cancel_event or self.cancel_event
        new_messages = self._input_messages(input)
        messages = self._initial_messages(new_messages)
        local_specs = self.tools.specs()
        remote_specs, remote = self._discover_remote_tools()
        specs = local_specs + remote_specs
        merged = self.merge_params(params)

        turns = 0
        answer = ""
        calls: list[ToolCall] = []
        while True:
            if cancel_event is not None and cancel_event.is_set():
                self.logger.info(
                    f"Agent {self.get_name()}: cancelled after {turns} turns"
                )
                raise AgentCancelledError(turns)
            if turns >= self.max_iterations:
                self.logger.error(
                    f"Agent {self.get_name()}: no final answer after "
                    + f"{turns} turns"
                )
                raise MaxIterationsExceededError(turns)

            response = self.model.send(make_request(messages, merged, specs))
            turns += 1

            if not response.has_tool_calls:
                answer = response.text or ""
                if answer:
                    messages.append(Message.assistant(answer))
                break

            messages.append(response.to_message())
            for call in response.tool_calls:
                calls.append(call)
                messages.append(
                    Message.tool(self._execute(call, remote), call.id)
                )

        if self.memory is not None:
            self.memory.add_all(
                [m for m in new_messages if m.role != 'system']
            )
            if answer:
                self.memory.add(Message.assistant(answer))

        return AgentResult(
            answer=answer, messages=messages, turns=turns, tool_calls=calls
        )

    def run(
        self, input: Any = None, params: Mapping[str, Any] | None = None
    ) -> str:
        """Run the loop and return the final answer."""
        return self.run_loop(input, params).answer
