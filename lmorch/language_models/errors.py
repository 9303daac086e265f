"""
Exceptions raised by the orchestration layer.

The errors fall in two groups. Failures of tools (a tool raising, or
a model asking for a tool that does not exist) are recoverable: the
agent loop catches them and feeds a textual description back to the
model as the result of the tool call, so that the model may adapt.
All other errors are fatal for the operation that raised them and
propagate unchanged to its direct caller:

    - ProviderError: transport, authentication or rate-limit failure
        of a provider adapter
    - MaxIterationsExceededError: the agent loop hit its round-trip
        bound
    - AgentCancelledError: the caller cancelled the agent loop
    - ExecutionError: a step of a runnable sequence failed
    - ConfigurationError: invalid configuration detected at
        construction time (duplicate tool or server names, invalid
        memory parameters)
    - MCPError: a MCP server answered with an error
"""


class ConfigurationError(ValueError):
    """Invalid configuration, raised at construction time."""


class ProviderError(RuntimeError):
    """A provider adapter failed to obtain a response.

    Attributes:
        status: the status code reported by the provider, if any
        message: the error description
    """

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        self.message = message
        prefix = f"[{status}] " if status is not None else ""
        super().__init__(f"{prefix}{message}")


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(message)


class UnknownToolError(ToolExecutionError):
    """The model requested a tool that is not available."""

    def __init__(self, tool_name: str):
        super().__init__(tool_name, f"Tool '{tool_name}' is not available.")


class MaxIterationsExceededError(RuntimeError):
    """The agent loop did not reach a final answer within its bound."""

    def __init__(self, turns: int):
        self.turns = turns
        super().__init__(
            f"No final answer from the model after {turns} turns."
        )


class AgentCancelledError(RuntimeError):
    """The agent loop was cancelled by the caller between turns."""

    def __init__(self, turns: int):
        self.turns = turns
        super().__init__(f"Agent loop cancelled after {turns} turns.")


class ExecutionError(RuntimeError):
    """A step of a runnable sequence failed.

    Attributes:
        step_name: the name of the failing step
        step_index: the zero-based position of the step in the
            sequence
        cause: the exception raised by the step
    """

    def __init__(
        self, step_name: str, step_index: int, cause: BaseException
    ):
        self.step_name = step_name
        self.step_index = step_index
        self.cause = cause
        super().__init__(
            f"Step {step_index} ('{step_name}') failed: "
            + f"{type(cause).__name__}: {cause}"
        )


class MCPError(RuntimeError):
    """A MCP server answered a request with an error object."""

    def __init__(self, message: str, code: int | None = None):
        self.code = code
        self.message = message
        prefix = f"[{code}] " if code is not None else ""
        super().__init__(f"{prefix}{message}")
