"""Language model orchestration

This package contains the building blocks of the interaction with
language models, independent of the vendor:

- messages: messages, requests and responses
- base: the interface of provider adapters
- tools: tools the model may ask to execute
- runnables: the steps of execution pipelines
- agent: the tool-calling loop (import from
    lmorch.language_models.agent)
- prompts: the library of predefined prompts
- langchain: provider adapters over LangChain chat models
"""

# pyright: reportUnusedImport=false
# flake8: noqa

from .lazy_dict import LazyLoadingDict

from .errors import (
    ConfigurationError,
    ProviderError,
    ToolExecutionError,
    UnknownToolError,
    MaxIterationsExceededError,
    AgentCancelledError,
    ExecutionError,
    MCPError,
)
from .messages import (
    Message,
    ToolCall,
    ToolSpec,
    ChatOptions,
    ChatRequest,
    ChatResponse,
    Usage,
)
from .base import BaseChatModel
from .tools import Tool, ToolSet, tool
from .runnables import (
    Runnable,
    RunnableKind,
    StreamChunk,
    TransformRunnable,
    ModelRunnable,
    RunnableSequence,
    MessageTemplate,
)
