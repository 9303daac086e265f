"""
LangChain adapter implementation.

LangChainChatModel implements the provider adapter interface over the
LangChain chat models created by the models module. It converts the
messages of a request (including assistant tool calls and tool
results) into LangChain messages, binds the tool specs, and converts
the LangChain reply into a ChatResponse with tool calls and usage.

The model is either given directly (any LangChain chat model), or
built from a LanguageModelSettings object. In the latter case, the
request may override the model settings:

    - params 'model', 'temperature', 'max_tokens'
    - options 'provider', 'api_key', 'timeout'

and the remaining params are bound to the model call. Failures of the
model call are raised as ProviderError.

Example:

    ```python
    from lmorch.config.config import LanguageModelSettings
    from lmorch.language_models.langchain import LangChainChatModel

    model = LangChainChatModel(
        LanguageModelSettings(model="OpenAI/gpt-4o-mini")
    )
    response = model.chat(["Why is the sky blue?"], temperature=0.3)
    print(response.text)
    ```
"""

import uuid
from collections.abc import Iterator, AsyncIterator
from typing import Any

from langchain_core.language_models import LanguageModelInput
from langchain_core.language_models.chat_models import (
    BaseChatModel as LangChainBaseChatModel,
)
from langchain_core.messages import (
    BaseMessage,
    HumanMessage,
    SystemMessage,
    AIMessage,
    ToolMessage,
)
from langchain_core.runnables import Runnable as LangChainRunnable

from lmorch.config.config import LanguageModelSettings
from lmorch.language_models.base import BaseChatModel
from lmorch.language_models.errors import ConfigurationError, ProviderError
from lmorch.language_models.messages import (
    ChatRequest,
    ChatResponse,
    Message,
    ToolCall,
    Usage,
)
from lmorch.language_models.langchain.models import (
    create_model_from_settings,
)
from lmorch.utils import logger as default_logger
from lmorch.utils.logging import LoggerBase

# request params that modify the model settings
_SETTINGS_PARAMS = ('model', 'temperature', 'max_tokens')


def _content_text(content: Any) -> str:
    """The text of a LangChain message content, which may be a string
    or a list of content blocks."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for block in content:  # type: ignore
            match block:
                case str():
                    parts.append(block)
                case {'type': 'text', 'text': str() as text}:
                    parts.append(text)
                case _:
                    pass
        return "".join(parts)
    return str(content) if content is not None else ""


class LangChainChatModel(BaseChatModel):
    """Adapter for LangChain chat models."""

    def __init__(
        self,
        settings: LanguageModelSettings | None = None,
        *,
        model: LangChainBaseChatModel | None = None,
        logger: LoggerBase = default_logger,
    ):
        if settings is None and model is None:
            raise ConfigurationError(
                "LangChainChatModel requires settings or a model"
            )
        self.settings = settings
        self.model = model
        self.logger = logger

    def get_name(self) -> str:
        if self.settings is not None:
            return self.settings.model
        return str(getattr(self.model, 'name', None) or "LangChain model")

    # conversions --------------------------------------------------

    def _convert_messages(
        self, messages: tuple[Message, ...] | list[Message]
    ) -> list[BaseMessage]:
        """Convert generic messages to LangChain messages."""
        lc_messages: list[BaseMessage] = []
        for msg in messages:
            match msg.role:
                case 'system':
                    lc_messages.append(SystemMessage(content=msg.text()))
                case 'user':
                    lc_messages.append(HumanMessage(content=msg.text()))
                case 'assistant':
                    tool_calls = [
                        {
                            'name': call.name,
                            'args': call.arguments,
                            'id': call.id,
                            'type': 'tool_call',
                        }
                        for call in msg.tool_calls or []
                    ]
                    lc_messages.append(
                        AIMessage(
                            content=msg.text(),
                            tool_calls=tool_calls,  # type: ignore
                        )
                    )
                case 'tool':
                    lc_messages.append(
                        ToolMessage(
                            content=msg.text(),
                            tool_call_id=msg.tool_call_id or "",
                        )
                    )
        return lc_messages

    def _convert_response(self, response: BaseMessage) -> ChatResponse:
        """Convert LangChain response to a ChatResponse."""
        text: str = _content_text(response.content)
        tool_calls: list[ToolCall] = []
        usage: Usage | None = None
        if isinstance(response, AIMessage):
            for call in response.tool_calls:
                tool_calls.append(
                    ToolCall(
                        id=call.get('id') or f"call_{uuid.uuid4().hex[:12]}",
                        name=call['name'],
                        arguments=dict(call.get('args') or {}),
                    )
                )
            if response.usage_metadata:
                usage = Usage(
                    prompt_tokens=response.usage_metadata.get(
                        'input_tokens', 0
                    ),
                    completion_tokens=response.usage_metadata.get(
                        'output_tokens', 0
                    ),
                    total_tokens=response.usage_metadata.get(
                        'total_tokens', 0
                    ),
                )
        return ChatResponse(
            text=text or None,
            tool_calls=tool_calls,
            raw=response,
            usage=usage,
        )

    # model preparation --------------------------------------------

    def _effective_settings(
        self, request: ChatRequest
    ) -> LanguageModelSettings:
        settings = self.settings
        if settings is None:  # pragma: no cover (checked by caller)
            raise ConfigurationError("No model settings")
        params = request.params
        options = request.options

        model: str = str(params.get('model') or settings.model)
        if '/' not in model:
            model = f"{settings.get_model_source()}/{model}"
        if options.provider:
            model = f"{options.provider}/{model.split('/', 1)[1]}"

        provider_params = dict(settings.provider_params)
        if options.api_key:
            provider_params['api_key'] = options.api_key

        try:
            return settings.from_instance(
                model=model,
                temperature=params.get('temperature'),
                max_tokens=params.get('max_tokens'),
                timeout=options.timeout,
                provider_params=provider_params,
            )
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid model override in request: {e}"
            ) from e

    def _prepare(
        self, request: ChatRequest
    ) -> LangChainRunnable[LanguageModelInput, BaseMessage]:
        """The LangChain runnable that serves the request."""
        extra: dict[str, Any] = {}
        if self.model is not None:
            model: LangChainBaseChatModel = self.model
            options = request.options
            if options.provider or options.api_key:
                raise ConfigurationError(
                    "Provider and api_key overrides require a model "
                    + "created from settings"
                )
            extra = dict(request.params)
            if options.timeout is not None:
                extra['timeout'] = options.timeout
        else:
            model = create_model_from_settings(
                self._effective_settings(request)
            )
            extra = {
                k: v
                for k, v in request.params.items()
                if k not in _SETTINGS_PARAMS
            }

        runnable: LangChainRunnable[LanguageModelInput, BaseMessage] = model
        if request.tools:
            try:
                runnable = model.bind_tools(
                    [spec.to_function() for spec in request.tools]
                )
            except NotImplementedError:
                self.logger.warning(
                    f"Model {self.get_name()} does not support tool "
                    + "calling; tools not bound."
                )
        if extra:
            runnable = runnable.bind(**extra)
        return runnable

    def _log_request(self, request: ChatRequest) -> None:
        if request.options.log_request:
            self.logger.info(
                f"Request to {self.get_name()}: "
                + f"{len(request.messages)} messages, "
                + f"{len(request.tools)} tools, params {request.params}"
            )

    def _log_response(
        self, request: ChatRequest, response: ChatResponse
    ) -> None:
        if request.options.log_response:
            calls = [c.name for c in response.tool_calls]
            self.logger.info(
                f"Response from {self.get_name()}: "
                + f"text {response.text!r}, tool calls {calls}"
            )

    @staticmethod
    def _provider_error(e: Exception) -> ProviderError:
        status = getattr(e, 'status_code', None)
        if not isinstance(status, int):
            status = None
        return ProviderError(f"{type(e).__name__}: {e}", status=status)

    # provider adapter interface -----------------------------------

    def send(self, request: ChatRequest) -> ChatResponse:
        runnable = self._prepare(request)
        lc_messages = self._convert_messages(request.messages)
        self._log_request(request)
        try:
            reply = runnable.invoke(lc_messages)
        except Exception as e:
            self.logger.error(
                f"Model {self.get_name()} failed to respond: {e}"
            )
            raise self._provider_error(e) from e
        response = self._convert_response(reply)
        self._log_response(request, response)
        return response

    async def asend(self, request: ChatRequest) -> ChatResponse:
        runnable = self._prepare(request)
        lc_messages = self._convert_messages(request.messages)
        self._log_request(request)
        try:
            reply = await runnable.ainvoke(lc_messages)
        except Exception as e:
            self.logger.error(
                f"Model {self.get_name()} failed to respond: {e}"
            )
            raise self._provider_error(e) from e
        response = self._convert_response(reply)
        self._log_response(request, response)
        return response

    def stream(self, request: ChatRequest) -> Iterator[str]:
        runnable = self._prepare(request)
        lc_messages = self._convert_messages(request.messages)
        self._log_request(request)
        try:
            for chunk in runnable.stream(lc_messages):
                text = _content_text(getattr(chunk, 'content', chunk))
                if text:
                    yield text
        except Exception as e:
            self.logger.error(
                f"Model {self.get_name()} failed while streaming: {e}"
            )
            raise self._provider_error(e) from e

    async def astream(self, request: ChatRequest) -> AsyncIterator[str]:
        runnable = self._prepare(request)
        lc_messages = self._convert_messages(request.messages)
        self._log_request(request)
        try:
            async for chunk in runnable.astream(lc_messages):
                text = _content_text(getattr(chunk, 'content', chunk))
                if text:
                    yield text
        except Exception as e:
            self.logger.error(
                f"Model {self.get_name()} failed while streaming: {e}"
            )
            raise self._provider_error(e) from e
