"""
This module implements the creation of LangChain chat model objects
wrapping the message exchange calls of the vendor APIs, thus allowing
the provider adapter (see lmorch.language_models.langchain.adapter)
to talk to diverse models through one programming interface. The
model objects are memoized in the global repository langchain_models.

The creation of these objects connects the LangChain API to the
configuration settings, given programmatically or loaded from
config.toml. The settings are given as a LanguageModelSettings object
or as a spec given as argument to the create_model_from_spec function.

Examples:

```python
from lmorch.language_models.langchain.models import (
    create_model_from_spec,
    create_model_from_settings,
    langchain_models,
)
from lmorch.config.config import LanguageModelSettings

# Method 1: Using a LanguageModelSettings object
settings = LanguageModelSettings(
    model="OpenAI/gpt-4o",
    temperature=0.7,
    max_tokens=1000,
    max_retries=3
)
model = langchain_models[settings]

# Method 2: Using create_model_from_settings function
model = create_model_from_settings(settings)

# Method 3: Using create_model_from_spec function
model = create_model_from_spec(model="DeepSeek/deepseek-chat")
```

The 'Debug' source creates a fake model that needs no network access.
It answers "Message 1", "Message 2", ... or, if the provider parameter
'message' is given, always that message. A fake model that replays a
script of replies (including tool calls) is created by
create_debug_model; these are not memoized.

Behaviour:
    Raises exception from Langchain and from itself

Note:
    Support for new model sources should be added here by extending
    the match ... case statement in _create_model_instance.
"""

import os
from collections.abc import Iterable
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.language_models.fake_chat_models import (
    GenericFakeChatModel,
)
from langchain_core.messages import AIMessage

from ..lazy_dict import LazyLoadingDict
from ..message_iterator import (
    yield_message,
    yield_constant_message,
    yield_scripted_messages,
)

from lmorch.config.config import (
    LanguageModelSettings,
    ModelSource,
    ParameterValue,
)

# Endpoints and key variables of the providers reached through the
# OpenAI-compatible API
_OPENAI_COMPATIBLE: dict[str, tuple[str, str]] = {
    'Grok': ("https://api.x.ai/v1", "XAI_API_KEY"),
    'DeepSeek': ("https://api.deepseek.com", "DEEPSEEK_API_KEY"),
    'Perplexity': ("https://api.perplexity.ai", "PERPLEXITY_API_KEY"),
}


def _openai_kwargs(model: LanguageModelSettings) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "model": model.get_model_name(),
        "temperature": model.temperature,
        "max_retries": model.max_retries,
    }
    if model.max_tokens is not None:
        kwargs["max_tokens"] = model.max_tokens
    if model.timeout is not None:
        kwargs["timeout"] = model.timeout
    return kwargs


def _import_chat_openai() -> type[BaseChatModel]:
    try:
        from langchain_openai.chat_models import ChatOpenAI
    except ImportError as e:
        raise ImportError(
            "OpenAI-compatible models require the 'langchain-openai'"
            " package. Install it with: pip install "
            "langchain-openai"
        ) from e
    return ChatOpenAI


# Factory function to create model. Here, the model definition is
# provided by the settings object that can be read from config.toml,
# LanguageModelSettings
def _create_model_instance(
    model: LanguageModelSettings,
) -> BaseChatModel:
    """
    Factory function to create Langchain models while checking
    permissible sources.
    """
    model_source: ModelSource = model.get_model_source()
    model_name: str = model.get_model_name()
    match model_source:
        case "Anthropic":
            try:
                from langchain_anthropic.chat_models import (
                    ChatAnthropic,
                )
            except ImportError as e:
                raise ImportError(
                    "Anthropic models require the "
                    "'langchain-anthropic' package. "
                    "Install it with: pip install langchain-anthropic"
                ) from e

            kwargs: dict[str, Any] = {
                "model_name": model_name,
                "temperature": model.temperature,
                "max_tokens_to_sample": model.max_tokens or 1024,
                "timeout": model.timeout,
                "max_retries": model.max_retries,
                "stop": None,
            }
            kwargs.update(model.provider_params)
            return ChatAnthropic(**kwargs)

        case "Gemini":
            try:
                from langchain_google_genai import (
                    ChatGoogleGenerativeAI,
                )
            except ImportError as e:
                raise ImportError(
                    "Gemini models require the "
                    "'langchain-google-genai' package. "
                    "Install it with: pip install "
                    "langchain-google-genai"
                ) from e

            kwargs = {
                "model": model_name,
                "temperature": model.temperature,
            }
            if model.max_tokens is not None:
                kwargs["max_output_tokens"] = model.max_tokens
            if model.timeout is not None:
                kwargs["request_timeout"] = model.timeout
            kwargs.update(model.provider_params)
            return ChatGoogleGenerativeAI(**kwargs)

        case "Mistral":
            try:
                from langchain_mistralai.chat_models import (
                    ChatMistralAI,
                )
            except ImportError as e:
                raise ImportError(
                    "Mistral models require the 'langchain-mistralai'"
                    " package. Install it with: pip install "
                    "langchain-mistralai"
                ) from e

            kwargs = {
                "model_name": model_name,
                "temperature": model.temperature,
                "max_retries": model.max_retries,
            }
            if model.max_tokens is not None:
                kwargs["max_tokens"] = model.max_tokens
            if model.timeout is not None:
                kwargs["timeout"] = int(model.timeout)
            kwargs.update(model.provider_params)
            return ChatMistralAI(**kwargs)

        case "OpenAI":
            chat_openai = _import_chat_openai()
            kwargs = _openai_kwargs(model)
            kwargs["use_responses_api"] = False
            kwargs.update(model.provider_params)
            return chat_openai(**kwargs)

        case "Grok" | "DeepSeek" | "Perplexity":
            chat_openai = _import_chat_openai()
            base_url, key_variable = _OPENAI_COMPATIBLE[model_source]
            kwargs = _openai_kwargs(model)
            kwargs["base_url"] = base_url
            api_key = os.environ.get(key_variable)
            if api_key:
                kwargs["api_key"] = api_key
            kwargs.update(model.provider_params)
            return chat_openai(**kwargs)

        case "Ollama":
            try:
                from langchain_ollama import ChatOllama
            except ImportError as e:
                raise ImportError(
                    "Ollama models require the 'langchain-ollama'"
                    " package. Install it with: pip install "
                    "langchain-ollama"
                ) from e

            kwargs = {
                "model": model_name,
                "temperature": model.temperature,
            }
            if model.max_tokens is not None:
                kwargs["num_predict"] = model.max_tokens
            kwargs.update(model.provider_params)
            return ChatOllama(**kwargs)

        case "Debug":
            if (
                model.provider_params
                and "message" in model.provider_params.keys()
            ):
                return GenericFakeChatModel(
                    name="Langchain fake messages",
                    messages=yield_constant_message(
                        str(model.provider_params["message"])
                    ),
                )
            else:
                return GenericFakeChatModel(
                    name="Langchain fake chat",
                    messages=yield_message(),
                )

        case _:
            raise ValueError(
                f"Unreachable code reached: invalid source {model_source}"
            )


# Public interface----------------------------------------------
langchain_models: LazyLoadingDict[LanguageModelSettings, BaseChatModel] = (
    LazyLoadingDict(_create_model_instance)
)


def create_model_from_spec(
    model: str,
    *,
    temperature: float = 0.1,
    max_tokens: int | None = None,
    max_retries: int = 2,
    timeout: float | None = None,
    provider_params: dict[str, ParameterValue] | None = None,
) -> BaseChatModel:
    """
    Create langchain model from specifications.

    Args:
        model: the model in the form source/model, such as
            'OpenAI/gpt-4o'

    Returns:
        a Langchain model object.

    Raises ValueError, TypeError, ValidationError

    Example:
        ```python
        spec = {'model': "OpenAI/gpt-4o-mini"}
        model = create_model_from_spec(**spec)
        ```
    """

    spec = LanguageModelSettings(
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        max_retries=max_retries,
        timeout=timeout,
        provider_params=provider_params or {},
    )
    return langchain_models[spec]


def create_model_from_settings(
    settings: LanguageModelSettings,
) -> BaseChatModel:
    """
    Create langchain model from a LanguageModelSettings object.
    Raises a ValueError if the source argument is not supported.

    Args:
        settings: a LanguageModelSettings object containing model
            configuration.

    Returns:
        a Langchain model object.

    Example:
        ```python
        # Load settings from config.toml.
        settings = Settings()
        model = create_model_from_settings(settings.model)
        response = model.invoke("Why is the grass green?")
        ```
    """
    return langchain_models[settings]


def create_debug_model(
    replies: Iterable[str | AIMessage], repeat_last: bool = True
) -> BaseChatModel:
    """
    Create a fake model that replays the given replies in order. Use
    AIMessage objects with tool_calls to script tool requests.

    The model is not memoized: each call creates a fresh script.
    """
    return GenericFakeChatModel(
        name="Langchain scripted chat",
        messages=yield_scripted_messages(replies, repeat_last),
    )
