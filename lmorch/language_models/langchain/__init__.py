"""LangChain interface to language models

This package connects the provider adapter interface of the package to
the chat models of the LangChain API. The chat models are created from
configuration objects, based on the Pydantic Settings library, that
may be created in code or loaded from config.toml. This allows end
users to select the model provider without writing or modifying the
code that uses it.

- models: the factory and repository of LangChain chat models
- adapter: the provider adapter wrapping a LangChain chat model
"""

# pyright: reportUnusedImport=false
# flake8: noqa

from .adapter import LangChainChatModel
from .models import (
    langchain_models,
    create_model_from_settings,
    create_model_from_spec,
    create_debug_model,
)
