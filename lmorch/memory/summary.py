"""
Summary memory: condenses older messages into a running summary.

When the retained messages (the summary message included) exceed
max_messages, all but the most recent summary_threshold messages are
folded, together with the previous summary, into a new summary by a
single request to the summarization model. The conversation is then
returned as

    [system message] + [summary message] + [recent messages]

where the summary message is an assistant message starting with
"Previous conversation summary". The request is blocking: add()
returns after the summary has been obtained. A ProviderError of the
summarization model propagates to the caller of add(); the added
message is then retained and the older messages stay unsummarized
until the next attempt. An empty summary is reported as a ProviderError
and leaves the previous summary in place.
"""

from collections.abc import Mapping
from typing import Any, Self

from lmorch.language_models.base import BaseChatModel
from lmorch.language_models.errors import ConfigurationError, ProviderError
from lmorch.language_models.messages import ChatRequest, Message, to_message
from lmorch.language_models.prompts import prompt_library
from lmorch.utils import logger as default_logger
from lmorch.utils.logging import LoggerBase

from .base import BaseMemory, MemoryKind

SUMMARY_PREFIX = "Previous conversation summary"


def _default_summary_model() -> BaseChatModel:
    # the summarization model configured in config.toml
    from lmorch.config.config import Settings
    from lmorch.language_models.langchain.adapter import (
        LangChainChatModel,
    )

    return LangChainChatModel(Settings().summary_model)


class SummaryMemory(BaseMemory):
    """A memory that summarizes older messages.

    Args:
        model: the summarization model. If None, the summary model of
            the configuration is used when the first summary is made.
        key: the key of the memory
        max_messages: the bound on the retained messages
        summary_threshold: the number of recent messages kept verbatim
            when a summary is made. Must be positive and smaller than
            max_messages.
    """

    kind: MemoryKind = 'summary'

    def __init__(
        self,
        model: BaseChatModel | None = None,
        key: str = "default",
        max_messages: int = 20,
        summary_threshold: int = 10,
        logger: LoggerBase = default_logger,
    ):
        super().__init__(key, max_messages, logger)
        self._validate_threshold(summary_threshold, max_messages)
        self.summary_threshold = summary_threshold
        self.model = model
        self._summary: str = ""

    @staticmethod
    def _validate_threshold(threshold: int, max_messages: int) -> None:
        if not isinstance(threshold, int) or not (
            0 < threshold < max_messages
        ):
            raise ConfigurationError(
                "summary_threshold must satisfy 0 < summary_threshold "
                + f"< max_messages, got {threshold} and {max_messages}"
            )

    def _summary_message(self) -> Message | None:
        if not self._summary:
            return None
        return Message.assistant(f"{SUMMARY_PREFIX}: {self._summary}")

    def get_messages(self) -> list[Message]:
        summary = self._summary_message()
        return ([summary] if summary else []) + self._get_messages()

    def _summarize(self, messages: list[Message]) -> str:
        """Obtain the new summary from the summarization model."""
        if self.model is None:
            self.model = _default_summary_model()
        definition = prompt_library["conversation_summarizer"]
        text = "\n".join(f"{m.role}: {m.text()}" for m in messages)
        prompt = definition.prompt.format(
            summary=self._summary or "(none)", text=text
        )
        request_messages: list[Message] = []
        if definition.system_prompt:
            request_messages.append(Message.system(definition.system_prompt))
        request_messages.append(Message.user(prompt))
        response = self.model.send(
            ChatRequest(messages=tuple(request_messages))
        )
        summary = (response.text or "").strip()
        if not summary:
            raise ProviderError(
                "The summarization model returned an empty summary"
            )
        return summary

    def _fold(self) -> None:
        verbatim = self._get_messages()
        older = verbatim[: -self.summary_threshold]
        if not older:
            return
        summary = self._summarize(older)
        self.logger.info(
            f"Memory '{self.key}': summarized {len(older)} messages"
        )
        self._summary = summary
        recent = verbatim[-self.summary_threshold :]
        self._update_messages(lambda _: recent)

    def _append(self, messages: list[Message]) -> None:
        self._update_messages(lambda current: current + messages)
        if len(self.get_messages()) > self.max_messages:
            self._fold()

    def compact(self) -> Self:
        """Summarize now, if more than summary_threshold messages are
        kept verbatim."""
        if len(self._get_messages()) > self.summary_threshold:
            self._fold()
        return self

    def clear(self) -> Self:
        self._summary = ""
        return super().clear()

    def set_max_messages(self, max_messages: int) -> Self:
        self._validate_max_messages(max_messages)
        self._validate_threshold(self.summary_threshold, max_messages)
        self.max_messages = max_messages
        if len(self.get_messages()) > self.max_messages:
            self._fold()
        return self

    def has_summary(self) -> bool:
        return bool(self._summary)

    def get_current_summary(self) -> str:
        return self._summary

    def get_summary_threshold(self) -> int:
        return self.summary_threshold

    def get_summary(self) -> dict[str, Any]:
        info = super().get_summary()
        info.update(
            {
                'summary_threshold': self.summary_threshold,
                'has_summary': self.has_summary(),
                'summary_model': (
                    self.model.get_name() if self.model else None
                ),
            }
        )
        return info

    def export(self) -> dict[str, Any]:
        data = super().export()
        # the summary is exported apart from the messages
        data['messages'] = [
            m.model_dump(mode='json', exclude_none=True)
            for m in self._get_messages()
        ]
        data['summary'] = self._summary
        data['summary_threshold'] = self.summary_threshold
        return data

    def import_state(self, data: Mapping[str, Any]) -> Self:
        max_messages = data.get('max_messages', self.max_messages)
        threshold = data.get('summary_threshold', self.summary_threshold)
        self._validate_max_messages(max_messages)
        self._validate_threshold(threshold, max_messages)
        self.summary_threshold = threshold
        self.max_messages = max_messages
        if data.get('key'):
            self.key = data['key']
        system = data.get('system_message')
        self._set_system(Message.system(system) if system else None)
        self._summary = str(data.get('summary') or "")
        messages = [to_message(m) for m in data.get('messages', [])]
        self._update_messages(
            lambda _: [m for m in messages if m.role != 'system']
        )
        if len(self.get_messages()) > self.max_messages:
            self._fold()
        return self
