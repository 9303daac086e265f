"""Test the LangChain provider adapter with fake chat models"""

# pyright: basic
# pyright: reportArgumentType=false

import asyncio
import unittest

from langchain_core.language_models.chat_models import (
    BaseChatModel as LangChainBaseChatModel,
)
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage
from langchain_core.outputs import ChatGeneration, ChatResult
from pydantic import Field

from lmorch.config.config import LanguageModelSettings
from lmorch.language_models.agent import Agent
from lmorch.language_models.errors import ConfigurationError, ProviderError
from lmorch.language_models.langchain import (
    LangChainChatModel,
    create_debug_model,
    create_model_from_settings,
    create_model_from_spec,
    langchain_models,
)
from lmorch.language_models.messages import (
    ChatOptions,
    ChatRequest,
    Message,
    ToolCall,
)
from lmorch.language_models.runnables import ModelRunnable
from lmorch.language_models.tools import tool
from lmorch.utils.logging import LoglistLogger


class RateLimitError(Exception):
    status_code = 429


class FailingChatModel(LangChainBaseChatModel):
    """A LangChain chat model whose calls always fail."""

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        raise RateLimitError("too many requests")

    @property
    def _llm_type(self) -> str:
        return "failing"


class RecordingChatModel(LangChainBaseChatModel):
    """A LangChain chat model that records the call arguments."""

    received: list[dict] = Field(default_factory=list)

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        self.received.append(kwargs)
        return ChatResult(
            generations=[ChatGeneration(message=AIMessage(content="ok"))]
        )

    @property
    def _llm_type(self) -> str:
        return "recording"


def tearDownModule():
    langchain_models.clear()


@tool
def get_weather(city: str) -> str:
    """The current weather in a city"""
    return f"Sunny in {city}"


class TestModelFactory(unittest.TestCase):
    def test_debug_model_memoized(self):
        settings = LanguageModelSettings(model="Debug/debug")
        model = create_model_from_settings(settings)
        self.assertIs(create_model_from_settings(settings), model)
        self.assertIs(create_model_from_spec("Debug/debug"), model)

    def test_debug_constant_message(self):
        model = create_model_from_spec(
            "Debug/constant", provider_params={'message': "fixed"}
        )
        self.assertEqual(model.invoke("hi").content, "fixed")
        self.assertEqual(model.invoke("again").content, "fixed")

    def test_invalid_spec(self):
        with self.assertRaises(ValueError):
            create_model_from_spec("Kntropix/model")


class TestAdapter(unittest.TestCase):
    def test_requires_model(self):
        with self.assertRaises(ConfigurationError):
            LangChainChatModel()

    def test_send_text(self):
        adapter = LangChainChatModel(
            model=create_debug_model(["Paris is the capital."])
        )
        response = adapter.chat(["Capital of France?"])
        self.assertEqual(response.text, "Paris is the capital.")
        self.assertFalse(response.has_tool_calls)
        self.assertIsInstance(response.raw, AIMessage)

    def test_send_from_settings(self):
        adapter = LangChainChatModel(
            LanguageModelSettings(
                model="Debug/debug",
                provider_params={'message': "from settings"},
            )
        )
        self.assertEqual(adapter.chat(["hi"]).text, "from settings")
        self.assertEqual(adapter.get_name(), "Debug/debug")

    def test_tool_call_response(self):
        reply = AIMessage(
            content="",
            tool_calls=[
                {'name': "get_weather", 'args': {'city': "Rome"}, 'id': "call_7"}
            ],
        )
        adapter = LangChainChatModel(model=create_debug_model([reply]))
        response = adapter.chat(["Weather?"], tools=[get_weather.spec()])
        self.assertTrue(response.has_tool_calls)
        self.assertEqual(
            response.tool_calls[0],
            ToolCall(id="call_7", name="get_weather", arguments={'city': "Rome"}),
        )
        self.assertIsNone(response.text)

    def test_tools_not_supported_warning(self):
        logger = LoglistLogger()
        adapter = LangChainChatModel(
            model=create_debug_model(["ok"]), logger=logger
        )
        adapter.chat(["hi"], tools=[get_weather.spec()])
        self.assertTrue(
            any("tool calling" in log for log in logger.get_logs())
        )

    def test_convert_messages(self):
        adapter = LangChainChatModel(model=create_debug_model(["ok"]))
        call = ToolCall(id="call_1", name="get_weather", arguments={'city': "Oslo"})
        converted = adapter._convert_messages(
            [
                Message.user("Weather?"),
                Message.assistant(tool_calls=[call]),
                Message.tool("Sunny", "call_1"),
            ]
        )
        self.assertIsInstance(converted[0], HumanMessage)
        self.assertIsInstance(converted[1], AIMessage)
        self.assertEqual(converted[1].tool_calls[0]['id'], "call_1")
        self.assertIsInstance(converted[2], ToolMessage)
        self.assertEqual(converted[2].tool_call_id, "call_1")

    def test_provider_error(self):
        logger = LoglistLogger()
        adapter = LangChainChatModel(model=FailingChatModel(), logger=logger)
        with self.assertRaises(ProviderError) as ctx:
            adapter.chat(["hi"])
        self.assertEqual(ctx.exception.status, 429)
        self.assertIn("too many requests", str(ctx.exception))
        self.assertEqual(logger.count_logs(3), 1)

    def test_invalid_override(self):
        adapter = LangChainChatModel(LanguageModelSettings(model="Debug/debug"))
        request = ChatRequest(
            messages=(Message.user("hi"),), params={'temperature': 5.0}
        )
        with self.assertRaises(ConfigurationError):
            adapter.send(request)

    def test_timeout_reaches_wrapped_model(self):
        model = RecordingChatModel()
        adapter = LangChainChatModel(model=model)
        request = ChatRequest(
            messages=(Message.user("hi"),),
            params={'temperature': 0.3},
            options=ChatOptions(timeout=1.5),
        )
        self.assertEqual(adapter.send(request).text, "ok")
        self.assertEqual(model.received[0]['timeout'], 1.5)
        self.assertEqual(model.received[0]['temperature'], 0.3)

    def test_overrides_rejected_for_wrapped_model(self):
        adapter = LangChainChatModel(model=RecordingChatModel())
        for options in (
            ChatOptions(provider="OpenAI"),
            ChatOptions(api_key="sk-test"),
        ):
            request = ChatRequest(
                messages=(Message.user("hi"),), options=options
            )
            with self.assertRaises(ConfigurationError):
                adapter.send(request)

    def test_stream(self):
        adapter = LangChainChatModel(
            model=create_debug_model(["streamed reply text"])
        )
        pieces = list(ModelRunnable(adapter).stream("go"))
        self.assertEqual(
            "".join(p.content for p in pieces), "streamed reply text"
        )
        self.assertTrue(pieces[-1].is_final)

    def test_asend(self):
        adapter = LangChainChatModel(model=create_debug_model(["async reply"]))
        request = ChatRequest(messages=(Message.user("hi"),))
        response = asyncio.run(adapter.asend(request))
        self.assertEqual(response.text, "async reply")

    def test_request_logging(self):
        logger = LoglistLogger()
        adapter = LangChainChatModel(
            model=create_debug_model(["ok"]), logger=logger
        )
        ModelRunnable(adapter).run(
            "hi", {'log_request': True, 'log_response': True}
        )
        logs = logger.get_logs()
        self.assertTrue(logs[0].startswith("INFO - Request to"))
        self.assertTrue(logs[1].startswith("INFO - Response from"))


class TestAgentWithFakeModel(unittest.TestCase):
    def test_agent_loop(self):
        script = [
            AIMessage(
                content="",
                tool_calls=[
                    {'name': "get_weather", 'args': {'city': "Rome"}, 'id': "c1"}
                ],
            ),
            "It is sunny in Rome.",
        ]
        adapter = LangChainChatModel(
            model=create_debug_model(script), logger=LoglistLogger()
        )
        agent = Agent(adapter, tools=[get_weather], logger=LoglistLogger())
        result = agent.run_loop("Weather in Rome?")
        self.assertEqual(result.answer, "It is sunny in Rome.")
        self.assertEqual(result.turns, 2)
        self.assertEqual(result.messages[2].content, "Sunny in Rome")


if __name__ == "__main__":
    unittest.main()
