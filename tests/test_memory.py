"""Test windowed, summary and session memories"""

# pyright: basic

import tempfile
import threading
import unittest

from lmorch.config.config import LanguageModelSettings, MemorySettings
from lmorch.language_models.base import BaseChatModel
from lmorch.language_models.errors import ConfigurationError, ProviderError
from lmorch.language_models.langchain import LangChainChatModel
from lmorch.language_models.messages import (
    ChatRequest,
    ChatResponse,
    Message,
)
from lmorch.memory import (
    SUMMARY_PREFIX,
    FileSessionStore,
    InMemorySessionStore,
    SessionMemory,
    SummaryMemory,
    WindowMemory,
    create_memory,
    get_default_store,
)
from lmorch.utils.logging import LoglistLogger


class FakeSummarizer(BaseChatModel):
    """Returns numbered summaries and records the requests."""

    def __init__(self):
        self.requests: list[ChatRequest] = []

    def send(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        return ChatResponse(text=f"summary {len(self.requests)}")


class ScriptedSummarizer(BaseChatModel):
    """Answers with the given texts in turn; exceptions are raised."""

    def __init__(self, replies: list):
        self.replies = list(replies)

    def send(self, request: ChatRequest) -> ChatResponse:
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ChatResponse(text=reply)


class FailingSummarizer(BaseChatModel):
    def send(self, request: ChatRequest) -> ChatResponse:
        raise ProviderError("unavailable", status=503)


class TestWindowMemory(unittest.TestCase):
    def test_window(self):
        memory = WindowMemory(max_messages=2)
        memory.set_system_message("You are a helpful assistant")
        memory.add("Message 1").add("Message 2").add("Message 3")
        contents = [m.content for m in memory.get_all()]
        self.assertEqual(
            contents,
            ["You are a helpful assistant", "Message 2", "Message 3"],
        )
        self.assertEqual(memory.count(), 3)

    def test_last_additions_kept(self):
        memory = WindowMemory(max_messages=4)
        for i in range(10):
            memory.add(f"m{i}")
        self.assertEqual(memory.count(), 4)
        self.assertEqual(
            [m.content for m in memory.get_all()], ["m6", "m7", "m8", "m9"]
        )

    def test_add_forms(self):
        memory = WindowMemory()
        memory.add(Message.user("a"))
        memory.add("b")
        memory.add({'role': 'assistant', 'content': "c"})
        self.assertEqual(
            [m.role for m in memory.get_messages()],
            ['user', 'user', 'assistant'],
        )

    def test_system_message_via_add(self):
        memory = WindowMemory()
        memory.add(Message.system("first")).add(Message.system("second"))
        self.assertEqual(memory.get_system_message(), "second")
        self.assertEqual(memory.get_messages(), [])
        memory.remove_system_message()
        self.assertFalse(memory.has_system_message())

    def test_clear_keeps_system(self):
        memory = WindowMemory()
        memory.set_system_message("sys").add("hello")
        memory.clear()
        self.assertEqual(memory.get_messages(), [])
        self.assertEqual(memory.get_system_message(), "sys")

    def test_set_max_messages(self):
        memory = WindowMemory(max_messages=10)
        memory.add_all([f"m{i}" for i in range(6)])
        memory.set_max_messages(3)
        self.assertEqual(
            [m.content for m in memory.get_messages()], ["m3", "m4", "m5"]
        )
        with self.assertRaises(ConfigurationError):
            memory.set_max_messages(0)

    def test_invalid_max_messages(self):
        with self.assertRaises(ConfigurationError):
            WindowMemory(max_messages=0)

    def test_summary(self):
        memory = WindowMemory(key="chat", max_messages=5)
        memory.set_system_message("sys").add("hi")
        info = memory.get_summary()
        self.assertEqual(info['kind'], 'windowed')
        self.assertEqual(info['key'], "chat")
        self.assertEqual(info['message_count'], 2)
        self.assertTrue(info['has_system_message'])

    def test_export_import(self):
        memory = WindowMemory(key="chat", max_messages=5)
        memory.set_system_message("sys").add("hi").add(Message.assistant("hello"))
        data = memory.export()
        self.assertEqual(data['system_message'], "sys")
        self.assertEqual(len(data['messages']), 2)

        other = WindowMemory()
        other.import_state(data)
        self.assertEqual(other.get_all(), memory.get_all())
        self.assertEqual(other.get_key(), "chat")
        self.assertEqual(other.get_max_messages(), 5)

    def test_import_trims(self):
        data = {
            'max_messages': 2,
            'messages': [{'role': 'user', 'content': f"m{i}"} for i in range(4)],
        }
        memory = WindowMemory().import_state(data)
        self.assertEqual(
            [m.content for m in memory.get_messages()], ["m2", "m3"]
        )


class TestSummaryMemory(unittest.TestCase):
    def test_summarizes_over_bound(self):
        model = FakeSummarizer()
        memory = SummaryMemory(
            model, max_messages=8, summary_threshold=3, logger=LoglistLogger()
        )
        for i in range(8):
            memory.add(f"message {i}")
        self.assertFalse(memory.has_summary())
        self.assertEqual(model.requests, [])

        memory.add("message 8")
        self.assertTrue(memory.has_summary())
        messages = memory.get_messages()
        self.assertEqual(len(messages), 4)
        self.assertEqual(messages[0].role, 'assistant')
        self.assertTrue(messages[0].text().startswith(SUMMARY_PREFIX))
        self.assertIn("summary 1", messages[0].text())
        self.assertEqual(
            [m.content for m in messages[1:]],
            ["message 6", "message 7", "message 8"],
        )
        # the older messages were sent to the summarizer
        prompt = model.requests[0].messages[-1].text()
        self.assertIn("message 0", prompt)
        self.assertIn("message 5", prompt)
        self.assertNotIn("message 6", prompt)

    def test_previous_summary_folded(self):
        model = FakeSummarizer()
        memory = SummaryMemory(model, max_messages=4, summary_threshold=2)
        for i in range(5):
            memory.add(f"message {i}")
        self.assertEqual(memory.get_current_summary(), "summary 1")
        memory.add("message 5").add("message 6")
        self.assertEqual(memory.get_current_summary(), "summary 2")
        self.assertIn("summary 1", model.requests[1].messages[-1].text())
        self.assertLessEqual(len(memory.get_messages()), 4)

    def test_system_message_not_summarized(self):
        memory = SummaryMemory(
            FakeSummarizer(), max_messages=4, summary_threshold=2
        )
        memory.set_system_message("sys")
        memory.add_all([f"m{i}" for i in range(5)])
        all_messages = memory.get_all()
        self.assertEqual(all_messages[0], Message.system("sys"))
        self.assertTrue(all_messages[1].text().startswith(SUMMARY_PREFIX))

    def test_invalid_threshold(self):
        with self.assertRaises(ConfigurationError):
            SummaryMemory(FakeSummarizer(), max_messages=5, summary_threshold=5)
        with self.assertRaises(ConfigurationError):
            SummaryMemory(FakeSummarizer(), max_messages=5, summary_threshold=0)

    def test_provider_error_propagates(self):
        memory = SummaryMemory(
            FailingSummarizer(), max_messages=3, summary_threshold=1
        )
        memory.add_all(["a", "b", "c"])
        with self.assertRaises(ProviderError):
            memory.add("d")
        # the added message is retained
        self.assertEqual(memory.get_messages()[-1].content, "d")
        self.assertFalse(memory.has_summary())

    def test_empty_summary_keeps_previous(self):
        memory = SummaryMemory(
            ScriptedSummarizer(["summary 1", None]),
            max_messages=4,
            summary_threshold=2,
        )
        for i in range(5):
            memory.add(f"message {i}")
        self.assertEqual(memory.get_current_summary(), "summary 1")
        memory.add("message 5")
        with self.assertRaises(ProviderError):
            memory.add("message 6")
        self.assertEqual(memory.get_current_summary(), "summary 1")
        messages = memory.get_messages()
        self.assertTrue(messages[0].text().startswith(SUMMARY_PREFIX))
        self.assertEqual(
            [m.content for m in messages[1:]],
            ["message 3", "message 4", "message 5", "message 6"],
        )

    def test_recovers_after_failure(self):
        memory = SummaryMemory(
            ScriptedSummarizer([ProviderError("busy", status=429), "recap"]),
            max_messages=4,
            summary_threshold=2,
        )
        memory.add_all(["a", "b", "c", "d"])
        with self.assertRaises(ProviderError):
            memory.add("e")
        self.assertGreater(len(memory.get_messages()), 4)

        memory.add("f")
        messages = memory.get_messages()
        self.assertLessEqual(len(messages), 4)
        summaries = [
            m for m in messages if m.text().startswith(SUMMARY_PREFIX)
        ]
        self.assertEqual(len(summaries), 1)
        self.assertEqual(memory.get_current_summary(), "recap")
        self.assertEqual([m.content for m in messages[1:]], ["e", "f"])

    def test_compact(self):
        memory = SummaryMemory(
            FakeSummarizer(), max_messages=10, summary_threshold=2
        )
        memory.add_all(["a", "b", "c", "d"])
        memory.compact()
        self.assertTrue(memory.has_summary())
        self.assertEqual(len(memory.get_messages()), 3)

    def test_clear(self):
        memory = SummaryMemory(
            FakeSummarizer(), max_messages=3, summary_threshold=1
        )
        memory.add_all(["a", "b", "c", "d"])
        memory.clear()
        self.assertFalse(memory.has_summary())
        self.assertEqual(memory.get_messages(), [])

    def test_export_import(self):
        memory = SummaryMemory(
            FakeSummarizer(), max_messages=4, summary_threshold=2
        )
        memory.add_all([f"m{i}" for i in range(5)])
        data = memory.export()
        self.assertEqual(data['summary'], "summary 1")
        self.assertEqual(data['summary_threshold'], 2)
        self.assertEqual(len(data['messages']), 2)

        other = SummaryMemory(FakeSummarizer())
        other.import_state(data)
        self.assertEqual(other.get_messages(), memory.get_messages())
        self.assertEqual(other.get_summary_threshold(), 2)

    def test_get_summary(self):
        memory = SummaryMemory(FakeSummarizer(), max_messages=4, summary_threshold=2)
        info = memory.get_summary()
        self.assertEqual(info['kind'], 'summary')
        self.assertFalse(info['has_summary'])
        self.assertEqual(info['summary_model'], "FakeSummarizer")

    def test_langchain_summarizer(self):
        model = LangChainChatModel(
            LanguageModelSettings(
                model="Debug/debug",
                provider_params={'message': "They greeted each other."},
            )
        )
        memory = SummaryMemory(model, max_messages=3, summary_threshold=1)
        memory.add_all(["hello", "hi there", "how are you?", "fine"])
        self.assertEqual(
            memory.get_current_summary(), "They greeted each other."
        )


class TestSessionMemory(unittest.TestCase):
    def test_shared_conversation(self):
        store = InMemorySessionStore()
        first = SessionMemory(store, key="user-42")
        first.set_system_message("sys").add("Hello")
        second = SessionMemory(store, key="user-42")
        self.assertEqual(second.get_all(), first.get_all())
        self.assertEqual(second.get_system_message(), "sys")

    def test_keys_separate(self):
        store = InMemorySessionStore()
        SessionMemory(store, key="a").add("for a")
        SessionMemory(store, key="b").add("for b")
        self.assertEqual(sorted(store.keys()), ["a", "b"])
        self.assertEqual(
            SessionMemory(store, key="a").get_messages()[0].content, "for a"
        )

    def test_window(self):
        memory = SessionMemory(InMemorySessionStore(), max_messages=2)
        memory.set_system_message("sys")
        memory.add_all(["m1", "m2", "m3"])
        self.assertEqual(
            [m.content for m in memory.get_all()], ["sys", "m2", "m3"]
        )

    def test_delete_session(self):
        store = InMemorySessionStore()
        memory = SessionMemory(store, key="k")
        memory.add("hi")
        self.assertTrue(memory.delete_session())
        self.assertEqual(memory.get_all(), [])
        self.assertFalse(memory.delete_session())

    def test_concurrent_adds(self):
        store = InMemorySessionStore()

        def worker(n: int):
            memory = SessionMemory(store, key="shared", max_messages=1000)
            for i in range(20):
                memory.add(f"{n}-{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(store.get("shared")), 100)

    def test_file_store(self):
        with tempfile.TemporaryDirectory() as tmp:
            store = FileSessionStore(tmp)
            memory = SessionMemory(store, key="user/42")
            memory.set_system_message("sys")
            memory.add("Hello").add(Message.assistant("Hi!"))

            reopened = SessionMemory(FileSessionStore(tmp), key="user/42")
            self.assertEqual(reopened.get_all(), memory.get_all())
            self.assertEqual(store.keys(), ["user_42"])
            self.assertTrue(store.delete("user/42"))
            self.assertEqual(store.get("user/42"), [])

    def test_default_store(self):
        memory = SessionMemory(key="default-store-test")
        self.assertIs(memory.store, get_default_store())
        memory.delete_session()


class TestCreateMemory(unittest.TestCase):
    def test_kinds(self):
        self.assertIsInstance(create_memory('windowed'), WindowMemory)
        summary = create_memory('summary', model=FakeSummarizer())
        self.assertIsInstance(summary, SummaryMemory)
        self.assertEqual(summary.get_max_messages(), 20)
        session = create_memory('session', store=InMemorySessionStore())
        self.assertIsInstance(session, SessionMemory)
        self.assertEqual(session.get_key(), "default")

    def test_config(self):
        memory = create_memory('windowed', "chat", max_messages=5)
        self.assertEqual(memory.get_max_messages(), 5)
        self.assertEqual(memory.get_key(), "chat")

    def test_settings_defaults(self):
        settings = MemorySettings(max_messages=7, session_key="main")
        memory = create_memory(
            'session', settings=settings, store=InMemorySessionStore()
        )
        self.assertEqual(memory.get_max_messages(), 7)
        self.assertEqual(memory.get_key(), "main")

    def test_unknown_kind(self):
        with self.assertRaises(ConfigurationError):
            create_memory('infinite')  # type: ignore

    def test_unknown_config(self):
        with self.assertRaises(ConfigurationError):
            create_memory('windowed', summary_threshold=3)

    def test_invalid_config(self):
        with self.assertRaises(ConfigurationError):
            create_memory('summary', max_messages=4, summary_threshold=4)


if __name__ == "__main__":
    unittest.main()
