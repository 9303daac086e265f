"""
Message Iterator Module

This module provides iterators that generate the messages returned by
the fake language model of the 'Debug' model source. Besides the
infinite iterators of sequential or constant messages, a scripted
iterator replays a given list of replies, which may include assistant
messages with tool calls. This allows the agent loop to be exercised
end-to-end without network access.
"""

from collections.abc import Iterable, Iterator

from langchain_core.messages import AIMessage


class MessageIterator:
    """
    An iterator that generates sequential messages with a customizable prefix.

    The iterator is infinite and will continue generating messages
    indefinitely. Messages follow the pattern: "{prefix} {counter}" where
    counter starts at 1.
    """

    def __init__(self, prefix: str = "Message") -> None:
        self.prefix = prefix
        self.counter = 1

    def __iter__(self) -> Iterator[str]:
        """Return the iterator object itself."""
        return self

    def __next__(self) -> str:
        message = f"{self.prefix} {self.counter}"
        self.counter += 1
        return message


def yield_message(prefix: str = "Message") -> MessageIterator:
    """
    Create an iterator that generates sequential messages with the
    specified prefix.

    Example:
        >>> iterator = yield_message("Alert")
        >>> next(iterator)
        'Alert 1'
        >>> next(iterator)
        'Alert 2'
    """
    return MessageIterator(prefix)


class ConstantMessageIterator:
    """
    An infinite iterator that generates the message with which it was
    initialized.
    """

    def __init__(self, message: str = "Message") -> None:
        self.message = message
        self.counter = 0

    def __iter__(self) -> Iterator[str]:
        return self

    def __next__(self) -> str:
        self.counter += 1
        return self.message


def yield_constant_message(
    message: str = "Message",
) -> ConstantMessageIterator:
    """
    Create an iterator that generates the same message repeatedly.

    Example:
        >>> iterator = yield_constant_message("Alert")
        >>> next(iterator)
        'Alert'
        >>> next(iterator)
        'Alert'
    """
    return ConstantMessageIterator(message)


class ScriptedMessageIterator:
    """
    An iterator that replays a script of replies in order. The replies
    may be strings or LangChain AIMessage objects (for example, to
    script a tool call).

    When the script is exhausted, the last reply is repeated if
    repeat_last is True, otherwise StopIteration is raised.
    """

    def __init__(
        self,
        replies: Iterable[str | AIMessage],
        repeat_last: bool = True,
    ) -> None:
        self.replies: list[str | AIMessage] = list(replies)
        if not self.replies:
            raise ValueError("A scripted iterator requires replies")
        self.repeat_last = repeat_last
        self.counter = 0

    def __iter__(self) -> Iterator[str | AIMessage]:
        return self

    def __next__(self) -> str | AIMessage:
        if self.counter >= len(self.replies):
            if not self.repeat_last:
                raise StopIteration
            return self.replies[-1]
        reply = self.replies[self.counter]
        self.counter += 1
        return reply


def yield_scripted_messages(
    replies: Iterable[str | AIMessage], repeat_last: bool = True
) -> ScriptedMessageIterator:
    """
    Create an iterator that replays the given replies.

    Example:
        >>> iterator = yield_scripted_messages(["first", "second"])
        >>> next(iterator)
        'first'
        >>> next(iterator)
        'second'
        >>> next(iterator)
        'second'
    """
    return ScriptedMessageIterator(replies, repeat_last)
