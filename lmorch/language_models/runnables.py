"""
Runnable objects: the steps of an execution graph that may be chained
into pipelines.

Every runnable offers the same interface, whatever it does:

    - run(input, params) / arun(input, params): obtain the output
    - stream(input, params) / astream(input, params): obtain the output
        as an iterator of StreamChunk objects, the last of which is
        flagged with is_final
    - stream_to(input, on_chunk, params): stream to a callback
    - to(next) / transform(fn): chain into a new RunnableSequence
    - with_name(name) / get_name(): naming, for diagnostics
    - with_params(mapping) / merge_params(runtime): default parameters,
        overridden by the parameters given at run time

The variants are

    - TransformRunnable: applies a function to its input
    - ModelRunnable: sends its input to a provider adapter
    - RunnableSequence: folds its input through a list of steps
    - MessageTemplate: renders a list of templated messages
    - Agent (see lmorch.language_models.agent): the tool-calling loop

Example:

    ```python
    from lmorch.language_models.runnables import MessageTemplate

    pipeline = (
        MessageTemplate()
        .system("You are a helpful assistant")
        .user("Translate into French: {input}")
        .to(model)
        .transform(lambda text: text.strip())
    )
    french = pipeline.run("Good morning", {'temperature': 0.2})
    for chunk in pipeline.stream("Good evening"):
        print(chunk.content, end="")
    ```

Chaining never modifies the receiver: `a.to(b)` returns a new sequence,
and `seq.to(c)` returns a new sequence with one more step than seq. The
steps of a sequence run in order, never concurrently. A failing step
aborts the sequence with an ExecutionError naming the step.

The asynchronous variants run the synchronous algorithm in a worker
thread.
"""

import asyncio
import json
import re
import threading
from abc import ABC, abstractmethod
from collections.abc import (
    AsyncIterator,
    Callable,
    Iterable,
    Iterator,
    Mapping,
    Sequence,
)
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict

from .base import BaseChatModel
from .errors import ExecutionError
from .messages import (
    ChatOptions,
    ChatRequest,
    ChatResponse,
    Message,
    MessageContent,
    ToolSpec,
    to_message,
)

RunnableKind = Literal[
    'Transform', 'Model', 'Sequence', 'MessageTemplate', 'Agent'
]

# The metadata passed to stream callbacks
ChunkCallback = Callable[[Any, dict[str, Any]], None]

# placeholders in message templates: {name}
_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


class StreamChunk(BaseModel):
    """A piece of a streamed output. The last chunk of a stream has
    is_final set to True."""

    content: Any
    index: int
    is_final: bool = False

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


def _chunked(pieces: Iterable[Any]) -> Iterator[StreamChunk]:
    """Number the pieces of a stream and flag the last one."""
    iterator = iter(pieces)
    try:
        previous = next(iterator)
    except StopIteration:
        return
    index = 0
    for piece in iterator:
        yield StreamChunk(content=previous, index=index)
        previous = piece
        index += 1
    yield StreamChunk(content=previous, index=index, is_final=True)


class _StreamFailure:
    def __init__(self, error: Exception):
        self.error = error


def split_params(
    params: Mapping[str, Any],
) -> tuple[dict[str, Any], ChatOptions]:
    """Split merged runnable parameters into model parameters and
    exchange options. Keys that are fields of ChatOptions (provider,
    api_key, timeout, return_format, log_request, log_response) are
    options, the rest are model parameters."""
    option_fields = ChatOptions.model_fields.keys()
    options = {k: v for k, v in params.items() if k in option_fields}
    model_params = {
        k: v for k, v in params.items() if k not in option_fields
    }
    return model_params, ChatOptions(**options)


def make_request(
    messages: Iterable[Message],
    params: Mapping[str, Any] | None = None,
    tools: Iterable[ToolSpec] = (),
) -> ChatRequest:
    """Build a chat request from messages and merged parameters."""
    model_params, options = split_params(params or {})
    return ChatRequest(
        messages=tuple(messages),
        params=model_params,
        options=options,
        tools=tuple(tools),
    )


class Runnable(ABC):
    """Abstract base class of all runnables."""

    kind: RunnableKind

    def __init__(
        self,
        name: str | None = None,
        params: Mapping[str, Any] | None = None,
    ):
        self._name = name
        self._params: dict[str, Any] = dict(params or {})

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.get_name()!r})"

    # execution ----------------------------------------------------

    @abstractmethod
    def run(
        self, input: Any = None, params: Mapping[str, Any] | None = None
    ) -> Any:
        """Execute the runnable and return its output."""
        pass

    def _stream_pieces(
        self, input: Any, params: Mapping[str, Any] | None
    ) -> Iterator[Any]:
        """The pieces of the streamed output. Runnables that do not
        stream produce their full output as one piece."""
        yield self.run(input, params)

    def stream(
        self, input: Any = None, params: Mapping[str, Any] | None = None
    ) -> Iterator[StreamChunk]:
        """Execute the runnable, yielding its output in chunks."""
        return _chunked(self._stream_pieces(input, params))

    def stream_to(
        self,
        input: Any,
        on_chunk: ChunkCallback,
        params: Mapping[str, Any] | None = None,
    ) -> None:
        """Execute the runnable, passing each chunk of the output to
        on_chunk(content, metadata) with metadata keys 'index' and
        'is_final'."""
        for chunk in self.stream(input, params):
            on_chunk(
                chunk.content,
                {'index': chunk.index, 'is_final': chunk.is_final},
            )

    async def arun(
        self, input: Any = None, params: Mapping[str, Any] | None = None
    ) -> Any:
        """Asynchronous run, executed in a worker thread."""
        return await asyncio.to_thread(self.run, input, params)

    async def astream(
        self, input: Any = None, params: Mapping[str, Any] | None = None
    ) -> AsyncIterator[StreamChunk]:
        """Asynchronous stream. The synchronous stream runs in a worker
        thread and its chunks are delivered as they are produced."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[StreamChunk | _StreamFailure | None] = (
            asyncio.Queue()
        )
        stop = threading.Event()

        def pump() -> None:
            chunks = self.stream(input, params)
            try:
                for chunk in chunks:
                    # the consumer left: leave the rest unread
                    if stop.is_set():
                        break
                    loop.call_soon_threadsafe(queue.put_nowait, chunk)
            except Exception as e:
                loop.call_soon_threadsafe(
                    queue.put_nowait, _StreamFailure(e)
                )
            finally:
                close = getattr(chunks, 'close', None)
                if close is not None:
                    close()
                loop.call_soon_threadsafe(queue.put_nowait, None)

        worker = asyncio.ensure_future(asyncio.to_thread(pump))
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                if isinstance(item, _StreamFailure):
                    raise item.error
                yield item
        finally:
            stop.set()
            await worker

    # chaining -----------------------------------------------------

    def to(
        self, next: 'Runnable | BaseChatModel | Callable[[Any], Any]'
    ) -> 'RunnableSequence':
        """A new sequence running this runnable, then next."""
        return RunnableSequence([self, as_runnable(next)])

    def transform(self, fn: Callable[[Any], Any]) -> 'RunnableSequence':
        """A new sequence applying fn to the output of this runnable."""
        return self.to(TransformRunnable(fn))

    # naming and parameters ----------------------------------------

    def with_name(self, name: str) -> Self:
        self._name = name
        return self

    def get_name(self) -> str:
        return self._name or self.kind

    def with_params(self, params: Mapping[str, Any]) -> Self:
        """Set default parameters, merged into the existing ones."""
        self._params.update(params)
        return self

    def get_params(self) -> dict[str, Any]:
        return dict(self._params)

    def merge_params(
        self, runtime: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        """The default parameters overridden by the runtime ones."""
        return {**self._params, **(runtime or {})}


class TransformRunnable(Runnable):
    """Applies a function to its input."""

    kind: RunnableKind = 'Transform'

    def __init__(
        self,
        fn: Callable[[Any], Any],
        name: str | None = None,
        params: Mapping[str, Any] | None = None,
    ):
        if not callable(fn):
            raise TypeError("TransformRunnable requires a callable")
        super().__init__(name, params)
        self.fn = fn

    def run(
        self, input: Any = None, params: Mapping[str, Any] | None = None
    ) -> Any:
        return self.fn(input)


class ModelRunnable(Runnable):
    """Sends its input to a provider adapter.

    The input may be a string (sent as a user message), a message, a
    sequence of messages (or strings, or message mappings), or a
    complete ChatRequest. The output depends on the 'return_format'
    parameter:

        - 'single' (default): the text of the response
        - 'response': the ChatResponse object
        - 'raw': the provider payload
        - 'json': the text of the response parsed as JSON
    """

    kind: RunnableKind = 'Model'

    def __init__(
        self,
        model: BaseChatModel,
        name: str | None = None,
        params: Mapping[str, Any] | None = None,
    ):
        super().__init__(name, params)
        self.model = model

    def get_name(self) -> str:
        return self._name or f"{self.kind}({self.model.get_name()})"

    def build_request(
        self, input: Any, params: Mapping[str, Any] | None = None
    ) -> ChatRequest:
        merged = self.merge_params(params)
        match input:
            case ChatRequest():
                model_params, options = split_params(merged)
                opts = input.options.model_copy(
                    update=options.model_dump(exclude_unset=True)
                )
                return input.with_params(model_params).model_copy(
                    update={'options': opts}
                )
            case str() | Message() | Mapping():
                return make_request([to_message(input)], merged)
            case Sequence():
                return make_request([to_message(m) for m in input], merged)
            case _:
                raise TypeError(
                    f"Invalid input for model runnable: {type(input).__name__}"
                )

    @staticmethod
    def format_response(response: ChatResponse, request: ChatRequest) -> Any:
        match request.options.return_format:
            case 'response':
                return response
            case 'raw':
                return response.raw
            case 'json':
                return parse_json(response.text or "")
            case _:
                return response.text or ""

    def run(
        self, input: Any = None, params: Mapping[str, Any] | None = None
    ) -> Any:
        request = self.build_request(input, params)
        return self.format_response(self.model.send(request), request)

    def _stream_pieces(
        self, input: Any, params: Mapping[str, Any] | None
    ) -> Iterator[Any]:
        request = self.build_request(input, params)
        produced = False
        for piece in self.model.stream(request):
            produced = True
            yield piece
        if not produced:
            yield ""


def parse_json(text: str) -> Any:
    """Parse the text of a response as JSON, removing the markdown
    code fences that models often add."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```[A-Za-z]*\s*", "", cleaned)
        cleaned = re.sub(r"\s*```$", "", cleaned)
    return json.loads(cleaned)


class RunnableSequence(Runnable):
    """Folds its input through an ordered list of steps."""

    kind: RunnableKind = 'Sequence'

    def __init__(
        self,
        steps: Iterable['Runnable | BaseChatModel | Callable[[Any], Any]'],
        name: str | None = None,
        params: Mapping[str, Any] | None = None,
    ):
        super().__init__(name, params)
        self._steps: list[Runnable] = [as_runnable(s) for s in steps]

    def run(
        self, input: Any = None, params: Mapping[str, Any] | None = None
    ) -> Any:
        value = input
        for index, step in enumerate(self._steps):
            value = self._run_step(index, step, value, params)
        return value

    def _run_step(
        self,
        index: int,
        step: Runnable,
        value: Any,
        params: Mapping[str, Any] | None,
    ) -> Any:
        try:
            return step.run(value, self.merge_params(params))
        except Exception as e:
            raise ExecutionError(step.get_name(), index, e) from e

    def stream(
        self, input: Any = None, params: Mapping[str, Any] | None = None
    ) -> Iterator[StreamChunk]:
        """Run all steps but the last to completion, then stream the
        output of the last step."""
        if not self._steps:
            yield StreamChunk(content=input, index=0, is_final=True)
            return
        value = input
        last = len(self._steps) - 1
        for index, step in enumerate(self._steps[:-1]):
            value = self._run_step(index, step, value, params)
        step = self._steps[last]
        try:
            yield from step.stream(value, self.merge_params(params))
        except Exception as e:
            raise ExecutionError(step.get_name(), last, e) from e

    def to(
        self, next: 'Runnable | BaseChatModel | Callable[[Any], Any]'
    ) -> 'RunnableSequence':
        """A new sequence with the steps of this one and next. The
        name and the parameters are carried over."""
        return RunnableSequence(
            [*self._steps, as_runnable(next)],
            name=self._name,
            params=self._params,
        )

    def count(self) -> int:
        return len(self._steps)

    def get_steps(self) -> list[Runnable]:
        return list(self._steps)

    def print(self) -> str:
        """A listing of the steps of the sequence, for diagnostics."""
        lines = [f"{self.get_name()} ({self.count()} steps)"]
        for index, step in enumerate(self._steps):
            lines.append(f"  {index + 1}. {step.get_name()} [{step.kind}]")
        return "\n".join(lines)


class MessageTemplate(Runnable):
    """A list of messages with {name} placeholders, rendered with the
    bound values. Placeholders with no bound value are left as they
    are.

    ```python
    template = (
        MessageTemplate()
        .system("You are a {role} assistant")
        .user("Hello, {name}!")
        .bind(role="helpful")
    )
    template.render()                  # {name} left as is
    template.format({'name': "Jane"})  # 'Hello, Jane!'
    template.run({'name': "John"})     # same as format
    ```

    When run, a mapping input is merged into the bindings, and any
    other input is bound to the 'input' placeholder. The output is the
    rendered list of messages. When streamed, each rendered message is
    a chunk.
    """

    kind: RunnableKind = 'MessageTemplate'

    def __init__(
        self,
        content: MessageContent = None,
        name: str | None = None,
        params: Mapping[str, Any] | None = None,
    ):
        super().__init__(name, params)
        self._messages: list[Message] = []
        self._bindings: dict[str, Any] = {}
        if content:
            self.user(content)

    def add(self, message: Message | str | Mapping[str, Any]) -> 'MessageTemplate':
        self._messages.append(to_message(message))
        return self

    def system(self, content: MessageContent) -> 'MessageTemplate':
        """Set the system message, replacing an existing one. The
        system message is always the first."""
        self._messages = [m for m in self._messages if m.role != 'system']
        self._messages.insert(0, Message.system(content))
        return self

    def user(self, content: MessageContent) -> 'MessageTemplate':
        return self.add(Message.user(content))

    def assistant(self, content: MessageContent) -> 'MessageTemplate':
        return self.add(Message.assistant(content))

    def bind(
        self, bindings: Mapping[str, Any] | None = None, **kwargs: Any
    ) -> 'MessageTemplate':
        self._bindings.update(bindings or {})
        self._bindings.update(kwargs)
        return self

    def get_bindings(self) -> dict[str, Any]:
        return dict(self._bindings)

    def get_messages(self) -> list[Message]:
        """The messages, not rendered."""
        return list(self._messages)

    def get_placeholders(self) -> list[str]:
        """The names of the placeholders, in order of appearance."""
        names: list[str] = []
        for message in self._messages:
            if isinstance(message.content, str):
                for name in _PLACEHOLDER.findall(message.content):
                    if name not in names:
                        names.append(name)
        return names

    @staticmethod
    def _substitute(text: str, bindings: Mapping[str, Any]) -> str:
        def replace(match: re.Match[str]) -> str:
            key = match.group(1)
            if key in bindings:
                return str(bindings[key])
            return match.group(0)

        return _PLACEHOLDER.sub(replace, text)

    def render(
        self, bindings: Mapping[str, Any] | None = None
    ) -> list[Message]:
        """The messages with the placeholders replaced by the stored
        bindings, overridden by the given ones. The template is not
        modified."""
        values = {**self._bindings, **(bindings or {})}
        rendered: list[Message] = []
        for message in self._messages:
            if isinstance(message.content, str):
                message = message.model_copy(
                    update={
                        'content': self._substitute(message.content, values)
                    }
                )
            rendered.append(message)
        return rendered

    def format(
        self, bindings: Mapping[str, Any] | None = None
    ) -> list[Message]:
        """Render the messages with the given bindings."""
        return self.render(bindings)

    def run(
        self, input: Any = None, params: Mapping[str, Any] | None = None
    ) -> list[Message]:
        match input:
            case None:
                return self.render()
            case Mapping():
                return self.render(input)
            case _:
                return self.render({'input': input})


def as_runnable(
    step: 'Runnable | BaseChatModel | Callable[[Any], Any]',
) -> Runnable:
    """Wrap a provider adapter or a callable into a runnable."""
    match step:
        case Runnable():
            return step
        case BaseChatModel():
            return ModelRunnable(step)
        case _ if callable(step):
            return TransformRunnable(step)
        case _:
            raise TypeError(
                f"Cannot use {type(step).__name__} as a pipeline step"
            )
