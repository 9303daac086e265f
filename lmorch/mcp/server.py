"""
MCP server: exposes tools, resources and prompts through the Model
Context Protocol.

A MCPServer holds a table of tools (see lmorch.language_models.tools),
of resources (text identified by a URI) and of prompts (templates with
{name} placeholders). Its tables may be used directly, or through
handle_request, which answers JSON-RPC 2.0 requests:

    - initialize, ping
    - tools/list, tools/call
    - resources/list, resources/read
    - prompts/list, prompts/get

Errors are answered with the JSON-RPC error codes: parse error
(-32700), invalid request (-32600), unknown method (-32601), invalid
params (-32602, also for unknown tools, resources and prompts) and
internal error (-32603). A tool that raises does not produce an error
object: its failure is reported in the result, with isError set, so
that the model calling it may recover.

Example:

    ```python
    from lmorch.mcp import mcp_server
    from lmorch.language_models.tools import tool

    @tool(description="Adds two numbers")
    def add(a: int, b: int) -> int:
        return a + b

    server = mcp_server("math").register_tool(add)
    server.handle_request({
        'jsonrpc': "2.0",
        'id': 1,
        'method': "tools/call",
        'params': {'name': "add", 'arguments': {'a': 1, 'b': 2}},
    })
    # {'jsonrpc': '2.0', 'id': 1, 'result': {'content': [{'type':
    #   'text', 'text': '3'}], 'isError': False}}
    ```

The tables and the statistics are guarded by a lock: a server may be
shared among threads.
"""

import json
import threading
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any, Self

from lmorch.config.config import MCPSettings
from lmorch.language_models.errors import (
    ConfigurationError,
    MCPError,
    ToolExecutionError,
    UnknownToolError,
)
from lmorch.language_models.messages import ToolSpec
from lmorch.language_models.prompts import PromptDefinition
from lmorch.language_models.tools import Tool, to_text
from lmorch.utils import logger as default_logger
from lmorch.utils.logging import LoggerBase

JSONRPC_VERSION = "2.0"

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


def _error_response(
    request_id: Any, code: int, message: str
) -> dict[str, Any]:
    return {
        'jsonrpc': JSONRPC_VERSION,
        'id': request_id,
        'error': {'code': code, 'message': message},
    }


def _result_response(request_id: Any, result: Any) -> dict[str, Any]:
    return {'jsonrpc': JSONRPC_VERSION, 'id': request_id, 'result': result}


class _Resource:
    def __init__(
        self,
        uri: str,
        content: str | Callable[[], Any],
        name: str,
        description: str,
        mime_type: str,
    ):
        self.uri = uri
        self.content = content
        self.name = name
        self.description = description
        self.mime_type = mime_type

    def describe(self) -> dict[str, Any]:
        return {
            'uri': self.uri,
            'name': self.name,
            'description': self.description,
            'mimeType': self.mime_type,
        }

    def read(self) -> str:
        if callable(self.content):
            return to_text(self.content())
        return self.content


class _Prompt:
    def __init__(self, definition: PromptDefinition, description: str):
        self.definition = definition
        self.description = description
        self.template = definition.to_template()

    def arguments(self) -> list[str]:
        return self.template.get_placeholders()

    def describe(self) -> dict[str, Any]:
        return {
            'name': self.definition.name,
            'description': self.description,
            'arguments': [
                {'name': name, 'required': True}
                for name in self.arguments()
            ],
        }


class MCPServer:
    """A server of tools, resources and prompts.

    Args:
        name: the name of the server
        description: a description of the server
        version: the version reported to clients
        settings: the defaults of server version and protocol version
        logger: the logger of the server
    """

    def __init__(
        self,
        name: str = "default",
        description: str = "",
        version: str | None = None,
        *,
        settings: MCPSettings | None = None,
        logger: LoggerBase = default_logger,
    ):
        if not name or not name.strip():
            raise ConfigurationError("MCP server name cannot be empty")
        settings = settings or MCPSettings()
        self.name = name
        self.description = description
        self.version = version or settings.server_version
        self.protocol_version = settings.protocol_version
        self.logger = logger
        self._tools: dict[str, Tool] = {}
        self._resources: dict[str, _Resource] = {}
        self._prompts: dict[str, _Prompt] = {}
        self._lock = threading.RLock()
        self._stats = self._new_stats()

    def __repr__(self) -> str:
        return f"MCPServer(name={self.name!r})"

    # server information -------------------------------------------

    def set_description(self, description: str) -> Self:
        self.description = description
        return self

    def set_version(self, version: str) -> Self:
        self.version = version
        return self

    def get_capabilities(self) -> dict[str, Any]:
        return {
            'tools': {'listChanged': False},
            'resources': {'subscribe': False, 'listChanged': False},
            'prompts': {'listChanged': False},
        }

    def get_server_info(self) -> dict[str, Any]:
        with self._lock:
            return {
                'name': self.name,
                'version': self.version,
                'description': self.description,
                'protocolVersion': self.protocol_version,
                'capabilities': self.get_capabilities(),
                'toolCount': len(self._tools),
                'resourceCount': len(self._resources),
                'promptCount': len(self._prompts),
            }

    # tools --------------------------------------------------------

    def register_tool(self, tool: Tool | Callable[..., Any]) -> Self:
        """Register a tool. Plain functions are wrapped in a Tool named
        after the function.

        Raises:
            ConfigurationError: if a tool with the same name exists.
        """
        if not isinstance(tool, Tool):
            tool = Tool(tool.__name__, tool)
        with self._lock:
            if tool.name in self._tools:
                raise ConfigurationError(
                    f"Tool '{tool.name}' already registered in MCP "
                    + f"server '{self.name}'"
                )
            self._tools[tool.name] = tool
        self.logger.debug(
            f"MCP server '{self.name}': registered tool '{tool.name}'"
        )
        return self

    def register_tools(
        self, tools: Iterable[Tool | Callable[..., Any]]
    ) -> Self:
        for t in tools:
            self.register_tool(t)
        return self

    def unregister_tool(self, name: str) -> bool:
        with self._lock:
            return self._tools.pop(name, None) is not None

    def has_tool(self, name: str) -> bool:
        with self._lock:
            return name in self._tools

    def get_tool(self, name: str) -> Tool | None:
        with self._lock:
            return self._tools.get(name)

    def get_tool_count(self) -> int:
        with self._lock:
            return len(self._tools)

    def clear_tools(self) -> Self:
        with self._lock:
            self._tools.clear()
        return self

    def list_tools(self) -> list[ToolSpec]:
        with self._lock:
            tools = list(self._tools.values())
        return [t.spec() for t in tools]

    def call_tool(
        self, name: str, arguments: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        """Invoke a tool, returning the result in MCP format. Tool
        failures are reported in the result with isError set.

        Raises:
            UnknownToolError: if the tool is not registered.
        """
        tool = self.get_tool(name)
        if tool is None:
            raise UnknownToolError(name)
        with self._lock:
            self._stats['tool_calls'] += 1
        try:
            text = tool.invoke_as_text(arguments)
            is_error = False
        except ToolExecutionError as e:
            self.logger.warning(f"MCP server '{self.name}': {e}")
            with self._lock:
                self._stats['tool_errors'] += 1
            text = str(e)
            is_error = True
        return {
            'content': [{'type': 'text', 'text': text}],
            'isError': is_error,
        }

    # resources ----------------------------------------------------

    def register_resource(
        self,
        uri: str,
        content: str | Callable[[], Any],
        *,
        name: str | None = None,
        description: str = "",
        mime_type: str = "text/plain",
    ) -> Self:
        """Register a resource. The content is a text, or a function
        producing it when the resource is read."""
        with self._lock:
            if uri in self._resources:
                raise ConfigurationError(
                    f"Resource '{uri}' already registered in MCP "
                    + f"server '{self.name}'"
                )
            self._resources[uri] = _Resource(
                uri, content, name or uri, description, mime_type
            )
        return self

    def unregister_resource(self, uri: str) -> bool:
        with self._lock:
            return self._resources.pop(uri, None) is not None

    def list_resources(self) -> list[dict[str, Any]]:
        with self._lock:
            return [r.describe() for r in self._resources.values()]

    def read_resource(self, uri: str) -> dict[str, Any]:
        with self._lock:
            resource = self._resources.get(uri)
        if resource is None:
            raise MCPError(f"Unknown resource: {uri}", INVALID_PARAMS)
        return {
            'contents': [
                {
                    'uri': uri,
                    'mimeType': resource.mime_type,
                    'text': resource.read(),
                }
            ]
        }

    # prompts ------------------------------------------------------

    def register_prompt(
        self,
        prompt: PromptDefinition | str,
        *,
        name: str | None = None,
        description: str = "",
    ) -> Self:
        """Register a prompt: a PromptDefinition (for example, from the
        prompt library), or a template text with {name} placeholders."""
        if isinstance(prompt, str):
            if not name:
                raise ConfigurationError("A prompt template needs a name")
            prompt = PromptDefinition(name=name, prompt=prompt)
        elif name and name != prompt.name:
            prompt = prompt.model_copy(update={'name': name})
        with self._lock:
            if prompt.name in self._prompts:
                raise ConfigurationError(
                    f"Prompt '{prompt.name}' already registered in MCP "
                    + f"server '{self.name}'"
                )
            self._prompts[prompt.name] = _Prompt(prompt, description)
        return self

    def unregister_prompt(self, name: str) -> bool:
        with self._lock:
            return self._prompts.pop(name, None) is not None

    def list_prompts(self) -> list[dict[str, Any]]:
        with self._lock:
            return [p.describe() for p in self._prompts.values()]

    def get_prompt(
        self, name: str, arguments: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        with self._lock:
            prompt = self._prompts.get(name)
        if prompt is None:
            raise MCPError(f"Unknown prompt: {name}", INVALID_PARAMS)
        messages = prompt.template.render(arguments)
        return {
            'description': prompt.description,
            'messages': [
                {
                    # system prompts are delivered as user messages
                    'role': 'assistant' if m.role == 'assistant' else 'user',
                    'content': {'type': 'text', 'text': m.text()},
                }
                for m in messages
            ],
        }

    # statistics ---------------------------------------------------

    @staticmethod
    def _new_stats() -> dict[str, Any]:
        return {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'tool_calls': 0,
            'tool_errors': 0,
            'methods': {},
            'started_at': datetime.now(timezone.utc).isoformat(),
        }

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            stats = dict(self._stats)
            stats['methods'] = dict(self._stats['methods'])
            return stats

    def reset_stats(self) -> Self:
        with self._lock:
            self._stats = self._new_stats()
        return self

    def _record(self, method: str | None, success: bool) -> None:
        with self._lock:
            self._stats['total_requests'] += 1
            key = 'successful_requests' if success else 'failed_requests'
            self._stats[key] += 1
            if method:
                methods = self._stats['methods']
                methods[method] = methods.get(method, 0) + 1

    # JSON-RPC -----------------------------------------------------

    def handle_request(
        self, request: str | bytes | Mapping[str, Any]
    ) -> dict[str, Any] | None:
        """Answer a JSON-RPC 2.0 request, given as a mapping or as JSON
        text. Returns the response object, or None for notifications.
        """
        if isinstance(request, (str, bytes)):
            try:
                request = json.loads(request)
            except ValueError as e:
                self._record(None, False)
                return _error_response(None, PARSE_ERROR, f"Parse error: {e}")

        if not isinstance(request, Mapping):
            self._record(None, False)
            return _error_response(None, INVALID_REQUEST, "Invalid request")

        request_id = request.get('id')
        method = request.get('method')
        if request.get('jsonrpc') != JSONRPC_VERSION or not isinstance(
            method, str
        ):
            self._record(None, False)
            return _error_response(
                request_id, INVALID_REQUEST, "Invalid request"
            )

        # notifications need no answer
        if 'id' not in request and method.startswith("notifications/"):
            self._record(method, True)
            return None

        params = request.get('params') or {}
        if not isinstance(params, Mapping):
            self._record(method, False)
            return _error_response(
                request_id, INVALID_PARAMS, "Params must be an object"
            )

        try:
            result = self._dispatch(method, params)
        except MCPError as e:
            self._record(method, False)
            return _error_response(
                request_id, e.code or INTERNAL_ERROR, e.message
            )
        except UnknownToolError as e:
            self._record(method, False)
            return _error_response(request_id, INVALID_PARAMS, str(e))
        except Exception as e:
            self.logger.error(
                f"MCP server '{self.name}': error in {method}: {e}"
            )
            self._record(method, False)
            return _error_response(
                request_id, INTERNAL_ERROR, f"Internal error: {e}"
            )

        self._record(method, True)
        return _result_response(request_id, result)

    def _dispatch(self, method: str, params: Mapping[str, Any]) -> Any:
        match method:
            case 'initialize':
                return {
                    'protocolVersion': self.protocol_version,
                    'capabilities': self.get_capabilities(),
                    'serverInfo': {
                        'name': self.name,
                        'version': self.version,
                    },
                    'instructions': self.description,
                }
            case 'ping':
                return {}
            case 'tools/list':
                return {'tools': [s.to_mcp() for s in self.list_tools()]}
            case 'tools/call':
                name = params.get('name')
                arguments = params.get('arguments') or {}
                if not isinstance(name, str) or not isinstance(
                    arguments, Mapping
                ):
                    raise MCPError(
                        "tools/call requires a tool name and an "
                        + "arguments object",
                        INVALID_PARAMS,
                    )
                return self.call_tool(name, arguments)
            case 'resources/list':
                return {'resources': self.list_resources()}
            case 'resources/read':
                uri = params.get('uri')
                if not isinstance(uri, str):
                    raise MCPError(
                        "resources/read requires a uri", INVALID_PARAMS
                    )
                return self.read_resource(uri)
            case 'prompts/list':
                return {'prompts': self.list_prompts()}
            case 'prompts/get':
                name = params.get('name')
                arguments = params.get('arguments') or {}
                if not isinstance(name, str) or not isinstance(
                    arguments, Mapping
                ):
                    raise MCPError(
                        "prompts/get requires a prompt name",
                        INVALID_PARAMS,
                    )
                return self.get_prompt(name, arguments)
            case _:
                raise MCPError(
                    f"Method not found: {method}", METHOD_NOT_FOUND
                )
