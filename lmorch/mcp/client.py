"""
MCP clients: call the tools of a MCP server.

Two clients speak the same JSON-RPC 2.0 protocol:

    - LocalMCPClient: a server in the same process
    - HttpMCPClient: a remote server, via HTTP POST requests

A client is best obtained with create_client, which accepts a server
object, the name of a server in the process-wide registry, or the URL
of a remote server:

    ```python
    from lmorch.mcp.client import create_client, call_tool

    client = create_client("https://tools.example.com/mcp")
    client.list_tools()
    client.call_tool("search", {'query': "MCP protocol"})

    # one-shot call
    call_tool("math", "add", {'a': 1, 'b': 2})   # '3'
    ```

Error objects in the server response are raised as MCPError. A tool
failure reported by the server in its result (isError) is raised as
ToolExecutionError.
"""

import itertools
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

import requests

from lmorch.config.config import MCPSettings
from lmorch.language_models.errors import (
    ConfigurationError,
    MCPError,
    ToolExecutionError,
)
from lmorch.language_models.messages import ToolSpec

from .registry import get_registry
from .server import JSONRPC_VERSION, MCPServer


class MCPClient(ABC):
    """Abstract base class of MCP clients."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._ids_lock = threading.Lock()

    @abstractmethod
    def send(self, payload: dict[str, Any]) -> Mapping[str, Any] | None:
        """Send a JSON-RPC request object and return the response
        object."""
        pass

    @abstractmethod
    def describe(self) -> str:
        """A description of the server reached by the client."""
        pass

    def _next_id(self) -> int:
        with self._ids_lock:
            return next(self._ids)

    def request(
        self, method: str, params: Mapping[str, Any] | None = None
    ) -> Any:
        """Send a request and return its result.

        Raises:
            MCPError: if the server answers with an error, or the
                response is not valid.
        """
        payload: dict[str, Any] = {
            'jsonrpc': JSONRPC_VERSION,
            'id': self._next_id(),
            'method': method,
        }
        if params is not None:
            payload['params'] = dict(params)
        response = self.send(payload)
        if not isinstance(response, Mapping):
            raise MCPError(
                f"Invalid response from {self.describe()} to {method}"
            )
        if 'error' in response:
            error = response['error'] or {}
            if not isinstance(error, Mapping):
                raise MCPError(str(error))
            raise MCPError(
                str(error.get('message', "Unknown error")),
                error.get('code'),
            )
        return response.get('result')

    def initialize(self) -> dict[str, Any]:
        return self.request(
            'initialize',
            {'protocolVersion': MCPSettings().protocol_version},
        )

    def ping(self) -> bool:
        self.request('ping')
        return True

    def list_tools(self) -> list[ToolSpec]:
        result = self.request('tools/list') or {}
        return [ToolSpec.from_mcp(t) for t in result.get('tools', [])]

    def has_tool(self, name: str) -> bool:
        return any(t.name == name for t in self.list_tools())

    def call_tool_raw(
        self, name: str, arguments: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        """The result of a tool call in MCP format."""
        return self.request(
            'tools/call', {'name': name, 'arguments': dict(arguments or {})}
        )

    def call_tool(
        self, name: str, arguments: Mapping[str, Any] | None = None
    ) -> str:
        """Call a tool and return the text of its result.

        Raises:
            ToolExecutionError: if the server reports a tool failure
            MCPError: if the server answers with an error
        """
        result = self.call_tool_raw(name, arguments) or {}
        text = "\n".join(
            str(item.get('text', ""))
            for item in result.get('content', [])
            if item.get('type') == 'text'
        )
        if result.get('isError'):
            raise ToolExecutionError(name, text or f"Tool '{name}' failed")
        return text

    def list_resources(self) -> list[dict[str, Any]]:
        result = self.request('resources/list') or {}
        return list(result.get('resources', []))

    def read_resource(self, uri: str) -> str:
        """The text of a resource."""
        result = self.request('resources/read', {'uri': uri}) or {}
        return "\n".join(
            str(item.get('text', "")) for item in result.get('contents', [])
        )

    def list_prompts(self) -> list[dict[str, Any]]:
        result = self.request('prompts/list') or {}
        return list(result.get('prompts', []))

    def get_prompt(
        self, name: str, arguments: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        return self.request(
            'prompts/get', {'name': name, 'arguments': dict(arguments or {})}
        )


class LocalMCPClient(MCPClient):
    """A client of a server in the same process."""

    def __init__(self, server: MCPServer):
        super().__init__()
        self.server = server

    def send(self, payload: dict[str, Any]) -> Mapping[str, Any] | None:
        return self.server.handle_request(payload)

    def describe(self) -> str:
        return f"MCP server '{self.server.name}'"


class HttpMCPClient(MCPClient):
    """A client of a remote server, sending JSON-RPC requests by HTTP
    POST.

    Args:
        base_url: the URL of the server endpoint
        timeout: the timeout of each request in seconds. The default
            is the timeout of the MCP settings.
        headers: additional headers of the requests
        token: a bearer token
        username, password: credentials for basic authentication
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float | None = None,
        headers: Mapping[str, str] | None = None,
        token: str | None = None,
        username: str | None = None,
        password: str | None = None,
        settings: MCPSettings | None = None,
    ):
        super().__init__()
        settings = settings or MCPSettings()
        self.base_url = base_url
        self.timeout = timeout if timeout is not None else settings.timeout
        self.headers: dict[str, str] = {
            'Content-Type': "application/json",
            'Accept': "application/json",
        }
        self.headers.update(headers or {})
        if token:
            self.headers['Authorization'] = f"Bearer {token}"
        self.auth: tuple[str, str] | None = (
            (username, password or "") if username else None
        )

    def with_header(self, name: str, value: str) -> 'HttpMCPClient':
        self.headers[name] = value
        return self

    def with_token(self, token: str) -> 'HttpMCPClient':
        return self.with_header('Authorization', f"Bearer {token}")

    def with_basic_auth(self, username: str, password: str) -> 'HttpMCPClient':
        self.auth = (username, password)
        return self

    def send(self, payload: dict[str, Any]) -> Mapping[str, Any] | None:
        try:
            response = requests.post(
                self.base_url,
                json=payload,
                headers=self.headers,
                timeout=self.timeout,
                auth=self.auth,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise MCPError(
                f"Request to {self.describe()} failed: {e}"
            ) from e
        try:
            return response.json()
        except ValueError as e:
            raise MCPError(
                f"Invalid JSON from {self.describe()}: {e}"
            ) from e

    def describe(self) -> str:
        return f"MCP server at {self.base_url}"


ServerRef = MCPClient | MCPServer | str


def create_client(server: ServerRef, **kwargs: Any) -> MCPClient:
    """A client of the server given as a client (returned as is), a
    server object, a name in the process-wide registry, or an http(s)
    URL. The keyword arguments are passed to HttpMCPClient.

    Raises:
        ConfigurationError: if the name is not registered.
    """
    match server:
        case MCPClient():
            return server
        case MCPServer():
            return LocalMCPClient(server)
        case str() if server.startswith(("http://", "https://")):
            return HttpMCPClient(server, **kwargs)
        case str():
            found = get_registry().get(server)
            if found is None:
                raise ConfigurationError(
                    f"No MCP server registered under '{server}'"
                )
            return LocalMCPClient(found)
        case _:
            raise TypeError(
                f"Invalid MCP server reference: {type(server).__name__}"
            )


def call_tool(
    server: ServerRef,
    tool_name: str,
    arguments: Mapping[str, Any] | None = None,
) -> str:
    """Call a tool of a server and return the text of its result."""
    return create_client(server).call_tool(tool_name, arguments)


def list_tools(server: ServerRef) -> list[ToolSpec]:
    return create_client(server).list_tools()
