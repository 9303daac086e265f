"""
Registry of MCP servers by name.

The registry creates servers on first request and returns the same
server to every later request with the same name. Creation is atomic:
two threads asking at the same time for a new name obtain the same
server. Requesting a server with force=True replaces the registered
server with a new, empty one; servers obtained before remain usable
but are no longer reachable through the registry.

The process-wide registry is obtained with get_registry. Its lifecycle
is explicit: set_registry installs another registry (for example in
tests), and reset_registry replaces it with an empty one.

Example:

    ```python
    from lmorch.mcp.registry import mcp_server, get_registry

    docs = mcp_server("docs")
    assert mcp_server("docs") is docs
    get_registry().list_servers()   # {'docs'}
    ```
"""

import threading
from collections.abc import Callable
from typing import Any

from lmorch.config.config import MCPSettings
from lmorch.language_models.errors import ConfigurationError
from lmorch.language_models.lazy_dict import LazyLoadingDict
from lmorch.language_models.tools import Tool
from lmorch.utils import logger as default_logger
from lmorch.utils.logging import LoggerBase

from .server import MCPServer


def _keep_server(server: MCPServer) -> None:
    # removed servers are not destroyed: handles held elsewhere stay valid
    pass


class ServerRegistry:
    """A thread-safe mapping of names to MCP servers."""

    def __init__(
        self,
        settings: MCPSettings | None = None,
        logger: LoggerBase = default_logger,
    ):
        self.settings = settings or MCPSettings()
        self.logger = logger
        self._servers: LazyLoadingDict[str, MCPServer] = LazyLoadingDict(
            self._create_server, _keep_server
        )

    def _create_server(self, name: str) -> MCPServer:
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError("MCP server name cannot be empty")
        self.logger.debug(f"Creating MCP server '{name}'")
        return MCPServer(name, settings=self.settings, logger=self.logger)

    def get_or_create(
        self, name: str | None = None, force: bool = False
    ) -> MCPServer:
        """The server registered under name, created if needed. With
        force, a new server replaces the registered one."""
        if name is None:
            name = self.settings.default_server
        if force:
            return self._servers.replace(name)
        return self._servers[name]

    def get(self, name: str) -> MCPServer | None:
        """The server registered under name, or None. Does not create
        servers."""
        return dict.get(self._servers, name)

    def register_tool(
        self, server: MCPServer | str, tool: Tool | Callable[..., Any]
    ) -> MCPServer:
        """Register a tool in a server, given by name or object.

        Raises:
            ConfigurationError: if the server has a tool with the same
                name.
        """
        if isinstance(server, str):
            server = self.get_or_create(server)
        return server.register_tool(tool)

    def list_servers(self) -> set[str]:
        return set(self._servers.keys())

    def has_server(self, name: str) -> bool:
        return name in self._servers

    def remove_server(self, name: str) -> bool:
        try:
            del self._servers[name]
        except KeyError:
            return False
        return True

    def clear_all(self) -> None:
        self._servers.clear()


_registry: ServerRegistry | None = None
_registry_lock = threading.Lock()


def get_registry() -> ServerRegistry:
    """The process-wide registry, created on first use."""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = ServerRegistry()
        return _registry


def set_registry(registry: ServerRegistry) -> None:
    global _registry
    with _registry_lock:
        _registry = registry


def reset_registry() -> ServerRegistry:
    """Replace the process-wide registry with an empty one."""
    registry = ServerRegistry()
    set_registry(registry)
    return registry


def mcp_server(name: str | None = None, force: bool = False) -> MCPServer:
    """The server registered under name in the process-wide registry,
    created if needed. The default name is taken from the MCP
    settings."""
    return get_registry().get_or_create(name, force)
