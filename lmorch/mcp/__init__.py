"""Model Context Protocol servers and clients

- server: MCPServer, exposing tools, resources and prompts through
    JSON-RPC 2.0
- registry: the process-wide registry of servers by name
- client: local and HTTP clients of MCP servers
"""

# pyright: reportUnusedImport=false
# flake8: noqa

from .server import MCPServer
from .registry import (
    ServerRegistry,
    get_registry,
    set_registry,
    reset_registry,
    mcp_server,
)
from .client import (
    MCPClient,
    LocalMCPClient,
    HttpMCPClient,
    create_client,
    call_tool,
    list_tools,
)
