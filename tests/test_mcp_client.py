"""Test the local and HTTP clients of MCP servers"""

# pyright: basic

import unittest
from unittest.mock import MagicMock, patch

import requests

from lmorch.language_models.errors import (
    ConfigurationError,
    MCPError,
    ToolExecutionError,
)
from lmorch.language_models.tools import tool
from lmorch.mcp.client import (
    HttpMCPClient,
    LocalMCPClient,
    call_tool,
    create_client,
    list_tools,
)
from lmorch.mcp.registry import mcp_server, reset_registry
from lmorch.mcp.server import METHOD_NOT_FOUND, MCPServer
from lmorch.utils.logging import LoglistLogger


@tool(description="Adds two numbers")
def add(a: int, b: int) -> int:
    return a + b


@tool
def fail() -> str:
    """Always fails"""
    raise RuntimeError("disk full")


def http_response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


class TestLocalClient(unittest.TestCase):
    def setUp(self):
        self.server = MCPServer("math", logger=LoglistLogger())
        self.server.register_tools([add, fail])
        self.server.register_resource("math://pi", "3.14159")
        self.server.register_prompt("Solve {problem}", name="solve")
        self.client = LocalMCPClient(self.server)

    def test_initialize_and_ping(self):
        info = self.client.initialize()
        self.assertEqual(info['serverInfo']['name'], "math")
        self.assertTrue(self.client.ping())

    def test_list_tools(self):
        specs = self.client.list_tools()
        self.assertEqual([s.name for s in specs], ["add", "fail"])
        self.assertEqual(specs[0].description, "Adds two numbers")
        self.assertTrue(self.client.has_tool("add"))
        self.assertFalse(self.client.has_tool("subtract"))

    def test_call_tool(self):
        self.assertEqual(self.client.call_tool("add", {'a': 4, 'b': 5}), "9")

    def test_call_tool_failure(self):
        with self.assertRaises(ToolExecutionError) as ctx:
            self.client.call_tool("fail")
        self.assertIn("disk full", str(ctx.exception))

    def test_call_unknown_tool(self):
        with self.assertRaises(MCPError):
            self.client.call_tool("missing")

    def test_resources_and_prompts(self):
        self.assertEqual(self.client.list_resources()[0]['uri'], "math://pi")
        self.assertEqual(self.client.read_resource("math://pi"), "3.14159")
        self.assertEqual(self.client.list_prompts()[0]['name'], "solve")
        prompt = self.client.get_prompt("solve", {'problem': "x + 1 = 2"})
        self.assertEqual(
            prompt['messages'][0]['content']['text'], "Solve x + 1 = 2"
        )

    def test_error_code(self):
        with self.assertRaises(MCPError) as ctx:
            self.client.request('tools/destroy')
        self.assertEqual(ctx.exception.code, METHOD_NOT_FOUND)

    def test_request_ids(self):
        sent: list[dict] = []
        original = self.client.send

        def record(payload):
            sent.append(payload)
            return original(payload)

        self.client.send = record  # type: ignore
        self.client.ping()
        self.client.ping()
        self.assertEqual([p['id'] for p in sent], [1, 2])


class TestHttpClient(unittest.TestCase):
    def test_defaults(self):
        client = HttpMCPClient("https://tools.example.com/mcp")
        self.assertEqual(client.timeout, 30.0)
        self.assertEqual(client.headers['Content-Type'], "application/json")
        self.assertIsNone(client.auth)

    def test_auth(self):
        client = HttpMCPClient("https://x", token="secret", username="ada", password="pw")
        self.assertEqual(client.headers['Authorization'], "Bearer secret")
        self.assertEqual(client.auth, ("ada", "pw"))
        client.with_token("other").with_header("X-Trace", "1").with_basic_auth("bob", "pw2")
        self.assertEqual(client.headers['Authorization'], "Bearer other")
        self.assertEqual(client.headers['X-Trace'], "1")
        self.assertEqual(client.auth, ("bob", "pw2"))

    @patch('lmorch.mcp.client.requests.post')
    def test_call_tool(self, post):
        post.return_value = http_response(
            {
                'jsonrpc': "2.0",
                'id': 1,
                'result': {
                    'content': [{'type': 'text', 'text': "42"}],
                    'isError': False,
                },
            }
        )
        client = HttpMCPClient("https://tools.example.com/mcp", timeout=5)
        self.assertEqual(client.call_tool("answer", {'q': "life"}), "42")

        args, kwargs = post.call_args
        self.assertEqual(args[0], "https://tools.example.com/mcp")
        self.assertEqual(kwargs['json']['method'], "tools/call")
        self.assertEqual(
            kwargs['json']['params'],
            {'name': "answer", 'arguments': {'q': "life"}},
        )
        self.assertEqual(kwargs['timeout'], 5)

    @patch('lmorch.mcp.client.requests.post')
    def test_list_tools(self, post):
        post.return_value = http_response(
            {
                'jsonrpc': "2.0",
                'id': 1,
                'result': {
                    'tools': [
                        {
                            'name': "search",
                            'description': "Web search",
                            'inputSchema': {
                                'type': 'object',
                                'properties': {'query': {'type': 'string'}},
                            },
                        }
                    ]
                },
            }
        )
        specs = HttpMCPClient("https://x").list_tools()
        self.assertEqual(specs[0].name, "search")
        self.assertIn('query', specs[0].input_schema['properties'])

    @patch('lmorch.mcp.client.requests.post')
    def test_error_object(self, post):
        post.return_value = http_response(
            {
                'jsonrpc': "2.0",
                'id': 1,
                'error': {'code': -32601, 'message': "Method not found"},
            }
        )
        with self.assertRaises(MCPError) as ctx:
            HttpMCPClient("https://x").ping()
        self.assertEqual(ctx.exception.code, -32601)

    @patch('lmorch.mcp.client.requests.post')
    def test_error_not_a_mapping(self, post):
        post.return_value = http_response(
            {'jsonrpc': "2.0", 'id': 1, 'error': "server overloaded"}
        )
        with self.assertRaises(MCPError) as ctx:
            HttpMCPClient("https://x").ping()
        self.assertIsNone(ctx.exception.code)
        self.assertIn("server overloaded", str(ctx.exception))

    @patch('lmorch.mcp.client.requests.post')
    def test_transport_error(self, post):
        post.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(MCPError):
            HttpMCPClient("https://x").ping()

    @patch('lmorch.mcp.client.requests.post')
    def test_invalid_json(self, post):
        response = http_response(None)
        response.json.side_effect = ValueError("no JSON")
        post.return_value = response
        with self.assertRaises(MCPError):
            HttpMCPClient("https://x").ping()


class TestCreateClient(unittest.TestCase):
    def setUp(self):
        reset_registry()

    def tearDown(self):
        reset_registry()

    def test_references(self):
        server = MCPServer("local")
        self.assertIsInstance(create_client(server), LocalMCPClient)
        client = LocalMCPClient(server)
        self.assertIs(create_client(client), client)
        self.assertIsInstance(
            create_client("http://localhost:8000/mcp"), HttpMCPClient
        )

    def test_registered_name(self):
        mcp_server("math").register_tool(add)
        self.assertEqual(call_tool("math", "add", {'a': 1, 'b': 2}), "3")
        self.assertEqual([s.name for s in list_tools("math")], ["add"])

    def test_unregistered_name(self):
        with self.assertRaises(ConfigurationError):
            create_client("nowhere")

    def test_invalid_reference(self):
        with self.assertRaises(TypeError):
            create_client(42)  # type: ignore

    def test_http_kwargs(self):
        client = create_client("https://x", token="t")
        self.assertEqual(client.headers['Authorization'], "Bearer t")  # type: ignore


if __name__ == "__main__":
    unittest.main()
