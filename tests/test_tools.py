"""Test tools and tool sets"""

import unittest

from pydantic import BaseModel

from lmorch.language_models.errors import (
    ConfigurationError,
    ToolExecutionError,
    UnknownToolError,
)
from lmorch.language_models.messages import ToolCall
from lmorch.language_models.tools import Tool, ToolSet, tool, to_text


def get_weather(city: str, unit: str = "C") -> str:
    """The current weather in a city"""
    return f"22 degrees {unit} in {city}"


def divide(a: float, b: float) -> float:
    return a / b


class Point(BaseModel):
    x: int
    y: int


class TestTool(unittest.TestCase):
    def test_description_from_docstring(self):
        weather = Tool("get_weather", get_weather)
        self.assertEqual(weather.description, "The current weather in a city")

    def test_empty_name(self):
        with self.assertRaises(ConfigurationError):
            Tool("  ", get_weather)

    def test_not_callable(self):
        with self.assertRaises(ConfigurationError):
            Tool("x", "not a function")  # type: ignore

    def test_input_schema(self):
        weather = Tool("get_weather", get_weather).describe_args(
            city="Name of the city", unit="C or F"
        )
        schema = weather.input_schema()
        self.assertEqual(schema['type'], 'object')
        self.assertEqual(list(schema['properties']), ['city', 'unit'])
        self.assertEqual(schema['properties']['city']['type'], 'string')
        self.assertEqual(
            schema['properties']['city']['description'], "Name of the city"
        )
        self.assertEqual(schema['required'], ['city'])

    def test_schema_types(self):
        def fn(n: int, x: float, flag: bool, items: list[str], opt: int | None = None):
            return n

        props = Tool("fn", fn).input_schema()['properties']
        self.assertEqual(props['n'], {'type': 'integer'})
        self.assertEqual(props['x'], {'type': 'number'})
        self.assertEqual(props['flag'], {'type': 'boolean'})
        self.assertEqual(props['items'], {'type': 'array'})
        self.assertEqual(props['opt'], {'type': 'integer'})

    def test_schema_pydantic_argument(self):
        def fn(point: Point) -> int:
            return 0

        props = Tool("fn", fn).input_schema()['properties']
        self.assertIn('x', props['point']['properties'])

    def test_describe_arg_pairs(self):
        weather = Tool("get_weather", get_weather)
        result = weather.describe_args([("unit", "C or F"), ("city", "City")])
        self.assertIs(result, weather)
        self.assertEqual(list(weather.argument_descriptions), ['unit', 'city'])

    def test_invoke(self):
        weather = Tool("get_weather", get_weather)
        self.assertEqual(
            weather.invoke({'city': "Rome"}), "22 degrees C in Rome"
        )
        self.assertEqual(weather(city="Oslo", unit="F"), "22 degrees F in Oslo")

    def test_invoke_invalid_arguments(self):
        weather = Tool("get_weather", get_weather)
        with self.assertRaises(ToolExecutionError) as ctx:
            weather.invoke({'town': "Rome"})
        self.assertEqual(ctx.exception.tool_name, "get_weather")

    def test_invoke_raising(self):
        tl = Tool("divide", divide)
        with self.assertRaises(ToolExecutionError) as ctx:
            tl.invoke({'a': 1, 'b': 0})
        self.assertIn("division by zero", str(ctx.exception))

    def test_type_error_in_body(self):
        def concat(a: str, b: str) -> str:
            return a + b

        tl = Tool("concat", concat)
        with self.assertRaises(ToolExecutionError) as ctx:
            tl.invoke({'a': "x", 'b': 1})
        self.assertIn("raised an error", str(ctx.exception))
        self.assertNotIn("Invalid arguments", str(ctx.exception))

    def test_invoke_as_text(self):
        tl = Tool("divide", divide)
        self.assertEqual(tl.invoke_as_text({'a': 1, 'b': 2}), "0.5")


class TestToolDecorator(unittest.TestCase):
    def test_bare_decorator(self):
        @tool
        def now() -> str:
            """The current time"""
            return "12:00"

        self.assertIsInstance(now, Tool)
        self.assertEqual(now.name, "now")
        self.assertEqual(now.description, "The current time")

    def test_decorator_with_arguments(self):
        @tool(name="sum", description="Adds", args={'a': "first"})
        def add(a: int, b: int) -> int:
            return a + b

        self.assertEqual(add.name, "sum")
        self.assertEqual(add.description, "Adds")
        self.assertEqual(add.invoke({'a': 1, 'b': 2}), 3)
        self.assertEqual(
            add.spec().input_schema['properties']['a']['description'],
            "first",
        )


class TestToText(unittest.TestCase):
    def test_conversions(self):
        self.assertEqual(to_text(None), "")
        self.assertEqual(to_text("x"), "x")
        self.assertEqual(to_text(3), "3")
        self.assertEqual(to_text({'a': 1}), '{"a": 1}')
        self.assertEqual(to_text(Point(x=1, y=2)), '{"x":1,"y":2}')


class TestToolSet(unittest.TestCase):
    def test_duplicate_name(self):
        tools = ToolSet([Tool("get_weather", get_weather)])
        with self.assertRaises(ConfigurationError):
            tools.add(Tool("get_weather", divide))

    def test_lookup(self):
        tools = ToolSet([Tool("get_weather", get_weather), Tool("divide", divide)])
        self.assertEqual(tools.names(), ["get_weather", "divide"])
        self.assertIn("divide", tools)
        self.assertTrue(tools.has("divide"))
        self.assertEqual(len(tools), 2)
        self.assertEqual([s.name for s in tools.specs()], tools.names())
        self.assertTrue(tools.remove("divide"))
        self.assertFalse(tools.remove("divide"))
        self.assertIsNone(tools.get("divide"))

    def test_execute(self):
        tools = ToolSet([Tool("divide", divide)])
        call = ToolCall(id="1", name="divide", arguments={'a': 6, 'b': 3})
        self.assertEqual(tools.execute(call), "2.0")

    def test_execute_unknown(self):
        tools = ToolSet()
        with self.assertRaises(UnknownToolError):
            tools.execute(ToolCall(id="1", name="missing"))


if __name__ == "__main__":
    unittest.main()
