"""
Tool Calling — 把普通函数变成带 schema 的工具，并按名称分发执行。

Quick Start::

    from llm_functions.tools import ToolRegistry

    def get_weather(lat: float, lon: float) -> str:
        \"\"\"Current weather at a coordinate.\"\"\"
        return f"Sunny at ({lat}, {lon})"

    registry = ToolRegistry()
    spec = registry.register("getWeather", "Weather lookup", get_weather)

    # 导出给 LLM
    schema = spec.to_openai_schema()

    # 执行（参数为模型返回的 JSON 字符串）
    result = registry.execute("getWeather", '{"lat": 37.77, "lon": -122.42}')
"""

from llm_functions.tools.registry import (
    ToolRegistration,
    ToolRegistry,
    create_tool,
    default_registry,
    tool,
)
from llm_functions.tools.schema import ToolParam, ToolSpec, infer_tool_spec, json_type_for

__all__ = [
    "ToolRegistry",
    "ToolRegistration",
    "ToolSpec",
    "ToolParam",
    "create_tool",
    "default_registry",
    "infer_tool_spec",
    "json_type_for",
    "tool",
]
