"""
ToolRegistry — 工具注册表、@tool 装饰器与按名称分发执行。

注册时生成 :class:`ToolSpec`，并把宿主函数包装成
``wrapper(args: dict) -> str``：调用时按每个参数声明的类型转换模型传来的 JSON 值。

注册表内部的 dict 没有加锁。注册应在进程初始化阶段完成；
如果注册可能与查找并发，调用方需要自行加锁。
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from llm_functions.core.errors import (
    ArgumentConversionError,
    ArgumentParseError,
    InvalidToolSignature,
    ToolError,
    ToolExecutionError,
    ToolNotFound,
)
from llm_functions.tools.schema import (
    JSON_BOOLEAN,
    JSON_NUMBER,
    ToolParam,
    ToolSpec,
    infer_tool_spec,
)

logger = logging.getLogger("llm_functions.tools")

ToolWrapper = Callable[[Dict[str, Any]], str]

_MISSING = object()


# ──────────────────────────────────────────────
# Argument coercion
# ──────────────────────────────────────────────


def _coerce(param: ToolParam, value: Any) -> Any:
    """Convert a decoded JSON value to the parameter's declared type."""
    target = param.py_type
    if target is None:
        if param.type == JSON_NUMBER:
            target = float
        elif param.type == JSON_BOOLEAN:
            target = bool
        else:
            # Unannotated: pass the JSON value through
            return value

    if target is bool:
        if isinstance(value, bool):
            return value
    elif target is int:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                return int(value)
            except (OverflowError, ValueError) as e:
                # inf / nan
                raise ArgumentConversionError(
                    f"tools: cannot convert parameter {param.name!r} ({value!r}) to int"
                ) from e
    elif target is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif target is str:
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    else:
        return value

    raise ArgumentConversionError(
        f"tools: cannot convert parameter {param.name!r} "
        f"({type(value).__name__}) to {target.__name__}"
    )


def _result_to_text(name: str, result: Any) -> str:
    if isinstance(result, str):
        return result
    if inspect.isawaitable(result):
        if hasattr(result, "close"):
            result.close()
        raise InvalidToolSignature(f"tools: {name!r} returned an awaitable; tools must be synchronous")
    if result is None or isinstance(result, tuple):
        raise InvalidToolSignature(f"tools: {name!r} must return exactly one value")
    if isinstance(result, (bool, int, float)):
        return str(result)
    if isinstance(result, (dict, list)):
        try:
            return json.dumps(result, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise InvalidToolSignature(
                f"tools: {name!r} returned {type(result).__name__} that is not JSON-serializable: {e}"
            ) from e
    raise InvalidToolSignature(
        f"tools: {name!r} returned {type(result).__name__}, which is not convertible to text"
    )


def _make_wrapper(spec: ToolSpec, fn: Callable) -> ToolWrapper:
    def wrapper(args: Dict[str, Any]) -> str:
        positional: List[Any] = []
        keywords: Dict[str, Any] = {}
        positional_done = False

        for p in spec.parameters:
            value = args.get(p.name, _MISSING)
            if value is None and not p.required:
                # null for an optional parameter means "use the default"
                value = _MISSING
            if value is _MISSING:
                if p.required:
                    raise ArgumentConversionError(f"tools: missing parameter: {p.name!r}")
                if p.positional:
                    positional_done = True
                continue

            converted = _coerce(p, value)
            if p.positional:
                if positional_done:
                    raise ArgumentConversionError(
                        f"tools: positional parameter {p.name!r} given after an omitted one"
                    )
                positional.append(converted)
            else:
                keywords[p.name] = converted

        try:
            result = fn(*positional, **keywords)
        except ToolError:
            raise
        except Exception as e:
            raise ToolExecutionError(f"tools: {spec.name!r} raised: {e}") from e

        return _result_to_text(spec.name, result)

    return wrapper


# ──────────────────────────────────────────────
# ToolRegistration
# ──────────────────────────────────────────────


@dataclass
class ToolRegistration:
    """A registered tool: its schema, the original handler and the wrapper."""

    spec: ToolSpec
    handler: Callable
    wrapper: ToolWrapper


# ──────────────────────────────────────────────
# ToolRegistry
# ──────────────────────────────────────────────


class ToolRegistry:
    """Central registry for tools.

    Usage::

        registry = ToolRegistry()

        def say_hi(name: str) -> str:
            return f"Hello there {name}"

        spec = registry.register("sayHi", "Greet the user by first name", say_hi)
        registry.execute("sayHi", '{"name": "John"}')   # "Hello there John"
    """

    def __init__(self) -> None:
        self._tools: Dict[str, ToolRegistration] = {}

    def register(
        self,
        name: str,
        description: str,
        fn: Callable,
        params: Optional[Sequence[ToolParam]] = None,
    ) -> ToolSpec:
        """Register *fn* under *name* and return its schema.

        When *params* is given the schema is taken from it as-is; otherwise it
        is inferred from *fn*'s signature.

        Raises:
            TypeError: If *fn* is not callable.
        """
        if not callable(fn):
            raise TypeError(f"tools: {name!r} must be registered with a callable, got {type(fn).__name__}")

        if params is not None:
            spec = ToolSpec.build(name, description, params)
        else:
            spec = infer_tool_spec(fn, name=name, description=description)

        if name in self._tools:
            logger.warning("Tool %r already registered, overwriting", name)
        self._tools[name] = ToolRegistration(spec=spec, handler=fn, wrapper=_make_wrapper(spec, fn))
        logger.debug("Tool registered: %s(%s)", name, ", ".join(p.name for p in spec.parameters))
        return spec

    def get(self, name: str) -> Optional[ToolRegistration]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def specs(self) -> List[ToolSpec]:
        return [r.spec for r in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def to_openai_schema(self, names: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        """Export tools (all, or the given *names*) for the ``tools`` request field."""
        if names is None:
            return [r.spec.to_openai_schema() for r in self._tools.values()]
        return [self._lookup(n).spec.to_openai_schema() for n in names]

    def _lookup(self, name: str) -> ToolRegistration:
        registration = self._tools.get(name)
        if registration is None:
            raise ToolNotFound(name)
        return registration

    # ─── Execution ───

    def execute(self, name: str, arguments: Union[str, Dict[str, Any], None] = "{}") -> str:
        """Execute a tool by name with JSON-encoded arguments.

        Returns:
            The tool's result as text.

        Raises:
            ToolNotFound: No tool is registered under *name*.
            ArgumentParseError: *arguments* is not a JSON object.
            ArgumentConversionError: A required argument is missing or has the wrong type.
            InvalidToolSignature: The tool did not return a single text-like value.
            ToolExecutionError: The tool itself raised.
        """
        registration = self._lookup(name)

        if isinstance(arguments, dict):
            args = arguments
        else:
            raw = (arguments or "").strip() or "{}"
            try:
                args = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ArgumentParseError(f"tools: error parsing arguments for {name!r}: {e}") from e
            if not isinstance(args, dict):
                raise ArgumentParseError(
                    f"tools: arguments for {name!r} must be a JSON object, got {type(args).__name__}"
                )

        logger.debug("Executing tool %s(%s)", name, args)
        return registration.wrapper(args)


# ──────────────────────────────────────────────
# Process-wide registry & @tool decorator
# ──────────────────────────────────────────────

default_registry = ToolRegistry()


def create_tool(name: str, description: str, fn: Callable, params: Optional[Sequence[ToolParam]] = None) -> ToolSpec:
    """Register *fn* in :data:`default_registry`."""
    return default_registry.register(name, description, fn, params=params)


def tool(
    fn: Optional[Callable] = None,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    registry: Optional[ToolRegistry] = None,
) -> Union[ToolSpec, Callable[[Callable], ToolSpec]]:
    """Decorator that registers a function and replaces it with its :class:`ToolSpec`.

    Can be used with or without arguments::

        @tool
        def get_weather(lat: float, lon: float) -> str:
            \"\"\"Current weather at a coordinate.\"\"\"
            ...

        @tool(name="sayHi", description="Greet the user")
        def say_hi(name: str) -> str: ...
    """

    def decorator(func: Callable) -> ToolSpec:
        target = registry if registry is not None else default_registry
        # An empty description falls back to the docstring's first line
        return target.register(name or func.__name__, description or "", func)

    if fn is not None:
        return decorator(fn)
    return decorator
