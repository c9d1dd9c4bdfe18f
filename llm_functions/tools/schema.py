"""
Schema 推断 — 从函数签名生成工具的 JSON schema。

参数名来自 ``inspect.signature``，类型来自 type hints，描述来自
Google 风格 docstring 的 ``Args:`` 段。签名无法获取时（例如 C 实现的
builtin）退化为 ``param0``、``param1`` 这样的占位名，不会抛错。

也可以用 :meth:`ToolSpec.build` 显式声明参数，完全不依赖反射。
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union, get_type_hints

logger = logging.getLogger("llm_functions.tools")

JSON_STRING = "string"
JSON_NUMBER = "number"
JSON_BOOLEAN = "boolean"

_PY_TO_JSON_TYPE: Dict[type, str] = {
    str: JSON_STRING,
    int: JSON_NUMBER,
    float: JSON_NUMBER,
    bool: JSON_BOOLEAN,
}


def json_type_for(py_type: Any) -> str:
    """Map a Python annotation to one of the primitive JSON type tags.

    ``Optional[X]`` unwraps to ``X``; anything unrecognised is ``"string"``.
    """
    origin = getattr(py_type, "__origin__", None)
    if origin is Union:
        args = [a for a in py_type.__args__ if a is not type(None)]
        if args:
            return json_type_for(args[0])
    return _PY_TO_JSON_TYPE.get(py_type, JSON_STRING)


def _unwrap_optional(py_type: Any) -> Any:
    if getattr(py_type, "__origin__", None) is Union:
        args = [a for a in py_type.__args__ if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return py_type


def _type_label(py_type: Any) -> str:
    if py_type is None or py_type is inspect.Parameter.empty:
        return "any"
    return getattr(py_type, "__name__", None) or str(py_type)


# ──────────────────────────────────────────────
# ToolParam / ToolSpec
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class ToolParam:
    """Description of a single tool parameter.

    Attributes:
        name: Parameter name as seen by the model.
        type: JSON type tag: ``"string"``, ``"number"`` or ``"boolean"``.
        description: Text shown to the model.
        required: Whether the model must supply it.
        default: Value used when an optional parameter is omitted.
        py_type: Python annotation used to coerce incoming values
            (``None`` means "derive from ``type``").
        positional: Pass the value positionally instead of by keyword.
    """

    name: str
    type: str = JSON_STRING
    description: str = ""
    required: bool = True
    default: Any = None
    py_type: Any = field(default=None, compare=False)
    positional: bool = False

    def to_property(self) -> Dict[str, Any]:
        prop: Dict[str, Any] = {"type": self.type}
        if self.description:
            prop["description"] = self.description
        return prop


@dataclass(frozen=True)
class ToolSpec:
    """Immutable, schema-described tool definition sent to the model."""

    name: str
    description: str = ""
    parameters: Tuple[ToolParam, ...] = ()

    @classmethod
    def build(
        cls,
        name: str,
        description: str = "",
        params: Sequence[Union[ToolParam, Tuple[str, str, str]]] = (),
    ) -> ToolSpec:
        """Declare a tool schema explicitly.

        ``params`` holds :class:`ToolParam` objects or ``(name, type, description)``
        tuples::

            ToolSpec.build("getWeather", "Weather at a point", [
                ("lat", "number", "Latitude"),
                ("lon", "number", "Longitude"),
            ])
        """
        built: List[ToolParam] = []
        for p in params:
            if not isinstance(p, ToolParam):
                p_name, p_type, p_desc = p
                p = ToolParam(name=p_name, type=p_type, description=p_desc)
            if p.type not in (JSON_STRING, JSON_NUMBER, JSON_BOOLEAN):
                raise ValueError(f"tools: parameter {p.name!r} has unsupported type {p.type!r}")
            built.append(p)
        return cls(name=name, description=description, parameters=tuple(built))

    @property
    def properties(self) -> Dict[str, Dict[str, Any]]:
        return {p.name: p.to_property() for p in self.parameters}

    @property
    def required(self) -> List[str]:
        return [p.name for p in self.parameters if p.required]

    def to_json_schema(self) -> Dict[str, Any]:
        parameters: Dict[str, Any] = {
            "type": "object",
            "properties": self.properties,
        }
        required = self.required
        if required:
            parameters["required"] = required
        return {
            "name": self.name,
            "description": self.description,
            "parameters": parameters,
        }

    def to_openai_schema(self) -> Dict[str, Any]:
        """Export in OpenAI function calling format::

            {"type": "function", "function": {"name": ..., "description": ..., "parameters": ...}}
        """
        return {"type": "function", "function": self.to_json_schema()}


# ──────────────────────────────────────────────
# Inference
# ──────────────────────────────────────────────


def _parse_docstring_args(docstring: str) -> Dict[str, str]:
    """Extract parameter descriptions from a Google-style ``Args:`` section."""
    descriptions: Dict[str, str] = {}
    if not docstring:
        return descriptions

    in_args = False
    current = ""
    parts: List[str] = []

    for line in docstring.splitlines():
        stripped = line.strip()

        if stripped.lower().startswith("args:"):
            in_args = True
            continue
        if not in_args:
            continue

        # Next section header (Returns:, Raises:, ...) ends the block
        if stripped.endswith(":") and ":" not in stripped[:-1] and " " not in stripped:
            break

        if ":" in stripped:
            if current:
                descriptions[current] = " ".join(parts).strip()
            name_part, _, desc_part = stripped.partition(":")
            # "name (type): description"
            current = name_part.split("(")[0].strip()
            parts = [desc_part.strip()]
        elif current and stripped:
            parts.append(stripped)

    if current:
        descriptions[current] = " ".join(parts).strip()
    return descriptions


def _declared_arity(fn: Callable) -> int:
    code = getattr(fn, "__code__", None)
    return getattr(code, "co_argcount", 0) if code is not None else 0


def _placeholder_params(fn: Callable) -> List[ToolParam]:
    return [
        ToolParam(
            name=f"param{i}",
            description=f"Parameter {i + 1} of type any",
            positional=True,
        )
        for i in range(_declared_arity(fn))
    ]


def infer_tool_spec(
    fn: Callable,
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> ToolSpec:
    """Build a :class:`ToolSpec` from *fn*'s signature and docstring.

    Never raises: if the signature is unavailable, parameters get
    placeholder names (``param0``, ``param1``, ...), so names should be
    treated as advisory.
    """
    tool_name = name or getattr(fn, "__name__", "") or type(fn).__name__
    docstring = inspect.getdoc(fn) or ""
    tool_desc = description or ""
    if not tool_desc and docstring:
        tool_desc = docstring.split("\n")[0].strip()

    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        logger.debug("No signature for %r, using placeholder parameter names", tool_name)
        return ToolSpec(name=tool_name, description=tool_desc, parameters=tuple(_placeholder_params(fn)))

    try:
        hints = get_type_hints(fn)
    except Exception:
        hints = {}

    arg_descs = _parse_docstring_args(docstring)

    params: List[ToolParam] = []
    for param_name, param in sig.parameters.items():
        if param_name in ("self", "cls"):
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue

        py_type = _unwrap_optional(hints.get(param_name, param.annotation))
        if py_type is inspect.Parameter.empty:
            py_type = None
        json_type = json_type_for(py_type)
        has_default = param.default is not inspect.Parameter.empty

        params.append(
            ToolParam(
                name=param_name,
                type=json_type,
                description=arg_descs.get(param_name)
                or f"The {param_name} parameter of type {_type_label(py_type)}",
                required=not has_default,
                default=param.default if has_default else None,
                py_type=py_type,
                positional=param.kind is inspect.Parameter.POSITIONAL_ONLY,
            )
        )

    return ToolSpec(name=tool_name, description=tool_desc, parameters=tuple(params))
