"""Tools the default research agent can call through function calling."""

import ast
import asyncio
import math
import operator
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .tavily import TavilyClient, TavilyError

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any]]

TOOL_RESULT_MAX_CHARS = 6000


class ToolError(RuntimeError):
    pass


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    parameters: Dict[str, Any]
    handler: ToolHandler

    def spec(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class Toolbox:
    def __init__(self, tools: Optional[List[Tool]] = None):
        self._tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def specs(self) -> List[Dict[str, Any]]:
        return [tool.spec() for tool in self._tools.values()]

    async def invoke(self, name: str, args: Dict[str, Any]) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolError(f"Unknown tool: {name}")
        try:
            return await tool.handler(args)
        except ToolError:
            raise
        except (TavilyError, ValueError, TypeError, ArithmeticError, KeyError) as exc:
            raise ToolError(str(exc) or exc.__class__.__name__) from exc


SAFE_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.FloorDiv: operator.floordiv,
}
SAFE_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}
SAFE_NAMES: Dict[str, Any] = {
    "pi": math.pi,
    "e": math.e,
    "abs": abs,
    "round": round,
    "min": min,
    "max": max,
    "sum": sum,
    **{name: getattr(math, name) for name in ("sqrt", "log", "log10", "exp", "ceil", "floor")},
}
MAX_EXPONENT = 1000
MAX_RESULT_BITS = 10_000


def _checked_pow(left: Any, right: Any) -> Any:
    if abs(right) > MAX_EXPONENT:
        raise ValueError("Exponent too large")
    if isinstance(left, int) and isinstance(right, int) and right > 0:
        if abs(left).bit_length() * right > MAX_RESULT_BITS:
            raise ValueError("Result too large")
    return operator.pow(left, right)


def safe_eval_expr(expr: str) -> Any:
    """Evaluate an arithmetic expression (numbers, operators, a few math functions)."""
    tree = ast.parse(expr, mode="eval")

    def _eval(node: ast.AST) -> Any:
        if isinstance(node, ast.Expression):
            return _eval(node.body)
        if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
            return node.value
        if isinstance(node, (ast.Tuple, ast.List)):
            return [_eval(elt) for elt in node.elts]
        if isinstance(node, ast.BinOp) and type(node.op) in SAFE_BIN_OPS:
            left, right = _eval(node.left), _eval(node.right)
            if not isinstance(left, (int, float)) or not isinstance(right, (int, float)):
                raise ValueError("Operands must be numbers")
            if isinstance(node.op, ast.Pow):
                result = _checked_pow(left, right)
            else:
                result = SAFE_BIN_OPS[type(node.op)](left, right)
            if isinstance(result, int) and result.bit_length() > MAX_RESULT_BITS:
                raise ValueError("Result too large")
            return result
        if isinstance(node, ast.UnaryOp) and type(node.op) in SAFE_UNARY_OPS:
            return SAFE_UNARY_OPS[type(node.op)](_eval(node.operand))
        if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and not node.keywords:
            func = SAFE_NAMES.get(node.func.id)
            if not callable(func):
                raise ValueError(f"Function not allowed: {node.func.id}")
            return func(*[_eval(arg) for arg in node.args])
        if isinstance(node, ast.Name) and node.id in SAFE_NAMES:
            return SAFE_NAMES[node.id]
        raise ValueError("Disallowed expression")

    return _eval(tree)


def _truncate(value: Any) -> Any:
    if isinstance(value, str) and len(value) > TOOL_RESULT_MAX_CHARS:
        return value[:TOOL_RESULT_MAX_CHARS] + "..."
    return value


def _require_str(args: Dict[str, Any], key: str) -> str:
    value = str(args.get(key) or "").strip()
    if not value:
        raise ValueError(f"Missing required argument: {key}")
    return value


async def _current_date(args: Dict[str, Any]) -> str:
    return datetime.now(timezone.utc).isoformat()


async def _calculator(args: Dict[str, Any]) -> Any:
    expr = _require_str(args, "expression")
    try:
        return await asyncio.to_thread(safe_eval_expr, expr)
    except SyntaxError as exc:
        raise ValueError(f"Invalid expression: {expr}") from exc


def _web_search(tavily: TavilyClient) -> ToolHandler:
    async def handler(args: Dict[str, Any]) -> List[Dict[str, Any]]:
        query = _require_str(args, "query")
        max_results = max(1, min(10, int(args.get("max_results") or 5)))
        data = await tavily.search(
            query,
            max_results=max_results,
            topic=args.get("topic"),
            time_range=args.get("time_range"),
        )
        return [
            {
                "title": item.get("title") or "",
                "url": item.get("url") or "",
                "content": _truncate(item.get("content") or ""),
            }
            for item in data.get("results") or []
        ]

    return handler


def _web_extract(tavily: TavilyClient) -> ToolHandler:
    async def handler(args: Dict[str, Any]) -> List[Dict[str, Any]]:
        urls = args.get("urls")
        if isinstance(urls, str):
            urls = [urls]
        urls = [str(u).strip() for u in urls or [] if str(u).strip()]
        if not urls:
            raise ValueError("Missing required argument: urls")
        data = await tavily.extract(urls[:5])
        return [
            {"url": item.get("url") or "", "content": _truncate(item.get("raw_content") or "")}
            for item in data.get("results") or []
        ]

    return handler


def build_default_toolbox(tavily: Optional[TavilyClient] = None) -> Toolbox:
    toolbox = Toolbox(
        [
            Tool(
                name="current_date",
                description="Return the current UTC date and time in ISO 8601 format.",
                parameters={"type": "object", "properties": {}},
                handler=_current_date,
            ),
            Tool(
                name="calculator",
                description="Evaluate an arithmetic expression, e.g. '(1.05 ** 10) * 2500'.",
                parameters={
                    "type": "object",
                    "properties": {"expression": {"type": "string"}},
                    "required": ["expression"],
                },
                handler=_calculator,
            ),
        ]
    )
    if tavily is not None and tavily.enabled:
        toolbox.register(
            Tool(
                name="web_search",
                description="Search the web. Returns titles, URLs and snippets.",
                parameters={
                    "type": "object",
                    "properties": {
                        "query": {"type": "string"},
                        "max_results": {"type": "integer", "minimum": 1, "maximum": 10},
                        "topic": {"type": "string", "enum": ["general", "news", "finance"]},
                        "time_range": {"type": "string", "enum": ["day", "week", "month", "year"]},
                    },
                    "required": ["query"],
                },
                handler=_web_search(tavily),
            )
        )
        toolbox.register(
            Tool(
                name="web_extract",
                description="Fetch the readable text of up to five web pages.",
                parameters={
                    "type": "object",
                    "properties": {"urls": {"type": "array", "items": {"type": "string"}}},
                    "required": ["urls"],
                },
                handler=_web_extract(tavily),
            )
        )
    return toolbox
