"""Agent run contract and the default tool-calling research agent.

An agent run is a single-pass async stream of event dicts. The gateway only
relies on two of them:

- ``{"type": "tool_end", "tool", "args", "duration"}`` per finished tool call
- ``{"type": "done", "answer", "iterations", "totalTime"}`` once, at the end

Anything else (thinking, tool_start, tool_error, answer_start) is for streaming
clients. A run that raises or stops without ``done`` has failed.
"""

import json
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Protocol

from .llm import LLMClient, LLMError
from .tools import ToolError, Toolbox

RESEARCH_SYSTEM = """
You are a research agent. Answer the user's question accurately and concisely.

- Use the available tools when the question needs current facts, figures or calculations.
- Prefer primary sources; cite URLs you relied on at the end of the answer.
- Do not guess. If the evidence is missing or conflicting, say so.
- When you have enough information, reply with the final answer and no tool calls.
""".strip()

MAX_ITERATIONS_ANSWER = (
    "Reached the maximum number of iterations ({max_iterations}) before finishing the research."
)


class Agent(Protocol):
    def run(self, query: str) -> AsyncIterator[Dict[str, Any]]: ...


AgentFactory = Callable[[str, int], Agent]


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {"input": raw}
    return parsed if isinstance(parsed, dict) else {"input": parsed}


def _tool_message(call_id: Any, content: Any) -> Dict[str, Any]:
    return {
        "role": "tool",
        "tool_call_id": call_id,
        "content": json.dumps(content, ensure_ascii=True, default=str),
    }


class ResearchAgent:
    def __init__(
        self,
        llm_client: LLMClient,
        toolbox: Toolbox,
        model: str,
        max_iterations: int,
        system_prompt: str = RESEARCH_SYSTEM,
    ):
        self.llm_client = llm_client
        self.toolbox = toolbox
        self.model = model
        self.max_iterations = max_iterations
        self.system_prompt = system_prompt

    def _done(self, answer: str, tool_calls: List[Dict[str, Any]], iterations: int, start: float) -> Dict[str, Any]:
        return {
            "type": "done",
            "answer": answer,
            "toolCalls": tool_calls,
            "iterations": iterations,
            "totalTime": _elapsed_ms(start),
        }

    async def run(self, query: str) -> AsyncIterator[Dict[str, Any]]:
        start = time.monotonic()
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": query},
        ]
        specs = self.toolbox.specs()
        tool_calls: List[Dict[str, Any]] = []
        for iteration in range(1, self.max_iterations + 1):
            data = await self.llm_client.chat_completion(self.model, messages, tools=specs or None)
            message = data["choices"][0].get("message") or {}
            content = (message.get("content") or "").strip()
            requested = message.get("tool_calls") or []

            if not requested:
                if not content:
                    raise LLMError(f"{self.model} returned an empty answer")
                yield {"type": "answer_start"}
                yield self._done(content, tool_calls, iteration, start)
                return

            if content:
                yield {"type": "thinking", "message": content}
            messages.append({"role": "assistant", "content": content or None, "tool_calls": requested})
            for call in requested:
                function = call.get("function") or {}
                name = str(function.get("name") or "")
                args = _parse_arguments(function.get("arguments"))
                yield {"type": "tool_start", "tool": name, "args": args}
                call_start = time.monotonic()
                try:
                    result = await self.toolbox.invoke(name, args)
                except ToolError as exc:
                    yield {"type": "tool_error", "tool": name, "args": args, "error": str(exc)}
                    messages.append(_tool_message(call.get("id"), {"error": str(exc)}))
                    continue
                duration = _elapsed_ms(call_start)
                tool_calls.append({"tool": name, "args": args, "result": result})
                yield {"type": "tool_end", "tool": name, "args": args, "result": result, "duration": duration}
                messages.append(_tool_message(call.get("id"), result))

        yield {"type": "answer_start"}
        yield self._done(
            MAX_ITERATIONS_ANSWER.format(max_iterations=self.max_iterations),
            tool_calls,
            max(self.max_iterations, 0),
            start,
        )


def default_agent_factory(llm_client: LLMClient, toolbox: Toolbox) -> AgentFactory:
    def factory(model: str, max_iterations: int) -> Agent:
        return ResearchAgent(llm_client, toolbox, model, max_iterations)

    return factory
