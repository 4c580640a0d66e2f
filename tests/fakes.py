import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence


def done_event(answer: str = "Test answer.", iterations: int = 1, total_time: float = 12.5) -> Dict[str, Any]:
    return {"type": "done", "answer": answer, "iterations": iterations, "totalTime": total_time}


def tool_end_event(tool: str, args: Optional[Dict[str, Any]] = None, duration: Optional[float] = 5.0) -> Dict[str, Any]:
    return {"type": "tool_end", "tool": tool, "args": args or {}, "result": "ok", "duration": duration}


class ScriptedAgent:
    """Replays a script of events; an Exception in the script is raised at that point."""

    def __init__(self, model: str, max_iterations: int, script: Sequence[Any], delay_seconds: float = 0.0) -> None:
        self.model = model
        self.max_iterations = max_iterations
        self.script = list(script)
        self.delay_seconds = delay_seconds
        self.queries: List[str] = []
        self.closed = False

    async def run(self, query: str):
        self.queries.append(query)
        try:
            for item in self.script:
                if self.delay_seconds:
                    await asyncio.sleep(self.delay_seconds)
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.closed = True


class FakeAgentFactory:
    def __init__(
        self,
        scripts: Optional[Dict[str, Sequence[Any]]] = None,
        default_script: Optional[Sequence[Any]] = None,
    ) -> None:
        self.scripts = scripts or {}
        self.default_script = default_script if default_script is not None else [done_event()]
        self.calls: List[Dict[str, Any]] = []
        self.agents: List[ScriptedAgent] = []

    @property
    def models(self) -> List[str]:
        return [call["model"] for call in self.calls]

    def __call__(self, model: str, max_iterations: int) -> ScriptedAgent:
        self.calls.append({"model": model, "max_iterations": max_iterations})
        agent = ScriptedAgent(model, max_iterations, self.scripts.get(model, self.default_script))
        self.agents.append(agent)
        return agent


def tool_call_message(name: str, arguments: Dict[str, Any], call_id: str = "call_1", content: str = "") -> Dict[str, Any]:
    return {
        "choices": [
            {
                "message": {
                    "role": "assistant",
                    "content": content,
                    "tool_calls": [
                        {
                            "id": call_id,
                            "type": "function",
                            "function": {"name": name, "arguments": json.dumps(arguments)},
                        }
                    ],
                }
            }
        ]
    }


def answer_message(content: str) -> Dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class FakeLLMClient:
    def __init__(self, responses: Optional[Sequence[Any]] = None) -> None:
        self.responses = list(responses or [answer_message("Test answer.")])
        self.calls: List[Dict[str, Any]] = []

    async def chat_completion(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        self.calls.append({"model": model, "messages": [dict(m) for m in messages], "tools": tools})
        idx = min(len(self.calls) - 1, len(self.responses) - 1)
        response = self.responses[idx]
        if isinstance(response, BaseException):
            raise response
        return response

    async def close(self) -> None:
        return None


class FakeTavilyClient:
    def __init__(
        self,
        api_key: Optional[str] = "test-key",
        search_response: Optional[Dict[str, Any]] = None,
        extract_response: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.api_key = api_key
        self.search_response = search_response
        self.extract_response = extract_response
        self.search_calls: List[Dict[str, Any]] = []
        self.extract_calls: List[Dict[str, Any]] = []

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def search(
        self,
        query: str,
        max_results: int = 5,
        topic: Optional[str] = None,
        time_range: Optional[str] = None,
        search_depth: str = "basic",
    ) -> Dict[str, Any]:
        self.search_calls.append(
            {"query": query, "max_results": max_results, "topic": topic, "time_range": time_range}
        )
        if self.search_response is not None:
            return self.search_response
        return {"results": []}

    async def extract(self, urls: List[str], extract_depth: str = "basic") -> Dict[str, Any]:
        self.extract_calls.append({"urls": urls, "extract_depth": extract_depth})
        if self.extract_response is not None:
            return self.extract_response
        return {"results": []}

    async def close(self) -> None:
        return None
