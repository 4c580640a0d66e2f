"""Model fallback: run the agent once per model in the chain until one finishes."""

import asyncio
import logging
from contextlib import aclosing
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional, Sequence

from .agent import AgentFactory
from .schemas import AttemptFailure, RunResult, ToolCallRecord

logger = logging.getLogger("uvicorn.error")

FAILURE_SEPARATOR = " | "
INCOMPLETE_RUN_MESSAGE = "agent run ended without a final answer"


class IncompleteRunError(RuntimeError):
    """The event stream ended before a done event arrived."""


class AllModelsFailedError(RuntimeError):
    def __init__(self, failures: Sequence[AttemptFailure]):
        self.failures: List[AttemptFailure] = list(failures)
        super().__init__(format_failures(self.failures))


def format_failures(failures: Sequence[AttemptFailure]) -> str:
    return "All models failed. " + FAILURE_SEPARATOR.join(str(f) for f in failures)


def describe_error(exc: BaseException) -> str:
    message = str(exc)
    return message if message else repr(exc)


class EventReducer:
    """Folds one run's events into a RunResult.

    Only tool_end and done matter here; a run without done never produces a result.
    """

    def __init__(self) -> None:
        self.tool_calls: List[ToolCallRecord] = []
        self.answer = ""
        self.iterations = 0
        self.total_time: float = 0
        self.completed = False

    def feed(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type") if isinstance(event, dict) else None
        if event_type == "tool_end":
            self.tool_calls.append(
                ToolCallRecord(
                    tool=str(event.get("tool") or ""),
                    args=dict(event.get("args") or {}),
                    duration=event.get("duration"),
                )
            )
        elif event_type == "done":
            self.answer = str(event.get("answer") or "")
            self.iterations = int(event.get("iterations") or 0)
            self.total_time = event.get("totalTime") or 0
            self.completed = True

    def result(self, model: str) -> RunResult:
        if not self.completed:
            raise IncompleteRunError(INCOMPLETE_RUN_MESSAGE)
        return RunResult(
            answer=self.answer,
            toolCalls=list(self.tool_calls),
            iterations=self.iterations,
            totalTime=self.total_time,
            model=model,
        )


async def reduce_events(events: AsyncIterable[Dict[str, Any]], model: str) -> RunResult:
    reducer = EventReducer()
    async for event in events:
        reducer.feed(event)
    return reducer.result(model)


class ModelFallbackRunner:
    def __init__(self, agent_factory: AgentFactory):
        self.agent_factory = agent_factory

    async def run_attempt(self, query: str, model: str, max_iterations: int) -> RunResult:
        agent = self.agent_factory(model, max_iterations)
        async with aclosing(agent.run(query)) as events:
            return await reduce_events(events, model)

    async def run(self, query: str, chain: Sequence[str], max_iterations: int) -> RunResult:
        failures: List[AttemptFailure] = []
        for model in chain:
            logger.info("[research] trying model: %s", model)
            try:
                return await self.run_attempt(query, model, max_iterations)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                message = describe_error(exc)
                logger.warning("[research] model %s failed: %s", model, message)
                failures.append(AttemptFailure(model=model, message=message))
        raise AllModelsFailedError(failures)

    async def stream(
        self, query: str, chain: Sequence[str], max_iterations: int
    ) -> AsyncIterator[Dict[str, Any]]:
        """Same attempt order as run(), but passes every agent event through.

        Adds attempt_start / attempt_failed markers, then a final result or error event.
        """
        failures: List[AttemptFailure] = []
        for model in chain:
            logger.info("[research] trying model: %s", model)
            yield {"type": "attempt_start", "model": model}
            reducer = EventReducer()
            result: Optional[RunResult] = None
            try:
                agent = self.agent_factory(model, max_iterations)
                async with aclosing(agent.run(query)) as events:
                    async for event in events:
                        reducer.feed(event)
                        yield {**event, "model": model}
                result = reducer.result(model)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                message = describe_error(exc)
                logger.warning("[research] model %s failed: %s", model, message)
                failures.append(AttemptFailure(model=model, message=message))
                yield {"type": "attempt_failed", "model": model, "error": message}
                continue
            yield {"type": "result", **result.model_dump()}
            return
        yield {"type": "error", "error": format_failures(failures)}
