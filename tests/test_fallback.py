import logging

import pytest

from research_gateway.fallback import (
    INCOMPLETE_RUN_MESSAGE,
    AllModelsFailedError,
    EventReducer,
    IncompleteRunError,
    ModelFallbackRunner,
    reduce_events,
)
from tests.fakes import FakeAgentFactory, done_event, tool_end_event


async def _stream(events):
    for event in events:
        yield event


@pytest.mark.asyncio
async def test_reduce_events_collects_tool_calls_in_order():
    events = [
        {"type": "thinking", "message": "planning"},
        tool_end_event("web_search", {"query": "one"}, duration=10.0),
        {"type": "tool_start", "tool": "calculator", "args": {}},
        tool_end_event("calculator", {"expression": "1+1"}, duration=None),
        tool_end_event("web_extract", {"urls": ["http://x"]}, duration=3.5),
        done_event(answer="Final", iterations=4, total_time=321.0),
    ]
    result = await reduce_events(_stream(events), "model-x")
    assert [call.tool for call in result.toolCalls] == ["web_search", "calculator", "web_extract"]
    assert result.toolCalls[0].args == {"query": "one"}
    assert result.toolCalls[1].duration is None
    assert result.answer == "Final"
    assert result.iterations == 4
    assert result.totalTime == 321.0
    assert result.model == "model-x"


@pytest.mark.asyncio
async def test_reduce_events_accepts_direct_answer_without_tools():
    result = await reduce_events(_stream([done_event(answer="Direct")]), "m")
    assert result.toolCalls == []
    assert result.answer == "Direct"


@pytest.mark.asyncio
async def test_reduce_events_without_done_is_incomplete():
    events = [tool_end_event("web_search"), tool_end_event("calculator")]
    with pytest.raises(IncompleteRunError):
        await reduce_events(_stream(events), "m")


def test_event_reducer_ignores_unknown_events():
    reducer = EventReducer()
    reducer.feed({"type": "answer_start"})
    reducer.feed({"type": "tool_error", "tool": "x", "error": "boom"})
    assert reducer.tool_calls == []
    assert reducer.completed is False


@pytest.mark.asyncio
async def test_runner_falls_back_until_a_model_succeeds(caplog):
    agents = FakeAgentFactory(
        scripts={
            "A": [tool_end_event("web_search"), RuntimeError("rate limited")],
            "B": [tool_end_event("web_search")],
            "C": [tool_end_event("calculator"), done_event(answer="From C")],
        }
    )
    runner = ModelFallbackRunner(agents)
    with caplog.at_level(logging.INFO, logger="uvicorn.error"):
        result = await runner.run("question", ["A", "B", "C"], 5)

    assert result.model == "C"
    assert result.answer == "From C"
    assert [call.tool for call in result.toolCalls] == ["calculator"]
    assert agents.models == ["A", "B", "C"]
    assert all(call["max_iterations"] == 5 for call in agents.calls)
    failures = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
    assert len(failures) == 2
    assert "A" in failures[0] and "rate limited" in failures[0]
    assert "B" in failures[1] and INCOMPLETE_RUN_MESSAGE in failures[1]


@pytest.mark.asyncio
async def test_runner_stops_at_first_success():
    agents = FakeAgentFactory(default_script=[done_event(answer="ok")])
    runner = ModelFallbackRunner(agents)
    result = await runner.run("question", ["A", "B", "C"], 3)
    assert result.model == "A"
    assert agents.models == ["A"]
    assert agents.agents[0].queries == ["question"]


@pytest.mark.asyncio
async def test_single_model_failure_reports_one_pair():
    agents = FakeAgentFactory(scripts={"A": [ValueError("bad key")]})
    runner = ModelFallbackRunner(agents)
    with pytest.raises(AllModelsFailedError) as excinfo:
        await runner.run("question", ["A"], 3)
    assert str(excinfo.value) == "All models failed. A: bad key"
    assert len(excinfo.value.failures) == 1


@pytest.mark.asyncio
async def test_all_failures_are_aggregated_in_order():
    agents = FakeAgentFactory(
        scripts={
            "A": [RuntimeError("timeout")],
            "B": [tool_end_event("web_search")],
            "C": [RuntimeError()],
        }
    )
    runner = ModelFallbackRunner(agents)
    with pytest.raises(AllModelsFailedError) as excinfo:
        await runner.run("question", ["A", "B", "C"], 3)
    failures = excinfo.value.failures
    assert [f.model for f in failures] == ["A", "B", "C"]
    assert failures[2].message == "RuntimeError()"
    assert str(excinfo.value) == (
        f"All models failed. A: timeout | B: {INCOMPLETE_RUN_MESSAGE} | C: RuntimeError()"
    )


@pytest.mark.asyncio
async def test_agent_factory_error_counts_as_attempt_failure():
    agents = FakeAgentFactory(default_script=[done_event(answer="second")])

    def factory(model, max_iterations):
        if model == "broken":
            raise RuntimeError("unknown model")
        return agents(model, max_iterations)

    runner = ModelFallbackRunner(factory)
    result = await runner.run("question", ["broken", "working"], 3)
    assert result.model == "working"


@pytest.mark.asyncio
async def test_stream_passes_events_through_and_marks_attempts():
    agents = FakeAgentFactory(
        scripts={
            "A": [{"type": "thinking", "message": "hmm"}, RuntimeError("boom")],
            "B": [tool_end_event("calculator"), done_event(answer="done")],
        }
    )
    runner = ModelFallbackRunner(agents)
    events = [event async for event in runner.stream("q", ["A", "B"], 4)]
    types = [event["type"] for event in events]
    assert types == [
        "attempt_start",
        "thinking",
        "attempt_failed",
        "attempt_start",
        "tool_end",
        "done",
        "result",
    ]
    assert events[1]["model"] == "A"
    assert events[2] == {"type": "attempt_failed", "model": "A", "error": "boom"}
    assert events[-1]["model"] == "B"
    assert events[-1]["answer"] == "done"
    assert len(events[-1]["toolCalls"]) == 1


@pytest.mark.asyncio
async def test_stream_ends_with_aggregate_error():
    agents = FakeAgentFactory(default_script=[RuntimeError("down")])
    runner = ModelFallbackRunner(agents)
    events = [event async for event in runner.stream("q", ["A", "B"], 4)]
    assert events[-1] == {"type": "error", "error": "All models failed. A: down | B: down"}
    assert [e["type"] for e in events].count("attempt_failed") == 2


@pytest.mark.asyncio
async def test_abandoned_stream_closes_the_agent_run():
    agents = FakeAgentFactory(
        default_script=[{"type": "thinking", "message": "hmm"}, tool_end_event("web_search"), done_event()]
    )
    runner = ModelFallbackRunner(agents)
    stream = runner.stream("q", ["A", "B"], 4)
    assert (await stream.__anext__())["type"] == "attempt_start"
    assert (await stream.__anext__())["type"] == "thinking"
    await stream.aclose()
    assert agents.models == ["A"]
    assert agents.agents[0].closed is True
