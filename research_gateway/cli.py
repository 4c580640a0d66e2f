import argparse
import json
import sys
from typing import List, Optional

import httpx


DEFAULT_API_BASE = "http://127.0.0.1:3100"


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path


def _print_result(data: dict) -> None:
    print(data.get("answer") or "")
    tool_calls = data.get("toolCalls") or []
    print()
    print(f"Model: {data.get('model')}  iterations: {data.get('iterations')}  time: {data.get('totalTime')} ms")
    if tool_calls:
        print(f"Tool calls: {len(tool_calls)}")
        for call in tool_calls:
            duration = call.get("duration")
            suffix = f" ({duration} ms)" if duration is not None else ""
            print(f"- {call.get('tool')} {json.dumps(call.get('args') or {})}{suffix}")


def _print_event(event: dict) -> None:
    event_type = event.get("type")
    if event_type == "attempt_start":
        print(f"[{event.get('model')}] starting")
    elif event_type == "attempt_failed":
        print(f"[{event.get('model')}] failed: {event.get('error')}")
    elif event_type == "tool_start":
        print(f"[{event.get('model')}] {event.get('tool')} {json.dumps(event.get('args') or {})}")
    elif event_type == "tool_error":
        print(f"[{event.get('model')}] {event.get('tool')} error: {event.get('error')}")
    elif event_type == "thinking":
        print(f"[{event.get('model')}] {event.get('message')}")


def _build_payload(args: argparse.Namespace) -> dict:
    payload = {"query": args.query}
    if args.model:
        payload["model"] = args.model
    if args.max_iterations:
        payload["maxIterations"] = args.max_iterations
    return payload


def run_research(args: argparse.Namespace) -> int:
    base = args.base_url or DEFAULT_API_BASE
    with httpx.Client(timeout=args.timeout) as client:
        resp = client.post(_join_url(base, "/api/research"), json=_build_payload(args))
        data = resp.json()
        if resp.status_code >= 400:
            print(f"Research failed: HTTP {resp.status_code}: {data.get('error')}")
            return 1
    _print_result(data)
    return 0


def run_research_stream(args: argparse.Namespace) -> int:
    base = args.base_url or DEFAULT_API_BASE
    with httpx.Client(timeout=args.timeout) as client:
        with client.stream("POST", _join_url(base, "/api/research/stream"), json=_build_payload(args)) as resp:
            if resp.status_code >= 400:
                resp.read()
                print(f"Research failed: HTTP {resp.status_code}: {resp.json().get('error')}")
                return 1
            for line in resp.iter_lines():
                if not line.startswith("data:"):
                    continue
                event = json.loads(line[len("data:"):].strip())
                if event.get("type") == "result":
                    _print_result(event)
                    return 0
                if event.get("type") == "error":
                    print(f"Research failed: {event.get('error')}")
                    return 1
                _print_event(event)
    print("Stream ended without a result.")
    return 1


def run_health(args: argparse.Namespace) -> int:
    base = args.base_url or DEFAULT_API_BASE
    with httpx.Client() as client:
        resp = client.get(_join_url(base, "/api/health"), timeout=10)
        if resp.status_code >= 400:
            print(f"Health check failed: HTTP {resp.status_code}")
            return 1
        data = resp.json()
    print(f"Status: {data.get('status')}")
    print(f"Primary model: {data.get('primaryModel')}")
    fallbacks = data.get("fallbackModels") or []
    if fallbacks:
        print(f"Fallback models: {' -> '.join(fallbacks)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Research gateway CLI")
    parser.add_argument("--base-url", default=DEFAULT_API_BASE, help="Gateway base URL")
    subparsers = parser.add_subparsers(dest="command")

    research = subparsers.add_parser("research", help="Run a research query")
    research.add_argument("query", help="Question to research")
    research.add_argument("--model", help="Primary model override")
    research.add_argument("--max-iterations", type=int, help="Agent iteration budget")
    research.add_argument("--timeout", type=float, default=600, help="Request timeout in seconds")
    research.add_argument("--stream", action="store_true", help="Print agent progress while it runs")

    subparsers.add_parser("health", help="Show the configured model chain")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "research":
        return run_research_stream(args) if args.stream else run_research(args)
    if args.command == "health":
        return run_health(args)
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
