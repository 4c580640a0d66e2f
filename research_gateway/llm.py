import json
from typing import Any, Dict, List, Optional

import httpx


ALLOWED_ROLES = {"system", "user", "assistant", "tool"}


class LLMError(RuntimeError):
    """Backend rejected a request or returned something unusable."""


def _extract_error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except Exception:
        return response.text
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        for key in ("error", "detail", "message"):
            val = data.get(key)
            if isinstance(val, str) and val.strip():
                return val
    return json.dumps(data, ensure_ascii=True)


class LLMClient:
    """Async client for an OpenAI-compatible chat-completions API."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 120.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        # Requests for every model share one pool.
        self.client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_connections=32, max_keepalive_connections=16),
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _sanitize_messages(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        sanitized: List[Dict[str, Any]] = []
        for msg in messages or []:
            if not isinstance(msg, dict) or msg.get("role") not in ALLOWED_ROLES:
                continue
            # Assistant turns that only carry tool_calls have no content.
            if msg.get("content") is None and not msg.get("tool_calls"):
                continue
            sanitized.append(msg)
        return sanitized

    async def chat_completion(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        model = (model or "").strip()
        if not model:
            raise ValueError("model is required")
        cleaned = self._sanitize_messages(messages)
        if not cleaned:
            raise ValueError("messages must include at least one entry")
        payload: Dict[str, Any] = {"model": model, "messages": cleaned, "stream": False}
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        try:
            resp = await self.client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=self._headers(),
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = _extract_error_detail(exc.response)
            raise LLMError(f"HTTP {exc.response.status_code} from {model}: {detail}") from exc
        data = resp.json()
        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise LLMError(f"Empty completion from {model}")
        return data

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
