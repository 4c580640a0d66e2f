from typing import Any, Dict, List, Optional

import httpx

TAVILY_BASE_URL = "https://api.tavily.com"
ALLOWED_TOPICS = {"general", "news", "finance"}


class TavilyError(RuntimeError):
    pass


class TavilyClient:
    def __init__(self, api_key: Optional[str], base_url: str = TAVILY_BASE_URL, timeout: float = 60):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=timeout)

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
        payload: Dict[str, Any] = {
            "query": query,
            "search_depth": search_depth,
            "max_results": max_results,
        }
        cleaned_topic = str(topic or "").strip().lower()
        if cleaned_topic in ALLOWED_TOPICS:
            payload["topic"] = cleaned_topic
        if time_range:
            payload["time_range"] = time_range
        return await self._post("/search", payload)

    async def extract(self, urls: List[str], extract_depth: str = "basic") -> Dict[str, Any]:
        return await self._post("/extract", {"urls": urls, "extract_depth": extract_depth})

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.enabled:
            raise TavilyError("Tavily API key is not configured")
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"}
        try:
            resp = await self.client.post(f"{self.base_url}{path}", json=payload, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TavilyError(f"Tavily {path} returned HTTP {exc.response.status_code}") from exc
        except httpx.RequestError as exc:
            raise TavilyError(f"Tavily {path} request failed: {exc}") from exc
        return resp.json()

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
