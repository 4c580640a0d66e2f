import json
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class ResearchRequest(BaseModel):
    query: Optional[str] = None
    model: Optional[str] = None
    maxIterations: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def normalize_query(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(data, dict):
            return data
        query = data.get("query")
        if query is None or isinstance(query, str):
            return data
        # Any truthy JSON value is a query; falsy ones count as missing.
        return {**data, "query": json.dumps(query, ensure_ascii=False) if query else None}

    model_config = {"extra": "ignore", "protected_namespaces": ()}


class ToolCallRecord(BaseModel):
    tool: str
    args: Dict[str, Any] = Field(default_factory=dict)
    duration: Optional[float] = None


class RunResult(BaseModel):
    answer: str
    toolCalls: List[ToolCallRecord] = Field(default_factory=list)
    iterations: int = Field(default=0, ge=0)
    totalTime: float = 0
    model: str

    model_config = {"frozen": True, "protected_namespaces": ()}


class AttemptFailure(BaseModel):
    model: str
    message: str

    model_config = {"frozen": True, "protected_namespaces": ()}

    def __str__(self) -> str:
        return f"{self.model}: {self.message}"


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    primaryModel: str
    fallbackModels: List[str] = Field(default_factory=list)
