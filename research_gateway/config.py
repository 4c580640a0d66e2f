import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from dotenv import load_dotenv

from .chain import DEFAULT_MODEL, build_model_chain, parse_model_list

CONFIG_PATH = Path("config.json")
ENV_OVERRIDE_KEY = "GATEWAY_ENV_OVERRIDES_CONFIG"
ENV_OVERRIDE_TRUE = {"1", "true", "yes", "on"}


class GatewaySettings(BaseModel):
    # Model chain
    default_model: str = DEFAULT_MODEL
    fallback_models: List[str] = Field(default_factory=list)
    max_iterations_default: int = 10

    # OpenAI-compatible backend
    llm_base_url: str = "https://api.openai.com/v1"
    llm_api_key: Optional[str] = None
    llm_timeout_s: float = 120.0

    tavily_api_key: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 3100

    def model_chain(self, request_model: Optional[str] = None) -> List[str]:
        return build_model_chain(request_model, self.default_model, self.fallback_models)

    model_config = {"protected_namespaces": ()}


def _load_from_env() -> dict:
    load_dotenv()
    env_map = {
        "default_model": os.getenv("DEXTER_MODEL"),
        "fallback_models": os.getenv("DEXTER_FALLBACK_MODELS"),
        "max_iterations_default": os.getenv("MAX_ITERATIONS_DEFAULT"),
        "llm_base_url": os.getenv("LLM_BASE_URL") or os.getenv("OPENAI_BASE_URL"),
        "llm_api_key": os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY"),
        "llm_timeout_s": os.getenv("LLM_TIMEOUT_S"),
        "tavily_api_key": os.getenv("TAVILY_API_KEY"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
    }
    cleaned = {k: v for k, v in env_map.items() if v not in (None, "")}
    if "fallback_models" in cleaned:
        cleaned["fallback_models"] = parse_model_list(cleaned["fallback_models"])
    if "max_iterations_default" in cleaned:
        cleaned["max_iterations_default"] = int(cleaned["max_iterations_default"])
    if "llm_timeout_s" in cleaned:
        cleaned["llm_timeout_s"] = float(cleaned["llm_timeout_s"])
    if "port" in cleaned:
        cleaned["port"] = int(cleaned["port"])
    return cleaned


def _env_overrides_config() -> bool:
    return str(os.getenv(ENV_OVERRIDE_KEY, "")).strip().lower() in ENV_OVERRIDE_TRUE


def _normalize_file_data(file_data: Dict[str, Any]) -> Dict[str, Any]:
    """config.json may list fallbacks either as a JSON array or as the env-style comma string."""
    data = dict(file_data)
    fallbacks = data.get("fallback_models")
    if isinstance(fallbacks, str):
        data["fallback_models"] = parse_model_list(fallbacks)
    elif isinstance(fallbacks, list):
        data["fallback_models"] = parse_model_list(",".join(str(item) for item in fallbacks))
    return data


def load_settings(config_path: Optional[Path] = None) -> GatewaySettings:
    env_data = _load_from_env()
    path = config_path or CONFIG_PATH
    file_data: Dict[str, Any] = {}
    if path.exists():
        try:
            file_data = json.loads(path.read_text())
        except Exception:
            file_data = {}
    if not isinstance(file_data, dict):
        file_data = {}
    file_data = _normalize_file_data(file_data)
    # Config wins by default; allow env overrides only when explicitly enabled.
    if _env_overrides_config():
        merged = {**file_data, **env_data}
    else:
        merged = {**env_data, **file_data}
    for secret in ("llm_api_key", "tavily_api_key"):
        if not merged.get(secret) and env_data.get(secret):
            merged[secret] = env_data[secret]
    return GatewaySettings(**merged)
