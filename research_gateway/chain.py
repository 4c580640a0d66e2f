"""Model chain construction: which backend models a request tries, in order."""

from typing import Iterable, List, Optional

DEFAULT_MODEL = "gpt-5.2"


def parse_model_list(raw: Optional[str]) -> List[str]:
    """Split a comma-separated model list, dropping blanks and keeping order."""
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def build_model_chain(
    request_model: Optional[str],
    default_model: Optional[str],
    fallback_models: Iterable[str],
) -> List[str]:
    """Primary model first, then each fallback that is not already in the chain.

    The primary is the per-request override when non-empty, else the configured
    default, else DEFAULT_MODEL. The result is never empty and never repeats a model.
    """
    primary = (request_model or "").strip() or (default_model or "").strip() or DEFAULT_MODEL
    chain = [primary]
    for candidate in fallback_models:
        candidate = (candidate or "").strip()
        if candidate and candidate not in chain:
            chain.append(candidate)
    return chain
