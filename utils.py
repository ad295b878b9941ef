import os
from typing import Optional

_TRUTHY = {"1", "true", "yes", "on"}


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def env_int(name: str, default: int, minimum: Optional[int] = None) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        value = default
    if minimum is not None and value < minimum:
        value = minimum  # clamp to safe minimum
    return value


def env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def endpoint_tail(endpoint: str, size: int = 12) -> str:
    """Last characters of a push endpoint, for logs."""
    if not isinstance(endpoint, str):
        return str(endpoint)
    return endpoint[-size:] if len(endpoint) > size else endpoint
