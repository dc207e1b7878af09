"""Configuration values for the streaming answer widgets."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List


def _env_str(name: str, default: str) -> str:
    """Read a string environment variable with a non-empty fallback."""
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value or default


def _env_int(name: str, default: int) -> int:
    """Read an integer environment variable with safe fallback."""
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    """Read a float environment variable with safe fallback."""
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    """Read a comma separated environment variable, dropping blank items."""
    raw = os.getenv(name)
    if raw is None:
        return list(default)
    items = [item.strip() for item in raw.split(",")]
    return [item for item in items if item] or list(default)


@dataclass
class Settings:
    """Runtime settings loaded from environment variables."""

    # Use default_factory so values are read when Settings() is instantiated,
    # not at module import time. This ensures load_dotenv() values are honored.
    base_url: str = field(default_factory=lambda: _env_str("RAG_BASE_URL", "http://localhost:8080/api/v1"))
    table: str = field(default_factory=lambda: _env_str("RAG_TABLE", ""))
    api_key: str = field(default_factory=lambda: _env_str("RAG_API_KEY", ""))
    summarizer_provider: str = field(default_factory=lambda: _env_str("RAG_SUMMARIZER_PROVIDER", "ollama"))
    summarizer_model: str = field(default_factory=lambda: _env_str("RAG_SUMMARIZER_MODEL", "gemma3:4b"))
    system_prompt: str = field(default_factory=lambda: _env_str("RAG_SYSTEM_PROMPT", ""))
    result_limit: int = field(default_factory=lambda: _env_int("RAG_RESULT_LIMIT", 10))
    fields: List[str] = field(default_factory=lambda: _env_list("RAG_FIELDS", ["content"]))
    connect_timeout_seconds: float = field(default_factory=lambda: _env_float("RAG_CONNECT_TIMEOUT", 10.0))
    read_timeout_seconds: float = field(default_factory=lambda: _env_float("RAG_READ_TIMEOUT", 300.0))
    history_path: Path = field(default_factory=lambda: Path(_env_str("RAG_HISTORY_PATH", "data/search_history.json")))
    history_max_results: int = field(default_factory=lambda: _env_int("RAG_HISTORY_MAX", 10))
    log_level: str = field(default_factory=lambda: _env_str("LOG_LEVEL", "WARNING"))

    def request_headers(self) -> Dict[str, str]:
        """Caller headers sent with every streaming request."""
        if not self.api_key:
            return {}
        return {"X-API-Key": self.api_key}

    def summarizer(self) -> Dict[str, str]:
        """Generator configuration forwarded to the remote service."""
        return {"provider": self.summarizer_provider, "model": self.summarizer_model}
