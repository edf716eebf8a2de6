"""Shared flowengine configuration utilities.

Centralises reading of ~/.flowengine/configuration.json so the CLI, the
scheduler and the built-in nodes share one set of defaults.

Example file::

    {
      "llm": {"provider": "openai", "model": "gpt-4o", "api_key_env_var": "OPENAI_API_KEY"},
      "cache": {"ttl": 300},
      "retry": {"max_attempts": 3, "base_delay": 1.0, "max_delay": 30.0},
      "logging": {"level": "INFO", "format": "auto"},
      "pricing": {"inputCostPer1M": 2.5, "outputCostPer1M": 10.0}
    }
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_PROVIDER = "openai"
DEFAULT_MODEL = "gpt-4o"
DEFAULT_CACHE_TTL = 300

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWENGINE_CONFIG_FILE = Path.home() / ".flowengine" / "configuration.json"


def get_engine_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from ~/.flowengine/configuration.json (or ``path``)."""
    config_file = path or FLOWENGINE_CONFIG_FILE
    if not config_file.exists():
        return {}
    try:
        with open(config_file, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _section(name: str) -> dict[str, Any]:
    section = get_engine_config().get(name, {})
    return section if isinstance(section, dict) else {}


def get_default_provider() -> str:
    return _section("llm").get("provider") or DEFAULT_PROVIDER


def get_default_model() -> str:
    return _section("llm").get("model") or DEFAULT_MODEL


def get_api_key() -> str | None:
    """Return the API key from the environment variable named in configuration."""
    api_key_env_var = _section("llm").get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None


def get_cache_ttl() -> int:
    return int(_section("cache").get("ttl", DEFAULT_CACHE_TTL))


def get_pricing() -> dict[str, float]:
    return dict(_section("pricing"))


# ---------------------------------------------------------------------------
# EngineConfig
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Engine configuration loaded from ~/.flowengine/configuration.json."""

    provider: str = field(default_factory=get_default_provider)
    model: str = field(default_factory=get_default_model)
    api_key: str | None = field(default_factory=get_api_key)
    default_cache_ttl: int = field(default_factory=get_cache_ttl)
    retry_max_attempts: int = field(
        default_factory=lambda: int(_section("retry").get("max_attempts", 3))
    )
    retry_base_delay: float = field(
        default_factory=lambda: float(_section("retry").get("base_delay", 1.0))
    )
    retry_max_delay: float = field(
        default_factory=lambda: float(_section("retry").get("max_delay", 30.0))
    )
    log_level: str = field(default_factory=lambda: _section("logging").get("level", "INFO"))
    log_format: str = field(default_factory=lambda: _section("logging").get("format", "auto"))
    pricing: dict[str, float] = field(default_factory=get_pricing)
