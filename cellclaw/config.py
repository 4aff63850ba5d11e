"""
CellClaw configuration.

Settings come from keyword arguments, environment variables
(:meth:`CellClawConfig.from_env`) or a YAML file
(:meth:`CellClawConfig.from_yaml`). API keys are held separately in a
:class:`KeyStore` so the config object can be logged safely.

Example YAML::

    provider: anthropic
    model: claude-sonnet-4-6
    max_iterations: 25
    database_url: sqlite:///./cellclaw.db
    tool_policies:
      sms.send: ask
      settings.get: auto
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from .exceptions import ConfigurationError

API_KEY_ENV_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None


class KeyStore:
    """Holds provider API keys. Values are never logged or repr'd."""

    def __init__(self, keys: Optional[dict[str, str]] = None) -> None:
        self._keys = {k: v for k, v in (keys or {}).items() if v}

    @classmethod
    def from_env(cls) -> "KeyStore":
        return cls(
            {
                provider: os.environ.get(var, "")
                for provider, var in API_KEY_ENV_VARS.items()
            }
        )

    def get_api_key(self, provider: str) -> Optional[str]:
        return self._keys.get(provider)

    def has_api_key(self, provider: str) -> bool:
        return bool(self._keys.get(provider))

    def store_api_key(self, provider: str, api_key: str) -> None:
        if not api_key or not api_key.strip():
            raise ConfigurationError(f"Refusing to store an empty API key for '{provider}'")
        self._keys[provider] = api_key.strip()

    def delete_api_key(self, provider: str) -> None:
        self._keys.pop(provider, None)

    def providers(self) -> list[str]:
        return sorted(self._keys)

    def __repr__(self) -> str:
        return f"KeyStore(providers={self.providers()})"


@dataclass
class CellClawConfig:
    """Runtime configuration for the agent core."""

    provider: str = "anthropic"
    model: str = ""
    max_tokens: int = 4096
    # 0 means unlimited.
    max_iterations: int = 0
    stream: bool = False
    parallel_tool_calls: bool = True
    failover: bool = False
    thinking_budget: int = 0

    user_name: str = ""
    personality_prompt: str = ""
    history_limit: int = 50

    database_url: Optional[str] = None
    log_level: str = "info"

    host: str = "127.0.0.1"
    port: int = 8765
    # When set, the HTTP API requires it in the X-API-Key header.
    api_token: Optional[str] = field(default=None, repr=False)

    tool_policies: dict[str, str] = field(default_factory=dict)
    api_keys: dict[str, str] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if self.max_tokens <= 0:
            raise ConfigurationError("max_tokens must be positive")
        if self.max_iterations < 0:
            raise ConfigurationError("max_iterations must be >= 0 (0 = unlimited)")
        self.provider = self.provider.lower()

    def key_store(self) -> KeyStore:
        """Key store seeded from the environment, overridden by explicit keys."""
        store = KeyStore.from_env()
        for provider, key in self.api_keys.items():
            if key:
                store.store_api_key(provider, key)
        return store

    @classmethod
    def from_env(cls) -> "CellClawConfig":
        """Create configuration from environment variables."""
        return cls(
            provider=os.environ.get("CELLCLAW_PROVIDER", "anthropic"),
            model=os.environ.get("CELLCLAW_MODEL", ""),
            max_tokens=_env_int("CELLCLAW_MAX_TOKENS", 4096),
            max_iterations=_env_int("CELLCLAW_MAX_ITERATIONS", 0),
            stream=_env_bool("CELLCLAW_STREAM"),
            failover=_env_bool("CELLCLAW_FAILOVER"),
            user_name=os.environ.get("CELLCLAW_USER_NAME", ""),
            database_url=os.environ.get("CELLCLAW_DATABASE_URL"),
            log_level=os.environ.get("CELLCLAW_LOG_LEVEL", "info"),
            host=os.environ.get("CELLCLAW_HOST", "127.0.0.1"),
            port=_env_int("CELLCLAW_PORT", 8765),
            api_token=os.environ.get("CELLCLAW_API_TOKEN") or None,
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "CellClawConfig":
        """Load configuration from a YAML mapping.

        Raises:
            ConfigurationError: Missing file, invalid YAML, or unknown keys.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")

        try:
            data = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"{path}: top level must be a mapping")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"{path}: unknown settings {', '.join(unknown)}")

        policies = data.get("tool_policies") or {}
        if not isinstance(policies, dict):
            raise ConfigurationError(f"{path}: tool_policies must be a mapping")
        data["tool_policies"] = {str(k): str(v).lower() for k, v in policies.items()}

        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        """Settings without secrets."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("api_keys", "api_token")
        }


def configure_logging(level: str = "info") -> None:
    """Install a root handler for the CLI and server entry points."""
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        raise ConfigurationError(f"Unknown log level: {level}")
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(max(numeric, logging.WARNING))
