"""
Static configuration for the relay.

Providers are declared in a JSON file, in the order they should be
connected:

    {
      "providers": [
        {"name": "echo", "transport": "subprocess",
         "command": "python3 -m mcp_relay.servers.echo"},
        {"name": "weather", "transport": "streamable-http",
         "url": "http://localhost:3000/mcp", "enabled": false}
      ]
    }

Everything here is validated before any connection is attempted, so a
malformed file fails fast instead of half-connecting.
"""

from __future__ import annotations

import enum
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from mcp_relay.errors import AmbiguousQualifiedNameError, ConfigError, DuplicateProviderError

SEPARATOR = "__"
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class TransportKind(str, enum.Enum):
    SUBPROCESS = "subprocess"
    SSE = "sse"
    STREAMABLE_HTTP = "streamable-http"

    @classmethod
    def parse(cls, value: str) -> "TransportKind":
        kind = _TRANSPORT_ALIASES.get(str(value).strip().lower())
        if kind is None:
            raise ConfigError(
                f"Unknown transport kind: '{value}'. "
                f"Available: {[k.value for k in cls]}"
            )
        return kind


_TRANSPORT_ALIASES = {
    "subprocess": TransportKind.SUBPROCESS,
    "command": TransportKind.SUBPROCESS,
    "stdio": TransportKind.SUBPROCESS,
    "sse": TransportKind.SSE,
    "event-stream": TransportKind.SSE,
    "streamable-http": TransportKind.STREAMABLE_HTTP,
    "streamable_http": TransportKind.STREAMABLE_HTTP,
    "http": TransportKind.STREAMABLE_HTTP,
}


@dataclass(frozen=True)
class ProviderConfig:
    """
    How to reach one tool provider.

    Attributes:
        name: Unique provider name, used as the tool-name prefix.
        transport: Which transport to open.
        target: Command line for subprocess providers, URL otherwise.
        enabled: Disabled providers are skipped at startup.
        env: Extra environment variables for subprocess providers.
        timeout: Per-request timeout in seconds for HTTP transports.
    """
    name: str
    transport: TransportKind
    target: str
    enabled: bool = True
    env: dict[str, str] | None = None
    timeout: float = 30.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderConfig":
        name = str(data.get("name") or "").strip()
        if not name:
            raise ConfigError(f"Provider entry has no name: {data}")

        kind = TransportKind.parse(data.get("transport") or data.get("type") or "")

        target = data.get("target")
        if target is None:
            target = data.get("command") if kind is TransportKind.SUBPROCESS else data.get("url")
        if not target or not str(target).strip():
            raise ConfigError(f"Provider '{name}' has no connection target")

        enabled = _parse_enabled(name, data.get("enabled", data.get("isOpen", True)))
        env = data.get("env")
        if env is not None and not isinstance(env, dict):
            raise ConfigError(f"Provider '{name}': env must be an object")

        return cls(
            name=name,
            transport=kind,
            target=str(target).strip(),
            enabled=enabled,
            env={str(k): str(v) for k, v in env.items()} if env else None,
            timeout=_parse_timeout(name, data.get("timeout", 30.0)),
        )


_BOOL_STRINGS = {
    "true": True, "yes": True, "on": True, "1": True,
    "false": False, "no": False, "off": False, "0": False,
}


def _parse_enabled(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _BOOL_STRINGS:
        return _BOOL_STRINGS[value.strip().lower()]
    raise ConfigError(f"Provider '{name}': enabled must be true or false, got {value!r}")


def _parse_timeout(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Provider '{name}': timeout must be a number, got {value!r}")
    try:
        timeout = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Provider '{name}': timeout must be a number, got {value!r}") from e
    if not timeout > 0:
        raise ConfigError(f"Provider '{name}': timeout must be positive, got {value!r}")
    return timeout


def validate_provider_name(name: str) -> None:
    """Reject names that would make qualified tool names ambiguous."""
    if SEPARATOR in name:
        raise AmbiguousQualifiedNameError(
            name, f"provider names may not contain '{SEPARATOR}'"
        )
    if name.endswith(SEPARATOR[0]):
        raise AmbiguousQualifiedNameError(
            name, f"provider names may not end with '{SEPARATOR[0]}'"
        )


def parse_provider_configs(items: Iterable[dict[str, Any]]) -> list[ProviderConfig]:
    """Build and validate provider configs, preserving declared order."""
    configs: list[ProviderConfig] = []
    seen: set[str] = set()
    for item in items:
        if not isinstance(item, dict):
            raise ConfigError(f"Provider entry must be an object, got {type(item).__name__}")
        config = ProviderConfig.from_dict(item)
        validate_provider_name(config.name)
        if config.name in seen:
            raise DuplicateProviderError(config.name)
        seen.add(config.name)
        configs.append(config)
    return configs


def load_provider_configs(path: str | Path) -> list[ProviderConfig]:
    """Read provider configs from a JSON file."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"Provider config not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Provider config {path} is not valid JSON: {e}") from e

    items = data.get("providers", []) if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise ConfigError(f"Provider config {path}: 'providers' must be a list")
    return parse_provider_configs(items)


@dataclass(frozen=True)
class RelaySettings:
    """Runtime settings read from the environment."""

    openai_api_key: str | None
    openai_model: str
    openai_base_url: str | None
    config_path: Path
    log_level: str

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "RelaySettings":
        source = env if env is not None else os.environ
        log_level = (source.get("MCP_RELAY_LOG_LEVEL") or "INFO").strip().upper()
        if log_level not in LOG_LEVELS:
            raise ConfigError(
                f"Unknown MCP_RELAY_LOG_LEVEL: '{log_level}'. Available: {list(LOG_LEVELS)}"
            )
        return cls(
            openai_api_key=source.get("OPENAI_API_KEY") or None,
            openai_model=source.get("OPENAI_MODEL") or "gpt-4o-mini",
            openai_base_url=source.get("OPENAI_BASE_URL") or None,
            config_path=Path(source.get("MCP_RELAY_CONFIG", "relay_servers.json")),
            log_level=log_level,
        )

    def require_api_key(self) -> str:
        if not self.openai_api_key:
            raise ConfigError("OPENAI_API_KEY environment variable is required")
        return self.openai_api_key
