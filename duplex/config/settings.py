"""Stream client configuration loading and validation."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, Literal

import yaml
from pydantic import AnyUrl, Field, PositiveFloat
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_LOCATIONS: tuple[Path, ...] = (
    Path("/etc/duplex/client.yaml"),
    Path("/etc/duplex/client.yml"),
    Path("./config/client.yaml"),
    Path("./config/client.yml"),
)

CONFIG_FILE_ENV = "DUPLEX_CONFIG_FILE"

_CONFIG_PARSERS: dict[str, Callable[[str], Any]] = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".json": json.loads,
}


class StreamSettings(BaseSettings):
    """Validated settings for a supervised duplex stream."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="DUPLEX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Endpoint + credentials
    endpoint: AnyUrl = Field(
        default="ws://localhost:8080/stream",
        description="Default stream endpoint used when start() is called without one.",
    )
    auth_token: str | None = Field(
        default=None,
        description="Static token presented on every connect attempt when no supplier is given.",
        repr=False,
    )
    auth_header: str = Field(
        default="Authorization",
        description="Header carrying a token credential during the handshake.",
    )
    auth_scheme: str | None = Field(
        default="Bearer",
        description="Scheme prefixed to token credentials; None sends the bare token.",
    )
    transport: Literal["dummy", "websocket"] = Field(
        default="websocket",
        description="Stream transport implementation to use.",
    )
    allowed_schemes: list[str] = Field(
        default_factory=lambda: ["ws", "wss"],
        description="URI schemes accepted by start(); anything else is an invalid endpoint.",
    )
    connect_timeout_seconds: PositiveFloat = Field(
        default=10.0,
        description="Upper bound on a single connect + authentication handshake.",
    )
    json_messages: bool = Field(
        default=True,
        description=(
            "Decode inbound text frames holding a JSON object or array; any other text "
            "(including bare JSON scalars such as '42' or 'true') is delivered unchanged."
        ),
    )
    recv_queue_max: int = Field(
        default=256,
        ge=1,
        description="Inbound frames buffered ahead of the message handlers before reads pause.",
    )

    # Liveness
    probe_interval_seconds: PositiveFloat = Field(
        default=10.0,
        description="Interval between keep-alive probes on an active connection.",
    )
    ack_timeout_seconds: PositiveFloat | None = Field(
        default=None,
        description="Silence after which the connection is declared dead (default 2x probe interval).",
    )
    read_timeout_seconds: PositiveFloat | None = Field(
        default=None,
        description="Hard bound on a single inbound read wait (default 1.5x probe interval).",
    )

    # Reconnect backoff
    reconnect_initial_delay_seconds: PositiveFloat = Field(
        default=1.0,
        description="Delay before the first reconnect attempt after a failure.",
    )
    reconnect_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Growth factor applied to the reconnect delay per consecutive failure.",
    )
    reconnect_max_delay_seconds: PositiveFloat = Field(
        default=30.0,
        description="Ceiling for the reconnect delay.",
    )
    reconnect_jitter: float = Field(
        default=0.0,
        ge=0.0,
        lt=1.0,
        description="Jitter factor applied to the slept reconnect delay (0.0 disables).",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level for the client process.",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("allowed_schemes", mode="after")
    @classmethod
    def _normalize_schemes(cls, value: list[str]) -> list[str]:
        return [scheme.lower() for scheme in value]

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> "StreamSettings":
        if self.reconnect_max_delay_seconds < self.reconnect_initial_delay_seconds:
            raise ValueError("reconnect_max_delay_seconds must be >= reconnect_initial_delay_seconds")
        return self

    config_path: Path | None = Field(
        default=None,
        description="Resolved path to the on-disk config that seeded the settings.",
        exclude=True,
    )

    @property
    def effective_ack_timeout(self) -> float:
        if self.ack_timeout_seconds is not None:
            return float(self.ack_timeout_seconds)
        return float(self.probe_interval_seconds) * 2

    @property
    def effective_read_timeout(self) -> float:
        if self.read_timeout_seconds is not None:
            return float(self.read_timeout_seconds)
        return float(self.probe_interval_seconds) * 1.5

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[StreamSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            config_file_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )


def find_config_file() -> Path | None:
    """Locate the config file: the one named by DUPLEX_CONFIG_FILE, else the first default that exists."""

    explicit = os.getenv(CONFIG_FILE_ENV)
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise ValueError(f"{CONFIG_FILE_ENV} points at {path}, which is not a file")
        return path
    return next((path for path in DEFAULT_CONFIG_LOCATIONS if path.is_file()), None)


def load_config_file(path: Path) -> Dict[str, Any]:
    parser = _CONFIG_PARSERS.get(path.suffix.lower())
    if parser is None:
        raise ValueError(f"Unsupported stream config format {path.suffix!r} for {path}; use YAML or JSON")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RuntimeError(f"Failed to read stream config file {path}") from exc
    try:
        raw = parser(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ValueError(f"Invalid stream config file {path}") from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Stream config file {path} must contain a mapping at top level.")
    return raw


def config_file_source(settings_cls: type[StreamSettings] | None = None) -> Dict[str, Any]:
    path = find_config_file()
    if path is None:
        return {}
    data = load_config_file(path)
    data.setdefault("config_path", path)
    return data


@lru_cache()
def get_settings() -> StreamSettings:
    """Return memoized stream settings."""

    return StreamSettings()
