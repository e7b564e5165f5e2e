"""Tuning parameters for the task channel.

All env var parsing happens here so the channel and its helpers depend on a
structured, validated config rather than scattered ``os.getenv`` calls.
Durations are seconds.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from taskstream.utils.env import env_bool, env_float, env_int, env_optional_float, env_str

DEFAULT_BASE_URL = "ws://localhost:8080"


@dataclass(frozen=True)
class ChannelConfig:
    """Connection endpoint plus heartbeat and reconnect tuning."""

    base_url: str = DEFAULT_BASE_URL
    credential: Optional[str] = None
    credential_param: str = "api_key"
    heartbeat_interval: float = 30.0
    heartbeat_timeout: float = 5.0
    reconnect_base_delay: float = 1.0
    reconnect_backoff_multiplier: float = 2.0
    reconnect_max_delay: Optional[float] = 30.0
    reconnect_max_attempts: int = 5
    open_timeout: float = 10.0
    debug: bool = False

    def __post_init__(self) -> None:
        scheme = urlsplit(self.base_url).scheme.lower()
        if scheme not in ("ws", "wss"):
            raise ValueError(f"base_url must use ws:// or wss://, got {self.base_url!r}")
        if not self.credential_param:
            raise ValueError("credential_param must be non-empty")
        if self.heartbeat_interval <= 0:
            raise ValueError("heartbeat_interval must be positive")
        if self.heartbeat_timeout <= 0:
            raise ValueError("heartbeat_timeout must be positive")
        if self.heartbeat_timeout >= self.heartbeat_interval:
            raise ValueError(
                f"heartbeat_timeout ({self.heartbeat_timeout}s) must be shorter than "
                f"heartbeat_interval ({self.heartbeat_interval}s)"
            )
        if self.reconnect_base_delay < 0:
            raise ValueError("reconnect_base_delay must be >= 0")
        if self.reconnect_backoff_multiplier < 1.0:
            raise ValueError("reconnect_backoff_multiplier must be >= 1")
        if self.reconnect_max_delay is not None and self.reconnect_max_delay < self.reconnect_base_delay:
            raise ValueError("reconnect_max_delay must be >= reconnect_base_delay")
        if self.reconnect_max_attempts < 0:
            raise ValueError("reconnect_max_attempts must be >= 0")
        if self.open_timeout <= 0:
            raise ValueError("open_timeout must be positive")

    def connection_url(self) -> str:
        """Return ``base_url`` with the credential appended as a query parameter."""

        if not self.credential:
            return self.base_url
        parts = urlsplit(self.base_url)
        query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != self.credential_param]
        query.append((self.credential_param, self.credential))
        return urlunsplit(parts._replace(query=urlencode(query)))

    def redacted_url(self) -> str:
        """Connection URL safe for logs."""

        if not self.credential:
            return self.base_url
        return replace(self, credential="***").connection_url()


def load_channel_config(env: Optional[Mapping[str, str]] = None, **overrides: Any) -> ChannelConfig:
    """Read channel settings from *env* (``os.environ`` by default).

    Keyword *overrides* win over the environment; ``None`` overrides are
    ignored so CLI flags can be passed through unconditionally.
    """

    defaults = ChannelConfig()
    values: dict[str, Any] = {
        "base_url": env_str("TASKSTREAM_WS_URL", defaults.base_url, env) or defaults.base_url,
        "credential": env_str("TASKSTREAM_WS_API_KEY", None, env),
        "credential_param": env_str("TASKSTREAM_WS_CREDENTIAL_PARAM", defaults.credential_param, env)
        or defaults.credential_param,
        "heartbeat_interval": env_float("TASKSTREAM_HEARTBEAT_INTERVAL_S", defaults.heartbeat_interval, env),
        "heartbeat_timeout": env_float("TASKSTREAM_HEARTBEAT_TIMEOUT_S", defaults.heartbeat_timeout, env),
        "reconnect_base_delay": env_float("TASKSTREAM_RECONNECT_BASE_DELAY_S", defaults.reconnect_base_delay, env),
        "reconnect_backoff_multiplier": env_float(
            "TASKSTREAM_RECONNECT_BACKOFF", defaults.reconnect_backoff_multiplier, env
        ),
        "reconnect_max_delay": env_optional_float(
            "TASKSTREAM_RECONNECT_MAX_DELAY_S", defaults.reconnect_max_delay, env
        ),
        "reconnect_max_attempts": env_int(
            "TASKSTREAM_RECONNECT_MAX_ATTEMPTS", defaults.reconnect_max_attempts, env
        ),
        "open_timeout": env_float("TASKSTREAM_OPEN_TIMEOUT_S", defaults.open_timeout, env),
        "debug": env_bool("TASKSTREAM_CHANNEL_DEBUG", defaults.debug, env),
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return ChannelConfig(**values)


__all__ = ["ChannelConfig", "DEFAULT_BASE_URL", "load_channel_config"]
