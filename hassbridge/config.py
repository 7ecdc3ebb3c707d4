"""Configuration helpers for environment-driven settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from .errors import ConfigError


def _getenv_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "on"}


def _getenv_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum:g}, got {raw!r}")
    return value


def _getenv_int(name: str, default: Optional[int], *, minimum: int = 1) -> Optional[int]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {raw!r}")
    return value


def base_url_from_ws(uri: str) -> str:
    """wss://hub:8123/api/websocket → https://hub:8123"""
    parts = urlsplit(uri)
    scheme = {"ws": "http", "wss": "https"}.get(parts.scheme, parts.scheme)
    if scheme not in {"http", "https"} or not parts.netloc:
        raise ConfigError(f"HASS_URI must be a ws:// or wss:// URL, got {uri!r}")
    return f"{scheme}://{parts.netloc}"


@dataclass(frozen=True)
class Config:
    hass_uri: str
    hass_base_url: str
    hass_token_file: str
    entity_id: Optional[str]

    heartbeat_interval: float
    pong_timeout: float
    event_queue: int
    http_timeout: float

    status_host: str
    status_port: Optional[int]

    debug: bool
    log_level: str

    @staticmethod
    def load() -> "Config":
        """Build a Config from the environment."""
        hass_uri = (os.getenv("HASS_URI") or "").strip()
        if not hass_uri:
            raise ConfigError("HASS_URI is required (e.g. wss://homeassistant.local:8123/api/websocket)")

        debug = _getenv_bool("DEBUG", False)
        return Config(
            hass_uri=hass_uri,
            hass_base_url=base_url_from_ws(hass_uri),
            hass_token_file=os.getenv("HASS_TOKEN_FILE", ""),
            entity_id=(os.getenv("HASS_ENTITY_ID") or "").strip() or None,
            heartbeat_interval=_getenv_float("HASS_HEARTBEAT_INTERVAL", 45.0, minimum=1.0),
            pong_timeout=_getenv_float("HASS_PONG_TIMEOUT", 0.0),
            event_queue=_getenv_int("HASS_EVENT_QUEUE", 256) or 256,
            http_timeout=_getenv_float("HASS_HTTP_TIMEOUT", 10.0, minimum=0.1),
            status_host=os.getenv("STATUS_HOST", "127.0.0.1"),
            status_port=_getenv_int("STATUS_PORT", None),
            debug=debug,
            log_level="DEBUG" if debug else os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def load_token(self) -> str:
        """Return the HA token from environment or configured file."""
        # 1) explicit env wins
        env_tok = (os.getenv("HASS_TOKEN") or "").strip()
        if env_tok:
            return env_tok

        # 2) fall back to file
        path = (self.hass_token_file or "").strip()
        if not path:
            raise ConfigError("HASS token unavailable: set HASS_TOKEN or HASS_TOKEN_FILE")

        try:
            with open(path, "r", encoding="utf-8") as f:
                token = f.read().strip()
        except FileNotFoundError as exc:
            raise ConfigError(f"HASS token file not found: {path}") from exc
        except OSError as exc:
            raise ConfigError(f"Failed to read HASS token file {path}: {exc}") from exc

        if not token:
            raise ConfigError(f"HASS token file {path} is empty")

        return token
