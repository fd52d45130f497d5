from __future__ import annotations
from dataclasses import dataclass, field, fields
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from shared.log import get_logger
from shared.utils import normalize_ws_url

logger = get_logger(__name__)

DEFAULT_SERVER = "ws://localhost:3000/websocket"
DUPLICATE_POLICIES = ("reject", "queue")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def default_server() -> str:
    return normalize_ws_url(os.getenv("DDP_SERVER", DEFAULT_SERVER))


def default_config_path() -> Path:
    return Path(os.getenv("DDP_CONFIG", str(Path.home() / ".ddpchat" / "config.yaml"))).expanduser()


@dataclass
class ClientConfig:
    server_url: str = field(default_factory=default_server)
    request_timeout: Optional[float] = 30.0   # seconds, None disables
    duplicate_policy: str = "reject"          # "reject" or "queue"
    ping_interval: Optional[float] = 15.0     # websocket-level keepalive
    ping_timeout: Optional[float] = 45.0
    open_timeout: float = 10.0
    log_level: str = "INFO"


def _positive_or_none(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"expected a positive number or null, got {value!r}")
    return float(value)


def _positive(value: Any) -> float:
    result = _positive_or_none(value)
    if result is None:
        raise ValueError("expected a positive number")
    return result


def _policy(value: Any) -> str:
    if value not in DUPLICATE_POLICIES:
        raise ValueError(f"expected one of {DUPLICATE_POLICIES}, got {value!r}")
    return value


def _level(value: Any) -> str:
    if not isinstance(value, str) or value.upper() not in LOG_LEVELS:
        raise ValueError(f"expected one of {LOG_LEVELS}, got {value!r}")
    return value.upper()


def _url(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"expected a URL string, got {value!r}")
    return normalize_ws_url(value)


_VALIDATORS = {
    "server_url": _url,
    "request_timeout": _positive_or_none,
    "duplicate_policy": _policy,
    "ping_interval": _positive_or_none,
    "ping_timeout": _positive_or_none,
    "open_timeout": _positive,
    "log_level": _level,
}


def config_from_dict(data: Dict[str, Any], base: Optional[ClientConfig] = None) -> ClientConfig:
    """Apply recognised keys on top of base; bad values are logged and skipped"""
    config = base or ClientConfig()
    known = {f.name for f in fields(ClientConfig)}
    for key, value in data.items():
        if key not in known:
            logger.warning("Ignoring unknown config key %r", key)
            continue
        try:
            setattr(config, key, _VALIDATORS[key](value))
        except ValueError as e:
            logger.warning("Invalid value for %s: %s; keeping %r", key, e, getattr(config, key))
    return config


def load_config(path: Optional[Path] = None) -> ClientConfig:
    """
    Load client settings from YAML. Returns defaults when the file is absent
    or unreadable.

    Example config.yaml:
        server_url: wss://chat.example.com/websocket
        request_timeout: 20
        duplicate_policy: queue
    """
    path = Path(path).expanduser() if path is not None else default_config_path()
    if not path.exists():
        logger.debug("No config file at %s; using defaults", path)
        return ClientConfig()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error reading {path}: {e}")
        return ClientConfig()
    if not isinstance(data, dict):
        logger.error("Config file %s must contain a mapping", path)
        return ClientConfig()
    return config_from_dict(data)
