import math
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional

import yaml

CONFIG_ENV = "EDGE_EXPORTER_CONFIG"
_LISTEN_ENV = "EDGE_EXPORTER_LISTEN"
_PORT_ENV = "EDGE_EXPORTER_PORT"
_TELEMETRY_PATH_ENV = "EDGE_EXPORTER_TELEMETRY_PATH"
_SCRAPE_TIMEOUT_ENV = "EDGE_EXPORTER_SCRAPE_TIMEOUT"
_LOG_LEVEL_ENV = "EDGE_EXPORTER_LOG_LEVEL"

_DURATION_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ms|us|µs|ns|h|m|s)")
_DURATION_UNITS = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 1e-3,
    "us": 1e-6,
    "µs": 1e-6,
    "ns": 1e-9,
}


@dataclass(frozen=True)
class Settings:
    listen_address: str
    listen_port: int
    telemetry_path: str
    scrape_timeout: float
    log_level: str


def parse_duration(value: Any) -> float:
    """Seconds from a number or a duration string such as ``1m30s``."""
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip()
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for m in _DURATION_RE.finditer(text):
                if m.start() != pos:
                    break
                seconds += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
                pos = m.end()
            if pos == 0 or pos != len(text):
                raise ValueError(f"invalid duration: {value!r}") from None
    if not math.isfinite(seconds) or seconds < 0:
        raise ValueError(f"invalid duration: {value!r}")
    return seconds


def _load_config(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    if not isinstance(cfg, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return cfg


def _read(name: str, cfg: Dict[str, Any], key: str, default: Any) -> Any:
    value = os.getenv(name)
    if value is not None and value.strip():
        return value.strip()
    if cfg.get(key) is not None:
        return cfg[key]
    return default


def _read_port(cfg: Dict[str, Any], default: int) -> int:
    value = _read(_PORT_ENV, cfg, "listen_port", default)
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"invalid listen port: {value!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"listen port out of range: {port}")
    return port


def _read_telemetry_path(cfg: Dict[str, Any], default: str) -> str:
    path = str(_read(_TELEMETRY_PATH_ENV, cfg, "telemetry_path", default))
    if not path.startswith("/"):
        path = "/" + path
    return path


@lru_cache
def get_settings() -> Settings:
    cfg = _load_config(os.getenv(CONFIG_ENV))
    return Settings(
        listen_address=str(_read(_LISTEN_ENV, cfg, "listen_address", "0.0.0.0")),
        listen_port=_read_port(cfg, 8081),
        telemetry_path=_read_telemetry_path(cfg, "/metrics"),
        scrape_timeout=parse_duration(_read(_SCRAPE_TIMEOUT_ENV, cfg, "scrape_timeout", "1m")),
        log_level=str(_read(_LOG_LEVEL_ENV, cfg, "log_level", "INFO")).upper(),
    )
