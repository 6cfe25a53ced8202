"""
HXA-Connect client configuration.

Values come from an optional JSON file, overridden by environment variables.
"""
import os
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

_default_config_file = Path.home() / ".hxa-connect" / "config.json"
CONFIG_FILE = Path(os.getenv("HXA_CONNECT_CONFIG", str(_default_config_file)))

config_data = {}
if CONFIG_FILE.exists():
    try:
        with open(CONFIG_FILE, "r", encoding="utf-8") as _f:
            config_data = json.load(_f)
    except (OSError, ValueError):
        config_data = {}


def _flag(value) -> bool:
    return str(value).lower() in {"1", "true", "yes"}


# Server endpoint and credentials
SERVER_URL = os.getenv("HXA_CONNECT_URL", config_data.get("URL", "http://127.0.0.1:4800"))
TOKEN = os.getenv("HXA_CONNECT_TOKEN", config_data.get("TOKEN"))
ORG_ID = os.getenv("HXA_CONNECT_ORG_ID", config_data.get("ORG_ID"))

# HTTP request timeout (seconds)
HTTP_TIMEOUT = float(os.getenv("HXA_CONNECT_TIMEOUT", config_data.get("TIMEOUT", "30")))

# Auto-reconnect. Delays are in seconds; MAX_ATTEMPTS 0 means unlimited.
RECONNECT_ENABLED = _flag(os.getenv("HXA_CONNECT_RECONNECT", config_data.get("RECONNECT", "true")))
RECONNECT_INITIAL_DELAY = float(os.getenv("HXA_CONNECT_RECONNECT_INITIAL_DELAY", config_data.get("RECONNECT_INITIAL_DELAY", "1.0")))
RECONNECT_MAX_DELAY = float(os.getenv("HXA_CONNECT_RECONNECT_MAX_DELAY", config_data.get("RECONNECT_MAX_DELAY", "30.0")))
RECONNECT_BACKOFF_FACTOR = float(os.getenv("HXA_CONNECT_RECONNECT_BACKOFF_FACTOR", config_data.get("RECONNECT_BACKOFF_FACTOR", "2.0")))
RECONNECT_MAX_ATTEMPTS = int(os.getenv("HXA_CONNECT_RECONNECT_MAX_ATTEMPTS", config_data.get("RECONNECT_MAX_ATTEMPTS", "0")))

# Consecutive zero-delay reconnects allowed on a service-restart close
MAX_IMMEDIATE_RECONNECTS = 3
# WebSocket close code 1012 = Service Restart
SERVICE_RESTART_CODE = 1012

# Thread context: messages kept per thread before the oldest are dropped
MAX_BUFFER_SIZE = int(os.getenv("HXA_CONNECT_MAX_BUFFER_SIZE", config_data.get("MAX_BUFFER_SIZE", "50")))


@dataclass
class ReconnectOptions:
    enabled: bool = RECONNECT_ENABLED
    initial_delay: float = RECONNECT_INITIAL_DELAY
    max_delay: float = RECONNECT_MAX_DELAY
    backoff_factor: float = RECONNECT_BACKOFF_FACTOR
    max_attempts: Optional[int] = RECONNECT_MAX_ATTEMPTS or None  # None = unlimited


def get_config_dict():
    return {
        "URL": SERVER_URL,
        "TOKEN": "***" if TOKEN else None,
        "ORG_ID": ORG_ID,
        "TIMEOUT": HTTP_TIMEOUT,
        "RECONNECT": RECONNECT_ENABLED,
        "RECONNECT_INITIAL_DELAY": RECONNECT_INITIAL_DELAY,
        "RECONNECT_MAX_DELAY": RECONNECT_MAX_DELAY,
        "RECONNECT_BACKOFF_FACTOR": RECONNECT_BACKOFF_FACTOR,
        "RECONNECT_MAX_ATTEMPTS": RECONNECT_MAX_ATTEMPTS,
        "MAX_BUFFER_SIZE": MAX_BUFFER_SIZE,
    }
