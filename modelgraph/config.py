"""
Configuration management for modelgraph.

Handles persistent configuration including:
- Storage backend selection (memory, file, http)
- Model API URL, token and request timeout

Config is stored in config.json in the data directory (see paths.get_app_dir).
Environment variables (optionally loaded from a .env file) take priority.
"""

import json
import os
from typing import Optional, Tuple

import requests
from dotenv import load_dotenv

from modelgraph.paths import get_config_path

DEFAULT_BACKEND = "file"
DEFAULT_TIMEOUT = 10.0
BACKEND_TYPES = ("memory", "file", "http")

_dotenv_loaded = False


def ensure_env_loaded() -> None:
    """Load .env into the process environment once; existing variables win."""
    global _dotenv_loaded
    if not _dotenv_loaded:
        load_dotenv(override=False)
        _dotenv_loaded = True


def load_config() -> dict:
    """Load configuration from config.json."""
    config_path = get_config_path()
    if config_path.exists():
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError):
            return {}
    return {}


def save_config(config: dict) -> None:
    """Save configuration to config.json."""
    config_path = get_config_path()
    with open(config_path, 'w', encoding='utf-8') as f:
        json.dump(config, f, indent=2)


def _setting(env_name: str, config_key: str) -> Optional[str]:
    """
    Resolve a setting.

    Priority:
    1. Environment variable
    2. Stored in config.json
    """
    ensure_env_loaded()
    env_value = os.environ.get(env_name)
    if env_value:
        return env_value
    value = load_config().get(config_key)
    return str(value) if value not in (None, "") else None


def get_backend_type() -> str:
    """Configured storage backend; unknown values fall back to the file backend."""
    value = (_setting("MODELGRAPH_BACKEND", "storage_backend") or DEFAULT_BACKEND).strip().lower()
    return value if value in BACKEND_TYPES else DEFAULT_BACKEND


def get_api_base_url() -> Optional[str]:
    return _setting("MODELGRAPH_API_URL", "api_base_url")


def get_api_token() -> Optional[str]:
    return _setting("MODELGRAPH_API_TOKEN", "api_token")


def get_request_timeout() -> float:
    raw = _setting("MODELGRAPH_TIMEOUT", "request_timeout")
    try:
        timeout = float(raw) if raw is not None else DEFAULT_TIMEOUT
    except ValueError:
        return DEFAULT_TIMEOUT
    return timeout if timeout > 0 else DEFAULT_TIMEOUT


def set_api_settings(base_url: str, token: Optional[str] = None) -> None:
    """Save the model API connection to config.json and select the http backend."""
    config = load_config()
    config["storage_backend"] = "http"
    config["api_base_url"] = base_url
    if token:
        config["api_token"] = token
    save_config(config)


def check_api_health(base_url: str, timeout: Optional[float] = None) -> Tuple[bool, str]:
    """
    Check the model API without touching any project.

    Uses the /api/health endpoint which needs no authentication.

    Returns:
        (is_healthy, message) tuple
    """
    if not base_url:
        return False, "API URL is empty"

    if not base_url.startswith(("http://", "https://")):
        return False, "API URL should start with 'http://' or 'https://'"

    try:
        response = requests.get(
            f"{base_url.rstrip('/')}/api/health",
            timeout=timeout or get_request_timeout(),
        )
    except requests.RequestException as e:
        return False, f"Connection error: {e}"

    if response.status_code != 200:
        return False, f"Health check failed with status {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        return False, "Health check returned invalid JSON"
    if body.get("status") != "ok":
        return False, f"Unexpected health status: {body.get('status')}"
    version = body.get("version")
    return True, f"API is healthy{f' ({version})' if version else ''}."
