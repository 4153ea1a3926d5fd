"""config_loader.py JSON configuration loader for the nudge engine."""

import copy
import json
import os
from pathlib import Path
from typing import Any

from loguru import logger

DEFAULT_CONFIG_FILE = "engine_config.json"

# (env var, dotted config key, converter)
ENV_OVERRIDES = (
    ("MOMENTUM_API_KEY", "inference.rest.api_key", str),
    ("MOMENTUM_API_BASE_URL", "inference.rest.base_url", str),
    ("MOMENTUM_MODEL", "inference.rest.model", str),
    ("MOMENTUM_DB_PATH", "storage.db_path", str),
    ("MOMENTUM_LOG_LEVEL", "logging.level", str.upper),
)


def _resolve_config_path(config_file: str) -> Path:
    """Resolve config path supporting env overrides and repo defaults."""
    env_override = os.getenv("MOMENTUM_CONFIG_PATH")
    if env_override:
        env_path = Path(env_override).expanduser()
        if env_path.is_dir():
            return env_path / config_file
        return env_path

    path = Path(config_file)
    if path.exists() or path.is_absolute():
        return path

    package_dir = Path(__file__).resolve().parent
    candidate = package_dir / config_file
    if candidate.exists():
        return candidate

    root_candidate = package_dir.parent / config_file
    if root_candidate.exists():
        return root_candidate

    return candidate


def create_default_config() -> dict[str, Any]:
    return {
        "agent": {
            "nudge_cooldown_minutes": 30,
            "single_flight": True,
        },
        "inference": {
            "order": ["rest", "hybrid", "on_device"],
            "timeouts": {"rest": 15, "hybrid": 15, "on_device": 30},
            "load_timeout": 120,
            "offline_heuristics": True,
            "hybrid_local_tokens_per_second": 10,
            "temperature": 0.7,
            "max_tokens": 200,
            "rest": {"api_key": "", "base_url": None, "model": "gpt-4o-mini"},
            "local": {
                "enabled": True,
                "base_url": "http://localhost:11434",
                "model": "functiongemma",
                "keep_alive": "30m",
                "max_failures": 2,
            },
            "hybrid": {"enabled": False, "model": None},
        },
        "context": {"timezone": None},
        "storage": {"db_path": "momentum_data.db", "max_cycles": 200},
        "logging": {
            "level": "INFO",
            "file": "logs/momentum_{time:YYYY-MM-DD}.log",
            "rotation": "1 day",
            "retention": "30 days",
            "activity_log_size": 200,
        },
        "integrations": {"accounts": {"enabled": False, "signed_in": False}},
    }


def deep_merge(base: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``update`` merged in recursively; inputs are not modified."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def set_dotted(config: dict[str, Any], key: str, value: Any):
    keys = key.split(".")
    node = config
    for k in keys[:-1]:
        node = node.setdefault(k, {})
    node[keys[-1]] = value


def get_dotted(config: dict[str, Any], key: str, default: Any = None) -> Any:
    node: Any = config
    for k in key.split("."):
        if not isinstance(node, dict) or k not in node:
            return default
        node = node[k]
    return node


def apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    for env_name, key, convert in ENV_OVERRIDES:
        value = os.environ.get(env_name)
        if value:
            set_dotted(config, key, convert(value))
    return config


def load_config(config_file: str = DEFAULT_CONFIG_FILE) -> dict[str, Any]:
    """Load the JSON config, fill in missing defaults and apply env overrides.

    A missing file is created with the defaults. An unreadable one is logged
    and replaced by the defaults in memory only.
    """
    config_path = _resolve_config_path(config_file)

    if not config_path.exists():
        logger.warning(f"Config file {config_path} not found, creating default")
        config = create_default_config()
        save_config(config, config_file)
    else:
        try:
            with open(config_path, encoding="utf-8") as f:
                config = deep_merge(create_default_config(), json.load(f))
            logger.info(f"Loaded configuration from {config_path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config {config_path}: {e}")
            config = create_default_config()

    return apply_env_overrides(config)


def save_config(config: dict[str, Any], config_file: str = DEFAULT_CONFIG_FILE):
    config_path = _resolve_config_path(config_file)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=4, ensure_ascii=False)
        logger.info(f"Saved configuration to {config_path}")
    except OSError as e:
        logger.error(f"Error saving config {config_path}: {e}")


class ConfigLoader:
    """Holds the loaded configuration with dotted-key access."""

    def __init__(self, config_file: str = DEFAULT_CONFIG_FILE):
        self.config_file = config_file
        self.config_path = _resolve_config_path(config_file)
        self._config: dict[str, Any] = {}
        self.load()

    def load(self) -> dict[str, Any]:
        self._config = load_config(self.config_file)
        return self._config

    def get(self, key: str, default: Any = None) -> Any:
        return get_dotted(self._config, key, default)

    def set(self, key: str, value: Any):
        set_dotted(self._config, key, value)

    def update(self, updates: dict[str, Any]):
        self._config = deep_merge(self._config, updates)
        self.save()

    def save(self):
        save_config(self._config, self.config_file)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._config)
