"""Engine settings loaded from YAML.

Search order:
    1. Explicit path passed to `load_config`
    2. File named by the EPASCRIPT_CONFIG environment variable
    3. User config file (~/.config/epascript/config.yaml)
    4. Built-in defaults

Example config.yaml:

    max_errors: 50
    log_level: INFO
    double_epsilon: 1.0e-6
    trig_in_degrees: true
    table_height: 8
    default_select_limit: 4
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

__all__ = [
    "EPASCRIPT_CONFIG",
    "ScriptConfig",
    "load_config",
    "user_config_path",
]

logger = logging.getLogger(__name__)

# Environment variable naming a config file
EPASCRIPT_CONFIG = "EPASCRIPT_CONFIG"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class ScriptConfig:
    """Tunable engine settings."""
    max_errors: int = 20
    log_level: str = "WARNING"
    double_epsilon: float = 1e-9
    trig_in_degrees: bool = True
    table_height: int = 12
    default_select_limit: int = 1

    def with_overrides(self, **changes: Any) -> "ScriptConfig":
        """Copy with some fields replaced (None values are ignored)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def user_config_path() -> Path:
    """Location of the per-user config file."""
    if sys.platform == "win32":
        config_base = Path(os.environ.get("APPDATA", "~")).expanduser()
    else:
        config_base = Path.home() / ".config"
    return config_base / "epascript" / "config.yaml"


def _find_config(path: Optional[Union[str, Path]]) -> Optional[Path]:
    if path is not None:
        return Path(path).expanduser()

    env_path = os.environ.get(EPASCRIPT_CONFIG)
    if env_path:
        return Path(env_path).expanduser()

    user_config = user_config_path()
    if user_config.is_file():
        return user_config
    return None


def _load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML config file; an empty file is an empty mapping."""
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid config format in {path}: expected mapping at root")
    return data


def _check_value(name: str, value: Any, path: Path) -> Any:
    if name == "log_level":
        level = str(value).upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Invalid log_level '{value}' in {path}")
        return level
    if name == "trig_in_degrees":
        if not isinstance(value, bool):
            raise ValueError(f"'{name}' in {path} must be true or false")
        return value
    if name == "double_epsilon":
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"'{name}' in {path} must be a non-negative number")
        return float(value)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"'{name}' in {path} must be a non-negative integer")
    return value


def load_config(path: Optional[Union[str, Path]] = None) -> ScriptConfig:
    """
    Load settings, falling back to defaults when no file is found.

    Unknown keys are ignored with a warning. A document that is not a
    mapping, or a value of the wrong type, raises ValueError.
    """
    config_path = _find_config(path)
    if config_path is None:
        return ScriptConfig()

    data = _load_yaml(config_path)
    known = {f.name for f in fields(ScriptConfig)}
    values: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            logger.warning("ignoring unknown config key %r in %s", key, config_path)
            continue
        values[key] = _check_value(key, value, config_path)

    logger.debug("loaded config from %s", config_path)
    return ScriptConfig(**values)
