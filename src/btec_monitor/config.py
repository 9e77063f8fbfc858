"""Configuration discovery and tracker settings."""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

APP_DIR = "btec-monitor"


class ConfigManager:
    """Finds and loads YAML configuration files."""

    @staticmethod
    def get_xdg_config_home() -> Path:
        xdg = os.environ.get("XDG_CONFIG_HOME")
        if xdg:
            return Path(xdg)
        return Path.home() / ".config"

    @staticmethod
    def get_xdg_config_dirs() -> List[Path]:
        dirs = os.environ.get("XDG_CONFIG_DIRS", "/etc/xdg")
        return [Path(d) for d in dirs.split(":") if d]

    @classmethod
    def find_config(cls, name: str, explicit_path: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Load the first config found for ``name``.

        An explicit path is used as-is and nothing else is searched when it
        is given. Otherwise the XDG locations, the working directory and
        ``~/.btec-monitor`` are tried in that order.
        """
        if explicit_path:
            path = Path(explicit_path)
            if path.exists():
                return cls.load_yaml(path)
            logger.warning(f"Config file {explicit_path} not found")
            return None

        candidates = [cls.get_xdg_config_home() / APP_DIR / f"{name}.yaml"]
        candidates += [d / APP_DIR / f"{name}.yaml" for d in cls.get_xdg_config_dirs()]
        candidates.append(Path.cwd() / f"{name}.yaml")
        candidates.append(Path.home() / f".{APP_DIR}" / f"{name}.yaml")

        for path in candidates:
            if path.exists():
                logger.debug(f"Using config {path}")
                return cls.load_yaml(path)
        return None

    @staticmethod
    def load_yaml(path: Path) -> Optional[Dict[str, Any]]:
        try:
            with open(path) as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config {path}: {e}")
            return None

    @classmethod
    def merge_configs(cls, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge ``override`` into a copy of ``base``."""
        result = dict(base)
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = cls.merge_configs(result[key], value)
            else:
                result[key] = value
        return result


def apply_cli_overrides(config: Dict[str, Any], **overrides) -> Dict[str, Any]:
    """Merge CLI options into config, skipping options that were not given."""
    given = {k: v for k, v in overrides.items() if v is not None}
    return ConfigManager.merge_configs(config, given)


@dataclass
class TrackerConfig:
    """Settings for the generation client and job tracker."""

    api_url: str = "http://localhost:3000/api"
    ws_url: Optional[str] = None
    token: Optional[str] = None
    coarse_interval: float = 3.0
    fine_interval: float = 10.0
    auto_refresh: bool = True
    reconnect_delay: float = 3.0
    completion_delay: float = 2.0
    cancel_delay: float = 1.0
    estimate_duration: float = 120.0
    log_size: int = 50
    default_target_words: int = 3000
    request_timeout: float = 10.0
    verify_ssl: bool = True

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "TrackerConfig":
        """Build from a config mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in (d or {}).items() if k in known and v is not None}
        unknown = set(d or {}) - known
        if unknown:
            logger.debug(f"Ignoring unknown config keys: {sorted(unknown)}")
        return cls(**values)
