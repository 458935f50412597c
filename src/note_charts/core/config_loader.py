"""Configuration loader for the chart query engine.

This module loads engine settings from a YAML file with:
- Environment variable overrides (env var → YAML → defaults)
- Type coercion (string to int, bool, list)
- Schema defaults using a dataclass
- Graceful degradation (missing file uses defaults)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml  # type: ignore

from note_charts.core.coercion import DEFAULT_DATE_FIELD_NAMES, DEFAULT_DATE_FIELD_SUFFIXES

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "note_charts.yaml"


def get_project_root() -> Path:
    """
    Get project root directory.

    Uses pattern: config_loader.py → core/ → note_charts/ → src/ → project_root
    """
    return Path(__file__).parent.parent.parent.parent


def _coerce_type(value: Any, target_type: type) -> Any:
    """
    Coerce value to target type.

    Handles:
    - String "90" / "90.0" → int 90
    - String "true"/"false" → bool True/False (case-insensitive)
    - String "Projects, Work" → list ["Projects", "Work"]

    Raises:
        ValueError: If coercion fails
    """
    if value is None:
        return None

    if target_type is int and isinstance(value, bool):
        raise ValueError(f"expected a number, got boolean {value}")

    if isinstance(value, target_type):
        return value

    if target_type is bool:
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes", "on")
        return bool(value)

    if target_type is float:
        return float(value)

    if target_type is int:
        if isinstance(value, str):
            return int(float(value))  # Handle "60.0" → 60
        return int(value)

    if target_type is list:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, tuple):
            return list(value)
        raise ValueError(f"expected a list or comma-separated string, got {type(value).__name__}")

    if target_type is str:
        return str(value)

    return value


def _apply_env_overrides(config: dict[str, Any], env_mapping: dict[str, str]) -> dict[str, Any]:
    """
    Apply environment variable overrides to config.

    Args:
        config: Configuration dictionary
        env_mapping: Mapping of env var names to config keys

    Returns:
        Config with env var overrides applied
    """
    result = config.copy()
    for env_key, config_key in env_mapping.items():
        env_value = os.getenv(env_key)
        if env_value is None:
            continue
        target_type = type(result[config_key])
        try:
            result[config_key] = _coerce_type(env_value, target_type)
        except (ValueError, TypeError) as e:
            if _is_critical_config(config_key):
                raise ValueError(
                    f"Type coercion failed for critical config {env_key}={env_value}: "
                    f"expected {target_type.__name__}. Error: {e}"
                ) from e
            logger.warning(f"Failed to coerce env var {env_key}={env_value} to {target_type.__name__}: {e}")
    return result


@dataclass
class EngineConfigDefaults:
    """Default values for the chart query engine."""

    default_paths: list[str] = field(default_factory=list)
    default_block_minutes: int = 60
    missing_label: str = "(missing)"
    explode_chart_types: list[str] = field(default_factory=lambda: ["pie"])
    transform_chart_types: list[str] = field(default_factory=lambda: ["line", "area"])
    date_field_names: list[str] = field(default_factory=lambda: list(DEFAULT_DATE_FIELD_NAMES))
    date_field_suffixes: list[str] = field(default_factory=lambda: list(DEFAULT_DATE_FIELD_SUFFIXES))
    log_level: str = "INFO"

    def to_dict(self) -> dict[str, Any]:
        """Convert dataclass to dictionary."""
        return {
            "default_paths": list(self.default_paths),
            "default_block_minutes": self.default_block_minutes,
            "missing_label": self.missing_label,
            "explode_chart_types": list(self.explode_chart_types),
            "transform_chart_types": list(self.transform_chart_types),
            "date_field_names": list(self.date_field_names),
            "date_field_suffixes": list(self.date_field_suffixes),
            "log_level": self.log_level,
        }


def _is_critical_config(key: str) -> bool:
    """
    Check if a config key is critical (raise instead of warn on coercion failure).
    """
    return key in ("default_block_minutes",)


def load_engine_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load engine config from YAML with env var overrides.

    Precedence: Environment variable → YAML value → Default value

    Args:
        config_path: Optional path to config file. If None, uses config/note_charts.yaml
            under the project root.

    Returns:
        dict with the EngineConfigDefaults keys

    Raises:
        ValueError: If YAML is invalid or a critical value cannot be coerced
    """
    defaults = EngineConfigDefaults().to_dict()

    if config_path is None:
        config_path = get_project_root() / "config" / CONFIG_FILENAME

    config = defaults.copy()
    if config_path.exists():
        try:
            with open(config_path) as f:
                yaml_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(yaml_data, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")

        for key, value in yaml_data.items():
            if key not in defaults:
                logger.warning(f"Unknown config key {key} in {config_path}, ignoring")
                continue
            target_type = type(defaults[key])
            try:
                config[key] = _coerce_type(value, target_type)
            except (ValueError, TypeError) as e:
                if _is_critical_config(key):
                    raise ValueError(
                        f"Type coercion failed for critical config {key}={value}: "
                        f"expected {target_type.__name__}, got {type(value).__name__}. "
                        f"Error: {e}"
                    ) from e
                logger.warning(
                    f"Failed to coerce YAML value {key}={value} to {target_type.__name__}: {e}, using default"
                )
    else:
        logger.debug(f"Config file not found at {config_path}, using defaults")

    env_mapping = {
        "NOTE_CHARTS_DEFAULT_PATHS": "default_paths",
        "NOTE_CHARTS_DEFAULT_BLOCK_MINUTES": "default_block_minutes",
        "NOTE_CHARTS_MISSING_LABEL": "missing_label",
        "NOTE_CHARTS_LOG_LEVEL": "log_level",
    }
    config = _apply_env_overrides(config, env_mapping)

    if config["default_block_minutes"] <= 0:
        raise ValueError(f"default_block_minutes must be positive, got {config['default_block_minutes']}")

    return config
