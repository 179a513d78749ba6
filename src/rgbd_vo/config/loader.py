"""
Configuration loader for rgbd-vo.

Handles YAML loading, relative path resolution and default configuration.
"""

from pathlib import Path
from typing import Any

import yaml

from rgbd_vo.config.schema import VoConfig
from rgbd_vo.config.validation import validate_config


def load_config(config_path: Path) -> VoConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated VoConfig instance.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If the configuration is invalid.
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw_config = yaml.safe_load(f) or {}

    # Relative paths are relative to the config file location
    config_dir = config_path.parent
    raw_config = _resolve_paths(raw_config, config_dir)

    config = VoConfig(**raw_config)
    validate_config(config, config_dir)

    return config


def _resolve_paths(config: dict[str, Any], base_dir: Path) -> dict[str, Any]:
    """
    Recursively resolve relative paths in configuration.

    Keys ending with '_path' or '_dir' are resolved relative to base_dir.

    Args:
        config: Configuration dictionary.
        base_dir: Base directory for relative path resolution.

    Returns:
        Configuration with resolved paths.
    """
    result: dict[str, Any] = {}

    for key, value in config.items():
        if isinstance(value, dict):
            result[key] = _resolve_paths(value, base_dir)
        elif isinstance(value, str) and (key.endswith("_path") or key.endswith("_dir")):
            path = Path(value)
            result[key] = str(path if path.is_absolute() else base_dir / path)
        else:
            result[key] = value

    return result


def save_config(config: VoConfig, output_path: Path) -> None:
    """
    Save configuration to a YAML file.

    Args:
        config: VoConfig instance to save.
        output_path: Path to the output YAML file.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = config.model_dump(mode="json")

    with open(output_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False)


def get_default_config() -> VoConfig:
    """
    Get default configuration with all default values.

    Returns:
        VoConfig instance with defaults.
    """
    return VoConfig()
