"""
Configuration validation for rgbd-vo.

Provides cross-field and runtime checks beyond Pydantic schema validation.
"""

from pathlib import Path
from typing import Optional

from rgbd_vo.config.schema import VoConfig


class ConfigurationError(Exception):
    """Configuration validation error."""

    pass


def validate_config(config: VoConfig, config_dir: Optional[Path] = None) -> None:
    """
    Perform cross-field and runtime validation on configuration.

    Args:
        config: VoConfig instance to validate.
        config_dir: Optional base directory for path resolution.

    Raises:
        ConfigurationError: If validation fails.
    """
    errors: list[str] = []

    errors.extend(_validate_camera(config, config_dir))
    errors.extend(_validate_features(config))
    errors.extend(_validate_matching(config))
    errors.extend(_validate_covariance(config))

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(
            f"  - {e}" for e in errors
        )
        raise ConfigurationError(error_msg)


def _validate_camera(config: VoConfig, config_dir: Optional[Path]) -> list[str]:
    """Validate camera configuration."""
    errors: list[str] = []

    path = config.camera.intrinsics_path
    if path is not None:
        if not path.is_absolute() and config_dir is not None:
            path = config_dir / path
        if not path.exists():
            errors.append(f"camera.intrinsics_path does not exist: {path}")

    return errors


def _validate_features(config: VoConfig) -> list[str]:
    """Validate feature detection configuration."""
    errors: list[str] = []

    if config.features.blur_kernel % 2 == 0:
        errors.append("features.blur_kernel must be odd")

    if config.feature_budget < config.features.min_reference_features:
        errors.append(
            "features.max_features must not be below features.min_reference_features"
        )

    return errors


def _validate_matching(config: VoConfig) -> list[str]:
    """Validate matching window presets."""
    errors: list[str] = []

    base = config.matching.window
    for name in ("roll_window", "pitch_window", "yaw_window"):
        preset = getattr(config.matching, name)
        if preset.width > base.width or preset.height > base.height:
            errors.append(f"matching.{name} must not exceed matching.window")

    return errors


def _validate_covariance(config: VoConfig) -> list[str]:
    """Validate covariance configuration."""
    errors: list[str] = []

    # The fixed diagonal also backs up a non-finite propagated covariance
    diagonal = config.covariance.fixed_diagonal
    if len(diagonal) != 7:
        errors.append("covariance.fixed_diagonal must have 7 entries")
    elif any(v < 0 for v in diagonal):
        errors.append("covariance.fixed_diagonal entries must be non-negative")

    return errors
