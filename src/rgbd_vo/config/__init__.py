"""Configuration module for rgbd-vo."""

from rgbd_vo.config.schema import (
    CameraConfig,
    CovarianceConfig,
    CovarianceMethod,
    DepthConfig,
    FeaturesConfig,
    MatchingConfig,
    ProjectConfig,
    RansacConfig,
    RefinementConfig,
    SolverType,
    TrackingConfig,
    VoConfig,
    WindowPreset,
)
from rgbd_vo.config.loader import get_default_config, load_config, save_config
from rgbd_vo.config.validation import ConfigurationError, validate_config

__all__ = [
    "CameraConfig",
    "CovarianceConfig",
    "CovarianceMethod",
    "DepthConfig",
    "FeaturesConfig",
    "MatchingConfig",
    "ProjectConfig",
    "RansacConfig",
    "RefinementConfig",
    "SolverType",
    "TrackingConfig",
    "VoConfig",
    "WindowPreset",
    "ConfigurationError",
    "get_default_config",
    "load_config",
    "save_config",
    "validate_config",
]
