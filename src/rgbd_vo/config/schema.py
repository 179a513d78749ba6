"""
Pydantic configuration schema for rgbd-vo.

This module defines all configuration models with strict validation,
enum fields and default values. Defaults reproduce the tuning the odometry
was flown with.
"""

from enum import Enum
from pathlib import Path
from typing import Optional
import uuid

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Log level enumeration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class SolverType(str, Enum):
    """Minimal solver used inside RANSAC."""

    RIGID = "rigid"
    P3P = "p3p"


class CovarianceMethod(str, Enum):
    """Pose covariance method enumeration."""

    PROPAGATED = "propagated"
    FIXED = "fixed"


# ============================================================================
# Sub-configuration Models
# ============================================================================


class ProjectConfig(BaseModel):
    """Project-level configuration."""

    name: str = Field(default="rgbd-vo", description="Project name")
    run_id: str = Field(
        default="auto", description="Run identifier (auto generates UUID)"
    )
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    json_logs: bool = Field(default=False, description="Emit JSON log lines")

    @field_validator("run_id", mode="before")
    @classmethod
    def generate_run_id(cls, v: str) -> str:
        """Generate UUID if run_id is 'auto'."""
        if v == "auto":
            return str(uuid.uuid4())[:8]
        return v


class CameraConfig(BaseModel):
    """RGB-D camera configuration."""

    width: int = Field(default=640, gt=0, description="Frame width")
    height: int = Field(default=480, gt=0, description="Frame height")
    intrinsics_path: Optional[Path] = Field(
        default=None,
        description="Path to camera intrinsics YAML (defaults used when unset)",
    )
    depth_scale: float = Field(
        default=1000.0, gt=0, description="Raw depth units per meter"
    )


class FeaturesConfig(BaseModel):
    """Feature detection configuration."""

    max_features: Optional[int] = Field(
        default=None,
        gt=0,
        description="Feature budget (750, or 300 when refinement is enabled)",
    )
    grid_rows: int = Field(default=6, gt=0, description="Detection grid rows")
    grid_cols: int = Field(default=8, gt=0, description="Detection grid columns")
    fast_threshold: int = Field(
        default=20, gt=0, le=255, description="FAST corner threshold"
    )
    blur_kernel: int = Field(
        default=9, gt=0, description="Gaussian kernel size before descriptors"
    )
    blur_sigma: float = Field(default=2.0, gt=0, description="Gaussian sigma")
    min_reference_features: int = Field(
        default=200, ge=1, description="Features needed to set a reference"
    )


class WindowPreset(BaseModel):
    """Matching window size in pixels."""

    width: int = Field(gt=0, description="Horizontal window element")
    height: int = Field(gt=0, description="Vertical window element")


class MatchingConfig(BaseModel):
    """Descriptor matching configuration."""

    window: WindowPreset = Field(
        default_factory=lambda: WindowPreset(width=300, height=200)
    )
    roll_threshold_rad: float = Field(default=0.2, gt=0)
    pitch_threshold_rad: float = Field(default=0.12, gt=0)
    yaw_threshold_rad: float = Field(default=0.12, gt=0)
    roll_window: WindowPreset = Field(
        default_factory=lambda: WindowPreset(width=120, height=120)
    )
    pitch_window: WindowPreset = Field(
        default_factory=lambda: WindowPreset(width=300, height=180)
    )
    yaw_window: WindowPreset = Field(
        default_factory=lambda: WindowPreset(width=250, height=200)
    )
    parallel: bool = Field(
        default=True, description="Run forward and reverse matches concurrently"
    )
    min_correspondences: int = Field(
        default=4, ge=4, description="Mutual matches needed to estimate"
    )


class RansacConfig(BaseModel):
    """RANSAC configuration."""

    iterations: Optional[int] = Field(
        default=None,
        gt=0,
        description="Iteration budget (300, or 100 when refinement is enabled)",
    )
    inlier_threshold_px: float = Field(
        default=20.0, gt=0, description="Reprojection inlier distance"
    )
    consensus: float = Field(
        default=0.95, gt=0, le=1, description="Inlier fraction for early exit"
    )
    solver: SolverType = Field(default=SolverType.RIGID, description="Solver")
    seed: Optional[int] = Field(default=None, description="Sampler seed")


class CovarianceConfig(BaseModel):
    """Pose covariance configuration."""

    method: CovarianceMethod = Field(
        default=CovarianceMethod.PROPAGATED, description="Covariance method"
    )
    pixel_variance_u: float = Field(default=4.0, gt=0, description="px^2")
    pixel_variance_v: float = Field(default=4.0, gt=0, description="px^2")
    depth_variance: float = Field(default=0.01 * 0.01, gt=0, description="m^2")
    uniqueness_tolerance: float = Field(
        default=0.01, gt=0, description="Relative singular value gap"
    )
    translation_scale: float = Field(
        default=20.0, gt=0, description="Empirical translation block scale"
    )
    quaternion_scale: float = Field(
        default=1.0e6, gt=0, description="Empirical quaternion block scale"
    )
    min_qw: float = Field(
        default=1.0e-3, gt=0, description="Floor on qw in the quaternion Jacobian"
    )
    fixed_diagonal: list[float] = Field(
        default=[0.0015, 0.0015, 0.0012, 7.1e-8, 4.8e-5, 4.4e-4, 3.2e-5],
        description="Fixed-method diagonal over (tx, ty, tz, qw, qx, qy, qz)",
    )


class DepthConfig(BaseModel):
    """Depth handling configuration."""

    fallback_depth_m: float = Field(
        default=8.0, gt=0, description="Depth assigned to invalid samples"
    )


class RefinementConfig(BaseModel):
    """Post-RANSAC pose refinement configuration."""

    enabled: bool = Field(default=False, description="Enable LM refinement")
    iterations: int = Field(default=20, gt=0, description="LM iterations")


class TrackingConfig(BaseModel):
    """Keyframe policy for sequence tracking."""

    min_inlier_ratio: float = Field(
        default=0.5, ge=0, le=1, description="Promote below this inlier ratio"
    )
    max_frames_per_keyframe: int = Field(
        default=10, ge=1, description="Promote after this many frames"
    )


# ============================================================================
# Root Configuration Model
# ============================================================================


class VoConfig(BaseModel):
    """Root configuration model for rgbd-vo."""

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    camera: CameraConfig = Field(default_factory=CameraConfig)
    features: FeaturesConfig = Field(default_factory=FeaturesConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    ransac: RansacConfig = Field(default_factory=RansacConfig)
    covariance: CovarianceConfig = Field(default_factory=CovarianceConfig)
    depth: DepthConfig = Field(default_factory=DepthConfig)
    refinement: RefinementConfig = Field(default_factory=RefinementConfig)
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)

    model_config = {"extra": "forbid"}

    @property
    def feature_budget(self) -> int:
        """Feature budget, smaller when the refiner runs afterwards."""
        if self.features.max_features is not None:
            return self.features.max_features
        return 300 if self.refinement.enabled else 750

    @property
    def ransac_iterations(self) -> int:
        """RANSAC iterations, fewer when the refiner runs afterwards."""
        if self.ransac.iterations is not None:
            return self.ransac.iterations
        return 100 if self.refinement.enabled else 300
