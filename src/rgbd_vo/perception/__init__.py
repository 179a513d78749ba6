"""Perception module for rgbd-vo."""

from rgbd_vo.perception.camera import RgbdFrame
from rgbd_vo.perception.calib import CameraIntrinsics
from rgbd_vo.perception.features import (
    FeatureSet,
    GridFeatureExtractor,
    IFeatureExtractor,
)

__all__ = [
    "RgbdFrame",
    "CameraIntrinsics",
    "FeatureSet",
    "GridFeatureExtractor",
    "IFeatureExtractor",
]
