"""
Shared pytest fixtures for rgbd-vo tests.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import cv2
import numpy as np
import pytest

from rgbd_vo.config.schema import VoConfig
from rgbd_vo.perception.calib import CameraIntrinsics
from rgbd_vo.perception.camera import RgbdFrame
from rgbd_vo.perception.features import FeatureSet, IFeatureExtractor
from rgbd_vo.utils.math3d import euler_to_rotation_matrix

WIDTH, HEIGHT = 640, 480


class FakeFeatureExtractor(IFeatureExtractor):
    """
    Feature extractor serving precomputed features.

    Frames are identified by the value of their top-left gray pixel.
    """

    def __init__(self) -> None:
        self._features: dict[int, FeatureSet] = {}

    def register(
        self, key: int, points_px: np.ndarray, descriptors: np.ndarray
    ) -> None:
        keypoints = [cv2.KeyPoint(float(u), float(v), 7.0) for u, v in points_px]
        self._features[key] = FeatureSet(
            keypoints=keypoints, descriptors=np.asarray(descriptors, dtype=np.uint8)
        )

    def detect(
        self, gray: np.ndarray, mask: Optional[np.ndarray] = None
    ) -> list[cv2.KeyPoint]:
        features = self._features.get(int(gray[0, 0]))
        return list(features.keypoints) if features else []

    def compute(
        self, gray: np.ndarray, keypoints: Sequence[cv2.KeyPoint]
    ) -> FeatureSet:
        features = self._features.get(int(gray[0, 0]))
        if features is None or not keypoints:
            return FeatureSet(keypoints=[], descriptors=np.empty((0, 32), np.uint8))
        return features


@dataclass
class SyntheticScene:
    """Scene points seen from a reference view and a moved view."""

    points_ref: np.ndarray
    rotation: np.ndarray
    translation: np.ndarray
    descriptors: np.ndarray

    @property
    def points_cur(self) -> np.ndarray:
        return self.points_ref @ self.rotation.T + self.translation


class SceneBuilder:
    """Builds synthetic RGB-D frames for a fake extractor."""

    def __init__(self, intrinsics: CameraIntrinsics, seed: int = 7) -> None:
        self.intrinsics = intrinsics
        self.extractor = FakeFeatureExtractor()
        self._rng = np.random.default_rng(seed)

    def scene(
        self,
        count: int = 300,
        rotation: Optional[np.ndarray] = None,
        translation: Optional[np.ndarray] = None,
    ) -> SyntheticScene:
        """Random points in front of the camera, visible in both views."""
        rotation = np.eye(3) if rotation is None else rotation
        translation = np.zeros(3) if translation is None else translation

        points_ref = self._points_seen_by(count, [(rotation, translation)])
        return SyntheticScene(
            points_ref=points_ref,
            rotation=rotation,
            translation=translation,
            descriptors=self.descriptors(len(points_ref)),
        )

    def trajectory(
        self,
        count: int,
        step_rotation: np.ndarray,
        step_translation: np.ndarray,
        length: int,
    ) -> tuple[np.ndarray, list[tuple[np.ndarray, np.ndarray]]]:
        """
        Points seen by every view of a constant-step trajectory.

        Returns the points in the first view and, per later view k, the
        cumulative (R, t) with p_k = R p_0 + t.
        """
        motions = []
        R, t = np.eye(3), np.zeros(3)
        for _ in range(length):
            R = step_rotation @ R
            t = step_rotation @ t + step_translation
            motions.append((R.copy(), t.copy()))
        return self._points_seen_by(count, motions), motions

    def descriptors(self, count: int) -> np.ndarray:
        """Random binary descriptors."""
        return self._rng.integers(0, 256, size=(count, 32), dtype=np.uint8)

    def frame(
        self,
        key: int,
        points_3d: np.ndarray,
        descriptors: np.ndarray,
        frame_id: int = 0,
        nan_depth: Sequence[int] = (),
    ) -> RgbdFrame:
        """Frame whose depth holds each point's z at its keypoint pixel."""
        points_px = self.intrinsics.project(points_3d)
        self.extractor.register(key, points_px, descriptors)

        depth = np.full((HEIGHT, WIDTH), np.nan, dtype=np.float64)
        # Keypoints store float32 positions
        stored = points_px.astype(np.float32)
        cols = stored[:, 0].astype(int)
        rows = stored[:, 1].astype(int)
        depth[rows, cols] = points_3d[:, 2]
        for idx in nan_depth:
            depth[rows[idx], cols[idx]] = np.nan

        image = np.full((HEIGHT, WIDTH), key, dtype=np.uint8)
        return RgbdFrame(image_bgr=image, depth_m=depth, frame_id=frame_id)

    def empty_frame(self, key: int, frame_id: int = 0) -> RgbdFrame:
        """Frame for which the extractor finds nothing."""
        image = np.full((HEIGHT, WIDTH), key, dtype=np.uint8)
        depth = np.full((HEIGHT, WIDTH), 2.0, dtype=np.float64)
        return RgbdFrame(image_bgr=image, depth_m=depth, frame_id=frame_id)

    def _points_seen_by(
        self, count: int, motions: list[tuple[np.ndarray, np.ndarray]]
    ) -> np.ndarray:
        u = self._rng.uniform(40, WIDTH - 40, size=4 * count)
        v = self._rng.uniform(40, HEIGHT - 40, size=4 * count)
        z = self._rng.uniform(1.5, 4.0, size=4 * count)
        points_ref = self.intrinsics.back_project(np.column_stack([u, v]), z)

        keep = self._visible(points_ref) & self._unique_pixels(points_ref)
        for rotation, translation in motions:
            moved = points_ref @ rotation.T + translation
            keep &= self._visible(moved) & self._unique_pixels(moved)
        return points_ref[keep][:count]

    def _visible(self, points: np.ndarray) -> np.ndarray:
        px = self.intrinsics.project(points)
        return (
            (points[:, 2] > 0.5)
            & (px[:, 0] >= 1)
            & (px[:, 0] < WIDTH - 1)
            & (px[:, 1] >= 1)
            & (px[:, 1] < HEIGHT - 1)
        )

    def _unique_pixels(self, points: np.ndarray) -> np.ndarray:
        px = np.nan_to_num(self.intrinsics.project(points), nan=-1.0).astype(int)
        flat = px[:, 1] * WIDTH + px[:, 0]
        _, inverse, counts = np.unique(flat, return_inverse=True, return_counts=True)
        return counts[inverse] == 1


@pytest.fixture
def default_intrinsics() -> CameraIntrinsics:
    """Create default camera intrinsics."""
    return CameraIntrinsics.default(WIDTH, HEIGHT)


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random generator."""
    return np.random.default_rng(42)


@pytest.fixture
def scene_builder(default_intrinsics: CameraIntrinsics) -> SceneBuilder:
    """Synthetic scene builder with its fake extractor."""
    return SceneBuilder(default_intrinsics)


@pytest.fixture
def small_motion() -> tuple[np.ndarray, np.ndarray]:
    """A small camera motion (rotation, translation)."""
    R = euler_to_rotation_matrix(0.02, -0.015, 0.03)
    t = np.array([0.05, -0.02, 0.03])
    return R, t


@pytest.fixture
def test_config() -> VoConfig:
    """Configuration with a fixed RANSAC seed and a low reference threshold."""
    config = VoConfig()
    config.ransac.seed = 3
    config.features.min_reference_features = 50
    return config
