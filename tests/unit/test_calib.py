"""Unit tests for camera calibration and frame loading."""

from pathlib import Path

import cv2
import numpy as np
import pytest
from numpy.testing import assert_array_almost_equal

from rgbd_vo.perception.calib import CameraIntrinsics
from rgbd_vo.perception.camera import RgbdFrame
from rgbd_vo.utils.io import depth_validity_mask, load_depth_image, save_yaml


class TestCameraIntrinsics:
    """Tests for CameraIntrinsics."""

    def test_default(self) -> None:
        """Test default intrinsics."""
        intrinsics = CameraIntrinsics.default(640, 480)
        assert intrinsics.fx == 525.0
        assert intrinsics.cx == 319.5
        assert intrinsics.cy == 239.5

    def test_from_yaml(self, tmp_path: Path) -> None:
        """Test loading from YAML."""
        path = tmp_path / "calib.yaml"
        save_yaml(
            {
                "camera_matrix": [[500.0, 0, 320.0], [0, 510.0, 240.0], [0, 0, 1]],
                "dist_coeffs": [0.1, -0.05, 0, 0, 0],
                "image_width": 640,
                "image_height": 480,
            },
            path,
        )

        intrinsics = CameraIntrinsics.from_yaml(path)

        assert intrinsics.fy == 510.0
        assert intrinsics.dist_coeffs[0] == 0.1

    def test_from_config_falls_back(self, tmp_path: Path) -> None:
        """Test defaults when the file is missing."""
        intrinsics = CameraIntrinsics.from_config(tmp_path / "missing.yaml", 320, 240)
        assert intrinsics.width == 320
        assert intrinsics.fx == pytest.approx(262.5)

    def test_back_project_and_project(self, default_intrinsics) -> None:
        """Test that projection inverts back-projection."""
        px = np.array([[10.0, 20.0], [319.5, 239.5], [600.0, 470.0]])
        points = default_intrinsics.back_project(px, np.array([1.0, 2.0, 3.5]))

        assert_array_almost_equal(points[1], [0.0, 0.0, 2.0])
        assert_array_almost_equal(default_intrinsics.project(points), px)

    def test_project_behind_camera(self, default_intrinsics) -> None:
        """Test NaN for points behind the camera."""
        projected = default_intrinsics.project(np.array([[0.0, 0.0, -1.0]]))
        assert np.all(np.isnan(projected))

    def test_undistort_without_distortion(self, default_intrinsics) -> None:
        """Test that zero distortion leaves pixels unchanged."""
        px = np.array([[15.0, 30.0], [400.0, 300.0]])
        assert_array_almost_equal(default_intrinsics.undistort_points(px), px)

    def test_undistort_with_distortion(self) -> None:
        """Test that undistortion inverts OpenCV's distortion model."""
        intrinsics = CameraIntrinsics.default()
        intrinsics.dist_coeffs = np.array([0.05, -0.01, 0.0, 0.0, 0.0])
        ideal = np.array([[100.0, 80.0], [500.0, 400.0]])

        normalized = (ideal - [intrinsics.cx, intrinsics.cy]) / [intrinsics.fx, intrinsics.fy]
        object_points = np.column_stack([normalized, np.ones(2)])
        distorted, _ = cv2.projectPoints(
            object_points, np.zeros(3), np.zeros(3), intrinsics.K, intrinsics.dist_coeffs
        )

        restored = intrinsics.undistort_points(distorted.reshape(-1, 2))
        assert_array_almost_equal(restored, ideal, decimal=2)

    def test_undistort_empty(self, default_intrinsics) -> None:
        """Test undistorting no points."""
        assert default_intrinsics.undistort_points(np.empty((0, 2))).shape == (0, 2)


class TestRgbdFrame:
    """Tests for RgbdFrame."""

    def test_mask_derived_from_depth(self) -> None:
        """Test automatic validity mask."""
        depth = np.full((4, 5), 1.5, dtype=np.float32)
        depth[0, 0] = np.nan
        frame = RgbdFrame(image_bgr=np.zeros((4, 5, 3), np.uint8), depth_m=depth)

        assert frame.depth_mask[0, 0] == 0
        assert frame.depth_mask[1, 1] == 255
        assert frame.to_gray().shape == (4, 5)

    def test_size_mismatch(self) -> None:
        """Test that color and depth must agree in size."""
        with pytest.raises(ValueError):
            RgbdFrame(
                image_bgr=np.zeros((4, 5, 3), np.uint8),
                depth_m=np.ones((4, 6), np.float32),
            )


class TestDepthLoading:
    """Tests for depth image loading."""

    def test_png_scaled_and_zero_invalid(self, tmp_path: Path) -> None:
        """Test 16-bit PNG conversion to meters."""
        raw = np.array([[0, 1000], [2500, 65535]], dtype=np.uint16)
        path = tmp_path / "depth.png"
        cv2.imwrite(str(path), raw)

        depth = load_depth_image(path, depth_scale=1000.0)

        assert np.isnan(depth[0, 0])
        assert depth[0, 1] == pytest.approx(1.0)
        assert depth[1, 0] == pytest.approx(2.5)

    def test_npy_meters(self, tmp_path: Path) -> None:
        """Test float meters from .npy."""
        path = tmp_path / "depth.npy"
        np.save(path, np.array([[1.25, 0.0]], dtype=np.float32))

        depth = load_depth_image(path)

        assert depth[0, 0] == pytest.approx(1.25)
        assert np.isnan(depth[0, 1])

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test missing depth image."""
        with pytest.raises(FileNotFoundError):
            load_depth_image(tmp_path / "none.png")

    def test_validity_mask(self) -> None:
        """Test mask of finite positive depth."""
        depth = np.array([[np.nan, 0.0, 2.0]], dtype=np.float32)
        assert depth_validity_mask(depth).tolist() == [[0, 0, 255]]
