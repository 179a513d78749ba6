"""
Camera calibration utilities for rgbd-vo.

Provides the pinhole model of the RGB camera: loading, undistortion to
idealized pixel coordinates, projection and back-projection.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import cv2
import numpy as np
from numpy.typing import NDArray

from rgbd_vo.utils.io import load_yaml


@dataclass
class CameraIntrinsics:
    """
    Camera intrinsic parameters.

    Attributes:
        K: 3x3 camera matrix.
        dist_coeffs: Distortion coefficients (k1, k2, p1, p2, k3, ...).
        width: Image width.
        height: Image height.
    """

    K: NDArray[np.float64]
    dist_coeffs: NDArray[np.float64]
    width: int
    height: int

    @classmethod
    def from_yaml(cls, path: Path) -> "CameraIntrinsics":
        """
        Load intrinsics from YAML file.

        Expected format:
            camera_matrix: [[fx, 0, cx], [0, fy, cy], [0, 0, 1]]
            dist_coeffs: [k1, k2, p1, p2, k3]
            image_width: 640
            image_height: 480

        Args:
            path: Path to YAML file.

        Returns:
            CameraIntrinsics instance.
        """
        data = load_yaml(path)

        K = np.array(data["camera_matrix"], dtype=np.float64)
        dist_coeffs = np.array(
            data.get("dist_coeffs", [0, 0, 0, 0, 0]), dtype=np.float64
        )
        width = int(data.get("image_width", 640))
        height = int(data.get("image_height", 480))

        return cls(K=K, dist_coeffs=dist_coeffs, width=width, height=height)

    @classmethod
    def default(cls, width: int = 640, height: int = 480) -> "CameraIntrinsics":
        """
        Create default intrinsics (approximate, for testing).

        Uses the factory calibration of a Kinect-class RGB camera,
        scaled to the requested resolution.

        Args:
            width: Image width.
            height: Image height.

        Returns:
            CameraIntrinsics with default values.
        """
        fx = fy = 525.0 * width / 640.0
        cx, cy = (width - 1) / 2.0, (height - 1) / 2.0

        K = np.array(
            [
                [fx, 0, cx],
                [0, fy, cy],
                [0, 0, 1],
            ],
            dtype=np.float64,
        )

        return cls(
            K=K,
            dist_coeffs=np.zeros(5, dtype=np.float64),
            width=width,
            height=height,
        )

    @classmethod
    def from_config(
        cls,
        intrinsics_path: Optional[Path] = None,
        width: int = 640,
        height: int = 480,
    ) -> "CameraIntrinsics":
        """
        Load intrinsics from a config path, falling back to defaults.

        Args:
            intrinsics_path: Path to intrinsics YAML (optional).
            width: Default image width if no intrinsics.
            height: Default image height if no intrinsics.

        Returns:
            CameraIntrinsics instance.
        """
        if intrinsics_path and Path(intrinsics_path).exists():
            return cls.from_yaml(Path(intrinsics_path))
        return cls.default(width, height)

    @property
    def fx(self) -> float:
        """Focal length x."""
        return float(self.K[0, 0])

    @property
    def fy(self) -> float:
        """Focal length y."""
        return float(self.K[1, 1])

    @property
    def cx(self) -> float:
        """Principal point x."""
        return float(self.K[0, 2])

    @property
    def cy(self) -> float:
        """Principal point y."""
        return float(self.K[1, 2])

    def undistort_points(self, points_px: NDArray[np.float64]) -> NDArray[np.float64]:
        """
        Undistort raw pixel coordinates into idealized pixel coordinates.

        The camera matrix is passed back in as the new projection so the
        output stays in pixels rather than normalized coordinates.

        Args:
            points_px: Raw pixel coordinates, shape (N, 2).

        Returns:
            Idealized pixel coordinates, shape (N, 2).

        Raises:
            cv2.error: If the calibration is malformed.
        """
        points = np.asarray(points_px, dtype=np.float64).reshape(-1, 1, 2)
        if len(points) == 0:
            return np.empty((0, 2), dtype=np.float64)

        idealized = cv2.undistortPoints(
            points, self.K, self.dist_coeffs, P=self.K
        )
        return idealized.reshape(-1, 2).astype(np.float64)

    def back_project(
        self, points_px: NDArray[np.float64], depth_m: NDArray[np.float64]
    ) -> NDArray[np.float64]:
        """
        Back-project idealized pixels with depth into the optical frame.

        x = (u - cx) * z / fx, y = (v - cy) * z / fy.

        Args:
            points_px: Idealized pixel coordinates, shape (N, 2).
            depth_m: Depth per point, shape (N,).

        Returns:
            3D points, shape (N, 3).
        """
        points_px = np.asarray(points_px, dtype=np.float64).reshape(-1, 2)
        z = np.asarray(depth_m, dtype=np.float64).reshape(-1)
        x = (points_px[:, 0] - self.cx) * z / self.fx
        y = (points_px[:, 1] - self.cy) * z / self.fy
        return np.column_stack([x, y, z])

    def project(self, points_3d: NDArray[np.float64]) -> NDArray[np.float64]:
        """
        Project optical-frame points onto the idealized image plane.

        Points at or behind the camera project to NaN.

        Args:
            points_3d: 3D points, shape (N, 3).

        Returns:
            Pixel coordinates, shape (N, 2).
        """
        points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
        z = points_3d[:, 2]
        safe_z = np.where(z > 0, z, np.nan)
        u = self.fx * points_3d[:, 0] / safe_z + self.cx
        v = self.fy * points_3d[:, 1] / safe_z + self.cy
        return np.column_stack([u, v])
