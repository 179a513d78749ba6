"""
Feature extraction capability for rgbd-vo.

The odometry only needs two things from a feature pipeline: keypoints found
where depth is valid, and fixed-length binary descriptors comparable under
Hamming distance. ``IFeatureExtractor`` captures that contract; the default
``GridFeatureExtractor`` spreads FAST corners over an image grid and describes
them with rotated BRIEF (ORB) on a smoothed image.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

import cv2
import numpy as np
from numpy.typing import NDArray


@dataclass
class FeatureSet:
    """
    Keypoints with their binary descriptors.

    Attributes:
        keypoints: Detected keypoints, index-aligned with descriptors.
        descriptors: Binary descriptors, shape (N, D), dtype uint8.
    """

    keypoints: list[cv2.KeyPoint]
    descriptors: NDArray[np.uint8]

    @property
    def points_px(self) -> NDArray[np.float64]:
        """Raw pixel coordinates, shape (N, 2)."""
        if not self.keypoints:
            return np.empty((0, 2), dtype=np.float64)
        return np.array([kp.pt for kp in self.keypoints], dtype=np.float64)

    def __len__(self) -> int:
        return len(self.keypoints)


class IFeatureExtractor(ABC):
    """
    Abstract base class for keypoint detection and description.
    """

    @abstractmethod
    def detect(
        self, gray: NDArray[np.uint8], mask: Optional[NDArray[np.uint8]] = None
    ) -> list[cv2.KeyPoint]:
        """
        Detect keypoints.

        Args:
            gray: Grayscale image.
            mask: Optional uint8 mask, nonzero where detection is allowed.

        Returns:
            List of keypoints.
        """
        pass

    @abstractmethod
    def compute(
        self, gray: NDArray[np.uint8], keypoints: Sequence[cv2.KeyPoint]
    ) -> FeatureSet:
        """
        Compute binary descriptors for keypoints.

        Implementations may drop keypoints they cannot describe; the returned
        set stays index-aligned.

        Args:
            gray: Grayscale image.
            keypoints: Keypoints from ``detect``.

        Returns:
            FeatureSet with surviving keypoints and their descriptors.
        """
        pass


class GridFeatureExtractor(IFeatureExtractor):
    """
    Grid-adapted FAST detector with ORB descriptors.

    Each grid cell keeps its strongest corners so features cover the whole
    image instead of clustering on the most textured region.
    """

    def __init__(
        self,
        max_features: int = 750,
        grid_rows: int = 6,
        grid_cols: int = 8,
        fast_threshold: int = 20,
        blur_kernel: int = 9,
        blur_sigma: float = 2.0,
    ) -> None:
        """
        Initialize extractor.

        Args:
            max_features: Total keypoint budget over the grid.
            grid_rows: Grid rows.
            grid_cols: Grid columns.
            fast_threshold: FAST intensity threshold.
            blur_kernel: Gaussian kernel size applied before describing.
            blur_sigma: Gaussian sigma applied before describing.
        """
        if max_features <= 0:
            raise ValueError("max_features must be positive")

        self._max_features = max_features
        self._grid_rows = grid_rows
        self._grid_cols = grid_cols
        self._blur_kernel = blur_kernel
        self._blur_sigma = blur_sigma
        self._fast = cv2.FastFeatureDetector_create(
            threshold=fast_threshold, nonmaxSuppression=True
        )
        self._orb = cv2.ORB_create(nfeatures=max_features)

    def detect(
        self, gray: NDArray[np.uint8], mask: Optional[NDArray[np.uint8]] = None
    ) -> list[cv2.KeyPoint]:
        """Detect FAST corners cell by cell, keeping the best per cell."""
        height, width = gray.shape[:2]
        per_cell = max(1, self._max_features // (self._grid_rows * self._grid_cols))
        keypoints: list[cv2.KeyPoint] = []

        for row in range(self._grid_rows):
            y0 = row * height // self._grid_rows
            y1 = (row + 1) * height // self._grid_rows
            for col in range(self._grid_cols):
                x0 = col * width // self._grid_cols
                x1 = (col + 1) * width // self._grid_cols

                cell_mask = mask[y0:y1, x0:x1] if mask is not None else None
                cell_kps = self._fast.detect(gray[y0:y1, x0:x1], cell_mask)
                cell_kps = sorted(cell_kps, key=lambda kp: kp.response, reverse=True)

                for kp in cell_kps[:per_cell]:
                    kp.pt = (kp.pt[0] + x0, kp.pt[1] + y0)
                    keypoints.append(kp)

        return keypoints

    def compute(
        self, gray: NDArray[np.uint8], keypoints: Sequence[cv2.KeyPoint]
    ) -> FeatureSet:
        """Describe keypoints on a smoothed copy of the image."""
        if not keypoints:
            return FeatureSet(keypoints=[], descriptors=np.empty((0, 32), np.uint8))

        smooth = cv2.GaussianBlur(
            gray,
            (self._blur_kernel, self._blur_kernel),
            self._blur_sigma,
            sigmaY=self._blur_sigma,
        )
        kept, descriptors = self._orb.compute(smooth, list(keypoints))

        if descriptors is None or not kept:
            return FeatureSet(keypoints=[], descriptors=np.empty((0, 32), np.uint8))

        return FeatureSet(keypoints=list(kept), descriptors=descriptors)
