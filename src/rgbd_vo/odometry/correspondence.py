"""
Correspondence building for rgbd-vo.

Turns an RGB-D frame into an observation (keypoints, descriptors, idealized
pixels and 3D points) and matches two observations with a windowed,
mutually-consistent Hamming matcher.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

import cv2
import numpy as np
from numpy.typing import NDArray

from rgbd_vo.config.schema import MatchingConfig
from rgbd_vo.logging import get_logger
from rgbd_vo.perception.calib import CameraIntrinsics
from rgbd_vo.perception.camera import RgbdFrame
from rgbd_vo.perception.features import FeatureSet, IFeatureExtractor
from rgbd_vo.utils.math3d import extract_guess_angles
from rgbd_vo.utils.throttling import RateLimiter

logger = get_logger(__name__)


@dataclass(frozen=True)
class FrameObservation:
    """
    Features of one frame, all arrays index-aligned.

    Attributes:
        features: Keypoints and descriptors.
        idealized_px: Undistorted pixel coordinates, shape (N, 2).
        points_3d: Back-projected optical-frame points, shape (N, 3).
        fallback_count: Points whose depth was replaced by the fallback.
        detected_count: Keypoints the extractor found, kept even when
            undistortion discarded them.
        calibration_failed: Whether undistortion raised for this frame.
    """

    features: FeatureSet
    idealized_px: NDArray[np.float64]
    points_3d: NDArray[np.float64]
    fallback_count: int = 0
    detected_count: int = 0
    calibration_failed: bool = False

    @property
    def raw_px(self) -> NDArray[np.float64]:
        """Raw keypoint pixel coordinates, shape (N, 2)."""
        return self.features.points_px

    @property
    def descriptors(self) -> NDArray[np.uint8]:
        return self.features.descriptors

    def __len__(self) -> int:
        return len(self.features)


@dataclass
class CorrespondenceSet:
    """
    Mutually matched features between the current frame and the reference.

    Attributes:
        current_indices: Feature indices in the current observation.
        reference_indices: Feature indices in the reference observation.
        current_px: Idealized current pixels, shape (M, 2).
        reference_px: Idealized reference pixels, shape (M, 2).
        current_3d: Current 3D points, shape (M, 3).
        reference_3d: Reference 3D points, shape (M, 3).
        forward_matches: Matches found current -> reference before the
            mutual check.
        window: Matching window (width, height) that was used.
    """

    current_indices: NDArray[np.intp]
    reference_indices: NDArray[np.intp]
    current_px: NDArray[np.float64]
    reference_px: NDArray[np.float64]
    current_3d: NDArray[np.float64]
    reference_3d: NDArray[np.float64]
    forward_matches: int = 0
    window: tuple[int, int] = field(default=(0, 0))

    def __len__(self) -> int:
        return int(len(self.current_indices))


def windowed_matching_mask(
    query_px: NDArray[np.float64],
    train_px: NDArray[np.float64],
    max_dx: float,
    max_dy: float,
) -> NDArray[np.uint8]:
    """
    Mask allowing matches only between keypoints that lie close in the image.

    Args:
        query_px: Query keypoint positions, shape (Q, 2).
        train_px: Train keypoint positions, shape (T, 2).
        max_dx: Maximum horizontal distance.
        max_dy: Maximum vertical distance.

    Returns:
        uint8 mask of shape (Q, T), 1 where a match is allowed.
    """
    query_px = np.asarray(query_px, dtype=np.float64).reshape(-1, 2)
    train_px = np.asarray(train_px, dtype=np.float64).reshape(-1, 2)
    dx = np.abs(query_px[:, None, 0] - train_px[None, :, 0])
    dy = np.abs(query_px[:, None, 1] - train_px[None, :, 1])
    return ((dx <= max_dx) & (dy <= max_dy)).astype(np.uint8)


def select_window(
    config: MatchingConfig, rotation_guess: Optional[NDArray[np.float64]] = None
) -> tuple[int, int]:
    """
    Pick the matching window for the expected inter-frame rotation.

    A strong roll shrinks both dimensions; otherwise a strong pitch shrinks
    the vertical extent and a strong yaw the horizontal one. Guesses whose
    R[0,0] is below 0.1 are treated as unreliable.

    Args:
        config: Matching configuration with window presets.
        rotation_guess: Optional 3x3 rotation guess.

    Returns:
        Window as (width, height) in pixels.
    """
    base = (config.window.width, config.window.height)
    if rotation_guess is None:
        return base

    rotation_guess = np.asarray(rotation_guess, dtype=np.float64)
    if rotation_guess.shape != (3, 3) or rotation_guess[0, 0] < 0.1:
        return base

    roll, pitch, yaw = extract_guess_angles(rotation_guess)

    if abs(roll) > config.roll_threshold_rad:
        preset = config.roll_window
    elif abs(pitch) > config.pitch_threshold_rad:
        preset = config.pitch_window
    elif abs(yaw) > config.yaw_threshold_rad:
        preset = config.yaw_window
    else:
        return base

    return (preset.width, preset.height)


def match_map(matches: list[cv2.DMatch], query_count: int) -> NDArray[np.intp]:
    """Best train index per query index, -1 where the query had no match."""
    best = np.full(query_count, -1, dtype=np.intp)
    for m in matches:
        best[m.queryIdx] = m.trainIdx
    return best


def mutual_matches(
    forward: NDArray[np.intp], reverse: NDArray[np.intp]
) -> tuple[NDArray[np.intp], NDArray[np.intp]]:
    """
    Keep pairs (i, j) with forward[i] == j and reverse[j] == i.

    Args:
        forward: Best reference index per current feature (-1 if none).
        reverse: Best current index per reference feature (-1 if none).

    Returns:
        Tuple of (current indices, reference indices) in current-index order.
    """
    forward = np.asarray(forward, dtype=np.intp)
    reverse = np.asarray(reverse, dtype=np.intp)

    current = np.flatnonzero(forward >= 0)
    reference = forward[current]
    keep = reverse[reference] == current
    return current[keep], reference[keep]


class CorrespondenceBuilder:
    """
    Builds frame observations and mutual correspondences between them.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        extractor: IFeatureExtractor,
        matching: Optional[MatchingConfig] = None,
        fallback_depth_m: float = 8.0,
    ) -> None:
        """
        Initialize builder.

        Args:
            intrinsics: Camera intrinsics for undistortion and back-projection.
            extractor: Feature extractor.
            matching: Matching configuration.
            fallback_depth_m: Depth assigned where the depth image is invalid.
        """
        self._intrinsics = intrinsics
        self._extractor = extractor
        self._matching = matching or MatchingConfig()
        self._fallback_depth_m = fallback_depth_m
        self._fallback_log_limiter = RateLimiter(rate_hz=1.0)

    @property
    def extractor(self) -> IFeatureExtractor:
        return self._extractor

    def detect(self, frame: RgbdFrame) -> FeatureSet:
        """Detect and describe features where depth is valid."""
        gray = frame.to_gray()
        keypoints = self._extractor.detect(gray, frame.depth_mask)
        return self._extractor.compute(gray, keypoints)

    def observe(self, frame: RgbdFrame) -> FrameObservation:
        """
        Detect features and lift them to idealized pixels and 3D points.

        An undistortion failure is logged and yields an empty observation.

        Args:
            frame: RGB-D frame.

        Returns:
            FrameObservation, possibly empty.
        """
        features = self.detect(frame)
        raw_px = features.points_px

        try:
            idealized_px = self._intrinsics.undistort_points(raw_px)
        except cv2.error as e:
            logger.error(
                "undistort_failed",
                frame_id=frame.frame_id,
                detected=len(features),
                error=str(e),
            )
            return self.empty_observation(
                detected_count=len(features), calibration_failed=True
            )

        points_3d, fallback_count = self.lift_points(raw_px, idealized_px, frame.depth_m)
        if fallback_count and self._fallback_log_limiter.should_run():
            logger.warning(
                "depth_fallback_applied",
                frame_id=frame.frame_id,
                count=fallback_count,
                depth_m=self._fallback_depth_m,
            )

        return FrameObservation(
            features=features,
            idealized_px=idealized_px,
            points_3d=points_3d,
            fallback_count=fallback_count,
            detected_count=len(features),
        )

    @staticmethod
    def empty_observation(
        detected_count: int = 0, calibration_failed: bool = False
    ) -> FrameObservation:
        """Observation with no usable features."""
        return FrameObservation(
            features=FeatureSet(keypoints=[], descriptors=np.empty((0, 32), np.uint8)),
            idealized_px=np.empty((0, 2), dtype=np.float64),
            points_3d=np.empty((0, 3), dtype=np.float64),
            detected_count=detected_count,
            calibration_failed=calibration_failed,
        )

    def lift_points(
        self,
        raw_px: NDArray[np.float64],
        idealized_px: NDArray[np.float64],
        depth_m: NDArray[np.float32],
    ) -> tuple[NDArray[np.float64], int]:
        """
        Back-project idealized pixels using depth sampled at the raw positions.

        Args:
            raw_px: Raw keypoint positions, shape (N, 2).
            idealized_px: Undistorted positions, shape (N, 2).
            depth_m: Depth image in meters.

        Returns:
            Tuple of (3D points (N, 3), number of fallback depths used).
        """
        if len(raw_px) == 0:
            return np.empty((0, 3), dtype=np.float64), 0

        height, width = depth_m.shape[:2]
        cols = np.clip(raw_px[:, 0].astype(np.intp), 0, width - 1)
        rows = np.clip(raw_px[:, 1].astype(np.intp), 0, height - 1)
        z = depth_m[rows, cols].astype(np.float64)

        invalid = ~np.isfinite(z) | (z <= 0)
        z[invalid] = self._fallback_depth_m

        return self._intrinsics.back_project(idealized_px, z), int(invalid.sum())

    def match(
        self,
        current: FrameObservation,
        reference: FrameObservation,
        rotation_guess: Optional[NDArray[np.float64]] = None,
    ) -> CorrespondenceSet:
        """
        Mutually match current features against the reference.

        Args:
            current: Current frame observation.
            reference: Reference frame observation.
            rotation_guess: Optional expected rotation, used to size the window.

        Returns:
            CorrespondenceSet in current-index order.
        """
        window = select_window(self._matching, rotation_guess)
        if len(current) == 0 or len(reference) == 0:
            return self._gather(current, reference, [], [], 0, window)

        forward_mask = windowed_matching_mask(
            current.raw_px, reference.raw_px, window[0], window[1]
        )
        reverse_mask = np.ascontiguousarray(forward_mask.T)

        if self._matching.parallel:
            with ThreadPoolExecutor(max_workers=2) as pool:
                forward_job = pool.submit(
                    _match, current.descriptors, reference.descriptors, forward_mask
                )
                reverse_job = pool.submit(
                    _match, reference.descriptors, current.descriptors, reverse_mask
                )
                forward_matches = forward_job.result()
                reverse_matches = reverse_job.result()
        else:
            forward_matches = _match(
                current.descriptors, reference.descriptors, forward_mask
            )
            reverse_matches = _match(
                reference.descriptors, current.descriptors, reverse_mask
            )

        forward = match_map(forward_matches, len(current))
        reverse = match_map(reverse_matches, len(reference))
        current_idx, reference_idx = mutual_matches(forward, reverse)

        logger.debug(
            "correspondences_built",
            forward=len(forward_matches),
            reverse=len(reverse_matches),
            mutual=len(current_idx),
            window=window,
        )

        return self._gather(
            current, reference, current_idx, reference_idx, len(forward_matches), window
        )

    @staticmethod
    def _gather(
        current: FrameObservation,
        reference: FrameObservation,
        current_idx,
        reference_idx,
        forward_matches: int,
        window: tuple[int, int],
    ) -> CorrespondenceSet:
        current_idx = np.asarray(current_idx, dtype=np.intp)
        reference_idx = np.asarray(reference_idx, dtype=np.intp)
        return CorrespondenceSet(
            current_indices=current_idx,
            reference_indices=reference_idx,
            current_px=current.idealized_px[current_idx].reshape(-1, 2),
            reference_px=reference.idealized_px[reference_idx].reshape(-1, 2),
            current_3d=current.points_3d[current_idx].reshape(-1, 3),
            reference_3d=reference.points_3d[reference_idx].reshape(-1, 3),
            forward_matches=forward_matches,
            window=window,
        )


def _match(
    query: NDArray[np.uint8], train: NDArray[np.uint8], mask: NDArray[np.uint8]
) -> list[cv2.DMatch]:
    """Brute-force Hamming match; each call owns its matcher."""
    matcher = cv2.BFMatcher(cv2.NORM_HAMMING)
    return list(matcher.match(query, train, mask=mask))
