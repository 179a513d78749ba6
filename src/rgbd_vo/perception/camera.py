"""
RGB-D frame container for rgbd-vo.

A frame bundles the color image with its registered float depth image and
the 8-bit depth validity mask used to restrict feature detection.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import cv2
import numpy as np
from numpy.typing import NDArray

from rgbd_vo.utils.io import depth_validity_mask


@dataclass
class RgbdFrame:
    """
    Single RGB-D frame with metadata.

    Attributes:
        image_bgr: BGR image as numpy array, shape (H, W, 3), dtype uint8.
        depth_m: Float depth image in meters, shape (H, W), NaN where invalid.
        depth_mask: uint8 validity mask, shape (H, W), nonzero where depth is valid.
        timestamp_s: UTC timestamp in seconds.
        frame_id: Sequential frame identifier.
        meta: Additional metadata dictionary.
    """

    image_bgr: NDArray[np.uint8]
    depth_m: NDArray[np.float32]
    depth_mask: Optional[NDArray[np.uint8]] = None
    timestamp_s: float = 0.0
    frame_id: int = 0
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Derive the validity mask from depth if none was given."""
        if self.image_bgr.shape[:2] != self.depth_m.shape[:2]:
            raise ValueError(
                f"Color {self.image_bgr.shape[:2]} and depth "
                f"{self.depth_m.shape[:2]} sizes differ"
            )
        if self.depth_mask is None:
            self.depth_mask = depth_validity_mask(self.depth_m)

    @property
    def height(self) -> int:
        """Image height in pixels."""
        return self.image_bgr.shape[0]

    @property
    def width(self) -> int:
        """Image width in pixels."""
        return self.image_bgr.shape[1]

    def to_gray(self) -> NDArray[np.uint8]:
        """Convert to grayscale."""
        if self.image_bgr.ndim == 2:
            return self.image_bgr
        return cv2.cvtColor(self.image_bgr, cv2.COLOR_BGR2GRAY)
