"""
I/O utilities for rgbd-vo.

Provides YAML loading/saving and RGB-D image loading.
"""

from pathlib import Path
from typing import Any

import cv2
import numpy as np
import yaml
from numpy.typing import NDArray


def load_yaml(path: Path) -> dict[str, Any]:
    """
    Load YAML file.

    Args:
        path: Path to YAML file.

    Returns:
        Parsed YAML content.

    Raises:
        FileNotFoundError: If file doesn't exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"YAML file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def save_yaml(data: dict[str, Any], path: Path) -> None:
    """
    Save data to YAML file.

    Args:
        data: Data to save.
        path: Output path.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def load_color_image(path: Path) -> NDArray[np.uint8]:
    """
    Load a color image as BGR.

    Args:
        path: Path to PNG/JPG image.

    Returns:
        BGR image, shape (H, W, 3).

    Raises:
        FileNotFoundError: If the image cannot be read.
    """
    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image is None:
        raise FileNotFoundError(f"Image not found or unreadable: {path}")
    return image


def load_depth_image(path: Path, depth_scale: float = 1000.0) -> NDArray[np.float32]:
    """
    Load a depth image as float meters.

    ``.npy`` files are taken to already hold meters. Integer images (16-bit PNG)
    are divided by ``depth_scale``. Zero readings become NaN.

    Args:
        path: Path to depth file.
        depth_scale: Raw depth units per meter.

    Returns:
        Float32 depth image in meters, NaN where invalid.
    """
    path = Path(path)
    if path.suffix == ".npy":
        if not path.exists():
            raise FileNotFoundError(f"Depth file not found: {path}")
        depth = np.load(path).astype(np.float32)
    else:
        raw = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if raw is None:
            raise FileNotFoundError(f"Depth image not found or unreadable: {path}")
        depth = raw.astype(np.float32) / float(depth_scale)

    depth[depth <= 0] = np.nan
    return depth


def depth_validity_mask(depth: NDArray[np.float32]) -> NDArray[np.uint8]:
    """
    Build the 8-bit validity mask for a float depth image.

    Args:
        depth: Depth image in meters.

    Returns:
        uint8 mask, 255 where depth is finite and positive, 0 elsewhere.
    """
    valid = np.isfinite(depth) & (np.nan_to_num(depth, nan=0.0) > 0)
    return (valid.astype(np.uint8)) * 255
