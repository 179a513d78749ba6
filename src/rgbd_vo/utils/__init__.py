"""Utility modules for rgbd-vo."""

from rgbd_vo.utils.time import Timer, get_timestamp_s
from rgbd_vo.utils.math3d import (
    euler_to_rotation_matrix,
    extract_guess_angles,
    is_rotation_matrix,
    quaternion_to_rotation_matrix,
    rotation_angle,
    rotation_matrix_to_quaternion,
)
from rgbd_vo.utils.io import (
    depth_validity_mask,
    load_color_image,
    load_depth_image,
    load_yaml,
    save_yaml,
)
from rgbd_vo.utils.throttling import RateLimiter

__all__ = [
    "Timer",
    "get_timestamp_s",
    "euler_to_rotation_matrix",
    "extract_guess_angles",
    "is_rotation_matrix",
    "quaternion_to_rotation_matrix",
    "rotation_angle",
    "rotation_matrix_to_quaternion",
    "depth_validity_mask",
    "load_color_image",
    "load_depth_image",
    "load_yaml",
    "save_yaml",
    "RateLimiter",
]
