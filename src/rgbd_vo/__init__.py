"""
rgbd-vo - Visual odometry for RGB-D sensors on aerial vehicles.

This package estimates the relative rotation and translation of a depth camera
between a stored reference frame and the current frame, together with a 7x7
pose covariance suitable for a downstream navigation filter.
"""

from rgbd_vo.version import __version__

__all__ = ["__version__"]
