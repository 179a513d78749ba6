"""Version information for rgbd-vo."""

__version__ = "0.3.0"
