"""
Telemetry data collection for rgbd-vo.

Per-frame odometry measurements kept in a sliding window for summaries.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class OdometryTelemetry:
    """Single odometry step measurement."""

    timestamp_s: float
    latency_ms: float
    success: bool
    total_features: int = 0
    correspondences: int = 0
    inliers: int = 0
    promoted_reference: bool = False
    failure: Optional[str] = None
    frame_id: int = 0

    @property
    def inlier_ratio(self) -> float:
        """Fraction of correspondences that are inliers."""
        if self.correspondences == 0:
            return 0.0
        return self.inliers / self.correspondences

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "timestamp_s": self.timestamp_s,
            "latency_ms": round(self.latency_ms, 2),
            "success": self.success,
            "total_features": self.total_features,
            "correspondences": self.correspondences,
            "inliers": self.inliers,
            "inlier_ratio": round(self.inlier_ratio, 3),
            "promoted_reference": self.promoted_reference,
            "failure": self.failure,
            "frame_id": self.frame_id,
        }


@dataclass
class TelemetryCollector:
    """
    Collects and aggregates odometry telemetry.

    Maintains a sliding window of recent measurements for statistics.
    """

    window_size: int = 100
    _data: deque[OdometryTelemetry] = field(default_factory=lambda: deque(maxlen=100))

    def __post_init__(self) -> None:
        """Initialize deque with correct maxlen."""
        self._data = deque(maxlen=self.window_size)

    def record(self, data: OdometryTelemetry) -> None:
        """Record a telemetry measurement."""
        self._data.append(data)

    def get_latency_stats(self) -> dict[str, float]:
        """
        Calculate latency statistics.

        Returns:
            Dictionary with mean, min, max latency in ms.
        """
        if not self._data:
            return {"mean": 0.0, "min": 0.0, "max": 0.0}

        latencies = [d.latency_ms for d in self._data]
        return {
            "mean": sum(latencies) / len(latencies),
            "min": min(latencies),
            "max": max(latencies),
        }

    def get_summary(self) -> dict[str, Any]:
        """
        Get summary of collected telemetry.

        Returns:
            Summary dictionary.
        """
        if not self._data:
            return {
                "sample_count": 0,
                "success_rate": 0.0,
                "latency": {"mean": 0.0, "min": 0.0, "max": 0.0},
            }

        successes = [d for d in self._data if d.success]
        return {
            "sample_count": len(self._data),
            "success_rate": len(successes) / len(self._data),
            "latency": self.get_latency_stats(),
            "inlier_ratio": {
                "mean": (
                    sum(d.inlier_ratio for d in successes) / len(successes)
                    if successes
                    else 0.0
                ),
                "min": min((d.inlier_ratio for d in successes), default=0.0),
            },
            "promotions": sum(1 for d in self._data if d.promoted_reference),
        }

    def clear(self) -> None:
        """Clear all collected data."""
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)
