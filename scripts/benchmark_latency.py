#!/usr/bin/env python3
"""
Latency Benchmark Utility for rgbd-vo.

Measures per-stage latency of the odometry step on a synthetic RGB-D pair:
feature extraction, correspondence building, RANSAC and covariance
propagation, plus the end-to-end estimate.

Usage:
    python scripts/benchmark_latency.py --iterations 200 --solver rigid
"""

import argparse
import statistics
import sys
import time
from typing import Callable, List

import cv2
import numpy as np

from rgbd_vo.config import SolverType, VoConfig
from rgbd_vo.odometry import CorrespondenceBuilder, PoseEstimator, RansacEngine
from rgbd_vo.perception import CameraIntrinsics, GridFeatureExtractor, RgbdFrame


def generate_synthetic_pair(
    width: int = 640,
    height: int = 480,
    shift_px: int = 6,
    depth_m: float = 2.0,
    seed: int = 0,
) -> tuple[RgbdFrame, RgbdFrame]:
    """
    Generate a textured fronto-parallel scene and a horizontally shifted view.

    Args:
        width: Frame width.
        height: Frame height.
        shift_px: Horizontal image shift of the second view.
        depth_m: Constant scene depth.
        seed: Texture seed.

    Returns:
        Tuple of (reference frame, current frame).
    """
    rng = np.random.default_rng(seed)
    coarse = rng.integers(0, 256, size=(height // 8, width // 8), dtype=np.uint8)
    texture = cv2.resize(coarse, (width, height), interpolation=cv2.INTER_NEAREST)
    image = cv2.cvtColor(texture, cv2.COLOR_GRAY2BGR)
    depth = np.full((height, width), depth_m, dtype=np.float32)

    reference = RgbdFrame(image_bgr=image, depth_m=depth, frame_id=0)
    current = RgbdFrame(
        image_bgr=np.roll(image, shift_px, axis=1), depth_m=depth.copy(), frame_id=1
    )
    return reference, current


def measure(iterations: int, fn: Callable[[], object], warmup: int = 5) -> List[float]:
    """
    Time repeated calls of a function.

    Returns:
        List of latency measurements in milliseconds.
    """
    for _ in range(warmup):
        fn()

    latencies = []
    for _ in range(iterations):
        start = time.perf_counter()
        fn()
        end = time.perf_counter()
        latencies.append((end - start) * 1000)
    return latencies


def print_statistics(name: str, latencies: List[float]) -> None:
    """Print latency statistics."""
    if not latencies:
        print(f"{name}: No data")
        return

    ordered = sorted(latencies)
    print(f"\n{name}")
    print("-" * 50)
    print(f"  Samples:     {len(latencies)}")
    print(f"  Mean:        {statistics.mean(latencies):.3f} ms")
    print(f"  Median:      {statistics.median(latencies):.3f} ms")
    if len(latencies) > 1:
        print(f"  Std Dev:     {statistics.stdev(latencies):.3f} ms")
    print(f"  Min:         {ordered[0]:.3f} ms")
    print(f"  Max:         {ordered[-1]:.3f} ms")
    print(f"  P95:         {ordered[int(len(ordered) * 0.95)]:.3f} ms")
    print(f"  Throughput:  {1000 / statistics.mean(latencies):.1f} Hz")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Latency benchmark utility for rgbd-vo.",
    )
    parser.add_argument(
        "--iterations",
        "-n",
        type=int,
        default=200,
        help="Number of benchmark iterations",
    )
    parser.add_argument("--width", type=int, default=640, help="Frame width")
    parser.add_argument("--height", type=int, default=480, help="Frame height")
    parser.add_argument(
        "--solver",
        choices=[s.value for s in SolverType],
        default=SolverType.RIGID.value,
        help="RANSAC minimal solver",
    )
    parser.add_argument(
        "--serial",
        action="store_true",
        help="Run forward and reverse matching serially",
    )
    args = parser.parse_args()

    config = VoConfig()
    config.ransac.solver = SolverType(args.solver)
    config.matching.parallel = not args.serial

    print("=" * 60)
    print("RGBD-VO LATENCY BENCHMARK")
    print("=" * 60)
    print(f"Iterations: {args.iterations}")
    print(f"Resolution: {args.width}x{args.height}")
    print(f"Solver:     {args.solver}")

    intrinsics = CameraIntrinsics.default(args.width, args.height)
    reference, current = generate_synthetic_pair(args.width, args.height)

    extractor = GridFeatureExtractor(max_features=config.feature_budget)
    builder = CorrespondenceBuilder(intrinsics, extractor, matching=config.matching)
    ransac = RansacEngine(
        intrinsics, iterations=config.ransac_iterations, solver=config.ransac.solver
    )

    reference_obs = builder.observe(reference)
    current_obs = builder.observe(current)
    print(f"Features:   {len(reference_obs)} / {len(current_obs)}")

    print_statistics(
        "Feature Extraction", measure(args.iterations, lambda: builder.observe(current))
    )
    print_statistics(
        "Correspondences",
        measure(args.iterations, lambda: builder.match(current_obs, reference_obs)),
    )

    matches = builder.match(current_obs, reference_obs)
    print(f"\nMutual matches: {len(matches)}")
    if len(matches) < config.matching.min_correspondences:
        print("Warning: too few matches, skipping RANSAC benchmark")
        return 1

    print_statistics(
        "RANSAC",
        measure(
            args.iterations,
            lambda: ransac.run(matches.reference_3d, matches.current_3d, matches.current_px),
        ),
    )

    estimator = PoseEstimator(intrinsics, config=config, extractor=extractor)
    if not estimator.set_reference_view(reference):
        print("Warning: reference rejected, skipping end-to-end benchmark")
        return 1

    latencies = measure(args.iterations, lambda: estimator.estimate(current))
    print_statistics("End-to-end Estimate", latencies)

    print("\n" + "=" * 60)
    print("BENCHMARK COMPLETE")
    print("=" * 60)

    return 0


if __name__ == "__main__":
    sys.exit(main())
