"""
Integration tests for the rgbd-vo odometry pipeline.

Runs the estimator and tracker end to end on synthetic RGB-D frames served
by a fake feature extractor, without camera hardware.
"""

import cv2
import numpy as np
import pytest
from numpy.testing import assert_array_almost_equal

from rgbd_vo.config.schema import CovarianceMethod, SolverType, TrackingConfig
from rgbd_vo.odometry import (
    EstimateFailure,
    OdometryTracker,
    Pose3D,
    PoseEstimator,
    ReferenceNotSetError,
)
from rgbd_vo.utils.math3d import (
    euler_to_rotation_matrix,
    rotation_matrix_to_quaternion,
)


@pytest.fixture
def estimator(default_intrinsics, scene_builder, test_config) -> PoseEstimator:
    """Estimator wired to the synthetic scene extractor."""
    return PoseEstimator(
        default_intrinsics, config=test_config, extractor=scene_builder.extractor
    )


def reference_and_moved(scene_builder, motion, count: int = 300):
    """Reference frame (id 0) and moved frame (id 1) of one scene."""
    R, t = motion
    scene = scene_builder.scene(count, R, t)
    reference = scene_builder.frame(10, scene.points_ref, scene.descriptors, frame_id=0)
    current = scene_builder.frame(20, scene.points_cur, scene.descriptors, frame_id=1)
    return scene, reference, current


class TestReferenceLifecycle:
    """Tests for setting, promoting and clearing the reference view."""

    def test_estimate_without_reference(self, estimator, scene_builder) -> None:
        """Test that estimating before any reference raises."""
        scene = scene_builder.scene(100)
        frame = scene_builder.frame(10, scene.points_ref, scene.descriptors)

        with pytest.raises(ReferenceNotSetError):
            estimator.estimate(frame)

    def test_reference_rejected_with_few_features(
        self, estimator, scene_builder
    ) -> None:
        """Test that a sparse view is not accepted as reference."""
        scene = scene_builder.scene(20)
        frame = scene_builder.frame(10, scene.points_ref, scene.descriptors)

        assert estimator.set_reference_view(frame) is False
        assert estimator.has_reference is False

    def test_rejection_keeps_previous_reference(
        self, estimator, scene_builder
    ) -> None:
        """Test that a rejected view leaves the existing reference in place."""
        scene = scene_builder.scene(200)
        good = scene_builder.frame(10, scene.points_ref, scene.descriptors, frame_id=4)
        sparse = scene_builder.frame(
            30, scene.points_ref[:10], scene.descriptors[:10], frame_id=5
        )

        assert estimator.set_reference_view(good)
        assert estimator.set_reference_view(sparse) is False
        assert estimator.reference.frame_id == 4

    def test_no_features_with_promotion_clears_reference(
        self, estimator, scene_builder
    ) -> None:
        """Test that a featureless frame marked as reference forces a reset."""
        _, reference, _ = reference_and_moved(scene_builder, (np.eye(3), np.zeros(3)))
        estimator.set_reference_view(reference)

        result = estimator.estimate(
            scene_builder.empty_frame(99, frame_id=2), set_as_reference=True
        )

        assert not result.success
        assert result.failure == EstimateFailure.NO_FEATURES
        assert estimator.has_reference is False
        with pytest.raises(ReferenceNotSetError):
            estimator.estimate(reference)

    def test_no_features_without_promotion_keeps_reference(
        self, estimator, scene_builder
    ) -> None:
        """Test that a featureless frame alone does not touch the reference."""
        _, reference, _ = reference_and_moved(scene_builder, (np.eye(3), np.zeros(3)))
        estimator.set_reference_view(reference)

        result = estimator.estimate(scene_builder.empty_frame(99, frame_id=2))

        assert result.failure == EstimateFailure.NO_FEATURES
        assert_array_almost_equal(result.rotation, np.eye(3))
        assert_array_almost_equal(result.covariance, np.zeros((7, 7)))
        assert estimator.reference.frame_id == 0

    def test_too_few_matches_promotes_anyway(self, estimator, scene_builder) -> None:
        """Test that a weak frame still becomes the reference when asked."""
        scene, reference, _ = reference_and_moved(
            scene_builder, (np.eye(3), np.zeros(3))
        )
        estimator.set_reference_view(reference)
        weak = scene_builder.frame(
            40, scene.points_ref[:3], scene.descriptors[:3], frame_id=7
        )

        result = estimator.estimate(weak, set_as_reference=True)

        assert not result.success
        assert result.failure == EstimateFailure.TOO_FEW_MATCHES
        assert result.correspondences == 3
        assert result.promoted_reference
        assert estimator.reference.frame_id == 7

    def test_success_promotes_after_estimating(
        self, estimator, scene_builder, small_motion
    ) -> None:
        """Test that promotion happens after the estimate against the old view."""
        _, reference, current = reference_and_moved(scene_builder, small_motion)
        estimator.set_reference_view(reference)

        result = estimator.estimate(current, set_as_reference=True)

        assert result.success
        assert result.promoted_reference
        assert result.reference_frame_id == 0
        assert estimator.reference.frame_id == 1

        again = estimator.estimate(current)
        assert again.reference_frame_id == 1
        assert_array_almost_equal(again.rotation, np.eye(3), decimal=4)

    def test_reset(self, estimator, scene_builder) -> None:
        """Test explicit reset."""
        _, reference, _ = reference_and_moved(scene_builder, (np.eye(3), np.zeros(3)))
        estimator.set_reference_view(reference)

        estimator.reset()

        assert estimator.reference is None


class TestMotionEstimation:
    """Tests for frame-to-reference motion estimates."""

    def test_identical_frames(self, estimator, scene_builder) -> None:
        """Test that a view matched against itself gives identity."""
        scene, reference, _ = reference_and_moved(
            scene_builder, (np.eye(3), np.zeros(3))
        )
        estimator.set_reference_view(reference)
        same = scene_builder.frame(20, scene.points_ref, scene.descriptors, frame_id=1)

        result = estimator.estimate(same)

        assert result.success
        assert result.failure is None
        assert_array_almost_equal(result.rotation, np.eye(3), decimal=5)
        assert_array_almost_equal(result.translation, np.zeros(3), decimal=5)
        assert result.correspondences == len(scene.points_ref)
        assert result.inliers == result.correspondences
        assert result.inlier_ratio == 1.0

    def test_known_motion(self, estimator, scene_builder, small_motion) -> None:
        """Test recovery of a known rigid motion."""
        R, t = small_motion
        _, reference, current = reference_and_moved(scene_builder, small_motion)
        estimator.set_reference_view(reference)

        result = estimator.estimate(current)

        assert result.success
        assert_array_almost_equal(result.rotation, R, decimal=4)
        assert_array_almost_equal(result.translation, t, decimal=4)
        assert result.total_features == result.correspondences
        assert len(result.inlier_indices) == result.inliers

    def test_known_motion_p3p(
        self, default_intrinsics, scene_builder, test_config, small_motion
    ) -> None:
        """Test the minimal perspective solver on the same motion."""
        test_config.ransac.solver = SolverType.P3P
        estimator = PoseEstimator(
            default_intrinsics, config=test_config, extractor=scene_builder.extractor
        )
        R, t = small_motion
        _, reference, current = reference_and_moved(scene_builder, small_motion)
        estimator.set_reference_view(reference)

        result = estimator.estimate(current)

        assert result.success
        assert_array_almost_equal(result.rotation, R, decimal=3)
        assert_array_almost_equal(result.translation, t, decimal=3)

    def test_serial_matching(
        self, default_intrinsics, scene_builder, test_config, small_motion
    ) -> None:
        """Test that serial matching finds the same correspondences."""
        test_config.matching.parallel = False
        estimator = PoseEstimator(
            default_intrinsics, config=test_config, extractor=scene_builder.extractor
        )
        scene, reference, current = reference_and_moved(scene_builder, small_motion)
        estimator.set_reference_view(reference)

        result = estimator.estimate(current)

        assert result.success
        assert result.correspondences == len(scene.points_ref)

    def test_rotation_guess(self, estimator, scene_builder, small_motion) -> None:
        """Test that a large rotation guess narrows the window but still matches."""
        R, _ = small_motion
        scene, reference, current = reference_and_moved(scene_builder, small_motion)
        estimator.set_reference_view(reference)

        result = estimator.estimate(
            current, rotation_guess=euler_to_rotation_matrix(0.0, 0.0, 0.3)
        )

        assert result.success
        assert result.correspondences == len(scene.points_ref)
        assert_array_almost_equal(result.rotation, R, decimal=4)

    def test_quaternion_matches_rotation(
        self, estimator, scene_builder, small_motion
    ) -> None:
        """Test that the reported quaternion is unit and has qw > 0."""
        _, reference, current = reference_and_moved(scene_builder, small_motion)
        estimator.set_reference_view(reference)

        q = estimator.estimate(current).quat_wxyz

        assert np.linalg.norm(q) == pytest.approx(1.0)
        assert q[0] > 0

    def test_depth_fallback_still_estimates(
        self, estimator, scene_builder, small_motion
    ) -> None:
        """Test that points with missing depth do not corrupt the estimate."""
        R, t = small_motion
        scene = scene_builder.scene(300, R, t)
        reference = scene_builder.frame(10, scene.points_ref, scene.descriptors)
        current = scene_builder.frame(
            20, scene.points_cur, scene.descriptors, frame_id=1, nan_depth=range(10)
        )
        estimator.set_reference_view(reference)

        result = estimator.estimate(current)

        assert result.success
        assert result.inliers <= result.correspondences
        assert_array_almost_equal(result.rotation, R, decimal=4)
        assert_array_almost_equal(result.translation, t, decimal=4)


class TestCovariance:
    """Tests for the covariance attached to estimates."""

    def test_propagated_covariance(self, estimator, scene_builder, small_motion) -> None:
        """Test that the propagated covariance is symmetric and PSD."""
        _, reference, current = reference_and_moved(scene_builder, small_motion)
        estimator.set_reference_view(reference)

        cov = estimator.estimate(current).covariance

        assert cov.shape == (7, 7)
        assert np.all(np.isfinite(cov))
        assert_array_almost_equal(cov, cov.T)
        eigenvalues = np.linalg.eigvalsh(cov)
        assert eigenvalues.min() >= -1e-9 * max(1.0, eigenvalues.max())
        assert np.all(np.diag(cov)[:3] > 0)
        # Translation and rotation blocks are independent
        assert np.all(cov[:3, 3:] == 0)

    def test_fixed_covariance(
        self, default_intrinsics, scene_builder, test_config, small_motion
    ) -> None:
        """Test the fixed-diagonal covariance method."""
        test_config.covariance.method = CovarianceMethod.FIXED
        estimator = PoseEstimator(
            default_intrinsics, config=test_config, extractor=scene_builder.extractor
        )
        _, reference, current = reference_and_moved(scene_builder, small_motion)
        estimator.set_reference_view(reference)

        cov = estimator.estimate(current).covariance

        assert_array_almost_equal(cov, np.diag(test_config.covariance.fixed_diagonal))


class TestRefinement:
    """Tests for optional pose refinement."""

    def test_refinement_disabled(self, estimator, scene_builder, small_motion) -> None:
        """Test that the refined pose is identity without a refiner."""
        _, reference, current = reference_and_moved(scene_builder, small_motion)
        estimator.set_reference_view(reference)

        result = estimator.estimate(current)

        assert_array_almost_equal(result.refined_rotation, np.eye(3))
        assert_array_almost_equal(result.refined_translation, np.zeros(3))

    def test_refinement_enabled(
        self, default_intrinsics, scene_builder, test_config, small_motion
    ) -> None:
        """Test that the refined pose agrees with the true motion."""
        test_config.refinement.enabled = True
        estimator = PoseEstimator(
            default_intrinsics, config=test_config, extractor=scene_builder.extractor
        )
        R, t = small_motion
        _, reference, current = reference_and_moved(scene_builder, small_motion)
        estimator.set_reference_view(reference)

        result = estimator.estimate(current)

        assert result.success
        assert_array_almost_equal(result.refined_rotation, R, decimal=4)
        assert_array_almost_equal(result.refined_translation, t, decimal=4)


class TestOdometryTracker:
    """Tests for keyframe chaining over a sequence."""

    STEP_R = euler_to_rotation_matrix(0.01, -0.005, 0.008)
    STEP_T = np.array([0.02, 0.0, -0.015])

    def run_sequence(self, estimator, scene_builder, tracking: TrackingConfig):
        points, motions = scene_builder.trajectory(250, self.STEP_R, self.STEP_T, 5)
        descriptors = scene_builder.descriptors(len(points))
        tracker = OdometryTracker(estimator, tracking)

        steps = [tracker.process(scene_builder.frame(10, points, descriptors))]
        for k, (R, t) in enumerate(motions, start=1):
            frame = scene_builder.frame(10 + k, points @ R.T + t, descriptors, frame_id=k)
            steps.append(tracker.process(frame))
        return tracker, steps, motions

    @pytest.mark.parametrize("max_frames", [10, 1])
    def test_chained_pose(self, estimator, scene_builder, max_frames) -> None:
        """Test that the chained pose matches the true camera position."""
        tracker, steps, motions = self.run_sequence(
            estimator,
            scene_builder,
            TrackingConfig(max_frames_per_keyframe=max_frames),
        )
        R, t = motions[-1]

        assert steps[0].initialized
        assert all(step.estimate.success for step in steps[1:])
        assert_array_almost_equal(tracker.world_from_camera.R, R.T, decimal=4)
        assert_array_almost_equal(tracker.pose.position_m, -R.T @ t, decimal=4)
        assert tracker.dropped_edges == 0

    def test_keyframe_promotion_schedule(self, estimator, scene_builder) -> None:
        """Test that the keyframe advances every max_frames_per_keyframe frames."""
        tracker, steps, _ = self.run_sequence(
            estimator, scene_builder, TrackingConfig(max_frames_per_keyframe=2)
        )

        promoted = [step.estimate.promoted_reference for step in steps[1:]]
        assert promoted == [False, True, False, True, False]
        assert steps[3].estimate.reference_frame_id == 2

    def test_telemetry_recorded(self, estimator, scene_builder) -> None:
        """Test that each tracked frame is recorded."""
        tracker, _, _ = self.run_sequence(estimator, scene_builder, TrackingConfig())

        assert len(tracker.telemetry) == 5
        assert tracker.telemetry.get_summary()["success_rate"] == 1.0

    def test_uninitialized_until_reference(self, estimator, scene_builder) -> None:
        """Test that a sparse first frame leaves tracking uninitialized."""
        tracker = OdometryTracker(estimator)
        scene = scene_builder.scene(10)

        step = tracker.process(scene_builder.frame(10, scene.points_ref, scene.descriptors))

        assert step.pose is None
        assert not step.initialized

    def test_reset_drops_edge(self, estimator, scene_builder) -> None:
        """Test that re-initializing after a forced reset counts a dropped edge."""
        tracker = OdometryTracker(estimator, TrackingConfig(max_frames_per_keyframe=1))
        scene = scene_builder.scene(200)
        tracker.process(scene_builder.frame(10, scene.points_ref, scene.descriptors))

        tracker.process(scene_builder.empty_frame(99, frame_id=1))
        assert not estimator.has_reference

        step = tracker.process(
            scene_builder.frame(11, scene.points_ref, scene.descriptors, frame_id=2)
        )
        assert step.initialized
        assert tracker.dropped_edges == 1


class TestQuaternionVarianceOrder:
    """Tests that both covariance methods share the (t, qw, qx, qy, qz) layout."""

    @pytest.mark.parametrize(
        "method", [CovarianceMethod.PROPAGATED, CovarianceMethod.FIXED]
    )
    def test_qw_has_smallest_variance(
        self, default_intrinsics, scene_builder, test_config, small_motion, method
    ) -> None:
        """Test that for a small rotation qw is the best-determined component."""
        test_config.covariance.method = method
        estimator = PoseEstimator(
            default_intrinsics, config=test_config, extractor=scene_builder.extractor
        )
        _, reference, current = reference_and_moved(scene_builder, small_motion)
        estimator.set_reference_view(reference)

        variances = np.diag(estimator.estimate(current).covariance)[3:]

        assert np.argmin(variances) == 0


class TestCalibrationFailure:
    """Tests for frames whose features cannot be undistorted."""

    def test_keeps_reference_and_feature_count(
        self, estimator, scene_builder, small_motion, monkeypatch
    ) -> None:
        """Test that an undistortion error neither resets nor replaces the reference."""
        scene, reference, current = reference_and_moved(scene_builder, small_motion)
        estimator.set_reference_view(reference)

        def broken(points_px):
            raise cv2.error("bad calibration")

        monkeypatch.setattr(scene_builder.intrinsics, "undistort_points", broken)

        result = estimator.estimate(current, set_as_reference=True)

        assert not result.success
        assert result.failure == EstimateFailure.CALIBRATION_FAILED
        assert result.total_features == len(scene.points_ref)
        assert not result.promoted_reference
        assert estimator.has_reference
        assert estimator.reference.frame_id == 0


class TestTrackerInitialPose:
    """Tests for starting a trajectory at a known pose."""

    def test_first_keyframe_at_initial_pose(self, estimator, scene_builder) -> None:
        """Test that the chained pose is expressed relative to the initial pose."""
        start = Pose3D(
            position_m=np.array([1.0, -2.0, 0.5]),
            quat_wxyz=rotation_matrix_to_quaternion(
                euler_to_rotation_matrix(0.0, 0.0, 0.4)
            ),
        )
        tracker = OdometryTracker(estimator, initial_pose=start)
        scene = scene_builder.scene(200)

        step = tracker.process(scene_builder.frame(10, scene.points_ref, scene.descriptors))
        moved = tracker.process(
            scene_builder.frame(11, scene.points_ref, scene.descriptors, frame_id=1)
        )

        assert step.initialized
        assert_array_almost_equal(step.pose.position_m, start.position_m)
        assert_array_almost_equal(step.pose.quat_wxyz, start.quat_wxyz)
        assert_array_almost_equal(moved.pose.position_m, start.position_m, decimal=4)
