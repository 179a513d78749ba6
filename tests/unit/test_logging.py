"""Unit tests for structured logging setup."""

import io
import json

import numpy as np
import structlog

from rgbd_vo.config.schema import LogLevel
from rgbd_vo.logging import configure_logging, get_logger


class TestConfigureLogging:
    """Tests for configure_logging."""

    def teardown_method(self) -> None:
        structlog.reset_defaults()

    def test_json_lines_with_numpy_values(self) -> None:
        """Test that numpy values render as plain JSON."""
        stream = io.StringIO()
        configure_logging(LogLevel.INFO, run_id="abc123", json_format=True, stream=stream)

        get_logger("rgbd_vo.test").info(
            "motion_estimated", inliers=np.int64(42), translation=np.zeros(3)
        )

        event = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert event["event"] == "motion_estimated"
        assert event["inliers"] == 42
        assert event["translation"] == [0.0, 0.0, 0.0]
        assert event["run_id"] == "abc123"
        assert event["level"] == "info"

    def test_level_filters_events(self) -> None:
        """Test that events below the level are dropped."""
        stream = io.StringIO()
        configure_logging("warning", json_format=True, stream=stream)

        logger = get_logger("rgbd_vo.test")
        logger.info("reference_set")
        logger.warning("reference_rejected")

        lines = stream.getvalue().strip().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["event"] == "reference_rejected"
