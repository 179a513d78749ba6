"""
rgbd-vo CLI - Command-line interface for RGB-D visual odometry.

Provides commands for estimating motion between two RGB-D views, tracking
a recorded sequence and checking the configuration.
"""

from pathlib import Path
from typing import Optional

import numpy as np
import typer
from rich.console import Console
from rich.table import Table

from rgbd_vo.config import ConfigurationError, VoConfig, load_config
from rgbd_vo.version import __version__

app = typer.Typer(
    name="rgbd-vo",
    help="rgbd-vo - Frame-to-keyframe visual odometry for RGB-D cameras.",
    add_completion=False,
)

console = Console()

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".npy"}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]rgbd-vo[/bold blue] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """rgbd-vo - RGB-D visual odometry."""
    pass


def _setup(config: Optional[Path], log_level: Optional[str]) -> VoConfig:
    """Load configuration (defaults without a file) and configure logging."""
    from rgbd_vo.logging import configure_logging

    cfg = load_config(config) if config else VoConfig()
    if log_level:
        cfg.project.log_level = log_level.upper()
    configure_logging(
        cfg.project.log_level, cfg.project.run_id, json_format=cfg.project.json_logs
    )
    return cfg


def _load_frame(rgb: Path, depth: Path, depth_scale: float, frame_id: int):
    from rgbd_vo.perception import RgbdFrame
    from rgbd_vo.utils.io import load_color_image, load_depth_image

    return RgbdFrame(
        image_bgr=load_color_image(rgb),
        depth_m=load_depth_image(depth, depth_scale=depth_scale),
        frame_id=frame_id,
    )


def _build_estimator(cfg: VoConfig):
    from rgbd_vo.odometry import PoseEstimator
    from rgbd_vo.perception import CameraIntrinsics

    intrinsics = CameraIntrinsics.from_config(
        cfg.camera.intrinsics_path, cfg.camera.width, cfg.camera.height
    )
    return PoseEstimator(intrinsics, config=cfg)


def _list_images(directory: Path) -> list[Path]:
    return sorted(
        p for p in directory.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES
    )


def _format_vector(values: np.ndarray, precision: int = 4) -> str:
    return "[" + ", ".join(f"{v:.{precision}f}" for v in values) + "]"


@app.command()
def estimate(
    reference_rgb: Path = typer.Option(..., "--reference-rgb", exists=True),
    reference_depth: Path = typer.Option(..., "--reference-depth", exists=True),
    current_rgb: Path = typer.Option(..., "--current-rgb", exists=True),
    current_depth: Path = typer.Option(..., "--current-depth", exists=True),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Override log level (DEBUG, INFO, WARNING, ERROR).",
    ),
) -> None:
    """Estimate the motion of one RGB-D view relative to another."""
    try:
        cfg = _setup(config, log_level)
        estimator = _build_estimator(cfg)
        scale = cfg.camera.depth_scale

        reference = _load_frame(reference_rgb, reference_depth, scale, 0)
        if not estimator.set_reference_view(reference):
            console.print("[red]Error:[/red] Reference view has too few features.")
            raise typer.Exit(code=1)

        result = estimator.estimate(_load_frame(current_rgb, current_depth, scale, 1))
    except (ConfigurationError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title="Motion Estimate")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Success", str(result.success))
    table.add_row("Features", str(result.total_features))
    table.add_row("Correspondences", str(result.correspondences))
    table.add_row("Inliers", str(result.inliers))
    if result.success:
        table.add_row("Translation (m)", _format_vector(result.translation))
        table.add_row("Quaternion (wxyz)", _format_vector(result.quat_wxyz))
        table.add_row("Covariance diag", _format_vector(np.diag(result.covariance), 6))
    else:
        table.add_row("Failure", result.failure.value if result.failure else "-")

    console.print(table)
    if not result.success:
        raise typer.Exit(code=2)


@app.command()
def track(
    rgb_dir: Path = typer.Option(
        ..., "--rgb-dir", exists=True, file_okay=False, dir_okay=True
    ),
    depth_dir: Path = typer.Option(
        ..., "--depth-dir", exists=True, file_okay=False, dir_okay=True
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Override log level (DEBUG, INFO, WARNING, ERROR).",
    ),
) -> None:
    """Track a recorded sequence of RGB-D frames."""
    from rgbd_vo.odometry import OdometryTracker

    try:
        cfg = _setup(config, log_level)
        estimator = _build_estimator(cfg)
    except (ConfigurationError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    rgb_files = _list_images(rgb_dir)
    depth_files = _list_images(depth_dir)
    if len(rgb_files) != len(depth_files):
        console.print(
            f"[red]Error:[/red] {len(rgb_files)} color and "
            f"{len(depth_files)} depth images"
        )
        raise typer.Exit(code=1)

    tracker = OdometryTracker(estimator, cfg.tracking)

    table = Table(title="Trajectory")
    table.add_column("Frame", style="cyan")
    table.add_column("Status")
    table.add_column("Inliers", justify="right")
    table.add_column("Position (m)", style="green")

    for frame_id, (rgb, depth) in enumerate(zip(rgb_files, depth_files)):
        frame = _load_frame(rgb, depth, cfg.camera.depth_scale, frame_id)
        step = tracker.process(frame)

        if step.initialized:
            status = "[blue]keyframe[/blue]"
        elif step.estimate is None:
            status = "[yellow]waiting[/yellow]"
        elif step.estimate.success:
            status = "[green]ok[/green]"
        else:
            status = f"[red]{step.estimate.failure.value}[/red]"

        inliers = str(step.estimate.inliers) if step.estimate else "-"
        position = _format_vector(step.pose.position_m, 3) if step.pose else "-"
        table.add_row(str(frame_id), status, inliers, position)

    console.print(table)

    summary = tracker.telemetry.get_summary()
    console.print(
        f"Success rate: {summary.get('success_rate', 0.0):.2%}, "
        f"dropped edges: {tracker.dropped_edges}"
    )


@app.command()
def diagnostics(
    config: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        help="Path to configuration file.",
    ),
) -> None:
    """Run configuration validation and show the effective settings."""
    import cv2

    console.print("[bold]rgbd-vo Diagnostics[/bold]\n")

    table = Table(title="System Information")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")

    table.add_row("rgbd-vo Version", __version__)
    table.add_row("OpenCV", cv2.__version__)

    try:
        cfg = load_config(config)
        table.add_row("Configuration", f"✓ Valid ({config})")
        table.add_row("Feature Budget", str(cfg.feature_budget))
        table.add_row("RANSAC Iterations", str(cfg.ransac_iterations))
        table.add_row("Solver", cfg.ransac.solver.value)
        table.add_row("Covariance", cfg.covariance.method.value)
        table.add_row("Refinement", "enabled" if cfg.refinement.enabled else "disabled")
    except FileNotFoundError:
        table.add_row("Configuration", f"⚠ Not found ({config})")
    except (ConfigurationError, ValueError) as e:
        table.add_row("Configuration", f"✗ Error: {e}")

    console.print(table)


@app.command(name="version")
def show_version() -> None:
    """Show version information."""
    console.print(f"[bold blue]rgbd-vo[/bold blue] v{__version__}")
    console.print("Frame-to-keyframe visual odometry for RGB-D cameras.")


if __name__ == "__main__":
    app()
