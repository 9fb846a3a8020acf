#!/usr/bin/env python3
"""
Mesh Rendering Preview

This script runs the full preparation path of the lit-mesh example: it reads
an OBJ file, builds the indexed vertex buffer, computes the model, view,
projection and normal matrices for every animation frame, and renders each
frame with the software preview so the uploaded data can be inspected.
"""

from __future__ import annotations

import argparse
import datetime
import json
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import matplotlib

matplotlib.use("Agg")

import numpy as np
import yaml
from tqdm import tqdm

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from gpumath import Matrix4, Mesh, load_obj
from gpumath import visualise
from gpumath.timing import Timer


# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    handlers=[
        logging.StreamHandler(),
    ],
)
logger = logging.getLogger("render")

ROOT_DIR = Path(__file__).resolve().parent.parent


def load_config(config_path: Optional[str] = None) -> Dict:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    # Default config path
    if config_path is None:
        config_path = ROOT_DIR / "config.yaml"

    with open(config_path, "r") as f:
        config = yaml.safe_load(f)

    return config


def read_obj_text(mesh_path: str) -> str:
    """Fetch the OBJ source text; relative paths resolve against the repo root."""
    path = Path(mesh_path)
    if not path.is_absolute() and not path.exists():
        path = ROOT_DIR / path

    with open(path, "r") as f:
        return f.read()


def build_camera(camera_config: Dict, aspect: float) -> Tuple[Matrix4, Matrix4]:
    """Build the view and projection matrices.

    Args:
        camera_config: The "camera" section of the configuration
        aspect: Viewport width / height

    Returns:
        Tuple of (view, projection)
    """
    view = Matrix4.view(camera_config["eye"], camera_config["target"], camera_config["up"])
    projection = Matrix4.perspective(
        camera_config["fov"], aspect, camera_config["near"], camera_config["far"]
    )
    return view, projection


def model_matrix(model_config: Dict, frame: int) -> Matrix4:
    """Model transform for a frame: translate, then spin, then scale in local space."""
    angle = model_config.get("rotation_speed", 0.0) * frame
    axis = model_config.get("rotation_axis", "y").lower()

    model = Matrix4().translate(*model_config.get("translate", (0.0, 0.0, 0.0)))
    if axis == "x":
        model = model.rotate_x(angle)
    elif axis == "y":
        model = model.rotate_y(angle)
    elif axis == "z":
        model = model.rotate_z(angle)
    else:
        raise ValueError(f"Unknown rotation axis: {axis}")

    return model.scale(*model_config.get("scale", (1.0, 1.0, 1.0)))


def frame_uniforms(model: Matrix4, view: Matrix4, projection: Matrix4) -> Dict[str, np.ndarray]:
    """Compute the per-frame uniforms in the layout they are uploaded in."""
    mvp = projection @ view @ model
    return {
        "mvp": mvp.to_external_layout(),
        "model": model.to_external_layout(),
        "normal": model.normal_matrix().to_external_layout(),
    }


def save_results(
    output_dir: str,
    mesh: Mesh,
    uniforms: List[Dict[str, np.ndarray]],
    report: Dict
) -> None:
    """Save the uploaded buffers, per-frame uniforms and report.

    Args:
        output_dir: Path to output directory
        mesh: Loaded mesh
        uniforms: Per-frame uniform dictionaries
        report: Run summary
    """
    logger.info(f"Saving results to {output_dir}")
    os.makedirs(output_dir, exist_ok=True)

    with open(os.path.join(output_dir, "vertices.npy"), "wb") as f:
        np.save(f, mesh.vertices)

    with open(os.path.join(output_dir, "indices.npy"), "wb") as f:
        np.save(f, mesh.indices)

    for name in ("mvp", "model", "normal"):
        with open(os.path.join(output_dir, f"{name}_uniforms.npy"), "wb") as f:
            np.save(f, np.array([u[name] for u in uniforms], dtype=np.float32))

    with open(os.path.join(output_dir, "report.json"), "w") as f:
        json.dump(report, f, indent=2)

    logger.info("Results saved successfully")


def render_mesh(
    mesh_path: Optional[str] = None,
    output_dir: Optional[str] = None,
    frames: Optional[int] = None,
    config_path: Optional[str] = None
) -> Dict:
    """Load a mesh and render an animated preview.

    Args:
        mesh_path: OBJ file to load (overrides config)
        output_dir: Output directory (overrides config)
        frames: Number of frames to render (overrides config)
        config_path: Path to configuration file

    Returns:
        Run summary dictionary
    """
    run_timer = Timer("Render")
    run_timer.start()

    config = load_config(config_path)
    if mesh_path is not None:
        config["io"]["mesh_path"] = mesh_path
    if output_dir is not None:
        config["io"]["output_dir"] = output_dir
    if frames is not None:
        config["render"]["frames"] = frames

    output_dir = config["io"]["output_dir"]
    os.makedirs(output_dir, exist_ok=True)

    # Set up file logging
    file_handler = logging.FileHandler(os.path.join(output_dir, "log.txt"))
    file_handler.setFormatter(logging.Formatter("[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"))
    logging.getLogger().addHandler(file_handler)

    render_config = config["render"]
    width, height = render_config["width"], render_config["height"]

    try:
        # === Stage 1: Load Mesh ===
        with Timer("Load Mesh") as timer:
            source = read_obj_text(config["io"]["mesh_path"])
            mesh = load_obj(source, index_format=render_config.get("index_format", "uint16"))
        load_time = timer.elapsed

        # === Stage 2: Camera ===
        view, projection = build_camera(config["camera"], width / height)

        # === Stage 3: Frames ===
        uniforms = []
        drawn = []
        with Timer("Render Frames") as timer:
            for frame in tqdm(range(render_config["frames"]), desc="Rendering frames"):
                model = model_matrix(config["model"], frame)
                frame_data = frame_uniforms(model, view, projection)
                uniforms.append(frame_data)

                frame_path = os.path.join(output_dir, f"frame_{frame:04d}.png")
                drawn.append(visualise.render_frame(
                    mesh,
                    frame_data["mvp"],
                    frame_path,
                    width=width,
                    height=height,
                    normal_matrix=frame_data["normal"] if render_config.get("shaded", True) else None,
                ))
        render_time = timer.elapsed

        report = {
            "mesh_path": str(config["io"]["mesh_path"]),
            "vertex_count": mesh.vertex_count,
            "triangle_count": mesh.triangle_count,
            "index_format": mesh.index_format,
            "frames": len(uniforms),
            "mean_triangles_drawn": float(np.mean(drawn)) if drawn else 0.0,
            "load_time_s": load_time,
            "render_time_s": render_time,
            "runtime_s": run_timer.elapsed,
            "datetime": datetime.datetime.now().isoformat(),
        }
        save_results(output_dir, mesh, uniforms, report)
    finally:
        logging.getLogger().removeHandler(file_handler)
        file_handler.close()

    logger.info(
        f"Rendered {report['frames']} frames of {report['triangle_count']} triangles "
        f"in {report['runtime_s']:.2f}s"
    )
    return report


def main():
    """Main function to parse arguments and render the preview."""
    parser = argparse.ArgumentParser(description="Mesh Rendering Preview")
    parser.add_argument(
        "--mesh", "-m", dest="mesh_path", default=None,
        help="Path to the OBJ file (default from config)"
    )
    parser.add_argument(
        "--output", "-o", dest="output_dir", default=None,
        help="Path to output directory (default from config)"
    )
    parser.add_argument(
        "--frames", "-n", dest="frames", type=int, default=None,
        help="Number of frames to render"
    )
    parser.add_argument(
        "--config", "-c", dest="config_path", default=None,
        help="Path to configuration file"
    )

    args = parser.parse_args()

    try:
        render_mesh(
            args.mesh_path,
            args.output_dir,
            args.frames,
            args.config_path
        )
    except Exception as e:
        logger.exception(f"Error rendering mesh: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
