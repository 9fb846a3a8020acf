"""Software preview of what the GPU receives.

This module stands in for the host rendering context: it takes a mesh and
the serialized MVP uniform exactly as they would be uploaded, runs the
clip-space divide and viewport mapping on the CPU, and draws the result with
matplotlib. Triangles are either outlined or filled with a Lambert term
computed from the normal matrix, in back-to-front order.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.collections import LineCollection, PolyCollection

from gpumath.matrix import Matrix4
from gpumath.obj_loader import Mesh

logger = logging.getLogger(__name__)

MatrixLike = Union[Matrix4, np.ndarray]


def uniform_to_matrix(uniform: MatrixLike) -> np.ndarray:
    """Rebuild a row-major 4x4 array from a Matrix4 or a column-major uniform.

    Args:
        uniform: Matrix4, or 16 floats in the external (column-major) layout

    Returns:
        4x4 float32 array
    """
    if isinstance(uniform, Matrix4):
        return uniform.to_array()
    values = np.asarray(uniform, dtype=np.float32)
    if values.size != 16:
        raise ValueError(f"Expected 16 uniform values, got {values.size}")
    return values.reshape(4, 4, order="F")


def project_vertices(
    positions: np.ndarray,
    mvp: MatrixLike,
    width: int,
    height: int
) -> Tuple[np.ndarray, np.ndarray]:
    """Project positions to pixel coordinates.

    Args:
        positions: Nx3 array of object-space positions
        mvp: Model-view-projection transform
        width: Viewport width in pixels
        height: Viewport height in pixels

    Returns:
        Tuple of (Nx2 pixel coordinates, N clip-space w values)
    """
    M = uniform_to_matrix(mvp)
    positions_h = np.hstack((positions, np.ones((positions.shape[0], 1), dtype=np.float32)))
    clip = positions_h @ M.T
    w = clip[:, 3]

    with np.errstate(divide="ignore", invalid="ignore"):
        ndc = clip[:, :2] / w.reshape(-1, 1)

    # NDC y points up, pixel rows grow downwards
    pixels = np.empty_like(ndc)
    pixels[:, 0] = (ndc[:, 0] + 1) * 0.5 * width
    pixels[:, 1] = (1 - ndc[:, 1]) * 0.5 * height
    return pixels, w


def lambert_intensity(
    normals: np.ndarray,
    normal_matrix: MatrixLike,
    light_direction: Tuple[float, float, float] = (0.5, 0.7, 1.0),
    ambient: float = 0.15
) -> np.ndarray:
    """Diffuse intensity max(dot(n, l), 0) per normal, lifted by an ambient term.

    Args:
        normals: Nx3 array of object-space normals
        normal_matrix: Inverse-transpose of the model matrix
        light_direction: Direction towards the light in world space
        ambient: Minimum intensity

    Returns:
        N intensities in [ambient, 1]
    """
    N = uniform_to_matrix(normal_matrix)
    normals_h = np.hstack((normals, np.zeros((normals.shape[0], 1), dtype=np.float32)))
    world = (normals_h @ N.T)[:, :3]

    lengths = np.linalg.norm(world, axis=1)
    lengths[lengths == 0] = 1.0
    world = world / lengths.reshape(-1, 1)

    light = np.asarray(light_direction, dtype=np.float32)
    light = light / np.linalg.norm(light)

    diffuse = np.clip(world @ light, 0.0, 1.0)
    return ambient + (1.0 - ambient) * diffuse


def render_frame(
    mesh: Mesh,
    mvp: MatrixLike,
    output_path: str,
    width: int = 640,
    height: int = 480,
    normal_matrix: Optional[MatrixLike] = None,
    color: Tuple[float, float, float] = (0.85, 0.55, 0.25),
    background: Tuple[float, float, float] = (0.1, 0.1, 0.1)
) -> int:
    """Draw one frame of the mesh and save it as an image.

    Triangles with any corner at or behind the camera plane (w <= 0) are
    skipped. With a normal matrix and a mesh carrying normals, triangles are
    filled and shaded; otherwise only their edges are drawn.

    Args:
        mesh: Indexed triangle mesh
        mvp: Model-view-projection transform (Matrix4 or uniform floats)
        output_path: Path of the image to write
        width: Image width in pixels
        height: Image height in pixels
        normal_matrix: Optional inverse-transpose model matrix for shading
        color: Base RGB color
        background: Background RGB color

    Returns:
        Number of triangles drawn
    """
    positions = mesh.attribute("position")
    pixels, w = project_vertices(positions, mvp, width, height)

    triangles = mesh.triangles().astype(np.int64)
    visible = np.all(w[triangles] > 0, axis=1)
    triangles = triangles[visible]

    # Painter's order: farthest triangles first
    depth = w[triangles].mean(axis=1)
    order = np.argsort(-depth)
    triangles = triangles[order]
    polygons = pixels[triangles]

    dpi = 100
    fig = plt.figure(figsize=(width / dpi, height / dpi), dpi=dpi)
    ax = fig.add_axes([0, 0, 1, 1])
    ax.set_facecolor(background)
    fig.patch.set_facecolor(background)

    shaded = normal_matrix is not None and "normal" in mesh.layout
    if shaded:
        normals = mesh.attribute("normal")[triangles].mean(axis=1)
        intensity = lambert_intensity(normals, normal_matrix)
        face_colors = np.clip(np.outer(intensity, color), 0.0, 1.0)
        ax.add_collection(PolyCollection(polygons, facecolors=face_colors, edgecolors="none"))
    else:
        edges = np.concatenate([polygons[:, [0, 1]], polygons[:, [1, 2]], polygons[:, [2, 0]]])
        ax.add_collection(LineCollection(edges, colors=[color], linewidths=0.8))

    ax.set_xlim(0, width)
    ax.set_ylim(height, 0)
    ax.axis('off')

    plt.savefig(output_path, dpi=dpi, facecolor=fig.get_facecolor())
    plt.close(fig)

    logger.debug(
        f"Rendered {len(triangles)}/{mesh.triangle_count} triangles "
        f"({'shaded' if shaded else 'wireframe'}) to {output_path}"
    )
    return int(len(triangles))
