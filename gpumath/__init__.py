"""Matrix and mesh preparation for GPU rendering.

A small Python library that builds the 4x4 transforms and indexed vertex
buffers a WebGPU-style renderer uploads, keeping every linear algebra step
in plain, documented numpy code.
"""

from __future__ import annotations

from gpumath.matrix import Matrix4
from gpumath.obj_loader import Mesh, MeshCapacityError, ObjParseError, load_obj, parse_obj
from gpumath.vector import Vector3

__version__ = "0.1.0"

__all__ = [
    "Matrix4",
    "Mesh",
    "MeshCapacityError",
    "ObjParseError",
    "Vector3",
    "load_obj",
    "parse_obj",
]
