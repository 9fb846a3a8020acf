"""Wavefront OBJ mesh loading.

This module converts OBJ source text into an indexed, triangulated vertex
buffer ready for upload: polygonal faces are fan-triangulated, missing
normals are replaced by flat per-face normals, and repeated attribute
combinations are deduplicated into a compact vertex array.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple, Union

import numpy as np

from gpumath.vector import Vector3

logger = logging.getLogger(__name__)

ATTRIBUTE_SIZES = {"position": 3, "normal": 3, "uv": 2}
INDEX_FORMATS = ("uint16", "uint32", "auto")
UINT16_MAX_VERTICES = 65535

# Placeholder accepted in face tokens for an absent component, e.g. "1/_/1"
ABSENT_COMPONENT = "_"


class ObjParseError(ValueError):
    """Raised when OBJ source text contains a malformed record."""

    def __init__(self, message: str, line_number: Optional[int] = None, line: Optional[str] = None):
        if line_number is not None:
            message = f"line {line_number}: {message}: {line!r}"
        super().__init__(message)
        self.line_number = line_number
        self.line = line


class MeshCapacityError(ValueError):
    """Raised when a mesh has more unique vertices than the index type can address."""


class FaceVertex(NamedTuple):
    """0-based attribute references of one face corner; None when absent."""

    position: int
    texcoord: Optional[int] = None
    normal: Optional[int] = None


@dataclass
class ObjData:
    """Raw records collected by the parse pass."""

    positions: List[Vector3] = field(default_factory=list)
    normals: List[Vector3] = field(default_factory=list)
    texcoords: List[Tuple[float, float]] = field(default_factory=list)
    faces: List[List[FaceVertex]] = field(default_factory=list)


@dataclass(frozen=True, eq=False)
class Mesh:
    """Interleaved vertex array plus triangle index array.

    Attributes:
        vertices: Flat float32 array, `stride` floats per vertex in `layout` order
        indices: Flat uint16 or uint32 array, three entries per triangle
        layout: Attribute names in interleaving order
    """

    vertices: np.ndarray
    indices: np.ndarray
    layout: Tuple[str, ...] = ("position", "normal")

    @property
    def stride(self) -> int:
        return sum(ATTRIBUTE_SIZES[name] for name in self.layout)

    @property
    def vertex_count(self) -> int:
        return len(self.vertices) // self.stride

    @property
    def triangle_count(self) -> int:
        return len(self.indices) // 3

    @property
    def index_format(self) -> str:
        return "uint16" if self.indices.dtype == np.uint16 else "uint32"

    def attribute(self, name: str) -> np.ndarray:
        """Return one attribute as a (vertex_count, size) view."""
        if name not in self.layout:
            raise KeyError(f"Attribute {name!r} not in layout {self.layout}")
        offset = 0
        for attr in self.layout:
            if attr == name:
                break
            offset += ATTRIBUTE_SIZES[attr]
        per_vertex = self.vertices.reshape(-1, self.stride)
        return per_vertex[:, offset:offset + ATTRIBUTE_SIZES[name]]

    def triangles(self) -> np.ndarray:
        """Return indices as a (triangle_count, 3) view."""
        return self.indices.reshape(-1, 3)


def _parse_floats(values: List[str], minimum: int, line_number: int, line: str) -> List[float]:
    if len(values) < minimum:
        raise ObjParseError(f"expected at least {minimum} values, got {len(values)}", line_number, line)
    try:
        return [float(v) for v in values]
    except ValueError:
        raise ObjParseError("malformed number", line_number, line) from None


def _resolve_index(component: str, count: int, line_number: int, line: str) -> Optional[int]:
    """Convert a 1-based (or negative, relative) OBJ index to 0-based."""
    if component == "" or component == ABSENT_COMPONENT:
        return None
    try:
        value = int(component)
    except ValueError:
        raise ObjParseError(f"malformed index {component!r}", line_number, line) from None

    if value == 0:
        raise ObjParseError("index 0 is not valid in OBJ", line_number, line)
    if value < 0:
        # Relative to the records read so far, -1 being the latest
        return count + value
    return value - 1


def _parse_face_token(token: str, data: ObjData, line_number: int, line: str) -> FaceVertex:
    parts = token.split("/")
    if len(parts) > 3:
        raise ObjParseError(f"malformed face vertex {token!r}", line_number, line)
    parts += [""] * (3 - len(parts))

    position = _resolve_index(parts[0], len(data.positions), line_number, line)
    if position is None:
        raise ObjParseError(f"face vertex {token!r} has no position", line_number, line)
    texcoord = _resolve_index(parts[1], len(data.texcoords), line_number, line)
    normal = _resolve_index(parts[2], len(data.normals), line_number, line)
    return FaceVertex(position, texcoord, normal)


def parse_obj(source: Union[str, Iterable[str]]) -> ObjData:
    """Collect position, normal, texture coordinate and face records.

    Only `v`, `vn`, `vt` and `f` records are read; comments, blank lines and
    every other directive are skipped.

    Args:
        source: OBJ text, or an iterable of its lines

    Returns:
        Parsed records with 0-based face indices

    Raises:
        ObjParseError: If a recognized record is malformed
    """
    lines = source.splitlines() if isinstance(source, str) else source
    data = ObjData()

    for line_number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        keyword, *values = line.split()
        if keyword == "v":
            data.positions.append(Vector3.from_sequence(_parse_floats(values, 3, line_number, line)))
        elif keyword == "vn":
            data.normals.append(Vector3.from_sequence(_parse_floats(values, 3, line_number, line)))
        elif keyword == "vt":
            uv = _parse_floats(values, 1, line_number, line)
            data.texcoords.append((uv[0], uv[1] if len(uv) > 1 else 0.0))
        elif keyword == "f":
            if len(values) < 3:
                raise ObjParseError(f"face needs at least 3 vertices, got {len(values)}", line_number, line)
            data.faces.append([_parse_face_token(token, data, line_number, line) for token in values])

    logger.debug(
        f"Parsed OBJ: {len(data.positions)} positions, {len(data.normals)} normals, "
        f"{len(data.texcoords)} texcoords, {len(data.faces)} faces"
    )
    return data


def triangulate(face: List[FaceVertex]) -> List[FaceVertex]:
    """Fan-triangulate a convex polygon around its first vertex.

    [v0, v1, v2, v3, ...] becomes [v0, v1, v2, v0, v2, v3, ...], i.e.
    (n - 2) * 3 references for an n-gon.
    """
    corners = []
    for i in range(1, len(face) - 1):
        corners.extend((face[0], face[i], face[i + 1]))
    return corners


def face_normal(data: ObjData, face: List[FaceVertex]) -> Vector3:
    """Flat normal (p1 - p0) x (p2 - p0) of a face, not normalized."""
    try:
        p0, p1, p2 = (data.positions[_checked(ref.position)] for ref in face[:3])
    except IndexError:
        raise ObjParseError("face references a missing position") from None
    return (p1 - p0).cross(p2 - p0)


def _validate_layout(layout: Tuple[str, ...]) -> None:
    if not layout or layout[0] != "position":
        raise ValueError(f"Layout must start with 'position', got {layout}")
    unknown = [name for name in layout if name not in ATTRIBUTE_SIZES]
    if unknown:
        raise ValueError(f"Unknown attributes in layout: {unknown}")
    if len(set(layout)) != len(layout):
        raise ValueError(f"Duplicate attributes in layout: {layout}")


def _index_dtype(index_format: str, vertex_count: int) -> type:
    if index_format == "uint32":
        return np.uint32
    if vertex_count > UINT16_MAX_VERTICES:
        if index_format == "auto":
            logger.info(f"{vertex_count} unique vertices, widening indices to uint32")
            return np.uint32
        raise MeshCapacityError(
            f"{vertex_count} unique vertices exceed the uint16 index range "
            f"({UINT16_MAX_VERTICES}); load with index_format='uint32' or 'auto'"
        )
    return np.uint16


def build_mesh(
    data: ObjData,
    layout: Tuple[str, ...] = ("position", "normal"),
    index_format: str = "uint16",
) -> Mesh:
    """Triangulate, resolve normals and deduplicate parsed records.

    Each face corner is keyed by its attribute indices for the attributes in
    `layout` ((position, normal) by default). The first occurrence of a key
    appends its attribute values to the vertex array; later occurrences reuse
    the same compact index. Faces whose first corner has no normal receive a
    flat face normal, appended once per face to a copy of the normals list;
    `data` itself is left untouched.

    Args:
        data: Parsed OBJ records
        layout: Attributes to interleave, starting with "position"
        index_format: "uint16", "uint32" or "auto"

    Returns:
        Mesh with interleaved vertices and triangle indices

    Raises:
        ObjParseError: If a face references a record that does not exist
        MeshCapacityError: If uint16 indices cannot address every vertex
    """
    layout = tuple(layout)
    _validate_layout(layout)
    if index_format not in INDEX_FORMATS:
        raise ValueError(f"Unknown index format {index_format!r}, expected one of {INDEX_FORMATS}")

    with_normals = "normal" in layout
    with_uvs = "uv" in layout

    vertices: List[float] = []
    indices: List[int] = []
    slots: Dict[Tuple[Optional[int], ...], int] = {}
    normals = list(data.normals)

    for face in data.faces:
        if with_normals:
            face = _assign_face_normal(data, face, normals)

        for ref in triangulate(face):
            key: Tuple[Optional[int], ...] = (ref.position,)
            if with_uvs:
                key += (ref.texcoord,)
            if with_normals:
                key += (ref.normal,)

            slot = slots.get(key)
            if slot is None:
                slot = len(slots)
                slots[key] = slot
                vertices.extend(_vertex_values(data, normals, ref, layout))
            indices.append(slot)

    dtype = _index_dtype(index_format, len(slots))
    vertex_array = np.asarray(vertices, dtype=np.float32)
    index_array = np.asarray(indices, dtype=dtype)
    vertex_array.setflags(write=False)
    index_array.setflags(write=False)

    return Mesh(vertex_array, index_array, layout)


def _assign_face_normal(data: ObjData, face: List[FaceVertex], normals: List[Vector3]) -> List[FaceVertex]:
    """Give corners without a normal reference the face's flat normal."""
    if all(ref.normal is not None for ref in face):
        return face

    normals.append(face_normal(data, face))
    normal = len(normals) - 1

    if face[0].normal is None:
        return [ref._replace(normal=normal) for ref in face]
    return [ref if ref.normal is not None else ref._replace(normal=normal) for ref in face]


def _vertex_values(
    data: ObjData, normals: List[Vector3], ref: FaceVertex, layout: Tuple[str, ...]
) -> List[float]:
    values: List[float] = []
    try:
        for name in layout:
            if name == "position":
                values.extend(data.positions[_checked(ref.position)])
            elif name == "normal":
                values.extend(normals[_checked(ref.normal)])
            elif ref.texcoord is not None:
                values.extend(data.texcoords[_checked(ref.texcoord)])
            else:
                values.extend((0.0, 0.0))
    except IndexError:
        raise ObjParseError(f"face vertex {ref} references a missing record") from None
    return values


def _checked(index: Optional[int]) -> int:
    # Negative indices left over from relative references point before the first record
    if index is None or index < 0:
        raise IndexError(index)
    return index


def load_obj(
    source: Union[str, Iterable[str]],
    layout: Tuple[str, ...] = ("position", "normal"),
    index_format: str = "uint16",
) -> Mesh:
    """Load OBJ text into an indexed triangle mesh.

    Args:
        source: OBJ text, or an iterable of its lines
        layout: Attributes to interleave per vertex
        index_format: "uint16" (default, fails above 65535 unique vertices),
            "uint32", or "auto" to widen only when needed

    Returns:
        Mesh ready for vertex and index buffer upload
    """
    start_time = time.perf_counter()

    data = parse_obj(source)
    mesh = build_mesh(data, layout=layout, index_format=index_format)

    elapsed_time = time.perf_counter() - start_time
    logger.info(
        f"Loaded mesh: {mesh.vertex_count} unique vertices, {mesh.triangle_count} triangles, "
        f"{mesh.index_format} indices (elapsed time: {elapsed_time:.3f}s)"
    )
    return mesh
