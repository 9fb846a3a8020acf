"""4x4 transformation matrices for GPU uniform upload.

This module implements the model/view/projection transforms used by the
rendering examples: elementary translation, scale and rotation matrices,
right-handed look-at and perspective projection, cofactor inversion, and
the column-major serialization the graphics API expects.

Matrices are stored row-major (element [r][c] at flat index r*4+c) as
single-precision floats. Every operation returns a new Matrix4; the backing
array is read-only, so a matrix held by one caller can never change under
another.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)

Vec3Like = Union[Sequence[float], np.ndarray]


def _freeze(values: np.ndarray) -> np.ndarray:
    """Return a read-only float32 (4, 4) copy of values."""
    data = np.array(values, dtype=np.float32).reshape(4, 4)
    data.setflags(write=False)
    return data


def _det3(m: np.ndarray) -> np.float32:
    """Determinant of a 3x3 block by cofactor expansion along the first row."""
    return (
        m[0, 0] * (m[1, 1] * m[2, 2] - m[1, 2] * m[2, 1])
        - m[0, 1] * (m[1, 0] * m[2, 2] - m[1, 2] * m[2, 0])
        + m[0, 2] * (m[1, 0] * m[2, 1] - m[1, 1] * m[2, 0])
    )


def _cofactors(m: np.ndarray) -> np.ndarray:
    """Compute the 4x4 cofactor matrix of m.

    Args:
        m: 4x4 float32 array

    Returns:
        4x4 float32 array C with C[r, c] = (-1)^(r+c) * det(minor(r, c))
    """
    C = np.empty((4, 4), dtype=np.float32)
    for r in range(4):
        for c in range(4):
            # Drop row r and column c
            minor = np.delete(np.delete(m, r, axis=0), c, axis=1)
            sign = 1.0 if (r + c) % 2 == 0 else -1.0
            C[r, c] = sign * _det3(minor)
    return C


class Matrix4:
    """Immutable 4x4 single-precision transformation matrix."""

    __slots__ = ("_data",)

    def __init__(self, values: Union[Iterable[float], np.ndarray, None] = None):
        """Initialize the matrix.

        Args:
            values: 16 row-major values or a 4x4 nested sequence. Defaults to
                the identity.
        """
        if values is None:
            self._data = _freeze(np.eye(4))
            return

        arr = np.asarray(values, dtype=np.float32)
        if arr.size != 16:
            raise ValueError(f"Expected 16 values or a 4x4 array, got shape {arr.shape}")
        self._data = _freeze(arr)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def identity(cls) -> "Matrix4":
        """Return the identity matrix."""
        return cls()

    @classmethod
    def from_rows(cls, values: Union[Iterable[float], np.ndarray]) -> "Matrix4":
        """Build a matrix from row-major values (16 numbers or 4 rows of 4)."""
        return cls(values)

    @classmethod
    def translation(cls, x: float, y: float, z: float) -> "Matrix4":
        """Translation by (x, y, z)."""
        return cls([
            1, 0, 0, x,
            0, 1, 0, y,
            0, 0, 1, z,
            0, 0, 0, 1,
        ])

    @classmethod
    def scaling(cls, x: float, y: float, z: float) -> "Matrix4":
        """Axis-aligned scale by (x, y, z)."""
        return cls([
            x, 0, 0, 0,
            0, y, 0, 0,
            0, 0, z, 0,
            0, 0, 0, 1,
        ])

    @classmethod
    def rotation_x(cls, angle: float) -> "Matrix4":
        """Rotation about the X axis by angle degrees."""
        radian = math.pi * angle / 180
        c, s = math.cos(radian), math.sin(radian)
        return cls([
            1, 0, 0, 0,
            0, c, -s, 0,
            0, s, c, 0,
            0, 0, 0, 1,
        ])

    @classmethod
    def rotation_y(cls, angle: float) -> "Matrix4":
        """Rotation about the Y axis by angle degrees."""
        radian = math.pi * angle / 180
        c, s = math.cos(radian), math.sin(radian)
        return cls([
            c, 0, s, 0,
            0, 1, 0, 0,
            -s, 0, c, 0,
            0, 0, 0, 1,
        ])

    @classmethod
    def rotation_z(cls, angle: float) -> "Matrix4":
        """Rotation in the XY plane by angle degrees."""
        radian = math.pi * angle / 180
        c, s = math.cos(radian), math.sin(radian)
        return cls([
            c, -s, 0, 0,
            s, c, 0, 0,
            0, 0, 1, 0,
            0, 0, 0, 1,
        ])

    @classmethod
    def perspective(cls, fov: float, aspect: float, near: float, far: float) -> "Matrix4":
        """Symmetric perspective projection.

        Maps right-handed view space (camera looking down -Z) to clip space,
        with row 3 = [0, 0, -1, 0] so that w_clip = -z_view. After the
        perspective divide the near plane lands at depth -1 and the far
        plane at +1.

        Args:
            fov: Vertical field of view in degrees
            aspect: Viewport width / height
            near: Distance to the near clip plane (> 0)
            far: Distance to the far clip plane (> 0)

        Returns:
            Projection matrix

        Raises:
            ValueError: If the frustum is degenerate
        """
        if near == far or aspect == 0:
            raise ValueError("null frustum")
        if near <= 0:
            raise ValueError("near <= 0")
        if far <= 0:
            raise ValueError("far <= 0")

        half_fov = math.pi * fov / 180 / 2
        s = math.sin(half_fov)
        if s == 0:
            raise ValueError("null frustum")

        rd = 1 / (far - near)
        ct = math.cos(half_fov) / s

        return cls([
            ct / aspect, 0, 0, 0,
            0, ct, 0, 0,
            0, 0, -(far + near) * rd, -2 * near * far * rd,
            0, 0, -1, 0,
        ])

    @classmethod
    def view(cls, eye: Vec3Like, target: Vec3Like, up: Vec3Like) -> "Matrix4":
        """Right-handed view matrix looking from eye towards target.

        The eye must differ from the target and up must not be parallel to
        the viewing direction; degenerate inputs are not special-cased and
        yield non-finite entries.

        Args:
            eye: Camera position
            target: Point the camera looks at
            up: Approximate up direction

        Returns:
            View matrix mapping eye to the origin and target onto -Z
        """
        eye = np.asarray(eye, dtype=np.float64)
        target = np.asarray(target, dtype=np.float64)
        up = np.asarray(up, dtype=np.float64)

        with np.errstate(divide="ignore", invalid="ignore"):
            # Forward
            f = target - eye
            f = f * (1.0 / np.sqrt(np.dot(f, f)))

            # Side = forward x up
            s = np.cross(f, up)
            s = s * (1.0 / np.sqrt(np.dot(s, s)))

            # Recomputed up = side x forward
            u = np.cross(s, f)

        rotation = cls([
            s[0], s[1], s[2], 0,
            u[0], u[1], u[2], 0,
            -f[0], -f[1], -f[2], 0,
            0, 0, 0, 1,
        ])
        return rotation.translate(-eye[0], -eye[1], -eye[2])

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def multiply(self, other: "Matrix4") -> "Matrix4":
        """Return self * other."""
        if not isinstance(other, Matrix4):
            raise TypeError(f"Expected Matrix4, got {type(other).__name__}")
        return Matrix4(self._data @ other._data)

    def __matmul__(self, other: "Matrix4") -> "Matrix4":
        if not isinstance(other, Matrix4):
            return NotImplemented
        return self.multiply(other)

    def translate(self, x: float, y: float, z: float) -> "Matrix4":
        """Return self * translation(x, y, z).

        Args:
            x: Offset along X
            y: Offset along Y
            z: Offset along Z

        Returns:
            Composed matrix; the translation applies to points first
        """
        return self.multiply(Matrix4.translation(x, y, z))

    def scale(self, x: float, y: float, z: float) -> "Matrix4":
        """Return self * scaling(x, y, z)."""
        return self.multiply(Matrix4.scaling(x, y, z))

    def rotate_x(self, angle: float) -> "Matrix4":
        """Return self * rotation_x(angle), angle in degrees."""
        return self.multiply(Matrix4.rotation_x(angle))

    def rotate_y(self, angle: float) -> "Matrix4":
        """Return self * rotation_y(angle), angle in degrees."""
        return self.multiply(Matrix4.rotation_y(angle))

    def rotate_z(self, angle: float) -> "Matrix4":
        """Return self * rotation_z(angle), angle in degrees."""
        return self.multiply(Matrix4.rotation_z(angle))

    def look_at(self, eye: Vec3Like, target: Vec3Like, up: Vec3Like) -> "Matrix4":
        """Post-compose the view matrix for (eye, target, up) onto self."""
        return self.multiply(Matrix4.view(eye, target, up))

    def set_look_at(self, eye: Vec3Like, target: Vec3Like, up: Vec3Like) -> "Matrix4":
        """Return the view matrix for (eye, target, up), discarding self."""
        return Matrix4.view(eye, target, up)

    def set_perspective(self, fov: float, aspect: float, near: float, far: float) -> "Matrix4":
        """Return a perspective projection, discarding self.

        See Matrix4.perspective for the argument contract.
        """
        return Matrix4.perspective(fov, aspect, near, far)

    # ------------------------------------------------------------------
    # Inversion and transposition
    # ------------------------------------------------------------------

    def determinant(self) -> float:
        """Determinant by cofactor expansion along the first row."""
        C = _cofactors(self._data)
        return float(np.dot(self._data[0], C[0]))

    def set_inverse_of(self, other: "Matrix4") -> "Matrix4":
        """Return the inverse of other, computed from its adjugate.

        inv(M) = adj(M) / det(M), where adj(M) is the transposed cofactor
        matrix. When det(M) is exactly zero the inverse does not exist and
        self is returned unchanged.

        Args:
            other: Matrix to invert

        Returns:
            Inverse of other, or self if other is singular
        """
        m = other._data
        C = _cofactors(m)
        det = np.dot(m[0], C[0])

        if det == 0:
            logger.warning("Singular matrix (determinant 0), inversion skipped")
            return self

        logger.debug(f"Inverting matrix with determinant {float(det):.6g}")
        return Matrix4(C.T / det)

    def inverse(self) -> "Matrix4":
        """Return the inverse of self, or self unchanged if it is singular."""
        return self.set_inverse_of(self)

    def transpose(self) -> "Matrix4":
        """Return the transposed matrix."""
        return Matrix4(self._data.T)

    def normal_matrix(self) -> "Matrix4":
        """Inverse-transpose, used to carry normals through a model transform."""
        return self.inverse().transpose()

    # ------------------------------------------------------------------
    # Serialization and access
    # ------------------------------------------------------------------

    def to_external_layout(self) -> np.ndarray:
        """Flatten to the column-major order used for uniform buffers.

        output[i] = data[(i % 4) * 4 + i // 4]

        Returns:
            16-element float32 array
        """
        return self._data.flatten(order="F")

    def to_bytes(self) -> bytes:
        """Little-endian float32 bytes of the external layout."""
        return self.to_external_layout().astype("<f4").tobytes()

    def to_array(self) -> np.ndarray:
        """Writable row-major (4, 4) float32 copy."""
        return self._data.copy()

    def transform_point(self, point: Vec3Like) -> np.ndarray:
        """Apply the matrix to a point.

        Args:
            point: 3-component point (w = 1 is implied) or 4-component
                homogeneous point

        Returns:
            4-component homogeneous float32 result
        """
        p = np.asarray(point, dtype=np.float32)
        if p.shape == (3,):
            p = np.append(p, np.float32(1.0))
        elif p.shape != (4,):
            raise ValueError(f"Expected a 3 or 4 component point, got shape {p.shape}")
        return self._data @ p

    def allclose(self, other: "Matrix4", atol: float = 1e-6) -> bool:
        """Element-wise comparison within an absolute tolerance.

        Args:
            other: Matrix to compare with
            atol: Absolute tolerance per element

        Returns:
            True if every element pair is within tolerance
        """
        return bool(np.allclose(self._data, other._data, atol=atol))

    def __getitem__(self, index: tuple[int, int]) -> float:
        return float(self._data[index])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Matrix4):
            return NotImplemented
        return bool(np.array_equal(self._data, other._data))

    def __hash__(self) -> int:
        # -0.0 and 0.0 compare equal, so normalise before hashing
        return hash((self._data + np.float32(0.0)).tobytes())

    def __repr__(self) -> str:
        rows = ", ".join(
            "[" + ", ".join(f"{v:.6g}" for v in row) + "]" for row in self._data
        )
        return f"Matrix4([{rows}])"
