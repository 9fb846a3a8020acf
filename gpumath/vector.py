"""3-component vector helper used for face normal computation."""

from __future__ import annotations

import math
from typing import NamedTuple, Sequence

import numpy as np


class Vector3(NamedTuple):
    """Immutable (x, y, z) triple."""

    x: float
    y: float
    z: float

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> "Vector3":
        """Build a vector from the first three values of a sequence."""
        if len(values) < 3:
            raise ValueError(f"Expected at least 3 components, got {len(values)}")
        return cls(float(values[0]), float(values[1]), float(values[2]))

    # tuple's + and * concatenate and repeat; these are component-wise instead
    def __add__(self, other: "Vector3") -> "Vector3":
        if not isinstance(other, Vector3):
            return NotImplemented
        return Vector3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: "Vector3") -> "Vector3":
        if not isinstance(other, Vector3):
            return NotImplemented
        return Vector3(self.x - other.x, self.y - other.y, self.z - other.z)

    def __mul__(self, scalar: float) -> "Vector3":
        if not isinstance(scalar, (int, float)):
            return NotImplemented
        return Vector3(self.x * scalar, self.y * scalar, self.z * scalar)

    __rmul__ = __mul__

    def cross(self, other: "Vector3") -> "Vector3":
        """Right-handed cross product self x other."""
        return Vector3(
            self.y * other.z - self.z * other.y,
            self.z * other.x - self.x * other.z,
            self.x * other.y - self.y * other.x,
        )

    def length(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def normalized(self) -> "Vector3":
        """Return the unit vector pointing the same way.

        Raises:
            ValueError: If the vector has zero length
        """
        norm = self.length()
        if norm == 0:
            raise ValueError("Cannot normalize a zero-length vector")
        return Vector3(self.x / norm, self.y / norm, self.z / norm)

    def to_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float32)
