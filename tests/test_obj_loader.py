"""Tests for obj_loader module.

This module tests parsing, fan triangulation, face normal generation and
vertex deduplication on small hand-written OBJ sources.
"""

import sys
import unittest
from pathlib import Path

import numpy as np
import pytest

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from gpumath import obj_loader
from gpumath.obj_loader import FaceVertex, MeshCapacityError, ObjParseError


QUAD_WITH_NORMAL = """\
v 0 0 0
v 1 0 0
v 1 1 0
v 0 1 0
vn 0 0 1
f 1/_/1 2/_/1 3/_/1 4/_/1
"""

QUAD_WITHOUT_NORMALS = """\
v 0 0 0
v 1 0 0
v 1 1 0
v 0 1 0
f 1 2 3
f 1 3 4
"""


class TestObjParsing(unittest.TestCase):
    """Test the parse pass."""

    def test_records(self):
        """Test that v, vn, vt and f records are collected."""
        data = obj_loader.parse_obj(
            "v 1 2 3\n"
            "vn 0 1 0\n"
            "vt 0.5 0.25\n"
            "vt 0.75\n"
            "f 1/1/1 1/2/1 1//1\n"
        )
        self.assertEqual(data.positions, [(1.0, 2.0, 3.0)])
        self.assertEqual(data.normals, [(0.0, 1.0, 0.0)])
        self.assertEqual(data.texcoords, [(0.5, 0.25), (0.75, 0.0)])
        self.assertEqual(
            data.faces,
            [[FaceVertex(0, 0, 0), FaceVertex(0, 1, 0), FaceVertex(0, None, 0)]],
        )

    def test_face_token_forms(self):
        """Test p, p/t, p/t/n, p//n and the _ placeholder."""
        data = obj_loader.parse_obj(
            "v 0 0 0\nv 1 0 0\nv 0 1 0\nv 1 1 0\n"
            "vt 0 0\nvn 0 0 1\n"
            "f 1 2/1 3/1/1 4//1 1/_/1\n"
        )
        self.assertEqual(
            data.faces[0],
            [
                FaceVertex(0, None, None),
                FaceVertex(1, 0, None),
                FaceVertex(2, 0, 0),
                FaceVertex(3, None, 0),
                FaceVertex(0, None, 0),
            ],
        )

    def test_negative_indices(self):
        """Test indices relative to the end of the lists read so far."""
        data = obj_loader.parse_obj("v 0 0 0\nv 1 0 0\nv 0 1 0\nvn 0 0 1\nf -3//-1 -2//-1 -1//-1\n")
        self.assertEqual([ref.position for ref in data.faces[0]], [0, 1, 2])
        self.assertEqual([ref.normal for ref in data.faces[0]], [0, 0, 0])

    def test_ignored_lines(self):
        """Test that comments and other directives are skipped."""
        data = obj_loader.parse_obj(
            "# a comment\n"
            "mtllib cube.mtl\n"
            "o cube\n"
            "g side\n"
            "usemtl red\n"
            "s 1\n"
            "\n"
            "v 1 2 3 1.0\n"
        )
        self.assertEqual(data.positions, [(1.0, 2.0, 3.0)])
        self.assertEqual(data.faces, [])

    def test_lines_iterable(self):
        """Test that any iterable of lines is accepted."""
        data = obj_loader.parse_obj(iter(QUAD_WITH_NORMAL.splitlines(keepends=True)))
        self.assertEqual(len(data.positions), 4)
        self.assertEqual(len(data.faces), 1)

    def test_malformed_number(self):
        """Test a non-numeric position component."""
        with self.assertRaises(ObjParseError) as ctx:
            obj_loader.parse_obj("v 0 0 0\nv 1 a 2\n")
        self.assertEqual(ctx.exception.line_number, 2)
        self.assertEqual(ctx.exception.line, "v 1 a 2")
        self.assertIn("line 2", str(ctx.exception))

    def test_malformed_records(self):
        """Test the other parse failures."""
        bad_sources = [
            "vn 0 x 1\n",
            "v 1 2\n",
            "vn 1\n",
            "vt\n",
            "v 0 0 0\nf 1/x/1 1 1\n",
            "v 0 0 0\nf 1 1\n",
            "v 0 0 0\nf 0 1 1\n",
            "v 0 0 0\nf 1/1/1/1 1 1\n",
            "v 0 0 0\nf /1 1 1\n",
        ]
        for source in bad_sources:
            with self.subTest(source=source):
                with self.assertRaises(ObjParseError):
                    obj_loader.parse_obj(source)

    def test_parse_error_is_value_error(self):
        """Test that callers can catch parse errors as ValueError."""
        with pytest.raises(ValueError):
            obj_loader.load_obj("v one two three\n")


class TestTriangulation(unittest.TestCase):
    """Test fan triangulation."""

    def test_fan_order(self):
        """Test [v0..v4] -> [v0,v1,v2, v0,v2,v3, v0,v3,v4]."""
        face = [FaceVertex(i) for i in range(5)]
        corners = obj_loader.triangulate(face)
        self.assertEqual([ref.position for ref in corners], [0, 1, 2, 0, 2, 3, 0, 3, 4])

    def test_triangle_unchanged(self):
        """Test that a triangle produces itself."""
        face = [FaceVertex(i) for i in range(3)]
        self.assertEqual(obj_loader.triangulate(face), face)


class TestMeshBuilding(unittest.TestCase):
    """Test normal resolution and deduplication."""

    def test_quad_with_shared_normal(self):
        """Test the 4-vertex face: 2 triangles, 4 unique vertices."""
        mesh = obj_loader.load_obj(QUAD_WITH_NORMAL)

        self.assertEqual(mesh.vertex_count, 4)
        self.assertEqual(mesh.triangle_count, 2)
        self.assertEqual(mesh.indices.dtype, np.uint16)
        np.testing.assert_array_equal(mesh.indices, [0, 1, 2, 0, 2, 3])

        np.testing.assert_array_equal(
            mesh.attribute("position"),
            [[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]],
        )
        np.testing.assert_array_equal(mesh.attribute("normal"), [[0, 0, 1]] * 4)

    def test_interleaved_layout(self):
        """Test position triplet followed by normal triplet."""
        mesh = obj_loader.load_obj(QUAD_WITH_NORMAL)
        self.assertEqual(mesh.stride, 6)
        self.assertEqual(mesh.vertices.dtype, np.float32)
        np.testing.assert_array_equal(mesh.vertices[:12], [0, 0, 0, 0, 0, 1, 1, 0, 0, 0, 0, 1])

    def test_index_invariants(self):
        """Test that indices address existing vertices and form triangles."""
        mesh = obj_loader.load_obj(QUAD_WITHOUT_NORMALS)
        self.assertEqual(len(mesh.indices) % 3, 0)
        self.assertTrue(np.all(mesh.indices < mesh.vertex_count))

    def test_face_normal_generated(self):
        """Test one flat normal per face, assigned to all its corners."""
        data = obj_loader.parse_obj(QUAD_WITHOUT_NORMALS)
        mesh = obj_loader.build_mesh(data)

        # Shared positions carry different normal indices, so they are not merged
        self.assertEqual(mesh.vertex_count, 6)
        np.testing.assert_array_equal(mesh.indices, [0, 1, 2, 3, 4, 5])
        np.testing.assert_array_equal(mesh.attribute("normal"), [[0, 0, 1]] * 6)

        # Generated normals live only in the mesh output
        self.assertEqual(data.normals, [])

    def test_build_twice_gives_same_mesh(self):
        """Test that building leaves the parsed records unchanged."""
        data = obj_loader.parse_obj("v 0 0 0\nv 1 0 0\nv 0 1 0\nf 1 2 3\n")
        first = obj_loader.build_mesh(data)
        second = obj_loader.build_mesh(data)

        self.assertEqual(data.normals, [])
        np.testing.assert_array_equal(first.vertices, second.vertices)
        np.testing.assert_array_equal(first.indices, second.indices)

    def test_face_normal_right_hand_rule(self):
        """Test that clockwise winding flips the normal."""
        data = obj_loader.parse_obj("v 0 0 0\nv 1 0 0\nv 0 1 0\nf 1 3 2\n")
        mesh = obj_loader.build_mesh(data)
        np.testing.assert_allclose(mesh.attribute("normal"), [[0, 0, -1]] * 3)

    def test_face_normal_not_normalized(self):
        """Test that the raw cross product is kept."""
        mesh = obj_loader.load_obj("v 0 0 0\nv 2 0 0\nv 0 3 0\nf 1 2 3\n")
        np.testing.assert_allclose(mesh.attribute("normal")[0], [0, 0, 6])

    def test_polygon_face_normal_assigned_to_all_triangles(self):
        """Test a quad without normals gets a single normal for both triangles."""
        data = obj_loader.parse_obj("v 0 0 0\nv 1 0 0\nv 1 1 0\nv 0 1 0\nf 1 2 3 4\n")
        mesh = obj_loader.build_mesh(data)
        np.testing.assert_array_equal(mesh.attribute("normal"), [[0, 0, 1]] * 4)
        self.assertEqual(mesh.vertex_count, 4)
        np.testing.assert_array_equal(mesh.indices, [0, 1, 2, 0, 2, 3])

    def test_partial_normals(self):
        """Test that corners missing a normal get the face normal."""
        data = obj_loader.parse_obj("v 0 0 0\nv 1 0 0\nv 0 1 0\nvn 1 0 0\nf 1//1 2 3//1\n")
        mesh = obj_loader.build_mesh(data)
        self.assertEqual(len(data.normals), 1)
        np.testing.assert_allclose(
            mesh.attribute("normal"), [[1, 0, 0], [0, 0, 1], [1, 0, 0]]
        )

    def test_shared_vertex_across_faces(self):
        """Test that a repeated (position, normal) pair is stored once."""
        mesh = obj_loader.load_obj(
            "v 0 0 0\nv 1 0 0\nv 1 1 0\nv 0 1 0\nvn 0 0 1\n"
            "f 1//1 2//1 3//1\n"
            "f 1//1 3//1 4//1\n"
        )
        self.assertEqual(mesh.vertex_count, 4)
        np.testing.assert_array_equal(mesh.indices, [0, 1, 2, 0, 2, 3])

    def test_same_position_different_normals(self):
        """Test that a position with two normals yields two vertices."""
        mesh = obj_loader.load_obj(
            "v 0 0 0\nv 1 0 0\nv 0 1 0\nvn 0 0 1\nvn 0 0 -1\n"
            "f 1//1 2//1 3//1\n"
            "f 1//2 3//2 2//2\n"
        )
        self.assertEqual(mesh.vertex_count, 6)

    def test_uv_layout(self):
        """Test position, normal and uv interleaving with texcoords in the key."""
        mesh = obj_loader.load_obj(
            "v 0 0 0\nv 1 0 0\nv 0 1 0\nvn 0 0 1\nvt 0 0\nvt 1 0\nvt 0 1\n"
            "f 1/1/1 2/2/1 3/3/1\n"
            "f 1/2/1 2/2/1 3\n",
            layout=("position", "normal", "uv"),
        )
        self.assertEqual(mesh.stride, 8)

        # 1/1/1 and 1/2/1 differ only in texcoord; 3 has no texcoord nor normal
        self.assertEqual(mesh.vertex_count, 5)
        np.testing.assert_array_equal(mesh.indices, [0, 1, 2, 3, 1, 4])
        np.testing.assert_array_equal(
            mesh.attribute("uv"), [[0, 0], [1, 0], [0, 1], [1, 0], [0, 0]]
        )

    def test_position_only_layout(self):
        """Test that no normals are generated without a normal attribute."""
        data = obj_loader.parse_obj(QUAD_WITHOUT_NORMALS)
        mesh = obj_loader.build_mesh(data, layout=("position",))
        self.assertEqual(mesh.stride, 3)
        self.assertEqual(mesh.vertex_count, 4)
        self.assertEqual(data.normals, [])

    def test_invalid_options(self):
        """Test layout and index format validation."""
        for layout in [("normal", "position"), ("position", "color"), ("position", "normal", "normal"), ()]:
            with self.subTest(layout=layout):
                with self.assertRaises(ValueError):
                    obj_loader.load_obj(QUAD_WITH_NORMAL, layout=layout)

        with self.assertRaises(ValueError):
            obj_loader.load_obj(QUAD_WITH_NORMAL, index_format="uint8")

    def test_missing_references(self):
        """Test faces pointing past the parsed records."""
        with self.assertRaises(ObjParseError):
            obj_loader.load_obj("v 0 0 0\nf 1 2 3\n")
        with self.assertRaises(ObjParseError):
            obj_loader.load_obj("v 0 0 0\nv 1 0 0\nv 0 1 0\nvn 0 0 1\nf 1//1 2//1 3//5\n")
        with self.assertRaises(ObjParseError):
            obj_loader.load_obj("v 0 0 0\nv 1 0 0\nv 0 1 0\nf -4 2 3\n")

    def test_mesh_is_read_only(self):
        """Test that the output buffers cannot be modified."""
        mesh = obj_loader.load_obj(QUAD_WITH_NORMAL)
        with self.assertRaises(ValueError):
            mesh.vertices[0] = 5.0
        with self.assertRaises(ValueError):
            mesh.indices[0] = 1

    def test_empty_source(self):
        """Test that an empty file gives an empty mesh."""
        mesh = obj_loader.load_obj("")
        self.assertEqual(mesh.vertex_count, 0)
        self.assertEqual(mesh.triangle_count, 0)


class TestIndexCapacity(unittest.TestCase):
    """Test the uint16 index limit."""

    @staticmethod
    def _unshared_triangles(n_triangles):
        """Parse n_triangles faces that share no position, giving 3 vertices each."""
        lines = ["v 0 0 0"] * (n_triangles * 3)
        lines.append("vn 0 0 1")
        for k in range(n_triangles):
            a = 3 * k + 1
            lines.append(f"f {a}//1 {a + 1}//1 {a + 2}//1")
        return obj_loader.parse_obj(lines)

    @classmethod
    def setUpClass(cls):
        """Build sources with 65535 and 65538 unique vertices."""
        cls.at_limit = cls._unshared_triangles(21845)
        cls.data = cls._unshared_triangles(21846)

    def test_exactly_at_limit_stays_uint16(self):
        """Test that 65535 unique vertices still fit 16-bit indices."""
        mesh = obj_loader.build_mesh(self.at_limit)
        self.assertEqual(mesh.index_format, "uint16")
        self.assertEqual(mesh.vertex_count, 65535)
        self.assertEqual(int(mesh.indices.max()), 65534)

        auto = obj_loader.build_mesh(self.at_limit, index_format="auto")
        self.assertEqual(auto.index_format, "uint16")

    def test_uint16_overflow_raises(self):
        """Test that the default format refuses to truncate."""
        with self.assertRaises(MeshCapacityError):
            obj_loader.build_mesh(self.data)

    def test_auto_widens(self):
        """Test that auto switches to uint32 only when needed."""
        mesh = obj_loader.build_mesh(self.data, index_format="auto")
        self.assertEqual(mesh.index_format, "uint32")
        self.assertEqual(mesh.vertex_count, 65538)
        self.assertEqual(int(mesh.indices.max()), 65537)

        small = obj_loader.load_obj(QUAD_WITH_NORMAL, index_format="auto")
        self.assertEqual(small.index_format, "uint16")

    def test_uint32_requested(self):
        """Test an explicit uint32 format."""
        mesh = obj_loader.load_obj(QUAD_WITH_NORMAL, index_format="uint32")
        self.assertEqual(mesh.indices.dtype, np.uint32)


if __name__ == "__main__":
    unittest.main()
