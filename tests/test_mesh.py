"""Tests for iso-surface extraction and color resampling (splat2sdf.mesh)."""
from __future__ import annotations

from collections import Counter

import numpy as np
import numpy.testing as npt
import pytest

from splat2sdf import ColorGrid, GridSpec, Mesh, marching_cubes, sample_color_grid


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Offset half a cell so no lattice point lies exactly on the unit sphere.
SPHERE_SPEC = GridSpec((-1.55, -1.55, -1.55), 0.1, 32, 32, 32)


def _sphere_sdf(spec: GridSpec, radius: float = 1.0, centre=(0.0, 0.0, 0.0)) -> np.ndarray:
    pts = spec.world_points()
    return (np.linalg.norm(pts - np.asarray(centre), axis=-1) - radius).reshape(-1)


def _edge_counts(mesh: Mesh) -> Counter:
    tris = mesh.triangles
    edges = np.concatenate([tris[:, [0, 1]], tris[:, [1, 2]], tris[:, [2, 0]]])
    edges.sort(axis=1)
    return Counter(map(tuple, edges.tolist()))


# ---------------------------------------------------------------------------
# Mesh
# ---------------------------------------------------------------------------

class TestMesh:
    def test_default_empty(self):
        m = Mesh()
        assert m.is_empty()
        assert m.triangles.shape == (0, 3)
        assert m.colors is None

    def test_triangles_view(self):
        m = Mesh(np.zeros((3, 3)), np.array([0, 1, 2], dtype=np.uint32))
        assert m.triangles.tolist() == [[0, 1, 2]]
        assert not m.is_empty()


# ---------------------------------------------------------------------------
# marching_cubes
# ---------------------------------------------------------------------------

class TestMarchingCubes:
    def test_sphere_sdf(self):
        mesh = marching_cubes(_sphere_sdf(SPHERE_SPEC), SPHERE_SPEC, 0.0, False)
        assert not mesh.is_empty()
        r = np.linalg.norm(mesh.positions, axis=1)
        npt.assert_allclose(r, 1.0, atol=SPHERE_SPEC.dx * np.sqrt(3.0))

    def test_sphere_closed(self):
        mesh = marching_cubes(_sphere_sdf(SPHERE_SPEC), SPHERE_SPEC, 0.0, False)
        counts = _edge_counts(mesh)
        assert set(counts.values()) == {2}

    def test_indices_dtype_and_range(self):
        mesh = marching_cubes(_sphere_sdf(SPHERE_SPEC), SPHERE_SPEC, 0.0, False)
        assert mesh.indices.dtype == np.uint32
        assert mesh.indices.ndim == 1
        assert len(mesh.indices) % 3 == 0
        assert mesh.indices.max() < len(mesh.positions)

    def test_world_offset(self):
        spec = GridSpec((8.45, -1.55, -1.55), 0.1, 32, 32, 32)
        mesh = marching_cubes(_sphere_sdf(spec, centre=(10.0, 0.0, 0.0)), spec, 0.0, False)
        npt.assert_allclose(mesh.positions.mean(axis=0), [10.0, 0.0, 0.0], atol=0.05)

    def test_density_inside_greater(self):
        # 1 - r is greater inside; level 0.5 is the sphere of radius 0.5.
        values = 1.0 - (_sphere_sdf(SPHERE_SPEC) + 1.0)
        mesh = marching_cubes(values, SPHERE_SPEC, 0.5, True)
        assert not mesh.is_empty()
        r = np.linalg.norm(mesh.positions, axis=1)
        npt.assert_allclose(r, 0.5, atol=SPHERE_SPEC.dx * np.sqrt(3.0))

    def test_inside_flag_same_surface(self):
        sdf = _sphere_sdf(SPHERE_SPEC)
        a = marching_cubes(sdf, SPHERE_SPEC, 0.0, False)
        b = marching_cubes(-sdf, SPHERE_SPEC, 0.0, True)
        assert len(a.positions) == len(b.positions)
        npt.assert_allclose(np.sort(a.positions, axis=0), np.sort(b.positions, axis=0),
                            atol=1e-9)

    def test_no_crossing_empty(self):
        values = np.ones(SPHERE_SPEC.size)
        assert marching_cubes(values, SPHERE_SPEC, 0.0, False).is_empty()

    def test_level_at_extreme_empty(self):
        sdf = _sphere_sdf(SPHERE_SPEC)
        assert marching_cubes(sdf, SPHERE_SPEC, float(sdf.max()), False).is_empty()

    @pytest.mark.parametrize("dims", [(1, 4, 4), (4, 1, 4), (4, 4, 1), (0, 0, 0)])
    def test_thin_grid_empty(self, dims):
        spec = GridSpec((0.0, 0.0, 0.0), 1.0, *dims)
        values = np.linspace(-1.0, 1.0, spec.size)
        assert marching_cubes(values, spec, 0.0, False).is_empty()


# ---------------------------------------------------------------------------
# sample_color_grid
# ---------------------------------------------------------------------------

class TestSampleColorGrid:
    def setup_method(self):
        self.spec = GridSpec((0.0, 0.0, 0.0), 1.0, 3, 3, 3)

    def test_uniform(self):
        cg = ColorGrid.zeros(self.spec.size)
        cg.weight[:] = 2.0
        cg.sum[:] = 2.0 * np.array([0.2, 0.4, 0.6])
        pts = np.array([[0.3, 1.7, 0.9], [2.0, 2.0, 2.0], [-5.0, 9.0, 1.0]])
        npt.assert_allclose(sample_color_grid(cg, self.spec, pts),
                            np.tile([0.2, 0.4, 0.6], (3, 1)))

    def test_zero_weight_white(self):
        cg = ColorGrid.zeros(self.spec.size)
        out = sample_color_grid(cg, self.spec, np.array([[1.0, 1.0, 1.0]]))
        npt.assert_array_equal(out, [[1.0, 1.0, 1.0]])

    def test_trilinear_midpoint(self):
        cg = ColorGrid.zeros(self.spec.size)
        a, b = self.spec.index(0, 1, 1), self.spec.index(1, 1, 1)
        cg.weight[[a, b]] = 1.0
        cg.sum[a] = [1.0, 0.0, 0.0]
        cg.sum[b] = [0.0, 0.0, 1.0]
        out = sample_color_grid(cg, self.spec, np.array([[0.5, 1.0, 1.0], [0.25, 1.0, 1.0]]))
        npt.assert_allclose(out[0], [0.5, 0.0, 0.5])
        npt.assert_allclose(out[1], [0.75, 0.0, 0.25])

    def test_weights_normalise_colors(self):
        cg = ColorGrid.zeros(self.spec.size)
        a, b = self.spec.index(0, 0, 0), self.spec.index(1, 0, 0)
        cg.weight[a], cg.sum[a] = 3.0, [3.0, 0.0, 0.0]
        cg.weight[b], cg.sum[b] = 1.0, [0.0, 1.0, 0.0]
        out = sample_color_grid(cg, self.spec, np.array([[0.5, 0.0, 0.0]]))
        npt.assert_allclose(out[0], [0.75, 0.25, 0.0])
