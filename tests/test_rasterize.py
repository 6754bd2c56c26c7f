"""Tests for the density and smooth-min rasterizers (splat2sdf.rasterize)."""
from __future__ import annotations

import numpy as np
import numpy.testing as npt
import pytest

from splat2sdf import (
    ColorGrid,
    GridSpec,
    SplatCloud,
    blur_color_grid,
    build_samples,
    rasterize_density,
    rasterize_smoothmin,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# 13^3 lattice over [-1.5, 1.5]^3; index 6 is the origin exactly.
SPEC = GridSpec((-1.5, -1.5, -1.5), 0.25, 13, 13, 13)
CENTRE = SPEC.index(6, 6, 6)


def _samples(positions, log_sigma=np.log(0.5), logit=20.0, colors=None):
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    n = len(positions)
    return build_samples(SplatCloud(
        positions,
        np.tile([1.0, 0.0, 0.0, 0.0], (n, 1)),
        np.full((n, 3), log_sigma),
        np.full(n, logit),
        colors,
    ))


def _cluster(n=12, seed=0):
    rng = np.random.default_rng(seed)
    return build_samples(SplatCloud(
        rng.uniform(-0.8, 0.8, size=(n, 3)),
        rng.standard_normal((n, 4)),
        np.log(rng.uniform(0.1, 0.4, size=(n, 3))),
        rng.uniform(-2.0, 3.0, size=n),
        rng.uniform(0.0, 1.0, size=(n, 3)),
    ))


# ---------------------------------------------------------------------------
# Density
# ---------------------------------------------------------------------------

class TestRasterizeDensity:
    def test_peak_equals_alpha(self):
        s = _samples([0.0, 0.0, 0.0])
        grid = rasterize_density(s, SPEC, 3.0, 3.0)
        assert grid[CENTRE] == pytest.approx(s.alpha[0], rel=1e-12)
        assert grid.max() == pytest.approx(s.alpha[0], rel=1e-12)

    def test_gaussian_falloff(self):
        s = _samples([0.0, 0.0, 0.0], logit=0.0)
        grid = rasterize_density(s, SPEC, 3.0, 10.0)
        # One cell along x is 0.25 / 0.5 = 0.5 sigma.
        assert grid[SPEC.index(7, 6, 6)] == pytest.approx(0.5 * np.exp(-0.125))
        assert grid[SPEC.index(8, 6, 6)] == pytest.approx(0.5 * np.exp(-0.5))

    def test_shape_and_finite(self):
        grid = rasterize_density(_cluster(), SPEC, 3.0, 3.0)
        assert grid.shape == (SPEC.size,)
        assert np.all(np.isfinite(grid))
        assert np.all(grid >= 0.0)

    def test_additive(self):
        one = rasterize_density(_samples([0.0, 0.0, 0.0]), SPEC, 3.0, 3.0)
        two = rasterize_density(_samples([[0.0, 0.0, 0.0]] * 2), SPEC, 3.0, 3.0)
        npt.assert_allclose(two, 2.0 * one)

    def test_hard_cutoff(self):
        s = _samples([0.0, 0.0, 0.0])
        grid = rasterize_density(s, SPEC, 1.0, 10.0)
        # 0.5 world units = 1 sigma is kept, 0.75 = 1.5 sigma is not.
        assert grid[SPEC.index(8, 6, 6)] > 0.0
        assert grid[SPEC.index(9, 6, 6)] == 0.0

    def test_max_m2_plateau(self):
        s = _samples([0.0, 0.0, 0.0])
        grid = rasterize_density(s, SPEC, 3.0, 1.0)
        plateau = s.alpha[0] * np.exp(-0.5)
        # m2 = 4 and m2 = 9 both clamp to 1
        assert grid[SPEC.index(10, 6, 6)] == pytest.approx(plateau)
        assert grid[SPEC.index(12, 6, 6)] == pytest.approx(plateau)

    def test_support_grows_with_n_sigma(self):
        s = _cluster()
        previous = None
        for n_sigma in (0.5, 1.0, 2.0, 3.0, 4.0):
            support = rasterize_density(s, SPEC, n_sigma, 10.0) > 0.0
            if previous is not None:
                assert np.all(support[previous])
                assert support.sum() >= previous.sum()
            previous = support

    def test_splat_outside_lattice_contributes_nothing(self):
        grid = rasterize_density(_samples([50.0, 0.0, 0.0]), SPEC, 3.0, 3.0)
        npt.assert_array_equal(grid, 0.0)


class TestDensityColor:
    def test_weight_matches_density(self):
        s = _samples([0.0, 0.0, 0.0], colors=[[0.2, 0.4, 0.6]])
        colors = ColorGrid.zeros(SPEC.size)
        grid = rasterize_density(s, SPEC, 3.0, 3.0, colors)
        npt.assert_allclose(colors.weight, grid)
        hit = colors.weight > 0.0
        npt.assert_allclose(colors.sum[hit] / colors.weight[hit, None],
                            np.tile([0.2, 0.4, 0.6], (hit.sum(), 1)))

    def test_blur_color_grid_keeps_ratio(self):
        s = _samples([0.0, 0.0, 0.0], colors=[[0.2, 0.4, 0.6]])
        colors = ColorGrid.zeros(SPEC.size)
        rasterize_density(s, SPEC, 3.0, 3.0, colors)
        blur_color_grid(colors, SPEC, 2)
        hit = colors.weight > 1e-9
        npt.assert_allclose(colors.sum[hit] / colors.weight[hit, None],
                            np.tile([0.2, 0.4, 0.6], (hit.sum(), 1)))


# ---------------------------------------------------------------------------
# Smooth-min ellipsoids
# ---------------------------------------------------------------------------

class TestRasterizeSmoothmin:
    def test_hard_min_shell_distance(self):
        s = _samples([0.0, 0.0, 0.0])
        grid = rasterize_smoothmin(s, SPEC, 3.0, 10.0, 0.0, 1.0)
        assert grid[CENTRE] == pytest.approx(-1.0)
        assert grid[SPEC.index(7, 6, 6)] == pytest.approx(-0.5)
        assert grid[SPEC.index(8, 6, 6)] == pytest.approx(0.0, abs=1e-12)
        assert grid[SPEC.index(9, 6, 6)] == pytest.approx(0.5)

    def test_hard_min_unreached_is_inf(self):
        s = _samples([0.0, 0.0, 0.0])
        grid = rasterize_smoothmin(s, SPEC, 1.0, 10.0, 0.0, 1.0)
        assert np.isinf(grid[SPEC.index(0, 0, 0)])
        assert np.isfinite(grid[CENTRE])

    def test_hard_min_takes_minimum(self):
        s = _samples([[-0.5, 0.0, 0.0], [0.5, 0.0, 0.0]])
        grid = rasterize_smoothmin(s, SPEC, 3.0, 10.0, 0.0, 1.0)
        # Each centre sees its own splat at d = -1.
        assert grid[SPEC.index(4, 6, 6)] == pytest.approx(-1.0)
        assert grid[SPEC.index(8, 6, 6)] == pytest.approx(-1.0)
        assert grid[CENTRE] == pytest.approx(0.0, abs=1e-12)

    def test_smooth_single_splat(self):
        s = _samples([0.0, 0.0, 0.0], logit=0.0)
        k = 0.1
        grid = rasterize_smoothmin(s, SPEC, 3.0, 10.0, k, 1.0)
        # -k ln(alpha exp(-d / k)) = d - k ln(alpha)
        assert grid[CENTRE] == pytest.approx(-1.0 - k * np.log(0.5))

    def test_smooth_blend_below_min(self):
        k = 0.1
        one = rasterize_smoothmin(_samples([0.0, 0.0, 0.0]), SPEC, 3.0, 10.0, k, 1.0)
        two = rasterize_smoothmin(_samples([[0.0, 0.0, 0.0]] * 2), SPEC, 3.0, 10.0, k, 1.0)
        reached = np.isfinite(one)
        npt.assert_allclose(two[reached], one[reached] - k * np.log(2.0))

    def test_smooth_unreached_is_inf(self):
        grid = rasterize_smoothmin(_samples([0.0, 0.0, 0.0]), SPEC, 1.0, 10.0, 0.1, 1.0)
        assert np.isinf(grid[SPEC.index(0, 0, 0)])

    def test_smooth_exponent_clamped(self):
        # -d / k would be 1e5 at the centre without the clamp.
        grid = rasterize_smoothmin(_samples([0.0, 0.0, 0.0]), SPEC, 3.0, 10.0, 1e-5, 1.0)
        assert np.all(np.isfinite(grid) | np.isposinf(grid))
        assert not np.any(np.isnan(grid))

    def test_color_uses_density_weight(self):
        s = _samples([0.0, 0.0, 0.0], colors=[[0.9, 0.1, 0.0]])
        c_min = ColorGrid.zeros(SPEC.size)
        c_den = ColorGrid.zeros(SPEC.size)
        rasterize_smoothmin(s, SPEC, 3.0, 3.0, 0.1, 1.0, c_min)
        rasterize_density(s, SPEC, 3.0, 3.0, c_den)
        npt.assert_allclose(c_min.weight, c_den.weight)
        npt.assert_allclose(c_min.sum, c_den.sum)


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------

class TestWorkers:
    @pytest.mark.parametrize("workers", [2, 3, 64])
    def test_density_matches_serial(self, workers):
        s = _cluster()
        c1, cn = ColorGrid.zeros(SPEC.size), ColorGrid.zeros(SPEC.size)
        serial = rasterize_density(s, SPEC, 3.0, 3.0, c1, workers=1)
        threaded = rasterize_density(s, SPEC, 3.0, 3.0, cn, workers=workers)
        npt.assert_allclose(threaded, serial, rtol=1e-12, atol=1e-14)
        npt.assert_allclose(cn.sum, c1.sum, rtol=1e-12, atol=1e-14)
        npt.assert_allclose(cn.weight, c1.weight, rtol=1e-12, atol=1e-14)

    @pytest.mark.parametrize("k", [0.0, 0.05])
    def test_smoothmin_matches_serial(self, k):
        s = _cluster()
        serial = rasterize_smoothmin(s, SPEC, 3.0, 3.0, k, 1.0, workers=1)
        threaded = rasterize_smoothmin(s, SPEC, 3.0, 3.0, k, 1.0, workers=4)
        npt.assert_array_equal(np.isinf(threaded), np.isinf(serial))
        finite = np.isfinite(serial)
        npt.assert_allclose(threaded[finite], serial[finite], rtol=1e-10, atol=1e-12)
