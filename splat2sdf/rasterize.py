"""Splat rasterizers: additive Gaussian density and smooth-min ellipsoids.

Both rasterizers visit, for every splat, only the lattice block inside the
axis-aligned box of radius ``n_sigma * max_sigma`` around its centre, and
evaluate that block in one vectorised pass.

Algorithms
----------
Density
    ``alpha * exp(-0.5 * m2)`` summed over splats, where ``m2`` is the squared
    Mahalanobis distance clamped to ``max_m2``.  Cells with
    ``m2 > n_sigma**2`` receive nothing from that splat.
Smooth-min ellipsoid
    Per-splat shell distance ``d = sqrt(m2) - shell_radius``.  For
    ``smooth_k > 0`` the splats are blended with the exponential smooth
    minimum ``-k * ln(sum(alpha * exp(-d / k)))``; cells no splat reaches are
    ``+inf``.  For ``smooth_k == 0`` the plain per-cell minimum of ``d``.

Parallelism
-----------
With ``workers > 1`` the samples are split into contiguous chunks and each
chunk is rasterized by a thread into its own partial grid.  Partials are
merged by summation (or minimum for the hard-min variant), so no two threads
ever write the same array.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from ._math import _F
from .grid import GridSpec, blur_grid_raw
from .samples import SplatSamples

logger = logging.getLogger(__name__)

_SMOOTH_EXP_CLAMP = 50.0

_Block = Tuple[slice, slice, slice]


# ===========================================================================
# Color grid
# ===========================================================================

@dataclass
class ColorGrid:
    """Weighted RGB sums and weights, parallel to a scalar grid.

    Never stored normalised; divide ``sum`` by ``weight`` when sampling.
    """

    sum: _F
    weight: _F

    @classmethod
    def zeros(cls, size: int) -> ColorGrid:
        return cls(np.zeros((size, 3), dtype=np.float64), np.zeros(size, dtype=np.float64))

    def __len__(self) -> int:
        return len(self.weight)

    def add(self, spec: GridSpec, block: _Block, weight: _F, color: _F) -> None:
        """Accumulate ``weight * color`` and ``weight`` over a lattice *block*."""
        self.sum.reshape(spec.shape + (3,))[block] += weight[..., None] * color
        self.weight.reshape(spec.shape)[block] += weight

    def merge(self, other: ColorGrid) -> None:
        self.sum += other.sum
        self.weight += other.weight


@dataclass
class SplatGrid:
    """A sanitized scalar grid ready for extraction, with its lattice and iso."""

    values: _F
    spec: GridSpec
    iso: float
    inside_is_greater: bool
    color_grid: Optional[ColorGrid] = None

    @classmethod
    def empty(cls, iso: float = 0.0, inside_is_greater: bool = True) -> SplatGrid:
        return cls(np.zeros(0), GridSpec.empty(), iso, inside_is_greater)


def blur_color_grid(color_grid: ColorGrid, spec: GridSpec, iterations: int) -> None:
    """Blur both channels of *color_grid* with the plain scalar filter."""
    if iterations <= 0 or len(color_grid) == 0:
        return
    blur_grid_raw(color_grid.sum, spec, iterations)
    blur_grid_raw(color_grid.weight, spec, iterations)


# ===========================================================================
# Shared support iteration
# ===========================================================================

def _support(
    samples: SplatSamples,
    i: int,
    spec: GridSpec,
    n_sigma: float,
) -> Tuple[_Block, _F]:
    """Lattice block around sample *i* and its ``m2`` values there."""
    r = n_sigma * samples.max_sigma[i]
    mu = samples.mu[i]
    (ix0, ix1), (iy0, iy1), (iz0, iz1) = spec.index_range(mu - r, mu + r)

    Z, Y, X = np.meshgrid(
        spec.axis_coords(2, iz0, iz1),
        spec.axis_coords(1, iy0, iy1),
        spec.axis_coords(0, ix0, ix1),
        indexing="ij",
    )
    m2 = samples.m2(i, np.stack([X, Y, Z], axis=-1))
    block = (slice(iz0, iz1 + 1), slice(iy0, iy1 + 1), slice(ix0, ix1 + 1))
    return block, m2


def _clamped_m2(m2: _F, cutoff_m2: float, max_m2: float) -> Tuple[_F, _F]:
    """Mask of contributing cells and ``m2`` clamped to *max_m2* (0 elsewhere)."""
    keep = np.isfinite(m2) & (m2 <= cutoff_m2)
    return keep, np.where(keep, np.minimum(m2, max_m2), 0.0)


def _in_chunks(
    samples: SplatSamples,
    workers: int,
    fn: Callable[[SplatSamples], Tuple[_F, Optional[ColorGrid]]],
) -> List[Tuple[_F, Optional[ColorGrid]]]:
    if workers <= 1 or len(samples) < 2:
        return [fn(samples)]
    chunks = np.array_split(np.arange(len(samples)), min(workers, len(samples)))
    logger.debug("Rasterizing %d samples in %d chunks", len(samples), len(chunks))
    with ThreadPoolExecutor(max_workers=len(chunks)) as pool:
        return list(pool.map(lambda idx: fn(samples.take(idx)), chunks))


def _merge_colors(target: Optional[ColorGrid], partials) -> None:
    if target is None:
        return
    for _, part in partials:
        target.merge(part)


# ===========================================================================
# Density
# ===========================================================================

def rasterize_density(
    samples: SplatSamples,
    spec: GridSpec,
    n_sigma: float,
    max_m2: float,
    color_grid: Optional[ColorGrid] = None,
    workers: int = 1,
) -> _F:
    """Additive Gaussian density on *spec*'s lattice.

    Parameters
    ----------
    samples:
        Splats to rasterize.
    spec:
        Target lattice.
    n_sigma:
        Support radius in standard deviations; a hard cutoff on ``m2``.
    max_m2:
        Clamp applied to ``m2`` before the exponential.
    color_grid:
        If given, accumulates ``weight * color`` in place.
    workers:
        Number of threads; see the module docstring.

    Returns
    -------
    numpy.ndarray
        Flat ``(nx * ny * nz,)`` density grid.
    """
    cutoff_m2 = n_sigma * n_sigma

    def _run(chunk: SplatSamples) -> Tuple[_F, Optional[ColorGrid]]:
        grid = np.zeros(spec.size, dtype=np.float64)
        colors = ColorGrid.zeros(spec.size) if color_grid is not None else None
        view = grid.reshape(spec.shape)
        for i in range(len(chunk)):
            block, m2 = _support(chunk, i, spec, n_sigma)
            keep, m2 = _clamped_m2(m2, cutoff_m2, max_m2)
            if not keep.any():
                continue
            weight = np.where(keep, chunk.alpha[i] * np.exp(-0.5 * m2), 0.0)
            view[block] += weight
            if colors is not None:
                colors.add(spec, block, weight, chunk.color[i])
        return grid, colors

    partials = _in_chunks(samples, workers, _run)
    _merge_colors(color_grid, partials)
    return np.sum([grid for grid, _ in partials], axis=0)


# ===========================================================================
# Smooth-min ellipsoids
# ===========================================================================

def rasterize_smoothmin(
    samples: SplatSamples,
    spec: GridSpec,
    n_sigma: float,
    max_m2: float,
    smooth_k: float,
    shell_radius: float,
    color_grid: Optional[ColorGrid] = None,
    workers: int = 1,
) -> _F:
    """Signed distance to the blended ellipsoid shells of *samples*.

    Negative inside, positive outside, ``+inf`` where no splat reaches.
    *color_grid* is weighted with the density kernel, as in
    :func:`rasterize_density`.
    """
    cutoff_m2 = n_sigma * n_sigma
    smooth = smooth_k > 0.0

    def _run(chunk: SplatSamples) -> Tuple[_F, Optional[ColorGrid]]:
        grid = np.zeros(spec.size) if smooth else np.full(spec.size, np.inf)
        colors = ColorGrid.zeros(spec.size) if color_grid is not None else None
        view = grid.reshape(spec.shape)
        for i in range(len(chunk)):
            block, m2 = _support(chunk, i, spec, n_sigma)
            keep, m2 = _clamped_m2(m2, cutoff_m2, max_m2)
            if not keep.any():
                continue
            d = np.sqrt(m2) - shell_radius
            alpha = chunk.alpha[i]
            if smooth:
                arg = np.clip(-d / smooth_k, -_SMOOTH_EXP_CLAMP, _SMOOTH_EXP_CLAMP)
                view[block] += np.where(keep, alpha * np.exp(arg), 0.0)
            else:
                view[block] = np.where(keep, np.minimum(view[block], d), view[block])
            if colors is not None:
                weight = np.where(keep, alpha * np.exp(-0.5 * m2), 0.0)
                colors.add(spec, block, weight, chunk.color[i])
        return grid, colors

    partials = _in_chunks(samples, workers, _run)
    _merge_colors(color_grid, partials)
    grids = [grid for grid, _ in partials]
    if not smooth:
        return np.minimum.reduce(grids)

    acc = np.sum(grids, axis=0)
    out = np.full(spec.size, np.inf)
    filled = acc > 0.0
    out[filled] = -smooth_k * np.log(acc[filled])
    return out
