"""Dense lattice description, sanitizing and smoothing for splat grids.

A grid is stored as a flat array of ``nx * ny * nz`` lattice values, x
fastest, then y, then z.  ``values.reshape(spec.shape)`` gives the z-first
``(nz, ny, nx)`` view used for all block operations.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from ._math import _F, _box3_xyz
from .samples import SplatSamples

logger = logging.getLogger(__name__)

MAX_GRID_POINTS = 32_000_000
"""Default hard cap on ``nx * ny * nz``."""

_MIN_DX = 1e-4
_CELL_EPS = 1e-9


class GridTooLargeError(ValueError):
    """The requested grid exceeds the lattice point cap."""


# ===========================================================================
# Grid spec
# ===========================================================================

@dataclass(frozen=True)
class GridSpec:
    """Uniform lattice: ``nx * ny * nz`` points spaced *dx* from *min_corner*."""

    min_corner: Tuple[float, float, float]
    dx: float
    nx: int
    ny: int
    nz: int

    @classmethod
    def empty(cls) -> GridSpec:
        return cls((0.0, 0.0, 0.0), 1.0, 0, 0, 0)

    @property
    def dims(self) -> Tuple[int, int, int]:
        """``(nx, ny, nz)`` lattice point counts."""
        return (self.nx, self.ny, self.nz)

    @property
    def shape(self) -> Tuple[int, int, int]:
        """``(nz, ny, nx)``, the z-first array shape of the grid."""
        return (self.nz, self.ny, self.nx)

    @property
    def size(self) -> int:
        return self.nx * self.ny * self.nz

    def index(self, ix: int, iy: int, iz: int) -> int:
        """Flat index of lattice point ``(ix, iy, iz)``."""
        return ix + self.nx * (iy + self.ny * iz)

    def axis_coords(self, axis: int, lo: int = 0, hi: int | None = None) -> _F:
        """World coordinates of lattice indices ``lo..hi`` (inclusive) on *axis*."""
        n = self.dims[axis]
        hi = n - 1 if hi is None else hi
        return self.min_corner[axis] + np.arange(lo, hi + 1, dtype=np.float64) * self.dx

    def world_points(self) -> _F:
        """All lattice positions as a ``(nz, ny, nx, 3)`` array."""
        Z, Y, X = np.meshgrid(
            self.axis_coords(2), self.axis_coords(1), self.axis_coords(0), indexing="ij"
        )
        return np.stack([X, Y, Z], axis=-1)

    def index_range(self, lo: _F, hi: _F) -> Tuple[Tuple[int, int], ...]:
        """Inclusive, clamped ``(i0, i1)`` per axis covering world box ``[lo, hi]``."""
        origin = np.asarray(self.min_corner)
        i0 = np.floor((np.asarray(lo) - origin) / self.dx)
        i1 = np.ceil((np.asarray(hi) - origin) / self.dx)
        top = np.array(self.dims) - 1
        i0 = np.clip(i0, 0, top).astype(int)
        i1 = np.clip(i1, 0, top).astype(int)
        return tuple((int(a), int(b)) for a, b in zip(i0, i1))


def build_grid_spec(
    samples: SplatSamples,
    voxel_size: float,
    bounds_padding: float,
    max_voxel_dim: int,
    max_points: int = MAX_GRID_POINTS,
) -> GridSpec:
    """Lattice covering every sample centre plus ``bounds_padding`` sigmas.

    Parameters
    ----------
    samples:
        Non-empty sample set.
    voxel_size:
        Requested spacing.  It is only a hint: *dx* is raised until no axis
        needs more than *max_voxel_dim* cells.
    bounds_padding:
        Padding on every side, in units of the largest ``max_sigma``.
    max_voxel_dim:
        Cap on cells along the longest axis.
    max_points:
        Cap on ``nx * ny * nz``.

    Raises
    ------
    GridTooLargeError
        If the lattice would exceed *max_points*.  The grid is never
        truncated.
    """
    if len(samples) == 0:
        raise ValueError("build_grid_spec needs at least one sample")

    lo = samples.mu.min(axis=0)
    hi = samples.mu.max(axis=0)
    pad = bounds_padding * float(samples.max_sigma.max())
    lo = lo - pad
    hi = hi + pad

    extent = hi - lo
    max_dim = float(max(int(max_voxel_dim), 1))
    dx = float(voxel_size)
    for e in extent:
        if e > 0.0:
            dx = max(dx, float(e) / max_dim)
    dx = max(dx, _MIN_DX)

    # Cells per axis; the tolerance keeps 3.0 / 0.1 at 30 cells, not 31.
    nx, ny, nz = (max(int(math.ceil(float(e) / dx - _CELL_EPS)), 1) + 1 for e in extent)
    total = nx * ny * nz
    if total > max_points:
        raise GridTooLargeError(
            f"Splat grid too large ({total} points for {nx}x{ny}x{nz}, "
            f"limit {max_points}). Increase voxel_size or lower voxel_size_max."
        )

    logger.debug("Grid spec %dx%dx%d, dx=%.6g, min=%s", nx, ny, nz, dx, lo)
    return GridSpec(tuple(float(v) for v in lo), dx, nx, ny, nz)


# ===========================================================================
# Sanitize
# ===========================================================================

def sanitize_grid(values: _F, iso: float, inside_is_greater: bool) -> None:
    """Replace non-finite entries of *values* in place with an outside value.

    The replacement is ``iso - 1`` when inside means greater than *iso*, and
    ``iso + 1`` otherwise.
    """
    outside = iso - 1.0 if inside_is_greater else iso + 1.0
    bad = ~np.isfinite(values)
    if bad.any():
        values[bad] = outside


# ===========================================================================
# Blur
# ===========================================================================

def blur_grid_raw(values: _F, spec: GridSpec, iterations: int) -> None:
    """Apply *iterations* separable 3-tap box passes to *values* in place.

    Trailing dimensions beyond the lattice (e.g. RGB channels of a
    ``(N, 3)`` array) are filtered independently.
    """
    if iterations <= 0 or values.size == 0:
        return
    block = values.reshape(spec.shape + values.shape[1:])
    for _ in range(iterations):
        block = _box3_xyz(block)
    values[...] = block.reshape(values.shape)


def _finite_max(values: _F) -> float:
    finite = values[np.isfinite(values)]
    if finite.size == 0:
        return 0.0
    return max(float(finite.max()), 0.0)


def blur_grid(values: _F, spec: GridSpec, iterations: int) -> None:
    """Blur *values* in place, then rescale to restore the pre-blur maximum.

    The finite maximum is unchanged by the call whenever it is positive.
    """
    if iterations <= 0 or values.size == 0:
        return
    max_before = _finite_max(values)
    blur_grid_raw(values, spec, iterations)
    if max_before > 0.0:
        max_after = _finite_max(values)
        if max_after > 0.0:
            values *= max_before / max_after
