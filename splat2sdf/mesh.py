"""Iso-surface extraction and per-vertex color resampling.

Marching cubes is delegated to :func:`skimage.measure.marching_cubes`, which
is always handed a field where *inside is less than the iso level*.  Density
fields (inside is greater) are negated together with their iso level first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from skimage import measure

from ._math import _F, _trilinear_corners
from .grid import GridSpec
from .rasterize import ColorGrid

logger = logging.getLogger(__name__)

_MIN_COLOR_WEIGHT = 1e-6


@dataclass
class Mesh:
    """Triangle mesh with an optional per-point color attribute.

    Attributes
    ----------
    positions:
        ``(V, 3)`` world-space vertex positions.
    indices:
        Flat ``(3 * F,)`` triangle vertex indices.
    colors:
        ``(V, 3)`` RGB point attribute (``Cd``) or ``None``.
    """

    positions: _F = field(default_factory=lambda: np.zeros((0, 3)))
    indices: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.uint32))
    colors: Optional[_F] = None

    @property
    def triangles(self) -> np.ndarray:
        """Indices as ``(F, 3)``."""
        return self.indices.reshape(-1, 3)

    def is_empty(self) -> bool:
        return len(self.positions) == 0 and len(self.indices) == 0


def marching_cubes(
    values: _F,
    spec: GridSpec,
    iso: float,
    inside_is_greater: bool,
) -> Mesh:
    """Extract the *iso* surface of a flat lattice grid.

    Parameters
    ----------
    values:
        Flat ``(nx * ny * nz,)`` grid, x fastest.  Must be finite (see
        :func:`splat2sdf.grid.sanitize_grid`).
    spec:
        Lattice the values live on.
    iso:
        Surface level.
    inside_is_greater:
        ``True`` for density fields, ``False`` for signed distances.

    Returns
    -------
    Mesh
        World-space mesh without normals.  Empty when the grid has fewer than
        two points along any axis or the field never crosses *iso*.
    """
    if spec.nx < 2 or spec.ny < 2 or spec.nz < 2 or len(values) == 0:
        return Mesh()

    volume = np.asarray(values, dtype=np.float64).reshape(spec.shape)
    level = float(iso)
    if inside_is_greater:
        volume = -volume
        level = -level

    vmin, vmax = float(volume.min()), float(volume.max())
    if not vmin < level < vmax:
        logger.debug("No iso crossing at %.6g (range [%.6g, %.6g])", level, vmin, vmax)
        return Mesh()

    # skimage indexes the first array axis as the first vertex coordinate.
    verts, faces, _, _ = measure.marching_cubes(
        np.ascontiguousarray(volume.transpose(2, 1, 0)),
        level=level,
        spacing=(spec.dx, spec.dx, spec.dx),
        gradient_direction="ascent",
    )
    positions = verts.astype(np.float64) + np.asarray(spec.min_corner)
    logger.debug("Marching cubes: %d vertices, %d triangles", len(positions), len(faces))
    return Mesh(positions, faces.astype(np.uint32).reshape(-1))


def sample_color_grid(color_grid: ColorGrid, spec: GridSpec, positions: _F) -> _F:
    """Trilinearly resample normalised colors at world *positions*.

    Positions outside the lattice are clamped onto it.  Where the
    interpolated weight is at most ``1e-6`` the color is white.
    """
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    top = np.array(spec.dims, dtype=np.float64) - 1.0
    g = np.clip((positions - np.asarray(spec.min_corner)) / spec.dx, 0.0, top)

    total = np.zeros((len(g), 3))
    weight = np.zeros(len(g))
    for idx, w in _trilinear_corners(g, spec.dims):
        total += color_grid.sum[idx] * w[:, None]
        weight += color_grid.weight[idx] * w

    colors = np.ones((len(g), 3))
    ok = weight > _MIN_COLOR_WEIGHT
    colors[ok] = total[ok] / weight[ok, None]
    return colors
