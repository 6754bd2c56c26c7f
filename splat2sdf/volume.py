"""Dense volumes: the signed-distance output value and SDF inputs.

A :class:`Volume` is a lattice of scalars with an origin, a uniform voxel
size and an optional 4x4 transform placing it in world space.
"""

from __future__ import annotations

import copy
import enum
import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

from ._math import _F, _trilinear_corners
from .grid import GridSpec, sanitize_grid
from .mesh import Mesh, marching_cubes
from .rasterize import SplatGrid

logger = logging.getLogger(__name__)

_MIN_VOXEL = 1e-6
_SDF_OUTSIDE = 1.0e6
_LATTICE_EPS = 1e-9


class VolumeKind(enum.Enum):
    DENSITY = "density"
    SDF = "sdf"


@dataclass
class Volume:
    """Scalar lattice volume.

    Attributes
    ----------
    kind:
        Density or signed distance.
    origin:
        World position of lattice point ``(0, 0, 0)`` before *transform*.
    dims:
        ``(nx, ny, nz)`` lattice point counts.
    voxel_size:
        Lattice spacing.
    values:
        Flat ``(nx * ny * nz,)`` array, x fastest.
    transform:
        ``(4, 4)`` volume-to-world matrix.
    density_scale:
        Multiplier applied by density consumers.
    sdf_band:
        Half-width of the narrow band downstream SDF consumers trust.
    """

    kind: VolumeKind
    origin: Tuple[float, float, float]
    dims: Tuple[int, int, int]
    voxel_size: float
    values: _F
    transform: _F = field(default_factory=lambda: np.eye(4))
    density_scale: float = 1.0
    sdf_band: Optional[float] = None

    def __post_init__(self) -> None:
        self.values = np.asarray(self.values, dtype=np.float64).reshape(-1)
        self.transform = np.asarray(self.transform, dtype=np.float64).reshape(4, 4)
        if self.sdf_band is None:
            self.sdf_band = max(float(self.voxel_size), _MIN_VOXEL) * 2.0

    def __len__(self) -> int:
        return len(self.values)

    def is_empty(self) -> bool:
        return len(self.values) == 0

    @property
    def grid_spec(self) -> GridSpec:
        """The volume's own lattice, ignoring :attr:`transform`."""
        nx, ny, nz = (int(n) for n in self.dims)
        return GridSpec(
            tuple(float(v) for v in self.origin),
            max(float(self.voxel_size), _MIN_VOXEL),
            nx, ny, nz,
        )

    def has_identity_transform(self) -> bool:
        return bool(np.array_equal(self.transform, np.eye(4)))

    def copy(self) -> Volume:
        return copy.deepcopy(self)


# ===========================================================================
# Sampling
# ===========================================================================

def _safe_inverse(mat: _F) -> _F:
    try:
        inv = np.linalg.inv(mat)
    except np.linalg.LinAlgError:
        return np.eye(4)
    if not np.all(np.isfinite(inv)):
        return np.eye(4)
    return inv


class VolumeSampler:
    """Trilinear world-space lookups into a :class:`Volume`.

    Points outside the lattice read as ``1e6`` for SDF volumes (far outside)
    and ``0`` for density volumes.
    """

    def __init__(self, volume: Volume) -> None:
        self.volume = volume
        self.world_to_volume = _safe_inverse(volume.transform)
        self.outside = _SDF_OUTSIDE if volume.kind is VolumeKind.SDF else 0.0

    def sample_world(self, points: _F) -> _F:
        """Sample at ``(..., 3)`` world *points*; returns shape ``(...)``."""
        points = np.asarray(points, dtype=np.float64)
        shape = points.shape[:-1]
        p = points.reshape(-1, 3)
        local = p @ self.world_to_volume[:3, :3].T + self.world_to_volume[:3, 3]

        spec = self.volume.grid_spec
        out = np.full(len(p), self.outside)
        if min(spec.dims) <= 0 or len(p) == 0:
            return out.reshape(shape)

        g = (local - np.asarray(spec.min_corner)) / spec.dx
        top = np.array(spec.dims, dtype=np.float64) - 1.0
        inside = np.all((g >= -_LATTICE_EPS) & (g <= top + _LATTICE_EPS), axis=1)
        if inside.any():
            acc = np.zeros(int(inside.sum()))
            gi = np.clip(g[inside], 0.0, top)
            for idx, w in _trilinear_corners(gi, spec.dims):
                acc += self.volume.values[idx] * w
            out[inside] = acc
        return out.reshape(shape)


# ===========================================================================
# Conversions
# ===========================================================================

def volume_to_mesh(volume: Volume, iso: float, inside_is_greater: bool) -> Mesh:
    """Extract the *iso* surface of *volume* in world space."""
    spec = volume.grid_spec
    if spec.nx < 2 or spec.ny < 2 or spec.nz < 2:
        return Mesh()
    values = volume.values.copy()
    sanitize_grid(values, iso, inside_is_greater)
    mesh = marching_cubes(values, spec, iso, inside_is_greater)
    if not mesh.is_empty() and not volume.has_identity_transform():
        t = volume.transform
        mesh.positions = mesh.positions @ t[:3, :3].T + t[:3, 3]
    return mesh


def _matches_spec(volume: Volume, spec: GridSpec) -> bool:
    return (
        tuple(int(n) for n in volume.dims) == spec.dims
        and abs(float(volume.voxel_size) - spec.dx) < 1e-6
        and float(np.linalg.norm(np.subtract(volume.origin, spec.min_corner))) < 1e-4
    )


def sdf_grid_from_volume(volume: Volume, target_spec: Optional[GridSpec] = None) -> SplatGrid:
    """Wrap an SDF *volume* as a :class:`SplatGrid` (iso 0, inside is less).

    Values are copied when the volume already lies on the lattice with an
    identity transform; otherwise they are resampled onto *target_spec* (or
    the volume's own lattice) through :class:`VolumeSampler`.

    Raises
    ------
    ValueError
        If *volume* is not a signed-distance volume.
    """
    if volume.kind is not VolumeKind.SDF:
        raise ValueError(f"Expected an SDF volume, got {volume.kind.value}")

    spec = target_spec if target_spec is not None else volume.grid_spec
    if spec.size == 0:
        return SplatGrid(np.zeros(0), spec, 0.0, False)

    if _matches_spec(volume, spec) and volume.has_identity_transform():
        values = volume.values.copy()
    else:
        logger.warning(
            "Resampling SDF volume %s onto %dx%dx%d lattice", volume.dims, *spec.dims
        )
        values = VolumeSampler(volume).sample_world(spec.world_points()).reshape(-1)
    return SplatGrid(values, spec, 0.0, False)
