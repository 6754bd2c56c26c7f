"""Splat cloud → mesh or signed-distance volume.

:func:`convert` is the single entry point used by a graph engine: it picks
the algorithm and output mode from a :class:`SplatToMeshConfig`, builds the
grid and returns a :class:`~splat2sdf.mesh.Mesh` or a
:class:`~splat2sdf.volume.Volume`.

Pipeline::

    build_samples -> build_grid_spec -> rasterize_* (+ ColorGrid)
        -> sanitize_grid / blur_grid
        -> marching_cubes -> sample_color_grid      (mesh output)
        -> Volume(kind=SDF)                          (volume output)
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import numbers
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

import numpy as np

from .grid import MAX_GRID_POINTS, blur_grid, build_grid_spec, sanitize_grid
from .mesh import Mesh, marching_cubes, sample_color_grid
from .rasterize import (
    ColorGrid,
    SplatGrid,
    blur_color_grid,
    rasterize_density,
    rasterize_smoothmin,
)
from .samples import SplatCloud, build_samples
from .volume import Volume, VolumeKind, volume_to_mesh

logger = logging.getLogger(__name__)


class Algorithm(enum.Enum):
    DENSITY = 0
    ELLIPSOID = 1


class OutputMode(enum.Enum):
    MESH = 0
    SDF_VOLUME = 1


_ALGORITHM_NAMES = {
    "density": Algorithm.DENSITY,
    "iso": Algorithm.DENSITY,
    "ellipsoid": Algorithm.ELLIPSOID,
    "smooth_min": Algorithm.ELLIPSOID,
    "smoothmin": Algorithm.ELLIPSOID,
}

_OUTPUT_NAMES = {
    "mesh": OutputMode.MESH,
    "sdf": OutputMode.SDF_VOLUME,
    "sdf_volume": OutputMode.SDF_VOLUME,
    "volume": OutputMode.SDF_VOLUME,
    "signed_distance_volume": OutputMode.SDF_VOLUME,
}


def _parse_enum(value: Any, enum_cls, names: Mapping[str, Any], option: str):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid value for {option!r}: {value!r}")
    if isinstance(value, numbers.Integral):
        # Out-of-range integers clamp to the first or last member.
        members = list(enum_cls)
        return members[min(max(int(value), 0), len(members) - 1)]
    if isinstance(value, str):
        key = value.strip().lower().replace("-", "_").replace(" ", "_")
        if key in names:
            return names[key]
    raise ValueError(
        f"Invalid value for {option!r}: {value!r} (expected one of {sorted(names)})"
    )


_TRUE_NAMES = frozenset({"true", "1", "yes", "on"})
_FALSE_NAMES = frozenset({"false", "0", "no", "off"})


def _parse_bool(value: Any, option: str) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, numbers.Integral) and int(value) in (0, 1):
        return bool(value)
    if isinstance(value, str):
        key = value.strip().lower()
        if key in _TRUE_NAMES:
            return True
        if key in _FALSE_NAMES:
            return False
    raise ValueError(
        f"Invalid value for {option!r}: {value!r} (expected true/false, yes/no, on/off or 1/0)"
    )


# ===========================================================================
# Configuration
# ===========================================================================

@dataclass(frozen=True)
class SplatToMeshConfig:
    """Options of a splat conversion.

    Attributes
    ----------
    output:
        Mesh or signed-distance volume.
    algorithm:
        Density accumulation or smooth-min ellipsoids.  Volume output always
        uses :attr:`Algorithm.ELLIPSOID`.
    voxel_size:
        Requested lattice spacing (a hint; see ``voxel_size_max``).
    voxel_size_max:
        Maximum cell count along the longest grid axis.
    n_sigma:
        Gaussian support radius in standard deviations.
    density_iso:
        Extraction level of the density field.
    surface_iso:
        Extraction level of the ellipsoid field.
    bounds_padding:
        Grid padding around the splat centres, in units of the largest sigma.
    transfer_color:
        Resample splat colors onto mesh vertices (mesh output only).
    max_m2:
        Clamp on the squared Mahalanobis distance inside the exponentials.
    smooth_k:
        Smooth-min sharpness; ``0`` takes the hard minimum.
    shell_radius:
        Ellipsoid shell radius in standard deviations.
    blur_iters:
        Box-blur passes over the density grid (mesh + density only).
    max_grid_points:
        Hard cap on ``nx * ny * nz``.
    workers:
        Rasterization threads.
    """

    output: OutputMode = OutputMode.MESH
    algorithm: Algorithm = Algorithm.DENSITY
    voxel_size: float = 0.1
    voxel_size_max: int = 256
    n_sigma: float = 3.0
    density_iso: float = 0.5
    surface_iso: float = 0.0
    bounds_padding: float = 3.0
    transfer_color: bool = True
    max_m2: float = 3.0
    smooth_k: float = 0.1
    shell_radius: float = 1.0
    blur_iters: int = 1
    max_grid_points: int = MAX_GRID_POINTS
    workers: int = 1

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> SplatToMeshConfig:
        """Build a config from a loose option mapping.

        ``algorithm`` and ``output`` accept enum members, integers or names
        (``"density"``, ``"ellipsoid"``, ``"smooth_min"``, ``"mesh"``,
        ``"sdf"``, ``"signed-distance-volume"``).
        ``transfer_color`` accepts booleans, 0/1 and the case-insensitive
        strings true/false, yes/no and on/off.

        Raises
        ------
        ValueError
            On unknown option names, unrecognised enum values or a
            ``transfer_color`` that is not a recognisable boolean.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(params) - known)
        if unknown:
            raise ValueError(f"Unknown splat conversion option(s): {', '.join(unknown)}")

        values = dict(params)
        if "algorithm" in values:
            values["algorithm"] = _parse_enum(
                values["algorithm"], Algorithm, _ALGORITHM_NAMES, "algorithm"
            )
        if "output" in values:
            values["output"] = _parse_enum(values["output"], OutputMode, _OUTPUT_NAMES, "output")
        for name in ("voxel_size_max", "blur_iters", "max_grid_points", "workers"):
            if name in values:
                values[name] = int(values[name])
        for name in ("voxel_size", "n_sigma", "density_iso", "surface_iso",
                     "bounds_padding", "max_m2", "smooth_k", "shell_radius"):
            if name in values:
                values[name] = float(values[name])
        if "transfer_color" in values:
            values["transfer_color"] = _parse_bool(values["transfer_color"], "transfer_color")
        return cls(**values)

    def normalized(self) -> SplatToMeshConfig:
        """Copy with every numeric option clamped into its usable range."""
        return dataclasses.replace(
            self,
            voxel_size=max(self.voxel_size, 1e-4),
            voxel_size_max=max(self.voxel_size_max, 1),
            n_sigma=max(self.n_sigma, 0.1),
            bounds_padding=max(self.bounds_padding, 0.0),
            max_m2=min(max(self.max_m2, 0.0), 10.0),
            smooth_k=max(self.smooth_k, 0.0),
            shell_radius=max(self.shell_radius, 0.01),
            blur_iters=max(self.blur_iters, 0),
            workers=max(self.workers, 1),
        )


# ===========================================================================
# Orchestration
# ===========================================================================

def build_splat_grid(
    splats: SplatCloud,
    config: SplatToMeshConfig,
    output: OutputMode,
) -> SplatGrid:
    """Rasterize *splats* into a sanitized (and possibly blurred) grid.

    Raises
    ------
    GridTooLargeError
        If the lattice would exceed ``config.max_grid_points``.
    """
    cfg = config.normalized()
    algorithm = Algorithm.ELLIPSOID if output is OutputMode.SDF_VOLUME else cfg.algorithm
    inside_is_greater = algorithm is Algorithm.DENSITY
    iso = cfg.density_iso if inside_is_greater else cfg.surface_iso

    samples = build_samples(splats)
    if len(samples) == 0:
        return SplatGrid.empty(iso, inside_is_greater)

    spec = build_grid_spec(
        samples, cfg.voxel_size, cfg.bounds_padding, cfg.voxel_size_max, cfg.max_grid_points
    )
    want_color = output is OutputMode.MESH and cfg.transfer_color
    color_grid = ColorGrid.zeros(spec.size) if want_color else None

    if algorithm is Algorithm.DENSITY:
        values = rasterize_density(
            samples, spec, cfg.n_sigma, cfg.max_m2, color_grid, cfg.workers
        )
    else:
        values = rasterize_smoothmin(
            samples, spec, cfg.n_sigma, cfg.max_m2, cfg.smooth_k, cfg.shell_radius,
            color_grid, cfg.workers,
        )

    sanitize_grid(values, iso, inside_is_greater)
    if output is OutputMode.MESH and algorithm is Algorithm.DENSITY and cfg.blur_iters > 0:
        blur_grid(values, spec, cfg.blur_iters)
        if color_grid is not None:
            blur_color_grid(color_grid, spec, cfg.blur_iters)

    return SplatGrid(values, spec, iso, inside_is_greater, color_grid)


def splats_to_mesh(splats: SplatCloud, config: Optional[SplatToMeshConfig] = None) -> Mesh:
    """Extract a mesh, with a ``Cd`` color attribute when colors are transferred."""
    config = config or SplatToMeshConfig()
    grid = build_splat_grid(splats, config, OutputMode.MESH)
    mesh = marching_cubes(grid.values, grid.spec, grid.iso, grid.inside_is_greater)
    if grid.color_grid is not None and len(mesh.positions):
        mesh.colors = sample_color_grid(grid.color_grid, grid.spec, mesh.positions)
    logger.info(
        "Splat mesh: %d splats -> %d vertices, %d triangles",
        len(splats), len(mesh.positions), len(mesh.triangles),
    )
    return mesh


def splats_to_sdf(splats: SplatCloud, config: Optional[SplatToMeshConfig] = None) -> Volume:
    """Rasterize a signed-distance volume with the ellipsoid algorithm."""
    config = config or SplatToMeshConfig()
    grid = build_splat_grid(splats, config, OutputMode.SDF_VOLUME)
    spec = grid.spec
    volume = Volume(
        kind=VolumeKind.SDF,
        origin=spec.min_corner,
        dims=spec.dims,
        voxel_size=spec.dx,
        values=grid.values,
    )
    logger.info("Splat SDF: %d splats -> %dx%dx%d volume", len(splats), *spec.dims)
    return volume


def convert(
    splats: SplatCloud,
    config: Optional[SplatToMeshConfig] = None,
    sdf: Optional[Volume] = None,
) -> Union[Mesh, Volume]:
    """Convert *splats* according to ``config.output``.

    Parameters
    ----------
    splats:
        Input splat cloud.
    config:
        Conversion options; defaults when omitted.
    sdf:
        Optional precomputed signed-distance volume used instead of the
        splats: returned as-is for volume output, or meshed at
        ``surface_iso`` for mesh output.

    Raises
    ------
    GridTooLargeError
        If the grid would exceed the point cap.
    ValueError
        If *sdf* is not a signed-distance volume.
    """
    config = config or SplatToMeshConfig()
    if sdf is not None and sdf.kind is not VolumeKind.SDF:
        raise ValueError(f"SDF input must be a signed-distance volume, got {sdf.kind.value}")

    if config.output is OutputMode.SDF_VOLUME:
        return sdf.copy() if sdf is not None else splats_to_sdf(splats, config)
    if sdf is not None:
        return volume_to_mesh(sdf, config.surface_iso, False)
    return splats_to_mesh(splats, config)
