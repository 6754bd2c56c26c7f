"""
splat2sdf — Gaussian splats to meshes and signed distance fields
================================================================

Converts clouds of anisotropic 3-D Gaussian splats (centre, rotation,
per-axis log-scale, opacity logit, DC color) into a triangle mesh or a dense
signed-distance volume sampled on a uniform lattice.

Implemented features
--------------------
- Splat normalisation: :func:`build_samples`
- Grid sizing with a hard point cap: :func:`build_grid_spec`
- Rasterizers: additive density (:func:`rasterize_density`) and smooth-min
  ellipsoids (:func:`rasterize_smoothmin`), optionally multi-threaded
- Sanitizing and peak-preserving box blur: :func:`sanitize_grid`,
  :func:`blur_grid`
- Marching cubes (scikit-image) and color resampling:
  :func:`marching_cubes`, :func:`sample_color_grid`
- SDF volumes: :class:`Volume`, :class:`VolumeSampler`,
  :func:`volume_to_mesh`
- One-call conversion: :func:`convert`

Quick start
-----------
>>> import numpy as np
>>> from splat2sdf import SplatCloud, SplatToMeshConfig, convert
>>> cloud = SplatCloud(
...     positions=np.zeros((1, 3)),
...     rotations=np.array([[1.0, 0.0, 0.0, 0.0]]),
...     scales=np.full((1, 3), np.log(0.5)),
...     opacity=np.array([np.log(0.9 / 0.1)]),
... )
>>> mesh = convert(cloud, SplatToMeshConfig(blur_iters=0))
>>> mesh.triangles.shape[1]
3

Grid size
---------
The lattice never exceeds ``voxel_size_max`` cells along its longest axis
and ``max_grid_points`` points in total.  Exceeding the total raises
:class:`GridTooLargeError` instead of silently coarsening the grid.
"""

from .convert import (
    Algorithm,
    OutputMode,
    SplatToMeshConfig,
    build_splat_grid,
    convert,
    splats_to_mesh,
    splats_to_sdf,
)
from .grid import (
    MAX_GRID_POINTS,
    GridSpec,
    GridTooLargeError,
    blur_grid,
    blur_grid_raw,
    build_grid_spec,
    sanitize_grid,
)
from .mesh import Mesh, marching_cubes, sample_color_grid
from .rasterize import (
    ColorGrid,
    SplatGrid,
    blur_color_grid,
    rasterize_density,
    rasterize_smoothmin,
)
from .samples import SH_C0, SplatCloud, SplatSamples, build_samples
from .volume import Volume, VolumeKind, VolumeSampler, sdf_grid_from_volume, volume_to_mesh

__version__ = "0.1.0"

__all__ = [
    # Inputs
    "SplatCloud",
    "SplatSamples",
    "build_samples",
    "SH_C0",

    # Grid
    "GridSpec",
    "GridTooLargeError",
    "MAX_GRID_POINTS",
    "build_grid_spec",
    "sanitize_grid",
    "blur_grid",
    "blur_grid_raw",

    # Rasterizers
    "ColorGrid",
    "SplatGrid",
    "blur_color_grid",
    "rasterize_density",
    "rasterize_smoothmin",

    # Extraction
    "Mesh",
    "marching_cubes",
    "sample_color_grid",

    # Volumes
    "Volume",
    "VolumeKind",
    "VolumeSampler",
    "volume_to_mesh",
    "sdf_grid_from_volume",

    # Conversion
    "Algorithm",
    "OutputMode",
    "SplatToMeshConfig",
    "build_splat_grid",
    "convert",
    "splats_to_mesh",
    "splats_to_sdf",
]
