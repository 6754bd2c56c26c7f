"""Convert a synthetic splat cloud to a mesh and render it to a PNG.

Builds a ring of colored, randomly oriented splats, runs
:func:`splat2sdf.convert` with the chosen options and draws the result with
matplotlib's 3-D axes, shading each face by its vertex colors.

Usage::

    python scripts/preview_splats.py                         # saves splats_preview.png
    python scripts/preview_splats.py --algorithm ellipsoid
    python scripts/preview_splats.py --voxel-size 0.05 --count 64

Requirements: numpy, scikit-image, matplotlib
    pip install -e .[preview]
"""
from __future__ import annotations

import argparse
import logging
import os
import sys

# Ensure the repo root (parent of scripts/) is importable regardless of cwd
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import matplotlib.pyplot as plt
import numpy as np
from mpl_toolkits.mplot3d.art3d import Poly3DCollection

from splat2sdf import GridTooLargeError, SplatCloud, SplatToMeshConfig, convert


# ---------------------------------------------------------------------------
# Synthetic input
# ---------------------------------------------------------------------------

def _make_ring(count: int, radius: float = 1.0, seed: int = 0) -> SplatCloud:
    rng = np.random.default_rng(seed)
    theta = np.linspace(0.0, 2.0 * np.pi, count, endpoint=False)
    positions = np.column_stack([radius * np.cos(theta), radius * np.sin(theta),
                                 0.1 * rng.standard_normal(count)])
    rotations = rng.standard_normal((count, 4))
    scales = np.log(rng.uniform(0.08, 0.2, size=(count, 3)))
    opacity = np.full(count, 2.0)
    hue = theta / (2.0 * np.pi)
    colors = np.column_stack([hue, 1.0 - hue, np.full(count, 0.6)])
    return SplatCloud(positions, rotations, scales, opacity, colors)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def render_mesh(mesh, out_path: str, title: str = "") -> None:
    fig = plt.figure(figsize=(5, 5), facecolor="#111111")
    ax = fig.add_subplot(111, projection="3d")
    ax.set_facecolor("#111111")
    ax.set_axis_off()

    if mesh.is_empty():
        ax.text2D(0.5, 0.5, "no surface", ha="center", va="center",
                  color="gray", transform=ax.transAxes)
    else:
        verts, faces = mesh.positions, mesh.triangles
        tris  = verts[faces]
        norms = np.cross(tris[:, 1] - tris[:, 0], tris[:, 2] - tris[:, 0])
        nlen  = np.linalg.norm(norms, axis=1, keepdims=True)
        norms = norms / np.where(nlen > 0, nlen, 1.0)
        shade = 0.3 + 0.7 * np.clip(norms @ np.array([0.577, 0.577, 0.577]), 0, 1)
        base  = mesh.colors[faces].mean(axis=1) if mesh.colors is not None else np.ones((len(faces), 3))
        fc    = np.clip(base * shade[:, None], 0.0, 1.0)
        ax.add_collection3d(Poly3DCollection(tris, facecolors=fc, edgecolors="none"))

        lo, hi = verts.min(), verts.max()
        ax.set_xlim(lo, hi); ax.set_ylim(lo, hi); ax.set_zlim(lo, hi)
        ax.set_box_aspect([1, 1, 1])
        ax.view_init(elev=35, azim=30)

    ax.set_title(title, color="white", fontsize=9)
    fig.savefig(out_path, dpi=150, bbox_inches="tight", facecolor=fig.get_facecolor())
    plt.close(fig)
    print(f"Saved: {out_path}")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Mesh a synthetic Gaussian splat ring and render it to PNG."
    )
    parser.add_argument("--out", default="splats_preview.png", help="Output PNG path")
    parser.add_argument("--count", type=int, default=32, help="Number of splats (default 32)")
    parser.add_argument("--algorithm", choices=["density", "ellipsoid"], default="density")
    parser.add_argument("--voxel-size", type=float, default=0.04)
    parser.add_argument("--density-iso", type=float, default=0.3)
    parser.add_argument("--blur-iters", type=int, default=1)
    parser.add_argument("--workers", type=int, default=1)
    parser.add_argument("--verbose", action="store_true", help="Log grid sizes")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")

    config = SplatToMeshConfig.from_params({
        "algorithm": args.algorithm,
        "voxel_size": args.voxel_size,
        "density_iso": args.density_iso,
        "blur_iters": args.blur_iters,
        "workers": args.workers,
    })
    try:
        mesh = convert(_make_ring(args.count), config)
    except GridTooLargeError as exc:
        raise SystemExit(str(exc))
    render_mesh(mesh, args.out, title=f"{args.count} splats, {args.algorithm}")


if __name__ == "__main__":
    main()
