"""Internal numerics for splat rasterization.

All symbols here are private (underscore-prefixed).  Users should import
from :mod:`splat2sdf` instead.

Conventions
-----------
Quaternions are stored ``(w, x, y, z)``.  Flat grids are x-fastest, then y,
then z, so ``values.reshape(nz, ny, nx)`` is the z-first 3-D view used
everywhere in this package.
"""

from __future__ import annotations

from typing import List, Tuple

import numpy as np
import numpy.typing as npt

_F = npt.NDArray[np.floating]
_I = npt.NDArray[np.intp]

# Squared quaternion length below which a rotation is treated as missing.
_QUAT_EPS2 = 1e-20


# ---------------------------------------------------------------------------
# Rotations
# ---------------------------------------------------------------------------

def _quat_to_rotmat(q: _F) -> _F:
    """Unit rotation matrices ``(N, 3, 3)`` from ``(N, 4)`` wxyz quaternions.

    Quaternions are normalised first; non-finite or near-zero ones become the
    identity rotation.
    """
    q = np.asarray(q, dtype=np.float64).reshape(-1, 4)
    norm2 = np.einsum("ij,ij->i", q, q)
    valid = np.isfinite(norm2) & (norm2 > _QUAT_EPS2)
    safe = np.where(valid[:, None], q, np.array([1.0, 0.0, 0.0, 0.0]))
    safe = safe / np.sqrt(np.einsum("ij,ij->i", safe, safe))[:, None]

    w, x, y, z = safe[:, 0], safe[:, 1], safe[:, 2], safe[:, 3]
    xx, yy, zz = x * x, y * y, z * z
    xy, xz, yz = x * y, x * z, y * z
    wx, wy, wz = w * x, w * y, w * z

    rot = np.empty((len(safe), 3, 3), dtype=np.float64)
    rot[:, 0, 0] = 1.0 - 2.0 * (yy + zz)
    rot[:, 0, 1] = 2.0 * (xy - wz)
    rot[:, 0, 2] = 2.0 * (xz + wy)
    rot[:, 1, 0] = 2.0 * (xy + wz)
    rot[:, 1, 1] = 1.0 - 2.0 * (xx + zz)
    rot[:, 1, 2] = 2.0 * (yz - wx)
    rot[:, 2, 0] = 2.0 * (xz - wy)
    rot[:, 2, 1] = 2.0 * (yz + wx)
    rot[:, 2, 2] = 1.0 - 2.0 * (xx + yy)
    return rot


def _sigmoid(x: _F) -> _F:
    """Logistic function; callers clamp *x* so ``exp`` cannot overflow."""
    return 1.0 / (1.0 + np.exp(-x))


# ---------------------------------------------------------------------------
# Separable 3-tap box filter
# ---------------------------------------------------------------------------

def _box3(a: _F, axis: int) -> _F:
    """Average each element with its two neighbours along *axis*.

    Edges replicate their own value, so the filter never reads outside the
    array.  Returns a new array; *a* is left untouched.
    """
    pad = [(0, 0)] * a.ndim
    pad[axis] = (1, 1)
    p = np.pad(a, pad, mode="edge")
    n = a.shape[axis]
    prev = np.take(p, np.arange(0, n), axis=axis)
    cur  = np.take(p, np.arange(1, n + 1), axis=axis)
    nxt  = np.take(p, np.arange(2, n + 2), axis=axis)
    return (prev + cur + nxt) * (1.0 / 3.0)


def _box3_xyz(block: _F) -> _F:
    """One x, y, z pass of :func:`_box3` over a ``(nz, ny, nx, ...)`` block."""
    out = _box3(block, axis=2)
    out = _box3(out, axis=1)
    return _box3(out, axis=0)


# ---------------------------------------------------------------------------
# Trilinear gather
# ---------------------------------------------------------------------------

def _trilinear_corners(
    g: _F,
    dims: Tuple[int, int, int],
) -> List[Tuple[_I, _F]]:
    """Flat indices and weights of the 8 lattice points around each sample.

    Parameters
    ----------
    g:
        ``(M, 3)`` fractional grid coordinates, already clamped to
        ``[0, n - 1]`` per axis.
    dims:
        ``(nx, ny, nz)`` lattice point counts.

    Returns
    -------
    list
        Eight ``(flat_index, weight)`` pairs; weights of one sample sum to 1.
    """
    nx, ny, nz = dims
    i0 = np.floor(g).astype(np.intp)
    i0 = np.minimum(i0, np.array([nx - 1, ny - 1, nz - 1]))
    i1 = np.minimum(i0 + 1, np.array([nx - 1, ny - 1, nz - 1]))
    t = g - i0

    corners = []
    for cz in (0, 1):
        iz = i1[:, 2] if cz else i0[:, 2]
        wz = t[:, 2] if cz else 1.0 - t[:, 2]
        for cy in (0, 1):
            iy = i1[:, 1] if cy else i0[:, 1]
            wy = t[:, 1] if cy else 1.0 - t[:, 1]
            for cx in (0, 1):
                ix = i1[:, 0] if cx else i0[:, 0]
                wx = t[:, 0] if cx else 1.0 - t[:, 0]
                corners.append((ix + nx * (iy + ny * iz), wx * wy * wz))
    return corners
