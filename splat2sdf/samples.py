"""Splat point clouds and their evaluatable Gaussian form.

:class:`SplatCloud` holds the raw per-splat arrays as they arrive from the
caller (log-scales, opacity logits, DC colors).  :func:`build_samples` turns
them into :class:`SplatSamples`, the analytic form the rasterizers evaluate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from ._math import _F, _quat_to_rotmat, _sigmoid

logger = logging.getLogger(__name__)

SH_C0 = 0.28209479177387814
"""Zeroth-order spherical-harmonic constant ``1 / (2 * sqrt(pi))``."""

_MIN_SIGMA = 1e-5
_MAX_LOG_SCALE = 20.0
_OPACITY_LOGIT_CLAMP = 20.0


# ===========================================================================
# Raw splat arrays
# ===========================================================================

@dataclass
class SplatCloud:
    """Parallel arrays describing ``N`` Gaussian splats.

    Parameters
    ----------
    positions:
        ``(N, 3)`` world-space centres.
    rotations:
        ``(N, 4)`` quaternions stored ``(w, x, y, z)``; need not be unit length.
    scales:
        ``(N, 3)`` natural log of the per-axis standard deviation.
    opacity:
        ``(N,)`` opacity logits (pre-sigmoid).
    sh0:
        ``(N, 3)`` DC color, either raw RGB or SH-encoded.  Optional; white
        when omitted.
    """

    positions: _F
    rotations: _F
    scales: _F
    opacity: _F
    sh0: _F | None = None

    def __post_init__(self) -> None:
        self.positions = np.asarray(self.positions, dtype=np.float64).reshape(-1, 3)
        n = len(self.positions)
        self.rotations = _as_rows(self.rotations, n, 4, "rotations")
        self.scales = _as_rows(self.scales, n, 3, "scales")
        self.opacity = _as_rows(self.opacity, n, 1, "opacity").reshape(n)
        if self.sh0 is None:
            self.sh0 = np.ones((n, 3), dtype=np.float64)
        else:
            self.sh0 = _as_rows(self.sh0, n, 3, "sh0")

    def __len__(self) -> int:
        return len(self.positions)

    @classmethod
    def empty(cls) -> SplatCloud:
        return cls(np.zeros((0, 3)), np.zeros((0, 4)), np.zeros((0, 3)), np.zeros(0))


def _as_rows(arr, n: int, width: int, name: str) -> _F:
    a = np.asarray(arr, dtype=np.float64)
    if a.size != n * width:
        raise ValueError(
            f"SplatCloud.{name} has {a.size} values, expected {n} x {width} "
            f"to match {n} positions"
        )
    return a.reshape(n, width)


# ===========================================================================
# Evaluatable samples
# ===========================================================================

@dataclass(frozen=True)
class SplatSamples:
    """Struct-of-arrays analytic form of a splat cloud.

    Attributes
    ----------
    mu:
        ``(N, 3)`` centres.
    rt:
        ``(N, 3, 3)`` transposed rotations; ``rt[i] @ (p - mu[i])`` maps a
        world offset into splat *i*'s axis-aligned frame.
    sigma:
        ``(N, 3)`` positive, finite standard deviations.
    alpha:
        ``(N,)`` opacities in ``[0, 1]``.
    max_sigma:
        ``(N,)`` largest sigma per splat, the isotropic bounding radius.
    color:
        ``(N, 3)`` linear RGB.
    """

    mu: _F
    rt: _F
    sigma: _F
    alpha: _F
    max_sigma: _F
    color: _F

    def __len__(self) -> int:
        return len(self.mu)

    def m2(self, i: int, points: _F) -> _F:
        """Squared Mahalanobis distance from splat *i* to ``(..., 3)`` *points*."""
        u = (np.asarray(points) - self.mu[i]) @ self.rt[i].T
        s = u / self.sigma[i]
        return np.sum(s * s, axis=-1)

    def take(self, idx) -> SplatSamples:
        """Subset of samples selected by index array or slice *idx*."""
        return SplatSamples(
            mu=self.mu[idx],
            rt=self.rt[idx],
            sigma=self.sigma[idx],
            alpha=self.alpha[idx],
            max_sigma=self.max_sigma[idx],
            color=self.color[idx],
        )


def build_samples(cloud: SplatCloud) -> SplatSamples:
    """Normalise every splat in *cloud* into a :class:`SplatSamples` row.

    Defects are clamped rather than raised: degenerate quaternions become the
    identity, non-finite scales fall back to the sigma floor, a non-finite
    opacity logit is read as 0 and non-finite colors become white.
    Splats whose centre is not finite are dropped.

    The DC colors are decoded with ``c * SH_C0 + 0.5`` for *every* splat as
    soon as one finite channel anywhere in the cloud is negative, since only
    SH-encoded colors go below zero.
    """
    keep = np.all(np.isfinite(cloud.positions), axis=1)
    dropped = int(len(cloud) - keep.sum())
    if dropped:
        logger.warning("Dropping %d splat(s) with non-finite positions", dropped)

    rot = _quat_to_rotmat(cloud.rotations[keep])
    rt = np.transpose(rot, (0, 2, 1))

    log_scale = np.nan_to_num(
        cloud.scales[keep],
        nan=np.log(_MIN_SIGMA),
        posinf=_MAX_LOG_SCALE,
        neginf=np.log(_MIN_SIGMA),
    )
    sigma = np.maximum(np.exp(np.minimum(log_scale, _MAX_LOG_SCALE)), _MIN_SIGMA)

    logit = cloud.opacity[keep]
    logit = np.where(np.isfinite(logit), logit, 0.0)
    logit = np.clip(logit, -_OPACITY_LOGIT_CLAMP, _OPACITY_LOGIT_CLAMP)
    alpha = _sigmoid(logit)

    raw = cloud.sh0
    color = raw[keep]
    sh_encoded = bool(np.any(np.isfinite(color) & (color < 0.0)))
    color = np.where(np.all(np.isfinite(color), axis=1, keepdims=True), color, 1.0)
    if sh_encoded:
        color = color * SH_C0 + 0.5

    return SplatSamples(
        mu=cloud.positions[keep],
        rt=rt,
        sigma=sigma,
        alpha=alpha,
        max_sigma=sigma.max(axis=1),
        color=color,
    )
