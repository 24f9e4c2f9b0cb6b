"""
In-place vector kernels used by the proximal-distance iteration.

All functions write into a caller-owned output tensor so that the main loop
does not allocate per iteration.
"""

import torch

from errors import DimensionMismatchError


def _check_lengths(*vectors: torch.Tensor) -> None:
    n = vectors[0].shape[0]
    if any(v.shape[0] != n for v in vectors[1:]):
        raise DimensionMismatchError(
            f"vectors must all have the same length, got {[v.shape[0] for v in vectors]}"
        )


@torch.no_grad()
def combine3(
    w: torch.Tensor,
    a: float, x: torch.Tensor,
    b: float, y: torch.Tensor,
    c: float, z: torch.Tensor,
) -> torch.Tensor:
    """
    Compute w = a*x + b*y + c*z, overwriting w.

    w may alias x but not y or z.
    """
    _check_lengths(w, x, y, z)
    torch.mul(x, a, out=w)
    w.add_(y, alpha=b)
    w.add_(z, alpha=c)
    return w


@torch.no_grad()
def weighted_difference(
    dst: torch.Tensor, y: torch.Tensor, x: torch.Tensor, alpha: float, beta: float
) -> torch.Tensor:
    """dst = alpha*y - beta*x"""
    _check_lengths(dst, y, x)
    torch.mul(y, alpha, out=dst)
    dst.sub_(x, alpha=beta)
    return dst


def distance(u: torch.Tensor, v: torch.Tensor) -> float:
    """Euclidean distance ||u - v||."""
    _check_lengths(u, v)
    return torch.linalg.vector_norm(u - v).item()


@torch.no_grad()
def project_nonneg(dst: torch.Tensor, src: torch.Tensor) -> torch.Tensor:
    """dst = max(src, 0), elementwise."""
    _check_lengths(dst, src)
    torch.clamp(src, min=0.0, out=dst)
    return dst


@torch.no_grad()
def threshold_small(v: torch.Tensor, tol: float) -> torch.Tensor:
    """Set entries with |v[i]| < tol to exactly zero, in place."""
    v.masked_fill_(v.abs() < tol, 0.0)
    return v
