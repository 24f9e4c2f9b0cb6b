"""
Matrix-free linear algebra on torch tensors.

LinearOperator wraps a dense or sparse matrix (or any pair of callables) behind
forward / transpose products, so that conjugate gradient and LSQR never need
the matrix itself, let alone products such as A Aᵗ.
"""

import math
from typing import Callable, NamedTuple, Optional

import torch


class LinearOperator:
    """Operator of shape (m, n) with v -> A v (matvec) and u -> Aᵗ u (rmatvec)."""

    def __init__(
        self,
        shape: tuple[int, int],
        matvec: Callable[[torch.Tensor], torch.Tensor],
        rmatvec: Callable[[torch.Tensor], torch.Tensor],
    ):
        self.shape = tuple(shape)
        self._matvec = matvec
        self._rmatvec = rmatvec

    def matvec(self, v: torch.Tensor) -> torch.Tensor:
        return self._matvec(v)

    def rmatvec(self, u: torch.Tensor) -> torch.Tensor:
        return self._rmatvec(u)

    @property
    def T(self) -> "LinearOperator":
        m, n = self.shape
        return LinearOperator((n, m), self._rmatvec, self._matvec)

    def __repr__(self):
        return f"LinearOperator(shape={self.shape})"


def aslinearoperator(A: torch.Tensor) -> LinearOperator:
    """Wrap a dense or sparse (COO/CSR) matrix. Sparse input is coalesced to COO once."""
    if A.layout == torch.strided:
        At = A.T
    else:
        A = A.to_sparse_coo().coalesce()
        At = A.t().coalesce()
    return LinearOperator(A.shape, lambda v: A @ v, lambda u: At @ u)


def normal_operator(op: LinearOperator) -> LinearOperator:
    """v -> A (Aᵗ v), the (m, m) Gram operator of op, without forming it."""
    m = op.shape[0]
    gram = lambda v: op.matvec(op.rmatvec(v))
    return LinearOperator((m, m), gram, gram)


class KrylovResult(NamedTuple):
    x: torch.Tensor
    iterations: int
    converged: bool


@torch.no_grad()
def conjugate_gradient(
    op: LinearOperator,
    b: torch.Tensor,
    x0: Optional[torch.Tensor] = None,
    tol: float = 1e-8,
    max_iter: int = 200,
) -> KrylovResult:
    """
    Conjugate gradient for op x = b, op symmetric positive (semi)definite.

    Stops when ||b - op x|| <= tol * ||b||. On hitting max_iter, or on a
    non-positive curvature direction, the current iterate is returned with
    converged=False.
    """
    x = torch.zeros_like(b) if x0 is None else x0.clone()
    r = b - op.matvec(x)
    p = r.clone()

    rs_old = torch.dot(r, r).item()
    b_norm = torch.linalg.vector_norm(b).item()
    stop = tol * (b_norm if b_norm > 0 else 1.0)
    if math.sqrt(rs_old) <= stop:
        return KrylovResult(x, 0, True)

    for k in range(1, max_iter + 1):
        Ap = op.matvec(p)
        pAp = torch.dot(p, Ap).item()
        if pAp <= 0.0:
            return KrylovResult(x, k - 1, False)

        alpha = rs_old / pAp
        x.add_(p, alpha=alpha)
        r.sub_(Ap, alpha=alpha)

        rs_new = torch.dot(r, r).item()
        if math.sqrt(rs_new) <= stop:
            return KrylovResult(x, k, True)

        p.mul_(rs_new / rs_old).add_(r)
        rs_old = rs_new

    return KrylovResult(x, max_iter, False)


@torch.no_grad()
def lsqr(
    op: LinearOperator,
    b: torch.Tensor,
    x0: Optional[torch.Tensor] = None,
    atol: float = 1e-8,
    btol: float = 1e-8,
    max_iter: int = 200,
) -> KrylovResult:
    """
    LSQR (Paige & Saunders, 1982) for min ||op x - b||, op of shape (m, n).

    Uses Golub-Kahan bidiagonalization, touching op only through matvec and
    rmatvec. Starting from x0 solves for the correction, so a warm start from a
    nearby problem saves iterations.

    Stopping rules, as in the reference implementation:
        ||r|| <= btol ||b|| + atol ||A|| ||x||        (compatible system)
        ||Aᵗ r|| <= atol ||A|| ||r||                   (least-squares solution)
    ||A|| is the Frobenius-norm estimate accumulated by the bidiagonalization.
    """
    m, n = op.shape
    eps = torch.finfo(b.dtype).eps

    b_norm = torch.linalg.vector_norm(b).item()
    if b_norm == 0.0:
        return KrylovResult(b.new_zeros(n), 0, True)

    if x0 is None:
        x = b.new_zeros(n)
        u = b.clone()
    else:
        x = x0.clone()
        u = b - op.matvec(x)

    beta = torch.linalg.vector_norm(u).item()
    if beta > 0:
        u.div_(beta)
        v = op.rmatvec(u)
        alpha = torch.linalg.vector_norm(v).item()
    else:
        v = torch.zeros_like(x)
        alpha = 0.0
    if alpha > 0:
        v.div_(alpha)
    w = v.clone()

    rhobar, phibar = alpha, beta
    anorm = 0.0
    if alpha * beta == 0.0:
        # x0 already solves the problem (or b is orthogonal to range(A))
        return KrylovResult(x, 0, True)

    for itn in range(1, max_iter + 1):
        # continue the bidiagonalization
        u = op.matvec(v).sub_(u, alpha=alpha)
        beta = torch.linalg.vector_norm(u).item()
        if beta > 0:
            u.div_(beta)
            anorm = math.sqrt(anorm ** 2 + alpha ** 2 + beta ** 2)
            v = op.rmatvec(u).sub_(v, alpha=beta)
            alpha = torch.linalg.vector_norm(v).item()
            if alpha > 0:
                v.div_(alpha)

        # plane rotation eliminating the subdiagonal element beta
        rho = math.hypot(rhobar, beta)
        cs = rhobar / rho
        sn = beta / rho
        theta = sn * alpha
        rhobar = -cs * alpha
        phi = cs * phibar
        phibar = sn * phibar
        tau = sn * phi

        # update x and the search direction w
        x.add_(w, alpha=phi / rho)
        w = v.add(w, alpha=-theta / rho)

        rnorm = phibar
        arnorm = alpha * abs(tau)
        xnorm = torch.linalg.vector_norm(x).item()

        test1 = rnorm / b_norm
        test2 = arnorm / (anorm * rnorm + eps)
        rtol = btol + atol * anorm * xnorm / b_norm
        if test2 <= atol or test1 <= rtol or 1.0 + test2 <= 1.0:
            return KrylovResult(x, itn, True)

    return KrylovResult(x, max_iter, False)
