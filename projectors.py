"""
Projectors onto the affine set {w : A w = b}.

Three interchangeable back-ends share the same contract, project(v) ~ argmin
||w - v|| subject to A w = b:

    pinv       dense Moore-Penrose pseudoinverse,  P(v) = C v + d
    cholesky   Cholesky factor of A Aᵗ,            P(v) = C v + d
    iterative  matrix-free CG + LSQR,              P(v) = shift + v - Aᵗ y_q(v)

with C = I - Aᵗ (A Aᵗ)⁻¹ A and d = Aᵗ (A Aᵗ)⁻¹ b (A⁺A and A⁺b for pinv).
The closed-form projectors store the dense q x q matrix C, so they are only
suitable when q is moderate.
"""

from typing import Optional

import torch

from errors import DimensionMismatchError, FactorizationError
from krylov import aslinearoperator, conjugate_gradient, lsqr, normal_operator


def is_sparse(A: torch.Tensor) -> bool:
    return A.layout != torch.strided


class AffineProjector:
    """Base class: subclasses precompute their state in __init__ and implement project()."""

    name = "affine"

    def __init__(self, A: torch.Tensor, b: torch.Tensor):
        if A.ndim != 2 or b.ndim != 1 or A.shape[0] != b.shape[0]:
            raise DimensionMismatchError(
                f"nonconformable A and b: A has shape {tuple(A.shape)}, b has shape {tuple(b.shape)}"
            )
        self.shape = tuple(A.shape)
        self.b = b.detach().clone()

    def project(self, v: torch.Tensor, out: Optional[torch.Tensor] = None) -> torch.Tensor:
        """Projection of v onto {w : A w = b}. out must not alias v."""
        raise NotImplementedError

    def __repr__(self):
        p, q = self.shape
        return f"{type(self).__name__}(p={p}, q={q})"


class ClosedFormProjector(AffineProjector):
    """P(v) = C v + d with C symmetric (q, q) and d (q,) precomputed."""

    C: torch.Tensor
    d: torch.Tensor

    def _store(self, C: torch.Tensor, d: torch.Tensor) -> None:
        # C is symmetric in exact arithmetic; remove rounding asymmetry
        self.C = 0.5 * (C + C.T)
        self.d = d

    @torch.no_grad()
    def project(self, v: torch.Tensor, out: Optional[torch.Tensor] = None) -> torch.Tensor:
        if out is None:
            return torch.addmv(self.d, self.C, v)
        return torch.addmv(self.d, self.C, v, out=out)


class PseudoinverseProjector(ClosedFormProjector):
    """Dense back-end: C = I - A⁺A, d = A⁺b."""

    name = "pinv"

    @torch.no_grad()
    def __init__(self, A: torch.Tensor, b: torch.Tensor):
        super().__init__(A, b)
        if is_sparse(A):
            A = A.to_dense()
        q = A.shape[1]
        pA = torch.linalg.pinv(A)
        C = torch.eye(q, device=A.device, dtype=A.dtype) - pA @ A
        self._store(C, pA @ b)


class CholeskyProjector(ClosedFormProjector):
    """
    Factorization back-end: L Lᵗ = A Aᵗ, then C and d from triangular solves
    against L (no explicit inverse). For sparse A the Gram matrix is formed with
    a sparse product; it is p x p and is factored densely.

    Raises FactorizationError when A Aᵗ is not positive definite, which happens
    when A has dependent rows.
    """

    name = "cholesky"

    @torch.no_grad()
    def __init__(self, A: torch.Tensor, b: torch.Tensor):
        super().__init__(A, b)
        q = A.shape[1]
        if is_sparse(A):
            A_s = A.to_sparse_coo().coalesce()
            At = A_s.t().coalesce()
            gram = torch.sparse.mm(A_s, At).to_dense()
            A_dense = A_s.to_dense()
        else:
            At = A.T
            gram = A @ At
            A_dense = A

        L, info = torch.linalg.cholesky_ex(gram)
        if info.item() != 0:
            raise FactorizationError(
                f"A Aᵗ is not positive definite (leading minor of order {info.item()} "
                "is not positive); A probably has dependent rows, use the iterative projector"
            )

        W = torch.cholesky_solve(A_dense, L)  # (A Aᵗ)⁻¹ A
        C = torch.eye(q, device=A.device, dtype=A.dtype) - At @ W
        d = At @ torch.cholesky_solve(b.unsqueeze(1), L).squeeze(1)
        self._store(C, d)


class IterativeProjector(AffineProjector):
    """
    Matrix-free back-end. Setup solves (A Aᵗ) y_p = b by CG on v -> A(Aᵗ v) and
    keeps shift = Aᵗ y_p, a particular solution of A w = b. Each projection then
    removes the range(Aᵗ) component of v with a bounded LSQR solve of
    Aᵗ y_q ~ v:

        P(v) = shift + v - Aᵗ y_q

    The LSQR solve is warm-started from the previous call's y_q; successive
    outer iterates are close, so a small inner iteration cap stays accurate.
    """

    name = "iterative"

    @torch.no_grad()
    def __init__(
        self,
        A: torch.Tensor,
        b: torch.Tensor,
        cg_max_iter: int = 200,
        cg_tol: float = 1e-8,
        lsqr_max_iter: int = 200,
        lsqr_atol: float = 1e-8,
        lsqr_btol: float = 1e-8,
    ):
        super().__init__(A, b)
        self.op = aslinearoperator(A)
        self.lsqr_max_iter = lsqr_max_iter
        self.lsqr_atol = lsqr_atol
        self.lsqr_btol = lsqr_btol

        cg = conjugate_gradient(normal_operator(self.op), b, tol=cg_tol, max_iter=cg_max_iter)
        self.shift = self.op.rmatvec(cg.x)
        self.setup_iterations = cg.iterations
        self.last_inner_iterations = 0
        self._guess: Optional[torch.Tensor] = None

    @torch.no_grad()
    def project(self, v: torch.Tensor, out: Optional[torch.Tensor] = None) -> torch.Tensor:
        sol = lsqr(
            self.op.T, v, x0=self._guess,
            atol=self.lsqr_atol, btol=self.lsqr_btol, max_iter=self.lsqr_max_iter,
        )
        self._guess = sol.x
        self.last_inner_iterations = sol.iterations

        if out is None:
            out = torch.empty_like(v)
        torch.sub(v, self.op.rmatvec(sol.x), out=out)
        out.add_(self.shift)
        return out


PROJECTORS = {
    "pinv": PseudoinverseProjector,
    "cholesky": CholeskyProjector,
    "iterative": IterativeProjector,
}


def select_projector(
    A: torch.Tensor,
    b: torch.Tensor,
    method: str = "auto",
    dense_max_vars: int = 4096,
    cholesky_max_rows: int = 4096,
    **iterative_options,
) -> AffineProjector:
    """
    Build the projector for (A, b).

    method="auto" picks by representation and size: the closed-form back-ends
    need a dense q x q matrix, so above dense_max_vars variables the iterative
    back-end is used. Below it, dense A gets pinv and sparse A gets cholesky
    (unless A Aᵗ would exceed cholesky_max_rows rows).
    iterative_options (cg_max_iter, cg_tol, lsqr_*) go to IterativeProjector only.
    """
    p, q = A.shape
    if method == "auto":
        if q > dense_max_vars:
            method = "iterative"
        elif is_sparse(A):
            method = "cholesky" if p <= cholesky_max_rows else "iterative"
        else:
            method = "pinv"

    if method not in PROJECTORS:
        raise ValueError(f"unknown projector {method!r}, expected one of {sorted(PROJECTORS)} or 'auto'")
    if method == "iterative":
        return IterativeProjector(A, b, **iterative_options)
    return PROJECTORS[method](A, b)
