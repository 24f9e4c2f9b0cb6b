import dataclasses
import math
import time
from dataclasses import dataclass, field
from typing import Optional, Union

import torch

from errors import DimensionMismatchError, NonFiniteObjectiveError, ProjectorMismatchError
from projectors import AffineProjector, is_sparse, select_projector
from vector_ops import combine3, distance, project_nonneg, threshold_small, weighted_difference

VARIANTS = ("objective", "dual")
PROJECTOR_METHODS = ("auto", "pinv", "cholesky", "iterative")


@dataclass(frozen=True)
class SolverConfig:
    """
    Settings for solve().

    Penalty schedule:
        rho: initial penalty weight
        rho_inc: multiplicative increase applied every inc_step iterations
        rho_max: cap on rho
        inc_step: iterations between penalty increases (also momentum restarts)
        max_iter: maximum number of outer iterations

    Convergence:
        tol: relative step tolerance ||x - y|| / (||x|| + 1); also the threshold
             below which entries of the returned vector are set to zero
        nnegtol: tolerance on the distance to the nonnegative orthant
        afftol: tolerance on the distance to the affine set (dual variant only)

    Algorithm:
        variant: "objective" folds A x = b into every update through the affine
                 projector; "dual" penalizes both sets and averages the projections
        projector: "auto", "pinv", "cholesky" or "iterative"
        dense_max_vars, cholesky_max_rows: size limits used by projector="auto"
        cg_*, lsqr_*: iteration caps and tolerances of the iterative projector

    Output:
        quiet: suppress progress printing
        record_history: keep per-iteration loss, rho and residuals in the result
    """

    rho: float = 1.0
    rho_inc: float = 2.0
    rho_max: float = 1e15
    max_iter: int = 10000
    inc_step: int = 100
    tol: float = 1e-6
    afftol: float = 1e-6
    nnegtol: float = 1e-6
    quiet: bool = True
    variant: str = "objective"
    projector: str = "auto"
    dense_max_vars: int = 4096
    cholesky_max_rows: int = 4096
    cg_max_iter: int = 200
    cg_tol: float = 1e-8
    lsqr_max_iter: int = 200
    lsqr_atol: float = 1e-8
    lsqr_btol: float = 1e-8
    record_history: bool = False

    def __post_init__(self):
        if not self.rho > 0:
            raise ValueError(f"rho must be positive, got {self.rho}")
        if not self.rho_inc >= 1.0:
            raise ValueError(f"rho_inc must be >= 1, got {self.rho_inc}")
        if not self.rho_max >= self.rho:
            raise ValueError(f"rho_max ({self.rho_max}) must be >= rho ({self.rho})")
        if self.max_iter < 0:
            raise ValueError(f"max_iter must be >= 0, got {self.max_iter}")
        if self.inc_step < 1:
            raise ValueError(f"inc_step must be >= 1, got {self.inc_step}")
        for name in ("tol", "afftol", "nnegtol", "cg_tol", "lsqr_atol", "lsqr_btol"):
            if not getattr(self, name) > 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.variant not in VARIANTS:
            raise ValueError(f"variant must be one of {VARIANTS}, got {self.variant!r}")
        if self.projector not in PROJECTOR_METHODS:
            raise ValueError(f"projector must be one of {PROJECTOR_METHODS}, got {self.projector!r}")

    def iterative_options(self) -> dict:
        return {
            "cg_max_iter": self.cg_max_iter,
            "cg_tol": self.cg_tol,
            "lsqr_max_iter": self.lsqr_max_iter,
            "lsqr_atol": self.lsqr_atol,
            "lsqr_btol": self.lsqr_btol,
        }


@dataclass
class History:
    """Per-iteration trace; affine_dist stays empty for the objective variant."""

    loss: list = field(default_factory=list)
    rho: list = field(default_factory=list)
    nonneg_dist: list = field(default_factory=list)
    affine_dist: list = field(default_factory=list)
    scaled_norm: list = field(default_factory=list)

    def record(self, loss, rho, nonneg_dist, affine_dist, scaled_norm):
        self.loss.append(loss)
        self.rho.append(rho)
        self.nonneg_dist.append(nonneg_dist)
        if affine_dist is not None:
            self.affine_dist.append(affine_dist)
        self.scaled_norm.append(scaled_norm)


@dataclass(frozen=True)
class LPResult:
    obj: float
    iterations: int
    x: torch.Tensor
    nonneg_dist: float
    affine_dist: Optional[float]
    converged: bool
    rho: float
    projector: str
    solve_time_sec: float
    history: Optional[History] = None


def solve(
    A: torch.Tensor, b: torch.Tensor, c: torch.Tensor,
    config: Optional[SolverConfig] = None,
    *,
    x0: Optional[torch.Tensor] = None,
    y0: Optional[torch.Tensor] = None,
    z0: Optional[torch.Tensor] = None,
    projector: Union[str, AffineProjector, None] = None,
    **overrides,
) -> LPResult:
    """
    Solve a Linear Program with an accelerated proximal distance algorithm.

    Problem formulation:
        minimize    c^T x
        subject to  A x = b
                    x >= 0

    The constraints are replaced by the penalty (rho/2) dist(x, C)^2 and rho is
    increased by rho_inc every inc_step iterations. Each iteration takes a
    Nesterov-extrapolated point z = y + (i-1)/(i+2) (y - x) and applies the
    proximal distance map:

        objective variant:  y = P_aff(max(z, 0) - c/rho)
        dual variant:       y = (max(z, 0) + P_aff(z)) / 2 - c/rho

    Args:
        A: Equality constraint matrix (p, q), dense or sparse
        b: Right-hand side (p,)
        c: Objective coefficient vector (q,); its device and dtype are used throughout
        config: SolverConfig; keyword overrides (rho=..., max_iter=...) are applied on top
        x0, y0, z0: optional warm starts (q,) for the previous, current and
            extrapolated iterates; they are copied, not modified
        projector: a back-end name ("auto", "pinv", "cholesky", "iterative"),
            shorthand for config.projector, or a previously built AffineProjector
            for the same (A, b) to skip the setup when only c changes

    Returns:
        LPResult with the objective c^T y, iteration count, thresholded primal
        vector, distance to the nonnegative orthant, distance to the affine set
        (dual variant only, else None), and solve statistics.

    Raises:
        DimensionMismatchError: inconsistent shapes, before anything is computed
        ProjectorMismatchError: a reused projector does not match b, or c's dtype and device
        FactorizationError: A Aᵗ not positive definite (cholesky projector)
        NonFiniteObjectiveError: c^T y became inf/nan
    """
    config = SolverConfig() if config is None else config
    if isinstance(projector, str):
        overrides["projector"] = projector
        projector = None
    if overrides:
        config = dataclasses.replace(config, **overrides)

    # -----------------------------
    # Shape checks / setup
    # -----------------------------
    if A.ndim != 2 or b.ndim != 1 or c.ndim != 1:
        raise DimensionMismatchError(
            f"expected 2-d A and 1-d b, c; got A.ndim={A.ndim}, b.ndim={b.ndim}, c.ndim={c.ndim}"
        )
    p, q = A.shape
    if b.shape[0] != p or c.shape[0] != q:
        raise DimensionMismatchError(
            f"nonconformable A, b, and c: A is {p}x{q}, b has length {b.shape[0]}, c has length {c.shape[0]}"
        )
    for name, v in (("x0", x0), ("y0", y0), ("z0", z0)):
        if v is not None and tuple(v.shape) != (q,):
            raise DimensionMismatchError(f"{name} must have shape ({q},), got {tuple(v.shape)}")
    if projector is not None:
        if projector.shape != (p, q):
            raise DimensionMismatchError(f"projector was built for shape {projector.shape}, A is {p}x{q}")
        if projector.b.dtype != c.dtype or projector.b.device != c.device:
            raise ProjectorMismatchError(
                f"projector was built for {projector.b.dtype} on {projector.b.device}, "
                f"c is {c.dtype} on {c.device}"
            )
        if not torch.equal(projector.b, b.to(device=c.device, dtype=c.dtype)):
            raise ProjectorMismatchError("projector was built for a different right-hand side b")

    device = c.device
    dtype = c.dtype
    quiet = config.quiet
    dual = config.variant == "dual"

    start_time = time.time()

    A = A.to(device=device, dtype=dtype)
    b = b.to(device=device, dtype=dtype)

    if not quiet:
        print("\nProxLP Solver")
        print(f"  Problem: {p} equalities, {q} variables ({'sparse' if is_sparse(A) else 'dense'} A)")

    if projector is None:
        projector = select_projector(
            A, b, config.projector,
            dense_max_vars=config.dense_max_vars,
            cholesky_max_rows=config.cholesky_max_rows,
            **config.iterative_options(),
        )
    if not quiet:
        print(f"  Projector: {projector.name} (setup {time.time() - start_time:.3f}s), variant: {config.variant}")
        print(f"  Penalty: rho={config.rho:.1e}, rho_inc={config.rho_inc}, rho_max={config.rho_max:.1e}, inc_step={config.inc_step}")

    def init_vector(v: Optional[torch.Tensor]) -> torch.Tensor:
        if v is None:
            return torch.zeros(q, device=device, dtype=dtype)
        return v.to(device=device, dtype=dtype).clone()

    # -----------------------------
    # Main Algorithm
    # -----------------------------
    x, y, z = init_vector(x0), init_vector(y0), init_vector(z0)
    # projections of the initial z; the first iteration uses them as they are
    z_max = torch.clamp(z, min=0.0)
    z_affine = projector.project(z) if dual else None
    shifted = torch.empty_like(y)  # z_max - c/rho

    rho = float(config.rho)
    invrho = 1.0 / rho
    loss = torch.dot(c, y).item()
    dnonneg = float('inf')
    daffine = float('inf')
    history = History() if config.record_history else None

    n_iterations = 0
    converged = False

    with torch.no_grad():
        for i in range(1, config.max_iter + 1):
            n_iterations = i

            # accelerated step z = y + (i - 1)/(i + 2)*(y - x)
            kx = (i - 1.0) / (i + 2.0)
            ky = 1.0 + kx
            weighted_difference(z, y, x, ky, kx)
            x.copy_(y)

            # projections onto constraint sets (warm-up iteration keeps the initial ones)
            if i > 1:
                project_nonneg(z_max, z)
                if dual:
                    projector.project(z, out=z_affine)

            dnonneg = distance(z, z_max)
            if dual:
                daffine = distance(z, z_affine)

            # prox dist update
            if dual:
                combine3(y, 0.5, z_max, 0.5, z_affine, -invrho, c)
            else:
                torch.add(z_max, c, alpha=-invrho, out=shifted)
                projector.project(shifted, out=y)

            loss = torch.dot(c, y).item()
            if not math.isfinite(loss):
                raise NonFiniteObjectiveError(i, loss)

            # convergence checks
            scaled_norm = distance(x, y) / (torch.linalg.vector_norm(x).item() + 1.0)
            converged = scaled_norm < config.tol and dnonneg < config.nnegtol
            if dual:
                converged = converged and daffine < config.afftol

            if history is not None:
                history.record(loss, rho, dnonneg, daffine if dual else None, scaled_norm)

            if not quiet and (i <= 10 or i % config.inc_step == 0):
                affine_msg = f", daffine = {daffine:.3e}" if dual else ""
                print(f"  Iter {i:5d}: obj = {loss:+.6e}, dnonneg = {dnonneg:.3e}{affine_msg}, step = {scaled_norm:.3e}, rho = {rho:.3e}")

            if converged:
                break

            # penalty continuation; restart momentum so that iterates from
            # different penalty weights are not mixed
            if i % config.inc_step == 0:
                rho = min(config.rho_inc * rho, config.rho_max)
                invrho = 1.0 / rho
                x.copy_(y)

    # threshold small elements of y before returning
    threshold_small(y, config.tol)
    solve_time = time.time() - start_time

    if not quiet:
        status_msg = "converged" if converged else f"iteration limit ({config.max_iter})"
        print(f"\n  Status: {status_msg} after {n_iterations} iterations in {solve_time:.3f}s")
        print(f"  Objective: {loss:.6e}")
        print(f"  Distance to nonnegative set: {dnonneg:.3e}")
        if dual:
            print(f"  Distance to affine set: {daffine:.3e}")

    return LPResult(
        obj=loss,
        iterations=n_iterations,
        x=y,
        nonneg_dist=dnonneg,
        affine_dist=daffine if dual else None,
        converged=converged,
        rho=rho,
        projector=projector.name,
        solve_time_sec=solve_time,
        history=history,
    )
