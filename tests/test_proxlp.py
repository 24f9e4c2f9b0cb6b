"""
Test the ProxLP solver on small LP problems.
"""

import pytest
import torch

from errors import DimensionMismatchError, NonFiniteObjectiveError, ProjectorMismatchError
from projectors import select_projector
from proxlp import SolverConfig, solve

# Use float64 for numerical stability (standard for LP solvers)
torch.set_default_dtype(torch.float64)


def simple_problem():
    """
    minimize:    x1 + x2
    subject to:  x1 + 2*x2 = 3
                 x1, x2 >= 0
    Expected solution: x1* = 0, x2* = 1.5, obj = 1.5
    """
    A = torch.tensor([[1.0, 2.0]])
    b = torch.tensor([3.0])
    c = torch.tensor([1.0, 1.0])
    return A, b, c


def random_problem(p, q, seed=2016):
    """Gaussian A, b = A x_feas with x_feas >= 0 and positive costs, so the LP is feasible and bounded."""
    gen = torch.Generator().manual_seed(seed)
    A = torch.randn(p, q, generator=gen)
    x_feas = torch.clamp(torch.randn(q, generator=gen), min=0.0)
    b = A @ x_feas
    c = torch.rand(q, generator=gen)
    return A, b, c


def sparse_problem(p, q, seed=7):
    """Sparse A = [R | I] with full row rank."""
    gen = torch.Generator().manual_seed(seed)
    R = torch.randn(p, q - p, generator=gen)
    R[torch.rand(p, q - p, generator=gen) > 0.3] = 0.0
    A = torch.cat([R, torch.eye(p)], dim=1)
    b = A @ torch.rand(q, generator=gen)
    c = torch.rand(q, generator=gen)
    return A, b, c


def test_simple_objective_variant():
    A, b, c = simple_problem()

    result = solve(A, b, c)

    expected = torch.tensor([0.0, 1.5])
    assert result.converged
    assert torch.norm(result.x - expected).item() < 1e-3
    assert result.obj == pytest.approx(1.5, abs=1e-3)
    assert result.affine_dist is None
    assert result.projector == "pinv"


def test_simple_dual_variant():
    A, b, c = simple_problem()

    result = solve(A, b, c, variant="dual")

    expected = torch.tensor([0.0, 1.5])
    assert result.converged
    assert torch.norm(result.x - expected).item() < 1e-3
    assert result.affine_dist is not None
    assert result.affine_dist < 1e-6
    assert result.nonneg_dist < 1e-6


@pytest.mark.parametrize("projector", ["pinv", "cholesky", "iterative"])
def test_feasibility_of_converged_solution(projector):
    A, b, c = random_problem(5, 10)

    result = solve(A, b, c, SolverConfig(projector=projector))

    x = result.x
    assert result.converged
    assert torch.norm(A @ x - b).item() < 1e-4
    assert x.min().item() > -1e-4


def test_backends_agree():
    """pinv, cholesky and iterative projections lead to the same solution."""
    A, b, c = random_problem(5, 10, seed=3)

    results = [solve(A, b, c, projector=name) for name in ("pinv", "cholesky", "iterative")]

    for other in results[1:]:
        assert torch.norm(other.x - results[0].x).item() < 1e-3
        assert other.obj == pytest.approx(results[0].obj, rel=1e-4, abs=1e-6)


def test_sparse_matches_dense():
    A, b, c = sparse_problem(20, 50)

    dense = solve(A, b, c)
    sparse = solve(A.to_sparse(), b, c)

    assert sparse.projector == "cholesky"
    assert torch.norm(sparse.x - dense.x).item() < 1e-3
    assert sparse.obj == pytest.approx(dense.obj, rel=1e-4, abs=1e-6)


def test_sparse_cholesky_matches_iterative():
    A, b, c = sparse_problem(20, 50, seed=9)
    A = A.to_sparse()

    chol = solve(A, b, c, projector="cholesky")
    iterative = solve(A, b, c, projector="iterative")

    assert iterative.projector == "iterative"
    assert torch.norm(chol.x - iterative.x).item() < 1e-3
    assert iterative.obj == pytest.approx(chol.obj, rel=1e-4, abs=1e-6)


def test_matches_reference_solver():
    pytest.importorskip("scipy")
    from oracle import solve_lp

    A, b, c = random_problem(5, 10, seed=11)

    result = solve(A, b, c)
    ref = solve_lp(A, b, c)

    assert torch.norm(result.x - ref.x).item() < 1e-2
    assert result.obj == pytest.approx(ref.obj, rel=1e-3, abs=1e-5)


def test_sparse_matches_reference_solver():
    pytest.importorskip("scipy")
    from oracle import solve_lp

    A, b, c = sparse_problem(20, 50, seed=12)
    A = A.to_sparse()

    result = solve(A, b, c)
    ref = solve_lp(A, b, c)

    assert result.obj == pytest.approx(ref.obj, rel=1e-3, abs=1e-5)


def test_penalty_is_monotone_and_capped():
    """rho doubles every inc_step iterations and stops at rho_max."""
    A, b, c = simple_problem()

    result = solve(A, b, c, inc_step=5, rho_max=8.0, max_iter=50, record_history=True)

    rhos = result.history.rho
    assert len(rhos) == 50
    assert all(r1 <= r2 for r1, r2 in zip(rhos, rhos[1:]))
    assert rhos[:5] == [1.0] * 5
    assert rhos[5:10] == [2.0] * 5
    assert max(rhos) == 8.0
    assert result.rho == 8.0
    # dist(x, R+) ~ 1/(2 rho) cannot drop below tolerance with rho <= 8
    assert not result.converged
    assert result.iterations == 50


def test_history_dual_variant():
    A, b, c = simple_problem()

    result = solve(A, b, c, variant="dual", max_iter=20, record_history=True)

    h = result.history
    assert len(h.loss) == len(h.nonneg_dist) == len(h.affine_dist) == len(h.scaled_norm) == 20
    assert h.loss[-1] == pytest.approx(torch.dot(c, result.x).item(), abs=1e-5)


def test_no_history_by_default():
    A, b, c = simple_problem()
    assert solve(A, b, c, max_iter=5).history is None


def test_small_entries_are_thresholded():
    A, b, c = random_problem(5, 10, seed=5)
    tol = 1e-6

    x = solve(A, b, c, tol=tol).x

    assert not ((x.abs() < tol) & (x != 0)).any()
    assert (x == 0).any()


def test_dimension_mismatch():
    A, b, c = simple_problem()

    with pytest.raises(DimensionMismatchError):
        solve(A, torch.tensor([3.0, 1.0]), c)
    with pytest.raises(DimensionMismatchError):
        solve(A, b, torch.tensor([1.0, 1.0, 1.0]))
    with pytest.raises(DimensionMismatchError):
        solve(A, b, c, x0=torch.zeros(3))
    with pytest.raises(DimensionMismatchError):
        solve(A, b.unsqueeze(0), c)


def test_dimension_mismatch_prints_nothing(capsys):
    A, b, c = simple_problem()

    with pytest.raises(DimensionMismatchError):
        solve(A, torch.tensor([3.0, 1.0]), c, quiet=False)

    assert capsys.readouterr().out == ""


@pytest.mark.parametrize("variant", ["objective", "dual"])
def test_non_finite_loss_raises(variant):
    """
    c/rho overflows on the first update, so c^T y is not finite at iteration 1.
    An infeasible system with a large rho does not raise; see
    test_infeasible_problem_does_not_converge.
    """
    A, b, _ = simple_problem()
    c = torch.tensor([1e308, 1e308])

    with pytest.raises(NonFiniteObjectiveError) as excinfo:
        solve(A, b, c, rho=1e-300, variant=variant)

    assert excinfo.value.iteration == 1
    assert isinstance(excinfo.value, FloatingPointError)


def test_zero_iterations():
    A, b, c = simple_problem()

    result = solve(A, b, c, max_iter=0)

    assert result.iterations == 0
    assert not result.converged
    assert torch.equal(result.x, torch.zeros(2))


def test_warm_start_is_copied():
    A, b, c = simple_problem()
    x0 = torch.tensor([3.0, 0.0])
    y0 = x0.clone()
    z0 = x0.clone()

    result = solve(A, b, c, x0=x0, y0=y0, z0=z0)

    assert torch.equal(x0, torch.tensor([3.0, 0.0]))
    assert torch.equal(y0, x0)
    assert torch.equal(z0, x0)
    assert torch.norm(result.x - torch.tensor([0.0, 1.5])).item() < 1e-3


def test_projector_reuse():
    """Several objectives against one precomputed projector."""
    A, b, _ = simple_problem()
    P = select_projector(A, b, "cholesky")

    r1 = solve(A, b, torch.tensor([1.0, 1.0]), projector=P)
    r2 = solve(A, b, torch.tensor([1.0, 3.0]), projector=P)

    assert r1.projector == r2.projector == "cholesky"
    assert torch.norm(r1.x - torch.tensor([0.0, 1.5])).item() < 1e-3
    assert torch.norm(r2.x - torch.tensor([3.0, 0.0])).item() < 1e-3


def test_projector_shape_mismatch():
    A, b, c = simple_problem()
    P = select_projector(torch.eye(3), torch.ones(3))

    with pytest.raises(DimensionMismatchError):
        solve(A, b, c, projector=P)


def test_projector_built_for_other_b():
    """A projector encodes its b; solving against another b must not reuse it."""
    A, b, c = simple_problem()
    P = select_projector(A, b)

    with pytest.raises(ProjectorMismatchError):
        solve(A, torch.tensor([10.0]), c, projector=P)
    with pytest.raises(ValueError):
        solve(A, torch.tensor([10.0]), c, projector=P)


def test_projector_dtype_mismatch():
    A, b, c = simple_problem()
    P = select_projector(A.float(), b.float())

    with pytest.raises(ProjectorMismatchError):
        solve(A, b, c, projector=P)


@pytest.mark.parametrize("variant", ["objective", "dual"])
def test_infeasible_problem_does_not_converge(variant):
    """
    x1 + x2 = -1 has no nonnegative solution. Even with a huge penalty the
    iterates stay finite; the run ends at max_iter with converged=False
    instead of raising.
    """
    A = torch.tensor([[1.0, 1.0]])
    b = torch.tensor([-1.0])
    c = torch.tensor([1.0, 1.0])

    result = solve(A, b, c, rho=1e300, rho_max=1e300, max_iter=500, variant=variant)

    assert not result.converged
    assert result.iterations == 500
    assert result.nonneg_dist > 0.1


def test_config_validation():
    with pytest.raises(ValueError):
        SolverConfig(rho=0.0)
    with pytest.raises(ValueError):
        SolverConfig(rho_inc=0.5)
    with pytest.raises(ValueError):
        SolverConfig(rho=10.0, rho_max=1.0)
    with pytest.raises(ValueError):
        SolverConfig(inc_step=0)
    with pytest.raises(ValueError):
        SolverConfig(variant="primal")
    with pytest.raises(ValueError):
        SolverConfig(projector="qr")


def test_overrides_do_not_modify_config():
    A, b, c = simple_problem()
    config = SolverConfig(max_iter=3)

    result = solve(A, b, c, config, max_iter=7)

    assert result.iterations == 7
    assert config.max_iter == 3


def test_progress_output(capsys):
    A, b, c = simple_problem()

    solve(A, b, c, quiet=False, max_iter=20, inc_step=10)
    out = capsys.readouterr().out

    assert "ProxLP Solver" in out
    assert "Iter     1" in out
    assert "Iter    20" in out
    assert "Iter    11" not in out
    assert "iteration limit" in out


def test_quiet_by_default(capsys):
    A, b, c = simple_problem()
    solve(A, b, c, max_iter=20)
    assert capsys.readouterr().out == ""
