"""
Benchmark the ProxLP solver across projector back-ends and update variants.

Random feasible, bounded instances:
    dense:  A = randn(p, q), b = A x_feas with x_feas >= 0, c = rand(q)
    sparse: A = [sprandn(p, q - p) | I_p], full row rank by construction

When SciPy is installed each run is also compared to the HiGHS optimum.

Usage:
    python benchmark.py [--device cpu|cuda] [--sizes small|medium|large]
"""

import argparse
import dataclasses
import time

import torch

from errors import OracleError, ProxLPError
from proxlp import SolverConfig, solve

torch.set_default_dtype(torch.float64)


def create_dense_problem(p, q, seed=2016):
    """Dense Gaussian A with a nonnegative feasible point and positive costs."""
    gen = torch.Generator().manual_seed(seed)
    A = torch.randn(p, q, generator=gen)
    x_feas = torch.clamp(torch.randn(q, generator=gen), min=0.0)
    b = A @ x_feas
    c = torch.rand(q, generator=gen)
    return A, b, c


def create_sparse_problem(p, q, density=None, seed=2016):
    """
    Sparse A = [R | I] with R Gaussian on a random pattern of the given density
    (default 2 log10(p) / p). The identity block keeps A A^T nonsingular.
    """
    if q <= p:
        raise ValueError(f"sparse instances need q > p, got p={p}, q={q}")
    gen = torch.Generator().manual_seed(seed)
    if density is None:
        density = min(1.0, 2.0 * torch.log10(torch.tensor(float(p))).item() / p)

    n_free = q - p
    nnz = max(1, int(density * p * n_free))
    rows = torch.randint(0, p, (nnz,), generator=gen)
    cols = torch.randint(0, n_free, (nnz,), generator=gen)
    vals = torch.randn(nnz, generator=gen)

    eye = torch.arange(p)
    indices = torch.stack([torch.cat([rows, eye]), torch.cat([cols, eye + n_free])])
    values = torch.cat([vals, torch.ones(p)])
    A = torch.sparse_coo_tensor(indices, values, (p, q)).coalesce()

    x_feas = torch.rand(q, generator=gen)
    b = torch.sparse.mm(A, x_feas.unsqueeze(1)).squeeze(1)
    c = torch.rand(q, generator=gen)
    return A, b, c


def reference_solution(A, b, c):
    """HiGHS optimum, or None when SciPy is missing or HiGHS fails."""
    try:
        from oracle import solve_lp
        return solve_lp(A, b, c)
    except ModuleNotFoundError:
        return None
    except OracleError as e:
        print(f"  Reference solver failed: {e}")
        return None


def benchmark(label, A, b, c, device_name, projector, variant, config):
    """Run one solve and return a summary row."""
    device = torch.device(device_name)
    A, b, c = A.to(device), b.to(device), c.to(device)

    print(f"\n--- {label}: projector={projector}, variant={variant} ---")

    if device.type == 'cuda':
        torch.cuda.synchronize()
    start = time.time()
    try:
        result = solve(A, b, c, dataclasses.replace(config, projector=projector, variant=variant))
    except ProxLPError as e:
        print(f"  Failed: {e}")
        return (label, projector, variant, None, None, None, None)
    if device.type == 'cuda':
        torch.cuda.synchronize()
    elapsed = time.time() - start

    x = result.x
    if A.layout == torch.strided:
        affine_residual = torch.linalg.vector_norm(A @ x - b).item()
    else:
        affine_residual = torch.linalg.vector_norm(torch.sparse.mm(A, x.unsqueeze(1)).squeeze(1) - b).item()

    status = "converged" if result.converged else "iteration_limit"
    print(f"  {elapsed:.3f}s - {status} (obj: {result.obj:.6e}, iters: {result.iterations}, ||Ax-b||: {affine_residual:.3e})")
    return (label, projector, variant, elapsed, result.iterations, result.obj, x)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="ProxLP benchmark")
    parser.add_argument('--device', choices=['cpu', 'cuda'], default='cpu')
    parser.add_argument('--sizes', choices=['small', 'medium', 'large'], default='small')
    args = parser.parse_args()

    if args.device == 'cuda' and not torch.cuda.is_available():
        print("✗ No CUDA GPU available, using CPU")
        args.device = 'cpu'

    print("ProxLP Solver Benchmark")
    print("=" * 60)

    scale = {'small': 1, 'medium': 4, 'large': 16}[args.sizes]
    problems = [
        ("Dense", *create_dense_problem(25 * scale, 50 * scale), ['pinv', 'cholesky', 'iterative']),
        ("Sparse", *create_sparse_problem(64 * scale, 128 * scale), ['cholesky', 'iterative']),
    ]

    config = SolverConfig(max_iter=20000, inc_step=100, rho_inc=2.0)
    results = []

    for label, A, b, c, projectors in problems:
        p, q = A.shape
        print(f"\n\n{'='*60}")
        print(f"{label} Problem: {p} equalities, {q} variables")
        print(f"{'='*60}")

        ref = reference_solution(A, b, c)
        if ref is not None:
            print(f"  Reference objective (HiGHS): {ref.obj:.6e}")

        for projector in projectors:
            for variant in ['objective', 'dual']:
                row = benchmark(label, A, b, c, args.device, projector, variant, config)
                dist = None
                if ref is not None and row[-1] is not None:
                    dist = torch.linalg.vector_norm(row[-1].cpu() - ref.x).item()
                results.append(row[:-1] + (dist,))

    # Summary
    print("\n\n" + "="*60)
    print("SUMMARY")
    print("="*60)
    print(f"{'Problem':<10} {'Projector':<12} {'Variant':<12} {'Time (s)':<10} {'Iters':<8} {'Objective':<16} {'||x-x*||':<10}")
    print("-"*80)
    for label, projector, variant, elapsed, iters, obj, dist in results:
        if elapsed is None:
            print(f"{label:<10} {projector:<12} {variant:<12} {'failed':<10}")
            continue
        dist_str = f"{dist:.3e}" if dist is not None else "N/A"
        print(f"{label:<10} {projector:<12} {variant:<12} {elapsed:<10.3f} {iters:<8} {obj:<16.6e} {dist_str:<10}")
