#!/usr/bin/env python3
"""
ProxLP Solver - Command Line Interface

Accelerated proximal distance solver for standard-form linear programs
(minimize c^T x subject to A x = b, x >= 0).

Usage:
    python cli.py problem.mps [options]
    python cli.py problem.mps --projector cholesky --variant dual --output solution.sol

Exit codes:
    0 = converged
    3 = iteration limit reached
    5 = numerical error (non-finite objective, failed factorization)
    6 = other error
"""

import argparse
import os
import sys
import time
from pathlib import Path

import torch

from errors import FactorizationError, NonFiniteObjectiveError
from load_mps import parse_mps
from proxlp import PROJECTOR_METHODS, VARIANTS, SolverConfig, solve


def write_solution_file(result, status, output_path, problem_name):
    """
    Write solution in .sol format: objective line, status comments, then one
    "x<i> value" line per variable.
    """
    with open(output_path, 'w') as f:
        f.write(f"=obj= {result.obj}\n")
        f.write(f"# Problem: {problem_name}\n")
        f.write(f"# Status: {status}\n")
        f.write(f"# Objective: {result.obj}\n")
        f.write(f"# Iterations: {result.iterations}\n")
        f.write(f"# Solve time: {result.solve_time_sec:.2f}s\n")
        f.write(f"# Projector: {result.projector}\n")
        f.write(f"# Final rho: {result.rho:.6e}\n")
        f.write(f"# Distance to nonnegative set: {result.nonneg_dist:.6e}\n")
        if result.affine_dist is not None:
            f.write(f"# Distance to affine set: {result.affine_dist:.6e}\n")

        f.write("\n")

        for i, val in enumerate(result.x.cpu().tolist()):
            f.write(f"x{i} {val:.17e}\n")


def status_to_exit_code(status):
    """Convert solver status to exit code."""
    if status == "converged":
        return 0
    elif status == "iteration_limit":
        return 3
    elif status == "numerical_error":
        return 5
    else:
        return 6


def format_time(seconds):
    """Format time in human-readable format."""
    if seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        return f"{seconds/60:.1f}min"
    else:
        return f"{seconds/3600:.2f}hr"


def build_parser():
    parser = argparse.ArgumentParser(
        prog="proxlp",
        description="ProxLP: accelerated proximal distance solver for standard-form LP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python cli.py problem.mps
  python cli.py problem.mps --projector iterative --max-iter 50000
  python cli.py problem.mps --variant dual --rho 1e-2 --inc-step 5 --verbose
  python cli.py problem.mps.gz --dense --device cpu

The MPS file must be in standard form: equality rows only and the
default bounds x >= 0.
        """
    )

    # Required arguments
    parser.add_argument(
        'mps_file',
        type=str,
        help='Path to MPS file (supports .mps, .mps.gz, .mps.bz2)'
    )

    defaults = SolverConfig()

    # Algorithm
    parser.add_argument(
        '--projector', '-p',
        choices=PROJECTOR_METHODS,
        default=defaults.projector,
        help='Affine projector back-end (default: auto)'
    )
    parser.add_argument(
        '--variant',
        choices=VARIANTS,
        default=defaults.variant,
        help='Update rule (default: objective)'
    )

    # Penalty schedule
    parser.add_argument('--rho', type=float, default=defaults.rho,
                        help=f'Initial penalty weight (default: {defaults.rho})')
    parser.add_argument('--rho-inc', type=float, default=defaults.rho_inc,
                        help=f'Penalty increase factor (default: {defaults.rho_inc})')
    parser.add_argument('--rho-max', type=float, default=defaults.rho_max,
                        help=f'Penalty cap (default: {defaults.rho_max:.0e})')
    parser.add_argument('--inc-step', type=int, default=defaults.inc_step,
                        help=f'Iterations between penalty increases (default: {defaults.inc_step})')
    parser.add_argument('--max-iter', '-i', type=int, default=defaults.max_iter,
                        help=f'Iteration limit (default: {defaults.max_iter})')

    # Tolerances
    parser.add_argument('--tol', '--eps', '-e', type=float, default=defaults.tol,
                        help=f'Relative step tolerance (default: {defaults.tol:.0e})')
    parser.add_argument('--afftol', type=float, default=defaults.afftol,
                        help=f'Affine distance tolerance, dual variant (default: {defaults.afftol:.0e})')
    parser.add_argument('--nnegtol', type=float, default=defaults.nnegtol,
                        help=f'Nonnegativity distance tolerance (default: {defaults.nnegtol:.0e})')

    # Device selection
    parser.add_argument(
        '--device', '-d',
        type=str,
        choices=['cpu', 'cuda', 'auto'],
        default='auto',
        help='Device to use: cpu, cuda, or auto (default: auto)'
    )

    parser.add_argument(
        '--dense',
        action='store_true',
        help='Use a dense constraint matrix (default: sparse)'
    )

    # Output options
    parser.add_argument(
        '--output', '-o',
        type=str,
        default=None,
        help='Output solution file path (default: <mps_name>.sol)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Print detailed iteration progress'
    )

    parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Suppress all output except errors'
    )
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    # Validate MPS file exists
    if not os.path.exists(args.mps_file):
        print(f"Error: MPS file not found: {args.mps_file}", file=sys.stderr)
        return 6

    try:
        config = SolverConfig(
            rho=args.rho,
            rho_inc=args.rho_inc,
            rho_max=args.rho_max,
            max_iter=args.max_iter,
            inc_step=args.inc_step,
            tol=args.tol,
            afftol=args.afftol,
            nnegtol=args.nnegtol,
            variant=args.variant,
            projector=args.projector,
            quiet=args.quiet or not args.verbose,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 6

    # Determine device
    if args.device == 'auto':
        device = 'cuda' if torch.cuda.is_available() else 'cpu'
    else:
        device = args.device
        if device == 'cuda' and not torch.cuda.is_available():
            print("Warning: CUDA requested but not available, using CPU", file=sys.stderr)
            device = 'cpu'

    use_sparse = not args.dense

    # Determine output path
    if args.output is None:
        name = Path(args.mps_file).name
        # Remove all extensions (.mps.gz -> '')
        while '.' in name:
            name = name.rsplit('.', 1)[0]
        output_path = f"{name}.sol"
    else:
        output_path = args.output

    problem_name = Path(args.mps_file).name

    # Print header (unless quiet)
    if not args.quiet:
        print("="*80)
        print("ProxLP Solver - Proximal Distance Linear Programming")
        print("="*80)
        print(f"Problem: {problem_name}")
        print(f"Device: {device.upper()}")
        if device == 'cuda':
            print(f"GPU: {torch.cuda.get_device_name(0)}")
        print(f"Sparse format: {use_sparse}")
        print(f"Projector: {config.projector}, variant: {config.variant}")
        print(f"Tolerance: {config.tol:.0e}")
        print(f"Iteration limit: {config.max_iter:,}")
        print("="*80)

    # Load MPS file
    try:
        if not args.quiet:
            print("\nLoading MPS file...")
        load_start = time.time()
        A, b, c = parse_mps(args.mps_file, sparse=use_sparse)
        load_time = time.time() - load_start

        if not args.quiet:
            print(f"  Load time: {load_time:.2f}s")
            print(f"  Variables: {A.shape[1]:,}")
            print(f"  Equality constraints: {A.shape[0]:,}")
            if use_sparse:
                nnz = A._nnz()
                total_elements = A.shape[0] * A.shape[1]
                density = nnz / total_elements if total_elements > 0 else 0
                print(f"  Nonzeros: {nnz:,}")
                print(f"  Density: {density*100:.4f}%")

    except (OSError, ValueError) as e:
        print(f"Error loading MPS file: {e}", file=sys.stderr)
        return 6

    # Move to device
    device_obj = torch.device(device)
    A = A.to(device_obj)
    b = b.to(device_obj)
    c = c.to(device_obj)

    # Solve
    try:
        if not args.quiet:
            print(f"\n{'='*80}")
            print("SOLVING")
            print(f"{'='*80}")

        result = solve(A, b, c, config)

        if device == 'cuda':
            torch.cuda.synchronize()

    except (NonFiniteObjectiveError, FactorizationError) as e:
        print(f"Numerical error during solve: {e}", file=sys.stderr)
        return status_to_exit_code("numerical_error")
    except Exception as e:
        print(f"Error during solve: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 6

    status = "converged" if result.converged else "iteration_limit"

    # Print results
    if not args.quiet:
        print(f"\n{'='*80}")
        print("RESULTS")
        print(f"{'='*80}")
        print(f"Status: {status}")
        print(f"Solve time: {format_time(result.solve_time_sec)}")
        print(f"Iterations: {result.iterations:,}")
        print(f"Objective: {result.obj:.10e}")
        print(f"Distance to nonnegative set: {result.nonneg_dist:.6e}")
        if result.affine_dist is not None:
            print(f"Distance to affine set: {result.affine_dist:.6e}")
        print(f"Final rho: {result.rho:.3e}")

        if result.converged:
            print("\n✓ Converged!")
        else:
            print("\n⚠ Iteration limit reached (solution may be inaccurate)")

    # Write solution file
    try:
        write_solution_file(result, status, output_path, problem_name)
        if not args.quiet:
            print(f"\n✓ Solution written to: {output_path}")
    except OSError as e:
        print(f"Warning: Could not write solution file: {e}", file=sys.stderr)

    # Return appropriate exit code
    exit_code = status_to_exit_code(status)
    if not args.quiet:
        print(f"\nExit code: {exit_code}")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
