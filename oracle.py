"""
Reference LP solutions from SciPy's HiGHS interface.

Used by the tests and the benchmark to check the proximal distance solver
against an exact method. SciPy is an optional dependency (the "oracle" extra)
and is imported on first use.
"""

from typing import NamedTuple

import torch

from errors import OracleError


class OracleSolution(NamedTuple):
    x: torch.Tensor
    obj: float


def solve_lp(A: torch.Tensor, b: torch.Tensor, c: torch.Tensor, method: str = "highs") -> OracleSolution:
    """
    Solve min c^T x s.t. A x = b, x >= 0 with scipy.optimize.linprog.

    A may be dense or sparse; sparse A is passed to SciPy as a COO matrix.
    The returned x has c's dtype and device.

    Raises OracleError when the problem is infeasible, unbounded or the solver
    fails (scipy status != 0).
    """
    import numpy as np
    from scipy.optimize import linprog
    from scipy.sparse import coo_matrix

    if A.layout != torch.strided:
        A_coo = A.detach().to_sparse_coo().coalesce().cpu()
        idx = A_coo.indices().numpy()
        A_eq = coo_matrix(
            (A_coo.values().double().numpy(), (idx[0], idx[1])), shape=tuple(A.shape)
        )
    else:
        A_eq = A.detach().cpu().double().numpy()

    b_eq = b.detach().cpu().double().numpy()
    c_np = c.detach().cpu().double().numpy()

    res = linprog(c_np, A_eq=A_eq, b_eq=b_eq, bounds=(0, None), method=method)
    if res.status != 0:
        raise OracleError(res.status, res.message)

    x = torch.as_tensor(np.asarray(res.x), dtype=c.dtype, device=c.device)
    return OracleSolution(x, float(res.fun))
