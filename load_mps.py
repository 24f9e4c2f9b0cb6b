"""
MPS file parser for standard-form LP problems.
Converts to format: A, b, c  (minimize c^T x s.t. A x = b, x >= 0)
"""
import bz2
import gzip
import torch
from collections import defaultdict


def _open(filename):
    name = str(filename)
    if name.endswith('.gz'):
        return gzip.open(name, 'rt')
    if name.endswith('.bz2'):
        return bz2.open(name, 'rt')
    return open(name, 'r')


def parse_mps(filename, sparse=True, verbose=False):
    """Parse MPS file and return LP in standard form.

    Only equality rows and the default bounds x >= 0 are accepted. Anything
    else (L/G rows, RANGES, other bounds, OBJSENSE MAX) raises ValueError,
    since the problem would first need to be rewritten in standard form.

    Args:
        filename: Path to MPS file (.mps, .mps.gz or .mps.bz2)
        sparse: If True, return A as a sparse COO tensor
        verbose: Print problem statistics

    Returns:
        A (p, q), b (p,), c (q,)
    """
    with _open(filename) as f:
        lines = [line.rstrip() for line in f.readlines()]

    # Parse sections
    row_names = {}  # name -> index
    col_names = {}  # name -> index
    coeffs = defaultdict(dict)  # row_name -> {col_name -> value}
    rhs_vals = {}  # row_name -> rhs value
    free_rows = set()  # extra N rows, ignored
    obj_name = None

    section = None
    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith('*'):
            continue

        parts = line.split()
        # section headers start in column 1
        if not raw[0].isspace():
            header = parts[0]
            if header == 'NAME':
                section = None
            elif header == 'OBJSENSE':
                if len(parts) > 1 and parts[1] == 'MAX':
                    raise ValueError(f"line {lineno}: OBJSENSE MAX is not supported, negate c instead")
                section = 'OBJSENSE'
            elif header in ('ROWS', 'COLUMNS', 'RHS', 'BOUNDS'):
                section = header
            elif header == 'RANGES':
                raise ValueError(f"line {lineno}: RANGES section is not supported")
            elif header == 'ENDATA':
                break
            else:
                raise ValueError(f"line {lineno}: unknown section {header!r}")
            continue

        if section == 'OBJSENSE':
            if parts[0] == 'MAX':
                raise ValueError(f"line {lineno}: OBJSENSE MAX is not supported, negate c instead")

        elif section == 'ROWS':
            row_type, row_name = parts[0], parts[1]
            if row_type == 'N':
                # first N row is the objective, others are free rows and ignored
                if obj_name is None:
                    obj_name = row_name
                else:
                    free_rows.add(row_name)
            elif row_type == 'E':
                row_names[row_name] = len(row_names)
            else:
                raise ValueError(
                    f"line {lineno}: row {row_name!r} has type {row_type}; only equality rows are supported"
                )

        elif section == 'COLUMNS':
            if 'MARKER' in parts:
                raise ValueError(f"line {lineno}: integer markers are not supported")
            col_name = parts[0]
            if col_name not in col_names:
                col_names[col_name] = len(col_names)

            # Can have 2 or 4 entries: col_name row1 val1 [row2 val2]
            for i in range(1, len(parts) - 1, 2):
                coeffs[parts[i]][col_name] = float(parts[i + 1])

        elif section == 'RHS':
            # RHS line: rhs_name row1 val1 [row2 val2]; the set name may be omitted
            fields = parts[1:] if len(parts) % 2 == 1 else parts
            for i in range(0, len(fields) - 1, 2):
                rhs_vals[fields[i]] = float(fields[i + 1])

        elif section == 'BOUNDS':
            bound_type = parts[0]
            value = float(parts[3]) if len(parts) >= 4 else None
            if bound_type == 'PL' or (bound_type == 'LO' and value == 0.0):
                continue
            raise ValueError(
                f"line {lineno}: bound {bound_type} {value if value is not None else ''} "
                "is not supported; only x >= 0 is allowed"
            )

    # Build tensors
    q = len(col_names)
    p = len(row_names)

    known_rows = set(row_names) | free_rows | {obj_name}
    for row_name in list(coeffs) + list(rhs_vals):
        if row_name not in known_rows:
            raise ValueError(f"unknown row {row_name!r} referenced in COLUMNS or RHS")

    # Objective
    c = torch.zeros(q)
    if obj_name:
        for col_name, val in coeffs[obj_name].items():
            c[col_names[col_name]] = val

    b = torch.zeros(p)
    for row_name, i in row_names.items():
        b[i] = rhs_vals.get(row_name, 0.0)

    A_rows, A_cols, A_vals = [], [], []
    for row_name, i in row_names.items():
        for col_name, val in coeffs[row_name].items():
            A_rows.append(i)
            A_cols.append(col_names[col_name])
            A_vals.append(val)

    if sparse:
        A = torch.sparse_coo_tensor(
            torch.tensor([A_rows, A_cols], dtype=torch.long).reshape(2, -1),
            torch.tensor(A_vals, dtype=c.dtype),
            (p, q)
        ).coalesce()
    else:
        A = torch.zeros(p, q)
        if A_vals:
            A[A_rows, A_cols] = torch.tensor(A_vals, dtype=c.dtype)

    if verbose:
        nnz = len(A_vals)
        density = nnz / (p * q) if p * q > 0 else 0
        print(f"Building tensors: {p} equality constraints, {q} variables...")
        print(f"Nonzeros: {nnz:,} (density {density*100:.4f}%)")

    return A, b, c
