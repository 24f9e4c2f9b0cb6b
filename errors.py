"""
Exceptions raised by the proximal-distance LP solver.
"""


class ProxLPError(Exception):
    """Base class for solver errors."""


class DimensionMismatchError(ProxLPError, ValueError):
    """Shapes of A, b, c (or a warm-start vector) are inconsistent."""


class NonFiniteObjectiveError(ProxLPError, FloatingPointError):
    """The objective c·y became inf or nan during the iteration."""

    def __init__(self, iteration: int, loss: float):
        self.iteration = iteration
        self.loss = loss
        super().__init__(
            f"Loss is not finite after {iteration} iterations (loss = {loss}); "
            "the penalty schedule or projector is unsuitable for this instance"
        )


class ProjectorMismatchError(ProxLPError, ValueError):
    """A reused projector was built for a different b, dtype or device."""


class FactorizationError(ProxLPError, RuntimeError):
    """Cholesky factorization of A Aᵗ failed (not positive definite)."""


class OracleError(ProxLPError, RuntimeError):
    """The reference LP solver did not return an optimal point."""

    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(f"reference LP solver failed (status {status}): {message}")
