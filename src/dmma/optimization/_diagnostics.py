"""Per-iteration diagnostics."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import ArrayLike


@dataclass(frozen=True, slots=True)
class IterationRecord:
    """The diagnostics of a single iteration.

    Attributes:
        iteration:     The iteration number, starting at zero for each call of
                       [`optimize`][dmma.optimization.Optimizer.optimize].
        objective:     The objective value at the start of the iteration.
        kkt_l2:        The L2 norm of the KKT residual after the update.
        kkt_linf:      The infinity norm of the KKT residual after the update.
        x_l1:          The L1 norm of the updated design.
        infeasibility: The maximum constraint violation at the start of the
                       iteration.
    """

    iteration: int
    objective: float
    kkt_l2: float
    kkt_linf: float
    x_l1: float
    infeasibility: float


def max_constraint_violation(cons: ArrayLike) -> float:
    """Return the maximum violation of the constraints.

    Constraints are satisfied when their value is less than or equal to zero.
    The violation of a constraint is its value if positive, and zero
    otherwise. Hence the result is never negative, and zero if all constraints
    are satisfied, or if there are no constraints.

    The constraint values are replicated on all ranks, no communication is
    needed.

    Args:
        cons: The constraint values.

    Returns:
        The maximum constraint violation.
    """
    return float(np.max(np.asarray(cons, dtype=np.float64), initial=0.0))
