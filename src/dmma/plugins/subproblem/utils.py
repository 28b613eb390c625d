"""Utility functions for use by subproblem solver plugins."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from dmma.linalg import DistributedVector


def set_outer_move_limit(  # noqa: PLR0913
    lb: DistributedVector,
    ub: DistributedVector,
    fraction: float,
    x: DistributedVector,
    lb_temp: DistributedVector,
    ub_temp: DistributedVector,
) -> None:
    r"""Compute a box of temporary bounds around the current design.

    The temporary bounds restrict how far each variable may move in a single
    iteration. For each local variable $i$, with $f$ the move-limit fraction:

    $$
    \begin{align}
        l^\text{temp}_i &= \max(l_i, x_i - f (u_i - l_i)) \\
        u^\text{temp}_i &= \min(u_i, x_i + f (u_i - l_i))
    \end{align}
    $$

    The box is always contained in the box of the permanent bounds. If the
    bounds of a variable coincide, its box collapses to that single point.
    Only local values are involved, no communication takes place.

    Args:
        lb:       The lower bounds.
        ub:       The upper bounds.
        fraction: The move-limit fraction.
        x:        The current design.
        lb_temp:  Vector to receive the temporary lower bounds.
        ub_temp:  Vector to receive the temporary upper bounds.
    """
    step = fraction * (ub.array - lb.array)
    np.maximum(lb.array, x.array - step, out=lb_temp.array)
    np.minimum(ub.array, x.array + step, out=ub_temp.array)
