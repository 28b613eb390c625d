"""The interface of optimization problems."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np
    from mpi4py import MPI
    from numpy.typing import NDArray


class Problem(ABC):
    r"""Abstract base class for optimization problems.

    A problem defines an objective $f_0(x)$ and $m$ inequality constraints
    $f_i(x) \le 0$ over design variables $x$ that are bounded from below and
    above. The design variables are distributed over the ranks of an MPI
    communicator, each rank owns a contiguous part of them. The constraints are
    global: each rank holds all constraint values, but only the gradients of
    the constraints with respect to its own variables.

    The [`Optimizer`][dmma.optimization.Optimizer] calls the methods of a
    problem on all ranks in the same order. Methods that fill arrays must write
    into the arrays they receive, these are the buffers of the optimizer,
    shared with its distributed vectors.

    Subclasses must implement all methods of this class.
    """

    @abstractmethod
    def get_mpi_comm(self) -> MPI.Comm:
        """Return the communicator over which the variables are distributed.

        Returns:
            The communicator.
        """

    @abstractmethod
    def get_num_vars(self) -> int:
        """Return the global number of design variables.

        Returns:
            The number of design variables over all ranks.
        """

    @abstractmethod
    def get_num_vars_local(self) -> int:
        """Return the number of design variables owned by this rank.

        Returns:
            The number of local design variables.
        """

    @abstractmethod
    def get_num_cons(self) -> int:
        """Return the number of constraints.

        Returns:
            The number of constraints.
        """

    @abstractmethod
    def get_vars_and_bounds(
        self,
        x: NDArray[np.float64],
        lb: NDArray[np.float64],
        ub: NDArray[np.float64],
    ) -> None:
        """Fill the initial design and the bounds of the local variables.

        Args:
            x:  Array to receive the initial design.
            lb: Array to receive the lower bounds.
            ub: Array to receive the upper bounds.
        """

    @abstractmethod
    def eval_obj_con(self, x: NDArray[np.float64], cons: NDArray[np.float64]) -> float:
        """Evaluate the objective and the constraints.

        Args:
            x:    The local design variables (read-only).
            cons: Array to receive the constraint values.

        Returns:
            The value of the objective.
        """

    @abstractmethod
    def eval_obj_con_grad(
        self,
        x: NDArray[np.float64],
        g: NDArray[np.float64],
        gcon: NDArray[np.float64],
    ) -> None:
        """Evaluate the gradients of the objective and the constraints.

        Args:
            x:    The local design variables (read-only).
            g:    Array to receive the objective gradient with respect to the
                  local variables.
            gcon: Array of shape `(num_cons, num_vars_local)` to receive the
                  constraint gradients with respect to the local variables.
        """
