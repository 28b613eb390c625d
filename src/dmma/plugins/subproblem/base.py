"""This module defines base classes for subproblem solver plugins."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from dmma.plugins.base import Plugin

from .utils import set_outer_move_limit

if TYPE_CHECKING:
    import numpy as np
    from mpi4py import MPI
    from numpy.typing import NDArray

    from dmma.linalg import DistributedVector


class SubproblemSolver(ABC):
    """Abstract base class for subproblem solvers.

    A subproblem solver computes the next design of a gradient-based
    optimization from the current design, the function values and gradients,
    and a box of temporary bounds. It is stateful: it may keep the history of
    previous iterates, for instance to adapt its approximations.

    Solvers are created by their
    [`SubproblemSolverPlugin`][dmma.plugins.subproblem.base.SubproblemSolverPlugin]
    for each call of [`optimize`][dmma.optimization.Optimizer.optimize], and
    destroyed when that call finishes.

    All methods are called on all ranks in the same order, and may perform
    collective operations.

    Subclasses must implement:
    - `update`:       To compute the next design.
    - `kkt_residual`: To measure the optimality of the design.

    Subclasses can optionally override:
    - `set_outer_move_limit`: To compute the box of temporary bounds.
    - `destroy`:              To release resources.
    """

    def __init__(  # noqa: B027
        self,
        comm: MPI.Comm,
        num_vars: int,
        num_cons: int,
        x: DistributedVector,
        options: dict[str, Any] | None,
    ) -> None:
        """Initialize a subproblem solver.

        Args:
            comm:     The communicator over which the variables are distributed.
            num_vars: The global number of design variables.
            num_cons: The number of constraints.
            x:        The initial design.
            options:  Solver specific options.
        """

    def set_outer_move_limit(  # noqa: PLR0913
        self,
        lb: DistributedVector,
        ub: DistributedVector,
        fraction: float,
        x: DistributedVector,
        lb_temp: DistributedVector,
        ub_temp: DistributedVector,
    ) -> None:
        """Compute the box of temporary bounds for the next update.

        The default implementation applies
        [`set_outer_move_limit`][dmma.plugins.subproblem.utils.set_outer_move_limit].

        Args:
            lb:       The lower bounds of the variables.
            ub:       The upper bounds of the variables.
            fraction: The move limit, as a fraction of the bound range.
            x:        The current design.
            lb_temp:  Vector to receive the temporary lower bounds.
            ub_temp:  Vector to receive the temporary upper bounds.
        """
        set_outer_move_limit(lb, ub, fraction, x, lb_temp, ub_temp)

    @abstractmethod
    def update(  # noqa: PLR0913
        self,
        x: DistributedVector,
        g: DistributedVector,
        cons: NDArray[np.float64],
        gcon: tuple[DistributedVector, ...],
        lb_temp: DistributedVector,
        ub_temp: DistributedVector,
    ) -> None:
        """Compute the next design, overwriting `x`.

        Args:
            x:       The current design, overwritten with the next design.
            g:       The gradient of the objective.
            cons:    The constraint values.
            gcon:    The gradients of the constraints.
            lb_temp: The temporary lower bounds.
            ub_temp: The temporary upper bounds.
        """

    @abstractmethod
    def kkt_residual(  # noqa: PLR0913
        self,
        x: DistributedVector,
        g: DistributedVector,
        cons: NDArray[np.float64],
        gcon: tuple[DistributedVector, ...],
        lb_temp: DistributedVector,
        ub_temp: DistributedVector,
    ) -> tuple[float, float]:
        """Compute the residual of the KKT conditions.

        Called after [`update`][dmma.plugins.subproblem.base.SubproblemSolver.update]
        with the same arguments, where `x` now holds the updated design.

        Args:
            x:       The updated design.
            g:       The gradient of the objective.
            cons:    The constraint values.
            gcon:    The gradients of the constraints.
            lb_temp: The temporary lower bounds.
            ub_temp: The temporary upper bounds.

        Returns:
            The L2 and infinity norms of the residual.
        """

    def destroy(self) -> None:  # noqa: B027
        """Release the resources held by the solver."""


class SubproblemSolverPlugin(Plugin):
    """Abstract Base Class for subproblem solver plugins.

    This class defines the interface for plugins responsible for creating
    [`SubproblemSolver`][dmma.plugins.subproblem.base.SubproblemSolver]
    instances. The [`PluginManager`][dmma.plugins.PluginManager] finds the
    plugin based on the `method` field of the
    [`OptimizerConfig`][dmma.config.OptimizerConfig], and uses its `create`
    class method to instantiate the solver.
    """

    @classmethod
    @abstractmethod
    def create(  # noqa: PLR0913
        cls,
        method: str,
        comm: MPI.Comm,
        num_vars: int,
        num_cons: int,
        x: DistributedVector,
        options: dict[str, Any] | None,
    ) -> SubproblemSolver:
        """Create a subproblem solver.

        Args:
            method:   The name of the method to create.
            comm:     The communicator over which the variables are distributed.
            num_vars: The global number of design variables.
            num_cons: The number of constraints.
            x:        The initial design.
            options:  Solver specific options.

        Returns:
            An initialized instance of a `SubproblemSolver` subclass.
        """

    @classmethod
    def validate_options(cls, method: str, options: dict[str, Any] | None) -> None:
        """Validate the solver-specific options for a given method.

        This default implementation performs no validation.

        Args:
            method:  The specific method name.
            options: The dictionary of options.

        Raises:
            Exception: If the provided options are invalid for the specified
                       method.
        """
