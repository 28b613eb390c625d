"""Enumerations used within the `dmma` library."""

from enum import IntEnum, StrEnum


class NormType(IntEnum):
    """Enumerates the vector norms supported by distributed vectors.

    Used by [`DistributedVector.norm`][dmma.linalg.DistributedVector.norm],
    which computes the norm over the global vector by a reduction across all
    ranks of the communicator.
    """

    L1 = 1
    r"The sum of absolute values: $\sum_i |v_i|$."

    L2 = 2
    r"The Euclidean norm: $\sqrt{\sum_i v_i^2}$."

    INFINITY = 3
    r"The maximum absolute value: $\max_i |v_i|$."


class Stage(StrEnum):
    """Enumerates the stages of an optimization run.

    Errors raised while running an optimization are tagged with the stage in
    which they occurred (see
    [`OptimizationError`][dmma.exceptions.OptimizationError]), so that callers
    can tell an evaluator failure from a failure of the subproblem solver.
    """

    INITIALIZE = "initialize"
    """Reading the initial design and bounds from the problem."""

    CREATE_SOLVER = "create_solver"
    """Creating the subproblem solver."""

    EVALUATE_FUNCTIONS = "evaluate_functions"
    """Evaluating the objective and the constraints."""

    EVALUATE_GRADIENTS = "evaluate_gradients"
    """Evaluating the objective gradient and the constraint Jacobian."""

    MOVE_LIMIT = "move_limit"
    """Computing the move-limit box."""

    UPDATE = "update"
    """Solving the subproblem and updating the design."""

    KKT_RESIDUAL = "kkt_residual"
    """Computing the KKT residual."""

    DIAGNOSTICS = "diagnostics"
    """Computing the design norm and the constraint violation."""

    REPORT = "report"
    """Writing the iteration log."""

    CALLBACK = "callback"
    """Calling the results callback."""


class ExitCode(IntEnum):
    """Enumerates the reasons for terminating an optimization."""

    UNKNOWN = 0
    """Unknown cause of termination."""

    NO_ITERATIONS = 1
    """Returned when no iterations were requested."""

    MAX_ITERATIONS_REACHED = 2
    """Returned when the requested number of iterations has been performed."""
