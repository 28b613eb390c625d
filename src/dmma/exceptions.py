"""Exceptions raised within the `dmma` library."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .enums import Stage


class DMMAError(Exception):
    """Base class for all errors raised by `dmma`."""


class AllocationError(DMMAError):
    """Raised when distributed storage cannot be created or released.

    This covers distributed vectors whose local sizes do not add up to the
    global size, buffers that cannot back a vector, and violations of the
    destruction order between vector bindings and the buffers they alias.
    """


class VectorDestroyedError(DMMAError):
    """Raised when a destroyed distributed vector is used."""


class OptimizationError(DMMAError):
    """Base class for errors that abort an optimization run.

    The error is tagged with the [`Stage`][dmma.enums.Stage] in which the
    failure occurred and the iteration that was running, if any. The original
    exception, if there is one, is available via the `__cause__` attribute. The
    message without the stage tag is stored in the `reason` attribute.

    Note: Partial results
        An optimization that is aborted does not roll back the design. Any
        values already written into the shared design buffer remain visible to
        the caller.
    """

    def __init__(
        self, message: str, *, stage: Stage, iteration: int | None = None
    ) -> None:
        """Initialize the exception.

        Args:
            message:   The error message.
            stage:     The stage that failed.
            iteration: The iteration that was running, if any.
        """
        self.reason = message
        self.stage = stage
        self.iteration = iteration
        where = f"{stage}" if iteration is None else f"{stage}, iteration {iteration}"
        super().__init__(f"{message} [{where}]")


class EvaluationError(OptimizationError):
    """Raised when the problem fails to evaluate functions or gradients."""


class SolverError(OptimizationError):
    """Raised when the subproblem solver fails."""


class LinearAlgebraError(OptimizationError):
    """Raised when a distributed vector operation fails during optimization."""
