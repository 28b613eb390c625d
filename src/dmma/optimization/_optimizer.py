"""The optimization driver."""

from __future__ import annotations

import logging
import weakref
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, Self

from dmma.config import OptimizerConfig
from dmma.enums import ExitCode, NormType, Stage
from dmma.exceptions import (
    AllocationError,
    EvaluationError,
    LinearAlgebraError,
    OptimizationError,
    SolverError,
)
from dmma.linalg import AliasedBufferSet, DistributedVector
from dmma.plugins import PluginManager
from dmma.report._log import IterationLog

from ._diagnostics import IterationRecord, max_constraint_violation

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path
    from types import TracebackType

    import numpy as np
    from mpi4py import MPI
    from numpy.typing import NDArray

    from dmma.linalg import VectorBindings
    from dmma.plugins.subproblem.base import SubproblemSolver
    from dmma.problem import Problem

_logger = logging.getLogger(__name__)

_STAGE_ERRORS: Final[dict[Stage, type[Exception]]] = {
    Stage.INITIALIZE: EvaluationError,
    Stage.CREATE_SOLVER: SolverError,
    Stage.EVALUATE_FUNCTIONS: EvaluationError,
    Stage.EVALUATE_GRADIENTS: EvaluationError,
    Stage.MOVE_LIMIT: LinearAlgebraError,
    Stage.UPDATE: SolverError,
    Stage.KKT_RESIDUAL: SolverError,
    Stage.DIAGNOSTICS: LinearAlgebraError,
    Stage.REPORT: OSError,
    Stage.CALLBACK: OptimizationError,
}

# Problems driven by a live optimizer:
_attached_problems: weakref.WeakSet[Problem] = weakref.WeakSet()


@dataclass(slots=True)
class OptimizationResult:
    """The result of a call to [`optimize`][dmma.optimization.Optimizer.optimize].

    Attributes:
        exit_code:  The reason for terminating the optimization.
        iterations: The number of iterations performed.
        records:    The diagnostics of each iteration.
        variables:  The design buffer of the optimizer, holding the local part
                    of the final design. This is not a copy, it is only valid
                    until the optimizer is closed.
    """

    exit_code: ExitCode
    iterations: int
    variables: NDArray[np.float64]
    records: list[IterationRecord] = field(default_factory=list)


class Optimizer:
    """Drive a distributed gradient-based optimization.

    The `Optimizer` runs the outer loop of an optimization of a
    [`Problem`][dmma.problem.Problem] whose design variables are distributed
    over the ranks of an MPI communicator. It owns the buffers holding the
    design, the bounds, the constraint values and the gradients, and a set of
    [`DistributedVector`][dmma.linalg.DistributedVector] objects that alias
    these buffers without copying.

    Each iteration consists of these steps:

    1. Evaluate the objective and the constraints.
    2. Evaluate their gradients.
    3. Compute a move-limit box around the current design, a fraction of the
       bound range wide (see
       [`set_outer_move_limit`][dmma.plugins.subproblem.utils.set_outer_move_limit]).
    4. Compute the next design with the subproblem solver.
    5. Compute the KKT residual of the new design.
    6. Compute the L1 norm of the design and the constraint violation.
    7. Write an [`IterationRecord`][dmma.optimization.IterationRecord] to the
       iteration log, and report it to the results callback, if any.

    The subproblem solver is found by the
    [`PluginManager`][dmma.plugins.PluginManager] according to the `method`
    field of the [`OptimizerConfig`][dmma.config.OptimizerConfig]. By default
    the built-in MMA solver is used.

    All methods of the optimizer must be called on all ranks of the
    communicator, in the same order.

    Note: Error handling
        Each step runs under a guard that checks collectively whether it
        failed on any rank. If so, an
        [`OptimizationError`][dmma.exceptions.OptimizationError] tagged with
        the failing [`Stage`][dmma.enums.Stage] is raised on all ranks. Ranks
        that did not fail raise an error of the same class, naming the ranks
        that failed. A failure inside a collective operation can not be
        detected this way, since the other ranks are blocked in the collective
        operation. Set the `abort_on_error` option of the configuration to
        abort the whole MPI job as soon as any rank fails.

        The design is not restored on failure: values written into the
        design buffer before the failure remain visible.

    The optimizer holds resources that must be released by calling
    [`close`][dmma.optimization.Optimizer.close], or by using it as a context
    manager:

    ```py
    with Optimizer(problem, "optimization.log") as optimizer:
        result = optimizer.optimize(50)
        design = result.variables.copy()
    ```
    """

    def __init__(
        self,
        problem: Problem,
        log_path: Path | str,
        config: OptimizerConfig | dict[str, Any] | None = None,
        *,
        plugin_manager: PluginManager | None = None,
    ) -> None:
        """Initialize the optimizer.

        The constructor queries the sizes of the problem, allocates the
        buffers, binds the distributed vectors to them and opens the iteration
        log. This is a collective operation.

        Args:
            problem:        The problem to optimize.
            log_path:       The path of the iteration log.
            config:         The configuration, or a dictionary to validate.
            plugin_manager: The plugin manager used to find the solver.

        Raises:
            RuntimeError:    If the problem is already driven by an optimizer.
            AllocationError: If the buffers or vectors cannot be created.
            OSError:         If the iteration log cannot be opened.
        """
        if problem in _attached_problems:
            msg = "The problem is already driven by another optimizer"
            raise RuntimeError(msg)

        self._config = (
            config
            if isinstance(config, OptimizerConfig)
            else OptimizerConfig.model_validate(config or {})
        )
        self._plugin_manager = (
            PluginManager() if plugin_manager is None else plugin_manager
        )
        self._plugin = self._plugin_manager.get_plugin(
            "subproblem_solver", self._config.method
        )
        self._plugin.validate_options(self._config.method, self._config.options)

        self._problem = problem
        self._comm: MPI.Comm = problem.get_mpi_comm()
        self._num_vars = problem.get_num_vars()
        self._num_cons = problem.get_num_cons()
        num_vars_local = problem.get_num_vars_local()

        with self._stage(Stage.INITIALIZE, error_type=AllocationError):
            self._buffers = AliasedBufferSet(num_vars_local, self._num_cons)
        try:
            self._vectors = self._buffers.bind_vectors(self._comm, self._num_vars)
        except AllocationError:
            self._buffers.release()
            raise
        try:
            self._log = IterationLog(
                log_path,
                comm=self._comm,
                header_interval=self._config.header_interval,
            )
        except OSError:
            self._vectors.destroy()
            self._buffers.release()
            raise

        # The problem receives a read-only view of the design:
        self._x_view = self._buffers.x.view()
        self._x_view.flags.writeable = False

        self._initialized = False
        self._closed = False
        self._results_callback: Callable[[IterationRecord], None] | None = None
        _attached_problems.add(problem)
        # Releases the resources of an optimizer that is dropped without closing:
        self._finalizer = weakref.finalize(
            self, _release, self._log, self._vectors, self._buffers, problem
        )

        msg = (
            f"Optimizer created: {self._num_vars} variables "
            f"({num_vars_local} local), {self._num_cons} constraints, "
            f"method `{self._config.method}`"
        )
        _logger.debug(msg)

    @property
    def config(self) -> OptimizerConfig:
        """The configuration of the optimizer."""
        return self._config

    @property
    def closed(self) -> bool:
        """Whether the optimizer has been closed."""
        return self._closed

    def set_results_callback(self, callback: Callable[[IterationRecord], None]) -> Self:
        """Set a callback to report new results.

        The callback is called on all ranks after each iteration, with the
        record of that iteration. An exception raised by the callback on any
        rank aborts the optimization on all ranks with an
        [`OptimizationError`][dmma.exceptions.OptimizationError] tagged with the
        `callback` stage. The callback has this signature:

        ```python
        def callback(record: IterationRecord) -> None:
            ...
        ```

        Args:
            callback: The callable that will be invoked to report new results.

        Returns:
            The `Optimizer` instance, allowing for method chaining.
        """
        self._results_callback = callback
        return self

    def optimize(self, max_iterations: int) -> OptimizationResult:
        """Run the optimization for a fixed number of iterations.

        On the first call, the initial design and the bounds are read from the
        problem. Following calls continue from the current design, unless the
        `warm_start` option of the configuration is `False`, in which case the
        design is read again. A new subproblem solver is created for each call,
        hence solver state, such as the asymptotes of MMA, does not carry over.

        Calling `optimize(0)` reads the initial design if needed, but does not
        evaluate the problem or create a solver.

        Args:
            max_iterations: The number of iterations to perform.

        Returns:
            The result of the optimization.

        Raises:
            RuntimeError:      If the optimizer was closed.
            ValueError:        If the number of iterations is negative.
            OptimizationError: If any stage of the optimization fails.
        """
        if self._closed:
            msg = "The optimizer has been closed"
            raise RuntimeError(msg)
        if max_iterations < 0:
            msg = f"The number of iterations must be non-negative: {max_iterations}"
            raise ValueError(msg)

        vectors = self._vectors
        if not self._initialized or not self._config.warm_start:
            with self._stage(Stage.INITIALIZE):
                self._problem.get_vars_and_bounds(
                    self._buffers.x, self._buffers.lb, self._buffers.ub
                )
            self._initialized = True

        result = OptimizationResult(
            exit_code=ExitCode.NO_ITERATIONS,
            iterations=0,
            variables=self._buffers.x,
        )
        if max_iterations == 0:
            return result

        msg = f"Starting optimization: {max_iterations} iterations"
        _logger.info(msg)

        with (
            DistributedVector.allocate(
                self._comm, self._num_vars, vectors.x.local_size
            ) as lb_temp,
            DistributedVector.allocate(
                self._comm, self._num_vars, vectors.x.local_size
            ) as ub_temp,
        ):
            with self._stage(Stage.CREATE_SOLVER):
                solver = self._plugin.create(
                    self._config.method,
                    self._comm,
                    self._num_vars,
                    self._num_cons,
                    vectors.x,
                    self._config.options,
                )
            try:
                for iteration in range(max_iterations):
                    record = self._iterate(solver, iteration, lb_temp, ub_temp)
                    result.records.append(record)
                    result.iterations = iteration + 1
                    if self._results_callback is not None:
                        with self._stage(Stage.CALLBACK, iteration):
                            self._results_callback(record)
            finally:
                solver.destroy()

        result.exit_code = ExitCode.MAX_ITERATIONS_REACHED
        msg = f"Optimization finished after {result.iterations} iterations"
        _logger.info(msg)
        return result

    def get_optimized_design(self) -> NDArray[np.float64]:
        """Return the current design.

        The returned array is the design buffer of the optimizer, holding the
        local part of the design. It is not a copy: it changes when the
        optimization continues, and must not be used after the optimizer is
        closed.

        Returns:
            The local part of the design.
        """
        return self._buffers.x

    def close(self) -> None:
        """Release the resources of the optimizer.

        Closes the iteration log, destroys the distributed vectors, and then
        releases the buffers that they alias. Closing a closed optimizer has no
        effect.

        An optimizer that is garbage collected without being closed releases
        its resources in the same way.
        """
        if self._closed:
            return
        self._closed = True
        self._finalizer()
        _logger.debug("Optimizer closed")

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def _iterate(
        self,
        solver: SubproblemSolver,
        iteration: int,
        lb_temp: DistributedVector,
        ub_temp: DistributedVector,
    ) -> IterationRecord:
        vectors = self._vectors
        cons = self._buffers.cons

        with self._stage(Stage.EVALUATE_FUNCTIONS, iteration):
            objective = float(self._problem.eval_obj_con(self._x_view, cons))
        with self._stage(Stage.EVALUATE_GRADIENTS, iteration):
            self._problem.eval_obj_con_grad(
                self._x_view, self._buffers.g, self._buffers.gcon
            )
        with self._stage(Stage.MOVE_LIMIT, iteration):
            solver.set_outer_move_limit(
                vectors.lb,
                vectors.ub,
                self._config.move_limit_fraction,
                vectors.x,
                lb_temp,
                ub_temp,
            )
        with self._stage(Stage.UPDATE, iteration):
            solver.update(vectors.x, vectors.g, cons, vectors.gcon, lb_temp, ub_temp)
        with self._stage(Stage.KKT_RESIDUAL, iteration):
            kkt_l2, kkt_linf = solver.kkt_residual(
                vectors.x, vectors.g, cons, vectors.gcon, lb_temp, ub_temp
            )
        with self._stage(Stage.DIAGNOSTICS, iteration):
            x_l1 = vectors.x.norm(NormType.L1)
            infeasibility = max_constraint_violation(cons)

        record = IterationRecord(
            iteration=iteration,
            objective=objective,
            kkt_l2=float(kkt_l2),
            kkt_linf=float(kkt_linf),
            x_l1=x_l1,
            infeasibility=infeasibility,
        )
        with self._stage(Stage.REPORT, iteration):
            self._log.write(record)
        return record

    @contextmanager
    def _stage(
        self,
        stage: Stage,
        iteration: int | None = None,
        *,
        error_type: type[Exception] | None = None,
    ) -> Iterator[None]:
        failure: Exception | None = None
        try:
            yield
        except Exception as exc:  # noqa: BLE001
            failure = exc
        _check_failures(
            self._comm,
            failure,
            stage=stage,
            iteration=iteration,
            error_type=_STAGE_ERRORS[stage] if error_type is None else error_type,
            abort=self._config.abort_on_error,
        )


def _check_failures(  # noqa: PLR0913
    comm: MPI.Comm,
    failure: Exception | None,
    *,
    stage: Stage,
    iteration: int | None,
    error_type: type[Exception],
    abort: bool,
) -> None:
    if failure is not None:
        msg = f"Stage `{stage}` failed on rank {comm.Get_rank()}: {failure}"
        _logger.error(msg)
        if abort:
            comm.Abort(1)

    failed = comm.allgather(failure is not None)
    if not any(failed):
        return

    if failure is None:
        ranks = ", ".join(str(rank) for rank, flag in enumerate(failed) if flag)
        raise _make_error(error_type, f"Failed on rank(s) {ranks}", stage, iteration)
    if isinstance(failure, OptimizationError):
        raise _make_error(
            error_type, failure.reason, failure.stage, iteration
        ) from failure
    if isinstance(failure, error_type):
        raise failure
    raise _make_error(
        error_type, f"{type(failure).__name__}: {failure}", stage, iteration
    ) from failure


def _make_error(
    error_type: type[Exception], message: str, stage: Stage, iteration: int | None
) -> Exception:
    if issubclass(error_type, OptimizationError):
        return error_type(message, stage=stage, iteration=iteration)
    where = f"{stage}" if iteration is None else f"{stage}, iteration {iteration}"
    return error_type(f"{message} [{where}]")


def _release(
    log: IterationLog,
    vectors: VectorBindings,
    buffers: AliasedBufferSet,
    problem: Problem,
) -> None:
    try:
        log.close()
    finally:
        vectors.destroy()
        buffers.release()
        _attached_problems.discard(problem)
