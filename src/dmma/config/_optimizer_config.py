"""Configuration class for the optimizer."""

from __future__ import annotations

from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, model_validator

from .constants import (
    DEFAULT_HEADER_INTERVAL,
    DEFAULT_METHOD,
    DEFAULT_MOVE_LIMIT_FRACTION,
)


class OptimizerConfig(BaseModel):
    """Configuration class for the optimization driver.

    This class, `OptimizerConfig`, defines the configuration of an
    [`Optimizer`][dmma.optimization.Optimizer] object:

    - **`method`**: The subproblem solver, in the format `plugin/method` or
      `method`. The solver is found by the
      [`PluginManager`][dmma.plugins.PluginManager]. The default selects the
      built-in MMA solver.
    - **`move_limit_fraction`**: The width of the move-limit box, as a fraction
      of the range between the lower and upper bounds of each variable. In each
      iteration a variable can move at most this fraction of its range away
      from its current value.
    - **`header_interval`**: The number of iterations between headers in the
      iteration log.
    - **`warm_start`**: If `True`, repeated calls to
      [`optimize`][dmma.optimization.Optimizer.optimize] continue from the
      design left by the previous call. If `False`, the initial design is read
      from the problem on each call.
    - **`abort_on_error`**: If `True`, a rank that detects an error aborts the
      whole MPI job, instead of raising an exception on all ranks.
    - **`options`**: A dictionary of options for the subproblem solver. The
      supported options depend on the solver.

    Attributes:
        method:              Name of the subproblem solver.
        move_limit_fraction: Width of the move-limit box (default: 0.2).
        header_interval:     Iterations between log headers (default: 10).
        warm_start:          Continue from the current design (default: `True`).
        abort_on_error:      Abort the MPI job on errors (default: `False`).
        options:             Options for the subproblem solver (optional).
    """

    method: str = DEFAULT_METHOD
    move_limit_fraction: float = Field(
        default=DEFAULT_MOVE_LIMIT_FRACTION, gt=0.0, le=1.0
    )
    header_interval: PositiveInt = DEFAULT_HEADER_INTERVAL
    warm_start: bool = True
    abort_on_error: bool = False
    options: dict[str, Any] | None = None

    model_config = ConfigDict(
        extra="forbid",
        str_min_length=1,
        str_strip_whitespace=True,
        validate_default=True,
        frozen=True,
    )

    @model_validator(mode="after")
    def _method(self) -> Self:
        plugin, sep, method = self.method.rpartition("/")
        if sep == "/" and (plugin == "" or method == ""):
            msg = f"malformed method specification: `{self.method}`"
            raise ValueError(msg)
        return self
