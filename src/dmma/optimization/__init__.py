"""The optimization driver.

The [`Optimizer`][dmma.optimization.Optimizer] class runs a distributed
optimization of a [`Problem`][dmma.problem.Problem]:

```py
from dmma.optimization import Optimizer

with Optimizer(problem, "optimization.log", {"move_limit_fraction": 0.1}) as opt:
    result = opt.optimize(100)
    print(result.records[-1].objective)
```

Each iteration produces an [`IterationRecord`][dmma.optimization.IterationRecord],
collected in the [`OptimizationResult`][dmma.optimization.OptimizationResult]
returned by [`optimize`][dmma.optimization.Optimizer.optimize].
"""

from dmma.plugins.subproblem.utils import set_outer_move_limit

from ._diagnostics import IterationRecord, max_constraint_violation
from ._optimizer import OptimizationResult, Optimizer

__all__ = [
    "IterationRecord",
    "OptimizationResult",
    "Optimizer",
    "max_constraint_violation",
    "set_outer_move_limit",
]
