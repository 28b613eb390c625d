"""Example of a distributed optimization with a resource constraint.

This example distributes the variables of a weighted least-squares problem
over the ranks of `MPI.COMM_WORLD`, subject to a single constraint on the sum
of all variables:

$$
\\begin{align}
    \\text{minimize} \\quad & \\sum_i w_i (x_i - t_i)^2 \\\\
    \\text{subject to} \\quad & \\sum_i x_i \\le V, \\quad 0 \\le x_i \\le 1
\\end{align}
$$

The solution is known: $x_i = t_i - \\lambda / (2 w_i)$, where the multiplier
$\\lambda$ follows from the constraint. Run it on several ranks with:

```bash
mpiexec -n 4 python resource_allocation.py
```
"""

from __future__ import annotations

import numpy as np
from mpi4py import MPI
from numpy.typing import NDArray

from dmma.optimization import IterationRecord, Optimizer
from dmma.problem import Problem

NUM_VARS = 20
VOLUME = 6.0


class ResourceAllocation(Problem):
    """Weighted least-squares problem with a resource constraint."""

    def __init__(self, comm: MPI.Comm, num_vars: int, volume: float) -> None:
        """Partition the variables over the ranks.

        Args:
            comm:     The communicator.
            num_vars: The global number of variables.
            volume:   The maximum sum of the variables.
        """
        self.comm = comm
        self.num_vars = num_vars
        self.volume = volume
        rank, size = comm.Get_rank(), comm.Get_size()
        self.num_vars_local = num_vars // size + int(rank < num_vars % size)
        offset = comm.exscan(self.num_vars_local)
        self.offset = 0 if offset is None else offset
        index = np.arange(self.offset, self.offset + self.num_vars_local)
        self.weights, self.targets = _weights_and_targets(index, num_vars)

    def get_mpi_comm(self) -> MPI.Comm:
        return self.comm

    def get_num_vars(self) -> int:
        return self.num_vars

    def get_num_vars_local(self) -> int:
        return self.num_vars_local

    def get_num_cons(self) -> int:
        return 1

    def get_vars_and_bounds(
        self,
        x: NDArray[np.float64],
        lb: NDArray[np.float64],
        ub: NDArray[np.float64],
    ) -> None:
        x[:] = 0.5
        lb[:] = 0.0
        ub[:] = 1.0

    def eval_obj_con(self, x: NDArray[np.float64], cons: NDArray[np.float64]) -> float:
        local = np.array(
            [np.sum(self.weights * (x - self.targets) ** 2), np.sum(x)],
        )
        objective, total = self.comm.allreduce(local)
        cons[0] = total - self.volume
        return float(objective)

    def eval_obj_con_grad(
        self,
        x: NDArray[np.float64],
        g: NDArray[np.float64],
        gcon: NDArray[np.float64],
    ) -> None:
        g[:] = 2.0 * self.weights * (x - self.targets)
        gcon[0, :] = 1.0


def _weights_and_targets(
    index: NDArray[np.int64], num_vars: int
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    weights = 1.0 + index / num_vars
    targets = 0.3 + 0.4 * index / num_vars
    return weights, targets


def expected_solution(num_vars: int, volume: float) -> NDArray[np.float64]:
    """Compute the solution of the problem analytically.

    Args:
        num_vars: The global number of variables.
        volume:   The maximum sum of the variables.

    Returns:
        The optimal values of all variables.
    """
    weights, targets = _weights_and_targets(np.arange(num_vars), num_vars)
    multiplier = max(
        0.0, 2.0 * (np.sum(targets) - volume) / np.sum(1.0 / weights)
    )
    return targets - multiplier / (2.0 * weights)


def report(record: IterationRecord) -> None:
    """Report the progress of the optimization on rank 0.

    Args:
        record: The record of an iteration.
    """
    if MPI.COMM_WORLD.Get_rank() == 0 and record.iteration % 10 == 0:
        print(
            f"  iteration {record.iteration}: objective = {record.objective:.6f}, "
            f"violation = {record.infeasibility:.2e}"
        )


def main() -> None:
    """Run the example and check the result."""
    comm = MPI.COMM_WORLD
    problem = ResourceAllocation(comm, NUM_VARS, VOLUME)
    with Optimizer(problem, "resource_allocation.log") as optimizer:
        result = optimizer.set_results_callback(report).optimize(100)
        design = np.concatenate(comm.allgather(result.variables.copy()))

    expected = expected_solution(NUM_VARS, VOLUME)
    if comm.Get_rank() == 0:
        print(f"  variables: {design}")
    assert np.allclose(design, expected, atol=1e-2)
    assert result.records[-1].infeasibility < 1e-2


if __name__ == "__main__":
    main()
