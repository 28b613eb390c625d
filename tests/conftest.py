from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Callable

import numpy as np
import pytest
from mpi4py import MPI
from numpy.typing import ArrayLike, NDArray

from dmma.problem import Problem


class QuadraticProblem(Problem):
    """Minimize the squared distance to a target, optionally with a sum limit.

    The objective is `sum((x - target)**2)` over all variables. If `limit` is
    given, there is a single constraint `sum(x) - limit <= 0`. Each rank owns
    `num_vars_local` variables.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        num_vars_local: int = 3,
        target: float = 0.3,
        initial: ArrayLike = 0.9,
        lower: ArrayLike = -1.0,
        upper: ArrayLike = 1.0,
        limit: float | None = None,
        comm: MPI.Comm = MPI.COMM_WORLD,
    ) -> None:
        self.comm = comm
        self.num_vars_local = num_vars_local
        self.target = target
        self.initial = np.broadcast_to(initial, num_vars_local).astype(np.float64)
        self.lower = np.broadcast_to(lower, num_vars_local).astype(np.float64)
        self.upper = np.broadcast_to(upper, num_vars_local).astype(np.float64)
        self.limit = limit
        self.calls: Counter[str] = Counter()
        self.fail_on: tuple[str, int] | None = None
        self.seen_x: list[NDArray[np.float64]] = []
        self.writeable: list[bool] = []

    def get_mpi_comm(self) -> MPI.Comm:
        return self.comm

    def get_num_vars(self) -> int:
        return self.comm.allreduce(self.num_vars_local)

    def get_num_vars_local(self) -> int:
        return self.num_vars_local

    def get_num_cons(self) -> int:
        return 0 if self.limit is None else 1

    def get_vars_and_bounds(
        self,
        x: NDArray[np.float64],
        lb: NDArray[np.float64],
        ub: NDArray[np.float64],
    ) -> None:
        self.calls["get_vars_and_bounds"] += 1
        x[:] = self.initial
        lb[:] = self.lower
        ub[:] = self.upper

    def eval_obj_con(self, x: NDArray[np.float64], cons: NDArray[np.float64]) -> float:
        self.seen_x.append(x.copy())
        self.writeable.append(x.flags.writeable)
        self._maybe_fail("eval_obj_con")
        self.calls["eval_obj_con"] += 1
        objective = self.comm.allreduce(float(np.sum((x - self.target) ** 2)))
        if self.limit is not None:
            cons[0] = self.comm.allreduce(float(np.sum(x))) - self.limit
        return objective

    def eval_obj_con_grad(
        self,
        x: NDArray[np.float64],
        g: NDArray[np.float64],
        gcon: NDArray[np.float64],
    ) -> None:
        self._maybe_fail("eval_obj_con_grad")
        self.calls["eval_obj_con_grad"] += 1
        g[:] = 2.0 * (x - self.target)
        if self.limit is not None:
            gcon[0, :] = 1.0

    def _maybe_fail(self, name: str) -> None:
        if self.fail_on is not None and self.fail_on == (name, self.calls[name]):
            msg = f"{name} failed"
            raise RuntimeError(msg)


@pytest.fixture(name="comm")
def comm_fixture() -> MPI.Comm:
    return MPI.COMM_WORLD


@pytest.fixture(name="log_path")
def log_path_fixture(tmp_path: Path) -> Path:
    return tmp_path / "optimization.log"


@pytest.fixture(name="problem")
def problem_fixture() -> QuadraticProblem:
    return QuadraticProblem()


@pytest.fixture(name="constrained_problem")
def constrained_problem_fixture(comm: MPI.Comm) -> QuadraticProblem:
    # The optimum of sum((x - 1)**2) subject to sum(x) <= n / 2 is x = 0.5:
    return QuadraticProblem(
        target=1.0,
        initial=0.0,
        lower=0.0,
        upper=2.0,
        limit=0.5 * 3 * comm.Get_size(),
    )


@pytest.fixture(name="problem_factory")
def problem_factory_fixture() -> Callable[..., QuadraticProblem]:
    return QuadraticProblem
