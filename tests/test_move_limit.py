from __future__ import annotations

import numpy as np
import pytest
from mpi4py import MPI

from dmma.linalg import DistributedVector
from dmma.optimization import set_outer_move_limit


def _vector(comm: MPI.Comm, values: list[float]) -> DistributedVector:
    return DistributedVector.bind(
        comm, len(values) * comm.Get_size(), len(values), np.array(values)
    )


def test_move_limit_interior(comm: MPI.Comm) -> None:
    lb = _vector(comm, [0.0, -1.0])
    ub = _vector(comm, [10.0, 1.0])
    x = _vector(comm, [5.0, 0.0])
    lb_temp = lb.duplicate()
    ub_temp = ub.duplicate()

    set_outer_move_limit(lb, ub, 0.2, x, lb_temp, ub_temp)

    assert np.allclose(lb_temp.array, [3.0, -0.4])
    assert np.allclose(ub_temp.array, [7.0, 0.4])


def test_move_limit_clipped_to_bounds(comm: MPI.Comm) -> None:
    lb = _vector(comm, [0.0, 0.0])
    ub = _vector(comm, [1.0, 1.0])
    x = _vector(comm, [0.1, 0.95])
    lb_temp = lb.duplicate()
    ub_temp = ub.duplicate()

    set_outer_move_limit(lb, ub, 0.2, x, lb_temp, ub_temp)

    assert np.allclose(lb_temp.array, [0.0, 0.75])
    assert np.allclose(ub_temp.array, [0.3, 1.0])


def test_move_limit_collapsed_box(comm: MPI.Comm) -> None:
    lb = _vector(comm, [2.0])
    ub = _vector(comm, [2.0])
    x = _vector(comm, [2.0])
    lb_temp = lb.duplicate()
    ub_temp = ub.duplicate()

    set_outer_move_limit(lb, ub, 0.2, x, lb_temp, ub_temp)

    assert lb_temp.array[0] == 2.0
    assert ub_temp.array[0] == 2.0


@pytest.mark.parametrize("fraction", [0.01, 0.2, 0.5, 1.0])
def test_move_limit_subset_of_bounds(comm: MPI.Comm, fraction: float) -> None:
    rng = np.random.default_rng(123)
    lower = rng.uniform(-5.0, 0.0, 50)
    upper = lower + rng.uniform(0.0, 5.0, 50)
    design = rng.uniform(lower, upper)
    lb = _vector(comm, list(lower))
    ub = _vector(comm, list(upper))
    x = _vector(comm, list(design))
    lb_temp = lb.duplicate()
    ub_temp = ub.duplicate()

    set_outer_move_limit(lb, ub, fraction, x, lb_temp, ub_temp)

    assert np.all(lb.array <= lb_temp.array)
    assert np.all(ub_temp.array <= ub.array)
    assert np.all(lb_temp.array <= x.array)
    assert np.all(x.array <= ub_temp.array)
