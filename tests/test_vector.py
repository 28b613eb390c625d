from __future__ import annotations

import numpy as np
import pytest
from mpi4py import MPI

from dmma.enums import NormType
from dmma.exceptions import AllocationError, VectorDestroyedError
from dmma.linalg import DistributedVector


def test_bind_aliases_buffer(comm: MPI.Comm) -> None:
    buffer = np.zeros(4)
    vector = DistributedVector.bind(comm, 4 * comm.Get_size(), 4, buffer)
    assert vector.is_aliased
    assert np.shares_memory(vector.array, buffer)

    vector.array[1] = 123.0
    assert buffer[1] == 123.0

    buffer[2] = -456.0
    assert vector.array[2] == -456.0


def test_bind_get_restore_array(comm: MPI.Comm) -> None:
    buffer = np.zeros(3)
    vector = DistributedVector.bind(comm, 3 * comm.Get_size(), 3, buffer)
    array = vector.get_array()
    array[0] = 7.0
    vector.restore_array(array)
    assert buffer[0] == 7.0

    with pytest.raises(ValueError, match="not checked out"):
        vector.restore_array(array)


def test_bind_prefix_of_buffer(comm: MPI.Comm) -> None:
    buffer = np.arange(5, dtype=np.float64)
    vector = DistributedVector.bind(comm, 3 * comm.Get_size(), 3, buffer)
    assert vector.local_size == 3
    assert np.array_equal(vector.array, [0.0, 1.0, 2.0])


def test_bind_size_mismatch(comm: MPI.Comm) -> None:
    with pytest.raises(AllocationError, match="Local sizes add up to"):
        DistributedVector.bind(comm, 4 * comm.Get_size() + 1, 4, np.zeros(4))


def test_bind_buffer_too_small(comm: MPI.Comm) -> None:
    with pytest.raises(AllocationError, match="elements"):
        DistributedVector.bind(comm, 4 * comm.Get_size(), 4, np.zeros(3))


@pytest.mark.parametrize(
    "buffer",
    [
        np.zeros(4, dtype=np.float32),
        np.zeros((2, 2)),
        np.zeros(8)[::2],
        [0.0, 0.0, 0.0, 0.0],
    ],
)
def test_bind_unsuitable_buffer(comm: MPI.Comm, buffer: object) -> None:
    with pytest.raises(AllocationError, match="contiguous 1D float64"):
        DistributedVector.bind(comm, 4 * comm.Get_size(), 4, buffer)  # type: ignore[arg-type]


def test_allocate_negative_size(comm: MPI.Comm) -> None:
    with pytest.raises(AllocationError):
        DistributedVector.allocate(comm, 0, -1)


def test_allocate(comm: MPI.Comm) -> None:
    vector = DistributedVector.allocate(comm, 2 * comm.Get_size(), 2)
    assert not vector.is_aliased
    assert np.array_equal(vector.array, [0.0, 0.0])
    assert vector.global_size == 2 * comm.Get_size()


def test_destroy_keeps_buffer(comm: MPI.Comm) -> None:
    buffer = np.array([1.0, 2.0])
    vector = DistributedVector.bind(comm, 2 * comm.Get_size(), 2, buffer)
    vector.destroy()
    assert vector.is_destroyed
    assert np.array_equal(buffer, [1.0, 2.0])
    buffer[0] = 3.0
    assert buffer[0] == 3.0

    vector.destroy()
    with pytest.raises(VectorDestroyedError):
        _ = vector.array
    with pytest.raises(VectorDestroyedError):
        vector.norm()


def test_destroy_while_checked_out(comm: MPI.Comm) -> None:
    vector = DistributedVector.allocate(comm, 2 * comm.Get_size(), 2)
    array = vector.get_array()
    with pytest.raises(AllocationError, match="checked out"):
        vector.destroy()
    vector.restore_array(array)
    vector.destroy()
    assert vector.is_destroyed


def test_context_manager(comm: MPI.Comm) -> None:
    with DistributedVector.allocate(comm, 2 * comm.Get_size(), 2) as vector:
        vector.set(1.0)
    assert vector.is_destroyed


def test_duplicate(comm: MPI.Comm) -> None:
    buffer = np.array([1.0, 2.0])
    vector = DistributedVector.bind(comm, 2 * comm.Get_size(), 2, buffer)
    copy = vector.duplicate()
    assert not copy.is_aliased
    assert np.array_equal(copy.array, [0.0, 0.0])
    copy.copy_from(vector)
    copy.array[0] = 10.0
    assert buffer[0] == 1.0


def test_reductions(comm: MPI.Comm) -> None:
    size = comm.Get_size()
    buffer = np.array([1.0, -2.0, 3.0])
    vector = DistributedVector.bind(comm, 3 * size, 3, buffer)
    assert vector.sum() == pytest.approx(2.0 * size)
    assert vector.dot(vector) == pytest.approx(14.0 * size)
    assert vector.max() == 3.0
    assert vector.min() == -2.0
    assert vector.norm(NormType.L1) == pytest.approx(6.0 * size)
    assert vector.norm(NormType.L2) == pytest.approx(np.sqrt(14.0 * size))
    assert vector.norm(NormType.INFINITY) == 3.0


def test_copy_from_layout_mismatch(comm: MPI.Comm) -> None:
    size = comm.Get_size()
    first = DistributedVector.allocate(comm, 2 * size, 2)
    second = DistributedVector.allocate(comm, 3 * size, 3)
    with pytest.raises(ValueError, match="different layouts"):
        first.copy_from(second)
