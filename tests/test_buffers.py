from __future__ import annotations

import numpy as np
import pytest
from mpi4py import MPI

from dmma.exceptions import AllocationError
from dmma.linalg import AliasedBufferSet


def test_buffers_zero_initialized() -> None:
    buffers = AliasedBufferSet(3, 2)
    for array in (buffers.x, buffers.lb, buffers.ub, buffers.g):
        assert array.shape == (3,)
        assert np.all(array == 0.0)
    assert buffers.cons.shape == (2,)
    assert buffers.gcon.shape == (2, 3)
    assert buffers.gcon.flags.c_contiguous
    assert np.all(buffers.gcon == 0.0)


def test_negative_sizes() -> None:
    with pytest.raises(AllocationError):
        AliasedBufferSet(-1, 0)
    with pytest.raises(AllocationError):
        AliasedBufferSet(1, -1)


def test_gcon_rows() -> None:
    buffers = AliasedBufferSet(3, 2)
    buffers.gcon_row(1)[:] = [1.0, 2.0, 3.0]
    assert np.array_equal(buffers.gcon[1], [1.0, 2.0, 3.0])
    assert np.all(buffers.gcon[0] == 0.0)
    with pytest.raises(IndexError):
        buffers.gcon_row(2)


def test_bind_vectors(comm: MPI.Comm) -> None:
    buffers = AliasedBufferSet(3, 2)
    vectors = buffers.bind_vectors(comm, 3 * comm.Get_size())
    assert buffers.live_bindings == 6

    vectors.x.array[0] = 1.5
    assert buffers.x[0] == 1.5
    buffers.g[2] = -2.5
    assert vectors.g.array[2] == -2.5
    vectors.lb.array[1] = -1.0
    vectors.ub.array[1] = 1.0
    assert buffers.lb[1] == -1.0
    assert buffers.ub[1] == 1.0

    assert len(vectors.gcon) == 2
    vectors.gcon[1].array[0] = 42.0
    assert buffers.gcon[1, 0] == 42.0
    buffers.gcon[0, 2] = 24.0
    assert vectors.gcon[0].array[2] == 24.0
    for row, vector in enumerate(vectors.gcon):
        assert np.shares_memory(vector.array, buffers.gcon[row])


def test_bind_vectors_size_mismatch(comm: MPI.Comm) -> None:
    buffers = AliasedBufferSet(3, 1)
    with pytest.raises(AllocationError):
        buffers.bind_vectors(comm, 3 * comm.Get_size() + 1)
    assert buffers.live_bindings == 0
    buffers.release()


def test_release_order(comm: MPI.Comm) -> None:
    buffers = AliasedBufferSet(2, 1)
    vectors = buffers.bind_vectors(comm, 2 * comm.Get_size())

    with pytest.raises(AllocationError, match="still alive"):
        buffers.release()
    assert not buffers.is_released

    vectors.destroy()
    assert buffers.live_bindings == 0
    buffers.release()
    assert buffers.is_released
    with pytest.raises(AllocationError, match="released"):
        _ = buffers.x


def test_no_constraints(comm: MPI.Comm) -> None:
    buffers = AliasedBufferSet(2, 0)
    vectors = buffers.bind_vectors(comm, 2 * comm.Get_size())
    assert vectors.gcon == ()
    assert buffers.gcon.shape == (0, 2)
    vectors.destroy()
    buffers.release()
