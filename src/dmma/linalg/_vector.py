"""Distributed vectors backed by numpy arrays."""

from __future__ import annotations

from typing import TYPE_CHECKING, Self

import numpy as np
from mpi4py import MPI

from dmma.enums import NormType
from dmma.exceptions import AllocationError, VectorDestroyedError

if TYPE_CHECKING:
    from types import TracebackType

    from numpy.typing import NDArray


class DistributedVector:
    """A vector distributed over the ranks of an MPI communicator.

    Each rank stores a contiguous local part of the global vector in a
    one-dimensional `float64` numpy array. Operations that need the global
    vector, such as norms and dot products, are collective: every rank of the
    communicator must call them in the same order.

    Vectors are created with one of two factory methods:

    - [`bind`][dmma.linalg.DistributedVector.bind] creates a vector whose local
      storage is a view of a caller-supplied buffer. No memory is allocated and
      nothing is copied: writes through the vector are immediately visible in
      the buffer, and vice versa.
    - [`allocate`][dmma.linalg.DistributedVector.allocate] creates a vector that
      owns freshly allocated, zero-initialized storage.

    A vector is released by calling [`destroy`][dmma.linalg.DistributedVector.destroy],
    or by using it as a context manager. Destroying a bound vector only drops
    the view, the backing buffer is never touched.

    Example:
        ```py
        from mpi4py import MPI
        import numpy as np

        buffer = np.zeros(4)
        with DistributedVector.bind(MPI.COMM_SELF, 4, 4, buffer) as vector:
            vector.array[0] = 1.0
            assert buffer[0] == 1.0
        ```
    """

    def __init__(
        self,
        comm: MPI.Comm,
        global_size: int,
        local_size: int,
        array: NDArray[np.float64] | None,
        *,
        aliased: bool,
        error: str | None = None,
    ) -> None:
        """Initialize a distributed vector.

        This constructor is collective, it verifies that the local sizes of all
        ranks add up to the global size. It should not be called directly, use
        the [`bind`][dmma.linalg.DistributedVector.bind] or
        [`allocate`][dmma.linalg.DistributedVector.allocate] factory methods
        instead.

        Args:
            comm:        The communicator.
            global_size: The size of the global vector.
            local_size:  The size of the local part.
            array:       The local storage, `None` if it could not be created.
            aliased:     Whether the storage is a view of a foreign buffer.
            error:       A locally detected error, raised on all ranks.

        Raises:
            AllocationError: If the vector cannot be created on any rank.
        """
        total_size, failures = comm.allreduce(
            np.array([local_size, 0 if error is None else 1], dtype=np.int64),
            op=MPI.SUM,
        )
        if error is not None:
            raise AllocationError(error)
        if failures > 0:
            msg = "Vector creation failed on another rank"
            raise AllocationError(msg)
        if total_size != global_size:
            msg = (
                f"Local sizes add up to {total_size}, "
                f"but the global size is {global_size}"
            )
            raise AllocationError(msg)
        self._comm = comm
        self._global_size = global_size
        self._local_size = local_size
        self._array = array
        self._aliased = aliased
        self._accessed = 0

    @classmethod
    def bind(
        cls,
        comm: MPI.Comm,
        global_size: int,
        local_size: int,
        buffer: NDArray[np.float64],
    ) -> Self:
        """Create a vector that uses a buffer as its local storage.

        The local storage of the new vector is a view of the first `local_size`
        elements of `buffer`. The buffer must be a contiguous one-dimensional
        `float64` array, and it must outlive the vector.

        Args:
            comm:        The communicator.
            global_size: The size of the global vector.
            local_size:  The size of the local part.
            buffer:      The buffer to alias.

        Returns:
            The new vector.

        Raises:
            AllocationError: If the buffer is not suitable, or the sizes are
                             inconsistent.
        """
        error = _check_sizes(global_size, local_size)
        array: NDArray[np.float64] | None = None
        if error is None:
            if (
                not isinstance(buffer, np.ndarray)
                or buffer.dtype != np.float64
                or buffer.ndim != 1
                or not buffer.flags.c_contiguous
            ):
                error = "The buffer must be a contiguous 1D float64 array"
            elif buffer.size < local_size:
                error = (
                    f"The buffer has {buffer.size} elements, "
                    f"{local_size} are required"
                )
            else:
                array = buffer[:local_size]
        return cls(comm, global_size, local_size, array, aliased=True, error=error)

    @classmethod
    def allocate(cls, comm: MPI.Comm, global_size: int, local_size: int) -> Self:
        """Create a vector with its own zero-initialized storage.

        Args:
            comm:        The communicator.
            global_size: The size of the global vector.
            local_size:  The size of the local part.

        Returns:
            The new vector.

        Raises:
            AllocationError: If the sizes are inconsistent.
        """
        error = _check_sizes(global_size, local_size)
        array = np.zeros(local_size, dtype=np.float64) if error is None else None
        return cls(comm, global_size, local_size, array, aliased=False, error=error)

    def duplicate(self) -> DistributedVector:
        """Create an owned, zero-initialized vector with the same layout.

        Returns:
            The new vector.
        """
        self._check_alive()
        return DistributedVector.allocate(
            self._comm, self._global_size, self._local_size
        )

    def destroy(self) -> None:
        """Release the vector.

        For a vector created by [`bind`][dmma.linalg.DistributedVector.bind],
        only the view is released. Destroying a vector more than once has no
        effect.

        Raises:
            AllocationError: If the local storage is still checked out by
                             [`get_array`][dmma.linalg.DistributedVector.get_array].
        """
        if self._accessed > 0:
            msg = "Cannot destroy a vector while its array is checked out"
            raise AllocationError(msg)
        self._array = None

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self._accessed = 0
        self.destroy()

    @property
    def comm(self) -> MPI.Comm:
        """The communicator of the vector."""
        return self._comm

    @property
    def global_size(self) -> int:
        """The size of the global vector."""
        return self._global_size

    @property
    def local_size(self) -> int:
        """The size of the local part of the vector."""
        return self._local_size

    @property
    def is_aliased(self) -> bool:
        """Whether the local storage is a view of a foreign buffer."""
        return self._aliased

    @property
    def is_destroyed(self) -> bool:
        """Whether the vector has been destroyed."""
        return self._array is None

    @property
    def array(self) -> NDArray[np.float64]:
        """The local storage of the vector.

        Raises:
            VectorDestroyedError: If the vector has been destroyed.
        """
        return self._check_alive()

    def get_array(self) -> NDArray[np.float64]:
        """Check out the local storage for direct access.

        Every call must be paired with a call to
        [`restore_array`][dmma.linalg.DistributedVector.restore_array]. A
        vector cannot be destroyed while its storage is checked out.

        Returns:
            The local storage.
        """
        array = self._check_alive()
        self._accessed += 1
        return array

    def restore_array(self, array: NDArray[np.float64]) -> None:
        """Return local storage checked out by `get_array`.

        Args:
            array: The array returned by `get_array`.

        Raises:
            ValueError: If the array is not the local storage of this vector,
                        or if it was not checked out.
        """
        if self._accessed == 0 or array is not self._check_alive():
            msg = "The array was not checked out from this vector"
            raise ValueError(msg)
        self._accessed -= 1

    def set(self, value: float) -> None:
        """Set all elements to a value."""
        self._check_alive()[:] = value

    def copy_from(self, other: DistributedVector) -> None:
        """Copy the values of another vector with the same layout.

        Args:
            other: The vector to copy from.

        Raises:
            ValueError: If the local sizes differ.
        """
        if other.local_size != self._local_size:
            msg = "Cannot copy between vectors with different layouts"
            raise ValueError(msg)
        self._check_alive()[:] = other.array

    def sum(self) -> float:
        """Return the sum of all elements of the global vector (collective)."""
        return float(self._comm.allreduce(float(self._check_alive().sum())))

    def dot(self, other: DistributedVector) -> float:
        """Return the dot product with another vector (collective).

        Args:
            other: A vector with the same layout.

        Returns:
            The global dot product.
        """
        local = float(np.dot(self._check_alive(), other.array))
        return float(self._comm.allreduce(local))

    def max(self) -> float:
        """Return the maximum element of the global vector (collective)."""
        array = self._check_alive()
        local = float(array.max()) if array.size > 0 else -np.inf
        return float(self._comm.allreduce(local, op=MPI.MAX))

    def min(self) -> float:
        """Return the minimum element of the global vector (collective)."""
        array = self._check_alive()
        local = float(array.min()) if array.size > 0 else np.inf
        return float(self._comm.allreduce(local, op=MPI.MIN))

    def norm(self, norm_type: NormType = NormType.L2) -> float:
        """Return a norm of the global vector (collective).

        Args:
            norm_type: The type of the norm.

        Returns:
            The norm.
        """
        array = self._check_alive()
        match norm_type:
            case NormType.L1:
                return float(self._comm.allreduce(float(np.abs(array).sum())))
            case NormType.L2:
                return float(
                    np.sqrt(self._comm.allreduce(float(np.dot(array, array))))
                )
            case NormType.INFINITY:
                local = float(np.abs(array).max()) if array.size > 0 else 0.0
                return float(self._comm.allreduce(local, op=MPI.MAX))
        msg = f"Unknown norm type: {norm_type}"
        raise ValueError(msg)

    def _check_alive(self) -> NDArray[np.float64]:
        if self._array is None:
            msg = "The vector has been destroyed"
            raise VectorDestroyedError(msg)
        return self._array

    def __repr__(self) -> str:
        state = "destroyed" if self._array is None else "alive"
        kind = "aliased" if self._aliased else "owned"
        return (
            f"DistributedVector(global_size={self._global_size}, "
            f"local_size={self._local_size}, {kind}, {state})"
        )


def _check_sizes(global_size: int, local_size: int) -> str | None:
    if local_size < 0 or global_size < 0:
        return f"Invalid vector sizes: global={global_size}, local={local_size}"
    return None
