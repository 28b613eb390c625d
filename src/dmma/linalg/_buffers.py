"""The set of design buffers and the vectors that alias them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from dmma.exceptions import AllocationError

from ._vector import DistributedVector

if TYPE_CHECKING:
    from collections.abc import Iterator

    from mpi4py import MPI
    from numpy.typing import NDArray


@dataclass(slots=True)
class VectorBindings:
    """Distributed vectors aliasing the buffers of an `AliasedBufferSet`.

    Attributes:
        x:    View of the design variables.
        g:    View of the objective gradient.
        lb:   View of the lower bounds.
        ub:   View of the upper bounds.
        gcon: Views of the rows of the constraint Jacobian, one per constraint.
    """

    x: DistributedVector
    g: DistributedVector
    lb: DistributedVector
    ub: DistributedVector
    gcon: tuple[DistributedVector, ...]

    def __iter__(self) -> Iterator[DistributedVector]:
        yield self.x
        yield self.g
        yield self.lb
        yield self.ub
        yield from self.gcon

    def destroy(self) -> None:
        """Destroy all bindings."""
        for vector in self:
            vector.destroy()


class AliasedBufferSet:
    """The flat numeric buffers used by an optimizer.

    The set owns the following zero-initialized `float64` buffers:

    - `x`, `lb`, `ub`, `g`: the local design variables, their bounds, and the
      objective gradient, each of length `num_vars_local`.
    - `cons`: the constraint values, of length `num_cons`. Constraints are not
      distributed, each rank holds all values.
    - `gcon`: the local block of the constraint Jacobian, a C-contiguous array
      of shape `(num_cons, num_vars_local)`. Row `i` holds the gradient of
      constraint `i` with respect to the local variables.

    The buffers are mirrored into distributed vectors by
    [`bind_vectors`][dmma.linalg.AliasedBufferSet.bind_vectors]. The vectors
    are views, they share the memory of the buffers. All vectors must be
    destroyed before the set is released with
    [`release`][dmma.linalg.AliasedBufferSet.release].
    """

    def __init__(self, num_vars_local: int, num_cons: int) -> None:
        """Allocate the buffers.

        Args:
            num_vars_local: The number of local design variables.
            num_cons:       The number of constraints.

        Raises:
            AllocationError: If a size is negative.
        """
        if num_vars_local < 0 or num_cons < 0:
            msg = f"Invalid buffer sizes: vars={num_vars_local}, cons={num_cons}"
            raise AllocationError(msg)
        self._num_vars_local = num_vars_local
        self._num_cons = num_cons
        self._buffers: dict[str, NDArray[np.float64]] | None = {
            "x": np.zeros(num_vars_local, dtype=np.float64),
            "lb": np.zeros(num_vars_local, dtype=np.float64),
            "ub": np.zeros(num_vars_local, dtype=np.float64),
            "g": np.zeros(num_vars_local, dtype=np.float64),
            "cons": np.zeros(num_cons, dtype=np.float64),
            "gcon": np.zeros((num_cons, num_vars_local), dtype=np.float64),
        }
        self._bindings: list[DistributedVector] = []

    @property
    def num_vars_local(self) -> int:
        """The number of local design variables."""
        return self._num_vars_local

    @property
    def num_cons(self) -> int:
        """The number of constraints."""
        return self._num_cons

    @property
    def x(self) -> NDArray[np.float64]:
        """The design variables."""
        return self._get("x")

    @property
    def lb(self) -> NDArray[np.float64]:
        """The lower bounds of the design variables."""
        return self._get("lb")

    @property
    def ub(self) -> NDArray[np.float64]:
        """The upper bounds of the design variables."""
        return self._get("ub")

    @property
    def g(self) -> NDArray[np.float64]:
        """The gradient of the objective."""
        return self._get("g")

    @property
    def cons(self) -> NDArray[np.float64]:
        """The constraint values."""
        return self._get("cons")

    @property
    def gcon(self) -> NDArray[np.float64]:
        """The local block of the constraint Jacobian."""
        return self._get("gcon")

    def gcon_row(self, index: int) -> NDArray[np.float64]:
        """Return a row of the constraint Jacobian.

        The row is a contiguous view into the Jacobian block, suitable for
        binding to a distributed vector.

        Args:
            index: The index of the constraint.

        Returns:
            The gradient of the constraint with respect to the local variables.
        """
        if not 0 <= index < self._num_cons:
            msg = f"Constraint index out of range: {index}"
            raise IndexError(msg)
        return self._get("gcon")[index]

    def bind_vectors(self, comm: MPI.Comm, global_size: int) -> VectorBindings:
        """Create distributed vectors aliasing the buffers.

        This is a collective operation. If creating any vector fails, the
        vectors already created are destroyed before the error propagates.

        Args:
            comm:        The communicator.
            global_size: The global number of design variables.

        Returns:
            The vector bindings.

        Raises:
            AllocationError: If a vector cannot be created.
        """
        created: list[DistributedVector] = []

        def _bind(buffer: NDArray[np.float64]) -> DistributedVector:
            vector = DistributedVector.bind(
                comm, global_size, self._num_vars_local, buffer
            )
            created.append(vector)
            return vector

        try:
            bindings = VectorBindings(
                x=_bind(self.x),
                g=_bind(self.g),
                lb=_bind(self.lb),
                ub=_bind(self.ub),
                gcon=tuple(_bind(self.gcon_row(idx)) for idx in range(self._num_cons)),
            )
        except AllocationError:
            for vector in created:
                vector.destroy()
            raise
        self._bindings.extend(created)
        return bindings

    @property
    def live_bindings(self) -> int:
        """The number of vectors aliasing the buffers that are not destroyed."""
        return sum(not vector.is_destroyed for vector in self._bindings)

    @property
    def is_released(self) -> bool:
        """Whether the buffers have been released."""
        return self._buffers is None

    def release(self) -> None:
        """Release the buffers.

        Raises:
            AllocationError: If vectors aliasing the buffers are still alive.
        """
        if self.live_bindings > 0:
            msg = (
                f"Cannot release buffers: {self.live_bindings} "
                "vector binding(s) still alive"
            )
            raise AllocationError(msg)
        self._bindings.clear()
        self._buffers = None

    def _get(self, name: str) -> NDArray[np.float64]:
        if self._buffers is None:
            msg = "The buffers have been released"
            raise AllocationError(msg)
        return self._buffers[name]
