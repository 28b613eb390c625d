"""Distributed linear algebra for `dmma`.

This module provides the [`DistributedVector`][dmma.linalg.DistributedVector]
class, a vector distributed over the ranks of an `mpi4py` communicator, and the
[`AliasedBufferSet`][dmma.linalg.AliasedBufferSet] class that owns the flat
numpy buffers of an optimization and mirrors them, without copying, into
distributed vectors.

Vectors either own their storage, or alias a caller-supplied buffer:

```py
import numpy as np
from mpi4py import MPI

from dmma.linalg import DistributedVector

buffer = np.zeros(3)
vector = DistributedVector.bind(MPI.COMM_WORLD, 3 * MPI.COMM_WORLD.size, 3, buffer)
buffer[1] = 2.0
assert vector.array[1] == 2.0
vector.destroy()  # The buffer is not affected.
```
"""

from ._buffers import AliasedBufferSet, VectorBindings
from ._vector import DistributedVector

__all__ = [
    "AliasedBufferSet",
    "DistributedVector",
    "VectorBindings",
]
