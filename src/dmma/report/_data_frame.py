"""Export iteration records to a `pandas` data frame."""

from __future__ import annotations

from dataclasses import fields
from importlib.util import find_spec
from typing import TYPE_CHECKING, Final

from dmma.optimization._diagnostics import IterationRecord

_HAVE_PANDAS: Final = find_spec("pandas") is not None

if TYPE_CHECKING:
    from collections.abc import Iterable

if _HAVE_PANDAS:
    import pandas as pd


def records_to_dataframe(records: Iterable[IterationRecord]) -> pd.DataFrame:
    """Convert iteration records to a `pandas` data frame.

    The data frame is indexed by the iteration number, and has a column for
    each of the other fields of
    [`IterationRecord`][dmma.optimization.IterationRecord]. Records of
    repeated calls to [`optimize`][dmma.optimization.Optimizer.optimize] can be
    combined, in which case the index contains duplicate iteration numbers.

    Args:
        records: The records to convert.

    Returns:
        The data frame.

    Raises:
        NotImplementedError: If `pandas` is not installed.
    """
    if not _HAVE_PANDAS:
        msg = "records_to_dataframe requires the `pandas` module"
        raise NotImplementedError(msg)

    names = [field.name for field in fields(IterationRecord)]
    frame = pd.DataFrame(
        [[getattr(record, name) for name in names] for record in records],
        columns=names,
    )
    return frame.set_index("iteration")
