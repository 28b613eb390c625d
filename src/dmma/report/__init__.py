"""Reporting of optimization progress.

The [`IterationLog`][dmma.report.IterationLog] class writes one fixed-width
row per iteration to a text file, it is used by the
[`Optimizer`][dmma.optimization.Optimizer] to log its progress. The records of
an optimization can also be converted to a
[`pandas`](https://pandas.pydata.org/) DataFrame using
[`records_to_dataframe`][dmma.report.records_to_dataframe], if `pandas` is
installed.
"""

from ._data_frame import records_to_dataframe
from ._log import HEADER, IterationLog

__all__ = [
    "HEADER",
    "IterationLog",
    "records_to_dataframe",
]
