"""The fixed-width iteration log."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Final, Self, TextIO

from mpi4py import MPI

from dmma.config.constants import DEFAULT_HEADER_INTERVAL

if TYPE_CHECKING:
    from types import TracebackType

    from dmma.optimization import IterationRecord

_ROOT: Final = 0

HEADER: Final = (
    f"{'iter':>6}{'obj':>20}{'KKT_l2':>20}{'KKT_linf':>20}{'|x|_1':>20}{'infeas':>20}"
)
"""The header line of the iteration log."""


class IterationLog:
    """Write iteration records to a fixed-width text file.

    Each record is written as one row, with the iteration number in a field of
    six characters, followed by the objective, the L2 and infinity norms of the
    KKT residual, the L1 norm of the design, and the constraint violation, in
    fields of twenty characters in scientific notation. A header line is
    written before the rows of iterations 0, `header_interval`,
    `2 * header_interval`, and so on. Headers after the first one in the file
    are preceded by a blank line. The file is flushed after each row, hence an
    aborted optimization leaves a complete log up to the last iteration.

    The log is a collective resource: it must be created on all ranks of the
    communicator, but only rank 0 opens and writes the file. Opening the file
    is checked collectively, if it fails on rank 0, an `OSError` is raised on
    all ranks.

    The log can be used as a context manager, which closes it on exit.
    """

    def __init__(
        self,
        path: Path | str,
        *,
        comm: MPI.Comm,
        header_interval: int = DEFAULT_HEADER_INTERVAL,
    ) -> None:
        """Open the iteration log.

        An existing file is overwritten.

        Args:
            path:            The path of the log file.
            comm:            The communicator of the optimization.
            header_interval: Number of iterations between headers.

        Raises:
            OSError: If the file cannot be opened.
        """
        self._path = Path(path)
        self._header_interval = header_interval
        self._file: TextIO | None = None
        self._closed = False
        self._headers = 0

        error: OSError | None = None
        if comm.Get_rank() == _ROOT:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._file = self._path.open("w", encoding="utf-8")
            except OSError as exc:
                error = exc
        if comm.allreduce(error is not None, op=MPI.LOR):
            if error is not None:
                raise error
            msg = f"Failed to open the iteration log on rank {_ROOT}: {self._path}"
            raise OSError(msg)

    @property
    def path(self) -> Path:
        """The path of the log file."""
        return self._path

    @property
    def closed(self) -> bool:
        """Whether the log has been closed."""
        return self._closed

    def write(self, record: IterationRecord) -> None:
        """Write an iteration record.

        On ranks other than rank 0 this is a no-op.

        Args:
            record: The record to write.

        Raises:
            ValueError: If the log was closed.
        """
        if self._closed:
            msg = f"The iteration log is closed: {self._path}"
            raise ValueError(msg)
        if self._file is None:
            return
        if record.iteration % self._header_interval == 0:
            if self._headers > 0:
                self._file.write("\n")
            self._file.write(f"{HEADER}\n")
            self._headers += 1
        self._file.write(
            f"{record.iteration:6d}"
            f"{record.objective:20.10e}"
            f"{record.kkt_l2:20.10e}"
            f"{record.kkt_linf:20.10e}"
            f"{record.x_l1:20.10e}"
            f"{record.infeasibility:20.10e}\n"
        )
        self._file.flush()

    def close(self) -> None:
        """Close the log file.

        Closing a closed log has no effect.
        """
        if self._closed:
            return
        self._closed = True
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()
