from __future__ import annotations

from pathlib import Path

import pytest
from mpi4py import MPI

from dmma.optimization import IterationRecord
from dmma.report import HEADER, IterationLog


def _record(iteration: int) -> IterationRecord:
    return IterationRecord(
        iteration=iteration,
        objective=-1.5,
        kkt_l2=1e-3,
        kkt_linf=5e-4,
        x_l1=12.0,
        infeasibility=0.0,
    )


def test_iteration_log_rows(log_path: Path, comm: MPI.Comm) -> None:
    with IterationLog(log_path, comm=comm) as log:
        log.write(_record(0))
        log.write(_record(1))
    assert log.closed

    comm.Barrier()
    if comm.Get_rank() == 0:
        text = log_path.read_text(encoding="utf-8")
        row = (
            "   -1.5000000000e+00"
            "    1.0000000000e-03"
            "    5.0000000000e-04"
            "    1.2000000000e+01"
            "    0.0000000000e+00\n"
        )
        assert text == f"{HEADER}\n     0{row}     1{row}"


def test_iteration_log_flushed(log_path: Path, comm: MPI.Comm) -> None:
    log = IterationLog(log_path, comm=comm)
    log.write(_record(0))
    if comm.Get_rank() == 0:
        assert len(log_path.read_text(encoding="utf-8").splitlines()) == 2
    log.close()


def test_iteration_log_header_interval(log_path: Path, comm: MPI.Comm) -> None:
    with IterationLog(log_path, comm=comm, header_interval=3) as log:
        for iteration in range(7):
            log.write(_record(iteration))

    comm.Barrier()
    if comm.Get_rank() == 0:
        lines = log_path.read_text(encoding="utf-8").splitlines()
        assert [idx for idx, line in enumerate(lines) if line == HEADER] == [0, 5, 10]
        assert [idx for idx, line in enumerate(lines) if line == ""] == [4, 9]


def test_iteration_log_creates_directory(tmp_path: Path, comm: MPI.Comm) -> None:
    path = tmp_path / "logs" / "run" / "optimization.log"
    with IterationLog(path, comm=comm):
        pass
    comm.Barrier()
    if comm.Get_rank() == 0:
        assert path.exists()


def test_iteration_log_overwrites(log_path: Path, comm: MPI.Comm) -> None:
    if comm.Get_rank() == 0:
        log_path.write_text("old content\n", encoding="utf-8")
    comm.Barrier()
    with IterationLog(log_path, comm=comm):
        pass
    if comm.Get_rank() == 0:
        assert log_path.read_text(encoding="utf-8") == ""


def test_iteration_log_write_after_close(log_path: Path, comm: MPI.Comm) -> None:
    log = IterationLog(log_path, comm=comm)
    log.close()
    log.close()
    with pytest.raises(ValueError, match="closed"):
        log.write(_record(0))


def test_iteration_log_open_failure(tmp_path: Path, comm: MPI.Comm) -> None:
    with pytest.raises(OSError):  # noqa: PT011
        IterationLog(tmp_path, comm=comm)


@pytest.mark.skipif(
    MPI.COMM_WORLD.Get_size() == 1, reason="requires more than one rank"
)
def test_iteration_log_open_failure_on_root(tmp_path: Path, comm: MPI.Comm) -> None:
    with pytest.raises(OSError) as exc_info:  # noqa: PT011
        IterationLog(tmp_path, comm=comm)
    if comm.Get_rank() != 0:
        assert "on rank 0" in str(exc_info.value)
