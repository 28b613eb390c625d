from __future__ import annotations

from dataclasses import FrozenInstanceError

import numpy as np
import pytest

from dmma.optimization import IterationRecord, max_constraint_violation


def test_max_constraint_violation() -> None:
    assert max_constraint_violation([-1.0, 0.3, 0.0]) == pytest.approx(0.3)


@pytest.mark.parametrize(
    "cons",
    [[], [0.0], [-1.0, -2.0], [-1.0, 0.0, -0.5]],
)
def test_max_constraint_violation_feasible(cons: list[float]) -> None:
    assert max_constraint_violation(np.array(cons)) == 0.0


def test_max_constraint_violation_never_negative() -> None:
    rng = np.random.default_rng(42)
    for _ in range(20):
        cons = rng.normal(size=5)
        violation = max_constraint_violation(cons)
        assert violation >= 0.0
        assert (violation == 0.0) == bool(np.all(cons <= 0.0))


def test_iteration_record_frozen() -> None:
    record = IterationRecord(
        iteration=0,
        objective=1.0,
        kkt_l2=0.1,
        kkt_linf=0.05,
        x_l1=3.0,
        infeasibility=0.0,
    )
    with pytest.raises(FrozenInstanceError):
        record.objective = 2.0  # type: ignore[misc]
