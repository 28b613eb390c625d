"""This module implements the MMA subproblem solver plugin."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import numpy as np
from mpi4py import MPI
from pydantic import BaseModel, ConfigDict, NonNegativeFloat, PositiveFloat, PositiveInt
from scipy.linalg import LinAlgError, solve

from dmma.enums import Stage
from dmma.exceptions import SolverError

from .base import SubproblemSolver, SubproblemSolverPlugin

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from dmma.linalg import DistributedVector

_SUPPORTED_METHODS: Final = {"default", "mma"}

# Floor for the bound range, avoids division by zero for collapsed boxes:
_RANGE_EPS: Final = 1e-5

# Relative width below which a variable is held fixed:
_FIXED_EPS: Final = 1e-12


class MMAOptions(BaseModel):
    r"""Options of the MMA subproblem solver.

    The MMA subproblem is written in Svanberg's standard form:

    $$
    \begin{align}
        \text{minimize} \quad & f_0(x) + a_0 z + \sum_i \left(c_i y_i + \tfrac{1}{2} d_i y_i^2\right) \\
        \text{subject to} \quad & f_i(x) - a_i z - y_i \le 0, \quad y_i \ge 0, \quad z \ge 0
    \end{align}
    $$

    With the default values, the artificial variables $y_i$ are driven to
    zero for feasible problems and the original problem is recovered.

    Attributes:
        a0:                    The coefficient of $z$ in the objective.
        a:                     The coefficient of $z$ in the constraints.
        c:                     The linear coefficient of $y_i$ in the objective.
        d:                     The quadratic coefficient of $y_i$ in the objective.
        asyinit:               Initial distance of the asymptotes.
        asyincr:               Factor to widen the asymptotes.
        asydecr:               Factor to narrow the asymptotes.
        asymin:                Minimum distance of the asymptotes.
        asymax:                Maximum distance of the asymptotes.
        albefa:                Distance of the subproblem bounds to the asymptotes.
        raa0:                  Regularization of the approximations.
        epsimin:               Final barrier parameter of the interior point method.
        max_newton_iterations: Maximum Newton iterations per barrier parameter.
    """

    a0: PositiveFloat = 1.0
    a: NonNegativeFloat = 0.0
    c: NonNegativeFloat = 1000.0
    d: PositiveFloat = 1.0
    asyinit: PositiveFloat = 0.5
    asyincr: PositiveFloat = 1.2
    asydecr: PositiveFloat = 0.7
    asymin: PositiveFloat = 0.01
    asymax: PositiveFloat = 10.0
    albefa: PositiveFloat = 0.1
    raa0: PositiveFloat = 1e-5
    epsimin: PositiveFloat = 1e-7
    max_newton_iterations: PositiveInt = 200

    model_config = ConfigDict(extra="forbid", frozen=True)


@dataclass(slots=True)
class _Multipliers:
    y: NDArray[np.float64]
    z: float
    lam: NDArray[np.float64]
    xsi: NDArray[np.float64]
    eta: NDArray[np.float64]
    mu: NDArray[np.float64]
    zet: float
    s: NDArray[np.float64]


@dataclass(slots=True)
class _Subproblem:
    """The convex approximation at the current design, restricted to free variables."""

    comm: MPI.Comm
    low: NDArray[np.float64]
    upp: NDArray[np.float64]
    alfa: NDArray[np.float64]
    beta: NDArray[np.float64]
    p0: NDArray[np.float64]
    q0: NDArray[np.float64]
    P: NDArray[np.float64]
    Q: NDArray[np.float64]
    b: NDArray[np.float64]
    a0: float
    a: NDArray[np.float64]
    c: NDArray[np.float64]
    d: NDArray[np.float64]

    def gvec(self, x: NDArray[np.float64]) -> NDArray[np.float64]:
        local = self.P @ (1.0 / (self.upp - x)) + self.Q @ (1.0 / (x - self.low))
        return np.asarray(self.comm.allreduce(local), dtype=np.float64)

    def dpsidx(
        self, x: NDArray[np.float64], lam: NDArray[np.float64]
    ) -> NDArray[np.float64]:
        plam = self.p0 + self.P.T @ lam
        qlam = self.q0 + self.Q.T @ lam
        return plam / (self.upp - x) ** 2 - qlam / (x - self.low) ** 2


class MMASolver(SubproblemSolver):
    """Distributed implementation of the method of moving asymptotes.

    This solver implements Svanberg's method of moving asymptotes (MMA). In
    each update, the objective and the constraints are replaced by convex
    separable approximations, defined by two asymptotes per variable that move
    with the history of the iterates. The approximate subproblem is solved
    with a primal-dual interior point method.

    The design variables are distributed over the ranks of the communicator,
    while the constraints are replicated. The Newton systems of the interior
    point method are reduced to dense systems in the constraint multipliers,
    of size `num_cons + 1`. All sums over the design variables are computed by
    allreduce operations, hence all ranks solve identical reduced systems and
    take identical decisions.

    The move-limit box passed to
    [`update`][dmma.plugins.subproblem.mma.MMASolver.update] takes the role of
    the variable bounds of the subproblem. Variables for which the box has
    collapsed to a point are held fixed.

    The options are described by [`MMAOptions`][dmma.plugins.subproblem.mma.MMAOptions].
    """

    def __init__(
        self,
        comm: MPI.Comm,
        num_vars: int,
        num_cons: int,
        x: DistributedVector,
        options: dict[str, Any] | None,
    ) -> None:
        """Initialize the MMA solver.

        See the [dmma.plugins.subproblem.base.SubproblemSolver][] abstract base class.

        # noqa
        """
        self._comm = comm
        self._num_vars = num_vars
        self._num_cons = num_cons
        self._options = MMAOptions.model_validate(options or {})
        self._iteration = 0
        self._xold1 = x.duplicate()
        self._xold2 = x.duplicate()
        self._low = x.duplicate()
        self._upp = x.duplicate()
        self._xold1.copy_from(x)
        self._xold2.copy_from(x)
        self._multipliers: _Multipliers | None = None

    @property
    def iteration(self) -> int:
        """The number of updates performed."""
        return self._iteration

    def update(  # noqa: PLR0913
        self,
        x: DistributedVector,
        g: DistributedVector,
        cons: NDArray[np.float64],
        gcon: tuple[DistributedVector, ...],
        lb_temp: DistributedVector,
        ub_temp: DistributedVector,
    ) -> None:
        """Compute the next design.

        See the [dmma.plugins.subproblem.base.SubproblemSolver][] abstract base class.

        # noqa
        """
        opts = self._options
        self._iteration += 1

        xval = x.array.copy()
        xmin = lb_temp.array
        xmax = ub_temp.array
        # Decided collectively, all ranks must leave before the reductions below:
        if self._comm.allreduce(bool(np.any(xmin > xmax)), op=MPI.LOR):
            msg = "The move-limit box is empty, the design violates its bounds"
            raise SolverError(msg, stage=Stage.UPDATE)

        xmami = np.maximum(xmax - xmin, _RANGE_EPS)
        low, upp = self._update_asymptotes(xval, xmami)

        alfa = np.maximum(xmin, low + opts.albefa * (xval - low))
        beta = np.minimum(xmax, upp - opts.albefa * (upp - xval))
        fixed = (beta - alfa) <= _FIXED_EPS * xmami
        free = ~fixed

        ux1 = upp - xval
        xl1 = xval - low
        dfdx = _jacobian(gcon, xval.size)
        raa = opts.raa0 / xmami

        p0 = np.maximum(g.array, 0.0)
        q0 = np.maximum(-g.array, 0.0)
        pq0 = 0.001 * (p0 + q0) + raa
        p0 = (p0 + pq0) * ux1**2
        q0 = (q0 + pq0) * xl1**2

        P = np.maximum(dfdx, 0.0)  # noqa: N806
        Q = np.maximum(-dfdx, 0.0)  # noqa: N806
        PQ = 0.001 * (P + Q) + raa  # noqa: N806
        P = (P + PQ) * ux1**2  # noqa: N806
        Q = (Q + PQ) * xl1**2  # noqa: N806

        # The approximations equal the constraint values at xval, and the
        # contribution of fixed variables is constant:
        xfix = alfa[fixed]
        local_b = P @ (1.0 / ux1) + Q @ (1.0 / xl1)
        local_fixed = P[:, fixed] @ (1.0 / (upp[fixed] - xfix)) + Q[:, fixed] @ (
            1.0 / (xfix - low[fixed])
        )
        b_total, b_fixed = self._comm.allreduce(np.stack([local_b, local_fixed]))

        m = self._num_cons
        subproblem = _Subproblem(
            comm=self._comm,
            low=low[free],
            upp=upp[free],
            alfa=alfa[free],
            beta=beta[free],
            p0=p0[free],
            q0=q0[free],
            P=P[:, free],
            Q=Q[:, free],
            b=b_total - cons - b_fixed,
            a0=opts.a0,
            a=np.full(m, opts.a),
            c=np.full(m, opts.c),
            d=np.full(m, opts.d),
        )
        xfree, multipliers = _solve_subproblem(
            subproblem, opts.epsimin, opts.max_newton_iterations
        )

        # Multipliers of the fixed variables follow from stationarity:
        lam = multipliers.lam
        dpsidx = (p0[fixed] + P[:, fixed].T @ lam) / (upp[fixed] - xfix) ** 2 - (
            q0[fixed] + Q[:, fixed].T @ lam
        ) / (xfix - low[fixed]) ** 2
        xsi = np.zeros_like(xval)
        eta = np.zeros_like(xval)
        xsi[free] = multipliers.xsi
        eta[free] = multipliers.eta
        xsi[fixed] = np.maximum(dpsidx, 0.0)
        eta[fixed] = np.maximum(-dpsidx, 0.0)
        multipliers.xsi = xsi
        multipliers.eta = eta
        self._multipliers = multipliers

        self._xold2.copy_from(self._xold1)
        self._xold1.array[:] = xval
        self._low.array[:] = low
        self._upp.array[:] = upp
        x.array[free] = xfree
        x.array[fixed] = xfix

    def kkt_residual(  # noqa: PLR0913
        self,
        x: DistributedVector,
        g: DistributedVector,
        cons: NDArray[np.float64],
        gcon: tuple[DistributedVector, ...],
        lb_temp: DistributedVector,
        ub_temp: DistributedVector,
    ) -> tuple[float, float]:
        """Compute the residual of the KKT conditions.

        The residual is evaluated at the updated design, using the gradients
        passed to the last update, and the multipliers found by the last
        subproblem solution.

        See the [dmma.plugins.subproblem.base.SubproblemSolver][] abstract base class.

        # noqa
        """
        if self._multipliers is None:
            msg = "The KKT residual is not available before the first update"
            raise SolverError(msg, stage=Stage.KKT_RESIDUAL)
        opts = self._options
        mul = self._multipliers
        m = self._num_cons
        a = np.full(m, opts.a)
        dfdx = _jacobian(gcon, x.local_size)

        local = (
            g.array + dfdx.T @ mul.lam - mul.xsi + mul.eta,
            mul.xsi * (x.array - lb_temp.array),
            mul.eta * (ub_temp.array - x.array),
        )
        replicated = (
            opts.c + opts.d * mul.y - mul.mu - mul.lam,
            np.array([opts.a0 - mul.zet - a @ mul.lam]),
            cons - a * mul.z - mul.y + mul.s,
            mul.mu * mul.y,
            np.array([mul.zet * mul.z]),
            mul.lam * mul.s,
        )
        return _norms(self._comm, local, replicated)

    def destroy(self) -> None:
        """Release the resources held by the solver.

        See the [dmma.plugins.subproblem.base.SubproblemSolver][] abstract base class.

        # noqa
        """
        for vector in (self._xold1, self._xold2, self._low, self._upp):
            vector.destroy()
        self._multipliers = None

    def _update_asymptotes(
        self, xval: NDArray[np.float64], xmami: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        opts = self._options
        if self._iteration <= 2:  # noqa: PLR2004
            return xval - opts.asyinit * xmami, xval + opts.asyinit * xmami
        xold1 = self._xold1.array
        xold2 = self._xold2.array
        zzz = (xval - xold1) * (xold1 - xold2)
        factor = np.ones_like(xval)
        factor[zzz > 0] = opts.asyincr
        factor[zzz < 0] = opts.asydecr
        low = xval - factor * (xold1 - self._low.array)
        upp = xval + factor * (self._upp.array - xold1)
        low = np.clip(low, xval - opts.asymax * xmami, xval - opts.asymin * xmami)
        upp = np.clip(upp, xval + opts.asymin * xmami, xval + opts.asymax * xmami)
        return low, upp


class MMASolverPlugin(SubproblemSolverPlugin):
    """The MMA subproblem solver plugin class."""

    @classmethod
    def create(  # noqa: PLR0913
        cls,
        method: str,  # noqa: ARG003
        comm: MPI.Comm,
        num_vars: int,
        num_cons: int,
        x: DistributedVector,
        options: dict[str, Any] | None,
    ) -> MMASolver:
        """Initialize the solver plugin.

        See the [dmma.plugins.subproblem.base.SubproblemSolverPlugin][] abstract base class.

        # noqa
        """
        return MMASolver(comm, num_vars, num_cons, x, options)

    @classmethod
    def is_supported(cls, method: str) -> bool:
        """Check if a method is supported.

        See the [dmma.plugins.base.Plugin][] abstract base class.

        # noqa
        """
        return method.lower() in _SUPPORTED_METHODS

    @classmethod
    def validate_options(cls, method: str, options: dict[str, Any] | None) -> None:  # noqa: ARG003
        """Validate the options of a given method.

        See the [dmma.plugins.subproblem.base.SubproblemSolverPlugin][] abstract base class.

        # noqa
        """
        if options is not None:
            MMAOptions.model_validate(options)


def _jacobian(
    gcon: tuple[DistributedVector, ...], num_vars_local: int
) -> NDArray[np.float64]:
    if not gcon:
        return np.zeros((0, num_vars_local), dtype=np.float64)
    return np.vstack([row.array for row in gcon])


def _norms(
    comm: MPI.Comm,
    local: tuple[NDArray[np.float64], ...],
    replicated: tuple[NDArray[np.float64], ...],
) -> tuple[float, float]:
    local_sq = sum(float(np.dot(item, item)) for item in local)
    local_max = max(float(np.max(np.abs(item), initial=0.0)) for item in local)
    global_sq = comm.allreduce(local_sq)
    global_max = comm.allreduce(local_max, op=MPI.MAX)
    replicated_sq = sum(float(np.dot(item, item)) for item in replicated)
    replicated_max = max(
        float(np.max(np.abs(item), initial=0.0)) for item in replicated
    )
    return (
        float(np.sqrt(global_sq + replicated_sq)),
        float(max(global_max, replicated_max)),
    )


def _residual(
    sub: _Subproblem,
    epsi: float,
    x: NDArray[np.float64],
    mul: _Multipliers,
) -> tuple[float, float]:
    rex = sub.dpsidx(x, mul.lam) - mul.xsi + mul.eta
    rexsi = mul.xsi * (x - sub.alfa) - epsi
    reeta = mul.eta * (sub.beta - x) - epsi
    rey = sub.c + sub.d * mul.y - mul.mu - mul.lam
    rez = np.array([sub.a0 - mul.zet - sub.a @ mul.lam])
    relam = sub.gvec(x) - sub.a * mul.z - mul.y + mul.s - sub.b
    remu = mul.mu * mul.y - epsi
    rezet = np.array([mul.zet * mul.z - epsi])
    res = mul.lam * mul.s - epsi
    return _norms(sub.comm, (rex, rexsi, reeta), (rey, rez, relam, remu, rezet, res))


def _solve_subproblem(
    sub: _Subproblem, epsimin: float, max_iterations: int
) -> tuple[NDArray[np.float64], _Multipliers]:
    m = sub.b.size
    x = 0.5 * (sub.alfa + sub.beta)
    mul = _Multipliers(
        y=np.ones(m),
        z=1.0,
        lam=np.ones(m),
        xsi=np.maximum(1.0 / (x - sub.alfa), 1.0),
        eta=np.maximum(1.0 / (sub.beta - x), 1.0),
        mu=np.maximum(1.0, 0.5 * sub.c),
        zet=1.0,
        s=np.ones(m),
    )

    epsi = 1.0
    while epsi > epsimin:
        residual_norm, residual_max = _residual(sub, epsi, x, mul)
        iteration = 0
        while residual_max > 0.9 * epsi and iteration < max_iterations:
            iteration += 1
            dx, dmul = _newton_step(sub, epsi, x, mul)
            step = _max_step(sub, x, mul, dx, dmul)

            x_old = x
            mul_old = mul
            residual_new = 2.0 * residual_norm
            backtracks = 0
            while residual_new > residual_norm and backtracks < 50:  # noqa: PLR2004
                backtracks += 1
                x = x_old + step * dx
                mul = _Multipliers(
                    y=mul_old.y + step * dmul.y,
                    z=mul_old.z + step * dmul.z,
                    lam=mul_old.lam + step * dmul.lam,
                    xsi=mul_old.xsi + step * dmul.xsi,
                    eta=mul_old.eta + step * dmul.eta,
                    mu=mul_old.mu + step * dmul.mu,
                    zet=mul_old.zet + step * dmul.zet,
                    s=mul_old.s + step * dmul.s,
                )
                residual_new, residual_max = _residual(sub, epsi, x, mul)
                step /= 2.0
            residual_norm = residual_new
        epsi *= 0.1

    return x, mul


def _newton_step(
    sub: _Subproblem, epsi: float, x: NDArray[np.float64], mul: _Multipliers
) -> tuple[NDArray[np.float64], _Multipliers]:
    m = sub.b.size
    ux1 = sub.upp - x
    xl1 = x - sub.low
    ux2 = ux1 * ux1
    xl2 = xl1 * xl1
    plam = sub.p0 + sub.P.T @ mul.lam
    qlam = sub.q0 + sub.Q.T @ mul.lam
    GG = sub.P / ux2 - sub.Q / xl2  # noqa: N806
    dpsidx = plam / ux2 - qlam / xl2

    delx = dpsidx - epsi / (x - sub.alfa) + epsi / (sub.beta - x)
    dely = sub.c + sub.d * mul.y - mul.lam - epsi / mul.y
    delz = sub.a0 - sub.a @ mul.lam - epsi / mul.z
    dellam = sub.gvec(x) - sub.a * mul.z - mul.y - sub.b + epsi / mul.lam

    diagx = 2.0 * (plam / (ux2 * ux1) + qlam / (xl2 * xl1))
    diagx += mul.xsi / (x - sub.alfa) + mul.eta / (sub.beta - x)
    diagy = sub.d + mul.mu / mul.y
    diaglamyi = mul.s / mul.lam + 1.0 / diagy

    # The Newton system is reduced to the multipliers; the sums over the
    # variables are the only distributed parts:
    local = np.empty((m + 1, m))
    local[:m] = (GG / diagx) @ GG.T
    local[m] = GG @ (delx / diagx)
    reduced = sub.comm.allreduce(local)
    matrix = np.zeros((m + 1, m + 1))
    matrix[:m, :m] = reduced[:m] + np.diag(diaglamyi)
    matrix[:m, m] = sub.a
    matrix[m, :m] = sub.a
    matrix[m, m] = -mul.zet / mul.z
    rhs = np.append(dellam + dely / diagy - reduced[m], delz)
    try:
        solution = solve(matrix, rhs)
    except (LinAlgError, ValueError) as err:
        msg = f"Failed to solve the MMA dual system: {err}"
        raise SolverError(msg, stage=Stage.UPDATE) from err

    dlam = solution[:m]
    dz = float(solution[m])
    dx = -delx / diagx - (GG.T @ dlam) / diagx
    dy = -dely / diagy + dlam / diagy
    return dx, _Multipliers(
        y=dy,
        z=dz,
        lam=dlam,
        xsi=-mul.xsi + epsi / (x - sub.alfa) - (mul.xsi * dx) / (x - sub.alfa),
        eta=-mul.eta + epsi / (sub.beta - x) + (mul.eta * dx) / (sub.beta - x),
        mu=-mul.mu + epsi / mul.y - (mul.mu * dy) / mul.y,
        zet=-mul.zet + epsi / mul.z - mul.zet * dz / mul.z,
        s=-mul.s + epsi / mul.lam - (mul.s * dlam) / mul.lam,
    )


def _max_step(
    sub: _Subproblem,
    x: NDArray[np.float64],
    mul: _Multipliers,
    dx: NDArray[np.float64],
    dmul: _Multipliers,
) -> float:
    # Largest step keeping the iterates strictly inside the feasible region:
    local = max(
        float(np.max(-1.01 * dmul.xsi / mul.xsi, initial=-np.inf)),
        float(np.max(-1.01 * dmul.eta / mul.eta, initial=-np.inf)),
        float(np.max(-1.01 * dx / (x - sub.alfa), initial=-np.inf)),
        float(np.max(1.01 * dx / (sub.beta - x), initial=-np.inf)),
    )
    replicated = np.concatenate(
        [
            dmul.y / mul.y,
            [dmul.z / mul.z],
            dmul.lam / mul.lam,
            dmul.mu / mul.mu,
            [dmul.zet / mul.zet],
            dmul.s / mul.s,
        ]
    )
    stmxx = max(
        float(sub.comm.allreduce(local, op=MPI.MAX)),
        float(np.max(-1.01 * replicated)),
    )
    return 1.0 / max(stmxx, 1.0)
