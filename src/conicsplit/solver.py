"""Solver boundary: the contract consumed by the partitioner plus a cvxpy backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager, redirect_stderr
from dataclasses import dataclass
import io
import logging
import math
import warnings
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Iterable, Literal, Optional

import numpy as np

from .cones import ConeKind
from .errors import PreconditionError, SolveError, UnsupportedConeError
from .program import ConicProgram

if TYPE_CHECKING:  # pragma: no cover
    from .partition import Partition

logger = logging.getLogger(__name__)

ALL_CONE_KINDS: FrozenSet[ConeKind] = frozenset(ConeKind)

_CVXPY_LOGGERS = ("__cvxpy__", "cvxpy")
_cvxpy_module: Any | None = None


class _BackendImportNoiseFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return "unexpected exception importing solver" not in record.getMessage()


@contextmanager
def _quiet_cvxpy(level: int | None = None):
    """Hide cvxpy's notices about optional backends that fail to import.

    With ``level`` given, the cvxpy loggers are raised to it and stderr is
    captured as well; cvxpy attaches a stderr handler while importing.
    """
    loggers = [logging.getLogger(name) for name in _CVXPY_LOGGERS]
    saved = [lg.level for lg in loggers]
    noise = _BackendImportNoiseFilter()
    for lg in loggers:
        lg.addFilter(noise)
        if level is not None:
            lg.setLevel(level)
    try:
        if level is None:
            yield
        else:
            with redirect_stderr(io.StringIO()):
                yield
    finally:
        for lg, lvl in zip(loggers, saved):
            lg.removeFilter(noise)
            lg.setLevel(lvl)


def _cvxpy() -> Any:
    """Import cvxpy on first solve; building and partitioning never need it."""
    global _cvxpy_module
    if _cvxpy_module is None:
        try:
            with _quiet_cvxpy(logging.ERROR):
                import cvxpy
        except ImportError as exc:  # pragma: no cover - dependency gate
            raise ModuleNotFoundError("cvxpy is required for CvxpySolver. Install with: pip install cvxpy") from exc
        _cvxpy_module = cvxpy
    return _cvxpy_module


def backend_name(name: str) -> str:
    return str(name).upper()


def installed_backends() -> set[str]:
    """Backends cvxpy can dispatch to in this environment, upper-cased."""
    cp = _cvxpy()
    with _quiet_cvxpy():
        return {backend_name(s) for s in cp.installed_solvers()}


_SOLVE_FORMS = {"primal": "MSK_SOLVE_PRIMAL", "dual": "MSK_SOLVE_DUAL", "free": "MSK_SOLVE_FREE"}
AUTO_BACKENDS = ("MOSEK", "CLARABEL", "SCS")


@dataclass
class SolverSettings:
    """Interior-point knobs forwarded verbatim to the backend.

    ``num_threads=0`` lets the backend pick the thread count. ``solve_form``
    selects whether the primal, the dual or either form is solved (MOSEK only).
    """

    duality_gap: float = 1e-8
    primal_feasibility: float = 1e-8
    dual_feasibility: float = 1e-8
    num_threads: int = 0
    solve_form: Literal["primal", "dual", "free"] = "free"
    backend: str = "auto"
    max_iters: int = 10000

    def __post_init__(self) -> None:
        for label in ("duality_gap", "primal_feasibility", "dual_feasibility"):
            if not getattr(self, label) > 0.0:
                raise ValueError(f"{label} must be positive.")
        if self.num_threads < 0:
            raise ValueError("num_threads must be nonnegative.")
        if self.solve_form not in _SOLVE_FORMS:
            raise ValueError("solve_form must be one of {'primal', 'dual', 'free'}.")
        if self.max_iters <= 0:
            raise ValueError("max_iters must be positive.")
        self.backend = str(self.backend).lower()

    def backend_kwargs(self, solver_name: str) -> Dict[str, Any]:
        """Return solver-specific keyword arguments for ``Problem.solve``."""
        sname = backend_name(solver_name)
        if sname == "MOSEK":
            return {
                "mosek_params": {
                    "MSK_DPAR_INTPNT_TOL_REL_GAP": self.duality_gap,
                    "MSK_DPAR_INTPNT_CO_TOL_REL_GAP": self.duality_gap,
                    "MSK_DPAR_INTPNT_TOL_PFEAS": self.primal_feasibility,
                    "MSK_DPAR_INTPNT_CO_TOL_PFEAS": self.primal_feasibility,
                    "MSK_DPAR_INTPNT_TOL_DFEAS": self.dual_feasibility,
                    "MSK_DPAR_INTPNT_CO_TOL_DFEAS": self.dual_feasibility,
                    "MSK_IPAR_NUM_THREADS": int(self.num_threads),
                    "MSK_IPAR_INTPNT_SOLVE_FORM": _SOLVE_FORMS[self.solve_form],
                }
            }
        if sname == "CLARABEL":
            return {
                "tol_gap_rel": self.duality_gap,
                "tol_feas": min(self.primal_feasibility, self.dual_feasibility),
                "max_iter": int(self.max_iters),
            }
        if sname == "SCS":
            return {
                "eps_abs": min(self.primal_feasibility, self.dual_feasibility),
                "eps_rel": self.duality_gap,
                "max_iters": int(self.max_iters),
            }
        return {}


class ConicProgramSolver(ABC):
    """Contract of an external solver that consumes a finished program.

    ``solve`` must write the solution through ``program.x`` and
    ``check_in_matrices`` so variables keep their identity.
    """

    supported_cones: FrozenSet[ConeKind] = ALL_CONE_KINDS

    def __init__(self) -> None:
        self._program: Optional[ConicProgram] = None

    @property
    def program(self) -> Optional[ConicProgram]:
        return self._program

    def supports_cone_types(self, kinds: Iterable[ConeKind]) -> bool:
        return set(kinds) <= self.supported_cones

    def set_conic_program(self, program: ConicProgram) -> None:
        self._program = program

    def _require_program(self) -> ConicProgram:
        if self._program is None:
            raise PreconditionError("No conic program has been set.")
        unsupported = [cone for cone in self._program.cones if cone.kind not in self.supported_cones]
        if unsupported:
            raise UnsupportedConeError(unsupported[0], type(self).__name__)
        return self._program

    @abstractmethod
    def solve(self) -> None:
        """Solve the current program in place or raise :class:`SolveError`."""


class CvxpySolver(ConicProgramSolver):
    """Hand a program to an interior-point backend through cvxpy."""

    def __init__(self, settings: Optional[SolverSettings] = None) -> None:
        super().__init__()
        self.settings = settings or SolverSettings()
        self.last_status: Optional[str] = None
        self.last_backend: Optional[str] = None

    def _resolve_backend(self) -> str:
        installed = installed_backends()
        if self.settings.backend == "auto":
            for name in AUTO_BACKENDS:
                if name in installed:
                    return name
            raise PreconditionError(f"None of {AUTO_BACKENDS} is installed for cvxpy.")
        name = backend_name(self.settings.backend)
        if name not in installed:
            raise PreconditionError(f"cvxpy backend '{name}' is not installed.")
        return name

    def solve(self) -> None:
        program = self._require_program()
        if program.num_variables == 0:
            return
        cp = _cvxpy()
        solver_name = self._resolve_backend()

        with program.matrices():
            A, b, c = program.A, program.b, program.c
            xv = cp.Variable(A.shape[1])
            constraints = []
            if A.shape[0] > 0:
                constraints.append(A @ xv == b)

            nonneg = [program.get_index(cone.variable) for cone in program.nonnegative_orthant_cones]
            if nonneg:
                constraints.append(xv[nonneg] >= 0)
            for cone in program.second_order_cones:
                t = program.get_index(cone.nth_variable)
                rest = [program.get_index(v) for v in cone.variables[:-1]]
                constraints.append(cp.SOC(xv[t], xv[rest]))
            for cone in program.rotated_second_order_cones:
                # 2uv >= ||r||^2 with u, v >= 0  <=>  ||(sqrt(2) r, u - v)|| <= u + v
                u = program.get_index(cone.nth_variable)
                v = program.get_index(cone.n_minus_1st_variable)
                rest = [program.get_index(w) for w in cone.variables[:-2]]
                constraints.append(
                    cp.SOC(xv[u] + xv[v], cp.hstack([math.sqrt(2.0) * xv[rest], xv[[u]] - xv[[v]]]))
                )

            problem = cp.Problem(cp.Minimize(c @ xv), constraints)
            logger.debug(
                "Starting %s on %s with %d variables and %d constraints.",
                solver_name,
                program.name,
                A.shape[1],
                A.shape[0],
            )
            try:
                with _quiet_cvxpy():
                    problem.solve(solver=solver_name, verbose=False, **self.settings.backend_kwargs(solver_name))
            except cp.SolverError as exc:
                self.last_status = "solver_error"
                raise SolveError("solver_error", f"{solver_name} failed on {program.name}: {exc}") from exc

            status = str(problem.status)
            self.last_status = status
            self.last_backend = solver_name
            if status not in {cp.OPTIMAL, cp.OPTIMAL_INACCURATE} or xv.value is None:
                raise SolveError(status)
            if status == cp.OPTIMAL_INACCURATE:
                warnings.warn(
                    f"{solver_name} returned an inaccurate solution for {program.name}.",
                    RuntimeWarning,
                    stacklevel=2,
                )
            program.x[:] = np.asarray(xv.value, dtype=float).reshape(-1)
        logger.debug("Completed %s on %s with status %s.", solver_name, program.name, status)


def solve_leaves(root: "Partition", solver: ConicProgramSolver) -> int:
    """Solve every leaf sub-program of a partition tree in pre-order.

    Solutions land in the shared variables, so the original program sees the
    combined assignment afterwards. Returns the number of leaves solved.
    """
    leaves = root.leaves()
    kinds = set()
    for leaf in leaves:
        kinds |= leaf.program.cone_kinds()
    if not solver.supports_cone_types(kinds):
        offending = next(
            cone for leaf in leaves for cone in leaf.program.cones if not solver.supports_cone_types([cone.kind])
        )
        raise UnsupportedConeError(offending, type(solver).__name__)

    for i, leaf in enumerate(leaves):
        solver.set_conic_program(leaf.program)
        solver.solve()
        logger.debug("Solved leaf %d/%d (%s).", i + 1, len(leaves), leaf.program.name)
    logger.info("Solved %d leaf sub-programs.", len(leaves))
    return len(leaves)
