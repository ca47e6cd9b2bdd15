"""Conic program container and its sparse matrix form.

The program solved throughout the project is

    minimize    c^T x
    subject to  A x = b,
                x in K_1 x K_2 x ... x K_p,

where every K_j is one of the cones in :mod:`conicsplit.cones`. Cones and
constraints are registered as objects; ``A``, ``b``, ``c`` and ``x`` are
derived from them on demand by :meth:`ConicProgram.check_out_matrices` and the
solved ``x`` is pushed back into the variables by
:meth:`ConicProgram.check_in_matrices`.
"""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
import logging
from typing import Dict, Iterable, Iterator, List, Set

import numpy as np
from scipy import sparse

from .cones import Cone, ConeKind, NonNegativeOrthantCone, RotatedSecondOrderCone, SecondOrderCone, Variable
from .constraint import LinearConstraint
from .errors import NotRegisteredError, PreconditionError

logger = logging.getLogger(__name__)


class MatrixState(Enum):
    CLEAN = "clean"
    CHECKED_OUT = "checked_out"


class ConicProgram:
    """Registry of cones and linear constraints with lazily built index maps.

    Index maps and matrices only exist between a :meth:`check_out_matrices` /
    :meth:`check_in_matrices` pair. The class is not synchronized: callers
    must serialize structural mutation and matrix access on one instance.
    """

    def __init__(self, name: str = "unnamed") -> None:
        self.name = name
        self._cones: Dict[Cone, None] = {}
        self._constraints: Dict[LinearConstraint, None] = {}
        self._state = MatrixState.CLEAN
        self._var_index: Dict[Variable, int] = {}
        self._cone_index: Dict[Cone, int] = {}
        self._con_index: Dict[LinearConstraint, int] = {}
        self._A: sparse.csc_matrix | None = None
        self._b: np.ndarray | None = None
        self._c: np.ndarray | None = None
        self._x: np.ndarray | None = None

    # ------------------------------------------------------------------
    # structure
    # ------------------------------------------------------------------
    def _require_mutable(self) -> None:
        if self._state is MatrixState.CHECKED_OUT:
            raise PreconditionError("Cannot modify a conic program while its matrices are checked out.")

    def add_cone(self, cone: Cone) -> Cone:
        if not isinstance(cone, Cone):
            raise TypeError(f"Expected a Cone, got {type(cone).__name__}.")
        self._require_mutable()
        self._cones[cone] = None
        return cone

    def add_constraint(self, constraint: LinearConstraint) -> LinearConstraint:
        if not isinstance(constraint, LinearConstraint):
            raise TypeError(f"Expected a LinearConstraint, got {type(constraint).__name__}.")
        self._require_mutable()
        if len(constraint) == 0:
            raise ValueError("A linear constraint must reference at least one variable.")
        for var in constraint.variables:
            if var.cone is None or var.cone not in self._cones:
                raise NotRegisteredError(var, "Variable")
        self._constraints[constraint] = None
        return constraint

    def remove_constraint(self, constraint: LinearConstraint) -> None:
        self._require_mutable()
        if constraint not in self._constraints:
            raise NotRegisteredError(constraint, "LinearConstraint")
        del self._constraints[constraint]

    def remove_cone(self, cone: Cone) -> None:
        self._require_mutable()
        if cone not in self._cones:
            raise NotRegisteredError(cone, "Cone")
        members = set(cone.variables)
        for lc in self._constraints:
            if any(v in members for v in lc.variables):
                raise ValueError(f"{cone!r} is still referenced by {lc!r}.")
        del self._cones[cone]

    def restrict(
        self,
        cones: Iterable[Cone],
        constraints: Iterable[LinearConstraint],
        name: str | None = None,
    ) -> "ConicProgram":
        """Return a program over a subset of cones sharing the same objects."""
        sub = ConicProgram(name=name or f"{self.name}/sub")
        for cone in cones:
            if cone not in self._cones:
                raise NotRegisteredError(cone, "Cone")
            sub.add_cone(cone)
        for lc in constraints:
            if lc not in self._constraints:
                raise NotRegisteredError(lc, "LinearConstraint")
            sub.add_constraint(lc)
        return sub

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    @property
    def cones(self) -> List[Cone]:
        return list(self._cones)

    @property
    def constraints(self) -> List[LinearConstraint]:
        return list(self._constraints)

    @property
    def variables(self) -> List[Variable]:
        """Variables in column order (cone registration order)."""
        return [v for cone in self._cones for v in cone.variables]

    @property
    def num_variables(self) -> int:
        return sum(cone.n for cone in self._cones)

    @property
    def num_constraints(self) -> int:
        return len(self._constraints)

    @property
    def matrix_state(self) -> MatrixState:
        return self._state

    def has_cone(self, cone: Cone) -> bool:
        return cone in self._cones

    def has_constraint(self, constraint: LinearConstraint) -> bool:
        return constraint in self._constraints

    def cones_of_kind(self, kind: ConeKind) -> List[Cone]:
        return [cone for cone in self._cones if cone.kind is kind]

    @property
    def nonnegative_orthant_cones(self) -> List[NonNegativeOrthantCone]:
        return self.cones_of_kind(ConeKind.NON_NEGATIVE_ORTHANT)  # type: ignore[return-value]

    @property
    def second_order_cones(self) -> List[SecondOrderCone]:
        return self.cones_of_kind(ConeKind.SECOND_ORDER)  # type: ignore[return-value]

    @property
    def rotated_second_order_cones(self) -> List[RotatedSecondOrderCone]:
        return self.cones_of_kind(ConeKind.ROTATED_SECOND_ORDER)  # type: ignore[return-value]

    def cone_kinds(self) -> Set[ConeKind]:
        return {cone.kind for cone in self._cones}

    def objective_value(self) -> float:
        """Evaluate c^T x at the variables' current values."""
        return float(sum(v.objective_coefficient * v.value for v in self.variables))

    def primal_residual(self) -> np.ndarray:
        """Return b - A x evaluated at the variables' current values."""
        return -np.array([lc.residual() for lc in self._constraints], dtype=float)

    # ------------------------------------------------------------------
    # matrix check-out / check-in
    # ------------------------------------------------------------------
    def check_out_matrices(self) -> None:
        """Assign indices and assemble ``A``, ``b``, ``c`` and ``x``."""
        if self._state is MatrixState.CHECKED_OUT:
            raise PreconditionError("Matrices are already checked out.")

        var_index: Dict[Variable, int] = {}
        cone_index: Dict[Cone, int] = {}
        for j, cone in enumerate(self._cones):
            cone_index[cone] = j
            for v in cone.variables:
                var_index[v] = len(var_index)
        con_index = {lc: i for i, lc in enumerate(self._constraints)}

        n = len(var_index)
        m = len(con_index)
        rows: List[int] = []
        cols: List[int] = []
        vals: List[float] = []
        for lc, i in con_index.items():
            for var, coef in lc.variables.items():
                col = var_index.get(var)
                if col is None:
                    raise NotRegisteredError(var, "Variable")
                rows.append(i)
                cols.append(col)
                vals.append(coef)

        self._A = sparse.csc_matrix(
            (np.asarray(vals, dtype=float), (np.asarray(rows, dtype=np.int64), np.asarray(cols, dtype=np.int64))),
            shape=(m, n),
        )
        self._b = np.array([lc.constant for lc in con_index], dtype=float)
        self._c = np.array([v.objective_coefficient for v in var_index], dtype=float)
        self._x = np.array([v.value for v in var_index], dtype=float)
        self._var_index = var_index
        self._cone_index = cone_index
        self._con_index = con_index
        self._state = MatrixState.CHECKED_OUT
        logger.debug("Checked out %s: %d constraints x %d variables, nnz=%d.", self.name, m, n, self._A.nnz)

    def check_in_matrices(self) -> None:
        """Write ``x`` back into the variables and drop the index maps."""
        if self._state is not MatrixState.CHECKED_OUT:
            raise PreconditionError("Matrices are not checked out.")
        assert self._x is not None
        for var, j in self._var_index.items():
            var.value = float(self._x[j])
        self._release()

    def _release(self) -> None:
        self._var_index = {}
        self._cone_index = {}
        self._con_index = {}
        self._A = self._b = self._c = self._x = None
        self._state = MatrixState.CLEAN

    @contextmanager
    def matrices(self) -> Iterator["ConicProgram"]:
        """Scope a check-out; ``x`` is written back only on normal exit."""
        self.check_out_matrices()
        try:
            yield self
        except BaseException:
            if self._state is MatrixState.CHECKED_OUT:
                self._release()
            raise
        if self._state is MatrixState.CHECKED_OUT:
            self.check_in_matrices()

    def _require_checked_out(self) -> None:
        if self._state is not MatrixState.CHECKED_OUT:
            raise PreconditionError("Matrices must be checked out before index or matrix access.")

    def get_index(self, obj: Variable | Cone | LinearConstraint) -> int:
        """Column of a variable, position of a cone or row of a constraint."""
        self._require_checked_out()
        if isinstance(obj, Variable):
            table: Dict = self._var_index
        elif isinstance(obj, Cone):
            table = self._cone_index
        elif isinstance(obj, LinearConstraint):
            table = self._con_index
        else:
            raise TypeError(f"Cannot index object of type {type(obj).__name__}.")
        try:
            return table[obj]
        except KeyError:
            raise NotRegisteredError(obj) from None

    @property
    def A(self) -> sparse.csc_matrix:
        self._require_checked_out()
        assert self._A is not None
        return self._A

    @property
    def b(self) -> np.ndarray:
        self._require_checked_out()
        assert self._b is not None
        return self._b

    @property
    def c(self) -> np.ndarray:
        self._require_checked_out()
        assert self._c is not None
        return self._c

    @property
    def x(self) -> np.ndarray:
        """Current assignment; solvers write into this array in place."""
        self._require_checked_out()
        assert self._x is not None
        return self._x

    def __repr__(self) -> str:
        return (
            f"ConicProgram(name={self.name!r}, cones={len(self._cones)}, "
            f"variables={self.num_variables}, constraints={len(self._constraints)})"
        )
