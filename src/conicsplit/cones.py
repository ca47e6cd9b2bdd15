"""Variables and the cones that own them.

Three cone kinds are supported, matching what interior-point solvers such as
MOSEK accept natively:

    nonnegative orthant       x >= 0                      (exactly one variable)
    second-order cone         ||x_rest||_2 <= t           (t is the nth variable)
    rotated second-order cone ||x_rest||_2^2 <= 2 u v     (u, v >= 0 are the last two)

A cone's variable tuple is fixed at construction time. Every variable belongs
to exactly one cone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Sequence, Tuple


class ConeKind(Enum):
    """Closed set of cone kinds understood by the partitioner and solvers."""

    NON_NEGATIVE_ORTHANT = "non_negative_orthant"
    SECOND_ORDER = "second_order"
    ROTATED_SECOND_ORDER = "rotated_second_order"


@dataclass(eq=False)
class Variable:
    """A scalar program variable.

    Equality and hashing are by identity so variables can key dictionaries in
    constraints and index maps. The column index is not stored here: each
    program owns its own index map.
    """

    objective_coefficient: float = 0.0
    value: float = 0.0
    name: str | None = None
    _cone: "Cone | None" = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.objective_coefficient = float(self.objective_coefficient)
        self.value = float(self.value)

    @property
    def cone(self) -> "Cone | None":
        return self._cone


def _coerce_variables(variables: Iterable[Variable] | int) -> Tuple[Variable, ...]:
    if isinstance(variables, int):
        return tuple(Variable() for _ in range(variables))
    out = tuple(variables)
    for v in out:
        if not isinstance(v, Variable):
            raise TypeError(f"Cone members must be Variable instances, got {type(v).__name__}.")
    return out


class Cone:
    """Base class of the cone variants. Use one of the concrete subclasses."""

    kind: ConeKind
    min_size: int = 1

    def __init__(self, variables: Iterable[Variable] | int) -> None:
        members = _coerce_variables(variables)
        if len(members) < self.min_size:
            raise ValueError(
                f"{type(self).__name__} needs at least {self.min_size} variables, got {len(members)}."
            )
        if len(set(map(id, members))) != len(members):
            raise ValueError("A cone cannot contain the same variable twice.")
        for v in members:
            if v.cone is not None:
                raise ValueError(f"Variable {v!r} already belongs to another cone.")
        for v in members:
            v._cone = self
        self._variables = members

    @property
    def variables(self) -> Tuple[Variable, ...]:
        return self._variables

    @property
    def n(self) -> int:
        """Number of variables in the cone."""
        return len(self._variables)

    @property
    def is_singleton(self) -> bool:
        return self.kind is ConeKind.NON_NEGATIVE_ORTHANT

    def objective_sum(self) -> float:
        return float(sum(v.objective_coefficient for v in self._variables))

    def __repr__(self) -> str:
        label = f"{type(self).__name__}(n={self.n}"
        names = [v.name for v in self._variables if v.name]
        if names:
            label += f", names={names}"
        return label + ")"


class NonNegativeOrthantCone(Cone):
    kind = ConeKind.NON_NEGATIVE_ORTHANT
    min_size = 1

    def __init__(self, variable: Variable | None = None) -> None:
        super().__init__([variable if variable is not None else Variable()])

    @property
    def variable(self) -> Variable:
        return self._variables[0]


class SecondOrderCone(Cone):
    """``||x_1..x_{n-1}|| <= x_n``; the last variable is the distinguished one."""

    kind = ConeKind.SECOND_ORDER
    min_size = 2

    def __init__(self, variables: Sequence[Variable] | int) -> None:
        super().__init__(variables)

    @property
    def nth_variable(self) -> Variable:
        return self._variables[-1]


class RotatedSecondOrderCone(Cone):
    """``||x_1..x_{n-2}||^2 <= 2 x_{n-1} x_n`` with ``x_{n-1}, x_n >= 0``."""

    kind = ConeKind.ROTATED_SECOND_ORDER
    min_size = 3

    def __init__(self, variables: Sequence[Variable] | int) -> None:
        super().__init__(variables)

    @property
    def nth_variable(self) -> Variable:
        return self._variables[-1]

    @property
    def n_minus_1st_variable(self) -> Variable:
        return self._variables[-2]
