"""Sparse linear equality constraints over program variables."""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Tuple

from .cones import Cone, Variable


class LinearConstraint:
    """The equation ``sum_v coef_v * v = constant``.

    Coefficients are kept in insertion order; a zero coefficient is never
    stored. Equality and hashing are by identity.
    """

    def __init__(
        self,
        coefficients: Mapping[Variable, float] | Iterable[Tuple[Variable, float]] | None = None,
        constant: float = 0.0,
        name: str | None = None,
    ) -> None:
        self._coefficients: Dict[Variable, float] = {}
        self.constant = float(constant)
        self.name = name
        if coefficients is not None:
            items = coefficients.items() if isinstance(coefficients, Mapping) else coefficients
            for var, coef in items:
                self.set_coefficient(var, coef)

    def set_coefficient(self, variable: Variable, value: float) -> None:
        if not isinstance(variable, Variable):
            raise TypeError(f"Expected a Variable, got {type(variable).__name__}.")
        value = float(value)
        if value == 0.0:
            self._coefficients.pop(variable, None)
        else:
            self._coefficients[variable] = value

    def coefficient(self, variable: Variable) -> float:
        return self._coefficients.get(variable, 0.0)

    @property
    def variables(self) -> Mapping[Variable, float]:
        """Read-only view of the coefficient map."""
        return MappingProxyType(self._coefficients)

    def cones(self) -> List[Cone]:
        """Cones touched by this constraint, in order of first appearance."""
        seen: Dict[int, Cone] = {}
        for var in self._coefficients:
            cone = var.cone
            if cone is not None and id(cone) not in seen:
                seen[id(cone)] = cone
        return list(seen.values())

    def residual(self) -> float:
        """Left-hand side minus right-hand side at the current variable values."""
        lhs = sum(coef * var.value for var, coef in self._coefficients.items())
        return float(lhs - self.constant)

    def __len__(self) -> int:
        return len(self._coefficients)

    def __repr__(self) -> str:
        label = f"LinearConstraint(nnz={len(self._coefficients)}, constant={self.constant:g}"
        if self.name:
            label += f", name={self.name!r}"
        return label + ")"
