"""Weighting strategies that score candidate (constraint, cone) cuts.

The partitioner holds a strategy by composition and calls
``weight(constraint, cone, counter)`` for every pair where the constraint
touches the cone. Lower weights are cut first; ``math.inf`` marks a
constraint that must not be cut. ``counter`` is supplied by the caller
(the partitioner passes the depth of the node being split) so strategies that
alternate between regimes stay free of hidden state.
"""

from __future__ import annotations

import logging
import math
import sys
from typing import TYPE_CHECKING, AbstractSet, Iterable, Protocol, Set

from .cones import Cone, ConeKind
from .constraint import LinearConstraint
from .errors import UnsupportedConeError

if TYPE_CHECKING:  # pragma: no cover
    from .partition import Partition

logger = logging.getLogger(__name__)

RESTRICTED_WEIGHT = 300000.0


class WeightingStrategy(Protocol):
    """Capability interface consumed by :class:`~conicsplit.partition.HierarchicalPartitioner`."""

    restricted_constraints: AbstractSet[LinearConstraint]
    always_cut_constraints: AbstractSet[LinearConstraint]

    def weight(self, constraint: LinearConstraint, cone: Cone, counter: int) -> float:
        """Cost of cutting ``constraint`` next to ``cone``; ``inf`` if ineligible."""
        ...

    def process_accepted_partition(self, partition: "Partition") -> None:
        """Called once per accepted split, after the children are attached."""
        ...


def _bounded_power(base: float, exponent: float) -> float:
    try:
        return base**exponent
    except OverflowError:
        return sys.float_info.max


class ObjectiveCoefficientWeighting:
    """Bias cuts by the objective magnitude of the cone next to the cut.

    A constraint is only eligible once its variables touch at least two
    singleton (nonnegative orthant) cones. The magnitude ``m`` is
    ``|c_v|`` for a nonnegative orthant cone and ``|sum_v c_v|`` for a
    second-order cone; odd counters return ``base**(m + 1)`` and even
    counters ``1 / base**(m + 1)``. Restricted constraints cost
    ``300000 / len(always_cut_constraints)``.
    """

    def __init__(
        self,
        restricted_constraints: Iterable[LinearConstraint] = (),
        always_cut_constraints: Iterable[LinearConstraint] = (),
        base: float = 2.0,
    ) -> None:
        if base <= 1.0:
            raise ValueError("base must be greater than 1.")
        self.restricted_constraints: Set[LinearConstraint] = set(restricted_constraints)
        self.always_cut_constraints: Set[LinearConstraint] = set(always_cut_constraints)
        self.base = float(base)

    def weight(self, constraint: LinearConstraint, cone: Cone, counter: int) -> float:
        if constraint in self.restricted_constraints:
            pool = len(self.always_cut_constraints)
            if pool == 0:
                return math.inf
            return RESTRICTED_WEIGHT / pool

        seen_singleton = False
        for var in constraint.variables:
            owner = var.cone
            if owner is None or not owner.is_singleton:
                continue
            if not seen_singleton:
                seen_singleton = True
                continue
            scaled = _bounded_power(self.base, self._magnitude(cone) + 1.0)
            if counter % 2 == 0:
                return 1.0 / scaled
            return scaled
        return math.inf

    def _magnitude(self, cone: Cone) -> float:
        if cone.kind is ConeKind.NON_NEGATIVE_ORTHANT:
            return abs(cone.variables[0].objective_coefficient)
        if cone.kind is ConeKind.SECOND_ORDER:
            return abs(cone.objective_sum())
        raise UnsupportedConeError(cone, "ObjectiveCoefficientWeighting")

    def process_accepted_partition(self, partition: "Partition") -> None:
        return None


class ConeSizeWeighting:
    """Prefer cuts next to small cones, which keeps partitions balanced.

    The weight is the number of variables of the cone; constraints touching a
    single cone cannot separate anything and weigh ``inf``. Restricted
    constraints cost ``restricted_penalty`` times the total size of the cones
    they touch.
    """

    def __init__(
        self,
        restricted_constraints: Iterable[LinearConstraint] = (),
        always_cut_constraints: Iterable[LinearConstraint] = (),
        restricted_penalty: float = 1000.0,
    ) -> None:
        if restricted_penalty <= 0.0:
            raise ValueError("restricted_penalty must be positive.")
        self.restricted_constraints: Set[LinearConstraint] = set(restricted_constraints)
        self.always_cut_constraints: Set[LinearConstraint] = set(always_cut_constraints)
        self.restricted_penalty = float(restricted_penalty)
        self.accepted_splits = 0

    def weight(self, constraint: LinearConstraint, cone: Cone, counter: int) -> float:
        touched = constraint.cones()
        if len(touched) < 2:
            return math.inf
        if constraint in self.restricted_constraints:
            return self.restricted_penalty * float(sum(c.n for c in touched))
        return float(cone.n)

    def process_accepted_partition(self, partition: "Partition") -> None:
        self.accepted_splits += 1
        logger.debug(
            "Accepted split #%d at depth %d into %d children.",
            self.accepted_splits,
            partition.depth,
            len(partition.children),
        )
