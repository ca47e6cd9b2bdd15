"""Hierarchical partitioning of conic programs.

Each node of the partition tree wraps a sub-program that shares its cone,
variable and constraint objects with the original program. A node is split by
cutting constraints until the graph whose vertices are cones and whose
hyperedges are the uncut constraints falls apart:

1. constraints in the strategy's always-cut set are cut first;
2. every remaining constraint is scored with
   ``strategy.weight(constraint, cone, depth)`` for each cone it touches and
   takes the minimum over its cones (``inf`` = never cut);
3. eligible constraints are cut in ascending weight order (ties keep
   registration order) until the cone graph disconnects; the cut that
   disconnects it is the *chosen* cut;
4. connected components (union-find) are assigned greedily, largest first, to
   the lighter of two halves;
5. cut constraints whose cones all landed in one half are restored into it.

Sibling sub-programs are disjoint in cones and variables, so they can be
solved independently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import math
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from .cones import Cone, Variable
from .constraint import LinearConstraint
from .errors import NotRegisteredError
from .program import ConicProgram
from .weighting import WeightingStrategy

logger = logging.getLogger(__name__)

StopPredicate = Callable[["Partition"], bool]


@dataclass(eq=False)
class Partition:
    """A node of the partition tree."""

    program: ConicProgram
    depth: int = 0
    parent: Optional["Partition"] = field(default=None, repr=False)
    children: List["Partition"] = field(default_factory=list, repr=False)
    cut_constraints: List[LinearConstraint] = field(default_factory=list, repr=False)
    chosen: Optional[Tuple[LinearConstraint, Cone]] = field(default=None, repr=False)
    chosen_weight: float = math.inf

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def num_variables(self) -> int:
        return self.program.num_variables

    def variables(self) -> List[Variable]:
        return self.program.variables

    def walk(self) -> Iterator["Partition"]:
        """Pre-order traversal of the subtree rooted here."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def leaves(self) -> List["Partition"]:
        return [node for node in self.walk() if node.is_leaf]

    def all_cut_constraints(self) -> List[LinearConstraint]:
        return [lc for node in self.walk() for lc in node.cut_constraints]

    def height(self) -> int:
        return max(node.depth for node in self.walk()) - self.depth


# ----------------------------------------------------------------------
# stop predicates
# ----------------------------------------------------------------------
def max_depth(depth: int) -> StopPredicate:
    """Stop splitting once a node reaches ``depth``."""
    if depth < 0:
        raise ValueError("depth must be nonnegative.")

    def _stop(node: Partition) -> bool:
        return node.depth >= depth

    return _stop


def max_variables(count: int) -> StopPredicate:
    """Stop splitting nodes with at most ``count`` variables."""
    if count < 0:
        raise ValueError("count must be nonnegative.")

    def _stop(node: Partition) -> bool:
        return node.program.num_variables <= count

    return _stop


def max_cones(count: int) -> StopPredicate:
    """Stop splitting nodes with at most ``count`` cones."""
    if count < 0:
        raise ValueError("count must be nonnegative.")

    def _stop(node: Partition) -> bool:
        return len(node.program.cones) <= count

    return _stop


def any_of(*predicates: StopPredicate) -> StopPredicate:
    def _stop(node: Partition) -> bool:
        return any(pred(node) for pred in predicates)

    return _stop


def never_stop(node: Partition) -> bool:
    return False


@dataclass
class PartitionerConfig:
    """Size/depth limits turned into a stop predicate."""

    max_depth: Optional[int] = None
    max_leaf_variables: int = 0
    max_leaf_cones: int = 1

    def __post_init__(self) -> None:
        if self.max_depth is not None and self.max_depth < 0:
            raise ValueError("max_depth must be nonnegative or None.")
        if self.max_leaf_variables < 0:
            raise ValueError("max_leaf_variables must be nonnegative.")
        if self.max_leaf_cones < 1:
            raise ValueError("max_leaf_cones must be at least 1.")

    def stop_predicate(self) -> StopPredicate:
        preds: List[StopPredicate] = [max_variables(self.max_leaf_variables), max_cones(self.max_leaf_cones)]
        if self.max_depth is not None:
            preds.append(max_depth(self.max_depth))
        return any_of(*preds)


# ----------------------------------------------------------------------
# union-find
# ----------------------------------------------------------------------
class _DisjointSets:
    def __init__(self, size: int) -> None:
        self.parent = list(range(size))
        self.size = [1] * size
        self.components = size

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, i: int, j: int) -> None:
        ri, rj = self.find(i), self.find(j)
        if ri == rj:
            return
        if self.size[ri] < self.size[rj]:
            ri, rj = rj, ri
        self.parent[rj] = ri
        self.size[ri] += self.size[rj]
        self.components -= 1

    def union_all(self, members: Sequence[int]) -> None:
        for k in range(1, len(members)):
            self.union(members[0], members[k])

    def distinct_roots(self, members: Sequence[int]) -> int:
        return len({self.find(i) for i in members})


@dataclass
class _Candidate:
    weight: float
    order: int
    constraint: LinearConstraint
    cone: Cone


class HierarchicalPartitioner:
    """Recursively split a conic program along low-weight constraints."""

    def __init__(self, strategy: WeightingStrategy, should_stop: StopPredicate | None = None) -> None:
        self.strategy = strategy
        self.should_stop = should_stop if should_stop is not None else PartitionerConfig().stop_predicate()

    def partition(self, program: ConicProgram) -> Partition:
        root = Partition(program=program, depth=0)
        stack = [root]
        splits = 0
        while stack:
            node = stack.pop()
            if self.should_stop(node):
                continue
            if not self._split(node):
                continue
            splits += 1
            self.strategy.process_accepted_partition(node)
            stack.extend(reversed(node.children))

        leaves = root.leaves()
        logger.info(
            "Partitioned %s into %d leaves with %d splits (height %d, %d cut constraints).",
            program.name,
            len(leaves),
            splits,
            root.height(),
            len(root.all_cut_constraints()),
        )
        return root

    def _split(self, node: Partition) -> bool:
        program = node.program
        cones = program.cones
        if len(cones) < 2:
            return False
        cone_pos: Dict[Cone, int] = {cone: i for i, cone in enumerate(cones)}
        constraints = program.constraints
        touched = {lc: self._incidence(lc, cone_pos) for lc in constraints}

        always_set = self.strategy.always_cut_constraints
        forced = [lc for lc in constraints if lc in always_set]
        remaining = [lc for lc in constraints if lc not in always_set]

        full = _DisjointSets(len(cones))
        for lc in remaining:
            full.union_all(touched[lc])

        chosen: _Candidate | None = None
        ranked: List[_Candidate] = []
        if full.components > 1:
            dsu = full
        else:
            ranked = self._rank(remaining, node.depth)
            eligible = {id(c.constraint) for c in ranked}
            dsu = _DisjointSets(len(cones))
            for lc in remaining:
                if id(lc) not in eligible:
                    dsu.union_all(touched[lc])
            if dsu.components == 1:
                return False
            # Re-add eligible constraints from the most expensive down; the one
            # that reconnects the graph is the last cut actually needed.
            for k in range(len(ranked) - 1, -1, -1):
                members = touched[ranked[k].constraint]
                if dsu.components - (dsu.distinct_roots(members) - 1) == 1:
                    chosen = ranked[k]
                    ranked = ranked[: k + 1]
                    break
                dsu.union_all(members)
            else:  # pragma: no cover - full graph is connected, so a reconnecting cut exists
                raise AssertionError("Failed to locate the disconnecting cut.")

        half_of = self._assign_halves(cones, dsu)

        cut: List[LinearConstraint] = list(forced)
        restored: List[LinearConstraint] = []
        for cand in ranked:
            sides = {half_of[i] for i in touched[cand.constraint]}
            if len(sides) == 1:
                restored.append(cand.constraint)
            else:
                cut.append(cand.constraint)
        cut_ids = {id(lc) for lc in cut}

        for side in (0, 1):
            side_cones = [cone for i, cone in enumerate(cones) if half_of[i] == side]
            side_constraints = [
                lc for lc in constraints if id(lc) not in cut_ids and half_of[touched[lc][0]] == side
            ]
            child = Partition(
                program=program.restrict(side_cones, side_constraints, name=f"{program.name}/{side}"),
                depth=node.depth + 1,
                parent=node,
            )
            node.children.append(child)

        node.cut_constraints = cut
        if chosen is not None:
            node.chosen = (chosen.constraint, chosen.cone)
            node.chosen_weight = chosen.weight
        logger.debug(
            "Split %s at depth %d: %d cut, %d restored, children of %d/%d variables.",
            program.name,
            node.depth,
            len(cut),
            len(restored),
            node.children[0].num_variables,
            node.children[1].num_variables,
        )
        return True

    @staticmethod
    def _incidence(constraint: LinearConstraint, cone_pos: Dict[Cone, int]) -> List[int]:
        positions: List[int] = []
        seen = set()
        for var in constraint.variables:
            pos = cone_pos.get(var.cone) if var.cone is not None else None
            if pos is None:
                raise NotRegisteredError(var, "Variable")
            if pos not in seen:
                seen.add(pos)
                positions.append(pos)
        return positions

    def _rank(self, constraints: Sequence[LinearConstraint], counter: int) -> List[_Candidate]:
        ranked: List[_Candidate] = []
        for order, lc in enumerate(constraints):
            best: _Candidate | None = None
            for cone in lc.cones():
                w = float(self.strategy.weight(lc, cone, counter))
                if math.isnan(w):
                    raise ValueError(f"Weighting strategy returned NaN for {lc!r}.")
                if w < math.inf and (best is None or w < best.weight):
                    best = _Candidate(weight=w, order=order, constraint=lc, cone=cone)
            if best is not None:
                ranked.append(best)
        ranked.sort(key=lambda c: (c.weight, c.order))
        return ranked

    @staticmethod
    def _assign_halves(cones: Sequence[Cone], dsu: _DisjointSets) -> List[int]:
        groups: Dict[int, List[int]] = {}
        for i in range(len(cones)):
            groups.setdefault(dsu.find(i), []).append(i)
        components = sorted(
            groups.values(),
            key=lambda members: (-sum(cones[i].n for i in members), members[0]),
        )
        half_of = [0] * len(cones)
        load = [0, 0]
        for members in components:
            side = 0 if load[0] <= load[1] else 1
            load[side] += sum(cones[i].n for i in members)
            for i in members:
                half_of[i] = side
        return half_of


def partition(
    program: ConicProgram,
    strategy: WeightingStrategy,
    should_stop: StopPredicate | None = None,
) -> Partition:
    """Partition ``program`` and return the root of the partition tree."""
    return HierarchicalPartitioner(strategy, should_stop).partition(program)
