import math

import pytest

from conicsplit.cones import NonNegativeOrthantCone, RotatedSecondOrderCone, SecondOrderCone, Variable
from conicsplit.constraint import LinearConstraint
from conicsplit.errors import UnsupportedConeError
from conicsplit.partition import (
    HierarchicalPartitioner,
    Partition,
    PartitionerConfig,
    any_of,
    max_cones,
    max_depth,
    max_variables,
    partition,
)
from conicsplit.program import ConicProgram
from conicsplit.weighting import ConeSizeWeighting, ObjectiveCoefficientWeighting


def chain_program(coeffs=(1.0, -2.0, 3.0, -4.0, 5.0, -6.0)):
    """Singleton cones x_0..x_k linked pairwise by x_i + x_{i+1} = 1."""
    prog = ConicProgram(name="chain")
    cones = [prog.add_cone(NonNegativeOrthantCone(Variable(c, name=f"x{i}"))) for i, c in enumerate(coeffs)]
    links = []
    for left, right in zip(cones, cones[1:]):
        links.append(prog.add_constraint(LinearConstraint({left.variable: 1.0, right.variable: 1.0}, constant=1.0)))
    return prog, cones, links


def mixed_program():
    """Two clusters of singletons and one second-order cone, bridged by one constraint."""
    prog = ConicProgram(name="mixed")
    a = [prog.add_cone(NonNegativeOrthantCone(Variable(float(i + 1)))) for i in range(3)]
    b = [prog.add_cone(NonNegativeOrthantCone(Variable(-float(i + 1)))) for i in range(3)]
    soc = prog.add_cone(SecondOrderCone([Variable(0.5), Variable(0.5), Variable(1.0)]))
    for group in (a, b):
        for left, right in zip(group, group[1:]):
            prog.add_constraint(LinearConstraint({left.variable: 1.0, right.variable: -1.0}))
    prog.add_constraint(LinearConstraint({soc.variables[0]: 1.0, a[0].variable: 1.0}, constant=2.0))
    bridge = prog.add_constraint(LinearConstraint({a[2].variable: 1.0, b[0].variable: 1.0}, constant=3.0))
    return prog, a, b, soc, bridge


def structure(node: Partition):
    return (
        tuple(id(c) for c in node.program.cones),
        tuple(id(lc) for lc in node.cut_constraints),
        tuple(structure(child) for child in node.children),
    )


def test_children_form_disjoint_covering():
    prog, _, _, _, _ = mixed_program()
    root = partition(prog, ObjectiveCoefficientWeighting())
    assert not root.is_leaf
    for node in root.walk():
        if node.is_leaf:
            continue
        parent_vars = {id(v) for v in node.variables()}
        child_sets = [{id(v) for v in child.variables()} for child in node.children]
        assert len(node.children) == 2
        assert all(child_sets)
        assert child_sets[0].isdisjoint(child_sets[1])
        assert child_sets[0] | child_sets[1] == parent_vars


def test_every_cone_lands_in_exactly_one_leaf():
    prog, _, _, _, _ = mixed_program()
    root = partition(prog, ConeSizeWeighting())
    seen = [id(c) for leaf in root.leaves() for c in leaf.program.cones]
    assert sorted(seen) == sorted(id(c) for c in prog.cones)


def test_cut_constraints_are_excluded_from_children():
    prog, _, _, _, _ = mixed_program()
    root = partition(prog, ConeSizeWeighting())
    for node in root.walk():
        for child in node.children:
            for lc in node.cut_constraints:
                assert not child.program.has_constraint(lc)
    kept = {id(lc) for leaf in root.leaves() for lc in leaf.program.constraints}
    cut = {id(lc) for lc in root.all_cut_constraints()}
    assert kept.isdisjoint(cut)
    assert kept | cut == {id(lc) for lc in prog.constraints}


def test_partitioning_is_reproducible():
    prog, _, _, _, _ = mixed_program()
    first = partition(prog, ObjectiveCoefficientWeighting())
    second = partition(prog, ObjectiveCoefficientWeighting())
    assert structure(first) == structure(second)


def test_bridge_is_cut_first_with_cone_size_weighting():
    prog, a, b, soc, bridge = mixed_program()
    strategy = ConeSizeWeighting(restricted_constraints=[lc for lc in prog.constraints if lc is not bridge])
    root = partition(prog, strategy, max_depth(1))
    assert root.cut_constraints == [bridge]
    assert root.chosen[0] is bridge
    left, right = root.children
    assert {id(c) for c in left.program.cones} == {id(c) for c in a + [soc]}
    assert {id(c) for c in right.program.cones} == {id(c) for c in b}
    assert strategy.accepted_splits == 1


def test_lowest_weight_constraint_is_chosen():
    prog, cones, links = chain_program()
    strategy = ObjectiveCoefficientWeighting()
    root = partition(prog, strategy, max_depth(1))
    # Depth 0 is the even regime: 1 / 2^(|c|+1) is smallest for the largest |c|.
    weights = [min(strategy.weight(lc, cone, 0) for cone in lc.cones()) for lc in links]
    best = weights.index(min(weights))
    assert root.chosen[0] is links[best]
    assert root.chosen_weight == pytest.approx(min(weights))
    assert root.cut_constraints == [links[best]]


def test_ties_keep_registration_order():
    prog, cones, links = chain_program(coeffs=(1.0, 1.0, 1.0, 1.0))
    root = partition(prog, ObjectiveCoefficientWeighting(), max_depth(1))
    assert root.chosen[0] is links[0]
    assert root.chosen[1] is cones[0]


def test_no_eligible_cut_makes_a_leaf():
    prog = ConicProgram()
    soc1 = prog.add_cone(SecondOrderCone(3))
    soc2 = prog.add_cone(SecondOrderCone(3))
    prog.add_constraint(LinearConstraint({soc1.variables[0]: 1.0, soc2.variables[0]: 1.0}))
    root = partition(prog, ObjectiveCoefficientWeighting())
    assert root.is_leaf
    assert root.cut_constraints == []


def test_disconnected_program_splits_without_cuts():
    prog = ConicProgram()
    for _ in range(4):
        prog.add_cone(SecondOrderCone(2))
    root = partition(prog, ObjectiveCoefficientWeighting())
    assert len(root.leaves()) == 4
    assert root.all_cut_constraints() == []
    assert root.chosen is None


class FixedWeighting:
    def __init__(self, weights):
        self.weights = {id(lc): w for lc, w in weights}
        self.restricted_constraints = set()
        self.always_cut_constraints = set()
        self.accepted = []

    def weight(self, constraint, cone, counter):
        return self.weights.get(id(constraint), math.inf)

    def process_accepted_partition(self, partition):
        self.accepted.append(partition)


def test_unneeded_cuts_are_restored():
    # Triangle x0-x1-x2 with a pendant x3; the cheapest cut sits inside the triangle.
    prog = ConicProgram()
    x = [prog.add_cone(NonNegativeOrthantCone()) for _ in range(4)]

    def link(i, j):
        return prog.add_constraint(LinearConstraint({x[i].variable: 1.0, x[j].variable: 1.0}))

    a01, a12, a20, b23 = link(0, 1), link(1, 2), link(2, 0), link(2, 3)
    strategy = FixedWeighting([(a01, 1.0), (b23, 2.0), (a12, 5.0), (a20, 5.0)])
    root = partition(prog, strategy, max_depth(1))

    assert root.cut_constraints == [b23]
    assert root.chosen[0] is b23
    triangle, pendant = root.children
    assert triangle.program.constraints == [a01, a12, a20]
    assert pendant.program.cones == [x[3]]
    assert strategy.accepted == [root]


def test_cycle_needs_two_cuts():
    # A 4-cycle of singletons: two cuts are needed to disconnect it.
    prog = ConicProgram()
    cones = [prog.add_cone(NonNegativeOrthantCone(Variable(c))) for c in (4.0, 1.0, 1.0, 4.0)]
    ring = []
    for i in range(4):
        left, right = cones[i], cones[(i + 1) % 4]
        ring.append(prog.add_constraint(LinearConstraint({left.variable: 1.0, right.variable: 1.0})))
    root = partition(prog, ObjectiveCoefficientWeighting(), max_depth(1))
    assert len(root.cut_constraints) == 2
    kept = [lc for child in root.children for lc in child.program.constraints]
    assert len(kept) == 2
    assert sum(child.num_variables for child in root.children) == 4


def test_always_cut_constraints_are_cut_at_root():
    prog, cones, links = chain_program()
    forced = links[2]
    strategy = ObjectiveCoefficientWeighting(always_cut_constraints=[forced])
    root = partition(prog, strategy, max_depth(1))
    assert root.cut_constraints[0] is forced
    assert root.chosen is None
    for child in root.children:
        assert not child.program.has_constraint(forced)


def test_restricted_constraint_is_cut_last():
    prog, cones, links = chain_program(coeffs=(1.0, 1.0, 1.0))
    restricted = links[0]
    always = [LinearConstraint() for _ in range(3)]
    strategy = ObjectiveCoefficientWeighting(restricted_constraints=[restricted], always_cut_constraints=always)
    root = partition(prog, strategy, max_depth(1))
    assert root.chosen[0] is links[1]


def test_unsupported_cone_aborts_partitioning():
    prog = ConicProgram()
    k1 = prog.add_cone(NonNegativeOrthantCone(Variable(1.0)))
    k2 = prog.add_cone(NonNegativeOrthantCone(Variable(1.0)))
    rsoc = prog.add_cone(RotatedSecondOrderCone(3))
    prog.add_constraint(LinearConstraint({k1.variable: 1.0, k2.variable: 1.0, rsoc.variables[0]: 1.0}))
    with pytest.raises(UnsupportedConeError):
        partition(prog, ObjectiveCoefficientWeighting())


def test_stop_predicates():
    prog, _, _ = chain_program()
    assert partition(prog, ConeSizeWeighting(), max_depth(0)).is_leaf
    assert partition(prog, ConeSizeWeighting(), max_variables(6)).is_leaf
    root = partition(prog, ConeSizeWeighting(), any_of(max_cones(2), max_depth(5)))
    assert all(len(leaf.program.cones) <= 2 or leaf.depth >= 5 for leaf in root.leaves())


def test_config_validation_and_default_predicate():
    with pytest.raises(ValueError):
        PartitionerConfig(max_depth=-1)
    with pytest.raises(ValueError):
        PartitionerConfig(max_leaf_cones=0)
    prog, _, _ = chain_program()
    root = HierarchicalPartitioner(ConeSizeWeighting(), PartitionerConfig().stop_predicate()).partition(prog)
    assert all(len(leaf.program.cones) == 1 for leaf in root.leaves())
    assert len(root.leaves()) == 6


def test_depth_drives_weighting_regime():
    seen = []

    class RecordingWeighting(ObjectiveCoefficientWeighting):
        def weight(self, constraint, cone, counter):
            seen.append(counter)
            return super().weight(constraint, cone, counter)

    prog, _, _ = chain_program()
    root = partition(prog, RecordingWeighting())
    assert set(seen) <= {node.depth for node in root.walk()}
    assert 0 in seen and 1 in seen
    assert math.isfinite(root.chosen_weight)
