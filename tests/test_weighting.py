import math

import pytest

from conicsplit.cones import NonNegativeOrthantCone, RotatedSecondOrderCone, SecondOrderCone, Variable
from conicsplit.constraint import LinearConstraint
from conicsplit.errors import UnsupportedConeError
from conicsplit.weighting import ConeSizeWeighting, ObjectiveCoefficientWeighting


def two_singletons(c1: float = 3.0, c2: float = -5.0):
    k1 = NonNegativeOrthantCone(Variable(c1))
    k2 = NonNegativeOrthantCone(Variable(c2))
    lc = LinearConstraint({k1.variable: 1.0, k2.variable: 1.0}, constant=1.0)
    return k1, k2, lc


def test_second_singleton_even_regime():
    _, k2, lc = two_singletons()
    strategy = ObjectiveCoefficientWeighting()
    assert strategy.weight(lc, k2, counter=0) == pytest.approx(1.0 / 64.0)
    assert strategy.weight(lc, k2, counter=2) == pytest.approx(0.015625)


def test_second_singleton_odd_regime():
    _, k2, lc = two_singletons()
    strategy = ObjectiveCoefficientWeighting()
    assert strategy.weight(lc, k2, counter=1) == pytest.approx(64.0)


def test_magnitude_comes_from_cone_argument():
    k1, _, lc = two_singletons()
    strategy = ObjectiveCoefficientWeighting()
    assert strategy.weight(lc, k1, counter=1) == pytest.approx(16.0)


def test_second_order_cone_magnitude_odd_regime():
    k1, k2, _ = two_singletons()
    soc = SecondOrderCone([Variable(1.0), Variable(2.0), Variable(-4.0)])
    lc = LinearConstraint({k1.variable: 1.0, soc.variables[0]: 1.0, k2.variable: 1.0})
    strategy = ObjectiveCoefficientWeighting()
    assert strategy.weight(lc, soc, counter=1) == pytest.approx(4.0)
    assert strategy.weight(lc, soc, counter=0) == pytest.approx(0.25)


@pytest.mark.parametrize("counter", [0, 1, 2, 3])
def test_fewer_than_two_singletons_is_ineligible(counter):
    strategy = ObjectiveCoefficientWeighting()
    soc = SecondOrderCone(3)
    single = NonNegativeOrthantCone(Variable(2.0))
    no_singleton = LinearConstraint({soc.variables[0]: 1.0, soc.variables[1]: -1.0})
    one_singleton = LinearConstraint({soc.variables[2]: 1.0, single.variable: 1.0})
    assert math.isinf(strategy.weight(no_singleton, soc, counter))
    assert math.isinf(strategy.weight(one_singleton, soc, counter))
    assert math.isinf(strategy.weight(one_singleton, single, counter))


def test_restricted_weight_uses_always_cut_pool():
    _, k2, lc = two_singletons()
    always = [LinearConstraint() for _ in range(3)]
    strategy = ObjectiveCoefficientWeighting(restricted_constraints=[lc], always_cut_constraints=always)
    assert strategy.weight(lc, k2, counter=0) == pytest.approx(100000.0)
    assert strategy.weight(lc, k2, counter=1) == pytest.approx(100000.0)
    assert strategy.weight(lc, SecondOrderCone(2), counter=0) == pytest.approx(100000.0)


def test_restricted_weight_decreases_with_pool_size():
    _, k2, lc = two_singletons()
    previous = math.inf
    for size in range(1, 8):
        strategy = ObjectiveCoefficientWeighting(
            restricted_constraints=[lc],
            always_cut_constraints=[LinearConstraint() for _ in range(size)],
        )
        w = strategy.weight(lc, k2, counter=0)
        assert 0.0 <= w < previous
        previous = w


def test_restricted_weight_with_empty_pool_is_ineligible():
    _, k2, lc = two_singletons()
    strategy = ObjectiveCoefficientWeighting(restricted_constraints=[lc])
    assert math.isinf(strategy.weight(lc, k2, counter=0))


def test_rotated_cone_is_unsupported():
    k1, k2, _ = two_singletons()
    rsoc = RotatedSecondOrderCone(3)
    lc = LinearConstraint({k1.variable: 1.0, k2.variable: 1.0, rsoc.variables[0]: 1.0})
    strategy = ObjectiveCoefficientWeighting()
    with pytest.raises(UnsupportedConeError):
        strategy.weight(lc, rsoc, counter=0)


def test_huge_magnitude_stays_finite():
    _, k2, lc = two_singletons(c2=5000.0)
    strategy = ObjectiveCoefficientWeighting()
    assert math.isfinite(strategy.weight(lc, k2, counter=1))
    assert strategy.weight(lc, k2, counter=0) >= 0.0


def test_base_validation():
    with pytest.raises(ValueError):
        ObjectiveCoefficientWeighting(base=1.0)
    with pytest.raises(ValueError):
        ConeSizeWeighting(restricted_penalty=0.0)


def test_cone_size_weighting():
    soc = SecondOrderCone(4)
    single = NonNegativeOrthantCone()
    lc = LinearConstraint({soc.variables[0]: 1.0, single.variable: 1.0})
    inner = LinearConstraint({soc.variables[0]: 1.0, soc.variables[1]: 1.0})
    strategy = ConeSizeWeighting()
    assert strategy.weight(lc, soc, 0) == 4.0
    assert strategy.weight(lc, single, 0) == 1.0
    assert math.isinf(strategy.weight(inner, soc, 0))

    restricted = ConeSizeWeighting(restricted_constraints=[lc], restricted_penalty=10.0)
    assert restricted.weight(lc, single, 0) == 50.0
