import numpy as np
import pytest

from hullwhite.Errors import CurveLookupError, PreconditionViolation
from hullwhite.HullWhite import OneFactorHullWhiteModel
from hullwhite.HullWhiteTrinomialTree import build_time_grid, validate_time_grid
from hullwhite.Option import OptionType
from hullwhite.TermStructure import FlatForwardCurve


@pytest.mark.parametrize("grid", [[0.0], [], [0.0, 1.0, 1.0], [0.0, 2.0, 1.0], [0.5, 1.0]])
def test_invalid_grids(model, grid):
    with pytest.raises(PreconditionViolation):
        model.tree(grid)


def test_validate_time_grid_returns_array():
    times = validate_time_grid([0, 0.5, 1])
    assert times.dtype == float
    np.testing.assert_allclose(times, [0.0, 0.5, 1.0])


def test_build_time_grid_keeps_mandatory_times():
    grid = build_time_grid([1.0, 2.5], timestep=0.25)
    np.testing.assert_allclose(grid, [0.0, 0.25, 0.5, 0.75, 1.0, 1.25, 1.5, 1.75, 2.0, 2.25, 2.5])
    assert 1.0 in grid and 2.5 in grid


def test_build_time_grid_does_not_create_tiny_steps():
    grid = build_time_grid([1.0], timestep=0.1)
    assert len(grid) == 11
    assert min(np.diff(grid)) > 0.09


def test_build_time_grid_folds_short_remainder_into_last_step():
    grid = build_time_grid([1.0000001], timestep=0.1)
    assert len(grid) == 11
    assert grid[-1] == 1.0000001
    assert min(np.diff(grid)) > 0.09

    # a remainder of at least a tenth of a step is kept as its own step
    grid = build_time_grid([1.05], timestep=0.1)
    assert len(grid) == 12
    assert grid[-1] == 1.05


def test_build_time_grid_preconditions():
    with pytest.raises(PreconditionViolation):
        build_time_grid([], 0.1)
    with pytest.raises(PreconditionViolation):
        build_time_grid([1.0], 0.0)
    with pytest.raises(PreconditionViolation):
        build_time_grid([-1.0], 0.1)


def test_branching_probabilities(example_model):
    tree = example_model.tree(build_time_grid([2.0, 5.0], 0.25))
    for i in range(tree.num_layers - 1):
        branching = tree.branching(i)
        total = branching.p_down + branching.p_mid + branching.p_up
        np.testing.assert_allclose(total, 1.0, atol=1e-12)
        assert np.all(branching.p_down > 0)
        assert np.all(branching.p_mid > 0)
        assert np.all(branching.p_up > 0)
        assert branching.mid_index.min() >= 1
        assert branching.mid_index.max() <= tree.size(i + 1) - 2


def test_branching_matches_process_moments(model):
    grid = np.linspace(0.0, 2.0, 9)
    tree = model.tree(grid)
    process = tree.process
    for i in range(tree.num_layers - 1):
        dt = tree.delta_ts[i]
        assert tree.dx(i + 1) == pytest.approx(np.sqrt(3.0 * process.variance(0.0, 0.0, dt)))

        branching = tree.branching(i)
        child_x = tree.underlyings(i + 1)
        m = branching.mid_index
        mean = (branching.p_down * child_x[m - 1] + branching.p_mid * child_x[m]
                + branching.p_up * child_x[m + 1])
        np.testing.assert_allclose(mean, process.expectation(0.0, tree.underlyings(i), dt), atol=1e-14)


def test_root_layer(model):
    tree = model.tree([0.0, 0.5, 1.0])
    assert tree.size(0) == 1
    assert tree.underlying(0, 0) == 0.0
    assert tree.size(1) == 3
    np.testing.assert_allclose(tree.state_prices(0), [1.0])


def test_tree_reprices_curve_at_every_layer(example_model, example_curve):
    grid = build_time_grid([1.0, 3.0, 10.0], 0.25)
    tree = example_model.tree(grid)
    for i, t in enumerate(tree.times):
        assert tree.state_prices(i).sum() == pytest.approx(example_curve.discount(t), rel=1e-12)


def test_rollback_agrees_with_state_prices(example_model, example_curve):
    grid = build_time_grid([4.0], 0.2)
    tree = example_model.tree(grid)
    n = tree.num_layers - 1
    root_price = tree.discount_bond(0, n)
    assert root_price.shape == (1,)
    assert root_price[0] == pytest.approx(example_curve.discount(4.0), rel=1e-10)

    # price at an intermediate layer, valued with state prices
    i = 10
    bonds = tree.discount_bond(i, n)
    assert tree.present_value(bonds, i) == pytest.approx(example_curve.discount(4.0), rel=1e-10)


def test_fitted_shifts_close_to_analytic_phi(model):
    grid = np.linspace(0.0, 5.0, 51)
    tree = model.tree(grid)
    for i, t in enumerate(grid):
        assert tree.shift(i) == pytest.approx(model.phi(t), abs=1e-4)
    # the last layer uses the analytic value
    assert tree.shift(len(grid) - 1) == model.phi(5.0)


def test_dataframe_last_shift_is_analytic(example_model):
    grid = build_time_grid([2.0], 0.25)
    frame = example_model.tree(grid).to_dataframe()
    assert frame["shift"].iloc[-1] == example_model.phi(2.0)
    for i in range(len(grid) - 1):
        assert frame["shift"].iloc[i] == pytest.approx(example_model.phi(grid[i]), abs=1e-3)


def test_short_rates_are_state_plus_shift(model):
    tree = model.tree(np.linspace(0.0, 1.0, 5))
    for i in range(tree.num_layers):
        np.testing.assert_allclose(tree.short_rates(i), tree.underlyings(i) + tree.shift(i))
        assert tree.short_rate(i, 0) == pytest.approx(tree.underlying(i, 0) + tree.shift(i))


def test_tree_option_converges_to_closed_form(model, flat_curve):
    grid = build_time_grid([1.0, 2.0], 1 / 48)
    tree = model.tree(grid)
    expiry = grid.index(1.0)
    n = len(grid) - 1

    strike = flat_curve.discount(2.0) / flat_curve.discount(1.0)
    bonds = tree.discount_bond(expiry, n)
    tree_price = tree.present_value(np.maximum(bonds - strike, 0.0), expiry)
    analytic = model.discount_bond_option(OptionType.CALL, strike, 1.0, 2.0)
    assert tree_price == pytest.approx(analytic, rel=0.03)


def test_rollback_preconditions(model):
    tree = model.tree([0.0, 0.5, 1.0])
    with pytest.raises(PreconditionViolation):
        tree.rollback(np.ones(2), 2, 0)
    with pytest.raises(PreconditionViolation):
        tree.rollback(np.ones(1), 0, 2)
    with pytest.raises(PreconditionViolation):
        tree.size(5)
    with pytest.raises(PreconditionViolation):
        tree.underlying(1, 99)


def test_grid_beyond_curve_raises_curve_error():
    model = OneFactorHullWhiteModel(FlatForwardCurve(0.05, max_time=2.0))
    with pytest.raises(CurveLookupError):
        model.tree([0.0, 1.0, 2.0, 3.0])
    # model still usable
    assert model.tree([0.0, 1.0, 2.0]).num_layers == 3


def test_to_dataframe(example_model, example_curve):
    grid = build_time_grid([2.0], 0.5)
    df = example_model.tree(grid, desc="2Y").to_dataframe()
    assert list(df.columns) == ["t", "delta_t", "delta_x", "j_min", "num_nodes", "shift", "state_price_sum"]
    assert len(df) == len(grid)
    assert np.isnan(df["delta_t"].iloc[-1])
    np.testing.assert_allclose(df["state_price_sum"], [example_curve.discount(t) for t in grid], rtol=1e-12)


def test_visualize(model):
    tree = model.tree([0.0, 0.5, 1.0, 1.5], desc="demo")
    fig, ax = tree.visualize()
    assert ax.get_title() == "Hull-White Trinomial Tree demo"
    assert len(ax.collections) == 2
    # three branches per node in every layer but the last
    edges = ax.collections[0].get_segments()
    assert len(edges) == 3 * sum(tree.size(i) for i in range(tree.num_layers - 1))
