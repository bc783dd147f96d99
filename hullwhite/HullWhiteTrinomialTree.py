import logging
from dataclasses import dataclass

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.collections import LineCollection
from numba import njit

from hullwhite.Errors import PreconditionViolation
from hullwhite.ShortRateDynamics import ShortRateDynamics

logger = logging.getLogger(__name__)

EPSILON = 1e-5
MIN_STEP_FRACTION = 0.1


def validate_time_grid(grid) -> np.ndarray:
    times = np.asarray(grid, dtype=float)
    if times.ndim != 1 or len(times) < 2:
        raise PreconditionViolation("At least two grid times are required.")
    if not np.all(np.diff(times) > 0):
        raise PreconditionViolation("Grid times must be strictly increasing.")
    if times[0] != 0.0:
        raise PreconditionViolation("Grid times must start at 0.")
    return times


def build_time_grid(mandatory_times: list[float], timestep: float) -> list[float]:
    """
    Merge the mandatory times (payment, exercise dates...) with regular steps
    of size timestep between them. The result starts at 0 and contains every
    mandatory time exactly.
    """
    if not mandatory_times:
        raise PreconditionViolation("mandatory_times is empty.")
    if timestep <= 0:
        raise PreconditionViolation("timestep must be positive.")
    if min(mandatory_times) < 0:
        raise PreconditionViolation("mandatory_times cannot be negative.")

    new_times = []
    last_time = 0.0
    for pt in sorted(mandatory_times):
        steps = 1
        # a remainder shorter than MIN_STEP_FRACTION * timestep is folded into the last step
        while pt - (last_time + steps * timestep) > MIN_STEP_FRACTION * timestep:
            new_times.append(last_time + steps * timestep)
            steps += 1
        new_times.append(float(pt))
        last_time = pt
    return sorted(set([0.0] + new_times))


@dataclass
class Branching:
    """
    Branching of one time step. mid_index[j] is the position, in the next
    layer, of the middle child of node j; its other children sit at
    mid_index[j] - 1 and mid_index[j] + 1.
    """
    mid_index: np.ndarray
    p_down: np.ndarray
    p_mid: np.ndarray
    p_up: np.ndarray


@njit
def _rollback_step(child_values, short_rates, delta_t, mid_index, p_down, p_mid, p_up):
    n = short_rates.size
    parent_values = np.zeros(n)
    for j in range(n):
        m = mid_index[j]
        # E[V] over the three children, discounted at the node's own rate
        expected = (p_down[j] * child_values[m - 1]
                    + p_mid[j] * child_values[m]
                    + p_up[j] * child_values[m + 1])
        parent_values[j] = expected * np.exp(-short_rates[j] * delta_t)
    return parent_values


class HullWhiteTrinomialTree:
    """
    Recombining trinomial tree for a short rate r = phi(t) + x, where x follows
    the Ornstein-Uhlenbeck process of the given dynamics.

    Parameters
    ----------
    dynamics : ShortRateDynamics
        Supplies the OU process for the branching and the level shift phi(t).
    grid : list of float
        Strictly increasing times starting at 0. Layer i sits at grid[i].

    Layer i holds the nodes x = j * dx(i) for j in [j_min(i), j_min(i) + size(i) - 1].
    The tree only stores coefficients; prices come from rollback() or from the
    Arrow-Debreu state prices.
    """

    def __init__(self, dynamics: ShortRateDynamics, grid, desc: str = "unnamed") -> None:
        self.dynamics = dynamics
        self.process = dynamics.process
        self.times: np.ndarray = validate_time_grid(grid)
        self.delta_ts: np.ndarray = np.diff(self.times)
        self.desc = desc

        # root layer: a single node at x = 0
        self._dx: list[float] = [0.0]
        self._j_min: list[int] = [0]
        self._sizes: list[int] = [1]
        self._branchings: list[Branching] = []
        self._state_prices: list[np.ndarray] = [np.array([1.0])]

        logger.debug("Tree %s: building branching for %d steps", self.desc, len(self.delta_ts))
        self._build_branching()

    def _build_branching(self) -> None:
        for i, delta_t in enumerate(self.delta_ts):
            t = self.times[i]
            x = self.underlyings(i)

            # spacing of the child layer from the variance over the step
            V = self.process.variance(t, 0.0, delta_t)
            delta_x = np.sqrt(3.0 * V)
            component_1 = V / delta_x / delta_x

            x_expected = self.process.expectation(t, x, delta_t)
            m_i = np.rint(x_expected / delta_x).astype(np.int64)

            alpha = (x_expected - m_i * delta_x) / delta_x
            p_up = 0.5 * (component_1 + alpha * alpha + alpha)
            p_down = 0.5 * (component_1 + alpha * alpha - alpha)
            p_mid = 1.0 - component_1 - alpha * alpha
            assert np.all(np.abs(p_up + p_mid + p_down - 1.0) < EPSILON)

            j_min = int(m_i.min()) - 1
            j_max = int(m_i.max()) + 1
            self._dx.append(float(delta_x))
            self._j_min.append(j_min)
            self._sizes.append(j_max - j_min + 1)
            self._branchings.append(Branching(m_i - j_min, p_down, p_mid, p_up))

        logger.debug("Tree %s: widest layer has %d nodes", self.desc, max(self._sizes))

    def _check_layer(self, i: int) -> None:
        if not 0 <= i < len(self.times):
            raise PreconditionViolation(f"layer {i} is outside the tree (0..{len(self.times) - 1}).")

    @property
    def num_layers(self) -> int:
        return len(self.times)

    def size(self, i: int) -> int:
        self._check_layer(i)
        return self._sizes[i]

    def dx(self, i: int) -> float:
        self._check_layer(i)
        return self._dx[i]

    def j_min(self, i: int) -> int:
        self._check_layer(i)
        return self._j_min[i]

    def underlying(self, i: int, index: int) -> float:
        if not 0 <= index < self.size(i):
            raise PreconditionViolation(f"node {index} does not exist in layer {i}.")
        return (self._j_min[i] + index) * self._dx[i]

    def underlyings(self, i: int) -> np.ndarray:
        self._check_layer(i)
        return (self._j_min[i] + np.arange(self._sizes[i])) * self._dx[i]

    def branching(self, i: int) -> Branching:
        if not 0 <= i < len(self._branchings):
            raise PreconditionViolation(f"no branching for step {i}.")
        return self._branchings[i]

    def shift(self, i: int) -> float:
        """
        Level shift of layer i, i.e. the short rate at x = 0. Layers 0..n-1
        carry the shift fitted to reprice D(t_{i+1}) over the step that
        follows them. The last layer has no following step and carries the
        analytic phi(t_n), so the shift column of to_dataframe() can jump
        at the final row.
        """
        self._check_layer(i)
        return self.dynamics.short_rate(self.times[i], 0.0)

    def short_rate(self, i: int, index: int) -> float:
        return self.dynamics.short_rate(self.times[i], self.underlying(i, index))

    def short_rates(self, i: int) -> np.ndarray:
        return self.dynamics.short_rate(self.times[i], self.underlyings(i))

    def reset_state_prices(self) -> None:
        self._state_prices = [np.array([1.0])]

    def state_prices(self, i: int) -> np.ndarray:
        """
        Arrow-Debreu prices of the nodes in layer i, seen from the root.
        Computed forward layer by layer and cached, so the level shifts of
        layers before i must be known when this is first called.
        """
        self._check_layer(i)
        while len(self._state_prices) <= i:
            k = len(self._state_prices) - 1
            branching = self._branchings[k]
            discounted = self._state_prices[k] * np.exp(-self.short_rates(k) * self.delta_ts[k])

            child = np.zeros(self._sizes[k + 1])
            np.add.at(child, branching.mid_index - 1, discounted * branching.p_down)
            np.add.at(child, branching.mid_index, discounted * branching.p_mid)
            np.add.at(child, branching.mid_index + 1, discounted * branching.p_up)
            self._state_prices.append(child)
        return self._state_prices[i]

    def rollback(self, values, from_layer: int, to_layer: int) -> np.ndarray:
        """
        Discount node values at from_layer back to to_layer by backward induction.
        """
        self._check_layer(from_layer)
        self._check_layer(to_layer)
        if to_layer > from_layer:
            raise PreconditionViolation("cannot roll back to a later layer.")
        values = np.asarray(values, dtype=float)
        if values.shape != (self._sizes[from_layer],):
            raise PreconditionViolation(
                f"expected {self._sizes[from_layer]} values for layer {from_layer}, got {values.shape}.")

        for i in range(from_layer - 1, to_layer - 1, -1):
            branching = self._branchings[i]
            values = _rollback_step(values, self.short_rates(i), float(self.delta_ts[i]),
                                    branching.mid_index, branching.p_down,
                                    branching.p_mid, branching.p_up)
        return values

    def discount_bond(self, i: int, maturity_layer: int) -> np.ndarray:
        """
        Zero-coupon bond prices P(t_i, t_maturity) at every node of layer i.
        """
        return self.rollback(np.ones(self.size(maturity_layer)), maturity_layer, i)

    def present_value(self, values, i: int) -> float:
        values = np.asarray(values, dtype=float)
        return float(np.dot(self.state_prices(i), values))

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({
            "t": self.times,
            "delta_t": np.append(self.delta_ts, np.nan),
            "delta_x": self._dx,
            "j_min": self._j_min,
            "num_nodes": self._sizes,
            "shift": [self.shift(i) for i in range(self.num_layers)],
            "state_price_sum": [self.state_prices(i).sum() for i in range(self.num_layers)],
        })

    #region Visualization
    def visualize(self, ax=None, show: bool = False):
        """
        Draw every node at (t, short rate) and every branch to its children.
        """
        lines = []
        xs, ys = [], []
        for i in range(self.num_layers):
            t = self.times[i]
            rates = self.short_rates(i)
            xs.extend([t] * len(rates))
            ys.extend(rates)
            if i == self.num_layers - 1:
                continue
            child_t = self.times[i + 1]
            child_rates = self.short_rates(i + 1)
            mid_index = self._branchings[i].mid_index
            for rate, m in zip(rates, mid_index):
                for child in (m - 1, m, m + 1):
                    lines.append([(t, rate), (child_t, child_rates[child])])

        if ax is None:
            fig, ax = plt.subplots(figsize=(10, 5))
        else:
            fig = ax.figure

        # Draw all edges in one call
        if lines:
            lc = LineCollection(lines, colors="k", alpha=0.3, linewidths=0.5)
            ax.add_collection(lc)

        # Draw all nodes in one call
        ax.scatter(xs, ys, s=10, c="skyblue", alpha=0.8)

        ax.set_xlabel("t")
        ax.set_ylabel("short rate")
        ax.set_title(f"Hull-White Trinomial Tree {self.desc}")
        ax.grid(True, alpha=0.2)
        if show:
            plt.show()
        return fig, ax
    #endregion
