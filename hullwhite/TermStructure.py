import inspect
import logging
import weakref
from abc import ABC, abstractmethod
from typing import Callable

import numpy as np
import pandas as pd
from nelson_siegel_svensson import NelsonSiegelSvenssonCurve as NSSCurve
from nelson_siegel_svensson.calibrate import calibrate_nss_ols

from hullwhite.Errors import CurveLookupError, HullWhiteError

logger = logging.getLogger(__name__)

EPSILON = 1e-10
FORWARD_BUMP = 1e-4


class ZeroRateCurve(ABC):
    """
    Discount curve described by continuously compounded zero rates.

    Subclasses only have to implement get_zero_rate(t); discount factors and
    instantaneous forwards are derived from it. Queries outside
    [0, max_time] raise CurveLookupError. max_time of None means the curve
    extrapolates without limit.
    """
    max_time: float | None = None

    @abstractmethod
    def get_zero_rate(self, t: float) -> float:
        """
        Return the zero rate for maturity t (in years).
        """
        pass

    def _check_range(self, t: float) -> None:
        if t < 0.0:
            raise CurveLookupError(f"negative time t={t} requested from the curve.")
        if self.max_time is not None and t > self.max_time + EPSILON:
            raise CurveLookupError(f"t={t} is beyond the curve's max time {self.max_time}.")

    def zero_rate(self, t: float) -> float:
        self._check_range(t)
        return float(self.get_zero_rate(t))

    def discount(self, t: float) -> float:
        self._check_range(t)
        return float(np.exp(-self.get_zero_rate(t) * t))

    def forward(self, t: float) -> float:
        """
        Instantaneous forward rate f(t) = -d/dt ln P(0, t), by central
        difference on t * z(t). Falls back to a one-sided difference at the
        ends of the domain.
        """
        self._check_range(t)
        t1 = max(t - FORWARD_BUMP, 0.0)
        t2 = t + FORWARD_BUMP
        if self.max_time is not None:
            t2 = min(t2, self.max_time)
        return float((self.get_zero_rate(t2) * t2 - self.get_zero_rate(t1) * t1) / (t2 - t1))


class FlatForwardCurve(ZeroRateCurve):
    def __init__(self, rate: float, max_time: float | None = None) -> None:
        self.rate = float(rate)
        self.max_time = max_time

    def get_zero_rate(self, t: float) -> float:
        return self.rate

    def forward(self, t: float) -> float:
        self._check_range(t)
        return self.rate


class LinearZeroRateCurve(ZeroRateCurve):
    def __init__(self, r0: float = 0, r30: float = 0.05, max_t: float = 30):
        """
        Simple linear zero rate curve.

        Args:
            r0: Zero rate at t=0 (e.g., 1%).
            r30: Zero rate at t=max_t (e.g., 5%).
            max_t: Maturity where the ramp ends (default 30 years).
        """
        self.r0 = r0
        self.r30 = r30
        self.max_t = max_t
        self.slope = (self.r30 - self.r0) / self.max_t

    def get_zero_rate(self, t: float) -> float:
        """
        Returns the zero rate for maturity t, using linear interpolation
        between r0 and r30. Extrapolates flat beyond max_t.
        """
        if t <= 0:
            return self.r0
        elif t >= self.max_t:
            return self.r30
        else:
            return self.r0 + self.slope * t

    def forward(self, t: float) -> float:
        # d/dt [t * z(t)] on each linear piece
        self._check_range(t)
        if t >= self.max_t:
            return self.r30
        return self.r0 + 2.0 * self.slope * t


class InterpolatedZeroRateCurve(ZeroRateCurve):
    """
    Zero rates linearly interpolated between pillars, flat before the first
    pillar. Beyond the last pillar the curve is flat if extrapolate is True,
    otherwise queries fail with CurveLookupError.
    """

    def __init__(self, times, rates, extrapolate: bool = False) -> None:
        times = np.asarray(times, dtype=float)
        rates = np.asarray(rates, dtype=float)
        if times.ndim != 1 or times.shape != rates.shape or len(times) == 0:
            raise HullWhiteError("times and rates must be non-empty 1d arrays of equal length.")
        if not np.all(np.diff(times) > 0):
            raise HullWhiteError("pillar times must be in ascending order.")
        self.times = times
        self.rates = rates
        self.max_time = None if extrapolate else float(times[-1])

    @classmethod
    def from_csv(cls, path, time_column: str = "t", rate_column: str = "rate",
                 extrapolate: bool = False) -> "InterpolatedZeroRateCurve":
        df: pd.DataFrame = pd.read_csv(path)
        df = df.dropna(subset=[time_column, rate_column]).sort_values(time_column)
        return cls(df[time_column].to_numpy(), df[rate_column].to_numpy(), extrapolate)

    @classmethod
    def example(cls) -> "InterpolatedZeroRateCurve":
        curve = [
            [0.25, 0.02046],
            [0.5, 0.02082],
            [1, 0.02085],
            [2, 0.02012],
            [3, 0.02082],
            [4, 0.02205],
            [5, 0.02311],
            [6, 0.02362],
            [7, 0.02473],
            [8, 0.02583],
            [9, 0.02671],
            [10, 0.02758],
            [15, 0.03114],
            [20, 0.03249],
            [30, 0.03379],
        ]
        times, rates = zip(*curve)
        return cls(times, rates)

    def get_zero_rate(self, t: float) -> float:
        return float(np.interp(t, self.times, self.rates))

    def forward(self, t: float) -> float:
        self._check_range(t)
        idx = int(np.searchsorted(self.times, t, side="right"))
        if idx == 0 or idx == len(self.times):
            slope = 0.0
        else:
            slope = ((self.rates[idx] - self.rates[idx - 1])
                     / (self.times[idx] - self.times[idx - 1]))
        return self.get_zero_rate(t) + t * slope


class NelsonSiegelSvenssonCurve(ZeroRateCurve):
    """
    Parametric zero curve backed by the nelson_siegel_svensson package.
    """

    def __init__(self, beta0: float, beta1: float, beta2: float, beta3: float,
                 tau1: float, tau2: float, max_time: float | None = None) -> None:
        self.curve = NSSCurve(beta0, beta1, beta2, beta3, tau1, tau2)
        self.max_time = max_time

    @classmethod
    def fit(cls, t, y, tau0=(2.0, 5.0), max_time: float | None = None) -> "NelsonSiegelSvenssonCurve":
        curve, status = calibrate_nss_ols(np.asarray(t, dtype=float), np.asarray(y, dtype=float), tau0)
        if not status.success:
            raise HullWhiteError(f"Nelson-Siegel-Svensson fit did not converge: {status.message}")
        logger.debug("fitted %s", curve)
        return cls(curve.beta0, curve.beta1, curve.beta2, curve.beta3,
                   curve.tau1, curve.tau2, max_time)

    def get_zero_rate(self, t: float) -> float:
        # short end limit of the factor loadings
        if t <= EPSILON:
            return self.curve.beta0 + self.curve.beta1
        return float(self.curve(t))

    def forward(self, t: float) -> float:
        self._check_range(t)
        return float(self.curve.forward(t))


class RelinkableTermStructure:
    """
    Shared handle to a curve. Models keep the handle, not the curve, and
    register a callback that fires whenever the handle is relinked.

    Callbacks are held by weak reference, so registering does not keep an
    observer alive; dead observers are dropped on the next notification.
    """

    def __init__(self, curve: ZeroRateCurve | None = None) -> None:
        self._curve = curve
        self._observers: list[weakref.ref] = []

    @property
    def current_link(self) -> ZeroRateCurve:
        if self._curve is None:
            raise CurveLookupError("empty term structure handle.")
        return self._curve

    @property
    def empty(self) -> bool:
        return self._curve is None

    def link_to(self, curve: ZeroRateCurve) -> None:
        self._curve = curve
        logger.debug("term structure handle relinked to %r, notifying %d observer(s)",
                     curve, self.num_observers)
        self.notify_observers()

    @property
    def num_observers(self) -> int:
        return len(self._live_observers())

    def _live_observers(self) -> list[Callable[[], None]]:
        callbacks = [ref() for ref in self._observers]
        return [callback for callback in callbacks if callback is not None]

    def register_observer(self, callback: Callable[[], None]) -> None:
        if callback in self._live_observers():
            return
        if inspect.ismethod(callback):
            self._observers.append(weakref.WeakMethod(callback))
        else:
            self._observers.append(weakref.ref(callback))

    def unregister_observer(self, callback: Callable[[], None]) -> None:
        self._observers = [ref for ref in self._observers
                           if ref() is not None and ref() != callback]

    def notify_observers(self) -> None:
        # prune observers that have been garbage collected
        self._observers = [ref for ref in self._observers if ref() is not None]
        for callback in self._live_observers():
            callback()

    @property
    def max_time(self) -> float | None:
        return self.current_link.max_time

    def zero_rate(self, t: float) -> float:
        return self.current_link.zero_rate(t)

    def discount(self, t: float) -> float:
        return self.current_link.discount(t)

    def forward(self, t: float) -> float:
        return self.current_link.forward(t)
