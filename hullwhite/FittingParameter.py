import bisect

from hullwhite.Errors import PreconditionViolation
from hullwhite.OrnsteinUhlenbeckProcess import mean_reversion_factor
from hullwhite.TermStructure import RelinkableTermStructure


class FittingParameter:
    """
    Analytical term-structure fitting parameter

        phi(t) = f(t) + 0.5 * [sigma * (1 - e^{-a t}) / a]^2

    where f(t) is the instantaneous forward rate of the linked curve. Nothing
    is precomputed: each call reads the forward rate from the handle, so the
    value always reflects the curve currently linked.
    """

    def __init__(self, term_structure: RelinkableTermStructure, a: float, sigma: float) -> None:
        self.term_structure = term_structure
        self.a = a
        self.sigma = sigma

    def __call__(self, t: float) -> float:
        forward_rate = self.term_structure.forward(t)
        temp = self.sigma * mean_reversion_factor(self.a, t)
        return forward_rate + 0.5 * temp * temp

    def __repr__(self):
        return f"FittingParameter(a={self.a}, sigma={self.sigma})"


class NumericalFittingParameter:
    """
    Fitting parameter known only at a set of times, filled in by a numerical
    fitting routine (the trinomial tree). Between set times the value of the
    last time at or before t is returned.
    """

    def __init__(self) -> None:
        self.times: list[float] = []
        self.values: list[float] = []

    def reset(self) -> None:
        self.times = []
        self.values = []

    def set(self, t: float, value: float) -> None:
        idx = bisect.bisect_left(self.times, t)
        if idx < len(self.times) and self.times[idx] == t:
            self.values[idx] = value
        else:
            self.times.insert(idx, t)
            self.values.insert(idx, value)

    def __call__(self, t: float) -> float:
        idx = bisect.bisect_right(self.times, t) - 1
        if idx < 0:
            raise PreconditionViolation(f"fitting parameter has no value at or before t={t}.")
        return self.values[idx]

    def __len__(self):
        return len(self.times)
