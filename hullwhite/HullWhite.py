import logging

import numpy as np
from scipy.special import logsumexp

from hullwhite.Errors import PreconditionViolation, StaleParametersError
from hullwhite.FittingParameter import FittingParameter, NumericalFittingParameter
from hullwhite.HullWhiteTrinomialTree import HullWhiteTrinomialTree
from hullwhite.Option import OptionType, black_formula
from hullwhite.OrnsteinUhlenbeckProcess import SMALL_A, mean_reversion_factor
from hullwhite.ShortRateDynamics import HullWhiteDynamics
from hullwhite.TermStructure import RelinkableTermStructure, ZeroRateCurve

logger = logging.getLogger(__name__)


class OneFactorHullWhiteModel:
    """
    Single-factor Hull-White (extended Vasicek) model

        dr_t = (theta(t) - a * r_t) dt + sigma * dW_t

    with constant a and sigma. The short rate is written r_t = phi(t) + x_t,
    where x_t is a zero-mean Ornstein-Uhlenbeck process and phi(t) is chosen
    so the model reproduces the linked discount curve.

    Parameters
    ----------
    term_structure : RelinkableTermStructure or ZeroRateCurve
        Curve to fit. A bare curve is wrapped in a new handle. The model
        regenerates phi whenever the handle is relinked.
    a : float
        Mean reversion speed, must be positive.
    sigma : float
        Short rate volatility, must be positive.
    """

    def __init__(self, term_structure: RelinkableTermStructure | ZeroRateCurve,
                 a: float = 0.1, sigma: float = 0.01) -> None:
        if not isinstance(term_structure, RelinkableTermStructure):
            term_structure = RelinkableTermStructure(term_structure)
        self._validate_constants(a, sigma)
        self.term_structure = term_structure
        self._a = float(a)
        self._sigma = float(sigma)
        self._phi: FittingParameter | None = None
        self._consistent = False

        # the handle holds the callback weakly, models sharing a handle can be collected
        self.term_structure.register_observer(self.generate_parameters)
        self.generate_parameters()

    @staticmethod
    def _validate_constants(a: float, sigma: float) -> None:
        if not a > 0:
            raise PreconditionViolation(f"mean reversion a must be positive, got {a}.")
        if not sigma > 0:
            raise PreconditionViolation(f"volatility sigma must be positive, got {sigma}.")

    #region Parameters
    @property
    def a(self) -> float:
        return self._a

    @a.setter
    def a(self, value: float) -> None:
        self._validate_constants(value, self._sigma)
        self._a = float(value)
        self._consistent = False

    @property
    def sigma(self) -> float:
        return self._sigma

    @sigma.setter
    def sigma(self, value: float) -> None:
        self._validate_constants(self._a, value)
        self._sigma = float(value)
        self._consistent = False

    @property
    def params(self) -> np.ndarray:
        return np.array([self._a, self._sigma])

    def set_params(self, params) -> None:
        """
        Set [a, sigma] at once, e.g. from a calibration routine, and regenerate.
        """
        if len(params) != 2:
            raise PreconditionViolation(f"Expected 2 parameters [a, sigma], got {len(params)}")
        a, sigma = params
        self._validate_constants(a, sigma)
        self._a = float(a)
        self._sigma = float(sigma)
        self.generate_parameters()

    @property
    def is_consistent(self) -> bool:
        return self._consistent

    def generate_parameters(self) -> None:
        """
        Rebuild phi for the current constants and curve. Nothing is evaluated here.
        """
        self._phi = FittingParameter(self.term_structure, self._a, self._sigma)
        self._consistent = True
        logger.debug("regenerated fitting parameter: a=%s sigma=%s", self._a, self._sigma)

    def _check_consistent(self) -> None:
        if not self._consistent:
            raise StaleParametersError(
                "model constants changed; call generate_parameters() before pricing.")
    #endregion

    def fitting_parameter(self) -> FittingParameter:
        self._check_consistent()
        return self._phi

    def phi(self, t: float) -> float:
        self._check_consistent()
        return self._phi(t)

    def dynamics(self) -> HullWhiteDynamics:
        self._check_consistent()
        return HullWhiteDynamics(self._phi, self._a, self._sigma)

    #region Analytic bond prices
    def B(self, t: float, T: float) -> float:
        if T < t:
            raise PreconditionViolation(f"T={T} cannot be before t={t}.")
        return float(mean_reversion_factor(self._a, T - t))

    def A(self, t: float, T: float) -> float:
        """
        Deterministic factor of P(t, T) = A(t, T) * exp(-B(t, T) * r_t),
        built from the curve's discount factors and the forward rate at t.
        """
        self._check_consistent()
        if t < 0:
            raise PreconditionViolation(f"t={t} cannot be negative.")
        B = self.B(t, T)
        if B == 0.0:
            return 1.0
        discount1 = self.term_structure.discount(t)
        discount2 = self.term_structure.discount(T)
        forward = self.term_structure.forward(t)
        temp = self._sigma * B
        value = B * forward - 0.25 * temp * temp * mean_reversion_factor(self._a, 2.0 * t)
        return float(np.exp(value) * discount2 / discount1)

    def discount_bond(self, t: float, T: float, rate: float) -> float:
        """
        Zero-coupon bond price at t for maturity T given the short rate at t.
        """
        return float(self.A(t, T) * np.exp(-self.B(t, T) * rate))
    #endregion

    def discount_bond_option(self, option_type: OptionType | str, strike: float,
                             maturity: float, bond_maturity: float) -> float:
        """
        European option expiring at maturity on a zero-coupon bond paying 1 at
        bond_maturity, struck at strike (in bond price terms).
        """
        self._check_consistent()
        option_type = OptionType.parse(option_type)
        if maturity < 0:
            raise PreconditionViolation(f"option maturity {maturity} cannot be negative.")
        if maturity > bond_maturity:
            raise PreconditionViolation(
                f"option maturity {maturity} cannot be after bond maturity {bond_maturity}.")
        if strike < 0:
            raise PreconditionViolation(f"strike {strike} cannot be negative.")

        a = self._a
        if a < SMALL_A:
            v = self._sigma * self.B(maturity, bond_maturity) * np.sqrt(maturity)
        else:
            v = (self._sigma * self.B(maturity, bond_maturity)
                 * np.sqrt(0.5 * (1.0 - np.exp(-2.0 * a * maturity)) / a))
        f = self.term_structure.discount(bond_maturity)
        k = self.term_structure.discount(maturity) * strike
        return black_formula(f, k, float(v), option_type)

    def tree(self, grid, desc: str = "unnamed") -> HullWhiteTrinomialTree:
        """
        Trinomial tree on the given time grid with level shifts fitted so the
        tree reprices the curve's discount factor at every grid time.
        """
        self._check_consistent()
        phi = NumericalFittingParameter()
        numeric_dynamics = HullWhiteDynamics(phi, self._a, self._sigma)
        tree = HullWhiteTrinomialTree(numeric_dynamics, grid, desc=desc)

        logger.debug("Tree %s: fitting to the term structure over %d steps", desc, len(tree.delta_ts))
        for i, delta_t in enumerate(tree.delta_ts):
            discount_bond = self.term_structure.discount(tree.times[i + 1])
            state_prices = tree.state_prices(i)
            log_value = logsumexp(-tree.underlyings(i) * delta_t, b=state_prices)
            phi.set(tree.times[i], (log_value - np.log(discount_bond)) / delta_t)

        # no step follows the last layer, fall back on the analytic value
        phi.set(tree.times[-1], self._phi(tree.times[-1]))
        logger.debug("Tree %s: fitted, widest layer has %d nodes",
                     desc, max(tree.size(i) for i in range(tree.num_layers)))
        return tree

    def __repr__(self):
        return f"OneFactorHullWhiteModel(a={self._a}, sigma={self._sigma})"
