from enum import Enum

import numpy as np
from scipy.stats import norm

from hullwhite.Errors import PreconditionViolation


class OptionType(Enum):
    CALL = "call"
    PUT = "put"

    @classmethod
    def parse(cls, value) -> "OptionType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise PreconditionViolation(f"Unknown option type {value!r}") from None

    @property
    def sign(self) -> float:
        return 1.0 if self is OptionType.CALL else -1.0


def black_formula(forward: float, strike: float, std_dev: float, option_type: OptionType) -> float:
    """
    Undiscounted Black formula on a lognormal forward with total standard
    deviation std_dev. A zero std_dev or zero strike gives the intrinsic value.
    """
    w = option_type.sign
    if std_dev <= 0.0 or strike <= 0.0:
        return max(w * (forward - strike), 0.0)
    d1 = np.log(forward / strike) / std_dev + 0.5 * std_dev
    d2 = d1 - std_dev
    value = w * (forward * norm.cdf(w * d1) - strike * norm.cdf(w * d2))
    return max(float(value), 0.0)
