import numpy as np

# below this mean reversion speed the (1 - e^{-a t}) / a terms use their a -> 0 limit
SMALL_A = np.sqrt(np.finfo(float).eps)


def mean_reversion_factor(a: float, tau):
    """
    (1 - exp(-a * tau)) / a, i.e. the integral of exp(-a * s) over [0, tau].
    Returns tau itself when a is too small for the division to be accurate.
    """
    if a < SMALL_A:
        return tau
    return -np.expm1(-a * tau) / a


class OrnsteinUhlenbeckProcess:
    """
    Zero-mean Ornstein-Uhlenbeck process

        dx = -a * x * dt + sigma * dW

    Transition moments are exact, so the process can be stepped over any dt.
    """

    def __init__(self, a: float, sigma: float, x0: float = 0.0) -> None:
        self.a = float(a)
        self.sigma = float(sigma)
        self.x0 = float(x0)

    def drift(self, t: float, x):
        return -self.a * x

    def diffusion(self, t: float, x) -> float:
        return self.sigma

    def expectation(self, t0: float, x0, dt: float):
        return x0 * np.exp(-self.a * dt)

    def variance(self, t0: float, x0, dt: float) -> float:
        # sigma^2 * (1 - e^{-2 a dt}) / (2 a)
        return self.sigma * self.sigma * mean_reversion_factor(2.0 * self.a, dt)

    def std_deviation(self, t0: float, x0, dt: float) -> float:
        return float(np.sqrt(self.variance(t0, x0, dt)))

    def __repr__(self):
        return f"OrnsteinUhlenbeckProcess(a={self.a}, sigma={self.sigma})"
