from abc import ABC, abstractmethod
from typing import Callable

from hullwhite.OrnsteinUhlenbeckProcess import OrnsteinUhlenbeckProcess


class ShortRateDynamics(ABC):
    """
    Maps a state variable x following a diffusion process to the short rate.
    """

    def __init__(self, process: OrnsteinUhlenbeckProcess) -> None:
        self.process = process

    @abstractmethod
    def variable(self, t: float, r):
        """
        State variable x corresponding to short rate r at time t.
        """
        pass

    @abstractmethod
    def short_rate(self, t: float, x):
        """
        Short rate corresponding to state variable x at time t.
        """
        pass


class HullWhiteDynamics(ShortRateDynamics):
    """
    Short-rate dynamics in the Hull-White model

        r_t = phi(t) + x_t

    where phi is the deterministic fitting parameter and x_t follows a
    zero-mean Ornstein-Uhlenbeck process with the model's a and sigma.
    """

    def __init__(self, fitting: Callable[[float], float], a: float, sigma: float) -> None:
        super().__init__(OrnsteinUhlenbeckProcess(a, sigma))
        self.fitting = fitting

    def variable(self, t: float, r):
        return r - self.fitting(t)

    def short_rate(self, t: float, x):
        return x + self.fitting(t)
