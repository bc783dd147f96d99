import matplotlib
import pytest

from hullwhite.HullWhite import OneFactorHullWhiteModel
from hullwhite.TermStructure import FlatForwardCurve, InterpolatedZeroRateCurve, RelinkableTermStructure

matplotlib.use("Agg")


@pytest.fixture
def flat_curve():
    return FlatForwardCurve(0.05)


@pytest.fixture
def flat_handle(flat_curve):
    return RelinkableTermStructure(flat_curve)


@pytest.fixture
def example_curve():
    return InterpolatedZeroRateCurve.example()


@pytest.fixture
def model(flat_handle):
    return OneFactorHullWhiteModel(flat_handle, a=0.1, sigma=0.01)


@pytest.fixture
def example_model(example_curve):
    return OneFactorHullWhiteModel(RelinkableTermStructure(example_curve), a=0.03, sigma=0.008)
