class HullWhiteError(Exception):
    """Base class for errors raised by the Hull-White model package."""


class PreconditionViolation(HullWhiteError, ValueError):
    """
    A call was made with arguments the model cannot accept, e.g. an option
    maturity after the bond maturity, non-positive model constants or a
    time grid that is too short or not increasing.
    """


class StaleParametersError(PreconditionViolation):
    """Model constants changed but the fitting parameter was not regenerated."""


class CurveLookupError(HullWhiteError, LookupError):
    """The term structure cannot supply a value at the requested time."""
