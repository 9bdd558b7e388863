"""Error types raised by the ICP driver and its strategies."""


class IcpError(Exception):
    """
    Base class for registration failures.

    Args:
        message: Human readable description
        results: Partial IcpResults accumulated before the failure, if any
    """

    def __init__(self, message, results=None):
        super().__init__(message)
        self.results = results


class ConfigurationError(IcpError, ValueError):
    """run() called without target/source, with an empty target or bad parameters."""


class NumericalFailure(IcpError, ArithmeticError):
    """Rank-deficient normal equations or non-finite residuals/Jacobian."""


class NoCorrespondenceFailure(IcpError, RuntimeError):
    """An iteration produced no correspondence within the search distance."""
