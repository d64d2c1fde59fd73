"""
Exceptions raised by the copy trading pipeline.
"""


class CopyTradeError(Exception):
    """Base class for copy pipeline failures."""


class OrderRejectedError(CopyTradeError):
    """The CLOB answered an order submission without success."""

    def __init__(self, message: str, response=None):
        super().__init__(f"Order placement failed: {message}")
        self.venue_message = message
        self.response = response


class InsufficientFundsError(CopyTradeError):
    """Balance or allowance is too low for the order. Never retried."""


class NoLiquidityError(CopyTradeError):
    """The side of the book the copy needs to take is empty."""


class ConfigurationError(CopyTradeError):
    """Settings failed validation at startup."""


class CredentialError(CopyTradeError):
    """API credentials could not be derived, created or validated."""
