"""Custom exceptions for the portfolio rebalancer.

Every failure the core can report is a subclass of RebalancerError, so the
command line can turn any of them into a single human-readable message.
"""


class RebalancerError(Exception):
    """Base exception for all rebalancer errors."""

    pass


class ConfigurationError(RebalancerError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Unknown rate source name
        - Broker kind without settings
    """

    pass


class PortfolioError(RebalancerError):
    """Base exception for portfolio layer errors."""

    pass


class PortfolioReadError(PortfolioError):
    """Raised when the portfolio file cannot be read or parsed."""

    pass


class MalformedPortfolioError(PortfolioError):
    """Raised when the portfolio structure is inconsistent.

    Examples:
        - Group references an undefined position
        - Position belongs to no group, or to more than one
        - Target weight outside [0, 1]
    """

    pass


class InvalidInvestmentAmountError(PortfolioError):
    """Raised when the amount to invest is zero or negative."""

    def __init__(self, amount):
        self.amount = amount
        super().__init__(f"Investment amount must be positive, got {amount}")


class FxError(RebalancerError):
    """Base exception for currency conversion errors."""

    pass


class RateUnavailableError(FxError):
    """Raised when neither a direct nor an inverse rate is known for a pair."""

    def __init__(self, from_currency: str, to_currency: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(
            f"No exchange rate available for {from_currency} -> {to_currency}"
        )


class RateSourceError(FxError):
    """Raised when a rate source fails to deliver quotes.

    Examples:
        - HTTP error from the rate provider
        - Response missing the expected fields
    """

    pass


class CredentialError(RebalancerError):
    """Base exception for stored credential errors."""

    pass


class DecryptionFailedError(CredentialError):
    """Raised when the authentication tag does not match.

    Either the secret is wrong or the stored blob was corrupted.
    """

    pass


class CredentialMissingError(CredentialError):
    """Raised when the portfolio carries no stored credential."""

    pass


class BrokerError(RebalancerError):
    """Base exception for broker data source errors."""

    pass


class BrokerUnavailableError(BrokerError):
    """Raised when the broker cannot be reached or answers with an error.

    Examples:
        - TCP/TLS connection refused or timed out
        - Malformed or failed command response
    """

    pass


class AuthenticationFailedError(BrokerError):
    """Raised when the broker rejects the stored login credentials."""

    pass
