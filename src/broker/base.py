"""Abstract broker data source.

A broker supplies the live holdings that replace stored amounts of
broker-linked positions. Failures are reported as BrokerUnavailableError or
AuthenticationFailedError; nothing here retries or caches.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from src.fx.amount import Amount


@dataclass(frozen=True)
class PositionMarketValue:
    """One open holding as reported by a broker.

    Attributes:
        symbol: Broker symbol (e.g. "VWCE.DE_9")
        volume: Held volume
        bid_price: Current bid, in the instrument's profit currency
        market_value: volume * bid, in the same currency
    """

    symbol: str
    volume: Decimal
    bid_price: Amount
    market_value: Amount


class BrokerDataSource(ABC):
    """Interface for brokers that can report current holdings.

    Implementations are context managers; leaving the context releases the
    connection whether or not an error occurred.

    Example:
        >>> with XtbBroker(host, port) as broker:
        ...     broker.login(account_id, password)
        ...     holdings = broker.get_position_market_values()
    """

    @abstractmethod
    def connect(self) -> None:
        """Open the connection.

        Raises:
            BrokerUnavailableError: If the broker cannot be reached
        """
        pass

    @abstractmethod
    def login(self, account_id: str, password: str) -> None:
        """Authenticate the session.

        Raises:
            AuthenticationFailedError: If the credentials are rejected
            BrokerUnavailableError: On transport failure
        """
        pass

    @abstractmethod
    def get_position_market_values(self) -> List[PositionMarketValue]:
        """Return market values of all open holdings.

        Raises:
            BrokerUnavailableError: On transport or protocol failure
        """
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def __enter__(self) -> "BrokerDataSource":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
