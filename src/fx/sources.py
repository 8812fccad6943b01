"""Rate sources that produce a RateTable snapshot for one command.

StaticRateSource serves quotes from configuration. NbpRateSource fetches mid
rates against PLN from the Polish National Bank public API.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Iterable, Mapping, Optional

import requests

from src.fx.amount import Number, normalize_currency, to_decimal
from src.fx.rates import RateTable
from src.utils.config import Config
from src.utils.exceptions import ConfigurationError, RateSourceError
from src.utils.logging import get_logger

logger = get_logger(__name__)


class RateSource(ABC):
    """Abstract supplier of exchange rates."""

    @abstractmethod
    def get_rates(self, currencies: Iterable[str]) -> RateTable:
        """Return a RateTable covering the given currencies.

        A source may return a table that lacks some pairs; conversions that
        need them fail individually with RateUnavailableError.

        Raises:
            RateSourceError: If the source itself fails
        """
        pass


class StaticRateSource(RateSource):
    """Rates quoted against a base currency, taken from configuration.

    Example:
        >>> source = StaticRateSource("PLN", {"USD": "4.02", "EUR": "4.34"})
        >>> table = source.get_rates(["USD", "EUR"])
    """

    def __init__(self, base: str, quotes: Mapping[str, Number]):
        self.base = normalize_currency(base)
        self.quotes = {normalize_currency(c): to_decimal(v) for c, v in quotes.items()}

    def get_rates(self, currencies: Iterable[str]) -> RateTable:
        return RateTable.from_base_rates(self.base, self.quotes)


class NbpRateSource(RateSource):
    """Mid rates from the NBP exchange rate table A.

    Each currency is fetched with one request to
    ``{url}/{code}?format=json``; the first ``rates[].mid`` is the PLN price of
    one unit.
    """

    BASE_CURRENCY = "PLN"
    DEFAULT_URL = "https://api.nbp.pl/api/exchangerates/rates/a"

    def __init__(self, url: str = DEFAULT_URL, timeout: float = 10.0):
        self.url = url.rstrip("/")
        self.timeout = timeout

    def get_rates(self, currencies: Iterable[str]) -> RateTable:
        mids = {}
        for currency in sorted({normalize_currency(c) for c in currencies}):
            if currency == self.BASE_CURRENCY:
                continue
            mids[currency] = self._fetch_mid(currency)

        logger.info("Fetched %d NBP mid rates", len(mids))
        return RateTable.from_base_rates(self.BASE_CURRENCY, mids)

    def _fetch_mid(self, currency: str) -> Decimal:
        url = f"{self.url}/{currency.lower()}"
        try:
            response = requests.get(
                url, params={"format": "json"}, timeout=self.timeout
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise RateSourceError(f"Failed to fetch {currency} rate from NBP: {e}") from e
        except ValueError as e:
            raise RateSourceError(f"Invalid NBP response for {currency}: {e}") from e

        try:
            mid = payload["rates"][0]["mid"]
        except (KeyError, IndexError, TypeError) as e:
            raise RateSourceError(f"NBP response for {currency} has no mid rate") from e

        try:
            value = to_decimal(mid)
        except ValueError as e:
            raise RateSourceError(f"NBP mid rate for {currency} is not a number: {mid!r}") from e
        if value <= 0:
            raise RateSourceError(f"NBP mid rate for {currency} must be positive, got {value}")

        logger.debug("NBP mid rate %s/PLN = %s", currency, value)
        return value


def rate_source_from_config(config: Config) -> RateSource:
    """Build the rate source named by ``rates.source``.

    Raises:
        ConfigurationError: If the source is unknown or incompletely configured
    """
    name = str(config.get("rates.source", "static")).lower()

    if name == "static":
        base: Optional[str] = config.get("rates.static.base")
        quotes = config.get("rates.static.quotes", {})
        if not base:
            raise ConfigurationError("rates.static.base is required for static rates")
        if not isinstance(quotes, dict):
            raise ConfigurationError("rates.static.quotes must be a mapping")
        try:
            return StaticRateSource(base, quotes)
        except ValueError as e:
            raise ConfigurationError(f"Invalid static rates: {e}") from e

    if name == "nbp":
        return NbpRateSource(
            url=config.get("rates.nbp.url", NbpRateSource.DEFAULT_URL),
            timeout=float(config.get("rates.nbp.timeout", 10.0)),
        )

    raise ConfigurationError(f"Unknown rate source: {name}. Available: static, nbp")
