"""XTB xAPI client.

xAPI is JSON over a TLS socket. Each request is a single JSON object
``{"command": ..., "arguments": {...}}``; each response is a JSON object
terminated by an empty line. Only the three commands needed to value open
positions are implemented: login, getTrades and getSymbol.
"""

import json
import socket
import ssl
from typing import Any, Dict, List, Optional

from src.broker.base import BrokerDataSource, PositionMarketValue
from src.fx.amount import Amount, to_decimal
from src.utils.exceptions import AuthenticationFailedError, BrokerUnavailableError
from src.utils.logging import get_logger

logger = get_logger(__name__)

RESPONSE_TERMINATOR = b"\n\n"


class TlsTransport:
    """Blocking TLS socket that exchanges blank-line-terminated messages."""

    def __init__(self, host: str, port: int, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.timeout = timeout
        self._socket: Optional[ssl.SSLSocket] = None
        self._pending = b""

    def connect(self) -> None:
        context = ssl.create_default_context()
        raw = socket.create_connection((self.host, self.port), timeout=self.timeout)
        try:
            self._socket = context.wrap_socket(raw, server_hostname=self.host)
        except (OSError, ssl.SSLError):
            raw.close()
            raise

    def send(self, message: str) -> None:
        if self._socket is None:
            raise BrokerUnavailableError("Not connected to broker")
        self._socket.sendall(message.encode("utf-8"))

    def receive(self) -> str:
        if self._socket is None:
            raise BrokerUnavailableError("Not connected to broker")

        while RESPONSE_TERMINATOR not in self._pending:
            chunk = self._socket.recv(4096)
            if not chunk:
                raise BrokerUnavailableError("Broker closed the connection")
            self._pending += chunk

        message, self._pending = self._pending.split(RESPONSE_TERMINATOR, 1)
        return message.decode("utf-8")

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        self._pending = b""


class XtbBroker(BrokerDataSource):
    """Holdings from an XTB account.

    Args:
        host: xAPI host (real: xapi.xtb.com)
        port: xAPI port (5112 real, 5124 demo)
        timeout: Socket timeout in seconds
        transport: Object with connect/send/receive/close; defaults to a
            TlsTransport for ``host``:``port``
    """

    DEFAULT_HOST = "xapi.xtb.com"
    DEFAULT_PORT = 5124

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        timeout: float = 10.0,
        transport: Optional[Any] = None,
    ):
        self.host = host
        self.port = port
        self.transport = transport or TlsTransport(host, port, timeout)
        self.stream_session_id: Optional[str] = None

    def connect(self) -> None:
        try:
            self.transport.connect()
        except (OSError, ssl.SSLError) as e:
            raise BrokerUnavailableError(
                f"Cannot connect to XTB at {self.host}:{self.port}: {e}"
            ) from e
        logger.info("Connected to XTB at %s:%d", self.host, self.port)

    def close(self) -> None:
        self.transport.close()
        self.stream_session_id = None

    def _send_command(self, command: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Send one command and return the decoded response."""
        request = json.dumps({"command": command, "arguments": arguments})
        try:
            self.transport.send(request)
            raw = self.transport.receive()
        except (OSError, ssl.SSLError) as e:
            raise BrokerUnavailableError(f"XTB {command} failed: {e}") from e

        try:
            response = json.loads(raw)
        except json.JSONDecodeError as e:
            raise BrokerUnavailableError(f"Invalid XTB response to {command}: {e}") from e
        if not isinstance(response, dict):
            raise BrokerUnavailableError(f"Invalid XTB response to {command}")
        return response

    @staticmethod
    def _error_description(response: Dict[str, Any]) -> str:
        code = response.get("errorCode", "unknown")
        description = response.get("errorDescr", "no description")
        return f"{code}: {description}"

    def login(self, account_id: str, password: str) -> None:
        response = self._send_command(
            "login", {"userId": account_id, "password": password}
        )
        if not response.get("status"):
            raise AuthenticationFailedError(
                f"XTB rejected login for account {account_id} "
                f"({self._error_description(response)})"
            )
        self.stream_session_id = response.get("streamSessionId")
        logger.info("Logged in to XTB account %s", account_id)

    def get_trades(self, opened_only: bool = True) -> List[Dict[str, Any]]:
        response = self._send_command("getTrades", {"openedOnly": opened_only})
        if not response.get("status"):
            raise BrokerUnavailableError(
                f"XTB getTrades failed ({self._error_description(response)})"
            )
        return response.get("returnData") or []

    def get_symbol(self, symbol: str) -> Dict[str, Any]:
        response = self._send_command("getSymbol", {"symbol": symbol})
        if not response.get("status") or not response.get("returnData"):
            raise BrokerUnavailableError(
                f"XTB getSymbol {symbol} failed ({self._error_description(response)})"
            )
        return response["returnData"]

    def get_position_market_values(self) -> List[PositionMarketValue]:
        trades = [t for t in self.get_trades(opened_only=True) if t.get("symbol")]

        records: Dict[str, Dict[str, Any]] = {}
        for trade in trades:
            symbol = trade["symbol"]
            if symbol not in records:
                records[symbol] = self.get_symbol(symbol)

        values = []
        for trade in trades:
            record = records[trade["symbol"]]
            try:
                volume = to_decimal(trade["volume"])
                bid = Amount(record["currencyProfit"], record["bid"])
            except (KeyError, ValueError) as e:
                raise BrokerUnavailableError(
                    f"Incomplete XTB data for {trade['symbol']}: {e}"
                ) from e
            values.append(
                PositionMarketValue(
                    symbol=trade["symbol"],
                    volume=volume,
                    bid_price=bid,
                    market_value=Amount(bid.currency, volume * bid.value),
                )
            )

        logger.info("Fetched %d open XTB positions", len(values))
        return values
