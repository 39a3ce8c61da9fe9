"""Interactive Brokers Client Portal Web API client.

This module is a thin JSON transport over the gateway's REST endpoints.
It returns decoded JSON and maps transport failures onto the broker
exception hierarchy. Turning payloads into domain objects is the job of
IBBroker.

Requests are never retried: repeating an order placement risks a
duplicate order at the broker.
"""

from typing import Any, Dict, List, Optional, Sequence

import requests
import urllib3

from capman.utils.config import BrokerSettings
from capman.utils.exceptions import (
    BrokerAPIError,
    BrokerConnectionError,
    BrokerDataError,
)
from capman.utils.logging import get_logger

logger = get_logger(__name__)

# Market data snapshot field ids
FIELD_LAST_PRICE = "31"
FIELD_BID = "84"
FIELD_ASK = "86"


class IBClient:
    """REST client for the Client Portal Web API gateway.

    Example:
        >>> client = IBClient.from_settings(BrokerSettings())
        >>> status = client.auth_status()
        >>> status["authenticated"]
        True
    """

    def __init__(
        self,
        api_url: str,
        verify_ssl: bool = False,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        """Initialize client.

        Args:
            api_url: Gateway URL, e.g. https://localhost:5000
            verify_ssl: Verify the gateway's TLS certificate. The local
                gateway ships a self-signed certificate.
            timeout: Request timeout in seconds
            session: Optional requests session (for connection reuse or tests)
        """
        self.base_url = api_url.rstrip("/") + "/v1/api/"
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.session = session or requests.Session()
        self.account_id: Optional[str] = None

        if not verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        logger.debug("IBClient initialized for %s", self.base_url)

    @classmethod
    def from_settings(cls, settings: BrokerSettings) -> "IBClient":
        return cls(
            api_url=settings.api_url,
            verify_ssl=settings.verify_ssl,
            timeout=settings.timeout,
        )

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send a request and decode the JSON reply.

        Raises:
            BrokerConnectionError: If the gateway cannot be reached
            BrokerAPIError: If the gateway answers with a non-2xx status
            BrokerDataError: If the reply is not JSON
        """
        url = self.base_url + path.lstrip("/")
        logger.debug("%s %s params=%s", method, url, params)

        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=body,
                headers={"Accept": "application/json"},
                verify=self.verify_ssl,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise BrokerConnectionError(f"{method} {path} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            text = response.text.strip()
            detail = f": {text}" if text else ""
            raise BrokerAPIError(
                f"{method} {path} failed with status {response.status_code}{detail}"
            )

        content_type = response.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            raise BrokerDataError(
                f"{method} {path}: unexpected content type {content_type!r}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise BrokerDataError(
                f"{method} {path}: failed to decode response {response.text!r}: {e}"
            ) from e

    def get(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        return self._request("GET", path, params=params)

    def post(self, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("POST", path, body=body)

    # Session

    def auth_status(self) -> Dict[str, Any]:
        return self.post("iserver/auth/status")

    def accounts(self) -> Dict[str, Any]:
        reply = self.get("iserver/accounts")
        self.account_id = reply.get("selectedAccount")
        return reply

    def portfolio_accounts(self) -> List[Dict[str, Any]]:
        # Must be called before the portfolio positions endpoint
        return self.get("portfolio/accounts")

    def _require_account(self) -> str:
        if self.account_id is None:
            self.accounts()
        if not self.account_id:
            raise BrokerDataError("Gateway did not report a selected account")
        return self.account_id

    # Orders and trades

    def orders(self) -> Dict[str, Any]:
        return self.get("iserver/account/orders")

    def trades(self) -> List[Dict[str, Any]]:
        return self.get("iserver/account/trades")

    def place_order(self, order: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Place an order for the selected account.

        Args:
            order: Order payload (conid, orderType, side, cOID, tif, quantity, price)
        """
        account_id = self._require_account()
        payload = {"accId": account_id, "outsideRTH": False, "useAdaptive": False}
        payload.update(order)
        return self.post(f"iserver/account/{account_id}/order", body=payload)

    def reply(self, reply_id: str) -> List[Dict[str, Any]]:
        """Acknowledge an order question."""
        return self.post(f"iserver/reply/{reply_id}", body={"confirmed": True})

    # Contracts and market data

    def trsrv_stocks(self, symbols: Sequence[str]) -> Dict[str, List[Dict[str, Any]]]:
        return self.get("trsrv/stocks", params={"symbols": ",".join(symbols)})

    def contract_info(self, conid: int) -> Dict[str, Any]:
        return self.get(f"iserver/contract/{conid}/info")

    def market_data(
        self, conids: Sequence[int], fields: Sequence[str]
    ) -> List[Dict[str, Any]]:
        params = {
            "conids": ",".join(str(c) for c in conids),
            "fields": ",".join(fields),
        }
        return self.get("iserver/marketdata/snapshot", params=params)

    # Portfolio

    def portfolio_positions(self) -> List[Dict[str, Any]]:
        """Fetch all position pages until an empty page is returned."""
        account_id = self._require_account()
        positions: List[Dict[str, Any]] = []
        page = 0
        while True:
            reply = self.get(f"portfolio/{account_id}/positions/{page}")
            if not reply:
                return positions
            positions.extend(reply)
            page += 1
