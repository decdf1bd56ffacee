import time
import requests
from typing import Dict, List, Optional
from requests.exceptions import ConnectionError, Timeout

from ordersync.exceptions import ConfigurationError, HelpshipAPIError
from ordersync.helpship.auth import TokenCache, request_client_credentials_token
from ordersync.helpship.payloads import AddressUpdatePayload, HelpshipOrderPayload
from ordersync.logging_config import get_logger

logger = get_logger(__name__)


class HelpshipAPI:
    """Helpship WMS connection layer utilizing a requests session and an injected token cache."""

    def __init__(self, client_id, client_secret, token_url, api_base_url,
                 token_cache: Optional[TokenCache] = None, session: Optional[requests.Session] = None,
                 scope: str = "helpship.api", timeout: int = 30):
        if not all([client_id, client_secret, token_url, api_base_url]):
            raise ConfigurationError("Missing Helpship configuration (HELPSHIP_CLIENT_ID / HELPSHIP_CLIENT_SECRET)")

        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.base_url = api_base_url.rstrip("/")
        self.scope = scope
        self.timeout = timeout
        self.token_cache = token_cache or TokenCache()

        # Reusable HTTP session
        self.session = session or requests.Session()
        self._country_ids: Dict[str, Optional[str]] = {}

    def get_access_token(self) -> str:
        token = self.token_cache.get()
        if token is None:
            access_token, expires_in = request_client_credentials_token(
                self.session, self.token_url, self.client_id, self.client_secret,
                scope=self.scope, timeout=self.timeout,
            )
            self.token_cache.store(access_token, expires_in)
            token = access_token
            logger.info("Helpship access token refreshed", expires_at=str(self.token_cache.expires_at))
        return token

    def _update_auth_header(self):
        '''Adds the Authorization header to the session'''
        token = self.get_access_token()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        })

    def _request(self, method: str, endpoint: str, max_retries: int = 1, retry_delay: float = 1.0, **kwargs):
        """
        Make an authenticated request.

        A 401 forces one token refresh and a single replay. Connection errors are
        retried with exponential backoff up to ``max_retries`` attempts; callers
        only raise that above one for reads, since a replayed order creation could
        create a duplicate.

        Raises:
            HelpshipAPIError: non-2xx response (status code and body attached)
            requests.ConnectionError: connection kept failing
        """
        self._update_auth_header()
        url = f"{self.base_url}{endpoint}"

        for attempt in range(max_retries):
            try:
                r = self.session.request(method, url, timeout=self.timeout, **kwargs)

                if r.status_code == 401:
                    # Token expired or revoked, refresh once
                    self.token_cache.invalidate()
                    self._update_auth_header()
                    r = self.session.request(method, url, timeout=self.timeout, **kwargs)

                if not r.ok:
                    raise HelpshipAPIError(
                        f"Helpship API error: {r.status_code} {r.text}",
                        status_code=r.status_code,
                        body=r.text,
                    )
                if not r.text:
                    return None
                try:
                    return r.json()
                except ValueError:
                    return r.text

            except (ConnectionError, Timeout) as e:
                if attempt < max_retries - 1:
                    time.sleep(retry_delay * (2 ** attempt))
                    continue
                raise requests.ConnectionError(
                    f"Connection error after {max_retries} attempts: {str(e)}"
                ) from e

    def _get(self, endpoint: str, params: Optional[Dict] = None):
        return self._request("GET", endpoint, max_retries=3, params=params)

    def _post(self, endpoint: str, data=None):
        if data is None:
            return self._request("POST", endpoint)
        return self._request("POST", endpoint, json=data)

    # -------------------------
    # Reference data
    # -------------------------
    def get_countries(self) -> List[Dict]:
        countries = self._get("/api/Country")
        return countries if isinstance(countries, list) else []

    def get_country_id(self, name: str = "Romania", iso_codes=("RO", "ROU")) -> Optional[str]:
        """
        Look up the WMS country id; cached per name for the lifetime of the client.

        Lookup failures are not fatal: the order is created without a country id.
        """
        if name in self._country_ids:
            return self._country_ids[name]

        country_id = None
        try:
            for country in self.get_countries():
                if country.get("name") == name or country.get("code") in iso_codes:
                    country_id = country.get("id")
                    break
        except (HelpshipAPIError, requests.RequestException) as e:
            logger.warning("Helpship country lookup failed", country=name, error=str(e))
            return None

        if country_id is not None:
            country_id = str(country_id)
            self._country_ids[name] = country_id
        return country_id

    # -------------------------
    # Orders
    # -------------------------
    def create_order(self, payload: HelpshipOrderPayload) -> str:
        """Create an order and return the WMS order id."""
        response = self._post("/api/Order", payload)
        order_id = None
        if isinstance(response, dict):
            order_id = response.get("id") or response.get("orderId") or response.get("order_id")
        if not order_id:
            raise HelpshipAPIError("Helpship create order response did not contain an order id", body=str(response))
        return str(order_id)

    def hold_order(self, helpship_order_id: str):
        return self._post(f"/api/Order/{helpship_order_id}/hold")

    def unhold_order(self, helpship_order_id: str):
        return self._post(f"/api/Order/{helpship_order_id}/unhold")

    def cancel_order(self, helpship_order_id: str):
        return self._post("/api/order/cancel", [helpship_order_id])

    def uncancel_order(self, helpship_order_id: str):
        return self._post("/api/Order/uncancel", [helpship_order_id])

    def update_address(self, helpship_order_id: str, payload: AddressUpdatePayload):
        return self._post(f"/api/order/{helpship_order_id}/updateAddress", payload)
