import requests
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from ordersync.datetime_utils import utcnow
from ordersync.exceptions import HelpshipAPIError
from ordersync.helpship.payloads import TokenResponse

TOKEN_REFRESH_BUFFER_SECONDS = 300


def request_client_credentials_token(
    session: requests.Session,
    token_url: str,
    client_id: str,
    client_secret: str,
    scope: str = "helpship.api",
    timeout: int = 30,
) -> Tuple[str, int]:
    """Request a new OAuth access token via client credentials flow."""
    payload = {
        "grant_type": "client_credentials",
        "client_id": client_id,
        "client_secret": client_secret,
        "scope": scope,
    }
    response = session.post(
        token_url,
        data=payload,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        timeout=timeout,
    )
    if not response.ok:
        raise HelpshipAPIError(
            f"Helpship auth failed: {response.status_code} {response.text}",
            status_code=response.status_code,
            body=response.text,
        )
    data: TokenResponse = response.json()
    access_token = data.get("access_token")
    if not access_token:
        raise HelpshipAPIError("Helpship auth response did not contain an access_token", body=response.text)
    expires_in = int(data.get("expires_in") or 3600)
    return access_token, expires_in


class TokenCache:
    """
    Holds one bearer token and its expiry.

    A cached token is only handed out while it is valid for at least
    ``refresh_buffer_seconds`` more, so requests never race the expiry.
    """

    def __init__(self, refresh_buffer_seconds: int = TOKEN_REFRESH_BUFFER_SECONDS,
                 clock: Callable[[], datetime] = utcnow):
        self.refresh_buffer_seconds = refresh_buffer_seconds
        self._clock = clock
        self._access_token: Optional[str] = None
        self._expires_at: Optional[datetime] = None

    def get(self) -> Optional[str]:
        if self._access_token is None or self.is_expiring():
            return None
        return self._access_token

    def store(self, access_token: str, expires_in: int) -> None:
        self._access_token = access_token
        self._expires_at = self._clock() + timedelta(seconds=expires_in)

    def invalidate(self) -> None:
        self._access_token = None
        self._expires_at = None

    def is_expiring(self) -> bool:
        buffer_time = self._clock() + timedelta(seconds=self.refresh_buffer_seconds)
        return self._expires_at is None or self._expires_at <= buffer_time

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._expires_at
