"""Two-legged access token lifecycle."""

import logging
import time
from collections.abc import Callable
from threading import Lock

import requests

from .errors import error_for_status
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

AUTHENTICATE_URL = "https://developer.api.autodesk.com/authentication/v1/authenticate"
TOKEN_SCOPE = "account:read data:read"

# Tokens are refreshed this many seconds before the provider says they expire
EXPIRY_MARGIN_SECONDS = 60


class TokenManager:
    """
    Sole owner of the bearer token shared by every request of a run.

    All access goes through ``ensure_valid()``, which holds a lock while the
    token is checked and, if needed, re-acquired. Concurrent callers that
    find the token expired therefore trigger a single re-authentication.
    """

    def __init__(
        self,
        session: requests.Session,
        client_id: str,
        client_secret: str,
        retry_policy: RetryPolicy,
        auth_url: str = AUTHENTICATE_URL,
        timeout: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.client_id = client_id
        self.client_secret = client_secret
        self.retry_policy = retry_policy
        self.auth_url = auth_url
        self.timeout = timeout
        self.clock = clock

        self._lock = Lock()
        self._token: str | None = None
        self._expires_at = 0.0

    def ensure_valid(self) -> str:
        """Return a usable token, authenticating first if it is absent or about to expire."""
        with self._lock:
            if self._token is None or self.clock() >= self._expires_at:
                logger.debug("Access token expired or missing, authenticating")
                self._token, self._expires_at = self.retry_policy.execute(self._authenticate)
            return self._token

    def invalidate(self, token: str | None = None) -> None:
        """
        Drop the cached token so the next request re-authenticates.

        Args:
            token: The token a rejected request was sent with. When given,
                the cache is only cleared if it still holds that token, so a
                late 401 cannot discard a token acquired in the meantime.
        """
        with self._lock:
            if token is not None and token != self._token:
                logger.debug("Rejected token already replaced, keeping the current one")
                return
            self._token = None
            self._expires_at = 0.0

    def _authenticate(self) -> tuple[str, float]:
        response = self.session.post(
            self.auth_url,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
                "scope": TOKEN_SCOPE,
            },
            timeout=self.timeout,
        )
        if not response.ok:
            error = error_for_status(
                response.status_code,
                response.text,
                self.auth_url,
                response.headers.get("Retry-After"),
            )
            if response.status_code in (401, 403):
                logger.error(
                    "Error %d obtaining two-legged access token from %s. "
                    "This usually indicates an incorrect client id and/or client secret.",
                    response.status_code,
                    self.auth_url,
                )
            raise error

        payload = response.json()
        expires_in = float(payload.get("expires_in", 0))
        expires_at = self.clock() + expires_in - EXPIRY_MARGIN_SECONDS
        logger.debug("Authenticated, token valid for %.0f seconds", expires_in)
        return payload["access_token"], expires_at
