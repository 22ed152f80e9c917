"""
Google service-account credentials.

Implements the OAuth 2.0 JWT bearer flow: an RS256-signed assertion
naming the service account, scope and token endpoint is exchanged for a
short-lived access token.

Tokens are cached per provider and re-issued once fewer than
``token_refresh_margin_seconds`` remain before expiry, so a cached token
is never used at or past its expiry time.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Annotated, Callable, Optional

import httpx
import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from reporter.app.core.config import Settings
from reporter.app.core.errors import ConfigurationError, PublishError

logger = logging.getLogger("reporter.google_auth")

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 3600


class CredentialExchangeError(PublishError):
    """Raised when the token endpoint rejects or fails the exchange."""


@dataclass(frozen=True)
class AccessToken:
    token: str
    expires_at: float


class ServiceAccountTokenProvider:
    """
    Issues bearer tokens for the configured service account.

    Safe to share between threads; concurrent callers with an expired
    cache serialize on a single exchange.
    """

    def __init__(
        self,
        settings: Annotated[Settings, "Application configuration"],
        http_client: Annotated[httpx.Client, "Persistent HTTP client"],
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.client = http_client
        self.clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[AccessToken] = None
        self._key: Optional[rsa.RSAPrivateKey] = None

    # ------------------------------------------------------------------
    # Assertion
    # ------------------------------------------------------------------

    def _credentials(self) -> tuple:
        email = self.settings.google_service_account_email
        secret = self.settings.google_service_account_private_key
        if not email or secret is None or not secret.get_secret_value().strip():
            raise ConfigurationError(
                "Missing Google service account configuration. Set "
                "GOOGLE_SERVICE_ACCOUNT_EMAIL and "
                "GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY."
            )
        return email, secret.get_secret_value()

    def _signing_key(self, pem: str) -> rsa.RSAPrivateKey:
        if self._key is not None:
            return self._key
        try:
            key = serialization.load_pem_private_key(pem.strip().encode("utf-8"), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise ConfigurationError(
                f"Invalid Google service account private key: {exc}"
            ) from exc
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ConfigurationError(
                "Google service account private key must be an RSA key."
            )
        self._key = key
        return key

    def build_assertion(self, issued_at: Optional[int] = None) -> str:
        email, pem = self._credentials()
        now = int(self.clock() if issued_at is None else issued_at)
        claims = {
            "iss": email,
            "scope": self.settings.google_drive_scope,
            "aud": self.settings.google_token_uri,
            "iat": now,
            "exp": now + ASSERTION_LIFETIME_SECONDS,
        }
        return jwt.encode(
            claims,
            self._signing_key(pem),
            algorithm="RS256",
            headers={"typ": "JWT"},
        )

    # ------------------------------------------------------------------
    # Exchange
    # ------------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, max=2),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def _post_assertion(self, assertion: str) -> httpx.Response:
        return self.client.post(
            self.settings.google_token_uri,
            data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            headers={"Accept": "application/json"},
        )

    def _exchange(self) -> AccessToken:
        issued_at = self.clock()
        assertion = self.build_assertion(int(issued_at))

        try:
            response = self._post_assertion(assertion)
        except httpx.HTTPError as exc:
            raise CredentialExchangeError(
                f"Google token exchange failed: {exc}"
            ) from exc

        if response.status_code >= 400:
            logger.error(
                "google_token_exchange_failed",
                extra={
                    "status_code": response.status_code,
                    "response_body": response.text,
                },
            )
            raise CredentialExchangeError(
                f"Google token exchange failed ({response.status_code}): "
                f"{response.text}"
            )

        try:
            payload = response.json()
            token = payload["access_token"]
        except (ValueError, KeyError) as exc:
            raise CredentialExchangeError(
                "Google token response did not contain an access token."
            ) from exc

        expires_in = payload.get("expires_in") or ASSERTION_LIFETIME_SECONDS
        return AccessToken(token=token, expires_at=issued_at + float(expires_in))

    def _is_fresh(self, cached: Optional[AccessToken]) -> bool:
        if cached is None:
            return False
        margin = self.settings.token_refresh_margin_seconds
        return self.clock() < cached.expires_at - margin

    def get_token(self) -> str:
        """Return a bearer token, exchanging a new assertion when needed."""
        cached = self._cached
        if self._is_fresh(cached):
            return cached.token

        with self._lock:
            if not self._is_fresh(self._cached):
                self._cached = self._exchange()
                logger.info(
                    "google_token_issued",
                    extra={"expires_at": int(self._cached.expires_at)},
                )
            return self._cached.token

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None
