"""
OAuth2 handling for Google Calendar.

The OAuth client configuration is read from the GOOGLE_CALENDAR_CREDENTIALS
environment variable, falling back to a local credentials file. Tokens live in
a single in-memory slot: one authenticated identity per process, and a restart
always requires authenticating again.
"""

import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import urlencode

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from calendar_config import Settings
from calendar_errors import (
    AuthExchangeError,
    ConfigurationError,
    NotAuthenticatedError,
    TokenExpiredError,
    UpstreamError,
    ValidationError,
)

logger = logging.getLogger("calendar_auth")

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OAuthClientConfig(BaseModel):
    """OAuth client id/secret and the redirect URI used for both legs of the flow."""

    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    redirect_uris: List[str] = Field(default_factory=list)
    auth_uri: str = GOOGLE_AUTH_URI
    token_uri: str = GOOGLE_TOKEN_URI
    redirect_uri: str = ""

    @field_validator("client_id", "client_secret")
    @classmethod
    def _normalize_non_empty(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("must be a non-empty string")
        return normalized

    def __repr__(self) -> str:
        return (
            f"OAuthClientConfig(client_id={self.client_id!r}, "
            f"client_secret=<REDACTED>, redirect_uri={self.redirect_uri!r})"
        )

    __str__ = __repr__

    def as_flow_config(self) -> Dict[str, Any]:
        return {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": self.auth_uri,
                "token_uri": self.token_uri,
                "redirect_uris": [self.redirect_uri],
            }
        }


def parse_client_config(raw: str, redirect_override: Optional[str] = None) -> OAuthClientConfig:
    """Parse a Google console credentials JSON document.

    Accepts the downloaded ``{"web": {...}}`` / ``{"installed": {...}}`` shapes
    as well as a flat object with the same keys.
    """
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ConfigurationError(f"OAuth credentials are not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ConfigurationError("OAuth credentials must be a JSON object")

    section = data.get("web") or data.get("installed") or data
    try:
        config = OAuthClientConfig.model_validate(section)
    except PydanticValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        raise ConfigurationError(f"OAuth credentials are missing or invalid fields: {fields}")

    redirect_uri = redirect_override or (config.redirect_uris[0] if config.redirect_uris else "")
    if not redirect_uri:
        raise ConfigurationError("OAuth credentials do not define any redirect_uris")
    return config.model_copy(update={"redirect_uri": redirect_uri})


def load_client_config(settings: Settings) -> OAuthClientConfig:
    """Resolve the OAuth client config: environment variable first, then the credentials file."""
    if settings.credentials_json:
        logger.info("Reading OAuth credentials from GOOGLE_CALENDAR_CREDENTIALS")
        return parse_client_config(settings.credentials_json, settings.callback_url)

    path = settings.credentials_file
    if not os.path.exists(path):
        raise ConfigurationError(
            f"No OAuth credentials found: set GOOGLE_CALENDAR_CREDENTIALS or provide {path}"
        )
    logger.info(f"Reading OAuth credentials from file {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except OSError as e:
        raise ConfigurationError(f"Could not read credentials file {path}: {e}")
    return parse_client_config(raw, settings.callback_url)


def build_authorization_url(config: OAuthClientConfig, scopes: List[str], force_consent: bool = True) -> str:
    """Build the Google consent URL.

    ``prompt=consent`` makes Google issue a refresh token on every
    authorization; without it repeat consents come back with no refresh token.
    """
    params = {
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "response_type": "code",
        "scope": " ".join(scopes),
        "access_type": "offline",
    }
    if force_consent:
        params["prompt"] = "consent"
    return f"{config.auth_uri}?{urlencode(params)}"


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expiry is None:
            return False
        return self.expiry <= (now or _utcnow())

    @classmethod
    def from_google(cls, creds: Credentials, fallback_refresh_token: Optional[str] = None) -> "Credential":
        expiry = creds.expiry
        # google-auth keeps expiry as a naive UTC datetime
        if expiry is not None and expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return cls(
            access_token=creds.token,
            refresh_token=creds.refresh_token or fallback_refresh_token,
            expiry=expiry,
        )

    def __repr__(self) -> str:
        return f"Credential(access_token=<REDACTED>, refresh_token=<REDACTED>, expiry={self.expiry!r})"


class CredentialStore:
    """Single-slot, in-memory holder for the process's one credential."""

    def __init__(self):
        self._lock = threading.RLock()
        self._credential: Optional[Credential] = None

    @contextmanager
    def locked(self) -> Iterator["CredentialStore"]:
        with self._lock:
            yield self

    def get(self) -> Optional[Credential]:
        with self._lock:
            return self._credential

    def set(self, credential: Credential) -> None:
        with self._lock:
            self._credential = credential

    def clear(self) -> None:
        with self._lock:
            self._credential = None


def _exchange_code_for_tokens(config: OAuthClientConfig, scopes: List[str], code: str) -> Credentials:
    flow = Flow.from_client_config(
        config.as_flow_config(),
        scopes=scopes,
        redirect_uri=config.redirect_uri,
        autogenerate_code_verifier=False,
    )
    flow.fetch_token(code=code)
    return flow.credentials


def _refresh_access_token(config: OAuthClientConfig, credential: Credential) -> Credentials:
    creds = Credentials(
        token=credential.access_token,
        refresh_token=credential.refresh_token,
        token_uri=config.token_uri,
        client_id=config.client_id,
        client_secret=config.client_secret,
    )
    creds.refresh(Request())
    return creds


class TokenManager:
    def __init__(
        self,
        settings: Settings,
        store: Optional[CredentialStore] = None,
        client_config: Optional[OAuthClientConfig] = None,
    ):
        self.settings = settings
        self.store = store if store is not None else CredentialStore()
        self._client_config = client_config
        if not settings.force_consent:
            logger.warning(
                "GOOGLE_OAUTH_FORCE_CONSENT is disabled: Google may omit the refresh token on repeat authorizations"
            )

    @property
    def client_config(self) -> OAuthClientConfig:
        if self._client_config is None:
            self._client_config = load_client_config(self.settings)
        return self._client_config

    def authorization_url(self) -> str:
        return build_authorization_url(self.client_config, self.settings.scopes, self.settings.force_consent)

    def exchange_code(self, code: str) -> Credential:
        if not code or not code.strip():
            raise ValidationError("Missing authorization code")
        config = self.client_config
        try:
            creds = _exchange_code_for_tokens(config, self.settings.scopes, code.strip())
        except OAuth2Error as e:
            logger.warning(f"Authorization code exchange rejected: {e.error}")
            raise AuthExchangeError(f"Authorization code exchange failed: {e.description or e.error}")
        except requests.RequestException as e:
            logger.error(f"Token endpoint unreachable: {e}")
            raise UpstreamError(f"Token endpoint request failed: {e}")

        credential = Credential.from_google(creds)
        if not credential.refresh_token:
            logger.warning("Google did not return a refresh token; the session cannot be renewed once it expires")
        self.store.set(credential)
        logger.info("Google Calendar authorization completed")
        return credential

    def get_valid_credential(self) -> Credential:
        with self.store.locked() as store:
            credential = store.get()
            if credential is None:
                raise NotAuthenticatedError()
            if not credential.is_expired():
                return credential

            if not credential.refresh_token:
                store.clear()
                logger.warning("Access token expired and no refresh token is available; session cleared")
                raise TokenExpiredError()
            try:
                refreshed = _refresh_access_token(self.client_config, credential)
            except GoogleAuthError as e:
                store.clear()
                logger.warning(f"Token refresh failed, session cleared: {e}")
                raise TokenExpiredError()

            credential = Credential.from_google(refreshed, fallback_refresh_token=credential.refresh_token)
            store.set(credential)
            logger.info("Access token refreshed")
            return credential

    def invalidate(self, reason: str) -> None:
        """Drop the session after Google rejected its access token."""
        self.store.clear()
        logger.warning(f"Google rejected the access token, session cleared: {reason}")

    def google_credentials(self) -> Credentials:
        """Access-token-only credentials for the API client; refresh stays with the manager."""
        return Credentials(token=self.get_valid_credential().access_token)

    def status(self) -> Dict[str, Any]:
        credential = self.store.get()
        if credential is None:
            return {
                "authenticated": False,
                "expired": False,
                "has_refresh_token": False,
                "expires_at": None,
            }
        return {
            "authenticated": True,
            "expired": credential.is_expired(),
            "has_refresh_token": bool(credential.refresh_token),
            "expires_at": credential.expiry.isoformat() if credential.expiry else None,
        }
