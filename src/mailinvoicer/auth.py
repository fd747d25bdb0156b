"""Gmail OAuth2 token lifecycle: code exchange, refresh and disconnect."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import requests
from pydantic import ValidationError

from .errors import AuthorizationFailed, NotConnected, RefreshFailed
from .models import Credential, TokenGrant

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # Rows written without a zone are stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class GoogleOAuthClient:
    """Client for Google's OAuth2 token and userinfo endpoints."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    def _post_token(self, data: dict) -> TokenGrant:
        response = requests.post(TOKEN_URL, data=data, timeout=self.timeout)
        response.raise_for_status()
        return TokenGrant(**response.json())

    def exchange_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for tokens.

        Raises:
            AuthorizationFailed: If the exchange fails
        """
        data = {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        }
        try:
            grant = self._post_token(data)
        except (requests.RequestException, ValueError, ValidationError) as e:
            raise AuthorizationFailed(f"Token exchange failed: {e}") from e

        if not grant.refresh_token:
            raise AuthorizationFailed("Token exchange returned no refresh token")
        return grant

    def refresh(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token.

        Raises:
            RefreshFailed: If the refresh fails for any reason
        """
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            return self._post_token(data)
        except (requests.RequestException, ValueError, ValidationError) as e:
            raise RefreshFailed(f"Token refresh failed: {e}") from e

    def get_mail_address(self, access_token: str) -> str:
        """Look up the mailbox address the token belongs to."""
        try:
            response = requests.get(
                USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            email_address = response.json().get("email")
        except (requests.RequestException, ValueError) as e:
            raise AuthorizationFailed(f"Userinfo lookup failed: {e}") from e

        if not email_address:
            raise AuthorizationFailed("Userinfo response has no email address")
        return email_address


class TokenManager:
    """Guarantees a non-expired access token before any provider call."""

    def __init__(self, db, oauth: GoogleOAuthClient, now: Callable[[], datetime] = _utcnow):
        """Initialize token manager.

        Args:
            db: Token store (DatabaseClient)
            oauth: OAuth client used for code and refresh exchanges
            now: Clock returning an aware datetime
        """
        self.db = db
        self.oauth = oauth
        self._now = now

    def ensure_valid_credential(self, user_id: str) -> Credential:
        """Return the user's credential, refreshing the access token if expired.

        Raises:
            NotConnected: If the user has no stored credential
            RefreshFailed: If the token was expired and could not be refreshed
        """
        credential = self.db.get_credential(user_id)
        if credential is None:
            raise NotConnected(user_id)

        now = self._now()
        if _aware(credential.expiry) > now:
            logger.debug(f"Token for user {user_id} still valid")
            return credential

        logger.info(f"Refreshing token for user {user_id}")
        grant = self.oauth.refresh(credential.refresh_token)
        expiry = now + timedelta(seconds=grant.expires_in)

        # Google does not rotate refresh tokens here; keep the stored one
        self.db.update_access_token(user_id, grant.access_token, expiry)
        logger.info(f"Successfully refreshed token for user {user_id}")

        return credential.model_copy(update={"access_token": grant.access_token, "expiry": expiry})

    def connect(self, user_id: str, code: str) -> Credential:
        """Complete an authorization: store the credential and flag the profile.

        Args:
            user_id: User the authorization belongs to (OAuth state parameter)
            code: Authorization code from the redirect

        Returns:
            Credential: The stored credential
        """
        grant = self.oauth.exchange_code(code)
        mail_address = self.oauth.get_mail_address(grant.access_token)

        credential = Credential(
            user_id=user_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expiry=self._now() + timedelta(seconds=grant.expires_in),
            mail_address=mail_address,
        )
        self.db.upsert_credential(credential)
        self.db.set_profile_connection(user_id, mail_address)
        logger.info(f"Connected Gmail account {mail_address} for user {user_id}")
        return credential

    def disconnect(self, user_id: str) -> bool:
        """Remove the user's credential and clear the profile's connection fields."""
        deleted = self.db.delete_credential(user_id)
        self.db.set_profile_connection(user_id, None)
        return deleted
