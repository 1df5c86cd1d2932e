import datetime
import logging
import secrets
from urllib.parse import urlencode

import requests

from db import UserRepository
from errors import AuthenticationError, ValidationError
from settings_schema import SettingsSchema

logger = logging.getLogger(__name__)


class OAuthService:
    """Google OAuth authorization-code login backed by the user repository."""

    PROVIDER = "google"
    AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
    SCOPE = "openid email profile"
    STATE_COOKIE = "oauth_state"

    def __init__(self, settings: SettingsSchema, user_repo: UserRepository) -> None:
        self.settings = settings
        self.users = user_repo

    @property
    def configured(self) -> bool:
        return bool(self.settings.google_client_id and self.settings.google_client_secret)

    def _require_config(self) -> None:
        if not self.configured:
            raise AuthenticationError(
                "Missing GOOGLE_CLIENT_ID or GOOGLE_CLIENT_SECRET"
            )

    @staticmethod
    def new_state() -> str:
        return secrets.token_urlsafe(24)

    def authorization_url(self, state: str) -> str:
        self._require_config()
        query = urlencode(
            {
                "client_id": self.settings.google_client_id,
                "redirect_uri": self.settings.oauth_redirect_uri,
                "response_type": "code",
                "scope": self.SCOPE,
                "state": state,
                "access_type": "offline",
                "prompt": "select_account",
            }
        )
        return f"{self.AUTHORIZE_URL}?{query}"

    def exchange_code(self, code: str) -> dict:
        self._require_config()
        resp = requests.post(
            self.TOKEN_URL,
            data={
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.settings.oauth_redirect_uri,
            },
            timeout=30,
        )
        if resp.status_code != 200:
            logger.warning("Token exchange failed with status %s", resp.status_code)
            raise AuthenticationError(f"Token exchange failed: {resp.text}")
        return resp.json()

    def fetch_userinfo(self, access_token: str) -> dict:
        resp = requests.get(
            self.USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=30,
        )
        if resp.status_code != 200:
            raise AuthenticationError(f"Failed to fetch user profile: {resp.text}")
        return resp.json()

    @staticmethod
    def _expiry(tokens: dict) -> str | None:
        if "expires_in" not in tokens:
            return None
        expires = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(
            seconds=int(tokens["expires_in"])
        )
        return expires.isoformat()

    def authenticate(self, code: str, state: str, expected_state: str | None) -> dict:
        """Complete a login and return the stored user."""
        if not expected_state or state != expected_state:
            raise ValidationError("Invalid OAuth state")
        if not code:
            raise ValidationError("code is required")
        tokens = self.exchange_code(code)
        profile = self.fetch_userinfo(tokens["access_token"])
        if not profile.get("email"):
            raise AuthenticationError("Provider did not return an email address")
        user_id = self.users.upsert_oauth(
            self.PROVIDER,
            str(profile["sub"]),
            profile["email"],
            name=profile.get("name"),
            image=profile.get("picture"),
            email_verified=bool(profile.get("email_verified")),
            access_token=tokens.get("access_token"),
            refresh_token=tokens.get("refresh_token"),
            scope=tokens.get("scope"),
            expires_at=self._expiry(tokens),
        )
        logger.info("User %s signed in with %s", user_id, self.PROVIDER)
        return self.users.fetch_detail(user_id)
