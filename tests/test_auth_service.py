import os
import sys
import unittest
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse
from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from auth_service import OAuthService
from db import UserRepository
from errors import AuthenticationError, ValidationError
from rest_api import FitnessAPI
from settings_schema import SettingsSchema


def _response(status: int, payload: dict) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    resp.text = str(payload)
    return resp


TOKENS = {"access_token": "at", "refresh_token": "rt", "scope": "openid", "expires_in": 3600}
PROFILE = {
    "sub": "1234",
    "email": "oauth@example.com",
    "name": "OAuth User",
    "picture": "https://example.com/a.png",
    "email_verified": True,
}


class OAuthServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_auth.db"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        self.settings = SettingsSchema(
            google_client_id="client-id", google_client_secret="client-secret"
        )
        self.users = UserRepository(self.db_path)
        self.service = OAuthService(self.settings, self.users)

    def tearDown(self) -> None:
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def test_authorization_url(self) -> None:
        url = self.service.authorization_url("xyz")
        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        self.assertTrue(url.startswith(OAuthService.AUTHORIZE_URL))
        self.assertEqual(query["client_id"], ["client-id"])
        self.assertEqual(query["state"], ["xyz"])
        self.assertEqual(query["response_type"], ["code"])
        self.assertEqual(query["redirect_uri"], [self.settings.oauth_redirect_uri])

    def test_missing_configuration(self) -> None:
        service = OAuthService(SettingsSchema(), self.users)
        self.assertFalse(service.configured)
        with self.assertRaises(AuthenticationError):
            service.authorization_url("s")

    @patch("auth_service.requests.get")
    @patch("auth_service.requests.post")
    def test_authenticate_creates_user(self, mock_post, mock_get) -> None:
        mock_post.return_value = _response(200, TOKENS)
        mock_get.return_value = _response(200, PROFILE)
        user = self.service.authenticate("code-1", "state", "state")
        self.assertEqual(user["email"], "oauth@example.com")
        self.assertEqual(user["name"], "OAuth User")
        self.assertTrue(user["email_verified"])
        data = mock_post.call_args.kwargs["data"]
        self.assertEqual(data["grant_type"], "authorization_code")
        self.assertEqual(data["code"], "code-1")
        self.assertEqual(
            mock_get.call_args.kwargs["headers"], {"Authorization": "Bearer at"}
        )
        again = self.service.authenticate("code-2", "s2", "s2")
        self.assertEqual(again["id"], user["id"])
        self.assertEqual(self.users.count(), 1)

    def test_state_mismatch(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.authenticate("code", "forged", "expected")
        with self.assertRaises(ValidationError):
            self.service.authenticate("code", "state", None)

    @patch("auth_service.requests.post")
    def test_token_exchange_failure(self, mock_post) -> None:
        mock_post.return_value = _response(400, {"error": "invalid_grant"})
        with self.assertRaises(AuthenticationError):
            self.service.authenticate("bad", "s", "s")
        self.assertEqual(self.users.count(), 0)


class OAuthRoutesTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_auth_api.db"
        self.yaml_path = "test_auth_settings.yaml"
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)
        self.api = FitnessAPI(db_path=self.db_path, yaml_path=self.yaml_path)
        self.api.settings.google_client_id = "client-id"
        self.api.settings.google_client_secret = "client-secret"
        self.client = TestClient(self.api.app)

    def tearDown(self) -> None:
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)

    @patch("auth_service.requests.get")
    @patch("auth_service.requests.post")
    def test_login_and_callback(self, mock_post, mock_get) -> None:
        mock_post.return_value = _response(200, TOKENS)
        mock_get.return_value = _response(200, PROFILE)
        response = self.client.get("/auth/login", follow_redirects=False)
        self.assertEqual(response.status_code, 307)
        state = response.cookies.get(OAuthService.STATE_COOKIE)
        self.assertIsNotNone(state)
        self.assertIn(f"state={state}", response.headers["location"])

        self.client.cookies.set(OAuthService.STATE_COOKIE, state)
        response = self.client.get("/auth/callback", params={"code": "c", "state": state})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["email"], "oauth@example.com")

    def test_callback_rejects_bad_state(self) -> None:
        response = self.client.get("/auth/callback", params={"code": "c", "state": "x"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Invalid OAuth state")


if __name__ == "__main__":
    unittest.main()
