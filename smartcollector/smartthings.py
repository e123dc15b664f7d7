"""SmartThings authentication and device API module.

This module handles:
- OAuth2 authorization code flow against the SmartThings graph API
- Caching the access token in a per-client JSON file
- Discovering the SmartApp endpoint and listing devices and their attributes
"""

import json
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO, Union
from urllib.parse import parse_qs, urlencode, urlparse

import requests

# Configure module logger
logger = logging.getLogger(__name__)

BASE_URL = "https://graph.api.smartthings.com"
AUTHORIZE_URL = f"{BASE_URL}/oauth/authorize"
TOKEN_URL = f"{BASE_URL}/oauth/token"
ENDPOINTS_URL = f"{BASE_URL}/api/smartapps/endpoints"

# Local server receiving the OAuth redirect on first run
CALLBACK_PORT = 4567
CALLBACK_PATH = "/OAuthCallback"
REDIRECT_URI = f"http://localhost:{CALLBACK_PORT}{CALLBACK_PATH}"
OAUTH_SCOPE = "app"

DEFAULT_TIMEOUT = 30.0


class SmartThingsError(Exception):
    """Base exception for SmartThings API errors."""
    pass


class SmartThingsAuthError(SmartThingsError):
    """Exception raised when a token can't be loaded or obtained."""
    pass


class SmartThingsFetchError(SmartThingsError):
    """Exception raised when reading endpoints or devices fails."""
    pass


@dataclass
class Token:
    """OAuth access token.

    Attributes:
        access_token: Bearer token value
        token_type: Authorization scheme (usually "bearer")
        expires_at: Unix timestamp the token expires at, None if unknown
    """
    access_token: str
    token_type: str = "bearer"
    expires_at: Optional[float] = None

    def is_valid(self, now: Optional[float] = None) -> bool:
        """Return True if the token is usable at time now."""
        if not self.access_token:
            return False
        if self.expires_at is None:
            return True
        now = time.time() if now is None else now
        return now < self.expires_at

    @property
    def authorization(self) -> str:
        scheme = self.token_type.capitalize() if self.token_type else "Bearer"
        return f"{scheme} {self.access_token}"

    @classmethod
    def from_response(cls, data: Dict[str, Any], now: Optional[float] = None) -> "Token":
        """Build a token from an OAuth token endpoint response."""
        access_token = data.get("access_token")
        if not access_token:
            raise SmartThingsAuthError("Token response has no access_token")

        expires_at = None
        expires_in = data.get("expires_in")
        if expires_in is not None:
            now = time.time() if now is None else now
            try:
                expires_at = now + float(expires_in)
            except (TypeError, ValueError):
                raise SmartThingsAuthError(f"Invalid expires_in in token response: {expires_in!r}")

        return cls(
            access_token=access_token,
            token_type=data.get("token_type") or "bearer",
            expires_at=expires_at,
        )


class TokenStore:
    """JSON file holding one client's cached token."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Optional[Token]:
        """Load the cached token.

        Returns:
            The token, or None if the file doesn't exist

        Raises:
            SmartThingsAuthError: If the file can't be read or parsed
        """
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.debug(f"No cached token at {self.path}")
            return None
        except (OSError, ValueError) as e:
            raise SmartThingsAuthError(f"Unable to read token file {self.path}: {e}") from e

        if not isinstance(data, dict) or not data.get("access_token"):
            raise SmartThingsAuthError(f"Token file {self.path} has no access_token")

        expires_at = data.get("expires_at")
        if expires_at is not None and (
            isinstance(expires_at, bool) or not isinstance(expires_at, (int, float))
        ):
            raise SmartThingsAuthError(f"Token file {self.path} has invalid expires_at: {expires_at!r}")

        return Token(
            access_token=str(data["access_token"]),
            token_type=data.get("token_type") or "bearer",
            expires_at=expires_at,
        )

    def save(self, token: Token) -> None:
        """Save token, readable by the owner only."""
        data = {
            "access_token": token.access_token,
            "token_type": token.token_type,
            "expires_at": token.expires_at,
        }
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
        except OSError as e:
            raise SmartThingsAuthError(f"Unable to save token file {self.path}: {e}") from e

        logger.info(f"Saved token to {self.path}")


def authorize_url(client_id: str) -> str:
    """Return the URL the operator opens to grant access."""
    params = {
        "response_type": "code",
        "client_id": client_id,
        "scope": OAUTH_SCOPE,
        "redirect_uri": REDIRECT_URI,
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


class _CallbackHandler(BaseHTTPRequestHandler):
    """Captures the authorization code from the OAuth redirect."""

    def do_GET(self):
        url = urlparse(self.path)
        query = parse_qs(url.query)

        if url.path != CALLBACK_PATH:
            self.send_response(302)
            self.send_header("Location", authorize_url(self.server.client_id))
            self.end_headers()
            return

        self.server.auth_code = query.get("code", [None])[0]
        self.server.auth_error = query.get("error", [None])[0]

        self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.end_headers()
        if self.server.auth_code:
            self.wfile.write(b"Authorization received. You can close this window.\n")
        else:
            self.wfile.write(b"Authorization failed.\n")

    def log_message(self, format, *args):
        logger.debug("Callback server: " + format % args)


def wait_for_code(client_id: str, port: int = CALLBACK_PORT, out: Optional[TextIO] = None) -> str:
    """Run the local callback server until the OAuth redirect arrives.

    Raises:
        SmartThingsAuthError: If the server can't start or access was denied
    """
    out = out if out is not None else sys.stderr

    try:
        server = HTTPServer(("localhost", port), _CallbackHandler)
    except OSError as e:
        raise SmartThingsAuthError(f"Unable to start callback server on port {port}: {e}") from e

    server.client_id = client_id
    server.auth_code = None
    server.auth_error = None

    print(f"Please login by visiting http://localhost:{port}", file=out)
    print(f"or open {authorize_url(client_id)}", file=out)

    try:
        while server.auth_code is None and server.auth_error is None:
            server.handle_request()
    finally:
        server.server_close()

    if server.auth_error:
        raise SmartThingsAuthError(f"Authorization denied: {server.auth_error}")
    return server.auth_code


def exchange_code(
    session: requests.Session,
    client_id: str,
    secret: str,
    code: str,
    timeout: float = DEFAULT_TIMEOUT,
) -> Token:
    """Exchange an authorization code for an access token.

    Raises:
        SmartThingsAuthError: If the token endpoint rejects the request
    """
    logger.debug(f"Requesting token from {TOKEN_URL}")
    try:
        response = session.post(
            TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "client_id": client_id,
                "client_secret": secret,
                "redirect_uri": REDIRECT_URI,
                "scope": OAUTH_SCOPE,
            },
            timeout=timeout,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        raise SmartThingsAuthError(f"Token exchange failed: {e}") from e

    if not isinstance(data, dict):
        raise SmartThingsAuthError(f"Unexpected token response: {data!r}")
    return Token.from_response(data)


def get_token(
    store: TokenStore,
    client_id: str,
    secret: str,
    session: Optional[requests.Session] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Token:
    """Return a cached token, running the authorization flow if needed.

    Args:
        store: Token cache for this client
        client_id: OAuth client id
        secret: OAuth client secret, only needed without a valid cached token
        session: Session used for the token exchange

    Raises:
        SmartThingsAuthError: If no token could be obtained
    """
    token = store.load()
    if token is not None and token.is_valid():
        logger.info(f"Using cached token from {store.path}")
        return token

    if token is not None:
        logger.info("Cached token expired, requesting a new one")
    if not secret:
        raise SmartThingsAuthError("No valid cached token and no OAuth secret (--secret) given")

    code = wait_for_code(client_id)
    token = exchange_code(session or requests.Session(), client_id, secret, code, timeout)
    store.save(token)
    return token


@dataclass
class Device:
    """A SmartThings device and its current attribute values.

    Attributes:
        id: Device identifier
        name: Device type name
        display_name: User-visible label
        attributes: Attribute name to value (None, str or number)
    """
    id: str
    name: str = ""
    display_name: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Device":
        if not isinstance(data, dict) or "id" not in data:
            raise SmartThingsFetchError(f"Unexpected device entry: {data!r}")

        attributes = data.get("attributes") or {}
        if not isinstance(attributes, dict):
            raise SmartThingsFetchError(f"Device {data['id']} has invalid attributes: {attributes!r}")

        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            display_name=str(data.get("displayName") or ""),
            attributes=attributes,
        )


class SmartThingsClient:
    """Client for the SmartApp device endpoints.

    Attributes:
        token: Access token sent with every request
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        token: Token,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": token.authorization,
            "Accept": "application/json",
        })
        self._endpoint: Optional[str] = None

    def _get_json(self, url: str) -> Any:
        logger.debug(f"GET {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise SmartThingsFetchError(f"GET {url} failed: {e}") from e

    def get_endpoint(self) -> str:
        """Return the SmartApp endpoint URI, fetching it on first use.

        Raises:
            SmartThingsFetchError: If no endpoint is returned
        """
        if self._endpoint is not None:
            return self._endpoint

        endpoints = self._get_json(ENDPOINTS_URL)
        if not isinstance(endpoints, list) or not endpoints:
            raise SmartThingsFetchError("No SmartApp endpoints returned (is the SmartApp installed?)")

        uri = endpoints[0].get("uri") if isinstance(endpoints[0], dict) else None
        if not uri:
            raise SmartThingsFetchError(f"Endpoint entry has no uri: {endpoints[0]!r}")

        self._endpoint = uri.rstrip("/")
        logger.info(f"Using endpoint {self._endpoint}")
        return self._endpoint

    def get_devices(self) -> List[Device]:
        """List the devices the SmartApp was authorized for.

        Returned devices carry no attributes; use get_device_info for those.
        """
        data = self._get_json(f"{self.get_endpoint()}/devices")
        if not isinstance(data, list):
            raise SmartThingsFetchError(f"Unexpected device list: {data!r}")

        devices = [Device.from_json(d) for d in data]
        logger.info(f"Found {len(devices)} devices")
        return devices

    def get_device_info(self, device_id: str) -> Device:
        """Fetch a device with its current attribute values."""
        data = self._get_json(f"{self.get_endpoint()}/devices/{device_id}")
        return Device.from_json(data)
