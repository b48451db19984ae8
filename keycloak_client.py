"""
keycloak_client.py
==================
Lightweight wrapper around the Keycloak OpenID Connect endpoints used by the
Spiel API to log users in and to check Bearer tokens.

Endpoints
---------
Both calls go to the realm's token endpoint::

    POST <keycloak_url>/realms/<realm>/protocol/openid-connect/token
    POST <keycloak_url>/realms/<realm>/protocol/openid-connect/token/introspect

The client authenticates itself with ``client_id`` / ``client_secret``
(a *confidential* client in Keycloak).

Usage
-----
::

    from keycloak_client import KeycloakClient

    client = KeycloakClient("http://localhost:8880", "nest", "nest-client", "secret")
    result = client.token("admin", "p")
    # {"access_token": "...", "expires_in": 300, "refresh_token": "...", ...}

    claims = client.introspect(result["access_token"])
    client.roles(claims)
    # ["admin", "user"]
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger('spielapi.keycloak')

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
_DEFAULT_TIMEOUT = 10  # seconds

# Fields of a token response handed back to API clients
TOKEN_FIELDS = ('access_token', 'expires_in', 'refresh_token', 'refresh_expires_in')


class KeycloakError(Exception):
    """Raised when Keycloak is unreachable or answers unexpectedly."""


class KeycloakAuthError(KeycloakError):
    """Raised when credentials or a token are rejected."""


class KeycloakClient:
    """Minimal Keycloak client for the password / refresh grants and token introspection."""

    def __init__(
        self,
        base_url: str,
        realm: str,
        client_id: str,
        client_secret: str = '',
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> None:
        """
        Args:
            base_url:      Keycloak server URL, e.g. ``http://localhost:8880``.
            realm:         Realm name.
            client_id:     Client ID of this service.
            client_secret: Client secret of this service.
            timeout:       HTTP request timeout in seconds.
        """
        if not base_url or not realm or not client_id:
            raise ValueError("base_url, realm and client_id must not be empty")
        self._client_id     = client_id
        self._client_secret = client_secret
        self._timeout       = timeout
        self._token_url     = f"{base_url.rstrip('/')}/realms/{realm}/protocol/openid-connect/token"

    @property
    def client_id(self) -> str:
        return self._client_id

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------

    def token(self, username: str, password: str) -> Dict[str, Any]:
        """Log a user in with the password grant.

        Returns:
            Dict with ``access_token``, ``expires_in``, ``refresh_token`` and
            ``refresh_expires_in``.

        Raises:
            KeycloakAuthError: Wrong username or password.
            KeycloakError:     Keycloak unreachable or unexpected answer.
        """
        logger.debug("token: username=%s", username)
        body = self._post_token({
            "grant_type": "password",
            "username":   username,
            "password":   password,
        })
        return self._token_result(body)

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        """Exchange a refresh token for a new access token.

        Raises:
            KeycloakAuthError: The refresh token is invalid or expired.
            KeycloakError:     Keycloak unreachable or unexpected answer.
        """
        logger.debug("refresh")
        body = self._post_token({
            "grant_type":    "refresh_token",
            "refresh_token": refresh_token,
        })
        return self._token_result(body)

    def introspect(self, access_token: str) -> Dict[str, Any]:
        """Validate *access_token* (RFC 7662) and return its claims.

        Raises:
            KeycloakAuthError: The token is not active.
            KeycloakError:     Keycloak unreachable or unexpected answer.
        """
        body = self._post(self._token_url + "/introspect", {"token": access_token})
        if not body.get("active"):
            raise KeycloakAuthError("Token is not active")
        return body

    def roles(self, claims: Dict[str, Any]) -> List[str]:
        """Return the realm roles plus this client's roles from *claims*."""
        roles: List[str] = list(claims.get("realm_access", {}).get("roles", []))
        client_access = claims.get("resource_access", {}).get(self._client_id, {})
        for role in client_access.get("roles", []):
            if role not in roles:
                roles.append(role)
        return roles

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _post_token(self, data: Dict[str, str]) -> Dict[str, Any]:
        return self._post(self._token_url, data)

    def _post(self, url: str, data: Dict[str, str]) -> Dict[str, Any]:
        payload = dict(data)
        payload["client_id"] = self._client_id
        if self._client_secret:
            payload["client_secret"] = self._client_secret
        try:
            resp = requests.post(url, data=payload, timeout=self._timeout)
        except requests.RequestException as exc:
            raise KeycloakError(f"Network error calling Keycloak: {exc}") from exc

        if resp.status_code in (400, 401):
            raise KeycloakAuthError(f"Keycloak rejected the request ({resp.status_code})")
        try:
            resp.raise_for_status()
        except requests.HTTPError as exc:
            raise KeycloakError(
                f"Keycloak error {resp.status_code}: {resp.text}"
            ) from exc
        return resp.json()

    @staticmethod
    def _token_result(body: Dict[str, Any]) -> Dict[str, Any]:
        if not body.get("access_token"):
            raise KeycloakError(f"Token response missing 'access_token': {body}")
        return {field: body.get(field) for field in TOKEN_FIELDS}


def from_config(config: Dict[str, Any]) -> Optional[KeycloakClient]:
    """Build a client from the application config, or ``None`` when no URL is set."""
    url = config.get('keycloak_url')
    if not url:
        return None
    return KeycloakClient(
        url,
        config.get('keycloak_realm', 'nest'),
        config.get('keycloak_client_id', 'nest-client'),
        config.get('keycloak_client_secret', ''),
        timeout=int(config.get('keycloak_timeout', _DEFAULT_TIMEOUT)),
    )
