"""
Authentication module — certificate, client-secret, and delegated (device code) auth.
Uses MSAL for token acquisition against Microsoft Identity Platform and hands out
an explicit AdminSession that owns one API client per remote API.
"""

from __future__ import annotations

import base64
import getpass
import logging
import os
from typing import Optional

from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography.hazmat.primitives.hashes import SHA1
import httpx
import msal

from ..api.client import AdminApiClient
from ..config import API_BASE_URLS, API_SCOPES, AuthConfig
from ..safety.guardian import RequestGuard

logger = logging.getLogger("m365_admin_automation.auth")

AUTHORITY_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}"


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


def load_certificate_credential(cert_path: str, password: str) -> dict:
    """
    Decode a base64-encoded PFX into the MSAL client credential shape.
    Returns {"thumbprint": ..., "private_key": ...}.
    """
    try:
        with open(cert_path, "r") as f:
            cert_base64 = f.read().strip()

        cert_bytes = base64.b64decode(cert_base64)
        password_bytes = password.encode("utf-8") if password else None

        private_key, certificate, _ = pkcs12.load_key_and_certificates(
            cert_bytes, password_bytes
        )
    except FileNotFoundError:
        raise AuthenticationError(f"Certificate file not found: {cert_path}")
    except ValueError as e:
        raise AuthenticationError(f"Failed to load certificate: {e}") from e

    if private_key is None or certificate is None:
        raise AuthenticationError("Certificate bundle has no private key or certificate.")

    private_key_pem = private_key.private_bytes(
        Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
    ).decode("utf-8")
    thumbprint = certificate.fingerprint(SHA1()).hex()
    logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")

    return {"thumbprint": thumbprint, "private_key": private_key_pem}


class Authenticator:
    """
    Handles MSAL-based authentication.
    Supports:
      - Certificate-based app-only authentication
      - Client-secret app-only authentication
      - Delegated authentication (device code flow)
    Tokens are acquired per API scope; MSAL's in-memory cache serves repeats.
    """

    def __init__(self, config: AuthConfig):
        self.config = config
        self._app = None
        self._tokens: dict[str, str] = {}

    async def acquire_token(self, scope: str) -> str:
        """Acquire an access token for one API scope."""
        if scope in self._tokens:
            return self._tokens[scope]

        if self.config.mode in ("certificate", "secret"):
            result = self._confidential_app().acquire_token_for_client(scopes=[scope])
        elif self.config.mode == "delegated":
            result = self._acquire_delegated(scope)
        else:
            raise AuthenticationError(f"Unknown auth mode: {self.config.mode}")

        if "access_token" not in result:
            error = result.get("error_description", result.get("error", "Unknown"))
            raise AuthenticationError(f"Authentication failed ({self.config.mode}): {error}")

        logger.info(f"Token acquired for {scope}")
        self._tokens[scope] = result["access_token"]
        return self._tokens[scope]

    def _confidential_app(self) -> msal.ConfidentialClientApplication:
        if self._app is not None:
            return self._app

        if self.config.mode == "certificate":
            cert_config = self.config.certificate
            if not cert_config:
                raise AuthenticationError("Certificate auth config not provided.")
            logger.info("Authenticating with certificate-based app credentials...")
            password = cert_config.certificate_password
            if not password:
                password = os.environ.get("M365_CERT_PASSWORD", "")
            if not password:
                password = getpass.getpass("Enter the certificate password: ")
            credential = load_certificate_credential(cert_config.certificate_path, password)
            tenant_id, client_id = cert_config.tenant_id, cert_config.client_id
        else:
            secret_config = self.config.secret
            if not secret_config or not secret_config.client_secret:
                raise AuthenticationError("Client secret auth config not provided.")
            logger.info("Authenticating with client secret...")
            credential = secret_config.client_secret
            tenant_id, client_id = secret_config.tenant_id, secret_config.client_id

        self._app = msal.ConfidentialClientApplication(
            client_id=client_id,
            authority=AUTHORITY_TEMPLATE.format(tenant_id=tenant_id),
            client_credential=credential,
        )
        return self._app

    def _acquire_delegated(self, scope: str) -> dict:
        deleg_config = self.config.delegated
        if not deleg_config:
            raise AuthenticationError("Delegated auth config not provided.")

        if self._app is None:
            self._app = msal.PublicClientApplication(
                client_id=deleg_config.client_id,
                authority=AUTHORITY_TEMPLATE.format(tenant_id=deleg_config.tenant_id),
            )

        # A signed-in account can get further scopes silently
        accounts = self._app.get_accounts()
        if accounts:
            result = self._app.acquire_token_silent([scope], account=accounts[0])
            if result and "access_token" in result:
                return result

        logger.info("Initiating device code authentication flow...")
        flow = self._app.initiate_device_flow(scopes=[scope])
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Device code flow failed: {flow.get('error_description', 'Unknown')}"
            )

        print(f"\n{'='*60}")
        print(f"  To sign in, open: {flow['verification_uri']}")
        print(f"  Enter code: {flow['user_code']}")
        print(f"{'='*60}\n")

        return self._app.acquire_token_by_device_flow(flow)


class AdminSession:
    """
    Authenticated context for one run.
    Created once and passed explicitly to every API wrapper; owns one
    AdminApiClient per remote API and closes them on exit.
    """

    def __init__(
        self,
        authenticator: Authenticator,
        guard: Optional[RequestGuard] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.authenticator = authenticator
        self.guard = guard or RequestGuard()
        self._transport = transport
        self._clients: dict[str, AdminApiClient] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def client(self, api: str) -> AdminApiClient:
        """Return the (lazily opened) client for "graph", "arm" or "powerplatform"."""
        if api in self._clients:
            return self._clients[api]
        if api not in API_BASE_URLS:
            raise ValueError(f"Unknown API: {api}")

        token = await self.authenticator.acquire_token(API_SCOPES[api])
        client = AdminApiClient(
            base_url=API_BASE_URLS[api],
            access_token=token,
            guard=self.guard,
            transport=self._transport,
        )
        await client.open()
        self._clients[api] = client
        return client

    async def close(self):
        for client in self._clients.values():
            await client.close()
        self._clients.clear()

    def get_stats(self) -> dict:
        return {api: c.get_stats() for api, c in self._clients.items()}


async def authenticate(
    config: AuthConfig,
    api: str,
    guard: Optional[RequestGuard] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AdminSession:
    """
    Authenticate and return a session whose client for ``api`` is ready.
    Fails fast with AuthenticationError; never retried.
    """
    session = AdminSession(Authenticator(config), guard=guard, transport=transport)
    try:
        await session.client(api)
    except Exception:
        await session.close()
        raise
    return session
