import random
import string
import time
from datetime import UTC, datetime
from typing import Any, cast

import httpx
from authlib.integrations.httpx_client import AsyncOAuth2Client
from pydantic import SecretStr

from conduit.common.exceptions import ExchangeFailed, ServiceUnreachable
from conduit.common.logging_setup import get_logger
from conduit.common.schemas.connection import TokenSet
from conduit.server.config import ServiceConfig

UNICODE_ASCII_CHARACTER_SET = string.ascii_letters + string.digits
logger = get_logger(__name__)


class OAuth2Manager:
    def __init__(self, service_id: str, service: ServiceConfig, timeout: float = 10.0):
        """
        Initialize the OAuth2Manager

        Args:
            service_id: Id of the configured service, used in logs
            service: OAuth2 endpoints and client credentials of the service
            timeout: Timeout in seconds for every call to the service's token endpoints
        """
        self.service_id = service_id
        self.service = service
        self.timeout = timeout
        self.scope = " ".join(service.scopes)

    def _client(self) -> AsyncOAuth2Client:
        # NOTE: don't pass in scope here, otherwise it will be sent during refresh token request
        return AsyncOAuth2Client(
            client_id=self.service.client_id,
            client_secret=self.service.client_secret.get_secret_value(),
            token_endpoint_auth_method=self.service.token_endpoint_auth_method,
            code_challenge_method="S256" if self.service.use_pkce else None,
            timeout=self.timeout,
        )

    async def create_authorization_url(
        self,
        redirect_uri: str,
        state: str,
        code_verifier: str | None,
    ) -> str:
        """
        Create authorization URL for the owner to authorize the connection

        Args:
            redirect_uri: The redirect URI of the OAuth2 client
            state: Signed state token for CSRF protection
            code_verifier: PKCE code verifier, the S256 challenge is derived from it

        Returns:
            authorization_url: The authorization URL at the service
        """
        auth_url_kwargs: dict[str, Any] = {
            "url": self.service.authorize_url,
            "redirect_uri": redirect_uri,
            "state": state,
            "scope": self.scope,
        }
        if self.service.use_pkce and code_verifier:
            auth_url_kwargs["code_verifier"] = code_verifier

        async with self._client() as client:
            authorization_url, _ = client.create_authorization_url(**auth_url_kwargs)
        return str(authorization_url)

    async def fetch_token(
        self,
        redirect_uri: str,
        code: str,
        code_verifier: str | None,
    ) -> dict[str, Any]:
        """
        Exchange authorization code for tokens

        Raises:
            ServiceUnreachable: the token endpoint could not be reached in time
            ExchangeFailed: the service rejected the code or answered with an error
        """
        fetch_token_kwargs: dict[str, Any] = {"redirect_uri": redirect_uri, "code": code}
        if self.service.use_pkce and code_verifier:
            fetch_token_kwargs["code_verifier"] = code_verifier

        logger.info(
            f"Fetching access token, service_id={self.service_id}, "
            f"token_url={self.service.token_url}, "
            f"token_endpoint_auth_method={self.service.token_endpoint_auth_method}, "
            f"code_length={len(code)}"
        )
        try:
            async with self._client() as client:
                token = cast(
                    dict[str, Any],
                    await client.fetch_token(self.service.token_url, **fetch_token_kwargs),
                )
        except httpx.TransportError as e:
            logger.error(
                f"Token endpoint unreachable, service_id={self.service_id}, "
                f"error_type={type(e).__name__}"
            )
            raise ServiceUnreachable(f"token endpoint of {self.service_id} unreachable") from e
        except Exception as e:
            logger.error(
                f"Failed to fetch access token, service_id={self.service_id}, "
                f"error_type={type(e).__name__}, error={getattr(e, 'error', None)}"
            )
            raise ExchangeFailed(f"token exchange with {self.service_id} failed") from e

        logger.info(
            f"Fetched access token, service_id={self.service_id}, token_keys={list(token.keys())}"
        )
        return token

    async def refresh_token(self, refresh_token: SecretStr) -> dict[str, Any]:
        """
        Raises:
            ServiceUnreachable: the token endpoint could not be reached in time
            ExchangeFailed: the service rejected the refresh token
        """
        url = self.service.refresh_url or self.service.token_url
        try:
            async with self._client() as client:
                token = cast(
                    dict[str, Any],
                    await client.refresh_token(
                        url, refresh_token=refresh_token.get_secret_value()
                    ),
                )
            return token
        except httpx.TransportError as e:
            logger.error(
                f"Token endpoint unreachable during refresh, service_id={self.service_id}, "
                f"error_type={type(e).__name__}"
            )
            raise ServiceUnreachable(f"token endpoint of {self.service_id} unreachable") from e
        except Exception as e:
            logger.error(
                f"Failed to refresh access token, service_id={self.service_id}, "
                f"error_type={type(e).__name__}"
            )
            raise ExchangeFailed(f"token refresh with {self.service_id} failed") from e

    async def revoke_token(self, token: SecretStr) -> None:
        if not self.service.revoke_url:
            return
        async with self._client() as client:
            response = await client.revoke_token(
                self.service.revoke_url, token=token.get_secret_value()
            )
            response.raise_for_status()

    def parse_fetch_token_response(self, token: dict) -> TokenSet:
        """
        Parse a token endpoint response into a TokenSet.

        Raises:
            ExchangeFailed: the response carries no access token
        """
        if "access_token" not in token:
            logger.error(f"Missing access_token in OAuth response, service_id={self.service_id}")
            raise ExchangeFailed("missing access_token in token response")

        # long-lived access tokens may come without an expiry
        expires_at: datetime | None = None
        if token.get("expires_at") is not None:
            expires_at = datetime.fromtimestamp(int(token["expires_at"]), UTC)
        elif token.get("expires_in") is not None:
            expires_at = datetime.fromtimestamp(int(time.time()) + int(token["expires_in"]), UTC)

        scope = token.get("scope")
        if isinstance(scope, str):
            scopes = [s for s in scope.replace(",", " ").split() if s]
        elif isinstance(scope, list):
            scopes = [str(s) for s in scope]
        else:
            scopes = list(self.service.scopes)

        return TokenSet(
            access_token=SecretStr(token["access_token"]),
            refresh_token=SecretStr(token["refresh_token"]) if token.get("refresh_token") else None,
            token_type=token.get("token_type"),
            expires_at=expires_at,
            scopes=scopes,
        )

    @staticmethod
    def generate_code_verifier(length: int = 48) -> str:
        """
        Generate a random PKCE code verifier
        """
        rand = random.SystemRandom()
        return "".join(rand.choice(UNICODE_ASCII_CHARACTER_SET) for _ in range(length))
