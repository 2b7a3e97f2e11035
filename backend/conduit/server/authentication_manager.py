"""
OAuth2 connection lifecycle: authorization, callback handling, token refresh and disconnect.

State tokens are signed JWTs whose nonce points at a persisted, single-use OAuthState row.
The signature protects the claims, the row makes the state unguessable, expiring and
consumable exactly once. Tokens only ever leave this module decrypted through
`get_access_token`, for outbound use.
"""

import secrets
from datetime import timedelta
from uuid import UUID

from authlib.jose import jwt
from authlib.jose.errors import JoseError
from sqlalchemy.orm import Session

from conduit.common.db import crud
from conduit.common.db.sql_models import Connection
from conduit.common.encryption import TokenCipher
from conduit.common.enums import ConnectionStatus
from conduit.common.exceptions import (
    ConnectionNotActive,
    ConnectionNotFound,
    ExpiredState,
    InvalidState,
    ServiceNotFound,
    TokenRefreshFailed,
)
from conduit.common.logging_setup import get_logger
from conduit.common.schemas.connection import CallbackResult, TokenSet
from conduit.common.utils import ensure_utc, utcnow
from conduit.server.config import ServerSettings
from conduit.server.oauth2_manager import OAuth2Manager

logger = get_logger(__name__)


class AuthenticationManager:
    def __init__(
        self,
        db_session: Session,
        settings: ServerSettings,
        cipher: TokenCipher | None = None,
    ):
        self.db_session = db_session
        self.settings = settings
        self.cipher = cipher or TokenCipher(settings.token_encryption_key)

    def get_oauth2_manager(self, service_id: str) -> OAuth2Manager:
        service = self.settings.services.get(service_id)
        if service is None:
            logger.error(f"OAuth2 service not configured, service_id={service_id}")
            raise ServiceNotFound(f"service={service_id} not configured")
        return OAuth2Manager(service_id, service, timeout=self.settings.http_timeout_seconds)

    async def initiate_oauth(self, service_id: str, owner_id: str) -> str:
        """
        Start an authorization round trip for `owner_id` at `service_id`.

        Returns:
            The service's authorization URL carrying the signed state token
        """
        oauth2_manager = self.get_oauth2_manager(service_id)

        nonce = secrets.token_urlsafe(32)
        code_verifier = (
            OAuth2Manager.generate_code_verifier() if oauth2_manager.service.use_pkce else None
        )
        crud.oauth_states.cleanup_expired_states(self.db_session)
        state_row = crud.oauth_states.create_state(
            self.db_session,
            nonce=nonce,
            service_id=service_id,
            owner_id=owner_id,
            code_verifier=code_verifier,
            ttl_seconds=self.settings.oauth_state_ttl_seconds,
        )
        self.db_session.commit()

        # the JWT is signed, not encrypted: it carries nothing secret
        state_jwt = jwt.encode(
            {"alg": self.settings.jwt_algorithm},
            {
                "nonce": nonce,
                "owner": owner_id,
                "service": service_id,
                "iat": int(ensure_utc(state_row.issued_at).timestamp()),
                "exp": int(ensure_utc(state_row.expires_at).timestamp()),
            },
            self.settings.signing_key.get_secret_value(),
        ).decode()  # bytes to str, not decoding the payload

        authorization_url = await oauth2_manager.create_authorization_url(
            redirect_uri=self.settings.oauth_redirect_uri,
            state=state_jwt,
            code_verifier=code_verifier,
        )
        logger.info(
            f"Initiated OAuth2 authorization, service_id={service_id}, owner_id={owner_id}"
        )
        return authorization_url

    async def handle_oauth_callback(self, code: str, state: str) -> CallbackResult:
        """
        Verify the state once, exchange the code and persist the owner's connection.

        Raises:
            InvalidState: state undecodable, tampered with, unknown, mismatched or already used
            ExpiredState: state used after its TTL
            ServiceUnreachable: token endpoint unreachable or timed out
            ExchangeFailed: the service rejected the exchange
        """
        try:
            claims = jwt.decode(state, self.settings.signing_key.get_secret_value())
        except (JoseError, ValueError) as e:
            logger.warning(f"OAuth2 state rejected, reason=undecodable, error_type={type(e).__name__}")
            raise InvalidState("state token could not be verified") from e

        nonce = claims.get("nonce")
        if not isinstance(nonce, str) or not nonce:
            logger.warning("OAuth2 state rejected, reason=missing_nonce")
            raise InvalidState("state token has no nonce")

        state_row = crud.oauth_states.get_state(self.db_session, nonce)
        if state_row is None:
            # expired rows are purged, the signed expiry still tells the two apart
            expires = claims.get("exp")
            if isinstance(expires, int) and expires <= int(utcnow().timestamp()):
                logger.warning("OAuth2 state rejected, reason=expired_and_purged")
                raise ExpiredState("authorization request expired")
            logger.warning("OAuth2 state rejected, reason=unknown_nonce")
            raise InvalidState("unknown state")
        if claims.get("owner") != state_row.owner_id or claims.get("service") != state_row.service_id:
            logger.warning(
                f"OAuth2 state rejected, reason=claim_mismatch, service_id={state_row.service_id}"
            )
            raise InvalidState("state claims do not match the authorization request")

        # consumed even when expired, so an expired state can never be retried
        consumed_at = utcnow()
        consumed = crud.oauth_states.consume_state(self.db_session, nonce, consumed_at)
        self.db_session.commit()
        if not consumed:
            logger.warning(
                f"OAuth2 state rejected, reason=already_consumed, service_id={state_row.service_id}"
            )
            raise InvalidState("state already used")

        expires_at = ensure_utc(state_row.expires_at)
        if expires_at is not None and consumed_at >= expires_at:
            logger.warning(f"OAuth2 state rejected, reason=expired, service_id={state_row.service_id}")
            raise ExpiredState("authorization request expired")

        oauth2_manager = self.get_oauth2_manager(state_row.service_id)
        token_response = await oauth2_manager.fetch_token(
            redirect_uri=self.settings.oauth_redirect_uri,
            code=code,
            code_verifier=state_row.code_verifier,
        )
        tokens = oauth2_manager.parse_fetch_token_response(token_response)

        connection = self._save_tokens(state_row.service_id, state_row.owner_id, tokens)
        self.db_session.commit()

        logger.info(
            f"OAuth2 connection established, connection_id={connection.id}, "
            f"service_id={connection.service_id}, owner_id={connection.owner_id}"
        )
        return CallbackResult(
            connection_id=connection.id,
            service_id=connection.service_id,
            owner_id=connection.owner_id,
        )

    def _save_tokens(self, service_id: str, owner_id: str, tokens: TokenSet) -> Connection:
        access_token_encrypted = self.cipher.encrypt(tokens.access_token)
        refresh_token_encrypted = self.cipher.encrypt_optional(tokens.refresh_token)

        connection = crud.connections.get_connection_for_owner(
            self.db_session, service_id, owner_id
        )
        if connection:
            logger.info(f"Updating tokens of existing connection, connection_id={connection.id}")
            return crud.connections.update_connection_tokens(
                self.db_session,
                connection,
                access_token_encrypted=access_token_encrypted,
                refresh_token_encrypted=refresh_token_encrypted,
                token_expires_at=tokens.expires_at,
                scopes=tokens.scopes,
            )
        return crud.connections.create_connection(
            self.db_session,
            service_id=service_id,
            owner_id=owner_id,
            access_token_encrypted=access_token_encrypted,
            refresh_token_encrypted=refresh_token_encrypted,
            token_expires_at=tokens.expires_at,
            scopes=tokens.scopes,
        )

    def _get_connection(self, connection_id: UUID) -> Connection:
        connection = crud.connections.get_connection(self.db_session, connection_id)
        if connection is None:
            logger.error(f"Connection not found, connection_id={connection_id}")
            raise ConnectionNotFound(f"connection={connection_id} not found")
        return connection

    async def refresh_token(self, connection_id: UUID) -> Connection:
        """
        Refresh the connection's access token. Single attempt, never retried.

        Concurrent refreshes race on the connection's version: the first write wins,
        the loser keeps the winner's tokens instead of overwriting them.

        Raises:
            ConnectionNotFound: no such connection
            ConnectionNotActive: the connection is revoked or already expired
            TokenRefreshFailed: the refresh failed; the connection is now expired
        """
        connection = self._get_connection(connection_id)
        if connection.status != ConnectionStatus.ACTIVE:
            raise ConnectionNotActive(
                f"connection={connection_id} is {connection.status}, re-authorization required"
            )
        read_version = connection.version

        refresh_token = self.cipher.decrypt_optional(connection.refresh_token_encrypted)
        if refresh_token is None:
            self._mark_expired(connection, reason="no_refresh_token")
            raise TokenRefreshFailed(f"connection={connection_id} has no refresh token")

        oauth2_manager = self.get_oauth2_manager(connection.service_id)
        try:
            token_response = await oauth2_manager.refresh_token(refresh_token)
            tokens = oauth2_manager.parse_fetch_token_response(token_response)
        except Exception as e:
            self.db_session.refresh(connection)
            if connection.version != read_version:
                logger.info(
                    f"Token refresh failed but a concurrent refresh succeeded, "
                    f"connection_id={connection_id}"
                )
                return connection
            self._mark_expired(connection, reason=type(e).__name__)
            raise TokenRefreshFailed(f"refresh of connection={connection_id} failed") from e

        # providers that don't rotate refresh tokens omit them from the response
        new_refresh_token = tokens.refresh_token or refresh_token
        won = crud.connections.update_connection_tokens_if_version(
            self.db_session,
            connection.id,
            expected_version=read_version,
            access_token_encrypted=self.cipher.encrypt(tokens.access_token),
            refresh_token_encrypted=self.cipher.encrypt(new_refresh_token),
            token_expires_at=tokens.expires_at,
        )
        self.db_session.commit()
        self.db_session.refresh(connection)

        if won:
            logger.info(
                f"Refreshed access token, connection_id={connection_id}, version={connection.version}"
            )
        else:
            logger.info(
                f"Concurrent token refresh won, adopting its tokens, connection_id={connection_id}, "
                f"version={connection.version}"
            )
        return connection

    def _mark_expired(self, connection: Connection, reason: str) -> None:
        logger.warning(
            f"Token refresh failed, marking connection expired, connection_id={connection.id}, "
            f"service_id={connection.service_id}, reason={reason}"
        )
        crud.connections.update_connection_status(
            self.db_session, connection, ConnectionStatus.EXPIRED
        )
        self.db_session.commit()

    async def get_access_token(self, connection_id: UUID) -> str:
        """
        Plaintext access token for an outbound call, refreshed first when it is about to expire.
        """
        connection = self._get_connection(connection_id)
        if connection.status != ConnectionStatus.ACTIVE:
            raise ConnectionNotActive(f"connection={connection_id} is {connection.status}")

        expires_at = ensure_utc(connection.token_expires_at)
        margin = timedelta(seconds=self.settings.token_refresh_margin_seconds)
        if expires_at is not None and expires_at - margin <= utcnow():
            connection = await self.refresh_token(connection_id)

        return self.cipher.decrypt(connection.access_token_encrypted).get_secret_value()

    async def disconnect(self, connection_id: UUID) -> Connection:
        """
        Revoke a connection. Revocation at the service is best effort; the connection
        is marked revoked locally regardless.
        """
        connection = self._get_connection(connection_id)
        service = self.settings.services.get(connection.service_id)
        if service is not None and service.revoke_url:
            oauth2_manager = OAuth2Manager(
                connection.service_id, service, timeout=self.settings.http_timeout_seconds
            )
            try:
                await oauth2_manager.revoke_token(
                    self.cipher.decrypt(connection.access_token_encrypted)
                )
            except Exception as e:
                logger.warning(
                    f"Token revocation at service failed, connection_id={connection_id}, "
                    f"service_id={connection.service_id}, error_type={type(e).__name__}"
                )

        connection = crud.connections.update_connection_status(
            self.db_session, connection, ConnectionStatus.REVOKED
        )
        self.db_session.commit()
        return connection
