"""Shared test fixtures: in-memory database, settings, tokens and test data factories."""

from collections.abc import Callable, Generator
from datetime import timedelta
from typing import Any

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from conduit.common.db import crud
from conduit.common.db.sql_models import Base, Connection, Subscription
from conduit.common.encryption import TokenCipher
from conduit.common.enums import ActionType, ConnectionStatus, SubscriptionStatus
from conduit.common.schemas.action import DispatchEnvelope
from conduit.common.utils import utcnow
from conduit.server.config import ServerSettings, ServiceConfig

TEST_SIGNING_KEY = "test-signing-key-0123456789abcdef"


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def encryption_key() -> str:
    return Fernet.generate_key().decode()


@pytest.fixture
def cipher(encryption_key: str) -> TokenCipher:
    return TokenCipher(encryption_key)


@pytest.fixture
def server_settings(encryption_key: str) -> ServerSettings:
    return ServerSettings(
        database_url="sqlite:///:memory:",
        signing_key=TEST_SIGNING_KEY,
        token_encryption_key=encryption_key,
        redirect_uri_base="https://conduit.test",
        post_oauth_redirect_url="https://app.test/integrations",
        log_json=False,
        services={
            "acme": ServiceConfig(
                authorize_url="https://acme.test/oauth/authorize",
                token_url="https://acme.test/oauth/token",
                revoke_url="https://acme.test/oauth/revoke",
                client_id="acme-client",
                client_secret="acme-secret",
                scopes=["read", "write"],
                api_base_url="https://api.acme.test/v1",
            ),
            "github": ServiceConfig(
                authorize_url="https://github.com/login/oauth/authorize",
                token_url="https://github.com/login/oauth/access_token",
                client_id="gh-client",
                client_secret="gh-secret",
                scopes=["repo"],
                use_pkce=False,
            ),
        },
        transform_config={
            "app": {"name": "Vodo Platform"},
            "test": {"value": "configured"},
        },
    )


@pytest.fixture
def make_connection(
    db_session: Session, cipher: TokenCipher
) -> Callable[..., Connection]:
    def _make_connection(
        service_id: str = "acme",
        owner_id: str = "owner-1",
        access_token: str = "access-token-1",
        refresh_token: str | None = "refresh-token-1",
        expires_in: int | None = 3600,
        status: ConnectionStatus = ConnectionStatus.ACTIVE,
    ) -> Connection:
        connection = crud.connections.create_connection(
            db_session,
            service_id=service_id,
            owner_id=owner_id,
            access_token_encrypted=cipher.encrypt(access_token),
            refresh_token_encrypted=cipher.encrypt_optional(refresh_token),
            token_expires_at=(
                utcnow() + timedelta(seconds=expires_in) if expires_in is not None else None
            ),
            scopes=["read"],
            status=status,
        )
        db_session.commit()
        return connection

    return _make_connection


@pytest.fixture
def make_subscription(db_session: Session) -> Callable[..., Subscription]:
    def _make_subscription(
        connection: Connection,
        event_type: str = "order.created",
        endpoint_secret: str = "whsec_test",
        mapping_rules: list[dict[str, str]] | None = None,
        filter_expression: str | None = None,
        action_type: ActionType = ActionType.WEBHOOK_FORWARD,
        action_config: dict[str, Any] | None = None,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    ) -> Subscription:
        subscription = crud.subscriptions.create_subscription(
            db_session,
            connection_id=connection.id,
            event_type=event_type,
            endpoint_secret=endpoint_secret,
            action_type=action_type,
            action_config=(
                action_config
                if action_config is not None
                else {"url": "https://hooks.example.test/inbound"}
            ),
            mapping_rules=mapping_rules,
            filter_expression=filter_expression,
            status=status,
        )
        db_session.commit()
        return subscription

    return _make_subscription


class InMemoryDispatchQueue:
    """DispatchQueue double that keeps enqueued envelopes with their delay."""

    def __init__(self) -> None:
        self.jobs: list[tuple[DispatchEnvelope, int]] = []

    def enqueue(self, envelope: DispatchEnvelope, delay_seconds: int = 0) -> None:
        self.jobs.append((envelope, delay_seconds))

    def pop(self) -> tuple[DispatchEnvelope, int]:
        return self.jobs.pop(0)

    @property
    def envelopes(self) -> list[DispatchEnvelope]:
        return [envelope for envelope, _ in self.jobs]


@pytest.fixture
def dispatch_queue() -> InMemoryDispatchQueue:
    return InMemoryDispatchQueue()
