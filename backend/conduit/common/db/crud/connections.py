from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from conduit.common.db.sql_models import Connection
from conduit.common.enums import ConnectionStatus
from conduit.common.logging_setup import get_logger

logger = get_logger(__name__)


def create_connection(
    db_session: Session,
    service_id: str,
    owner_id: str,
    access_token_encrypted: str,
    refresh_token_encrypted: str | None,
    token_expires_at: datetime | None,
    scopes: list[str],
    status: ConnectionStatus = ConnectionStatus.ACTIVE,
) -> Connection:
    """Create a new connection with already-encrypted tokens"""
    connection = Connection(
        service_id=service_id,
        owner_id=owner_id,
        access_token_encrypted=access_token_encrypted,
        refresh_token_encrypted=refresh_token_encrypted,
        token_expires_at=token_expires_at,
        scopes=scopes,
        status=status,
        version=1,
    )
    db_session.add(connection)
    db_session.flush()
    logger.info(
        f"Created connection, connection_id={connection.id}, service_id={service_id}, "
        f"owner_id={owner_id}"
    )
    return connection


def get_connection(db_session: Session, connection_id: UUID) -> Connection | None:
    statement = select(Connection).filter_by(id=connection_id)
    connection: Connection | None = db_session.execute(statement).scalar_one_or_none()
    return connection


def get_connection_for_owner(
    db_session: Session, service_id: str, owner_id: str
) -> Connection | None:
    statement = select(Connection).filter_by(service_id=service_id, owner_id=owner_id)
    connection: Connection | None = db_session.execute(statement).scalar_one_or_none()
    return connection


def update_connection_tokens(
    db_session: Session,
    connection: Connection,
    access_token_encrypted: str,
    refresh_token_encrypted: str | None,
    token_expires_at: datetime | None,
    scopes: list[str],
) -> Connection:
    """Overwrite the tokens of a connection after a fresh authorization, reactivating it"""
    connection.access_token_encrypted = access_token_encrypted
    connection.refresh_token_encrypted = refresh_token_encrypted
    connection.token_expires_at = token_expires_at
    connection.scopes = scopes
    connection.status = ConnectionStatus.ACTIVE
    connection.version = connection.version + 1
    db_session.flush()
    db_session.refresh(connection)
    return connection


def update_connection_tokens_if_version(
    db_session: Session,
    connection_id: UUID,
    expected_version: int,
    access_token_encrypted: str,
    refresh_token_encrypted: str | None,
    token_expires_at: datetime | None,
) -> bool:
    """
    Write refreshed tokens only if nobody else has written since `expected_version` was read.

    Returns:
        True if the write won, False if another refresh got there first
    """
    statement = (
        update(Connection)
        .where(Connection.id == connection_id, Connection.version == expected_version)
        .values(
            access_token_encrypted=access_token_encrypted,
            refresh_token_encrypted=refresh_token_encrypted,
            token_expires_at=token_expires_at,
            version=expected_version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = db_session.execute(statement)
    return result.rowcount == 1


def update_connection_status(
    db_session: Session, connection: Connection, status: ConnectionStatus
) -> Connection:
    connection.status = status
    db_session.flush()
    db_session.refresh(connection)
    logger.info(f"Updated connection status, connection_id={connection.id}, status={status}")
    return connection
