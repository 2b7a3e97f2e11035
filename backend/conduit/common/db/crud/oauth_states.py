"""
CRUD operations for OAuth2 states.
A state row lives for one authorization round trip and can be consumed exactly once.
"""

from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from conduit.common.db.sql_models import OAuthState
from conduit.common.utils import utcnow


def create_state(
    db_session: Session,
    nonce: str,
    service_id: str,
    owner_id: str,
    code_verifier: str | None,
    ttl_seconds: int = 600,
) -> OAuthState:
    """
    Create a state to bind an authorization request to its owner and service.

    Args:
        db_session: Database session
        nonce: Random, unguessable state identifier
        service_id: Service the owner is connecting to
        owner_id: Owner who started the flow
        code_verifier: PKCE code verifier, if the service uses PKCE
        ttl_seconds: Time-to-live of the state

    Returns:
        The created OAuthState
    """
    issued_at = utcnow()
    state = OAuthState(
        id=nonce,
        service_id=service_id,
        owner_id=owner_id,
        code_verifier=code_verifier,
        issued_at=issued_at,
        expires_at=issued_at + timedelta(seconds=ttl_seconds),
    )
    db_session.add(state)
    db_session.flush()
    return state


def consume_state(db_session: Session, nonce: str, consumed_at: datetime | None = None) -> bool:
    """
    Atomically mark a state as consumed.

    The lookup and the write are one conditional UPDATE, so two concurrent callbacks
    carrying the same state cannot both see it unconsumed.

    Returns:
        True if this call consumed the state, False if it is unknown or already consumed
    """
    statement = (
        update(OAuthState)
        .where(OAuthState.id == nonce, OAuthState.consumed_at.is_(None))
        .values(consumed_at=consumed_at or utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db_session.execute(statement)
    return result.rowcount == 1


def get_state(db_session: Session, nonce: str) -> OAuthState | None:
    statement = select(OAuthState).filter_by(id=nonce)
    state: OAuthState | None = db_session.execute(statement).scalar_one_or_none()
    return state


def cleanup_expired_states(db_session: Session) -> int:
    """
    Delete states past their expiration time.

    Returns:
        Number of deleted states
    """
    statement = (
        delete(OAuthState)
        .where(OAuthState.expires_at <= utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db_session.execute(statement)
    return result.rowcount
