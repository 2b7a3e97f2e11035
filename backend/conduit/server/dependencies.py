from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from conduit.server.authentication_manager import AuthenticationManager
from conduit.server.config import ServerSettings
from conduit.server.rate_limiter import RateLimiter
from conduit.transform import DataTransformer
from conduit.triggers.dispatcher import AsyncDispatcher
from conduit.triggers.engine import TriggerEngine
from conduit.triggers.gateway import WebhookGateway


def get_settings(request: Request) -> ServerSettings:
    settings: ServerSettings = request.app.state.settings
    return settings


def yield_db_session(request: Request) -> Generator[Session, None, None]:
    db_session: Session = request.app.state.session_factory()
    try:
        yield db_session
    finally:
        db_session.close()


def get_transformer(request: Request) -> DataTransformer:
    transformer: DataTransformer = request.app.state.transformer
    return transformer


def get_dispatcher(request: Request) -> AsyncDispatcher:
    dispatcher: AsyncDispatcher = request.app.state.dispatcher
    return dispatcher


def get_webhook_rate_limiter(request: Request) -> RateLimiter:
    rate_limiter: RateLimiter = request.app.state.webhook_rate_limiter
    return rate_limiter


def get_authentication_manager(
    db_session: Annotated[Session, Depends(yield_db_session)],
    settings: Annotated[ServerSettings, Depends(get_settings)],
) -> AuthenticationManager:
    return AuthenticationManager(db_session, settings)


def get_webhook_gateway(
    db_session: Annotated[Session, Depends(yield_db_session)],
    settings: Annotated[ServerSettings, Depends(get_settings)],
) -> WebhookGateway:
    return WebhookGateway(db_session, settings.services)


def get_trigger_engine(
    db_session: Annotated[Session, Depends(yield_db_session)],
    transformer: Annotated[DataTransformer, Depends(get_transformer)],
    dispatcher: Annotated[AsyncDispatcher, Depends(get_dispatcher)],
) -> TriggerEngine:
    return TriggerEngine(db_session, transformer, dispatcher)


def get_requester_ip(request: Request) -> str:
    # first hop of X-Forwarded-For when running behind a proxy
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
