from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from conduit.common.exceptions import ConduitException, SecurityViolation
from conduit.common.logging_setup import get_logger, setup_logging
from conduit.common.utils import create_session_factory
from conduit.server.config import ServerSettings
from conduit.server.rate_limiter import RateLimiter
from conduit.server.routes import integrations
from conduit.transform import ConfigSource, DataTransformer, build_default_registry
from conduit.triggers.dispatcher import AsyncDispatcher, build_dispatcher
from conduit.triggers.settings import TriggersSettings
from conduit.triggers.settings import settings as triggers_settings

logger = get_logger(__name__)


def create_app(
    settings: ServerSettings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    dispatcher: AsyncDispatcher | None = None,
    trigger_settings: TriggersSettings | None = None,
) -> FastAPI:
    """
    Build the application with explicitly constructed collaborators.

    Run with `uvicorn conduit.server.main:create_app --factory`.
    """
    settings = settings or ServerSettings()  # type: ignore[call-arg]
    setup_logging(settings.log_level, settings.log_json)

    session_factory = session_factory or create_session_factory(settings.database_url)

    app = FastAPI(title="Conduit", docs_url=None, redoc_url=None)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.transformer = DataTransformer(
        build_default_registry(ConfigSource(settings.transform_config))
    )
    app.state.dispatcher = dispatcher or build_dispatcher(
        session_factory, settings, trigger_settings or triggers_settings
    )
    app.state.webhook_rate_limiter = RateLimiter(
        rate=settings.webhook_rate_limit_per_second,
        capacity=settings.webhook_rate_limit_burst,
    )

    app.include_router(integrations.router, prefix="/integrations", tags=["integrations"])

    @app.exception_handler(ConduitException)
    async def conduit_exception_handler(request: Request, exc: ConduitException) -> JSONResponse:
        # only the title goes out, the message may carry internal detail
        headers = None
        if isinstance(exc, SecurityViolation) and exc.retry_after is not None:
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(
            status_code=exc.error_code,
            content={"success": False, "message": exc.title},
            headers=headers,
        )

    return app
