"""RQ worker running dispatched action attempts."""

import asyncio
from typing import Any

from redis import Redis
from rq import Worker

from conduit.common.logging_setup import setup_logging
from conduit.common.schemas.action import DispatchEnvelope
from conduit.common.utils import create_session_factory
from conduit.server.config import ServerSettings

from .dispatcher import AsyncDispatcher, build_dispatcher
from .logging import get_triggers_logger
from .settings import settings

logger = get_triggers_logger()

_dispatcher: AsyncDispatcher | None = None


def configure_worker(dispatcher: AsyncDispatcher) -> None:
    """Set the dispatcher jobs run with. Must be called before the worker starts."""
    global _dispatcher
    _dispatcher = dispatcher


def get_dispatcher() -> AsyncDispatcher:
    if _dispatcher is None:
        raise RuntimeError("Dispatch worker not configured, call configure_worker() first")
    return _dispatcher


def execute_dispatch(envelope_data: dict[str, Any]) -> dict[str, Any]:
    """
    Run one attempt of a dispatched action.

    This function is called by RQ workers as a background job. It doesn't raise
    on action failure: the dispatcher has already scheduled the next attempt or
    recorded the terminal failure.
    """
    envelope = DispatchEnvelope.model_validate(envelope_data)
    succeeded = asyncio.run(get_dispatcher().run_attempt(envelope))
    return {
        "envelope_id": str(envelope.id),
        "attempt": envelope.attempt,
        "status": "success" if succeeded else "failed",
    }


def create_worker() -> Worker:
    """
    Create and configure an RQ worker for the dispatch queue.
    """
    redis_conn = Redis.from_url(settings.redis_url)

    worker = Worker(
        queues=[settings.queue_name],
        connection=redis_conn,
    )

    return worker


def run_worker() -> None:
    """
    Run the dispatch worker.

    The scheduler is required: retries are enqueued with a delay.
    """
    server_settings = ServerSettings()  # type: ignore[call-arg]
    setup_logging(server_settings.log_level, server_settings.log_json)
    logger.info("Starting dispatch worker...")

    session_factory = create_session_factory(server_settings.database_url)
    configure_worker(build_dispatcher(session_factory, server_settings, settings))

    worker = create_worker()

    # Register exception handler
    def exception_handler(job, exc_type, exc_value, traceback):
        logger.error(
            f"Job {job.id} failed with {exc_type.__name__}",
            exc_info=(exc_type, exc_value, traceback)
        )

    worker.push_exc_handler(exception_handler)

    try:
        worker.work(with_scheduler=True)
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


if __name__ == "__main__":
    # python -m conduit.triggers.worker
    run_worker()
