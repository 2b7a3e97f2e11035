"""
Asynchronous action dispatch with bounded retries.

`submit` only enqueues. Workers run one attempt per job through `run_attempt`;
a failed attempt is re-enqueued after a fixed backoff until the attempt budget
is spent, then the action is recorded as a DispatchFailure and never re-queued.
RQ never retries a job itself; the attempt number travels in the envelope.
"""

import time
from collections.abc import Mapping
from datetime import timedelta
from typing import Any, Protocol
from uuid import UUID

from redis import Redis
from rq import Queue
from sqlalchemy.orm import Session, sessionmaker

from conduit.common.db import crud
from conduit.common.enums import ExecutionStatus
from conduit.common.schemas.action import (
    DispatchEnvelope,
    ServiceRequestAction,
    WebhookForwardAction,
)
from conduit.common.utils import sanitize_for_storage
from conduit.server.action_executors import (
    ActionExecutionResult,
    ActionExecutor,
    build_executor_table,
)
from conduit.server.config import ServerSettings

from .logging import (
    get_triggers_logger,
    log_dispatch_attempt_failed,
    log_dispatch_enqueued,
    log_dispatch_failed,
    log_dispatch_succeeded,
)
from .settings import TriggersSettings

logger = get_triggers_logger()

DISPATCH_JOB_FUNCTION = "conduit.triggers.worker.execute_dispatch"


class DispatchQueue(Protocol):
    def enqueue(self, envelope: DispatchEnvelope, delay_seconds: int = 0) -> None: ...


class FailureRecorder(Protocol):
    def __call__(self, envelope: DispatchEnvelope, error: str) -> None: ...


class ExecutionRecorder(Protocol):
    def __call__(
        self,
        envelope: DispatchEnvelope,
        status: ExecutionStatus,
        duration_ms: int,
        error: str | None = None,
    ) -> None: ...


class RQDispatchQueue:
    """DispatchQueue on an RQ queue. Delayed jobs need a worker running with the scheduler."""

    def __init__(self, queue: Queue, job_timeout: int = 300):
        self.queue = queue
        self.job_timeout = job_timeout

    @classmethod
    def from_settings(cls, settings: TriggersSettings) -> "RQDispatchQueue":
        redis_conn = Redis.from_url(settings.redis_url)
        return cls(
            Queue(name=settings.queue_name, connection=redis_conn),
            job_timeout=settings.job_timeout_seconds,
        )

    def enqueue(self, envelope: DispatchEnvelope, delay_seconds: int = 0) -> None:
        job_kwargs: dict[str, Any] = {
            "job_timeout": self.job_timeout,
            "job_id": f"{envelope.id}-{envelope.attempt}",
            # one job per attempt, RQ must not retry on its own
            "retry": None,
        }
        envelope_data = envelope.model_dump(mode="json")
        if delay_seconds > 0:
            self.queue.enqueue_in(
                timedelta(seconds=delay_seconds), DISPATCH_JOB_FUNCTION, envelope_data, **job_kwargs
            )
        else:
            self.queue.enqueue(DISPATCH_JOB_FUNCTION, envelope_data, **job_kwargs)


class SqlFailureRecorder:
    """Writes exhausted actions to the dispatch_failures table."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def __call__(self, envelope: DispatchEnvelope, error: str) -> None:
        action = envelope.action
        with self.session_factory() as db_session:
            crud.dispatch_failures.create_dispatch_failure(
                db_session,
                envelope_id=envelope.id,
                action_type=str(action.action_type),
                subscription_id=action.subscription_id,
                attempts=envelope.attempt,
                last_error=error,
                payload=sanitize_for_storage(action.model_dump(mode="json")),
            )
            db_session.commit()


class SqlExecutionRecorder:
    """Writes one dispatch_executions row per attempt, successful or not."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def __call__(
        self,
        envelope: DispatchEnvelope,
        status: ExecutionStatus,
        duration_ms: int,
        error: str | None = None,
    ) -> None:
        action = envelope.action
        with self.session_factory() as db_session:
            crud.dispatch_executions.create_dispatch_execution(
                db_session,
                envelope_id=envelope.id,
                attempt=envelope.attempt,
                action_type=str(action.action_type),
                subscription_id=action.subscription_id,
                status=status,
                duration_ms=duration_ms,
                payload=sanitize_for_storage(action.model_dump(mode="json")),
                error=error,
            )
            db_session.commit()


class AsyncDispatcher:
    def __init__(
        self,
        queue: DispatchQueue,
        executors: Mapping[str, ActionExecutor],
        record_failure: FailureRecorder,
        max_attempts: int = 3,
        backoff_seconds: int = 60,
        record_execution: ExecutionRecorder | None = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.queue = queue
        self.executors = executors
        self.record_failure = record_failure
        self.record_execution = record_execution
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    def submit(self, action: WebhookForwardAction | ServiceRequestAction) -> UUID:
        """
        Enqueue the first attempt of an action and return its envelope id immediately.
        """
        envelope = DispatchEnvelope(action=action)
        self.queue.enqueue(envelope, delay_seconds=0)
        log_dispatch_enqueued(
            str(envelope.id),
            str(action.action_type),
            envelope.attempt,
            subscription_id=str(action.subscription_id) if action.subscription_id else None,
        )
        return envelope.id

    async def run_attempt(self, envelope: DispatchEnvelope) -> bool:
        """
        Execute one attempt of the envelope's action.

        Every attempt is recorded as an execution when an ExecutionRecorder is set.

        Returns:
            True if the action succeeded. On failure the next attempt has been
            scheduled, or the action has been recorded as failed.
        """
        action = envelope.action
        action_type = str(action.action_type)
        executor = self.executors.get(action_type)
        if executor is None:
            # retrying cannot help, there is nothing that could execute it
            self._fail(envelope, f"no executor registered for action_type={action_type}", 0)
            return False

        started = time.monotonic()
        try:
            result = await executor.execute(action)
        except Exception as e:
            logger.exception(
                f"Action executor raised, envelope_id={envelope.id}, action_type={action_type}"
            )
            result = ActionExecutionResult(success=False, error=f"{type(e).__name__}: {e}")
        duration_ms = int((time.monotonic() - started) * 1000)

        if result.success:
            self._record(envelope, ExecutionStatus.SUCCESS, duration_ms)
            log_dispatch_succeeded(
                str(envelope.id),
                action_type,
                envelope.attempt,
                status_code=result.status_code,
                duration_ms=duration_ms,
            )
            return True

        error = result.error or "unknown error"
        if envelope.attempt < self.max_attempts:
            next_envelope = envelope.model_copy(
                update={"attempt": envelope.attempt + 1, "last_error": error}
            )
            log_dispatch_attempt_failed(
                str(envelope.id),
                action_type,
                envelope.attempt,
                error,
                retry_in_seconds=self.backoff_seconds,
            )
            self.queue.enqueue(next_envelope, delay_seconds=self.backoff_seconds)
            log_dispatch_enqueued(
                str(envelope.id), action_type, next_envelope.attempt, self.backoff_seconds
            )
            self._record(envelope, ExecutionStatus.RETRYING, duration_ms, error)
            return False

        self._fail(envelope, error, duration_ms)
        return False

    def _record(
        self,
        envelope: DispatchEnvelope,
        status: ExecutionStatus,
        duration_ms: int,
        error: str | None = None,
    ) -> None:
        if self.record_execution is not None:
            self.record_execution(envelope, status, duration_ms, error)

    def _fail(self, envelope: DispatchEnvelope, error: str, duration_ms: int) -> None:
        action = envelope.action
        self.record_failure(envelope, error)
        self._record(envelope, ExecutionStatus.FAILED, duration_ms, error)
        log_dispatch_failed(
            str(envelope.id),
            str(action.action_type),
            envelope.attempt,
            error,
            subscription_id=str(action.subscription_id) if action.subscription_id else None,
        )


def build_dispatcher(
    session_factory: sessionmaker[Session],
    server_settings: ServerSettings,
    triggers_settings: TriggersSettings,
    queue: DispatchQueue | None = None,
) -> AsyncDispatcher:
    """Dispatcher wired to RQ, the executor table and the SQL failure and execution stores."""
    return AsyncDispatcher(
        queue=queue or RQDispatchQueue.from_settings(triggers_settings),
        executors=build_executor_table(
            session_factory, server_settings, timeout=triggers_settings.action_timeout_seconds
        ),
        record_failure=SqlFailureRecorder(session_factory),
        max_attempts=triggers_settings.max_attempts,
        backoff_seconds=triggers_settings.backoff_seconds,
        record_execution=SqlExecutionRecorder(session_factory),
    )
