from typing import Annotated
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.responses import RedirectResponse

from conduit.common.db import crud
from conduit.common.exceptions import (
    ConduitException,
    ExchangeFailed,
    ExpiredState,
    InvalidState,
    SecurityViolation,
    ServiceUnreachable,
    SubscriptionNotFound,
    VerificationFailed,
)
from conduit.common.logging_setup import get_logger
from conduit.common.schemas.connection import AuthorizationRequest
from conduit.common.utils import sanitize_for_storage
from conduit.server import dependencies as deps
from conduit.server.authentication_manager import AuthenticationManager
from conduit.server.config import ServerSettings
from conduit.server.rate_limiter import RateLimiter
from conduit.triggers.engine import TriggerEngine
from conduit.triggers.gateway import WebhookGateway
from conduit.triggers.logging import log_security_violation

router = APIRouter()
logger = get_logger(__name__)

OAUTH_CALLBACK_ROUTE_NAME = "integrations_oauth_callback"

# short, stable messages shown to the browser after the OAuth2 round trip
MESSAGE_CONNECTED = "Connected"
MESSAGE_INVALID_CALLBACK = "Invalid callback"
MAX_PROVIDER_MESSAGE_LENGTH = 200


def _redirect_after_oauth(
    settings: ServerSettings, outcome: str, message: str, **params: str
) -> RedirectResponse:
    query = urlencode({"status": outcome, "message": message, **params})
    separator = "&" if "?" in settings.post_oauth_redirect_url else "?"
    return RedirectResponse(
        url=f"{settings.post_oauth_redirect_url}{separator}{query}",
        status_code=status.HTTP_302_FOUND,
    )


@router.get("/oauth/{service_id}/authorize", response_model=AuthorizationRequest)
async def authorize(
    service_id: str,
    owner_id: Annotated[str, Query(min_length=1, max_length=255)],
    auth_manager: Annotated[AuthenticationManager, Depends(deps.get_authentication_manager)],
) -> AuthorizationRequest:
    """
    Start connecting `owner_id` to a service. The client sends the browser to the returned URL.
    """
    url = await auth_manager.initiate_oauth(service_id, owner_id)
    return AuthorizationRequest(url=url)


@router.get("/oauth/callback", name=OAUTH_CALLBACK_ROUTE_NAME)
async def oauth_callback(
    request: Request,
    settings: Annotated[ServerSettings, Depends(deps.get_settings)],
    auth_manager: Annotated[AuthenticationManager, Depends(deps.get_authentication_manager)],
) -> RedirectResponse:
    """
    Callback endpoint for the OAuth2 authorization code flow.
    Always answers with a redirect to the post-OAuth page carrying `status` and `message`.
    """
    # check for errors
    error = request.query_params.get("error")
    if error:
        error_description = request.query_params.get("error_description")
        logger.warning(
            f"OAuth2 callback received with error, error={error}, "
            f"error_description={error_description}"
        )
        message = (error_description or error)[:MAX_PROVIDER_MESSAGE_LENGTH]
        return _redirect_after_oauth(settings, "error", message)

    code = request.query_params.get("code")
    state = request.query_params.get("state")
    if not code or not state:
        logger.warning(
            f"OAuth2 callback received, missing parameters, has_code={bool(code)}, "
            f"has_state={bool(state)}"
        )
        return _redirect_after_oauth(settings, "error", MESSAGE_INVALID_CALLBACK)

    try:
        result = await auth_manager.handle_oauth_callback(code, state)
    except (InvalidState, ExpiredState) as e:
        log_security_violation(
            "invalid_state",
            deps.get_requester_ip(request),
            reason=type(e).__name__,
            path=request.url.path,
        )
        return _redirect_after_oauth(settings, "error", e.title)
    except (ExchangeFailed, ServiceUnreachable) as e:
        return _redirect_after_oauth(settings, "error", e.title)

    return _redirect_after_oauth(
        settings, "success", MESSAGE_CONNECTED, connection_id=str(result.connection_id)
    )


@router.post(
    "/webhooks/{subscription_id}", status_code=status.HTTP_200_OK, response_model=None
)
async def receive_webhook(
    subscription_id: str,
    request: Request,
    db_session: Annotated[Session, Depends(deps.yield_db_session)],
    gateway: Annotated[WebhookGateway, Depends(deps.get_webhook_gateway)],
    engine: Annotated[TriggerEngine, Depends(deps.get_trigger_engine)],
    rate_limiter: Annotated[RateLimiter, Depends(deps.get_webhook_rate_limiter)],
) -> dict[str, bool] | JSONResponse:
    """
    Receive a webhook for one subscription: verify, route, enqueue. Nothing else runs inline.
    """
    requester_ip = deps.get_requester_ip(request)
    decision = rate_limiter.allow(requester_ip)
    if not decision.allowed:
        log_security_violation(
            "rate_limit",
            requester_ip,
            path=request.url.path,
            retry_after=decision.retry_after,
        )
        raise SecurityViolation(
            "rate_limit",
            message=f"requester={requester_ip} rate limited",
            error_code=status.HTTP_429_TOO_MANY_REQUESTS,
            retry_after=decision.retry_after,
        )

    raw_body = await request.body()
    try:
        context = gateway.handle(subscription_id, raw_body, request.headers)
        if context.subscription_id is None:
            raise SubscriptionNotFound(f"subscription={subscription_id} not found")

        if context.event_key and crud.webhook_events.get_webhook_event_by_key(
            db_session, context.subscription_id, context.event_key
        ):
            logger.info(
                f"Duplicate webhook event received, skipping, "
                f"subscription_id={context.subscription_id}, event_key={context.event_key}"
            )
            # success, so the provider stops retrying
            return {"success": True}

        try:
            event = crud.webhook_events.create_webhook_event(
                db_session,
                subscription_id=context.subscription_id,
                event_type=context.event_type,
                payload=sanitize_for_storage(context.body),
                event_key=context.event_key,
            )
        except IntegrityError:
            # a concurrent delivery of the same event got there first
            db_session.rollback()
            logger.info(
                f"Race on webhook event creation, skipping duplicate, "
                f"subscription_id={context.subscription_id}, event_key={context.event_key}"
            )
            return {"success": True}

        outcomes = engine.route(context)
        event.matched_subscriptions = len(outcomes)
        db_session.commit()
    except (SubscriptionNotFound, VerificationFailed):
        raise
    except ConduitException as e:
        logger.exception(f"Webhook processing failed, subscription_id={subscription_id}, error={e}")
        raise
    except Exception:
        logger.exception(f"Unexpected error processing webhook, subscription_id={subscription_id}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": "Internal server error"},
        )

    return {"success": True}
