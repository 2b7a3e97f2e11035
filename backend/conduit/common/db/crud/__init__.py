from . import (
    connections,
    dispatch_executions,
    dispatch_failures,
    oauth_states,
    subscriptions,
    webhook_events,
)

__all__ = [
    "connections",
    "dispatch_executions",
    "dispatch_failures",
    "oauth_states",
    "subscriptions",
    "webhook_events",
]
