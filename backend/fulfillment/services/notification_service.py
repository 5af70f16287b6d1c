# Overview: Best-effort outbound notifications for lifecycle events.

from __future__ import annotations

from typing import Any, Callable

from flask import current_app

from ..errors import run_non_critical

NOTIFIERS_KEY = "fulfillment_notifiers"

Notifier = Callable[[str, dict], Any]


def log_notifier(event: str, payload: dict) -> None:
    current_app.logger.info("Notification %s %s", event, payload)


def register_notifier(app, handler: Notifier) -> None:
    """Attach a handler(event, payload) to the app; handlers run in registration order."""
    app.extensions.setdefault(NOTIFIERS_KEY, []).append(handler)


def notify(event: str, **payload) -> int:
    """
    Dispatch an event to every registered handler.

    A failing handler is logged and skipped; a transition never fails because
    a message could not be sent. Returns the number of handlers that succeeded.
    """
    handlers = current_app.extensions.get(NOTIFIERS_KEY) or [log_notifier]
    delivered = 0
    for handler in handlers:
        result = run_non_critical(
            lambda h=handler: h(event, payload) or True,
            {"step": "notify", "event": event, "handler": getattr(handler, "__name__", repr(handler))},
        )
        if result:
            delivered += 1
    return delivered
