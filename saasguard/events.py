"""Best-effort event emission for policy and notification consumers."""

from typing import Any, Callable, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)

APP_DISCOVERED = "app.discovered"
OAUTH_RISKY_PERMISSION = "oauth.risky_permission"
USER_OFFBOARDED = "user.offboarded"
ACCESS_UNAPPROVED_DETECTED = "access.unapproved_detected"
ACCESS_AUTO_REVOKED = "access.auto_revoked"
ACCESS_MANUALLY_REVOKED = "access.manually_revoked"
ACCESS_USER_NOTIFIED = "access.user_notified"
ACCESS_MANAGER_NOTIFIED = "access.manager_notified"
ACCESS_SECURITY_TEAM_NOTIFIED = "access.security_team_notified"
ACCESS_REVOCATION_APPROVAL_REQUESTED = "access.revocation_approval_requested"
ACCESS_REVOCATION_APPROVED = "access.revocation_approved"
ACCESS_REVOCATION_EXEMPTED = "access.revocation_exempted"

EventHandler = Callable[[str, Dict[str, Any]], None]


class EventBus:
    """Fan-out of named events to subscribed handlers.

    Emission never raises. A failing handler is logged and reported back
    to the caller as a warning string so it can be surfaced alongside the
    result of the operation that emitted the event.
    """

    def __init__(self, handlers: Optional[List[EventHandler]] = None):
        self._handlers: List[EventHandler] = list(handlers or [])

    def subscribe(self, handler: EventHandler) -> None:
        """Register a handler called for every emitted event."""
        self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def emit(self, event: str, payload: Dict[str, Any]) -> List[str]:
        """Deliver an event to all handlers.

        Args:
            event: Event name, e.g. ``app.discovered``
            payload: Event payload

        Returns:
            Warnings for handlers that failed (empty on full delivery)
        """
        warnings: List[str] = []

        for handler in list(self._handlers):
            try:
                handler(event, dict(payload))
            except Exception as e:
                logger.warning(
                    "event_handler_failed",
                    event_name=event,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e),
                )
                warnings.append(f"Event {event} delivery failed: {e}")

        logger.debug("event_emitted", event_name=event, handlers=len(self._handlers))
        return warnings


class EventRecorder:
    """Handler that keeps emitted events in memory.

    Useful for the CLI's summary output and for tests.
    """

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def __call__(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append({"event": event, "payload": payload})

    def named(self, event: str) -> List[Dict[str, Any]]:
        """Return payloads of all recorded events with the given name."""
        return [e["payload"] for e in self.events if e["event"] == event]
