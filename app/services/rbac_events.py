"""
RBAC event notifications

Emitted after a clock event or grant change has been committed. Each event type
is gated by the organization's notification toggle; subscribers receive an
immutable RBACEvent. Without subscribers the event is only logged.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.rbac import NotificationSettings
from app.utils.datetime_utils import iso_8601_utc, now_utc
from app.utils.json_serializer import sanitize_for_json

logger = logging.getLogger(__name__)

CLOCK_IN = "clock_in"
CLOCK_OUT = "clock_out"
ACCESS_GRANTED = "access_granted"
ACCESS_REVOKED = "access_revoked"

# event type -> NotificationSettings field
_TOGGLES = {
    CLOCK_IN: "on_clock_in",
    CLOCK_OUT: "on_clock_out",
    ACCESS_GRANTED: "on_access_granted",
    ACCESS_REVOKED: "on_access_revoked",
}


class RBACEvent(BaseModel):
    """Immutable RBAC event record."""
    model_config = ConfigDict(frozen=True)

    event_type: str
    organization_id: int
    staff_id: int
    property_id: int
    occurred_at: datetime
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("payload", mode="before")
    @classmethod
    def sanitize_payload(cls, v):
        return sanitize_for_json(v or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "organization_id": self.organization_id,
            "staff_id": self.staff_id,
            "property_id": self.property_id,
            "occurred_at": iso_8601_utc(self.occurred_at),
            "payload": self.payload,
        }


Subscriber = Callable[[RBACEvent], None]

_subscribers: List[Subscriber] = []


def subscribe(handler: Subscriber) -> None:
    if handler not in _subscribers:
        _subscribers.append(handler)


def unsubscribe(handler: Subscriber) -> None:
    if handler in _subscribers:
        _subscribers.remove(handler)


def clear_subscribers() -> None:
    _subscribers.clear()


def emit_rbac_event(
    notifications: NotificationSettings,
    event_type: str,
    *,
    organization_id: int,
    staff_id: int,
    property_id: int,
    payload: Optional[Dict[str, Any]] = None,
) -> Optional[RBACEvent]:
    """
    Emit an RBAC event to all subscribers.

    Returns:
        The emitted event, or None when the toggle for event_type is off.

    Raises:
        KeyError: If event_type is unknown
    """
    toggle = _TOGGLES[event_type]
    if not getattr(notifications, toggle):
        return None

    event = RBACEvent(
        event_type=event_type,
        organization_id=organization_id,
        staff_id=staff_id,
        property_id=property_id,
        occurred_at=now_utc(),
        payload=payload,
    )
    logger.info(
        "RBAC event %s: org=%s staff=%s property=%s",
        event_type, organization_id, staff_id, property_id,
    )
    # The triggering transaction is already committed; a failing subscriber must not undo it
    for handler in list(_subscribers):
        try:
            handler(event)
        except Exception:
            logger.exception("RBAC event subscriber %r failed for %s", handler, event_type)
    return event
