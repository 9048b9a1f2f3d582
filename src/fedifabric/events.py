# fedifabric/events.py
"""Typed events delivered over the streaming API.

Every inbound frame is a JSON object of the form::

    {"stream": ["hashtag", "python"], "event": "update", "payload": "{...}"}

`payload` is itself a JSON document for entity-carrying events, a bare id
string for deletions, and absent for `filters_changed`. `parse_frame` turns a
raw frame into the matching `StreamEvent` subclass with its payload decoded.
"""

import json
from typing import Any

from pydantic import BaseModel, Field

from .log_config import logger


class StreamEvent(BaseModel):
    """Base class for events received on a subscription.

    Attributes:
        event: The event type as sent by the server (e.g. "update").
        stream: The channel tag of the frame, e.g. ["public:local"] or
            ["hashtag", "python"].
        payload: The decoded payload; its shape depends on `event`.
    """

    event: str
    stream: list[str] = Field(default_factory=list)
    payload: Any = None


class UpdateEvent(StreamEvent):
    """A new status appeared; `payload` is the status entity."""

    payload: dict[str, Any]


class StatusUpdateEvent(StreamEvent):
    """A status was edited; `payload` is the edited status entity."""

    payload: dict[str, Any]


class NotificationEvent(StreamEvent):
    """A notification was created; `payload` is the notification entity."""

    payload: dict[str, Any]


class ConversationEvent(StreamEvent):
    """A direct conversation was updated."""

    payload: dict[str, Any]


class AnnouncementEvent(StreamEvent):
    payload: dict[str, Any]


class AnnouncementReactionEvent(StreamEvent):
    payload: dict[str, Any]


class DeleteEvent(StreamEvent):
    """A status was deleted; `payload` is its id."""

    payload: str


class AnnouncementDeleteEvent(StreamEvent):
    payload: str


class FiltersChangedEvent(StreamEvent):
    payload: None = None


EVENT_TYPES: dict[str, type[StreamEvent]] = {
    "update": UpdateEvent,
    "status.update": StatusUpdateEvent,
    "notification": NotificationEvent,
    "conversation": ConversationEvent,
    "announcement": AnnouncementEvent,
    "announcement.reaction": AnnouncementReactionEvent,
    "delete": DeleteEvent,
    "announcement.delete": AnnouncementDeleteEvent,
    "filters_changed": FiltersChangedEvent,
}
"""Maps event type names to the model their payload is decoded into."""

_JSON_PAYLOAD_EVENTS = frozenset(
    [
        "update",
        "status.update",
        "notification",
        "conversation",
        "announcement",
        "announcement.reaction",
    ]
)


def decode_payload(event: str, payload: Any) -> Any:
    """Decodes a frame payload according to its event type."""
    if event in _JSON_PAYLOAD_EVENTS and isinstance(payload, str):
        return json.loads(payload)
    if event == "filters_changed":
        return None
    return payload


def parse_frame(frame: dict[str, Any]) -> StreamEvent:
    """Builds the typed event for a decoded frame.

    Unknown event types produce a plain `StreamEvent` that keeps the payload as
    sent, so newer servers do not break older clients.

    Raises:
        ValueError: If the frame has no event type or its payload cannot be
            decoded.
    """
    event = frame.get("event")
    if not isinstance(event, str):
        raise ValueError(f"Frame has no event type: {frame!r}")

    stream = frame.get("stream") or []
    payload = decode_payload(event, frame.get("payload"))
    model = EVENT_TYPES.get(event)
    if model is None:
        logger.debug(f"Received unknown event type {event!r}; keeping raw payload")
        model = StreamEvent
    return model.model_validate({"event": event, "stream": stream, "payload": payload})
