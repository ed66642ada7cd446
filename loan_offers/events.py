"""
Lifecycle Event Module

Publish/subscribe dispatcher for offer and payment lifecycle events. External
notifiers (SMS, push, realtime channels) subscribe here; the core only
publishes. Handler failures are logged and never undo the state change that
triggered them.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class LendingEvent(Enum):
    """Lifecycle events emitted by the offer service"""

    OFFER_CREATED = "offer.created"
    OFFER_ACCEPTED = "offer.accepted"
    OFFER_DECLINED = "offer.declined"
    OFFER_CANCELLED = "offer.cancelled"
    OFFER_COMPLETED = "offer.completed"

    PAYMENT_SUBMITTED = "payment.submitted"
    PAYMENT_APPROVED = "payment.approved"
    PAYMENT_REJECTED = "payment.rejected"


@dataclass
class EventPayload:
    """Payload for lifecycle events"""
    event_type: LendingEvent
    entity_type: str     # "offer" or "payment"
    entity_id: str
    data: Dict[str, Any]
    recipients: List[str] = field(default_factory=list)   # User ids to notify
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'recipients': list(self.recipients),
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventPayload':
        timestamp = data['timestamp']
        return cls(
            event_type=LendingEvent(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            data=data['data'],
            recipients=data.get('recipients', []),
            timestamp=datetime.fromisoformat(timestamp) if isinstance(timestamp, str) else timestamp,
            event_id=data['event_id']
        )


def _handler_name(handler: Callable) -> str:
    return getattr(handler, '__name__', repr(handler))


class EventDispatcher:
    """Thread-safe publish/subscribe dispatcher"""

    def __init__(self):
        self._handlers: Dict[LendingEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []
        self._lock = RLock()
        self.logger = logging.getLogger("loan_offers.events")

    def subscribe(self, event_type: LendingEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to every event type"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_handler_name(handler)}")

    def unsubscribe(self, event_type: LendingEvent, handler: Callable) -> None:
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {_handler_name(handler)} was not subscribed to {event_type.value}")

    def publish(self, event: EventPayload) -> None:
        """Deliver an event to its subscribers, then to global subscribers"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing {event.event_type.value} for {event.entity_type}:{event.entity_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(
                    f"Error in event handler {_handler_name(handler)} for {event.event_type.value}: {e}"
                )

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def get_handler_count(self, event_type: Optional[LendingEvent] = None) -> int:
        """Count handlers for one event type, or all handlers"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            return sum(len(h) for h in self._handlers.values()) + len(self._global_handlers)


class RecordingEventHandler:
    """Collects published events in order; used by notifiers and tests"""

    def __init__(self):
        self.events: List[EventPayload] = []
        self._lock = RLock()

    def __call__(self, event: EventPayload) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: LendingEvent) -> List[EventPayload]:
        with self._lock:
            return [e for e in self.events if e.event_type == event_type]


def offer_event(event_type: LendingEvent, offer, **extra) -> EventPayload:
    """Build an offer event addressed to both parties"""
    data = {
        'status': offer.status.value,
        'offer_type': offer.terms.offer_type.value,
        'amount': str(offer.terms.amount),
        'from_user_id': offer.from_user_id,
        'to_user_id': offer.to_user_id,
        'to_user_phone': offer.to_user_phone
    }
    data.update(extra)
    return EventPayload(
        event_type=event_type,
        entity_type="offer",
        entity_id=offer.id,
        data=data,
        recipients=[uid for uid in (offer.from_user_id, offer.to_user_id) if uid]
    )


def payment_event(event_type: LendingEvent, payment, **extra) -> EventPayload:
    """Build a payment event addressed to payer and payee"""
    data = {
        'offer_id': payment.offer_id,
        'amount': str(payment.amount),
        'status': payment.status.value,
        'installment_number': payment.installment_number,
        'from_user_id': payment.from_user_id,
        'to_user_id': payment.to_user_id
    }
    data.update(extra)
    return EventPayload(
        event_type=event_type,
        entity_type="payment",
        entity_id=payment.id,
        data=data,
        recipients=[payment.from_user_id, payment.to_user_id]
    )
