"""
Offer State Machine

Enforces the legal offer lifecycle and who may drive each step:

    pending  --accept (recipient)-->  accepted
    pending  --decline (recipient)--> declined
    pending  --cancel (proposer)-->   cancelled
    accepted --settle (system, outstanding == 0)--> completed

declined, cancelled and completed are terminal. Transitions return a new
Offer; the input offer is never mutated.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
from enum import Enum

from .amortization import schedule_for_terms
from .contacts import normalize_phone
from .errors import InvalidTransition, TerminalStateViolation, Unauthorized, InvalidState
from .models import Actor, Offer, OfferStatus
from .money import ZERO


SYSTEM_USER_ID = "__system__"
SYSTEM_ACTOR = Actor(user_id=SYSTEM_USER_ID)


class OfferEvent(Enum):
    """Events that move an offer between states"""
    ACCEPT = "accept"
    DECLINE = "decline"
    CANCEL = "cancel"
    SETTLE = "settle"


class Party(Enum):
    """Which party may trigger a transition"""
    PROPOSER = "proposer"
    RECIPIENT = "recipient"
    SYSTEM = "system"


@dataclass(frozen=True)
class Transition:
    """Single row of the transition table"""
    source: OfferStatus
    event: OfferEvent
    party: Party
    target: OfferStatus


TRANSITIONS: Dict[Tuple[OfferStatus, OfferEvent], Transition] = {
    (t.source, t.event): t for t in (
        Transition(OfferStatus.PENDING, OfferEvent.ACCEPT, Party.RECIPIENT, OfferStatus.ACCEPTED),
        Transition(OfferStatus.PENDING, OfferEvent.DECLINE, Party.RECIPIENT, OfferStatus.DECLINED),
        Transition(OfferStatus.PENDING, OfferEvent.CANCEL, Party.PROPOSER, OfferStatus.CANCELLED),
        Transition(OfferStatus.ACCEPTED, OfferEvent.SETTLE, Party.SYSTEM, OfferStatus.COMPLETED),
    )
}


class OfferStateMachine:
    """Validates and applies offer transitions"""

    def transition_for(self, status: OfferStatus, event: OfferEvent) -> Transition:
        """
        Look up the table row for (status, event)

        Raises:
            TerminalStateViolation: If status is terminal
            InvalidTransition: If the pair is not in the table
        """
        if status in (OfferStatus.DECLINED, OfferStatus.CANCELLED, OfferStatus.COMPLETED):
            raise TerminalStateViolation(
                f"Offer is {status.value}; cannot {event.value}"
            )
        transition = TRANSITIONS.get((status, event))
        if transition is None:
            raise InvalidTransition(f"Cannot {event.value} an offer that is {status.value}")
        return transition

    def is_proposer(self, offer: Offer, actor: Actor) -> bool:
        return actor.user_id == offer.from_user_id

    def is_recipient(self, offer: Offer, actor: Actor) -> bool:
        """
        Recipient is the bound to_user_id, or while that is unresolved, any
        user whose verified phone matches the offer's recipient phone
        """
        if actor.user_id == offer.from_user_id:
            return False
        if offer.to_user_id is not None:
            return actor.user_id == offer.to_user_id
        if not actor.phone:
            return False
        try:
            return normalize_phone(actor.phone) == offer.to_user_phone
        except ValueError:
            return False

    def authorize(self, offer: Offer, transition: Transition, actor: Actor) -> None:
        """Raise Unauthorized unless actor is the party the transition needs"""
        if transition.party == Party.SYSTEM:
            allowed = actor.user_id == SYSTEM_USER_ID
        elif transition.party == Party.PROPOSER:
            allowed = self.is_proposer(offer, actor)
        else:
            allowed = self.is_recipient(offer, actor)

        if not allowed:
            raise Unauthorized(
                f"Only the {transition.party.value} can {transition.event.value} this offer"
            )

    def apply(self, offer: Offer, event: OfferEvent, actor: Actor, now: datetime,
              outstanding: Optional[Decimal] = None) -> Offer:
        """
        Validate and apply a transition

        Args:
            offer: Current offer state
            event: Requested event
            actor: Verified identity requesting it
            now: Wall-clock time of the request (UTC)
            outstanding: Ledger outstanding, required for SETTLE

        Returns:
            New Offer in the target state

        Raises:
            TerminalStateViolation, InvalidTransition, Unauthorized
        """
        transition = self.transition_for(offer.status, event)
        self.authorize(offer, transition, actor)

        if event == OfferEvent.ACCEPT:
            return self._accept(offer, actor, now)

        if event == OfferEvent.DECLINE:
            return offer.with_changes(
                status=transition.target,
                to_user_id=offer.to_user_id or actor.user_id,
                updated_at=now
            )

        if event == OfferEvent.SETTLE:
            if outstanding is None or outstanding != ZERO:
                raise InvalidTransition(
                    f"Cannot settle offer {offer.id} with outstanding {outstanding}"
                )
            return offer.with_changes(status=transition.target, updated_at=now)

        return offer.with_changes(status=transition.target, updated_at=now)

    def _accept(self, offer: Offer, actor: Actor, now: datetime) -> Offer:
        # Start date is persisted here, never re-read from the clock later
        start_date = offer.start_date or now.date()
        schedule = schedule_for_terms(offer.terms, start_date)
        return offer.with_changes(
            status=OfferStatus.ACCEPTED,
            to_user_id=offer.to_user_id or actor.user_id,
            start_date=start_date,
            due_date=schedule[-1].due_date,
            total_installments=len(schedule),
            current_installment_number=1,
            updated_at=now
        )

    def advance_installment(self, offer: Offer, installment_number: int, now: datetime) -> Offer:
        """Move the current-installment pointer of an accepted offer"""
        if offer.status != OfferStatus.ACCEPTED:
            raise InvalidState(f"Offer {offer.id} is {offer.status.value}, not accepted")
        if installment_number == offer.current_installment_number:
            return offer
        return offer.with_changes(current_installment_number=installment_number, updated_at=now)
