"""
Offer Service Module

Orchestrates the state machine, amortization engine and payment ledger behind
the public operation surface. Every mutation follows the same loop:

    reload -> validate -> compare-and-swap write

A write that loses a race is retried from a fresh reload, so the transition
table and payment rules are always checked against the latest state. After
the configured number of attempts the operation fails with Conflict.
Audit entries, log lines and lifecycle events are produced only after the
winning write.
"""

import uuid
from datetime import datetime, date, timezone
from typing import Callable, Dict, List, Optional, Any

from .amortization import schedule_for_terms, summarize_schedule, ScheduleSummary
from .audit import AuditTrail, AuditEventType
from .config import LendingConfig, get_config
from .contacts import ContactResolver, normalize_phone, is_valid_mobile
from .errors import (
    Conflict, InvalidPayment, InvalidState, InvalidTerms, Unauthorized,
    AlreadyReviewed
)
from .events import EventDispatcher, LendingEvent, offer_event, payment_event
from .ledger import PaymentLedger, LedgerSummary
from .logging_config import get_logger, log_action
from .models import (
    Actor, Offer, OfferTerms, OfferStatus, Payment, PaymentStatus,
    ReviewDecision, ScheduleEntry, LOAN_STATUSES
)
from .money import to_decimal, round_money, within_tolerance, format_amount, ZERO
from .repository import OfferRepository
from .state_machine import OfferStateMachine, OfferEvent, SYSTEM_ACTOR
from .storage import VersionConflict


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _phone_or_none(phone: Optional[str]) -> Optional[str]:
    if not phone:
        return None
    try:
        return normalize_phone(phone)
    except ValueError:
        return None


class OfferService:
    """
    Public entry point for offer and payment operations

    Identity is always passed in explicitly as an Actor; the service holds no
    per-user state and can serve any number of concurrent callers.
    """

    def __init__(
        self,
        repository: OfferRepository,
        event_dispatcher: Optional[EventDispatcher] = None,
        audit_trail: Optional[AuditTrail] = None,
        contact_resolver: Optional[ContactResolver] = None,
        ledger: Optional[PaymentLedger] = None,
        state_machine: Optional[OfferStateMachine] = None,
        clock: Optional[Callable[[], datetime]] = None,
        config: Optional[LendingConfig] = None
    ):
        self.repository = repository
        self.audit_trail = audit_trail
        self.contact_resolver = contact_resolver
        self.ledger = ledger or PaymentLedger()
        self.state_machine = state_machine or OfferStateMachine()
        self.clock = clock or utc_now
        self.config = config or get_config()
        self.logger = get_logger("loan_offers.service")
        self._event_dispatcher = event_dispatcher

        self.max_attempts = max(1, self.config.cas_max_retries)
        self.tolerance = to_decimal(self.config.amount_tolerance)
        self.max_offer_amount = to_decimal(self.config.max_offer_amount)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _with_retry(self, operation: str, resource: str, attempt: Callable[[], Any]) -> Any:
        """Run a reload-validate-write attempt until it wins or attempts run out"""
        for number in range(1, self.max_attempts + 1):
            try:
                return attempt()
            except VersionConflict as e:
                self.logger.warning(
                    f"{operation} on {resource} lost a concurrent write "
                    f"(attempt {number}/{self.max_attempts}): {e}"
                )
        raise Conflict(
            f"{operation} on {resource} failed after {self.max_attempts} attempts; reload and retry"
        )

    def _publish(self, event) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(event)

    def _audit(self, event_type: AuditEventType, entity_type: str, entity_id: str,
               metadata: Dict[str, Any], user_id: Optional[str]) -> None:
        if self.audit_trail and self.config.enable_audit_logging:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata,
                user_id=user_id
            )

    def _today(self) -> date:
        return self.clock().date()

    def _can_view(self, offer: Offer, actor: Optional[Actor]) -> bool:
        if actor is None:
            return True
        return offer.involves(actor.user_id) or self.state_machine.is_recipient(offer, actor)

    def _load_visible_offer(self, offer_id: str, actor: Optional[Actor]) -> Offer:
        offer = self.repository.load_offer(offer_id)
        if not self._can_view(offer, actor):
            raise Unauthorized(f"User is not a party to offer {offer_id}")
        return offer

    def _schedule(self, offer: Offer) -> List[ScheduleEntry]:
        """Accepted offers use their persisted start date; pending ones preview from today"""
        return schedule_for_terms(offer.terms, offer.start_date or self._today())

    def _loan_schedule(self, offer: Offer) -> List[ScheduleEntry]:
        if offer.status not in LOAN_STATUSES:
            raise InvalidState(f"Offer {offer.id} is {offer.status.value} and has no repayment ledger")
        return schedule_for_terms(offer.terms, offer.start_date)

    def _catch_up(self, offer: Offer) -> Offer:
        """Reconcile an accepted offer whose ledger has moved past it, e.g. after an interrupted approval"""
        if offer.status != OfferStatus.ACCEPTED:
            return offer
        schedule = self._loan_schedule(offer)
        summary = self.ledger.summarize(offer, schedule, self.repository.load_payments(offer.id), self._today())
        if (summary.outstanding > ZERO
                and summary.current_installment_number == offer.current_installment_number):
            return offer
        try:
            return self.reconcile_offer(offer.id)
        except Conflict as e:
            self.logger.warning(f"Reconcile of offer:{offer.id} deferred: {e}")
            return offer

    # ------------------------------------------------------------------
    # Offer lifecycle
    # ------------------------------------------------------------------

    def create_offer(self, actor: Actor, to_user_phone: str, terms: OfferTerms,
                     to_user_name: Optional[str] = None,
                     start_date: Optional[date] = None,
                     allow_part_payment: bool = True) -> Offer:
        """
        Create a pending offer addressed to a phone number

        Args:
            actor: Proposer
            to_user_phone: Recipient phone in any common Indian format
            terms: Financial terms; frozen from here on
            to_user_name: Display name the proposer knows the recipient by
            start_date: Optional agreed start date; defaults to the
                acceptance date
            allow_part_payment: Whether repayments may differ from the
                amount due

        Returns:
            The persisted Offer in pending

        Raises:
            InvalidTerms: If the terms or the recipient phone are invalid
        """
        if terms.amount > self.max_offer_amount:
            raise InvalidTerms(f"Amount cannot exceed {self.max_offer_amount}")
        try:
            phone = normalize_phone(to_user_phone)
        except ValueError as e:
            raise InvalidTerms(str(e))
        if not is_valid_mobile(phone):
            raise InvalidTerms(f"{to_user_phone} is not a valid mobile number")
        if _phone_or_none(actor.phone) == phone:
            raise InvalidTerms("Cannot send an offer to your own phone number")

        # Terms must produce a valid schedule before anything is persisted
        schedule_for_terms(terms, start_date or self._today())

        to_user_id = self._resolve_recipient(phone)
        if to_user_id == actor.user_id:
            raise InvalidTerms("Cannot send an offer to yourself")

        now = self.clock()
        offer = Offer(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            from_user_id=actor.user_id,
            to_user_phone=phone,
            to_user_id=to_user_id,
            to_user_name=to_user_name,
            terms=terms,
            start_date=start_date,
            allow_part_payment=allow_part_payment
        )
        offer = self.repository.save_offer(offer, None)

        log_action(
            self.logger, "info", f"Offer created: {terms.offer_type.value} {format_amount(terms.amount)}",
            user_id=actor.user_id, action="offer.create", resource=f"offer:{offer.id}",
            extra={
                "amount": str(terms.amount),
                "interest_rate": str(terms.interest_rate),
                "repayment_type": terms.repayment_type.value,
                "recipient_resolved": to_user_id is not None
            }
        )
        self._audit(AuditEventType.OFFER_CREATED, "offer", offer.id, {
            "terms": terms.to_dict(),
            "to_user_phone": phone,
            "to_user_id": to_user_id
        }, actor.user_id)
        self._publish(offer_event(LendingEvent.OFFER_CREATED, offer))
        return offer

    def _resolve_recipient(self, phone: str) -> Optional[str]:
        if self.contact_resolver is None:
            return None
        try:
            return self.contact_resolver.resolve(phone)
        except Exception as e:
            # Offer stays addressed by phone; the recipient claims it on sign-in
            self.logger.warning(f"Contact resolution failed for {phone}: {e}")
            return None

    def _transition(self, offer_id: str, event: OfferEvent, actor: Actor,
                    audit_type: AuditEventType, lifecycle_event: LendingEvent) -> Offer:
        def attempt() -> Offer:
            offer = self.repository.load_offer(offer_id)
            updated = self.state_machine.apply(offer, event, actor, self.clock())
            return self.repository.save_offer(updated, offer.version)

        offer = self._with_retry(event.value, f"offer:{offer_id}", attempt)

        log_action(
            self.logger, "info", f"Offer {offer.status.value}",
            user_id=actor.user_id, action=f"offer.{event.value}", resource=f"offer:{offer.id}"
        )
        metadata = {"status": offer.status.value, "to_user_id": offer.to_user_id}
        if event == OfferEvent.ACCEPT:
            metadata.update({
                "start_date": offer.start_date,
                "due_date": offer.due_date,
                "total_installments": offer.total_installments
            })
        self._audit(audit_type, "offer", offer.id, metadata, actor.user_id)
        self._publish(offer_event(lifecycle_event, offer))
        return offer

    def accept_offer(self, offer_id: str, actor: Actor) -> Offer:
        """Recipient accepts; the start date and schedule shape are fixed here"""
        return self._transition(offer_id, OfferEvent.ACCEPT, actor,
                                AuditEventType.OFFER_ACCEPTED, LendingEvent.OFFER_ACCEPTED)

    def decline_offer(self, offer_id: str, actor: Actor) -> Offer:
        return self._transition(offer_id, OfferEvent.DECLINE, actor,
                                AuditEventType.OFFER_DECLINED, LendingEvent.OFFER_DECLINED)

    def cancel_offer(self, offer_id: str, actor: Actor) -> Offer:
        """Proposer withdraws a pending offer"""
        return self._transition(offer_id, OfferEvent.CANCEL, actor,
                                AuditEventType.OFFER_CANCELLED, LendingEvent.OFFER_CANCELLED)

    def set_part_payment(self, offer_id: str, actor: Actor, allow: bool) -> Offer:
        """
        Lender toggles whether repayments may differ from the amount due

        Raises:
            Unauthorized: If the actor is not the lender
            InvalidState: If the offer is in a terminal state
        """
        def attempt() -> Offer:
            offer = self.repository.load_offer(offer_id)
            if offer.lender_id != actor.user_id:
                raise Unauthorized("Only the lender can change payment settings")
            if offer.is_terminal:
                raise InvalidState(f"Offer {offer_id} is {offer.status.value}")
            if offer.allow_part_payment == allow:
                return offer
            updated = offer.with_changes(allow_part_payment=allow, updated_at=self.clock())
            return self.repository.save_offer(updated, offer.version)

        offer = self._with_retry("set_part_payment", f"offer:{offer_id}", attempt)
        log_action(
            self.logger, "info", f"Part payment {'enabled' if allow else 'disabled'}",
            user_id=actor.user_id, action="offer.part_payment", resource=f"offer:{offer.id}"
        )
        self._audit(AuditEventType.OFFER_UPDATED, "offer", offer.id,
                    {"allow_part_payment": allow}, actor.user_id)
        return offer

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_offer(self, offer_id: str, actor: Optional[Actor] = None) -> Offer:
        return self._load_visible_offer(offer_id, actor)

    def list_offers(self, actor: Actor, status: Optional[OfferStatus] = None) -> List[Offer]:
        """Offers the actor proposed, received, or that await their phone number"""
        offers = self.repository.find_offers_for_user(actor.user_id, _phone_or_none(actor.phone))
        if status is not None:
            offers = [offer for offer in offers if offer.status == status]
        return offers

    def get_schedule(self, offer_id: str, actor: Optional[Actor] = None) -> List[ScheduleEntry]:
        """
        Repayment schedule of an offer

        Accepted and completed offers always return the schedule fixed at
        acceptance. A pending offer returns a preview starting today (or at
        the proposed start date).
        """
        offer = self._load_visible_offer(offer_id, actor)
        return self._schedule(offer)

    def get_schedule_summary(self, offer_id: str, actor: Optional[Actor] = None) -> ScheduleSummary:
        """Headline figures for contract and KFS documents"""
        offer = self._load_visible_offer(offer_id, actor)
        return summarize_schedule(self._schedule(offer), offer.terms)

    def list_payments(self, offer_id: str, actor: Optional[Actor] = None) -> List[Payment]:
        self._load_visible_offer(offer_id, actor)
        return self.repository.load_payments(offer_id)

    def get_payment(self, payment_id: str, actor: Optional[Actor] = None) -> Payment:
        payment = self.repository.load_payment(payment_id)
        if actor is not None and actor.user_id not in (payment.from_user_id, payment.to_user_id):
            raise Unauthorized(f"User is not a party to payment {payment_id}")
        return payment

    def get_ledger_summary(self, offer_id: str, actor: Optional[Actor] = None) -> LedgerSummary:
        """
        Paid, pending and outstanding figures for an accepted or completed offer

        Raises:
            InvalidState: If the offer never became a loan
        """
        offer = self._catch_up(self._load_visible_offer(offer_id, actor))
        schedule = self._loan_schedule(offer)
        payments = self.repository.load_payments(offer_id)
        return self.ledger.summarize(offer, schedule, payments, self._today())

    def get_payment_status(self, offer_id: str, actor: Actor) -> Dict[str, Any]:
        """What the actor can pay next and whether a submission is allowed now"""
        offer = self._catch_up(self._load_visible_offer(offer_id, actor))
        schedule = self._loan_schedule(offer)
        payments = self.repository.load_payments(offer_id)
        summary = self.ledger.summarize(offer, schedule, payments, self._today())
        pending_count = sum(1 for p in payments if p.status == PaymentStatus.PENDING)

        can_submit = (
            offer.status == OfferStatus.ACCEPTED
            and actor.user_id == offer.borrower_id
            and (offer.allow_part_payment or pending_count == 0)
            and summary.remaining_repayable - summary.pending_amount > ZERO
        )
        amount_due = ZERO
        if offer.status == OfferStatus.ACCEPTED:
            amount_due = self.ledger.amount_due_now(schedule, summary.total_paid)

        result = summary.to_dict()
        result.update({
            'status': offer.status.value,
            'amount_due': str(amount_due),
            'pending_payments': pending_count,
            'allow_part_payment': offer.allow_part_payment,
            'can_submit_payment': can_submit,
            'overdue_installments': [s.entry.installment_number for s in summary.overdue_installments]
        })
        return result

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def submit_payment(self, offer_id: str, actor: Actor, amount,
                       installment_number: Optional[int] = None,
                       payment_mode: Optional[str] = None,
                       reference: Optional[str] = None) -> Payment:
        """
        Borrower records a repayment for lender review

        Args:
            offer_id: Accepted offer being repaid
            actor: Borrower-side party
            amount: Amount paid, in rupees
            installment_number: Installment the payment is meant for;
                defaults to the current installment
            payment_mode: How the money moved (upi, cash, bank_transfer)
            reference: Transaction reference for the lender to check

        Returns:
            The pending Payment

        Raises:
            Unauthorized: If the actor is not the borrower
            InvalidState: If the offer is not accepted
            InvalidPayment: If the amount breaks the payment rules
        """
        try:
            amount = to_decimal(amount)
        except ValueError as e:
            raise InvalidPayment(str(e))
        if amount <= ZERO:
            raise InvalidPayment("Payment amount must be greater than zero")
        if amount != round_money(amount):
            raise InvalidPayment("Payment amount cannot have more than two decimal places")

        offer = self.repository.load_offer(offer_id)
        if actor.user_id != offer.borrower_id:
            raise Unauthorized("Only the borrower can submit payments for this offer")
        offer = self._catch_up(offer)
        if offer.status != OfferStatus.ACCEPTED:
            raise InvalidState(f"Offer {offer_id} is {offer.status.value}, payments need an accepted offer")

        schedule = self._loan_schedule(offer)
        payments = self.repository.load_payments(offer_id)
        summary = self.ledger.summarize(offer, schedule, payments, self._today())

        payable = summary.remaining_repayable - summary.pending_amount
        if amount > payable + self.tolerance:
            raise InvalidPayment(
                f"Payment {amount} exceeds the remaining repayable amount {max(payable, ZERO)}"
            )

        if not offer.allow_part_payment:
            if any(p.status == PaymentStatus.PENDING for p in payments):
                raise InvalidPayment(
                    "A payment is already awaiting approval and part payments are not allowed"
                )
            expected = self.ledger.amount_due_now(schedule, summary.total_paid)
            if not within_tolerance(amount, expected, self.tolerance):
                raise InvalidPayment(
                    f"Payment {amount} does not match the amount due {expected}; part payments are not allowed"
                )

        if installment_number is None:
            installment_number = summary.current_installment_number
        elif not 1 <= installment_number <= len(schedule):
            raise InvalidPayment(f"Installment {installment_number} is outside 1..{len(schedule)}")

        now = self.clock()
        payment = Payment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            offer_id=offer.id,
            from_user_id=actor.user_id,
            to_user_id=offer.lender_id,
            amount=amount,
            installment_number=installment_number,
            payment_mode=payment_mode,
            reference=reference
        )
        payment = self.repository.save_payment(payment, None)

        log_action(
            self.logger, "info", f"Payment submitted: {format_amount(amount)}",
            user_id=actor.user_id, action="payment.submit", resource=f"payment:{payment.id}",
            extra={"offer_id": offer.id, "installment_number": installment_number}
        )
        self._audit(AuditEventType.PAYMENT_SUBMITTED, "payment", payment.id, {
            "offer_id": offer.id,
            "amount": amount,
            "installment_number": installment_number,
            "payment_mode": payment_mode,
            "reference": reference
        }, actor.user_id)
        self._publish(payment_event(LendingEvent.PAYMENT_SUBMITTED, payment))
        return payment

    def review_payment(self, payment_id: str, actor: Actor, decision: ReviewDecision,
                       note: Optional[str] = None) -> Payment:
        """
        Lender approves or rejects a pending payment

        Approval recomputes the ledger; when outstanding reaches zero the
        offer is settled to completed, exactly once.

        Raises:
            Unauthorized: If the actor is not the lender
            AlreadyReviewed: If the payment was already approved or rejected
            InvalidState: If approving against an offer that is no longer accepted
            InvalidPayment: If approving would pay more than is repayable
        """
        try:
            decision = ReviewDecision(decision)
        except ValueError:
            raise InvalidPayment(f"Unknown review decision: {decision!r}")

        def attempt() -> Payment:
            payment = self.repository.load_payment(payment_id)
            offer = self.repository.load_offer(payment.offer_id)
            if actor.user_id != offer.lender_id or actor.user_id != payment.to_user_id:
                raise Unauthorized("Only the lender can review this payment")
            if payment.is_reviewed:
                raise AlreadyReviewed(f"Payment {payment_id} is already {payment.status.value}")

            if decision == ReviewDecision.APPROVE:
                if offer.status != OfferStatus.ACCEPTED:
                    raise InvalidState(f"Offer {offer.id} is {offer.status.value}; payment can only be rejected")
                schedule = self._loan_schedule(offer)
                total_paid = self.ledger.total_paid(self.repository.load_payments(offer.id))
                remaining = sum((e.total_amount for e in schedule), ZERO) - total_paid
                if payment.amount > remaining + self.tolerance:
                    raise InvalidPayment(
                        f"Approving {payment.amount} would exceed the remaining repayable amount {remaining}"
                    )
                status = PaymentStatus.APPROVED
            else:
                status = PaymentStatus.REJECTED

            now = self.clock()
            reviewed = payment.with_changes(
                status=status,
                reviewed_by=actor.user_id,
                reviewed_at=now,
                review_note=note,
                updated_at=now
            )
            return self.repository.save_payment(reviewed, payment.version)

        payment = self._with_retry(f"review ({decision.value})", f"payment:{payment_id}", attempt)

        log_action(
            self.logger, "info", f"Payment {payment.status.value}: {payment.amount}",
            user_id=actor.user_id, action=f"payment.{decision.value}", resource=f"payment:{payment.id}",
            extra={"offer_id": payment.offer_id}
        )
        if payment.status == PaymentStatus.APPROVED:
            self._audit(AuditEventType.PAYMENT_APPROVED, "payment", payment.id,
                        {"offer_id": payment.offer_id, "amount": payment.amount}, actor.user_id)
            self._publish(payment_event(LendingEvent.PAYMENT_APPROVED, payment))
            try:
                self.reconcile_offer(payment.offer_id)
            except Conflict as e:
                # The approval stands; the next ledger read or submission settles the offer
                self.logger.warning(f"Reconcile after approving payment:{payment.id} deferred: {e}")
        else:
            self._audit(AuditEventType.PAYMENT_REJECTED, "payment", payment.id,
                        {"offer_id": payment.offer_id, "amount": payment.amount, "note": note},
                        actor.user_id)
            self._publish(payment_event(LendingEvent.PAYMENT_REJECTED, payment))
        return payment

    def reconcile_offer(self, offer_id: str, actor: Optional[Actor] = None) -> Offer:
        """
        Bring an accepted offer in line with its ledger

        Moves the current-installment pointer and settles the offer to
        completed once outstanding is zero. Only the write that performs the
        settle transition emits OfferCompleted, so completion is announced
        once even when approvals race. Safe to re-run at any time; when an
        actor is given they must be a party to the offer.
        """
        if actor is not None:
            self._load_visible_offer(offer_id, actor)

        def attempt():
            offer = self.repository.load_offer(offer_id)
            if offer.status != OfferStatus.ACCEPTED:
                return offer, False

            schedule = self._loan_schedule(offer)
            summary = self.ledger.summarize(offer, schedule, self.repository.load_payments(offer_id), self._today())
            now = self.clock()
            updated = self.state_machine.advance_installment(
                offer, summary.current_installment_number, now
            )
            settled = summary.outstanding == ZERO
            if settled:
                updated = self.state_machine.apply(
                    updated, OfferEvent.SETTLE, SYSTEM_ACTOR, now, outstanding=summary.outstanding
                )
            if updated is offer:
                return offer, False
            return self.repository.save_offer(updated, offer.version), settled

        offer, completed = self._with_retry("reconcile", f"offer:{offer_id}", attempt)

        if completed:
            log_action(
                self.logger, "info", "Offer completed",
                user_id=SYSTEM_ACTOR.user_id, action="offer.settle", resource=f"offer:{offer.id}"
            )
            self._audit(AuditEventType.OFFER_COMPLETED, "offer", offer.id,
                        {"status": offer.status.value}, SYSTEM_ACTOR.user_id)
            self._publish(offer_event(LendingEvent.OFFER_COMPLETED, offer))
        return offer
