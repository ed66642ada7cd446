"""
Payment Ledger Module

Reconciles payment records against an offer's schedule. Only approved
payments reduce what is owed; pending payments are reported separately and
rejected payments are ignored. Everything here is recomputed from the frozen
schedule and the payment list on each call, so there is no running balance
to drift or corrupt.

Approved money is applied to installments in schedule order: a part payment
fills the current installment first and spills into the next one.
"""

from decimal import Decimal
from datetime import date, timedelta
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Any, Tuple

from .models import Offer, Payment, PaymentStatus, ScheduleEntry
from .money import ZERO, round_money


@dataclass(frozen=True)
class InstallmentStatus:
    """How far approved payments cover one installment"""
    entry: ScheduleEntry
    covered_amount: Decimal
    is_fully_covered: bool
    is_overdue: bool
    grace_period_end: Optional[date] = None
    late_fee: Decimal = ZERO            # Charged once the grace period has passed unpaid

    @property
    def amount_due(self) -> Decimal:
        return self.entry.total_amount - self.covered_amount

    def to_dict(self) -> Dict[str, Any]:
        result = self.entry.to_dict()
        result.update({
            'covered_amount': str(self.covered_amount),
            'amount_due': str(self.amount_due),
            'is_fully_covered': self.is_fully_covered,
            'is_overdue': self.is_overdue,
            'grace_period_end': self.grace_period_end.isoformat() if self.grace_period_end else None,
            'late_fee': str(self.late_fee)
        })
        return result


@dataclass(frozen=True)
class LedgerSummary:
    """Authoritative repayment position of an offer"""
    offer_id: str
    principal: Decimal
    total_paid: Decimal                 # Approved payments
    pending_amount: Decimal             # Awaiting lender review
    outstanding: Decimal                # max(0, principal - total_paid)
    total_repayable: Decimal            # Schedule total, principal + interest
    remaining_repayable: Decimal
    current_installment_number: int
    total_installments: int
    next_due_date: Optional[date]
    overdue_amount: Decimal
    late_fees: Decimal
    installments: Tuple[InstallmentStatus, ...] = ()

    @property
    def is_settled(self) -> bool:
        return self.outstanding == ZERO

    @property
    def overdue_installments(self) -> List[InstallmentStatus]:
        return [status for status in self.installments if status.is_overdue]

    def to_dict(self, include_installments: bool = False) -> Dict[str, Any]:
        result = {
            'offer_id': self.offer_id,
            'principal': str(self.principal),
            'total_paid': str(self.total_paid),
            'pending_amount': str(self.pending_amount),
            'outstanding': str(self.outstanding),
            'total_repayable': str(self.total_repayable),
            'remaining_repayable': str(self.remaining_repayable),
            'current_installment_number': self.current_installment_number,
            'total_installments': self.total_installments,
            'next_due_date': self.next_due_date.isoformat() if self.next_due_date else None,
            'overdue_amount': str(self.overdue_amount),
            'late_fees': str(self.late_fees),
            'is_settled': self.is_settled
        }
        if include_installments:
            result['installments'] = [status.to_dict() for status in self.installments]
        return result


class PaymentLedger:
    """
    Derives paid, pending, outstanding and overdue figures

    Stateless; one instance can serve any number of offers.
    """

    @staticmethod
    def _sum(payments: Iterable[Payment], status: PaymentStatus) -> Decimal:
        return sum((p.amount for p in payments if p.status == status), ZERO)

    def total_paid(self, payments: Iterable[Payment]) -> Decimal:
        """Sum of approved payments"""
        return self._sum(payments, PaymentStatus.APPROVED)

    def pending_amount(self, payments: Iterable[Payment]) -> Decimal:
        """Sum of payments awaiting review"""
        return self._sum(payments, PaymentStatus.PENDING)

    def outstanding(self, principal: Decimal, total_paid: Decimal) -> Decimal:
        """Principal not yet covered by approved payments"""
        return max(ZERO, principal - total_paid)

    def current_installment_number(self, schedule: List[ScheduleEntry], total_paid: Decimal) -> int:
        """
        Smallest installment whose cumulative scheduled total exceeds total_paid

        Once every installment is covered this is the last installment.
        """
        cumulative = ZERO
        for entry in schedule:
            cumulative += entry.total_amount
            if cumulative > total_paid:
                return entry.installment_number
        return schedule[-1].installment_number

    def installment_statuses(self, schedule: List[ScheduleEntry], total_paid: Decimal,
                             as_of: date, grace_period_days: int = 0,
                             late_payment_penalty: Decimal = ZERO) -> List[InstallmentStatus]:
        """
        Coverage, overdue flag and late fee for each installment

        An installment turns overdue only after its grace period ends; the
        late fee is late_payment_penalty percent of its scheduled total.
        """
        statuses = []
        remaining = total_paid
        for entry in schedule:
            covered = min(max(remaining, ZERO), entry.total_amount)
            remaining -= entry.total_amount
            fully_covered = covered == entry.total_amount
            overdue = self.is_overdue(entry, fully_covered, as_of, grace_period_days)
            statuses.append(InstallmentStatus(
                entry=entry,
                covered_amount=covered,
                is_fully_covered=fully_covered,
                is_overdue=overdue,
                grace_period_end=self.grace_period_end(entry, grace_period_days),
                late_fee=self.late_fee(entry, late_payment_penalty) if overdue else ZERO
            ))
        return statuses

    def grace_period_end(self, entry: ScheduleEntry, grace_period_days: int) -> Optional[date]:
        if grace_period_days <= 0:
            return None
        return entry.due_date + timedelta(days=grace_period_days)

    def late_fee(self, entry: ScheduleEntry, late_payment_penalty: Decimal) -> Decimal:
        """Penalty percent of the installment total, rounded to paise"""
        if late_payment_penalty <= ZERO:
            return ZERO
        return round_money(entry.total_amount * late_payment_penalty / Decimal('100'))

    def is_overdue(self, entry: ScheduleEntry, fully_covered: bool, as_of: date,
                   grace_period_days: int = 0) -> bool:
        """Past its due date plus grace and not fully covered by approved payments"""
        return as_of > entry.due_date + timedelta(days=grace_period_days) and not fully_covered

    def amount_due_now(self, schedule: List[ScheduleEntry], total_paid: Decimal) -> Decimal:
        """What is still owed on the current installment"""
        cumulative = ZERO
        for entry in schedule:
            cumulative += entry.total_amount
            if cumulative > total_paid:
                return cumulative - total_paid
        return ZERO

    def summarize(self, offer: Offer, schedule: List[ScheduleEntry],
                  payments: List[Payment], as_of: date) -> LedgerSummary:
        """
        Full ledger position for an offer

        Args:
            offer: Offer whose principal the ledger is measured against
            schedule: The offer's schedule, as computed from its frozen terms
            payments: All payment records for the offer, any status
            as_of: Date used for overdue checks

        Returns:
            LedgerSummary
        """
        total_paid = self.total_paid(payments)
        statuses = self.installment_statuses(
            schedule, total_paid, as_of,
            grace_period_days=offer.terms.grace_period_days,
            late_payment_penalty=offer.terms.late_payment_penalty
        )
        total_repayable = sum((entry.total_amount for entry in schedule), ZERO)
        current = self.current_installment_number(schedule, total_paid)

        next_due = None
        if not statuses[current - 1].is_fully_covered:
            next_due = statuses[current - 1].entry.due_date

        return LedgerSummary(
            offer_id=offer.id,
            principal=offer.terms.amount,
            total_paid=total_paid,
            pending_amount=self.pending_amount(payments),
            outstanding=self.outstanding(offer.terms.amount, total_paid),
            total_repayable=total_repayable,
            remaining_repayable=max(ZERO, total_repayable - total_paid),
            current_installment_number=current,
            total_installments=len(schedule),
            next_due_date=next_due,
            overdue_amount=sum((s.amount_due for s in statuses if s.is_overdue), ZERO),
            late_fees=sum((s.late_fee for s in statuses), ZERO),
            installments=tuple(statuses)
        )
