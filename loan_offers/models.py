"""
Domain Models Module

Closed, versioned records for loan offers and payments. Offer terms are a
frozen dataclass so they cannot change once written; lifecycle fields that only
make sense for an accepted loan are rejected on any other status.
"""

from decimal import Decimal
from datetime import datetime, date
from dataclasses import dataclass, replace
from typing import Dict, Any, Optional
from enum import Enum

from .errors import InvalidTerms
from .money import to_decimal, round_money, ZERO
from .storage import StorageRecord


class OfferType(Enum):
    """Which side the proposer is on"""
    LEND = "lend"        # Proposer lends to the recipient
    BORROW = "borrow"    # Proposer borrows from the recipient


class InterestType(Enum):
    """How interest accrues"""
    REDUCING = "reducing"  # On the outstanding balance
    FIXED = "fixed"        # Simple interest on the original principal


class TenureUnit(Enum):
    """Unit of the agreed tenure"""
    DAYS = "days"
    MONTHS = "months"
    YEARS = "years"


class RepaymentType(Enum):
    """Shape of the repayment schedule"""
    EMI = "emi"                      # Equated periodic installments
    FULL_PAYMENT = "full_payment"    # Single lump sum at maturity
    INTEREST_ONLY = "interest_only"  # Interest each period, principal at maturity


class RepaymentFrequency(Enum):
    """Installment frequency for periodic repayment types"""
    WEEKLY = "weekly"            # 52 payments per year
    BI_WEEKLY = "bi_weekly"      # 26 payments per year
    MONTHLY = "monthly"          # 12 payments per year
    QUARTERLY = "quarterly"      # 4 payments per year
    SEMI_ANNUAL = "semi_annual"  # 2 payments per year
    YEARLY = "yearly"            # 1 payment per year

    @property
    def payments_per_year(self) -> int:
        return {
            RepaymentFrequency.WEEKLY: 52,
            RepaymentFrequency.BI_WEEKLY: 26,
            RepaymentFrequency.MONTHLY: 12,
            RepaymentFrequency.QUARTERLY: 4,
            RepaymentFrequency.SEMI_ANNUAL: 2,
            RepaymentFrequency.YEARLY: 1
        }[self]


class OfferStatus(Enum):
    """Offer lifecycle states"""
    PENDING = "pending"        # Proposed, awaiting the recipient
    ACCEPTED = "accepted"      # Live loan with a fixed schedule
    DECLINED = "declined"      # Recipient said no
    CANCELLED = "cancelled"    # Proposer withdrew before acceptance
    COMPLETED = "completed"    # Outstanding reached zero


TERMINAL_STATUSES = frozenset({
    OfferStatus.DECLINED, OfferStatus.CANCELLED, OfferStatus.COMPLETED
})

LOAN_STATUSES = frozenset({OfferStatus.ACCEPTED, OfferStatus.COMPLETED})


class PaymentStatus(Enum):
    """Payment review states"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewDecision(Enum):
    """Lender decision on a submitted payment"""
    APPROVE = "approve"
    REJECT = "reject"


def _enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidTerms(f"{field_name} must be one of: {allowed} (got {value!r})")


def _decimal(value, field_name: str) -> Decimal:
    try:
        return to_decimal(value)
    except ValueError:
        raise InvalidTerms(f"{field_name} must be a number (got {value!r})")


def _optional_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(value)


@dataclass(frozen=True)
class Actor:
    """Verified identity supplied by the identity provider"""
    user_id: str
    phone: Optional[str] = None


MAX_GRACE_PERIOD_DAYS = 30


@dataclass(frozen=True)
class OfferTerms:
    """
    Financial terms of an offer

    Immutable: once an offer leaves pending these are the only inputs the
    schedule is ever derived from (together with the persisted start date).
    """
    offer_type: OfferType
    amount: Decimal                      # Principal in rupees
    interest_rate: Decimal               # Annual percent, e.g. 12 for 12%
    tenure_value: int
    tenure_unit: TenureUnit
    repayment_type: RepaymentType
    interest_type: InterestType = InterestType.REDUCING
    repayment_frequency: Optional[RepaymentFrequency] = None
    grace_period_days: int = 0
    late_payment_penalty: Decimal = ZERO   # Percent of the late installment
    prepayment_penalty: Decimal = ZERO     # Percent of the prepaid amount
    processing_fee: Decimal = ZERO         # Rupees, used for APR only
    purpose: Optional[str] = None
    note: Optional[str] = None

    def __post_init__(self):
        self._set('offer_type', _enum(OfferType, self.offer_type, 'offer_type'))
        self._set('tenure_unit', _enum(TenureUnit, self.tenure_unit, 'tenure_unit'))
        self._set('repayment_type', _enum(RepaymentType, self.repayment_type, 'repayment_type'))
        self._set('interest_type', _enum(InterestType, self.interest_type, 'interest_type'))
        self._set('amount', _decimal(self.amount, 'amount'))
        self._set('interest_rate', _decimal(self.interest_rate, 'interest_rate'))
        self._set('late_payment_penalty', _decimal(self.late_payment_penalty, 'late_payment_penalty'))
        self._set('prepayment_penalty', _decimal(self.prepayment_penalty, 'prepayment_penalty'))
        self._set('processing_fee', _decimal(self.processing_fee, 'processing_fee'))

        if self.repayment_type == RepaymentType.FULL_PAYMENT:
            self._set('repayment_frequency', None)
        elif self.repayment_frequency is None:
            self._set('repayment_frequency', RepaymentFrequency.MONTHLY)
        else:
            self._set('repayment_frequency', _enum(
                RepaymentFrequency, self.repayment_frequency, 'repayment_frequency'
            ))

        if isinstance(self.tenure_value, bool) or not isinstance(self.tenure_value, int):
            raise InvalidTerms(f"tenure_value must be a whole number (got {self.tenure_value!r})")
        if isinstance(self.grace_period_days, bool) or not isinstance(self.grace_period_days, int):
            raise InvalidTerms(f"grace_period_days must be a whole number (got {self.grace_period_days!r})")
        if self.amount <= ZERO:
            raise InvalidTerms("Amount must be positive")
        if self.amount != round_money(self.amount):
            raise InvalidTerms("Amount cannot have more than two decimal places")
        if self.interest_rate < ZERO:
            raise InvalidTerms("Interest rate cannot be negative")
        if self.tenure_value <= 0:
            raise InvalidTerms("Tenure must be positive")
        if not 0 <= self.grace_period_days <= MAX_GRACE_PERIOD_DAYS:
            raise InvalidTerms(f"Grace period must be between 0 and {MAX_GRACE_PERIOD_DAYS} days")
        if not ZERO <= self.late_payment_penalty <= Decimal('5'):
            raise InvalidTerms("Late payment penalty must be between 0% and 5%")
        if not ZERO <= self.prepayment_penalty <= Decimal('10'):
            raise InvalidTerms("Prepayment penalty must be between 0% and 10%")
        if self.processing_fee < ZERO:
            raise InvalidTerms("Processing fee cannot be negative")

    def _set(self, name: str, value) -> None:
        object.__setattr__(self, name, value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'offer_type': self.offer_type.value,
            'amount': str(self.amount),
            'interest_rate': str(self.interest_rate),
            'interest_type': self.interest_type.value,
            'tenure_value': self.tenure_value,
            'tenure_unit': self.tenure_unit.value,
            'repayment_type': self.repayment_type.value,
            'repayment_frequency': self.repayment_frequency.value if self.repayment_frequency else None,
            'grace_period_days': self.grace_period_days,
            'late_payment_penalty': str(self.late_payment_penalty),
            'prepayment_penalty': str(self.prepayment_penalty),
            'processing_fee': str(self.processing_fee),
            'purpose': self.purpose,
            'note': self.note
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OfferTerms':
        return cls(
            offer_type=data['offer_type'],
            amount=data['amount'],
            interest_rate=data['interest_rate'],
            interest_type=data.get('interest_type', InterestType.REDUCING.value),
            tenure_value=data['tenure_value'],
            tenure_unit=data['tenure_unit'],
            repayment_type=data['repayment_type'],
            repayment_frequency=data.get('repayment_frequency'),
            grace_period_days=data.get('grace_period_days', 0),
            late_payment_penalty=data.get('late_payment_penalty', '0'),
            prepayment_penalty=data.get('prepayment_penalty', '0'),
            processing_fee=data.get('processing_fee', '0'),
            purpose=data.get('purpose'),
            note=data.get('note')
        )


@dataclass(frozen=True)
class ScheduleEntry:
    """Single installment of a repayment schedule"""
    installment_number: int
    due_date: date
    principal_component: Decimal
    interest_component: Decimal
    total_amount: Decimal
    remaining_balance: Decimal

    def __post_init__(self):
        if self.principal_component + self.interest_component != self.total_amount:
            raise ValueError(
                f"Installment {self.installment_number} total {self.total_amount} does not equal "
                f"principal {self.principal_component} + interest {self.interest_component}"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Stable representation consumed by document renderers"""
        return {
            'installment_number': self.installment_number,
            'due_date': self.due_date.isoformat(),
            'principal_component': str(self.principal_component),
            'interest_component': str(self.interest_component),
            'total_amount': str(self.total_amount),
            'remaining_balance': str(self.remaining_balance)
        }


@dataclass
class Offer(StorageRecord):
    """Loan offer from proposal through repayment"""
    from_user_id: str                   # Proposer
    to_user_phone: str                  # Normalized recipient phone
    terms: OfferTerms
    to_user_id: Optional[str] = None    # Unset until the recipient is known
    to_user_name: Optional[str] = None
    status: OfferStatus = OfferStatus.PENDING

    # Fixed at acceptance
    start_date: Optional[date] = None
    due_date: Optional[date] = None     # Date of the final installment
    current_installment_number: Optional[int] = None
    total_installments: Optional[int] = None

    allow_part_payment: bool = True
    version: int = 0

    def __post_init__(self):
        if self.status in LOAN_STATUSES:
            missing = [
                name for name in ('start_date', 'due_date', 'total_installments',
                                  'current_installment_number')
                if getattr(self, name) is None
            ]
            if missing:
                raise ValueError(
                    f"{self.status.value} offer {self.id} is missing {', '.join(missing)}"
                )
            if not 1 <= self.current_installment_number <= self.total_installments:
                raise ValueError(
                    f"Installment {self.current_installment_number} outside 1..{self.total_installments}"
                )
        else:
            if (self.due_date is not None or self.total_installments is not None
                    or self.current_installment_number is not None):
                raise ValueError(
                    f"{self.status.value} offer {self.id} cannot carry a repayment schedule"
                )

    @property
    def lender_id(self) -> Optional[str]:
        """User who receives repayments"""
        if self.terms.offer_type == OfferType.LEND:
            return self.from_user_id
        return self.to_user_id

    @property
    def borrower_id(self) -> Optional[str]:
        """User who owes repayments"""
        if self.terms.offer_type == OfferType.LEND:
            return self.to_user_id
        return self.from_user_id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def involves(self, user_id: str) -> bool:
        """Check if the user is a party to this offer"""
        return user_id in (self.from_user_id, self.to_user_id)

    def with_changes(self, **changes) -> 'Offer':
        """Copy with changes applied; invariants are re-checked"""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'from_user_id': self.from_user_id,
            'to_user_phone': self.to_user_phone,
            'to_user_id': self.to_user_id,
            'to_user_name': self.to_user_name,
            'terms': self.terms.to_dict(),
            'status': self.status.value,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'current_installment_number': self.current_installment_number,
            'total_installments': self.total_installments,
            'allow_part_payment': self.allow_part_payment,
            'version': self.version
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Offer':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            from_user_id=data['from_user_id'],
            to_user_phone=data['to_user_phone'],
            to_user_id=data.get('to_user_id'),
            to_user_name=data.get('to_user_name'),
            terms=OfferTerms.from_dict(data['terms']),
            status=OfferStatus(data['status']),
            start_date=_optional_date(data.get('start_date')),
            due_date=_optional_date(data.get('due_date')),
            current_installment_number=data.get('current_installment_number'),
            total_installments=data.get('total_installments'),
            allow_part_payment=data.get('allow_part_payment', True),
            version=data.get('version', 0)
        )


@dataclass
class Payment(StorageRecord):
    """Repayment claimed by the borrower and reviewed by the lender"""
    offer_id: str
    from_user_id: str                   # Payer (borrower side)
    to_user_id: str                     # Payee (lender side)
    amount: Decimal
    status: PaymentStatus = PaymentStatus.PENDING
    installment_number: Optional[int] = None
    payment_mode: Optional[str] = None  # e.g. "upi", "cash", "bank_transfer"
    reference: Optional[str] = None     # UTR / transaction reference
    review_note: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            self.amount = to_decimal(self.amount)
        if self.amount <= ZERO:
            raise ValueError("Payment amount must be positive")
        if (self.status == PaymentStatus.PENDING) != (self.reviewed_at is None):
            raise ValueError(
                f"Payment {self.id} status {self.status.value} inconsistent with review time"
            )

    @property
    def is_reviewed(self) -> bool:
        return self.status != PaymentStatus.PENDING

    def with_changes(self, **changes) -> 'Payment':
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'offer_id': self.offer_id,
            'from_user_id': self.from_user_id,
            'to_user_id': self.to_user_id,
            'amount': str(self.amount),
            'status': self.status.value,
            'installment_number': self.installment_number,
            'payment_mode': self.payment_mode,
            'reference': self.reference,
            'review_note': self.review_note,
            'reviewed_by': self.reviewed_by,
            'reviewed_at': self.reviewed_at.isoformat() if self.reviewed_at else None,
            'version': self.version
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Payment':
        reviewed_at = data.get('reviewed_at')
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            offer_id=data['offer_id'],
            from_user_id=data['from_user_id'],
            to_user_id=data['to_user_id'],
            amount=Decimal(data['amount']),
            status=PaymentStatus(data['status']),
            installment_number=data.get('installment_number'),
            payment_mode=data.get('payment_mode'),
            reference=data.get('reference'),
            review_note=data.get('review_note'),
            reviewed_by=data.get('reviewed_by'),
            reviewed_at=datetime.fromisoformat(reviewed_at) if reviewed_at else None,
            version=data.get('version', 0)
        )
