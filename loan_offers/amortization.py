"""
Amortization Engine

Turns frozen offer terms into a deterministic repayment schedule. Pure
functions only: no storage, no clock, no logging. Every consumer (ledger,
API, document rendering) calls compute_schedule and never re-derives the
math on its own.

Rounding policy: every monetary figure is rounded to paise with
ROUND_HALF_UP at the point it is produced; the final installment absorbs any
rounding residue so the last remaining balance is exactly zero.

Tenure policy: EMI and interest-only tenures are normalized to whole months.
Day tenures use DAYS_PER_MONTH = 30 and round up (ceil(days / 30)). This is a
deliberate approximation kept for compatibility with agreements already
issued; changing it changes real repayment amounts.
"""

from decimal import Decimal, ROUND_CEILING
from datetime import date, timedelta
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
import calendar

from .errors import InvalidTerms, ScheduleIntegrityError
from .models import (
    OfferTerms, ScheduleEntry, TenureUnit, RepaymentType, RepaymentFrequency,
    InterestType
)
from .money import round_money, to_decimal, within_tolerance, ZERO, MINOR_UNIT


DAYS_PER_MONTH = 30
DAYS_PER_YEAR = 365
MONTHS_PER_YEAR = 12

ONE = Decimal('1')
HUNDRED = Decimal('100')


@dataclass(frozen=True)
class ScheduleSummary:
    """Headline figures for contract, KFS and schedule documents"""
    principal: Decimal
    installment_amount: Decimal         # EMI, or the single lump sum
    number_of_payments: int
    total_interest: Decimal
    total_repayable: Decimal
    processing_fee: Decimal
    annual_percentage_rate: Decimal     # Percent, includes fees
    effective_annual_rate: Decimal      # Percent, monthly compounding
    first_due_date: date
    final_due_date: date

    def to_dict(self) -> Dict[str, Any]:
        return {
            'principal': str(self.principal),
            'installment_amount': str(self.installment_amount),
            'number_of_payments': self.number_of_payments,
            'total_interest': str(self.total_interest),
            'total_repayable': str(self.total_repayable),
            'processing_fee': str(self.processing_fee),
            'annual_percentage_rate': str(self.annual_percentage_rate),
            'effective_annual_rate': str(self.effective_annual_rate),
            'first_due_date': self.first_due_date.isoformat(),
            'final_due_date': self.final_due_date.isoformat()
        }


def tenure_in_months(tenure_value: int, tenure_unit: TenureUnit) -> int:
    """Normalize a tenure to whole months (days round up, 30 days a month)"""
    if tenure_unit == TenureUnit.MONTHS:
        return tenure_value
    if tenure_unit == TenureUnit.YEARS:
        return tenure_value * MONTHS_PER_YEAR
    if tenure_unit == TenureUnit.DAYS:
        return -(-tenure_value // DAYS_PER_MONTH)
    raise InvalidTerms(f"Unsupported tenure unit: {tenure_unit}")


def tenure_in_years(tenure_value: int, tenure_unit: TenureUnit) -> Decimal:
    """Exact tenure in years, used for lump-sum interest"""
    value = Decimal(tenure_value)
    if tenure_unit == TenureUnit.YEARS:
        return value
    if tenure_unit == TenureUnit.MONTHS:
        return value / MONTHS_PER_YEAR
    if tenure_unit == TenureUnit.DAYS:
        return value / DAYS_PER_YEAR
    raise InvalidTerms(f"Unsupported tenure unit: {tenure_unit}")


def number_of_periods(months: int, frequency: RepaymentFrequency) -> int:
    """Installment count for a month tenure at the given frequency"""
    if frequency == RepaymentFrequency.MONTHLY:
        return months
    periods = Decimal(months * frequency.payments_per_year) / MONTHS_PER_YEAR
    return int(periods.to_integral_value(rounding=ROUND_CEILING))


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def installment_due_date(start_date: date, frequency: RepaymentFrequency, number: int) -> date:
    """Due date of installment `number`, always offset from the start date"""
    if frequency == RepaymentFrequency.WEEKLY:
        return start_date + timedelta(days=7 * number)
    elif frequency == RepaymentFrequency.BI_WEEKLY:
        return start_date + timedelta(days=14 * number)
    elif frequency == RepaymentFrequency.MONTHLY:
        return add_months(start_date, number)
    elif frequency == RepaymentFrequency.QUARTERLY:
        return add_months(start_date, 3 * number)
    elif frequency == RepaymentFrequency.SEMI_ANNUAL:
        return add_months(start_date, 6 * number)
    elif frequency == RepaymentFrequency.YEARLY:
        return add_months(start_date, 12 * number)
    else:
        raise InvalidTerms(f"Unsupported repayment frequency: {frequency}")


def maturity_date(start_date: date, tenure_value: int, tenure_unit: TenureUnit) -> date:
    """Start date plus the exact tenure"""
    if tenure_unit == TenureUnit.DAYS:
        return start_date + timedelta(days=tenure_value)
    if tenure_unit == TenureUnit.MONTHS:
        return add_months(start_date, tenure_value)
    return add_months(start_date, tenure_value * MONTHS_PER_YEAR)


def calculate_emi(principal: Decimal, periodic_rate: Decimal, periods: int) -> Decimal:
    """
    Equated installment for a reducing-balance loan

    EMI = P * r * (1 + r)^n / ((1 + r)^n - 1), rounded half-up to paise.
    With a zero rate the installment is P / n.
    """
    if periodic_rate == ZERO:
        return round_money(principal / periods)
    factor = (ONE + periodic_rate) ** periods
    return round_money(principal * periodic_rate * factor / (factor - ONE))


def _validate_inputs(amount, annual_rate_percent, tenure_value) -> None:
    if amount <= ZERO:
        raise InvalidTerms("Amount must be positive")
    if annual_rate_percent < ZERO:
        raise InvalidTerms("Interest rate cannot be negative")
    if isinstance(tenure_value, bool) or not isinstance(tenure_value, int) or tenure_value <= 0:
        raise InvalidTerms("Tenure must be a positive whole number")


def _emi_schedule(principal: Decimal, periodic_rate: Decimal, periods: int,
                  start_date: date, frequency: RepaymentFrequency) -> List[ScheduleEntry]:
    emi = calculate_emi(principal, periodic_rate, periods)
    balance = principal
    schedule = []

    for number in range(1, periods + 1):
        interest = round_money(balance * periodic_rate)
        if number == periods:
            principal_part = balance
        else:
            principal_part = min(round_money(emi - interest), balance)
        balance = max(ZERO, balance - principal_part)

        schedule.append(ScheduleEntry(
            installment_number=number,
            due_date=installment_due_date(start_date, frequency, number),
            principal_component=principal_part,
            interest_component=interest,
            total_amount=principal_part + interest,
            remaining_balance=balance
        ))

    return schedule


def _interest_only_schedule(principal: Decimal, periodic_rate: Decimal, periods: int,
                            start_date: date, frequency: RepaymentFrequency) -> List[ScheduleEntry]:
    interest = round_money(principal * periodic_rate)
    schedule = []

    for number in range(1, periods + 1):
        is_last = number == periods
        principal_part = principal if is_last else ZERO
        schedule.append(ScheduleEntry(
            installment_number=number,
            due_date=installment_due_date(start_date, frequency, number),
            principal_component=principal_part,
            interest_component=interest,
            total_amount=principal_part + interest,
            remaining_balance=ZERO if is_last else principal
        ))

    return schedule


def _lump_sum_schedule(principal: Decimal, annual_rate_percent: Decimal, tenure_value: int,
                       tenure_unit: TenureUnit, interest_type: InterestType,
                       start_date: date) -> List[ScheduleEntry]:
    annual_rate = annual_rate_percent / HUNDRED
    years = tenure_in_years(tenure_value, tenure_unit)

    if interest_type == InterestType.FIXED:
        interest = principal * annual_rate * years
    else:
        # Compounded once a year over the whole tenure
        interest = principal * ((ONE + annual_rate) ** years - ONE)
    interest = round_money(interest)

    return [ScheduleEntry(
        installment_number=1,
        due_date=maturity_date(start_date, tenure_value, tenure_unit),
        principal_component=principal,
        interest_component=interest,
        total_amount=principal + interest,
        remaining_balance=ZERO
    )]


def compute_schedule(
    amount,
    annual_rate_percent,
    tenure_value: int,
    tenure_unit: TenureUnit,
    repayment_type: RepaymentType,
    start_date: date,
    interest_type: InterestType = InterestType.REDUCING,
    repayment_frequency: Optional[RepaymentFrequency] = None
) -> List[ScheduleEntry]:
    """
    Compute the repayment schedule for a set of loan terms

    Args:
        amount: Principal in rupees
        annual_rate_percent: Annual interest rate in percent (12 means 12%)
        tenure_value: Tenure length in tenure_unit
        tenure_unit: Days, months or years
        repayment_type: EMI, full payment or interest-only
        start_date: Date the loan starts; installment i falls i periods later
        interest_type: Reducing or fixed; only changes lump-sum interest
        repayment_frequency: Installment frequency, monthly when omitted

    Returns:
        Installments numbered from 1, each with principal, interest, total
        and the balance left after it

    Raises:
        InvalidTerms: If amount <= 0, rate < 0 or tenure <= 0
        ScheduleIntegrityError: If a conservation check fails
    """
    try:
        principal = round_money(to_decimal(amount))
        rate = to_decimal(annual_rate_percent)
        tenure_unit = TenureUnit(tenure_unit)
        repayment_type = RepaymentType(repayment_type)
        interest_type = InterestType(interest_type)
        frequency = RepaymentFrequency(repayment_frequency or RepaymentFrequency.MONTHLY)
    except ValueError as e:
        raise InvalidTerms(str(e))
    _validate_inputs(principal, rate, tenure_value)

    if repayment_type == RepaymentType.FULL_PAYMENT:
        schedule = _lump_sum_schedule(
            principal, rate, tenure_value, tenure_unit, interest_type, start_date
        )
    else:
        months = tenure_in_months(tenure_value, tenure_unit)
        periods = number_of_periods(months, frequency)
        periodic_rate = rate / HUNDRED / frequency.payments_per_year
        if repayment_type == RepaymentType.EMI:
            schedule = _emi_schedule(principal, periodic_rate, periods, start_date, frequency)
        else:
            schedule = _interest_only_schedule(principal, periodic_rate, periods, start_date, frequency)

    verify_schedule(schedule, principal)
    return schedule


def schedule_for_terms(terms: OfferTerms, start_date: date) -> List[ScheduleEntry]:
    """Schedule for an offer's frozen terms"""
    return compute_schedule(
        amount=terms.amount,
        annual_rate_percent=terms.interest_rate,
        tenure_value=terms.tenure_value,
        tenure_unit=terms.tenure_unit,
        repayment_type=terms.repayment_type,
        start_date=start_date,
        interest_type=terms.interest_type,
        repayment_frequency=terms.repayment_frequency
    )


def verify_schedule(schedule: List[ScheduleEntry], principal: Decimal) -> None:
    """
    Check schedule postconditions

    Raises:
        ScheduleIntegrityError: On non-contiguous numbering, principal not
            conserved within one paisa, non-zero final balance, or due
            dates that do not strictly increase
    """
    if not schedule:
        raise ScheduleIntegrityError("Schedule has no installments")

    for index, entry in enumerate(schedule, start=1):
        if entry.installment_number != index:
            raise ScheduleIntegrityError(
                f"Installment {entry.installment_number} found at position {index}"
            )
        if entry.principal_component < ZERO or entry.interest_component < ZERO:
            raise ScheduleIntegrityError(f"Installment {index} has a negative component")

    for previous, current in zip(schedule, schedule[1:]):
        if current.due_date <= previous.due_date:
            raise ScheduleIntegrityError(
                f"Installment {current.installment_number} is not due after "
                f"installment {previous.installment_number}"
            )

    principal_total = sum((entry.principal_component for entry in schedule), ZERO)
    if not within_tolerance(principal_total, principal, MINOR_UNIT):
        raise ScheduleIntegrityError(
            f"Schedule repays {principal_total} of principal {principal}"
        )

    if schedule[-1].remaining_balance != ZERO:
        raise ScheduleIntegrityError(
            f"Final balance is {schedule[-1].remaining_balance}, expected 0"
        )


def summarize_schedule(schedule: List[ScheduleEntry], terms: OfferTerms) -> ScheduleSummary:
    """
    Headline figures derived from an already computed schedule

    APR = ((interest + fees) / principal) / tenure_days * 365 * 100, where
    month and year tenures convert to days on a 365-day year.
    Effective annual rate = (1 + r/12)^12 - 1 on the nominal rate.
    """
    total_interest = sum((entry.interest_component for entry in schedule), ZERO)
    total_principal = sum((entry.principal_component for entry in schedule), ZERO)
    total_repayable = total_principal + total_interest

    if terms.tenure_unit == TenureUnit.DAYS:
        tenure_days = Decimal(terms.tenure_value)
    else:
        tenure_days = tenure_in_years(terms.tenure_value, terms.tenure_unit) * DAYS_PER_YEAR

    apr = ((total_interest + terms.processing_fee) / terms.amount) / tenure_days * DAYS_PER_YEAR * HUNDRED

    nominal = terms.interest_rate / HUNDRED
    effective = ((ONE + nominal / MONTHS_PER_YEAR) ** MONTHS_PER_YEAR - ONE) * HUNDRED

    return ScheduleSummary(
        principal=terms.amount,
        installment_amount=schedule[0].total_amount,
        number_of_payments=len(schedule),
        total_interest=total_interest,
        total_repayable=total_repayable,
        processing_fee=terms.processing_fee,
        annual_percentage_rate=round_money(apr),
        effective_annual_rate=round_money(effective),
        first_due_date=schedule[0].due_date,
        final_due_date=schedule[-1].due_date
    )
