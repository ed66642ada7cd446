"""
Test suite for amortization module

Tests EMI math, schedule conservation, lump-sum and interest-only shapes,
tenure normalization and the schedule summary used by contract documents.
"""

import pytest
from decimal import Decimal
from datetime import date, timedelta

from loan_offers.amortization import (
    compute_schedule, schedule_for_terms, summarize_schedule, verify_schedule,
    calculate_emi, tenure_in_months, number_of_periods, add_months,
    DAYS_PER_MONTH
)
from loan_offers.errors import InvalidTerms, ScheduleIntegrityError
from loan_offers.models import (
    OfferTerms, ScheduleEntry, TenureUnit, RepaymentType, RepaymentFrequency,
    InterestType, OfferType
)


START = date(2024, 1, 15)


def emi_schedule(amount="50000", rate="12", tenure=12, unit=TenureUnit.MONTHS, **kwargs):
    return compute_schedule(
        amount=Decimal(amount),
        annual_rate_percent=Decimal(rate),
        tenure_value=tenure,
        tenure_unit=unit,
        repayment_type=RepaymentType.EMI,
        start_date=START,
        **kwargs
    )


class TestEMISchedule:
    """Test reducing-balance EMI schedules"""

    def test_reference_loan(self):
        """50000 at 12% over 12 months"""
        schedule = emi_schedule()

        assert len(schedule) == 12
        assert schedule[0].total_amount == Decimal('4442.44')
        assert schedule[0].interest_component == Decimal('500.00')
        assert schedule[0].principal_component == Decimal('3942.44')
        assert schedule[0].remaining_balance == Decimal('46057.56')
        assert schedule[-1].remaining_balance == Decimal('0')

    def test_second_installment_uses_reduced_balance(self):
        """Interest is charged on the balance left after installment 1"""
        schedule = emi_schedule()

        assert schedule[1].interest_component == Decimal('460.58')
        assert schedule[1].principal_component == Decimal('3981.86')
        assert schedule[1].remaining_balance == Decimal('42075.70')

    def test_calculate_emi(self):
        assert calculate_emi(Decimal('50000'), Decimal('0.01'), 12) == Decimal('4442.44')

    def test_all_but_last_installment_equal_emi(self):
        schedule = emi_schedule(amount="250000", rate="10.5", tenure=36)
        emi = schedule[0].total_amount

        assert all(entry.total_amount == emi for entry in schedule[:-1])
        assert abs(schedule[-1].total_amount - emi) < Decimal('1.00')

    @pytest.mark.parametrize("amount,rate,tenure", [
        ("50000", "12", 12),
        ("1", "12", 12),
        ("99999.99", "7.25", 7),
        ("1000000", "24", 60),
        ("12345.67", "0.5", 18),
        ("500", "36", 3),
    ])
    def test_schedule_conservation(self, amount, rate, tenure):
        """Principal components add back up to the amount, final balance is zero"""
        schedule = emi_schedule(amount=amount, rate=rate, tenure=tenure)
        principal_total = sum(entry.principal_component for entry in schedule)

        assert abs(principal_total - Decimal(amount)) <= Decimal('0.01')
        assert schedule[-1].remaining_balance == Decimal('0')
        assert [e.installment_number for e in schedule] == list(range(1, tenure + 1))

    def test_components_sum_to_total(self):
        for entry in emi_schedule(amount="77777.77", rate="13.3", tenure=24):
            assert entry.principal_component + entry.interest_component == entry.total_amount

    def test_due_dates_monthly_from_start(self):
        schedule = emi_schedule()

        assert schedule[0].due_date == date(2024, 2, 15)
        assert schedule[11].due_date == date(2025, 1, 15)
        for previous, current in zip(schedule, schedule[1:]):
            assert current.due_date > previous.due_date

    def test_month_end_start_date_clamps(self):
        """A start on the 31st falls on the last day of shorter months"""
        schedule = compute_schedule(
            amount=Decimal('3000'), annual_rate_percent=Decimal('12'), tenure_value=3,
            tenure_unit=TenureUnit.MONTHS, repayment_type=RepaymentType.EMI,
            start_date=date(2024, 1, 31)
        )

        assert schedule[0].due_date == date(2024, 2, 29)
        assert schedule[1].due_date == date(2024, 3, 31)
        assert schedule[2].due_date == date(2024, 4, 30)

    def test_rate_monotonicity(self):
        """Raising the rate never lowers total interest"""
        previous = Decimal('-1')
        for rate in range(0, 31, 2):
            schedule = emi_schedule(amount="80000", rate=str(rate), tenure=24)
            total_interest = sum(entry.interest_component for entry in schedule)
            assert total_interest >= previous
            previous = total_interest

    def test_recomputation_is_identical(self):
        first = emi_schedule()
        second = emi_schedule()

        assert [e.to_dict() for e in first] == [e.to_dict() for e in second]

    def test_accepts_string_inputs(self):
        schedule = compute_schedule(
            amount="50000", annual_rate_percent="12", tenure_value=12,
            tenure_unit="months", repayment_type="emi", start_date=START
        )
        assert schedule[0].total_amount == Decimal('4442.44')


class TestZeroRate:
    """Test zero-interest schedules"""

    def test_even_split(self):
        schedule = emi_schedule(amount="12000", rate="0", tenure=12)

        assert all(entry.principal_component == Decimal('1000.00') for entry in schedule)
        assert all(entry.interest_component == Decimal('0') for entry in schedule)
        assert schedule[-1].remaining_balance == Decimal('0')

    def test_final_installment_absorbs_residue(self):
        schedule = emi_schedule(amount="10000", rate="0", tenure=3)

        assert [e.principal_component for e in schedule] == [
            Decimal('3333.33'), Decimal('3333.33'), Decimal('3333.34')
        ]
        assert schedule[-1].remaining_balance == Decimal('0')


class TestTenureNormalization:
    """Test tenure conversion to periods"""

    def test_years_to_months(self):
        assert tenure_in_months(2, TenureUnit.YEARS) == 24

    def test_days_round_up_to_months(self):
        assert DAYS_PER_MONTH == 30
        assert tenure_in_months(30, TenureUnit.DAYS) == 1
        assert tenure_in_months(31, TenureUnit.DAYS) == 2
        assert tenure_in_months(45, TenureUnit.DAYS) == 2
        assert tenure_in_months(90, TenureUnit.DAYS) == 3

    def test_day_tenure_emi(self):
        schedule = emi_schedule(amount="10000", rate="12", tenure=45, unit=TenureUnit.DAYS)
        assert len(schedule) == 2

    def test_year_tenure_emi(self):
        schedule = emi_schedule(amount="10000", rate="12", tenure=1, unit=TenureUnit.YEARS)
        assert len(schedule) == 12

    def test_number_of_periods(self):
        assert number_of_periods(12, RepaymentFrequency.MONTHLY) == 12
        assert number_of_periods(12, RepaymentFrequency.QUARTERLY) == 4
        assert number_of_periods(3, RepaymentFrequency.WEEKLY) == 13
        assert number_of_periods(1, RepaymentFrequency.QUARTERLY) == 1
        assert number_of_periods(6, RepaymentFrequency.BI_WEEKLY) == 13

    def test_add_months_across_year(self):
        assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)


class TestFrequencies:
    """Test non-monthly installment frequencies"""

    def test_weekly_schedule(self):
        schedule = emi_schedule(amount="10000", rate="10", tenure=3,
                                repayment_frequency=RepaymentFrequency.WEEKLY)

        assert len(schedule) == 13
        assert schedule[0].due_date == START + timedelta(days=7)
        assert schedule[12].due_date == START + timedelta(days=91)
        assert schedule[-1].remaining_balance == Decimal('0')

    def test_quarterly_schedule(self):
        schedule = emi_schedule(amount="40000", rate="8", tenure=12,
                                repayment_frequency=RepaymentFrequency.QUARTERLY)

        assert len(schedule) == 4
        assert schedule[0].interest_component == Decimal('800.00')
        assert schedule[0].due_date == date(2024, 4, 15)
        assert schedule[3].due_date == date(2025, 1, 15)


class TestLumpSum:
    """Test full-payment schedules"""

    def lump_sum(self, amount, rate, tenure, unit, interest_type):
        return compute_schedule(
            amount=Decimal(amount), annual_rate_percent=Decimal(rate),
            tenure_value=tenure, tenure_unit=unit,
            repayment_type=RepaymentType.FULL_PAYMENT, start_date=START,
            interest_type=interest_type
        )

    def test_fixed_interest(self):
        schedule = self.lump_sum("100000", "10", 2, TenureUnit.YEARS, InterestType.FIXED)

        assert len(schedule) == 1
        assert schedule[0].interest_component == Decimal('20000.00')
        assert schedule[0].total_amount == Decimal('120000.00')
        assert schedule[0].due_date == date(2026, 1, 15)
        assert schedule[0].remaining_balance == Decimal('0')

    def test_reducing_interest_compounds_yearly(self):
        schedule = self.lump_sum("100000", "10", 2, TenureUnit.YEARS, InterestType.REDUCING)
        assert schedule[0].interest_component == Decimal('21000.00')

    def test_day_tenure(self):
        schedule = self.lump_sum("10000", "12", 73, TenureUnit.DAYS, InterestType.FIXED)

        assert schedule[0].interest_component == Decimal('240.00')
        assert schedule[0].due_date == START + timedelta(days=73)

    def test_month_tenure(self):
        schedule = self.lump_sum("60000", "12", 6, TenureUnit.MONTHS, InterestType.FIXED)

        assert schedule[0].interest_component == Decimal('3600.00')
        assert schedule[0].due_date == date(2024, 7, 15)


class TestInterestOnly:
    """Test interest-only schedules"""

    def test_principal_repaid_at_end(self):
        schedule = compute_schedule(
            amount=Decimal('100000'), annual_rate_percent=Decimal('12'), tenure_value=6,
            tenure_unit=TenureUnit.MONTHS, repayment_type=RepaymentType.INTEREST_ONLY,
            start_date=START
        )

        assert len(schedule) == 6
        assert all(entry.interest_component == Decimal('1000.00') for entry in schedule)
        assert all(entry.principal_component == Decimal('0') for entry in schedule[:-1])
        assert schedule[-1].total_amount == Decimal('101000.00')
        assert schedule[4].remaining_balance == Decimal('100000')
        assert schedule[-1].remaining_balance == Decimal('0')


class TestInvalidInputs:
    """Test rejection of malformed terms"""

    @pytest.mark.parametrize("amount,rate,tenure", [
        ("0", "12", 12),
        ("-100", "12", 12),
        ("1000", "-1", 12),
        ("1000", "12", 0),
        ("1000", "12", -3),
    ])
    def test_invalid_terms(self, amount, rate, tenure):
        with pytest.raises(InvalidTerms):
            emi_schedule(amount=amount, rate=rate, tenure=tenure)

    def test_unknown_tenure_unit(self):
        with pytest.raises(InvalidTerms):
            compute_schedule(
                amount="1000", annual_rate_percent="12", tenure_value=2,
                tenure_unit="weeks", repayment_type="emi", start_date=START
            )

    def test_unknown_repayment_type(self):
        with pytest.raises(InvalidTerms):
            compute_schedule(
                amount="1000", annual_rate_percent="12", tenure_value=2,
                tenure_unit="months", repayment_type="balloon", start_date=START
            )

    def test_non_numeric_amount(self):
        with pytest.raises(InvalidTerms):
            compute_schedule(amount="lots", annual_rate_percent="12", tenure_value=12,
                             tenure_unit="months", repayment_type="emi", start_date=START)


class TestVerifySchedule:
    """Test postcondition checks"""

    def entry(self, number, due, principal, interest, balance):
        return ScheduleEntry(
            installment_number=number,
            due_date=due,
            principal_component=Decimal(principal),
            interest_component=Decimal(interest),
            total_amount=Decimal(principal) + Decimal(interest),
            remaining_balance=Decimal(balance)
        )

    def test_valid_schedule_passes(self):
        verify_schedule([
            self.entry(1, date(2024, 2, 1), "500", "10", "500"),
            self.entry(2, date(2024, 3, 1), "500", "5", "0"),
        ], Decimal('1000'))

    def test_gap_in_numbering(self):
        with pytest.raises(ScheduleIntegrityError):
            verify_schedule([
                self.entry(1, date(2024, 2, 1), "500", "10", "500"),
                self.entry(3, date(2024, 3, 1), "500", "5", "0"),
            ], Decimal('1000'))

    def test_principal_not_conserved(self):
        with pytest.raises(ScheduleIntegrityError):
            verify_schedule([
                self.entry(1, date(2024, 2, 1), "500", "10", "500"),
                self.entry(2, date(2024, 3, 1), "499", "5", "0"),
            ], Decimal('1000'))

    def test_nonzero_final_balance(self):
        with pytest.raises(ScheduleIntegrityError):
            verify_schedule([
                self.entry(1, date(2024, 2, 1), "1000", "10", "0.02"),
            ], Decimal('1000'))

    def test_due_dates_must_increase(self):
        with pytest.raises(ScheduleIntegrityError):
            verify_schedule([
                self.entry(1, date(2024, 2, 1), "500", "10", "500"),
                self.entry(2, date(2024, 2, 1), "500", "5", "0"),
            ], Decimal('1000'))

    def test_empty_schedule(self):
        with pytest.raises(ScheduleIntegrityError):
            verify_schedule([], Decimal('1000'))

    def test_entry_total_must_match_components(self):
        with pytest.raises(ValueError):
            ScheduleEntry(
                installment_number=1, due_date=date(2024, 2, 1),
                principal_component=Decimal('100'), interest_component=Decimal('1'),
                total_amount=Decimal('102'), remaining_balance=Decimal('0')
            )


class TestScheduleSummary:
    """Test headline figures for documents"""

    def test_reference_summary(self):
        terms = OfferTerms(
            offer_type=OfferType.LEND, amount="50000", interest_rate="12",
            tenure_value=12, tenure_unit="months", repayment_type="emi"
        )
        schedule = schedule_for_terms(terms, START)
        summary = summarize_schedule(schedule, terms)
        total_interest = sum(entry.interest_component for entry in schedule)

        assert summary.installment_amount == Decimal('4442.44')
        assert summary.number_of_payments == 12
        assert summary.total_interest == total_interest
        assert summary.total_repayable == Decimal('50000') + total_interest
        assert summary.effective_annual_rate == Decimal('12.68')
        assert summary.annual_percentage_rate == (total_interest / 500).quantize(Decimal('0.01'))
        assert summary.first_due_date == date(2024, 2, 15)
        assert summary.final_due_date == date(2025, 1, 15)

    def test_processing_fee_raises_apr(self):
        base = OfferTerms(
            offer_type="lend", amount="10000", interest_rate="12",
            tenure_value=1, tenure_unit="years", repayment_type="full_payment",
            interest_type="fixed"
        )
        with_fee = OfferTerms(
            offer_type="lend", amount="10000", interest_rate="12",
            tenure_value=1, tenure_unit="years", repayment_type="full_payment",
            interest_type="fixed", processing_fee="100"
        )

        assert summarize_schedule(schedule_for_terms(base, START), base).annual_percentage_rate == Decimal('12.00')
        assert summarize_schedule(schedule_for_terms(with_fee, START), with_fee).annual_percentage_rate == Decimal('13.00')

    def test_to_dict_is_plain_data(self):
        terms = OfferTerms(
            offer_type="lend", amount="50000", interest_rate="12",
            tenure_value=12, tenure_unit="months", repayment_type="emi"
        )
        data = summarize_schedule(schedule_for_terms(terms, START), terms).to_dict()

        assert data['installment_amount'] == '4442.44'
        assert data['first_due_date'] == '2024-02-15'
