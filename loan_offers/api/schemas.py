"""
Pydantic schemas for API requests
"""

from datetime import date
from typing import Optional
from pydantic import BaseModel, Field

from ..models import OfferTerms


class OfferTermsModel(BaseModel):
    offer_type: str = Field(..., description="lend or borrow")
    amount: str = Field(..., description="Principal as a decimal string")
    interest_rate: str = Field(..., description="Annual percent as a decimal string")
    interest_type: str = "reducing"
    tenure_value: int
    tenure_unit: str = Field(..., description="days, months or years")
    repayment_type: str = Field(..., description="emi, full_payment or interest_only")
    repayment_frequency: Optional[str] = None
    grace_period_days: int = 0
    late_payment_penalty: str = "0"
    prepayment_penalty: str = "0"
    processing_fee: str = "0"
    purpose: Optional[str] = None
    note: Optional[str] = None

    def to_offer_terms(self) -> OfferTerms:
        return OfferTerms(
            offer_type=self.offer_type,
            amount=self.amount,
            interest_rate=self.interest_rate,
            interest_type=self.interest_type,
            tenure_value=self.tenure_value,
            tenure_unit=self.tenure_unit,
            repayment_type=self.repayment_type,
            repayment_frequency=self.repayment_frequency,
            grace_period_days=self.grace_period_days,
            late_payment_penalty=self.late_payment_penalty,
            prepayment_penalty=self.prepayment_penalty,
            processing_fee=self.processing_fee,
            purpose=self.purpose,
            note=self.note
        )


class CreateOfferRequest(BaseModel):
    to_user_phone: str
    to_user_name: Optional[str] = None
    terms: OfferTermsModel
    start_date: Optional[date] = None
    allow_part_payment: bool = True


class PartPaymentRequest(BaseModel):
    allow_part_payment: bool


class SubmitPaymentRequest(BaseModel):
    amount: str = Field(..., description="Amount paid as a decimal string")
    installment_number: Optional[int] = None
    payment_mode: Optional[str] = None
    reference: Optional[str] = None


class ReviewPaymentRequest(BaseModel):
    decision: str = Field(..., description="approve or reject")
    note: Optional[str] = None
