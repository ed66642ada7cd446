"""
Offer endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status

from .deps import LendingSystem, get_lending_system, get_actor
from .schemas import CreateOfferRequest, PartPaymentRequest, SubmitPaymentRequest
from ..models import Actor, OfferStatus


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_offer(
    request: CreateOfferRequest,
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    """Propose a loan to a phone number"""
    offer = system.offer_service.create_offer(
        actor=actor,
        to_user_phone=request.to_user_phone,
        terms=request.terms.to_offer_terms(),
        to_user_name=request.to_user_name,
        start_date=request.start_date,
        allow_part_payment=request.allow_part_payment
    )
    return {"offer": offer.to_dict()}


@router.get("")
async def list_offers(
    status_filter: Optional[str] = Query(None, alias="status"),
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    """Offers sent or received by the caller"""
    offer_status = None
    if status_filter:
        try:
            offer_status = OfferStatus(status_filter)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status_filter}")

    offers = system.offer_service.list_offers(actor, offer_status)
    return {"offers": [offer.to_dict() for offer in offers]}


@router.get("/{offer_id}")
async def get_offer(
    offer_id: str,
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    offer = system.offer_service.get_offer(offer_id, actor)
    return {"offer": offer.to_dict()}


@router.post("/{offer_id}/accept")
async def accept_offer(
    offer_id: str,
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    offer = system.offer_service.accept_offer(offer_id, actor)
    return {"offer": offer.to_dict()}


@router.post("/{offer_id}/decline")
async def decline_offer(
    offer_id: str,
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    offer = system.offer_service.decline_offer(offer_id, actor)
    return {"offer": offer.to_dict()}


@router.post("/{offer_id}/cancel")
async def cancel_offer(
    offer_id: str,
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    offer = system.offer_service.cancel_offer(offer_id, actor)
    return {"offer": offer.to_dict()}


@router.patch("/{offer_id}/part-payment")
async def set_part_payment(
    offer_id: str,
    request: PartPaymentRequest,
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    """Lender allows or disallows part payments"""
    offer = system.offer_service.set_part_payment(offer_id, actor, request.allow_part_payment)
    return {"offer": offer.to_dict()}


@router.post("/{offer_id}/reconcile")
async def reconcile_offer(
    offer_id: str,
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    """Re-derive the installment pointer and completion from approved payments"""
    offer = system.offer_service.reconcile_offer(offer_id, actor)
    return {"offer": offer.to_dict()}


@router.get("/{offer_id}/schedule")
async def get_schedule(
    offer_id: str,
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    """Repayment schedule, the single source for schedule documents"""
    schedule = system.offer_service.get_schedule(offer_id, actor)
    return {"schedule": [entry.to_dict() for entry in schedule]}


@router.get("/{offer_id}/schedule/summary")
async def get_schedule_summary(
    offer_id: str,
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    """Headline figures for contract and KFS documents"""
    summary = system.offer_service.get_schedule_summary(offer_id, actor)
    return {"summary": summary.to_dict()}


@router.get("/{offer_id}/ledger")
async def get_ledger(
    offer_id: str,
    include_installments: bool = False,
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    summary = system.offer_service.get_ledger_summary(offer_id, actor)
    return {"ledger": summary.to_dict(include_installments=include_installments)}


@router.get("/{offer_id}/payment-status")
async def get_payment_status(
    offer_id: str,
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    return {"payment_status": system.offer_service.get_payment_status(offer_id, actor)}


@router.post("/{offer_id}/payments", status_code=status.HTTP_201_CREATED)
async def submit_payment(
    offer_id: str,
    request: SubmitPaymentRequest,
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    """Borrower records a repayment for lender review"""
    payment = system.offer_service.submit_payment(
        offer_id=offer_id,
        actor=actor,
        amount=request.amount,
        installment_number=request.installment_number,
        payment_mode=request.payment_mode,
        reference=request.reference
    )
    return {"payment": payment.to_dict()}


@router.get("/{offer_id}/payments")
async def list_payments(
    offer_id: str,
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    payments = system.offer_service.list_payments(offer_id, actor)
    return {"payments": [payment.to_dict() for payment in payments]}
