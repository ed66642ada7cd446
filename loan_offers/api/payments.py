"""
Payment endpoints
"""

from fastapi import APIRouter, Depends

from .deps import LendingSystem, get_lending_system, get_actor
from .schemas import ReviewPaymentRequest
from ..models import Actor


router = APIRouter()


@router.get("/{payment_id}")
async def get_payment(
    payment_id: str,
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    payment = system.offer_service.get_payment(payment_id, actor)
    return {"payment": payment.to_dict()}


@router.post("/{payment_id}/review")
async def review_payment(
    payment_id: str,
    request: ReviewPaymentRequest,
    actor: Actor = Depends(get_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    """Lender approves or rejects a submitted payment"""
    payment = system.offer_service.review_payment(
        payment_id=payment_id,
        actor=actor,
        decision=request.decision,
        note=request.note
    )
    offer = system.offer_service.get_offer(payment.offer_id, actor)
    return {"payment": payment.to_dict(), "offer_status": offer.status.value}
