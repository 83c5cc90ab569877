# app/api/routes/payments.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.user import User
from app.core.capabilities import Capability, has_capability
from app.core.exceptions import InvalidSignature, ReferenceNotFound
from app.schemas.payment import PaymentTransactionResponse, WebhookAck
from app.schemas.vote import VoteFlowResponse, flow_response
from app.api.deps import get_current_user, get_voting_service
from app.services import ledger_service
from app.services.voting_service import VotingService

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])

@router.get("/verify/{reference}", response_model=VoteFlowResponse)
async def verify_payment(
    reference: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    voting: VotingService = Depends(get_voting_service)
):
    """Client poll after the checkout redirect"""
    transaction = await ledger_service.get_transaction(db, reference)
    if transaction is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=ReferenceNotFound.message)

    # Only the payer (or a reconciler) may drive someone's payment
    if transaction.user_id != current_user.id and not has_capability(current_user, Capability.RECONCILE):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=ReferenceNotFound.message)

    try:
        result = await voting.confirm_payment(db, reference, source="poll")
    except ReferenceNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    return flow_response(result)

@router.post("/webhook", response_model=WebhookAck)
async def paystack_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    voting: VotingService = Depends(get_voting_service)
):
    """Paystack event push. Authenticated by x-paystack-signature."""
    raw_body = await request.body()
    signature = request.headers.get("x-paystack-signature")

    try:
        result = await voting.handle_webhook(db, raw_body, signature)
    except InvalidSignature as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)

    # Always acknowledge an authenticated event so the gateway stops retrying
    return WebhookAck(state=result.state.value if result else None)

@router.get("/history", response_model=List[PaymentTransactionResponse])
async def get_payment_history(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """The caller's payment transactions, newest first"""
    return await ledger_service.list_user_transactions(db, current_user.id)
