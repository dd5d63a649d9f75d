"""Wallet router - FastAPI endpoints for balances, deposits and codes"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import require_manager, require_patient
from ...database import get_db
from ...models import User
from ...services.notification_service import NotificationDispatcher, get_dispatcher
from .schemas import (
    AdminCreditRequest,
    DepositRequest,
    RedeemCodeRequest,
    TransactionResponse,
    WalletResponse,
    transaction_response,
    wallet_response,
)
from .service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["Wallet"])


def get_ledger_service(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> LedgerService:
    """Dependency injection for LedgerService"""
    return LedgerService(db, dispatcher)


@router.get("", response_model=WalletResponse)
async def get_wallet(
    current_user: User = Depends(require_patient),
    service: LedgerService = Depends(get_ledger_service),
):
    """Get the caller's wallet, creating it on first access"""
    return wallet_response(service.get_wallet(current_user))


@router.get("/transactions", response_model=list[TransactionResponse])
async def get_transactions(
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(require_patient),
    service: LedgerService = Depends(get_ledger_service),
):
    return [transaction_response(t) for t in service.get_transactions(current_user, limit)]


@router.post("/deposit", response_model=TransactionResponse)
async def deposit(
    data: DepositRequest,
    current_user: User = Depends(require_patient),
    service: LedgerService = Depends(get_ledger_service),
):
    return transaction_response(service.deposit(current_user, data.amount))


@router.post("/redeem-code", response_model=TransactionResponse)
async def redeem_code(
    data: RedeemCodeRequest,
    current_user: User = Depends(require_patient),
    service: LedgerService = Depends(get_ledger_service),
):
    return transaction_response(service.redeem_code(current_user, data.code))


@router.post("/admin/add-funds", response_model=TransactionResponse)
async def admin_add_funds(
    data: AdminCreditRequest,
    current_user: User = Depends(require_manager),
    service: LedgerService = Depends(get_ledger_service),
):
    """Credit a patient's wallet from the front desk"""
    logger.info(f"💰 Admin credit of {data.amount} to user {data.userId} by {current_user.id}")
    return transaction_response(
        service.admin_credit(current_user, data.userId, data.amount, data.description)
    )
