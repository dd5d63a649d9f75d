"""Ledger domain schemas - Pydantic models for wallet requests and responses"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class DepositRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)


class RedeemCodeRequest(BaseModel):
    code: str

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v):
        v = (v or "").strip()
        if not v:
            raise ValueError("Please provide a code.")
        return v.upper()


class AdminCreditRequest(BaseModel):
    userId: int
    amount: Decimal = Field(..., gt=0)
    description: Optional[str] = None


class WalletResponse(BaseModel):
    id: int
    userId: int
    balance: Decimal
    currency: str


class TransactionResponse(BaseModel):
    id: int
    walletId: int
    hospitalId: Optional[int] = None
    amount: Decimal
    type: str
    category: str
    status: str
    description: Optional[str] = None
    referenceId: Optional[str] = None
    createdAt: Optional[datetime] = None


def wallet_response(wallet) -> WalletResponse:
    return WalletResponse(
        id=wallet.id, userId=wallet.user_id, balance=wallet.balance, currency=wallet.currency
    )


def transaction_response(t) -> TransactionResponse:
    return TransactionResponse(
        id=t.id,
        walletId=t.wallet_id,
        hospitalId=t.hospital_id,
        amount=t.amount,
        type=t.type,
        category=t.category,
        status=t.status,
        description=t.description,
        referenceId=t.reference_id,
        createdAt=t.created_at,
    )
