"""Ledger repository - Database operations for wallets and transactions"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import RedeemCode, Transaction, Wallet


class LedgerRepository:
    """Repository for wallet and transaction database operations"""

    @staticmethod
    def get_wallet(db: Session, user_id: int, for_update: bool = False) -> Optional[Wallet]:
        query = db.query(Wallet).filter(Wallet.user_id == user_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def create_wallet(db: Session, user_id: int, currency: str) -> Wallet:
        wallet = Wallet(user_id=user_id, balance=0, currency=currency)
        db.add(wallet)
        db.flush()
        return wallet

    @staticmethod
    def add_transaction(db: Session, **fields) -> Transaction:
        transaction = Transaction(**fields)
        db.add(transaction)
        db.flush()
        return transaction

    @staticmethod
    def get_transactions(db: Session, user_id: int, limit: int = 100) -> list[Transaction]:
        return (
            db.query(Transaction)
            .filter(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def get_wallet_transactions(db: Session, wallet_id: int) -> list[Transaction]:
        return db.query(Transaction).filter(Transaction.wallet_id == wallet_id).all()

    @staticmethod
    def get_redeem_code(db: Session, code: str, for_update: bool = False) -> Optional[RedeemCode]:
        query = db.query(RedeemCode).filter(RedeemCode.code == code.strip().upper())
        if for_update:
            query = query.with_for_update()
        return query.first()
