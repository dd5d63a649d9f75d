"""
Ledger service - atomic wallet credits and debits

Every balance change goes through ``apply_transaction``, which writes the new
balance and its Transaction row together or not at all.
"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ... import database
from ...config import WALLET_CURRENCY
from ...models import (
    CATEGORY_ADMIN_CREDIT,
    CATEGORY_DEPOSIT,
    CATEGORY_INITIAL_BALANCE,
    CREDIT,
    DEBIT,
    ROLE_SUPER_ADMIN,
    TRANSACTION_CATEGORIES,
    Transaction,
    User,
    Wallet,
)
from ...notification_templates import wallet_credited
from ...services.notification_service import (
    CATEGORY_WALLET,
    NotificationDispatcher,
    notify,
    notifying_unit_of_work,
)
from ...shared.exceptions import InsufficientFunds, NotFound, Unauthorized, ValidationError
from ...shared.timeutils import local_now
from .repository import LedgerRepository

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_amount(value) -> Decimal:
    """Coerce to a positive two-decimal amount or raise ValidationError"""
    try:
        amount = Decimal(str(value)).quantize(CENT)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Please provide a valid positive amount.") from None
    if amount <= 0:
        raise ValidationError("Please provide a valid positive amount.")
    return amount


class LedgerService:
    """Service layer for wallet balances"""

    def __init__(
        self,
        db: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = local_now,
        currency: str = WALLET_CURRENCY,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.clock = clock
        self.currency = currency
        self.repo = LedgerRepository()

    # ------------------------------------------------------------------
    # Core ledger operation
    # ------------------------------------------------------------------

    def get_or_create_wallet(self, user_id: int, session: Optional[Session] = None) -> Wallet:
        db = session or self.db
        wallet = self.repo.get_wallet(db, user_id, for_update=True)
        if wallet is None:
            wallet = self.repo.create_wallet(db, user_id, self.currency)
            logger.info(f"✅ Wallet created for user {user_id}")
        return wallet

    def apply_transaction(
        self,
        user_id: int,
        amount,
        direction: str,
        category: str,
        description: str,
        reference_id: Optional[str],
        hospital_id: Optional[int] = None,
        unit_of_work: Optional[Session] = None,
    ) -> Transaction:
        """
        Move ``amount`` in or out of the user's wallet and record it.

        When ``unit_of_work`` is given the writes join that session and the
        caller decides on commit or rollback. Otherwise the ledger commits its
        own unit of work and rolls it back entirely on failure.

        Raises:
            ValidationError: non-positive amount, unknown direction or category
            InsufficientFunds: a debit larger than the current balance
        """
        amount = to_amount(amount)
        if direction not in (CREDIT, DEBIT):
            raise ValidationError(f"Unknown transaction direction: {direction}")
        if category not in TRANSACTION_CATEGORIES:
            raise ValidationError(f"Unknown transaction category: {category}")

        args = (user_id, amount, direction, category, description, reference_id, hospital_id)
        if unit_of_work is not None:
            return self._apply(unit_of_work, *args)

        with database.unit_of_work(self.db):
            return self._apply(self.db, *args)

    def _apply(
        self,
        db: Session,
        user_id: int,
        amount: Decimal,
        direction: str,
        category: str,
        description: str,
        reference_id: Optional[str],
        hospital_id: Optional[int],
    ) -> Transaction:
        wallet = self.get_or_create_wallet(user_id, session=db)
        balance = Decimal(wallet.balance or 0)

        if direction == DEBIT:
            if balance < amount:
                logger.warning(
                    f"⚠️ Insufficient funds for user {user_id}: balance={balance}, debit={amount}"
                )
                raise InsufficientFunds("Insufficient wallet balance.")
            wallet.balance = balance - amount
        else:
            wallet.balance = balance + amount

        transaction = self.repo.add_transaction(
            db,
            wallet_id=wallet.id,
            user_id=user_id,
            hospital_id=hospital_id,
            amount=amount,
            type=direction,
            category=category,
            status="Completed",
            description=description,
            reference_id=str(reference_id) if reference_id is not None else None,
        )
        logger.info(
            f"💰 {direction} {amount} {self.currency} ({category}) for user {user_id}, balance now {wallet.balance}"
        )
        return transaction

    # ------------------------------------------------------------------
    # Wallet operations
    # ------------------------------------------------------------------

    def get_wallet(self, user: User) -> Wallet:
        with database.unit_of_work(self.db):
            wallet = self.get_or_create_wallet(user.id)
        return wallet

    def get_transactions(self, user: User, limit: int = 100) -> list[Transaction]:
        return self.repo.get_transactions(self.db, user.id, limit)

    def open_wallet(self, user_id: int, initial_balance=None) -> Wallet:
        """Create a wallet at registration, optionally seeded with an opening credit"""
        with database.unit_of_work(self.db):
            wallet = self.get_or_create_wallet(user_id)
            if initial_balance is not None and Decimal(str(initial_balance)) > 0:
                self.apply_transaction(
                    user_id,
                    initial_balance,
                    CREDIT,
                    CATEGORY_INITIAL_BALANCE,
                    "Initial wallet balance",
                    f"INITIAL_{user_id}",
                    unit_of_work=self.db,
                )
        return wallet

    def deposit(self, user: User, amount) -> Transaction:
        amount = to_amount(amount)
        reference = f"DEPOSIT_{int(self.clock().timestamp() * 1000)}"
        with notifying_unit_of_work(self.db, self._dispatcher()) as outbox:
            transaction = self.apply_transaction(
                user.id,
                amount,
                CREDIT,
                CATEGORY_DEPOSIT,
                "User deposit via portal.",
                reference,
                unit_of_work=self.db,
            )
            notify(self.db, outbox, user.id, CATEGORY_WALLET, wallet_credited(amount, self.currency))
        return transaction

    def redeem_code(self, user: User, code: str) -> Transaction:
        if not code or not code.strip():
            raise ValidationError("Please provide a code.")

        with notifying_unit_of_work(self.db, self._dispatcher()) as outbox:
            redeem = self.repo.get_redeem_code(self.db, code, for_update=True)
            if redeem is None:
                raise NotFound("Invalid code.")
            if redeem.is_used:
                raise ValidationError("This code has already been used.")

            transaction = self.apply_transaction(
                user.id,
                redeem.amount,
                CREDIT,
                CATEGORY_DEPOSIT,
                f"Redeemed code: {redeem.code}",
                redeem.id,
                unit_of_work=self.db,
            )
            redeem.is_used = True
            redeem.used_by = user.id
            redeem.used_at = self.clock()
            notify(self.db, outbox, user.id, CATEGORY_WALLET, wallet_credited(redeem.amount, self.currency))

        logger.info(f"✅ Code {redeem.code} redeemed by user {user.id}")
        return transaction

    def admin_credit(self, actor: User, target_user_id: int, amount, description: Optional[str] = None) -> Transaction:
        """Staff-side credit; managers may only credit patients of their own hospitals"""
        amount = to_amount(amount)
        target = self.db.query(User).filter(User.id == target_user_id).first()
        if target is None:
            raise NotFound("User not found.")
        if actor.role != ROLE_SUPER_ADMIN and target.hospitals and not (
            actor.hospital_ids() & target.hospital_ids()
        ):
            raise Unauthorized("User does not belong to your hospital")

        with notifying_unit_of_work(self.db, self._dispatcher()) as outbox:
            transaction = self.apply_transaction(
                target.id,
                amount,
                CREDIT,
                CATEGORY_ADMIN_CREDIT,
                description or f"Funds added by {actor.name_en}",
                f"ADMIN_{actor.id}",
                hospital_id=actor.primary_hospital_id,
                unit_of_work=self.db,
            )
            notify(self.db, outbox, target.id, CATEGORY_WALLET, wallet_credited(amount, self.currency))
        return transaction

    def is_consistent(self, wallet: Wallet) -> bool:
        """True when the balance equals the signed sum of the wallet's transactions"""
        total = sum(
            (t.signed_amount for t in self.repo.get_wallet_transactions(self.db, wallet.id)),
            Decimal("0"),
        )
        return Decimal(wallet.balance) == total

    def _dispatcher(self) -> NotificationDispatcher:
        if self.dispatcher is None:
            raise RuntimeError("LedgerService needs a NotificationDispatcher for wallet notifications")
        return self.dispatcher
