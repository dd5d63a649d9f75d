import random
from decimal import Decimal

import pytest

from app.domain.appointments.service import AppointmentService
from app.domain.ledger.service import LedgerService
from app.models import (
    CATEGORY_APPOINTMENT_FEE,
    CATEGORY_DEPOSIT,
    CATEGORY_REFUND,
    CREDIT,
    DEBIT,
    Appointment,
    Notification,
    RedeemCode,
    Transaction,
)
from app.services.notification_service import CATEGORY_WALLET
from app.shared.exceptions import InsufficientFunds, NotFound, Unauthorized, ValidationError
from app.shared.timeutils import minutes_to_time


@pytest.fixture
def ledger(db_session, dispatcher, clock):
    return LedgerService(db_session, dispatcher, clock)


def test_credit_creates_wallet_and_transaction(ledger, factory, db_session):
    patient = factory.patient()

    transaction = ledger.apply_transaction(patient.id, "25.5", CREDIT, CATEGORY_DEPOSIT, "Top up", "REF1")

    wallet = ledger.get_wallet(patient)
    assert wallet.balance == Decimal("25.50")
    assert transaction.amount == Decimal("25.50")
    assert transaction.wallet_id == wallet.id
    assert transaction.reference_id == "REF1"
    assert db_session.query(Transaction).count() == 1


def test_debit_beyond_balance_changes_nothing(ledger, factory, db_session):
    patient = factory.patient(balance="10")

    with pytest.raises(InsufficientFunds):
        ledger.apply_transaction(patient.id, "10.01", DEBIT, CATEGORY_APPOINTMENT_FEE, "Fee", "APPT")

    db_session.expire_all()
    assert ledger.get_wallet(patient).balance == Decimal("10.00")
    assert db_session.query(Transaction).filter(Transaction.type == DEBIT).count() == 0


@pytest.mark.parametrize("amount", ["0", "-5", "abc", None])
def test_non_positive_or_invalid_amount_rejected(ledger, factory, amount):
    patient = factory.patient()
    with pytest.raises(ValidationError):
        ledger.apply_transaction(patient.id, amount, CREDIT, CATEGORY_DEPOSIT, "x", None)


def test_unknown_category_rejected(ledger, factory):
    patient = factory.patient()
    with pytest.raises(ValidationError):
        ledger.apply_transaction(patient.id, "5", CREDIT, "Gift", "x", None)


def test_joined_unit_of_work_rolls_back_with_caller(ledger, factory, db_session):
    patient = factory.patient(balance="100")

    try:
        ledger.apply_transaction(
            patient.id, "30", DEBIT, CATEGORY_APPOINTMENT_FEE, "Fee", "A1", unit_of_work=db_session
        )
        raise RuntimeError("caller failed after the debit")
    except RuntimeError:
        db_session.rollback()

    assert ledger.get_wallet(patient).balance == Decimal("100.00")
    assert db_session.query(Transaction).count() == 1


def test_balance_matches_transactions_after_mixed_operations(ledger, factory):
    patient = factory.patient()
    operations = [
        (CREDIT, CATEGORY_DEPOSIT, "100"),
        (DEBIT, CATEGORY_APPOINTMENT_FEE, "35.75"),
        (CREDIT, CATEGORY_REFUND, "20"),
        (DEBIT, CATEGORY_APPOINTMENT_FEE, "84.25"),
        (CREDIT, CATEGORY_DEPOSIT, "0.01"),
    ]
    for direction, category, amount in operations:
        ledger.apply_transaction(patient.id, amount, direction, category, "op", None)
        assert ledger.is_consistent(ledger.get_wallet(patient))

    with pytest.raises(InsufficientFunds):
        ledger.apply_transaction(patient.id, "1", DEBIT, CATEGORY_APPOINTMENT_FEE, "op", None)
    wallet = ledger.get_wallet(patient)
    assert wallet.balance == Decimal("0.01")
    assert ledger.is_consistent(wallet)


def test_deposit_records_wallet_notification(ledger, factory, dispatcher, db_session):
    patient = factory.patient()

    ledger.deposit(patient, "40")

    assert len(dispatcher.sent_to(patient.id, CATEGORY_WALLET)) == 1
    inbox = db_session.query(Notification).filter(Notification.user_id == patient.id).all()
    assert [n.category for n in inbox] == [CATEGORY_WALLET]
    assert "40.00" in inbox[0].body["en"]


def test_redeem_code_is_single_use_and_case_insensitive(ledger, factory, db_session):
    db_session.add(RedeemCode(code="WELCOME10", amount=Decimal("10")))
    db_session.commit()
    patient = factory.patient()
    other = factory.patient()

    ledger.redeem_code(patient, "welcome10")

    assert ledger.get_wallet(patient).balance == Decimal("10.00")
    with pytest.raises(ValidationError):
        ledger.redeem_code(other, "WELCOME10")
    with pytest.raises(NotFound):
        ledger.redeem_code(other, "NOPE")


def test_manager_cannot_credit_patient_of_other_hospital(ledger, factory):
    own, other = factory.hospital("Own"), factory.hospital("Other")
    manager = factory.manager(own)
    patient = factory.patient(hospitals=[other])

    with pytest.raises(Unauthorized):
        ledger.admin_credit(manager, patient.id, "15")


def test_open_wallet_with_initial_balance(ledger, factory, db_session):
    patient = factory.patient()

    wallet = ledger.open_wallet(patient.id, initial_balance="30")

    assert wallet.balance == Decimal("30.00")
    assert db_session.query(Transaction).one().reference_id == f"INITIAL_{patient.id}"


@pytest.mark.parametrize("seed", [7, 42, 2026])
def test_wallets_stay_consistent_through_appointment_lifecycle(
    seed, ledger, clinic, factory, db_session, dispatcher, clock
):
    rng = random.Random(seed)
    appointments = AppointmentService(db_session, dispatcher, clock)
    staff = factory.staff(clinic["hospital"])
    patients = [factory.patient(balance=str(rng.randint(1, 120))) for _ in range(3)]
    booked = []
    slots = iter(range(200))

    def book(patient, **kwargs):
        n = next(slots)
        date, minutes = clock.day(1 + n // 24), 9 * 60 + (n % 24) * 15
        return appointments.book(
            kwargs.pop("actor", patient),
            clinic["doctor"].id,
            clinic["hospital"].id,
            clinic["service"].id,
            date,
            minutes_to_time(minutes),
            force=True,
            **kwargs,
        )

    for _ in range(60):
        patient = rng.choice(patients)
        step = rng.choice(["deposit", "book", "cash", "cancel", "doctor_cancel"])
        if step == "deposit":
            ledger.deposit(patient, f"{rng.randint(1, 9000) / 100:.2f}")
        elif step == "book":
            try:
                booked.append(book(patient).id)
            except InsufficientFunds:
                pass
        elif step == "cash":
            booked.append(book(patient, actor=staff, patient_id=patient.id, cash_payment=True).id)
        elif booked:
            appointment_id = booked.pop(rng.randrange(len(booked)))
            owner = db_session.get(Appointment, appointment_id).patient
            if step == "cancel":
                appointments.cancel(owner, appointment_id)
            else:
                appointments.doctor_cancel(clinic["doctor"], appointment_id)
                appointments.resolve_cancellation(owner, appointment_id, "Refund")

        db_session.expire_all()
        for each in patients:
            wallet = ledger.get_wallet(each)
            assert wallet.balance >= 0
            assert ledger.is_consistent(wallet)
