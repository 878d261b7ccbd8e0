from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from passkey_rp.errors import (
    ChallengeInvalidError,
    TransactionMismatchError,
    UnknownUserError,
)
from passkey_rp.models import Transaction, TransactionStatus
from passkey_rp.services import ensure_user, get_transaction
from passkey_rp.stepup import StepUpEngine, generate_otp, to_amount

OWNER = "demo-user-1"


@pytest.mark.parametrize(
    "amount, expected",
    [
        ("150.00", False),
        (Decimal("150"), False),
        (150, False),
        ("150.01", True),
        ("0.01", False),
        ("200", True),
    ],
)
def test_threshold_is_strictly_greater_than(engine, amount, expected):
    assert engine.requires_stepup(amount) is expected


def test_amount_at_threshold_completes_directly(engine, counter, otp_sender):
    decision = engine.submit_transaction(OWNER, "150.00", "Groceries")

    assert decision.requires_stepup is False
    assert decision.transaction["status"] == "completed"
    assert decision.transaction["amount"] == "150.00"
    assert decision.transaction["stepup_completed"] is False
    assert otp_sender.sent == {}
    assert counter.snapshot().stepup_triggered == 0


def test_amount_just_above_threshold_requires_stepup(engine, counter, otp_sender):
    decision = engine.submit_transaction(OWNER, "150.01", "Rent share")

    assert decision.requires_stepup is True
    assert decision.transaction is None
    assert decision.transaction_id in otp_sender.sent
    assert counter.snapshot().stepup_triggered == 1


def test_stepup_scenario_and_otp_replay(engine, counter, otp_sender, db):
    decision = engine.submit_transaction(OWNER, 200, "New laptop")
    assert decision.requires_stepup is True
    otp = otp_sender.sent[decision.transaction_id]
    assert len(otp) == 6 and otp.isdigit()
    with db.session() as session:
        assert get_transaction(session, decision.transaction_id).status == TransactionStatus.PENDING

    transaction = engine.verify_stepup(otp, decision.transaction_id)

    assert transaction["status"] == "completed"
    assert transaction["stepup_completed"] is True
    assert transaction["completed_at"] is not None
    assert counter.snapshot().stepup_completed == 1
    with pytest.raises(ChallengeInvalidError):
        engine.verify_stepup(otp, decision.transaction_id)
    assert counter.snapshot().stepup_completed == 1


def test_otp_for_another_transaction_is_a_mismatch(engine, otp_sender, db):
    first = engine.submit_transaction(OWNER, 500, "First")
    second = engine.submit_transaction(OWNER, 600, "Second")

    with pytest.raises(TransactionMismatchError):
        engine.verify_stepup(otp_sender.sent[first.transaction_id], second.transaction_id)

    with db.session() as session:
        assert get_transaction(session, second.transaction_id).status == TransactionStatus.PENDING
    # The OTP was spent by the mismatched attempt.
    with pytest.raises(ChallengeInvalidError):
        engine.verify_stepup(otp_sender.sent[first.transaction_id], first.transaction_id)


def test_wrong_otp_is_invalid(engine, otp_sender):
    decision = engine.submit_transaction(OWNER, 300, "Flights")
    wrong = "000000" if otp_sender.sent[decision.transaction_id] != "000000" else "111111"

    with pytest.raises(ChallengeInvalidError):
        engine.verify_stepup(wrong, decision.transaction_id)


def test_expired_otp_leaves_transaction_pending(engine, otp_sender, clock, settings, db):
    decision = engine.submit_transaction(OWNER, 300, "Flights")
    clock.advance(seconds=settings.otp_ttl_seconds + 1)

    with pytest.raises(ChallengeInvalidError):
        engine.verify_stepup(otp_sender.sent[decision.transaction_id], decision.transaction_id)

    assert engine.expire_pending() == 0
    with db.session() as session:
        assert get_transaction(session, decision.transaction_id).status == TransactionStatus.PENDING


def test_expire_pending_fails_stale_transactions_when_configured(engine, settings, clock, db):
    settings.pending_transaction_ttl_seconds = 600
    stale = engine.submit_transaction(OWNER, 900, "Stale")
    direct = engine.submit_transaction(OWNER, 20, "Coffee")
    clock.advance(seconds=601)
    fresh = engine.submit_transaction(OWNER, 900, "Fresh")

    assert engine.expire_pending() == 1

    with db.session() as session:
        assert get_transaction(session, stale.transaction_id).status == TransactionStatus.FAILED
        assert get_transaction(session, direct.transaction_id).status == TransactionStatus.COMPLETED
        assert get_transaction(session, fresh.transaction_id).status == TransactionStatus.PENDING


def test_failed_transaction_cannot_be_completed(engine, otp_sender, settings, clock):
    settings.pending_transaction_ttl_seconds = 60
    settings.otp_ttl_seconds = 600
    decision = engine.submit_transaction(OWNER, 900, "Late")
    clock.advance(seconds=61)
    engine.expire_pending()

    with pytest.raises(TransactionMismatchError):
        engine.verify_stepup(otp_sender.sent[decision.transaction_id], decision.transaction_id)


def test_demo_identifiers_map_to_deterministic_users(engine, db):
    first = engine.submit_transaction("demo-user-7", 10, "One")
    second = engine.submit_transaction("demo-user-7", 10, "Two")

    assert first.transaction["user_id"] == second.transaction["user_id"]
    assert len(engine.list_for_user("demo-user-7")) == 2
    assert engine.list_for_user("demo-user-8") == []


def test_uuid_owner_must_exist(engine, db):
    with db.session() as session:
        user = ensure_user(session, "zoe@example.com", "Zoe")
        user_id = user.id

    decision = engine.submit_transaction(user_id, 25, "Books", currency="USD")
    assert decision.transaction["currency"] == "USD"

    with pytest.raises(UnknownUserError):
        engine.submit_transaction("00000000-0000-4000-8000-000000000000", 25, "Books")


def test_requires_stepup_is_fixed_at_creation(engine, settings, db):
    decision = engine.submit_transaction(OWNER, 200, "Before threshold change")
    settings.stepup_threshold = Decimal("1000")

    with db.session() as session:
        assert session.get(Transaction, decision.transaction_id).requires_stepup is True


class BrokenOtpSender:
    def send(self, user_id, transaction_id, otp):
        raise RuntimeError("sms gateway down")


def test_failed_otp_delivery_fails_the_transaction(settings, db, challenges, counter, clock):
    engine = StepUpEngine(settings, db, challenges, counter, otp_sender=BrokenOtpSender(), clock=clock)

    with pytest.raises(RuntimeError):
        engine.submit_transaction(OWNER, "200", "Laptop")

    with db.session() as session:
        transaction = session.scalars(select(Transaction)).one()
        assert transaction.requires_stepup is True
        assert transaction.status == TransactionStatus.FAILED


def test_request_metadata_is_recorded(engine, db):
    decision = engine.submit_transaction(
        OWNER, 10, "Snack", ip_address="203.0.113.9", user_agent="pytest"
    )
    with db.session() as session:
        transaction = get_transaction(session, decision.transaction_id)
        assert transaction.ip_address == "203.0.113.9"
        assert transaction.user_agent == "pytest"


@pytest.mark.parametrize("value", ["0", "-5", "abc", "NaN", "Infinity", "1e40"])
def test_invalid_amounts_are_rejected(value):
    with pytest.raises(ValueError):
        to_amount(value)


def test_amounts_are_normalised_to_cents():
    assert str(to_amount(7)) == "7.00"
    assert str(to_amount("150.000")) == "150.00"
    assert to_amount("12.5") == Decimal("12.50")


@pytest.mark.parametrize("value", ["150.001", "150.005", "12.345"])
def test_sub_cent_amounts_are_rejected(engine, db, value):
    with pytest.raises(ValueError):
        engine.submit_transaction(OWNER, value, "Rounding")

    with db.session() as session:
        assert session.scalar(select(func.count()).select_from(Transaction)) == 0


def test_generate_otp_has_fixed_length():
    for length in (4, 6, 10):
        otp = generate_otp(length)
        assert len(otp) == length
        assert otp.isdigit()
