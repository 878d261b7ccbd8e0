"""Threshold driven step-up authorization for transactions."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Protocol, Union

from sqlalchemy import update

from .analytics import ConversionCounter
from .challenges import ChallengeKind, ChallengeStore, Clock
from .config import RPSettings
from .database import Database
from .errors import (
    ChallengeInvalidError,
    TransactionMismatchError,
    TransactionNotFoundError,
    UnknownUserError,
)
from .logs import log_event, new_request_id
from .models import Transaction, TransactionStatus, utcnow
from .services import create_transaction, get_transaction, list_transactions, resolve_owner

LOGGER = logging.getLogger(__name__)

CENT = Decimal("0.01")

Amount = Union[Decimal, int, float, str]


class OtpSender(Protocol):
    def send(self, user_id: str, transaction_id: str, otp: str) -> None:
        ...


class LoggingOtpSender:
    """Demo delivery: writes the OTP to the log instead of SMS or e-mail."""

    def send(self, user_id: str, transaction_id: str, otp: str) -> None:
        LOGGER.info("OTP for transaction %s (user %s): %s", transaction_id, user_id, otp)


@dataclass
class StepUpDecision:
    requires_stepup: bool
    transaction_id: str
    transaction: Optional[Dict[str, Any]] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "requiresStepUp": self.requires_stepup,
            "transactionId": self.transaction_id,
            "message": self.message,
        }
        if self.transaction is not None:
            payload["transaction"] = self.transaction
        return payload


def to_amount(value: Amount) -> Decimal:
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite() or amount <= 0:
        raise ValueError(f"Invalid amount: {value!r}")
    try:
        cents = amount.quantize(CENT)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    if cents != amount:
        raise ValueError(f"Amount has more than two decimal places: {value!r}")
    return cents


def generate_otp(length: int = 6) -> str:
    return f"{secrets.randbelow(10 ** length):0{length}d}"


class StepUpEngine:
    def __init__(
        self,
        settings: RPSettings,
        db: Database,
        challenges: ChallengeStore,
        counter: ConversionCounter,
        otp_sender: Optional[OtpSender] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.settings = settings
        self.db = db
        self.challenges = challenges
        self.counter = counter
        self.otp_sender = otp_sender or LoggingOtpSender()
        self._clock = clock

    @property
    def threshold(self) -> Decimal:
        return Decimal(self.settings.stepup_threshold)

    def requires_stepup(self, amount: Amount) -> bool:
        return to_amount(amount) > self.threshold

    def submit_transaction(
        self,
        owner_user_id: str,
        amount: Amount,
        description: str,
        currency: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> StepUpDecision:
        req_id = new_request_id()
        value = to_amount(amount)
        log_event(LOGGER, "stepup", "submit.start", req_id, user=owner_user_id, amount=str(value))
        requires_stepup = value > self.threshold

        with self.db.session() as session:
            user = resolve_owner(session, owner_user_id)
            if user is None:
                raise UnknownUserError("User not found")
            transaction = create_transaction(
                session,
                user,
                value,
                description,
                requires_stepup=requires_stepup,
                currency=currency or self.settings.default_currency,
                ip_address=ip_address,
                user_agent=user_agent,
                created_at=self._clock(),
            )
            if not requires_stepup:
                transaction.status = TransactionStatus.COMPLETED
                transaction.completed_at = self._clock()
            session.flush()
            snapshot = transaction.to_dict()
            transaction_id = transaction.id
            user_id = user.id

        if not requires_stepup:
            log_event(LOGGER, "stepup", "submit.direct", req_id, transaction_id=transaction_id)
            return StepUpDecision(
                requires_stepup=False,
                transaction_id=transaction_id,
                transaction=snapshot,
                message="Transaction completed successfully",
            )

        self.counter.increment_stepup("triggered")
        try:
            challenge = self.challenges.issue(
                ChallengeKind.STEPUP,
                subject_user_id=user_id,
                payload={"transaction_id": transaction_id},
                ttl=timedelta(seconds=self.settings.otp_ttl_seconds),
                generator=lambda: generate_otp(self.settings.otp_length),
            )
            self.otp_sender.send(user_id, transaction_id, challenge.value)
        except Exception as exc:
            log_event(
                LOGGER, "stepup", "submit.otp_failed", req_id,
                level=logging.ERROR, transaction_id=transaction_id, error=str(exc),
            )
            self._mark_failed(transaction_id)
            raise
        log_event(
            LOGGER, "stepup", "submit.challenge", req_id,
            transaction_id=transaction_id, expires_at=challenge.expires_at.isoformat(),
        )
        return StepUpDecision(
            requires_stepup=True,
            transaction_id=transaction_id,
            message=f"Step-up authentication required for transactions over {self.threshold}",
        )

    def verify_stepup(self, otp: str, transaction_id: str) -> Dict[str, Any]:
        req_id = new_request_id()
        log_event(LOGGER, "stepup", "verify.start", req_id, transaction_id=transaction_id)
        try:
            challenge = self.challenges.consume(otp, ChallengeKind.STEPUP)
        except ChallengeInvalidError:
            log_event(
                LOGGER, "stepup", "verify.invalid_otp", req_id,
                level=logging.WARNING, transaction_id=transaction_id,
            )
            raise ChallengeInvalidError("Invalid OTP") from None

        if challenge.payload.get("transaction_id") != transaction_id:
            log_event(
                LOGGER, "stepup", "verify.mismatch", req_id,
                level=logging.WARNING, transaction_id=transaction_id,
            )
            raise TransactionMismatchError("Transaction ID mismatch")

        with self.db.session() as session:
            transaction = get_transaction(session, transaction_id)
            if transaction is None:
                raise TransactionNotFoundError("Transaction not found")
            if transaction.status != TransactionStatus.PENDING:
                raise TransactionMismatchError("Transaction is not awaiting step-up")
            transaction.status = TransactionStatus.COMPLETED
            transaction.stepup_completed = True
            transaction.completed_at = self._clock()
            session.flush()
            snapshot = transaction.to_dict()

        self.counter.increment_stepup("completed")
        log_event(LOGGER, "stepup", "verify.success", req_id, transaction_id=transaction_id)
        return snapshot

    def expire_pending(self, now: Optional[datetime] = None) -> int:
        """Fail step-up transactions whose OTP window has long passed.

        Disabled unless ``pending_transaction_ttl_seconds`` is configured.
        """
        ttl = self.settings.pending_transaction_ttl_seconds
        if ttl is None:
            return 0
        cutoff = (now or self._clock()) - timedelta(seconds=ttl)
        with self.db.session() as session:
            result = session.execute(
                update(Transaction)
                .where(
                    Transaction.status == TransactionStatus.PENDING,
                    Transaction.requires_stepup.is_(True),
                    Transaction.created_at < cutoff,
                )
                .values(status=TransactionStatus.FAILED)
                .execution_options(synchronize_session=False)
            )
            expired = result.rowcount or 0
        if expired:
            log_event(LOGGER, "stepup", "expire", new_request_id(), count=expired)
        return expired

    def _mark_failed(self, transaction_id: str) -> None:
        with self.db.session() as session:
            session.execute(
                update(Transaction)
                .where(
                    Transaction.id == transaction_id,
                    Transaction.status == TransactionStatus.PENDING,
                )
                .values(status=TransactionStatus.FAILED)
                .execution_options(synchronize_session=False)
            )

    def list_for_user(self, owner_user_id: Optional[str] = None, limit: int = 10) -> list[Dict[str, Any]]:
        with self.db.session() as session:
            user_id = None
            if owner_user_id is not None:
                user = resolve_owner(session, owner_user_id)
                if user is None:
                    return []
                user_id = user.id
            return [t.to_dict() for t in list_transactions(session, user_id, limit=limit)]
