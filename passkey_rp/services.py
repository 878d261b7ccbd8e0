"""Persistence helpers for users, credentials and transactions."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from .models import Credential, Transaction, TransactionStatus, User, utcnow


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


# Users ----------------------------------------------------------------
def ensure_user(
    session: Session,
    username: str,
    display_name: str,
    auth_type: str = "passkey",
) -> User:
    user = get_user_by_username(session, username)
    if user:
        if user.display_name != display_name:
            user.display_name = display_name
        return user
    user = User(username=username, display_name=display_name, auth_type=auth_type)
    session.add(user)
    session.flush()
    return user


def get_user(session: Session, user_id: str) -> User | None:
    user = session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


def get_user_by_username(session: Session, username: str) -> User | None:
    return session.scalar(
        select(User).where(User.username == username, User.is_active.is_(True))
    )


def ensure_demo_user(session: Session, external_id: str, display_name: str = "Demo User") -> User:
    """Map a non-UUID identifier onto a deterministic demo user."""
    user_id = str(uuid.uuid5(uuid.NAMESPACE_DNS, str(external_id)))
    user = session.get(User, user_id)
    if user:
        return user
    user = User(
        id=user_id,
        username=f"demo+{external_id}@example.com",
        display_name=display_name,
        auth_type="demo",
    )
    session.add(user)
    session.flush()
    return user


def resolve_owner(session: Session, owner_id: str) -> User | None:
    if _is_uuid(owner_id):
        return get_user(session, owner_id)
    return ensure_demo_user(session, owner_id)


def touch_last_login(session: Session, user_id: str, when: Optional[datetime] = None) -> None:
    session.execute(
        update(User).where(User.id == user_id).values(last_login_at=when or utcnow())
    )


# Credentials ----------------------------------------------------------
class CredentialRepository:
    """Credential rows scoped to the caller's session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def create(
        self,
        user: User,
        credential_id: bytes,
        public_key: bytes,
        sign_count: int = 0,
        transports: Iterable[str] = (),
    ) -> Credential:
        credential = Credential(
            user_id=user.id,
            credential_id=credential_id,
            public_key=public_key,
            sign_count=sign_count,
            transports=sorted(set(transports)),
            active=True,
        )
        self.session.add(credential)
        self.session.flush()
        return credential

    def find_by_credential_id(self, credential_id: bytes) -> Credential | None:
        return self.session.scalar(
            select(Credential).where(
                Credential.credential_id == credential_id,
                Credential.active.is_(True),
            )
        )

    def find_by_user_id(self, user_id: str) -> List[Credential]:
        return list(
            self.session.scalars(
                select(Credential)
                .where(Credential.user_id == user_id, Credential.active.is_(True))
                .order_by(Credential.created_at.desc())
            )
        )

    def update_counter(
        self,
        credential_id: bytes,
        new_count: int,
        allow_zero: bool = False,
        when: Optional[datetime] = None,
    ) -> bool:
        """Advance the signature counter; False when the stored value is not below ``new_count``.

        The condition is evaluated by the database so concurrent writers against the
        same row cannot both advance from the same stored value.
        """
        advanced = Credential.sign_count < new_count
        if allow_zero and new_count == 0:
            advanced = Credential.sign_count == 0
        result = self.session.execute(
            update(Credential)
            .where(
                Credential.credential_id == credential_id,
                Credential.active.is_(True),
                advanced,
            )
            .values(sign_count=new_count, last_used_at=when or utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def deactivate(self, credential_id: bytes) -> bool:
        result = self.session.execute(
            update(Credential)
            .where(Credential.credential_id == credential_id)
            .values(active=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


# Transactions ---------------------------------------------------------
def create_transaction(
    session: Session,
    user: User,
    amount: Decimal,
    description: str,
    requires_stepup: bool,
    currency: str = "EUR",
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Transaction:
    transaction = Transaction(
        user_id=user.id,
        amount=amount,
        currency=currency,
        description=description,
        requires_stepup=requires_stepup,
        status=TransactionStatus.PENDING,
        stepup_completed=False,
        ip_address=ip_address,
        user_agent=user_agent,
        created_at=created_at or utcnow(),
    )
    session.add(transaction)
    session.flush()
    return transaction


def get_transaction(session: Session, transaction_id: str) -> Transaction | None:
    return session.get(Transaction, transaction_id)


def list_transactions(
    session: Session,
    user_id: Optional[str] = None,
    limit: int = 10,
    offset: int = 0,
) -> List[Transaction]:
    stmt = select(Transaction).order_by(Transaction.created_at.desc())
    if user_id is not None:
        stmt = stmt.where(Transaction.user_id == user_id)
    return list(session.scalars(stmt.limit(limit).offset(offset)))


def transaction_stats(session: Session) -> dict[str, Any]:
    completed = Transaction.status == TransactionStatus.COMPLETED
    row = session.execute(
        select(
            func.count(Transaction.id),
            func.count(case((completed, 1))),
            func.count(case((Transaction.status == TransactionStatus.FAILED, 1))),
            func.count(case((Transaction.requires_stepup.is_(True), 1))),
            func.count(case((Transaction.stepup_completed.is_(True), 1))),
            func.sum(case((completed, Transaction.amount), else_=0)),
            func.max(Transaction.amount),
            func.min(Transaction.amount),
        )
    ).one()
    return {
        "total_transactions": row[0] or 0,
        "completed_transactions": row[1] or 0,
        "failed_transactions": row[2] or 0,
        "stepup_required": row[3] or 0,
        "stepup_completed": row[4] or 0,
        "total_amount": str(row[5] or 0),
        "max_amount": str(row[6]) if row[6] is not None else None,
        "min_amount": str(row[7]) if row[7] is not None else None,
    }
