"""Single-use challenge store for registration, authentication and step-up ceremonies."""

from __future__ import annotations

import dataclasses
import enum
import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from .database import Database
from .errors import ChallengeInvalidError
from .models import ChallengeRecord, as_utc, utcnow

LOGGER = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(minutes=5)
MAX_ISSUE_ATTEMPTS = 32

Clock = Callable[[], datetime]


class ChallengeKind(str, enum.Enum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"
    STEPUP = "stepup"


def random_challenge(size: int = 32) -> str:
    return secrets.token_urlsafe(size)


@dataclass
class Challenge:
    value: str
    kind: ChallengeKind
    created_at: datetime
    expires_at: datetime
    subject_user_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    consumed: bool = False

    def is_live(self, now: datetime) -> bool:
        return not self.consumed and now <= self.expires_at


class ChallengeStore(Protocol):
    def issue(
        self,
        kind: ChallengeKind,
        subject_user_id: Optional[str] = None,
        payload: Optional[Mapping[str, Any]] = None,
        ttl: Optional[timedelta] = None,
        generator: Optional[Callable[[], str]] = None,
    ) -> Challenge:
        ...

    def consume(self, value: str, expected_kind: ChallengeKind) -> Challenge:
        ...

    def sweep(self, now: Optional[datetime] = None) -> int:
        ...


class InMemoryChallengeStore:
    """Process-local store; a single lock makes consume a check-and-set."""

    def __init__(self, clock: Clock = utcnow, default_ttl: timedelta = DEFAULT_TTL) -> None:
        self._clock = clock
        self._default_ttl = default_ttl
        self._challenges: Dict[str, Challenge] = {}
        self._lock = threading.Lock()

    def issue(
        self,
        kind: ChallengeKind,
        subject_user_id: Optional[str] = None,
        payload: Optional[Mapping[str, Any]] = None,
        ttl: Optional[timedelta] = None,
        generator: Optional[Callable[[], str]] = None,
    ) -> Challenge:
        generate = generator or random_challenge
        now = self._clock()
        with self._lock:
            for _ in range(MAX_ISSUE_ATTEMPTS):
                value = generate()
                existing = self._challenges.get(value)
                if existing is not None and existing.is_live(now):
                    continue
                challenge = Challenge(
                    value=value,
                    kind=ChallengeKind(kind),
                    created_at=now,
                    expires_at=now + (ttl or self._default_ttl),
                    subject_user_id=subject_user_id,
                    payload=dict(payload or {}),
                )
                self._challenges[value] = challenge
                return dataclasses.replace(challenge)
        raise RuntimeError("Unable to issue a unique challenge")

    def consume(self, value: str, expected_kind: ChallengeKind) -> Challenge:
        now = self._clock()
        with self._lock:
            challenge = self._challenges.get(value)
            if (
                challenge is None
                or challenge.kind != expected_kind
                or not challenge.is_live(now)
            ):
                raise ChallengeInvalidError()
            challenge.consumed = True
            return dataclasses.replace(challenge)

    def sweep(self, now: Optional[datetime] = None) -> int:
        cutoff = now or self._clock()
        with self._lock:
            expired = [key for key, item in self._challenges.items() if item.expires_at < cutoff]
            for key in expired:
                del self._challenges[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)


class DatabaseChallengeStore:
    """Store backed by the ``auth_challenges`` table, shared across server instances."""

    def __init__(
        self,
        db: Database,
        clock: Clock = utcnow,
        default_ttl: timedelta = DEFAULT_TTL,
    ) -> None:
        self.db = db
        self._clock = clock
        self._default_ttl = default_ttl

    def issue(
        self,
        kind: ChallengeKind,
        subject_user_id: Optional[str] = None,
        payload: Optional[Mapping[str, Any]] = None,
        ttl: Optional[timedelta] = None,
        generator: Optional[Callable[[], str]] = None,
    ) -> Challenge:
        generate = generator or random_challenge
        now = self._clock()
        for _ in range(MAX_ISSUE_ATTEMPTS):
            challenge = Challenge(
                value=generate(),
                kind=ChallengeKind(kind),
                created_at=now,
                expires_at=now + (ttl or self._default_ttl),
                subject_user_id=subject_user_id,
                payload=dict(payload or {}),
            )
            try:
                with self.db.session() as session:
                    existing = session.scalar(
                        select(ChallengeRecord).where(ChallengeRecord.value == challenge.value)
                    )
                    if existing is not None:
                        if not existing.consumed and as_utc(existing.expires_at) >= now:
                            continue
                        session.delete(existing)
                        session.flush()
                    session.add(
                        ChallengeRecord(
                            value=challenge.value,
                            kind=challenge.kind.value,
                            user_id=subject_user_id,
                            payload=challenge.payload,
                            created_at=challenge.created_at,
                            expires_at=challenge.expires_at,
                            consumed=False,
                        )
                    )
            except IntegrityError:
                LOGGER.debug("Challenge value collided with a concurrent issue; retrying")
                continue
            return challenge
        raise RuntimeError("Unable to issue a unique challenge")

    def consume(self, value: str, expected_kind: ChallengeKind) -> Challenge:
        now = self._clock()
        with self.db.session() as session:
            result = session.execute(
                update(ChallengeRecord)
                .where(
                    ChallengeRecord.value == value,
                    ChallengeRecord.kind == ChallengeKind(expected_kind).value,
                    ChallengeRecord.consumed.is_(False),
                    ChallengeRecord.expires_at >= now,
                )
                .values(consumed=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ChallengeInvalidError()
            record = session.scalar(select(ChallengeRecord).where(ChallengeRecord.value == value))
            return Challenge(
                value=record.value,
                kind=ChallengeKind(record.kind),
                created_at=as_utc(record.created_at),
                expires_at=as_utc(record.expires_at),
                subject_user_id=record.user_id,
                payload=dict(record.payload or {}),
                consumed=True,
            )

    def sweep(self, now: Optional[datetime] = None) -> int:
        cutoff = now or self._clock()
        with self.db.session() as session:
            result = session.execute(
                delete(ChallengeRecord)
                .where(ChallengeRecord.expires_at < cutoff)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0
