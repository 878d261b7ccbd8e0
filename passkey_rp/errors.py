"""Error taxonomy for ceremony and step-up operations.

Every error carries a stable ``kind`` so presentation layers can map it to a
user facing category without parsing messages.
"""

from __future__ import annotations


class CeremonyError(RuntimeError):
    kind = "ceremony_error"
    status_code = 400


class ChallengeInvalidError(CeremonyError):
    """Challenge missing, expired, already consumed or of the wrong kind.

    The reasons are deliberately not distinguished.
    """

    kind = "challenge_invalid"

    def __init__(self, message: str = "Invalid or expired challenge") -> None:
        super().__init__(message)


class CeremonyFailedError(CeremonyError):
    kind = "ceremony_failed"


class SignCountRegressionError(CeremonyFailedError):
    """Reported signature counter did not advance; possible cloned authenticator."""


class CredentialNotFoundError(CeremonyError):
    kind = "credential_not_found"
    status_code = 404


class UnknownUserError(CeremonyError):
    kind = "unknown_user"
    status_code = 404


class TransactionMismatchError(CeremonyError):
    kind = "transaction_mismatch"


class TransactionNotFoundError(CeremonyError):
    kind = "transaction_not_found"
    status_code = 404
