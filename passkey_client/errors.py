"""Client side error taxonomy.

Server errors arrive as a ``kind`` string and are rebuilt into the matching
class here, so callers branch on exception types and presentation layers can
map any error to a user facing category with :func:`error_category`.
"""

from __future__ import annotations

from typing import Dict, Literal, Type

Category = Literal["unsupported", "cancelled", "security", "failed"]


class CeremonyError(RuntimeError):
    kind = "ceremony_error"

    def __init__(self, message: str = "", kind: str | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class ChallengeInvalidError(CeremonyError):
    kind = "challenge_invalid"


class CeremonyFailedError(CeremonyError):
    kind = "ceremony_failed"


class CredentialNotFoundError(CeremonyError):
    kind = "credential_not_found"


class UnknownUserError(CeremonyError):
    kind = "unknown_user"


class TransportError(CeremonyError):
    """The relying party could not be reached or answered garbage."""

    kind = "transport_error"


class AuthenticatorError(CeremonyFailedError):
    """Raised by a local authenticator.

    ``reason`` mirrors the DOMException names browsers use for the same
    failures: ``not_supported``, ``not_allowed``, ``invalid_state``,
    ``security`` or ``failed``.
    """

    def __init__(self, message: str, reason: str = "failed") -> None:
        super().__init__(message)
        self.reason = reason


class NoFallbackAvailableError(CeremonyError):
    kind = "no_fallback_available"


class CapabilityDetectionFailedError(CeremonyError):
    kind = "capability_detection_failed"


class FallbackFailedError(CeremonyError):
    kind = "fallback_failed"

    def __init__(
        self,
        original: BaseException,
        fallback: BaseException,
        method: str,
    ) -> None:
        super().__init__(
            f"Primary attempt failed ({original}); fallback to {method} failed ({fallback})"
        )
        self.original = original
        self.fallback = fallback
        self.method = method


_BY_KIND: Dict[str, Type[CeremonyError]] = {
    cls.kind: cls
    for cls in (
        ChallengeInvalidError,
        CeremonyFailedError,
        CredentialNotFoundError,
        UnknownUserError,
        TransportError,
    )
}


def error_from_kind(kind: str | None, message: str = "") -> CeremonyError:
    cls = _BY_KIND.get(kind or "")
    if cls is None:
        return CeremonyError(message, kind=kind or CeremonyError.kind)
    return cls(message)


def error_category(exc: BaseException) -> Category:
    if isinstance(exc, FallbackFailedError):
        return error_category(exc.fallback)
    if isinstance(exc, (NoFallbackAvailableError, CapabilityDetectionFailedError)):
        return "unsupported"
    if isinstance(exc, AuthenticatorError):
        if exc.reason == "not_supported":
            return "unsupported"
        if exc.reason == "not_allowed":
            return "cancelled"
        if exc.reason == "security":
            return "security"
    return "failed"
