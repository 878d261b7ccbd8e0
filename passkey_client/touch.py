"""User verification helpers: Touch ID via pyobjc when available."""

from __future__ import annotations

import logging
import sys
import time
from typing import Protocol

LOGGER = logging.getLogger(__name__)


class UserVerificationError(RuntimeError):
    pass


class UserVerifier(Protocol):
    def verify_user(self, prompt: str | None = None) -> bool:
        ...


def _biometrics_context():
    from LocalAuthentication import (
        LAContext,
        LAPolicyDeviceOwnerAuthenticationWithBiometrics,
    )

    return LAContext.alloc().init(), LAPolicyDeviceOwnerAuthenticationWithBiometrics


def touch_id_available() -> bool:
    """True when a biometric platform authenticator can be evaluated on this host."""
    if sys.platform != "darwin":
        return False
    try:
        context, policy = _biometrics_context()
    except ImportError:
        LOGGER.debug("LocalAuthentication bindings not installed")
        return False
    available, _ = context.canEvaluatePolicy_error_(policy, None)
    return bool(available)


class TouchIDVerifier:
    def __init__(self, reason: str = "Authenticate with Touch ID", timeout: int = 30) -> None:
        self.reason = reason
        self.timeout = timeout

    def verify_user(self, prompt: str | None = None) -> bool:
        try:
            from Foundation import NSDate, NSRunLoop

            context, policy = _biometrics_context()
        except ImportError as exc:
            raise UserVerificationError("Touch ID is unavailable on this platform.") from exc

        success, error = context.canEvaluatePolicy_error_(policy, None)
        if not success:
            raise UserVerificationError(f"Touch ID unavailable: {error}")

        outcome = {"done": False, "success": False}

        def handler(result: bool, err) -> None:
            outcome["done"] = True
            outcome["success"] = bool(result)

        context.evaluatePolicy_localizedReason_reply_(policy, prompt or self.reason, handler)

        run_loop = NSRunLoop.currentRunLoop()
        deadline = time.time() + self.timeout
        while not outcome["done"] and time.time() < deadline:
            run_loop.runUntilDate_(NSDate.dateWithTimeIntervalSinceNow_(0.1))

        if not outcome["done"]:
            raise UserVerificationError("Touch ID timed out. Please try again.")
        if not outcome["success"]:
            raise UserVerificationError("Touch ID verification was cancelled")
        return True


class ConsoleVerifier:
    """Asks for confirmation on the terminal, standing in for a security key PIN."""

    def verify_user(self, prompt: str | None = None) -> bool:
        answer = input(f"{prompt or 'Confirm authenticator action'} (y/N): ")
        if answer.strip().lower() == "y":
            return True
        raise UserVerificationError("User declined")


class NoopVerifier:
    """User verifier that unconditionally succeeds."""

    def verify_user(self, prompt: str | None = None) -> bool:
        LOGGER.info("Skipping user verification: NoopVerifier in use")
        return True
