"""Structured event logging shared by the RP server components."""

from __future__ import annotations

import json
import logging
import secrets

STAGE_LABELS = {
    "register": "Register",
    "authn": "Authenticate",
    "stepup": "Step-Up",
    "challenge": "Challenges",
}

EVENT_LABELS = {
    ("register", "begin.start"): "Creating Register Options",
    ("register", "user.ensure"): "Ensuring user record",
    ("register", "begin.success"): "Issued Register Options",
    ("register", "complete.start"): "Verifying Registration",
    ("register", "complete.invalid_challenge"): "Registration Challenge Invalid",
    ("register", "complete.failed"): "Registration Verification Failed",
    ("register", "complete.success"): "Registration Completed",
    ("authn", "begin.start"): "Creating Authentication Options",
    ("authn", "begin.unknown_user"): "Authentication Unknown User",
    ("authn", "begin.success"): "Issued Authentication Options",
    ("authn", "complete.start"): "Verifying Authentication",
    ("authn", "complete.invalid_challenge"): "Authentication Challenge Invalid",
    ("authn", "complete.unknown_credential"): "Authentication Unknown Credential",
    ("authn", "complete.failed"): "Authentication Verification Failed",
    ("authn", "complete.counter_regression"): "Signature Counter Regression",
    ("authn", "complete.success"): "Authentication Completed",
    ("stepup", "submit.start"): "Submitting Transaction",
    ("stepup", "submit.direct"): "Transaction Completed Without Step-Up",
    ("stepup", "submit.challenge"): "Step-Up Required",
    ("stepup", "submit.otp_failed"): "Step-Up OTP Delivery Failed",
    ("stepup", "verify.start"): "Verifying Step-Up OTP",
    ("stepup", "verify.invalid_otp"): "Step-Up OTP Invalid",
    ("stepup", "verify.mismatch"): "Step-Up Transaction Mismatch",
    ("stepup", "verify.success"): "Step-Up Completed",
    ("stepup", "expire"): "Expired Pending Transactions",
    ("challenge", "sweep"): "Swept Expired Challenges",
}


def new_request_id() -> str:
    return secrets.token_hex(4)


def _truncate(value: str, limit: int = 64) -> str:
    if len(value) <= limit:
        return value
    half = limit // 2
    return f"{value[:half]}…{value[-half:]}"


def _build_payload(req: str, **fields: object) -> dict[str, object]:
    payload: dict[str, object] = {"request_id": req}
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, str):
            payload[key] = _truncate(value)
        else:
            payload[key] = value
    return payload


def log_event(
    logger: logging.Logger,
    stage: str,
    event: str,
    req: str,
    level: int = logging.INFO,
    **fields: object,
) -> None:
    stage_label = STAGE_LABELS.get(stage, stage.title())
    event_label = EVENT_LABELS.get((stage, event), event)
    payload = json.dumps(_build_payload(req, **fields), indent=2, sort_keys=True, default=str)
    message = f"[RP Server: {stage_label}]: {event_label}\n{payload}"
    logger.log(level, message)
