"""Structured event logging for the client and its authenticators."""

from __future__ import annotations

import json
import logging
import secrets

STAGE_LABELS = {
    "register": "Register",
    "authn": "Authenticate",
    "fallback": "Fallback",
    "capabilities": "Capabilities",
}

EVENT_LABELS = {
    ("register", "start"): "Processing credential creation",
    ("register", "exclude.hit"): "Credential excluded by RP",
    ("register", "success"): "Credential creation completed",
    ("authn", "start"): "Processing assertion",
    ("authn", "no_credential"): "No credential available",
    ("authn", "success"): "Assertion completed",
    ("fallback", "start"): "Primary method failed; retrying with fallback",
    ("fallback", "none"): "No fallback method available",
    ("fallback", "success"): "Fallback attempt succeeded",
    ("fallback", "failed"): "Fallback attempt failed",
    ("capabilities", "detected"): "Detected device capabilities",
    ("capabilities", "failed"): "Capability detection failed",
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
        payload[key] = _truncate(value) if isinstance(value, str) else value
    return payload


def log_event(
    logger: logging.Logger,
    component: str,
    stage: str,
    event: str,
    req: str,
    level: int = logging.INFO,
    **fields: object,
) -> None:
    stage_label = STAGE_LABELS.get(stage, stage.title())
    event_label = EVENT_LABELS.get((stage, event), event)
    payload = json.dumps(_build_payload(req, **fields), indent=2, sort_keys=True, default=str)
    logger.log(level, f"[{component}: {stage_label}]: {event_label}\n{payload}")
