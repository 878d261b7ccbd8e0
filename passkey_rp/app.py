"""Flask application exposing the ceremony, step-up and analytics endpoints."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

from .analytics import ConversionCounter
from .ceremonies import CeremonyOrchestrator
from .challenges import ChallengeStore, DatabaseChallengeStore, InMemoryChallengeStore
from .config import RPSettings
from .database import Database
from .errors import CeremonyError
from .schemas import (
    CompleteRequest,
    LoginBeginRequest,
    RegisterBeginRequest,
    RPResponse,
    StepUpRequest,
    TransactionRequest,
)
from .services import transaction_stats
from .stepup import OtpSender, StepUpEngine
from .sweeper import ChallengeSweeper
from .verifier import Fido2ServerVerifier, Fido2Verifier

LOGGER = logging.getLogger(__name__)

EXTENSION_KEY = "passkey_rp"


@dataclass
class Components:
    settings: RPSettings
    db: Database
    challenges: ChallengeStore
    counter: ConversionCounter
    ceremonies: CeremonyOrchestrator
    stepup: StepUpEngine
    sweeper: ChallengeSweeper


def _ok(data: Optional[dict] = None, message: Optional[str] = None):
    return jsonify(RPResponse(success=True, message=message, data=data).model_dump(exclude_none=True))


def _fail(error: str, message: str, status: int):
    body = RPResponse(success=False, error=error, message=message).model_dump(exclude_none=True)
    return jsonify(body), status


def build_components(
    settings: RPSettings,
    verifier: Optional[Fido2Verifier] = None,
    challenges: Optional[ChallengeStore] = None,
    counter: Optional[ConversionCounter] = None,
    otp_sender: Optional[OtpSender] = None,
) -> Components:
    db = Database(settings)
    db.create_all()
    if challenges is None:
        if settings.challenge_backend == "memory":
            challenges = InMemoryChallengeStore()
        else:
            challenges = DatabaseChallengeStore(db)
    counter = counter or ConversionCounter()
    stepup = StepUpEngine(settings, db, challenges, counter, otp_sender=otp_sender)
    return Components(
        settings=settings,
        db=db,
        challenges=challenges,
        counter=counter,
        ceremonies=CeremonyOrchestrator(
            settings, db, challenges, verifier or Fido2ServerVerifier(settings), counter
        ),
        stepup=stepup,
        sweeper=ChallengeSweeper(challenges, settings.sweep_interval_seconds, engine=stepup),
    )


def create_app(
    settings: RPSettings | None = None,
    verifier: Optional[Fido2Verifier] = None,
    challenges: Optional[ChallengeStore] = None,
    counter: Optional[ConversionCounter] = None,
    otp_sender: Optional[OtpSender] = None,
    start_sweeper: bool = False,
) -> Flask:
    settings = settings or RPSettings()
    components = build_components(settings, verifier, challenges, counter, otp_sender)
    ceremonies = components.ceremonies
    stepup = components.stepup

    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = components
    CORS(app, origins=settings.cors_origins, supports_credentials=True)
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    if start_sweeper:
        components.sweeper.start()

    @app.post("/api/auth/register/begin")
    def register_begin():
        payload = RegisterBeginRequest.model_validate(request.get_json(silent=True) or {})
        options = ceremonies.begin_registration(
            payload.username,
            payload.display_name or payload.username,
            payload.attachment_preference,
        )
        return _ok(options)

    @app.post("/api/auth/register/complete")
    def register_complete():
        payload = CompleteRequest.model_validate(request.get_json(silent=True) or {})
        result = ceremonies.complete_registration(payload.credential, payload.expected_challenge)
        return _ok(result.to_dict(), message="Registration successful")

    @app.post("/api/auth/login/begin")
    def login_begin():
        payload = LoginBeginRequest.model_validate(request.get_json(silent=True) or {})
        return _ok(ceremonies.begin_authentication(payload.username or None))

    @app.post("/api/auth/login/complete")
    def login_complete():
        payload = CompleteRequest.model_validate(request.get_json(silent=True) or {})
        result = ceremonies.complete_authentication(payload.credential, payload.expected_challenge)
        return _ok(result.to_dict(), message="Authentication successful")

    @app.post("/api/transactions")
    def submit_transaction():
        payload = TransactionRequest.model_validate(request.get_json(silent=True) or {})
        decision = stepup.submit_transaction(
            payload.user_id,
            payload.amount,
            payload.description,
            currency=payload.currency,
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        return _ok(decision.to_dict())

    @app.post("/api/transactions/stepup")
    def verify_stepup():
        payload = StepUpRequest.model_validate(request.get_json(silent=True) or {})
        transaction = stepup.verify_stepup(payload.otp, payload.transaction_id)
        return _ok({"transaction": transaction}, message="Transaction completed successfully")

    @app.get("/api/transactions")
    def list_transactions():
        limit = request.args.get("limit", default=10, type=int)
        transactions = stepup.list_for_user(request.args.get("userId"), limit=max(1, min(limit, 100)))
        return _ok({"transactions": transactions})

    @app.get("/api/analytics/conversion")
    def conversion():
        snapshot = components.counter.snapshot()
        with components.db.session() as session:
            snapshot.extra["transactions"] = transaction_stats(session)
        return _ok(snapshot.to_dict())

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.errorhandler(CeremonyError)
    def handle_ceremony_error(error: CeremonyError):
        return _fail(error.kind, str(error), error.status_code)

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        return _fail("validation_error", str(error), 400)

    @app.errorhandler(ValueError)
    def handle_value_error(error: ValueError):
        return _fail("invalid_request", str(error), 400)

    @app.errorhandler(400)
    def handle_bad_request(error):
        message = getattr(error, "description", "Bad Request")
        return _fail("bad_request", message, 400)

    return app


if __name__ == "__main__":
    create_app(start_sweeper=True).run(port=3001, debug=True)
