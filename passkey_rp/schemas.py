"""Pydantic schemas for request/response payloads."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterBeginRequest(_Request):
    username: str = Field(min_length=1)
    display_name: Optional[str] = Field(default=None, alias="displayName")
    attachment_preference: Optional[Literal["platform", "cross-platform", "device", "pin", "both"]] = Field(
        default=None, alias="attachmentPreference"
    )


class CompleteRequest(_Request):
    credential: dict
    expected_challenge: str = Field(alias="expectedChallenge", min_length=1)


class LoginBeginRequest(_Request):
    username: Optional[str] = None


class TransactionRequest(_Request):
    amount: Decimal
    description: str = ""
    user_id: str = Field(default="demo-user-1", alias="userId")
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


class StepUpRequest(_Request):
    otp: str = Field(min_length=1)
    transaction_id: str = Field(alias="transactionId", min_length=1)


class RPResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    error: Optional[str] = None
    data: Optional[dict] = None
