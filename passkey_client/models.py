"""Models shared across client modules."""

from __future__ import annotations

import base64
import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, model_validator

Method = Literal["device", "pin", "both"]
METHODS: Tuple[str, ...] = ("device", "pin", "both")
DEFAULT_METHOD = "both"


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


@dataclass(frozen=True)
class DeviceCapabilities:
    ceremony_api_present: bool = False
    platform_authenticator: bool = False
    user_verification: bool = False
    secure_context: bool = False
    https_or_localhost: bool = False
    available_methods: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["available_methods"] = list(self.available_methods)
        return data


@dataclass
class CeremonyResult:
    method: str
    data: Dict[str, Any] = field(default_factory=dict)
    used_fallback: bool = False
    fallback_method: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = dict(self.data)
        payload["method"] = self.method
        payload["usedFallback"] = self.used_fallback
        if self.fallback_method:
            payload["fallbackMethod"] = self.fallback_method
        return payload


# WebAuthn option payloads as the relying party serialises them -------------
class RelyingPartyEntity(BaseModel):
    id: str
    name: str


class UserEntity(BaseModel):
    id: str = Field(min_length=1)
    name: str
    displayName: str


class PubKeyCredParam(BaseModel):
    type: Literal["public-key"] = "public-key"
    alg: int


class PublicKeyCredentialDescriptor(BaseModel):
    id: str
    type: Literal["public-key"] = "public-key"
    transports: List[str] = Field(default_factory=list)


class AuthenticatorSelectionCriteria(BaseModel):
    authenticatorAttachment: Optional[Literal["platform", "cross-platform"]] = None
    residentKey: Literal["required", "preferred", "discouraged"] = "discouraged"
    requireResidentKey: bool = False
    userVerification: Literal["required", "preferred", "discouraged"] = "preferred"

    @property
    def discoverable(self) -> bool:
        return self.requireResidentKey or self.residentKey in ("required", "preferred")


class PublicKeyCredentialCreationOptions(BaseModel):
    challenge: str
    rp: RelyingPartyEntity
    user: UserEntity
    pubKeyCredParams: List[PubKeyCredParam]
    timeout: int = 60_000
    attestation: Literal["none", "indirect", "direct", "enterprise"] = "none"
    authenticatorSelection: AuthenticatorSelectionCriteria = Field(
        default_factory=AuthenticatorSelectionCriteria
    )
    excludeCredentials: List[PublicKeyCredentialDescriptor] = Field(default_factory=list)

    @model_validator(mode="after")
    def ensure_algorithms(self) -> "PublicKeyCredentialCreationOptions":
        if not self.pubKeyCredParams:
            raise ValueError("pubKeyCredParams cannot be empty")
        return self


class PublicKeyCredentialRequestOptions(BaseModel):
    challenge: str
    rpId: str
    timeout: int = 60_000
    userVerification: Literal["required", "preferred", "discouraged"] = "preferred"
    allowCredentials: List[PublicKeyCredentialDescriptor] = Field(default_factory=list)


class CredentialRecord(BaseModel):
    """A credential held by a software authenticator."""

    credential_id: str
    user_handle: str
    rp_id: str
    algorithm: int
    private_key: str
    sign_count: int = 0
    discoverable: bool = False
    user_name: Optional[str] = None

    def encode(self) -> str:
        return self.model_dump_json()

    @classmethod
    def decode(cls, data: str) -> "CredentialRecord":
        return cls.model_validate_json(data)


def encode_client_data(ceremony: str, challenge: str, origin: str) -> bytes:
    payload = {
        "type": ceremony,
        "challenge": challenge,
        "origin": origin,
        "crossOrigin": False,
    }
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")
