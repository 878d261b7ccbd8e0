"""Utilities for constructing WebAuthn binary structures."""

from __future__ import annotations

import hashlib
from typing import Optional

from cryptography.hazmat.primitives.asymmetric import ec
from fido2 import cbor
from fido2.cose import ES256

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_AT = 0x40
AAGUID = bytes(16)


def build_credential_public_key(public_key: ec.EllipticCurvePublicKey) -> bytes:
    """Encode a P-256 public key as a COSE_Key (kty EC2, alg ES256)."""
    return cbor.encode(dict(ES256.from_cryptography_key(public_key)))


def build_authenticator_data(
    rp_id: str,
    sign_count: int,
    credential_id: Optional[bytes] = None,
    credential_public_key: Optional[bytes] = None,
    user_verified: bool = True,
) -> bytes:
    flags = FLAG_UP | (FLAG_UV if user_verified else 0)
    attested = credential_id is not None and credential_public_key is not None
    if attested:
        flags |= FLAG_AT

    data = bytearray(hashlib.sha256(rp_id.encode("idna")).digest())
    data.append(flags)
    data.extend(sign_count.to_bytes(4, "big"))
    if attested:
        data.extend(AAGUID)
        data.extend(len(credential_id).to_bytes(2, "big"))
        data.extend(credential_id)
        data.extend(credential_public_key)
    return bytes(data)


def build_attestation_object(auth_data: bytes) -> bytes:
    return cbor.encode({"fmt": "none", "attStmt": {}, "authData": auth_data})
