# hostel_gate/services/qr_token.py
"""
QR payload codec.
The payload is a compact HS256 JWT whose jti is the credential's token_id,
bound to the owning request and direction. It carries no exp claim: validity
windows live on the credential row so an expired pass and a forged one stay
distinguishable.
"""

import secrets
from dataclasses import dataclass

import jwt

from hostel_gate.config import settings
from hostel_gate.services.errors import NotFoundError

SCOPE = "gate-pass"


@dataclass(frozen=True)
class PayloadClaims:
    token_id: str
    request_id: str
    direction: str


def new_token_id() -> str:
    return secrets.token_urlsafe(16)


def encode_payload(token_id: str, request_id: str, direction: str) -> str:
    claims = {
        "iss": settings.QR_ISSUER,
        "aud": settings.QR_AUDIENCE,
        "jti": token_id,
        "scope": SCOPE,
        "rid": request_id,
        "dir": direction,
    }
    return jwt.encode(claims, settings.QR_SECRET, algorithm="HS256")


def decode_payload(payload: str) -> PayloadClaims:
    """Verify signature and claims. Anything unreadable is reported as NotFoundError."""
    if not payload or not isinstance(payload, str):
        raise NotFoundError("QR code is not recognised")
    try:
        claims = jwt.decode(
            payload.strip(),
            settings.QR_SECRET,
            algorithms=["HS256"],
            audience=settings.QR_AUDIENCE,
            issuer=settings.QR_ISSUER,
            options={"require": ["jti", "aud", "iss"]},
        )
    except jwt.PyJWTError as e:
        raise NotFoundError(f"QR code is not recognised ({e})") from e

    if claims.get("scope") != SCOPE:
        raise NotFoundError("QR code is not a gate pass")
    for k in ("rid", "dir"):
        if not claims.get(k):
            raise NotFoundError(f"QR code is missing claim: {k}")
    return PayloadClaims(token_id=claims["jti"], request_id=str(claims["rid"]), direction=claims["dir"])
