"""Bearer token creation and validation (ES256) for the REST API.

The API trusts a short-lived access token whose ``sub`` is the controller
identity (a DID).  Only the holder of the signing key can mint tokens.

Keys come from settings: ``AUTH_TOKEN_PRIVATE_KEY_FILE`` (PEM, EC P-256)
gives the full pair, ``AUTH_TOKEN_PUBLIC_KEY_FILE`` alone lets the API
verify tokens minted elsewhere.  With neither set, an ephemeral pair is
generated, which is enough for development and the tests.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from attestation.core.config import SETTINGS, Settings

logger = logging.getLogger(__name__)

ALGORITHM = "ES256"
ISSUER = "attestation-service"
AUDIENCE = "attestation-service"
ACCESS_TOKEN_TTL_MIN = 15

_private_key: ec.EllipticCurvePrivateKey | None = None
_public_key: ec.EllipticCurvePublicKey | None = None


def _require_p256(key, path: str) -> None:
    is_ec = isinstance(key, (ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey))
    if not is_ec or not isinstance(key.curve, ec.SECP256R1):
        raise ValueError(f"{path} must hold an EC P-256 key for {ALGORITHM}")


def load_keys(
    settings: Settings,
) -> tuple[ec.EllipticCurvePrivateKey | None, ec.EllipticCurvePublicKey]:
    """Return ``(private, public)``; ``private`` is None for verify-only setups."""
    if settings.token_private_key_file:
        path = settings.token_private_key_file
        private = serialization.load_pem_private_key(Path(path).read_bytes(), password=None)
        _require_p256(private, path)
        return private, private.public_key()  # type: ignore[return-value]

    if settings.token_public_key_file:
        path = settings.token_public_key_file
        public = serialization.load_pem_public_key(Path(path).read_bytes())
        _require_p256(public, path)
        return None, public  # type: ignore[return-value]

    if settings.is_prod:
        logger.warning("No token key configured, using an ephemeral signing key")
    private = ec.generate_private_key(ec.SECP256R1())
    return private, private.public_key()


def configure(settings: Settings) -> None:
    global _private_key, _public_key
    _private_key, _public_key = load_keys(settings)
    logger.debug(
        "Token keys configured signing=%s source=%s",
        _private_key is not None,
        settings.token_private_key_file or settings.token_public_key_file or "ephemeral",
    )


def create_access_token(*, sub: str, ttl_minutes: int = ACCESS_TOKEN_TTL_MIN) -> str:
    """Sign an access token for controller ``sub``."""
    if _private_key is None:
        raise RuntimeError("no token signing key configured (AUTH_TOKEN_PRIVATE_KEY_FILE)")
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + timedelta(minutes=ttl_minutes),
        "iat": now,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    Pins the algorithm to ES256.  Raises jwt.ExpiredSignatureError or
    jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )


configure(SETTINGS)
