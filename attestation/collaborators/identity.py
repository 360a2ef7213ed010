"""Identity collaborator: verifiable-credential issuance and checking.

The attestation connectors only need two operations from an identity
backend (``IdentityConnector``).  ``JwtIdentityConnector`` is the
in-process implementation used for development, the CLI and the tests:

  - Identities are DID-shaped strings owned by a controller.
  - Each verification method ("<did>#<fragment>") has its own P-256 key.
    The private key lives in the vault; only the public key is kept on
    the identity document.
  - Credentials are W3C VC data model objects, signed as compact ES256
    JWTs (three dot-separated segments).  The verification method id is
    carried in the JWT ``kid`` header so the checker can find the key.
  - Revocation is a per-identity set of revocation indices, the moral
    equivalent of a RevocationBitmap2022 status list.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from attestation.collaborators.vault import VaultConnector, VaultKeyNotFound

logger = logging.getLogger(__name__)

ALGORITHM = "ES256"

W3C_CREDENTIALS_CONTEXT = "https://www.w3.org/2018/credentials/v1"
DID_CONTEXTS = (
    W3C_CREDENTIALS_CONTEXT,
    "https://www.w3.org/ns/credentials/v2",
    "https://www.w3.org/ns/did/v1",
)
VERIFIABLE_CREDENTIAL_TYPE = "VerifiableCredential"
REVOCATION_STATUS_TYPE = "RevocationBitmap2022"


class IdentityError(Exception):
    pass


class IdentityNotFound(IdentityError):
    pass


class IdentityAccessDenied(IdentityError):
    pass


@dataclass(frozen=True, slots=True)
class VerifiableCredential:
    context: list[Any]
    type: list[str]
    issuer: str | dict[str, Any]
    issuance_date: str
    credential_subject: dict[str, Any] | list[dict[str, Any]]
    credential_status: dict[str, Any] | None = None

    @property
    def issuer_id(self) -> str:
        if isinstance(self.issuer, str):
            return self.issuer
        return str(self.issuer.get("id", ""))

    @property
    def revocation_index(self) -> int | None:
        if not self.credential_status:
            return None
        raw = self.credential_status.get("revocationBitmapIndex")
        try:
            return int(raw)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "@context": list(self.context),
            "type": list(self.type),
            "issuer": self.issuer,
            "issuanceDate": self.issuance_date,
            "credentialSubject": self.credential_subject,
        }
        if self.credential_status is not None:
            out["credentialStatus"] = self.credential_status
        return out

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> VerifiableCredential:
        """Parse a VC dict; raises ValueError when the shape is wrong."""
        context = data.get("@context")
        types = data.get("type")
        issuer = data.get("issuer")
        issuance_date = data.get("issuanceDate")
        subject = data.get("credentialSubject")

        if not isinstance(issuer, (str, dict)) or not issuer:
            raise ValueError("credential has no issuer")
        if not isinstance(issuance_date, str) or not issuance_date:
            raise ValueError("credential has no issuanceDate")
        if not isinstance(subject, (dict, list)):
            raise ValueError("credential has no credentialSubject")

        status = data.get("credentialStatus")
        return VerifiableCredential(
            context=context if isinstance(context, list) else [context],
            type=types if isinstance(types, list) else [types],
            issuer=issuer,
            issuance_date=issuance_date,
            credential_subject=subject,
            credential_status=status if isinstance(status, dict) else None,
        )


@dataclass(frozen=True, slots=True)
class VerifiableCredentialResult:
    jwt: str
    credential: VerifiableCredential


@dataclass(frozen=True, slots=True)
class CredentialCheck:
    """``credential`` is None when the token could not be parsed or validated."""

    revoked: bool
    credential: VerifiableCredential | None = None


@runtime_checkable
class IdentityConnector(Protocol):
    async def create_verifiable_credential(
        self,
        controller: str,
        verification_method_id: str,
        subject: Mapping[str, Any],
    ) -> VerifiableCredentialResult: ...

    async def check_verifiable_credential(self, token: str) -> CredentialCheck: ...


@dataclass
class _IdentityDocument:
    id: str
    controller: str
    # verification method id -> PEM public key
    methods: dict[str, bytes] = field(default_factory=dict)
    revoked: set[int] = field(default_factory=set)
    next_revocation_index: int = 0


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return list(value) if isinstance(value, list) else [value]


class JwtIdentityConnector:
    """In-process identity backend signing credentials as ES256 JWTs."""

    def __init__(self, vault: VaultConnector, *, did_method: str = "entity-storage") -> None:
        self._vault = vault
        self._did_method = did_method
        self._documents: dict[str, _IdentityDocument] = {}

    # -- identity management (reference backend only) ----------------------

    async def create_identity(self, controller: str, identity: str | None = None) -> str:
        """Create an identity document controlled by ``controller``.

        ``identity`` pins the DID (used by the CLI to derive a stable DID
        from a seed); otherwise a random one is generated.
        """
        did = identity or f"did:{self._did_method}:0x{secrets.token_hex(32)}"
        existing = self._documents.get(did)
        if existing is not None:
            if existing.controller != controller:
                raise IdentityAccessDenied(f"identity {did} has another controller")
            return did
        self._documents[did] = _IdentityDocument(id=did, controller=controller)
        logger.info("Identity created did=%s", did)
        return did

    async def add_verification_method(
        self,
        controller: str,
        identity: str,
        fragment: str = "attestation",
        private_key: bytes | None = None,
    ) -> str:
        """Attach a P-256 verification method; returns ``<identity>#<fragment>``.

        ``private_key`` is a raw 32-byte scalar; a fresh key is generated
        when omitted.  The private key is stored in the vault.
        """
        document = self._document(identity)
        self._authorize(controller, document)

        if private_key is None:
            key = ec.generate_private_key(ec.SECP256R1())
        else:
            try:
                key = ec.derive_private_key(
                    int.from_bytes(private_key, "big"), ec.SECP256R1()
                )
            except ValueError as e:
                raise IdentityError(f"invalid private key: {e}") from None

        method_id = f"{identity}#{fragment}"
        await self._vault.set_key(
            method_id,
            key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            ),
        )
        document.methods[method_id] = key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        logger.info("Verification method added id=%s", method_id)
        return method_id

    async def revoke_verifiable_credential(
        self, controller: str, identity: str, revocation_index: int
    ) -> None:
        document = self._document(identity)
        self._authorize(controller, document)
        document.revoked.add(revocation_index)
        logger.info("Credential revoked issuer=%s index=%d", identity, revocation_index)

    # -- IdentityConnector ---------------------------------------------------

    async def create_verifiable_credential(
        self,
        controller: str,
        verification_method_id: str,
        subject: Mapping[str, Any],
    ) -> VerifiableCredentialResult:
        identity, _, fragment = verification_method_id.partition("#")
        if not fragment:
            raise IdentityError(
                f"verification method id must be <identity>#<fragment> "
                f"(got {verification_method_id!r})"
            )
        document = self._document(identity)
        self._authorize(controller, document)
        if verification_method_id not in document.methods:
            raise IdentityNotFound(f"verification method {verification_method_id} not found")

        try:
            pem = await self._vault.get_key(verification_method_id)
        except VaultKeyNotFound:
            raise IdentityNotFound(
                f"no key in vault for {verification_method_id}"
            ) from None
        private_key = serialization.load_pem_private_key(pem, password=None)

        claims_subject = dict(subject)
        subject_context = _as_list(claims_subject.pop("@context", None))
        subject_types = _as_list(claims_subject.pop("type", None))

        revocation_index = document.next_revocation_index
        document.next_revocation_index += 1

        now = datetime.now(UTC)
        credential = VerifiableCredential(
            context=[W3C_CREDENTIALS_CONTEXT, *subject_context],
            type=[VERIFIABLE_CREDENTIAL_TYPE, *subject_types],
            issuer=document.id,
            issuance_date=_iso(now),
            credential_subject=claims_subject,
            credential_status={
                "id": f"{document.id}#revocation",
                "type": REVOCATION_STATUS_TYPE,
                "revocationBitmapIndex": str(revocation_index),
            },
        )
        token = jwt.encode(
            {
                "iss": document.id,
                "nbf": int(now.timestamp()),
                "jti": f"urn:uuid:{uuid.uuid4()}",
                "vc": credential.to_dict(),
            },
            private_key,  # type: ignore[arg-type]
            algorithm=ALGORITHM,
            headers={"kid": verification_method_id},
        )
        return VerifiableCredentialResult(jwt=token, credential=credential)

    async def check_verifiable_credential(self, token: str) -> CredentialCheck:
        """Validate signature and shape; never raises for a bad token."""
        try:
            header = jwt.get_unverified_header(token)
            method_id = header.get("kid")
            if not isinstance(method_id, str):
                raise IdentityError("token has no kid header")
            document = self._document(method_id.partition("#")[0])
            public_pem = document.methods.get(method_id)
            if public_pem is None:
                raise IdentityNotFound(f"verification method {method_id} not found")

            claims = jwt.decode(
                token,
                serialization.load_pem_public_key(public_pem),  # type: ignore[arg-type]
                algorithms=[ALGORITHM],
                options={"require": ["iss", "nbf", "jti"]},
            )
            credential = VerifiableCredential.from_dict(claims.get("vc") or {})
            if credential.issuer_id != claims["iss"] or claims["iss"] != document.id:
                raise IdentityError("issuer does not match signing identity")
        except (jwt.InvalidTokenError, IdentityError, ValueError, TypeError) as e:
            logger.debug("Credential check failed: %s", e)
            return CredentialCheck(revoked=False, credential=None)

        index = credential.revocation_index
        return CredentialCheck(
            revoked=index is not None and index in document.revoked,
            credential=credential,
        )

    # -- helpers -------------------------------------------------------------

    def _document(self, identity: str) -> _IdentityDocument:
        document = self._documents.get(identity)
        if document is None:
            raise IdentityNotFound(f"identity {identity} not found")
        return document

    @staticmethod
    def _authorize(controller: str, document: _IdentityDocument) -> None:
        if controller not in (document.controller, document.id):
            raise IdentityAccessDenied(
                f"{controller} does not control identity {document.id}"
            )
