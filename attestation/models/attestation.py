from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError

from attestation.core.errors import ValidationError

ATTESTATION_CONTEXT = "https://schema.twindev.org/attestation/"
COMMON_CONTEXT = "https://schema.twindev.org/common/"
SCHEMA_ORG_CONTEXT = "https://schema.org"

INFORMATION_TYPE = "Information"
JWT_PROOF_TYPE = "JwtProof"
PAYLOAD_VERSION = "1"


class BackendKind(StrEnum):
    """Closed set of attestation backends; the value is the id namespace."""

    NFT = "nft"
    ENTITY_STORAGE = "entity-storage"


class VerificationFailure(StrEnum):
    NO_DATA = "noData"
    PROOF_FAILED = "proofFailed"
    REVOKED = "revoked"


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with microseconds and a Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class AttestationPayload:
    """Immutable metadata written to the backend resource at mint time."""

    proof: str
    version: str = PAYLOAD_VERSION

    def to_dict(self) -> dict[str, str]:
        return {"version": self.version, "proof": self.proof}

    @staticmethod
    def from_dict(data: Mapping[str, Any] | None) -> AttestationPayload | None:
        if not isinstance(data, Mapping):
            return None
        proof = data.get("proof")
        if not isinstance(proof, str) or not proof:
            return None
        return AttestationPayload(
            proof=proof, version=str(data.get("version", PAYLOAD_VERSION))
        )


@dataclass(frozen=True, slots=True)
class AttestationHolder:
    """Mutable metadata; both fields are set together on the first transfer."""

    holder_identity: str | None = None
    date_transferred: str | None = None

    def to_dict(self) -> dict[str, str]:
        out: dict[str, str] = {}
        if self.holder_identity is not None:
            out["holderIdentity"] = self.holder_identity
        if self.date_transferred is not None:
            out["dateTransferred"] = self.date_transferred
        return out

    @staticmethod
    def from_dict(data: Mapping[str, Any] | None) -> AttestationHolder:
        if not isinstance(data, Mapping):
            return AttestationHolder()
        holder = data.get("holderIdentity")
        transferred = data.get("dateTransferred")
        return AttestationHolder(
            holder_identity=holder if isinstance(holder, str) and holder else None,
            date_transferred=(
                transferred if isinstance(transferred, str) and transferred else None
            ),
        )


@dataclass(frozen=True, slots=True)
class AttestationProof:
    value: str
    type: str = JWT_PROOF_TYPE

    def to_dict(self) -> dict[str, str]:
        return {"@context": ATTESTATION_CONTEXT, "type": self.type, "value": self.value}


def _information_context(attestation_object: Mapping[str, Any] | None) -> list[Any]:
    context: list[Any] = [ATTESTATION_CONTEXT, COMMON_CONTEXT, SCHEMA_ORG_CONTEXT]
    if attestation_object is None:
        return context
    extra = attestation_object.get("@context")
    for item in extra if isinstance(extra, list) else [extra]:
        if item is not None and item not in context:
            context.append(item)
    return context


@dataclass(frozen=True, slots=True)
class VerifiedAttestation:
    """Full read-side projection of an attestation.

    Also returned for a revoked credential: the credential still parses,
    so the projection is available, but ``verified`` is False.
    """

    id: str
    date_created: str
    owner_identity: str
    holder_identity: str
    attestation_object: dict[str, Any]
    proof: AttestationProof
    date_transferred: str | None = None
    verification_failure: VerificationFailure | None = None

    @property
    def verified(self) -> bool:
        return self.verification_failure is None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "@context": _information_context(self.attestation_object),
            "type": INFORMATION_TYPE,
            "id": self.id,
            "dateCreated": self.date_created,
            "ownerIdentity": self.owner_identity,
            "holderIdentity": self.holder_identity,
        }
        if self.date_transferred is not None:
            out["dateTransferred"] = self.date_transferred
        out["attestationObject"] = dict(self.attestation_object)
        out["proof"] = self.proof.to_dict()
        out["verified"] = self.verified
        if self.verification_failure is not None:
            out["verificationFailure"] = str(self.verification_failure)
        return out


@dataclass(frozen=True, slots=True)
class UnverifiedAttestation:
    """Stub returned when there is nothing trustworthy to project."""

    id: str
    verification_failure: VerificationFailure
    verified: bool = field(default=False, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "@context": _information_context(None),
            "type": INFORMATION_TYPE,
            "id": self.id,
            "verified": False,
            "verificationFailure": str(self.verification_failure),
        }


AttestationInformation = VerifiedAttestation | UnverifiedAttestation


# ---------------------------------------------------------------------------
# Structural validation of incoming attestation objects
# ---------------------------------------------------------------------------


class _AttestationObjectShape(BaseModel):
    """Minimum JSON-LD node shape: a context and a type, anything else allowed."""

    model_config = ConfigDict(extra="allow")

    context: str | dict[str, Any] | list[str | dict[str, Any]] = Field(alias="@context")
    type: str | list[str]

    @field_validator("context")
    @classmethod
    def _context_not_empty(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            raise ValueError("must be a non-empty string")
        if isinstance(v, dict) and not v:
            raise ValueError("must be a non-empty object")
        if isinstance(v, list) and not v:
            raise ValueError("must be a non-empty list")
        return v

    @field_validator("type")
    @classmethod
    def _type_not_empty(cls, v: str | list[str]) -> str | list[str]:
        values = [v] if isinstance(v, str) else v
        if not values or any(not item.strip() for item in values):
            raise ValueError("must contain non-empty type names")
        return v


def validate_attestation_object(attestation_object: object) -> None:
    """Raise ValidationError unless the object looks like a JSON-LD node."""
    if not isinstance(attestation_object, Mapping):
        raise ValidationError(
            "attestationObject must be an object",
            failures=[{"property": "attestationObject", "reason": "notObject"}],
        )
    try:
        _AttestationObjectShape.model_validate(dict(attestation_object))
    except SchemaError as e:
        # loc[0] is the field alias; deeper parts name union branches, so a
        # bad union value reports once per branch.  Keep one per property.
        reasons: dict[str, str] = {}
        for err in e.errors():
            prop = str(err["loc"][0]) if err["loc"] else "attestationObject"
            reasons.setdefault(prop, err["msg"])
        failures = [{"property": prop, "reason": reason} for prop, reason in reasons.items()]
        raise ValidationError("attestationObject is invalid", failures=failures) from None
