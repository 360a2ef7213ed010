"""Attestation connectors: the create/get/transfer/destroy protocol.

Every backend kind runs the same protocol over its own resource
collaborator, so the whole state machine lives in ``AttestationConnector``
and the per-backend classes only pin the namespace.

Lifecycle of one attestation:

  create    sign the object as a verifiable credential (one identity
            call), mint a resource carrying {version, proof} as immutable
            metadata and {} as holder metadata (one resource call).
  get       resolve the resource, check the credential, project.  Soft
            outcomes (noData, proofFailed, revoked) come back as data.
  transfer  re-verify first; an attestation that does not verify cannot
            move.  Then hand the resource to the new holder address with
            fresh {holderIdentity, dateTransferred} metadata.
  destroy   burn the resource.  Terminal.

Id problems (malformed, wrong namespace) are raised as-is before any
collaborator is touched.  Collaborator failures are re-raised as the
operation's error kind with the original chained as ``__cause__``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from attestation.collaborators.identity import (
    DID_CONTEXTS,
    VERIFIABLE_CREDENTIAL_TYPE,
    IdentityConnector,
    VerifiableCredential,
)
from attestation.collaborators.resource import ResourceConnector
from attestation.core.config import DEFAULT_TAG
from attestation.core.errors import (
    AttestationError,
    AttestingFailed,
    DestroyFailed,
    RetrievalFailed,
    TransferFailed,
    ValidationError,
    VerificationFailed,
)
from attestation.core.metrics import ATTESTATION_OPERATIONS, ATTESTATION_VERIFICATIONS
from attestation.models.attestation import (
    AttestationHolder,
    AttestationInformation,
    AttestationPayload,
    AttestationProof,
    BackendKind,
    UnverifiedAttestation,
    VerificationFailure,
    VerifiedAttestation,
    utc_now_iso,
    validate_attestation_object,
)
from attestation.services import codec

logger = logging.getLogger(__name__)


def _require_strings(**values: object) -> None:
    failures = [
        {"property": name, "reason": "notEmptyString"}
        for name, value in values.items()
        if not isinstance(value, str) or not value
    ]
    if failures:
        raise ValidationError(
            ", ".join(f["property"] for f in failures) + " must be non-empty strings",
            failures=failures,
        )


def _unwrap_single(values: list[Any]) -> Any:
    return values[0] if len(values) == 1 else values


def attestation_object_from_credential(credential: VerifiableCredential) -> dict[str, Any]:
    """Rebuild the attested object from a credential.

    The subject carries the object's own fields; its ``@context`` and
    ``type`` are the credential's minus the leading VC envelope entry that
    signing prepended.  Envelope-looking entries the object itself carried
    are kept.
    """
    subject = credential.credential_subject
    if isinstance(subject, list):
        subject = subject[0] if subject else {}

    context = list(credential.context)
    if context and context[0] in DID_CONTEXTS:
        context = context[1:]
    types = list(credential.type)
    if types and types[0] == VERIFIABLE_CREDENTIAL_TYPE:
        types = types[1:]

    obj: dict[str, Any] = {}
    if context:
        obj["@context"] = _unwrap_single(context)
    if types:
        obj["type"] = _unwrap_single(types)
    obj.update(subject)
    return obj


class AttestationConnector:
    namespace: str = ""

    def __init__(
        self,
        identity: IdentityConnector,
        resources: ResourceConnector,
        *,
        tag: str = DEFAULT_TAG,
    ) -> None:
        self._identity = identity
        self._resources = resources
        self._tag = tag

    # -- bookkeeping -----------------------------------------------------------

    def _succeeded(self, operation: str, attestation_id: str) -> None:
        ATTESTATION_OPERATIONS.labels(
            operation=operation, namespace=self.namespace, result="success"
        ).inc()
        logger.info(
            "Attestation %s succeeded id=%s",
            operation,
            attestation_id,
            extra={
                "operation": operation,
                "namespace": self.namespace,
                "attestation_id": attestation_id,
            },
        )

    def _failed(self, operation: str, error: AttestationError, attestation_id: object) -> None:
        ATTESTATION_OPERATIONS.labels(
            operation=operation, namespace=self.namespace, result="failure"
        ).inc()
        logger.warning(
            "Attestation %s failed id=%s code=%s: %s",
            operation,
            attestation_id,
            error.code,
            error,
            extra={
                "operation": operation,
                "namespace": self.namespace,
                "attestation_id": attestation_id,
                "error_code": error.code,
            },
        )

    # -- operations --------------------------------------------------------------

    async def create(
        self,
        controller: str,
        address: str,
        verification_method_id: str,
        attestation_object: Mapping[str, Any],
    ) -> str:
        try:
            validate_attestation_object(attestation_object)
            _require_strings(
                controller=controller,
                address=address,
                verificationMethodId=verification_method_id,
            )

            try:
                signed = await self._identity.create_verifiable_credential(
                    controller, verification_method_id, attestation_object
                )
                resource_id = await self._resources.mint(
                    controller,
                    address,
                    self._tag,
                    AttestationPayload(proof=signed.jwt).to_dict(),
                    AttestationHolder().to_dict(),
                )
            except Exception as e:
                raise AttestingFailed(f"attesting failed: {e}") from e

            attestation_id = codec.encode(resource_id, self.namespace)
        except AttestationError as e:
            self._failed("create", e, None)
            raise

        self._succeeded("create", attestation_id)
        return attestation_id

    async def get(self, attestation_id: str) -> AttestationInformation:
        try:
            resource_id = codec.decode(attestation_id, self.namespace)
            information = await self._verify(attestation_id, resource_id)
        except AttestationError as e:
            self._failed("get", e, attestation_id)
            raise

        self._succeeded("get", attestation_id)
        return information

    async def transfer(
        self,
        controller: str,
        attestation_id: str,
        holder_identity: str,
        holder_address: str,
    ) -> None:
        try:
            resource_id = codec.decode(attestation_id, self.namespace)
            _require_strings(
                controller=controller,
                holderIdentity=holder_identity,
                holderAddress=holder_address,
            )

            try:
                information = await self._verify(attestation_id, resource_id)
            except RetrievalFailed as e:
                raise TransferFailed(f"transfer of {attestation_id} failed: {e}") from e

            if information.verification_failure is not None:
                blocked = VerificationFailed(str(information.verification_failure))
                raise TransferFailed(
                    f"transfer of {attestation_id} blocked: {blocked}",
                    reason=blocked.reason,
                ) from blocked

            metadata = AttestationHolder(
                holder_identity=holder_identity, date_transferred=utc_now_iso()
            ).to_dict()
            try:
                await self._resources.transfer(
                    controller, resource_id, holder_address, metadata
                )
            except Exception as e:
                raise TransferFailed(f"transfer of {attestation_id} failed: {e}") from e
        except AttestationError as e:
            self._failed("transfer", e, attestation_id)
            raise

        self._succeeded("transfer", attestation_id)

    async def destroy(self, controller: str, attestation_id: str) -> None:
        try:
            resource_id = codec.decode(attestation_id, self.namespace)
            _require_strings(controller=controller)
            try:
                await self._resources.burn(controller, resource_id)
            except Exception as e:
                raise DestroyFailed(f"destroy of {attestation_id} failed: {e}") from e
        except AttestationError as e:
            self._failed("destroy", e, attestation_id)
            raise

        self._succeeded("destroy", attestation_id)

    # -- verification ------------------------------------------------------------

    async def _verify(self, attestation_id: str, resource_id: str) -> AttestationInformation:
        information = await self._project(attestation_id, resource_id)
        failure = information.verification_failure
        ATTESTATION_VERIFICATIONS.labels(
            namespace=self.namespace,
            result="verified" if failure is None else str(failure),
        ).inc()
        return information

    async def _project(self, attestation_id: str, resource_id: str) -> AttestationInformation:
        try:
            resolved = await self._resources.resolve(resource_id)
        except Exception as e:
            raise RetrievalFailed(
                f"could not resolve {attestation_id}: {e}", attestation_id=attestation_id
            ) from e

        payload = AttestationPayload.from_dict(resolved.immutable_metadata)
        if payload is None or not isinstance(resolved.metadata, Mapping):
            return UnverifiedAttestation(attestation_id, VerificationFailure.NO_DATA)

        try:
            check = await self._identity.check_verifiable_credential(payload.proof)
        except Exception as e:
            raise RetrievalFailed(
                f"could not check proof of {attestation_id}: {e}",
                attestation_id=attestation_id,
            ) from e

        credential = check.credential
        if credential is None:
            return UnverifiedAttestation(attestation_id, VerificationFailure.PROOF_FAILED)

        owner = credential.issuer_id
        holder = AttestationHolder.from_dict(resolved.metadata)
        if holder.date_transferred is not None:
            holder_identity = holder.holder_identity or resolved.owner
        else:
            holder_identity = owner

        return VerifiedAttestation(
            id=attestation_id,
            date_created=credential.issuance_date,
            owner_identity=owner,
            holder_identity=holder_identity,
            date_transferred=holder.date_transferred,
            attestation_object=attestation_object_from_credential(credential),
            proof=AttestationProof(value=payload.proof),
            verification_failure=VerificationFailure.REVOKED if check.revoked else None,
        )


class NftAttestationConnector(AttestationConnector):
    """Attestations anchored to NFTs on a ledger."""

    namespace = BackendKind.NFT.value


class EntityStorageAttestationConnector(AttestationConnector):
    """Attestations anchored to entity-storage documents."""

    namespace = BackendKind.ENTITY_STORAGE.value
