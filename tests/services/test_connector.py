"""Tests for the attestation connector protocol (create/get/transfer/destroy).

Connectors run against the in-memory collaborators from the test
container.  ``RecordingResources`` wraps the in-memory resource backend
so tests can assert which backend calls were (or were not) made.
"""

from __future__ import annotations

import logging

import pytest
from prometheus_client import REGISTRY

from attestation.collaborators.identity import IdentityNotFound
from attestation.collaborators.resource import (
    InMemoryResourceConnector,
    ResourceAccessDenied,
    ResourceNotFound,
)
from attestation.core.errors import (
    AttestingFailed,
    DestroyFailed,
    NamespaceMismatch,
    RetrievalFailed,
    TransferFailed,
    ValidationError,
    VerificationFailed,
)
from attestation.models.attestation import (
    UnverifiedAttestation,
    VerificationFailure,
    VerifiedAttestation,
)
from attestation.services import codec
from attestation.services.connector import (
    EntityStorageAttestationConnector,
    NftAttestationConnector,
    attestation_object_from_credential,
)
from attestation.services.container import Container
from tests.conftest import CONTROLLER, DOCUMENT, OTHER_CONTROLLER, run

ADDRESS = "tst1qcontrolleraddress"
HOLDER = "did:entity-storage:0xholder"
HOLDER_ADDRESS = "tst1qholderaddress"


class RecordingResources(InMemoryResourceConnector):
    def __init__(self) -> None:
        super().__init__("urn:nft:memory")
        self.calls: list[str] = []

    async def mint(self, *args, **kwargs):
        self.calls.append("mint")
        return await super().mint(*args, **kwargs)

    async def resolve(self, resource_id):
        self.calls.append("resolve")
        return await super().resolve(resource_id)

    async def transfer(self, *args, **kwargs):
        self.calls.append("transfer")
        return await super().transfer(*args, **kwargs)

    async def burn(self, *args, **kwargs):
        self.calls.append("burn")
        return await super().burn(*args, **kwargs)


@pytest.fixture
def resources() -> RecordingResources:
    return RecordingResources()


@pytest.fixture
def connector(container: Container, resources: RecordingResources) -> NftAttestationConnector:
    return NftAttestationConnector(container.identity, resources)


def _sample(name: str, labels: dict) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels)
    return value if value is not None else 0.0


def _create(connector, method_id: str, obj=None) -> str:
    return run(connector.create(CONTROLLER, ADDRESS, method_id, obj or dict(DOCUMENT)))


# ---- create + get ----


def test_create_then_get_is_verified(connector, enrolled: str) -> None:
    attestation_id = _create(connector, enrolled)
    assert attestation_id.startswith("attestation:nft:")

    info = run(connector.get(attestation_id))
    assert isinstance(info, VerifiedAttestation)
    assert info.verified is True
    assert info.verification_failure is None
    assert info.attestation_object == DOCUMENT
    assert info.owner_identity == CONTROLLER
    assert info.holder_identity == CONTROLLER
    assert info.date_transferred is None
    assert info.proof.type == "JwtProof"
    assert len(info.proof.value.split(".")) == 3


def test_create_makes_one_mint(connector, resources, enrolled: str) -> None:
    attestation_id = _create(connector, enrolled)
    assert resources.calls == ["mint"]

    resolved = run(resources.resolve(codec.decode(attestation_id, "nft")))
    assert resolved.owner == ADDRESS
    assert resolved.tag == "TWIN-ATTESTATION"
    assert resolved.immutable_metadata["version"] == "1"
    assert resolved.metadata == {}


def test_create_uses_configured_tag(container: Container, enrolled: str) -> None:
    resources = InMemoryResourceConnector()
    connector = NftAttestationConnector(container.identity, resources, tag="MY-TAG")
    attestation_id = _create(connector, enrolled)
    resolved = run(resources.resolve(codec.decode(attestation_id, "nft")))
    assert resolved.tag == "MY-TAG"


def test_create_rejects_object_without_type(connector, resources, enrolled: str) -> None:
    with pytest.raises(ValidationError) as exc_info:
        _create(connector, enrolled, {"@context": "https://schema.org/", "name": "x"})
    assert any(f["property"] == "type" for f in exc_info.value.failures)
    assert resources.calls == []


def test_create_rejects_non_object(connector, resources, enrolled: str) -> None:
    with pytest.raises(ValidationError):
        run(connector.create(CONTROLLER, ADDRESS, enrolled, ["not", "an", "object"]))
    assert resources.calls == []


def test_create_rejects_empty_address(connector, resources, enrolled: str) -> None:
    with pytest.raises(ValidationError) as exc_info:
        run(connector.create(CONTROLLER, "", enrolled, dict(DOCUMENT)))
    assert exc_info.value.failures == [{"property": "address", "reason": "notEmptyString"}]
    assert resources.calls == []


def test_create_wraps_identity_failure(connector, resources) -> None:
    with pytest.raises(AttestingFailed) as exc_info:
        _create(connector, f"{CONTROLLER}#missing")
    assert isinstance(exc_info.value.__cause__, IdentityNotFound)
    assert resources.calls == []


def test_create_with_list_context_and_types(connector, enrolled: str) -> None:
    obj = {
        "@context": ["https://schema.org/", {"ex": "https://example.org/"}],
        "type": ["DigitalDocument", "CreativeWork"],
        "name": "Multi",
    }
    info = run(connector.get(_create(connector, enrolled, obj)))
    assert info.attestation_object == obj


def test_create_with_object_context(connector, enrolled: str) -> None:
    obj = {
        "@context": {"@vocab": "https://schema.org/"},
        "type": "DigitalDocument",
        "name": "Inline vocabulary",
    }
    info = run(connector.get(_create(connector, enrolled, obj)))
    assert info.verified is True
    assert info.attestation_object == obj


# ---- soft verification failures ----


def test_get_no_data_when_proof_missing(connector, resources) -> None:
    resource_id = run(resources.mint(CONTROLLER, ADDRESS, "T", None, {}))
    info = run(connector.get(codec.encode(resource_id, "nft")))
    assert isinstance(info, UnverifiedAttestation)
    assert info.verified is False
    assert info.verification_failure == VerificationFailure.NO_DATA


def test_get_no_data_when_metadata_missing(connector, resources) -> None:
    resource_id = run(
        resources.mint(CONTROLLER, ADDRESS, "T", {"version": "1", "proof": "a.b.c"}, None)
    )
    info = run(connector.get(codec.encode(resource_id, "nft")))
    assert info.verification_failure == VerificationFailure.NO_DATA


def test_get_proof_failed_for_garbage_proof(connector, resources) -> None:
    resource_id = run(
        resources.mint(CONTROLLER, ADDRESS, "T", {"version": "1", "proof": "not-a-jwt"}, {})
    )
    info = run(connector.get(codec.encode(resource_id, "nft")))
    assert isinstance(info, UnverifiedAttestation)
    assert info.verification_failure == VerificationFailure.PROOF_FAILED


def test_get_revoked(container: Container, connector, enrolled: str) -> None:
    attestation_id = _create(connector, enrolled)
    run(container.identity.revoke_verifiable_credential(CONTROLLER, CONTROLLER, 0))

    info = run(connector.get(attestation_id))
    assert isinstance(info, VerifiedAttestation)
    assert info.verified is False
    assert info.verification_failure == VerificationFailure.REVOKED
    assert info.attestation_object == DOCUMENT


def test_get_counts_verification_outcome(connector, enrolled: str) -> None:
    labels = {"namespace": "nft", "result": "verified"}
    before = _sample("attestation_verifications_total", labels)
    run(connector.get(_create(connector, enrolled)))
    assert _sample("attestation_verifications_total", labels) - before == 1


# ---- transfer ----


def test_transfer_then_get(connector, enrolled: str) -> None:
    attestation_id = _create(connector, enrolled)
    created = run(connector.get(attestation_id))

    run(connector.transfer(CONTROLLER, attestation_id, HOLDER, HOLDER_ADDRESS))

    info = run(connector.get(attestation_id))
    assert info.verified is True
    assert info.holder_identity == HOLDER
    assert info.owner_identity == CONTROLLER
    assert info.date_transferred is not None
    assert info.date_transferred > info.date_created
    assert info.attestation_object == created.attestation_object
    assert info.proof == created.proof


def test_transfer_moves_resource_to_holder_address(connector, resources, enrolled: str) -> None:
    attestation_id = _create(connector, enrolled)
    run(connector.transfer(CONTROLLER, attestation_id, HOLDER, HOLDER_ADDRESS))

    resolved = run(resources.resolve(codec.decode(attestation_id, "nft")))
    assert resolved.owner == HOLDER_ADDRESS
    assert resolved.metadata["holderIdentity"] == HOLDER
    assert "dateTransferred" in resolved.metadata


def test_new_holder_can_transfer_again(connector, enrolled: str) -> None:
    attestation_id = _create(connector, enrolled)
    run(connector.transfer(CONTROLLER, attestation_id, HOLDER, HOLDER_ADDRESS))
    run(connector.transfer(HOLDER, attestation_id, OTHER_CONTROLLER, "tst1qother"))

    info = run(connector.get(attestation_id))
    assert info.holder_identity == OTHER_CONTROLLER
    assert info.owner_identity == CONTROLLER


def test_transfer_blocked_when_unverifiable(connector, resources) -> None:
    resource_id = run(
        resources.mint(CONTROLLER, ADDRESS, "T", {"version": "1", "proof": "x.y.z"}, {})
    )
    resources.calls.clear()

    with pytest.raises(TransferFailed) as exc_info:
        run(connector.transfer(CONTROLLER, codec.encode(resource_id, "nft"), HOLDER, HOLDER_ADDRESS))

    cause = exc_info.value.__cause__
    assert isinstance(cause, VerificationFailed)
    assert cause.reason == "proofFailed"
    assert "transfer" not in resources.calls


def test_transfer_blocked_when_revoked(container: Container, connector, resources, enrolled: str) -> None:
    attestation_id = _create(connector, enrolled)
    run(container.identity.revoke_verifiable_credential(CONTROLLER, CONTROLLER, 0))

    with pytest.raises(TransferFailed) as exc_info:
        run(connector.transfer(CONTROLLER, attestation_id, HOLDER, HOLDER_ADDRESS))
    assert exc_info.value.__cause__.reason == "revoked"
    assert "transfer" not in resources.calls


def test_transfer_by_stranger_fails(connector, enrolled: str) -> None:
    attestation_id = _create(connector, enrolled)
    with pytest.raises(TransferFailed) as exc_info:
        run(connector.transfer(OTHER_CONTROLLER, attestation_id, HOLDER, HOLDER_ADDRESS))
    assert isinstance(exc_info.value.__cause__, ResourceAccessDenied)


def test_previous_owner_loses_control_after_transfer(connector, enrolled: str) -> None:
    attestation_id = _create(connector, enrolled)
    run(connector.transfer(CONTROLLER, attestation_id, HOLDER, HOLDER_ADDRESS))

    with pytest.raises(TransferFailed) as exc_info:
        run(connector.transfer(CONTROLLER, attestation_id, OTHER_CONTROLLER, "tst1qother"))
    assert isinstance(exc_info.value.__cause__, ResourceAccessDenied)

    with pytest.raises(DestroyFailed) as exc_info:
        run(connector.destroy(CONTROLLER, attestation_id))
    assert isinstance(exc_info.value.__cause__, ResourceAccessDenied)

    info = run(connector.get(attestation_id))
    assert info.holder_identity == HOLDER


def test_holder_falls_back_to_resource_owner(container: Container, connector, resources, enrolled: str) -> None:
    signed = run(
        container.identity.create_verifiable_credential(CONTROLLER, enrolled, dict(DOCUMENT))
    )
    resource_id = run(
        resources.mint(
            CONTROLLER,
            ADDRESS,
            "T",
            {"version": "1", "proof": signed.jwt},
            {"dateTransferred": "2030-01-01T00:00:00.000000Z"},
        )
    )
    info = run(connector.get(codec.encode(resource_id, "nft")))
    assert info.holder_identity == ADDRESS
    assert info.date_transferred == "2030-01-01T00:00:00.000000Z"


# ---- destroy ----


def test_destroy_then_get_fails(connector, enrolled: str) -> None:
    attestation_id = _create(connector, enrolled)
    run(connector.destroy(CONTROLLER, attestation_id))

    with pytest.raises(RetrievalFailed) as exc_info:
        run(connector.get(attestation_id))
    assert isinstance(exc_info.value.__cause__, ResourceNotFound)


def test_destroy_by_stranger_fails(connector, enrolled: str) -> None:
    attestation_id = _create(connector, enrolled)
    with pytest.raises(DestroyFailed) as exc_info:
        run(connector.destroy(OTHER_CONTROLLER, attestation_id))
    assert isinstance(exc_info.value.__cause__, ResourceAccessDenied)


def test_destroy_unknown_resource(connector) -> None:
    with pytest.raises(DestroyFailed):
        run(connector.destroy(CONTROLLER, codec.encode("urn:nft:memory:nope", "nft")))


# ---- namespace checks happen before any backend call ----


def test_namespace_mismatch_before_backend_calls(connector, resources) -> None:
    foreign = codec.encode("urn:entity-storage:memory:01", "entity-storage")

    with pytest.raises(NamespaceMismatch):
        run(connector.get(foreign))
    with pytest.raises(NamespaceMismatch):
        run(connector.transfer(CONTROLLER, foreign, HOLDER, HOLDER_ADDRESS))
    with pytest.raises(NamespaceMismatch):
        run(connector.destroy(CONTROLLER, foreign))

    assert resources.calls == []


def test_entity_storage_connector_uses_its_namespace(container: Container, enrolled: str) -> None:
    connector = EntityStorageAttestationConnector(
        container.identity, InMemoryResourceConnector("urn:entity-storage:memory")
    )
    attestation_id = _create(connector, enrolled)
    assert codec.namespace_of(attestation_id) == "entity-storage"
    assert run(connector.get(attestation_id)).verified is True


# ---- observability ----


def test_operations_counted(connector, enrolled: str) -> None:
    ok = {"operation": "create", "namespace": "nft", "result": "success"}
    failed = {"operation": "create", "namespace": "nft", "result": "failure"}
    ok_before = _sample("attestation_operations_total", ok)
    failed_before = _sample("attestation_operations_total", failed)

    _create(connector, enrolled)
    with pytest.raises(ValidationError):
        _create(connector, enrolled, {"name": "no context"})

    assert _sample("attestation_operations_total", ok) - ok_before == 1
    assert _sample("attestation_operations_total", failed) - failed_before == 1


def test_operations_logged_with_context(
    connector, enrolled: str, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO, logger="attestation.services.connector"):
        attestation_id = _create(connector, enrolled)

    records = [r for r in caplog.records if getattr(r, "operation", None) == "create"]
    assert records
    assert records[-1].attestation_id == attestation_id
    assert records[-1].namespace == "nft"


def test_proof_not_logged(connector, enrolled: str, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.DEBUG):
        attestation_id = _create(connector, enrolled)
        info = run(connector.get(attestation_id))

    assert info.proof.value not in " ".join(caplog.messages)


# ---- projection helper ----


def test_attestation_object_from_credential_strips_envelope(container: Container, enrolled: str) -> None:
    signed = run(
        container.identity.create_verifiable_credential(CONTROLLER, enrolled, dict(DOCUMENT))
    )
    assert signed.credential.context[0] == "https://www.w3.org/2018/credentials/v1"
    assert signed.credential.type[0] == "VerifiableCredential"
    assert attestation_object_from_credential(signed.credential) == DOCUMENT


def test_attestation_object_from_credential_keeps_own_envelope_entries(
    container: Container, enrolled: str
) -> None:
    obj = {
        "@context": ["https://www.w3.org/2018/credentials/v1", "https://schema.org/"],
        "type": ["VerifiableCredential", "DigitalDocument"],
        "name": "Self-describing",
    }
    signed = run(container.identity.create_verifiable_credential(CONTROLLER, enrolled, dict(obj)))
    assert signed.credential.context[:2] == [
        "https://www.w3.org/2018/credentials/v1",
        "https://www.w3.org/2018/credentials/v1",
    ]
    assert attestation_object_from_credential(signed.credential) == obj


def test_attestation_object_from_credential_object_context(
    container: Container, enrolled: str
) -> None:
    obj = {"@context": {"@vocab": "https://schema.org/"}, "type": "DigitalDocument", "name": "x"}
    signed = run(container.identity.create_verifiable_credential(CONTROLLER, enrolled, dict(obj)))
    assert attestation_object_from_credential(signed.credential) == obj
