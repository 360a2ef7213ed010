"""Process-wide wiring of collaborators, connectors and the service.

Built once at startup (``app.state.container`` for the API, once per run
for the CLI) and passed down; tests build their own with in-memory
collaborators.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass

from attestation.collaborators.identity import JwtIdentityConnector
from attestation.collaborators.resource import (
    InMemoryResourceConnector,
    RedisResourceConnector,
    ResourceConnector,
)
from attestation.collaborators.vault import InMemoryVaultConnector
from attestation.collaborators.wallet import DeterministicWalletConnector
from attestation.core.config import Settings
from attestation.models.attestation import BackendKind
from attestation.services.attestation_service import AttestationService, ServiceConfig
from attestation.services.connector import (
    EntityStorageAttestationConnector,
    NftAttestationConnector,
)
from attestation.services.registry import ConnectorRegistry

logger = logging.getLogger(__name__)

DID_METHOD = "entity-storage"


@dataclass
class Container:
    vault: InMemoryVaultConnector
    identity: JwtIdentityConnector
    wallet: DeterministicWalletConnector
    resources: dict[BackendKind, ResourceConnector]
    registry: ConnectorRegistry
    service: AttestationService
    redis_client: object | None = None


def build_registry(
    settings: Settings,
    identity: JwtIdentityConnector,
    resources: dict[BackendKind, ResourceConnector],
) -> ConnectorRegistry:
    registry = ConnectorRegistry()
    registry.register(
        BackendKind.NFT,
        lambda: NftAttestationConnector(
            identity, resources[BackendKind.NFT], tag=settings.tag
        ),
    )
    registry.register(
        BackendKind.ENTITY_STORAGE,
        lambda: EntityStorageAttestationConnector(
            identity, resources[BackendKind.ENTITY_STORAGE], tag=settings.tag
        ),
    )
    return registry


def build_container(settings: Settings, redis_client=None) -> Container:
    vault = InMemoryVaultConnector()
    identity = JwtIdentityConnector(vault)
    wallet = DeterministicWalletConnector(vault)

    entity_storage: ResourceConnector
    if redis_client is not None:
        entity_storage = RedisResourceConnector(redis_client)
    else:
        entity_storage = InMemoryResourceConnector("urn:entity-storage:memory")
    resources: dict[BackendKind, ResourceConnector] = {
        BackendKind.NFT: InMemoryResourceConnector("urn:nft:memory"),
        BackendKind.ENTITY_STORAGE: entity_storage,
    }

    registry = build_registry(settings, identity, resources)
    service = AttestationService(registry, wallet, ServiceConfig.from_settings(settings))
    logger.debug(
        "Attestation container built namespaces=%s redis=%s",
        registry.namespaces(),
        redis_client is not None,
    )
    return Container(
        vault=vault,
        identity=identity,
        wallet=wallet,
        resources=resources,
        registry=registry,
        service=service,
        redis_client=redis_client,
    )


def controller_from_seed(seed: bytes) -> str:
    return f"did:{DID_METHOD}:0x{hashlib.sha256(seed).hexdigest()}"


def derive_private_key(seed: bytes, fragment: str) -> bytes:
    return hashlib.sha256(seed + b"/" + fragment.encode()).digest()


def method_fragment(verification_method_id: str) -> str:
    return verification_method_id.rpartition("#")[2] or verification_method_id


async def enroll_seed(
    container: Container,
    seed: bytes,
    fragment: str,
    private_key: bytes | None = None,
) -> str:
    """Register the seed's identity and verification method; returns the controller DID.

    The same seed always yields the same DID, wallet addresses and (unless
    ``private_key`` is given) signing key, so enrolling again is harmless.
    """
    controller = controller_from_seed(seed)
    await container.vault.set_secret(container.wallet.seed_name(controller), seed)
    await container.identity.create_identity(controller, identity=controller)
    await container.identity.add_verification_method(
        controller,
        controller,
        fragment,
        private_key or derive_private_key(seed, fragment),
    )
    return controller


async def provision_controller(container: Container, settings: Settings) -> str | None:
    """Enroll the configured controller, if any; returns its DID."""
    if settings.controller_seed is None:
        if settings.controller_private_key is not None:
            logger.warning(
                "ATTESTATION_CONTROLLER_PRIVATE_KEY ignored without ATTESTATION_CONTROLLER_SEED"
            )
        return None
    controller = await enroll_seed(
        container,
        settings.controller_seed,
        method_fragment(settings.verification_method_id),
        settings.controller_private_key,
    )
    logger.info("Controller provisioned identity=%s", controller)
    return controller
