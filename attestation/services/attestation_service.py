"""Attestation service facade.

The REST routes and the CLI talk to this class, never to a connector
directly.  On top of the connector protocol it adds:

  - address derivation: the controller's (and, on transfer, the holder's)
    ledger address comes from the wallet collaborator
  - namespace selection: explicit namespace, else the configured default,
    else the first registered backend
  - node identity injection: optionally stamps ``nodeIdentity`` onto a
    copy of the object being attested
  - verification method expansion: a bare fragment name such as
    ``attestation-assertion`` becomes ``<controller>#attestation-assertion``
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from attestation.collaborators.wallet import WalletConnector
from attestation.core.config import DEFAULT_VERIFICATION_METHOD_ID, Settings
from attestation.core.errors import NoConnectors
from attestation.models.attestation import AttestationInformation
from attestation.services.registry import ConnectorRegistry

NODE_IDENTITY_KEY = "nodeIdentity"


@dataclass(frozen=True)
class ServiceConfig:
    default_namespace: str | None = None
    wallet_address_index: int = 0
    include_node_identity: bool = False
    node_identity: str | None = None
    verification_method_id: str = DEFAULT_VERIFICATION_METHOD_ID

    @classmethod
    def from_settings(cls, settings: Settings) -> ServiceConfig:
        return cls(
            default_namespace=settings.default_namespace,
            wallet_address_index=settings.wallet_address_index,
            include_node_identity=settings.include_node_identity,
            node_identity=settings.node_identity,
            verification_method_id=settings.verification_method_id,
        )


def expand_verification_method_id(controller: str, verification_method_id: str) -> str:
    """``fragment`` or ``#fragment`` -> ``<controller>#fragment``; full ids pass through."""
    if verification_method_id.startswith("did:"):
        return verification_method_id
    fragment = verification_method_id.lstrip("#")
    if not fragment:
        return verification_method_id
    return f"{controller}#{fragment}"


class AttestationService:
    def __init__(
        self,
        registry: ConnectorRegistry,
        wallet: WalletConnector,
        config: ServiceConfig | None = None,
    ) -> None:
        if len(registry) == 0:
            raise NoConnectors("attestation service needs at least one connector")
        self._registry = registry
        self._wallet = wallet
        self._config = config or ServiceConfig()
        self._default_namespace = registry.default_namespace(self._config.default_namespace)

    @property
    def registry(self) -> ConnectorRegistry:
        return self._registry

    async def _address_of(self, identity: str) -> str:
        addresses = await self._wallet.get_addresses(
            identity, 0, self._config.wallet_address_index, 1
        )
        return addresses[0]

    def _prepare_object(self, attestation_object: Mapping[str, Any]) -> Mapping[str, Any]:
        if not (self._config.include_node_identity and self._config.node_identity):
            return attestation_object
        if not isinstance(attestation_object, Mapping):
            # Let the connector report the validation error
            return attestation_object
        stamped = dict(attestation_object)
        stamped[NODE_IDENTITY_KEY] = self._config.node_identity
        return stamped

    async def create(
        self,
        controller: str,
        verification_method_id: str | None,
        attestation_object: Mapping[str, Any],
        namespace: str | None = None,
    ) -> str:
        """Attest ``attestation_object`` as ``controller``; returns the attestation id."""
        connector = self._registry.get(namespace or self._default_namespace)
        method_id = expand_verification_method_id(
            controller, verification_method_id or self._config.verification_method_id
        )
        address = await self._address_of(controller)
        return await connector.create(
            controller, address, method_id, self._prepare_object(attestation_object)
        )

    async def get(self, attestation_id: str) -> AttestationInformation:
        return await self._registry.resolve_by_id(attestation_id).get(attestation_id)

    async def transfer(
        self,
        controller: str,
        attestation_id: str,
        holder_identity: str,
        holder_address: str | None = None,
    ) -> None:
        connector = self._registry.resolve_by_id(attestation_id)
        if not holder_address and holder_identity:
            holder_address = await self._address_of(holder_identity)
        await connector.transfer(
            controller, attestation_id, holder_identity, holder_address or ""
        )

    async def destroy(self, controller: str, attestation_id: str) -> None:
        await self._registry.resolve_by_id(attestation_id).destroy(controller, attestation_id)
