"""Namespace -> connector dispatch.

The registry is filled once at startup (one ``register`` call per backend
kind) and is read-only afterwards.  Connectors are built lazily: a
factory runs the first time its namespace is used and the instance is
reused for the life of the process.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from attestation.core.errors import NamespaceMismatch, NoConnectors
from attestation.models.attestation import BackendKind
from attestation.services import codec

if TYPE_CHECKING:
    from attestation.services.connector import AttestationConnector

logger = logging.getLogger(__name__)

ConnectorFactory = Callable[[], "AttestationConnector"]


class ConnectorRegistry:
    def __init__(self) -> None:
        # dict preserves insertion order: namespaces() reports registration order
        self._factories: dict[BackendKind, ConnectorFactory] = {}
        self._instances: dict[BackendKind, AttestationConnector] = {}

    def register(self, kind: BackendKind, factory: ConnectorFactory) -> None:
        kind = BackendKind(kind)
        if kind in self._factories:
            raise ValueError(f"connector for namespace {kind.value!r} already registered")
        self._factories[kind] = factory
        logger.debug("Registered attestation connector namespace=%s", kind.value)

    def namespaces(self) -> list[str]:
        return [kind.value for kind in self._factories]

    def __len__(self) -> int:
        return len(self._factories)

    def get(self, namespace: str) -> AttestationConnector:
        try:
            kind = BackendKind(namespace)
        except ValueError:
            raise NamespaceMismatch(
                f"no connector registered for namespace {namespace!r}", actual=namespace
            ) from None
        factory = self._factories.get(kind)
        if factory is None:
            raise NamespaceMismatch(
                f"no connector registered for namespace {namespace!r}", actual=namespace
            )

        connector = self._instances.get(kind)
        if connector is None:
            connector = factory()
            self._instances[kind] = connector
        if connector.namespace != kind.value:
            raise NamespaceMismatch(
                f"connector for {kind.value!r} reports namespace {connector.namespace!r}",
                expected=kind.value,
                actual=connector.namespace,
            )
        return connector

    def resolve_by_id(self, attestation_id: str) -> AttestationConnector:
        return self.get(codec.namespace_of(attestation_id))

    def default_namespace(self, configured: str | None = None) -> str:
        if not self._factories:
            raise NoConnectors("no attestation connectors registered")
        if configured:
            if configured in self.namespaces():
                return configured
            logger.warning(
                "Configured default namespace %r is not registered, using %r",
                configured,
                next(iter(self._factories)).value,
            )
        return next(iter(self._factories)).value
