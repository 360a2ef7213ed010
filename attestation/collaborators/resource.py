"""Resource collaborator: the ownership token an attestation is anchored to.

An attestation's proof lives on a backend resource.  The connectors treat
every backend the same way through ``ResourceConnector``:

  mint      create a resource owned by ``address``, carrying immutable
            metadata (the signed proof) and mutable metadata (holder info)
  resolve   read it back
  transfer  move it to a new address and replace the mutable metadata
  burn      delete it

Two implementations ship here:

  InMemoryResourceConnector
      Process-local dict.  Used for the NFT namespace in development and
      tests, and for entity storage when no REDIS_URL is configured.

  RedisResourceConnector
      Entity storage shared across API instances and CLI runs.  Transfer
      and burn are read-modify-write cycles guarded by WATCH/MULTI, so a
      concurrent change to the same resource aborts the slower writer
      with ResourceConflict instead of silently overwriting.

Authorization rule (both backends): until the first transfer, only the
controller that minted the resource may transfer or burn it.  Once the
mutable metadata carries ``dateTransferred``, only the identity named there
as ``holderIdentity`` may; the issuer gives up control on hand-over.
"""

from __future__ import annotations

import copy
import json
import logging
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from redis.exceptions import WatchError

logger = logging.getLogger(__name__)


class ResourceError(Exception):
    pass


class ResourceNotFound(ResourceError):
    pass


class ResourceAccessDenied(ResourceError):
    pass


class ResourceConflict(ResourceError):
    pass


@dataclass(frozen=True, slots=True)
class ResolvedResource:
    owner: str
    issuer: str
    tag: str
    immutable_metadata: dict[str, Any] | None
    metadata: dict[str, Any] | None


@runtime_checkable
class ResourceConnector(Protocol):
    async def mint(
        self,
        controller: str,
        address: str,
        tag: str,
        immutable_metadata: Mapping[str, Any] | None,
        metadata: Mapping[str, Any] | None,
    ) -> str:
        """Create a resource and return its backend id (a URN)."""
        ...

    async def resolve(self, resource_id: str) -> ResolvedResource:
        """Raises ResourceNotFound for an unknown id."""
        ...

    async def transfer(
        self,
        controller: str,
        resource_id: str,
        new_address: str,
        metadata: Mapping[str, Any],
    ) -> None: ...

    async def burn(self, controller: str, resource_id: str) -> None: ...


def _new_record(
    controller: str,
    address: str,
    tag: str,
    immutable_metadata: Mapping[str, Any] | None,
    metadata: Mapping[str, Any] | None,
) -> dict[str, Any]:
    return {
        "issuer": controller,
        "owner": address,
        "tag": tag,
        "immutableMetadata": (
            copy.deepcopy(dict(immutable_metadata)) if immutable_metadata is not None else None
        ),
        "metadata": copy.deepcopy(dict(metadata)) if metadata is not None else None,
    }


def _to_resolved(record: Mapping[str, Any]) -> ResolvedResource:
    return ResolvedResource(
        owner=record["owner"],
        issuer=record["issuer"],
        tag=record["tag"],
        immutable_metadata=copy.deepcopy(record.get("immutableMetadata")),
        metadata=copy.deepcopy(record.get("metadata")),
    )


def _current_controller(record: Mapping[str, Any]) -> str | None:
    metadata = record.get("metadata") or {}
    if metadata.get("dateTransferred"):
        return metadata.get("holderIdentity")
    return record["issuer"]


def _authorize(controller: str, resource_id: str, record: Mapping[str, Any]) -> None:
    if controller != _current_controller(record):
        raise ResourceAccessDenied(f"{controller} may not modify {resource_id}")


class InMemoryResourceConnector:
    """Dict-backed ledger; ids look like ``urn:nft:memory:<hex>``."""

    def __init__(self, urn_prefix: str = "urn:nft:memory") -> None:
        self._urn_prefix = urn_prefix
        self._records: dict[str, dict[str, Any]] = {}

    async def mint(
        self,
        controller: str,
        address: str,
        tag: str,
        immutable_metadata: Mapping[str, Any] | None,
        metadata: Mapping[str, Any] | None,
    ) -> str:
        resource_id = f"{self._urn_prefix}:{secrets.token_hex(16)}"
        self._records[resource_id] = _new_record(
            controller, address, tag, immutable_metadata, metadata
        )
        return resource_id

    async def resolve(self, resource_id: str) -> ResolvedResource:
        return _to_resolved(self._record(resource_id))

    async def transfer(
        self,
        controller: str,
        resource_id: str,
        new_address: str,
        metadata: Mapping[str, Any],
    ) -> None:
        record = self._record(resource_id)
        _authorize(controller, resource_id, record)
        record["owner"] = new_address
        record["metadata"] = copy.deepcopy(dict(metadata))

    async def burn(self, controller: str, resource_id: str) -> None:
        _authorize(controller, resource_id, self._record(resource_id))
        del self._records[resource_id]

    def _record(self, resource_id: str) -> dict[str, Any]:
        record = self._records.get(resource_id)
        if record is None:
            raise ResourceNotFound(resource_id)
        return record


class RedisResourceConnector:
    """Entity storage in Redis, one JSON document per resource.

    Key layout: ``attestation:resource:<resource id>``.  The client must be
    created with ``decode_responses=True``.
    """

    _PREFIX = "attestation:resource:"

    def __init__(self, redis_client, urn_prefix: str = "urn:entity-storage:attestation") -> None:
        self._redis = redis_client
        self._urn_prefix = urn_prefix

    def _key(self, resource_id: str) -> str:
        return f"{self._PREFIX}{resource_id}"

    async def mint(
        self,
        controller: str,
        address: str,
        tag: str,
        immutable_metadata: Mapping[str, Any] | None,
        metadata: Mapping[str, Any] | None,
    ) -> str:
        resource_id = f"{self._urn_prefix}:{secrets.token_hex(16)}"
        record = _new_record(controller, address, tag, immutable_metadata, metadata)
        # NX: a random-id collision must not overwrite an existing resource
        created = await self._redis.set(self._key(resource_id), json.dumps(record), nx=True)
        if not created:
            raise ResourceConflict(f"resource {resource_id} already exists")
        return resource_id

    async def resolve(self, resource_id: str) -> ResolvedResource:
        raw = await self._redis.get(self._key(resource_id))
        if raw is None:
            raise ResourceNotFound(resource_id)
        return _to_resolved(json.loads(raw))

    async def transfer(
        self,
        controller: str,
        resource_id: str,
        new_address: str,
        metadata: Mapping[str, Any],
    ) -> None:
        key = self._key(resource_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is None:
                    raise ResourceNotFound(resource_id)
                record = json.loads(raw)
                _authorize(controller, resource_id, record)
                record["owner"] = new_address
                record["metadata"] = dict(metadata)

                pipe.multi()
                pipe.set(key, json.dumps(record))
                await pipe.execute()
            except WatchError:
                logger.warning("Concurrent update aborted transfer of %s", resource_id)
                raise ResourceConflict(f"{resource_id} changed during transfer") from None

    async def burn(self, controller: str, resource_id: str) -> None:
        key = self._key(resource_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is None:
                    raise ResourceNotFound(resource_id)
                _authorize(controller, resource_id, json.loads(raw))

                pipe.multi()
                pipe.delete(key)
                await pipe.execute()
            except WatchError:
                logger.warning("Concurrent update aborted burn of %s", resource_id)
                raise ResourceConflict(f"{resource_id} changed during burn") from None
