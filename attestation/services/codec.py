"""Attestation identifier codec.

External id shape::

    attestation:<namespace>:<base64(backend resource id)>

The backend resource id is an opaque URN chosen by the resource backend
(``urn:nft:memory:ab12...``).  It is base64-encoded whole, so any backend
id round-trips losslessly and the outer id stays a three-part URN no
matter how many colons the inner one contains.
"""

from __future__ import annotations

import base64
import binascii
import re

from attestation.core.errors import InvalidIdentifier, NamespaceMismatch

PREFIX = "attestation"

_NAMESPACE_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")


def _check_namespace(namespace: str) -> None:
    if not isinstance(namespace, str) or not _NAMESPACE_RE.match(namespace):
        raise InvalidIdentifier(f"invalid namespace {namespace!r}", namespace=namespace)


def encode(backend_resource_id: str, namespace: str) -> str:
    if not isinstance(backend_resource_id, str) or not backend_resource_id:
        raise InvalidIdentifier("backend resource id must be a non-empty string")
    _check_namespace(namespace)
    encoded = base64.b64encode(backend_resource_id.encode("utf-8")).decode("ascii")
    return f"{PREFIX}:{namespace}:{encoded}"


def parse(attestation_id: str) -> tuple[str, str]:
    """Split an id into ``(namespace, encoded)`` without decoding it."""
    if not isinstance(attestation_id, str):
        raise InvalidIdentifier("attestation id must be a string")
    parts = attestation_id.split(":", 2)
    if len(parts) != 3 or parts[0] != PREFIX or not parts[2]:
        raise InvalidIdentifier(
            f"not an attestation id: {attestation_id!r}", attestation_id=attestation_id
        )
    namespace, encoded = parts[1], parts[2]
    _check_namespace(namespace)
    return namespace, encoded


def namespace_of(attestation_id: str) -> str:
    return parse(attestation_id)[0]


def decode(attestation_id: str, namespace: str) -> str:
    """Return the backend resource id carried by ``attestation_id``.

    Raises NamespaceMismatch when the id belongs to another namespace; the
    namespace is checked before the payload is decoded.
    """
    declared, encoded = parse(attestation_id)
    if declared != namespace:
        raise NamespaceMismatch(
            f"attestation id namespace {declared!r} does not match {namespace!r}",
            expected=namespace,
            actual=declared,
        )
    try:
        backend_resource_id = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise InvalidIdentifier(
            f"attestation id payload is not valid base64: {attestation_id!r}",
            attestation_id=attestation_id,
        ) from None
    if not backend_resource_id:
        raise InvalidIdentifier(f"attestation id has an empty payload: {attestation_id!r}")
    return backend_resource_id
