from __future__ import annotations

from typing import Protocol, runtime_checkable


class VaultKeyNotFound(KeyError):
    pass


@runtime_checkable
class VaultConnector(Protocol):
    async def set_key(self, name: str, private_key_pem: bytes) -> None:
        """Store a PEM-encoded private key under ``name``."""
        ...

    async def get_key(self, name: str) -> bytes:
        """Return the PEM-encoded private key; raises VaultKeyNotFound."""
        ...

    async def set_secret(self, name: str, value: bytes) -> None: ...

    async def get_secret(self, name: str) -> bytes | None: ...


class InMemoryVaultConnector:
    """Process-local vault for development, the CLI and tests."""

    def __init__(self) -> None:
        self._keys: dict[str, bytes] = {}
        self._secrets: dict[str, bytes] = {}

    async def set_key(self, name: str, private_key_pem: bytes) -> None:
        self._keys[name] = private_key_pem

    async def get_key(self, name: str) -> bytes:
        try:
            return self._keys[name]
        except KeyError:
            raise VaultKeyNotFound(name) from None

    async def set_secret(self, name: str, value: bytes) -> None:
        self._secrets[name] = value

    async def get_secret(self, name: str) -> bytes | None:
        return self._secrets.get(name)
