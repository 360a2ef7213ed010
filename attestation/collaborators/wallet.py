from __future__ import annotations

import hashlib
import hmac
from typing import Protocol, runtime_checkable

from attestation.collaborators.vault import VaultConnector

ADDRESS_PREFIX = "tst1q"


@runtime_checkable
class WalletConnector(Protocol):
    async def get_addresses(
        self, identity: str, account_index: int, address_index: int, count: int
    ) -> list[str]: ...


class DeterministicWalletConnector:
    """Hash-derived addresses: same identity and indices, same address.

    The seed is the vault secret ``<identity>/mnemonic`` when one has been
    stored (the CLI stores ``--seed`` there), otherwise the identity itself.
    """

    def __init__(self, vault: VaultConnector) -> None:
        self._vault = vault

    @staticmethod
    def seed_name(identity: str) -> str:
        return f"{identity}/mnemonic"

    async def get_addresses(
        self, identity: str, account_index: int, address_index: int, count: int
    ) -> list[str]:
        if count < 1:
            raise ValueError(f"count must be >= 1 (got {count})")
        if account_index < 0 or address_index < 0:
            raise ValueError("account and address indices must be >= 0")

        seed = await self._vault.get_secret(self.seed_name(identity))
        key = seed if seed is not None else identity.encode()

        addresses = []
        for index in range(address_index, address_index + count):
            digest = hmac.new(
                key, f"{account_index}/{index}".encode(), hashlib.sha256
            ).hexdigest()
            addresses.append(f"{ADDRESS_PREFIX}{digest}")
        return addresses
