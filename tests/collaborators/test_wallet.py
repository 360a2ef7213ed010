from __future__ import annotations

import pytest

from attestation.collaborators.vault import InMemoryVaultConnector, VaultKeyNotFound
from attestation.collaborators.wallet import ADDRESS_PREFIX, DeterministicWalletConnector
from tests.conftest import run

IDENTITY = "did:entity-storage:0xwallet"


def test_addresses_are_deterministic() -> None:
    a = DeterministicWalletConnector(InMemoryVaultConnector())
    b = DeterministicWalletConnector(InMemoryVaultConnector())
    assert run(a.get_addresses(IDENTITY, 0, 0, 2)) == run(b.get_addresses(IDENTITY, 0, 0, 2))


def test_addresses_differ_by_index_and_account() -> None:
    wallet = DeterministicWalletConnector(InMemoryVaultConnector())
    first, second = run(wallet.get_addresses(IDENTITY, 0, 0, 2))
    assert first != second
    assert first.startswith(ADDRESS_PREFIX)
    assert run(wallet.get_addresses(IDENTITY, 0, 1, 1)) == [second]
    assert run(wallet.get_addresses(IDENTITY, 1, 0, 1)) != [first]


def test_seed_secret_changes_addresses() -> None:
    vault = InMemoryVaultConnector()
    wallet = DeterministicWalletConnector(vault)
    unseeded = run(wallet.get_addresses(IDENTITY, 0, 0, 1))

    run(vault.set_secret(wallet.seed_name(IDENTITY), b"\x01" * 32))
    assert run(wallet.get_addresses(IDENTITY, 0, 0, 1)) != unseeded


@pytest.mark.parametrize(("account", "index", "count"), [(0, 0, 0), (-1, 0, 1), (0, -1, 1)])
def test_rejects_bad_arguments(account: int, index: int, count: int) -> None:
    wallet = DeterministicWalletConnector(InMemoryVaultConnector())
    with pytest.raises(ValueError):
        run(wallet.get_addresses(IDENTITY, account, index, count))


def test_vault_missing_key() -> None:
    with pytest.raises(VaultKeyNotFound):
        run(InMemoryVaultConnector().get_key("nope"))
