from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import attestation` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from attestation.core.config import DEFAULT_VERIFICATION_METHOD_ID, SETTINGS  # noqa: E402
from attestation.main import app  # noqa: E402
from attestation.services import token_service  # noqa: E402
from attestation.services.container import Container, build_container  # noqa: E402

CONTROLLER = "did:entity-storage:0xcontroller"
OTHER_CONTROLLER = "did:entity-storage:0xother"

DOCUMENT = {
    "@context": "https://schema.org/",
    "type": "DigitalDocument",
    "name": "My Document",
}


@pytest.fixture(autouse=True)
def reset_container() -> Container:
    """Fresh in-memory collaborators for every test."""
    container = build_container(SETTINGS)
    app.state.container = container
    return container


@pytest.fixture
def container(reset_container: Container) -> Container:
    return reset_container


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def run(coro):
    """Drive a coroutine from a sync test."""
    return asyncio.run(coro)


def mint_token(identity: str = CONTROLLER) -> str:
    """Create a valid ES256 bearer token for ``identity``."""
    return token_service.create_access_token(sub=identity)


def auth(identity: str = CONTROLLER) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(identity)}"}


def enroll(
    container: Container,
    controller: str = CONTROLLER,
    fragment: str = DEFAULT_VERIFICATION_METHOD_ID,
) -> str:
    """Create ``controller`` as an identity with one verification method.

    Returns the full verification method id.
    """

    async def _enroll() -> str:
        await container.identity.create_identity(controller, identity=controller)
        return await container.identity.add_verification_method(
            controller, controller, fragment
        )

    return run(_enroll())


@pytest.fixture
def enrolled(container: Container) -> str:
    return enroll(container)
