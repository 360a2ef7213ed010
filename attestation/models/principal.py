from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller extracted from a validated bearer token.

    ``identity`` is the token subject and acts as the controller for
    create, transfer and destroy.
    """

    identity: str
