"""Command-line access to the attestation service.

    attestation create   --seed S --data-json doc.json [--private-key K]
    attestation get      --id ID [--seed S --private-key K]
    attestation transfer --seed S --id ID --holder-identity DID [--holder-address A]
    attestation destroy  --seed S --id ID
    attestation token    --seed S [--ttl-minutes N]

The seed (hex or base64) identifies the controller: its DID is derived from
the seed and the seed is stored as the wallet seed, so the same seed always
yields the same controller and addresses.  The verification method key is
``--private-key`` when given, otherwise derived from the seed.

Each invocation builds a fresh container.  With REDIS_URL set, entity
storage attestations persist between runs; otherwise state lives only for
the one command.  To verify an attestation in a later run, pass the
issuer's seed (and key, if one was given at create time) to ``get``.

``token`` mints a REST bearer token for the seed's controller.  It signs
with ``AUTH_TOKEN_PRIVATE_KEY_FILE``, the same key the API verifies with.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

from attestation.collaborators.identity import IdentityError
from attestation.core.config import SETTINGS, Settings, decode_hex_or_base64
from attestation.core.errors import AttestationError
from attestation.core.logging import setup_logging
from attestation.db.redis import create_redis
from attestation.services import token_service
from attestation.services.container import (
    build_container,
    controller_from_seed,
    enroll_seed,
    method_fragment,
)

logger = logging.getLogger(__name__)


def parse_hex_or_base64(name: str, value: str) -> bytes:
    try:
        return decode_hex_or_base64(name, value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _load_json(path: str) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _emit(args: argparse.Namespace, result: dict[str, Any]) -> None:
    if args.json:
        Path(args.json).write_text(json.dumps(result, indent=2) + "\n", encoding="utf-8")
    print(json.dumps(result, indent=2))


async def _run(args: argparse.Namespace, settings: Settings) -> dict[str, Any]:
    redis_client = create_redis(settings.redis_url) if settings.redis_url else None
    try:
        container = build_container(settings, redis_client=redis_client)
        service = container.service
        fragment = method_fragment(args.verification_method_id)
        logger.debug("Running %s namespaces=%s", args.command, container.registry.namespaces())

        controller = None
        if args.seed is not None:
            controller = await enroll_seed(container, args.seed, fragment, args.private_key)

        if args.command == "create":
            attestation_id = await service.create(
                controller, fragment, _load_json(args.data_json), namespace=args.namespace
            )
            return {"id": attestation_id, "ownerIdentity": controller}

        if args.command == "get":
            information = await service.get(args.id)
            return information.to_dict()

        if args.command == "transfer":
            await service.transfer(
                controller, args.id, args.holder_identity, args.holder_address
            )
            return {"id": args.id, "holderIdentity": args.holder_identity}

        await service.destroy(controller, args.id)
        return {"id": args.id, "destroyed": True}
    finally:
        if redis_client is not None:
            await redis_client.aclose()


def _token(args: argparse.Namespace) -> int:
    if not SETTINGS.token_private_key_file:
        print("error: AUTH_TOKEN_PRIVATE_KEY_FILE is not set", file=sys.stderr)
        return 2
    if args.ttl_minutes < 1:
        print("error: --ttl-minutes must be >= 1", file=sys.stderr)
        return 2
    controller = controller_from_seed(args.seed)
    token = token_service.create_access_token(sub=controller, ttl_minutes=args.ttl_minutes)
    _emit(
        args,
        {
            "accessToken": token,
            "tokenType": "Bearer",
            "expiresIn": args.ttl_minutes * 60,
            "sub": controller,
        },
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="attestation", description="Create, verify, transfer and destroy attestations."
    )
    parser.add_argument("--verbose", action="store_true", help="Log at debug level.")
    sub = parser.add_subparsers(dest="command", required=True)

    def seed_option(p: argparse.ArgumentParser, required: bool) -> None:
        p.add_argument(
            "--seed",
            required=required,
            type=lambda v: parse_hex_or_base64("seed", v),
            help="Controller seed, hex or base64.",
        )
        p.add_argument(
            "--private-key",
            type=lambda v: parse_hex_or_base64("private-key", v),
            help="P-256 private scalar for the verification method, hex or base64.",
        )
        p.add_argument(
            "--verification-method-id",
            default=SETTINGS.verification_method_id,
            help="Verification method id or fragment (default: %(default)s).",
        )
        p.add_argument(
            "--wallet-address-index",
            type=int,
            default=None,
            help="Wallet address index for the controller address.",
        )

    def output_option(p: argparse.ArgumentParser) -> None:
        p.add_argument("--json", metavar="FILE", help="Also write the result as JSON to FILE.")

    p_create = sub.add_parser("create", help="Attest a JSON-LD document.")
    seed_option(p_create, required=True)
    p_create.add_argument("--data-json", required=True, help="Path to the JSON document.")
    p_create.add_argument("--namespace", help="Backend namespace (nft | entity-storage).")
    output_option(p_create)

    p_get = sub.add_parser("get", help="Fetch and verify an attestation.")
    p_get.add_argument("--id", required=True, help="Attestation id.")
    seed_option(p_get, required=False)
    output_option(p_get)

    p_transfer = sub.add_parser("transfer", help="Transfer an attestation to a new holder.")
    seed_option(p_transfer, required=True)
    p_transfer.add_argument("--id", required=True, help="Attestation id.")
    p_transfer.add_argument("--holder-identity", required=True, help="New holder identity.")
    p_transfer.add_argument("--holder-address", help="New holder address (derived if omitted).")
    output_option(p_transfer)

    p_destroy = sub.add_parser("destroy", help="Destroy an attestation.")
    seed_option(p_destroy, required=True)
    p_destroy.add_argument("--id", required=True, help="Attestation id.")
    output_option(p_destroy)

    p_token = sub.add_parser("token", help="Mint a REST bearer token for a controller.")
    p_token.add_argument(
        "--seed",
        required=True,
        type=lambda v: parse_hex_or_base64("seed", v),
        help="Controller seed, hex or base64.",
    )
    p_token.add_argument(
        "--ttl-minutes",
        type=int,
        default=token_service.ACCESS_TOKEN_TTL_MIN,
        help="Token lifetime in minutes (default: %(default)s).",
    )
    output_option(p_token)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging("debug" if args.verbose else "warning", json_format=SETTINGS.log_json)

    if args.command == "token":
        return _token(args)

    settings = SETTINGS
    if args.wallet_address_index is not None:
        settings = replace(settings, wallet_address_index=args.wallet_address_index)

    try:
        result = asyncio.run(_run(args, settings))
    except AttestationError as e:
        print(f"error: {e.code}: {e}", file=sys.stderr)
        return 1
    except IdentityError as e:
        print(f"error: identity: {e}", file=sys.stderr)
        return 1
    except (OSError, json.JSONDecodeError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    _emit(args, result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
