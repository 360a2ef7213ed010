from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass, field
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

DEFAULT_TAG = "TWIN-ATTESTATION"
DEFAULT_VERIFICATION_METHOD_ID = "attestation-assertion"

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _getbool(name: str, default: str) -> bool:
    raw = _getenv(name, default).lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ValueError(f"{name} must be true|false (got {raw!r})")


def _getint(name: str, default: str, *, minimum: int = 0) -> int:
    raw = _getenv(name, default)
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def decode_hex_or_base64(name: str, value: str) -> bytes:
    """Decode key material given as hex (optionally ``0x``-prefixed) or base64."""
    raw = value.strip()
    hex_candidate = raw[2:] if raw.lower().startswith("0x") else raw
    try:
        decoded = bytes.fromhex(hex_candidate)
    except ValueError:
        try:
            decoded = base64.b64decode(raw, validate=True)
        except binascii.Error:
            raise ValueError(f"{name} must be hex or base64") from None
    if not decoded:
        raise ValueError(f"{name} must not be empty")
    return decoded


def _getbytes(name: str) -> bytes | None:
    raw = _getenv(name, "")
    return decode_hex_or_base64(name, raw) if raw else None


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    redis_url: str | None
    default_namespace: str | None = None
    wallet_address_index: int = 0
    include_node_identity: bool = False
    node_identity: str | None = None
    tag: str = DEFAULT_TAG
    verification_method_id: str = DEFAULT_VERIFICATION_METHOD_ID
    # PEM files for the API bearer token key; an ephemeral pair when unset
    token_private_key_file: str | None = None
    token_public_key_file: str | None = None
    # Controller enrolled at startup so the API has an identity to act as
    controller_seed: bytes | None = field(default=None, repr=False)
    controller_private_key: bytes | None = field(default=None, repr=False)

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    port = _getint("PORT", "8000", minimum=1)
    redis_url = _getenv("REDIS_URL", "") or None

    include_node_identity = _getbool("ATTESTATION_INCLUDE_NODE_IDENTITY", "false")
    node_identity = _getenv("ATTESTATION_NODE_IDENTITY", "") or None
    if include_node_identity and node_identity is None:
        raise ValueError(
            "ATTESTATION_NODE_IDENTITY is required when "
            "ATTESTATION_INCLUDE_NODE_IDENTITY is enabled"
        )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getbool("LOG_JSON", "false"),
        port=port,
        redis_url=redis_url,
        default_namespace=_getenv("ATTESTATION_DEFAULT_NAMESPACE", "") or None,
        wallet_address_index=_getint("ATTESTATION_WALLET_ADDRESS_INDEX", "0"),
        include_node_identity=include_node_identity,
        node_identity=node_identity,
        tag=_getenv("ATTESTATION_TAG", DEFAULT_TAG) or DEFAULT_TAG,
        verification_method_id=(
            _getenv("ATTESTATION_VERIFICATION_METHOD_ID", DEFAULT_VERIFICATION_METHOD_ID)
            or DEFAULT_VERIFICATION_METHOD_ID
        ),
        token_private_key_file=_getenv("AUTH_TOKEN_PRIVATE_KEY_FILE", "") or None,
        token_public_key_file=_getenv("AUTH_TOKEN_PUBLIC_KEY_FILE", "") or None,
        controller_seed=_getbytes("ATTESTATION_CONTROLLER_SEED"),
        controller_private_key=_getbytes("ATTESTATION_CONTROLLER_PRIVATE_KEY"),
    )


SETTINGS = load_settings()
