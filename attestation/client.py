"""Async REST client for the attestation API.

    async with AttestationClient("http://localhost:8000", token) as client:
        attestation_id = await client.create({"@context": ..., "type": ...})
        information = await client.get(attestation_id)
        await client.transfer(attestation_id, "did:entity-storage:0x...")
        await client.destroy(attestation_id)

Non-2xx responses raise ``AttestationClientError`` carrying the status, the
error code from the response body and the request id.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from attestation.middleware.request_context import REQUEST_ID_HEADER

logger = logging.getLogger(__name__)


class AttestationClientError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str | None,
        message: str,
        request_id: str | None = None,
        failures: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.request_id = request_id
        self.failures = failures or []


def _path(attestation_id: str) -> str:
    # ids contain ':' separators; everything else is escaped
    return f"/attestation/{quote(attestation_id, safe=':')}"


def _to_error(resp: httpx.Response) -> AttestationClientError:
    request_id = resp.headers.get(REQUEST_ID_HEADER)
    try:
        detail = resp.json().get("detail")
    except (ValueError, AttributeError):
        return AttestationClientError(
            resp.status_code, None, resp.text or f"HTTP {resp.status_code}", request_id
        )
    if isinstance(detail, dict):
        return AttestationClientError(
            resp.status_code,
            detail.get("code"),
            detail.get("message") or f"HTTP {resp.status_code}",
            request_id,
            detail.get("failures"),
        )
    if isinstance(detail, list):
        # request body rejected by the API schema
        failures = [
            {
                "property": ".".join(str(p) for p in err.get("loc", [])[1:]),
                "reason": err.get("msg"),
            }
            for err in detail
            if isinstance(err, dict)
        ]
        return AttestationClientError(
            resp.status_code, "validation", "request validation failed", request_id, failures
        )
    return AttestationClientError(
        resp.status_code, None, str(detail or f"HTTP {resp.status_code}"), request_id
    )


class AttestationClient:
    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> AttestationClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self, method: str, path: str, body: dict[str, Any] | None = None
    ) -> httpx.Response:
        resp = await self._http.request(method, path, json=body)
        logger.debug("%s %s -> %d", method, path, resp.status_code)
        if resp.is_success:
            return resp
        raise _to_error(resp)

    async def create(
        self,
        attestation_object: dict[str, Any],
        verification_method_id: str | None = None,
        namespace: str | None = None,
    ) -> str:
        """Attest ``attestation_object``; returns the new attestation id."""
        body: dict[str, Any] = {"attestationObject": attestation_object}
        if verification_method_id is not None:
            body["verificationMethodId"] = verification_method_id
        if namespace is not None:
            body["namespace"] = namespace
        resp = await self._request("POST", "/attestation/", body)
        return resp.headers["location"]

    async def get(self, attestation_id: str) -> dict[str, Any]:
        resp = await self._request("GET", _path(attestation_id))
        return resp.json()

    async def transfer(
        self, attestation_id: str, holder_identity: str, holder_address: str | None = None
    ) -> None:
        body: dict[str, Any] = {"holderIdentity": holder_identity}
        if holder_address is not None:
            body["holderAddress"] = holder_address
        await self._request("PUT", f"{_path(attestation_id)}/transfer", body)

    async def destroy(self, attestation_id: str) -> None:
        await self._request("DELETE", _path(attestation_id))
