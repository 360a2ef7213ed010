"""Attestation REST endpoints.

- POST   /attestation/                      create, 201 + Location header
- GET    /attestation/{id}                  get (public, no auth)
- PUT    /attestation/{id}/transfer         transfer to a new holder, 204
- DELETE /attestation/{id}                  destroy, 204

The caller's bearer token subject is the controller identity.  Ids contain
base64 (which may include "/"), so the id path parameter uses the
``path`` converter.

Error mapping (``detail`` carries the error code):

  ValidationError                       422
  InvalidIdentifier, NamespaceMismatch  400
  TransferFailed caused by a failed
    verification                        409
  RetrievalFailed on an unknown id      404
  NoConnectors                          503
  any other operation failure           502
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict, Field

from attestation.api.dependencies import get_service, require_user
from attestation.collaborators.resource import ResourceNotFound
from attestation.core.errors import (
    AttestationError,
    InvalidIdentifier,
    NamespaceMismatch,
    NoConnectors,
    RetrievalFailed,
    TransferFailed,
    ValidationError,
    VerificationFailed,
)
from attestation.models.principal import Principal
from attestation.services.attestation_service import AttestationService

router = APIRouter(prefix="/attestation", tags=["attestation"])


class AttestationCreateIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    verification_method_id: str | None = Field(default=None, alias="verificationMethodId")
    attestation_object: dict[str, Any] = Field(alias="attestationObject")
    namespace: str | None = None


class AttestationTransferIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    holder_identity: str = Field(alias="holderIdentity", min_length=1)
    holder_address: str | None = Field(default=None, alias="holderAddress")


def _http_error(e: AttestationError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(
            status_code=422,
            detail={"code": e.code, "message": str(e), "failures": e.failures},
        )
    if isinstance(e, (InvalidIdentifier, NamespaceMismatch)):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(e, TransferFailed) and isinstance(e.__cause__, VerificationFailed):
        code = status.HTTP_409_CONFLICT
    elif isinstance(e, RetrievalFailed) and isinstance(e.__cause__, ResourceNotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, NoConnectors):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=code, detail={"code": e.code, "message": str(e)})


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_attestation(
    body: AttestationCreateIn,
    principal: Annotated[Principal, Depends(require_user)],
    service: Annotated[AttestationService, Depends(get_service)],
) -> Response:
    try:
        attestation_id = await service.create(
            principal.identity,
            body.verification_method_id,
            body.attestation_object,
            namespace=body.namespace,
        )
    except AttestationError as e:
        raise _http_error(e) from None
    return Response(
        status_code=status.HTTP_201_CREATED, headers={"Location": attestation_id}
    )


@router.put("/{attestation_id:path}/transfer", status_code=status.HTTP_204_NO_CONTENT)
async def transfer_attestation(
    attestation_id: str,
    body: AttestationTransferIn,
    principal: Annotated[Principal, Depends(require_user)],
    service: Annotated[AttestationService, Depends(get_service)],
) -> Response:
    try:
        await service.transfer(
            principal.identity,
            attestation_id,
            body.holder_identity,
            body.holder_address,
        )
    except AttestationError as e:
        raise _http_error(e) from None
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{attestation_id:path}")
async def get_attestation(
    attestation_id: str,
    service: Annotated[AttestationService, Depends(get_service)],
) -> dict[str, Any]:
    try:
        information = await service.get(attestation_id)
    except AttestationError as e:
        raise _http_error(e) from None
    return information.to_dict()


@router.delete("/{attestation_id:path}", status_code=status.HTTP_204_NO_CONTENT)
async def destroy_attestation(
    attestation_id: str,
    principal: Annotated[Principal, Depends(require_user)],
    service: Annotated[AttestationService, Depends(get_service)],
) -> Response:
    try:
        await service.destroy(principal.identity, attestation_id)
    except AttestationError as e:
        raise _http_error(e) from None
    return Response(status_code=status.HTTP_204_NO_CONTENT)
