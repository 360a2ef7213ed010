from __future__ import annotations

import logging
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from attestation.models.principal import Principal
from attestation.services import token_service
from attestation.services.attestation_service import AttestationService
from attestation.services.container import Container

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def require_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> Principal:
    """Validate the bearer token and return the controller Principal."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        claims = token_service.decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    principal = Principal(identity=claims["sub"])
    logger.debug("Token validated for identity=%s", principal.identity)
    return principal


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_service(
    container: Annotated[Container, Depends(get_container)],
) -> AttestationService:
    return container.service
