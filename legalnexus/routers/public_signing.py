"""
Public signer endpoints, reached from the link sent over WhatsApp.

The access token is the only identifier accepted here. Every failure is
answered as {success: false, error: <code>} so the signing page can show
a distinct screen per kind.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from legalnexus.auth import get_client_ip
from legalnexus.config import ConfigurationError
from legalnexus.exceptions import SigningStateError, ValidationException
from legalnexus.models import (
    CompleteSigningRequest,
    PublicResult,
    ResolveSigningRequest,
    ResolveSigningResponse,
)
from legalnexus.services.signing_service import SigningService, get_signing_service
from legalnexus.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(
    prefix="/v1/public/signing",
    tags=["signing"],
)

MISSING_TOKEN = "missing_token"
MISSING_FIELD_VALUES = "missing_field_values"
INVALID_FIELD_VALUES = "invalid_field_values"
SERVER_ERROR = "server_error"


def public_error(code: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=PublicResult(success=False, error=code).model_dump(),
    )


async def _read_json(request: Request) -> Dict[str, Any]:
    """Body as a dict; a missing or non-object body reads as {}."""
    try:
        payload = await request.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


@router.post(
    "/resolve",
    response_model=ResolveSigningResponse,
    responses={
        400: {"model": PublicResult, "description": "Token missing"},
        404: {"model": PublicResult, "description": "Token not found"},
        409: {"model": PublicResult, "description": "Already signed or cancelled"},
        410: {"model": PublicResult, "description": "Expired"},
    },
)
async def resolve_signing_request(
    request: Request,
    service: SigningService = Depends(get_signing_service),
):
    try:
        body = ResolveSigningRequest.model_validate(await _read_json(request))
    except ValidationError:
        return public_error(MISSING_TOKEN, 400)
    if not body.token:
        return public_error(MISSING_TOKEN, 400)

    try:
        return service.resolve(
            body.token,
            ip=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except SigningStateError as e:
        logger.info(f"Resolve refused: {e.code}")
        return public_error(e.code, e.status_code)
    except ConfigurationError:
        raise
    except Exception as e:
        logger.exception(f"Resolve failed: {type(e).__name__}")
        return public_error(SERVER_ERROR, 500)


@router.post(
    "/complete",
    response_model=PublicResult,
    responses={
        400: {"model": PublicResult, "description": "Token or field values missing/invalid"},
        404: {"model": PublicResult, "description": "Token not found"},
        409: {"model": PublicResult, "description": "Already signed or cancelled"},
        410: {"model": PublicResult, "description": "Expired"},
    },
)
async def complete_signing_request(
    request: Request,
    service: SigningService = Depends(get_signing_service),
):
    payload = await _read_json(request)
    try:
        body = CompleteSigningRequest.model_validate(payload)
    except ValidationError as e:
        locations = {err["loc"][0] for err in e.errors() if err["loc"]}
        if "token" in locations:
            return public_error(MISSING_TOKEN, 400)
        return public_error(INVALID_FIELD_VALUES, 400)

    if not body.token:
        return public_error(MISSING_TOKEN, 400)
    if body.field_values is None:
        return public_error(MISSING_FIELD_VALUES, 400)

    try:
        await service.complete(
            body.token,
            body.field_values,
            ip=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except SigningStateError as e:
        logger.info(f"Complete refused: {e.code}")
        return public_error(e.code, e.status_code)
    except ValidationException as e:
        logger.info(f"Complete rejected field values: {e.message}")
        return public_error(INVALID_FIELD_VALUES, 400)
    except ConfigurationError:
        raise
    except Exception as e:
        logger.exception(f"Complete failed: {type(e).__name__}")
        return public_error(SERVER_ERROR, 500)

    return PublicResult(success=True)
