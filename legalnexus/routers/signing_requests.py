"""
Org endpoints for signing requests.
"""
from fastapi import APIRouter, Depends, Path

from legalnexus.auth import get_current_user
from legalnexus.models import (
    AuthenticatedUser,
    CreateSigningRequestRequest,
    SignedUrlResponse,
    SigningRequestResponse,
    UploadUrlRequest,
    UploadUrlResponse,
)
from legalnexus.services.signing_service import SigningService, get_signing_service
from legalnexus.utils.logging import set_context

router = APIRouter(
    prefix="/v1/signing-requests",
    tags=["signing-requests"],
)


@router.post("/upload-url", response_model=UploadUrlResponse)
async def create_upload_url(
    body: UploadUrlRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    service: SigningService = Depends(get_signing_service),
):
    """Signed PUT URL for the original document; pass storage_path back as file_url."""
    return service.create_upload_url(user.company_id, body.file_name, body.content_type)


@router.post("", response_model=SigningRequestResponse, status_code=201)
async def create_signing_request(
    body: CreateSigningRequestRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    service: SigningService = Depends(get_signing_service),
):
    row = service.create(user.company_id, user.id, body)
    return SigningRequestResponse.model_validate(row)


@router.post("/{request_id}/send", response_model=SigningRequestResponse)
async def send_signing_request(
    request_id: str = Path(..., min_length=1),
    user: AuthenticatedUser = Depends(get_current_user),
    service: SigningService = Depends(get_signing_service),
):
    set_context(signing_request_id=request_id)
    row = await service.send(request_id, user.company_id)
    return SigningRequestResponse.model_validate(row)


@router.post("/{request_id}/cancel", response_model=SigningRequestResponse)
async def cancel_signing_request(
    request_id: str = Path(..., min_length=1),
    user: AuthenticatedUser = Depends(get_current_user),
    service: SigningService = Depends(get_signing_service),
):
    set_context(signing_request_id=request_id)
    row = service.cancel(request_id, user.company_id)
    return SigningRequestResponse.model_validate(row)


@router.get("/{request_id}/signed-url", response_model=SignedUrlResponse)
async def get_signed_url(
    request_id: str = Path(..., min_length=1),
    user: AuthenticatedUser = Depends(get_current_user),
    service: SigningService = Depends(get_signing_service),
):
    set_context(signing_request_id=request_id)
    return service.get_signed_document_url(request_id, user.company_id)
