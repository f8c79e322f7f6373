"""
Extraction for documents uploaded through the web application.
"""
import base64
import binascii

from fastapi import APIRouter, Depends

from legalnexus.auth import get_current_user
from legalnexus.exceptions import ExternalServiceError, ExtractionError, ValidationException
from legalnexus.extraction import DocumentExtractor, get_document_extractor
from legalnexus.models import AuthenticatedUser, ExtractRequest, ExtractResponse
from legalnexus.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(
    prefix="/v1/documents",
    tags=["documents"],
)


def decode_upload(image_base64: str) -> bytes:
    """Plain base64 or a data URL; raises ValidationException otherwise."""
    payload = image_base64.strip()
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationException("image_base64 is not valid base64") from e
    if not data:
        raise ValidationException("image_base64 is empty")
    return data


@router.post("/extract", response_model=ExtractResponse)
async def extract_document(
    body: ExtractRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    extractor: DocumentExtractor = Depends(get_document_extractor),
):
    """
    Run the extraction model over an uploaded document.

    A reply the model did not format as JSON still succeeds; data then
    carries {"parse_error": true, "raw_response": ...}.
    """
    data = decode_upload(body.image_base64)
    try:
        result = await extractor.extract(data, body.media_type)
    except ExtractionError as e:
        raise ExternalServiceError("extraction", str(e)) from e

    logger.info(f"Web extraction for company {user.company_id[:8]}..., parse_error={result.parse_error}")
    return ExtractResponse(
        success=True,
        data=result.payload,
        model=result.model,
        usage=result.usage,
    )
