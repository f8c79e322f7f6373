"""
Outbound WhatsApp messages sent on behalf of a company member.
"""
from fastapi import APIRouter, Depends

from legalnexus.auth import get_current_user
from legalnexus.config import Settings, get_settings
from legalnexus.exceptions import NotFoundError, ValidationException
from legalnexus.models import AuthenticatedUser, SendWhatsAppRequest, SendWhatsAppResponse
from legalnexus.storage import GCSClient, get_gcs_client, validate_storage_path
from legalnexus.utils.logging import fingerprint, get_logger
from legalnexus.whatsapp import GreenApiClient, chat_id_for_phone, get_whatsapp_client

logger = get_logger(__name__)

router = APIRouter(
    prefix="/v1/whatsapp",
    tags=["whatsapp"],
)


def resolve_file_url(
    file_url: str,
    company_id: str,
    file_name: str,
    storage: GCSClient,
    settings: Settings,
) -> str:
    """
    URL the provider can fetch. http(s) URLs pass through; anything else is
    a storage path, which must sit under the company's prefix.
    """
    if file_url.startswith(("https://", "http://")):
        return file_url

    path = file_url.lstrip("/")
    try:
        path = validate_storage_path(path)
    except ValueError as e:
        raise ValidationException(str(e), details={"file_url": file_url}) from e
    if not path.startswith(f"{company_id}/"):
        raise ValidationException(
            "file_url must be a storage path of this company",
            details={"file_url": file_url},
        )

    try:
        return storage.generate_download_signed_url(
            path,
            expiration_minutes=settings.document_url_expiration_minutes,
            filename=file_name,
        )
    except FileNotFoundError as e:
        raise NotFoundError("File", path) from e


@router.post("/send", response_model=SendWhatsAppResponse)
async def send_whatsapp(
    body: SendWhatsAppRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    storage: GCSClient = Depends(get_gcs_client),
    whatsapp: GreenApiClient = Depends(get_whatsapp_client),
):
    """
    Send a text, or a file with the text as its caption.
    Delivery failures surface as 502.
    """
    message = (body.message or "").strip()
    file_url = (body.file_url or "").strip()
    if not message and not file_url:
        raise ValidationException("Either message or file_url is required")

    chat_id = chat_id_for_phone(body.phone, settings.default_country_code)
    if chat_id is None:
        raise ValidationException("phone is not a dialable number")

    if file_url:
        file_name = (body.file_name or "").strip() or "document"
        url = resolve_file_url(file_url, user.company_id, file_name, storage, settings)
        message_id = await whatsapp.send_file_by_url(chat_id, url, file_name, caption=message)
    else:
        message_id = await whatsapp.send_message_or_raise(chat_id, message)

    logger.info(
        f"Outbound WhatsApp for company {user.company_id[:8]}...: "
        f"chat={fingerprint(chat_id, 'chat_')}, file={bool(file_url)}"
    )
    return SendWhatsAppResponse(success=True, message_id=message_id)
