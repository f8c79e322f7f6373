from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class BaseRequest(BaseModel):
    """Base class for all request models - ignores extra fields."""
    model_config = ConfigDict(extra="ignore")


# Enums
class SigningFieldType(str, Enum):
    FIRST_NAME = "first_name"
    LAST_NAME = "last_name"
    PHONE = "phone"
    EMAIL = "email"
    SIGNATURE = "signature"
    DATE = "date"
    TEXT = "text"
    ID_NUMBER = "id_number"


class SigningStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    OPENED = "opened"
    SIGNED = "signed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TERMINAL_SIGNING_STATUSES = frozenset({
    SigningStatus.SIGNED,
    SigningStatus.CANCELLED,
    SigningStatus.EXPIRED,
})

ACTIVE_SIGNING_STATUSES = frozenset({
    SigningStatus.DRAFT,
    SigningStatus.SENT,
    SigningStatus.OPENED,
})


class AuditEvent(str, Enum):
    SENT = "sent"
    OPENED = "opened"
    SIGNED = "signed"


class ScannedDocumentStatus(str, Enum):
    PROCESSING = "processing"
    NEEDS_VERIFICATION = "needs_verification"
    VERIFIED = "verified"
    ERROR = "error"


class DocumentSource(str, Enum):
    WEB = "web"
    WHATSAPP = "whatsapp"


class DocumentType(str, Enum):
    CONTRACT = "contract"
    PLEADING = "pleading"
    COURT_DECISION = "court_decision"
    TESTIMONY = "testimony"
    INVOICE = "invoice"
    CORRESPONDENCE = "correspondence"
    POWER_OF_ATTORNEY = "power_of_attorney"
    ID_DOCUMENT = "id_document"
    OTHER = "other"


# Media types accepted for extraction and for signing originals
SUPPORTED_MEDIA_TYPES = frozenset({
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
})

_MEDIA_TYPE_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "image/x-ms-bmp": "image/bmp",
    "image/x-bmp": "image/bmp",
}

_EXTENSIONS = {
    "application/pdf": "pdf",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
}


def normalize_media_type(value: Optional[str]) -> str:
    """Lower-case, drop parameters, fold browser/provider variants."""
    if not value:
        return ""
    base = value.split(";", 1)[0].strip().lower()
    return _MEDIA_TYPE_ALIASES.get(base, base)


def is_supported_media_type(value: Optional[str]) -> bool:
    return normalize_media_type(value) in SUPPORTED_MEDIA_TYPES


def extension_for(media_type: Optional[str]) -> str:
    return _EXTENSIONS.get(normalize_media_type(media_type), "bin")


# =============================================================================
# Signing
# =============================================================================

# Coordinates come from a browser editor and may carry float noise
_COORD_TOLERANCE = 1e-6


class SigningField(BaseRequest):
    """A field placement in normalized page units (origin top-left)."""
    id: str = Field(..., min_length=1, max_length=100)
    type: SigningFieldType
    label: str = Field(default="", max_length=200)
    x: float = Field(..., ge=0, le=1)
    y: float = Field(..., ge=0, le=1)
    width: float = Field(..., gt=0, le=1)
    height: float = Field(..., gt=0, le=1)
    page: int = Field(default=1, ge=1, description="1-indexed page number")
    required: bool = False

    @model_validator(mode="after")
    def validate_bounds(self) -> "SigningField":
        if self.x + self.width > 1 + _COORD_TOLERANCE:
            raise ValueError("Field extends past the right edge of the page (x + width > 1)")
        if self.y + self.height > 1 + _COORD_TOLERANCE:
            raise ValueError("Field extends past the bottom edge of the page (y + height > 1)")
        return self


class UploadUrlRequest(BaseRequest):
    file_name: str = Field(..., min_length=1, max_length=255)
    content_type: str = Field(..., min_length=1)

    @field_validator("content_type")
    @classmethod
    def validate_content_type(cls, v: str) -> str:
        normalized = normalize_media_type(v)
        if normalized not in SUPPORTED_MEDIA_TYPES:
            raise ValueError(f"Unsupported content type: {v}")
        return normalized


class UploadUrlResponse(BaseModel):
    upload_url: str
    storage_path: str
    content_type: str
    expires_in_minutes: int


class CreateSigningRequestRequest(BaseRequest):
    """Create a draft signing request over an already uploaded document."""
    file_name: str = Field(..., min_length=1, max_length=255)
    file_url: str = Field(..., min_length=1, description="Storage path returned by the upload-url endpoint")
    file_type: str = Field(..., min_length=1)
    fields: List[SigningField] = Field(..., min_length=1)
    recipient_name: Optional[str] = Field(None, max_length=200)
    recipient_phone: str = Field(..., min_length=3, max_length=32)
    expiry_days: Optional[int] = Field(None, ge=1, le=365)

    @field_validator("file_type")
    @classmethod
    def validate_file_type(cls, v: str) -> str:
        normalized = normalize_media_type(v)
        if normalized not in SUPPORTED_MEDIA_TYPES:
            raise ValueError(f"Unsupported file type: {v}")
        return normalized

    @field_validator("recipient_phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        v = v.strip()
        if sum(ch.isdigit() for ch in v) < 7:
            raise ValueError("Recipient phone must contain at least 7 digits")
        return v

    @model_validator(mode="after")
    def validate_unique_field_ids(self) -> "CreateSigningRequestRequest":
        ids = [f.id for f in self.fields]
        if len(ids) != len(set(ids)):
            raise ValueError("Field ids must be unique")
        return self


class SigningRequestResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    company_id: str
    file_name: str
    file_url: str
    file_type: Optional[str] = None
    fields: List[Dict[str, Any]] = []
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    status: SigningStatus
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    whatsapp_sent_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    signed_file_url: Optional[str] = None
    signing_url: Optional[str] = None


class SignedUrlResponse(BaseModel):
    url: str
    expires_in_minutes: int


# Public (token-based) models: validated by hand so that missing input
# becomes {success: false, error: ...} instead of a 422.
class ResolveSigningRequest(BaseRequest):
    token: Optional[str] = None


class CompleteSigningRequest(BaseRequest):
    token: Optional[str] = None
    field_values: Optional[Dict[str, Any]] = None


class PublicSigningRequest(BaseModel):
    id: str
    file_name: str
    file_url: str
    file_type: Optional[str] = None
    fields: List[Dict[str, Any]]
    recipient_name: Optional[str] = None
    status: SigningStatus


class ResolveSigningResponse(BaseModel):
    success: bool = True
    signing_request: PublicSigningRequest
    document_url: str


class PublicResult(BaseModel):
    success: bool
    error: Optional[str] = None


# =============================================================================
# Extraction
# =============================================================================

class ExtractedFields(BaseModel):
    """Normalized extraction output; unknown keys are kept in the raw payload only."""
    model_config = ConfigDict(extra="ignore")

    document_type: DocumentType = DocumentType.OTHER
    document_date: Optional[str] = None
    case_number: Optional[str] = None
    court_name: Optional[str] = None
    parties: List[Dict[str, Any]] = []
    title: Optional[str] = None
    summary: Optional[str] = None
    key_dates: List[Dict[str, Any]] = []
    amounts: List[Dict[str, Any]] = []
    references: List[str] = []
    signatures: List[Dict[str, Any]] = []
    notes: Optional[str] = None
    raw_text_excerpt: Optional[str] = None
    confidence: str = "medium"

    @field_validator("document_type", mode="before")
    @classmethod
    def coerce_document_type(cls, v: Any) -> Any:
        if isinstance(v, str) and v.strip().lower() in DocumentType._value2member_map_:
            return v.strip().lower()
        return DocumentType.OTHER

    @field_validator("parties", "key_dates", "amounts", "signatures", mode="before")
    @classmethod
    def coerce_object_list(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, dict)]

    @field_validator("references", mode="before")
    @classmethod
    def coerce_references(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return []
        return [str(item) for item in v if item is not None]

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, v: Any) -> str:
        if isinstance(v, str) and v.strip().lower() in ("high", "medium", "low"):
            return v.strip().lower()
        return "medium"

    @field_validator(
        "document_date", "case_number", "court_name", "title", "summary", "notes", "raw_text_excerpt",
        mode="before",
    )
    @classmethod
    def coerce_optional_text(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip()
        return text or None


class ExtractRequest(BaseRequest):
    image_base64: str = Field(..., min_length=1)
    media_type: str = Field(..., min_length=1)

    @field_validator("media_type")
    @classmethod
    def validate_media_type(cls, v: str) -> str:
        normalized = normalize_media_type(v)
        if normalized not in SUPPORTED_MEDIA_TYPES:
            raise ValueError(f"Unsupported media type: {v}")
        return normalized


class ExtractResponse(BaseModel):
    success: bool
    data: Dict[str, Any]
    model: str
    usage: Optional[Dict[str, Any]] = None


class SendWhatsAppRequest(BaseRequest):
    """Outbound message from the web app: text, a file, or a file with a caption."""
    phone: str = Field(..., min_length=1)
    message: Optional[str] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = Field(None, max_length=255)


class SendWhatsAppResponse(BaseModel):
    success: bool
    message_id: Optional[str] = None


# =============================================================================
# Green API webhook payload
# =============================================================================

class _WebhookPart(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class InstanceData(_WebhookPart):
    id_instance: Optional[str] = Field(None, alias="idInstance")

    @field_validator("id_instance", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)


class SenderData(_WebhookPart):
    chat_id: str = Field(..., alias="chatId")
    sender: Optional[str] = None
    sender_name: Optional[str] = Field(None, alias="senderName")


class TextMessageData(_WebhookPart):
    text_message: str = Field("", alias="textMessage")


class ExtendedTextMessageData(_WebhookPart):
    text: str = ""


class FileMessageData(_WebhookPart):
    download_url: Optional[str] = Field(None, alias="downloadUrl")
    mime_type: Optional[str] = Field(None, alias="mimeType")
    file_name: Optional[str] = Field(None, alias="fileName")
    caption: Optional[str] = None


class MessageData(_WebhookPart):
    type_message: str = Field("", alias="typeMessage")
    text_message_data: Optional[TextMessageData] = Field(None, alias="textMessageData")
    extended_text_message_data: Optional[ExtendedTextMessageData] = Field(None, alias="extendedTextMessageData")
    file_message_data: Optional[FileMessageData] = Field(None, alias="fileMessageData")


class GreenApiWebhook(_WebhookPart):
    type_webhook: str = Field(..., alias="typeWebhook")
    id_message: Optional[str] = Field(None, alias="idMessage")
    instance_data: Optional[InstanceData] = Field(None, alias="instanceData")
    sender_data: Optional[SenderData] = Field(None, alias="senderData")
    message_data: Optional[MessageData] = Field(None, alias="messageData")


class WebhookAck(BaseModel):
    ok: bool = True
    outcome: Optional[str] = None
    skipped: Optional[str] = None


# =============================================================================
# Auth
# =============================================================================

class AuthenticatedUser(BaseModel):
    """Caller identity for org endpoints."""
    id: str
    email: Optional[str] = None
    company_id: str
