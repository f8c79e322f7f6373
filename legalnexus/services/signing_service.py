"""
Signing request lifecycle.

    draft -> sent -> opened -> signed
    draft/sent/opened -> cancelled   (org action)
    draft/sent/opened -> expired     (lazily, when accessed after expires_at)

signed, cancelled and expired are terminal. Every status change is a
conditional update on the current status, so two concurrent callers can
never both move a request out of the same state.
"""
import logging
import posixpath
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from legalnexus import messages
from legalnexus.config import Settings, get_settings
from legalnexus.exceptions import (
    ConflictError,
    NotFoundError,
    SigningStateError,
    StorageError,
    ValidationException,
)
from legalnexus.models import (
    ACTIVE_SIGNING_STATUSES,
    AuditEvent,
    CreateSigningRequestRequest,
    PublicSigningRequest,
    ResolveSigningResponse,
    SignedUrlResponse,
    SigningField,
    SigningFieldType,
    SigningStatus,
    UploadUrlResponse,
    extension_for,
)
from legalnexus.pdf.burn import BurnResult, FieldBurner, decode_data_url, get_field_burner
from legalnexus.services.phone_resolver import normalize_phone
from legalnexus.storage import GCSClient, get_gcs_client
from legalnexus.supabase_client import SupabaseClient, get_supabase_client
from legalnexus.utils.datetime_utils import (
    add_days,
    epoch_ms,
    format_hebrew_date,
    is_past,
    to_db_timestamp,
    utc_now,
)
from legalnexus.utils.logging import fingerprint, mask_phone, set_context
from legalnexus.utils.security import generate_access_token, generate_suffix
from legalnexus.whatsapp import GreenApiClient, chat_id_for_phone, get_whatsapp_client

logger = logging.getLogger(__name__)

TERMINAL_ERRORS = {
    SigningStatus.SIGNED: SigningStateError.ALREADY_SIGNED,
    SigningStatus.CANCELLED: SigningStateError.CANCELLED,
    SigningStatus.EXPIRED: SigningStateError.EXPIRED,
}


def derive_signed_path(original_path: str, now: Optional[datetime] = None) -> str:
    """
    Storage path for a signed artifact next to its original:
    c1/signing/contract.pdf -> c1/signing/signed/contract-signed-<ms>.pdf
    """
    directory, name = posixpath.split(original_path)
    stem = posixpath.splitext(name)[0] or "document"
    signed_name = f"{stem}-signed-{epoch_ms(now)}.pdf"
    return posixpath.join(directory, "signed", signed_name)


def upload_path(company_id: str, content_type: str, now: Optional[datetime] = None) -> str:
    return f"{company_id}/signing/{epoch_ms(now)}-{generate_suffix()}.{extension_for(content_type)}"


def parse_fields(raw_fields: Optional[List[Dict[str, Any]]]) -> List[SigningField]:
    """Stored field placements as models; entries that no longer validate are skipped."""
    fields = []
    for raw in raw_fields or []:
        try:
            fields.append(SigningField.model_validate(raw))
        except ValidationError as e:
            logger.warning(f"Skipping invalid stored field {raw.get('id') if isinstance(raw, dict) else raw!r}: {e}")
    return fields


def validate_field_values(fields: List[SigningField], field_values: Mapping[str, Any]) -> Dict[str, str]:
    """
    Keep submitted values for known fields.

    Values must be strings and signature values image data URLs. Empty
    strings count as not filled. Raises ValidationException otherwise.
    """
    by_id = {f.id: f for f in fields}
    values: Dict[str, str] = {}
    for field_id, value in field_values.items():
        signing_field = by_id.get(field_id)
        if signing_field is None or value is None:
            continue
        if not isinstance(value, str):
            raise ValidationException(
                f"Value for field {field_id} must be a string",
                details={"field_id": field_id},
            )
        if not value.strip():
            continue
        if signing_field.type == SigningFieldType.SIGNATURE:
            try:
                decode_data_url(value)
            except ValueError as e:
                raise ValidationException(str(e), details={"field_id": field_id}) from e
        values[field_id] = value
    return values


class SigningService:
    """Org-side management and public token flows for signing requests."""

    def __init__(
        self,
        supabase: Optional[SupabaseClient] = None,
        storage: Optional[GCSClient] = None,
        whatsapp: Optional[GreenApiClient] = None,
        burner: Optional[FieldBurner] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.supabase = supabase or get_supabase_client()
        self.storage = storage or get_gcs_client()
        self.whatsapp = whatsapp or get_whatsapp_client()
        self.burner = burner or get_field_burner()

    def signing_url(self, access_token: str) -> str:
        return f"{self.settings.get_app_url()}/sign/{access_token}"

    def _with_signing_url(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return {**row, "signing_url": self.signing_url(row["access_token"])}

    # =========================================================================
    # Org endpoints
    # =========================================================================

    def create_upload_url(self, company_id: str, file_name: str, content_type: str) -> UploadUrlResponse:
        path = upload_path(company_id, content_type)
        url = self.storage.generate_upload_signed_url(path, content_type)
        logger.info(f"Upload URL issued for {file_name!r} -> {path}")
        return UploadUrlResponse(
            upload_url=url,
            storage_path=path,
            content_type=content_type,
            expires_in_minutes=self.settings.gcs_signed_url_expiration_minutes,
        )

    def create(
        self,
        company_id: str,
        created_by: str,
        request: CreateSigningRequestRequest,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Insert a draft request. The original must live under the company's prefix."""
        if not request.file_url.startswith(f"{company_id}/"):
            raise ValidationException(
                "file_url must be a storage path of this company",
                details={"file_url": request.file_url},
            )

        now = now or utc_now()
        expiry_days = request.expiry_days or self.settings.signing_default_expiry_days
        row = self.supabase.insert_signing_request({
            "company_id": company_id,
            "created_by": created_by,
            "file_name": request.file_name,
            "file_url": request.file_url,
            "file_type": request.file_type,
            "fields": [f.model_dump(mode="json") for f in request.fields],
            "recipient_name": request.recipient_name,
            "recipient_phone": request.recipient_phone,
            "access_token": generate_access_token(),
            "status": SigningStatus.DRAFT.value,
            "expires_at": to_db_timestamp(add_days(now, expiry_days)),
        })
        set_context(signing_request_id=str(row["id"]))
        logger.info(f"Signing request created with {len(request.fields)} fields, expiry={expiry_days}d")
        return self._with_signing_url(row)

    def _get_owned(self, request_id: str, company_id: str) -> Dict[str, Any]:
        row = self.supabase.get_signing_request(request_id, company_id)
        if row is None:
            raise NotFoundError("Signing request", request_id)
        return row

    @staticmethod
    def _conflict(status: SigningStatus) -> ConflictError:
        return ConflictError(
            f"Signing request is {status.value}",
            details={"status": status.value},
        )

    def _expire(self, row: Dict[str, Any]) -> None:
        self.supabase.transition_signing_request(
            str(row["id"]),
            ACTIVE_SIGNING_STATUSES,
            {"status": SigningStatus.EXPIRED.value},
        )
        logger.info("Signing request expired on access")

    async def send(self, request_id: str, company_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Deliver the signing link over WhatsApp.

        draft/sent become sent; opened stays opened (a resend). Delivery
        failure raises ExternalServiceError and leaves the status as it was.
        """
        now = now or utc_now()
        row = self._get_owned(request_id, company_id)
        status = SigningStatus(row["status"])
        if status in TERMINAL_ERRORS:
            raise self._conflict(status)
        if is_past(row.get("expires_at"), now):
            self._expire(row)
            raise self._conflict(SigningStatus.EXPIRED)

        chat_id = chat_id_for_phone(row.get("recipient_phone"), self.settings.default_country_code)
        if chat_id is None:
            raise ValidationException("Signing request has no usable recipient phone")
        phone = normalize_phone(chat_id, self.settings.default_country_code)

        text = messages.signing_invitation(
            file_name=row["file_name"],
            signing_url=self.signing_url(row["access_token"]),
            expiry_text=format_hebrew_date(row.get("expires_at")),
            recipient_name=row.get("recipient_name"),
            company_name=self.supabase.get_company_name(company_id),
        )
        await self.whatsapp.send_message_or_raise(chat_id, text)

        new_status = SigningStatus.OPENED if status == SigningStatus.OPENED else SigningStatus.SENT
        updated = self.supabase.transition_signing_request(
            request_id,
            [status],
            {
                "status": new_status.value,
                "recipient_phone": phone,
                "whatsapp_sent_at": to_db_timestamp(now),
            },
        )
        if updated is None:
            current = self._get_owned(request_id, company_id)
            logger.warning(f"Signing request changed to {current['status']} while sending")
            raise self._conflict(SigningStatus(current["status"]))

        self.supabase.insert_signing_audit(request_id, AuditEvent.SENT, {
            "chat_fp": fingerprint(chat_id, "chat_"),
            "phone_masked": mask_phone(phone),
        })
        logger.info(f"Signing request sent, status {status.value} -> {new_status.value}")
        return self._with_signing_url(updated)

    def cancel(self, request_id: str, company_id: str) -> Dict[str, Any]:
        row = self._get_owned(request_id, company_id)
        status = SigningStatus(row["status"])
        if status in TERMINAL_ERRORS:
            raise self._conflict(status)

        updated = self.supabase.transition_signing_request(
            request_id,
            ACTIVE_SIGNING_STATUSES,
            {"status": SigningStatus.CANCELLED.value},
        )
        if updated is None:
            current = self._get_owned(request_id, company_id)
            raise self._conflict(SigningStatus(current["status"]))

        logger.info(f"Signing request cancelled (was {status.value})")
        return self._with_signing_url(updated)

    def get_signed_document_url(self, request_id: str, company_id: str) -> SignedUrlResponse:
        row = self._get_owned(request_id, company_id)
        if row.get("status") != SigningStatus.SIGNED.value or not row.get("signed_file_url"):
            raise ConflictError("Signing request is not signed", details={"status": row.get("status")})

        stem = posixpath.splitext(row["file_name"])[0] or "document"
        expiration = self.settings.document_url_expiration_minutes
        try:
            url = self.storage.generate_download_signed_url(
                row["signed_file_url"],
                expiration_minutes=expiration,
                filename=f"{stem}-signed.pdf",
            )
        except FileNotFoundError as e:
            raise NotFoundError("Signed document", request_id) from e
        return SignedUrlResponse(url=url, expires_in_minutes=expiration)

    # =========================================================================
    # Public (token) endpoints
    # =========================================================================

    def _load_for_token(self, token: str, now: datetime) -> Dict[str, Any]:
        """
        Look up by access token and enforce status and expiry.
        Raises SigningStateError; terminal states are never left.
        """
        row = self.supabase.get_signing_request_by_token(token)
        set_context(token_fp=fingerprint(token, "tok_"))
        if row is None:
            raise SigningStateError(SigningStateError.NOT_FOUND)
        set_context(signing_request_id=str(row["id"]))

        status = SigningStatus(row["status"])
        if status in TERMINAL_ERRORS:
            raise SigningStateError(TERMINAL_ERRORS[status])
        if is_past(row.get("expires_at"), now):
            self._expire(row)
            raise SigningStateError(SigningStateError.EXPIRED)
        return row

    def resolve(
        self,
        token: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ResolveSigningResponse:
        now = now or utc_now()
        row = self._load_for_token(token, now)

        document_url = self.storage.generate_download_signed_url(
            row["file_url"],
            expiration_minutes=self.settings.document_url_expiration_minutes,
            filename=row["file_name"],
        )

        status = SigningStatus(row["status"])
        if status == SigningStatus.SENT:
            updated = self.supabase.transition_signing_request(
                str(row["id"]),
                [SigningStatus.SENT],
                {"status": SigningStatus.OPENED.value},
            )
            if updated is not None:
                self.supabase.insert_signing_audit(str(row["id"]), AuditEvent.OPENED, {
                    "ip": ip,
                    "user_agent": user_agent,
                })
                logger.info("Signing request opened")
                row = updated
            else:
                row = self.supabase.get_signing_request_by_token(token) or row

        return ResolveSigningResponse(
            signing_request=PublicSigningRequest(
                id=str(row["id"]),
                file_name=row["file_name"],
                file_url=document_url,
                file_type=row.get("file_type"),
                fields=row.get("fields") or [],
                recipient_name=row.get("recipient_name"),
                status=row["status"],
            ),
            document_url=document_url,
        )

    async def complete(
        self,
        token: str,
        field_values: Mapping[str, Any],
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BurnResult:
        """
        Burn the submitted values and mark the request signed.

        The status flips only after the signed artifact is stored; any
        earlier failure leaves the request in its prior state.
        """
        now = now or utc_now()
        row = self._load_for_token(token, now)
        request_id = str(row["id"])

        fields = parse_fields(row.get("fields"))
        values = validate_field_values(fields, field_values)

        original = self.storage.download_bytes(row["file_url"])
        result = self.burner.burn(original, row.get("file_type"), fields, values, path=row["file_url"])

        signed_path = derive_signed_path(row["file_url"], now)
        self.storage.upload_bytes(signed_path, result.pdf_bytes, content_type="application/pdf")

        updated = self.supabase.transition_signing_request(
            request_id,
            ACTIVE_SIGNING_STATUSES,
            {
                "status": SigningStatus.SIGNED.value,
                "signed_file_url": signed_path,
                "signed_at": to_db_timestamp(now),
                "signer_ip": ip,
                "signer_user_agent": user_agent,
                "signed_field_values": values,
            },
        )
        if updated is None:
            self._discard_artifact(signed_path)
            current = self.supabase.get_signing_request_by_token(token)
            status = SigningStatus(current["status"]) if current else SigningStatus.SIGNED
            raise SigningStateError(TERMINAL_ERRORS.get(status, SigningStateError.ALREADY_SIGNED))

        self.supabase.insert_signing_audit(request_id, AuditEvent.SIGNED, {
            "ip": ip,
            "user_agent": user_agent,
            "fields_filled": len(values),
            "fields_drawn": result.drawn,
        })
        logger.info(f"Signing request signed: filled={len(values)}, drawn={result.drawn}")

        chat_id = chat_id_for_phone(row.get("recipient_phone"), self.settings.default_country_code)
        if chat_id:
            await self.whatsapp.send_message(chat_id, messages.signing_completed(row["file_name"]))
        return result

    def _discard_artifact(self, path: str) -> None:
        try:
            self.storage.delete(path)
        except StorageError as e:
            logger.warning(f"Could not delete orphaned signed artifact: {e}")


# Singleton instance
_signing_service: Optional[SigningService] = None


def get_signing_service() -> SigningService:
    """Get the signing service singleton."""
    global _signing_service
    if _signing_service is None:
        _signing_service = SigningService()
    return _signing_service
