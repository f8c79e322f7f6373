"""
Inbound WhatsApp event handling.

Every incoming message ends in exactly one outcome and at most one
outbound message:

    unauthorized            sender not resolvable              rejection notice
    usage_hint              text, no pending selection          usage hint
    invalid_choice          text, pending, bad number           "reply 1-N"
    selection_expired_file  text, pending, staged file gone     expired notice
    unsupported_type        media we cannot process             unsupported notice
    pending_selection       media, 2+ companies                 numbered menu
    processed               document extracted and recorded     summary
    duplicate               redelivered or concurrently handled (nothing)
    error                   storage/model/provider failure      error notice

State lives in the database (pending selections, scanned_documents),
never in the process, so any instance can handle any event.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from legalnexus import messages
from legalnexus.config import ConfigurationError
from legalnexus.exceptions import DuplicateDocumentError, MediaDownloadError, StagedFileMissingError
from legalnexus.models import (
    GreenApiWebhook,
    extension_for,
    is_supported_media_type,
    normalize_media_type,
)
from legalnexus.services.ingestion import DocumentIngestionService
from legalnexus.services.pending_selection import PendingSelection, PendingSelectionStore
from legalnexus.services.phone_resolver import Organization, PhoneIdentityResolver, ResolvedSender
from legalnexus.supabase_client import SupabaseClient, get_supabase_client
from legalnexus.utils.datetime_utils import epoch_ms
from legalnexus.utils.logging import fingerprint, set_context
from legalnexus.whatsapp import GreenApiClient, get_whatsapp_client

logger = logging.getLogger(__name__)

TEXT_MESSAGE_TYPES = ("textMessage", "extendedTextMessage")
FILE_MESSAGE_TYPES = ("imageMessage", "documentMessage")


class DispatchOutcome(str, Enum):
    UNAUTHORIZED = "unauthorized"
    USAGE_HINT = "usage_hint"
    INVALID_CHOICE = "invalid_choice"
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    UNSUPPORTED_TYPE = "unsupported_type"
    PENDING_SELECTION = "pending_selection"
    ERROR = "error"
    SELECTION_EXPIRED_FILE = "selection_expired_file"


class MessageKind(str, Enum):
    TEXT = "text"
    MEDIA = "media"
    UNSUPPORTED = "unsupported"


@dataclass
class InboundMessage:
    chat_id: str
    sender_phone: str
    sender_name: Optional[str]
    message_id: str
    kind: MessageKind
    text: str = ""
    download_url: Optional[str] = None
    media_type: str = ""
    file_name: str = ""


def classify(webhook: GreenApiWebhook) -> InboundMessage:
    """
    Reduce an incomingMessageReceived payload to what the dispatcher needs.
    Raises ValueError when sender data or the provider message id is missing.
    """
    if webhook.sender_data is None or not webhook.sender_data.chat_id:
        raise ValueError("Webhook has no senderData.chatId")
    # The message id is the dedup key
    message_id = (webhook.id_message or "").strip()
    if not message_id:
        raise ValueError("Webhook has no idMessage")

    sender = webhook.sender_data
    data = webhook.message_data
    message_type = data.type_message if data else ""
    base = dict(
        chat_id=sender.chat_id,
        sender_phone=sender.sender or sender.chat_id,
        sender_name=sender.sender_name,
        message_id=message_id,
    )

    if message_type in TEXT_MESSAGE_TYPES:
        if data.text_message_data is not None:
            text = data.text_message_data.text_message
        elif data.extended_text_message_data is not None:
            text = data.extended_text_message_data.text
        else:
            text = ""
        return InboundMessage(kind=MessageKind.TEXT, text=text, **base)

    file_data = data.file_message_data if data else None
    if message_type in FILE_MESSAGE_TYPES and file_data is not None and file_data.download_url:
        media_type = normalize_media_type(file_data.mime_type)
        file_name = (
            (file_data.file_name or "").strip()
            or (file_data.caption or "").strip()
            or f"whatsapp-{epoch_ms()}.{extension_for(media_type)}"
        )
        kind = MessageKind.MEDIA if is_supported_media_type(media_type) else MessageKind.UNSUPPORTED
        return InboundMessage(
            kind=kind,
            download_url=file_data.download_url,
            media_type=media_type,
            file_name=file_name,
            **base,
        )

    return InboundMessage(kind=MessageKind.UNSUPPORTED, **base)


class WebhookDispatcher:
    """Drives one inbound message to its outcome."""

    def __init__(
        self,
        resolver: Optional[PhoneIdentityResolver] = None,
        pending: Optional[PendingSelectionStore] = None,
        ingestion: Optional[DocumentIngestionService] = None,
        whatsapp: Optional[GreenApiClient] = None,
        supabase: Optional[SupabaseClient] = None,
    ):
        self.supabase = supabase or get_supabase_client()
        self.resolver = resolver or PhoneIdentityResolver(supabase=self.supabase)
        self.pending = pending or PendingSelectionStore(supabase=self.supabase)
        self.ingestion = ingestion or DocumentIngestionService(supabase=self.supabase)
        self.whatsapp = whatsapp or get_whatsapp_client()

    async def dispatch(self, message: InboundMessage) -> DispatchOutcome:
        """
        Handle one message. Failures are contained to the message: the
        sender gets the error notice and the event is still acknowledged.
        Missing configuration is not contained.
        """
        set_context(chat_fp=fingerprint(message.chat_id, "chat_"), message_id=message.message_id)
        try:
            outcome = await self._dispatch(message)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.exception(f"dispatch: unhandled failure ({type(e).__name__})")
            await self.whatsapp.send_message(message.chat_id, messages.PROCESSING_ERROR)
            outcome = DispatchOutcome.ERROR

        logger.info(f"dispatch: kind={message.kind.value}, outcome={outcome.value}")
        return outcome

    async def _dispatch(self, message: InboundMessage) -> DispatchOutcome:
        sender, reason = self.resolver.resolve_with_reason(message.sender_phone)
        if sender is None:
            logger.info(f"dispatch: sender rejected ({reason})")
            await self.whatsapp.send_message(message.chat_id, messages.UNAUTHORIZED)
            return DispatchOutcome.UNAUTHORIZED

        if message.kind == MessageKind.TEXT:
            return await self._handle_text(message)

        if message.kind == MessageKind.UNSUPPORTED:
            await self.whatsapp.send_message(message.chat_id, messages.UNSUPPORTED_TYPE)
            return DispatchOutcome.UNSUPPORTED_TYPE

        return await self._handle_document(message, sender)

    async def _handle_text(self, message: InboundMessage) -> DispatchOutcome:
        selection = self.pending.find_active(message.chat_id)
        if selection is None:
            await self.whatsapp.send_message(message.chat_id, messages.USAGE_HINT)
            return DispatchOutcome.USAGE_HINT

        organization = selection.choose(message.text)
        if organization is None:
            # The selection stays as it is until a valid reply or expiry
            await self.whatsapp.send_message(
                message.chat_id, messages.invalid_choice(len(selection.organizations))
            )
            return DispatchOutcome.INVALID_CHOICE

        return await self._complete_selection(message, selection, organization)

    async def _complete_selection(
        self,
        message: InboundMessage,
        selection: PendingSelection,
        organization: Organization,
    ) -> DispatchOutcome:
        try:
            file_bytes = self.pending.load_staged_bytes(selection)
        except StagedFileMissingError:
            logger.warning("dispatch: staged file missing for pending selection")
            self.pending.consume(selection)
            await self.whatsapp.send_message(message.chat_id, messages.SELECTION_FILE_EXPIRED)
            return DispatchOutcome.SELECTION_EXPIRED_FILE

        if not self.pending.claim(selection):
            logger.info("dispatch: pending selection already consumed by a concurrent reply")
            return DispatchOutcome.DUPLICATE

        try:
            return await self._ingest(
                company_id=organization.id,
                user_id=selection.user_id,
                file_bytes=file_bytes,
                media_type=selection.media_type,
                file_name=selection.file_name,
                chat_id=message.chat_id,
                message_id=selection.message_id or message.message_id,
                sender_name=message.sender_name,
            )
        finally:
            self.pending.release_staged(selection)

    async def _handle_document(self, message: InboundMessage, sender: ResolvedSender) -> DispatchOutcome:
        if message.message_id and self.supabase.scanned_document_exists(message.message_id):
            logger.info("dispatch: message already processed, skipping")
            return DispatchOutcome.DUPLICATE

        multi_company = len(sender.organizations) > 1
        if multi_company and message.message_id:
            active = self.pending.find_active(message.chat_id)
            if active is not None and active.message_id == message.message_id:
                logger.info("dispatch: message already staged for selection, skipping")
                return DispatchOutcome.DUPLICATE

        try:
            file_bytes = await self.whatsapp.download_media(message.download_url)
        except MediaDownloadError as e:
            logger.error(f"dispatch: media download failed: {e}")
            await self.whatsapp.send_message(message.chat_id, messages.PROCESSING_ERROR)
            return DispatchOutcome.ERROR

        if not multi_company:
            return await self._ingest(
                company_id=sender.organizations[0].id,
                user_id=sender.user_id,
                file_bytes=file_bytes,
                media_type=message.media_type,
                file_name=message.file_name,
                chat_id=message.chat_id,
                message_id=message.message_id,
                sender_name=message.sender_name,
            )

        self.pending.save(
            chat_id=message.chat_id,
            phone=sender.phone,
            user_id=sender.user_id,
            choices=sender.organizations,
            file_bytes=file_bytes,
            media_type=message.media_type,
            file_name=message.file_name,
            source_message_id=message.message_id,
        )
        await self.whatsapp.send_message(
            message.chat_id, messages.organization_menu([o.name for o in sender.organizations])
        )
        return DispatchOutcome.PENDING_SELECTION

    async def _ingest(
        self,
        *,
        company_id: str,
        user_id: Optional[str],
        file_bytes: bytes,
        media_type: str,
        file_name: str,
        chat_id: str,
        message_id: str,
        sender_name: Optional[str],
    ) -> DispatchOutcome:
        try:
            result = await self.ingestion.ingest_whatsapp_document(
                company_id=company_id,
                uploaded_by=user_id,
                file_bytes=file_bytes,
                media_type=media_type,
                file_name=file_name,
                chat_id=chat_id,
                message_id=message_id,
                sender_name=sender_name,
            )
        except DuplicateDocumentError:
            logger.info("dispatch: document claimed by another delivery, skipping")
            return DispatchOutcome.DUPLICATE

        if result.parse_error:
            await self.whatsapp.send_message(chat_id, messages.LOW_CONFIDENCE)
        else:
            await self.whatsapp.send_message(chat_id, messages.extraction_summary(result.fields))
        return DispatchOutcome.PROCESSED


# Singleton instance
_dispatcher: Optional[WebhookDispatcher] = None


def get_webhook_dispatcher() -> WebhookDispatcher:
    """Get the webhook dispatcher singleton."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = WebhookDispatcher()
    return _dispatcher
