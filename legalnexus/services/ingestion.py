"""
Scanned document ingestion: claim, store, extract, record.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from legalnexus.extraction import DocumentExtractor, ExtractionResult, get_document_extractor
from legalnexus.models import DocumentSource, DocumentType, ExtractedFields, extension_for
from legalnexus.storage import GCSClient, get_gcs_client
from legalnexus.supabase_client import SupabaseClient, get_supabase_client
from legalnexus.utils.datetime_utils import epoch_ms
from legalnexus.utils.logging import set_context
from legalnexus.utils.security import generate_suffix

logger = logging.getLogger(__name__)


def scanned_document_path(company_id: str, media_type: str) -> str:
    return f"{company_id}/whatsapp/{epoch_ms()}-{generate_suffix()}.{extension_for(media_type)}"


@dataclass
class IngestionResult:
    document_id: str
    storage_path: str
    fields: Optional[ExtractedFields]

    @property
    def parse_error(self) -> bool:
        return self.fields is None


def extraction_columns(result: ExtractionResult) -> dict:
    """scanned_documents columns for an extraction result."""
    model_response = {
        "content": result.raw_response,
        "model": result.model,
        "usage": result.usage,
    }
    if result.fields is None:
        return {
            "document_type": DocumentType.OTHER.value,
            "confidence": "low",
            "raw_extracted_data": result.payload,
            "model_response": model_response,
        }

    fields = result.fields
    return {
        "document_type": fields.document_type.value,
        "document_date": fields.document_date,
        "title": fields.title,
        "case_number": fields.case_number,
        "court_name": fields.court_name,
        "parties": fields.parties,
        "summary": fields.summary,
        "key_dates": fields.key_dates,
        "amounts": fields.amounts,
        "references_list": fields.references,
        "signatures": fields.signatures,
        "notes": fields.notes,
        "raw_text_excerpt": fields.raw_text_excerpt,
        "confidence": fields.confidence,
        "raw_extracted_data": result.payload,
        "model_response": model_response,
    }


class DocumentIngestionService:
    """Runs one inbound WhatsApp document into a scanned_documents row."""

    def __init__(
        self,
        supabase: Optional[SupabaseClient] = None,
        storage: Optional[GCSClient] = None,
        extractor: Optional[DocumentExtractor] = None,
    ):
        self.supabase = supabase or get_supabase_client()
        self.storage = storage or get_gcs_client()
        self.extractor = extractor or get_document_extractor()

    async def ingest_whatsapp_document(
        self,
        *,
        company_id: str,
        uploaded_by: Optional[str],
        file_bytes: bytes,
        media_type: str,
        file_name: str,
        chat_id: str,
        message_id: str,
        sender_name: Optional[str],
    ) -> IngestionResult:
        """
        Claim the message id, store the bytes, extract and record.

        Raises DuplicateDocumentError when the message was already handled.
        Storage and extraction failures mark the claimed row as error and
        propagate, so a later redelivery can re-claim it.
        """
        set_context(company_id=company_id)
        storage_path = scanned_document_path(company_id, media_type)

        claimed = self.supabase.claim_scanned_document({
            "company_id": company_id,
            "uploaded_by": uploaded_by,
            "file_name": file_name,
            "file_url": storage_path,
            "file_type": media_type,
            "file_size": len(file_bytes),
            "source": DocumentSource.WHATSAPP.value,
            "whatsapp_chat_id": chat_id,
            "whatsapp_message_id": message_id,
            "whatsapp_sender_name": sender_name,
        })
        document_id = str(claimed["id"])
        storage_path = claimed.get("file_url") or storage_path

        try:
            self.storage.upload_bytes(storage_path, file_bytes, content_type=media_type)
            result = await self.extractor.extract(file_bytes, media_type)
            self.supabase.complete_scanned_document(document_id, extraction_columns(result))
        except Exception as e:
            self.supabase.fail_scanned_document(document_id, f"{type(e).__name__}: {e}")
            raise

        logger.info(
            f"ingest: document {document_id[:8]}... recorded, parse_error={result.parse_error}"
        )
        return IngestionResult(document_id=document_id, storage_path=storage_path, fields=result.fields)
