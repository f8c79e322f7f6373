"""
Pytest configuration and fixtures.

The Supabase, GCS, Green API and Gemini boundaries are replaced by small
in-memory fakes with the same method names, so services run their real
logic against state the tests can inspect.
"""
import base64
import io
import json
import os
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import fitz
import pytest
from PIL import Image

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from legalnexus.config import Settings
from legalnexus.exceptions import (
    DuplicateDocumentError,
    ExternalServiceError,
    MediaDownloadError,
    StorageError,
)
from legalnexus.extraction import ExtractionResult, parse_extraction_response
from legalnexus.models import ExtractedFields, GreenApiWebhook
from legalnexus.pdf.burn import FieldBurner
from legalnexus.services.ingestion import DocumentIngestionService
from legalnexus.services.pending_selection import PendingSelectionStore
from legalnexus.services.phone_resolver import PhoneIdentityResolver
from legalnexus.services.signing_service import SigningService
from legalnexus.services.webhook_dispatcher import WebhookDispatcher, classify
from legalnexus.utils.datetime_utils import parse_db_timestamp, to_db_timestamp, utc_now

INSTANCE_ID = "1101000001"
WEBHOOK_SECRET = "hook-secret"
ADMIN_SECRET = "admin-secret"

COMPANY_COHEN = "company-cohen"
COMPANY_LEVI = "company-levi"

SINGLE_ORG_CHAT = "972501234567@c.us"
MULTI_ORG_CHAT = "972527654321@c.us"
NO_ORG_CHAT = "972541112222@c.us"
UNKNOWN_CHAT = "972509999999@c.us"

CONTRACT_PAYLOAD = {
    "document_type": "contract",
    "document_date": "2026-03-01",
    "title": "הסכם שכירות",
    "case_number": None,
    "parties": [{"name": "ישראל ישראלי", "role": "שוכר"}, {"name": "דנה כהן", "role": "משכירה"}],
    "summary": "הסכם שכירות לדירה בתל אביב",
    "key_dates": [{"date": "2026-04-01", "description": "תחילת שכירות"}],
    "amounts": [{"amount": 6500, "currency": "ILS", "description": "דמי שכירות"}],
    "references": [],
    "signatures": [],
    "confidence": "high",
}


def _new_id() -> str:
    return str(uuid.uuid4())


class FakeSupabase:
    """In-memory stand-in for SupabaseClient."""

    def __init__(self):
        self.profiles: List[Dict[str, Any]] = [
            {"id": "user-single", "phone": "050-123-4567", "full_name": "Avi", "whatsapp_authorized": True},
            {"id": "user-multi", "phone": "+972 52 765 4321", "full_name": "Noa", "whatsapp_authorized": True},
            {"id": "user-none", "phone": "054-111-2222", "full_name": "Dan", "whatsapp_authorized": True},
            {"id": "user-off", "phone": "0509999999", "full_name": "Off", "whatsapp_authorized": False},
        ]
        self.companies: Dict[str, str] = {COMPANY_COHEN: "Cohen Law", COMPANY_LEVI: "Levi & Co"}
        self.memberships: Dict[str, List[str]] = {
            "user-single": [COMPANY_COHEN],
            # Stored in the opposite of menu order on purpose
            "user-multi": [COMPANY_LEVI, COMPANY_COHEN],
            "user-none": [],
        }
        self.tokens: Dict[str, Dict[str, Any]] = {}
        self.scanned_documents: List[Dict[str, Any]] = []
        self.pending: Dict[str, Dict[str, Any]] = {}
        self.signing_requests: Dict[str, Dict[str, Any]] = {}
        self.audit: List[Dict[str, Any]] = []

    # Auth and companies
    def get_user_from_token(self, jwt: str) -> Optional[Dict[str, Any]]:
        return self.tokens.get(jwt)

    def get_authorized_profiles(self) -> List[Dict]:
        return [
            {"id": p["id"], "phone": p["phone"], "full_name": p["full_name"]}
            for p in self.profiles
            if p["whatsapp_authorized"] and p["phone"]
        ]

    def get_company_memberships(self, user_id: str) -> List[Dict]:
        return [{"id": cid, "name": self.companies[cid]} for cid in self.memberships.get(user_id, [])]

    def check_company_membership(self, user_id: str, company_id: str) -> Optional[Dict]:
        if company_id in self.memberships.get(user_id, []):
            return {"user_id": user_id, "company_id": company_id}
        return None

    def get_company_name(self, company_id: str) -> Optional[str]:
        return self.companies.get(company_id)

    # Scanned documents
    def _document_by_message(self, message_id: str) -> Optional[Dict[str, Any]]:
        for row in self.scanned_documents:
            if row["source"] == "whatsapp" and row["whatsapp_message_id"] == message_id:
                return row
        return None

    def scanned_document_exists(self, message_id: str) -> bool:
        row = self._document_by_message(message_id)
        return bool(row) and row["status"] != "error"

    def claim_scanned_document(self, row: Dict[str, Any]) -> Dict:
        payload = {**row, "status": "processing"}
        existing = self._document_by_message(row.get("whatsapp_message_id"))
        if existing is not None:
            if existing["status"] != "error":
                raise DuplicateDocumentError(row.get("whatsapp_message_id"))
            existing.update(payload)
            return dict(existing)
        stored = {"id": _new_id(), **payload}
        self.scanned_documents.append(stored)
        return dict(stored)

    def complete_scanned_document(self, document_id: str, updates: Dict[str, Any]) -> Dict:
        for row in self.scanned_documents:
            if row["id"] == document_id:
                row.update(updates)
                row["status"] = "needs_verification"
                row["processed_at"] = to_db_timestamp(utc_now())
                return dict(row)
        raise ValueError(f"Scanned document not found: {document_id}")

    def fail_scanned_document(self, document_id: str, reason: str) -> None:
        for row in self.scanned_documents:
            if row["id"] == document_id:
                row["status"] = "error"
                row["notes"] = reason

    # Pending selections
    def insert_pending_selection(self, row: Dict[str, Any]) -> Dict:
        stored = {"id": _new_id(), **row}
        self.pending[stored["id"]] = stored
        return dict(stored)

    def get_pending_selections(self, chat_id: str) -> List[Dict]:
        return [dict(r) for r in self.pending.values() if r["chat_id"] == chat_id]

    def get_active_pending_selection(self, chat_id: str, now: datetime) -> Optional[Dict]:
        rows = [
            r for r in self.pending.values()
            if r["chat_id"] == chat_id and parse_db_timestamp(r["expires_at"]) > now
        ]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return dict(rows[0]) if rows else None

    def delete_pending_selection(self, selection_id: str) -> bool:
        return self.pending.pop(selection_id, None) is not None

    # Signing requests
    def insert_signing_request(self, row: Dict[str, Any]) -> Dict:
        stored = {
            "id": _new_id(),
            "created_at": to_db_timestamp(utc_now()),
            "signed_file_url": None,
            "signed_at": None,
            "whatsapp_sent_at": None,
            **row,
        }
        self.signing_requests[stored["id"]] = stored
        return dict(stored)

    def get_signing_request(self, request_id: str, company_id: str) -> Optional[Dict]:
        row = self.signing_requests.get(request_id)
        if row and row["company_id"] == company_id:
            return dict(row)
        return None

    def get_signing_request_by_token(self, access_token: str) -> Optional[Dict]:
        for row in self.signing_requests.values():
            if row["access_token"] == access_token:
                return dict(row)
        return None

    def transition_signing_request(self, request_id, from_statuses, updates) -> Optional[Dict]:
        row = self.signing_requests.get(request_id)
        statuses = {getattr(s, "value", s) for s in from_statuses}
        if row is None or row["status"] not in statuses:
            return None
        row.update(updates)
        return dict(row)

    def insert_signing_audit(self, request_id, event, metadata=None) -> None:
        self.audit.append({
            "signing_request_id": request_id,
            "event": event.value,
            "metadata": metadata or {},
        })


class FakeStorage:
    """In-memory stand-in for GCSClient."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.uploads: List[str] = []
        self.deleted: List[str] = []
        self.fail_uploads = False

    def upload_bytes(self, object_path: str, data: bytes, content_type: Optional[str] = None) -> str:
        if self.fail_uploads:
            raise StorageError(f"Upload failed for {object_path}")
        self.objects[object_path] = data
        self.uploads.append(object_path)
        return object_path

    def download_bytes(self, object_path: str) -> bytes:
        if object_path not in self.objects:
            raise FileNotFoundError(object_path)
        return self.objects[object_path]

    def delete(self, object_path: str) -> bool:
        self.deleted.append(object_path)
        return self.objects.pop(object_path, None) is not None

    def generate_upload_signed_url(self, object_path: str, content_type: str) -> str:
        return f"https://storage.test/upload/{object_path}?sig=put"

    def generate_download_signed_url(self, object_path, expiration_minutes=None, filename=None) -> str:
        if object_path not in self.objects:
            raise FileNotFoundError(object_path)
        return f"https://storage.test/{object_path}?sig=get&exp={expiration_minutes}"


class FakeWhatsApp:
    """In-memory stand-in for GreenApiClient."""

    def __init__(self):
        self.sent: List[Dict[str, str]] = []
        self.files: List[Dict[str, str]] = []
        self.media: Dict[str, bytes] = {}
        self.fail_sends = False

    async def send_message_or_raise(self, chat_id: str, text: str) -> Optional[str]:
        if self.fail_sends:
            raise ExternalServiceError("whatsapp", "sendMessage returned 500")
        self.sent.append({"chat_id": chat_id, "text": text})
        return f"out-{len(self.sent)}"

    async def send_file_by_url(self, chat_id: str, url: str, file_name: str, caption: str = "") -> Optional[str]:
        if self.fail_sends:
            raise ExternalServiceError("whatsapp", "sendFileByUrl returned 500")
        self.files.append({"chat_id": chat_id, "url": url, "file_name": file_name, "caption": caption})
        return f"out-file-{len(self.files)}"

    async def send_message(self, chat_id: str, text: str) -> bool:
        try:
            await self.send_message_or_raise(chat_id, text)
            return True
        except ExternalServiceError:
            return False

    async def download_media(self, url: str) -> bytes:
        if url not in self.media:
            raise MediaDownloadError("Media download returned 404")
        return self.media[url]

    def texts_to(self, chat_id: str) -> List[str]:
        return [m["text"] for m in self.sent if m["chat_id"] == chat_id]


class FakeExtractor:
    """Returns a canned model reply; set raw to simulate a non-JSON answer."""

    model_name = "gemini-test"

    def __init__(self):
        self.payload: Dict[str, Any] = dict(CONTRACT_PAYLOAD)
        self.raw: Optional[str] = None
        self.error: Optional[Exception] = None
        self.calls: List[Dict[str, Any]] = []

    async def extract(self, data: bytes, mime_type: str) -> ExtractionResult:
        self.calls.append({"size": len(data), "mime_type": mime_type})
        if self.error is not None:
            raise self.error
        text = self.raw if self.raw is not None else json.dumps(self.payload, ensure_ascii=False)
        payload = parse_extraction_response(text)
        usage = {"input_tokens": 100, "output_tokens": 50}
        if payload.get("parse_error"):
            return ExtractionResult(fields=None, payload=payload, raw_response=text, model=self.model_name, usage=usage)
        return ExtractionResult(
            fields=ExtractedFields.model_validate(payload),
            payload=payload,
            raw_response=text,
            model=self.model_name,
            usage=usage,
        )


# =============================================================================
# Settings and fakes
# =============================================================================

@pytest.fixture
def settings():
    """Settings built from explicit values, independent of the environment."""
    return Settings(
        SUPABASE_URL="https://test.supabase.co",
        SUPABASE_SERVICE_ROLE_KEY="service-role",
        GCS_BUCKET="test-bucket",
        GREEN_API_INSTANCE_ID=INSTANCE_ID,
        GREEN_API_TOKEN="green-token",
        WEBHOOK_SECRET=WEBHOOK_SECRET,
        GEMINI_API_KEY="gemini-key",
        ADMIN_API_SECRET=ADMIN_SECRET,
        APP_URL="https://app.legalnexus.test/",
        ENVIRONMENT="test",
    )


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def fake_whatsapp():
    return FakeWhatsApp()


@pytest.fixture
def fake_extractor():
    return FakeExtractor()


@pytest.fixture
def pending_store(fake_supabase, fake_storage):
    return PendingSelectionStore(supabase=fake_supabase, storage=fake_storage, ttl_minutes=30)


@pytest.fixture
def dispatcher(fake_supabase, fake_storage, fake_whatsapp, fake_extractor, pending_store):
    return WebhookDispatcher(
        resolver=PhoneIdentityResolver(supabase=fake_supabase, country_code="972"),
        pending=pending_store,
        ingestion=DocumentIngestionService(
            supabase=fake_supabase, storage=fake_storage, extractor=fake_extractor,
        ),
        whatsapp=fake_whatsapp,
        supabase=fake_supabase,
    )


@pytest.fixture
def signing_service(settings, fake_supabase, fake_storage, fake_whatsapp):
    return SigningService(
        supabase=fake_supabase,
        storage=fake_storage,
        whatsapp=fake_whatsapp,
        burner=FieldBurner(),
        settings=settings,
    )


# =============================================================================
# Sample documents
# =============================================================================

@pytest.fixture
def png_bytes():
    """A 400x200 white PNG."""
    buf = io.BytesIO()
    Image.new("RGB", (400, 200), "white").save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def jpeg_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (300, 400), "white").save(buf, format="JPEG")
    return buf.getvalue()


@pytest.fixture
def pdf_bytes():
    """A two-page A4 PDF."""
    doc = fitz.open()
    for number in (1, 2):
        page = doc.new_page(width=595, height=842)
        page.insert_text((72, 72), f"Page {number}")
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def signature_data_url():
    buf = io.BytesIO()
    Image.new("RGBA", (120, 40), (0, 0, 0, 255)).save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode()


# =============================================================================
# Webhook payloads
# =============================================================================

def text_payload(chat_id: str, text: str, message_id: str = "MSG-TEXT", instance_id: str = INSTANCE_ID) -> dict:
    return {
        "typeWebhook": "incomingMessageReceived",
        "instanceData": {"idInstance": int(instance_id), "wid": "972500000000@c.us"},
        "timestamp": 1760000000,
        "idMessage": message_id,
        "senderData": {"chatId": chat_id, "sender": chat_id, "senderName": "Sender"},
        "messageData": {"typeMessage": "textMessage", "textMessageData": {"textMessage": text}},
    }


def file_payload(
    chat_id: str,
    message_id: str,
    mime_type: str = "application/pdf",
    download_url: str = "https://media.green-api.test/file",
    file_name: Optional[str] = "contract.pdf",
    caption: Optional[str] = None,
    type_message: str = "documentMessage",
) -> dict:
    file_data = {"downloadUrl": download_url, "mimeType": mime_type}
    if file_name is not None:
        file_data["fileName"] = file_name
    if caption is not None:
        file_data["caption"] = caption
    return {
        "typeWebhook": "incomingMessageReceived",
        "instanceData": {"idInstance": int(INSTANCE_ID)},
        "idMessage": message_id,
        "senderData": {"chatId": chat_id, "sender": chat_id, "senderName": "Sender"},
        "messageData": {"typeMessage": type_message, "fileMessageData": file_data},
    }


@pytest.fixture
def text_message():
    def build(chat_id: str, text: str, message_id: str = "MSG-TEXT"):
        return classify(GreenApiWebhook.model_validate(text_payload(chat_id, text, message_id)))
    return build


@pytest.fixture
def file_message(fake_whatsapp):
    """Build a file message and register its bytes with the fake provider."""
    def build(chat_id: str, message_id: str, data: bytes, mime_type: str = "application/pdf", **kwargs):
        url = f"https://media.green-api.test/{message_id}"
        fake_whatsapp.media[url] = data
        payload = file_payload(chat_id, message_id, mime_type=mime_type, download_url=url, **kwargs)
        return classify(GreenApiWebhook.model_validate(payload))
    return build


@pytest.fixture
def now():
    return datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
