"""
Supabase client module for database operations.

The pipeline tables are written by this backend only, so the client uses
the service-role key. Tenant isolation is enforced by the callers, which
always filter by company_id for org-scoped reads and writes.
"""
import logging
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable

from postgrest.exceptions import APIError
from supabase import create_client, Client

from legalnexus.config import get_settings, Settings
from legalnexus.exceptions import DuplicateDocumentError
from legalnexus.models import AuditEvent, DocumentSource, ScannedDocumentStatus
from legalnexus.utils.datetime_utils import utc_now, to_db_timestamp

logger = logging.getLogger(__name__)

# PostgreSQL unique_violation
UNIQUE_VIOLATION = "23505"


def is_unique_violation(exc: Exception) -> bool:
    """Check whether a PostgREST error is a unique-constraint conflict."""
    return isinstance(exc, APIError) and str(getattr(exc, "code", "")) == UNIQUE_VIOLATION


def _first(rows: Optional[List[Dict]]) -> Optional[Dict]:
    return rows[0] if rows else None


class SupabaseClient:
    """Supabase client wrapper using the service-role key."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client: Optional[Client] = None

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = create_client(
                self.settings.require("supabase_url"),
                self.settings.require("supabase_service_role_key"),
            )
        return self._client

    def table(self, table_name: str):
        return self.client.table(table_name)

    # Auth
    def get_user_from_token(self, jwt: str) -> Optional[Dict[str, Any]]:
        """
        Verify a Supabase access token and return {id, email}.
        Returns None for invalid or expired tokens.
        """
        try:
            response = self.client.auth.get_user(jwt)
        except Exception as e:
            logger.info(f"get_user_from_token: token rejected ({type(e).__name__})")
            return None

        user = getattr(response, "user", None)
        if not user:
            return None
        return {"id": user.id, "email": getattr(user, "email", None)}

    # Profiles and memberships
    def get_authorized_profiles(self) -> List[Dict]:
        """All profiles allowed to submit documents over WhatsApp."""
        result = self.table("profiles").select(
            "id, phone, full_name"
        ).eq(
            "whatsapp_authorized", True
        ).not_.is_("phone", "null").execute()

        return result.data or []

    def get_company_memberships(self, user_id: str) -> List[Dict]:
        """
        Get all companies a user belongs to.
        Returns list of {id, name}; ordering is left to the caller.
        """
        result = self.table("user_company_assignments").select(
            "company_id, companies!inner(name)"
        ).eq("user_id", user_id).execute()

        memberships = []
        for row in result.data or []:
            company = row.get("companies") or {}
            if isinstance(company, list):
                company = company[0] if company else {}
            memberships.append({
                "id": row["company_id"],
                "name": company.get("name") or "",
            })
        return memberships

    def check_company_membership(self, user_id: str, company_id: str) -> Optional[Dict]:
        """Returns the membership row if the user belongs to the company, None otherwise."""
        result = self.table("user_company_assignments").select(
            "user_id, company_id"
        ).eq(
            "user_id", user_id
        ).eq(
            "company_id", company_id
        ).limit(1).execute()

        return _first(result.data)

    def get_company_name(self, company_id: str) -> Optional[str]:
        result = self.table("companies").select("name").eq("id", company_id).limit(1).execute()
        row = _first(result.data)
        return row.get("name") if row else None

    # Scanned documents
    def scanned_document_exists(self, message_id: str) -> bool:
        """
        Cheap redelivery pre-check by provider message id.
        Not a correctness guarantee: claim_scanned_document() is.
        """
        result = self.table("scanned_documents").select("id, status").eq(
            "source", DocumentSource.WHATSAPP.value
        ).eq(
            "whatsapp_message_id", message_id
        ).limit(1).execute()

        row = _first(result.data)
        return bool(row) and row.get("status") != ScannedDocumentStatus.ERROR.value

    def claim_scanned_document(self, row: Dict[str, Any]) -> Dict:
        """
        Insert a 'processing' row for an inbound document.

        The unique index on (source, whatsapp_message_id) makes this the
        idempotency gate. On conflict, a row left in 'error' by an earlier
        failed attempt is re-claimed with a conditional update; any other
        existing row raises DuplicateDocumentError.
        """
        payload = {**row, "status": ScannedDocumentStatus.PROCESSING.value}
        try:
            result = self.table("scanned_documents").insert(payload).execute()
        except APIError as e:
            if not is_unique_violation(e):
                raise
            message_id = row.get("whatsapp_message_id") or ""
            reclaimed = self.table("scanned_documents").update(payload).eq(
                "source", DocumentSource.WHATSAPP.value
            ).eq(
                "whatsapp_message_id", message_id
            ).eq(
                "status", ScannedDocumentStatus.ERROR.value
            ).execute()
            claimed = _first(reclaimed.data)
            if claimed is None:
                raise DuplicateDocumentError(message_id)
            logger.info(f"claim_scanned_document: re-claimed failed row {claimed['id'][:8]}...")
            return claimed

        claimed = _first(result.data)
        if claimed is None:
            raise RuntimeError("Insert into scanned_documents returned no row")
        return claimed

    def complete_scanned_document(self, document_id: str, updates: Dict[str, Any]) -> Dict:
        """Store extraction results and hand the document to manual review."""
        payload = {
            **updates,
            "status": ScannedDocumentStatus.NEEDS_VERIFICATION.value,
            "processed_at": to_db_timestamp(utc_now()),
        }
        result = self.table("scanned_documents").update(payload).eq("id", document_id).execute()
        row = _first(result.data)
        if row is None:
            raise ValueError(f"Scanned document not found: {document_id}")
        return row

    def fail_scanned_document(self, document_id: str, reason: str) -> None:
        self.table("scanned_documents").update({
            "status": ScannedDocumentStatus.ERROR.value,
            "notes": reason[:1000],
            "processed_at": to_db_timestamp(utc_now()),
        }).eq("id", document_id).execute()

    # Pending organization selections
    def insert_pending_selection(self, row: Dict[str, Any]) -> Dict:
        result = self.table("whatsapp_pending_org_selection").insert(row).execute()
        inserted = _first(result.data)
        if inserted is None:
            raise RuntimeError("Insert into whatsapp_pending_org_selection returned no row")
        return inserted

    def get_pending_selections(self, chat_id: str) -> List[Dict]:
        """All selection rows for a chat, including expired ones."""
        result = self.table("whatsapp_pending_org_selection").select("*").eq(
            "chat_id", chat_id
        ).execute()
        return result.data or []

    def get_active_pending_selection(self, chat_id: str, now: datetime) -> Optional[Dict]:
        """Newest unexpired selection for a chat."""
        result = self.table("whatsapp_pending_org_selection").select("*").eq(
            "chat_id", chat_id
        ).gt(
            "expires_at", to_db_timestamp(now)
        ).order("created_at", desc=True).limit(1).execute()

        return _first(result.data)

    def delete_pending_selection(self, selection_id: str) -> bool:
        """Delete one selection row. Returns False if it was already gone."""
        result = self.table("whatsapp_pending_org_selection").delete().eq("id", selection_id).execute()
        return bool(result.data)

    # Signing requests
    def insert_signing_request(self, row: Dict[str, Any]) -> Dict:
        result = self.table("signing_requests").insert(row).execute()
        inserted = _first(result.data)
        if inserted is None:
            raise RuntimeError("Insert into signing_requests returned no row")
        return inserted

    def get_signing_request(self, request_id: str, company_id: str) -> Optional[Dict]:
        """Org-scoped lookup by id."""
        result = self.table("signing_requests").select("*").eq(
            "id", request_id
        ).eq(
            "company_id", company_id
        ).limit(1).execute()
        return _first(result.data)

    def get_signing_request_by_token(self, access_token: str) -> Optional[Dict]:
        """Public lookup. Never expose a by-id variant to unauthenticated callers."""
        result = self.table("signing_requests").select("*").eq(
            "access_token", access_token
        ).limit(1).execute()
        return _first(result.data)

    def transition_signing_request(
        self,
        request_id: str,
        from_statuses: Iterable[str],
        updates: Dict[str, Any],
    ) -> Optional[Dict]:
        """
        Conditional update: applies only while status is one of from_statuses.

        Returns the updated row, or None when another request changed the
        status first.
        """
        statuses = [getattr(s, "value", s) for s in from_statuses]
        payload = {**updates, "updated_at": to_db_timestamp(utc_now())}
        result = self.table("signing_requests").update(payload).eq(
            "id", request_id
        ).in_("status", statuses).execute()
        return _first(result.data)

    def insert_signing_audit(
        self,
        request_id: str,
        event: AuditEvent,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.table("signing_audit_log").insert({
            "signing_request_id": request_id,
            "event": event.value,
            "metadata": metadata or {},
        }).execute()


# Singleton instance
_supabase_client: Optional[SupabaseClient] = None


def get_supabase_client() -> SupabaseClient:
    """Get the Supabase client singleton."""
    global _supabase_client
    if _supabase_client is None:
        _supabase_client = SupabaseClient()
    return _supabase_client
