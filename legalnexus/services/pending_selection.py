"""
Pending organization selections for multi-company WhatsApp senders.

A document from a sender with several companies is staged in storage and
remembered per chat until the sender answers the numbered menu. There is
at most one live selection per chat: saving a new one removes the old
row and its staged bytes.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from legalnexus.config import get_settings
from legalnexus.exceptions import StagedFileMissingError, StorageError
from legalnexus.models import extension_for
from legalnexus.services.phone_resolver import Organization
from legalnexus.storage import GCSClient, get_gcs_client
from legalnexus.supabase_client import SupabaseClient, get_supabase_client
from legalnexus.utils.datetime_utils import (
    add_minutes,
    epoch_ms,
    parse_db_timestamp,
    to_db_timestamp,
    utc_now,
)
from legalnexus.utils.logging import fingerprint
from legalnexus.utils.security import generate_suffix

logger = logging.getLogger(__name__)

STAGING_PREFIX = "_temp/whatsapp"
# ASCII digits only: int() rejects superscripts and over-long digit strings
_CHOICE_REPLY = re.compile(r"[0-9]{1,3}")


def staged_path(chat_id: str, media_type: str, now: Optional[datetime] = None) -> str:
    """_temp/whatsapp/{safe_chat_id}/{ms}-{rand}.{ext}"""
    safe_chat_id = re.sub(r"[^A-Za-z0-9]", "_", chat_id)
    return f"{STAGING_PREFIX}/{safe_chat_id}/{epoch_ms(now)}-{generate_suffix()}.{extension_for(media_type)}"


@dataclass
class PendingSelection:
    id: str
    chat_id: str
    phone_number: str
    user_id: str
    organizations: List[Organization]
    file_storage_path: str
    media_type: str
    file_name: str
    message_id: Optional[str]
    expires_at: Optional[datetime]
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "PendingSelection":
        return cls(
            id=str(row["id"]),
            chat_id=row["chat_id"],
            phone_number=row.get("phone_number") or "",
            user_id=row["user_id"],
            organizations=[
                Organization(id=str(o["id"]), name=o.get("name") or "")
                for o in (row.get("organizations") or [])
            ],
            file_storage_path=row["file_storage_path"],
            media_type=row.get("media_type") or "",
            file_name=row.get("file_name") or "",
            message_id=row.get("message_id"),
            expires_at=parse_db_timestamp(row.get("expires_at")),
            created_at=parse_db_timestamp(row.get("created_at")),
        )

    def choose(self, reply: str) -> Optional[Organization]:
        """Map a 1-based numeric reply to a choice; None if out of range or not a number."""
        text = (reply or "").strip()
        if not _CHOICE_REPLY.fullmatch(text):
            return None
        index = int(text)
        if 1 <= index <= len(self.organizations):
            return self.organizations[index - 1]
        return None


class PendingSelectionStore:
    """Selection rows in whatsapp_pending_org_selection plus their staged bytes."""

    def __init__(
        self,
        supabase: Optional[SupabaseClient] = None,
        storage: Optional[GCSClient] = None,
        ttl_minutes: Optional[int] = None,
    ):
        self.supabase = supabase or get_supabase_client()
        self.storage = storage or get_gcs_client()
        self.ttl_minutes = ttl_minutes or get_settings().pending_selection_ttl_minutes

    def save(
        self,
        chat_id: str,
        phone: str,
        user_id: str,
        choices: List[Organization],
        file_bytes: bytes,
        media_type: str,
        file_name: str,
        source_message_id: Optional[str],
        now: Optional[datetime] = None,
    ) -> PendingSelection:
        """
        Replace any selection for the chat with a new one.

        Raises ValueError for an empty choice list and StorageError if the
        bytes cannot be staged.
        """
        if not choices:
            raise ValueError("A pending selection needs at least one organization")
        now = now or utc_now()

        for old in self.supabase.get_pending_selections(chat_id):
            self._discard_staged(old.get("file_storage_path"))
            self.supabase.delete_pending_selection(str(old["id"]))

        path = staged_path(chat_id, media_type, now)
        self.storage.upload_bytes(path, file_bytes, content_type=media_type)

        row = {
            "chat_id": chat_id,
            "phone_number": phone,
            "user_id": user_id,
            "organizations": [{"id": o.id, "name": o.name} for o in choices],
            "file_storage_path": path,
            "media_type": media_type,
            "file_name": file_name,
            "message_id": source_message_id,
            "created_at": to_db_timestamp(now),
            "expires_at": to_db_timestamp(add_minutes(now, self.ttl_minutes)),
        }
        try:
            inserted = self.supabase.insert_pending_selection(row)
        except Exception:
            self._discard_staged(path)
            raise

        logger.info(
            f"pending_selection saved: chat={fingerprint(chat_id, 'chat_')}, "
            f"choices={len(choices)}, ttl={self.ttl_minutes}m"
        )
        return PendingSelection.from_row({**row, **inserted})

    def find_active(self, chat_id: str, now: Optional[datetime] = None) -> Optional[PendingSelection]:
        """Newest selection whose expires_at is still in the future."""
        now = now or utc_now()
        row = self.supabase.get_active_pending_selection(chat_id, now)
        if not row:
            return None
        record = PendingSelection.from_row(row)
        # Guard against clock skew between us and the database filter
        if record.expires_at is None or record.expires_at <= now:
            return None
        return record

    def load_staged_bytes(self, record: PendingSelection) -> bytes:
        try:
            return self.storage.download_bytes(record.file_storage_path)
        except FileNotFoundError as e:
            raise StagedFileMissingError(f"Staged file is gone: {record.file_storage_path}") from e

    def claim(self, record: PendingSelection) -> bool:
        """Delete the row. Only the caller that gets True may act on the selection."""
        return self.supabase.delete_pending_selection(record.id)

    def consume(self, record: PendingSelection) -> bool:
        """Delete the row and its staged bytes together."""
        claimed = self.claim(record)
        self._discard_staged(record.file_storage_path)
        return claimed

    def release_staged(self, record: PendingSelection) -> None:
        self._discard_staged(record.file_storage_path)

    def delete(self, selection_id: str) -> None:
        self.supabase.delete_pending_selection(selection_id)

    def _discard_staged(self, path: Optional[str]) -> None:
        if not path:
            return
        try:
            self.storage.delete(path)
        except (StorageError, ValueError) as e:
            # Orphaned staging bytes only cost storage; the row is what matters
            logger.warning(f"pending_selection: could not delete staged file: {e}")
