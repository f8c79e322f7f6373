"""
Maps a WhatsApp sender to an authorized user and that user's companies.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from legalnexus.config import get_settings
from legalnexus.supabase_client import SupabaseClient, get_supabase_client
from legalnexus.utils.logging import mask_phone

logger = logging.getLogger(__name__)

_WHATSAPP_SUFFIXES = ("@c.us", "@s.whatsapp.net", "@g.us")
_SEPARATORS = re.compile(r"[\s\-().+]")

REASON_OK = "ok"
REASON_UNKNOWN_PHONE = "unknown_phone"
REASON_NO_MEMBERSHIPS = "no_memberships"
REASON_AMBIGUOUS_PHONE = "ambiguous_phone"


def normalize_phone(raw: Optional[str], country_code: Optional[str] = None) -> str:
    """
    Canonical digits-only form of a phone number.

    "050-123-4567", "+972 50 123 4567", "00972501234567" and
    "972501234567@c.us" all become "972501234567". Applying it twice
    gives the same result.
    """
    if not raw:
        return ""
    country_code = country_code if country_code is not None else get_settings().default_country_code

    phone = raw.strip()
    for suffix in _WHATSAPP_SUFFIXES:
        if phone.endswith(suffix):
            phone = phone[: -len(suffix)]
            break

    phone = _SEPARATORS.sub("", phone)

    if phone.startswith("00"):
        phone = phone[2:]
    elif phone.startswith("0"):
        phone = country_code + phone[1:]

    return phone


@dataclass
class Organization:
    id: str
    name: str


@dataclass
class ResolvedSender:
    user_id: str
    phone: str
    organizations: List[Organization] = field(default_factory=list)
    display_name: Optional[str] = None


def sort_organizations(rows: List[Dict]) -> List[Organization]:
    """Deterministic menu order: case-insensitive name, then id."""
    orgs = [Organization(id=str(r["id"]), name=r.get("name") or "") for r in rows]
    orgs.sort(key=lambda o: (o.name.casefold(), o.id))
    return orgs


class PhoneIdentityResolver:
    """Resolves raw sender phones against profiles flagged whatsapp_authorized."""

    def __init__(
        self,
        supabase: Optional[SupabaseClient] = None,
        country_code: Optional[str] = None,
    ):
        self.supabase = supabase or get_supabase_client()
        self.country_code = country_code or get_settings().default_country_code

    def resolve(self, raw_phone: str) -> Optional[ResolvedSender]:
        sender, _ = self.resolve_with_reason(raw_phone)
        return sender

    def resolve_with_reason(self, raw_phone: str) -> Tuple[Optional[ResolvedSender], str]:
        """
        Returns (sender, reason). sender is None unless the phone matches
        exactly one authorized profile that has at least one company.
        """
        phone = normalize_phone(raw_phone, self.country_code)
        if not phone:
            return None, REASON_UNKNOWN_PHONE

        matches = [
            p for p in self.supabase.get_authorized_profiles()
            if normalize_phone(p.get("phone"), self.country_code) == phone
        ]

        if not matches:
            logger.info(f"resolve: no authorized profile for phone={mask_phone(phone)}")
            return None, REASON_UNKNOWN_PHONE

        if len(matches) > 1:
            logger.error(
                f"resolve: {len(matches)} authorized profiles share phone={mask_phone(phone)}, refusing to route"
            )
            return None, REASON_AMBIGUOUS_PHONE

        profile = matches[0]
        organizations = sort_organizations(self.supabase.get_company_memberships(profile["id"]))
        if not organizations:
            logger.info(f"resolve: user {profile['id'][:8]}... has no company memberships")
            return None, REASON_NO_MEMBERSHIPS

        return ResolvedSender(
            user_id=profile["id"],
            phone=phone,
            organizations=organizations,
            display_name=profile.get("full_name"),
        ), REASON_OK
