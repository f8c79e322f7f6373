"""
Green API (WhatsApp) boundary: outbound text and file messages, inbound media download.
"""
import logging
from typing import Optional

import httpx

from legalnexus.config import get_settings, Settings
from legalnexus.exceptions import ExternalServiceError, MediaDownloadError
from legalnexus.services.phone_resolver import normalize_phone
from legalnexus.utils.logging import fingerprint

logger = logging.getLogger(__name__)

# Download URLs are short-lived
MEDIA_DOWNLOAD_TIMEOUT = 60.0
SEND_TIMEOUT = 15.0
MAX_MEDIA_BYTES = 25 * 1024 * 1024


def chat_id_for_phone(phone: Optional[str], country_code: Optional[str] = None) -> Optional[str]:
    """
    Personal chat id for a phone number: "050-123-4567" -> "972501234567@c.us".
    Returns None when nothing dialable is left after normalization.
    """
    normalized = normalize_phone(phone, country_code)
    if not normalized or not (normalized.isascii() and normalized.isdigit()):
        return None
    return f"{normalized}@c.us"


class GreenApiClient:
    """Thin async client over the Green API REST interface."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def _method_url(self, method: str) -> str:
        base = self.settings.green_api_url.rstrip("/")
        instance_id = self.settings.require("green_api_instance_id")
        token = self.settings.require("green_api_token")
        return f"{base}/waInstance{instance_id}/{method}/{token}"

    async def _post(self, method: str, chat_id: str, body: dict) -> Optional[str]:
        """POST one send call; returns idMessage, raises ExternalServiceError."""
        url = self._method_url(method)
        try:
            async with self._client(SEND_TIMEOUT) as client:
                response = await client.post(url, json={"chatId": chat_id, **body})
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                f"{method}: HTTP {e.response.status_code} for chat={fingerprint(chat_id, 'chat_')}"
            )
            raise ExternalServiceError("whatsapp", f"{method} returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning(f"{method}: {type(e).__name__} for chat={fingerprint(chat_id, 'chat_')}")
            raise ExternalServiceError("whatsapp", f"{method} failed: {type(e).__name__}") from e

        try:
            message_id = response.json().get("idMessage")
        except ValueError:
            message_id = None
        logger.info(f"{method}: delivered to chat={fingerprint(chat_id, 'chat_')}")
        return message_id

    async def send_message_or_raise(self, chat_id: str, text: str) -> Optional[str]:
        """
        Send a text message. Returns the provider message id.
        Raises ExternalServiceError on any delivery failure.
        """
        return await self._post("sendMessage", chat_id, {"message": text})

    async def send_file_by_url(
        self,
        chat_id: str,
        url: str,
        file_name: str,
        caption: str = "",
    ) -> Optional[str]:
        """
        Send a document the provider fetches from url, with an optional caption.
        Raises ExternalServiceError on any delivery failure.
        """
        return await self._post("sendFileByUrl", chat_id, {
            "urlFile": url,
            "fileName": file_name or "document",
            "caption": caption or "",
        })

    async def send_message(self, chat_id: str, text: str) -> bool:
        """
        Fire-and-forget send. Failures are logged and reported as False,
        never raised: a lost notice must not fail the inbound acknowledgment.
        """
        try:
            await self.send_message_or_raise(chat_id, text)
            return True
        except ExternalServiceError as e:
            logger.error(f"send_message failed: {e.message}")
            return False

    async def download_media(self, url: str) -> bytes:
        """Fetch inbound media bytes from the provider's download URL."""
        if not url:
            raise MediaDownloadError("Missing download URL")
        try:
            async with self._client(MEDIA_DOWNLOAD_TIMEOUT) as client:
                response = await client.get(url, follow_redirects=True)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise MediaDownloadError(f"Media download returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise MediaDownloadError(f"Media download failed: {type(e).__name__}") from e

        data = response.content
        if not data:
            raise MediaDownloadError("Media download returned an empty body")
        if len(data) > MAX_MEDIA_BYTES:
            raise MediaDownloadError(f"Media too large: {len(data)} bytes")
        return data


# Singleton instance
_whatsapp_client: Optional[GreenApiClient] = None


def get_whatsapp_client() -> GreenApiClient:
    """Get the Green API client singleton."""
    global _whatsapp_client
    if _whatsapp_client is None:
        _whatsapp_client = GreenApiClient()
    return _whatsapp_client
