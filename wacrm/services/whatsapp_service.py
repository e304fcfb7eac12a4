"""
WhatsApp Cloud API client
Sends messages, uploads and downloads media through the Graph API
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Optional

import httpx

from ..config import FREE_FORM_WINDOW_HOURS, WHATSAPP_GRAPH_URL, WHATSAPP_HTTP_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

E164_PATTERN = re.compile(r"^\+\d{10,15}$")

# Media families accepted by the Graph API
MEDIA_TYPES = ("image", "video", "audio", "document")


class WhatsAppAPIError(Exception):
    """A Graph API call returned a non-2xx response"""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


def normalize_phone(phone: Optional[str]) -> str:
    """
    Normalize a stored phone number to E.164.

    Non-digits are stripped, a bare 10-digit number gets the US country code,
    and the result must be + followed by 10-15 digits.

    Raises:
        ValueError: when the number cannot be normalized
    """
    digits = re.sub(r"\D", "", phone or "")
    if not digits.startswith("1") and len(digits) == 10:
        digits = "1" + digits
    normalized = "+" + digits
    if not E164_PATTERN.match(normalized):
        raise ValueError("Invalid phone number format")
    return normalized


def hours_since(timestamp: Optional[datetime], now: Optional[datetime] = None) -> float:
    """Hours elapsed since timestamp. A missing timestamp counts from the epoch."""
    now = now or datetime.utcnow()
    if timestamp is None:
        timestamp = datetime(1970, 1, 1)
    if timestamp.tzinfo is not None:
        timestamp = timestamp.replace(tzinfo=None) - (timestamp.utcoffset() or timedelta(0))
    return (now - timestamp).total_seconds() / 3600


def is_within_free_form_window(last_user_message_time: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when a free-form (non-template) message may still be sent"""
    return hours_since(last_user_message_time, now) <= FREE_FORM_WINDOW_HOURS


def media_format_for_mime(mime_type: Optional[str]) -> str:
    """Map a MIME type onto a WhatsApp media family"""
    mime_type = mime_type or ""
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("video/"):
        return "video"
    if mime_type.startswith("audio/"):
        return "audio"
    if mime_type.startswith("application/") or mime_type.startswith("text/"):
        return "document"
    raise ValueError(f"Unsupported media type: {mime_type}")


def first_message_id(result: Optional[dict]) -> Optional[str]:
    """Message id from a /messages response"""
    messages = (result or {}).get("messages") or []
    if messages and isinstance(messages[0], dict):
        return messages[0].get("id")
    return None


class WhatsAppClient:
    """Graph API client bound to one business phone number"""

    def __init__(self, access_token: Optional[str], phone_number_id: Optional[str] = None):
        self.access_token = (access_token or "").strip()
        self.phone_number_id = (phone_number_id or "").strip()
        self.base_url = f"{WHATSAPP_GRAPH_URL}/{self.phone_number_id}"
        self.headers = {"Authorization": f"Bearer {self.access_token}"}

    @classmethod
    def from_config(cls, config) -> "WhatsAppClient":
        return cls(config.api_key, config.phone_number_id)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=WHATSAPP_HTTP_TIMEOUT_SECONDS)

    @staticmethod
    def _error_payload(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    async def _post_json(self, endpoint: str, payload: dict) -> dict:
        url = f"{self.base_url}/{endpoint}"
        async with self._client() as client:
            response = await client.post(url, json=payload, headers=self.headers)
        if response.status_code < 200 or response.status_code >= 300:
            body = self._error_payload(response)
            logger.error(f"WhatsApp API request to {endpoint} failed with status {response.status_code}: {body}")
            raise WhatsAppAPIError(
                f"WhatsApp API request failed with status {response.status_code}",
                status_code=response.status_code,
                payload=body,
            )
        return response.json()

    # Sending

    async def send_message(self, to: str, message_type: str, content: dict) -> dict:
        """Send any message type. content is the object keyed by message_type."""
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": message_type,
            message_type: content,
        }
        logger.info(f"Sending WhatsApp {message_type} message to {to}")
        return await self._post_json("messages", payload)

    async def send_text(self, to: str, body: str) -> dict:
        return await self.send_message(to, "text", {"body": body})

    async def send_template(
        self,
        to: str,
        template_name: str,
        language: str = "en",
        components: Optional[list[dict]] = None,
    ) -> dict:
        template = {"name": template_name, "language": {"code": language or "en"}}
        if components is not None:
            template["components"] = components
        return await self.send_message(to, "template", template)

    async def send_media(
        self,
        to: str,
        media_type: str,
        media_id_or_link: str,
        caption: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> dict:
        """Send media by uploaded media id or public link"""
        if media_id_or_link.startswith(("http://", "https://")):
            media = {"link": media_id_or_link}
        else:
            media = {"id": media_id_or_link}
        if caption and media_type in ("image", "video", "document"):
            media["caption"] = caption
        if filename and media_type == "document":
            media["filename"] = filename
        return await self.send_message(to, media_type, media)

    # Media

    async def upload_media(self, data: bytes, filename: str, mime_type: str, media_type: Optional[str] = None) -> str:
        """Upload bytes to WhatsApp media storage and return the media id"""
        form = {"messaging_product": "whatsapp"}
        if media_type:
            form["type"] = media_type
        files = {"file": (filename, data, mime_type)}
        async with self._client() as client:
            response = await client.post(f"{self.base_url}/media", data=form, files=files, headers=self.headers)
        if response.status_code < 200 or response.status_code >= 300:
            body = self._error_payload(response)
            logger.error(f"WhatsApp media upload failed with status {response.status_code}: {body}")
            raise WhatsAppAPIError("Failed to upload media to WhatsApp", response.status_code, body)

        media_id = response.json().get("id")
        if not media_id:
            raise WhatsAppAPIError("Invalid WhatsApp media upload response", response.status_code)
        return media_id

    async def get_media_info(self, media_id: str) -> dict:
        """Metadata for an uploaded media id: url, mime_type, file_size, ..."""
        async with self._client() as client:
            response = await client.get(f"{WHATSAPP_GRAPH_URL}/{media_id}", headers=self.headers)
        if response.status_code != 200:
            body = self._error_payload(response)
            raise WhatsAppAPIError(
                f"Invalid media ID - cannot fetch media details: {body}", response.status_code, body
            )
        info = response.json()
        if not info.get("url"):
            raise WhatsAppAPIError("No download URL in media response", response.status_code, info)
        return info

    async def download_media(self, media_id: str) -> tuple[bytes, str]:
        """
        Download media from WhatsApp.

        Returns a tuple (content, mime_type). The mime type comes from the media
        metadata, falling back to the Content-Type of the download.
        """
        info = await self.get_media_info(media_id)
        async with self._client() as client:
            response = await client.get(info["url"], headers=self.headers)
        if response.status_code != 200:
            raise WhatsAppAPIError("Failed to download media", response.status_code, response.text)

        mime_type = info.get("mime_type") or response.headers.get("Content-Type", "application/octet-stream")
        return response.content, mime_type

    async def get_profile_picture_url(self, phone: str) -> Optional[str]:
        """Profile picture of a WhatsApp user, None when not available"""
        async with self._client() as client:
            response = await client.get(
                f"{WHATSAPP_GRAPH_URL}/{phone}",
                params={"fields": "profile_picture_url"},
                headers=self.headers,
            )
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise WhatsAppAPIError(f"WhatsApp API error: {response.status_code}", response.status_code)
        return response.json().get("profile_picture_url")
