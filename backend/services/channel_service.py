"""
Channel senders: in-app record, LINE push, SMS.

Each sender makes exactly one attempt and raises ChannelDeliveryError on
failure; the dispatcher decides what to do with it. A sender returns True
when the message was handed to the provider and False when the channel is
not configured (silent no-op).
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx

from config import settings
from models.notification import Notification, NotificationChannel, NotificationCandidate, NotificationType

logger = logging.getLogger(__name__)


class ChannelDeliveryError(Exception):
    """A single channel failed to deliver (provider error, timeout, insert failure)."""


def _notif_id() -> str:
    return f"ntf_{uuid.uuid4().hex[:12]}"


def create_http_client() -> httpx.AsyncClient:
    """One client per run; the timeout bounds every provider call."""
    return httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)


# ── In-app ────────────────────────────────────────────────────────────────────

async def send_in_app(
    db,
    member_id: str,
    notif_type: NotificationType,
    title: str,
    body: str,
) -> bool:
    """Stores the notification; this row is what the dedup guard reads back."""
    notif = Notification(
        notif_id=_notif_id(),
        member_id=member_id,
        type=notif_type,
        title=title,
        body=body,
        sent_at=datetime.now(timezone.utc),
    )
    try:
        await db.notifications.insert_one(notif.model_dump())
    except Exception as e:
        raise ChannelDeliveryError(f"InApp insert failed: {e}") from e
    return True


# ── HTTP providers ────────────────────────────────────────────────────────────

async def _post_json(http: httpx.AsyncClient, provider: str, url: str, token: str, payload: dict) -> None:
    try:
        resp = await http.post(
            url,
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
        )
    except httpx.TimeoutException as e:
        raise ChannelDeliveryError(f"{provider} timed out: {e!r}") from e
    except httpx.HTTPError as e:
        raise ChannelDeliveryError(f"{provider} request failed: {e!r}") from e

    if not resp.is_success:
        raise ChannelDeliveryError(f"{provider} error {resp.status_code}: {resp.text[:200]}")


class LineSender:
    def __init__(self, http: httpx.AsyncClient, access_token: Optional[str], push_url: str):
        self._http = http
        self._token = access_token
        self._push_url = push_url

    @property
    def is_configured(self) -> bool:
        return bool(self._token)

    async def send(self, line_user_id: str, title: str, body: str) -> bool:
        if not self.is_configured:
            logger.warning("LINE_CHANNEL_ACCESS_TOKEN not configured, LINE push skipped")
            return False
        payload = {
            "to": line_user_id,
            "messages": [{"type": "text", "text": f"🔔 {title}\n\n{body}"}],
        }
        await _post_json(self._http, "LINE push", self._push_url, self._token, payload)
        logger.debug(f"LINE push sent to {line_user_id}")
        return True


class SmsSender:
    def __init__(
        self,
        http: httpx.AsyncClient,
        api_url: Optional[str],
        api_key: Optional[str],
        sender_id: str = "SSO",
    ):
        self._http = http
        self._api_url = api_url
        self._api_key = api_key
        self._sender_id = sender_id

    @property
    def is_configured(self) -> bool:
        return bool(self._api_url and self._api_key)

    async def send(self, phone: str, message: str) -> bool:
        if not self.is_configured:
            logger.debug("SMS_API_URL or SMS_API_KEY not configured, SMS skipped")
            return False
        payload = {"to": phone, "from": self._sender_id, "message": message}
        await _post_json(self._http, "SMS provider", self._api_url, self._api_key, payload)
        logger.debug(f"SMS sent to {phone}")
        return True


# ── Channel bundle ────────────────────────────────────────────────────────────

@dataclass
class DeliveryChannels:
    """Everything a dispatch needs, built once per run and passed down."""
    db: object
    line: LineSender
    sms: SmsSender

    async def deliver(self, channel: NotificationChannel, candidate: NotificationCandidate) -> bool:
        if channel == NotificationChannel.IN_APP:
            return await send_in_app(
                self.db, candidate.member_id, candidate.type, candidate.title, candidate.body,
            )
        if channel == NotificationChannel.LINE:
            return await self.line.send(candidate.line_user_id, candidate.title, candidate.body)
        if channel == NotificationChannel.SMS:
            return await self.sms.send(candidate.phone, f"{candidate.title}: {candidate.body}")
        raise ChannelDeliveryError(f"unknown channel {channel}")


def build_channels(db, http: httpx.AsyncClient) -> DeliveryChannels:
    return DeliveryChannels(
        db=db,
        line=LineSender(http, settings.LINE_CHANNEL_ACCESS_TOKEN, settings.LINE_PUSH_URL),
        sms=SmsSender(http, settings.SMS_API_URL, settings.SMS_API_KEY, settings.SMS_SENDER_ID),
    )
