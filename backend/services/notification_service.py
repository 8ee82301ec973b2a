"""
Notification service: dedup guard, per-candidate dispatch, batched delivery.
"""
import asyncio
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional

from config import settings
from models.notification import (
    DUPLICATE_SKIPPED,
    DeliveryOutcome,
    NotificationCandidate,
    NotificationChannel,
    NotificationType,
)
from services.channel_service import DeliveryChannels

logger = logging.getLogger(__name__)

DEDUP_WINDOW = timedelta(hours=24)


# ── Dedup guard ───────────────────────────────────────────────────────────────

async def is_duplicate(
    db,
    member_id: str,
    notif_type: NotificationType,
    now: Optional[datetime] = None,
) -> bool:
    """
    True if a notification of this type reached the member in the last 24h.
    Fails open: a query error means "not a duplicate".
    """
    since = (now or datetime.now(timezone.utc)) - DEDUP_WINDOW
    try:
        count = await db.notifications.count_documents({
            "member_id": member_id,
            "type":      notif_type.value,
            "sent_at":   {"$gte": since},
        })
    except Exception as e:
        logger.warning(f"Dedup check failed for {member_id}/{notif_type.value}, sending anyway: {e}")
        return False
    return count > 0


# ── Dispatch ──────────────────────────────────────────────────────────────────

def _address_resolved(channel: NotificationChannel, candidate: NotificationCandidate) -> bool:
    if channel == NotificationChannel.LINE:
        return bool(candidate.line_user_id)
    if channel == NotificationChannel.SMS:
        return bool(candidate.phone)
    return True


async def dispatch(
    channels: DeliveryChannels,
    candidate: NotificationCandidate,
    skip_dedup: bool = False,
) -> DeliveryOutcome:
    """
    Sends one candidate on every requested channel.
    skip_dedup=True is reserved for admin-initiated sends.
    """
    if not skip_dedup and await is_duplicate(channels.db, candidate.member_id, candidate.type):
        logger.debug(f"Duplicate {candidate.type.value} for {candidate.member_id} skipped")
        return DeliveryOutcome(
            member_id=candidate.member_id,
            success=True,
            channels=[],
            skipped_reason=DUPLICATE_SKIPPED,
        )

    sent: list[NotificationChannel] = []
    errors: list[str] = []

    for channel in candidate.channels:
        if not _address_resolved(channel, candidate):
            continue
        try:
            if await channels.deliver(channel, candidate):
                sent.append(channel)
        except Exception as e:
            logger.warning(f"{channel.value} delivery failed for {candidate.member_id}: {e}")
            errors.append(f"{channel.value}: {e}")

    return DeliveryOutcome(
        member_id=candidate.member_id,
        success=len(sent) > 0,
        channels=sent,
        error="; ".join(errors) if errors else None,
    )


# ── Batch ─────────────────────────────────────────────────────────────────────

async def run_batch(
    channels: DeliveryChannels,
    candidates: list[NotificationCandidate],
    batch_size: Optional[int] = None,
) -> list[DeliveryOutcome]:
    """
    Dispatches in chunks to cap concurrent provider calls.
    Always returns one outcome per candidate.
    """
    size = max(1, batch_size or settings.NOTIFY_BATCH_SIZE)
    results: list[DeliveryOutcome] = []

    for i in range(0, len(candidates), size):
        chunk = candidates[i:i + size]
        settled = await asyncio.gather(
            *(dispatch(channels, c) for c in chunk),
            return_exceptions=True,
        )
        for candidate, result in zip(chunk, settled):
            if isinstance(result, BaseException):
                logger.error(f"Dispatch crashed for {candidate.member_id}: {result!r}")
                results.append(DeliveryOutcome(
                    member_id=candidate.member_id,
                    success=False,
                    channels=[],
                    error=str(result) or type(result).__name__,
                ))
            else:
                results.append(result)

    return results
