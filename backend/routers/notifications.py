"""
Router notifications: predictive run triggers, member inbox, admin send.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from config import settings
from core.dependencies import get_current_user, require_admin, require_cron_secret
from core.exceptions import (
    bad_request_exception,
    internal_error_exception,
    method_not_allowed_exception,
)
from core.rate_limit import limiter
from database import get_db
from models.notification import (
    AdminNotificationCreate,
    MarkReadRequest,
    NotificationCandidate,
    NotificationChannel,
    NotificationType,
)
from services.audit_service import AuditAction, AuditSink
from services.channel_service import build_channels, create_http_client
from services.notification_service import dispatch
from services.prediction_service import run_prediction_job

logger = logging.getLogger(__name__)
router = APIRouter()


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def _run_prediction(request: Request, db) -> dict:
    try:
        summary = await run_prediction_job(
            db,
            action=AuditAction.CRON_PREDICT_NOTIFICATIONS,
            ip_address=_client_ip(request),
        )
    except Exception:
        logger.exception("[predict-notifications] run failed")
        raise internal_error_exception()
    return {"success": True, **summary.model_dump()}


# ── Prediction triggers ───────────────────────────────────────────────────────

@router.post("/predict", summary="Run the predictive notification engine (scheduler)")
@limiter.limit(settings.PREDICT_RATE_LIMIT)
async def predict_notifications(
    request: Request,
    _cron=Depends(require_cron_secret),
    db=Depends(get_db),
):
    return await _run_prediction(request, db)


@router.get("/predict", summary="Manual trigger (non-production only)")
@limiter.limit(settings.PREDICT_RATE_LIMIT)
async def predict_notifications_manual(request: Request, db=Depends(get_db)):
    if settings.is_production:
        raise method_not_allowed_exception("Use POST in production")
    return await _run_prediction(request, db)


# ── Member inbox ──────────────────────────────────────────────────────────────

@router.get("", summary="Current user's notifications")
async def list_notifications(
    page: int = Query(1),
    limit: int = Query(20),
    type: Optional[NotificationType] = None,
    read: Optional[bool] = None,
    current_user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    page = max(1, page)
    limit = min(50, max(1, limit))

    query = {"member_id": current_user["user_id"]}
    if type:
        query["type"] = type.value
    if read is not None:
        query["read"] = read

    total = await db.notifications.count_documents(query)
    cursor = (
        db.notifications.find(query, {"_id": 0})
        .sort("sent_at", -1)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return {
        "notifications": await cursor.to_list(length=limit),
        "total":         total,
        "page":          page,
        "limit":         limit,
        "has_more":      total > page * limit,
    }


@router.patch("", summary="Mark notifications as read")
async def mark_read(
    payload: MarkReadRequest,
    current_user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    if not payload.all and not payload.ids:
        raise bad_request_exception("Provide ids[] or all: true")

    query = {"member_id": current_user["user_id"], "read": False}
    if not payload.all:
        query["notif_id"] = {"$in": payload.ids}

    result = await db.notifications.update_many(
        query,
        {"$set": {"read": True, "read_at": datetime.now(timezone.utc)}},
    )
    await AuditSink(db).record(
        action=AuditAction.NOTIFICATION_READ,
        resource="notifications",
        user_id=current_user["user_id"],
        metadata={"count": result.modified_count, "all": payload.all},
    )
    return {"success": True, "updated": result.modified_count}


# ── Admin send ────────────────────────────────────────────────────────────────

@router.post("", summary="Send a notification (admin, bypasses dedup)")
async def admin_send_notification(
    payload: AdminNotificationCreate,
    request: Request,
    admin: dict = Depends(require_admin),
    db=Depends(get_db),
):
    line_user_id = None
    if payload.channel == NotificationChannel.LINE:
        mapping = await db.line_user_mappings.find_one({"user_id": payload.member_id}, {"_id": 0})
        line_user_id = mapping.get("line_user_id") if mapping else None

    phone = None
    if payload.channel == NotificationChannel.SMS:
        target = await db.profiles.find_one({"user_id": payload.member_id}, {"_id": 0, "phone": 1})
        phone = target.get("phone") if target else None

    channels = [payload.channel] if payload.channel else [NotificationChannel.IN_APP]
    candidate = NotificationCandidate(
        member_id=payload.member_id,
        type=payload.type,
        title=payload.title,
        body=payload.body,
        channels=channels,
        line_user_id=line_user_id,
        phone=phone,
    )

    async with create_http_client() as http:
        outcome = await dispatch(build_channels(db, http), candidate, skip_dedup=True)

    await AuditSink(db).record(
        action=AuditAction.ADMIN_SEND_NOTIFICATION,
        resource="notifications",
        user_id=admin["user_id"],
        metadata={
            "member_id": payload.member_id,
            "type":      payload.type.value,
            "title":     payload.title,
            "channels":  [c.value for c in channels],
        },
        ip_address=_client_ip(request),
    )
    return outcome.model_dump()
