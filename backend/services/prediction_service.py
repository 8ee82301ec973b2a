"""
Predictive notification engine.

Four independent prediction tasks scan current state and emit candidates:
  a. benefit expiring within 30 days          → benefit_reminder
  b. active benefit unclaimed for 30+ days     → benefit_unused
  c. consented member without a section        → section40_outreach
  d. benefit approved/expired in the last 24h  → payment_status

run_predictions() gathers them, delivers through the batch orchestrator,
and records the summary to the audit trail. A task that raises fails the
whole run; a broken predicate must not look like "nothing to send".
"""
import asyncio
import logging
import math
import time
from datetime import datetime, timezone, timedelta
from typing import Optional

from pydantic import BaseModel, ValidationError

from models.benefit import BenefitRow
from models.common import BenefitStatus, UserRole, benefit_label
from models.notification import (
    NotificationCandidate,
    NotificationChannel,
    NotificationType,
    PredictionSummary,
)
from models.user import LineUserMapping, Profile
from services.audit_service import AuditAction, AuditSink
from services.channel_service import DeliveryChannels, build_channels, create_http_client
from services.notification_service import run_batch

logger = logging.getLogger(__name__)

EXPIRY_HORIZON       = timedelta(days=30)
UNUSED_AFTER         = timedelta(days=30)
STATUS_CHANGE_WINDOW = timedelta(hours=24)


def _today_start(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _parse_rows(rows: list[dict], model: type[BaseModel], task: str) -> list:
    parsed = []
    for row in rows:
        try:
            parsed.append(model.model_validate(row))
        except ValidationError as e:
            logger.warning(f"[{task}] skipping malformed row {row.get('_id') or row.get('benefit_id') or row.get('user_id')}: {e.error_count()} error(s)")
    return parsed


# ── Address lookups ───────────────────────────────────────────────────────────

async def get_line_user_ids(db, member_ids: list[str]) -> dict[str, str]:
    if not member_ids:
        return {}
    cursor = db.line_user_mappings.find(
        {"user_id": {"$in": member_ids}},
        {"_id": 0, "user_id": 1, "line_user_id": 1},
    )
    rows = await cursor.to_list(length=None)
    return {m.user_id: m.line_user_id for m in _parse_rows(rows, LineUserMapping, "line_lookup")}


async def _get_profiles(db, member_ids: list[str]) -> dict[str, Profile]:
    if not member_ids:
        return {}
    cursor = db.profiles.find({"user_id": {"$in": member_ids}}, {"_id": 0})
    rows = await cursor.to_list(length=None)
    return {p.user_id: p for p in _parse_rows(rows, Profile, "profile_lookup")}


def _channels_for(member_id: str, line_map: dict[str, str]) -> list[NotificationChannel]:
    channels = [NotificationChannel.IN_APP]
    if member_id in line_map:
        channels.append(NotificationChannel.LINE)
    return channels


async def _benefit_candidates(db, query: dict, task: str, render) -> list[NotificationCandidate]:
    """Shared shape of the benefit-based tasks: query, join profile, resolve LINE, render."""
    rows = await db.benefits.find(query, {"_id": 0}).to_list(length=None)
    benefits: list[BenefitRow] = _parse_rows(rows, BenefitRow, task)
    if not benefits:
        return []

    member_ids = list(dict.fromkeys(b.member_id for b in benefits))
    profiles, line_map = await asyncio.gather(
        _get_profiles(db, member_ids),
        get_line_user_ids(db, member_ids),
    )

    candidates = []
    for benefit in benefits:
        profile = profiles.get(benefit.member_id)
        if profile is None:
            logger.warning(f"[{task}] no profile for member {benefit.member_id}, row dropped")
            continue
        notif_type, title, body = render(benefit)
        candidates.append(NotificationCandidate(
            member_id=benefit.member_id,
            type=notif_type,
            title=title,
            body=body,
            channels=_channels_for(benefit.member_id, line_map),
            line_user_id=line_map.get(benefit.member_id),
            phone=profile.phone,
        ))
    return candidates


# ── Task a: benefit expiring soon ─────────────────────────────────────────────

async def predict_benefit_expiry(db, now: Optional[datetime] = None) -> list[NotificationCandidate]:
    now = now or datetime.now(timezone.utc)
    today = _today_start(now)
    query = {
        "status":      BenefitStatus.ACTIVE.value,
        "expiry_date": {"$ne": None, "$gte": today, "$lte": today + EXPIRY_HORIZON},
    }

    def render(b: BenefitRow):
        days_left = max(0, math.ceil((b.expiry_date - now).total_seconds() / 86400))
        name = benefit_label(b.benefit_type)
        return (
            NotificationType.BENEFIT_REMINDER,
            f"สิทธิ์ {name} ใกล้หมดอายุ",
            f"สิทธิ์ของคุณจะหมดอายุในอีก {days_left} วัน ({b.expiry_date.date().isoformat()}) "
            f"กรุณาดำเนินการก่อนหมดเขต",
        )

    return await _benefit_candidates(db, query, "expiry", render)


# ── Task b: active benefit never used ─────────────────────────────────────────

async def predict_unused_benefits(db, now: Optional[datetime] = None) -> list[NotificationCandidate]:
    now = now or datetime.now(timezone.utc)
    query = {
        "status":        BenefitStatus.ACTIVE.value,
        "claimed_at":    None,
        "eligible_date": {"$lte": _today_start(now) - UNUSED_AFTER},
    }

    def render(b: BenefitRow):
        return (
            NotificationType.BENEFIT_UNUSED,
            f"คุณยังมีสิทธิ์ {benefit_label(b.benefit_type)} ที่ยังไม่ได้ใช้",
            "คุณมีสิทธิ์ประกันสังคมที่ยังไม่ได้ใช้งาน ตรวจสอบและใช้สิทธิ์ได้ที่ SSO Smart Service",
        )

    return await _benefit_candidates(db, query, "unused", render)


# ── Task c: section 40 outreach ───────────────────────────────────────────────

async def predict_section40_outreach(db, now: Optional[datetime] = None) -> list[NotificationCandidate]:
    # Outreach only to members who gave PDPA consent
    rows = await db.profiles.find(
        {"role": UserRole.MEMBER.value, "section_type": None, "pdpa_consent": True},
        {"_id": 0},
    ).to_list(length=None)
    profiles: list[Profile] = _parse_rows(rows, Profile, "section40")
    if not profiles:
        return []

    line_map = await get_line_user_ids(db, [p.user_id for p in profiles])
    return [
        NotificationCandidate(
            member_id=p.user_id,
            type=NotificationType.SECTION40_OUTREACH,
            title="สมัครประกันสังคม มาตรา 40 วันนี้",
            body="ผู้ประกอบอาชีพอิสระ สมัครได้ง่าย เพียง 70-100 บาท/เดือน รับสิทธิ์เจ็บป่วย ทุพพลภาพ ชราภาพ",
            channels=_channels_for(p.user_id, line_map),
            line_user_id=line_map.get(p.user_id),
            phone=p.phone,
        )
        for p in profiles
    ]


# ── Task d: status changed in the last 24h ────────────────────────────────────

def _format_baht(amount: float) -> str:
    if float(amount).is_integer():
        return f"฿{amount:,.0f}"
    return f"฿{amount:,.2f}"


async def predict_payment_status(db, now: Optional[datetime] = None) -> list[NotificationCandidate]:
    now = now or datetime.now(timezone.utc)
    query = {
        "status":     {"$in": [BenefitStatus.ACTIVE.value, BenefitStatus.EXPIRED.value]},
        "updated_at": {"$gte": now - STATUS_CHANGE_WINDOW},
        "amount":     {"$ne": None},
    }

    def render(b: BenefitRow):
        name = benefit_label(b.benefit_type)
        if b.status == BenefitStatus.ACTIVE:
            amount = f" จำนวน {_format_baht(b.amount)}" if b.amount else ""
            return (
                NotificationType.PAYMENT_STATUS,
                f"อนุมัติสิทธิ์ {name} แล้ว",
                f"สิทธิ์ {name} ของคุณได้รับการอนุมัติ{amount} ตรวจสอบรายละเอียดในแอป",
            )
        return (
            NotificationType.PAYMENT_STATUS,
            f"สิทธิ์ {name} ไม่ผ่านการพิจารณา",
            f"สิทธิ์ {name} ไม่ผ่านการพิจารณา กรุณาติดต่อสำนักงานประกันสังคม โทร 1506",
        )

    return await _benefit_candidates(db, query, "payment", render)


# ── Run coordinator ───────────────────────────────────────────────────────────

PREDICTION_TASKS = (
    ("expiry",    predict_benefit_expiry),
    ("unused",    predict_unused_benefits),
    ("section40", predict_section40_outreach),
    ("payment",   predict_payment_status),
)


async def run_predictions(
    channels: DeliveryChannels,
    audit: AuditSink,
    action: str = AuditAction.CRON_PREDICT_NOTIFICATIONS,
    ip_address: Optional[str] = None,
    tasks=PREDICTION_TASKS,
) -> PredictionSummary:
    start = time.monotonic()
    now = datetime.now(timezone.utc)

    running = [asyncio.ensure_future(task(channels.db, now)) for _, task in tasks]
    try:
        task_results = await asyncio.gather(*running)
    except Exception:
        for pending in running:
            pending.cancel()
        raise
    breakdown = {name: len(found) for (name, _), found in zip(tasks, task_results)}
    candidates = [c for found in task_results for c in found]

    outcomes = await run_batch(channels, candidates)

    summary = PredictionSummary(
        total=len(candidates),
        sent=sum(1 for o in outcomes if o.success and o.channels),
        skipped=sum(1 for o in outcomes if o.is_duplicate),
        failed=sum(1 for o in outcomes if not o.success),
        breakdown=breakdown,
        duration_ms=int((time.monotonic() - start) * 1000),
    )

    await audit.record(
        action=action,
        resource="notifications",
        metadata=summary.model_dump(),
        ip_address=ip_address,
    )
    logger.info(f"[predict-notifications] completed {summary.model_dump()}")
    return summary


async def run_prediction_job(
    db,
    action: str = AuditAction.CRON_PREDICT_NOTIFICATIONS,
    ip_address: Optional[str] = None,
) -> PredictionSummary:
    """Entry point shared by the HTTP trigger, the daily scheduler and the CLI."""
    async with create_http_client() as http:
        return await run_predictions(
            build_channels(db, http),
            AuditSink(db),
            action=action,
            ip_address=ip_address,
        )
