"""
Audit service: append-only trail in `audit_logs`.

Every component goes through AuditSink.record(), which never raises;
an audit failure must not fail the request or the run that produced it.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


class AuditAction:
    NOTIFICATION_READ          = "notification_read"
    ADMIN_SEND_NOTIFICATION    = "admin_send_notification"
    CRON_PREDICT_NOTIFICATIONS = "cron_predict_notifications"
    SCHEDULED_PREDICT          = "scheduled_predict_notifications"
    CLI_PREDICT                = "cli_predict_notifications"


def _audit_id() -> str:
    return f"aud_{uuid.uuid4().hex[:12]}"


class AuditSink:
    def __init__(self, db):
        self._db = db

    async def record(
        self,
        action: str,
        resource: str,
        user_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        entry = {
            "audit_id":   _audit_id(),
            "user_id":    user_id,
            "action":     action,
            "resource":   resource,
            "metadata":   metadata or {},
            "ip_address": ip_address,
            "created_at": datetime.now(timezone.utc),
        }
        try:
            await self._db.audit_logs.insert_one(entry)
        except Exception as e:
            logger.error(f"Audit write failed for {action}: {e}")
