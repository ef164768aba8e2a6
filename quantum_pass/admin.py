import logging
from typing import Optional

from fastapi import APIRouter, Request
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from .models import AuditLog, Event, isoformat

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def write_audit(
    sessions: sessionmaker,
    decision_id: str,
    ip: str,
    ua: str,
    event_id: Optional[str],
    subject: Optional[str],
    status: str,
    reason: str,
) -> None:
    """Record a purchase or entry decision. Never fails the request."""
    db = sessions()
    try:
        db.add(AuditLog(
            decision_id=decision_id,
            ip=ip,
            user_agent=ua,
            event_id=event_id,
            subject=subject,
            status=status,
            reason_code=reason,
        ))
        db.commit()
    except Exception:
        db.rollback()
        logger.warning("audit write failed for decision %s", decision_id, exc_info=True)
    finally:
        db.close()


# -------------------------
# Logs
# -------------------------
@router.get("/audit")
def get_audit(request: Request, limit: int = 80, event_id: Optional[str] = None):
    db = request.app.state.sessions()
    try:
        q = select(AuditLog, Event.name).join(Event, Event.id == AuditLog.event_id, isouter=True)
        if event_id:
            q = q.where(AuditLog.event_id == event_id)
        rows = db.execute(q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)).all()

        out = []
        for log, event_name in rows:
            out.append({
                "created_at": isoformat(log.created_at),
                "decision_id": log.decision_id,
                "event_id": log.event_id,
                "event_name": event_name,
                "subject": log.subject,
                "status": log.status,
                "reason_code": log.reason_code,
            })
        return out
    finally:
        db.close()
