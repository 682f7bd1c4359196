import json
from datetime import date, datetime, time, timedelta
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.absensi.models import AuditEvent, User

# action prefix -> label shown in the audit trail
ACTION_LABELS = {
    "auth": "Login",
    "daerah": "Daerah",
    "desa": "Desa",
    "kelompok": "Kelompok",
    "academic_year": "Tahun ajaran",
    "enrollment": "Pendaftaran kelas",
    "class": "Kelas",
    "class_master": "Master kelas",
    "teacher": "Guru",
    "student": "Siswa",
    "transfer": "Mutasi",
    "meeting": "Pertemuan",
    "attendance": "Absensi",
    "report": "Laporan",
    "user": "Pengaturan",
}


def action_label(action: str) -> str:
    return ACTION_LABELS.get(action.split(".", 1)[0], action)


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper. Works outside a request (scripts, tests).
    Metadata is stored as sorted JSON; dates and other values go through str().
    """
    in_request = has_request_context()
    ev = AuditEvent(
        request_id=request_id or (getattr(g, "request_id", None) if in_request else None),
        actor_user_id=actor.id if actor else None,
        actor_username=actor.username if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev


def query_events(
    s: Session,
    *,
    action: str = "",
    actor_username: str = "",
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 200,
) -> list[AuditEvent]:
    """Newest events first; text filters are substring matches, date_to is inclusive."""
    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_username:
        q = q.filter(AuditEvent.actor_username.like(f"%{actor_username.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))
    return q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()
