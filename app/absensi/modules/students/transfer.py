"""
Student transfer requests between kelompok.

A request moves a batch of students from one org unit to another. When the
destination is inside the requester's own scope it is approved and executed
immediately; otherwise it waits for an admin of the destination.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from app.absensi.audit import record_event
from app.absensi.constants import TRANSFER_APPROVED, TRANSFER_CANCELLED, TRANSFER_PENDING, TRANSFER_REJECTED
from app.absensi.errors import AccessDenied, NotFound, ServiceError
from app.absensi.modules.classes.models import Class
from app.absensi.modules.students.models import Student, TransferRequest
from app.absensi.student_permissions import can_request_transfer, can_review_transfer_request, needs_approval
from app.absensi.utils import parse_id_list, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.absensi.models import User

logger = logging.getLogger(__name__)

AUTO_APPROVED_NOTE = "Auto-approved (same organization)"


def _pending_requests(s: "Session") -> list[TransferRequest]:
    return s.query(TransferRequest).filter(TransferRequest.status == TRANSFER_PENDING).all()


def create_transfer_request(s: "Session", payload: dict, user: "User") -> TransferRequest:
    from app.absensi.modules.organization.models import Kelompok

    student_ids = parse_id_list(payload.get("student_ids"))
    if not student_ids:
        raise ServiceError("Pilih minimal satu siswa")

    to_daerah_id = parse_int(payload.get("to_daerah_id"))
    to_desa_id = parse_int(payload.get("to_desa_id"))
    to_kelompok_id = parse_int(payload.get("to_kelompok_id"))
    if not (to_daerah_id and to_desa_id and to_kelompok_id):
        raise ServiceError("Destinasi transfer tidak lengkap")

    kelompok = s.get(Kelompok, to_kelompok_id)
    if not kelompok or kelompok.desa_id != to_desa_id or kelompok.desa.daerah_id != to_daerah_id:
        raise ServiceError("Destinasi transfer tidak valid")

    to_class_ids = parse_id_list(payload.get("to_class_ids"))
    if to_class_ids:
        classes = s.query(Class).filter(Class.id.in_(to_class_ids)).all()
        if len(classes) != len(to_class_ids) or any(c.kelompok_id != to_kelompok_id for c in classes):
            raise ServiceError("Kelas tujuan harus berada di kelompok tujuan")

    students = s.query(Student).filter(Student.id.in_(student_ids)).order_by(Student.name.asc()).all()
    if not students:
        raise NotFound("Siswa tidak ditemukan")

    for student in students:
        if not can_request_transfer(user, student):
            raise AccessDenied(f"Tidak memiliki izin untuk transfer siswa: {student.name}")

    pending_ids = set()
    for req in _pending_requests(s):
        pending_ids.update(req.student_ids or [])
    blocked = [st.name for st in students if st.id in pending_ids]
    if blocked:
        raise ServiceError(
            "Siswa berikut masih memiliki permintaan transfer yang belum selesai: "
            f"{', '.join(blocked)}. Mohon tunggu hingga request sebelumnya diproses."
        )

    first = students[0]
    if any(
        (st.daerah_id, st.desa_id, st.kelompok_id) != (first.daerah_id, first.desa_id, first.kelompok_id)
        for st in students
    ):
        raise ServiceError("Semua siswa harus dari organisasi yang sama")

    now = datetime.utcnow()
    req = TransferRequest(
        student_ids=[st.id for st in students],
        from_daerah_id=first.daerah_id,
        from_desa_id=first.desa_id,
        from_kelompok_id=first.kelompok_id,
        to_daerah_id=to_daerah_id,
        to_desa_id=to_desa_id,
        to_kelompok_id=to_kelompok_id,
        to_class_ids=to_class_ids or None,
        status=TRANSFER_PENDING,
        requested_by_user_id=user.id,
        requested_at=now,
        reason=(payload.get("reason") or "").strip() or None,
        notes=(payload.get("notes") or "").strip() or None,
        updated_at=now,
    )
    auto = not needs_approval(user, req)
    if auto:
        req.status = TRANSFER_APPROVED
        req.reviewed_by_user_id = user.id
        req.reviewed_at = now
        req.review_notes = AUTO_APPROVED_NOTE
    s.add(req)
    s.flush()

    record_event(
        s,
        actor=user,
        action="transfer.request",
        entity_type="TransferRequest",
        entity_id=str(req.id),
        reason=req.reason,
        metadata={"student_ids": req.student_ids, "to_kelompok_id": to_kelompok_id, "auto_approved": auto},
    )
    if auto:
        execute_transfer(s, req, user)
    return req


_CLOSED_LABELS = {TRANSFER_APPROVED: "disetujui", TRANSFER_REJECTED: "ditolak", TRANSFER_CANCELLED: "dibatalkan"}


def _get_pending_for_review(req: TransferRequest, user: "User") -> None:
    if req.status != TRANSFER_PENDING:
        raise ServiceError(f"Request sudah {_CLOSED_LABELS.get(req.status, req.status)}")
    if not can_review_transfer_request(user, req):
        raise AccessDenied("Tidak memiliki izin untuk mereview request ini")


def approve_transfer_request(s: "Session", req: TransferRequest, user: "User", review_notes: str | None = None) -> TransferRequest:
    _get_pending_for_review(req, user)
    now = datetime.utcnow()
    req.status = TRANSFER_APPROVED
    req.reviewed_by_user_id = user.id
    req.reviewed_at = now
    req.review_notes = (review_notes or "").strip() or None
    req.updated_at = now
    record_event(s, actor=user, action="transfer.approve", entity_type="TransferRequest", entity_id=str(req.id), reason=req.review_notes)
    execute_transfer(s, req, user)
    return req


def reject_transfer_request(s: "Session", req: TransferRequest, user: "User", review_notes: str | None = None) -> TransferRequest:
    _get_pending_for_review(req, user)
    now = datetime.utcnow()
    req.status = TRANSFER_REJECTED
    req.reviewed_by_user_id = user.id
    req.reviewed_at = now
    req.review_notes = (review_notes or "").strip() or "Ditolak"
    req.updated_at = now
    record_event(s, actor=user, action="transfer.reject", entity_type="TransferRequest", entity_id=str(req.id), reason=req.review_notes)
    return req


def cancel_transfer_request(s: "Session", req: TransferRequest, user: "User") -> TransferRequest:
    if req.status != TRANSFER_PENDING:
        raise ServiceError("Hanya pending request yang bisa dibatalkan")
    if req.requested_by_user_id != user.id:
        raise AccessDenied("Hanya pembuat request yang bisa membatalkan")
    req.status = TRANSFER_CANCELLED
    req.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="transfer.cancel", entity_type="TransferRequest", entity_id=str(req.id))
    return req


def execute_transfer(s: "Session", req: TransferRequest, user: "User") -> TransferRequest:
    """Move the students of an approved request and record the move in their history."""
    if req.status != TRANSFER_APPROVED:
        raise ServiceError("Request belum disetujui")

    now = datetime.utcnow()
    students = s.query(Student).filter(Student.id.in_(req.student_ids or [])).all()
    new_classes = []
    if req.to_class_ids:
        new_classes = s.query(Class).filter(Class.id.in_(req.to_class_ids)).all()

    entry = {
        "from_daerah_id": req.from_daerah_id,
        "from_desa_id": req.from_desa_id,
        "from_kelompok_id": req.from_kelompok_id,
        "to_daerah_id": req.to_daerah_id,
        "to_desa_id": req.to_desa_id,
        "to_kelompok_id": req.to_kelompok_id,
        "date": now.isoformat(),
        "requested_by": req.requested_by_user_id,
        "approved_by": req.reviewed_by_user_id,
        "request_id": req.id,
    }
    for student in students:
        student.daerah_id = req.to_daerah_id
        student.desa_id = req.to_desa_id
        student.kelompok_id = req.to_kelompok_id
        if new_classes:
            student.classes = list(new_classes)
        # New list so the JSON column is flagged dirty.
        student.transfer_history = list(student.transfer_history or []) + [entry]
        student.updated_at = now

    req.executed_at = now
    req.executed_by_user_id = user.id
    req.updated_at = now
    s.flush()

    logger.info("transfer %s executed for %d students", req.id, len(students))
    record_event(
        s,
        actor=user,
        action="transfer.execute",
        entity_type="TransferRequest",
        entity_id=str(req.id),
        metadata={"student_ids": [st.id for st in students], "to_class_ids": req.to_class_ids},
    )
    return req


def get_pending_transfer_requests(s: "Session", user: "User") -> list[TransferRequest]:
    """Pending requests this user can review, plus the ones they submitted."""
    out = []
    for req in s.query(TransferRequest).filter(TransferRequest.status == TRANSFER_PENDING).order_by(TransferRequest.requested_at.desc()).all():
        if req.requested_by_user_id == user.id or can_review_transfer_request(user, req):
            out.append(req)
    return out


def get_transfer_request(s: "Session", request_id: int) -> TransferRequest:
    req = s.get(TransferRequest, request_id)
    if not req:
        raise NotFound("Transfer request tidak ditemukan")
    return req
