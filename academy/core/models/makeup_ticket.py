"""Makeup tickets owed after an absence, and their action trail."""

import uuid
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, String, Text, Time, Uuid, text
from sqlalchemy.orm import relationship

from academy.db.session import Base


OPEN_TICKET_WHERE = text("status IN ('pending', 'scheduled')")


class MakeupTicket(Base):
    __tablename__ = "makeup_tickets"
    __table_args__ = (
        # At most one open ticket per absence.
        Index(
            "uq_makeup_ticket_open_absence",
            "tenant_id", "student_id", "absence_date",
            unique=True,
            postgresql_where=OPEN_TICKET_WHERE,
            sqlite_where=OPEN_TICKET_WHERE,
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    student_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    class_id = Column(Uuid(as_uuid=True), nullable=False)
    feed_id = Column(Uuid(as_uuid=True), ForeignKey("student_feeds.id", ondelete="SET NULL"), nullable=True, index=True)
    absence_date = Column(Date, nullable=False, index=True)
    absence_reason = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default="pending")

    scheduled_date = Column(Date, nullable=True)
    scheduled_time = Column(Time, nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by = Column(Uuid(as_uuid=True), nullable=True)
    completion_note = Column(Text, nullable=True)
    makeup_date = Column(Date, nullable=True)
    makeup_class_id = Column(Uuid(as_uuid=True), nullable=True)

    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    feed = relationship("StudentFeed", foreign_keys=[feed_id])


class MakeupTicketAuditLog(Base):
    """Action trail: CREATED, SCHEDULED, COMPLETED, CANCELLED, REOPENED."""

    __tablename__ = "makeup_ticket_audit_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ticket_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("makeup_tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action = Column(String(50), nullable=False)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    performed_by = Column(Uuid(as_uuid=True), nullable=True)
    remarks = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    ticket = relationship("MakeupTicket", backref="audit_logs", foreign_keys=[ticket_id])
