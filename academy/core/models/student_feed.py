"""Per-student, per-day feed records and their evaluation values.

A student has at most one regular feed per date and at most one makeup-session feed per ticket.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.orm import relationship

from academy.db.session import Base
from academy.db.types import JSONType

REGULAR_FEED_WHERE = text("session_type = 'regular'")
MAKEUP_FEED_WHERE = text("session_type = 'makeup'")


class StudentFeed(Base):
    """
    Regular feeds are keyed by (tenant_id, student_id, feed_date), makeup feeds by their ticket.
    Soft-deleted rows are revived by the next save.
    """

    __tablename__ = "student_feeds"
    __table_args__ = (
        Index(
            "uq_student_feed_regular_date",
            "tenant_id", "student_id", "feed_date",
            unique=True,
            postgresql_where=REGULAR_FEED_WHERE,
            sqlite_where=REGULAR_FEED_WHERE,
        ),
        Index(
            "uq_student_feed_makeup_ticket",
            "tenant_id", "makeup_ticket_id",
            unique=True,
            postgresql_where=MAKEUP_FEED_WHERE,
            sqlite_where=MAKEUP_FEED_WHERE,
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    student_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    class_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    feed_date = Column(Date, nullable=False, index=True)

    attendance_status = Column(String(20), nullable=False)  # present, late, absent
    absence_reason = Column(String(50), nullable=True)
    absence_reason_detail = Column(Text, nullable=True)
    notify_parent = Column(Boolean, nullable=False, default=False)
    needs_makeup = Column(Boolean, nullable=False, default=False)

    session_type = Column(String(20), nullable=False, default="regular")
    is_makeup = Column(Boolean, nullable=False, default=False)
    is_counted_in_stats = Column(Boolean, nullable=False, default=True)
    makeup_ticket_id = Column(Uuid(as_uuid=True), nullable=True, index=True)

    progress_text = Column(Text, nullable=True)
    progress_entries = Column(JSONType, nullable=True)  # [{"textbook": "...", "end_page": "..."}]
    memo_values = Column(JSONType, nullable=True)  # {"default": "...", "<memo key>": "..."}

    version = Column(Integer, nullable=False, default=1)
    last_idempotency_key = Column(String(100), nullable=True)
    created_by = Column(Uuid(as_uuid=True), nullable=True)
    updated_by = Column(Uuid(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    values = relationship(
        "FeedValue",
        back_populates="feed",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class FeedValue(Base):
    """Evaluation selection (option_id set) or exam score (option_id null, score set) for one option set."""

    __tablename__ = "feed_values"
    __table_args__ = (
        UniqueConstraint("feed_id", "set_id", name="uq_feed_value_set"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    feed_id = Column(Uuid(as_uuid=True), ForeignKey("student_feeds.id", ondelete="CASCADE"), nullable=False, index=True)
    set_id = Column(Uuid(as_uuid=True), ForeignKey("feed_option_sets.id", ondelete="CASCADE"), nullable=False)
    option_id = Column(Uuid(as_uuid=True), ForeignKey("feed_options.id", ondelete="SET NULL"), nullable=True)
    score = Column(Float, nullable=True)

    feed = relationship("StudentFeed", back_populates="values")
