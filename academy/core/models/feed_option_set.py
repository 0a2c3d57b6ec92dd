"""Evaluation taxonomy: option sets (homework, attitude, ...) and their options. Read-only for the feed engine."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import relationship

from academy.db.session import Base
from academy.db.types import JSONType


class FeedOptionSet(Base):
    __tablename__ = "feed_option_sets"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    set_key = Column(String(100), nullable=False)
    # "select" sets take an option; "exam" sets take a free numeric score.
    kind = Column(String(20), nullable=False, default="select")
    is_scored = Column(Boolean, nullable=False, default=False)
    score_step = Column(Float, nullable=True)
    is_required = Column(Boolean, nullable=False, default=True)
    # Operation modes the set is used in; null means every mode.
    operation_modes = Column(JSONType, nullable=True)
    display_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    options = relationship(
        "FeedOption",
        back_populates="option_set",
        order_by="FeedOption.display_order",
        lazy="selectin",
    )


class FeedOption(Base):
    __tablename__ = "feed_options"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    set_id = Column(Uuid(as_uuid=True), ForeignKey("feed_option_sets.id", ondelete="CASCADE"), nullable=False, index=True)
    label = Column(String(100), nullable=False)
    score = Column(Float, nullable=True)
    display_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    option_set = relationship("FeedOptionSet", back_populates="options")
