import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Uuid

from academy.db.session import Base
from academy.db.types import JSONType


class TenantFeedSettings(Base):
    """Per-tenant feed configuration: operation mode, absence reason makeup defaults, alert threshold."""

    __tablename__ = "tenant_feed_settings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), nullable=False, unique=True, index=True)
    operation_mode = Column(String(20), nullable=False, default="homeroom")
    # {"sick": true, "unexcused": false, ...}; reasons not listed need a makeup.
    makeup_defaults = Column(JSONType, nullable=True)
    makeup_system_enabled = Column(Boolean, nullable=False, default=True)
    progress_enabled = Column(Boolean, nullable=False, default=False)
    absence_alert_threshold = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
