import uuid
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Integer, String, UniqueConstraint, Uuid

from academy.db.session import Base
from academy.db.types import JSONType


class IdempotencyKey(Base):
    """Response of a completed save, replayed when the same key is submitted again before expiry."""

    __tablename__ = "idempotency_keys"
    __table_args__ = (
        UniqueConstraint("tenant_id", "key", name="uq_idempotency_key_tenant_key"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    key = Column(String(100), nullable=False)
    request_path = Column(String(200), nullable=False)
    # The request a key answered; the same key with a different request is rejected.
    student_id = Column(Uuid(as_uuid=True), nullable=True)
    feed_date = Column(Date, nullable=True)
    request_hash = Column(String(64), nullable=True)
    response_status = Column(Integer, nullable=False, default=200)
    response_body = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
