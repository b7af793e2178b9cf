"""One row per (trigger, user) send attempt. Append-only audit trail; never updated or deleted."""
import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, String, Text
from sqlalchemy.sql import func

from portal.db.base import Base, JSONType


class TriggerExecution(Base):
    __tablename__ = "trigger_executions"
    __table_args__ = (
        Index("ix_trigger_executions_trigger_user_executed", "trigger_id", "user_id", "executed_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    trigger_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=False)
    executed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    notification_id = Column(String(36), nullable=True)
    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    condition_values = Column(JSONType, nullable=True)  # condition snapshot used for this attempt
