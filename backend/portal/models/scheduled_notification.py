"""Push notification to send at scheduled_for to target_audience.

Created by an admin (audience may be many users) or by the dispatcher on behalf of a trigger
(audience = one user, scheduled_for = now). status is monotonic:
pending -> sent | failed | cancelled, and terminal statuses never change again.

Per-recipient outcomes are kept as data: recipients_total / _delivered / _failed, and
delivery_report holds per-recipient errors and notes (e.g. "No target users found").
error_message is only set when status = failed.
"""
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import validates
from sqlalchemy.sql import func

from portal.core.constants import STATUS_FAILED, STATUS_PENDING, STATUS_SENT, TERMINAL_STATUSES
from portal.core.errors import NotificationStateError
from portal.db.base import Base, JSONType

VALID_STATUSES = (STATUS_PENDING,) + TERMINAL_STATUSES


class ScheduledNotification(Base):
    __tablename__ = "scheduled_notifications"
    __table_args__ = (
        Index("ix_scheduled_notifications_status_scheduled", "status", "scheduled_for"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(100), nullable=False)
    body = Column(String(500), nullable=False)
    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(16), nullable=False, default=STATUS_PENDING)
    target_audience = Column(JSONType, nullable=True)  # {"type": "all" | "admins" | "segment" | "users", ...}
    data = Column(JSONType, nullable=True)  # extra payload forwarded to the device
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(36), nullable=True)
    error_message = Column(Text, nullable=True)
    recipients_total = Column(Integer, nullable=False, default=0)
    recipients_delivered = Column(Integer, nullable=False, default=0)
    recipients_failed = Column(Integer, nullable=False, default=0)
    delivery_report = Column(JSONType, nullable=True)

    @validates("status")
    def _validate_status(self, key, value):
        if value not in VALID_STATUSES:
            raise NotificationStateError(f"Unknown notification status: {value}")
        current = self.status
        if current in TERMINAL_STATUSES and value != current:
            raise NotificationStateError(
                f"Notification {self.id} is already {current}; cannot move to {value}"
            )
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, status: str, *, at: datetime, error_message: str | None = None) -> None:
        """Move pending -> terminal. Raises NotificationStateError for anything else."""
        if status not in TERMINAL_STATUSES:
            raise NotificationStateError(f"Notifications can only move to {TERMINAL_STATUSES}, not {status}")
        if self.is_terminal:
            raise NotificationStateError(f"Notification {self.id} is already {self.status}")
        self.status = status
        if status in (STATUS_SENT, STATUS_FAILED):
            self.sent_at = at
        self.error_message = error_message if status == STATUS_FAILED else None
