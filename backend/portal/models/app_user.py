"""App user as seen by the engine: name parts, push address, notification opt-in, role.

Users are never hard-deleted here; the admin UI edits profiles, the app registers push tokens.
"""
import uuid

from sqlalchemy import Boolean, Column, DateTime, String, true
from sqlalchemy.sql import func

from portal.core.constants import ROLE_USER
from portal.db.base import Base


class AppUser(Base):
    __tablename__ = "app_users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    auth_user_id = Column(String(64), nullable=True, unique=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True)
    push_token = Column(String(256), nullable=True)  # Expo push token or APNs device token
    notifications_enabled = Column(Boolean, nullable=False, default=True, server_default=true())
    role = Column(String(16), nullable=False, default=ROLE_USER, server_default=ROLE_USER)  # user | admin | super_admin
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
