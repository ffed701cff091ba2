"""SQLAlchemy models for notifications, app users and their push tokens."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from pushworker.core.database import Base


class Notification(Base):
  """Persist one admin notification and the state of its push send run."""

  __tablename__ = "notifications"
  __table_args__ = (Index("ix_notifications_send_status_updated_at", "send_status", "updated_at"),)

  id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False)
  image: Mapped[str | None] = mapped_column(String, nullable=True)
  url: Mapped[str | None] = mapped_column(String, nullable=True)
  is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  send_status: Mapped[str] = mapped_column(String, nullable=False, default="idle", server_default="idle")
  send_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  send_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  receiver_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  send_errors: Mapped[str | None] = mapped_column(Text, nullable=True)
  send_started_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  send_completed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  send_claim_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AppUser(Base):
  """Mobile app user with the legacy single FCM token column."""

  __tablename__ = "app_users"

  id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
  email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, default="Active", server_default="Active")
  fcm_token: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class UserDevice(Base):
  """One registered device of an app user."""

  __tablename__ = "user_devices"
  __table_args__ = (Index("ux_user_devices_fcm_token", "fcm_token", unique=True),)

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  app_user_id: Mapped[str] = mapped_column(String, ForeignKey("app_users.id", ondelete="CASCADE"), index=True, nullable=False)
  fcm_token: Mapped[str] = mapped_column(Text, nullable=False)
  platform: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PushNotificationLog(Base):
  """Audit row for one push send run."""

  __tablename__ = "push_notification_logs"

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  source: Mapped[str] = mapped_column(String, nullable=False, default="admin")
  source_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  type: Mapped[str] = mapped_column(String, nullable=False, default="general")
  title: Mapped[str] = mapped_column(String, nullable=False)
  body: Mapped[str] = mapped_column(Text, nullable=False)
  image_url: Mapped[str | None] = mapped_column(String, nullable=True)
  data_payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  recipient_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
  status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
  success_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
  failure_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  sent_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
