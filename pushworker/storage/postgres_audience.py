"""Postgres-backed audience source for push sends."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pushworker.core.database import get_session_factory
from pushworker.dispatch.audience import AudienceSource
from pushworker.dispatch.models import DeviceToken
from pushworker.schema.notifications import AppUser, UserDevice

ACTIVE_USER_STATUS = "Active"


class PostgresAudienceSource(AudienceSource):
  """Read push tokens of active app users from both token stores."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def list_active_device_tokens(self) -> list[DeviceToken]:
    async with self._session_factory() as session:
      stmt = (
        select(UserDevice.fcm_token, UserDevice.app_user_id)
        .join(AppUser, AppUser.id == UserDevice.app_user_id)
        .where(AppUser.status == ACTIVE_USER_STATUS, UserDevice.fcm_token != "")
        .order_by(UserDevice.fcm_token.asc(), UserDevice.app_user_id.asc())
      )
      rows = (await session.execute(stmt)).all()
      return [DeviceToken(token=token, owner_id=owner_id) for token, owner_id in rows]

  async def list_active_legacy_tokens(self) -> list[DeviceToken]:
    async with self._session_factory() as session:
      stmt = select(AppUser.fcm_token, AppUser.id).where(AppUser.status == ACTIVE_USER_STATUS, AppUser.fcm_token.is_not(None), AppUser.fcm_token != "").order_by(AppUser.fcm_token.asc(), AppUser.id.asc())
      rows = (await session.execute(stmt)).all()
      return [DeviceToken(token=token, owner_id=owner_id) for token, owner_id in rows]
