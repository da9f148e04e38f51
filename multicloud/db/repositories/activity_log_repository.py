# multicloud/db/repositories/activity_log_repository.py
"""
CRUD operations for ActivityLog model.
"""
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import func
from multicloud.db.models import ActivityLog, ActivityStatus
from typing import Optional


class ActivityLogRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, **kwargs) -> ActivityLog:
        entry = ActivityLog(**kwargs)
        self.db.add(entry)
        await self.db.commit()
        await self.db.refresh(entry)
        return entry

    async def count(self, user_id: int, action: str, since: Optional[datetime] = None) -> int:
        q = select(func.count(ActivityLog.id)).where(
            ActivityLog.user_id == user_id,
            ActivityLog.action == action,
            ActivityLog.status == ActivityStatus.SUCCESS.value,
        )
        if since is not None:
            q = q.where(ActivityLog.created_at >= since)
        return (await self.db.scalar(q)) or 0
