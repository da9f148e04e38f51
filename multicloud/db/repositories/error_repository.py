from multicloud.db.models import ErrorLog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


class ErrorRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, *, request_id=None, user_id=None, account_id=None, component=None, function=None, severity="ERROR", message="", details=None, stacktrace=None):
        el = ErrorLog(
            request_id=request_id,
            user_id=user_id,
            account_id=account_id,
            component=component,
            function=function,
            severity=severity,
            message=message,
            details=details,
            stacktrace=stacktrace,
        )
        self.db.add(el)
        await self.db.commit()
        await self.db.refresh(el)
        return el

    async def list_by_account(self, account_id, limit=100, offset=0):
        q = await self.db.execute(select(ErrorLog).where(ErrorLog.account_id == account_id).limit(limit).offset(offset))
        return q.scalars().all()
