# multicloud/db/repositories/file_record_repository.py
"""
Queries over cached provider file metadata.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import func
from multicloud.db.models import Account, FileRecord
from typing import Optional, List, Dict


class FileRecordRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, file_id: int) -> Optional[FileRecord]:
        result = await self.db.execute(select(FileRecord).where(FileRecord.id == file_id))
        return result.scalar_one_or_none()

    async def get_by_provider_id(self, account_id: int, provider_file_id: str) -> Optional[FileRecord]:
        result = await self.db.execute(
            select(FileRecord).where(
                FileRecord.account_id == account_id,
                FileRecord.provider_file_id == provider_file_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_by_account(self, account_id: int, include_trashed: bool = False) -> List[FileRecord]:
        q = select(FileRecord).where(FileRecord.account_id == account_id)
        if not include_trashed:
            q = q.where(FileRecord.trashed.is_(False))
        result = await self.db.execute(q.order_by(FileRecord.is_folder.desc(), FileRecord.name))
        return result.scalars().all()

    async def search(
        self,
        user_id: int,
        query: Optional[str] = None,
        mime_type: Optional[str] = None,
        account_id: Optional[int] = None,
        starred: Optional[bool] = None,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
        include_trashed: bool = False,
    ) -> List[FileRecord]:
        q = select(FileRecord).where(FileRecord.user_id == user_id)
        if not include_trashed:
            q = q.where(FileRecord.trashed.is_(False))
        if query:
            q = q.where(FileRecord.name.icontains(query, autoescape=True))
        if mime_type:
            q = q.where(FileRecord.mime_type.icontains(mime_type, autoescape=True))
        if account_id is not None:
            q = q.where(FileRecord.account_id == account_id)
        if starred is not None:
            q = q.where(FileRecord.starred.is_(starred))
        if min_size is not None:
            q = q.where(FileRecord.size >= min_size)
        if max_size is not None:
            q = q.where(FileRecord.size <= max_size)
        result = await self.db.execute(q.order_by(FileRecord.modified_at.desc(), FileRecord.id))
        return result.scalars().all()

    async def totals(self, user_id: int) -> Dict[str, int]:
        live = (FileRecord.user_id == user_id, FileRecord.trashed.is_(False))
        files = await self.db.scalar(select(func.count(FileRecord.id)).where(*live, FileRecord.is_folder.is_(False)))
        folders = await self.db.scalar(select(func.count(FileRecord.id)).where(*live, FileRecord.is_folder.is_(True)))
        size = await self.db.scalar(select(func.coalesce(func.sum(FileRecord.size), 0)).where(*live))
        return {"files": files or 0, "folders": folders or 0, "size": int(size or 0)}

    async def count_by_mime_type(self, user_id: int) -> Dict[str, int]:
        result = await self.db.execute(
            select(FileRecord.mime_type, func.count(FileRecord.id))
            .where(FileRecord.user_id == user_id, FileRecord.trashed.is_(False), FileRecord.is_folder.is_(False))
            .group_by(FileRecord.mime_type)
        )
        return {(mime or "unknown"): count for mime, count in result.all()}

    async def count_by_provider(self, user_id: int) -> Dict[str, int]:
        result = await self.db.execute(
            select(Account.provider, func.count(FileRecord.id))
            .join(Account, Account.id == FileRecord.account_id)
            .where(FileRecord.user_id == user_id, FileRecord.trashed.is_(False), FileRecord.is_folder.is_(False))
            .group_by(Account.provider)
        )
        return {provider.value: count for provider, count in result.all()}
