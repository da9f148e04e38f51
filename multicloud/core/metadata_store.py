"""Durable cache of provider listings keyed by (account, provider file id)."""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError

from multicloud.db.models import Account, FileRecord, utcnow
from multicloud.db.repositories.file_record_repository import FileRecordRepository
from multicloud.monitoring.logger import log
from multicloud.providers.base import ProviderFile


class MetadataStore:
    def __init__(self, files: FileRecordRepository, clock: Callable[[], datetime] = utcnow):
        self.files = files
        self.db = files.db
        self.clock = clock

    @staticmethod
    def _apply(record: FileRecord, item: ProviderFile) -> FileRecord:
        record.provider_file_id = item.provider_file_id
        record.name = item.name
        record.path = item.path
        record.mime_type = item.mime_type
        record.size = item.size
        record.is_folder = item.is_folder
        record.parent_id = item.parent_id
        record.web_view_url = item.web_view_url
        record.thumbnail_url = item.thumbnail_url
        record.modified_at = item.modified_at
        if item.created_at is not None:
            record.created_at = item.created_at
        # The provider just reported it, so it is live
        record.trashed = False
        return record

    def _new_record(self, account: Account, item: ProviderFile) -> FileRecord:
        record = FileRecord(
            user_id=account.user_id,
            account_id=account.id,
            starred=False,
            created_at=item.created_at or self.clock(),
        )
        self.db.add(record)
        return self._apply(record, item)

    async def upsert(self, account: Account, item: ProviderFile) -> FileRecord:
        account_id = account.id
        record = await self.files.get_by_provider_id(account_id, item.provider_file_id)
        if record is None:
            try:
                async with self.db.begin_nested():
                    record = self._new_record(account, item)
            except IntegrityError:
                # A concurrent request inserted the same pair first
                record = await self.files.get_by_provider_id(account_id, item.provider_file_id)
                if record is None:
                    raise
                log("INFO", "Record inserted concurrently, updating it instead", component="metadata_store", account_id=account_id, file_id=item.provider_file_id)
                self._apply(record, item)
        else:
            self._apply(record, item)
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def upsert_many(self, account: Account, items: Iterable[ProviderFile]) -> List[FileRecord]:
        existing: Dict[str, FileRecord] = {
            r.provider_file_id: r for r in await self.files.list_by_account(account.id, include_trashed=True)
        }
        records: List[FileRecord] = []
        for item in items:
            record = existing.get(item.provider_file_id)
            if record is None:
                record = self._new_record(account, item)
                existing[item.provider_file_id] = record
            else:
                self._apply(record, item)
            records.append(record)
        await self.db.commit()
        log("INFO", "Reconciled provider listing", component="metadata_store", account_id=account.id, count=len(records))
        return records

    async def relocate(self, account: Account, record: FileRecord, item: ProviderFile) -> FileRecord:
        """Apply a rename/move result that may have changed the provider file id."""
        if item.provider_file_id != record.provider_file_id:
            clash = await self.files.get_by_provider_id(account.id, item.provider_file_id)
            if clash is not None and clash.id != record.id:
                clash.starred = clash.starred or record.starred
                await self.db.delete(record)
                record = clash
        self._apply(record, item)
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def cached_for_account(self, account_id: int) -> List[FileRecord]:
        return await self.files.list_by_account(account_id)

    async def touch(self, record: FileRecord) -> FileRecord:
        record.last_accessed_at = self.clock()
        await self.db.commit()
        return record

    async def remove(self, record: FileRecord) -> None:
        await self.db.delete(record)
        await self.db.commit()

    async def set_starred(self, record: FileRecord, starred: Optional[bool] = None) -> FileRecord:
        record.starred = (not record.starred) if starred is None else starred
        await self.db.commit()
        await self.db.refresh(record)
        return record
