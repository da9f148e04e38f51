"""Multi-cloud gateway: the single entry point over linked storage accounts.

Each operation resolves the account, picks its provider adapter once, runs
the provider call through the token lifecycle executor, and only after the
provider confirms it writes the result into the metadata cache.
"""
from __future__ import annotations

import mimetypes
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from multicloud.core.exceptions import (
    GatewayError,
    NotFoundError,
    PermissionDeniedError,
    UnsupportedOperationError,
    ValidationError,
)
from multicloud.core.metadata_store import MetadataStore
from multicloud.core.preview import PreviewResolver, PreviewResult
from multicloud.core.token_lifecycle import TokenLifecycleExecutor, classify
from multicloud.db.models import Account, ActivityStatus, ActivityType, FileRecord, Provider, utcnow
from multicloud.db.repositories.account_repository import AccountRepository
from multicloud.db.repositories.activity_log_repository import ActivityLogRepository
from multicloud.db.repositories.file_record_repository import FileRecordRepository
from multicloud.monitoring.audit import audit_event
from multicloud.monitoring.context import set_request_context
from multicloud.monitoring.logger import log
from multicloud.providers.base import DEFAULT_MIME_TYPE, StorageProviderAdapter, TokenGrant
from multicloud.providers.registry import build_adapters

DEFAULT_COPY_NAME = "copied-file"
SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


def format_size(size: Optional[int]) -> str:
    if size is None:
        return "0 Bytes"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{value:.2f} {SIZE_UNITS[unit]}"


def ensure_file_extension(name: Optional[str], extension: str) -> str:
    if not name or not name.strip():
        return DEFAULT_COPY_NAME + extension
    if name.lower().endswith(extension.lower()):
        return name
    return name + extension


def _require(value: Optional[str], what: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{what} must not be blank")
    return value.strip()


@dataclass
class FileListing:
    files: List[FileRecord]
    # True when the provider call failed and these are the last synced records
    from_cache: bool = False
    error: Optional[GatewayError] = None


@dataclass
class AccountSummary:
    id: int
    provider: str
    account_email: str
    total_storage: Optional[int]
    used_storage: Optional[int]
    is_active: bool
    connected_at: Optional[datetime]
    last_synced_at: Optional[datetime]

    @classmethod
    def from_account(cls, account: Account) -> "AccountSummary":
        return cls(
            id=account.id,
            provider=account.provider.value,
            account_email=account.account_email,
            total_storage=account.total_storage,
            used_storage=account.used_storage,
            is_active=account.is_active,
            connected_at=account.connected_at,
            last_synced_at=account.last_synced_at,
        )


@dataclass
class SearchFilters:
    mime_type: Optional[str] = None
    account_id: Optional[int] = None
    starred: Optional[bool] = None
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    include_trashed: bool = False


@dataclass
class StorageAnalytics:
    total_files: int = 0
    total_folders: int = 0
    total_size: int = 0
    total_size_formatted: str = "0 Bytes"
    files_by_type: Dict[str, int] = field(default_factory=dict)
    files_by_provider: Dict[str, int] = field(default_factory=dict)
    most_used_provider: str = "NONE"
    upload_count: int = 0
    download_count: int = 0
    today_uploads: int = 0
    today_downloads: int = 0


class CloudGateway:
    def __init__(
        self,
        db: AsyncSession,
        adapters: Optional[Mapping[Provider, StorageProviderAdapter]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.clock = clock
        self.accounts = AccountRepository(db)
        self.files = FileRecordRepository(db)
        self.activity = ActivityLogRepository(db)
        self.adapters = adapters if adapters is not None else build_adapters()
        self.executor = TokenLifecycleExecutor(self.accounts, self.adapters, clock=clock)
        self.store = MetadataStore(self.files, clock=clock)
        self.previews = PreviewResolver(self.executor, self.store)

    # -- lookups -----------------------------------------------------------

    async def _account(self, account_id: int) -> Account:
        account = await self.accounts.get(account_id)
        if account is None or not account.is_active:
            raise NotFoundError(f"Cloud account not found with ID: {account_id}")
        set_request_context(user_id=account.user_id, account_id=account.id)
        return account

    async def get_file(self, file_id: int) -> FileRecord:
        record = await self.files.get(file_id)
        if record is None:
            raise NotFoundError(f"File not found with ID: {file_id}")
        return record

    async def _file_and_account(self, file_id: int):
        record = await self.get_file(file_id)
        return record, await self._account(record.account_id)

    # -- plumbing ----------------------------------------------------------

    @asynccontextmanager
    async def _activity(self, action: ActivityType, account: Account, record: Optional[FileRecord] = None):
        """Log and audit one operation. Yields a dict the body may fill in."""
        scope = {"file_id": record.id if record else None, "file_name": record.name if record else None}
        log("INFO", f"{action.value} started", component="gateway", account_id=account.id)
        try:
            yield scope
        except GatewayError as e:
            log("ERROR", f"{action.value} failed: {e.message}", component="gateway", account_id=account.id, error=e.kind)
            await audit_event(
                self.db, action, account.user_id, account.id,
                file_id=scope["file_id"], file_name=scope["file_name"],
                status=ActivityStatus.FAILED, details={"error": e.message, "kind": e.kind},
            )
            raise
        log("INFO", f"{action.value} finished", component="gateway", account_id=account.id)
        await audit_event(
            self.db, action, account.user_id, account.id,
            file_id=scope["file_id"], file_name=scope["file_name"], details=scope.get("details"),
        )

    async def _sync_account(self, account: Account) -> Account:
        """Refresh quota and the sync timestamp; quota failures are only logged."""
        adapter = self.executor.adapter_for(account)
        fields = {"last_synced_at": self.clock()}
        try:
            quota = await self.executor.execute(account, adapter.get_storage_quota)
            fields.update(total_storage=quota.total, used_storage=quota.used)
        except GatewayError as e:
            log("WARNING", f"Failed to refresh storage quota: {e.message}", component="gateway", account_id=account.id)
        return await self.accounts.update(account, **fields)

    # -- accounts ----------------------------------------------------------

    async def list_accounts(self, user_id: int) -> List[AccountSummary]:
        return [AccountSummary.from_account(a) for a in await self.accounts.list_active_by_user(user_id)]

    async def connect_account(
        self,
        user_id: int,
        provider,
        access_token: str,
        refresh_token: Optional[str] = None,
        account_email: Optional[str] = None,
        expires_in=None,
    ) -> Account:
        provider = Provider(provider)
        access_token = _require(access_token, "Access token")
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise UnsupportedOperationError(f"No adapter configured for {provider.value}")
        if not account_email:
            try:
                account_email = await adapter.get_user_email(access_token)
            except Exception as e:
                raise classify(e) from e
        account_email = _require(account_email, "Account email")

        grant = TokenGrant(access_token=access_token, refresh_token=refresh_token, expires_in=expires_in)
        account = await self.executor.link_account(user_id, provider, account_email, grant)
        if not account.is_active:
            account = await self.accounts.update(account, is_active=True, connected_at=self.clock())
        set_request_context(user_id=user_id, account_id=account.id)
        async with self._activity(ActivityType.CONNECT, account):
            account = await self._sync_account(account)
        log("INFO", f"Connected {provider.value} account", component="gateway", account_id=account.id)
        return account

    async def complete_authorization(self, user_id: int, provider, code: str, redirect_uri: Optional[str] = None) -> Account:
        provider = Provider(provider)
        code = _require(code, "Authorization code")
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise UnsupportedOperationError(f"No adapter configured for {provider.value}")
        try:
            grant = await adapter.exchange_authorization_code(code, redirect_uri)
        except Exception as e:
            raise classify(e) from e
        return await self.connect_account(
            user_id, provider, grant.access_token, grant.refresh_token, expires_in=grant.expires_in
        )

    async def disconnect(self, account_id: int) -> Account:
        account = await self._account(account_id)
        async with self._activity(ActivityType.DISCONNECT, account):
            # Soft disconnect: cached records stay
            account = await self.accounts.update(account, is_active=False)
        return account

    # -- listing -----------------------------------------------------------

    async def list_files(self, account_id: int, folder_id: Optional[str] = None) -> FileListing:
        account = await self._account(account_id)
        adapter = self.executor.adapter_for(account)
        try:
            items = await self.executor.execute(account, lambda token: adapter.list_files(token, folder_id))
        except GatewayError as e:
            cached = await self.store.cached_for_account(account.id)
            if folder_id:
                cached = [r for r in cached if r.parent_id == folder_id]
            if not cached:
                raise
            log("WARNING", f"Live listing failed, serving cached records: {e.message}", component="gateway", account_id=account.id, count=len(cached))
            return FileListing(files=cached, from_cache=True, error=e)

        records = await self.store.upsert_many(account, items)
        await self._sync_account(account)
        return FileListing(files=records)

    # -- file operations ---------------------------------------------------

    async def _upload(self, account: Account, content: bytes, filename: str, mime_type: Optional[str], folder_id: Optional[str]) -> FileRecord:
        if not content:
            raise ValidationError("File is empty")
        filename = _require(filename, "File name")
        mime_type = mime_type or mimetypes.guess_type(filename)[0] or DEFAULT_MIME_TYPE
        adapter = self.executor.adapter_for(account)
        item = await self.executor.execute(
            account, lambda token: adapter.upload_file(token, content, filename, mime_type, folder_id)
        )
        record = await self.store.upsert(account, item)
        await self._sync_account(account)
        return record

    async def upload(self, account_id: int, content: bytes, filename: str, mime_type: Optional[str] = None, folder_id: Optional[str] = None) -> FileRecord:
        account = await self._account(account_id)
        async with self._activity(ActivityType.UPLOAD, account) as scope:
            scope["file_name"] = filename
            record = await self._upload(account, content, filename, mime_type, folder_id)
            scope["file_id"] = record.id
        return record

    async def _materialize(self, account: Account, record: FileRecord):
        """Return (bytes, mime, name) for a file, exporting native documents."""
        adapter = self.executor.adapter_for(account)
        profile = adapter.export_profile(record.mime_type)
        if profile is not None:
            content = await self.executor.execute(
                account, lambda token: adapter.export_file(token, record.provider_file_id, profile.mime_type)
            )
            return content, profile.mime_type, ensure_file_extension(record.name, profile.extension)
        content = await self.executor.execute(
            account, lambda token: adapter.download_file(token, record.provider_file_id)
        )
        return content, record.mime_type or DEFAULT_MIME_TYPE, record.name or DEFAULT_COPY_NAME

    async def download(self, file_id: int) -> bytes:
        record, account = await self._file_and_account(file_id)
        async with self._activity(ActivityType.DOWNLOAD, account, record) as scope:
            if record.is_folder:
                raise UnsupportedOperationError("Folders cannot be downloaded")
            content, _, _ = await self._materialize(account, record)
            await self.store.touch(record)
            scope["details"] = {"size": len(content)}
        return content

    async def preview(self, file_id: int) -> PreviewResult:
        record, account = await self._file_and_account(file_id)
        async with self._activity(ActivityType.VIEW, account, record) as scope:
            result = await self.previews.resolve(account, record)
            scope["details"] = {"mode": result.mode.value}
        return result

    async def delete(self, file_id: int) -> None:
        record, account = await self._file_and_account(file_id)
        adapter = self.executor.adapter_for(account)
        async with self._activity(ActivityType.DELETE, account, record):
            await self.executor.execute(account, lambda token: adapter.delete_file(token, record.provider_file_id))
            await self.store.remove(record)
            await self._sync_account(account)

    async def batch_delete(self, file_ids: List[int]) -> int:
        """Delete each file independently; returns how many succeeded."""
        deleted = 0
        for file_id in file_ids:
            try:
                await self.delete(file_id)
                deleted += 1
            except GatewayError as e:
                log("WARNING", f"Batch delete skipped file {file_id}: {e.message}", component="gateway", file_id=file_id)
        log("INFO", "Batch delete finished", component="gateway", count=deleted)
        return deleted

    async def rename(self, file_id: int, new_name: str) -> FileRecord:
        record, account = await self._file_and_account(file_id)
        adapter = self.executor.adapter_for(account)
        async with self._activity(ActivityType.RENAME, account, record) as scope:
            new_name = _require(new_name, "New name")
            item = await self.executor.execute(
                account, lambda token: adapter.rename_file(token, record.provider_file_id, new_name)
            )
            scope["details"] = {"from": record.name, "to": new_name}
            record = await self.store.relocate(account, record, item)
        return record

    async def move(self, file_id: int, new_path: str) -> FileRecord:
        record, account = await self._file_and_account(file_id)
        adapter = self.executor.adapter_for(account)
        async with self._activity(ActivityType.MOVE, account, record) as scope:
            new_path = _require(new_path, "Destination path")
            item = await self.executor.execute(
                account, lambda token: adapter.move_file(token, record.provider_file_id, new_path)
            )
            scope["details"] = {"to": new_path}
            record = await self.store.relocate(account, record, item)
        return record

    async def create_folder(self, account_id: int, name: str, parent_id: Optional[str] = None) -> FileRecord:
        account = await self._account(account_id)
        adapter = self.executor.adapter_for(account)
        async with self._activity(ActivityType.CREATE_FOLDER, account) as scope:
            name = _require(name, "Folder name")
            scope["file_name"] = name
            item = await self.executor.execute(account, lambda token: adapter.create_folder(token, name, parent_id))
            record = await self.store.upsert(account, item)
            scope["file_id"] = record.id
            await self._sync_account(account)
        return record

    async def copy(self, file_id: int, target_account_id: int, target_folder_id: Optional[str] = None, user_id: Optional[int] = None) -> FileRecord:
        source = await self.get_file(file_id)
        if source.user_id != user_id:
            raise PermissionDeniedError("You do not have permission to copy this file")
        target = await self.accounts.get(target_account_id)
        if target is None or not target.is_active:
            raise NotFoundError(f"Target cloud account not found with ID: {target_account_id}")
        if target.user_id != user_id:
            raise PermissionDeniedError("Target cloud account is not linked to the current user")
        if source.is_folder:
            raise UnsupportedOperationError("Copying folders is not supported")

        source_account = await self._account(source.account_id)
        async with self._activity(ActivityType.COPY, target, source) as scope:
            content, mime_type, name = await self._materialize(source_account, source)
            if not content:
                raise ValidationError("Source file is empty")
            record = await self._upload(target, content, name, mime_type, target_folder_id)
            scope["details"] = {"source_account_id": source_account.id, "copied_file_id": record.id}
        return record

    async def toggle_star(self, file_id: int) -> FileRecord:
        record = await self.get_file(file_id)
        return await self.store.set_starred(record)

    # -- queries -----------------------------------------------------------

    async def search(self, user_id: int, query: Optional[str] = None, filters: Optional[SearchFilters] = None) -> List[FileRecord]:
        filters = filters or SearchFilters()
        return await self.files.search(
            user_id,
            query=query.strip() if query else None,
            mime_type=filters.mime_type,
            account_id=filters.account_id,
            starred=filters.starred,
            min_size=filters.min_size,
            max_size=filters.max_size,
            include_trashed=filters.include_trashed,
        )

    async def analytics(self, user_id: int) -> StorageAnalytics:
        totals = await self.files.totals(user_id)
        by_provider = await self.files.count_by_provider(user_id)
        today = self.clock().replace(hour=0, minute=0, second=0, microsecond=0)
        upload, download = ActivityType.UPLOAD.value, ActivityType.DOWNLOAD.value
        return StorageAnalytics(
            total_files=totals["files"],
            total_folders=totals["folders"],
            total_size=totals["size"],
            total_size_formatted=format_size(totals["size"]),
            files_by_type=await self.files.count_by_mime_type(user_id),
            files_by_provider=by_provider,
            most_used_provider=max(by_provider, key=by_provider.get) if by_provider else "NONE",
            upload_count=await self.activity.count(user_id, upload),
            download_count=await self.activity.count(user_id, download),
            today_uploads=await self.activity.count(user_id, upload, since=today),
            today_downloads=await self.activity.count(user_id, download, since=today),
        )
