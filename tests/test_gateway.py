"""Tests for gateway orchestration over fake providers."""
from datetime import timedelta

import pytest
from sqlalchemy.future import select

from multicloud.core.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    TransientNetworkError,
    UnsupportedOperationError,
    ValidationError,
)
from multicloud.core.gateway import SearchFilters, ensure_file_extension, format_size
from multicloud.db.models import ActivityLog, Provider, as_utc, utcnow
from multicloud.providers.base import ProviderFile


async def activity(db, action):
    result = await db.execute(select(ActivityLog).where(ActivityLog.action == action))
    return result.scalars().all()


class TestListing:
    @pytest.mark.asyncio
    async def test_live_listing_upserts_and_marks_synced(self, gateway, adapters, make_account):
        account = await make_account(Provider.GRAPH)
        adapters[Provider.GRAPH].add(ProviderFile("a", "a.txt", "text/plain", 1))
        adapters[Provider.GRAPH].add(ProviderFile("b", "b.txt", "text/plain", 2))

        listing = await gateway.list_files(account.id)

        assert listing.from_cache is False
        assert sorted(r.provider_file_id for r in listing.files) == ["a", "b"]
        assert account.last_synced_at is not None
        assert "get_storage_quota" in adapters[Provider.GRAPH].calls
        assert (account.total_storage, account.used_storage) == (1000, 10)

    @pytest.mark.asyncio
    async def test_failed_listing_serves_cache_unchanged(self, gateway, adapters, make_account):
        account = await make_account(Provider.GRAPH)
        graph = adapters[Provider.GRAPH]
        graph.add(ProviderFile("a", "a.txt", "text/plain", 1))
        live = await gateway.list_files(account.id)
        synced_at = account.last_synced_at

        graph.add(ProviderFile("c", "c.txt", "text/plain", 3))
        graph.list_error = TransientNetworkError("connection reset")
        listing = await gateway.list_files(account.id)

        assert listing.from_cache is True
        assert isinstance(listing.error, TransientNetworkError)
        assert [r.id for r in listing.files] == [r.id for r in live.files]
        assert listing.files[0].name == "a.txt"
        assert account.last_synced_at == synced_at

    @pytest.mark.asyncio
    async def test_failed_listing_without_cache_raises(self, gateway, adapters, make_account):
        account = await make_account(Provider.GRAPH)
        adapters[Provider.GRAPH].list_error = TransientNetworkError("connection reset")

        with pytest.raises(TransientNetworkError):
            await gateway.list_files(account.id)

    @pytest.mark.asyncio
    async def test_expiring_dropbox_token_refreshes_once_then_lists(self, gateway, adapters, make_account):
        account = await make_account(Provider.DROPBOX, expires_in=30)
        dropbox = adapters[Provider.DROPBOX]
        for name in ("one.txt", "two.txt", "three.txt"):
            dropbox.add(ProviderFile(f"/{name}", name, "text/plain", 1))

        listing = await gateway.list_files(account.id)

        assert dropbox.calls == ["refresh", "list_files", "get_storage_quota"]
        assert len(listing.files) == 3
        assert account.last_synced_at is not None
        assert as_utc(account.token_expiry) > utcnow() + timedelta(minutes=50)

    @pytest.mark.asyncio
    async def test_unknown_account(self, gateway):
        with pytest.raises(NotFoundError):
            await gateway.list_files(999)


class TestFileOperations:
    @pytest.mark.asyncio
    async def test_upload_caches_record_and_refreshes_quota(self, db, gateway, adapters, make_account):
        account = await make_account(Provider.DRIVE)

        record = await gateway.upload(account.id, b"hello", "hello.txt", folder_id="folder-1")

        assert record.name == "hello.txt"
        assert record.mime_type == "text/plain"
        assert record.parent_id == "folder-1"
        assert account.total_storage == 1000
        assert account.used_storage == 10
        assert len(await activity(db, "UPLOAD")) == 1

    @pytest.mark.asyncio
    async def test_upload_rejects_empty_content(self, db, gateway, make_account):
        account = await make_account()

        with pytest.raises(ValidationError):
            await gateway.upload(account.id, b"", "empty.txt")
        logs = await activity(db, "UPLOAD")
        assert logs[0].status == "FAILED"

    @pytest.mark.asyncio
    async def test_quota_failure_does_not_fail_upload(self, gateway, adapters, make_account):
        account = await make_account(Provider.GRAPH)

        async def broken_quota(token):
            raise TransientNetworkError("quota endpoint down")

        adapters[Provider.GRAPH].get_storage_quota = broken_quota
        record = await gateway.upload(account.id, b"data", "a.bin")

        assert record.id is not None
        assert account.total_storage is None

    @pytest.mark.asyncio
    async def test_download_touches_record(self, gateway, adapters, make_account):
        account = await make_account(Provider.GRAPH)
        record = await gateway.upload(account.id, b"payload", "a.bin")

        assert await gateway.download(record.id) == b"payload"
        assert record.last_accessed_at is not None

    @pytest.mark.asyncio
    async def test_download_exports_native_documents(self, gateway, adapters, make_account):
        account = await make_account(Provider.DRIVE)
        adapters[Provider.DRIVE].exported["doc"] = b"docx-bytes"
        record = await gateway.store.upsert(account, ProviderFile("doc", "Plan", "application/vnd.google-apps.document"))

        assert await gateway.download(record.id) == b"docx-bytes"

    @pytest.mark.asyncio
    async def test_rename_dropbox_relocates_record(self, gateway, adapters, make_account):
        account = await make_account(Provider.DROPBOX)
        record = await gateway.upload(account.id, b"x", "old.txt")

        renamed = await gateway.rename(record.id, "new.txt")

        assert renamed.id == record.id
        assert renamed.provider_file_id == "/new.txt"
        assert renamed.name == "new.txt"

    @pytest.mark.asyncio
    async def test_rename_rejects_blank_name(self, gateway, make_account):
        account = await make_account(Provider.GRAPH)
        record = await gateway.upload(account.id, b"x", "a.txt")

        with pytest.raises(ValidationError):
            await gateway.rename(record.id, "   ")

    @pytest.mark.asyncio
    async def test_move_is_unsupported_on_drive(self, gateway, make_account):
        account = await make_account(Provider.DRIVE)
        record = await gateway.upload(account.id, b"x", "a.txt")

        with pytest.raises(UnsupportedOperationError):
            await gateway.move(record.id, "/elsewhere")

    @pytest.mark.asyncio
    async def test_move_on_dropbox(self, gateway, make_account):
        account = await make_account(Provider.DROPBOX)
        record = await gateway.upload(account.id, b"x", "a.txt")

        moved = await gateway.move(record.id, "/archive")

        assert moved.provider_file_id == "/archive/a.txt"
        assert moved.parent_id == "/archive"

    @pytest.mark.asyncio
    async def test_create_folder(self, gateway, adapters, make_account):
        account = await make_account(Provider.GRAPH)

        folder = await gateway.create_folder(account.id, "Reports")

        assert folder.is_folder is True
        assert folder.name == "Reports"
        assert adapters[Provider.GRAPH].calls == ["create_folder", "get_storage_quota"]
        assert account.used_storage == 10
        assert account.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_delete_removes_cache_entry(self, gateway, make_account):
        account = await make_account(Provider.GRAPH)
        record = await gateway.upload(account.id, b"x", "a.txt")

        await gateway.delete(record.id)

        with pytest.raises(NotFoundError):
            await gateway.get_file(record.id)

    @pytest.mark.asyncio
    async def test_batch_delete_counts_successes(self, gateway, adapters, make_account):
        account = await make_account(Provider.GRAPH)
        first = await gateway.upload(account.id, b"x", "a.txt")
        second = await gateway.upload(account.id, b"y", "b.txt")
        # Gone on the provider side already: delete fails for this one
        del adapters[Provider.GRAPH].items[second.provider_file_id]

        assert await gateway.batch_delete([first.id, second.id, 12345]) == 1

    @pytest.mark.asyncio
    async def test_toggle_star(self, gateway, make_account):
        account = await make_account(Provider.GRAPH)
        record = await gateway.upload(account.id, b"x", "a.txt")

        assert (await gateway.toggle_star(record.id)).starred is True
        assert (await gateway.toggle_star(record.id)).starred is False


class TestCopy:
    @pytest.mark.asyncio
    async def test_copy_between_accounts(self, gateway, adapters, make_account):
        source_account = await make_account(Provider.GRAPH)
        target = await make_account(Provider.DROPBOX)
        source = await gateway.upload(source_account.id, b"contents", "notes.txt")

        copied = await gateway.copy(source.id, target.id, None, user_id=1)

        assert copied.account_id == target.id
        assert copied.provider_file_id == "/notes.txt"
        assert adapters[Provider.DROPBOX].contents["/notes.txt"] == b"contents"
        assert target.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_copy_exports_native_document_with_extension(self, gateway, adapters, make_account):
        drive = await make_account(Provider.DRIVE)
        target = await make_account(Provider.GRAPH)
        adapters[Provider.DRIVE].exported["sheet"] = b"xlsx"
        source = await gateway.store.upsert(drive, ProviderFile("sheet", "Budget", "application/vnd.google-apps.spreadsheet"))

        copied = await gateway.copy(source.id, target.id, user_id=1)

        assert copied.name == "Budget.xlsx"
        assert copied.mime_type == "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

    @pytest.mark.asyncio
    async def test_copy_rejects_foreign_source(self, gateway, make_account):
        source_account = await make_account(Provider.GRAPH, user_id=2)
        target = await make_account(Provider.DROPBOX, user_id=1)
        source = await gateway.upload(source_account.id, b"x", "a.txt")

        with pytest.raises(PermissionDeniedError):
            await gateway.copy(source.id, target.id, user_id=1)

    @pytest.mark.asyncio
    async def test_copy_rejects_foreign_target(self, gateway, make_account):
        source_account = await make_account(Provider.GRAPH, user_id=1)
        target = await make_account(Provider.DROPBOX, user_id=2)
        source = await gateway.upload(source_account.id, b"x", "a.txt")

        with pytest.raises(PermissionDeniedError):
            await gateway.copy(source.id, target.id, user_id=1)

    @pytest.mark.asyncio
    async def test_copy_rejects_folders(self, gateway, make_account):
        source_account = await make_account(Provider.GRAPH)
        target = await make_account(Provider.DROPBOX)
        folder = await gateway.create_folder(source_account.id, "Docs")

        with pytest.raises(UnsupportedOperationError):
            await gateway.copy(folder.id, target.id, user_id=1)

    @pytest.mark.asyncio
    async def test_copy_rejects_empty_source(self, gateway, adapters, make_account):
        source_account = await make_account(Provider.GRAPH)
        target = await make_account(Provider.DROPBOX)
        item = adapters[Provider.GRAPH].add(ProviderFile("e", "empty.txt", "text/plain", 0), b"")
        source = await gateway.store.upsert(source_account, item)

        with pytest.raises(ValidationError):
            await gateway.copy(source.id, target.id, user_id=1)


class TestAccounts:
    @pytest.mark.asyncio
    async def test_connect_resolves_email_and_quota(self, db, gateway, adapters):
        account = await gateway.connect_account(1, "GRAPH", "access-0", "refresh-0", expires_in=3600)

        assert account.account_email == "owner@example.com"
        assert account.total_storage == 1000
        assert [s.id for s in await gateway.list_accounts(1)] == [account.id]
        assert len(await activity(db, "CONNECT")) == 1

    @pytest.mark.asyncio
    async def test_complete_authorization(self, gateway, adapters):
        account = await gateway.complete_authorization(3, Provider.DROPBOX, "auth-code")

        assert account.user_id == 3
        assert account.refresh_token == "refresh-0"
        assert "exchange_authorization_code" in adapters[Provider.DROPBOX].calls

    @pytest.mark.asyncio
    async def test_disconnect_is_soft_and_reconnect_reactivates(self, gateway, adapters, make_account):
        account = await make_account(Provider.GRAPH)
        record = await gateway.upload(account.id, b"x", "a.txt")

        await gateway.disconnect(account.id)
        assert await gateway.list_accounts(1) == []
        assert (await gateway.get_file(record.id)).id == record.id

        again = await gateway.connect_account(1, Provider.GRAPH, "access-0", account_email="owner@example.com")
        assert again.id == account.id
        assert again.is_active is True


class TestQueries:
    @pytest.mark.asyncio
    async def test_search_filters(self, gateway, make_account):
        drive = await make_account(Provider.GRAPH)
        box = await make_account(Provider.DROPBOX)
        report = await gateway.upload(drive.id, b"x" * 10, "Report.pdf")
        await gateway.upload(drive.id, b"x" * 500, "photo.png")
        await gateway.upload(box.id, b"x" * 50, "report-notes.txt")
        await gateway.toggle_star(report.id)

        assert {r.name for r in await gateway.search(1, "report")} == {"Report.pdf", "report-notes.txt"}
        assert [r.name for r in await gateway.search(1, "REPORT", SearchFilters(account_id=drive.id))] == ["Report.pdf"]
        assert [r.name for r in await gateway.search(1, None, SearchFilters(mime_type="image"))] == ["photo.png"]
        assert [r.name for r in await gateway.search(1, None, SearchFilters(starred=True))] == ["Report.pdf"]
        assert {r.name for r in await gateway.search(1, None, SearchFilters(min_size=20, max_size=100))} == {"report-notes.txt"}
        assert await gateway.search(2, "report") == []

    @pytest.mark.asyncio
    async def test_analytics(self, gateway, make_account):
        graph = await make_account(Provider.GRAPH)
        box = await make_account(Provider.DROPBOX)
        first = await gateway.upload(graph.id, b"x" * 1024, "a.txt")
        await gateway.upload(graph.id, b"x" * 1024, "b.png")
        await gateway.upload(box.id, b"x" * 1024, "c.txt")
        await gateway.create_folder(graph.id, "Folder")
        await gateway.download(first.id)

        stats = await gateway.analytics(1)

        assert stats.total_files == 3
        assert stats.total_folders == 1
        assert stats.total_size == 3072
        assert stats.total_size_formatted == "3.00 KB"
        assert stats.files_by_type == {"text/plain": 2, "image/png": 1}
        assert stats.files_by_provider == {"GRAPH": 2, "DROPBOX": 1}
        assert stats.most_used_provider == "GRAPH"
        assert stats.upload_count == 3
        assert stats.today_uploads == 3
        assert stats.download_count == 1
        assert stats.today_downloads == 1

    @pytest.mark.asyncio
    async def test_analytics_without_files(self, gateway):
        stats = await gateway.analytics(42)
        assert stats.most_used_provider == "NONE"
        assert stats.total_files == 0


def test_format_size():
    assert format_size(None) == "0 Bytes"
    assert format_size(0) == "0.00 Bytes"
    assert format_size(1536) == "1.50 KB"
    assert format_size(5 * 1024 ** 3) == "5.00 GB"


def test_ensure_file_extension():
    assert ensure_file_extension("Budget", ".xlsx") == "Budget.xlsx"
    assert ensure_file_extension("budget.XLSX", ".xlsx") == "budget.XLSX"
    assert ensure_file_extension("  ", ".pdf") == "copied-file.pdf"
    assert ensure_file_extension(None, ".pdf") == "copied-file.pdf"
