"""Shared fixtures: an in-memory database and in-process provider fakes."""
from datetime import timedelta
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from multicloud.core.exceptions import AuthExpiredError, TransientNetworkError, error_from_status
from multicloud.core.gateway import CloudGateway
from multicloud.db import models  # noqa: F401
from multicloud.db.models import Account, Provider, utcnow
from multicloud.db.session import Base
from multicloud.providers.base import (
    FOLDER_MIME_TYPE,
    ProviderFile,
    StorageProviderAdapter,
    StorageQuota,
    TokenGrant,
)
from multicloud.providers.drive import DriveAdapter


class FakeAdapter(StorageProviderAdapter):
    """In-memory provider that records every call it receives.

    Only tokens in `valid_tokens` are accepted; anything else fails the way
    a provider rejects an expired token.
    """

    def __init__(self, provider: Provider):
        super().__init__(session=object())
        self.provider = provider
        self.valid_tokens = {"access-0"}
        self.items: Dict[str, ProviderFile] = {}
        self.contents: Dict[str, bytes] = {}
        self.calls: List[str] = []
        self.refreshes = 0
        self.refresh_error: Optional[Exception] = None
        self.list_error: Optional[Exception] = None
        self.download_error: Optional[Exception] = None
        self.export_error: Optional[Exception] = None
        self.temporary_link: Optional[str] = None
        self.link_error: Optional[Exception] = None
        self.exported: Dict[str, bytes] = {}
        self.email = "owner@example.com"
        self.quota = StorageQuota(total=1000, used=10)

    def _check(self, name: str, token: str):
        self.calls.append(name)
        if token not in self.valid_tokens:
            raise AuthExpiredError(f"{name} failed: 401 token expired")

    def add(self, item: ProviderFile, content: bytes = b""):
        self.items[item.provider_file_id] = item
        self.contents[item.provider_file_id] = content
        return item

    def export_profile(self, mime_type):
        if self.provider is Provider.DRIVE:
            return DriveAdapter().export_profile(mime_type)
        return None

    async def list_files(self, token, folder_id=None):
        self._check("list_files", token)
        if self.list_error:
            raise self.list_error
        return list(self.items.values())

    async def upload_file(self, token, content, name, mime_type, folder_id=None):
        self._check("upload_file", token)
        file_id = f"/{name.lower()}" if self.provider is Provider.DROPBOX else f"id-{len(self.items) + 1}"
        return self.add(ProviderFile(file_id, name, mime_type, len(content), parent_id=folder_id), content)

    async def download_file(self, token, file_id):
        self._check("download_file", token)
        if self.download_error:
            raise self.download_error
        return self.contents[file_id]

    async def export_file(self, token, file_id, mime_type):
        self._check("export_file", token)
        if self.export_error:
            raise self.export_error
        return self.exported[file_id]

    async def delete_file(self, token, file_id):
        self._check("delete_file", token)
        if file_id not in self.items:
            raise error_from_status(404, "itemNotFound", "delete")
        del self.items[file_id]

    async def rename_file(self, token, file_id, new_name):
        self._check("rename_file", token)
        old = self.items.pop(file_id)
        new_id = f"/{new_name.lower()}" if self.provider is Provider.DROPBOX else file_id
        return self.add(ProviderFile(new_id, new_name, old.mime_type, old.size), self.contents.get(file_id, b""))

    async def move_file(self, token, file_id, new_path):
        if self.provider is not Provider.DROPBOX:
            return await super().move_file(token, file_id, new_path)
        self._check("move_file", token)
        old = self.items.pop(file_id)
        new_id = f"{new_path.rstrip('/')}/{old.name.lower()}"
        return self.add(ProviderFile(new_id, old.name, old.mime_type, old.size, parent_id=new_path))

    async def create_folder(self, token, name, parent_id=None):
        self._check("create_folder", token)
        return self.add(ProviderFile(f"folder-{name}", name, FOLDER_MIME_TYPE, 0, is_folder=True, parent_id=parent_id))

    async def get_storage_quota(self, token):
        self._check("get_storage_quota", token)
        return self.quota

    async def resolve_web_link(self, token, file_id, stored_url=None):
        self._check("resolve_web_link", token)
        if self.link_error:
            raise self.link_error
        if stored_url:
            return stored_url
        if self.provider is Provider.DRIVE:
            return f"https://drive.google.com/file/d/{file_id}/preview"
        return self.temporary_link

    async def get_user_email(self, token):
        self._check("get_user_email", token)
        return self.email

    async def exchange_authorization_code(self, code, redirect_uri=None):
        self.calls.append("exchange_authorization_code")
        return TokenGrant("access-0", "refresh-0", 3600)

    async def refresh_access_token(self, refresh_token):
        self.calls.append("refresh")
        if self.refresh_error:
            raise self.refresh_error
        self.refreshes += 1
        token = f"access-{self.refreshes}"
        self.valid_tokens.add(token)
        return TokenGrant(token, None, 3600)


@pytest_asyncio.fixture
async def db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    Session = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with Session() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def adapters():
    return {provider: FakeAdapter(provider) for provider in Provider}


@pytest.fixture
def gateway(db, adapters):
    return CloudGateway(db, adapters=adapters)


@pytest.fixture
def make_account(db):
    async def _make(provider=Provider.DRIVE, user_id=1, email="owner@example.com", expires_in=3600, refresh_token="refresh-0", access_token="access-0"):
        account = Account(
            user_id=user_id,
            provider=provider,
            account_email=email,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expiry=utcnow() + timedelta(seconds=expires_in) if expires_in is not None else None,
            token_version=0,
            is_active=True,
        )
        db.add(account)
        await db.commit()
        await db.refresh(account)
        return account
    return _make


@pytest.fixture
def transient_error():
    return TransientNetworkError("connection reset")
