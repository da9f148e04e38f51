"""Dropbox API v2 adapter.

Dropbox addresses files by path, so the provider file id is the lowercased
path and any rename or move yields a new id.
"""
from __future__ import annotations

import json
import mimetypes
import posixpath
from typing import Any, Dict, List, Optional

import aiohttp

from multicloud.config import settings
from multicloud.db.models import Provider
from multicloud.providers.base import (
    DEFAULT_MIME_TYPE,
    FOLDER_MIME_TYPE,
    ProviderFile,
    StorageProviderAdapter,
    StorageQuota,
    TokenGrant,
    parse_timestamp,
    to_int,
)


# RPC endpoints without arguments take a literal JSON null body
NO_ARGS = {"data": b"null", "headers": {"Content-Type": "application/json"}}


def parent_of(path_lower: Optional[str]) -> Optional[str]:
    """'/a/b.txt' -> '/a'; entries at the root have no parent."""
    if not path_lower:
        return None
    cut = path_lower.rfind("/")
    return path_lower[:cut] if cut > 0 else None


def guess_mime_type(name: str) -> str:
    mime, _ = mimetypes.guess_type(name)
    return mime or DEFAULT_MIME_TYPE


class DropboxAdapter(StorageProviderAdapter):
    provider = Provider.DROPBOX

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, timeout: Optional[float] = None):
        super().__init__(session=session, timeout=timeout)
        self.api_url = settings.DROPBOX_API_BASE_URL.rstrip("/")
        self.content_url = settings.DROPBOX_CONTENT_BASE_URL.rstrip("/")

    @staticmethod
    def _to_file(entry: Dict[str, Any]) -> ProviderFile:
        is_folder = entry.get(".tag") == "folder"
        path_lower = entry.get("path_lower")
        name = entry.get("name") or posixpath.basename(path_lower or "")
        return ProviderFile(
            provider_file_id=path_lower,
            name=name,
            mime_type=FOLDER_MIME_TYPE if is_folder else guess_mime_type(name),
            size=0 if is_folder else to_int(entry.get("size")),
            is_folder=is_folder,
            parent_id=parent_of(path_lower),
            path=entry.get("path_display") or path_lower,
            modified_at=parse_timestamp(entry.get("client_modified") or entry.get("server_modified")),
        )

    def _content_headers(self, arg: Dict[str, Any]) -> Dict[str, str]:
        return {"Dropbox-API-Arg": json.dumps(arg), "Content-Type": "application/octet-stream"}

    async def list_files(self, token: str, folder_id: Optional[str] = None) -> List[ProviderFile]:
        payload = await self._request("POST", f"{self.api_url}/files/list_folder", token, json={"path": folder_id or ""})
        files = [self._to_file(entry) for entry in payload.get("entries", [])]
        while payload.get("has_more"):
            payload = await self._request(
                "POST", f"{self.api_url}/files/list_folder/continue", token, json={"cursor": payload["cursor"]}
            )
            files.extend(self._to_file(entry) for entry in payload.get("entries", []))
        return files

    async def upload_file(self, token: str, content: bytes, name: str, mime_type: str, folder_id: Optional[str] = None) -> ProviderFile:
        path = f"{(folder_id or '').rstrip('/')}/{name}"
        payload = await self._request(
            "POST",
            f"{self.content_url}/files/upload",
            token,
            data=content,
            headers=self._content_headers({"path": path, "mode": "add", "autorename": True}),
        )
        return self._to_file({".tag": "file", **payload})

    async def download_file(self, token: str, file_id: str) -> bytes:
        return await self._request(
            "POST",
            f"{self.content_url}/files/download",
            token,
            headers={"Dropbox-API-Arg": json.dumps({"path": file_id})},
            expect="bytes",
        )

    async def delete_file(self, token: str, file_id: str) -> None:
        await self._request("POST", f"{self.api_url}/files/delete_v2", token, json={"path": file_id})

    async def _move(self, token: str, from_path: str, to_path: str) -> ProviderFile:
        payload = await self._request(
            "POST", f"{self.api_url}/files/move_v2", token, json={"from_path": from_path, "to_path": to_path}
        )
        return self._to_file(payload.get("metadata") or {})

    async def rename_file(self, token: str, file_id: str, new_name: str) -> ProviderFile:
        return await self._move(token, file_id, f"{parent_of(file_id) or ''}/{new_name}")

    async def move_file(self, token: str, file_id: str, new_path: str) -> ProviderFile:
        """Move to a destination folder path, keeping the item's name."""
        target = f"{new_path.rstrip('/')}/{posixpath.basename(file_id)}"
        return await self._move(token, file_id, target)

    async def create_folder(self, token: str, name: str, parent_id: Optional[str] = None) -> ProviderFile:
        payload = await self._request(
            "POST",
            f"{self.api_url}/files/create_folder_v2",
            token,
            json={"path": f"{(parent_id or '').rstrip('/')}/{name}", "autorename": True},
        )
        return self._to_file({".tag": "folder", **(payload.get("metadata") or {})})

    async def get_storage_quota(self, token: str) -> StorageQuota:
        payload = await self._request("POST", f"{self.api_url}/users/get_space_usage", token, **NO_ARGS)
        allocation = payload.get("allocation") or {}
        return StorageQuota(total=to_int(allocation.get("allocated")), used=to_int(payload.get("used")))

    async def get_temporary_link(self, token: str, file_id: str) -> Optional[str]:
        payload = await self._request("POST", f"{self.api_url}/files/get_temporary_link", token, json={"path": file_id})
        return payload.get("link")

    async def resolve_web_link(self, token: str, file_id: str, stored_url: Optional[str] = None) -> Optional[str]:
        return stored_url or await self.get_temporary_link(token, file_id)

    async def get_user_email(self, token: str) -> str:
        payload = await self._request("POST", f"{self.api_url}/users/get_current_account", token, **NO_ARGS)
        return payload.get("email")

    def _client_auth(self) -> aiohttp.BasicAuth:
        return aiohttp.BasicAuth(settings.DROPBOX_CLIENT_ID or "", settings.DROPBOX_CLIENT_SECRET or "")

    async def exchange_authorization_code(self, code: str, redirect_uri: Optional[str] = None) -> TokenGrant:
        return await self._token_request(
            settings.DROPBOX_TOKEN_URI,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri or settings.DROPBOX_REDIRECT_URI or "",
            },
            auth=self._client_auth(),
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        return await self._token_request(
            settings.DROPBOX_TOKEN_URI,
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            auth=self._client_auth(),
        )
