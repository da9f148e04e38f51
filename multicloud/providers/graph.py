"""Microsoft Graph (OneDrive) adapter using delegated user tokens."""
from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from multicloud.config import settings
from multicloud.db.models import Provider
from multicloud.monitoring.logger import log
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

CONFLICT_BEHAVIOR = "@microsoft.graph.conflictBehavior"


class GraphAdapter(StorageProviderAdapter):
    provider = Provider.GRAPH

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, timeout: Optional[float] = None):
        super().__init__(session=session, timeout=timeout)
        self.base_url = settings.MS_GRAPH_BASE_URL.rstrip("/")

    def _item_url(self, item_id: Optional[str]) -> str:
        if not item_id:
            return f"{self.base_url}/me/drive/root"
        return f"{self.base_url}/me/drive/items/{item_id}"

    def _content_path(self, name: str, folder_id: Optional[str]) -> str:
        # Path-addressed item under the target folder: items/{id}:/{name}:
        return f"{self._item_url(folder_id)}:/{quote(name)}:"

    @staticmethod
    def _to_file(item: Dict[str, Any]) -> ProviderFile:
        is_folder = "folder" in item
        parent = item.get("parentReference") or {}
        thumbnails = item.get("thumbnails") or []
        thumbnail = None
        if thumbnails:
            thumbnail = ((thumbnails[0] or {}).get("medium") or {}).get("url")
        if is_folder:
            mime = FOLDER_MIME_TYPE
        else:
            mime = (item.get("file") or {}).get("mimeType") or DEFAULT_MIME_TYPE
        parent_path = parent.get("path")
        return ProviderFile(
            provider_file_id=item["id"],
            name=item.get("name") or item["id"],
            mime_type=mime,
            size=to_int(item.get("size")),
            is_folder=is_folder,
            parent_id=parent.get("id"),
            path=f"{parent_path}/{item.get('name')}" if parent_path else None,
            web_view_url=item.get("webUrl"),
            thumbnail_url=thumbnail,
            created_at=parse_timestamp(item.get("createdDateTime")),
            modified_at=parse_timestamp(item.get("lastModifiedDateTime")),
        )

    async def list_files(self, token: str, folder_id: Optional[str] = None) -> List[ProviderFile]:
        url = f"{self._item_url(folder_id)}/children"
        params: Optional[Dict[str, str]] = {"$expand": "thumbnails"}
        files: List[ProviderFile] = []
        while url:
            payload = await self._request("GET", url, token, params=params)
            files.extend(self._to_file(item) for item in payload.get("value", []))
            # nextLink already carries the query string
            url = payload.get("@odata.nextLink")
            params = None
        return files

    async def upload_file(self, token: str, content: bytes, name: str, mime_type: str, folder_id: Optional[str] = None) -> ProviderFile:
        if len(content) <= settings.GRAPH_SIMPLE_UPLOAD_MAX_BYTES:
            payload = await self._request(
                "PUT",
                f"{self._content_path(name, folder_id)}/content",
                token,
                data=content,
                headers={"Content-Type": mime_type},
            )
            return self._to_file(payload)
        return await self._upload_session(token, content, name, folder_id)

    async def _upload_session(self, token: str, content: bytes, name: str, folder_id: Optional[str]) -> ProviderFile:
        session_info = await self._request(
            "POST",
            f"{self._content_path(name, folder_id)}/createUploadSession",
            token,
            json={"item": {CONFLICT_BEHAVIOR: "rename"}},
        )
        upload_url = session_info["uploadUrl"]
        total = len(content)
        chunk_size = settings.GRAPH_UPLOAD_CHUNK_BYTES
        log("INFO", "Graph upload session started", component="providers", provider=self.provider.value, details={"size": total})
        payload = None
        for start in range(0, total, chunk_size):
            chunk = content[start:start + chunk_size]
            end = start + len(chunk) - 1
            # The upload URL is pre-authenticated; Graph rejects a bearer header here
            payload = await self._request(
                "PUT",
                upload_url,
                data=chunk,
                headers={"Content-Length": str(len(chunk)), "Content-Range": f"bytes {start}-{end}/{total}"},
            )
        return self._to_file(payload)

    async def download_file(self, token: str, file_id: str) -> bytes:
        return await self._request("GET", f"{self._item_url(file_id)}/content", token, expect="bytes")

    async def delete_file(self, token: str, file_id: str) -> None:
        await self._request("DELETE", self._item_url(file_id), token, expect="none")

    async def rename_file(self, token: str, file_id: str, new_name: str) -> ProviderFile:
        payload = await self._request("PATCH", self._item_url(file_id), token, json={"name": new_name})
        return self._to_file(payload)

    async def create_folder(self, token: str, name: str, parent_id: Optional[str] = None) -> ProviderFile:
        payload = await self._request(
            "POST",
            f"{self._item_url(parent_id)}/children",
            token,
            json={"name": name, "folder": {}, CONFLICT_BEHAVIOR: "rename"},
        )
        return self._to_file(payload)

    async def get_storage_quota(self, token: str) -> StorageQuota:
        payload = await self._request("GET", f"{self.base_url}/me/drive", token)
        quota = payload.get("quota") or {}
        return StorageQuota(total=to_int(quota.get("total")), used=to_int(quota.get("used")))

    async def resolve_web_link(self, token: str, file_id: str, stored_url: Optional[str] = None) -> Optional[str]:
        if stored_url:
            return stored_url
        payload = await self._request("GET", self._item_url(file_id), token, params={"$select": "webUrl"})
        return payload.get("webUrl")

    async def get_user_email(self, token: str) -> str:
        payload = await self._request("GET", f"{self.base_url}/me", token, params={"$select": "mail,userPrincipalName"})
        return payload.get("mail") or payload.get("userPrincipalName")

    async def exchange_authorization_code(self, code: str, redirect_uri: Optional[str] = None) -> TokenGrant:
        return await self._token_request(settings.MS_TOKEN_URI, {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": settings.MS_CLIENT_ID or "",
            "client_secret": settings.MS_CLIENT_SECRET or "",
            "redirect_uri": redirect_uri or settings.MS_REDIRECT_URI or "",
            "scope": settings.MS_SCOPE,
        })

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        return await self._token_request(settings.MS_TOKEN_URI, {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": settings.MS_CLIENT_ID or "",
            "client_secret": settings.MS_CLIENT_SECRET or "",
            "scope": settings.MS_SCOPE,
        })
