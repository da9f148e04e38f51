"""Google Drive v3 REST adapter."""
from __future__ import annotations

from types import MappingProxyType
from typing import Any, Dict, List, Optional

import aiohttp

from multicloud.config import settings
from multicloud.db.models import Provider
from multicloud.providers.base import (
    ExportProfile,
    ProviderFile,
    StorageProviderAdapter,
    StorageQuota,
    TokenGrant,
    parse_timestamp,
    to_int,
)

WORKSPACE_MIME_PREFIX = "application/vnd.google-apps."
DRIVE_FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "id,name,mimeType,size,parents,createdTime,modifiedTime,webViewLink,thumbnailLink"

GOOGLE_EXPORT_FORMATS = MappingProxyType({
    "application/vnd.google-apps.document": ExportProfile(
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document", ".docx"
    ),
    "application/vnd.google-apps.spreadsheet": ExportProfile(
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", ".xlsx"
    ),
    "application/vnd.google-apps.presentation": ExportProfile(
        "application/vnd.openxmlformats-officedocument.presentationml.presentation", ".pptx"
    ),
    "application/vnd.google-apps.drawing": ExportProfile("image/png", ".png"),
})
DEFAULT_EXPORT_PROFILE = ExportProfile("application/pdf", ".pdf")


def is_workspace_document(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.startswith(WORKSPACE_MIME_PREFIX) and mime_type != DRIVE_FOLDER_MIME_TYPE


class DriveAdapter(StorageProviderAdapter):
    provider = Provider.DRIVE

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, timeout: Optional[float] = None):
        super().__init__(session=session, timeout=timeout)
        self.base_url = settings.GOOGLE_DRIVE_BASE_URL.rstrip("/")
        self.upload_url = settings.GOOGLE_UPLOAD_BASE_URL.rstrip("/")

    @staticmethod
    def _to_file(item: Dict[str, Any]) -> ProviderFile:
        mime = item.get("mimeType")
        parents = item.get("parents") or []
        return ProviderFile(
            provider_file_id=item["id"],
            name=item.get("name") or item["id"],
            mime_type=mime,
            size=to_int(item.get("size")),
            is_folder=mime == DRIVE_FOLDER_MIME_TYPE,
            parent_id=parents[0] if parents else None,
            web_view_url=item.get("webViewLink"),
            thumbnail_url=item.get("thumbnailLink"),
            created_at=parse_timestamp(item.get("createdTime")),
            modified_at=parse_timestamp(item.get("modifiedTime")),
        )

    def export_profile(self, mime_type: Optional[str]) -> Optional[ExportProfile]:
        if not is_workspace_document(mime_type):
            return None
        return GOOGLE_EXPORT_FORMATS.get(mime_type, DEFAULT_EXPORT_PROFILE)

    async def list_files(self, token: str, folder_id: Optional[str] = None) -> List[ProviderFile]:
        query = "trashed = false"
        if folder_id:
            escaped = folder_id.replace("\\", "\\\\").replace("'", "\\'")
            query = f"'{escaped}' in parents and {query}"
        params = {
            "q": query,
            "pageSize": str(settings.DRIVE_LIST_PAGE_SIZE),
            "fields": f"nextPageToken,files({FILE_FIELDS})",
        }
        files: List[ProviderFile] = []
        while True:
            payload = await self._request("GET", f"{self.base_url}/files", token, params=params)
            files.extend(self._to_file(item) for item in payload.get("files", []))
            page_token = payload.get("nextPageToken")
            if not page_token:
                return files
            params = {**params, "pageToken": page_token}

    async def upload_file(self, token: str, content: bytes, name: str, mime_type: str, folder_id: Optional[str] = None) -> ProviderFile:
        metadata: Dict[str, Any] = {"name": name}
        if folder_id:
            metadata["parents"] = [folder_id]
        with aiohttp.MultipartWriter("related") as writer:
            writer.append_json(metadata)
            writer.append(content, {"Content-Type": mime_type})
            payload = await self._request(
                "POST",
                f"{self.upload_url}/files",
                token,
                params={"uploadType": "multipart", "fields": FILE_FIELDS},
                data=writer,
            )
        return self._to_file(payload)

    async def download_file(self, token: str, file_id: str) -> bytes:
        return await self._request("GET", f"{self.base_url}/files/{file_id}", token, params={"alt": "media"}, expect="bytes")

    async def export_file(self, token: str, file_id: str, mime_type: str) -> bytes:
        return await self._request(
            "GET", f"{self.base_url}/files/{file_id}/export", token, params={"mimeType": mime_type}, expect="bytes"
        )

    async def delete_file(self, token: str, file_id: str) -> None:
        await self._request("DELETE", f"{self.base_url}/files/{file_id}", token, expect="none")

    async def rename_file(self, token: str, file_id: str, new_name: str) -> ProviderFile:
        payload = await self._request(
            "PATCH", f"{self.base_url}/files/{file_id}", token, params={"fields": FILE_FIELDS}, json={"name": new_name}
        )
        return self._to_file(payload)

    async def create_folder(self, token: str, name: str, parent_id: Optional[str] = None) -> ProviderFile:
        body: Dict[str, Any] = {"name": name, "mimeType": DRIVE_FOLDER_MIME_TYPE}
        if parent_id:
            body["parents"] = [parent_id]
        payload = await self._request("POST", f"{self.base_url}/files", token, params={"fields": FILE_FIELDS}, json=body)
        return self._to_file(payload)

    async def get_storage_quota(self, token: str) -> StorageQuota:
        payload = await self._request("GET", f"{self.base_url}/about", token, params={"fields": "storageQuota"})
        quota = payload.get("storageQuota") or {}
        return StorageQuota(total=to_int(quota.get("limit")), used=to_int(quota.get("usage")))

    async def resolve_web_link(self, token: str, file_id: str, stored_url: Optional[str] = None) -> Optional[str]:
        return stored_url or f"https://drive.google.com/file/d/{file_id}/preview"

    async def get_user_email(self, token: str) -> str:
        payload = await self._request("GET", f"{self.base_url}/about", token, params={"fields": "user"})
        return (payload.get("user") or {}).get("emailAddress")

    async def exchange_authorization_code(self, code: str, redirect_uri: Optional[str] = None) -> TokenGrant:
        return await self._token_request(settings.GOOGLE_TOKEN_URI, {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": settings.GOOGLE_CLIENT_ID or "",
            "client_secret": settings.GOOGLE_CLIENT_SECRET or "",
            "redirect_uri": redirect_uri or settings.GOOGLE_REDIRECT_URI or "",
        })

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        return await self._token_request(settings.GOOGLE_TOKEN_URI, {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": settings.GOOGLE_CLIENT_ID or "",
            "client_secret": settings.GOOGLE_CLIENT_SECRET or "",
        })
