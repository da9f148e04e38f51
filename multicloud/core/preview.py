"""Per-file preview strategy.

The resolver answers one question for a cached file: can the browser render
it inline (bytes shipped base64-encoded), should it open a provider link, or
is there nothing to show? Workspace-native documents are exported first since
they have no raw bytes of their own.
"""
from __future__ import annotations

import base64
import enum
from dataclasses import dataclass
from typing import Optional

from multicloud.config import settings
from multicloud.core.exceptions import GatewayError
from multicloud.core.metadata_store import MetadataStore
from multicloud.core.token_lifecycle import TokenLifecycleExecutor
from multicloud.db.models import Account, FileRecord
from multicloud.monitoring.logger import log
from multicloud.providers.base import DEFAULT_MIME_TYPE

SIMPLE_TEXT_MIME_TYPES = frozenset({
    "application/json",
    "application/xml",
    "application/javascript",
    "text/csv",
    "text/html",
    "text/xml",
})

MSG_FOLDER = "Folders cannot be previewed"
MSG_EXTERNAL = "Preview will open in a new browser tab."
MSG_TOO_LARGE = "Document is too large to preview inline. Open in a new tab."
MSG_UNSUPPORTED = "Preview is not supported for this file type."
MSG_FALLBACK = "Preview is not available inline. Please open in a new tab."
MSG_EMPTY = "Preview is not available for this file."


class PreviewMode(str, enum.Enum):
    INLINE = "INLINE"
    EXTERNAL_LINK = "EXTERNAL_LINK"
    UNSUPPORTED = "UNSUPPORTED"


class RenderHint(str, enum.Enum):
    IMAGE = "IMAGE"
    PDF = "PDF"
    TEXT = "TEXT"
    BINARY = "BINARY"
    UNKNOWN = "UNKNOWN"


@dataclass
class PreviewResult:
    mode: PreviewMode
    message: Optional[str] = None
    mime_type: Optional[str] = None
    inline_base64: Optional[str] = None
    url: Optional[str] = None
    render_as: Optional[RenderHint] = None
    file_id: Optional[int] = None
    file_name: Optional[str] = None
    provider: Optional[str] = None
    size: Optional[int] = None
    thumbnail_url: Optional[str] = None


def render_hint(mime_type: Optional[str]) -> RenderHint:
    if not mime_type:
        return RenderHint.UNKNOWN
    mime = mime_type.lower()
    if mime.startswith("image/"):
        return RenderHint.IMAGE
    if mime == "application/pdf":
        return RenderHint.PDF
    if mime.startswith("text/") or mime in SIMPLE_TEXT_MIME_TYPES:
        return RenderHint.TEXT
    return RenderHint.BINARY


def is_inline_candidate(record: FileRecord) -> bool:
    if not record.mime_type:
        return False
    if record.size is not None and record.size > settings.INLINE_PREVIEW_MAX_BYTES:
        return False
    return render_hint(record.mime_type) in (RenderHint.IMAGE, RenderHint.PDF, RenderHint.TEXT)


class PreviewResolver:
    def __init__(self, executor: TokenLifecycleExecutor, store: MetadataStore):
        self.executor = executor
        self.store = store

    async def resolve(self, account: Account, record: FileRecord) -> PreviewResult:
        result = await self._decide(account, record)
        result.file_id = record.id
        result.file_name = record.name
        result.provider = account.provider.value
        result.size = record.size
        result.thumbnail_url = record.thumbnail_url
        if result.mime_type is None:
            result.mime_type = record.mime_type
        await self.store.touch(record)
        return result

    async def _decide(self, account: Account, record: FileRecord) -> PreviewResult:
        if record.is_folder:
            return PreviewResult(PreviewMode.UNSUPPORTED, MSG_FOLDER)

        adapter = self.executor.adapter_for(account)
        profile = adapter.export_profile(record.mime_type)
        if profile is not None:
            return await self._exported(account, record, profile.mime_type)

        try:
            if is_inline_candidate(record):
                content = await self.executor.execute(
                    account, lambda token: adapter.download_file(token, record.provider_file_id)
                )
                if len(content) <= settings.INLINE_PREVIEW_MAX_BYTES:
                    return self._inline(content, record.mime_type or DEFAULT_MIME_TYPE)
            url = await self._external_url(account, record)
        except GatewayError as e:
            log("WARNING", f"Inline preview failed, trying external link: {e.message}", component="preview", account_id=account.id)
            url = await self._fallback_url(account, record)
            if url is None:
                raise
            return PreviewResult(PreviewMode.EXTERNAL_LINK, MSG_FALLBACK, url=url)

        if url:
            return PreviewResult(PreviewMode.EXTERNAL_LINK, MSG_EXTERNAL, url=url)
        return PreviewResult(PreviewMode.UNSUPPORTED, MSG_UNSUPPORTED)

    async def _exported(self, account: Account, record: FileRecord, export_mime: str) -> PreviewResult:
        adapter = self.executor.adapter_for(account)
        try:
            content = await self.executor.execute(
                account, lambda token: adapter.export_file(token, record.provider_file_id, export_mime)
            )
        except GatewayError as e:
            log("WARNING", f"Export for preview failed: {e.message}", component="preview", account_id=account.id)
            url = await self._fallback_url(account, record)
            if url is None:
                return PreviewResult(PreviewMode.UNSUPPORTED, MSG_UNSUPPORTED)
            return PreviewResult(PreviewMode.EXTERNAL_LINK, MSG_FALLBACK, url=url)

        if len(content) > settings.INLINE_PREVIEW_MAX_BYTES:
            url = await self._fallback_url(account, record)
            if url is None:
                return PreviewResult(PreviewMode.UNSUPPORTED, MSG_UNSUPPORTED)
            return PreviewResult(PreviewMode.EXTERNAL_LINK, MSG_TOO_LARGE, url=url)
        return self._inline(content, export_mime)

    @staticmethod
    def _inline(content: bytes, mime_type: str) -> PreviewResult:
        if not content:
            return PreviewResult(PreviewMode.UNSUPPORTED, MSG_EMPTY)
        return PreviewResult(
            PreviewMode.INLINE,
            mime_type=mime_type,
            inline_base64=base64.b64encode(content).decode("ascii"),
            render_as=render_hint(mime_type),
        )

    async def _external_url(self, account: Account, record: FileRecord) -> Optional[str]:
        if record.web_view_url:
            return record.web_view_url
        adapter = self.executor.adapter_for(account)
        return await self.executor.execute(
            account, lambda token: adapter.resolve_web_link(token, record.provider_file_id, record.web_view_url)
        )

    async def _fallback_url(self, account: Account, record: FileRecord) -> Optional[str]:
        try:
            return await self._external_url(account, record)
        except GatewayError as e:
            log("WARNING", f"Failed to build fallback preview URL: {e.message}", component="preview", account_id=account.id)
            return None
