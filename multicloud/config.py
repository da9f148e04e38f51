"""
Configuration management using Pydantic Settings.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
    DATABASE_URL: str = "sqlite+aiosqlite:///./multicloud.db"
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"
    SLACK_WEBHOOK_URL: Optional[str] = None

    # Google Drive OAuth client
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_CLIENT_SECRET: Optional[str] = None
    GOOGLE_REDIRECT_URI: Optional[str] = None
    GOOGLE_TOKEN_URI: str = "https://oauth2.googleapis.com/token"
    GOOGLE_DRIVE_BASE_URL: str = "https://www.googleapis.com/drive/v3"
    GOOGLE_UPLOAD_BASE_URL: str = "https://www.googleapis.com/upload/drive/v3"
    DRIVE_LIST_PAGE_SIZE: int = 100

    # Microsoft Graph / OneDrive OAuth client (delegated, not app-only)
    MS_CLIENT_ID: Optional[str] = None
    MS_CLIENT_SECRET: Optional[str] = None
    MS_REDIRECT_URI: Optional[str] = None
    MS_TOKEN_URI: str = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
    MS_SCOPE: str = "offline_access Files.ReadWrite.All User.Read"
    MS_GRAPH_BASE_URL: str = "https://graph.microsoft.com/v1.0"
    GRAPH_SIMPLE_UPLOAD_MAX_BYTES: int = 4 * 1024 * 1024
    # Graph requires upload session chunks to be multiples of 320 KiB
    GRAPH_UPLOAD_CHUNK_BYTES: int = 16 * 320 * 1024

    # Dropbox OAuth client
    DROPBOX_CLIENT_ID: Optional[str] = None
    DROPBOX_CLIENT_SECRET: Optional[str] = None
    DROPBOX_REDIRECT_URI: Optional[str] = None
    DROPBOX_TOKEN_URI: str = "https://api.dropboxapi.com/oauth2/token"
    DROPBOX_API_BASE_URL: str = "https://api.dropboxapi.com/2"
    DROPBOX_CONTENT_BASE_URL: str = "https://content.dropboxapi.com/2"

    # Token lifecycle policy
    TOKEN_REFRESH_SKEW_SECONDS: int = 60
    TOKEN_EXPIRY_BUFFER_SECONDS: int = 60
    DEFAULT_TOKEN_TTL_SECONDS: int = 3600

    # Preview / transport policy
    INLINE_PREVIEW_MAX_BYTES: int = 6 * 1024 * 1024
    PROVIDER_HTTP_TIMEOUT_SECONDS: float = 60.0


settings = Settings()
