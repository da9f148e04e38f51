# multicloud/db/models.py
"""
SQLAlchemy models for linked cloud accounts and their cached file metadata.
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, DateTime, Boolean, JSON, ForeignKey, Text, Integer, BigInteger,
    Enum, UniqueConstraint, Index,
)
from multicloud.db.session import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Provider(str, enum.Enum):
    DRIVE = "DRIVE"
    GRAPH = "GRAPH"
    DROPBOX = "DROPBOX"


class ActivityType(str, enum.Enum):
    UPLOAD = "UPLOAD"
    DOWNLOAD = "DOWNLOAD"
    DELETE = "DELETE"
    RENAME = "RENAME"
    MOVE = "MOVE"
    COPY = "COPY"
    CREATE_FOLDER = "CREATE_FOLDER"
    VIEW = "VIEW"
    CONNECT = "CONNECT"
    DISCONNECT = "DISCONNECT"


class ActivityStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", "account_email", name="uq_account_identity"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    provider = Column(Enum(Provider, native_enum=False, length=16), nullable=False)
    account_email = Column(String, nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    token_expiry = Column(DateTime(timezone=True), nullable=True)
    # Bumped on every token write; guards concurrent refreshes
    token_version = Column(Integer, nullable=False, default=0)
    total_storage = Column(BigInteger, nullable=True)
    used_storage = Column(BigInteger, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    connected_at = Column(DateTime(timezone=True), default=utcnow)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)


class FileRecord(Base):
    __tablename__ = "file_records"
    __table_args__ = (
        UniqueConstraint("account_id", "provider_file_id", name="uq_file_provider_id"),
        Index("ix_file_records_user_trashed", "user_id", "trashed"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    provider_file_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    path = Column(String, nullable=True)
    mime_type = Column(String, nullable=True)
    size = Column(BigInteger, nullable=True)
    is_folder = Column(Boolean, nullable=False, default=False)
    parent_id = Column(String, nullable=True)
    thumbnail_url = Column(Text, nullable=True)
    web_view_url = Column(Text, nullable=True)
    starred = Column(Boolean, nullable=False, default=False)
    trashed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=True)
    modified_at = Column(DateTime(timezone=True), nullable=True)
    last_accessed_at = Column(DateTime(timezone=True), nullable=True)


class ActivityLog(Base):
    __tablename__ = "activity_logs"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=True, index=True)
    account_id = Column(Integer, nullable=True)
    file_id = Column(Integer, nullable=True)
    action = Column(String, nullable=False)
    status = Column(String, nullable=False, default=ActivityStatus.SUCCESS.value)
    file_name = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    request_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)


class ErrorLog(Base):
    __tablename__ = "error_logs"
    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(String, nullable=True)
    user_id = Column(Integer, nullable=True)
    account_id = Column(Integer, nullable=True)
    component = Column(String, nullable=True)
    function = Column(String, nullable=True)
    severity = Column(String, nullable=False, default="ERROR")
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    stacktrace = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
