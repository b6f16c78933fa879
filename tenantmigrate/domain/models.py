from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on Postgres, plain JSON elsewhere so local SQLite stores share the model.
JSONType = JSON().with_variant(JSONB(), "postgresql")


class SourceBase(DeclarativeBase):
    """Shared multi-user store the migration reads from."""


class CentralBase(DeclarativeBase):
    """Central directory of tenants."""


class TenantBase(DeclarativeBase):
    """Schema applied to every isolated tenant store."""


class TimestampColumns:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# Business columns shared by the source and tenant variants of each collection.


class MasterConfigColumns(TimestampColumns):
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String)
    phone_number_id: Mapped[str] = mapped_column(String)
    access_token: Mapped[str] = mapped_column(Text)
    verify_token: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class MessageColumns(TimestampColumns):
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[str | None] = mapped_column(String, nullable=True)
    to: Mapped[str | None] = mapped_column("to", String, nullable=True)
    from_: Mapped[str | None] = mapped_column("from", String, nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    media_type: Mapped[str | None] = mapped_column(String, nullable=True)
    media_url: Mapped[str | None] = mapped_column(String, nullable=True)
    direction: Mapped[str] = mapped_column(String, default="outgoing")
    status: Mapped[str | None] = mapped_column(String, nullable=True)


class GroupColumns(TimestampColumns):
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)


class ContactColumns(TimestampColumns):
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str] = mapped_column(String)
    place: Mapped[str | None] = mapped_column(String, nullable=True)
    last_message_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dob: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    anniversary: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AutoReplyColumns(TimestampColumns):
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    triggers: Mapped[list[str]] = mapped_column(JSONType, default=list)
    response: Mapped[str] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class QuickReplyColumns(TimestampColumns):
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    triggers: Mapped[list[str]] = mapped_column(JSONType, default=list)
    # Interactive button definitions, kept as the structured list the UI stored.
    buttons: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ChatLabelColumns(TimestampColumns):
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    phone: Mapped[str] = mapped_column(String)
    labels: Mapped[list[str]] = mapped_column(JSONType, default=list)
    manually_edited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class DocumentColumns(TimestampColumns):
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    filename: Mapped[str] = mapped_column(String)
    content: Mapped[str] = mapped_column(Text)


# Source store.


class SourceUser(TimestampColumns, SourceBase):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String, unique=True)
    name: Mapped[str] = mapped_column(String)
    # Already hashed by the application; migrated verbatim.
    password: Mapped[str] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    subscription_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    subscription_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    subscription_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class SourceMasterConfig(MasterConfigColumns, SourceBase):
    __tablename__ = "master_configs"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)


class SourceMessage(MessageColumns, SourceBase):
    __tablename__ = "whatsapp_messages"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)


class SourceGroup(GroupColumns, SourceBase):
    __tablename__ = "groups"

    # Group names are only unique per user in the shared store.
    name: Mapped[str] = mapped_column(String)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)


class SourceContact(ContactColumns, SourceBase):
    __tablename__ = "contacts"

    group_id: Mapped[int | None] = mapped_column(ForeignKey("groups.id"), nullable=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)


class SourceAutoReply(AutoReplyColumns, SourceBase):
    __tablename__ = "auto_replies"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)


class SourceQuickReply(QuickReplyColumns, SourceBase):
    __tablename__ = "quick_replies"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)


class SourceChatLabel(ChatLabelColumns, SourceBase):
    __tablename__ = "chat_labels"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)


class SourceDocument(DocumentColumns, SourceBase):
    __tablename__ = "documents"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)


# Central registry.


class TenantRecord(TimestampColumns, CentralBase):
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Source users.id; one directory row per migrated owner.
    source_owner_id: Mapped[int] = mapped_column(Integer, unique=True, index=True)
    email: Mapped[str] = mapped_column(String, unique=True)
    name: Mapped[str] = mapped_column(String)
    password: Mapped[str] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    subscription_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    subscription_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    subscription_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    db_name: Mapped[str] = mapped_column(String, unique=True)
    db_host: Mapped[str] = mapped_column(String, default="localhost")
    db_port: Mapped[int] = mapped_column(Integer, default=5432)
    db_user: Mapped[str] = mapped_column(String)
    db_password: Mapped[str] = mapped_column(String)


# Tenant store: same collections, ownership implicit.


class MasterConfig(MasterConfigColumns, TenantBase):
    __tablename__ = "master_configs"


class Message(MessageColumns, TenantBase):
    __tablename__ = "whatsapp_messages"


class Group(GroupColumns, TenantBase):
    __tablename__ = "groups"

    name: Mapped[str] = mapped_column(String, unique=True)


class Contact(ContactColumns, TenantBase):
    __tablename__ = "contacts"

    group_id: Mapped[int | None] = mapped_column(ForeignKey("groups.id"), nullable=True, index=True)


class AutoReply(AutoReplyColumns, TenantBase):
    __tablename__ = "auto_replies"


class QuickReply(QuickReplyColumns, TenantBase):
    __tablename__ = "quick_replies"


class ChatLabel(ChatLabelColumns, TenantBase):
    __tablename__ = "chat_labels"


class Document(DocumentColumns, TenantBase):
    __tablename__ = "documents"
