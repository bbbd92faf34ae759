"""
Generic list models that provider data is normalized into.

ItemList ("Music", "Activity", ...) is global. Each user gets a UserList per
ItemList, and items are grouped by ListCategory within a list.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, Index, JSON

from app.models.base import BaseModel

JSONType = JSONB().with_variant(JSON, "sqlite")


class ItemList(BaseModel, table=True):
    """Global list type."""
    __tablename__ = "item_list"

    name: str = Field(sa_column=Column(String(100), nullable=False, unique=True, index=True))


class UserList(BaseModel, table=True):
    """A user's instance of a list type."""
    __tablename__ = "user_list"

    user_id: str = Field(sa_column=Column(String(255), nullable=False, index=True))
    list_id: uuid.UUID = Field(
        sa_column=Column(ForeignKey("item_list.id", ondelete="CASCADE"), nullable=False)
    )

    __table_args__ = (
        UniqueConstraint("user_id", "list_id", name="uq_user_list"),
    )


class ListCategory(BaseModel, table=True):
    """Category within a list type, shared across users."""
    __tablename__ = "list_category"

    list_id: uuid.UUID = Field(
        sa_column=Column(ForeignKey("item_list.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    name: str = Field(sa_column=Column(String(150), nullable=False))

    __table_args__ = (
        UniqueConstraint("list_id", "name", name="uq_list_category_name"),
    )


class ListItem(BaseModel, table=True):
    """
    One normalized record from a provider.

    The natural key (user_list_id, external_provider, external_type,
    external_id) identifies the upstream record; re-syncing the same record
    updates this row instead of inserting a duplicate.
    """
    __tablename__ = "list_item"

    list_id: uuid.UUID = Field(
        sa_column=Column(ForeignKey("item_list.id", ondelete="CASCADE"), nullable=False)
    )
    user_list_id: uuid.UUID = Field(
        sa_column=Column(ForeignKey("user_list.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    category_id: Optional[uuid.UUID] = Field(
        default=None,
        sa_column=Column(ForeignKey("list_category.id", ondelete="SET NULL"), nullable=True)
    )
    title: str = Field(sa_column=Column(String(500), nullable=False))
    attributes: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONType, nullable=False))
    attribute_types: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONType, nullable=False))

    external_provider: str = Field(sa_column=Column(String(50), nullable=False))
    external_type: str = Field(sa_column=Column(String(50), nullable=False))
    external_id: str = Field(sa_column=Column(String(255), nullable=False))
    occurred_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint(
            "user_list_id", "external_provider", "external_type", "external_id",
            name="uq_list_item_natural_key",
        ),
        Index("idx_list_item_provider", "external_provider", "external_type"),
    )
