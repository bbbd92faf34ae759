"""
Base model shared by every table.
"""
import uuid
from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from app.core.time_utils import utc_now


class BaseModel(SQLModel):
    """Surrogate UUID primary key plus creation/update timestamps."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),
        nullable=False,
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),
        nullable=False,
    )

    def touch(self) -> None:
        """Bump updated_at before a write."""
        self.updated_at = utc_now()
