# fleetauth/models/identity.py

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.types import TypeDecorator
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetimes in UTC; SQLite drops the offset, so it is restored on load."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    """Declarative base for the relational store tables."""
    pass


class IdentityORM(Base):
    """Account row. Sessions, blobs and derived documents reference it by id."""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    picture: Mapped[Optional[str]] = mapped_column(Text)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(255))
    stripe_card_id: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class ArticleORM(Base):
    """Authored content; only its picture matters to the fabric."""
    __tablename__ = "articles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    author_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    picture: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class Identity(BaseModel):
    """Read model returned to handlers; detached from the ORM session."""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    picture: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_card_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def public_view(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "picture": self.picture,
            "hasPaymentCard": self.stripe_card_id is not None,
        }


class MediaSnapshot(BaseModel):
    """Blob references owned by an identity, captured before its row is deleted."""
    identity_id: int
    profile_picture: Optional[str] = None
    article_pictures: List[str] = Field(default_factory=list)

    @property
    def urls(self) -> List[str]:
        """Profile picture first, then article pictures; duplicates dropped."""
        seen = []
        for url in [self.profile_picture, *self.article_pictures]:
            if url and url not in seen:
                seen.append(url)
        return seen
