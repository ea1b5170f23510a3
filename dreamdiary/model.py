# dreamdiary/model.py
from datetime import datetime, date, timezone
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, UniqueConstraint
from sqlalchemy.types import JSON


def utcnow() -> datetime:
    # naive UTC; SQLite drops tzinfo on the way back anyway
    return datetime.now(timezone.utc).replace(tzinfo=None)


class WishlistStatus(str, Enum):
    PENDING = "pending"
    ACHIEVABLE = "achievable"
    ACHIEVED = "achieved"


class EntryType(str, Enum):
    DIARY = "diary"
    DREAM = "dream"


class FortuneStyle(str, Enum):
    JUNG = "jung"
    FREUD = "freud"
    COGNITIVE = "cognitive"


class VoiceFormatLevel(str, Enum):
    LIGHT = "light"
    THOROUGH = "thorough"
    BULLET = "bullet"


class UserProfile(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    nickname: Optional[str] = None
    birth_date: Optional[date] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserSettings(SQLModel, table=True):
    # keyed by the owning user, one row each
    id: int = Field(primary_key=True)
    voice_format_level: VoiceFormatLevel = Field(default=VoiceFormatLevel.LIGHT)
    fortune_style: FortuneStyle = Field(default=FortuneStyle.JUNG)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserAttribute(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "attribute_key"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    attribute_key: str
    attribute_value: Optional[float] = None
    text_value: Optional[str] = None
    boolean_value: Optional[bool] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Wishlist(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    title: str
    description: Optional[str] = None
    deadline: Optional[date] = None
    status: WishlistStatus = Field(default=WishlistStatus.PENDING)
    achieved_at: Optional[datetime] = None
    condition1_attribute: Optional[str] = None
    condition1_operator: Optional[str] = None
    condition1_value: Optional[float] = None
    condition2_attribute: Optional[str] = None
    condition2_operator: Optional[str] = None
    condition2_value: Optional[float] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Diary(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    date: date
    content: str
    summary: Optional[str] = None
    emotion_tags: Optional[List[str]] = Field(
        default=None,
        sa_column=Column(JSON(none_as_null=True))
    )
    content_updated_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Dream(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    date: date
    content: str
    fortune_result: Optional[str] = None
    fortune_style: Optional[FortuneStyle] = None
    fortune_at: Optional[datetime] = None
    content_updated_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class DreamKeyword(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    dream_id: int = Field(foreign_key="dream.id", index=True)
    user_id: int = Field(index=True)
    keyword: str
    created_at: datetime = Field(default_factory=utcnow)


class GlossaryItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    name: str
    description: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# read projections, never persisted

class TimelineItem(BaseModel):
    id: int
    type: EntryType
    date: date
    content: str
    summary: Optional[str] = None
    emotion_tags: Optional[List[str]] = None
    dream_keywords: Optional[List[str]] = None
    fortune_result: Optional[str] = None
    created_at: datetime


class TimelinePage(BaseModel):
    items: List[TimelineItem]
    next_cursor: Optional[datetime] = None
