"""
Point lookups and writes for users, settings, glossary, diaries and dreams.
Lookups return None when no row matches; store errors propagate.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from sqlalchemy import delete
from sqlmodel import Session, select

from .model import (
    Diary,
    Dream,
    DreamKeyword,
    FortuneStyle,
    GlossaryItem,
    UserAttribute,
    UserProfile,
    UserSettings,
    VoiceFormatLevel,
    Wishlist,
    utcnow,
)

logger = logging.getLogger(__name__)


class DreamEntry(NamedTuple):
    dream: Dream
    keywords: List[str]


def _apply(row, updates: Dict[str, Any]):
    for name, value in updates.items():
        setattr(row, name, value)
    row.updated_at = utcnow()


# --------- users ---------

def get_user_profile(session: Session, user_id: int) -> Optional[UserProfile]:
    return session.get(UserProfile, user_id)


def create_user_profile(
    session: Session,
    birth_date: Optional[date],
    nickname: Optional[str] = None,
    voice_format_level: Optional[VoiceFormatLevel] = None,
    fortune_style: Optional[FortuneStyle] = None,
) -> UserProfile:
    """Create the profile together with its settings row."""
    profile = UserProfile(nickname=nickname, birth_date=birth_date)
    session.add(profile)
    session.flush()
    session.add(UserSettings(
        id=profile.id,
        voice_format_level=voice_format_level or VoiceFormatLevel.LIGHT,
        fortune_style=fortune_style or FortuneStyle.JUNG,
    ))
    session.commit()
    session.refresh(profile)
    return profile


def update_user_profile(session: Session, profile: UserProfile, updates: Dict[str, Any]) -> UserProfile:
    _apply(profile, updates)
    session.add(profile)
    session.commit()
    session.refresh(profile)
    return profile


def list_user_ids(session: Session) -> List[int]:
    return list(session.exec(select(UserProfile.id).order_by(UserProfile.id)).all())


def delete_user(session: Session, profile: UserProfile) -> None:
    """Remove the account and everything it owns, children first, in one commit."""
    user_id = profile.id
    session.exec(delete(DreamKeyword).where(DreamKeyword.user_id == user_id))
    session.exec(delete(Dream).where(Dream.user_id == user_id))
    session.exec(delete(Diary).where(Diary.user_id == user_id))
    session.exec(delete(Wishlist).where(Wishlist.user_id == user_id))
    session.exec(delete(GlossaryItem).where(GlossaryItem.user_id == user_id))
    session.exec(delete(UserAttribute).where(UserAttribute.user_id == user_id))
    session.exec(delete(UserSettings).where(UserSettings.id == user_id))
    session.delete(profile)
    session.commit()
    logger.info("user %s deleted with all records", user_id)


# --------- settings ---------

def get_user_settings(session: Session, user_id: int) -> Optional[UserSettings]:
    return session.get(UserSettings, user_id)


def update_user_settings(session: Session, user_settings: UserSettings, updates: Dict[str, Any]) -> UserSettings:
    _apply(user_settings, updates)
    session.add(user_settings)
    session.commit()
    session.refresh(user_settings)
    return user_settings


# --------- glossary ---------

def get_glossary(session: Session, user_id: int) -> List[GlossaryItem]:
    return list(session.exec(
        select(GlossaryItem)
        .where(GlossaryItem.user_id == user_id)
        .order_by(GlossaryItem.created_at.desc(), GlossaryItem.id.desc())
    ).all())


def get_glossary_item(session: Session, item_id: int) -> Optional[GlossaryItem]:
    return session.get(GlossaryItem, item_id)


def create_glossary_item(session: Session, user_id: int, name: str, description: str = "") -> GlossaryItem:
    item = GlossaryItem(user_id=user_id, name=name, description=description)
    session.add(item)
    session.commit()
    session.refresh(item)
    return item


def update_glossary_item(session: Session, item: GlossaryItem, updates: Dict[str, Any]) -> GlossaryItem:
    _apply(item, updates)
    session.add(item)
    session.commit()
    session.refresh(item)
    return item


def delete_glossary_item(session: Session, item: GlossaryItem) -> None:
    session.delete(item)
    session.commit()


# --------- diaries ---------

def get_diary_by_date(session: Session, user_id: int, day: date) -> Optional[Diary]:
    return session.exec(
        select(Diary).where(Diary.user_id == user_id, Diary.date == day)
    ).first()


def create_diary(
    session: Session,
    user_id: int,
    day: date,
    content: str,
    summary: Optional[str] = None,
    emotion_tags: Optional[List[str]] = None,
) -> Diary:
    diary = Diary(
        user_id=user_id,
        date=day,
        content=content,
        summary=summary,
        emotion_tags=emotion_tags,
        content_updated_at=utcnow(),
    )
    session.add(diary)
    session.commit()
    session.refresh(diary)
    return diary


def update_diary(session: Session, diary: Diary, updates: Dict[str, Any]) -> Diary:
    if "content" in updates:
        updates = {**updates, "content_updated_at": utcnow()}
    _apply(diary, updates)
    session.add(diary)
    session.commit()
    session.refresh(diary)
    return diary


def delete_diary(session: Session, diary: Diary) -> None:
    session.delete(diary)
    session.commit()


# --------- dreams ---------

def get_dream_keywords(session: Session, dream_ids: Iterable[int]) -> Dict[int, List[str]]:
    ids = list(dream_ids)
    out: Dict[int, List[str]] = {i: [] for i in ids}
    if not ids:
        return out
    rows = session.exec(
        select(DreamKeyword)
        .where(DreamKeyword.dream_id.in_(ids))
        .order_by(DreamKeyword.id)
    ).all()
    for r in rows:
        out[r.dream_id].append(r.keyword)
    return out


def get_dream_by_date(session: Session, user_id: int, day: date) -> Optional[DreamEntry]:
    dream = session.exec(
        select(Dream).where(Dream.user_id == user_id, Dream.date == day)
    ).first()
    if not dream:
        return None
    return DreamEntry(dream, get_dream_keywords(session, [dream.id])[dream.id])


def create_dream(session: Session, user_id: int, day: date, content: str) -> Dream:
    dream = Dream(user_id=user_id, date=day, content=content, content_updated_at=utcnow())
    session.add(dream)
    session.commit()
    session.refresh(dream)
    return dream


def update_dream(session: Session, dream: Dream, updates: Dict[str, Any]) -> Dream:
    if "content" in updates:
        updates = {**updates, "content_updated_at": utcnow()}
    if updates.get("fortune_result") is not None and "fortune_at" not in updates:
        updates = {**updates, "fortune_at": utcnow()}
    _apply(dream, updates)
    session.add(dream)
    session.commit()
    session.refresh(dream)
    return dream


def delete_dream(session: Session, dream: Dream) -> None:
    session.exec(delete(DreamKeyword).where(DreamKeyword.dream_id == dream.id))
    session.delete(dream)
    session.commit()


def replace_dream_keywords(session: Session, dream: Dream, keywords: Iterable[str]) -> List[str]:
    """Delete the dream's keywords and insert the new set (deduped, order kept)."""
    cleaned: List[str] = []
    for k in keywords:
        k = k.strip()
        if k and k not in cleaned:
            cleaned.append(k)

    session.exec(delete(DreamKeyword).where(DreamKeyword.dream_id == dream.id))
    for k in cleaned:
        session.add(DreamKeyword(dream_id=dream.id, user_id=dream.user_id, keyword=k))
    session.commit()
    return cleaned
