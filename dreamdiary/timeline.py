"""
Timeline aggregation over diary and dream entries.

Each source is filtered and capped at ``page_size`` on its own, then the two
result sets are merged and re-ranked by (date desc, created_at desc) before
truncation. The cursor is the created_at of the last item handed out; the next
page only sees strictly older rows. Because the cap is applied per source
before the merge, a page can come back short when one source is sparse.
"""

import calendar
import logging
from datetime import date, datetime, timedelta
from typing import Iterable, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy import func, or_
from sqlmodel import Session, select

from .model import (
    Diary,
    Dream,
    DreamKeyword,
    EntryType,
    TimelineItem,
    TimelinePage,
    Wishlist,
    WishlistStatus,
)
from .records import get_dream_keywords

logger = logging.getLogger(__name__)


class TimelineFilters(BaseModel):
    type: Literal["diary", "dream", "both"] = "both"
    keyword: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    emotion_tags: List[str] = Field(default_factory=list)
    dream_keywords: List[str] = Field(default_factory=list)

    @property
    def wants_diaries(self) -> bool:
        return self.type in ("diary", "both")

    @property
    def wants_dreams(self) -> bool:
        return self.type in ("dream", "both")


def diary_item(diary: Diary) -> TimelineItem:
    return TimelineItem(
        id=diary.id,
        type=EntryType.DIARY,
        date=diary.date,
        content=diary.content,
        summary=diary.summary,
        emotion_tags=diary.emotion_tags,
        created_at=diary.created_at,
    )


def dream_item(dream: Dream, keywords: List[str]) -> TimelineItem:
    return TimelineItem(
        id=dream.id,
        type=EntryType.DREAM,
        date=dream.date,
        content=dream.content,
        dream_keywords=keywords,
        fortune_result=dream.fortune_result,
        created_at=dream.created_at,
    )


def _timeline_order(item: TimelineItem) -> Tuple[date, datetime]:
    return item.date, item.created_at


def merge_page(
    diary_items: Iterable[TimelineItem],
    dream_items: Iterable[TimelineItem],
    page_size: int,
) -> TimelinePage:
    """Re-rank both sources together and cut the page."""
    if page_size < 1:
        raise ValueError("page_size must be at least 1")

    items = sorted([*diary_items, *dream_items], key=_timeline_order, reverse=True)
    page = items[:page_size]
    next_cursor = page[-1].created_at if len(page) == page_size else None
    return TimelinePage(items=page, next_cursor=next_cursor)


# --------- per-source queries ---------

def query_diary_items(
    session: Session,
    user_id: int,
    page_size: int,
    cursor: Optional[datetime],
    filters: TimelineFilters,
) -> List[TimelineItem]:
    stmt = select(Diary).where(Diary.user_id == user_id)

    if cursor is not None:
        stmt = stmt.where(Diary.created_at < cursor)
    if filters.date_from:
        stmt = stmt.where(Diary.date >= filters.date_from)
    if filters.date_to:
        stmt = stmt.where(Diary.date <= filters.date_to)
    if filters.keyword:
        stmt = stmt.where(or_(
            Diary.content.icontains(filters.keyword, autoescape=True),
            Diary.summary.icontains(filters.keyword, autoescape=True),
        ))
    if filters.emotion_tags:
        # any-of against the JSON array column
        tags = func.json_each(Diary.emotion_tags).table_valued("value")
        stmt = stmt.where(
            select(tags.c.value).where(tags.c.value.in_(filters.emotion_tags)).exists()
        )

    stmt = stmt.order_by(Diary.date.desc(), Diary.created_at.desc()).limit(page_size)
    return [diary_item(d) for d in session.exec(stmt).all()]


def query_dream_items(
    session: Session,
    user_id: int,
    page_size: int,
    cursor: Optional[datetime],
    filters: TimelineFilters,
) -> List[TimelineItem]:
    stmt = select(Dream).where(Dream.user_id == user_id)

    if cursor is not None:
        stmt = stmt.where(Dream.created_at < cursor)
    if filters.date_from:
        stmt = stmt.where(Dream.date >= filters.date_from)
    if filters.date_to:
        stmt = stmt.where(Dream.date <= filters.date_to)
    if filters.keyword:
        stmt = stmt.where(Dream.content.icontains(filters.keyword, autoescape=True))
    if filters.dream_keywords:
        stmt = stmt.where(Dream.id.in_(
            select(DreamKeyword.dream_id).where(DreamKeyword.keyword.in_(filters.dream_keywords))
        ))

    stmt = stmt.order_by(Dream.date.desc(), Dream.created_at.desc()).limit(page_size)
    dreams = session.exec(stmt).all()
    keywords = get_dream_keywords(session, [d.id for d in dreams])
    return [dream_item(d, keywords[d.id]) for d in dreams]


def fetch_page(
    session: Session,
    user_id: int,
    page_size: int,
    cursor: Optional[datetime] = None,
    filters: Optional[TimelineFilters] = None,
) -> TimelinePage:
    if page_size < 1:
        raise ValueError("page_size must be at least 1")
    filters = filters or TimelineFilters()

    diaries: List[TimelineItem] = []
    dreams: List[TimelineItem] = []
    if filters.wants_diaries:
        diaries = query_diary_items(session, user_id, page_size, cursor, filters)
    if filters.wants_dreams:
        dreams = query_dream_items(session, user_id, page_size, cursor, filters)

    page = merge_page(diaries, dreams, page_size)
    logger.debug(
        "timeline user=%s cursor=%s diaries=%d dreams=%d returned=%d",
        user_id, cursor, len(diaries), len(dreams), len(page.items),
    )
    return page


# --------- aggregates ---------

def distinct_emotion_tags(session: Session, user_id: int) -> List[str]:
    rows = session.exec(
        select(Diary.emotion_tags).where(
            Diary.user_id == user_id,
            Diary.emotion_tags.is_not(None),
        )
    ).all()
    tags = set()
    for row in rows:
        tags.update(row or [])
    return sorted(tags)


def distinct_dream_keywords(session: Session, user_id: int) -> List[str]:
    rows = session.exec(
        select(DreamKeyword.keyword).where(DreamKeyword.user_id == user_id).distinct()
    ).all()
    return sorted(set(rows))


def available_months(session: Session, user_id: int) -> List[Tuple[int, int]]:
    """(year, month) pairs with at least one diary or dream, newest first."""
    diary_dates = session.exec(select(Diary.date).where(Diary.user_id == user_id)).all()
    dream_dates = session.exec(select(Dream.date).where(Dream.user_id == user_id)).all()
    months = {(d.year, d.month) for d in [*diary_dates, *dream_dates]}
    return sorted(months, reverse=True)


class CalendarDiary(BaseModel):
    date: date
    summary: Optional[str] = None
    emotion_tags: Optional[List[str]] = None


class CalendarDream(BaseModel):
    date: date
    keywords: List[str] = Field(default_factory=list)


class MonthRecords(BaseModel):
    diaries: List[CalendarDiary]
    dreams: List[CalendarDream]
    achieved: List[datetime]


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def month_records(session: Session, user_id: int, year: int, month: int) -> MonthRecords:
    """Everything the month calendar needs in one pass."""
    start, end = month_bounds(year, month)

    diaries = session.exec(
        select(Diary)
        .where(Diary.user_id == user_id, Diary.date >= start, Diary.date <= end)
        .order_by(Diary.date)
    ).all()
    dreams = session.exec(
        select(Dream)
        .where(Dream.user_id == user_id, Dream.date >= start, Dream.date <= end)
        .order_by(Dream.date)
    ).all()
    keywords = get_dream_keywords(session, [d.id for d in dreams])

    achieved_from = datetime.combine(start, datetime.min.time())
    achieved_until = datetime.combine(end + timedelta(days=1), datetime.min.time())
    achieved = session.exec(
        select(Wishlist.achieved_at)
        .where(
            Wishlist.user_id == user_id,
            Wishlist.status == WishlistStatus.ACHIEVED,
            Wishlist.achieved_at >= achieved_from,
            Wishlist.achieved_at < achieved_until,
        )
        .order_by(Wishlist.achieved_at)
    ).all()

    return MonthRecords(
        diaries=[CalendarDiary(date=d.date, summary=d.summary, emotion_tags=d.emotion_tags) for d in diaries],
        dreams=[CalendarDream(date=d.date, keywords=keywords[d.id]) for d in dreams],
        achieved=list(achieved),
    )
