from collections import Counter
from datetime import date
from typing import Iterable, List, Optional, Sequence

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel
from sqlmodel import Session, select

from .model import Diary, Dream, DreamKeyword

MONTHS_WINDOW = 12
TOP_EMOTIONS = 10
TOP_KEYWORDS = 20


class MonthlyCount(BaseModel):
    month: str  # YYYY-MM
    diary: int = 0
    dream: int = 0


class TagCount(BaseModel):
    tag: str
    count: int


class KeywordCount(BaseModel):
    keyword: str
    count: int


class Totals(BaseModel):
    diaries: int
    dreams: int


class Stats(BaseModel):
    monthly: List[MonthlyCount]
    emotions: List[TagCount]
    keywords: List[KeywordCount]
    totals: Totals


def window_start(today: date) -> date:
    """First day of the oldest month in the rolling window."""
    return (today + relativedelta(months=-(MONTHS_WINDOW - 1))).replace(day=1)


def build_stats(
    diary_rows: Sequence[Diary],
    dream_dates: Iterable[date],
    keywords: Iterable[str],
    today: date,
) -> Stats:
    months = [
        (today + relativedelta(months=-i)).strftime("%Y-%m")
        for i in range(MONTHS_WINDOW - 1, -1, -1)
    ]
    monthly = {m: MonthlyCount(month=m) for m in months}

    dream_dates = list(dream_dates)
    for d in diary_rows:
        key = d.date.strftime("%Y-%m")
        if key in monthly:
            monthly[key].diary += 1
    for d in dream_dates:
        key = d.strftime("%Y-%m")
        if key in monthly:
            monthly[key].dream += 1

    # Counter.most_common keeps first-seen order for ties
    emotions = Counter(tag for d in diary_rows for tag in (d.emotion_tags or []))
    keyword_counts = Counter(keywords)

    return Stats(
        monthly=[monthly[m] for m in months],
        emotions=[TagCount(tag=t, count=c) for t, c in emotions.most_common(TOP_EMOTIONS)],
        keywords=[KeywordCount(keyword=k, count=c) for k, c in keyword_counts.most_common(TOP_KEYWORDS)],
        totals=Totals(diaries=len(diary_rows), dreams=len(dream_dates)),
    )


def user_stats(session: Session, user_id: int, today: Optional[date] = None) -> Stats:
    today = today or date.today()
    start = window_start(today)

    diaries = session.exec(
        select(Diary)
        .where(Diary.user_id == user_id, Diary.date >= start)
        .order_by(Diary.date)
    ).all()
    dream_dates = session.exec(
        select(Dream.date)
        .where(Dream.user_id == user_id, Dream.date >= start)
        .order_by(Dream.date)
    ).all()
    keywords = session.exec(
        select(DreamKeyword.keyword)
        .where(DreamKeyword.user_id == user_id)
        .order_by(DreamKeyword.id)
    ).all()

    return build_stats(list(diaries), dream_dates, keywords, today)
