import logging
from datetime import date, datetime
from typing import List, Optional

from dateutil.parser import isoparse
from fastapi import Depends, FastAPI, HTTPException, Path, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import SQLModel, Session

from .attributes import (
    ATTRIBUTE_DEFINITIONS,
    InvalidAttribute,
    coerce_value,
    conditionable_definitions,
    delete_user_attribute,
    get_attribute_view,
    get_user_attributes,
    upsert_user_attribute,
    value_from_row,
)
from .conditions import parse_operator
from .model import FortuneStyle, VoiceFormatLevel, Wishlist
from .records import (
    create_diary,
    create_dream,
    create_glossary_item,
    create_user_profile,
    delete_diary,
    delete_dream,
    delete_glossary_item,
    delete_user,
    get_diary_by_date,
    get_dream_by_date,
    get_glossary,
    get_glossary_item,
    get_user_profile,
    get_user_settings,
    replace_dream_keywords,
    update_diary,
    update_dream,
    update_glossary_item,
    update_user_profile,
    update_user_settings,
)
from .scheduler import start_scheduler
from .settings import settings, engine
from .stats import user_stats
from .timeline import (
    TimelineFilters,
    available_months,
    distinct_dream_keywords,
    distinct_emotion_tags,
    fetch_page,
    month_records,
)
from .wishlist import (
    achieve,
    create_wishlist,
    delete_wishlist,
    evaluate_wishlist,
    get_wishlist,
    get_wishlists,
    refresh_user_statuses,
    unachieve,
    update_wishlist,
    user_age,
)

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# create app
app = FastAPI(title="Dream Diary Backend")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


def get_session():
    with Session(engine) as s:
        yield s


# lifecycle
@app.on_event("startup")
def on_start():
    SQLModel.metadata.create_all(engine)
    if settings.ENABLE_SCHEDULER:
        app.state.scheduler = start_scheduler()


@app.on_event("shutdown")
def on_stop():
    sched = getattr(app.state, "scheduler", None)
    if sched:
        sched.shutdown(wait=False)


# errors
@app.exception_handler(IntegrityError)
def integrity_error(request: Request, exc: IntegrityError):
    logger.warning("constraint violation on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(status_code=409, content={"detail": "Record already exists or violates a constraint"})


@app.exception_handler(SQLAlchemyError)
def store_error(request: Request, exc: SQLAlchemyError):
    logger.error("store failure on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Record store failure"})


def _require_user(s: Session, user_id: int):
    profile = get_user_profile(s, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")
    return profile


# routes
@app.get("/")
def status():
    return {"name": "Dream Diary Backend", "status": "ok"}


# --------- users ---------

class UserBody(BaseModel):
    nickname: Optional[str] = None
    birth_date: Optional[date] = None


class SettingsBody(BaseModel):
    voice_format_level: Optional[VoiceFormatLevel] = None
    fortune_style: Optional[FortuneStyle] = None


class NewUserBody(UserBody, SettingsBody):
    pass


@app.post("/users", status_code=201)
def api_create_user(body: NewUserBody, s: Session = Depends(get_session)):
    return create_user_profile(s, body.birth_date, body.nickname, body.voice_format_level, body.fortune_style)


@app.get("/users/{user_id}")
def api_get_user(user_id: int, s: Session = Depends(get_session)):
    profile = _require_user(s, user_id)
    return {**profile.model_dump(), "age": user_age(s, user_id)}


@app.patch("/users/{user_id}")
def api_update_user(user_id: int, body: UserBody, s: Session = Depends(get_session)):
    profile = _require_user(s, user_id)
    profile = update_user_profile(s, profile, body.model_dump(exclude_unset=True))
    # a new birth date can move the computed age across a threshold
    refresh_user_statuses(s, user_id)
    s.refresh(profile)
    return profile


@app.delete("/users/{user_id}")
def api_delete_user(user_id: int, s: Session = Depends(get_session)):
    delete_user(s, _require_user(s, user_id))
    return {"success": True}


@app.get("/users/{user_id}/settings")
def api_get_settings(user_id: int, s: Session = Depends(get_session)):
    user_settings = get_user_settings(s, user_id)
    if not user_settings:
        raise HTTPException(status_code=404, detail="Settings not found")
    return user_settings


@app.patch("/users/{user_id}/settings")
def api_update_settings(user_id: int, body: SettingsBody, s: Session = Depends(get_session)):
    user_settings = get_user_settings(s, user_id)
    if not user_settings:
        raise HTTPException(status_code=404, detail="Settings not found")
    return update_user_settings(s, user_settings, body.model_dump(exclude_none=True))


# --------- glossary ---------

class GlossaryBody(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None


def _require_glossary_item(s: Session, item_id: int):
    item = get_glossary_item(s, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Glossary item not found")
    return item


@app.get("/users/{user_id}/glossary")
def api_list_glossary(user_id: int, s: Session = Depends(get_session)):
    return get_glossary(s, user_id)


@app.post("/users/{user_id}/glossary", status_code=201)
def api_create_glossary_item(user_id: int, body: GlossaryBody, s: Session = Depends(get_session)):
    _require_user(s, user_id)
    if not body.name:
        raise HTTPException(status_code=422, detail="name is required")
    return create_glossary_item(s, user_id, body.name, body.description or "")


@app.patch("/glossary/{item_id}")
def api_update_glossary_item(item_id: int, body: GlossaryBody, s: Session = Depends(get_session)):
    item = _require_glossary_item(s, item_id)
    updates = body.model_dump(exclude_unset=True)
    if "name" in updates and not updates["name"]:
        raise HTTPException(status_code=422, detail="name is required")
    if updates.get("description") is None:
        updates.pop("description", None)
    return update_glossary_item(s, item, updates)


@app.delete("/glossary/{item_id}")
def api_delete_glossary_item(item_id: int, s: Session = Depends(get_session)):
    delete_glossary_item(s, _require_glossary_item(s, item_id))
    return {"success": True}


# --------- attributes ---------

class AttributeBody(BaseModel):
    number: Optional[float] = None
    text: Optional[str] = None
    boolean: Optional[bool] = None


@app.get("/attributes/definitions")
def api_attribute_definitions(conditionable: bool = False):
    defs = conditionable_definitions() if conditionable else ATTRIBUTE_DEFINITIONS
    return [
        {
            "key": d.key,
            "label": d.label,
            "category": d.category.value,
            "value_type": d.value_type.value,
            "unit": d.unit,
            "is_calculated": d.is_calculated,
        }
        for d in defs
    ]


@app.get("/users/{user_id}/attributes")
def api_list_attributes(user_id: int, s: Session = Depends(get_session)):
    out = []
    for row in get_user_attributes(s, user_id):
        value = value_from_row(row)
        out.append({
            "key": row.attribute_key,
            "value": value.value if value is not None else None,
            "updated_at": row.updated_at,
        })
    return out


@app.put("/users/{user_id}/attributes/{key}")
def api_upsert_attribute(user_id: int, key: str, body: AttributeBody, s: Session = Depends(get_session)):
    _require_user(s, user_id)
    try:
        value = coerce_value(key, body.number, body.text, body.boolean)
    except InvalidAttribute as e:
        raise HTTPException(status_code=422, detail=str(e))
    row = upsert_user_attribute(s, user_id, key, value)
    changed = refresh_user_statuses(s, user_id)
    s.refresh(row)
    return {"attribute": row, "wishlists_changed": [w.id for w in changed]}


@app.delete("/users/{user_id}/attributes/{key}")
def api_delete_attribute(user_id: int, key: str, s: Session = Depends(get_session)):
    if not delete_user_attribute(s, user_id, key):
        raise HTTPException(status_code=404, detail="Attribute not found")
    refresh_user_statuses(s, user_id)
    return {"success": True}


# --------- wishlists ---------

class WishlistBody(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    deadline: Optional[date] = None
    condition1_attribute: Optional[str] = None
    condition1_operator: Optional[str] = None
    condition1_value: Optional[float] = None
    condition2_attribute: Optional[str] = None
    condition2_operator: Optional[str] = None
    condition2_value: Optional[float] = None

    @model_validator(mode="after")
    def check_operators(self):
        # a blank attribute would make the slot read as absent, i.e. always met
        for attr in (self.condition1_attribute, self.condition2_attribute):
            if attr is not None and not attr.strip():
                raise ValueError("condition attribute must not be blank")
        for op in (self.condition1_operator, self.condition2_operator):
            if op is not None and parse_operator(op) is None:
                raise ValueError(f"unknown operator '{op}'")
        return self


def _check_slots(data: dict):
    for n in (1, 2):
        slot = [data.get(f"condition{n}_attribute"), data.get(f"condition{n}_operator"), data.get(f"condition{n}_value")]
        filled = sum(v is not None for v in slot)
        if filled not in (0, 3):
            raise HTTPException(status_code=422, detail=f"condition{n} needs attribute, operator and value together")


def _normalize_operators(data: dict) -> dict:
    for n in (1, 2):
        name = f"condition{n}_operator"
        if data.get(name) is not None:
            data[name] = parse_operator(data[name]).value
    return data


def _wishlist_out(w: Wishlist, attributes, age):
    result = evaluate_wishlist(w, attributes, age)
    return {**w.model_dump(), "evaluation": result._asdict()}


def _require_wishlist(s: Session, wishlist_id: int) -> Wishlist:
    w = get_wishlist(s, wishlist_id)
    if not w:
        raise HTTPException(status_code=404, detail="Wishlist not found")
    return w


@app.get("/users/{user_id}/wishlists")
def api_list_wishlists(user_id: int, s: Session = Depends(get_session)):
    attributes = get_attribute_view(s, user_id)
    age = user_age(s, user_id)
    return [_wishlist_out(w, attributes, age) for w in get_wishlists(s, user_id)]


@app.post("/users/{user_id}/wishlists", status_code=201)
def api_create_wishlist(user_id: int, body: WishlistBody, s: Session = Depends(get_session)):
    _require_user(s, user_id)
    data = body.model_dump(exclude_none=True)
    if not data.get("title"):
        raise HTTPException(status_code=422, detail="title is required")
    _check_slots(data)
    w = create_wishlist(s, user_id, _normalize_operators(data))
    return _wishlist_out(w, get_attribute_view(s, user_id), user_age(s, user_id))


@app.post("/users/{user_id}/wishlists/reconcile")
def api_reconcile(user_id: int, s: Session = Depends(get_session)):
    _require_user(s, user_id)
    changed = refresh_user_statuses(s, user_id)
    return {"changed": [{"id": w.id, "status": w.status} for w in changed]}


@app.get("/wishlists/{wishlist_id}")
def api_get_wishlist(wishlist_id: int, s: Session = Depends(get_session)):
    w = _require_wishlist(s, wishlist_id)
    return _wishlist_out(w, get_attribute_view(s, w.user_id), user_age(s, w.user_id))


@app.patch("/wishlists/{wishlist_id}")
def api_update_wishlist(wishlist_id: int, body: WishlistBody, s: Session = Depends(get_session)):
    w = _require_wishlist(s, wishlist_id)
    updates = body.model_dump(exclude_unset=True)
    if "title" in updates and not updates["title"]:
        raise HTTPException(status_code=422, detail="title is required")
    _check_slots({**w.model_dump(), **updates})
    w = update_wishlist(s, w, _normalize_operators(updates))
    return _wishlist_out(w, get_attribute_view(s, w.user_id), user_age(s, w.user_id))


@app.delete("/wishlists/{wishlist_id}")
def api_delete_wishlist(wishlist_id: int, s: Session = Depends(get_session)):
    delete_wishlist(s, _require_wishlist(s, wishlist_id))
    return {"success": True}


@app.post("/wishlists/{wishlist_id}/achieve")
def api_achieve(wishlist_id: int, s: Session = Depends(get_session)):
    return achieve(s, _require_wishlist(s, wishlist_id))


@app.post("/wishlists/{wishlist_id}/unachieve")
def api_unachieve(wishlist_id: int, s: Session = Depends(get_session)):
    w = _require_wishlist(s, wishlist_id)
    return unachieve(s, w, get_attribute_view(s, w.user_id), user_age(s, w.user_id))


# --------- diaries ---------

class DiaryBody(BaseModel):
    content: Optional[str] = None
    summary: Optional[str] = None
    emotion_tags: Optional[List[str]] = None


def _check_content(updates: dict):
    if "content" in updates and not updates["content"]:
        raise HTTPException(status_code=422, detail="content must not be empty")


@app.get("/users/{user_id}/diaries/{day}")
def api_get_diary(user_id: int, day: date, s: Session = Depends(get_session)):
    # null body means "no diary for that day"
    return get_diary_by_date(s, user_id, day)


@app.post("/users/{user_id}/diaries/{day}", status_code=201)
def api_create_diary(user_id: int, day: date, body: DiaryBody, s: Session = Depends(get_session)):
    _require_user(s, user_id)
    if not body.content:
        raise HTTPException(status_code=422, detail="content is required")
    return create_diary(s, user_id, day, body.content, body.summary, body.emotion_tags)


@app.patch("/users/{user_id}/diaries/{day}")
def api_update_diary(user_id: int, day: date, body: DiaryBody, s: Session = Depends(get_session)):
    diary = get_diary_by_date(s, user_id, day)
    if not diary:
        raise HTTPException(status_code=404, detail="Diary not found")
    updates = body.model_dump(exclude_unset=True)
    _check_content(updates)
    return update_diary(s, diary, updates)


@app.delete("/users/{user_id}/diaries/{day}")
def api_delete_diary(user_id: int, day: date, s: Session = Depends(get_session)):
    diary = get_diary_by_date(s, user_id, day)
    if not diary:
        raise HTTPException(status_code=404, detail="Diary not found")
    delete_diary(s, diary)
    return {"success": True}


# --------- dreams ---------

class DreamBody(BaseModel):
    content: Optional[str] = None
    fortune_result: Optional[str] = None
    fortune_style: Optional[FortuneStyle] = None
    keywords: Optional[List[str]] = None


class KeywordsBody(BaseModel):
    keywords: List[str]


def _dream_out(entry):
    if entry is None:
        return None
    return {**entry.dream.model_dump(), "keywords": entry.keywords}


@app.get("/users/{user_id}/dreams/{day}")
def api_get_dream(user_id: int, day: date, s: Session = Depends(get_session)):
    return _dream_out(get_dream_by_date(s, user_id, day))


@app.post("/users/{user_id}/dreams/{day}", status_code=201)
def api_create_dream(user_id: int, day: date, body: DreamBody, s: Session = Depends(get_session)):
    _require_user(s, user_id)
    if not body.content:
        raise HTTPException(status_code=422, detail="content is required")
    dream = create_dream(s, user_id, day, body.content)
    if body.keywords:
        replace_dream_keywords(s, dream, body.keywords)
    return _dream_out(get_dream_by_date(s, user_id, day))


@app.patch("/users/{user_id}/dreams/{day}")
def api_update_dream(user_id: int, day: date, body: DreamBody, s: Session = Depends(get_session)):
    entry = get_dream_by_date(s, user_id, day)
    if not entry:
        raise HTTPException(status_code=404, detail="Dream not found")
    updates = body.model_dump(exclude_unset=True)
    keywords = updates.pop("keywords", None)
    _check_content(updates)
    if updates.get("fortune_result") is not None and "fortune_style" not in updates:
        user_settings = get_user_settings(s, user_id)
        if user_settings:
            updates["fortune_style"] = user_settings.fortune_style
    update_dream(s, entry.dream, updates)
    if keywords is not None:
        replace_dream_keywords(s, entry.dream, keywords)
    return _dream_out(get_dream_by_date(s, user_id, day))


@app.put("/users/{user_id}/dreams/{day}/keywords")
def api_replace_keywords(user_id: int, day: date, body: KeywordsBody, s: Session = Depends(get_session)):
    entry = get_dream_by_date(s, user_id, day)
    if not entry:
        raise HTTPException(status_code=404, detail="Dream not found")
    return {"keywords": replace_dream_keywords(s, entry.dream, body.keywords)}


@app.delete("/users/{user_id}/dreams/{day}")
def api_delete_dream(user_id: int, day: date, s: Session = Depends(get_session)):
    entry = get_dream_by_date(s, user_id, day)
    if not entry:
        raise HTTPException(status_code=404, detail="Dream not found")
    delete_dream(s, entry.dream)
    return {"success": True}


# --------- timeline / reflection ---------

def _parse_cursor(cursor: Optional[str]) -> Optional[datetime]:
    if not cursor:
        return None
    try:
        parsed = isoparse(cursor)
    except ValueError:
        raise HTTPException(status_code=400, detail="Malformed cursor")
    if parsed.tzinfo is not None:
        # stored timestamps are naive UTC
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed


@app.get("/users/{user_id}/timeline")
def api_timeline(
    user_id: int,
    page_size: int = Query(settings.TIMELINE_PAGE_SIZE, ge=1, le=settings.TIMELINE_MAX_PAGE_SIZE),
    cursor: Optional[str] = None,
    type: str = Query("both", pattern="^(diary|dream|both)$"),
    keyword: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    emotion_tags: List[str] = Query(default=[]),
    dream_keywords: List[str] = Query(default=[]),
    s: Session = Depends(get_session),
):
    filters = TimelineFilters(
        type=type,
        keyword=keyword or None,
        date_from=date_from,
        date_to=date_to,
        emotion_tags=emotion_tags,
        dream_keywords=dream_keywords,
    )
    return fetch_page(s, user_id, page_size, _parse_cursor(cursor), filters)


@app.get("/users/{user_id}/timeline/emotion-tags")
def api_emotion_tags(user_id: int, s: Session = Depends(get_session)):
    return distinct_emotion_tags(s, user_id)


@app.get("/users/{user_id}/timeline/dream-keywords")
def api_dream_keywords(user_id: int, s: Session = Depends(get_session)):
    return distinct_dream_keywords(s, user_id)


@app.get("/users/{user_id}/timeline/months")
def api_months(user_id: int, s: Session = Depends(get_session)):
    return [{"year": y, "month": m} for y, m in available_months(s, user_id)]


@app.get("/users/{user_id}/calendar/{year}/{month}")
def api_month_records(
    user_id: int,
    year: int = Path(ge=1, le=9999),
    month: int = Path(ge=1, le=12),
    s: Session = Depends(get_session),
):
    return month_records(s, user_id, year, month)


@app.get("/users/{user_id}/stats")
def api_stats(user_id: int, s: Session = Depends(get_session)):
    return user_stats(s, user_id)
