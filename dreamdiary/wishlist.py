from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

from sqlmodel import Session, select

from .attributes import AttributeView, get_attribute_view
from .conditions import Condition, calculate_age
from .model import Wishlist, WishlistStatus, utcnow
from .records import get_user_profile

logger = logging.getLogger(__name__)


class ConditionResult(NamedTuple):
    condition1_met: bool
    condition2_met: bool
    achievable: bool


def wishlist_conditions(wishlist: Wishlist) -> Tuple[Optional[Condition], Optional[Condition]]:
    return (
        Condition.from_slot(wishlist.condition1_attribute, wishlist.condition1_operator, wishlist.condition1_value),
        Condition.from_slot(wishlist.condition2_attribute, wishlist.condition2_operator, wishlist.condition2_value),
    )


def evaluate_wishlist(wishlist: Wishlist, attributes: AttributeView, age: Optional[int]) -> ConditionResult:
    """
    Would-be achievability of a wishlist item. Conditions are OR-ed; an item
    with no conditions is always achievable. Never touches the stored status.
    """
    cond1, cond2 = wishlist_conditions(wishlist)
    met1 = cond1.evaluate(attributes, age) if cond1 else False
    met2 = cond2.evaluate(attributes, age) if cond2 else False

    if cond1 is None and cond2 is None:
        achievable = True
    elif cond1 is not None and cond2 is not None:
        achievable = met1 or met2
    elif cond1 is not None:
        achievable = met1
    else:
        achievable = met2

    return ConditionResult(met1, met2, achievable)


def intended_status(wishlist: Wishlist, attributes: AttributeView, age: Optional[int]) -> WishlistStatus:
    if evaluate_wishlist(wishlist, attributes, age).achievable:
        return WishlistStatus.ACHIEVABLE
    return WishlistStatus.PENDING


def plan_reconciliation(
    wishlists: Sequence[Wishlist],
    attributes: AttributeView,
    age: Optional[int],
) -> List[Tuple[Wishlist, WishlistStatus]]:
    """(wishlist, new_status) for every non-achieved item whose status is stale."""
    plan = []
    for w in wishlists:
        if w.status == WishlistStatus.ACHIEVED:
            continue
        status = intended_status(w, attributes, age)
        if w.status != status:
            plan.append((w, status))
    return plan


def reconcile(
    session: Session,
    wishlists: Sequence[Wishlist],
    attributes: AttributeView,
    age: Optional[int],
) -> List[Wishlist]:
    changed = []
    for w, status in plan_reconciliation(wishlists, attributes, age):
        logger.info("wishlist %s status %s -> %s", w.id, WishlistStatus(w.status).value, status.value)
        w.status = status
        w.updated_at = utcnow()
        session.add(w)
        changed.append(w)
    if changed:
        session.commit()
        for w in changed:
            session.refresh(w)
    return changed


def user_age(session: Session, user_id: int, today: Optional[date] = None) -> Optional[int]:
    profile = get_user_profile(session, user_id)
    if not profile or not profile.birth_date:
        return None
    return calculate_age(profile.birth_date, today)


def refresh_user_statuses(session: Session, user_id: int, today: Optional[date] = None) -> List[Wishlist]:
    """Re-derive and persist the status of every non-achieved item for a user."""
    return reconcile(
        session,
        get_wishlists(session, user_id),
        get_attribute_view(session, user_id),
        user_age(session, user_id, today),
    )


def achieve(session: Session, wishlist: Wishlist) -> Wishlist:
    wishlist.status = WishlistStatus.ACHIEVED
    wishlist.achieved_at = utcnow()
    wishlist.updated_at = utcnow()
    session.add(wishlist)
    session.commit()
    session.refresh(wishlist)
    logger.info("wishlist %s achieved", wishlist.id)
    return wishlist


def unachieve(session: Session, wishlist: Wishlist, attributes: AttributeView, age: Optional[int]) -> Wishlist:
    wishlist.achieved_at = None
    wishlist.status = intended_status(wishlist, attributes, age)
    wishlist.updated_at = utcnow()
    session.add(wishlist)
    session.commit()
    session.refresh(wishlist)
    logger.info("wishlist %s un-achieved -> %s", wishlist.id, WishlistStatus(wishlist.status).value)
    return wishlist


# --------- CRUD ---------

def get_wishlists(session: Session, user_id: int) -> List[Wishlist]:
    return list(session.exec(
        select(Wishlist)
        .where(Wishlist.user_id == user_id)
        .order_by(Wishlist.created_at.desc(), Wishlist.id.desc())
    ).all())


def get_wishlist(session: Session, wishlist_id: int) -> Optional[Wishlist]:
    return session.get(Wishlist, wishlist_id)


def _sync_status(session: Session, wishlist: Wishlist, today: Optional[date]) -> None:
    if wishlist.status == WishlistStatus.ACHIEVED:
        return
    reconcile(
        session,
        [wishlist],
        get_attribute_view(session, wishlist.user_id),
        user_age(session, wishlist.user_id, today),
    )


def create_wishlist(session: Session, user_id: int, data: Dict[str, Any], today: Optional[date] = None) -> Wishlist:
    wishlist = Wishlist(user_id=user_id, **data)
    session.add(wishlist)
    session.commit()
    session.refresh(wishlist)
    _sync_status(session, wishlist, today)
    return wishlist


def update_wishlist(session: Session, wishlist: Wishlist, updates: Dict[str, Any], today: Optional[date] = None) -> Wishlist:
    for name, value in updates.items():
        setattr(wishlist, name, value)
    wishlist.updated_at = utcnow()
    session.add(wishlist)
    session.commit()
    session.refresh(wishlist)
    _sync_status(session, wishlist, today)
    return wishlist


def delete_wishlist(session: Session, wishlist: Wishlist) -> None:
    session.delete(wishlist)
    session.commit()
