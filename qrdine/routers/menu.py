from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from datetime import datetime
from decimal import Decimal

from qrdine.db import get_db
from qrdine.schemas.menu import (
    MenuCategoryIn,
    MenuCategoryUpdate,
    MenuItemIn,
    MenuItemUpdate,
)
from qrdine.models.core import MenuCategory, MenuItem, Restaurant
from qrdine.deps import Caller, require_admin
from qrdine.errors import NotFoundError
from qrdine.services.billing import _dec

router = APIRouter(prefix="/menu", tags=["menu"])


# ---------- helpers ----------

def _as_float(val: Decimal | float | int | None) -> float | None:
    if val is None:
        return None
    return float(val)

def _ts(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.isoformat()

def _category_out(c: MenuCategory) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "sort_order": c.sort_order,
        "active": bool(c.active),
    }

def _item_out(m: MenuItem) -> dict:
    return {
        "id": m.id,
        "category_id": m.category_id,
        "name": m.name,
        "description": m.description,
        "price": _as_float(m.price),
        "image_url": m.image_url,
        "is_veg": bool(m.is_veg),
        "active": bool(m.active),
        "sort_order": m.sort_order,
        "updated_at": _ts(m.updated_at),
    }

def _own_category(db: Session, caller: Caller, category_id: str) -> MenuCategory:
    c = db.get(MenuCategory, category_id)
    if not c or c.restaurant_id != caller.restaurant_id:
        raise NotFoundError("Category not found")
    return c

def _own_item(db: Session, caller: Caller, item_id: str) -> MenuItem:
    it = db.get(MenuItem, item_id)
    if not it or it.restaurant_id != caller.restaurant_id:
        raise NotFoundError("Item not found")
    return it


# ---------- ADMIN: items (declared before /{restaurant_id}) ----------

@router.get("/admin/items")
def list_all_items(db: Session = Depends(get_db), caller: Caller = Depends(require_admin)):
    """Every item of the caller's restaurant, including inactive ones."""
    rows: List[MenuItem] = (
        db.query(MenuItem)
        .filter(MenuItem.restaurant_id == caller.restaurant_id)
        .order_by(MenuItem.sort_order.asc(), MenuItem.name.asc())
        .all()
    )
    return [_item_out(m) for m in rows]


@router.post("/admin/items", status_code=201)
def create_item(body: MenuItemIn, db: Session = Depends(get_db), caller: Caller = Depends(require_admin)):
    _own_category(db, caller, body.category_id)
    data = body.model_dump()
    data["price"] = _dec(data["price"])
    it = MenuItem(restaurant_id=caller.restaurant_id, **data)
    db.add(it)
    db.commit()
    db.refresh(it)
    return _item_out(it)


@router.patch("/admin/items/{item_id}")
def update_item(item_id: str, body: MenuItemUpdate, db: Session = Depends(get_db),
                caller: Caller = Depends(require_admin)):
    it = _own_item(db, caller, item_id)
    data = body.model_dump(exclude_unset=True)
    if data.get("category_id"):
        _own_category(db, caller, data["category_id"])
    if data.get("price") is not None:
        # only future orders see the new price; stored lines keep their snapshot
        data["price"] = _dec(data["price"])
    for k, v in data.items():
        if v is not None:
            setattr(it, k, v)
    db.commit()
    db.refresh(it)
    return _item_out(it)


@router.delete("/admin/items/{item_id}")
def deactivate_item(item_id: str, db: Session = Depends(get_db), caller: Caller = Depends(require_admin)):
    it = _own_item(db, caller, item_id)
    it.active = False
    db.commit()
    return {"ok": True, "id": item_id}


# ---------- ADMIN: categories ----------

@router.post("/admin/categories", status_code=201)
def create_category(body: MenuCategoryIn, db: Session = Depends(get_db), caller: Caller = Depends(require_admin)):
    c = MenuCategory(restaurant_id=caller.restaurant_id, **body.model_dump())
    db.add(c)
    db.commit()
    db.refresh(c)
    return _category_out(c)


@router.patch("/admin/categories/{category_id}")
def update_category(category_id: str, body: MenuCategoryUpdate, db: Session = Depends(get_db),
                    caller: Caller = Depends(require_admin)):
    c = _own_category(db, caller, category_id)
    for k, v in body.model_dump(exclude_unset=True).items():
        if v is not None:
            setattr(c, k, v)
    db.commit()
    db.refresh(c)
    return _category_out(c)


@router.delete("/admin/categories/{category_id}")
def deactivate_category(category_id: str, db: Session = Depends(get_db), caller: Caller = Depends(require_admin)):
    """Soft-delete a category together with all of its items."""
    c = _own_category(db, caller, category_id)
    c.active = False
    n = (
        db.query(MenuItem)
        .filter(MenuItem.category_id == c.id)
        .update({MenuItem.active: False}, synchronize_session=False)
    )
    db.commit()
    return {"ok": True, "id": category_id, "items_deactivated": n}


# ---------- PUBLIC ----------

@router.get("/{restaurant_id}")
def public_menu(restaurant_id: str, db: Session = Depends(get_db)):
    """
    Active categories with their active items, by sort order.
    Used by the customer ordering page; no auth.
    """
    r = db.get(Restaurant, restaurant_id)
    if not r:
        raise NotFoundError("Restaurant not found")

    cats = (
        db.query(MenuCategory)
        .filter(MenuCategory.restaurant_id == r.id, MenuCategory.active.is_(True))
        .order_by(MenuCategory.sort_order.asc(), MenuCategory.name.asc())
        .all()
    )
    items = (
        db.query(MenuItem)
        .filter(MenuItem.restaurant_id == r.id, MenuItem.active.is_(True))
        .order_by(MenuItem.sort_order.asc(), MenuItem.name.asc())
        .all()
    )
    by_cat: dict[str, list] = {}
    for m in items:
        by_cat.setdefault(m.category_id, []).append(_item_out(m))

    out = []
    for c in cats:
        row = _category_out(c)
        row["items"] = by_cat.get(c.id, [])
        out.append(row)
    return {"restaurant": {"id": r.id, "name": r.name, "description": r.description}, "categories": out}
