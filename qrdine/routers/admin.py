from decimal import Decimal

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from qrdine.db import get_db
from qrdine.config import settings
from qrdine.errors import AuthorizationError
from qrdine.util.security import hash_pw, new_table_token
from qrdine.models.core import (
    Restaurant, StaffUser, StaffRole, DiningTable, MenuCategory, MenuItem,
)

router = APIRouter(prefix="/admin", tags=["admin"])

DEMO_USERS = (
    ("admin", "admin123", StaffRole.ADMIN, "Restaurant Admin"),
    ("kitchen1", "kitchen123", StaffRole.KITCHEN, "Head Chef"),
    ("waiter1", "waiter123", StaffRole.WAITER, "Main Waiter"),
)

DEMO_MENU = {
    ("Starters", "Begin your meal right"): [
        ("Paneer Tikka", "Marinated cottage cheese grilled in tandoor", "249", True),
        ("Chicken Seekh Kebab", "Spiced minced chicken skewers", "299", False),
        ("Crispy Corn", "Golden fried corn with spices", "199", True),
    ],
    ("Main Course", "Hearty and fulfilling"): [
        ("Butter Chicken", "Creamy tomato-based chicken curry", "349", False),
        ("Dal Makhani", "Slow-cooked black lentils in cream", "249", True),
        ("Veg Biryani", "Aromatic rice with seasonal vegetables", "299", True),
    ],
    ("Breads", "Fresh from the tandoor"): [
        ("Butter Naan", "Soft leavened bread with butter", "59", True),
        ("Garlic Naan", "Naan with garlic and coriander", "79", True),
    ],
    ("Beverages", "Refreshing drinks"): [
        ("Masala Chai", "Traditional Indian spiced tea", "49", True),
        ("Mango Lassi", "Creamy mango yogurt drink", "129", True),
    ],
}

@router.post("/dev-bootstrap")
def dev_bootstrap(db: Session = Depends(get_db)):
    if settings.APP_ENV != "dev":
        raise AuthorizationError("Not allowed")

    # Restaurant
    r = db.query(Restaurant).first()
    if not r:
        r = Restaurant(name="The Golden Plate", description="Fine dining with a modern twist",
                       prepaid_enabled=True, postpaid_enabled=True)
        db.add(r); db.flush()

    # Staff, one per role
    for username, password, role, name in DEMO_USERS:
        if not db.query(StaffUser).filter(StaffUser.username == username).first():
            db.add(StaffUser(restaurant_id=r.id, username=username, name=name,
                             pass_hash=hash_pw(password), role=role, active=True))

    # Tables 1..5
    for n in range(1, 6):
        exists = (
            db.query(DiningTable)
            .filter(DiningTable.restaurant_id == r.id, DiningTable.table_number == n)
            .first()
        )
        if not exists:
            db.add(DiningTable(restaurant_id=r.id, table_number=n, qr_token=new_table_token(),
                               seats=2 if n <= 2 else 4))

    # Menu
    for pos, ((cat_name, cat_desc), items) in enumerate(DEMO_MENU.items(), start=1):
        c = (
            db.query(MenuCategory)
            .filter(MenuCategory.restaurant_id == r.id, MenuCategory.name == cat_name)
            .first()
        )
        if not c:
            c = MenuCategory(restaurant_id=r.id, name=cat_name, description=cat_desc, sort_order=pos)
            db.add(c); db.flush()
        for i, (name, desc, price, veg) in enumerate(items, start=1):
            if not db.query(MenuItem).filter(MenuItem.category_id == c.id, MenuItem.name == name).first():
                db.add(MenuItem(category_id=c.id, restaurant_id=r.id, name=name, description=desc,
                                price=Decimal(price), is_veg=veg, sort_order=i))

    db.commit()
    tables = (
        db.query(DiningTable)
        .filter(DiningTable.restaurant_id == r.id)
        .order_by(DiningTable.table_number.asc())
        .all()
    )
    items = db.query(MenuItem).filter(MenuItem.restaurant_id == r.id).all()
    return {
        "restaurant_id": r.id,
        "users": {u: p for u, p, _, _ in DEMO_USERS},
        "tables": {str(t.table_number): t.qr_token for t in tables},
        "menu_items": {m.name: m.id for m in items},
    }
