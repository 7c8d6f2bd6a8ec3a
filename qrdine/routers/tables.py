# qrdine/routers/tables.py
from sqlalchemy.exc import IntegrityError
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from qrdine.config import settings
from qrdine.db import get_db
from qrdine.deps import Caller, get_bus, require_admin
from qrdine.errors import ConflictError, NotFoundError
from qrdine.events.bus import EventBus
from qrdine.models.core import DiningTable, Order, Restaurant
from qrdine.schemas.common import CallWaiterIn, TableIn, TableUpdate
from qrdine.services import ordering
from qrdine.services.billing import _money
from qrdine.util.security import new_table_token

router = APIRouter(prefix="/tables", tags=["tables"])


def _row_from_table(t: DiningTable) -> dict:
    return {
        "id": t.id,
        "restaurant_id": t.restaurant_id,
        "table_number": t.table_number,
        "qr_token": t.qr_token,
        "seats": t.seats,
        "active": bool(t.active),
    }


def _order_brief(o: Order | None) -> dict | None:
    if not o:
        return None
    return {
        "id": o.id,
        "public_status": o.public_status,
        "payment_mode": o.payment_mode.value,
        "total_amount": _money(o.total_amount),
        "created_at": o.created_at.isoformat() if o.created_at else None,
    }


def _own_table(db: Session, caller: Caller, table_id: str) -> DiningTable:
    t = db.get(DiningTable, table_id)
    if not t or t.restaurant_id != caller.restaurant_id:
        raise NotFoundError("Table not found")
    return t


def _number_taken(db: Session, restaurant_id: str, number: int, exclude_id: str | None = None) -> bool:
    q = db.query(DiningTable.id).filter(DiningTable.restaurant_id == restaurant_id,
                                        DiningTable.table_number == number)
    if exclude_id:
        q = q.filter(DiningTable.id != exclude_id)
    return q.first() is not None


# ------------------------------------------------------------------
# customer side: table token only
# ------------------------------------------------------------------
@router.get("/validate/{token}")
def validate_table(token: str, db: Session = Depends(get_db)):
    """
    Landing call of the ordering page. Besides the table and restaurant it
    returns the open POSTPAID order (if any) so the customer can keep adding
    to it, and the last served-but-unpaid one so they can settle the bill.
    """
    t = ordering.resolve_table(db, token)
    r = db.get(Restaurant, t.restaurant_id)
    return {
        "table_id": t.id,
        "table_number": t.table_number,
        "seats": t.seats,
        "restaurant_id": r.id,
        "restaurant_name": r.name,
        "restaurant_description": r.description,
        "prepaid_enabled": bool(r.prepaid_enabled),
        "postpaid_enabled": bool(r.postpaid_enabled),
        "active_order": _order_brief(ordering.open_order(db, t)),
        "unpaid_order": _order_brief(ordering.unpaid_order(db, t)),
    }


@router.post("/call-waiter")
def call_waiter(body: CallWaiterIn, db: Session = Depends(get_db), bus: EventBus = Depends(get_bus)):
    return ordering.call_waiter(db, bus, body.table_token)


# ------------------------------------------------------------------
# admin
# ------------------------------------------------------------------
@router.get("/")
def list_tables(db: Session = Depends(get_db), caller: Caller = Depends(require_admin)):
    rows = (
        db.query(DiningTable)
        .filter(DiningTable.restaurant_id == caller.restaurant_id)
        .order_by(DiningTable.table_number.asc())
        .all()
    )
    return [_row_from_table(t) for t in rows]


@router.post("/", status_code=201)
def create_table(body: TableIn, db: Session = Depends(get_db), caller: Caller = Depends(require_admin)):
    if _number_taken(db, caller.restaurant_id, body.table_number):
        raise ConflictError("Table number already exists")
    try:
        t = DiningTable(
            restaurant_id=caller.restaurant_id,
            table_number=body.table_number,
            seats=body.seats,
            qr_token=new_table_token(),
        )
        db.add(t)
        db.commit()
        db.refresh(t)
    except IntegrityError:
        # lost a race on (restaurant_id, table_number)
        db.rollback()
        raise ConflictError("Table number already exists")
    return _row_from_table(t)


@router.put("/{table_id}")
def update_table(table_id: str, body: TableUpdate, db: Session = Depends(get_db),
                 caller: Caller = Depends(require_admin)):
    t = _own_table(db, caller, table_id)
    if body.table_number is not None and body.table_number != t.table_number:
        if _number_taken(db, caller.restaurant_id, body.table_number, exclude_id=t.id):
            raise ConflictError("Table number already exists")
        t.table_number = body.table_number
    if body.seats is not None:
        t.seats = body.seats
    if body.active is not None:
        t.active = body.active
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Table number already exists")
    db.refresh(t)
    return _row_from_table(t)


@router.delete("/{table_id}")
def deactivate_table(table_id: str, db: Session = Depends(get_db), caller: Caller = Depends(require_admin)):
    t = _own_table(db, caller, table_id)
    t.active = False
    db.commit()
    return {"success": True}


@router.post("/{table_id}/regenerate-qr")
def regenerate_qr(table_id: str, db: Session = Depends(get_db), caller: Caller = Depends(require_admin)):
    """Rotate the table token; printed codes carrying the old one stop working."""
    t = _own_table(db, caller, table_id)
    t.qr_token = new_table_token()
    db.commit()
    db.refresh(t)
    return _row_from_table(t)


@router.get("/{table_id}/qr")
def qr_link(table_id: str, db: Session = Depends(get_db), caller: Caller = Depends(require_admin)):
    t = _own_table(db, caller, table_id)
    return {
        "table_number": t.table_number,
        "qr_token": t.qr_token,
        "qr_url": f"{settings.BASE_URL.rstrip('/')}/order?token={t.qr_token}",
    }
