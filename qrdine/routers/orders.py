from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from datetime import date

from qrdine.db import get_db
from qrdine.deps import Caller, get_bus, require_auth, require_role
from qrdine.errors import AuthorizationError, NotFoundError, ValidationError
from qrdine.events.bus import EventBus
from qrdine.models.core import DiningTable, Order, OrderStatus, Payment, StaffRole
from qrdine.schemas.orders import AddItemsIn, OrderIn, OrderOut, StatusIn
from qrdine.services import lifecycle, ordering
from qrdine.services.billing import _money
from qrdine.services.reporting import day_bounds

router = APIRouter(prefix="/orders", tags=["orders"])


def _payment_row(p: Payment | None) -> dict | None:
    if not p:
        return None
    return {
        "id": p.id,
        "status": p.status.value,
        "verified": bool(p.verified),
        "amount": _money(p.amount),
        "currency": p.currency,
        "payment_mode": p.payment_mode.value,
        "razorpay_order_id": p.gateway_order_id,
        "created_at": p.created_at.isoformat() if p.created_at else None,
    }


def _latest_payment(db: Session, order_id: str) -> Payment | None:
    # the settling payment wins over any open bill intent
    return (
        db.query(Payment)
        .filter(Payment.order_id == order_id)
        .order_by(Payment.verified.desc(), Payment.created_at.desc())
        .first()
    )


@router.post("/", response_model=OrderOut, status_code=201)
def create_order(body: OrderIn, db: Session = Depends(get_db), bus: EventBus = Depends(get_bus)):
    if body.payment_mode == "PREPAID":
        raise ValidationError("Prepaid orders must go through payment verification first")
    return ordering.create_postpaid_order(db, bus, body.table_token, body.items, body.notes)


@router.post("/{order_id}/add-items")
def add_items(order_id: str, body: AddItemsIn, db: Session = Depends(get_db), bus: EventBus = Depends(get_bus)):
    return ordering.add_items_to_order(db, bus, body.table_token, order_id, body.items)


# ---------- staff feeds (declared before /{order_id}) ----------

def _feed(db: Session, restaurant_id: str, statuses: list[OrderStatus], by_update=False):
    col = Order.updated_at if by_update else Order.created_at
    rows = (
        db.query(Order)
        .filter(Order.restaurant_id == restaurant_id, Order.internal_status.in_(statuses))
        .order_by(col.asc())
        .all()
    )
    return [ordering.order_snapshot(db, o) for o in rows]


@router.get("/feed/kitchen")
def kitchen_feed(db: Session = Depends(get_db),
                 caller: Caller = Depends(require_role(StaffRole.KITCHEN, StaffRole.ADMIN))):
    return _feed(db, caller.restaurant_id, [OrderStatus.PLACED, OrderStatus.PREPARING])


@router.get("/feed/waiter")
def waiter_feed(db: Session = Depends(get_db),
                caller: Caller = Depends(require_role(StaffRole.WAITER, StaffRole.ADMIN))):
    return _feed(db, caller.restaurant_id, [OrderStatus.READY], by_update=True)


@router.get("/feed/all")
def all_orders(
    day: date | None = None,
    status: str | None = None,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_role(StaffRole.ADMIN)),
):
    """
    Latest 100 orders for the admin panel.

    Query params:
      - day:    YYYY-MM-DD (optional, by creation date)
      - status: PLACED | PREPARING | READY | SERVED (optional)
    """
    q = db.query(Order).filter(Order.restaurant_id == caller.restaurant_id)
    if day:
        start, end = day_bounds(day)
        q = q.filter(Order.created_at >= start, Order.created_at < end)
    if status:
        q = q.filter(Order.internal_status == lifecycle.parse_status(status))

    rows = q.order_by(Order.created_at.desc()).limit(100).all()
    out = []
    for o in rows:
        snap = ordering.order_snapshot(db, o)
        snap["payment"] = _payment_row(_latest_payment(db, o.id))
        out.append(snap)
    return out


@router.patch("/{order_id}/status")
def update_status(order_id: str, body: StatusIn, db: Session = Depends(get_db),
                  bus: EventBus = Depends(get_bus), caller: Caller = Depends(require_auth)):
    res = lifecycle.advance_status(db, bus, caller, order_id, body.internal_status, body.expected_status)
    return {"success": True, **res}


@router.get("/{order_id}")
def get_order(order_id: str, token: str, db: Session = Depends(get_db)):
    """Customer view: public status only, never the internal one."""
    o = db.get(Order, order_id)
    if not o:
        raise NotFoundError("Order not found")
    table = db.query(DiningTable).filter(DiningTable.qr_token == token).first()
    if not table or table.id != o.table_id:
        raise AuthorizationError("Access denied")

    snap = ordering.order_snapshot(db, o, table)
    payment = _latest_payment(db, o.id)
    if payment:
        payment_status = payment.status.value
    else:
        payment_status = "pending" if o.payment_mode.value == "POSTPAID" else None
    return {
        "id": o.id,
        "table_number": snap["table_number"],
        "public_status": o.public_status,
        "payment_mode": o.payment_mode.value,
        "total_amount": snap["total_amount"],
        "created_at": snap["created_at"],
        "items": [
            {k: i[k] for k in ("item_name", "quantity", "price_at_order", "notes")}
            for i in snap["items"]
        ],
        "payment_status": payment_status,
    }
