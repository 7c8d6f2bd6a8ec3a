"""Order admission for customer-facing calls.

All calls are authorized by a table token. Lines are re-priced server-side
(``billing.price_lines``) and an order with its line snapshots is written in a
single commit; events go out only after the commit succeeds.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from qrdine.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError, INVALID_TABLE
from qrdine.events.bus import EventBus, Topic
from qrdine.models.core import (
    DiningTable, Order, OrderItem, OrderStatus, Payment, PaymentMode, PaymentStatus, Restaurant,
)
from qrdine.services.billing import _dec, _money, price_lines
from qrdine.services.lifecycle import derive_public_status, order_event

logger = logging.getLogger(__name__)


def resolve_table(db: Session, token: str | None) -> DiningTable:
    if not token:
        raise ValidationError("table_token is required")
    t = db.query(DiningTable).filter(DiningTable.qr_token == token, DiningTable.active.is_(True)).first()
    if not t:
        raise NotFoundError(INVALID_TABLE)
    return t


def require_mode(db: Session, table: DiningTable, mode: PaymentMode) -> None:
    r = db.get(Restaurant, table.restaurant_id)
    enabled = r.prepaid_enabled if mode == PaymentMode.PREPAID else r.postpaid_enabled
    if not enabled:
        raise AuthorizationError(f"{mode.value.title()} ordering is not enabled here")


def order_snapshot(db: Session, order: Order, table: DiningTable | None = None) -> dict:
    table = table or db.get(DiningTable, order.table_id)
    items = (
        db.query(OrderItem)
        .filter(OrderItem.order_id == order.id)
        .order_by(OrderItem.created_at.asc())
        .all()
    )
    return {
        "id": order.id,
        "restaurant_id": order.restaurant_id,
        "table_id": order.table_id,
        "table_number": table.table_number if table else None,
        "internal_status": order.internal_status.value,
        "public_status": order.public_status,
        "payment_mode": order.payment_mode.value,
        "total_amount": _money(order.total_amount),
        "notes": order.notes,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "updated_at": order.updated_at.isoformat() if order.updated_at else None,
        "items": [
            {
                "id": i.id,
                "menu_item_id": i.menu_item_id,
                "item_name": i.item_name,
                "quantity": i.quantity,
                "price_at_order": _money(i.price_at_order),
                "notes": i.notes,
            }
            for i in items
        ],
    }


def add_lines(db: Session, order_id: str, priced: list[dict]) -> None:
    for p in priced:
        db.add(OrderItem(
            order_id=order_id,
            menu_item_id=p["menu_item_id"],
            item_name=p["item_name"],
            price_at_order=_dec(p["price_at_order"]),
            quantity=p["quantity"],
            notes=p["notes"],
        ))
    db.flush()


def insert_order(db: Session, table: DiningTable, mode: PaymentMode, total: Decimal,
                 priced: list[dict], notes: str | None) -> Order:
    """Stage an order and its line snapshots. The caller owns the commit."""
    o = Order(
        restaurant_id=table.restaurant_id,
        table_id=table.id,
        internal_status=OrderStatus.PLACED,
        public_status=derive_public_status(OrderStatus.PLACED),
        payment_mode=mode,
        total_amount=total,
        notes=notes or "",
    )
    db.add(o)
    db.flush()
    add_lines(db, o.id, priced)
    return o


def announce_new_order(db: Session, bus: EventBus, order: Order, table: DiningTable) -> None:
    bus.publish(Topic.NEW_ORDER, {
        "restaurant_id": order.restaurant_id,
        "order_id": order.id,
        "order": order_snapshot(db, order, table),
    })


def create_postpaid_order(db: Session, bus: EventBus, table_token: str, lines, notes: str | None = None) -> dict:
    table = resolve_table(db, table_token)
    require_mode(db, table, PaymentMode.POSTPAID)
    total, priced = price_lines(db, table.restaurant_id, lines)
    try:
        order = insert_order(db, table, PaymentMode.POSTPAID, total, priced, notes)
        db.commit()
    except Exception:
        db.rollback()
        raise
    announce_new_order(db, bus, order, table)
    logger.info("postpaid order %s placed at table %s, total %s", order.id, table.table_number, total)
    return {
        "order_id": order.id,
        "public_status": order.public_status,
        "total_amount": _money(total),
        "payment_mode": PaymentMode.POSTPAID.value,
    }


def _require_unbilled(db: Session, order: Order) -> None:
    """An order is frozen once a bill payment for it is open or settled."""
    statuses = {
        s for (s,) in db.query(Payment.status)
        .filter(Payment.order_id == order.id, Payment.status != PaymentStatus.FAILED)
    }
    if PaymentStatus.PAID in statuses:
        raise ConflictError("Bill already settled")
    if statuses:
        raise ConflictError("Bill payment in progress")


def add_items_to_order(db: Session, bus: EventBus, table_token: str, order_id: str, lines) -> dict:
    table = resolve_table(db, table_token)
    order = (
        db.query(Order)
        .filter(Order.id == order_id, Order.table_id == table.id, Order.payment_mode == PaymentMode.POSTPAID)
        .with_for_update()
        .first()
    )
    if not order:
        raise NotFoundError("Order not found")
    if order.internal_status == OrderStatus.SERVED:
        raise ValidationError("Cannot add items to a served order")
    _require_unbilled(db, order)

    _, priced = price_lines(db, table.restaurant_id, lines)
    try:
        add_lines(db, order.id, priced)
        # recompute from the stored snapshots rather than trusting the old total
        order.total_amount = _dec(sum(
            (_dec(i.price_at_order) * i.quantity
             for i in db.query(OrderItem).filter(OrderItem.order_id == order.id)),
            Decimal("0"),
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)

    bus.publish(Topic.ORDER_UPDATED, order_event(order, table.table_number))
    return {
        "order_id": order.id,
        "total_amount": _money(order.total_amount),
        "added_items": len(priced),
        "public_status": order.public_status,
    }


def call_waiter(db: Session, bus: EventBus, table_token: str) -> dict:
    """Notify staff dashboards; nothing is persisted."""
    table = resolve_table(db, table_token)
    bus.publish(Topic.CALL_WAITER, {
        "restaurant_id": table.restaurant_id,
        "table_id": table.id,
        "table_number": table.table_number,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })
    return {"success": True, "message": "Waiter notified"}


def open_order(db: Session, table: DiningTable) -> Order | None:
    """Most recent unserved POSTPAID order at a table.

    "One open order per table" is a read pattern, not a constraint: two
    concurrent submissions can both succeed and this returns the newer one.
    """
    return (
        db.query(Order)
        .filter(Order.table_id == table.id,
                Order.payment_mode == PaymentMode.POSTPAID,
                Order.internal_status != OrderStatus.SERVED)
        .order_by(Order.created_at.desc())
        .first()
    )


def unpaid_order(db: Session, table: DiningTable) -> Order | None:
    """Most recent served POSTPAID order with no verified payment."""
    paid = select(Payment.order_id).where(Payment.order_id.isnot(None), Payment.verified.is_(True))
    return (
        db.query(Order)
        .filter(Order.table_id == table.id,
                Order.payment_mode == PaymentMode.POSTPAID,
                Order.internal_status == OrderStatus.SERVED,
                Order.id.not_in(paid))
        .order_by(Order.created_at.desc())
        .first()
    )
