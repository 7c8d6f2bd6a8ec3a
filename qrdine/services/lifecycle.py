"""Order lifecycle engine.

Internal status runs PLACED -> PREPARING -> READY -> SERVED. The public status
shown to customers is always derived from the stored internal status, never
stored independently of it. Which targets a caller may request depends only on
their role:

    kitchen  PREPARING, READY
    waiter   SERVED
    admin    any status

Every accepted transition is persisted together with its derived label and an
audit row, then published as ``order-updated``.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.orm import Session

from qrdine.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from qrdine.events.bus import EventBus, Topic
from qrdine.models.core import DiningTable, Order, OrderStatus, StaffRole
from qrdine.services.billing import _money
from qrdine.util.audit import audit

logger = logging.getLogger(__name__)

PUBLIC_STATUS = {
    OrderStatus.PLACED: "Order placed",
    OrderStatus.PREPARING: "Being prepared",
    OrderStatus.READY: "Almost ready",
    OrderStatus.SERVED: "Served",
}

STATUS_RANK = {s: i for i, s in enumerate(OrderStatus)}

ALLOWED_TARGETS = {
    StaffRole.KITCHEN: frozenset({OrderStatus.PREPARING, OrderStatus.READY}),
    StaffRole.WAITER: frozenset({OrderStatus.SERVED}),
    StaffRole.ADMIN: frozenset(OrderStatus),
}


def parse_status(value) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).upper())
    except ValueError:
        raise ValidationError(f"Invalid status: {value}")


def derive_public_status(status) -> str:
    return PUBLIC_STATUS[parse_status(status)]


def authorize_transition(role, target: OrderStatus) -> StaffRole:
    try:
        role = StaffRole(role)
    except ValueError:
        raise AuthorizationError("Caller may not change order status")
    if target not in ALLOWED_TARGETS[role]:
        raise AuthorizationError(f"Role {role.value} may not set {target.value}")
    return role


def order_event(order: Order, table_number: int | None) -> dict:
    return {
        "restaurant_id": order.restaurant_id,
        "order_id": order.id,
        "internal_status": order.internal_status.value,
        "public_status": derive_public_status(order.internal_status),
        "table_number": table_number,
        "total_amount": _money(order.total_amount),
    }


def advance_status(db: Session, bus: EventBus, caller, order_id: str, target,
                   expected_status=None) -> dict:
    """Move an order to ``target`` on behalf of ``caller``.

    ``caller`` carries ``user_id``, ``restaurant_id`` and ``role``. When
    ``expected_status`` is given the write only applies if the stored status
    still matches it; otherwise the last write wins.
    """
    target = parse_status(target)
    expected = parse_status(expected_status) if expected_status is not None else None
    role = authorize_transition(caller.role, target)

    order = (
        db.query(Order)
        .filter(Order.id == order_id, Order.restaurant_id == caller.restaurant_id)
        .first()
    )
    if not order:
        raise NotFoundError("Order not found")

    current = order.internal_status
    if role != StaffRole.ADMIN and STATUS_RANK[target] < STATUS_RANK[current]:
        raise ConflictError(f"Order is already {current.value}")

    public = derive_public_status(target)
    stmt = (
        update(Order)
        .where(Order.id == order.id)
        .values(internal_status=target, public_status=public, updated_at=datetime.now(timezone.utc))
    )
    if expected is not None:
        stmt = stmt.where(Order.internal_status == expected)
    res = db.execute(stmt)
    if res.rowcount == 0:
        db.rollback()
        raise ConflictError("Order status changed concurrently, reload and retry")

    audit(db, caller.user_id, "Order", order.id, "STATUS",
          before={"internal_status": current.value},
          after={"internal_status": target.value, "public_status": public})
    db.commit()
    db.refresh(order)

    table = db.get(DiningTable, order.table_id)
    bus.publish(Topic.ORDER_UPDATED, order_event(order, table.table_number if table else None))
    logger.info("order %s %s -> %s by %s", order.id, current.value, target.value, role.value)
    return {
        "order_id": order.id,
        "internal_status": order.internal_status.value,
        "public_status": order.public_status,
    }
