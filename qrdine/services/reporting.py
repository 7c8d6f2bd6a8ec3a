from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from qrdine.models.core import Feedback, Order, OrderItem, OrderStatus, Payment, PaymentMode, PaymentStatus
from qrdine.services.billing import _money


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """UTC [start, end) of a calendar day."""
    start = datetime.combine(day, datetime.min.time()).replace(tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def payment_summary(db: Session, restaurant_id: str, day: date) -> dict:
    start, end = day_bounds(day)
    base = db.query(Payment).filter(
        Payment.restaurant_id == restaurant_id,
        Payment.created_at >= start, Payment.created_at < end,
    )
    paid = base.filter(Payment.verified.is_(True), Payment.status == PaymentStatus.PAID).all()
    failed = base.filter(Payment.status == PaymentStatus.FAILED).count()

    by_mode: dict[str, dict] = {m.value: {"count": 0, "amount": Decimal("0")} for m in PaymentMode}
    for p in paid:
        b = by_mode[p.payment_mode.value]
        b["count"] += 1
        b["amount"] += Decimal(p.amount)

    return {
        "date": day.isoformat(),
        "verified_count": len(paid),
        "verified_amount": _money(sum((b["amount"] for b in by_mode.values()), Decimal("0"))),
        "failed_count": failed,
        "by_mode": {k: {"count": v["count"], "amount": _money(v["amount"])} for k, v in by_mode.items()},
    }


def daily_sales(db: Session, restaurant_id: str, day: date) -> dict:
    start, end = day_bounds(day)
    orders = (
        db.query(Order)
        .filter(Order.restaurant_id == restaurant_id, Order.created_at >= start, Order.created_at < end)
        .all()
    )
    by_status = {s.value: 0 for s in OrderStatus}
    gross = Decimal("0")
    for o in orders:
        by_status[o.internal_status.value] += 1
        gross += Decimal(o.total_amount)

    ids = [o.id for o in orders]
    top = []
    if ids:
        rows = (
            db.query(OrderItem.item_name, func.sum(OrderItem.quantity).label("qty"))
            .filter(OrderItem.order_id.in_(ids))
            .group_by(OrderItem.item_name)
            .order_by(func.sum(OrderItem.quantity).desc())
            .limit(5)
            .all()
        )
        top = [{"item_name": name, "quantity": int(qty or 0)} for name, qty in rows]

    avg_rating = (
        db.query(func.avg(Feedback.rating))
        .filter(Feedback.restaurant_id == restaurant_id, Feedback.created_at >= start, Feedback.created_at < end)
        .scalar()
    )
    return {
        "date": day.isoformat(),
        "orders_count": len(orders),
        "gross": _money(gross),
        "average_order_value": _money(gross / len(orders)) if orders else 0.0,
        "by_status": by_status,
        "top_items": top,
        "average_rating": round(float(avg_rating), 2) if avg_rating is not None else None,
        "payments": payment_summary(db, restaurant_id, day),
    }
